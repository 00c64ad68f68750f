"""
Read-side rollups over visit records.

Nothing is cached: every call reads the raw visits for the requested range.
Commission is computed either from the artist's current rate (`current`, the
default and what the dashboards have always shown) or from the rate stored on
each visit when it was written (`snapshot`).
"""

import re
from collections import OrderedDict
from datetime import date, datetime, time
from typing import Any, Dict, Iterable, List, Optional, Tuple

from database import require_db

COMMISSION_BASES = ("current", "snapshot")
_DATE_RE = re.compile(r"^\d{4}-\d{2}-\d{2}$")


def _parse_day(value: Optional[str]) -> Optional[date]:
    if not value or not _DATE_RE.match(value):
        return None
    try:
        return date.fromisoformat(value)
    except ValueError:
        return None


def date_range(start: Optional[str], end: Optional[str], today: Optional[date] = None) -> Tuple[datetime, datetime]:
    """Inclusive [from 00:00, to 23:59:59.999] range; defaults to month-to-date."""
    today = today or date.today()
    first = _parse_day(start) or today.replace(day=1)
    last = _parse_day(end) or today
    return datetime.combine(first, time.min), datetime.combine(last, time(23, 59, 59, 999000))


def visit_query(start: datetime, end: datetime, artist: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
    query: Dict[str, Any] = {"date": {"$gte": start, "$lte": end}}
    if artist is not None:
        query["$or"] = [{"artist_id": str(artist["_id"])}, {"artist": artist["name"]}]
    return query


def calc_hours(start_time: Optional[str], end_time: Optional[str]) -> float:
    if not start_time or not end_time:
        return 0
    try:
        sh, sm = (int(x) for x in start_time.split(":"))
        eh, em = (int(x) for x in end_time.split(":"))
    except ValueError:
        return 0
    return max(((eh * 60 + em) - (sh * 60 + sm)) / 60, 0)


def _money(value: float) -> float:
    return round(value, 2)


def commission_for(visits: Iterable[Dict[str, Any]], current_pct: float, basis: str = "current") -> float:
    if basis not in COMMISSION_BASES:
        raise ValueError(f"Unknown commission basis: {basis}")
    if basis == "snapshot":
        total = 0.0
        for v in visits:
            pct = v.get("artist_commission")
            if pct is None:
                pct = current_pct
            total += (v.get("final_total") or 0) * pct / 100
        return _money(total)
    revenue = sum(v.get("final_total") or 0 for v in visits)
    return _money(revenue * (current_pct or 0) / 100)


def summarize(visits: List[Dict[str, Any]], commission_pct: Optional[float] = None, basis: str = "current") -> Dict[str, Any]:
    total_revenue = sum(v.get("final_total") or 0 for v in visits)
    total_visits = len(visits)
    hours = sum(calc_hours(v.get("start_time"), v.get("end_time")) for v in visits)
    summary = {
        "total_revenue": total_revenue,
        "total_visits": total_visits,
        "unique_customers": len({v.get("contact") for v in visits}),
        "total_services": sum(len(v.get("services") or []) for v in visits),
        "hours_worked": round(hours, 1),
        "avg_ticket": _money(total_revenue / total_visits) if total_visits else 0,
        "cash_total": sum(v.get("cash_amount") or 0 for v in visits),
        "online_total": sum(v.get("online_amount") or 0 for v in visits),
        "total_discount": sum(v.get("discount_amount") or 0 for v in visits),
    }
    if commission_pct is not None:
        summary["commission_pct"] = commission_pct
        summary["commission_basis"] = basis
        summary["commission_earned"] = commission_for(visits, commission_pct, basis)
    return summary


def services_breakdown(query: Dict[str, Any]) -> List[Dict[str, Any]]:
    db = require_db()
    pipeline = [
        {"$match": query},
        {"$unwind": "$services"},
        {"$group": {"_id": "$services.name", "count": {"$sum": 1}, "revenue": {"$sum": "$services.price"}}},
    ]
    rows = [{"service": r["_id"], "count": r["count"], "revenue": r["revenue"]} for r in db["visit"].aggregate(pipeline)]
    rows.sort(key=lambda r: (-r["count"], r["service"]))
    return rows


def daily_trend(visits: List[Dict[str, Any]], commission_pct: Optional[float] = None, basis: str = "current") -> List[Dict[str, Any]]:
    by_day: Dict[str, List[Dict[str, Any]]] = OrderedDict()
    for v in sorted(visits, key=lambda v: v["date"]):
        by_day.setdefault(v["date"].strftime("%Y-%m-%d"), []).append(v)
    trend = []
    for day, rows in by_day.items():
        entry = {"date": day, "revenue": sum(r.get("final_total") or 0 for r in rows), "visits": len(rows)}
        if commission_pct is not None:
            entry["commission"] = commission_for(rows, commission_pct, basis)
        trend.append(entry)
    return trend


def artist_leaderboard(visits: List[Dict[str, Any]], artists: List[Dict[str, Any]], basis: str = "current") -> List[Dict[str, Any]]:
    """Rank artists by revenue. Visits by unknown or removed artists are grouped by name."""
    by_id = {str(a["_id"]): a for a in artists}
    by_name = {a["name"]: a for a in artists}
    groups: Dict[str, Dict[str, Any]] = {}
    for v in visits:
        artist = by_id.get(v.get("artist_id") or "") or by_name.get(v.get("artist"))
        key = str(artist["_id"]) if artist else "name:" + (v.get("artist") or "")
        group = groups.setdefault(key, {"artist": artist, "name": artist["name"] if artist else v.get("artist"), "visits": []})
        group["visits"].append(v)

    board = []
    for group in groups.values():
        artist = group["artist"]
        pct = (artist or {}).get("commission", 0) or 0
        rows = group["visits"]
        board.append({
            "artist_id": str(artist["_id"]) if artist else None,
            "name": group["name"],
            "revenue": sum(r.get("final_total") or 0 for r in rows),
            "visits": len(rows),
            "unique_customers": len({r.get("contact") for r in rows}),
            "hours_worked": round(sum(calc_hours(r.get("start_time"), r.get("end_time")) for r in rows), 1),
            "commission_pct": pct,
            "commission_earned": commission_for(rows, pct, basis),
        })
    board.sort(key=lambda b: (-b["revenue"], b["name"] or ""))
    for rank, row in enumerate(board, start=1):
        row["rank"] = rank
    return board


def load_visits(query: Dict[str, Any]) -> List[Dict[str, Any]]:
    return list(require_db()["visit"].find(query))
