"""
Visit record writer.

A visit is written exactly once, after cash was taken or after the gateway
payment behind it was verified, and is never updated afterwards. Prices and
the artist name are snapshotted so later catalog or directory edits do not
rewrite history.
"""

from dataclasses import dataclass
from datetime import date, datetime, time
from typing import Any, Dict, List, Optional, Tuple

from pymongo.errors import PyMongoError

import payments
from billing import BillingError, calculate_bill, resolve_payment, resolve_services
from database import create_document, get_documents, require_db, to_object_id
from logger import get_logger
from schemas import Visit

logger = get_logger(__name__)

WRITE_FAILED_WARNING = "visit record creation failed"


@dataclass
class VisitOutcome:
    visit_id: Optional[str]
    final_total: float
    payment_id: Optional[str] = None
    warning: Optional[str] = None


def resolve_artist(name: str, artist_id: Optional[str]) -> Tuple[str, Optional[str], Optional[float]]:
    """Return (display name, artist id, current commission) for the visit snapshot."""
    db = require_db()
    if artist_id:
        oid = to_object_id(artist_id)
        doc = db["artist"].find_one({"_id": oid}) if oid else None
        if doc is None:
            raise BillingError("Artist not found")
    else:
        doc = db["artist"].find_one({"name": name, "is_active": True})
    if doc is None:
        return name, None, None
    return doc["name"], str(doc["_id"]), doc.get("commission", 0)


def build_visit(data: Dict[str, Any], filled_by: str) -> Dict[str, Any]:
    """Validate and price a visit submission. Raises BillingError on any rule violation."""
    services = resolve_services(data["service_ids"])
    bill = calculate_bill([s["price"] for s in services], data.get("discount_percent", 0))
    split = resolve_payment(
        data["payment_method"], bill.final_total, data.get("cash_amount"), data.get("razorpay_payment_id")
    )
    artist, artist_id, commission = resolve_artist(data["artist"], data.get("artist_id"))

    visit_date = data["date"]
    if isinstance(visit_date, date) and not isinstance(visit_date, datetime):
        visit_date = datetime.combine(visit_date, time())

    visit = Visit(
        name=data["name"],
        contact=data["contact"],
        age=data["age"],
        gender=data["gender"],
        date=visit_date,
        start_time=data["start_time"],
        end_time=data["end_time"],
        artist=artist,
        artist_id=artist_id,
        artist_commission=commission,
        service_type=data.get("service_type") or None,
        services=services,
        filled_by=filled_by or "Unknown",
        subtotal=bill.subtotal,
        discount_percent=bill.discount_percent,
        discount_amount=bill.discount_amount,
        final_total=bill.final_total,
        payment_method=split.method,
        cash_amount=split.cash_amount,
        online_amount=split.online_amount,
        payment_status="success",
        razorpay_payment_id=split.payment_id,
    )
    return visit.model_dump()


def create_visit(data: Dict[str, Any], filled_by: str) -> VisitOutcome:
    doc = build_visit(data, filled_by)
    payment_id = doc["razorpay_payment_id"]
    if payment_id:
        payments.claim_payment(payment_id, doc["online_amount"])

    try:
        visit_id = create_document("visit", doc)
    except PyMongoError as e:
        if not payment_id:
            raise
        logger.error("[VISITS] Payment %s collected but visit write failed: %s", payment_id, e)
        try:
            payments.mark_unreconciled(payment_id, doc, str(e))
        except PyMongoError:
            logger.critical("[VISITS] Could not record unreconciled payment %s; draft=%s", payment_id, doc)
            raise
        return VisitOutcome(None, doc["final_total"], payment_id, WRITE_FAILED_WARNING)

    if payment_id:
        try:
            payments.mark_reconciled(payment_id, visit_id)
        except PyMongoError:
            logger.exception("[VISITS] Visit %s written but payment %s not marked reconciled", visit_id, payment_id)
    logger.info("[VISITS] Created visit %s total=%s method=%s", visit_id, doc["final_total"], doc["payment_method"])
    return VisitOutcome(visit_id, doc["final_total"], payment_id)


def retry_reconciliation(payment_id: str) -> str:
    """Write the stored visit draft of an unreconciled payment. Returns the new visit id."""
    entry = payments.claim_unreconciled(payment_id)
    if entry is None:
        raise LookupError("No unreconciled payment with this id")
    draft = dict(entry["visit_draft"])
    draft.pop("_id", None)
    try:
        visit_id = create_document("visit", draft)
    except PyMongoError as e:
        payments.mark_unreconciled(payment_id, entry["visit_draft"], str(e))
        raise
    payments.mark_reconciled(payment_id, visit_id)
    logger.info("[VISITS] Reconciled payment %s into visit %s", payment_id, visit_id)
    return visit_id



def list_visits(query: Dict[str, Any], limit: int = 200) -> List[Dict[str, Any]]:
    return get_documents("visit", query, sort=[("date", -1)], limit=limit)
