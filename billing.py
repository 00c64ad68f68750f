"""
Visit billing.

Turns a set of selected service ids and a discount percentage into an
authoritative bill, then splits the final total across cash and the gateway
according to the payment method chosen at the desk. Nothing here trusts a
total sent by the client.
"""

from dataclasses import dataclass
from decimal import Decimal, ROUND_HALF_UP, InvalidOperation
from typing import Dict, Iterable, List, Optional

from database import require_db, to_object_id

PAYMENT_METHODS = ("online", "cash", "partial")
PARTIAL_SPLIT_ERROR = "Cash amount must be between ₹1 and total minus ₹1 for partial payment"


class BillingError(Exception):
    """A billing rule was violated; the message is safe to show the operator."""


@dataclass(frozen=True)
class Bill:
    subtotal: float
    discount_percent: float
    discount_amount: int
    final_total: float


@dataclass(frozen=True)
class PaymentSplit:
    method: str
    cash_amount: float
    online_amount: float
    payment_id: Optional[str]


def _round(value, places: str = "1") -> Decimal:
    return Decimal(str(value)).quantize(Decimal(places), rounding=ROUND_HALF_UP)


def _number(value) -> float:
    # ints stay ints in stored documents and JSON
    f = float(value)
    return int(f) if f.is_integer() else f


def parse_discount_percent(raw) -> float:
    """Read a discount from form input. Garbage becomes 0, the rest is clamped to 0-100."""
    if raw is None or isinstance(raw, bool):
        return 0
    try:
        pct = Decimal(str(raw).strip() or "0")
    except InvalidOperation:
        return 0
    if not pct.is_finite():
        return 0
    return _number(min(Decimal(100), max(Decimal(0), pct)))


def calculate_bill(prices: Iterable[float], discount_percent=0) -> Bill:
    subtotal = sum((Decimal(str(p)) for p in prices), Decimal(0))
    pct = parse_discount_percent(discount_percent)
    discount_amount = int(_round(subtotal * Decimal(str(pct)) / 100))
    final_total = max(Decimal(0), subtotal - discount_amount)
    return Bill(
        subtotal=_number(subtotal),
        discount_percent=pct,
        discount_amount=discount_amount,
        final_total=_number(final_total),
    )


def to_minor_units(amount) -> int:
    """Rupees to paise, rounding half-up."""
    return int(_round(Decimal(str(amount)) * 100))


def resolve_services(service_ids: List[str]) -> List[Dict]:
    """
    Look up the selected services in the catalog and snapshot name + price.

    Ids that are malformed, unknown or deactivated are dropped silently; if
    nothing valid remains the request cannot be billed.
    """
    ids = []
    for sid in service_ids:
        oid = to_object_id(sid)
        if oid is not None and oid not in ids:
            ids.append(oid)
    docs = []
    if ids:
        db = require_db()
        by_id = {d["_id"]: d for d in db["service"].find({"_id": {"$in": ids}, "is_active": True})}
        docs = [by_id[i] for i in ids if i in by_id]
    if not docs:
        raise BillingError("No valid active services found")
    return [{"name": d["name"], "price": _number(d["price"])} for d in docs]


def resolve_payment(method: str, final_total, cash_amount=None, payment_id: Optional[str] = None) -> PaymentSplit:
    if method not in PAYMENT_METHODS:
        raise BillingError("Payment method must be online, cash or partial")
    total = Decimal(str(final_total))
    payment_id = (payment_id or "").strip() or None

    if method == "cash":
        return PaymentSplit("cash", _number(total), 0, None)

    if not payment_id:
        raise BillingError("Payment ID is required")

    if method == "online":
        return PaymentSplit("online", 0, _number(total), payment_id)

    try:
        cash = _round(cash_amount if cash_amount is not None else 0, "0.01")
    except InvalidOperation:
        raise BillingError(PARTIAL_SPLIT_ERROR)
    if not cash.is_finite() or cash <= 0 or total - cash < 1:
        raise BillingError(PARTIAL_SPLIT_ERROR)
    return PaymentSplit("partial", _number(cash), _number(total - cash), payment_id)
