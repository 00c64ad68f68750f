"""
Payment ledger.

Every gateway order or payment link the desk creates gets a `payment`
document. Its status moves

    created -> verified -> claimed -> reconciled (or unreconciled)

`verified` only after a callback signature checked out, `claimed` while a
visit is being written against it, and `unreconciled` when the money was
collected but the visit write failed. Unreconciled entries keep the visit
draft so the owner can retry the write later.
"""

from typing import Any, Dict, List, Optional

from pymongo import ReturnDocument

from billing import BillingError, to_minor_units
from database import create_document, require_db, utcnow
from gateway import PaymentVerificationError
from logger import get_logger
from schemas import Payment

logger = get_logger(__name__)

_PAST_CREATED = ("verified", "claimed", "reconciled", "unreconciled")


def record_order(order: Dict[str, Any], name: str, phone: str, created_by: Optional[str]) -> str:
    entry = Payment(kind="order", amount_paise=order["amount"], name=name, phone=phone, created_by=created_by)
    return create_document("payment", {**entry.model_dump(), "order_id": order["id"]})


def record_payment_link(link: Dict[str, Any], name: str, phone: str, created_by: Optional[str]) -> str:
    entry = Payment(kind="payment_link", amount_paise=link["amount"], name=name, phone=phone, created_by=created_by)
    return create_document("payment", {**entry.model_dump(), "link_id": link["id"]})


def _mark_verified(query: Dict[str, Any], payment_id: str, unknown: str, extra: Optional[Dict] = None) -> Dict[str, Any]:
    db = require_db()
    entry = db["payment"].find_one(query)
    if entry is None:
        raise PaymentVerificationError(unknown)
    if entry.get("status") in _PAST_CREATED:
        if entry.get("payment_id") != payment_id:
            raise PaymentVerificationError("Payment already verified with a different payment id")
        return entry
    updates = {"status": "verified", "payment_id": payment_id, "verified_at": utcnow(), "updated_at": utcnow()}
    updates.update(extra or {})
    updated = db["payment"].find_one_and_update(
        {**query, "status": "created"},
        {"$set": updates},
        return_document=ReturnDocument.AFTER,
    )
    if updated is None:
        # a concurrent callback won; accept it only if it carried the same payment
        return _mark_verified(query, payment_id, unknown, extra)
    logger.info("[PAYMENT] Verified payment %s", payment_id)
    return updated


def mark_order_verified(order_id: str, payment_id: str) -> Dict[str, Any]:
    return _mark_verified({"kind": "order", "order_id": order_id}, payment_id, "Unknown payment order")


def mark_link_verified(link_id: str, payment_id: str, payment: Dict[str, Any]) -> Dict[str, Any]:
    extra = {"gateway_status": payment.get("status"), "paid_paise": payment.get("amount")}
    return _mark_verified({"kind": "payment_link", "link_id": link_id}, payment_id, "Unknown payment link", extra)


def claim_payment(payment_id: str, online_amount) -> Dict[str, Any]:
    """
    Reserve a verified payment for one visit.

    The payment must exist, be verified and not yet used, and its amount must
    equal the online portion of the bill.
    """
    db = require_db()
    entry = db["payment"].find_one({"payment_id": payment_id})
    if entry is None or entry.get("status") == "created":
        raise PaymentVerificationError("Payment has not been verified")
    if entry.get("status") != "verified":
        raise PaymentVerificationError("Payment has already been used for a visit")
    if entry.get("amount_paise") != to_minor_units(online_amount):
        raise BillingError("Payment amount does not match the online amount due")
    claimed = db["payment"].find_one_and_update(
        {"_id": entry["_id"], "status": "verified"},
        {"$set": {"status": "claimed", "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
    if claimed is None:
        raise PaymentVerificationError("Payment has already been used for a visit")
    return claimed


def mark_reconciled(payment_id: str, visit_id: str) -> None:
    require_db()["payment"].update_one(
        {"payment_id": payment_id},
        {"$set": {"status": "reconciled", "visit_id": visit_id, "updated_at": utcnow()},
         "$unset": {"visit_draft": "", "last_error": ""}},
    )


def mark_unreconciled(payment_id: str, visit_draft: Dict[str, Any], error: str) -> None:
    require_db()["payment"].update_one(
        {"payment_id": payment_id},
        {"$set": {"status": "unreconciled", "visit_draft": visit_draft,
                  "last_error": error, "updated_at": utcnow()}},
    )


def list_unreconciled() -> List[Dict[str, Any]]:
    """Payments holding money that no visit accounts for yet."""
    db = require_db()
    return list(
        db["payment"].find({"status": {"$in": ["verified", "claimed", "unreconciled"]}}).sort("updated_at", -1)
    )


def claim_unreconciled(payment_id: str) -> Optional[Dict[str, Any]]:
    """Take an unreconciled payment for a retry; None if another retry already holds it."""
    return require_db()["payment"].find_one_and_update(
        {"payment_id": payment_id, "status": "unreconciled", "visit_draft": {"$exists": True}},
        {"$set": {"status": "claimed", "updated_at": utcnow()}},
        return_document=ReturnDocument.AFTER,
    )
