"""
Razorpay integration.

Wraps the razorpay SDK client for the three calls the desk needs (orders,
payment links, payment lookup) and checks callback signatures through the
SDK utility.
"""

import time
from typing import Any, Dict, Optional

import razorpay
import requests
from razorpay.errors import BadRequestError, GatewayError as RazorpayGatewayError, ServerError, SignatureVerificationError

from config import Config
from logger import get_logger

logger = get_logger(__name__)

_SDK_ERRORS = (BadRequestError, RazorpayGatewayError, ServerError, requests.RequestException)


class GatewayNotConfigured(Exception):
    pass


class GatewayError(Exception):
    """The gateway could not be reached or refused the call."""

    def __init__(self, message: str, details: str = ""):
        super().__init__(message)
        self.message = message
        self.details = details


class PaymentVerificationError(Exception):
    """Callback data failed an integrity check. Nothing was written."""


class RazorpayGateway:
    def __init__(self, key_id: str, key_secret: str, client: Any = None):
        self.key_id = key_id
        self.key_secret = key_secret
        self.client = client or razorpay.Client(auth=(key_id, key_secret))

    def _call(self, action: str, fn, *args) -> Dict[str, Any]:
        try:
            return fn(*args)
        except _SDK_ERRORS as e:
            logger.exception("[PAYMENT] %s failed", action)
            raise GatewayError(f"Failed to {action}", str(e)) from e

    def create_order(self, amount_paise: int, name: str, phone: str, amount_inr: str) -> Dict[str, Any]:
        data = {
            "amount": amount_paise,
            "currency": Config.CURRENCY,
            "receipt": f"receipt_{int(time.time() * 1000)}",
            "notes": {
                "customer_name": name,
                "customer_phone": phone,
                "amount_inr": amount_inr,
            },
        }
        return self._call("create order", self.client.order.create, data)

    def create_payment_link(self, amount_paise: int, name: str, phone: str, amount_inr: str) -> Dict[str, Any]:
        data = {
            "amount": amount_paise,
            "currency": Config.CURRENCY,
            "accept_partial": False,
            "description": "Salon Visit Payment",
            "customer": {"name": name, "contact": "+91" + phone},
            "notify": {"sms": True, "email": False},
            "reminder_enable": False,
            "notes": {
                "customer_name": name,
                "customer_phone": phone,
                "amount_inr": amount_inr,
            },
            "callback_url": f"{Config.FRONTEND_URL}/payment-status",
            "callback_method": "get",
        }
        return self._call("create payment link", self.client.payment_link.create, data)

    def fetch_payment(self, payment_id: str) -> Dict[str, Any]:
        return self._call("fetch payment details", self.client.payment.fetch, payment_id)

    def _verify(self, check, parameters: Dict[str, str], what: str) -> None:
        try:
            valid = check({**parameters, "secret": self.key_secret})
        except SignatureVerificationError:
            valid = False
        if not valid:
            logger.warning("[PAYMENT] Signature mismatch for %s", what)
            raise PaymentVerificationError("Invalid payment signature")

    def verify_order_signature(self, order_id: str, payment_id: str, signature: str) -> None:
        self._verify(
            self.client.utility.verify_payment_signature,
            {
                "razorpay_order_id": order_id,
                "razorpay_payment_id": payment_id,
                "razorpay_signature": signature or "",
            },
            f"order {order_id}",
        )

    def verify_payment_link_signature(self, link_id: str, reference_id: Optional[str], status: Optional[str],
                                      payment_id: str, signature: str) -> None:
        # the SDK skips the check unless all three link fields are present
        self._verify(
            self.client.utility.verify_payment_link_signature,
            {
                "razorpay_payment_id": payment_id,
                "razorpay_payment_link_id": link_id or "",
                "razorpay_payment_link_reference_id": reference_id or "",
                "razorpay_payment_link_status": status or "",
                "razorpay_signature": signature or "",
            },
            f"payment link {link_id}",
        )


_gateway: Optional[RazorpayGateway] = None


def get_gateway() -> RazorpayGateway:
    """FastAPI dependency: the configured gateway, built on first use."""
    global _gateway
    if _gateway is None:
        if not (Config.RAZORPAY_KEY_ID and Config.RAZORPAY_KEY_SECRET):
            raise GatewayNotConfigured("Payment service not configured")
        _gateway = RazorpayGateway(Config.RAZORPAY_KEY_ID, Config.RAZORPAY_KEY_SECRET)
    return _gateway
