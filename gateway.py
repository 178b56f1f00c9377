"""
Razorpay gateway client.

Talks to the Orders REST API with ``requests``. When RAZORPAY_KEY_ID /
RAZORPAY_KEY_SECRET are not set a local mock order is returned so the
checkout flow works without credentials.
"""
import os
import hmac
import hashlib
import logging
from typing import Optional

import requests
from bson import ObjectId

from errors import GatewayFault

logger = logging.getLogger(__name__)

RAZORPAY_ORDERS_URL = "https://api.razorpay.com/v1/orders"
MOCK_SECRET = "mock_secret"


def currency() -> str:
    return os.getenv("PAYMENT_CURRENCY", "INR")


def key_id() -> Optional[str]:
    return os.getenv("RAZORPAY_KEY_ID")


def key_secret() -> str:
    return os.getenv("RAZORPAY_KEY_SECRET") or MOCK_SECRET


def webhook_secret() -> Optional[str]:
    return os.getenv("RAZORPAY_WEBHOOK_SECRET") or None


def to_minor_units(amount: float) -> int:
    return int(round(amount * 100))


def create_gateway_order(amount_minor: int, receipt: str, notes: Optional[dict] = None) -> dict:
    """Create a provider order and return ``{"id", "amount", "currency"}``."""
    kid = key_id()
    secret = os.getenv("RAZORPAY_KEY_SECRET")
    payload = {"amount": amount_minor, "currency": currency(), "receipt": receipt[:40], "notes": notes or {}}

    if not (kid and secret):
        mock_id = f"order_{ObjectId()}"
        logger.info("Razorpay keys not set, issued mock gateway order %s", mock_id)
        return {"id": mock_id, "amount": amount_minor, "currency": payload["currency"]}

    try:
        resp = requests.post(RAZORPAY_ORDERS_URL, auth=(kid, secret), json=payload, timeout=10)
    except requests.RequestException:
        logger.exception("Razorpay order creation request failed")
        raise GatewayFault()
    if resp.status_code >= 300:
        logger.error("Razorpay order creation failed: %s %s", resp.status_code, resp.text[:200])
        raise GatewayFault()
    data = resp.json()
    return {"id": data["id"], "amount": data.get("amount", amount_minor), "currency": data.get("currency", payload["currency"])}


def sign(secret: str, message) -> str:
    if isinstance(message, str):
        message = message.encode()
    return hmac.new(secret.encode(), message, hashlib.sha256).hexdigest()


def signature_matches(expected: str, supplied: Optional[str]) -> bool:
    if not supplied:
        return False
    return hmac.compare_digest(expected, supplied)


def payment_signature(gateway_order_id: str, gateway_payment_id: str) -> str:
    return sign(key_secret(), f"{gateway_order_id}|{gateway_payment_id}")
