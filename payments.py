"""Payment intents, verification and gateway webhooks."""
import json
import logging
import time
from typing import Optional

import gateway
from database import get_db, now_utc, serialize_doc, to_obj_id
from errors import (
    AuthorizationFault,
    NotFoundFault,
    PaymentVerificationFault,
    StateConflictFault,
    ValidationFault,
)
from order_status import history_entry

logger = logging.getLogger(__name__)


def _load_order(order_id: str) -> dict:
    order = get_db()["order"].find_one({"_id": to_obj_id(order_id)})
    if not order:
        raise NotFoundFault("Order not found")
    return order


def _check_owner(order: dict, actor: Optional[dict]):
    # guest orders carry no owner and are payable by whoever holds the id
    owner = order.get("user_id")
    if not owner:
        return
    if actor is None or (actor["id"] != owner and actor.get("role") != "admin"):
        raise AuthorizationFault("Not authorized to pay for this order")


def _intent_response(order: dict, amount: int, currency: str, message: str) -> dict:
    return {
        "gateway_order_id": order["payment_info"]["gateway_order_id"],
        "amount": amount,
        "currency": currency,
        "order_id": str(order["_id"]),
        "order_number": order["order_number"],
        "key_id": gateway.key_id(),
        "message": message,
    }


def create_payment_intent(order_id: str, actor: Optional[dict] = None) -> dict:
    order = _load_order(order_id)
    _check_owner(order, actor)
    if order["status"] != "created":
        raise StateConflictFault(f'Cannot initiate payment for order with status "{order["status"]}"')

    amount = gateway.to_minor_units(order["total_amount"])
    if order["payment_info"].get("gateway_order_id"):
        logger.info("Reusing gateway order %s for %s", order["payment_info"]["gateway_order_id"], order["order_number"])
        return _intent_response(order, amount, gateway.currency(), "Payment order already exists")

    intent = gateway.create_gateway_order(
        amount,
        receipt=order["order_number"],
        notes={"order_id": str(order["_id"]), "order_number": order["order_number"]},
    )
    res = get_db()["order"].update_one(
        {"_id": order["_id"], "payment_info.gateway_order_id": None},
        {"$set": {"payment_info.gateway_order_id": intent["id"], "updated_at": now_utc()}},
    )
    order = _load_order(order_id)
    if res.matched_count == 0:
        # a concurrent request attached its intent first; hand that one out
        logger.info("Discarding gateway order %s, %s already has one", intent["id"], order["order_number"])
        return _intent_response(order, amount, gateway.currency(), "Payment order already exists")
    logger.info("Created gateway order %s for %s", intent["id"], order["order_number"])
    return _intent_response(order, intent["amount"], intent["currency"], "Payment order created")


def verify_payment(gateway_order_id: str, gateway_payment_id: str, signature: str, order_id: str) -> dict:
    if not (gateway_order_id and gateway_payment_id and signature and order_id):
        raise ValidationFault("Missing payment verification data")
    order = _load_order(order_id)
    if order["payment_info"].get("status") == "paid":
        raise StateConflictFault("Order is already paid")
    if order["status"] != "created":
        raise StateConflictFault(f'Cannot verify payment for order with status "{order["status"]}"')
    if order["payment_info"].get("gateway_order_id") != gateway_order_id:
        raise ValidationFault("Order ID mismatch")

    expected = gateway.payment_signature(gateway_order_id, gateway_payment_id)
    if not gateway.signature_matches(expected, signature):
        get_db()["order"].update_one(
            {"_id": order["_id"]},
            {
                "$set": {"payment_info.status": "failed", "updated_at": now_utc()},
                "$push": {"status_history": history_entry(order["status"], "Payment verification failed - invalid signature")},
            },
        )
        logger.warning("Signature mismatch for order %s (payment %s)", order["order_number"], gateway_payment_id)
        raise PaymentVerificationFault()

    paid_at = now_utc()
    res = get_db()["order"].update_one(
        {"_id": order["_id"], "status": "created"},
        {
            "$set": {
                "status": "paid",
                "payment_info.gateway_payment_id": gateway_payment_id,
                "payment_info.signature": signature,
                "payment_info.status": "paid",
                "payment_info.paid_at": paid_at,
                "updated_at": paid_at,
            },
            "$push": {"status_history": history_entry("paid", "Payment received successfully")},
        },
    )
    if res.matched_count == 0:
        raise StateConflictFault("Order status changed, please retry")
    logger.info("Payment %s verified for order %s", gateway_payment_id, order["order_number"])
    return {"order": serialize_doc(_load_order(order_id)), "payment_id": gateway_payment_id}


def retry_payment(order_id: str, actor: Optional[dict] = None) -> dict:
    """Issue a fresh gateway order; the previous one is abandoned."""
    order = _load_order(order_id)
    _check_owner(order, actor)
    if order["status"] != "created" or order["payment_info"].get("status") == "paid":
        raise StateConflictFault("Cannot retry payment for this order")

    amount = gateway.to_minor_units(order["total_amount"])
    intent = gateway.create_gateway_order(
        amount,
        receipt=f"{order['order_number']}-retry-{int(time.time() * 1000)}",
        notes={"order_id": str(order["_id"]), "order_number": order["order_number"], "retry": "true"},
    )
    get_db()["order"].update_one(
        {"_id": order["_id"]},
        {"$set": {"payment_info.gateway_order_id": intent["id"], "payment_info.status": "pending", "updated_at": now_utc()}},
    )
    logger.info("Retry gateway order %s issued for %s", intent["id"], order["order_number"])
    return _intent_response(_load_order(order_id), intent["amount"], intent["currency"], "New payment order created for retry")


def get_payment_status(order_id: str) -> dict:
    order = _load_order(order_id)
    return {
        "order_number": order["order_number"],
        "payment_status": order["payment_info"].get("status"),
        "order_status": order["status"],
        "paid_at": order["payment_info"].get("paid_at"),
    }


# -----------------------------
# Webhook
# -----------------------------

def verify_webhook_signature(raw_body: bytes, signature: Optional[str]):
    secret = gateway.webhook_secret()
    if not secret:
        return
    if not gateway.signature_matches(gateway.sign(secret, raw_body), signature):
        logger.error("Webhook signature verification failed")
        raise PaymentVerificationFault()


def _on_payment_captured(payload: dict):
    payment = payload["payment"]["entity"]
    orders = get_db()["order"]
    order = orders.find_one({"payment_info.gateway_order_id": payment.get("order_id")})
    if not order:
        logger.warning("Captured payment %s references unknown gateway order %s", payment.get("id"), payment.get("order_id"))
        return
    if order["payment_info"].get("status") == "paid":
        logger.info("Duplicate capture for order %s ignored", order["order_number"])
        return

    paid_at = now_utc()
    update = {
        "payment_info.gateway_payment_id": payment.get("id"),
        "payment_info.status": "paid",
        "payment_info.method": payment.get("method"),
        "payment_info.paid_at": paid_at,
        "updated_at": paid_at,
    }
    if order["status"] == "created":
        update["status"] = "paid"
        entry = history_entry("paid", "Payment captured via webhook")
    else:
        entry = history_entry(order["status"], f'Payment captured via webhook while order was "{order["status"]}"')
    res = orders.update_one(
        {"_id": order["_id"], "payment_info.status": {"$ne": "paid"}, "status": order["status"]},
        {"$set": update, "$push": {"status_history": entry}},
    )
    if res.modified_count:
        logger.info("Order %s marked as paid via webhook", order["order_number"])


def _on_payment_failed(payload: dict):
    payment = payload["payment"]["entity"]
    orders = get_db()["order"]
    order = orders.find_one({"payment_info.gateway_order_id": payment.get("order_id")})
    if not order:
        logger.warning("Failed payment references unknown gateway order %s", payment.get("order_id"))
        return
    if order["payment_info"].get("status") in ("paid", "refunded"):
        logger.info("Late failure event for settled order %s ignored", order["order_number"])
        return
    reason = payment.get("error_description") or "Unknown error"
    orders.update_one(
        {"_id": order["_id"]},
        {
            "$set": {"payment_info.status": "failed", "updated_at": now_utc()},
            "$push": {"status_history": history_entry(order["status"], f"Payment failed: {reason}")},
        },
    )
    logger.info("Order %s payment failed via webhook: %s", order["order_number"], reason)


def _on_refund_created(payload: dict):
    refund = payload["refund"]["entity"]
    orders = get_db()["order"]
    order = orders.find_one({"payment_info.gateway_payment_id": refund.get("payment_id")})
    if not order:
        logger.warning("Refund %s references unknown payment %s", refund.get("id"), refund.get("payment_id"))
        return
    if order["status"] == "refunded":
        return
    orders.update_one(
        {"_id": order["_id"], "status": order["status"]},
        {
            "$set": {"payment_info.status": "refunded", "status": "refunded", "updated_at": now_utc()},
            "$push": {"status_history": history_entry("refunded", f"Refund processed: {refund.get('id')}")},
        },
    )
    logger.info("Order %s refunded via webhook", order["order_number"])


WEBHOOK_HANDLERS = {
    "payment.captured": _on_payment_captured,
    "payment.failed": _on_payment_failed,
    "refund.created": _on_refund_created,
}


def handle_webhook(raw_body: bytes, signature: Optional[str]) -> dict:
    """Apply a gateway event. Anything past signature checking is acknowledged."""
    verify_webhook_signature(raw_body, signature)
    try:
        event = json.loads(raw_body or b"{}")
    except ValueError:
        logger.error("Webhook body is not valid JSON")
        return {"received": True}

    event_type = event.get("event")
    logger.info("Gateway webhook event: %s", event_type)
    handler = WEBHOOK_HANDLERS.get(event_type)
    if handler is None:
        logger.info("Unhandled webhook event: %s", event_type)
        return {"received": True}
    try:
        handler(event.get("payload") or {})
    except Exception:
        # acknowledged anyway so the gateway does not keep redelivering
        logger.exception("Webhook %s could not be applied", event_type)
    return {"received": True}
