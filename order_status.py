"""
Order status lifecycle.

    created -> paid -> processing -> shipped -> delivered
    cancelled and refunded are side exits.

Buyers may only cancel, sellers may only advance paid -> processing -> shipped,
admins may set any status except the regressions in ADMIN_DENYLIST. Every
transition appends to status_history; entries are never edited.
"""
import logging
from typing import Optional

from database import get_db, now_utc
from errors import StateConflictFault, TransitionFault, ValidationFault

logger = logging.getLogger(__name__)

STATUSES = ("created", "paid", "processing", "shipped", "delivered", "cancelled", "refunded")
PAYMENT_CONFIRMED = ("paid", "processing", "shipped", "delivered")
CANCELLABLE = ("created", "paid", "processing")

SELLER_STATUSES = ("processing", "shipped")
SELLER_TRANSITIONS = {
    "paid": ("processing",),
    "processing": ("shipped",),
}

# (from, to) pairs an admin may not apply
ADMIN_DENYLIST = {
    ("delivered", "created"),
    ("delivered", "paid"),
    ("delivered", "processing"),
    ("processing", "cancelled"),
    ("shipped", "cancelled"),
    ("delivered", "cancelled"),
    ("created", "refunded"),
}


def history_entry(status: str, note: Optional[str] = None) -> dict:
    return {"status": status, "timestamp": now_utc(), "note": note}


def check_buyer_cancel(current: str):
    if current not in CANCELLABLE:
        raise StateConflictFault(f'Cannot cancel order with status "{current}"')


def check_seller_transition(current: str, target: str):
    if target not in SELLER_STATUSES:
        raise ValidationFault(f"Invalid status. Sellers can set: {', '.join(SELLER_STATUSES)}")
    allowed = SELLER_TRANSITIONS.get(current, ())
    if target not in allowed:
        raise TransitionFault(current, target, allowed)


def check_admin_transition(current: str, target: str):
    if target not in STATUSES:
        raise ValidationFault(f"Invalid status. Allowed: {', '.join(STATUSES)}")
    if current == target:
        raise StateConflictFault(f'Order is already "{current}"')
    if (current, target) in ADMIN_DENYLIST:
        raise TransitionFault(current, target)


def apply_transition(order: dict, target: str, note: str, extra: Optional[dict] = None, session=None) -> dict:
    """Move ``order`` to ``target`` if nobody changed its status in the meantime.

    The filter on the previous status makes the write a compare-and-set, so two
    racing transitions cannot both append history.
    """
    update = {
        "$set": {"status": target, "updated_at": now_utc(), **(extra or {})},
        "$push": {"status_history": history_entry(target, note)},
    }
    res = get_db()["order"].update_one({"_id": order["_id"], "status": order["status"]}, update, session=session)
    if res.matched_count == 0:
        raise StateConflictFault("Order status changed, please retry")
    logger.info("Order %s: %s -> %s", order.get("order_number"), order["status"], target)
    return get_db()["order"].find_one({"_id": order["_id"]}, session=session)
