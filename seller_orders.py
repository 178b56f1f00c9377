"""
Seller view of multi-vendor orders.

An order document is shared by every seller whose products it contains. A
seller only ever sees a projection of it: their own line items and their own
subtotal. Orders with none of the seller's items are reported as not found so
their existence is not confirmed.
"""
import logging
from typing import Optional

from database import get_db, to_obj_id
from errors import NotFoundFault
import order_status
from orders import page_params, pagination

logger = logging.getLogger(__name__)

NOT_FOUND = "Order not found or does not contain your products"

LIST_FIELDS = ("order_number", "user_id", "guest_info", "shipping_address", "status", "payment_info", "created_at")
DETAIL_FIELDS = LIST_FIELDS + ("status_history", "notes", "updated_at")


def project_for_seller(order: dict, seller_id: str, fields=DETAIL_FIELDS) -> dict:
    items = [it for it in order.get("items", []) if it.get("seller_id") == seller_id]
    view = {"id": str(order["_id"])}
    for field in fields:
        if field in order:
            view[field] = order[field]
    payment = view.get("payment_info")
    if payment:
        # order-level amounts and signatures belong to the buyer/platform, not one seller
        view["payment_info"] = {"status": payment.get("status"), "paid_at": payment.get("paid_at")}
    view["items"] = items
    view["seller_total"] = sum(it["item_total"] for it in items)
    return view


def list_seller_orders(seller_id: str, status: Optional[str] = None, page: int = 1, limit: int = 10) -> dict:
    query = {"items.seller_id": seller_id}
    if status:
        query["status"] = status
    page, limit, skip = page_params(page, limit)
    coll = get_db()["order"]
    total = coll.count_documents(query)
    docs = coll.find(query).sort("created_at", -1).skip(skip).limit(limit)
    return {
        "orders": [project_for_seller(d, seller_id, LIST_FIELDS) for d in docs],
        "pagination": pagination(total, page, limit),
    }


def _find_seller_order(seller_id: str, order_id: str) -> dict:
    oid = to_obj_id(order_id, not_found_message=NOT_FOUND)
    order = get_db()["order"].find_one({"_id": oid, "items.seller_id": seller_id})
    if not order:
        raise NotFoundFault(NOT_FOUND)
    return order


def get_seller_order_by_id(seller_id: str, order_id: str) -> dict:
    return project_for_seller(_find_seller_order(seller_id, order_id), seller_id)


def update_order_status_seller(seller_id: str, order_id: str, status: str, note: Optional[str] = None) -> dict:
    # ownership first: a foreign order must look missing whatever status was asked for
    order = _find_seller_order(seller_id, order_id)
    order_status.check_seller_transition(order["status"], status)
    updated = order_status.apply_transition(order, status, note or f"Status updated to {status} by seller")
    logger.info("Seller %s moved order %s to %s", seller_id, order["order_number"], status)
    return project_for_seller(updated, seller_id)
