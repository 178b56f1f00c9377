"""
Seller onboarding and admin review.

Seller permissions come from the profile status alone (see auth.require_seller);
no role flag on the user is kept in sync with it.
"""
import logging
from typing import Optional

from pymongo.errors import DuplicateKeyError

from database import create_document, get_db, now_utc, serialize_doc, to_obj_id
from errors import NotFoundFault, StateConflictFault, ValidationFault
from schemas import Seller, SellerRegister

logger = logging.getLogger(__name__)

SELLER_STATUSES = ("pending", "approved", "rejected", "suspended")

# target status -> statuses it may be reached from
REVIEW_SOURCES = {
    "approved": ("pending", "rejected", "suspended"),
    "rejected": ("pending", "approved"),
    "suspended": ("approved",),
}


def register_seller(user_id: str, payload: SellerRegister) -> dict:
    coll = get_db()["seller"]
    if coll.find_one({"user_id": user_id}):
        raise ValidationFault("User already has a seller profile")
    if coll.find_one({"store_name": payload.store_name}):
        raise ValidationFault("Store name is already taken")
    data = payload.model_dump()
    data["business_details"]["pan"] = data["business_details"]["pan"].strip().upper()
    seller = Seller(user_id=user_id, **data)
    try:
        sid = create_document("seller", seller)
    except DuplicateKeyError:
        raise ValidationFault("Seller profile or store name already exists")
    logger.info("Seller application %s submitted by user %s", sid, user_id)
    return get_seller(sid)


def get_seller(seller_id: str) -> dict:
    doc = get_db()["seller"].find_one({"_id": to_obj_id(seller_id)})
    if not doc:
        raise NotFoundFault("Seller not found")
    return serialize_doc(doc)


def get_my_seller_profile(user_id: str) -> dict:
    doc = get_db()["seller"].find_one({"user_id": user_id})
    if not doc:
        raise NotFoundFault("No seller profile found for this user")
    return serialize_doc(doc)


def list_sellers(status: Optional[str] = None) -> list:
    filt = {}
    if status:
        if status not in SELLER_STATUSES:
            raise ValidationFault(f"Invalid status. Allowed: {', '.join(SELLER_STATUSES)}")
        filt["status"] = status
    return [serialize_doc(d) for d in get_db()["seller"].find(filt).sort("created_at", -1)]


def _set_status(seller_id: str, target: str, remarks: Optional[str] = None, sources=None) -> dict:
    doc = get_db()["seller"].find_one({"_id": to_obj_id(seller_id)})
    if not doc:
        raise NotFoundFault("Seller not found")
    sources = sources or REVIEW_SOURCES[target]
    if doc["status"] not in sources:
        raise StateConflictFault(f'Cannot move seller from "{doc["status"]}" to "{target}"')
    res = get_db()["seller"].update_one(
        {"_id": doc["_id"], "status": doc["status"]},
        {"$set": {"status": target, "admin_remarks": remarks, "updated_at": now_utc()}},
    )
    if res.matched_count == 0:
        raise StateConflictFault("Seller status changed, please retry")
    logger.info("Seller %s (%s): %s -> %s", seller_id, doc["store_name"], doc["status"], target)
    return get_seller(seller_id)


def approve_seller(seller_id: str) -> dict:
    return _set_status(seller_id, "approved")


def reject_seller(seller_id: str, remarks: Optional[str] = None) -> dict:
    return _set_status(seller_id, "rejected", remarks)


def suspend_seller(seller_id: str, remarks: Optional[str] = None) -> dict:
    return _set_status(seller_id, "suspended", remarks)


def reactivate_seller(seller_id: str) -> dict:
    return _set_status(seller_id, "approved", sources=("suspended",))
