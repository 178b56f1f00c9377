"""Saved shipping addresses. A user with any addresses has exactly one default."""
import logging

from database import create_document, get_db, now_utc, serialize_doc, to_obj_id
from errors import NotFoundFault, ValidationFault
from schemas import Address, AddressCreate, AddressUpdate

logger = logging.getLogger(__name__)

NEWEST_FIRST = [("created_at", -1), ("_id", -1)]


def _owned(user_id: str, address_id: str) -> dict:
    doc = get_db()["address"].find_one(
        {"_id": to_obj_id(address_id, "Address not found"), "user_id": user_id}
    )
    if not doc:
        raise NotFoundFault("Address not found")
    return doc


def _clear_default(user_id: str):
    get_db()["address"].update_many(
        {"user_id": user_id, "is_default": True},
        {"$set": {"is_default": False, "updated_at": now_utc()}},
    )


def list_addresses(user_id: str) -> list:
    cursor = get_db()["address"].find({"user_id": user_id}).sort([("is_default", -1)] + NEWEST_FIRST)
    return [serialize_doc(d) for d in cursor]


def get_address(user_id: str, address_id: str) -> dict:
    return serialize_doc(_owned(user_id, address_id))


def add_address(user_id: str, payload: AddressCreate) -> dict:
    coll = get_db()["address"]
    address = Address(user_id=user_id, **payload.model_dump())
    if not coll.find_one({"user_id": user_id}):
        address.is_default = True
    if address.is_default:
        _clear_default(user_id)
    aid = create_document("address", address)
    logger.info("User %s saved address %s", user_id, aid)
    return serialize_doc(coll.find_one({"_id": to_obj_id(aid)}))


def update_address(user_id: str, address_id: str, payload: AddressUpdate) -> dict:
    doc = _owned(user_id, address_id)
    update = payload.model_dump(exclude_none=True)
    if not update:
        raise ValidationFault("No fields to update")
    if update.get("is_default") is False and doc.get("is_default"):
        # the default moves by setting another address, never by unsetting this one
        update.pop("is_default")
    if update.get("is_default"):
        _clear_default(user_id)
    update["updated_at"] = now_utc()
    get_db()["address"].update_one({"_id": doc["_id"]}, {"$set": update})
    return get_address(user_id, address_id)


def delete_address(user_id: str, address_id: str) -> dict:
    doc = _owned(user_id, address_id)
    coll = get_db()["address"]
    coll.delete_one({"_id": doc["_id"]})
    if doc.get("is_default"):
        successor = coll.find_one({"user_id": user_id}, sort=NEWEST_FIRST)
        if successor:
            coll.update_one({"_id": successor["_id"]}, {"$set": {"is_default": True, "updated_at": now_utc()}})
            logger.info("Address %s is now the default for user %s", successor["_id"], user_id)
    return {"ok": True}


def set_default_address(user_id: str, address_id: str) -> dict:
    doc = _owned(user_id, address_id)
    if not doc.get("is_default"):
        _clear_default(user_id)
        get_db()["address"].update_one({"_id": doc["_id"]}, {"$set": {"is_default": True, "updated_at": now_utc()}})
    return get_address(user_id, address_id)
