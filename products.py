import logging
from typing import Optional

from database import create_document, get_db, now_utc, serialize_doc, to_obj_id
from errors import AuthorizationFault, NotFoundFault, StateConflictFault, ValidationFault
from orders import page_params, pagination
from schemas import Product, ProductCreate, ProductUpdate

logger = logging.getLogger(__name__)

PURCHASABLE = {"status": "approved", "archived": False}
MAX_STORE_PAGE_SIZE = 50

# edits to these fields send the product back through admin review
REVIEWED_FIELDS = {"name", "description", "price", "mrp", "category", "images"}


def _check_price(price: float, mrp: float):
    if price > mrp:
        raise ValidationFault("Selling price cannot be greater than MRP")


def create_product(seller_id: str, payload: ProductCreate) -> dict:
    _check_price(payload.price, payload.mrp)
    product = Product(seller_id=seller_id, **payload.model_dump())
    pid = create_document("product", product)
    logger.info("Seller %s created product %s", seller_id, pid)
    return get_product_by_id(pid)


def get_product_by_id(product_id: str) -> dict:
    doc = get_db()["product"].find_one({"_id": to_obj_id(product_id)})
    if not doc:
        raise NotFoundFault("Product not found")
    return serialize_doc(doc)


def _owned_product(seller_id: str, product_id: str) -> dict:
    doc = get_db()["product"].find_one({"_id": to_obj_id(product_id)})
    if not doc or doc.get("archived"):
        raise NotFoundFault("Product not found")
    if doc["seller_id"] != seller_id:
        raise AuthorizationFault("Not authorized to modify this product")
    return doc


def update_product(seller_id: str, product_id: str, payload: ProductUpdate) -> dict:
    doc = _owned_product(seller_id, product_id)
    update = payload.model_dump(exclude_none=True)
    if not update:
        raise ValidationFault("No fields to update")
    _check_price(update.get("price", doc["price"]), update.get("mrp", doc["mrp"]))
    if REVIEWED_FIELDS & update.keys():
        update["status"] = "pending"
    update["updated_at"] = now_utc()
    get_db()["product"].update_one({"_id": doc["_id"]}, {"$set": update})
    return get_product_by_id(product_id)


def archive_product(seller_id: str, product_id: str) -> dict:
    doc = _owned_product(seller_id, product_id)
    get_db()["product"].update_one({"_id": doc["_id"]}, {"$set": {"archived": True, "updated_at": now_utc()}})
    logger.info("Product %s archived by seller %s", product_id, seller_id)
    return {"ok": True}


def list_seller_products(seller_id: str) -> list:
    cursor = get_db()["product"].find({"seller_id": seller_id, "archived": False}).sort("created_at", -1)
    return [serialize_doc(d) for d in cursor]


def review_product(product_id: str, approve: bool, remarks: Optional[str] = None) -> dict:
    """Admin decision on a pending product."""
    doc = get_db()["product"].find_one({"_id": to_obj_id(product_id)})
    if not doc:
        raise NotFoundFault("Product not found")
    if doc.get("status") != "pending":
        raise StateConflictFault(f'Product is already {doc.get("status")}')
    status = "approved" if approve else "rejected"
    get_db()["product"].update_one(
        {"_id": doc["_id"]},
        {"$set": {"status": status, "admin_remarks": remarks, "updated_at": now_utc()}},
    )
    logger.info("Product %s %s by admin", product_id, status)
    return get_product_by_id(product_id)


def list_products(
    q: Optional[str] = None,
    category: Optional[str] = None,
    min_price: Optional[float] = None,
    max_price: Optional[float] = None,
    seller_id: Optional[str] = None,
) -> list:
    filt = dict(PURCHASABLE)
    if category:
        filt["category"] = category
    if seller_id:
        filt["seller_id"] = seller_id
    if min_price is not None or max_price is not None:
        price_query = {}
        if min_price is not None:
            price_query["$gte"] = float(min_price)
        if max_price is not None:
            price_query["$lte"] = float(max_price)
        filt["price"] = price_query
    if q:
        filt["name"] = {"$regex": q, "$options": "i"}
    items = get_db()["product"].find(filt).sort("created_at", -1)
    return [serialize_doc(it) for it in items]


def get_public_product(product_id: str) -> dict:
    doc = get_db()["product"].find_one({"_id": to_obj_id(product_id), **PURCHASABLE})
    if not doc:
        raise NotFoundFault("Product not found")
    return serialize_doc(doc)


def list_categories() -> list:
    return sorted(c for c in get_db()["product"].distinct("category", PURCHASABLE) if c)


def get_storefront(seller_id: str, page: int = 1, limit: int = 20) -> dict:
    """Public store page: an approved seller and their purchasable products."""
    seller = get_db()["seller"].find_one({"user_id": seller_id, "status": "approved"})
    if not seller:
        raise NotFoundFault("Seller not found or not active")
    page, limit, skip = page_params(page, limit, MAX_STORE_PAGE_SIZE)
    coll = get_db()["product"]
    query = {"seller_id": seller_id, **PURCHASABLE}
    total = coll.count_documents(query)
    docs = coll.find(query).sort("created_at", -1).skip(skip).limit(limit)
    return {
        "seller": {
            "id": seller_id,
            "store_name": seller["store_name"],
            "description": seller.get("description"),
        },
        "products": [serialize_doc(d) for d in docs],
        "pagination": pagination(total, page, limit),
    }
