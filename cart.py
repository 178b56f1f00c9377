"""Server-side cart, one document per buyer. Lines are product snapshots."""
import logging

from database import get_db, now_utc, serialize_doc, to_obj_id
from errors import NotFoundFault, ValidationFault
from schemas import CartItem

logger = logging.getLogger(__name__)

EMPTY_CART = {"items": [], "total_items": 0, "total_price": 0}


def compute_totals(items: list) -> dict:
    return {
        "total_items": sum(it["quantity"] for it in items),
        "total_price": sum(it["price"] * it["quantity"] for it in items),
    }


def snapshot(product: dict, quantity: int) -> dict:
    return CartItem(
        product_id=str(product["_id"]),
        seller_id=product["seller_id"],
        name=product["name"],
        price=product["price"],
        image=(product.get("images") or [""])[0],
        quantity=quantity,
    ).model_dump()


def _save_items(user_id: str, items: list, session=None) -> dict:
    update = {"items": items, "updated_at": now_utc(), **compute_totals(items)}
    get_db()["cart"].update_one(
        {"user_id": user_id},
        {"$set": update, "$setOnInsert": {"created_at": now_utc()}},
        upsert=True,
        session=session,
    )
    return get_cart(user_id, session=session)


def _find_cart(user_id: str, session=None):
    return get_db()["cart"].find_one({"user_id": user_id}, session=session)


def _purchasable(product_id: str):
    return get_db()["product"].find_one({"_id": to_obj_id(product_id), "status": "approved", "archived": False})


def _index_of(items: list, product_id: str) -> int:
    for i, it in enumerate(items):
        if it["product_id"] == product_id:
            return i
    return -1


def get_cart(user_id: str, session=None) -> dict:
    cart = _find_cart(user_id, session=session)
    if not cart:
        return {"user_id": user_id, **EMPTY_CART}
    cart = serialize_doc(cart)
    cart.pop("checkout_lock", None)
    cart.pop("checkout_locked_at", None)
    return cart


def add_item(user_id: str, product_id: str, quantity: int = 1) -> dict:
    if quantity < 1:
        raise ValidationFault("Quantity must be at least 1")
    product = _purchasable(product_id)
    if not product:
        raise NotFoundFault("Product not found or not available")
    if product["stock"] < quantity:
        raise ValidationFault(f"Only {product['stock']} items available in stock")

    cart = _find_cart(user_id)
    items = list(cart["items"]) if cart else []
    idx = _index_of(items, product_id)
    if idx > -1:
        new_quantity = items[idx]["quantity"] + quantity
        if new_quantity > product["stock"]:
            more = product["stock"] - items[idx]["quantity"]
            raise ValidationFault(f"Cannot add {quantity} more. Only {more} more available")
        items[idx] = {**items[idx], "quantity": new_quantity}
    else:
        items.append(snapshot(product, quantity))
    return _save_items(user_id, items)


def update_item(user_id: str, product_id: str, quantity: int) -> dict:
    if quantity is None or quantity < 0:
        raise ValidationFault("Valid quantity is required")
    cart = _find_cart(user_id)
    if not cart:
        raise NotFoundFault("Cart not found")
    items = list(cart["items"])
    idx = _index_of(items, product_id)
    if idx == -1:
        raise NotFoundFault("Item not found in cart")

    if quantity == 0:
        items.pop(idx)
        return _save_items(user_id, items)

    product = _purchasable(product_id)
    if not product:
        items.pop(idx)
        _save_items(user_id, items)
        raise NotFoundFault("Product no longer available")
    if quantity > product["stock"]:
        raise ValidationFault(f"Only {product['stock']} items available in stock")
    items[idx] = {**items[idx], "quantity": quantity, "price": product["price"]}
    return _save_items(user_id, items)


def remove_item(user_id: str, product_id: str) -> dict:
    cart = _find_cart(user_id)
    if not cart:
        raise NotFoundFault("Cart not found")
    items = list(cart["items"])
    idx = _index_of(items, product_id)
    if idx == -1:
        raise NotFoundFault("Item not found in cart")
    items.pop(idx)
    return _save_items(user_id, items)


def clear_cart(user_id: str, session=None) -> dict:
    if not _find_cart(user_id, session=session):
        return {"user_id": user_id, **EMPTY_CART}
    return _save_items(user_id, [], session=session)


def validate_cart(user_id: str) -> dict:
    """Re-check every line against the live catalog before checkout."""
    cart = _find_cart(user_id)
    if not cart or not cart.get("items"):
        raise ValidationFault("Cart is empty")

    result = {"valid": True, "removed_items": [], "updated_items": [], "price_changes": []}
    items = []
    for item in cart["items"]:
        product = _purchasable(item["product_id"])
        if not product or product["stock"] == 0:
            result["removed_items"].append(item["name"])
            result["valid"] = False
            continue
        item = dict(item)
        if product["stock"] < item["quantity"]:
            result["updated_items"].append(
                f"{item['name']}: quantity reduced from {item['quantity']} to {product['stock']}"
            )
            item["quantity"] = product["stock"]
            result["valid"] = False
        if product["price"] != item["price"]:
            result["price_changes"].append(
                {"product": item["name"], "old_price": item["price"], "new_price": product["price"]}
            )
            item["price"] = product["price"]
        items.append(item)

    updated = _save_items(user_id, items)
    if result["removed_items"] or result["updated_items"]:
        logger.info("Cart for user %s adjusted during validation", user_id)
    return {"cart": updated, "validation": result}
