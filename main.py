import os
import logging
from contextlib import asynccontextmanager
from typing import Optional

from fastapi import Depends, FastAPI, Header, Query, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse

import addresses
import analytics
import cart
import database
import finance
import gateway
import orders
import payments
import products
import seller_orders
import sellers
from auth import get_current_user, get_optional_user, require_admin, require_seller
from errors import MarketplaceError
from schemas import (
    AddressCreate,
    AddressUpdate,
    CartAdd,
    CartUpdate,
    GuestOrderCreate,
    OrderCreate,
    PaymentIntentRequest,
    ProductCreate,
    ProductReview,
    ProductUpdate,
    Remarks,
    SellerRegister,
    StatusUpdate,
    VerifyPayload,
)

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s",
)
logger = logging.getLogger("marketplace")


@asynccontextmanager
async def lifespan(app: FastAPI):
    if database.db is not None:
        database.ensure_indexes()
    else:
        logger.warning("DATABASE_URL / DATABASE_NAME not set, running without a database")
    yield


app = FastAPI(title="Multi-Vendor Marketplace API", lifespan=lifespan)

app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)


@app.exception_handler(MarketplaceError)
async def marketplace_error_handler(request: Request, exc: MarketplaceError):
    if exc.status_code >= 500:
        logger.error("%s %s failed: %s", request.method, request.url.path, exc.message)
    return JSONResponse(status_code=exc.status_code, content=exc.to_dict())


# -----------------------------
# Health & Test
# -----------------------------

@app.get("/")
def read_root():
    return {"message": "Marketplace API running"}


@app.get("/test")
def test_database():
    response = {
        "backend": "✅ Running",
        "database": "❌ Not Available",
        "database_url": "✅ Set" if os.getenv("DATABASE_URL") else "❌ Not Set",
        "database_name": "❌ Not Set",
        "collections": [],
    }
    try:
        if database.db is not None:
            response["database"] = "✅ Connected"
            response["database_name"] = database.db.name
            response["collections"] = database.db.list_collection_names()
    except Exception as e:
        response["database"] = f"❌ Error: {str(e)[:80]}"
    response["razorpay_key_id"] = "✅ Set" if gateway.key_id() else "❌ Not Set"
    response["transactions"] = "✅ Enabled" if database.transactions_enabled() else "⚠️ Disabled"
    return response


# -----------------------------
# Products
# -----------------------------

@app.get("/api/products")
def list_products(
    q: Optional[str] = Query(default=None),
    category: Optional[str] = Query(default=None),
    min_price: Optional[float] = Query(default=None),
    max_price: Optional[float] = Query(default=None),
    seller_id: Optional[str] = Query(default=None),
):
    return {"items": products.list_products(q, category, min_price, max_price, seller_id)}


@app.get("/api/products/{product_id}")
def get_product(product_id: str):
    return products.get_public_product(product_id)


@app.get("/api/seller/products")
def list_my_products(user=Depends(require_seller)):
    return {"items": products.list_seller_products(user["id"])}


@app.post("/api/seller/products", status_code=201)
def create_product(payload: ProductCreate, user=Depends(require_seller)):
    return products.create_product(user["id"], payload)


@app.put("/api/seller/products/{product_id}")
def update_product(product_id: str, payload: ProductUpdate, user=Depends(require_seller)):
    return products.update_product(user["id"], product_id, payload)


@app.delete("/api/seller/products/{product_id}")
def archive_product(product_id: str, user=Depends(require_seller)):
    return products.archive_product(user["id"], product_id)


# -----------------------------
# Cart
# -----------------------------

@app.get("/api/cart")
def get_cart(user=Depends(get_current_user)):
    return cart.get_cart(user["id"])


@app.post("/api/cart/items")
def add_to_cart(item: CartAdd, user=Depends(get_current_user)):
    return cart.add_item(user["id"], item.product_id, item.quantity)


@app.put("/api/cart/items/{product_id}")
def update_cart_item(product_id: str, body: CartUpdate, user=Depends(get_current_user)):
    return cart.update_item(user["id"], product_id, body.quantity)


@app.delete("/api/cart/items/{product_id}")
def remove_from_cart(product_id: str, user=Depends(get_current_user)):
    return cart.remove_item(user["id"], product_id)


@app.delete("/api/cart")
def clear_cart(user=Depends(get_current_user)):
    return cart.clear_cart(user["id"])


@app.post("/api/cart/validate")
def validate_cart(user=Depends(get_current_user)):
    return cart.validate_cart(user["id"])


# -----------------------------
# Store
# -----------------------------

@app.get("/api/store/categories")
def list_categories():
    return {"items": products.list_categories()}


@app.get("/api/store/sellers/{seller_id}/products")
def get_storefront(
    seller_id: str,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=20, ge=1),
):
    return products.get_storefront(seller_id, page, limit)


# -----------------------------
# Addresses
# -----------------------------

@app.get("/api/addresses")
def list_addresses(user=Depends(get_current_user)):
    return {"items": addresses.list_addresses(user["id"])}


@app.post("/api/addresses", status_code=201)
def add_address(body: AddressCreate, user=Depends(get_current_user)):
    return addresses.add_address(user["id"], body)


@app.get("/api/addresses/{address_id}")
def get_address(address_id: str, user=Depends(get_current_user)):
    return addresses.get_address(user["id"], address_id)


@app.put("/api/addresses/{address_id}")
def update_address(address_id: str, body: AddressUpdate, user=Depends(get_current_user)):
    return addresses.update_address(user["id"], address_id, body)


@app.delete("/api/addresses/{address_id}")
def delete_address(address_id: str, user=Depends(get_current_user)):
    return addresses.delete_address(user["id"], address_id)


@app.put("/api/addresses/{address_id}/default")
def set_default_address(address_id: str, user=Depends(get_current_user)):
    return addresses.set_default_address(user["id"], address_id)


# -----------------------------
# Orders
# -----------------------------

@app.post("/api/orders", status_code=201)
def create_order(
    body: OrderCreate,
    user=Depends(get_current_user),
    idempotency_key: Optional[str] = Header(default=None),
):
    return orders.create_order(user["id"], body.shipping_address, body.notes, idempotency_key)


@app.post("/api/orders/guest", status_code=201)
def create_guest_order(body: GuestOrderCreate):
    return orders.create_guest_order(body.items, body.shipping_address, body.guest_info, body.notes)


@app.get("/api/orders/my-orders")
def my_orders(
    status: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    user=Depends(get_current_user),
):
    return orders.list_my_orders(user["id"], status, page, limit)


@app.get("/api/orders/track/{order_number}")
def track_order(order_number: str, email: Optional[str] = None):
    return orders.track_order(order_number, email)


@app.get("/api/orders/{order_id}")
def get_order(order_id: str, user=Depends(get_current_user)):
    return orders.get_order(order_id, user)


@app.put("/api/orders/{order_id}/cancel")
def cancel_order(order_id: str, user=Depends(get_current_user)):
    return orders.cancel_order(order_id, user)


# -----------------------------
# Payments
# -----------------------------

@app.post("/api/payments/create-order")
def create_payment_order(body: PaymentIntentRequest, user=Depends(get_optional_user)):
    return payments.create_payment_intent(body.order_id, user)


@app.post("/api/payments/verify")
def verify_payment(body: VerifyPayload):
    return payments.verify_payment(body.gateway_order_id, body.gateway_payment_id, body.signature, body.order_id)


@app.post("/api/payments/webhook")
async def payment_webhook(request: Request):
    raw_body = await request.body()
    return payments.handle_webhook(raw_body, request.headers.get("x-razorpay-signature"))


@app.get("/api/payments/status/{order_id}")
def payment_status(order_id: str):
    return payments.get_payment_status(order_id)


@app.post("/api/payments/retry/{order_id}")
def retry_payment(order_id: str, user=Depends(get_optional_user)):
    return payments.retry_payment(order_id, user)


# -----------------------------
# Sellers
# -----------------------------

@app.post("/api/sellers/register", status_code=201)
def register_seller(body: SellerRegister, user=Depends(get_current_user)):
    return sellers.register_seller(user["id"], body)


@app.get("/api/sellers/me")
def my_seller_profile(user=Depends(get_current_user)):
    return sellers.get_my_seller_profile(user["id"])


@app.get("/api/seller-orders")
def list_seller_orders(
    status: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    user=Depends(require_seller),
):
    return seller_orders.list_seller_orders(user["id"], status, page, limit)


@app.get("/api/seller-orders/{order_id}")
def get_seller_order(order_id: str, user=Depends(require_seller)):
    return seller_orders.get_seller_order_by_id(user["id"], order_id)


@app.put("/api/seller-orders/{order_id}/status")
def update_seller_order_status(order_id: str, body: StatusUpdate, user=Depends(require_seller)):
    return seller_orders.update_order_status_seller(user["id"], order_id, body.status, body.note)


# -----------------------------
# Admin
# -----------------------------

@app.get("/api/admin/orders")
def admin_list_orders(
    status: Optional[str] = None,
    seller_id: Optional[str] = None,
    user_id: Optional[str] = None,
    page: int = Query(default=1, ge=1),
    limit: int = Query(default=10, ge=1),
    admin=Depends(require_admin),
):
    return orders.list_orders_admin(status, seller_id, user_id, page, limit)


@app.get("/api/admin/orders/stats")
def admin_order_stats(admin=Depends(require_admin)):
    return orders.get_order_stats()


@app.get("/api/admin/orders/{order_id}")
def admin_get_order(order_id: str, admin=Depends(require_admin)):
    return orders.get_order(order_id, admin)


@app.put("/api/admin/orders/{order_id}/status")
def admin_update_order_status(order_id: str, body: StatusUpdate, admin=Depends(require_admin)):
    return orders.update_order_status_admin(order_id, body.status, body.note)


@app.get("/api/admin/sellers")
def admin_list_sellers(status: Optional[str] = None, admin=Depends(require_admin)):
    return {"items": sellers.list_sellers(status)}


@app.put("/api/admin/sellers/{seller_id}/approve")
def admin_approve_seller(seller_id: str, admin=Depends(require_admin)):
    return sellers.approve_seller(seller_id)


@app.put("/api/admin/sellers/{seller_id}/reject")
def admin_reject_seller(seller_id: str, body: Remarks, admin=Depends(require_admin)):
    return sellers.reject_seller(seller_id, body.remarks)


@app.put("/api/admin/sellers/{seller_id}/suspend")
def admin_suspend_seller(seller_id: str, body: Remarks, admin=Depends(require_admin)):
    return sellers.suspend_seller(seller_id, body.remarks)


@app.put("/api/admin/sellers/{seller_id}/reactivate")
def admin_reactivate_seller(seller_id: str, admin=Depends(require_admin)):
    return sellers.reactivate_seller(seller_id)


@app.put("/api/admin/products/{product_id}/review")
def admin_review_product(product_id: str, body: ProductReview, admin=Depends(require_admin)):
    return products.review_product(product_id, body.approve, body.remarks)


@app.get("/api/admin/finance/stats")
def admin_finance_stats(admin=Depends(require_admin)):
    return finance.get_finance_stats()


@app.get("/api/admin/finance/payouts")
def admin_finance_payouts(admin=Depends(require_admin)):
    return {"items": finance.get_payouts()}


# -----------------------------
# Analytics
# -----------------------------

@app.get("/api/analytics/seller/overview")
def seller_overview(user=Depends(require_seller)):
    return analytics.seller_overview(user["id"])


@app.get("/api/analytics/seller/revenue")
def seller_revenue(days: int = Query(default=30, ge=1), user=Depends(require_seller)):
    return analytics.seller_revenue_series(user["id"], days)


@app.get("/api/analytics/seller/products/top")
def seller_top_products(limit: int = Query(default=10, ge=1), user=Depends(require_seller)):
    return {"items": analytics.top_products(limit, seller_id=user["id"])}


@app.get("/api/analytics/admin/overview")
def admin_overview(admin=Depends(require_admin)):
    return analytics.admin_overview()


@app.get("/api/analytics/admin/revenue")
def admin_revenue(
    period: str = Query(default="daily"),
    days: int = Query(default=30, ge=1),
    admin=Depends(require_admin),
):
    return analytics.revenue_series(period, days)


@app.get("/api/analytics/admin/orders/status")
def admin_status_distribution(admin=Depends(require_admin)):
    return analytics.status_distribution()


@app.get("/api/analytics/admin/products/top")
def admin_top_products(limit: int = Query(default=10, ge=1), admin=Depends(require_admin)):
    return {"items": analytics.top_products(limit)}


@app.get("/api/analytics/admin/sellers/top")
def admin_top_sellers(limit: int = Query(default=10, ge=1), admin=Depends(require_admin)):
    return {"items": analytics.top_sellers(limit)}


if __name__ == "__main__":
    import uvicorn
    port = int(os.getenv("PORT", 8000))
    uvicorn.run(app, host="0.0.0.0", port=port)
