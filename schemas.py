"""
Database Schemas for the Multi-Vendor Marketplace

Each Pydantic model represents a collection in MongoDB. The collection name is the
lowercase of the class name (Product -> "product", Order -> "order").
Embedded models (items, addresses, payment info) are snapshots stored inside
their parent document.
"""
from datetime import datetime
from typing import List, Optional, Literal
from pydantic import BaseModel, Field, EmailStr, model_validator


OrderStatus = Literal["created", "paid", "processing", "shipped", "delivered", "cancelled", "refunded"]
PaymentStatus = Literal["pending", "paid", "failed", "refunded"]
ProductStatus = Literal["pending", "approved", "rejected"]
SellerStatus = Literal["pending", "approved", "rejected", "suspended"]


# -----------------------------
# Catalog
# -----------------------------

class Product(BaseModel):
    seller_id: str
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=2000)
    price: float = Field(..., ge=0, description="Selling price")
    mrp: float = Field(..., ge=0, description="Maximum retail price")
    stock: int = Field(0, ge=0)
    category: str = ""
    images: List[str] = Field(default_factory=list, max_length=10)
    status: ProductStatus = "pending"
    admin_remarks: Optional[str] = None
    archived: bool = False

    @model_validator(mode="after")
    def check_price(self):
        if self.price > self.mrp:
            raise ValueError("Selling price cannot be greater than MRP")
        return self


# -----------------------------
# Cart
# -----------------------------

class CartItem(BaseModel):
    product_id: str
    seller_id: str
    name: str
    price: float = Field(..., ge=0, description="Snapshot of price at add time")
    image: str = ""
    quantity: int = Field(..., ge=1)


# -----------------------------
# Orders
# -----------------------------

class ShippingAddress(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    address_line1: str = Field(..., min_length=1)
    address_line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = "India"


class GuestInfo(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    phone: str = Field(..., min_length=1)


class OrderItem(BaseModel):
    product_id: str
    seller_id: str
    name: str
    price: float = Field(..., ge=0)
    image: str = ""
    quantity: int = Field(..., ge=1)
    item_total: float = Field(..., ge=0)
    commission_amount: float = Field(0, ge=0)
    seller_earnings: float = Field(0, ge=0)


class PaymentInfo(BaseModel):
    gateway_order_id: Optional[str] = None
    gateway_payment_id: Optional[str] = None
    signature: Optional[str] = None
    method: Optional[str] = None
    status: PaymentStatus = "pending"
    paid_at: Optional[datetime] = None


class StatusEntry(BaseModel):
    status: OrderStatus
    timestamp: datetime
    note: Optional[str] = None


class Order(BaseModel):
    order_number: str
    user_id: Optional[str] = None
    guest_info: Optional[GuestInfo] = None
    items: List[OrderItem] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    items_total: float = Field(..., ge=0)
    shipping_cost: float = Field(0, ge=0)
    tax_amount: float = Field(0, ge=0)
    total_amount: float = Field(..., ge=0)
    payment_info: PaymentInfo = Field(default_factory=PaymentInfo)
    status: OrderStatus = "created"
    status_history: List[StatusEntry] = []
    notes: Optional[str] = None
    idempotency_key: Optional[str] = None
    stock_restored: bool = False

    @model_validator(mode="after")
    def check_owner(self):
        if (self.user_id is None) == (self.guest_info is None):
            raise ValueError("Order needs exactly one of user_id or guest_info")
        return self


# -----------------------------
# Sellers
# -----------------------------

class BusinessDetails(BaseModel):
    pan: str = Field(..., min_length=1)
    gst_number: Optional[str] = None
    address: str = Field(..., min_length=1)


class BankDetails(BaseModel):
    account_number: str
    ifsc_code: str
    bank_name: str


class Seller(BaseModel):
    user_id: str
    store_name: str = Field(..., min_length=3)
    description: Optional[str] = Field(None, max_length=500)
    business_details: BusinessDetails
    bank_details: Optional[BankDetails] = None
    commission_rate: float = Field(5, ge=0, le=100)
    status: SellerStatus = "pending"
    admin_remarks: Optional[str] = None


# -----------------------------
# Request bodies
# -----------------------------

class ProductCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=200)
    description: str = Field("", max_length=2000)
    price: float = Field(..., ge=0)
    mrp: float = Field(..., ge=0)
    stock: int = Field(0, ge=0)
    category: str = ""
    images: List[str] = Field(default_factory=list, max_length=10)


class ProductUpdate(BaseModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    mrp: Optional[float] = Field(None, ge=0)
    stock: Optional[int] = Field(None, ge=0)
    category: Optional[str] = None
    images: Optional[List[str]] = None


class ProductReview(BaseModel):
    approve: bool
    remarks: Optional[str] = None


class CartAdd(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class CartUpdate(BaseModel):
    quantity: int = Field(..., ge=0)


class OrderCreate(BaseModel):
    shipping_address: ShippingAddress
    notes: Optional[str] = None


class GuestOrderLine(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)


class GuestOrderCreate(BaseModel):
    items: List[GuestOrderLine] = Field(..., min_length=1)
    shipping_address: ShippingAddress
    guest_info: GuestInfo
    notes: Optional[str] = None


class PaymentIntentRequest(BaseModel):
    order_id: str


class VerifyPayload(BaseModel):
    gateway_order_id: str = Field(..., min_length=1)
    gateway_payment_id: str = Field(..., min_length=1)
    signature: str = Field(..., min_length=1)
    order_id: str = Field(..., min_length=1)


class StatusUpdate(BaseModel):
    status: str
    note: Optional[str] = None


class SellerRegister(BaseModel):
    store_name: str = Field(..., min_length=3)
    description: Optional[str] = Field(None, max_length=500)
    business_details: BusinessDetails
    bank_details: Optional[BankDetails] = None


class Remarks(BaseModel):
    remarks: Optional[str] = None


# -----------------------------
# Address book
# -----------------------------

AddressType = Literal["home", "work", "other"]


class Address(BaseModel):
    user_id: str
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., pattern=r"^[6-9]\d{9}$")
    alternate_phone: Optional[str] = None
    address_line1: str = Field(..., min_length=1)
    address_line2: Optional[str] = None
    landmark: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., pattern=r"^\d{6}$")
    address_type: AddressType = "home"
    is_default: bool = False


class AddressCreate(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., pattern=r"^[6-9]\d{9}$")
    alternate_phone: Optional[str] = None
    address_line1: str = Field(..., min_length=1)
    address_line2: Optional[str] = None
    landmark: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., pattern=r"^\d{6}$")
    address_type: AddressType = "home"
    is_default: bool = False


class AddressUpdate(BaseModel):
    full_name: Optional[str] = Field(None, min_length=1)
    phone: Optional[str] = Field(None, pattern=r"^[6-9]\d{9}$")
    alternate_phone: Optional[str] = None
    address_line1: Optional[str] = Field(None, min_length=1)
    address_line2: Optional[str] = None
    landmark: Optional[str] = None
    city: Optional[str] = Field(None, min_length=1)
    state: Optional[str] = Field(None, min_length=1)
    postal_code: Optional[str] = Field(None, pattern=r"^\d{6}$")
    address_type: Optional[AddressType] = None
    is_default: Optional[bool] = None
