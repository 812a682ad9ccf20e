"""
Database Schemas for the storefront

Each Pydantic model corresponds to a MongoDB collection. Collection name is the
lowercase class name (WarrantyClaim -> "warrantyclaim").
"""
from datetime import datetime
from typing import Optional, List, Literal

from pydantic import BaseModel, Field, EmailStr


ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
RETURN_STATUSES = ("Requested", "Approved", "Rejected", "Completed")
CLAIM_STATUSES = ("pending", "approved", "rejected")


class User(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password_hash: str = Field(..., description="BCrypt hash of the password")
    role: Literal["customer", "admin"] = "customer"
    address: Optional[dict] = Field(None, description="Free-form billing/shipping address")


class Product(BaseModel):
    name: str = Field(..., description="Also used as the product page slug")
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    sale_price: Optional[float] = Field(None, ge=0)
    image: Optional[str] = None
    category: str
    quantity: int = Field(0, ge=0, description="Units in stock")
    is_featured: bool = False
    close_out: bool = Field(False, description="Clearance item, hidden from category listings")


class CartItem(BaseModel):
    user_id: str
    product_id: str
    quantity: int = Field(..., ge=1)


class Coupon(BaseModel):
    code: str
    discount_percentage: int = Field(..., ge=0, le=100)
    expiration_date: datetime
    is_active: bool = True
    user_id: str


class OrderItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price at purchase time")


class Order(BaseModel):
    user_id: str
    items: List[OrderItem]
    total_amount: float = 0
    status: Literal["pending", "processing", "shipped", "delivered", "cancelled"] = "pending"
    mode: Literal["online", "cod"] = "online"
    address: Optional[dict] = None
    stripe_session_id: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    stock_shortfall: List[str] = Field(default_factory=list, description="Product ids paid for but not reserved")
    is_return_requested: bool = False
    return_status: Optional[Literal["Requested", "Approved", "Rejected", "Completed"]] = None
    return_reason: Optional[str] = None
    return_description: Optional[str] = None
    return_requested_at: Optional[datetime] = None


class WarrantyClaim(BaseModel):
    user_id: str
    product_name: str
    reason: str
    address: str
    phone: str
    image_url: str
    status: Literal["pending", "approved", "rejected"] = "pending"
