"""
Database Schemas for MinuteMart

Each Pydantic model represents a collection in MongoDB.
Collection name is the lowercase of the class name:
- User -> "user"
- Product -> "product"
- Cart -> "cart"
- Coupon -> "coupon"
- Order -> "order"
- Wishlist -> "wishlist"
- Address -> "address"
"""
from datetime import datetime
from enum import Enum
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator, model_validator


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="Hashed password")
    role: Literal["customer", "admin"] = "customer"
    is_active: bool = Field(True)


class Product(BaseModel):
    name: str
    slug: str = Field(..., description="URL-safe identifier")
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    mrp: Optional[float] = Field(None, ge=0, description="List price, shown for savings")
    stock: int = Field(0, ge=0)
    category: str = Field(..., description="Category slug")
    brand: Optional[str] = None
    images: List[str] = []
    tags: List[str] = []
    is_flash_sale: bool = False
    flash_sale_price: Optional[float] = Field(None, ge=0)
    flash_sale_end: Optional[datetime] = None
    sold_count: int = Field(0, ge=0)
    rating: float = 0.0
    review_count: int = 0

    @model_validator(mode="after")
    def check_flash_sale(self):
        if self.is_flash_sale and (self.flash_sale_price is None or self.flash_sale_end is None):
            raise ValueError("flash sale needs both flash_sale_price and flash_sale_end")
        return self


class Cart(BaseModel):
    user_id: str
    product_id: str
    quantity: int = Field(1, ge=1)


class Wishlist(BaseModel):
    user_id: str
    product_id: str


class Coupon(BaseModel):
    code: str = Field(..., min_length=1, description="Unique, stored uppercase")
    type: Literal["percentage", "fixed"]
    value: float = Field(..., gt=0)
    min_purchase: float = Field(0, ge=0)
    max_discount: Optional[float] = Field(None, gt=0, description="Cap for percentage coupons")
    usage_limit: Optional[int] = Field(None, ge=0)
    used_count: int = Field(0, ge=0)
    valid_from: Optional[datetime] = None
    valid_until: Optional[datetime] = None
    is_active: bool = True

    @field_validator("code")
    @classmethod
    def upper_code(cls, v: str) -> str:
        return v.strip().upper()

    @model_validator(mode="after")
    def check_usage(self):
        if self.usage_limit is not None and self.used_count > self.usage_limit:
            raise ValueError("used_count cannot exceed usage_limit")
        return self


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class ShippingAddress(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: Optional[str] = None
    address_line1: str = Field(..., min_length=1)
    address_line2: Optional[str] = None
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = "India"


class OrderItem(BaseModel):
    product_id: str
    name: str
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Unit price at purchase")
    total: float = Field(..., ge=0)


class Order(BaseModel):
    uuid: str
    order_number: str
    user_id: str
    items: List[OrderItem]
    subtotal: float
    discount: float = 0.0
    shipping: float
    tax: float
    total: float
    coupon_code: Optional[str] = None
    payment_method: str = "cod"
    payment_status: str = "pending"
    shipping_address: ShippingAddress
    notes: Optional[str] = None
    status: OrderStatus = OrderStatus.PENDING


class Address(ShippingAddress):
    """Address book entry. Orders copy it, they never reference it."""

    user_id: str
    label: Literal["home", "work", "other"] = "home"
    is_default: bool = False
