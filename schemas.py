"""
Database Schemas for the Electronics Hub store

Each Pydantic model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name (SearchHistory -> "search_history").
Request bodies accepted by the API live at the bottom of the file.
"""
from datetime import datetime
from typing import List, Literal, Optional

from pydantic import BaseModel, EmailStr, Field

PaymentMethod = Literal["COD", "UPI", "Razorpay"]
PaymentStatus = Literal["Pending", "Completed"]
OrderStatus = Literal["Placed", "Processing", "Shipped", "Delivered", "Cancelled"]
Availability = Literal["In Stock", "Out of Stock"]

PAYMENT_METHODS = ("COD", "UPI", "Razorpay")
FINAL_ORDER_STATUSES = ("Delivered", "Cancelled")


class User(BaseModel):
    name: str = Field(..., description="Full name")
    email: EmailStr
    password_hash: str = Field(..., description="Salted PBKDF2 hash")
    is_email_verified: bool = False
    email_verification_token: Optional[str] = None
    email_verification_expires: Optional[datetime] = None
    password_reset_token: Optional[str] = None
    password_reset_expires: Optional[datetime] = None


class Category(BaseModel):
    key: str = Field(..., description="URL key, e.g. 'laptops'")
    name: str
    description: Optional[str] = None


class Product(BaseModel):
    name: str
    type: Optional[str] = Field(None, description="Product type, searchable")
    description: Optional[str] = None
    price: float = Field(..., ge=0)
    category_key: str
    stock_quantity: int = Field(0, ge=0)
    availability: Availability = "In Stock"
    image_url: Optional[str] = None


class CartItem(BaseModel):
    user_id: str
    product_id: str
    quantity: int = Field(..., ge=1)


class Address(BaseModel):
    user_id: str
    full_name: str
    phone: str
    street: str
    city: str
    state: str
    pincode: str
    is_default: bool = False


class OrderItem(BaseModel):
    product_id: str
    product_name: str = Field(..., description="Snapshot of product name at order time")
    product_price: float = Field(..., ge=0, description="Price at order time")
    quantity: int = Field(..., ge=1)
    subtotal: float


class Order(BaseModel):
    user_id: str
    address_id: str
    items: List[OrderItem]
    subtotal: float
    delivery_charge: float
    total_amount: float
    payment_method: PaymentMethod
    payment_status: PaymentStatus = "Pending"
    order_status: OrderStatus = "Placed"
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


class SearchHistory(BaseModel):
    user_id: str
    search_term: str


# ----------------------- Request bodies -----------------------
class SignupBody(BaseModel):
    name: str = Field(..., min_length=1)
    email: EmailStr
    password: str = Field(..., min_length=6)


class LoginBody(BaseModel):
    email: EmailStr
    password: str


class EmailBody(BaseModel):
    email: EmailStr


class ResetPasswordBody(BaseModel):
    token: str = Field(..., min_length=1)
    newPassword: str = Field(..., min_length=6)


class ProfileUpdateBody(BaseModel):
    name: str = Field(..., min_length=1)


class AddressCreateBody(BaseModel):
    full_name: str = Field(..., min_length=1)
    phone: str = Field(..., min_length=1)
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    pincode: str = Field(..., min_length=1)
    is_default: bool = False


class AddressUpdateBody(BaseModel):
    full_name: Optional[str] = None
    phone: Optional[str] = None
    street: Optional[str] = None
    city: Optional[str] = None
    state: Optional[str] = None
    pincode: Optional[str] = None
    is_default: Optional[bool] = None


class CartAddBody(BaseModel):
    product_id: str
    quantity: int = Field(1, ge=1)


class CartUpdateBody(BaseModel):
    quantity: int = Field(..., ge=1)


class OrderCreateBody(BaseModel):
    address_id: Optional[str] = None
    payment_method: Optional[str] = None
    razorpay_order_id: Optional[str] = None
    razorpay_payment_id: Optional[str] = None
    razorpay_signature: Optional[str] = None


class PaymentOrderBody(BaseModel):
    amount: float = Field(..., gt=0)
    address_id: str


class PaymentVerifyBody(BaseModel):
    razorpay_order_id: str = Field(..., min_length=1)
    razorpay_payment_id: str = Field(..., min_length=1)
    razorpay_signature: str = Field(..., min_length=1)
    address_id: Optional[str] = None
