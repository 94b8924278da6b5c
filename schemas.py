"""
Request schemas for the Storefront API.

Field names follow the JSON the storefront client sends (camelCase aliases).
The schemas only shape the payload; business rules (positive quantities,
required billing fields, price checks) are enforced by the services so the
same rules hold when they are called directly.
"""
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field


class CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


# Auth
class UserCreate(BaseModel):
    username: str = Field(..., min_length=3, max_length=50)
    email: EmailStr
    password: str


class LoginRequest(BaseModel):
    username: Optional[str] = None
    password: Optional[str] = None


# Catalog
class ProductIn(CamelModel):
    name: Optional[str] = None
    description: Optional[str] = None
    price: Optional[float] = None
    image_base64: Optional[str] = Field(None, alias="imageBase64")


class ImageUpload(CamelModel):
    filename: Optional[str] = None
    data_base64: Optional[str] = Field(None, alias="dataBase64")


# Checkout
class CartItemIn(CamelModel):
    product_id: Optional[int] = Field(None, alias="productId")
    quantity: Optional[int] = None
    # accepted for compatibility with the client cart, never used for pricing
    price: Optional[float] = None


class BillingInfo(BaseModel):
    name: Optional[str] = None
    email: Optional[str] = None
    address: Optional[str] = ""


class CheckoutIn(BaseModel):
    cart: List[CartItemIn] = []
    billing: Optional[BillingInfo] = None


# Pending orders
class OrderItemIn(CamelModel):
    product_id: Optional[int] = Field(None, alias="productId")
    quantity: Optional[int] = None
    name: Optional[str] = None
    price: Optional[float] = None


class ShippingInfo(CamelModel):
    first_name: str = Field("", alias="firstName")
    last_name: str = Field("", alias="lastName")
    email: str = ""
    phone: str = ""
    address: str = ""
    city: str = ""
    state: str = ""
    zip_code: str = Field("", alias="zipCode")
    country: str = ""


class PaymentSummary(CamelModel):
    # anything besides these two fields (card number, CVV, expiry) is dropped
    model_config = ConfigDict(populate_by_name=True, extra="ignore")

    card_last4: Optional[str] = Field(None, alias="cardLast4")
    card_type: Optional[str] = Field(None, alias="cardType")


class CreateOrderRequest(CamelModel):
    items: List[OrderItemIn] = []
    shipping_info: ShippingInfo = Field(default_factory=ShippingInfo, alias="shippingInfo")
    payment_info: Optional[PaymentSummary] = Field(None, alias="paymentInfo")
    total: Optional[float] = None


class StatusUpdate(BaseModel):
    status: Optional[str] = None
