"""
Database Schemas for Russo

Each stored Pydantic model represents a collection in MongoDB:
- User -> "users"
- Product -> "products"
- Order -> "orders" (line items embedded)
- Widget -> "widgets"
Cart lines ("cart") are upserted directly and have no model.

Request bodies accepted by the API live at the bottom of the file.
"""
from decimal import Decimal
from datetime import datetime
from typing import Any, Dict, List, Optional

from bson import ObjectId
from pydantic import AliasChoices, BaseModel, ConfigDict, EmailStr, Field

PHONE_PATTERN = r"^\+?[0-9][0-9\- ]{6,19}$"

# ---------- Stored documents ----------


class User(BaseModel):
    phone: str = Field(..., description="Phone number, unique")
    country_code: str = Field(..., description="Dialing code, e.g. +58")
    password_hash: str = Field(..., description="BCrypt hash of the password")
    first_name: Optional[str] = None
    last_name: Optional[str] = None
    email: Optional[str] = None
    avatar: Optional[str] = None
    theme: str = Field("dark-luxe", description="Client theme preference")
    language: str = Field("es-VE", description="Client locale preference")
    role: str = Field("user", description="Role of the account: user | admin")
    verified: bool = False
    verification_code: Optional[str] = Field(None, description="Pending one-time code")
    verification_expires: Optional[datetime] = None
    last_login: Optional[datetime] = None


class ProductImage(BaseModel):
    url: str
    alt: Optional[str] = None


class Product(BaseModel):
    name: str = Field(..., description="Product name")
    description: Optional[str] = Field(None, description="Long description")
    price_cents: int = Field(..., ge=0, description="Unit price in cents")
    category: Optional[str] = None
    subcategory: Optional[str] = None
    gender: Optional[str] = Field(None, description="Target gender segment")
    images: List[ProductImage] = Field(default_factory=list, description="Ordered image references")
    model_3d: Optional[str] = Field(None, description="3D model reference")
    specs: Dict[str, Any] = Field(default_factory=dict, description="Free-form specifications")
    stock: int = Field(0, ge=0, description="Units available to sell")
    featured: bool = False
    rating: float = Field(0, ge=0, le=5)
    reviews_count: int = Field(0, ge=0)


class OrderItem(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    product_id: ObjectId
    name: str = Field(..., description="Snapshot of product name at purchase time")
    unit_price_cents: int = Field(..., ge=0, description="Unit price at purchase time")
    quantity: int = Field(..., ge=1)


class Order(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user_id: ObjectId
    order_number: str
    items: List[OrderItem]
    total_cents: int = Field(..., ge=0, description="Order total, frozen at placement")
    status: str = Field("pending", description="Order status")
    shipping_address: str
    payment_method: str
    payment_status: str = "pending"
    tracking_number: Optional[str] = None


class Widget(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    user_id: ObjectId
    widget_type: str
    position: int = Field(0, ge=0)
    settings: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True


# ---------- Requests ----------


class RegisterRequest(BaseModel):
    phone: str = Field(..., pattern=PHONE_PATTERN)
    country_code: str = Field(..., min_length=2, max_length=5,
                              validation_alias=AliasChoices("country_code", "countryCode"))
    password: str
    first_name: Optional[str] = Field(None, min_length=2,
                                      validation_alias=AliasChoices("first_name", "firstName"))
    last_name: Optional[str] = Field(None, min_length=2,
                                     validation_alias=AliasChoices("last_name", "lastName"))


class VerifyRequest(BaseModel):
    phone: str
    code: str = Field(..., pattern=r"^[0-9]{6}$")


class ResendCodeRequest(BaseModel):
    phone: str


class LoginRequest(BaseModel):
    phone: str
    password: str


class ProfileUpdate(BaseModel):
    first_name: Optional[str] = Field(None, min_length=2)
    last_name: Optional[str] = Field(None, min_length=2)
    email: Optional[EmailStr] = None
    theme: Optional[str] = None
    language: Optional[str] = None


class ProductIn(BaseModel):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    price: Decimal = Field(..., ge=0, decimal_places=2)
    category: Optional[str] = None
    subcategory: Optional[str] = None
    gender: Optional[str] = None
    images: List[ProductImage] = Field(default_factory=list)
    specs: Dict[str, Any] = Field(default_factory=dict)
    stock: int = Field(0, ge=0)
    featured: bool = False
    rating: float = Field(0, ge=0, le=5)


class ModelAttachRequest(BaseModel):
    model_3d: str = Field(..., min_length=1, description="Reference to an uploaded 3D model")


class StockUpdate(BaseModel):
    stock: int = Field(..., ge=0)


class CartAddRequest(BaseModel):
    product_id: str = Field(..., validation_alias=AliasChoices("product_id", "productId"))
    quantity: int = Field(1, ge=1)


class CartUpdateRequest(BaseModel):
    quantity: int = Field(..., ge=1)


class OrderCreate(BaseModel):
    shipping_address: Optional[str] = None
    payment_method: Optional[str] = None


class OrderStatusUpdate(BaseModel):
    status: str = Field(..., min_length=1)
    tracking_number: Optional[str] = None


class WidgetIn(BaseModel):
    widget_type: str = Field(..., min_length=1)
    position: int = Field(0, ge=0)
    settings: Dict[str, Any] = Field(default_factory=dict)
    is_active: bool = True


class WidgetLayout(BaseModel):
    widgets: List[WidgetIn]
