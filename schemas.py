"""
Database Schemas for AuraMarket

Each Pydantic model below is the typed form of a stored document. Documents
are parsed here once, at the store boundary, so numeric strings, epoch
timestamps and missing fields are coerced in one place.

Collections (document store):
- SellerProfile -> "seller_profiles"
- Category -> "categories"
- Product -> "products"
- ProductVariant -> "product_variants"
- Review -> "reviews"
- CartItem -> "cart_items"
- Order -> "orders"

Users live in the relational identity store (see identity.py).
"""
from datetime import datetime, timezone
from typing import Any, Dict, List, Literal, Optional

from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator
from pydantic.alias_generators import to_camel

Role = Literal["buyer", "seller", "admin"]
SellerStatus = Literal["pending", "verified", "rejected"]
ProductStatus = Literal["draft", "active", "paused"]
OrderStatus = Literal["pending", "paid", "preparing", "shipped", "delivered", "cancelled"]
SortKey = Literal["newest", "price_asc", "price_desc", "rating", "popular"]

COMPLETED_ORDER_STATUSES = ("paid", "shipped", "delivered")


def coerce_int(value: Any) -> Any:
    """Numbers and numeric strings become ints; anything else is left for pydantic."""
    if value is None or isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        return int(value)
    if isinstance(value, str):
        try:
            return int(float(value.strip()))
        except ValueError:
            return value
    return value


def coerce_datetime(value: Any) -> Any:
    if value is None:
        return None
    if isinstance(value, (int, float)) and not isinstance(value, bool):
        # legacy epoch milliseconds
        return datetime.fromtimestamp(value / 1000, tz=timezone.utc)
    if isinstance(value, datetime) and value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


def document_id(doc: Dict[str, Any]) -> Optional[str]:
    if doc.get("id"):
        return str(doc["id"])
    if doc.get("_id") is not None:
        return str(doc["_id"])
    return None


class Document(BaseModel):
    """Base for stored entities: camelCase on the wire, snake_case in Python."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    @classmethod
    def from_document(cls, doc: Optional[Dict[str, Any]]):
        if not doc:
            return None
        data = {k: v for k, v in doc.items() if k != "_id"}
        data["id"] = document_id(doc)
        return cls.model_validate(data)

    def to_json(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json")

    @field_validator("created_at", mode="before", check_fields=False)
    @classmethod
    def coerce_timestamp(cls, value):
        return coerce_datetime(value)

    @field_validator("user_id", mode="before", check_fields=False)
    @classmethod
    def coerce_user_ref(cls, value):
        # identity-store ids are integers, references to them are strings
        return str(value) if isinstance(value, int) else value


# ---------- Identity ----------

class User(Document):
    id: int
    email: EmailStr
    password_hash: Optional[str] = None
    name: str = "Usuario"
    role: Role = "buyer"
    created_at: Optional[datetime] = None

    def public(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, mode="json", exclude={"password_hash"})


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(..., min_length=6)
    name: Optional[str] = None
    role: Literal["buyer", "seller"] = "buyer"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


# ---------- Catalog ----------

class SellerProfile(Document):
    id: Optional[str] = None
    user_id: str
    display_name: Optional[str] = None
    description: Optional[str] = None
    status: SellerStatus = "pending"
    location: Optional[str] = None
    rating: Optional[float] = None
    created_at: Optional[datetime] = None


class SellerProfileWrite(Document):
    display_name: Optional[str] = Field(None, max_length=120)
    description: Optional[str] = None
    location: Optional[str] = None


class Category(Document):
    id: Optional[str] = None
    name: str
    description: Optional[str] = None
    icon: Optional[str] = None
    parent_id: Optional[str] = None


class ProductVariant(Document):
    id: Optional[str] = None
    product_id: str
    sku: str = "DEFAULT-SKU"
    price_cents: int = Field(0, ge=0)
    currency: str = "CLP"
    stock: int = Field(0, ge=0)
    discount_percentage: int = Field(0, ge=0, le=100)
    shipping_cost_cents: int = Field(0, ge=0)
    is_free_shipping: bool = False
    attributes: Dict[str, Any] = Field(default_factory=dict)

    @field_validator("price_cents", "stock", "discount_percentage", "shipping_cost_cents", mode="before")
    @classmethod
    def coerce_amounts(cls, value):
        return 0 if value is None else coerce_int(value)

    @field_validator("is_free_shipping", mode="before")
    @classmethod
    def coerce_flag(cls, value):
        return bool(value) and value != "false"

    @field_validator("attributes", mode="before")
    @classmethod
    def default_attributes(cls, value):
        return value or {}


class Product(Document):
    """A catalog entry. Unknown fields are kept so views can return them."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: Optional[str] = None
    seller_id: Optional[str] = None
    category_id: Optional[str] = None
    title: str = ""
    slug: Optional[str] = None
    description: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    status: ProductStatus = "draft"
    brand: Optional[str] = None
    created_at: Optional[datetime] = None

    # legacy flat pricing, present only on products created before variants
    price_cents: Optional[int] = None
    price: Optional[int] = None
    stock: Optional[int] = None
    discount_percentage: Optional[int] = None
    shipping_cost_cents: Optional[int] = None
    is_free_shipping: Optional[bool] = None
    sku: Optional[str] = None
    currency: Optional[str] = None

    @field_validator("price_cents", "price", "stock", "discount_percentage", "shipping_cost_cents", mode="before")
    @classmethod
    def coerce_legacy_amounts(cls, value):
        return coerce_int(value)

    @field_validator("images", mode="before")
    @classmethod
    def default_images(cls, value):
        return value or []


class Review(Document):
    id: Optional[str] = None
    user_id: str
    product_id: str
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None
    user_name: Optional[str] = None
    created_at: Optional[datetime] = None

    @field_validator("rating", mode="before")
    @classmethod
    def coerce_rating(cls, value):
        return coerce_int(value)


class ReviewWrite(Document):
    rating: int = Field(..., ge=1, le=5)
    comment: Optional[str] = None


class SellerSummary(Document):
    """Seller block embedded in product views."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="allow")

    id: Optional[str] = None
    user_id: Optional[str] = None
    display_name: str
    name: str
    status: Optional[SellerStatus] = None
    location: Optional[str] = None
    description: Optional[str] = None


class ProductView(Product):
    """Fully hydrated product returned by the aggregation engine."""

    variants: List[ProductVariant]
    variant_id: Optional[str] = None
    price_cents: int = 0
    price: int = 0
    stock: int = 0
    sku: Optional[str] = None
    discount_percentage: int = 0
    is_free_shipping: bool = False
    free_shipping: bool = False
    shipping_cost: float = 0.0
    shipping_cost_cents: int = 0
    seller: SellerSummary
    seller_name: str
    review_count: int = 0
    rating: float = 0.0


# ---------- Writes ----------

class ProductWrite(Document):
    """Flat product payload as sent by the dashboard. Money fields are major units."""

    title: str = Field(..., min_length=1)
    description: Optional[str] = None
    category_id: Optional[str] = None
    slug: Optional[str] = None
    images: List[str] = Field(default_factory=list)
    status: ProductStatus = "draft"
    brand: Optional[str] = None
    seller_id: Optional[str] = None
    price: float = Field(..., ge=0)
    sku: str = "DEFAULT-SKU"
    stock: int = Field(0, ge=0)
    discount_percentage: int = Field(0, ge=0, le=100)
    shipping_cost: float = Field(0, ge=0)
    is_free_shipping: bool = False


class ProductUpdate(Document):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True, extra="ignore")

    title: Optional[str] = Field(None, min_length=1)
    description: Optional[str] = None
    category_id: Optional[str] = None
    slug: Optional[str] = None
    images: Optional[List[str]] = None
    status: Optional[ProductStatus] = None
    brand: Optional[str] = None
    price: Optional[float] = Field(None, ge=0)
    sku: Optional[str] = None
    stock: Optional[int] = Field(None, ge=0)
    discount_percentage: Optional[int] = Field(None, ge=0, le=100)
    shipping_cost: Optional[float] = Field(None, ge=0)
    is_free_shipping: Optional[bool] = None


class CategoryWrite(Document):
    name: str = Field(..., min_length=1)
    description: Optional[str] = None
    icon: Optional[str] = None
    parent_id: Optional[str] = None


# ---------- Cart & Orders ----------

class CartItem(Document):
    id: Optional[str] = None
    user_id: str
    variant_id: str
    quantity: int = Field(1, ge=0)

    @field_validator("quantity", mode="before")
    @classmethod
    def coerce_quantity(cls, value):
        return coerce_int(value)


class CartLine(CartItem):
    product_id: Optional[str] = None
    product_name: str
    sku: str
    product_price: int = 0
    product_currency: str = "CLP"
    product_image: str = "placeholder.jpg"
    available: bool = True


class CartAdd(Document):
    variant_id: str = Field(..., min_length=1)
    quantity: int = Field(1, ge=1)


class CartUpdate(Document):
    variant_id: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=0)


class OrderItem(Document):
    id: Optional[str] = None
    variant_id: str
    seller_id: Optional[str] = None
    product_id: Optional[str] = None
    unit_price_cents: Optional[int] = Field(None, ge=0)
    quantity: int = Field(1, ge=1)

    @field_validator("unit_price_cents", "quantity", mode="before")
    @classmethod
    def coerce_amounts(cls, value):
        return coerce_int(value)


class Order(Document):
    id: Optional[str] = None
    user_id: str
    status: OrderStatus = "pending"
    total_cents: int = 0
    currency: str = "CLP"
    shipping_address_id: Optional[str] = None
    items: List[OrderItem] = Field(default_factory=list)
    created_at: Optional[datetime] = None

    @field_validator("total_cents", mode="before")
    @classmethod
    def coerce_total(cls, value):
        return 0 if value is None else coerce_int(value)


class OrderCreate(Document):
    """Checkout payload. Status, totals and line prices are set by the server."""

    items: List[OrderItem] = Field(..., min_length=1)
    currency: Optional[str] = None
    shipping_address_id: Optional[str] = None
    clear_cart: bool = False
