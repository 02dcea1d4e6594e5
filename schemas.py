"""
Database Schemas for the MarketPlace TG app

Each Pydantic model maps to a MongoDB collection. Documents read back from
the database go through `from_document`, which turns `_id` into `id` and
rejects records that do not match the schema.

Collections:
- users
- products
- carts
- orders
- commissions
- payment_sessions

Money amounts are XOF as `Decimal`, stored as Decimal128.
"""
from datetime import datetime
from decimal import Decimal
from enum import Enum
from typing import Annotated, Any, ClassVar, Dict, List, Optional

from bson import Decimal128
from pydantic import BaseModel, BeforeValidator, ConfigDict, EmailStr, Field, ValidationError

import config
from database import to_bson
from errors import MalformedDocumentError


def _decimal_from_bson(value: Any) -> Any:
    if isinstance(value, Decimal128):
        return value.to_decimal()
    return value


Money = Annotated[Decimal, BeforeValidator(_decimal_from_bson)]


class UserRole(str, Enum):
    BUYER = "buyer"
    SELLER = "seller"
    ADMIN = "admin"


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


TERMINAL_ORDER_STATUSES = {OrderStatus.DELIVERED.value, OrderStatus.CANCELLED.value}


class PaymentMethod(str, Enum):
    FLOOZ = "flooz"
    TMONEY = "tmoney"
    ORANGE_MONEY = "orange_money"


class PaymentState(str, Enum):
    METHOD_SELECTION = "method_selection"
    OTP_REQUESTED = "otp_requested"
    PROCESSING = "processing"
    PAID = "paid"
    FAILED = "failed"


class CommissionStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"


class ProductCategory(str, Enum):
    CLOTHING = "clothing"
    ACCESSORIES = "accessories"
    SHOES = "shoes"
    ELECTRONICS = "electronics"
    HOME = "home"
    BEAUTY = "beauty"
    FOOD = "food"
    SERVICES = "services"


class Document(BaseModel):
    """Common fields and the decoding boundary for stored documents."""

    model_config = ConfigDict(use_enum_values=True, validate_default=True)

    collection: ClassVar[str] = ""

    id: Optional[str] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None

    @classmethod
    def from_document(cls, doc: Dict[str, Any]):
        data = dict(doc)
        if "_id" in data:
            data["id"] = str(data.pop("_id"))
        try:
            return cls.model_validate(data)
        except ValidationError as e:
            first = e.errors()[0]
            loc = ".".join(str(p) for p in first["loc"])
            raise MalformedDocumentError(cls.collection, data.get("id"), f"{loc}: {first['msg']}")

    def to_document(self) -> Dict[str, Any]:
        return to_bson(self.model_dump(exclude={"id"}))


class User(Document):
    """
    Users collection schema
    Collection name: "users"
    """
    collection: ClassVar[str] = config.USERS

    email: EmailStr = Field(..., description="Email address")
    password_hash: str = Field(..., description="BCrypt password hash")
    first_name: str = Field(..., description="First name")
    last_name: str = Field(..., description="Last name")
    phone: Optional[str] = Field(None, description="Togolese phone number")
    role: UserRole = Field(UserRole.BUYER, description="buyer | seller | admin")
    is_active: bool = Field(True, description="Whether the account may sign in")
    # Seller-only fields
    shop_name: Optional[str] = None
    shop_description: Optional[str] = None
    shop_rating: float = Field(0, ge=0, le=5)
    total_products: int = Field(0, ge=0)
    total_sales: int = Field(0, ge=0)

    @property
    def full_name(self) -> str:
        return f"{self.first_name} {self.last_name}"


class UserOut(BaseModel):
    model_config = ConfigDict(use_enum_values=True)

    id: str
    email: EmailStr
    first_name: str
    last_name: str
    phone: Optional[str] = None
    role: UserRole
    is_active: bool
    shop_name: Optional[str] = None
    shop_description: Optional[str] = None
    shop_rating: float = 0
    total_products: int = 0
    total_sales: int = 0

    @classmethod
    def from_user(cls, user: User) -> "UserOut":
        return cls(**user.model_dump(exclude={"password_hash", "created_at", "updated_at"}))


class Product(Document):
    """
    Products collection schema
    Collection name: "products"
    """
    collection: ClassVar[str] = config.PRODUCTS

    name: str = Field(..., description="Product name")
    description: Optional[str] = Field(None, description="Product description")
    category: ProductCategory = Field(..., description="Catalog category")
    price: Money = Field(
        ..., gt=config.MIN_PRICE, le=config.MAX_PRICE, decimal_places=config.PRICE_DECIMALS, description="Price in XOF"
    )
    stock: int = Field(0, ge=0, description="Units in stock")
    seller_id: str = Field(..., description="Owning seller's user id")
    seller_name: Optional[str] = Field(None, description="Shop name at listing time")
    image_url: Optional[str] = Field(None, description="Primary image URL")
    images: List[str] = Field(default_factory=list, description="Image URLs")
    is_active: bool = Field(True, description="Visible and purchasable")
    rating: float = Field(0, ge=0, le=5, description="Average rating")
    review_count: int = Field(0, ge=0)
    view_count: int = Field(0, ge=0)
    sold_count: int = Field(0, ge=0)


class ProductDraft(BaseModel):
    """Seller input for a new listing."""

    model_config = ConfigDict(str_strip_whitespace=True, use_enum_values=True)

    name: str = Field(..., min_length=config.NAME_LENGTH[0], max_length=config.NAME_LENGTH[1])
    description: str = Field(
        ..., min_length=config.DESCRIPTION_LENGTH[0], max_length=config.DESCRIPTION_LENGTH[1]
    )
    category: ProductCategory
    price: Money = Field(..., gt=config.MIN_PRICE, le=config.MAX_PRICE, decimal_places=config.PRICE_DECIMALS)
    stock: int = Field(..., ge=0, le=config.MAX_LISTING_STOCK)
    image_url: Optional[str] = None


class ProductUpdate(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True, use_enum_values=True)

    name: Optional[str] = Field(None, min_length=config.NAME_LENGTH[0], max_length=config.NAME_LENGTH[1])
    description: Optional[str] = Field(
        None, min_length=config.DESCRIPTION_LENGTH[0], max_length=config.DESCRIPTION_LENGTH[1]
    )
    category: Optional[ProductCategory] = None
    price: Optional[Money] = Field(None, gt=config.MIN_PRICE, le=config.MAX_PRICE, decimal_places=config.PRICE_DECIMALS)
    stock: Optional[int] = Field(None, ge=0, le=config.MAX_LISTING_STOCK)
    image_url: Optional[str] = None


class ProductPage(BaseModel):
    items: List[Product]
    next_cursor: Optional[str] = Field(None, description="Pass to get the next page; null when exhausted")


class CartItem(BaseModel):
    """One cart line. Price and seller are snapshotted when the line is created."""

    product_id: str
    name: str
    price: Money = Field(..., gt=0)
    image_url: Optional[str] = None
    seller_id: str
    seller_name: Optional[str] = None
    quantity: int = Field(1, ge=1)
    options: Dict[str, str] = Field(default_factory=dict, description="size / color / material")
    added_at: Optional[datetime] = None

    @property
    def line_total(self) -> Decimal:
        return self.price * self.quantity

    def matches(self, product_id: str, options: Optional[Dict[str, str]]) -> bool:
        return self.product_id == product_id and self.options == (options or {})


class Cart(Document):
    """
    Carts collection schema, one document per user
    Collection name: "carts"
    """
    collection: ClassVar[str] = config.CARTS

    user_id: str
    items: List[CartItem] = Field(default_factory=list)


class CommissionSplit(BaseModel):
    platform: Money = Field(..., ge=0)
    seller: Money = Field(..., ge=0)


class OrderItem(CartItem):
    commission: CommissionSplit


class ShippingAddress(BaseModel):
    model_config = ConfigDict(str_strip_whitespace=True)

    full_name: str = Field(..., min_length=1)
    address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    postal_code: Optional[str] = None
    delivery_notes: Optional[str] = None


class Order(Document):
    """
    Orders collection schema
    Collection name: "orders"
    """
    collection: ClassVar[str] = config.ORDERS

    buyer_id: str
    items: List[OrderItem]
    total_amount: Money = Field(..., ge=0)
    commission: CommissionSplit
    status: OrderStatus = Field(OrderStatus.PENDING)
    payment_method: Optional[PaymentMethod] = None
    payment_status: Optional[str] = None
    transaction_id: Optional[str] = None
    paid_amount: Optional[Money] = None
    payment_date: Optional[datetime] = None
    shipping_address: Optional[ShippingAddress] = None
    tracking_number: Optional[str] = None

    def has_seller(self, seller_id: str) -> bool:
        return any(item.seller_id == seller_id for item in self.items)


class Commission(Document):
    """
    Commissions collection schema, one record per order line
    Collection name: "commissions"
    """
    collection: ClassVar[str] = config.COMMISSIONS

    order_id: str
    seller_id: str
    product_id: str
    total_amount: Money = Field(..., ge=0)
    platform_amount: Money = Field(..., ge=0)
    seller_amount: Money = Field(..., ge=0)
    status: CommissionStatus = Field(CommissionStatus.PENDING)
    paid_at: Optional[datetime] = None


class PaymentSession(Document):
    """
    In-progress mobile money payment for one order
    Collection name: "payment_sessions"
    """
    collection: ClassVar[str] = config.PAYMENT_SESSIONS

    order_id: str
    buyer_id: str
    state: PaymentState = Field(PaymentState.METHOD_SELECTION)
    method: Optional[PaymentMethod] = None
    phone: Optional[str] = None
    attempts: int = Field(0, ge=0)
    last_error: Optional[str] = None
