"""
Database and request schemas for the shop.

Stored documents live in collections named after the lowercase model name
(a cart holds CartItem lines). Fields are exposed and stored in
camelCase.

- User -> "user"
- Product -> "product"
- Cart -> "cart"
- Order -> "order"
"""
from typing import Annotated, Any, List, Literal, Optional

from bson.objectid import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, StringConstraints, field_validator
from pydantic.alias_generators import to_camel

NonEmptyStr = Annotated[str, StringConstraints(strip_whitespace=True, min_length=1)]

ORDER_STATUSES = ("pending", "processing", "shipped", "delivered", "cancelled")
PAYMENT_STATUSES = ("pending", "paid", "failed", "refunded")

OrderStatus = Literal[ORDER_STATUSES]
PaymentStatus = Literal[PAYMENT_STATUSES]
Role = Literal["customer", "admin"]


class CamelModel(BaseModel):
    model_config = ConfigDict(
        alias_generator=to_camel,
        populate_by_name=True,
        arbitrary_types_allowed=True,
    )


def _normalize_email(value):
    return value.strip().lower() if isinstance(value, str) else value


# bcrypt only looks at the first 72 bytes of a password
MAX_PASSWORD_BYTES = 72

Password = Annotated[str, StringConstraints(min_length=6, max_length=MAX_PASSWORD_BYTES)]


def _check_password_bytes(value):
    if value is not None and len(value.encode("utf-8")) > MAX_PASSWORD_BYTES:
        raise ValueError(f"Password must be at most {MAX_PASSWORD_BYTES} bytes")
    return value


# ----------------------- Stored documents -----------------------
class User(CamelModel):
    """Users collection schema"""
    first_name: str = Field(..., description="First name")
    last_name: str = Field(..., description="Last name")
    email: EmailStr = Field(..., description="Email address, stored lower-case")
    password: str = Field(..., description="bcrypt password hash")
    role: Role = Field("customer", description="customer or admin")


class Product(CamelModel):
    """Products collection schema"""
    name: str
    price: float = Field(..., ge=0)
    description: Optional[str] = None
    category: str
    quantity: int = Field(1, ge=0)
    in_stock: bool = Field(True, description="Always quantity > 0")
    images: List[str] = []


class CartItem(CamelModel):
    product: ObjectId
    quantity: int = Field(..., ge=1)
    price: float = Field(..., ge=0, description="Price snapshot taken when the item was added")


class Cart(CamelModel):
    """Carts collection schema, one per user"""
    user: ObjectId
    items: List[CartItem] = []
    total_amount: float = 0


class OrderItem(CamelModel):
    product: ObjectId
    quantity: int = Field(..., ge=1)
    price: float
    name: str


class ShippingAddress(CamelModel):
    street: NonEmptyStr
    city: NonEmptyStr
    country: NonEmptyStr
    zip_code: NonEmptyStr


class Order(CamelModel):
    user: ObjectId
    items: List[OrderItem]
    total_amount: float
    shipping_address: ShippingAddress
    status: OrderStatus = "pending"
    payment_status: PaymentStatus = "pending"


# ----------------------- Request bodies -----------------------
class RegisterBody(CamelModel):
    first_name: NonEmptyStr
    last_name: NonEmptyStr
    email: EmailStr
    password: Password

    normalize_email = field_validator("email", mode="before")(_normalize_email)
    check_password = field_validator("password")(_check_password_bytes)


class LoginBody(CamelModel):
    email: EmailStr
    password: NonEmptyStr

    normalize_email = field_validator("email", mode="before")(_normalize_email)


class UserCreateBody(RegisterBody):
    role: Role = "customer"


class UserUpdateBody(CamelModel):
    first_name: Optional[NonEmptyStr] = None
    last_name: Optional[NonEmptyStr] = None
    email: Optional[EmailStr] = None
    password: Optional[Password] = None
    role: Optional[Role] = None

    normalize_email = field_validator("email", mode="before")(_normalize_email)
    check_password = field_validator("password")(_check_password_bytes)


class ProductCreateBody(CamelModel):
    name: NonEmptyStr
    price: float = Field(..., ge=0)
    description: Optional[str] = None
    category: NonEmptyStr
    quantity: int = Field(1, ge=0)
    images: List[str] = []


class ProductUpdateBody(CamelModel):
    name: Optional[NonEmptyStr] = None
    price: Optional[float] = Field(None, ge=0)
    description: Optional[str] = None
    category: Optional[NonEmptyStr] = None
    quantity: Optional[int] = Field(None, ge=0)
    images: Optional[List[str]] = None


class CartAddBody(CamelModel):
    product_id: NonEmptyStr
    quantity: int = Field(..., ge=1)


class CartUpdateBody(CamelModel):
    product_id: NonEmptyStr
    quantity: int = Field(..., ge=0)


class CartRemoveBody(CamelModel):
    product_id: NonEmptyStr


class OrderCreateBody(CamelModel):
    shipping_address: ShippingAddress


class OrderStatusBody(CamelModel):
    # checked against ORDER_STATUSES by the workflow so the error reads "Invalid status"
    status: Any = None
