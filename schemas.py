"""
Database Schemas for the Storefront API

Each top-level model corresponds to one MongoDB collection.
Collection name is the lowercase of the class name.
"""
from typing import Any, Dict, List, Literal, Optional

from bson import ObjectId
from pydantic import BaseModel, ConfigDict, EmailStr, Field, field_validator, model_validator

ORDER_STATUSES = ("Pending", "Processing", "Shipped", "Delivered", "Cancelled")
PAYMENT_STATUSES = ("Pending", "Paid", "Failed", "Cancelled", "Refunded")
PAYMENT_METHODS = ("Cash On Delivery", "Online")
ADDRESS_FIELDS = ("street", "city", "state", "postal_code", "country")

ONLINE = "Online"


class User(BaseModel):
    name: str = Field(..., min_length=1, description="Full name")
    email: EmailStr
    password: Optional[str] = Field(None, description="Password hash, empty for federated sign-in")
    role: Literal["user", "admin"] = "user"
    provider: Literal["local", "google"] = "local"


class StockEntry(BaseModel):
    size: str = Field(..., min_length=1)
    quantity: int = Field(..., ge=0)

    @field_validator("size")
    @classmethod
    def size_not_blank(cls, v: str) -> str:
        if not v.strip():
            raise ValueError("Each stock entry must have a size")
        return v.strip()


class Product(BaseModel):
    name: str = Field(..., min_length=1)
    description: str = Field(..., min_length=1)
    price: float = Field(..., gt=0, allow_inf_nan=False)
    offer_price: Optional[float] = Field(None, gt=0, allow_inf_nan=False)
    image: str
    stock: List[StockEntry] = Field(..., min_length=1)
    category: str = Field(..., min_length=1)
    sub_category: str = Field(..., min_length=1)
    brand: str = Field(..., min_length=1)
    best_selling: bool = False
    new_arrival: bool = False

    @model_validator(mode="after")
    def check_prices_and_sizes(self):
        if self.offer_price is not None and self.offer_price >= self.price:
            raise ValueError("Offer price must be less than the regular price")
        validate_stock(self.stock)
        return self


class OrderItem(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    product: ObjectId
    name: str
    size: str
    quantity: int = Field(..., gt=0)
    price: float
    offer_price: Optional[float] = None


class ShippingAddress(BaseModel):
    street: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    postal_code: str = Field(..., min_length=1)
    country: str = Field(..., min_length=1)


class Order(BaseModel):
    model_config = ConfigDict(arbitrary_types_allowed=True)

    order_id: str
    user: ObjectId
    phone_number: str = Field(..., min_length=1)
    products: List[OrderItem] = Field(..., min_length=1)
    total_price: float = Field(..., gt=0)
    shipping_address: ShippingAddress
    order_status: Literal["Pending", "Processing", "Shipped", "Delivered", "Cancelled"] = "Pending"
    payment_method: Literal["Cash On Delivery", "Online"]
    payment_status: Literal["Pending", "Paid", "Failed", "Cancelled", "Refunded"] = "Pending"
    payment_info: Dict[str, Any] = {}
    stock_reserved: bool = False


def validate_stock(stock) -> None:
    """Reject stock lists that repeat a size, ignoring case.

    Accepts StockEntry models or plain dicts so the same check guards every
    write path.
    """
    sizes = [(s.size if isinstance(s, StockEntry) else s["size"]).lower() for s in stock]
    if len(set(sizes)) != len(sizes):
        raise ValueError("Duplicate sizes found in stock entries")
