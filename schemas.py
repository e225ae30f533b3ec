"""
Database Schemas for the shop

Each Pydantic model represents a collection in MongoDB.
Collection name is the lowercase of the class name by default.

We store:
- Customer (includes saved addresses and wishlist)
- Product
- Order (with line item and shipping address snapshots)
"""

from datetime import datetime
from typing import Dict, List, Optional

from pydantic import BaseModel, EmailStr, Field

# Normal progression first, then the side exit
ORDER_STATUSES = ("placed", "pending", "processing", "shipped", "in_transit", "delivered", "cancelled")

PROGRESSION = ORDER_STATUSES[:-1]
TERMINAL_STATUSES = {"delivered", "cancelled"}

# Forward-only along the progression; cancelled from any non-terminal status
VALID_TRANSITIONS: Dict[str, set] = {
    status: (
        set()
        if status in TERMINAL_STATUSES
        else set(PROGRESSION[PROGRESSION.index(status) + 1:]) | {"cancelled"}
    )
    for status in ORDER_STATUSES
}


def can_transition(current: Optional[str], target: str) -> bool:
    if current is None or current == target:
        return True
    return target in VALID_TRANSITIONS.get(current, set())


def allowed_predecessors(target: str) -> List[str]:
    """Statuses an order may currently hold and still move to ``target``."""
    return [s for s in ORDER_STATUSES if can_transition(s, target)]


class Address(BaseModel):
    id: str = Field(..., description="Address id as string")
    full_name: str
    phone_number: str
    label: str
    street_address: str
    city: str
    state: str
    zip_code: str
    is_default: bool = False


class Customer(BaseModel):
    """
    Customers collection schema
    Collection name: "customer"
    """
    email: EmailStr = Field(..., description="Email address")
    name: str = Field(..., description="Full name")
    phone_number: str = ""
    avatar_url: str = ""
    external_id: str = Field(..., description="Subject id at the identity provider")
    roles: List[str] = Field(default_factory=list, description="Roles mirrored from the token")

    addresses: List[Address] = Field(default_factory=list)
    wishlist: List[str] = Field(default_factory=list, description="Product ids as strings")


class Product(BaseModel):
    """
    Products collection schema
    Collection name: "product"
    """
    name: str = Field(..., description="Product name")
    description: str = Field("", description="Product description")
    price: float = Field(..., ge=0, description="Unit price")
    stock: int = Field(0, ge=0, description="Available inventory")
    category: str = Field(..., description="Product category")
    images: List[str] = Field(default_factory=list, max_length=3, description="Image URLs")
    is_active: bool = Field(True, description="Visible and purchasable in the catalog")


class OrderItem(BaseModel):
    product_id: str
    quantity: int = Field(..., ge=1)
    unit_price: float = Field(..., ge=0, description="Snapshot price at purchase time")


class ShippingAddress(BaseModel):
    full_name: str = Field(..., min_length=1)
    street_address: str = Field(..., min_length=1)
    city: str = Field(..., min_length=1)
    state: str = Field(..., min_length=1)
    zip_code: str = Field(..., min_length=1)
    phone_number: str = Field(..., min_length=1)


class Order(BaseModel):
    """
    Orders collection schema
    Collection name: "order"
    """
    customer_id: str
    items: List[OrderItem]
    shipping_address: ShippingAddress
    total_price: float = Field(..., ge=0)
    status: str = Field("placed", description=" | ".join(ORDER_STATUSES))
    # First time each status was reached (bulk updates overwrite)
    status_timestamps: Dict[str, datetime] = Field(default_factory=dict)
