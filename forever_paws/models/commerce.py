"""Cart and order models (local until checkout)"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, List, Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class OrderStatus(str, Enum):
    PENDING = "pending"
    CONFIRMED = "confirmed"
    PROCESSING = "processing"
    SHIPPED = "shipped"
    DELIVERED = "delivered"
    CANCELLED = "cancelled"


class PaymentStatus(str, Enum):
    PENDING = "pending"
    PAID = "paid"
    FAILED = "failed"
    REFUNDED = "refunded"


ORDER_TRANSITIONS: Dict[OrderStatus, set] = {
    OrderStatus.PENDING: {OrderStatus.CONFIRMED, OrderStatus.CANCELLED},
    OrderStatus.CONFIRMED: {OrderStatus.PROCESSING, OrderStatus.CANCELLED},
    OrderStatus.PROCESSING: {OrderStatus.SHIPPED},
    OrderStatus.SHIPPED: {OrderStatus.DELIVERED},
    OrderStatus.DELIVERED: set(),
    OrderStatus.CANCELLED: set(),
}

PAYMENT_TRANSITIONS: Dict[PaymentStatus, set] = {
    PaymentStatus.PENDING: {PaymentStatus.PAID, PaymentStatus.FAILED},
    PaymentStatus.PAID: {PaymentStatus.REFUNDED},
    PaymentStatus.FAILED: set(),
    PaymentStatus.REFUNDED: set(),
}


class Product(BaseModel):
    """A catalogue product as the cart sees it."""
    ref: str
    name: str
    price: float = Field(ge=0)
    currency: str = "USD"


class CartItem(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    product_ref: str
    product_name: str = ""
    unit_price: float = Field(ge=0)
    quantity: int = Field(ge=1)
    customization: Optional[Dict[str, Any]] = None
    added_at: datetime = Field(default_factory=utcnow)

    @property
    def line_total(self) -> float:
        return round(self.unit_price * self.quantity, 2)


class ShippingAddress(BaseModel):
    recipient_name: str
    phone: str
    address_line1: str
    address_line2: Optional[str] = None
    city: str
    state: str = ""
    postal_code: str
    country: str


class CustomerInfo(BaseModel):
    shipping_address: ShippingAddress
    email: Optional[str] = None
    notes: Optional[str] = None


class OrderItem(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    order_id: str
    product_ref: str
    product_name: str = ""
    quantity: int = Field(ge=1)
    unit_price: float = Field(ge=0)
    total_price: float = Field(ge=0)
    customization: Optional[Dict[str, Any]] = None

    @classmethod
    def from_cart_item(cls, item: CartItem, order_id: str) -> "OrderItem":
        return cls(
            order_id=order_id,
            product_ref=item.product_ref,
            product_name=item.product_name,
            quantity=item.quantity,
            unit_price=item.unit_price,
            total_price=item.line_total,
            customization=item.customization,
        )


class Order(BaseModel):
    id: str = Field(default_factory=lambda: str(uuid4()))
    user_id: str
    items: List[OrderItem] = Field(default_factory=list)
    total_amount: float = Field(ge=0)
    currency: str = "USD"
    status: OrderStatus = OrderStatus.PENDING
    payment_status: PaymentStatus = PaymentStatus.PENDING
    shipping_address: Optional[ShippingAddress] = None
    tracking_number: Optional[str] = None
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=utcnow)
    updated_at: datetime = Field(default_factory=utcnow)
