from .commerce import (
    CartItem,
    CustomerInfo,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    Product,
    ShippingAddress,
)
from .entities import Letter, MemorialVideo, Pet, SyncedEntity
from .session import AuthSource, RememberedCredentials, Session, SessionState, SignUpResult

__all__ = [
    "AuthSource",
    "CartItem",
    "CustomerInfo",
    "Letter",
    "MemorialVideo",
    "Order",
    "OrderItem",
    "OrderStatus",
    "PaymentStatus",
    "Pet",
    "Product",
    "RememberedCredentials",
    "Session",
    "SessionState",
    "ShippingAddress",
    "SignUpResult",
    "SyncedEntity",
]
