"""Cart, checkout and order progression"""

from .cart_service import CartService
from .order_simulator import OrderStatusSimulator

__all__ = ["CartService", "OrderStatusSimulator"]
