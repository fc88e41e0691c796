"""
Cart and checkout for the signed-in user.

The cart lives only in the local store until checkout. Every operation
re-reads it from the store, so a failed write never leaves stale state in
memory. Mutations run on the owner thread.
"""

import time
from typing import Any, Callable, Dict, List, Optional, Tuple
from uuid import uuid4

from ..core.events import EventBus, LocalStoreChanged, OrderStatusChanged
from ..core.owner import OwnerExecutor
from ..models.commerce import (
    ORDER_TRANSITIONS,
    PAYMENT_TRANSITIONS,
    CartItem,
    CustomerInfo,
    Order,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    Product,
    utcnow,
)
from ..stores.local_store import LocalStore
from ..utils.exceptions import (
    CartItemNotFound,
    CheckoutError,
    EmptyCart,
    InvalidInput,
    InvalidStatusTransition,
    OrderNotFound,
    PersistenceError,
    SessionSuperseded,
)
from ..utils.logger import get_logger
from .order_simulator import OrderStatusSimulator

logger = get_logger(__name__)


class CartService:
    def __init__(
        self,
        session_manager,
        store: LocalStore,
        owner: OwnerExecutor,
        events: EventBus,
        empty_cart_recheck_delay: float = 0.5,
        currency: str = "USD",
        simulate_order_progress: bool = False,
        simulation_step_seconds: float = 2.0,
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.sessions = session_manager
        self.store = store
        self.owner = owner
        self.events = events
        self.empty_cart_recheck_delay = empty_cart_recheck_delay
        self.currency = currency
        self._sleep = sleep
        self.simulator: Optional[OrderStatusSimulator] = None
        if simulate_order_progress:
            self.simulator = OrderStatusSimulator(self.advance_status, simulation_step_seconds)

    def _user_id(self) -> str:
        return self.sessions.require_session().user_id

    def _bound_user(self) -> Tuple[str, int]:
        """Current user id and the session generation it belongs to."""
        generation = self.sessions.generation
        return self._user_id(), generation

    def _cart_changed(self, user_id: str) -> None:
        self.events.publish(LocalStoreChanged(table="cart_items", user_id=user_id))

    # ------------------------------------------------------------------
    # Cart
    # ------------------------------------------------------------------

    def add_to_cart(
        self,
        product: Product,
        quantity: int = 1,
        customization: Optional[Dict[str, Any]] = None,
    ) -> CartItem:
        """Add a product, merging into an existing line for the same product."""
        if quantity < 1:
            raise InvalidInput("Quantity must be at least 1.")
        user_id, generation = self._bound_user()
        item = self.owner.run(self._add, user_id, generation, product, quantity, customization)
        logger.info("Cart updated", user_id=user_id, product_ref=product.ref, quantity=item.quantity)
        self._cart_changed(user_id)
        return item

    def _add(
        self,
        user_id: str,
        generation: int,
        product: Product,
        quantity: int,
        customization: Optional[Dict[str, Any]],
    ) -> CartItem:
        self.sessions.check_generation(generation)
        items = self.store.list_cart(user_id)
        existing = next((i for i in items if i.product_ref == product.ref), None)
        if existing is not None:
            merged = existing.model_copy(update={"quantity": existing.quantity + quantity})
            if customization is not None:
                merged = merged.model_copy(update={"customization": customization})
            self.store.update_cart_item(merged)
            return merged

        item = CartItem(
            user_id=user_id,
            product_ref=product.ref,
            product_name=product.name,
            unit_price=product.price,
            quantity=quantity,
            customization=customization,
        )
        self.store.insert_cart_item(item)
        return item

    def update_quantity(self, item_id: str, quantity: int) -> Optional[CartItem]:
        """Set a line's quantity. Zero removes the line and returns None."""
        if quantity < 0:
            raise InvalidInput("Quantity cannot be negative.")
        if quantity == 0:
            self.remove_item(item_id)
            return None
        user_id, generation = self._bound_user()
        item = self.owner.run(self._set_quantity, user_id, generation, item_id, quantity)
        self._cart_changed(user_id)
        return item

    def _set_quantity(self, user_id: str, generation: int, item_id: str, quantity: int) -> CartItem:
        self.sessions.check_generation(generation)
        current = next((i for i in self.store.list_cart(user_id) if i.id == item_id), None)
        if current is None:
            raise CartItemNotFound(f"Cart item {item_id} not found")
        updated = current.model_copy(update={"quantity": quantity})
        self.store.update_cart_item(updated)
        return updated

    def remove_item(self, item_id: str) -> None:
        user_id, generation = self._bound_user()
        self.owner.run(self._remove, user_id, generation, item_id)
        self._cart_changed(user_id)

    def _remove(self, user_id: str, generation: int, item_id: str) -> None:
        self.sessions.check_generation(generation)
        if not self.store.delete_cart_item(item_id, user_id):
            raise CartItemNotFound(f"Cart item {item_id} not found")

    def cart_items(self) -> List[CartItem]:
        return self.store.list_cart(self._user_id())

    def cart_total(self) -> float:
        return round(sum(item.line_total for item in self.cart_items()), 2)

    # ------------------------------------------------------------------
    # Checkout
    # ------------------------------------------------------------------

    def checkout(self, customer_info: CustomerInfo) -> Order:
        user_id, generation = self._bound_user()

        items = self.owner.run(self.store.list_cart, user_id)
        if not items:
            # The cart may still be settling from a concurrent write
            self._sleep(self.empty_cart_recheck_delay)
            items = self.owner.run(self.store.list_cart, user_id)
        if not items:
            raise EmptyCart("Cart is empty")

        order_id = str(uuid4())
        order_items = [OrderItem.from_cart_item(item, order_id) for item in items]
        order = Order(
            id=order_id,
            user_id=user_id,
            items=order_items,
            total_amount=round(sum(i.total_price for i in order_items), 2),
            currency=self.currency,
            shipping_address=customer_info.shipping_address,
            notes=customer_info.notes,
        )

        try:
            self.owner.run(self._place_order, order, user_id, generation)
        except SessionSuperseded as e:
            logger.warning("Checkout abandoned; session changed", user_id=user_id)
            raise CheckoutError("Your session changed before the order was placed.") from e
        except PersistenceError as e:
            logger.error("Checkout failed", user_id=user_id, error=str(e))
            raise CheckoutError(f"Could not place order: {e}") from e

        logger.info("Order placed", user_id=user_id, order_id=order.id, total=order.total_amount, items=len(order_items))
        self._cart_changed(user_id)
        self.events.publish(LocalStoreChanged(table="orders", user_id=user_id))
        if self.simulator is not None:
            self.simulator.start(order.id, user_id)
        return order

    def _place_order(self, order: Order, user_id: str, generation: int) -> None:
        self.sessions.check_generation(generation)
        self.store.create_order_from_cart(order, user_id)

    # ------------------------------------------------------------------
    # Orders
    # ------------------------------------------------------------------

    def orders(self) -> List[Order]:
        return self.store.list_orders(self._user_id())

    def get_order(self, order_id: str) -> Order:
        order = self.store.get_order(order_id, self._user_id())
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")
        return order

    def cancel_order(self, order_id: str) -> Order:
        """Cancel a pending or confirmed order; a paid order is refunded."""
        order = self.get_order(order_id)
        payment = PaymentStatus.REFUNDED if order.payment_status == PaymentStatus.PAID else None
        return self.advance_status(order_id, status=OrderStatus.CANCELLED, payment_status=payment)

    def advance_status(
        self,
        order_id: str,
        status: Optional[OrderStatus] = None,
        payment_status: Optional[PaymentStatus] = None,
        tracking_number: Optional[str] = None,
        user_id: Optional[str] = None,
    ) -> Order:
        """Move an order along its state machine. Illegal moves raise InvalidStatusTransition."""
        user_id = user_id or self._user_id()
        order = self.owner.run(self._advance, order_id, user_id, status, payment_status, tracking_number)
        self.events.publish(
            OrderStatusChanged(
                order_id=order.id,
                user_id=user_id,
                status=order.status.value,
                payment_status=order.payment_status.value,
            )
        )
        return order

    def _advance(
        self,
        order_id: str,
        user_id: str,
        status: Optional[OrderStatus],
        payment_status: Optional[PaymentStatus],
        tracking_number: Optional[str],
    ) -> Order:
        order = self.store.get_order(order_id, user_id)
        if order is None:
            raise OrderNotFound(f"Order {order_id} not found")

        updates: Dict[str, Any] = {"updated_at": utcnow()}
        if status is not None and status != order.status:
            if status not in ORDER_TRANSITIONS[order.status]:
                raise InvalidStatusTransition(f"Order cannot go from {order.status.value} to {status.value}")
            updates["status"] = status
        if payment_status is not None and payment_status != order.payment_status:
            if payment_status not in PAYMENT_TRANSITIONS[order.payment_status]:
                raise InvalidStatusTransition(
                    f"Payment cannot go from {order.payment_status.value} to {payment_status.value}"
                )
            if payment_status == PaymentStatus.PAID and order.status == OrderStatus.CANCELLED:
                raise InvalidStatusTransition("A cancelled order cannot be paid")
            updates["payment_status"] = payment_status
        if tracking_number:
            updates["tracking_number"] = tracking_number

        updated = order.model_copy(update=updates)
        if not self.store.update_order(updated):
            raise OrderNotFound(f"Order {order_id} not found")
        logger.info(
            "Order status changed",
            order_id=order_id,
            status=updated.status.value,
            payment_status=updated.payment_status.value,
        )
        return updated
