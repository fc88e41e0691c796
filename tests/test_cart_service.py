"""Cart merge, checkout atomicity and order progression."""

import pytest

from forever_paws.commerce import cart_service
from forever_paws.commerce.cart_service import CartService
from forever_paws.commerce.order_simulator import OrderStatusSimulator
from forever_paws.core.events import OrderStatusChanged
from forever_paws.models.commerce import (
    CartItem,
    CustomerInfo,
    OrderItem,
    OrderStatus,
    PaymentStatus,
    Product,
    ShippingAddress,
)
from forever_paws.models.session import SessionState
from forever_paws.utils.exceptions import (
    CartItemNotFound,
    CheckoutError,
    EmptyCart,
    InvalidInput,
    InvalidStatusTransition,
    NotAuthenticated,
    OrderNotFound,
    PersistenceError,
    SessionSuperseded,
)

from fakes import GATEWAY, SignedInSessions, auth_envelope

FRAME = Product(ref="memorial-frame", name="Memorial Frame", price=24.5)
URN = Product(ref="keepsake-urn", name="Keepsake Urn", price=89.99)


@pytest.fixture
def naps():
    return []


@pytest.fixture
def cart(store, owner, events, naps):
    return CartService(
        SignedInSessions("user-1"),
        store,
        owner,
        events,
        empty_cart_recheck_delay=0.25,
        sleep=naps.append,
    )


@pytest.fixture
def customer():
    return CustomerInfo(
        shipping_address=ShippingAddress(
            recipient_name="Alice Doe",
            phone="+1 555 0100",
            address_line1="1 Garden Lane",
            city="Springfield",
            state="IL",
            postal_code="62701",
            country="US",
        ),
        notes="Leave at the door",
    )


def test_add_to_cart_merges_same_product(cart, store):
    cart.add_to_cart(FRAME, quantity=1)
    item = cart.add_to_cart(FRAME, quantity=2)

    rows = store.list_cart("user-1")
    assert len(rows) == 1
    assert rows[0].quantity == 3
    assert item.quantity == 3
    assert rows[0].unit_price == 24.5


def test_add_to_cart_distinct_products(cart):
    cart.add_to_cart(FRAME)
    cart.add_to_cart(URN, quantity=2)

    assert sorted(i.product_ref for i in cart.cart_items()) == ["keepsake-urn", "memorial-frame"]
    assert cart.cart_total() == round(24.5 + 2 * 89.99, 2)


@pytest.mark.parametrize("quantity", [0, -1])
def test_add_to_cart_rejects_bad_quantity(cart, quantity):
    with pytest.raises(InvalidInput):
        cart.add_to_cart(FRAME, quantity=quantity)


def test_cart_requires_signed_in_user(store, owner, events):
    service = CartService(SignedInSessions(None), store, owner, events)
    with pytest.raises(NotAuthenticated):
        service.add_to_cart(FRAME)


def test_cart_is_scoped_to_current_user(cart, store):
    store.insert_cart_item(CartItem(user_id="user-2", product_ref="other", unit_price=1, quantity=1))
    cart.add_to_cart(FRAME)

    assert [i.product_ref for i in cart.cart_items()] == ["memorial-frame"]


def test_failed_insert_leaves_no_residue(cart, store, monkeypatch):
    def broken(item):
        raise PersistenceError("disk full")

    monkeypatch.setattr(store, "insert_cart_item", broken)

    with pytest.raises(PersistenceError):
        cart.add_to_cart(FRAME)
    assert cart.cart_items() == []


def test_update_quantity_and_remove(cart):
    item = cart.add_to_cart(FRAME)

    assert cart.update_quantity(item.id, 5).quantity == 5
    assert cart.cart_items()[0].quantity == 5

    assert cart.update_quantity(item.id, 0) is None
    assert cart.cart_items() == []

    with pytest.raises(CartItemNotFound):
        cart.remove_item(item.id)
    with pytest.raises(CartItemNotFound):
        cart.update_quantity("missing", 2)


def test_checkout_empty_cart_rechecks_once(cart, store, naps, customer):
    with pytest.raises(EmptyCart):
        cart.checkout(customer)

    assert naps == [0.25]
    assert store.list_orders("user-1") == []


def test_checkout_picks_up_item_added_during_recheck(store, owner, events, customer):
    def late_add(seconds):
        store.insert_cart_item(CartItem(user_id="user-1", product_ref="frame", unit_price=10, quantity=2))

    service = CartService(SignedInSessions("user-1"), store, owner, events, sleep=late_add)

    order = service.checkout(customer)

    assert order.total_amount == 20
    assert store.list_cart("user-1") == []


def test_checkout_creates_order_and_clears_cart(cart, store, customer):
    cart.add_to_cart(FRAME, quantity=2)
    cart.add_to_cart(URN)

    order = cart.checkout(customer)

    assert order.status == OrderStatus.PENDING
    assert order.payment_status == PaymentStatus.PENDING
    assert order.total_amount == round(2 * 24.5 + 89.99, 2)
    assert {i.product_ref: i.total_price for i in order.items} == {"memorial-frame": 49.0, "keepsake-urn": 89.99}
    assert cart.cart_items() == []

    saved = cart.get_order(order.id)
    assert saved.total_amount == order.total_amount
    assert saved.shipping_address.city == "Springfield"
    assert saved.notes == "Leave at the door"
    assert len(saved.items) == 2


def test_checkout_failure_leaves_cart_untouched(cart, store, customer, monkeypatch):
    cart.add_to_cart(FRAME, quantity=2)

    def broken(order, user_id):
        raise PersistenceError("database is locked")

    monkeypatch.setattr(store, "create_order_from_cart", broken)

    with pytest.raises(CheckoutError):
        cart.checkout(customer)

    assert [i.quantity for i in store.list_cart("user-1")] == [2]
    assert store.list_orders("user-1") == []


def test_order_lookup_and_cancel(cart, customer):
    cart.add_to_cart(FRAME)
    order = cart.checkout(customer)

    with pytest.raises(OrderNotFound):
        cart.get_order("missing")

    cancelled = cart.cancel_order(order.id)
    assert cancelled.status == OrderStatus.CANCELLED
    assert cart.orders()[0].status == OrderStatus.CANCELLED


def test_illegal_transitions_are_rejected(cart, customer):
    cart.add_to_cart(FRAME)
    order = cart.checkout(customer)

    with pytest.raises(InvalidStatusTransition):
        cart.advance_status(order.id, status=OrderStatus.SHIPPED)

    for status in (OrderStatus.CONFIRMED, OrderStatus.PROCESSING, OrderStatus.SHIPPED):
        cart.advance_status(order.id, status=status)
    with pytest.raises(InvalidStatusTransition):
        cart.cancel_order(order.id)


def test_cancelling_paid_order_refunds(cart, customer):
    cart.add_to_cart(URN)
    order = cart.checkout(customer)
    cart.advance_status(order.id, payment_status=PaymentStatus.PAID)

    cancelled = cart.cancel_order(order.id)

    assert cancelled.payment_status == PaymentStatus.REFUNDED


def test_simulator_walks_order_to_delivered(cart, customer, recorded):
    cart.add_to_cart(FRAME)
    order = cart.checkout(customer)
    simulator = OrderStatusSimulator(cart.advance_status, step_seconds=0)

    thread = simulator.start(order.id, "user-1")
    thread.join(timeout=10)

    final = cart.get_order(order.id)
    assert final.status == OrderStatus.DELIVERED
    assert final.payment_status == PaymentStatus.PAID
    assert final.tracking_number.startswith("FP")
    changes = [e for e in recorded if isinstance(e, OrderStatusChanged)]
    assert [c.status for c in changes][-1] == "delivered"
    assert len(changes) == 5


def test_simulator_stops_quietly_on_cancelled_order(cart, customer):
    cart.add_to_cart(FRAME)
    order = cart.checkout(customer)
    cart.cancel_order(order.id)
    simulator = OrderStatusSimulator(cart.advance_status, step_seconds=0)

    thread = simulator.start(order.id, "user-1")
    thread.join(timeout=10)

    final = cart.get_order(order.id)
    assert final.status == OrderStatus.CANCELLED
    assert final.payment_status == PaymentStatus.PENDING


def test_stopped_simulator_starts_nothing(cart):
    simulator = OrderStatusSimulator(cart.advance_status, step_seconds=0)
    simulator.stop()
    assert simulator.start("order", "user-1") is None


def test_cart_edit_against_replaced_session_is_rejected(store, owner, events):
    class RacingSessions(SignedInSessions):
        def require_session(self, user_id=None):
            session = super().require_session(user_id)
            # another sign-in lands between reading the user and applying
            self.generation += 1
            return session

    service = CartService(RacingSessions("user-1"), store, owner, events)

    with pytest.raises(SessionSuperseded):
        service.add_to_cart(FRAME)
    assert store.list_cart("user-1") == []


def test_sign_out_during_checkout_places_no_order(sessions, http, store, owner, events, customer, monkeypatch):
    http.add("POST", f"{GATEWAY}/auth/login", body=auth_envelope("u1", "alice@pawmail.com", "tok"))
    sessions.sign_in("alice@pawmail.com", "correct-horse")
    service = CartService(sessions, store, owner, events, sleep=lambda seconds: None)
    service.add_to_cart(FRAME)
    service.add_to_cart(URN)
    signed_out = []

    class SignOutWhileBuilding:
        @staticmethod
        def from_cart_item(item, order_id):
            if not signed_out:
                signed_out.append(True)
                sessions.sign_out()
            return OrderItem.from_cart_item(item, order_id)

    monkeypatch.setattr(cart_service, "OrderItem", SignOutWhileBuilding)

    with pytest.raises(CheckoutError):
        service.checkout(customer)

    assert sessions.state == SessionState.LOGGED_OUT
    assert store.list_orders("u1") == []
