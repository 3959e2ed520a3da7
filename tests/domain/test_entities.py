"""Tests for domain entities."""

from dataclasses import replace
from datetime import timedelta
from decimal import Decimal

import pytest

from checkoutflow.domain import (
    Cart,
    CartItem,
    CheckoutSession,
    Order,
    OrderCancelled,
    OrderCreated,
    OrderStatus,
    OrderStatusChanged,
)
from checkoutflow.domain.base import utcnow
from checkoutflow.domain.events import get_event_class
from checkoutflow.domain.exceptions import (
    InvalidStateTransitionError,
    OrderNotCancellableError,
    SessionExpiredError,
)
from tests.factories import build_address, build_cart


# ============================================================================
# Test Fixtures
# ============================================================================


def make_order_data(status: str = "pending", total: str = "35.00") -> dict:
    return {
        "id": 1001,
        "number": "WOO-1001",
        "status": status,
        "currency": "EUR",
        "subtotal": "30.00",
        "shipping_total": "5.00",
        "total": total,
        "billing": build_address().to_api(),
        "payment_method": "stripe",
        "shipping_lines": [{"method_id": "flat_rate:1", "total": "5.00"}],
        "line_items": [
            {"id": 1, "product_id": 11, "name": "Widget", "quantity": 2, "price": "15", "total": "30"},
        ],
        "date_created": "2024-01-05T10:00:00+00:00",
    }


# ============================================================================
# Cart
# ============================================================================


class TestCart:
    """Tests for Cart snapshot."""

    def test_from_dict(self) -> None:
        """Cart payload maps to items and totals."""
        cart = Cart.from_dict(
            {
                "id": "cart-9",
                "currency": "EUR",
                "items": [
                    {"key": "a", "product_id": "3", "quantity": 2, "price": "4.50", "total": "9.00"},
                    {"product_id": 4, "quantity": 1, "price": 1, "total": 1, "needs_shipping": False},
                ],
                "totals": {"subtotal": "10.00", "total": "10.00"},
            }
        )
        assert cart.id == "cart-9"
        assert cart.items[0].product_id == 3
        assert cart.items[1].key == "4"
        assert cart.item_count == 3
        assert cart.total == Decimal("10.00")
        assert cart.order_totals().currency == "EUR"

    def test_needs_shipping_when_any_item_ships(self) -> None:
        """One physical item makes the cart need shipping."""
        cart = build_cart(needs_shipping=False, item_count=2)
        assert not cart.needs_shipping

        physical = replace(cart.items[0], needs_shipping=True)
        assert replace(cart, items=(physical, cart.items[1])).needs_shipping

    def test_well_formed_cart_has_no_structural_errors(self) -> None:
        """A normal cart is well formed."""
        assert build_cart().structural_errors() == []

    def test_structural_errors(self) -> None:
        """Missing id, bad currency, bad quantities and duplicates are reported."""
        item = CartItem(
            key="a", product_id=1, quantity=0, name="A", price=Decimal("-1"), total=Decimal("0")
        )
        cart = Cart(id="", items=(item, item), currency="DOLLARS")

        errors = cart.structural_errors()

        assert "Cart id is required" in errors
        assert "Invalid currency code: 'DOLLARS'" in errors
        assert "Invalid quantity 0 for item a" in errors
        assert "Negative price for item a" in errors
        assert "Duplicate cart item a" in errors


# ============================================================================
# Checkout Session
# ============================================================================


class TestCheckoutSession:
    """Tests for CheckoutSession."""

    def test_start_copies_cart_totals(self) -> None:
        """A new session carries the cart id and totals."""
        cart = build_cart(total="30.00")
        session = CheckoutSession.start(cart, timedelta(minutes=30), is_guest=True)

        assert session.id.startswith("checkout-")
        assert session.cart_id == "cart-1"
        assert session.is_guest
        assert session.totals.total == Decimal("30.00")
        assert session.expires_at - session.created_at == timedelta(minutes=30)

    def test_effective_shipping_address(self) -> None:
        """Billing address is used while use_shipping_as_billing is on."""
        billing = build_address()
        shipping = build_address(city="Chicago")
        session = replace(
            CheckoutSession.start(build_cart(), timedelta(minutes=30)),
            billing_address=billing,
            shipping_address=shipping,
        )

        assert session.effective_shipping_address == billing
        assert replace(session, use_shipping_as_billing=False).effective_shipping_address == shipping

    def test_expired_session_raises(self) -> None:
        """ensure_active raises once expires_at has passed."""
        session = CheckoutSession.start(build_cart(), timedelta(minutes=30))

        session.ensure_active()
        with pytest.raises(SessionExpiredError) as exc_info:
            session.ensure_active(now=session.expires_at + timedelta(seconds=1))

        assert exc_info.value.code == "SESSION_EXPIRED"
        assert exc_info.value.details["session_id"] == session.id

    def test_expiry_is_inclusive(self) -> None:
        """A session is expired exactly at expires_at."""
        session = CheckoutSession.start(build_cart(), timedelta(minutes=30))
        assert session.is_expired(now=session.expires_at)
        assert not session.is_expired(now=utcnow())

    def test_snapshot(self) -> None:
        """Snapshot is plain data."""
        session = replace(
            CheckoutSession.start(build_cart(), timedelta(minutes=30)),
            billing_address=build_address(),
        )
        snapshot = session.to_snapshot()

        assert snapshot["billing_address"]["city"] == "Springfield"
        assert snapshot["shipping_address"] is None
        assert snapshot["total"] == "30.00"


# ============================================================================
# Order
# ============================================================================


class TestOrder:
    """Tests for Order aggregate."""

    def test_from_api(self) -> None:
        """Backend payload maps to an order."""
        order = Order.from_api(make_order_data())

        assert order.id == "1001"
        assert order.number == "WOO-1001"
        assert order.status == OrderStatus.PENDING
        assert order.total == Decimal("35.00")
        assert order.currency == "EUR"
        assert order.item_count == 2
        assert order.shipping_method_id == "flat_rate:1"
        assert order.billing_address == build_address()
        assert order.created_at.year == 2024

    def test_requires_payment(self) -> None:
        """Only pending orders with a positive total need paying."""
        assert Order.from_api(make_order_data()).requires_payment
        assert not Order.from_api(make_order_data(total="0")).requires_payment
        assert not Order.from_api(make_order_data(status="processing")).requires_payment

    def test_mark_created_records_event(self) -> None:
        """mark_created records an OrderCreated event."""
        order = Order.from_api(make_order_data())
        order.mark_created()

        events = order.collect_events()

        assert len(events) == 1
        assert isinstance(events[0], OrderCreated)
        assert events[0].customer_email == "jane@example.com"
        assert events[0].to_dict()["payload"]["total"] == "35.00"
        assert order.collect_events() == []

    def test_apply_status_records_change(self) -> None:
        """A valid transition updates the status and records an event."""
        order = Order.from_api(make_order_data())
        order.apply_status(OrderStatus.PROCESSING)

        events = order.collect_events()
        assert order.status == OrderStatus.PROCESSING
        assert isinstance(events[0], OrderStatusChanged)
        assert events[0].old_status == "pending"

    def test_apply_same_status_is_noop(self) -> None:
        """Applying the current status records nothing."""
        order = Order.from_api(make_order_data())
        order.apply_status(OrderStatus.PENDING)
        assert order.collect_events() == []

    def test_apply_invalid_status_raises(self) -> None:
        """Invalid transitions raise and leave the order unchanged."""
        order = Order.from_api(make_order_data(status="completed"))
        with pytest.raises(InvalidStateTransitionError):
            order.apply_status(OrderStatus.PENDING)
        assert order.status == OrderStatus.COMPLETED

    def test_cancel_records_cancelled_event(self) -> None:
        """Cancelling records a status change and a cancellation."""
        order = Order.from_api(make_order_data(status="on-hold"))
        order.apply_status(OrderStatus.CANCELLED, reason="Changed my mind")

        events = order.collect_events()
        assert [type(e) for e in events] == [OrderStatusChanged, OrderCancelled]
        assert events[1].reason == "Changed my mind"
        assert events[1].previous_status == "on-hold"

    def test_completed_order_is_not_cancellable(self) -> None:
        """Completed orders cannot be cancelled."""
        order = Order.from_api(make_order_data(status="completed"))
        with pytest.raises(OrderNotCancellableError):
            order.ensure_cancellable()

    def test_equality_by_id(self) -> None:
        """Orders are equal when their ids match."""
        first = Order.from_api(make_order_data())
        second = Order.from_api(make_order_data(status="processing"))
        assert first == second


class TestEventRegistry:
    """Tests for the event registry."""

    def test_lookup(self) -> None:
        """Event classes are found by type string."""
        assert get_event_class("order.cancelled") is OrderCancelled
        assert get_event_class("order.unknown") is None
