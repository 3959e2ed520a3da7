"""Checkout entities: the cart consumed by the engine, the checkout
session built on top of it and the order aggregate it turns into.

The cart and the session are frozen; the session changes only through
``checkoutflow.application.schemas.apply_patch`` which returns a new
instance. The order is the only mutable aggregate and is owned by the
caller once the assembler hands it back.
"""

from dataclasses import dataclass, field
from datetime import datetime, timedelta
from decimal import Decimal
from enum import Enum
from typing import Any
from uuid import uuid4

from checkoutflow.domain.base import AggregateRoot, ValueObject, utcnow
from checkoutflow.domain.events import OrderCancelled, OrderCreated, OrderStatusChanged
from checkoutflow.domain.exceptions import OrderNotCancellableError, SessionExpiredError
from checkoutflow.domain.state_machines import OrderStatus, validate_order_transition
from checkoutflow.domain.value_objects import (
    Address,
    OrderTotals,
    SelectedPaymentMethod,
    SelectedShippingMethod,
    to_decimal,
)


# ============================================================================
# Cart
# ============================================================================


class StockStatus(str, Enum):
    """Stock status values reported by the cart backend."""

    IN_STOCK = "instock"
    OUT_OF_STOCK = "outofstock"
    ON_BACKORDER = "onbackorder"


@dataclass(frozen=True)
class CartItem(ValueObject):
    """A cart line as reported by the cart backend.

    Attributes:
        key: Unique line identifier within the cart.
        product_id: Backend product identifier.
        quantity: Ordered quantity.
        name: Product name.
        price: Unit price.
        total: Line total (price * quantity, after line discounts).
        variation_id: Product variation, if any.
        sku: Stock keeping unit.
        weight: Unit weight used for shipping rate requests.
        needs_shipping: False for virtual/downloadable products.
        stock_status: One of the ``StockStatus`` values.
    """

    key: str
    product_id: int
    quantity: int
    name: str
    price: Decimal
    total: Decimal
    variation_id: int | None = None
    sku: str = ""
    weight: Decimal | None = None
    needs_shipping: bool = True
    stock_status: str = StockStatus.IN_STOCK

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CartItem":
        """Create from a cart backend line payload."""
        weight = data.get("weight")
        return cls(
            key=str(data.get("key") or data["product_id"]),
            product_id=int(data["product_id"]),
            variation_id=data.get("variation_id") or None,
            quantity=int(data.get("quantity", 1)),
            name=data.get("name", ""),
            price=to_decimal(data.get("price")),
            total=to_decimal(data.get("total", data.get("total_price"))),
            sku=data.get("sku") or "",
            weight=to_decimal(weight) if weight is not None else None,
            needs_shipping=data.get("needs_shipping", True),
            stock_status=data.get("stock_status", StockStatus.IN_STOCK),
        )


@dataclass(frozen=True)
class CartTotals(ValueObject):
    """Totals computed by the pricing backend for the cart."""

    subtotal: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    shipping: Decimal = Decimal("0")
    shipping_tax: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    fees_tax: Decimal = Decimal("0")
    total: Decimal = Decimal("0")

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "CartTotals":
        """Create from a cart backend totals payload."""
        return cls(
            subtotal=to_decimal(data.get("subtotal")),
            tax=to_decimal(data.get("tax")),
            shipping=to_decimal(data.get("shipping")),
            shipping_tax=to_decimal(data.get("shipping_tax")),
            discount=to_decimal(data.get("discount")),
            fees=to_decimal(data.get("fees")),
            fees_tax=to_decimal(data.get("fees_tax")),
            total=to_decimal(data.get("total")),
        )


@dataclass(frozen=True)
class Cart(ValueObject):
    """Cart snapshot passed into every flow operation.

    The engine never mutates the cart; a new snapshot is passed in
    whenever the storefront recalculates it.
    """

    id: str
    items: tuple[CartItem, ...] = ()
    totals: CartTotals = field(default_factory=CartTotals)
    currency: str = "USD"
    customer_id: int | None = None

    @property
    def is_empty(self) -> bool:
        return not self.items

    @property
    def item_count(self) -> int:
        """Sum of all line quantities."""
        return sum(item.quantity for item in self.items)

    @property
    def needs_shipping(self) -> bool:
        """True when at least one item is a physical product."""
        return any(item.needs_shipping for item in self.items)

    @property
    def total(self) -> Decimal:
        return self.totals.total

    def order_totals(self) -> OrderTotals:
        """Convert the cart totals to an order totals breakdown."""
        t = self.totals
        return OrderTotals(
            subtotal=t.subtotal,
            tax=t.tax,
            shipping=t.shipping,
            shipping_tax=t.shipping_tax,
            discount=t.discount,
            fees=t.fees,
            fees_tax=t.fees_tax,
            total=t.total,
            currency=self.currency,
        )

    def structural_errors(self) -> list[str]:
        """Report malformed cart input.

        Business checks (empty cart, order amount limits, stock) are the
        validation aggregator's job; this only catches data no checkout
        could be built from.

        Returns:
            List of error messages, empty when the cart is well formed.
        """
        errors: list[str] = []
        if not self.id:
            errors.append("Cart id is required")
        if not self.currency or len(self.currency) != 3:
            errors.append(f"Invalid currency code: {self.currency!r}")
        keys: set[str] = set()
        for item in self.items:
            if item.quantity <= 0:
                errors.append(f"Invalid quantity {item.quantity} for item {item.key}")
            if item.price < 0 or item.total < 0:
                errors.append(f"Negative price for item {item.key}")
            if item.key in keys:
                errors.append(f"Duplicate cart item {item.key}")
            keys.add(item.key)
        return errors

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "Cart":
        """Create from a cart backend payload."""
        return cls(
            id=str(data.get("id") or data.get("session_id") or ""),
            items=tuple(CartItem.from_dict(item) for item in data.get("items", [])),
            totals=CartTotals.from_dict(data.get("totals", {})),
            currency=data.get("currency", "USD"),
            customer_id=data.get("customer_id"),
        )


# ============================================================================
# Checkout Session
# ============================================================================


def generate_session_id() -> str:
    """Generate a checkout session identifier."""
    return f"checkout-{uuid4().hex}"


@dataclass(frozen=True)
class CheckoutSession(ValueObject):
    """Ephemeral state of one checkout attempt.

    Attributes:
        id: Session identifier.
        cart_id: Cart the session was initialized from.
        expires_at: Instant after which every flow operation fails.
        is_guest: Guest checkout (email becomes mandatory).
        billing_address: Billing address, None until entered.
        shipping_address: Shipping address, None until entered.
        use_shipping_as_billing: Ship to the billing address.
        selected_shipping_method: Chosen shipping rate.
        selected_payment_method: Chosen payment method.
        order_notes: Customer note passed to the order.
        terms_accepted: Customer accepted terms and conditions.
        newsletter_opt_in: Customer opted into the newsletter.
        totals: Totals copied from the cart at initialization.
    """

    id: str
    cart_id: str
    expires_at: datetime
    is_guest: bool = False
    billing_address: Address | None = None
    shipping_address: Address | None = None
    use_shipping_as_billing: bool = True
    selected_shipping_method: SelectedShippingMethod | None = None
    selected_payment_method: SelectedPaymentMethod | None = None
    order_notes: str = ""
    terms_accepted: bool = False
    newsletter_opt_in: bool = False
    totals: OrderTotals = field(default_factory=OrderTotals)
    created_at: datetime = field(default_factory=utcnow)
    updated_at: datetime = field(default_factory=utcnow)

    @classmethod
    def start(
        cls,
        cart: Cart,
        timeout: timedelta,
        is_guest: bool = False,
        session_id: str | None = None,
    ) -> "CheckoutSession":
        """Start a session for a cart.

        Args:
            cart: Cart being checked out.
            timeout: Session lifetime.
            is_guest: Guest checkout flag.
            session_id: Identifier to reuse, a new one is generated otherwise.

        Returns:
            New CheckoutSession.
        """
        now = utcnow()
        return cls(
            id=session_id or generate_session_id(),
            cart_id=cart.id,
            is_guest=is_guest,
            totals=cart.order_totals(),
            expires_at=now + timeout,
            created_at=now,
            updated_at=now,
        )

    @property
    def effective_shipping_address(self) -> Address | None:
        """Address goods are shipped to."""
        if self.use_shipping_as_billing:
            return self.billing_address
        return self.shipping_address

    def is_expired(self, now: datetime | None = None) -> bool:
        return (now or utcnow()) >= self.expires_at

    def ensure_active(self, now: datetime | None = None) -> None:
        """Raise if the session has expired.

        Raises:
            SessionExpiredError: If ``expires_at`` has passed.
        """
        if self.is_expired(now):
            raise SessionExpiredError(self.id, self.expires_at.isoformat())

    def to_snapshot(self) -> dict[str, Any]:
        """Serialize for the session store."""
        billing = self.billing_address
        shipping = self.shipping_address
        shipping_method = self.selected_shipping_method
        payment_method = self.selected_payment_method
        return {
            "id": self.id,
            "cart_id": self.cart_id,
            "is_guest": self.is_guest,
            "billing_address": billing.to_api() if billing else None,
            "shipping_address": shipping.to_api() if shipping else None,
            "use_shipping_as_billing": self.use_shipping_as_billing,
            "selected_shipping_method": (
                {
                    "method_id": shipping_method.method_id,
                    "title": shipping_method.title,
                    "cost": str(shipping_method.cost),
                    "zone_id": shipping_method.zone_id,
                }
                if shipping_method
                else None
            ),
            "selected_payment_method": (
                {"id": payment_method.id, "title": payment_method.title}
                if payment_method
                else None
            ),
            "order_notes": self.order_notes,
            "terms_accepted": self.terms_accepted,
            "newsletter_opt_in": self.newsletter_opt_in,
            "total": str(self.totals.total),
            "currency": self.totals.currency,
            "expires_at": self.expires_at.isoformat(),
            "created_at": self.created_at.isoformat(),
            "updated_at": self.updated_at.isoformat(),
        }


# ============================================================================
# Order Aggregate Root
# ============================================================================


@dataclass(frozen=True)
class OrderLineItem(ValueObject):
    """Immutable snapshot of an ordered line."""

    product_id: int
    name: str
    quantity: int
    price: Decimal
    total: Decimal
    id: str = ""
    variation_id: int | None = None
    sku: str = ""

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "OrderLineItem":
        """Create from a backend order line payload."""
        return cls(
            id=str(data.get("id", "")),
            product_id=int(data["product_id"]),
            variation_id=data.get("variation_id") or None,
            name=data.get("name", ""),
            quantity=int(data.get("quantity", 0)),
            price=to_decimal(data.get("price")),
            total=to_decimal(data.get("total")),
            sku=data.get("sku") or "",
        )


@dataclass(kw_only=True, eq=False)
class Order(AggregateRoot):
    """Order aggregate root.

    Created once per successful checkout from the backend's response.
    Line items are a tuple and never change after creation.

    Attributes:
        id: Backend order identifier.
        number: Human-facing order number.
        status: Current order status.
        totals: Order totals breakdown including currency.
        line_items: Ordered lines.
        billing_address: Billing address snapshot.
        shipping_address: Shipping address snapshot.
        payment_method_id: Payment gateway id ("" when nothing to pay).
        shipping_method_id: Shipping rate id ("" for digital orders).
        customer_note: Order notes from the session.
        payment_url: Backend-provided payment page, if any.
    """

    number: str
    status: OrderStatus
    totals: OrderTotals
    line_items: tuple[OrderLineItem, ...] = ()
    billing_address: Address | None = None
    shipping_address: Address | None = None
    payment_method_id: str = ""
    shipping_method_id: str = ""
    customer_note: str = ""
    payment_url: str | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Order":
        """Build an order from the backend's order payload.

        Args:
            data: Backend order representation.

        Returns:
            Order instance, without recorded events.
        """
        shipping_lines = data.get("shipping_lines") or []
        totals = OrderTotals(
            subtotal=to_decimal(data.get("subtotal", data.get("line_items_subtotal"))),
            tax=to_decimal(data.get("total_tax")),
            shipping=to_decimal(data.get("shipping_total")),
            shipping_tax=to_decimal(data.get("shipping_tax")),
            discount=to_decimal(data.get("discount_total")),
            fees=to_decimal(data.get("fee_total")),
            fees_tax=to_decimal(data.get("fee_tax")),
            total=to_decimal(data.get("total")),
            currency=data.get("currency", "USD"),
        )
        kwargs: dict[str, Any] = {}
        if data.get("date_created"):
            kwargs["created_at"] = datetime.fromisoformat(data["date_created"])
        if data.get("date_modified"):
            kwargs["updated_at"] = datetime.fromisoformat(data["date_modified"])
        return cls(
            id=str(data["id"]),
            number=str(data.get("number") or data["id"]),
            status=OrderStatus.parse(data.get("status", "pending")),
            totals=totals,
            line_items=tuple(OrderLineItem.from_api(item) for item in data.get("line_items", [])),
            billing_address=Address.from_api(data["billing"]) if data.get("billing") else None,
            shipping_address=Address.from_api(data["shipping"]) if data.get("shipping") else None,
            payment_method_id=data.get("payment_method") or "",
            shipping_method_id=shipping_lines[0].get("method_id", "") if shipping_lines else "",
            customer_note=data.get("customer_note") or "",
            payment_url=data.get("payment_url"),
            **kwargs,
        )

    # -------------------------------------------------------------------------
    # Query Methods
    # -------------------------------------------------------------------------

    @property
    def total(self) -> Decimal:
        return self.totals.total

    @property
    def currency(self) -> str:
        return self.totals.currency

    @property
    def item_count(self) -> int:
        """Sum of all line quantities."""
        return sum(item.quantity for item in self.line_items)

    @property
    def requires_payment(self) -> bool:
        """A pending order with a positive total still has to be paid."""
        return self.total > 0 and self.status == OrderStatus.PENDING

    # -------------------------------------------------------------------------
    # Events and State Transitions
    # -------------------------------------------------------------------------

    def mark_created(self) -> None:
        """Record the creation event once the backend accepted the order."""
        email = self.billing_address.email if self.billing_address else ""
        self._record_event(
            OrderCreated(
                aggregate_id=self.id,
                order_id=self.id,
                order_number=self.number,
                status=self.status.value,
                total=str(self.total),
                currency=self.currency,
                item_count=self.item_count,
                customer_email=email,
            )
        )

    def ensure_cancellable(self) -> None:
        """Raise if the order can no longer be cancelled.

        Raises:
            OrderNotCancellableError: If status is not pending, processing or on-hold.
        """
        if not self.status.is_cancellable():
            raise OrderNotCancellableError(self.id, self.status.value)

    def apply_status(self, new_status: OrderStatus, reason: str = "") -> None:
        """Move to a status confirmed by the backend.

        Args:
            new_status: Status reported by the backend.
            reason: Cancellation reason, recorded on cancellation.

        Raises:
            InvalidStateTransitionError: If the transition is not allowed.
        """
        if new_status == self.status:
            return
        old_status = self.status
        validate_order_transition(self.id, old_status, new_status)
        self.status = new_status
        self._touch()
        self._record_event(
            OrderStatusChanged(
                aggregate_id=self.id,
                order_id=self.id,
                old_status=old_status.value,
                new_status=new_status.value,
            )
        )
        if new_status == OrderStatus.CANCELLED:
            self._record_event(
                OrderCancelled(
                    aggregate_id=self.id,
                    order_id=self.id,
                    previous_status=old_status.value,
                    reason=reason,
                )
            )
