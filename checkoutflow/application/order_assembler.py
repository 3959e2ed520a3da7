"""Order assembler service.

Turns a validated checkout into a backend order:
- Checks order preconditions before any side effect
- Reserves inventory, submits the order, commits the reservation
- Releases the reservation exactly once if submission fails
- Starts the payment flow for orders that need paying
- Confirms and cancels orders afterwards

A payment initialization failure does not roll the order back. The
order stays ``pending`` and the failure is returned in
``OrderCreateResponse.payment_error`` so the storefront can retry
payment or cancel.
"""

import copy
import secrets
import string
import time
from collections.abc import Iterable
from dataclasses import dataclass, field
from typing import Any

import structlog

from checkoutflow.application.payment import PaymentGatewayAdapter
from checkoutflow.application.ports import (
    Cache,
    CheckoutBackend,
    InventoryGateway,
    InventoryLine,
    InventoryOperation,
    InventoryUpdateRequest,
    OrderNotifier,
    PaymentInitRequest,
    SoftCache,
)
from checkoutflow.domain.base import utcnow
from checkoutflow.domain.entities import Cart, CheckoutSession, Order
from checkoutflow.domain.exceptions import CheckoutError, InventoryLeakError, ValidationError
from checkoutflow.domain.state_machines import OrderStatus, validate_order_transition
from checkoutflow.domain.value_objects import PaymentInitResponse
from checkoutflow.infrastructure.config import OrderProcessingConfig

logger = structlog.get_logger()

DEFAULT_CANCEL_NOTE = "Order cancelled by customer"

_ORDER_NUMBER_ALPHABET = string.ascii_uppercase + string.digits


# ============================================================================
# Request / Response Types
# ============================================================================


@dataclass
class OrderCreateRequest:
    """Everything needed to assemble an order.

    Attributes:
        cart: Cart being ordered.
        session: Checkout session with addresses and selections.
        return_url: Where the payment provider sends the customer back.
        cancel_url: Where the payment provider sends a cancelling customer.
        metadata: Extra metadata forwarded to payment initialization.
    """

    cart: Cart
    session: CheckoutSession
    return_url: str | None = None
    cancel_url: str | None = None
    metadata: dict[str, Any] = field(default_factory=dict)


@dataclass
class OrderCreateResponse:
    """Result of assembling an order."""

    order: Order
    requires_payment: bool
    confirmation_url: str
    payment_url: str | None = None
    payment: PaymentInitResponse | None = None
    payment_error: CheckoutError | None = None
    warnings: list[str] = field(default_factory=list)

    @property
    def payment_initialized(self) -> bool:
        return self.payment is not None


# ============================================================================
# Order Assembler
# ============================================================================


class OrderAssembler:
    """Creates, confirms and cancels orders."""

    def __init__(
        self,
        backend: CheckoutBackend,
        payment_adapter: PaymentGatewayAdapter,
        inventory: InventoryGateway | None = None,
        config: OrderProcessingConfig | None = None,
        notifier: OrderNotifier | None = None,
        cache: Cache | None = None,
    ) -> None:
        """Initialize assembler.

        Args:
            backend: Backend that stores orders.
            payment_adapter: Starts payment flows for created orders.
            inventory: Stock gateway; inventory is left alone without one.
            config: Order processing settings.
            notifier: Sends confirmation emails.
            cache: Optional order cache.
        """
        self._backend = backend
        self._payments = payment_adapter
        self._inventory = inventory
        self._config = config or OrderProcessingConfig()
        self._notifier = notifier
        self._cache = SoftCache(cache)

    @property
    def config(self) -> OrderProcessingConfig:
        return self._config

    @property
    def manages_inventory(self) -> bool:
        return self._config.auto_update_inventory and self._inventory is not None

    # -------------------------------------------------------------------------
    # Order Creation
    # -------------------------------------------------------------------------

    def validate_order_creation(self, request: OrderCreateRequest) -> None:
        """Check order preconditions.

        Raises:
            ValidationError: On the first violated precondition.
        """
        cart = request.cart
        session = request.session

        if cart.is_empty:
            raise ValidationError("Cart is empty")
        if cart.total < 0:
            raise ValidationError("Order total cannot be negative")
        if session.billing_address is None:
            raise ValidationError("Billing address is required")
        if not session.use_shipping_as_billing and session.shipping_address is None:
            raise ValidationError("Shipping address is required")
        if cart.total > 0 and session.selected_payment_method is None:
            raise ValidationError("Payment method is required")
        if not session.terms_accepted:
            raise ValidationError("Terms and conditions must be accepted")

    async def create_order(self, request: OrderCreateRequest) -> OrderCreateResponse:
        """Assemble an order from a checkout.

        Steps run strictly in order: preconditions, inventory
        reservation, order submission (with release on failure),
        inventory commit, payment initialization, confirmation email.

        Args:
            request: Cart and session to order.

        Returns:
            OrderCreateResponse with the created order.

        Raises:
            ValidationError: If a precondition fails (no side effects happened).
            ApiError: If reservation or submission fails.
            CheckoutTimeoutError: If reservation or submission times out.
            InventoryLeakError: If releasing the reservation failed too.
        """
        self.validate_order_creation(request)
        cart = request.cart
        session = request.session
        log = logger.bind(cart_id=cart.id, session_id=session.id)

        reserved = False
        if self.manages_inventory:
            await self._update_inventory(cart.id, cart_lines(cart, InventoryOperation.RESERVE))
            reserved = True
            log.info("Inventory reserved", item_count=len(cart.items))

        payload = self.build_order_payload(request)
        try:
            data = await self._backend.create_order(payload)
        except Exception as e:
            log.error("Order submission failed", error=str(e))
            if reserved:
                await self._release_reservation(cart, e)
            raise

        order = Order.from_api(data)
        order.mark_created()
        log = log.bind(order_id=order.id)
        log.info("Order created", order_number=order.number, total=str(order.total))

        warnings: list[str] = []
        if reserved:
            try:
                await self._update_inventory(
                    cart.id,
                    cart_lines(cart, InventoryOperation.DECREASE),
                    order_id=order.id,
                )
            except Exception as e:
                log.error("Inventory commit failed", error=str(e))
                warnings.append(f"Inventory could not be updated for order {order.id}")

        await self._cache_order(order)

        response = OrderCreateResponse(
            order=order,
            requires_payment=order.requires_payment,
            confirmation_url=f"/order-confirmation/{order.id}",
            payment_url=order.payment_url,
            warnings=warnings,
        )

        payment_method = session.selected_payment_method
        if response.requires_payment and payment_method is not None:
            payment_request = PaymentInitRequest(
                payment_method_id=payment_method.id,
                order_id=order.id,
                amount=order.total,
                currency=order.currency,
                return_url=request.return_url or self._payments.config.return_url,
                cancel_url=request.cancel_url or self._payments.config.cancel_url,
                metadata={"order_number": order.number, **request.metadata},
            )
            try:
                response.payment = await self._payments.initialize_payment(payment_request)
            except CheckoutError as e:
                log.error(
                    "Payment initialization failed, order left pending",
                    method_id=payment_method.id,
                    error=e.message,
                )
                response.payment_error = e
            else:
                response.payment_url = response.payment.redirect_url or response.payment_url

        if not (self._config.require_payment_confirmation and response.requires_payment):
            await self._send_confirmation(order)

        return response

    def build_order_payload(self, request: OrderCreateRequest) -> dict[str, Any]:
        """Build the backend order payload."""
        cart = request.cart
        session = request.session
        billing = session.billing_address
        shipping = session.effective_shipping_address
        payment_method = session.selected_payment_method
        shipping_method = session.selected_shipping_method

        payload: dict[str, Any] = {
            "payment_method": payment_method.id if payment_method else "",
            "payment_method_title": payment_method.title if payment_method else "",
            "set_paid": False,
            "billing": billing.to_api() if billing else {},
            "shipping": shipping.to_api() if shipping else {},
            "line_items": [
                {
                    "product_id": item.product_id,
                    "variation_id": item.variation_id or 0,
                    "quantity": item.quantity,
                    "price": str(item.price),
                    "total": str(item.total),
                }
                for item in cart.items
            ],
            "shipping_lines": (
                [
                    {
                        "method_id": shipping_method.method_id,
                        "method_title": shipping_method.title,
                        "total": str(shipping_method.cost),
                    }
                ]
                if shipping_method
                else []
            ),
            "customer_note": session.order_notes,
            "status": self._config.default_status.value,
            "currency": cart.currency,
            "meta_data": [
                {"key": "_checkout_session", "value": session.id},
                {"key": "_checkout_reference", "value": self.generate_order_number()},
                {"key": "_checkout_created", "value": utcnow().isoformat()},
            ],
        }
        if session.is_guest:
            payload["customer_id"] = 0
        elif cart.customer_id is not None:
            payload["customer_id"] = cart.customer_id
        return payload

    def generate_order_number(self) -> str:
        """Prefix, millisecond timestamp, four random characters, suffix."""
        random_part = "".join(secrets.choice(_ORDER_NUMBER_ALPHABET) for _ in range(4))
        timestamp = int(time.time() * 1000)
        return (
            f"{self._config.order_number_prefix}{timestamp}{random_part}"
            f"{self._config.order_number_suffix}"
        )

    # -------------------------------------------------------------------------
    # Order Lifecycle
    # -------------------------------------------------------------------------

    async def get_order(self, order_id: str, use_cache: bool = True) -> Order:
        """Fetch an order, read-through cached.

        Raises:
            ApiError: If the backend call fails.
        """
        if use_cache:
            cached = await self._cache.get(_cache_key(order_id))
            if cached is not None:
                return copy.deepcopy(cached)
        order = Order.from_api(await self._backend.get_order(order_id))
        await self._cache_order(order)
        return order

    async def update_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        note: str | None = None,
        notify_customer: bool = False,
    ) -> Order:
        """Move an order to a new status.

        Raises:
            InvalidStateTransitionError: If the transition is not allowed.
            ApiError: If the backend call fails.
        """
        order = await self.get_order(order_id, use_cache=False)
        validate_order_transition(order.id, order.status, status)
        await self._backend.update_order_status(order_id, status, note, notify_customer)
        order.apply_status(status, reason=note or "")
        await self._cache_order(order)
        logger.info("Order status updated", order_id=order_id, status=status.value)
        return order

    async def confirm_order(
        self,
        order_id: str,
        transaction_id: str | None = None,
        payment_status: str | None = None,
    ) -> Order:
        """Record a payment confirmation and move the order to processing.

        Raises:
            InvalidStateTransitionError: If the order cannot move to processing.
            ApiError: If the backend call fails.
        """
        order = await self.get_order(order_id, use_cache=False)
        validate_order_transition(order.id, order.status, OrderStatus.PROCESSING)

        changes: dict[str, Any] = {
            "status": OrderStatus.PROCESSING.value,
            "date_paid": utcnow().isoformat(),
        }
        if transaction_id:
            changes["transaction_id"] = transaction_id
        if payment_status:
            changes["payment_status"] = payment_status
        await self._backend.update_order(order_id, changes)

        order.apply_status(OrderStatus.PROCESSING)
        await self._cache_order(order)
        logger.info("Order confirmed", order_id=order_id, transaction_id=transaction_id)

        await self._send_confirmation(order)
        return order

    async def cancel_order(self, order_id: str, reason: str | None = None) -> Order:
        """Cancel an order and restore its inventory.

        Only pending, processing and on-hold orders can be cancelled.
        Inventory for every line item is restored with a single call.

        Args:
            order_id: Order to cancel.
            reason: Note stored on the order.

        Returns:
            The cancelled order.

        Raises:
            OrderNotCancellableError: If the order's status does not allow it.
            ApiError: If the backend call fails.
        """
        order = await self.get_order(order_id, use_cache=False)
        order.ensure_cancellable()

        note = reason or DEFAULT_CANCEL_NOTE
        await self._backend.update_order_status(order_id, OrderStatus.CANCELLED, note)
        order.apply_status(OrderStatus.CANCELLED, reason=note)
        logger.info("Order cancelled", order_id=order_id, reason=note)

        if self.manages_inventory and order.line_items:
            lines = order_lines(order, InventoryOperation.INCREASE)
            try:
                await self._update_inventory(order.id, lines, order_id=order.id)
            except Exception as e:
                logger.error("Inventory restore failed", order_id=order_id, error=str(e))

        await self._cache_order(order)
        return order

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    async def _update_inventory(
        self,
        reference: str,
        lines: tuple[InventoryLine, ...],
        order_id: str = "",
    ) -> None:
        if self._inventory is None:
            return
        await self._inventory.update_inventory(
            InventoryUpdateRequest(reference=reference, lines=lines, order_id=order_id)
        )

    async def _release_reservation(self, cart: Cart, submission_error: Exception) -> None:
        try:
            await self._update_inventory(cart.id, cart_lines(cart, InventoryOperation.RELEASE))
        except Exception as release_error:
            logger.critical(
                "Inventory release failed, reserved stock may leak",
                cart_id=cart.id,
                submission_error=str(submission_error),
                release_error=str(release_error),
            )
            raise InventoryLeakError(cart.id, submission_error, release_error) from release_error
        logger.info("Inventory reservation released", cart_id=cart.id)

    async def _cache_order(self, order: Order) -> None:
        # Cached orders are snapshots without pending events.
        snapshot = copy.deepcopy(order)
        snapshot.collect_events()
        await self._cache.set(_cache_key(order.id), snapshot, self._config.cache_timeout_minutes * 60)

    async def _send_confirmation(self, order: Order) -> None:
        if self._notifier is None or not self._config.send_confirmation_email:
            return
        try:
            await self._notifier.send_order_confirmation(order)
        except Exception as e:
            logger.warning("Order confirmation email failed", order_id=order.id, error=str(e))


def _cache_key(order_id: str) -> str:
    return f"order:{order_id}"


def _lines(items: Iterable[Any], operation: InventoryOperation) -> tuple[InventoryLine, ...]:
    return tuple(
        InventoryLine(
            product_id=item.product_id,
            variation_id=item.variation_id,
            quantity=item.quantity,
            operation=operation,
        )
        for item in items
    )


def cart_lines(cart: Cart, operation: InventoryOperation) -> tuple[InventoryLine, ...]:
    """Inventory lines for every cart item."""
    return _lines(cart.items, operation)


def order_lines(order: Order, operation: InventoryOperation) -> tuple[InventoryLine, ...]:
    """Inventory lines for every order line item."""
    return _lines(order.line_items, operation)
