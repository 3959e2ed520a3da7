"""Collaborator ports used by the checkout components.

The engine never talks to HTTP, storage or email directly. Concrete
adapters live in ``checkoutflow.infrastructure``; tests plug in fakes.

Backend operations return the backend's payload as a dict; mapping to
domain objects happens in the services that call them. Every backend
failure is raised (``ApiError``, ``CheckoutTimeoutError``), never
returned.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

import structlog

from checkoutflow.domain.entities import Cart, Order
from checkoutflow.domain.state_machines import OrderStatus
from checkoutflow.domain.value_objects import Address

logger = structlog.get_logger()


# ============================================================================
# Request Types
# ============================================================================


@dataclass(frozen=True)
class ShippingItem:
    """Cart line as sent to the rate calculator."""

    product_id: int
    quantity: int
    variation_id: int | None = None
    weight: Decimal | None = None


@dataclass(frozen=True)
class ShippingRateRequest:
    """Destination plus cart signature used to price shipping.

    Attributes:
        destination: Address goods are shipped to.
        items: Physical cart lines.
        cart_total: Cart total used for threshold-based rates.
        currency: ISO currency code.
    """

    destination: Address
    items: tuple[ShippingItem, ...]
    cart_total: Decimal
    currency: str

    @classmethod
    def for_cart(cls, destination: Address, cart: Cart) -> "ShippingRateRequest":
        """Build a request from a cart's physical items."""
        return cls(
            destination=destination,
            items=tuple(
                ShippingItem(
                    product_id=item.product_id,
                    variation_id=item.variation_id,
                    quantity=item.quantity,
                    weight=item.weight,
                )
                for item in cart.items
                if item.needs_shipping
            ),
            cart_total=cart.total,
            currency=cart.currency,
        )


@dataclass(frozen=True)
class PaymentInitRequest:
    """Request to start a payment flow for an order."""

    payment_method_id: str
    order_id: str
    amount: Decimal
    currency: str
    return_url: str
    cancel_url: str
    metadata: dict[str, Any] = field(default_factory=dict)


class InventoryOperation(str, Enum):
    """Inventory operations issued by the order assembler."""

    RESERVE = "reserve"
    RELEASE = "release"
    DECREASE = "decrease"
    INCREASE = "increase"


@dataclass(frozen=True)
class InventoryLine:
    """Quantity change for one product."""

    product_id: int
    quantity: int
    operation: InventoryOperation
    variation_id: int | None = None


@dataclass(frozen=True)
class InventoryUpdateRequest:
    """One inventory call covering several lines.

    ``order_id`` is empty for reservations made before the order exists;
    ``reference`` then carries the cart id.
    """

    reference: str
    lines: tuple[InventoryLine, ...]
    order_id: str = ""

    @property
    def operation(self) -> InventoryOperation | None:
        """Operation shared by every line, None for an empty request."""
        return self.lines[0].operation if self.lines else None


# ============================================================================
# Backend
# ============================================================================


class CheckoutBackend(ABC):
    """Commerce backend operations."""

    @abstractmethod
    async def create_order(self, payload: dict[str, Any]) -> dict[str, Any]:
        """Submit a new order and return the created order payload."""

    @abstractmethod
    async def get_order(self, order_id: str) -> dict[str, Any]:
        """Fetch an order payload."""

    @abstractmethod
    async def update_order(self, order_id: str, changes: dict[str, Any]) -> dict[str, Any]:
        """Apply changes (status, note, payment data) and return the order payload."""

    async def update_order_status(
        self,
        order_id: str,
        status: OrderStatus,
        note: str | None = None,
        notify_customer: bool = False,
    ) -> dict[str, Any]:
        """Move an order to a new status."""
        changes: dict[str, Any] = {"status": status.value, "notify_customer": notify_customer}
        if note:
            changes["customer_note"] = note
        return await self.update_order(order_id, changes)

    @abstractmethod
    async def get_shipping_rates(self, request: ShippingRateRequest) -> dict[str, Any]:
        """Return ``{"rates": [...], "zones": [...], ...}`` for a destination."""

    @abstractmethod
    async def get_payment_methods(
        self,
        amount: Decimal,
        currency: str,
        country: str | None = None,
    ) -> dict[str, Any]:
        """Return the live gateway list and per-method minimum amounts."""

    @abstractmethod
    async def initialize_payment(self, request: PaymentInitRequest) -> dict[str, Any]:
        """Start a payment flow and return the gateway's instructions."""


class InventoryGateway(ABC):
    """Stock reservation and adjustment."""

    @abstractmethod
    async def update_inventory(self, request: InventoryUpdateRequest) -> None:
        """Apply one inventory operation to every line of the request."""


# ============================================================================
# Session Storage and Cache
# ============================================================================


class SessionStore(ABC):
    """Persistence for checkout session snapshots."""

    @abstractmethod
    async def persist(self, session_id: str, state: dict[str, Any]) -> None:
        """Store the latest snapshot for a session."""

    @abstractmethod
    async def load(self, session_id: str) -> dict[str, Any] | None:
        """Return the stored snapshot, None if unknown."""

    @abstractmethod
    async def clear(self, session_id: str) -> None:
        """Drop the stored snapshot."""


class Cache(ABC):
    """Read-through cache for rate and gateway lookups.

    A miss returns None and is never a validation failure.
    """

    @abstractmethod
    async def get(self, key: str) -> Any | None:
        """Return the cached value or None."""

    @abstractmethod
    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        """Store a value for ``ttl_seconds``."""

    @abstractmethod
    async def invalidate_prefix(self, prefix: str) -> int:
        """Drop every key starting with ``prefix`` and return how many were dropped."""


# ============================================================================
# Notifications
# ============================================================================


class OrderNotifier(ABC):
    """Sends customer notifications for orders."""

    @abstractmethod
    async def send_order_confirmation(self, order: Order) -> None:
        """Send the order confirmation email."""


class SoftCache:
    """Wraps an optional ``Cache`` so lookups can never fail a checkout.

    Missing caches behave like permanent misses; cache errors are logged
    and treated as misses or skipped writes.
    """

    def __init__(self, cache: Cache | None) -> None:
        self._cache = cache

    @property
    def enabled(self) -> bool:
        return self._cache is not None

    async def get(self, key: str) -> Any | None:
        if self._cache is None:
            return None
        try:
            return await self._cache.get(key)
        except Exception as e:
            logger.warning("Cache read failed", key=key, error=str(e))
            return None

    async def set(self, key: str, value: Any, ttl_seconds: int) -> None:
        if self._cache is None:
            return
        try:
            await self._cache.set(key, value, ttl_seconds)
        except Exception as e:
            logger.warning("Cache write failed", key=key, error=str(e))

    async def invalidate_prefix(self, prefix: str) -> int:
        if self._cache is None:
            return 0
        return await self._cache.invalidate_prefix(prefix)
