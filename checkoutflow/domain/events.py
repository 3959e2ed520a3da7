"""Domain events recorded by the order aggregate.

Events are collected with ``Order.collect_events()`` after the order has
been handed back and can be forwarded to webhooks, audit logs or
analytics by the caller.
"""

from dataclasses import dataclass
from typing import Any, ClassVar

from checkoutflow.domain.base import DomainEvent


# ============================================================================
# Order Events
# ============================================================================


@dataclass(frozen=True)
class OrderCreated(DomainEvent):
    """Event raised when the backend has accepted a new order."""

    event_type: ClassVar[str] = "order.created"

    order_id: str = ""
    order_number: str = ""
    status: str = ""
    total: str = "0"
    currency: str = "USD"
    item_count: int = 0
    customer_email: str = ""

    def _payload(self) -> dict[str, Any]:
        """Get event-specific payload."""
        return {
            "order_id": self.order_id,
            "order_number": self.order_number,
            "status": self.status,
            "total": self.total,
            "currency": self.currency,
            "item_count": self.item_count,
            "customer_email": self.customer_email,
        }


@dataclass(frozen=True)
class OrderStatusChanged(DomainEvent):
    """Event raised when an order moves to another status."""

    event_type: ClassVar[str] = "order.status_changed"

    order_id: str = ""
    old_status: str = ""
    new_status: str = ""

    def _payload(self) -> dict[str, Any]:
        """Get event-specific payload."""
        return {
            "order_id": self.order_id,
            "old_status": self.old_status,
            "new_status": self.new_status,
        }


@dataclass(frozen=True)
class OrderCancelled(DomainEvent):
    """Event raised when an order is cancelled."""

    event_type: ClassVar[str] = "order.cancelled"

    order_id: str = ""
    previous_status: str = ""
    reason: str = ""

    def _payload(self) -> dict[str, Any]:
        """Get event-specific payload."""
        return {
            "order_id": self.order_id,
            "previous_status": self.previous_status,
            "reason": self.reason,
        }


# ============================================================================
# Event Registry
# ============================================================================

EVENT_REGISTRY: dict[str, type[DomainEvent]] = {
    OrderCreated.event_type: OrderCreated,
    OrderStatusChanged.event_type: OrderStatusChanged,
    OrderCancelled.event_type: OrderCancelled,
}


def get_event_class(event_type: str) -> type[DomainEvent] | None:
    """Get event class by event type string.

    Args:
        event_type: Event type identifier (e.g., "order.created").

    Returns:
        Event class or None if not found.
    """
    return EVENT_REGISTRY.get(event_type)
