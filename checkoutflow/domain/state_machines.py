"""State machines for the checkout domain.

Order statuses follow a fixed transition table. Checkout steps are
identified by ``CheckoutStepType``; step ordering itself lives in the
step registry (``checkoutflow.application.validation.STEP_REGISTRY``).
"""

from enum import Enum

from checkoutflow.domain.exceptions import InvalidStateTransitionError


# ============================================================================
# Checkout Steps
# ============================================================================


class CheckoutStepType(str, Enum):
    """Canonical checkout step identifiers.

    Step indices used by the flow manager are 1-based positions into
    the step list built from the registry, never hard-coded numbers.
    """

    ADDRESS = "address"
    SHIPPING = "shipping"
    PAYMENT = "payment"
    REVIEW = "review"


# ============================================================================
# Order State Machine
# ============================================================================


class OrderStatus(str, Enum):
    """Order lifecycle states.

    State diagram:
        DRAFT ──► PENDING ──────────────────────────────► CANCELLED
                    │  │                                     ▲
                    │  └──► ON_HOLD ─────────────────────────┤
                    │         │                              │
                    ▼         ▼                              │
                  PROCESSING ────────────────────────────────┘
                    │     │
                    │     └──► FAILED ──► PENDING (retry)
                    ▼
                  COMPLETED ──► REFUNDED
    """

    DRAFT = "draft"
    PENDING = "pending"
    PROCESSING = "processing"
    ON_HOLD = "on-hold"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    REFUNDED = "refunded"
    FAILED = "failed"

    @classmethod
    def parse(cls, value: str) -> "OrderStatus":
        """Parse a backend status string.

        Accepts both ``on-hold`` and ``on_hold`` spellings.

        Args:
            value: Status string from the backend.

        Returns:
            Matching OrderStatus.
        """
        return cls(value.replace("_", "-"))

    def can_transition_to(self, target: "OrderStatus") -> bool:
        """Check if transition to target state is valid.

        Args:
            target: Target state to transition to.

        Returns:
            True if transition is valid.
        """
        return target in _ORDER_TRANSITIONS.get(self, set())

    def allowed_transitions(self) -> list["OrderStatus"]:
        """Get list of valid target states."""
        return list(_ORDER_TRANSITIONS.get(self, set()))

    def is_cancellable(self) -> bool:
        """Check if order can be cancelled.

        Returns:
            True for pending, processing and on-hold orders.
        """
        return self in {OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.ON_HOLD}

    def is_terminal(self) -> bool:
        """Check if this is a terminal (final) state."""
        return len(_ORDER_TRANSITIONS.get(self, set())) == 0


# Order state transitions (defined outside enum to avoid Enum restrictions)
_ORDER_TRANSITIONS: dict[OrderStatus, set[OrderStatus]] = {
    OrderStatus.DRAFT: {OrderStatus.PENDING, OrderStatus.CANCELLED},
    OrderStatus.PENDING: {
        OrderStatus.PROCESSING,
        OrderStatus.ON_HOLD,
        OrderStatus.CANCELLED,
        OrderStatus.FAILED,
    },
    OrderStatus.ON_HOLD: {
        OrderStatus.PENDING,
        OrderStatus.PROCESSING,
        OrderStatus.CANCELLED,
    },
    OrderStatus.PROCESSING: {
        OrderStatus.COMPLETED,
        OrderStatus.ON_HOLD,
        OrderStatus.CANCELLED,
        OrderStatus.FAILED,
    },
    OrderStatus.COMPLETED: {OrderStatus.REFUNDED},
    OrderStatus.FAILED: {OrderStatus.PENDING},  # Can retry payment
    OrderStatus.CANCELLED: set(),  # Terminal state
    OrderStatus.REFUNDED: set(),  # Terminal state
}


def validate_order_transition(
    order_id: str,
    current_status: OrderStatus,
    target_status: OrderStatus,
) -> None:
    """Validate and raise if order state transition is invalid.

    Args:
        order_id: Order identifier for error message.
        current_status: Current order status.
        target_status: Target order status.

    Raises:
        InvalidStateTransitionError: If transition is not valid.
    """
    if not current_status.can_transition_to(target_status):
        raise InvalidStateTransitionError(
            entity_type="Order",
            entity_id=order_id,
            current_state=current_status.value,
            target_state=target_status.value,
            allowed_transitions=[s.value for s in current_status.allowed_transitions()],
        )
