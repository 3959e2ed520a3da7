"""Tests for domain state machines."""

import pytest

from checkoutflow.domain import CheckoutStepType, OrderStatus
from checkoutflow.domain.exceptions import InvalidStateTransitionError, ValidationError
from checkoutflow.domain.state_machines import validate_order_transition


class TestOrderStatus:
    """Tests for OrderStatus state machine."""

    def test_draft_can_become_pending(self) -> None:
        """DRAFT can transition to PENDING."""
        assert OrderStatus.DRAFT.can_transition_to(OrderStatus.PENDING)

    def test_pending_can_be_paid_held_cancelled_or_failed(self) -> None:
        """PENDING can move to processing, on-hold, cancelled and failed."""
        for target in (
            OrderStatus.PROCESSING,
            OrderStatus.ON_HOLD,
            OrderStatus.CANCELLED,
            OrderStatus.FAILED,
        ):
            assert OrderStatus.PENDING.can_transition_to(target)

    def test_pending_cannot_complete_directly(self) -> None:
        """PENDING cannot skip processing."""
        assert not OrderStatus.PENDING.can_transition_to(OrderStatus.COMPLETED)

    def test_completed_can_only_be_refunded(self) -> None:
        """COMPLETED only allows REFUNDED."""
        assert OrderStatus.COMPLETED.allowed_transitions() == [OrderStatus.REFUNDED]

    def test_failed_can_retry(self) -> None:
        """FAILED can go back to PENDING for a payment retry."""
        assert OrderStatus.FAILED.can_transition_to(OrderStatus.PENDING)

    def test_cancelled_and_refunded_are_terminal(self) -> None:
        """CANCELLED and REFUNDED are terminal."""
        assert OrderStatus.CANCELLED.is_terminal()
        assert OrderStatus.REFUNDED.is_terminal()
        assert not OrderStatus.PENDING.is_terminal()

    def test_cancellable_statuses(self) -> None:
        """Only pending, processing and on-hold orders are cancellable."""
        cancellable = {s for s in OrderStatus if s.is_cancellable()}
        assert cancellable == {OrderStatus.PENDING, OrderStatus.PROCESSING, OrderStatus.ON_HOLD}

    def test_parse_accepts_both_on_hold_spellings(self) -> None:
        """Backend status strings parse with dash or underscore."""
        assert OrderStatus.parse("on-hold") == OrderStatus.ON_HOLD
        assert OrderStatus.parse("on_hold") == OrderStatus.ON_HOLD

    def test_parse_rejects_unknown_status(self) -> None:
        """Unknown status strings raise ValueError."""
        with pytest.raises(ValueError):
            OrderStatus.parse("shipped")


class TestValidateOrderTransition:
    """Tests for validate_order_transition."""

    def test_valid_transition_passes(self) -> None:
        """Valid transition does not raise."""
        validate_order_transition("1001", OrderStatus.PENDING, OrderStatus.PROCESSING)

    def test_invalid_transition_raises(self) -> None:
        """Invalid transition raises with allowed targets in details."""
        with pytest.raises(InvalidStateTransitionError) as exc_info:
            validate_order_transition("1001", OrderStatus.CANCELLED, OrderStatus.PENDING)

        error = exc_info.value
        assert isinstance(error, ValidationError)
        assert error.details["current_state"] == "cancelled"
        assert error.details["target_state"] == "pending"
        assert error.details["allowed_transitions"] == []


class TestCheckoutStepType:
    """Tests for CheckoutStepType."""

    def test_values(self) -> None:
        """Step types have stable string values."""
        assert [s.value for s in CheckoutStepType] == ["address", "shipping", "payment", "review"]
