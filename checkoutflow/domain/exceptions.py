"""Checkout exceptions.

Every error raised by the engine derives from ``CheckoutError`` so
callers can catch engine failures in one place. Validation problems
inside flow transitions are reported through result objects; the
``ValidationError`` family is raised only where input is constructed
(cart intake, session patches, order preconditions, cancellation).
"""

from typing import Any


class CheckoutError(Exception):
    """Base class for all checkout exceptions.

    Attributes:
        message: Human-readable error message.
        code: Stable machine-readable error code.
        details: Additional error context.
        retryable: Whether the transport layer may retry the operation.
    """

    code: str = "CHECKOUT_ERROR"
    retryable: bool = False

    def __init__(self, message: str, details: dict[str, Any] | None = None) -> None:
        """Initialize checkout error.

        Args:
            message: Human-readable error message.
            details: Optional dictionary with additional error context.
        """
        super().__init__(message)
        self.message = message
        self.details = details or {}

    def to_dict(self) -> dict[str, Any]:
        """Serialize the error for listeners and logs."""
        return {
            "code": self.code,
            "message": self.message,
            "details": self.details,
            "retryable": self.retryable,
        }


# ============================================================================
# Validation Errors
# ============================================================================


class ValidationError(CheckoutError):
    """Business-rule or field violation, recoverable by user correction."""

    code = "VALIDATION_ERROR"

    def __init__(
        self,
        message: str,
        errors: list[str] | None = None,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize validation error.

        Args:
            message: Summary message.
            errors: Individual violation messages.
            details: Optional additional context.
        """
        super().__init__(message, details=details)
        self.errors = list(errors) if errors else [message]


class InvalidStateTransitionError(ValidationError):
    """Raised when an order status transition is not allowed."""

    def __init__(
        self,
        entity_type: str,
        entity_id: str,
        current_state: str,
        target_state: str,
        allowed_transitions: list[str] | None = None,
    ) -> None:
        """Initialize invalid state transition error.

        Args:
            entity_type: Type of entity (e.g., "Order").
            entity_id: ID of the entity.
            current_state: Current state of the entity.
            target_state: Attempted target state.
            allowed_transitions: List of allowed target states from current state.
        """
        allowed = allowed_transitions or []
        message = (
            f"Cannot transition {entity_type}({entity_id}) "
            f"from '{current_state}' to '{target_state}'. "
            f"Allowed transitions: {allowed}"
        )
        super().__init__(
            message,
            details={
                "entity_type": entity_type,
                "entity_id": entity_id,
                "current_state": current_state,
                "target_state": target_state,
                "allowed_transitions": allowed,
            },
        )


class OrderNotCancellableError(ValidationError):
    """Raised when trying to cancel an order that cannot be cancelled."""

    def __init__(self, order_id: str, current_status: str) -> None:
        """Initialize order not cancellable error.

        Args:
            order_id: ID of the order.
            current_status: Current status of the order.
        """
        super().__init__(
            f"Cannot cancel order with status: {current_status}",
            details={"order_id": order_id, "current_status": current_status},
        )


class ShippingUnavailableError(ValidationError):
    """Raised when shipping is not offered to the requested destination."""

    def __init__(self, country: str) -> None:
        """Initialize shipping unavailable error.

        Args:
            country: Destination country code.
        """
        super().__init__(
            "Shipping not available to this destination",
            details={"country": country},
        )


# ============================================================================
# Session Errors
# ============================================================================


class SessionExpiredError(CheckoutError):
    """Raised when operating on a checkout session past its expiry."""

    code = "SESSION_EXPIRED"

    def __init__(self, session_id: str, expires_at: str) -> None:
        """Initialize session expired error.

        Args:
            session_id: ID of the session.
            expires_at: ISO timestamp the session expired at.
        """
        super().__init__(
            f"Checkout session {session_id} expired at {expires_at}",
            details={"session_id": session_id, "expires_at": expires_at},
        )


# ============================================================================
# Infrastructure Errors
# ============================================================================


class ConfigurationError(CheckoutError):
    """A feature is disabled at the system level and needs operator action."""

    code = "CONFIGURATION_ERROR"


class ApiError(CheckoutError):
    """A backend call failed.

    Server errors (5xx) are retryable by the transport layer, client
    errors (4xx) are not.
    """

    code = "API_ERROR"

    def __init__(
        self,
        message: str,
        status_code: int,
        details: dict[str, Any] | None = None,
    ) -> None:
        """Initialize API error.

        Args:
            message: Human-readable error message.
            status_code: HTTP-style status classification.
            details: Optional additional context.
        """
        super().__init__(message, details=details)
        self.status_code = status_code

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return self.status_code >= 500

    def to_dict(self) -> dict[str, Any]:
        data = super().to_dict()
        data["status_code"] = self.status_code
        return data


class CheckoutTimeoutError(CheckoutError):
    """A backend call exceeded its suspension-point timeout."""

    code = "TIMEOUT_ERROR"
    retryable = True


class InventoryLeakError(CheckoutError):
    """Releasing reserved inventory failed after an order submission failure.

    Reserved stock may now be held without an order. This is an
    operational condition and is never retried automatically.
    """

    code = "INVENTORY_LEAK"

    def __init__(
        self,
        cart_id: str,
        submission_error: Exception,
        release_error: Exception,
    ) -> None:
        """Initialize inventory leak error.

        Args:
            cart_id: Cart whose reservation could not be released.
            submission_error: Error that triggered the compensation.
            release_error: Error raised by the compensation itself.
        """
        super().__init__(
            f"Inventory reserved for cart {cart_id} could not be released",
            details={
                "cart_id": cart_id,
                "submission_error": str(submission_error),
                "release_error": str(release_error),
            },
        )
        self.submission_error = submission_error
        self.release_error = release_error


# ============================================================================
# Flow Errors
# ============================================================================


class CheckoutFlowError(CheckoutError):
    """Tagged wrapper for unexpected failures inside the flow manager.

    Attributes:
        stage: Flow stage that failed (e.g. "validation", "order_creation").
        cause: Original exception.
    """

    code = "CHECKOUT_FLOW_ERROR"

    def __init__(self, stage: str, message: str, cause: Exception) -> None:
        """Initialize flow error.

        Args:
            stage: Flow stage that failed.
            message: Human-readable error message.
            cause: Original exception.
        """
        details: dict[str, Any] = {"stage": stage, "cause": str(cause)}
        if isinstance(cause, CheckoutError):
            details["cause_code"] = cause.code
        super().__init__(message, details=details)
        self.stage = stage
        self.cause = cause

    @property
    def retryable(self) -> bool:  # type: ignore[override]
        return isinstance(self.cause, CheckoutError) and self.cause.retryable
