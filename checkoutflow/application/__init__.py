"""Application layer module.

Contains the checkout components (flow manager, validation aggregator,
order assembler and the validators they use) and the service that
wires them together.
"""

from checkoutflow.application.address import AddressValidator
from checkoutflow.application.checkout_service import (
    CheckoutConfig,
    CheckoutService,
    get_checkout_service,
    reset_checkout_service,
)
from checkoutflow.application.flow import (
    CheckoutStep,
    FlowManager,
    FlowState,
    StepTransitionResult,
)
from checkoutflow.application.listeners import CheckoutListener, ListenerRegistry
from checkoutflow.application.order_assembler import (
    OrderAssembler,
    OrderCreateRequest,
    OrderCreateResponse,
)
from checkoutflow.application.payment import PaymentGatewayAdapter
from checkoutflow.application.schemas import SessionPatch, apply_patch
from checkoutflow.application.shipping import ShippingRateResolver
from checkoutflow.application.validation import (
    STEP_REGISTRY,
    AggregateValidationResult,
    ValidationAggregator,
    ValidationContext,
    ValidationResult,
    ValidationRuleBuilder,
)

__all__ = [
    "AddressValidator",
    "CheckoutConfig",
    "CheckoutService",
    "get_checkout_service",
    "reset_checkout_service",
    "CheckoutStep",
    "FlowManager",
    "FlowState",
    "StepTransitionResult",
    "CheckoutListener",
    "ListenerRegistry",
    "OrderAssembler",
    "OrderCreateRequest",
    "OrderCreateResponse",
    "PaymentGatewayAdapter",
    "SessionPatch",
    "apply_patch",
    "ShippingRateResolver",
    "STEP_REGISTRY",
    "AggregateValidationResult",
    "ValidationAggregator",
    "ValidationContext",
    "ValidationResult",
    "ValidationRuleBuilder",
]
