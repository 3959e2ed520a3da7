"""Domain layer - Cart, session, order, value objects, state machines, events.

- **Entities**: Cart and CheckoutSession snapshots, the Order aggregate
- **Value Objects**: Address, OrderTotals, shipping rates, payment methods
- **State Machines**: CheckoutStepType, OrderStatus transitions
- **Domain Events**: order.created, order.status_changed, order.cancelled
- **Exceptions**: CheckoutError hierarchy

Example usage:
    from checkoutflow.domain import Cart, CartItem, CartTotals

    cart = Cart(
        id="cart-1",
        items=(CartItem(key="a", product_id=1, quantity=2, name="Widget",
                        price=Decimal("10"), total=Decimal("20")),),
        totals=CartTotals(subtotal=Decimal("20"), total=Decimal("20")),
    )
"""

# Base classes
from checkoutflow.domain.base import AggregateRoot, DomainEvent, ValueObject

# Entities
from checkoutflow.domain.entities import (
    Cart,
    CartItem,
    CartTotals,
    CheckoutSession,
    Order,
    OrderLineItem,
    StockStatus,
)

# Domain Events
from checkoutflow.domain.events import (
    EVENT_REGISTRY,
    OrderCancelled,
    OrderCreated,
    OrderStatusChanged,
    get_event_class,
)

# Exceptions
from checkoutflow.domain.exceptions import (
    ApiError,
    CheckoutError,
    CheckoutFlowError,
    CheckoutTimeoutError,
    ConfigurationError,
    InvalidStateTransitionError,
    InventoryLeakError,
    OrderNotCancellableError,
    SessionExpiredError,
    ShippingUnavailableError,
    ValidationError,
)

# State Machines
from checkoutflow.domain.state_machines import (
    CheckoutStepType,
    OrderStatus,
    validate_order_transition,
)

# Value Objects
from checkoutflow.domain.value_objects import (
    TOTALS_TOLERANCE,
    Address,
    AddressType,
    CountryConfig,
    OrderTotals,
    PaymentInitResponse,
    PaymentMethod,
    PaymentMethodType,
    SelectedPaymentMethod,
    SelectedShippingMethod,
    ShippingMethodType,
    ShippingRate,
    ShippingZone,
)

__all__ = [
    # Base
    "AggregateRoot",
    "DomainEvent",
    "ValueObject",
    # Entities
    "Cart",
    "CartItem",
    "CartTotals",
    "CheckoutSession",
    "Order",
    "OrderLineItem",
    "StockStatus",
    # Events
    "EVENT_REGISTRY",
    "OrderCancelled",
    "OrderCreated",
    "OrderStatusChanged",
    "get_event_class",
    # Exceptions
    "ApiError",
    "CheckoutError",
    "CheckoutFlowError",
    "CheckoutTimeoutError",
    "ConfigurationError",
    "InvalidStateTransitionError",
    "InventoryLeakError",
    "OrderNotCancellableError",
    "SessionExpiredError",
    "ShippingUnavailableError",
    "ValidationError",
    # State Machines
    "CheckoutStepType",
    "OrderStatus",
    "validate_order_transition",
    # Value Objects
    "TOTALS_TOLERANCE",
    "Address",
    "AddressType",
    "CountryConfig",
    "OrderTotals",
    "PaymentInitResponse",
    "PaymentMethod",
    "PaymentMethodType",
    "SelectedPaymentMethod",
    "SelectedShippingMethod",
    "ShippingMethodType",
    "ShippingRate",
    "ShippingZone",
]
