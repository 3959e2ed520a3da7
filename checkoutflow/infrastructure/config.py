"""Checkout configuration.

Loads settings from ``CHECKOUT_*`` environment variables (and an optional
``.env`` file) with sensible defaults, and turns them into the plain
config objects the checkout components take. Components can also be
given those config objects directly, which is what the tests do.
"""

from dataclasses import dataclass, field
from decimal import Decimal

from pydantic_settings import BaseSettings

from checkoutflow.domain.state_machines import CheckoutStepType, OrderStatus

DEFAULT_STEPS: tuple[CheckoutStepType, ...] = (
    CheckoutStepType.ADDRESS,
    CheckoutStepType.SHIPPING,
    CheckoutStepType.PAYMENT,
    CheckoutStepType.REVIEW,
)

DEFAULT_PAYMENT_METHODS: tuple[str, ...] = (
    "stripe",
    "paypal",
    "bank_transfer",
    "cash_on_delivery",
)


# ============================================================================
# Component Configuration
# ============================================================================


@dataclass(frozen=True)
class CheckoutValidationRules:
    """Business rules applied while validating a checkout."""

    require_shipping_address: bool = True
    require_billing_address: bool = True
    require_email: bool = True
    require_phone_number: bool = False
    require_company_name: bool = False
    allow_guest_checkout: bool = True
    minimum_order_amount: Decimal | None = None
    maximum_order_amount: Decimal | None = None
    restricted_countries: tuple[str, ...] = ()
    required_fields: tuple[str, ...] = ()
    return_url: str = "/checkout/success"
    cancel_url: str = "/checkout/cancel"


@dataclass(frozen=True)
class FlowConfig:
    """Checkout flow behaviour.

    Attributes:
        steps: Step types to offer, in registry order.
        allow_skip_optional: Let customers skip optional steps (shipping).
        persist_session: Store a snapshot after every state change.
        session_timeout_minutes: Session lifetime.
        validation_rules: Business rules for every validation pass.
    """

    steps: tuple[CheckoutStepType, ...] = DEFAULT_STEPS
    allow_skip_optional: bool = False
    persist_session: bool = True
    session_timeout_minutes: int = 30
    validation_rules: CheckoutValidationRules = field(default_factory=CheckoutValidationRules)


@dataclass(frozen=True)
class ShippingConfig:
    """Shipping rate resolution settings."""

    enabled: bool = True
    calculate_tax: bool = True
    default_country: str = "US"
    free_shipping_threshold: Decimal | None = None
    restricted_countries: tuple[str, ...] = ()
    cache_timeout_minutes: int = 15


@dataclass(frozen=True)
class PaymentConfig:
    """Payment gateway settings."""

    enabled: bool = True
    test_mode: bool = True
    supported_methods: tuple[str, ...] = DEFAULT_PAYMENT_METHODS
    minimum_amount: Decimal = Decimal("1")
    maximum_amount: Decimal | None = None
    currency: str = "USD"
    return_url: str = "/checkout/payment/return"
    cancel_url: str = "/checkout/payment/cancel"
    cache_timeout_minutes: int = 10


@dataclass(frozen=True)
class OrderProcessingConfig:
    """Order assembly settings."""

    auto_update_inventory: bool = True
    send_confirmation_email: bool = True
    require_payment_confirmation: bool = True
    order_number_prefix: str = "WOO-"
    order_number_suffix: str = ""
    default_status: OrderStatus = OrderStatus.PENDING
    inventory_hold_minutes: int = 15
    cache_timeout_minutes: int = 30


# ============================================================================
# Environment Settings
# ============================================================================


class Settings(BaseSettings):
    """Checkout settings loaded from environment variables."""

    # Backend
    backend_url: str = "http://localhost:8080"
    backend_api_key: str = ""
    backend_timeout_seconds: float = 30.0

    # Flow
    allow_skip_optional: bool = False
    persist_session: bool = True
    session_timeout_minutes: int = 30

    # Validation rules
    require_email: bool = True
    require_phone_number: bool = False
    require_company_name: bool = False
    allow_guest_checkout: bool = True
    minimum_order_amount: Decimal | None = None
    maximum_order_amount: Decimal | None = None

    # Shipping
    shipping_enabled: bool = True
    shipping_restricted_countries: list[str] = []
    free_shipping_threshold: Decimal | None = None
    shipping_cache_minutes: int = 15

    # Payment
    payment_enabled: bool = True
    payment_test_mode: bool = True
    payment_methods: list[str] = list(DEFAULT_PAYMENT_METHODS)
    payment_minimum_amount: Decimal = Decimal("1")
    payment_maximum_amount: Decimal | None = None
    currency: str = "USD"
    payment_cache_minutes: int = 10

    # Orders
    auto_update_inventory: bool = True
    send_confirmation_email: bool = True
    order_number_prefix: str = "WOO-"
    order_cache_minutes: int = 30

    # Logging
    log_level: str = "INFO"
    json_logs: bool = True

    class Config:
        """Pydantic configuration."""

        env_prefix = "CHECKOUT_"
        env_file = ".env"
        env_file_encoding = "utf-8"

    def validation_rules(self) -> CheckoutValidationRules:
        return CheckoutValidationRules(
            require_email=self.require_email,
            require_phone_number=self.require_phone_number,
            require_company_name=self.require_company_name,
            allow_guest_checkout=self.allow_guest_checkout,
            minimum_order_amount=self.minimum_order_amount,
            maximum_order_amount=self.maximum_order_amount,
            restricted_countries=tuple(c.upper() for c in self.shipping_restricted_countries),
        )

    def flow_config(self) -> FlowConfig:
        return FlowConfig(
            allow_skip_optional=self.allow_skip_optional,
            persist_session=self.persist_session,
            session_timeout_minutes=self.session_timeout_minutes,
            validation_rules=self.validation_rules(),
        )

    def shipping_config(self) -> ShippingConfig:
        return ShippingConfig(
            enabled=self.shipping_enabled,
            free_shipping_threshold=self.free_shipping_threshold,
            restricted_countries=tuple(c.upper() for c in self.shipping_restricted_countries),
            cache_timeout_minutes=self.shipping_cache_minutes,
        )

    def payment_config(self) -> PaymentConfig:
        return PaymentConfig(
            enabled=self.payment_enabled,
            test_mode=self.payment_test_mode,
            supported_methods=tuple(self.payment_methods),
            minimum_amount=self.payment_minimum_amount,
            maximum_amount=self.payment_maximum_amount,
            currency=self.currency,
            cache_timeout_minutes=self.payment_cache_minutes,
        )

    def order_config(self) -> OrderProcessingConfig:
        return OrderProcessingConfig(
            auto_update_inventory=self.auto_update_inventory,
            send_confirmation_email=self.send_confirmation_email,
            order_number_prefix=self.order_number_prefix,
            cache_timeout_minutes=self.order_cache_minutes,
        )


settings = Settings()
