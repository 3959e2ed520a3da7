"""Payment method validation and payment initialization.

The engine does not implement gateway protocols. It checks a selected
method against the configured list, the amount limits and the backend's
live gateway list, and asks the backend to start a payment flow for a
created order.
"""

from collections.abc import Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any

import structlog

from checkoutflow.application.ports import Cache, CheckoutBackend, PaymentInitRequest, SoftCache
from checkoutflow.domain.exceptions import ConfigurationError, ValidationError
from checkoutflow.domain.value_objects import (
    PaymentInitResponse,
    PaymentMethod,
    PaymentMethodType,
    to_decimal,
)
from checkoutflow.infrastructure.config import PaymentConfig

logger = structlog.get_logger()

CACHE_PREFIX = "payment-"

# Methods that send the customer to an external page or need offline steps.
REDIRECT_METHODS = frozenset(
    {
        PaymentMethodType.PAYPAL.value,
        PaymentMethodType.STRIPE_CHECKOUT.value,
        PaymentMethodType.BANK_TRANSFER.value,
        PaymentMethodType.CASH_ON_DELIVERY.value,
    }
)


@dataclass(frozen=True)
class PaymentMethodsResponse:
    """Live gateway list from the backend."""

    available_methods: tuple[PaymentMethod, ...] = ()
    minimum_amounts: dict[str, Decimal] = field(default_factory=dict)
    currency: str = "USD"
    default_method: PaymentMethod | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any], currency: str) -> "PaymentMethodsResponse":
        """Create from a backend gateway list payload."""
        default = data.get("default_gateway")
        return cls(
            available_methods=tuple(
                PaymentMethod.from_api(m) for m in data.get("payment_gateways") or []
            ),
            minimum_amounts={
                method_id: to_decimal(amount)
                for method_id, amount in (data.get("minimum_amounts") or {}).items()
            },
            currency=data.get("currency") or currency,
            default_method=PaymentMethod.from_api(default) if default else None,
        )

    def find(self, method_id: str) -> PaymentMethod | None:
        return next((m for m in self.available_methods if m.id == method_id), None)


@dataclass(frozen=True)
class PaymentValidation:
    """Result of validating a payment method selection."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


class PaymentGatewayAdapter:
    """Validates payment selections and starts payment flows."""

    def __init__(
        self,
        backend: CheckoutBackend,
        config: PaymentConfig | None = None,
        cache: Cache | None = None,
    ) -> None:
        """Initialize adapter.

        Args:
            backend: Backend exposing the gateway list and payment start.
            config: Payment settings.
            cache: Optional read-through cache for the gateway list.
        """
        self._backend = backend
        self._config = config or PaymentConfig()
        self._cache = SoftCache(cache)

    @property
    def config(self) -> PaymentConfig:
        return self._config

    def _ensure_enabled(self) -> None:
        if not self._config.enabled:
            raise ConfigurationError("Payments are disabled")

    async def get_available_methods(
        self,
        amount: Decimal,
        currency: str | None = None,
        country: str | None = None,
    ) -> PaymentMethodsResponse:
        """Fetch the live gateway list, read-through cached.

        Raises:
            ConfigurationError: If payments are disabled.
            ApiError: If the backend call fails.
        """
        self._ensure_enabled()
        currency = currency or self._config.currency
        key = f"{CACHE_PREFIX}methods:{amount}:{currency}:{(country or 'default').upper()}"

        cached = await self._cache.get(key)
        if cached is not None:
            return cached

        data = await self._backend.get_payment_methods(
            amount, currency, country.upper() if country else None
        )
        response = PaymentMethodsResponse.from_api(data, currency)
        await self._cache.set(key, response, self._config.cache_timeout_minutes * 60)
        return response

    async def validate_payment_method(
        self,
        method_id: str,
        amount: Decimal,
        currency: str | None = None,
    ) -> PaymentValidation:
        """Validate a payment method for an amount.

        Checks the configured supported list, the global minimum and
        maximum, then the backend's live list: the method must be
        present, enabled and meet its own minimum amount.

        Args:
            method_id: Selected gateway id.
            amount: Amount to be charged.
            currency: ISO currency code, the configured currency by default.

        Returns:
            PaymentValidation with errors and warnings.

        Raises:
            ConfigurationError: If payments are disabled.
            ApiError: If the gateway list cannot be fetched.
        """
        currency = currency or self._config.currency
        errors: list[str] = []
        warnings: list[str] = []

        if method_id not in self._config.supported_methods:
            errors.append(f'Payment method "{method_id}" is not supported')

        if amount < self._config.minimum_amount:
            errors.append(f"Amount is below minimum ({self._config.minimum_amount} {currency})")
        maximum = self._config.maximum_amount
        if maximum is not None and amount > maximum:
            errors.append(f"Amount exceeds maximum ({maximum} {currency})")

        methods = await self.get_available_methods(amount, currency)
        method = methods.find(method_id)
        if method is None:
            errors.append(f'Payment method "{method_id}" is not available')
        elif not method.enabled:
            errors.append(f'Payment method "{method_id}" is currently disabled')
        else:
            method_minimum = methods.minimum_amounts.get(method_id)
            if method_minimum and amount < method_minimum:
                title = method.title or method.id
                errors.append(f"Amount is below minimum for {title} ({method_minimum} {currency})")
            if method.description:
                warnings.append(method.description)

        if errors:
            logger.info("Payment method rejected", method_id=method_id, errors=errors)
        return PaymentValidation(is_valid=not errors, errors=errors, warnings=warnings)

    async def initialize_payment(self, request: PaymentInitRequest) -> PaymentInitResponse:
        """Start a payment flow for an order.

        Raises:
            ConfigurationError: If payments are disabled.
            ValidationError: If the method is not offered or disabled.
            ApiError: If the backend call fails.
        """
        methods = await self.get_available_methods(request.amount, request.currency)
        method = methods.find(request.payment_method_id)
        if method is None or not method.enabled:
            raise ValidationError(
                "Selected payment method is not available",
                details={"method_id": request.payment_method_id},
            )

        data = await self._backend.initialize_payment(request)
        response = PaymentInitResponse.from_api(data)
        logger.info(
            "Payment initialized",
            order_id=request.order_id,
            payment_id=response.payment_id,
            method_id=request.payment_method_id,
            requires_redirect=response.requires_redirect,
        )
        return response

    @staticmethod
    def requires_redirect(method_id: str) -> bool:
        return method_id in REDIRECT_METHODS

    @staticmethod
    def filter_methods(
        methods: Sequence[PaymentMethod],
        enabled: bool | None = None,
        min_amount: Decimal | None = None,
        country: str | None = None,
        currency: str | None = None,
    ) -> list[PaymentMethod]:
        """Filter gateways by availability criteria.

        Args:
            methods: Gateways to filter.
            enabled: Keep only gateways with this enabled flag.
            min_amount: Drop gateways whose own minimum is above this amount.
            country: Keep gateways supporting this country (or all countries).
            currency: Keep gateways supporting this currency (or all currencies).
        """
        result: list[PaymentMethod] = []
        for method in methods:
            if enabled is not None and method.enabled != enabled:
                continue
            if min_amount and method.minimum_amount and min_amount < method.minimum_amount:
                continue
            if country and method.supported_countries and country.upper() not in method.supported_countries:
                continue
            if currency and method.supported_currencies and currency.upper() not in method.supported_currencies:
                continue
            result.append(method)
        return result

    async def clear_cache(self) -> int:
        """Drop every cached gateway lookup."""
        return await self._cache.invalidate_prefix(CACHE_PREFIX)
