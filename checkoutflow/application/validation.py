"""Checkout validation aggregator and step registry.

Runs the address, shipping, payment, cart and totals checks that apply
to a session and reduces them to one verdict:

- ``is_valid``: every domain check passed
- ``blockers``: failure categories that stop checkout on their own
- ``can_proceed``: valid and no blockers

The step registry is the single ordered list of checkout steps. The
flow manager builds its step list from it and validates a step by
looking up the step's validator here.
"""

import asyncio
import re
from collections.abc import Awaitable, Callable, Sequence
from dataclasses import dataclass, field
from decimal import Decimal
from enum import Enum
from typing import Any

import structlog

from checkoutflow.application.address import (
    EMAIL_PATTERN,
    AddressValidationContext,
    AddressValidator,
)
from checkoutflow.application.payment import PaymentGatewayAdapter
from checkoutflow.application.ports import ShippingRateRequest
from checkoutflow.application.shipping import ShippingRateResolver
from checkoutflow.domain.entities import Cart, CheckoutSession, StockStatus
from checkoutflow.domain.exceptions import ShippingUnavailableError, ValidationError
from checkoutflow.domain.state_machines import CheckoutStepType
from checkoutflow.domain.value_objects import Address, AddressType
from checkoutflow.infrastructure.config import CheckoutValidationRules

logger = structlog.get_logger()

UNUSUAL_TOTAL_THRESHOLD = Decimal("100000")

PHONE_PATTERN = re.compile(r"^[\+]?[\d\s\-\(\)]+$")

ADDRESS_BLOCKER = "Address information is incomplete or invalid"
PAYMENT_BLOCKER = "Payment method is not valid or available"
STOCK_BLOCKER = "Some items are out of stock or unavailable"
STEP_BLOCKER = "Step validation failed"


# ============================================================================
# Validation Types
# ============================================================================


class ValidationComponent(str, Enum):
    """Domain a validation result belongs to."""

    ADDRESS = "address"
    SHIPPING = "shipping"
    PAYMENT = "payment"
    CART = "cart"
    TOTALS = "totals"


@dataclass(frozen=True)
class ValidationContext:
    """Inputs of one validation pass.

    Attributes:
        session: Checkout session being validated.
        cart: Current cart snapshot.
        rules: Checkout-wide business rules.
        allow_skip_optional: Optional steps may be left empty.
    """

    session: CheckoutSession
    cart: Cart
    rules: CheckoutValidationRules = field(default_factory=CheckoutValidationRules)
    allow_skip_optional: bool = False

    @property
    def is_guest(self) -> bool:
        return self.session.is_guest


@dataclass(frozen=True)
class ValidationResult:
    """Outcome of one domain check."""

    component: ValidationComponent
    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    metadata: dict[str, Any] = field(default_factory=dict)

    @classmethod
    def build(
        cls,
        component: ValidationComponent,
        errors: list[str],
        warnings: list[str] | None = None,
        **metadata: Any,
    ) -> "ValidationResult":
        return cls(
            component=component,
            is_valid=not errors,
            errors=errors,
            warnings=warnings or [],
            metadata=metadata,
        )


@dataclass(frozen=True)
class AggregateValidationResult:
    """Single verdict reduced from several domain checks."""

    is_valid: bool
    can_proceed: bool
    validation_results: list[ValidationResult] = field(default_factory=list)
    critical_errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)
    blockers: list[str] = field(default_factory=list)
    recommendations: list[str] = field(default_factory=list)

    def results_for(self, component: ValidationComponent) -> list[ValidationResult]:
        return [r for r in self.validation_results if r.component == component]


# ============================================================================
# Step Registry
# ============================================================================


StepValidator = Callable[["ValidationAggregator", ValidationContext], Awaitable[AggregateValidationResult]]


@dataclass(frozen=True)
class StepDescriptor:
    """One entry of the step registry."""

    type: CheckoutStepType
    title: str
    description: str
    optional: bool
    validator: StepValidator


async def _validate_address_step(
    aggregator: "ValidationAggregator",
    ctx: ValidationContext,
) -> AggregateValidationResult:
    results = [await aggregator.validate_billing_address(ctx)]
    if not ctx.session.use_shipping_as_billing:
        results.append(await aggregator.validate_shipping_address(ctx))
    return aggregator.step_verdict(results)


async def _validate_shipping_step(
    aggregator: "ValidationAggregator",
    ctx: ValidationContext,
) -> AggregateValidationResult:
    if ctx.session.selected_shipping_method is not None:
        return aggregator.step_verdict([await aggregator.validate_shipping_method(ctx)])
    if ctx.allow_skip_optional and get_step_descriptor(CheckoutStepType.SHIPPING).optional:
        return aggregator.step_verdict([])
    return aggregator.step_verdict(
        [ValidationResult.build(ValidationComponent.SHIPPING, ["Shipping method is required"])]
    )


async def _validate_payment_step(
    aggregator: "ValidationAggregator",
    ctx: ValidationContext,
) -> AggregateValidationResult:
    # Nothing to pay, nothing to choose.
    if ctx.cart.total <= 0:
        return aggregator.step_verdict([])
    return aggregator.step_verdict([await aggregator.validate_payment_method(ctx)])


async def _validate_review_step(
    aggregator: "ValidationAggregator",
    ctx: ValidationContext,
) -> AggregateValidationResult:
    return await aggregator.validate_checkout(ctx)


STEP_REGISTRY: tuple[StepDescriptor, ...] = (
    StepDescriptor(
        type=CheckoutStepType.ADDRESS,
        title="Billing & Shipping",
        description="Enter your billing and shipping information",
        optional=False,
        validator=_validate_address_step,
    ),
    StepDescriptor(
        type=CheckoutStepType.SHIPPING,
        title="Shipping Method",
        description="Choose your shipping method",
        optional=True,
        validator=_validate_shipping_step,
    ),
    StepDescriptor(
        type=CheckoutStepType.PAYMENT,
        title="Payment",
        description="Choose your payment method",
        optional=False,
        validator=_validate_payment_step,
    ),
    StepDescriptor(
        type=CheckoutStepType.REVIEW,
        title="Review Order",
        description="Review your order before placing it",
        optional=False,
        validator=_validate_review_step,
    ),
)


def get_step_descriptor(step_type: CheckoutStepType) -> StepDescriptor:
    """Look up a registry entry.

    Raises:
        ValidationError: If the step type is not registered.
    """
    for descriptor in STEP_REGISTRY:
        if descriptor.type == step_type:
            return descriptor
    raise ValidationError(f"Unknown checkout step: {step_type}")


def resolve_steps(cart: Cart, enabled: Sequence[CheckoutStepType]) -> list[StepDescriptor]:
    """Steps offered for a cart, in registry order.

    Args:
        cart: Cart being checked out; shipping is left out when nothing ships.
        enabled: Step types turned on in the flow configuration.
    """
    return [
        descriptor
        for descriptor in STEP_REGISTRY
        if descriptor.type in enabled
        and not (descriptor.type == CheckoutStepType.SHIPPING and not cart.needs_shipping)
    ]


# ============================================================================
# Validation Aggregator
# ============================================================================


class ValidationAggregator:
    """Runs domain checks and reduces them to one verdict."""

    def __init__(
        self,
        address_validator: AddressValidator,
        shipping_resolver: ShippingRateResolver,
        payment_adapter: PaymentGatewayAdapter,
    ) -> None:
        self._addresses = address_validator
        self._shipping = shipping_resolver
        self._payments = payment_adapter

    @property
    def address_validator(self) -> AddressValidator:
        return self._addresses

    # -------------------------------------------------------------------------
    # Full Pass
    # -------------------------------------------------------------------------

    async def validate_checkout(self, ctx: ValidationContext) -> AggregateValidationResult:
        """Validate every domain that applies to the session.

        Domain checks have no side effects and run concurrently. Any
        exception raised by one of them aborts the pass.

        Args:
            ctx: Validation context.

        Returns:
            AggregateValidationResult with blockers and recommendations.
        """
        session = ctx.session
        checks: list[Awaitable[ValidationResult]] = [self.validate_billing_address(ctx)]
        if not session.use_shipping_as_billing:
            checks.append(self.validate_shipping_address(ctx))
        if session.selected_shipping_method is not None:
            checks.append(self.validate_shipping_method(ctx))
        if session.selected_payment_method is not None and ctx.cart.total > 0:
            checks.append(self.validate_payment_method(ctx))
        checks.append(self.validate_cart(ctx))
        checks.append(self.validate_totals(ctx))

        results = await _run_checks(checks, session_id=session.id)
        verdict = self.aggregate(results)

        if not verdict.can_proceed:
            logger.info(
                "Checkout validation failed",
                session_id=session.id,
                blockers=verdict.blockers,
                error_count=len(verdict.critical_errors),
            )
        return verdict

    @staticmethod
    def aggregate(results: list[ValidationResult]) -> AggregateValidationResult:
        """Reduce domain results to a verdict with blockers."""
        is_valid = all(r.is_valid for r in results)
        critical_errors = [e for r in results if not r.is_valid for e in r.errors]
        warnings = [w for r in results for w in r.warnings]

        def failed(component: ValidationComponent) -> bool:
            return any(r.component == component and not r.is_valid for r in results)

        blockers: list[str] = []
        if failed(ValidationComponent.ADDRESS):
            blockers.append(ADDRESS_BLOCKER)
        if failed(ValidationComponent.PAYMENT):
            blockers.append(PAYMENT_BLOCKER)
        if failed(ValidationComponent.CART):
            blockers.append(STOCK_BLOCKER)

        return AggregateValidationResult(
            is_valid=is_valid,
            can_proceed=is_valid and not blockers,
            validation_results=results,
            critical_errors=critical_errors,
            warnings=warnings,
            blockers=blockers,
            recommendations=_recommendations(results),
        )

    @staticmethod
    def step_verdict(results: list[ValidationResult]) -> AggregateValidationResult:
        """Verdict for a single step; any failure is a step blocker."""
        is_valid = all(r.is_valid for r in results)
        return AggregateValidationResult(
            is_valid=is_valid,
            can_proceed=is_valid,
            validation_results=results,
            critical_errors=[e for r in results for e in r.errors],
            warnings=[w for r in results for w in r.warnings],
            blockers=[] if is_valid else [STEP_BLOCKER],
        )

    async def validate_step(
        self,
        step_type: CheckoutStepType,
        ctx: ValidationContext,
    ) -> AggregateValidationResult:
        """Validate one step through its registry entry.

        Raises:
            ValidationError: If the step type is not registered.
        """
        descriptor = get_step_descriptor(step_type)
        return await descriptor.validator(self, ctx)

    # -------------------------------------------------------------------------
    # Domain Checks
    # -------------------------------------------------------------------------

    async def validate_billing_address(self, ctx: ValidationContext) -> ValidationResult:
        address = ctx.session.billing_address
        if address is None:
            return ValidationResult.build(
                ValidationComponent.ADDRESS, ["Billing address is required"], address_type="billing"
            )
        result = self._addresses.validate(
            address,
            AddressValidationContext(
                address_type=AddressType.BILLING,
                is_guest=ctx.is_guest,
                field_overrides={"email": ctx.is_guest or ctx.rules.require_email},
                rules=ctx.rules,
            ),
        )
        errors = list(result.errors)
        if ctx.session.use_shipping_as_billing:
            errors.extend(self._destination_errors(address, ctx))
        return ValidationResult.build(
            ValidationComponent.ADDRESS, errors, list(result.warnings), address_type="billing"
        )

    async def validate_shipping_address(self, ctx: ValidationContext) -> ValidationResult:
        address = ctx.session.shipping_address
        if address is None:
            errors = ["Shipping address is required"] if ctx.rules.require_shipping_address else []
            return ValidationResult.build(ValidationComponent.ADDRESS, errors, address_type="shipping")
        result = self._addresses.validate(
            address,
            AddressValidationContext(
                address_type=AddressType.SHIPPING,
                is_guest=ctx.is_guest,
                rules=ctx.rules,
            ),
        )
        errors = list(result.errors) + self._destination_errors(address, ctx)
        return ValidationResult.build(
            ValidationComponent.ADDRESS, errors, list(result.warnings), address_type="shipping"
        )

    async def validate_shipping_method(self, ctx: ValidationContext) -> ValidationResult:
        """Check the selected rate against a freshly fetched rate set."""
        selected = ctx.session.selected_shipping_method
        destination = ctx.session.effective_shipping_address
        if selected is None or destination is None:
            return ValidationResult.build(
                ValidationComponent.SHIPPING, ["Shipping method and address are required"]
            )

        request = ShippingRateRequest.for_cart(destination, ctx.cart)
        try:
            rate_set = await self._shipping.get_rates(request, use_cache=False)
        except ShippingUnavailableError as e:
            return ValidationResult.build(ValidationComponent.SHIPPING, [e.message])

        if not self._shipping.validate_selection(selected, rate_set.rates):
            return ValidationResult.build(
                ValidationComponent.SHIPPING,
                ["Selected shipping method is no longer available"],
                method_id=selected.method_id,
            )
        return ValidationResult.build(ValidationComponent.SHIPPING, [], method_id=selected.method_id)

    async def validate_payment_method(self, ctx: ValidationContext) -> ValidationResult:
        selected = ctx.session.selected_payment_method
        if selected is None:
            return ValidationResult.build(ValidationComponent.PAYMENT, ["Payment method is required"])
        result = await self._payments.validate_payment_method(
            selected.id, ctx.cart.total, ctx.cart.currency
        )
        return ValidationResult.build(
            ValidationComponent.PAYMENT,
            list(result.errors),
            list(result.warnings),
            method_id=selected.id,
        )

    async def validate_cart(self, ctx: ValidationContext) -> ValidationResult:
        """Check the cart is orderable: not empty, within amount limits, in stock."""
        cart = ctx.cart
        rules = ctx.rules
        errors: list[str] = []
        warnings: list[str] = []

        if cart.is_empty:
            errors.append("Cart is empty")
        if rules.minimum_order_amount and cart.total < rules.minimum_order_amount:
            errors.append(f"Minimum order amount is {rules.minimum_order_amount}")
        if rules.maximum_order_amount and cart.total > rules.maximum_order_amount:
            errors.append(f"Maximum order amount is {rules.maximum_order_amount}")

        for item in cart.items:
            if item.stock_status == StockStatus.OUT_OF_STOCK:
                errors.append(f'"{item.name or item.key}" is out of stock')
            elif item.stock_status == StockStatus.ON_BACKORDER:
                warnings.append(f'"{item.name or item.key}" is on backorder')

        return ValidationResult.build(
            ValidationComponent.CART,
            errors,
            warnings,
            item_count=len(cart.items),
            total=cart.total,
        )

    async def validate_totals(self, ctx: ValidationContext) -> ValidationResult:
        totals = ctx.cart.order_totals()
        errors: list[str] = []
        warnings: list[str] = []

        if totals.total < 0:
            errors.append("Order total cannot be negative")
        if totals.subtotal < 0:
            errors.append("Subtotal cannot be negative")
        if totals.tax < 0:
            errors.append("Tax amount cannot be negative")
        if not totals.is_consistent():
            errors.append("Order total calculation is inconsistent")
        if totals.total > UNUSUAL_TOTAL_THRESHOLD:
            warnings.append("Order total is unusually high")

        return ValidationResult.build(
            ValidationComponent.TOTALS,
            errors,
            warnings,
            calculated_total=totals.calculated_total(),
            actual_total=totals.total,
        )

    # -------------------------------------------------------------------------
    # Field Checks
    # -------------------------------------------------------------------------

    def validate_field(self, name: str, value: Any, ctx: ValidationContext) -> ValidationResult:
        """Quick check of one form field while the customer types.

        Supports ``email``, ``phone`` and ``postcode``; postcodes are
        checked against the billing address's country.

        Raises:
            ValidationError: If the field is not supported.
        """
        errors: list[str] = []

        if name == "email":
            if not isinstance(value, str):
                errors.append("Email must be a string")
            elif not EMAIL_PATTERN.match(value):
                errors.append("Invalid email format")
        elif name == "phone":
            if isinstance(value, str) and value and not PHONE_PATTERN.match(value):
                errors.append("Invalid phone number format")
        elif name == "postcode":
            billing = ctx.session.billing_address
            country = self._addresses.get_country_config(billing.country) if billing else None
            if isinstance(value, str) and value and country and country.postcode_pattern:
                if not re.fullmatch(country.postcode_pattern, value):
                    errors.append(f"Invalid postal code format for {country.name}")
        else:
            raise ValidationError(f"Unknown field: {name}")

        return ValidationResult.build(ValidationComponent.ADDRESS, errors, field=name)

    @staticmethod
    def _destination_errors(address: Address, ctx: ValidationContext) -> list[str]:
        if address.country.upper() in ctx.rules.restricted_countries:
            return [f"Shipping to {address.country.upper()} is not available"]
        return []


async def _run_checks(
    checks: Sequence[Awaitable[ValidationResult]],
    session_id: str,
) -> list[ValidationResult]:
    """Run domain checks concurrently, stopping at the first failure.

    Checks still running when one raises are cancelled. The first
    exception in check order is re-raised; later ones are logged.
    """
    tasks = [asyncio.ensure_future(check) for check in checks]
    try:
        await asyncio.wait(tasks, return_when=asyncio.FIRST_EXCEPTION)
    finally:
        pending = [task for task in tasks if not task.done()]
        for task in pending:
            task.cancel()
        if pending:
            await asyncio.gather(*pending, return_exceptions=True)

    errors = [
        task.exception()
        for task in tasks
        if not task.cancelled() and task.exception() is not None
    ]
    if errors:
        for extra in errors[1:]:
            logger.warning(
                "Additional validation check failed",
                session_id=session_id,
                error=str(extra),
                error_type=type(extra).__name__,
            )
        raise errors[0]
    return [task.result() for task in tasks]


def _recommendations(results: list[ValidationResult]) -> list[str]:
    def has(component: ValidationComponent, with_warnings: bool = True) -> bool:
        matching = [r for r in results if r.component == component]
        if not with_warnings:
            return bool(matching)
        return any(r.warnings for r in matching)

    recommendations: list[str] = []
    if has(ValidationComponent.ADDRESS):
        recommendations.append("Review address information for accuracy")
    if has(ValidationComponent.SHIPPING, with_warnings=False):
        recommendations.append("Consider different shipping options for better rates")
    if has(ValidationComponent.PAYMENT):
        recommendations.append("Check payment method details")
    if has(ValidationComponent.CART):
        recommendations.append("Review cart items and quantities")
    return recommendations


# ============================================================================
# Rule Builder
# ============================================================================


class ValidationRuleBuilder:
    """Fluent construction of ``CheckoutValidationRules``.

    Example:
        rules = (
            ValidationRuleBuilder()
            .minimum_order_amount(Decimal("10"))
            .require_phone_number()
            .build()
        )
    """

    def __init__(self) -> None:
        self._rules: dict[str, Any] = {}

    def minimum_order_amount(self, amount: Decimal) -> "ValidationRuleBuilder":
        self._rules["minimum_order_amount"] = Decimal(amount)
        return self

    def maximum_order_amount(self, amount: Decimal) -> "ValidationRuleBuilder":
        self._rules["maximum_order_amount"] = Decimal(amount)
        return self

    def require_email(self, required: bool = True) -> "ValidationRuleBuilder":
        self._rules["require_email"] = required
        return self

    def require_phone_number(self, required: bool = True) -> "ValidationRuleBuilder":
        self._rules["require_phone_number"] = required
        return self

    def require_company_name(self, required: bool = True) -> "ValidationRuleBuilder":
        self._rules["require_company_name"] = required
        return self

    def allow_guest_checkout(self, allowed: bool = True) -> "ValidationRuleBuilder":
        self._rules["allow_guest_checkout"] = allowed
        return self

    def restricted_countries(self, countries: Sequence[str]) -> "ValidationRuleBuilder":
        self._rules["restricted_countries"] = tuple(c.upper() for c in countries)
        return self

    def required_fields(self, names: Sequence[str]) -> "ValidationRuleBuilder":
        self._rules["required_fields"] = tuple(names)
        return self

    def return_url(self, url: str) -> "ValidationRuleBuilder":
        self._rules["return_url"] = url
        return self

    def cancel_url(self, url: str) -> "ValidationRuleBuilder":
        self._rules["cancel_url"] = url
        return self

    def build(self) -> CheckoutValidationRules:
        return CheckoutValidationRules(**self._rules)
