"""Value objects for the checkout domain.

Monetary amounts are ``Decimal`` values in major currency units
(e.g. dollars). Value objects are frozen; derive modified copies with
``dataclasses.replace``.
"""

from dataclasses import dataclass, field, replace
from decimal import ROUND_HALF_UP, Decimal
from enum import Enum
from typing import Any

from checkoutflow.domain.base import ValueObject

# Maximum accepted difference between a reported total and its components.
TOTALS_TOLERANCE = Decimal("0.01")

_CENT = Decimal("0.01")


def to_decimal(value: Any) -> Decimal:
    """Convert a backend amount (str, int, float, Decimal) to Decimal.

    Floats go through ``str`` so that 49.99 stays 49.99.
    """
    if value is None or value == "":
        return Decimal("0")
    if isinstance(value, Decimal):
        return value
    if isinstance(value, float):
        return Decimal(str(value))
    return Decimal(value)


def quantize_amount(amount: Decimal) -> Decimal:
    """Round an amount to cents."""
    return amount.quantize(_CENT, rounding=ROUND_HALF_UP)


# ============================================================================
# Addresses
# ============================================================================


class AddressType(str, Enum):
    """Role an address plays in the checkout."""

    BILLING = "billing"
    SHIPPING = "shipping"


@dataclass(frozen=True)
class Address(ValueObject):
    """Billing or shipping address as entered by the customer.

    No validation happens on construction; the address validator decides
    which fields are required for a given country and checkout context.

    Attributes:
        first_name: Given name.
        last_name: Family name.
        address1: Primary street line.
        city: City name.
        postcode: Postal/ZIP code.
        country: ISO 3166-1 alpha-2 country code.
        state: State/province/region.
        company: Company name (optional).
        address2: Secondary street line (optional).
        email: Contact email, required for billing.
        phone: Contact phone number.
    """

    first_name: str
    last_name: str
    address1: str
    city: str
    postcode: str
    country: str
    state: str = ""
    company: str = ""
    address2: str = ""
    email: str = ""
    phone: str = ""

    def format_single_line(self) -> str:
        """Format address as single line."""
        parts = [self.address1]
        if self.address2:
            parts.append(self.address2)
        parts.extend(p for p in (self.city, self.state, self.postcode, self.country) if p)
        return ", ".join(parts)

    def to_api(self) -> dict[str, str]:
        """Map to the backend's snake_case address payload."""
        return {
            "first_name": self.first_name,
            "last_name": self.last_name,
            "company": self.company,
            "address_1": self.address1,
            "address_2": self.address2,
            "city": self.city,
            "state": self.state,
            "postcode": self.postcode,
            "country": self.country,
            "email": self.email,
            "phone": self.phone,
        }

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "Address":
        """Create from a backend address payload."""
        return cls(
            first_name=data.get("first_name") or "",
            last_name=data.get("last_name") or "",
            company=data.get("company") or "",
            address1=data.get("address_1") or "",
            address2=data.get("address_2") or "",
            city=data.get("city") or "",
            state=data.get("state") or "",
            postcode=data.get("postcode") or "",
            country=data.get("country") or "",
            email=data.get("email") or "",
            phone=data.get("phone") or "",
        )


@dataclass(frozen=True)
class CountryConfig(ValueObject):
    """Country-specific address rules.

    Attributes:
        code: ISO country code.
        name: Display name used in error messages.
        postcode_pattern: Regex a postcode must fully match.
        phone_pattern: Regex a phone number is expected to match.
        state_required: Whether state/province is mandatory.
        postcode_required: Whether postcode is mandatory.
    """

    code: str
    name: str
    postcode_pattern: str | None = None
    phone_pattern: str | None = None
    state_required: bool = False
    postcode_required: bool = True


# ============================================================================
# Totals
# ============================================================================


@dataclass(frozen=True)
class OrderTotals(ValueObject):
    """Breakdown of an order or cart total.

    Invariant checked by ``is_consistent``:
    ``total == subtotal + tax + shipping + shipping_tax + fees + fees_tax - discount``
    within ``TOTALS_TOLERANCE``.
    """

    subtotal: Decimal = Decimal("0")
    tax: Decimal = Decimal("0")
    shipping: Decimal = Decimal("0")
    shipping_tax: Decimal = Decimal("0")
    discount: Decimal = Decimal("0")
    fees: Decimal = Decimal("0")
    fees_tax: Decimal = Decimal("0")
    total: Decimal = Decimal("0")
    currency: str = "USD"

    def calculated_total(self) -> Decimal:
        """Recompute the total from its components."""
        return (
            self.subtotal
            + self.tax
            + self.shipping
            + self.shipping_tax
            + self.fees
            + self.fees_tax
            - self.discount
        )

    def is_consistent(self) -> bool:
        """Check the reported total against its components."""
        return abs(self.calculated_total() - self.total) <= TOTALS_TOLERANCE

    def with_shipping(self, cost: Decimal, tax: Decimal) -> "OrderTotals":
        """Return totals with a new shipping line and a recomputed total."""
        updated = replace(self, shipping=cost, shipping_tax=tax)
        return replace(updated, total=updated.calculated_total())


# ============================================================================
# Shipping
# ============================================================================


class ShippingMethodType(str, Enum):
    """Shipping method kinds reported by the backend."""

    FLAT_RATE = "flat_rate"
    FREE_SHIPPING = "free_shipping"
    LOCAL_PICKUP = "local_pickup"
    TABLE_RATE = "table_rate"
    EXPEDITED = "expedited"
    OVERNIGHT = "overnight"


@dataclass(frozen=True)
class ShippingRate(ValueObject):
    """A priced shipping option. Not stable across requests."""

    id: str
    method: ShippingMethodType
    title: str
    cost: Decimal
    description: str = ""
    taxable: bool = True
    estimated_delivery: str | None = None
    tracking_available: bool = False

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ShippingRate":
        """Create from a backend rate payload."""
        return cls(
            id=str(data["id"]),
            method=ShippingMethodType(data.get("method", "flat_rate")),
            title=data.get("title", ""),
            description=data.get("description", ""),
            cost=to_decimal(data.get("cost")),
            taxable=data.get("taxable", True),
            estimated_delivery=data.get("estimated_delivery"),
            tracking_available=data.get("tracking_available", False),
        )


@dataclass(frozen=True)
class ShippingZone(ValueObject):
    """Backend shipping zone with the rates it offers."""

    id: str
    name: str
    methods: tuple[ShippingRate, ...] = ()
    locations: tuple[str, ...] = ()

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ShippingZone":
        """Create from a backend zone payload."""
        return cls(
            id=str(data["id"]),
            name=data.get("name", ""),
            methods=tuple(ShippingRate.from_api(m) for m in data.get("methods", [])),
            locations=tuple(data.get("locations", [])),
        )


@dataclass(frozen=True)
class SelectedShippingMethod(ValueObject):
    """Shipping rate chosen by the customer."""

    method_id: str
    title: str
    cost: Decimal
    zone_id: str = ""

    @classmethod
    def from_rate(cls, rate: ShippingRate, zone_id: str = "") -> "SelectedShippingMethod":
        """Select a fetched rate."""
        return cls(method_id=rate.id, title=rate.title, cost=rate.cost, zone_id=zone_id)


# ============================================================================
# Payment
# ============================================================================


class PaymentMethodType(str, Enum):
    """Payment gateway identifiers known to the engine."""

    CREDIT_CARD = "credit_card"
    STRIPE = "stripe"
    STRIPE_CHECKOUT = "stripe_checkout"
    PAYPAL = "paypal"
    APPLE_PAY = "apple_pay"
    GOOGLE_PAY = "google_pay"
    BANK_TRANSFER = "bank_transfer"
    CASH_ON_DELIVERY = "cash_on_delivery"
    CHECK = "check"


@dataclass(frozen=True)
class PaymentMethod(ValueObject):
    """Payment gateway as reported live by the backend."""

    id: str
    title: str = ""
    description: str = ""
    enabled: bool = True
    test_mode: bool = False
    supported_countries: tuple[str, ...] = ()
    supported_currencies: tuple[str, ...] = ()
    minimum_amount: Decimal | None = None
    maximum_amount: Decimal | None = None
    icon: str | None = None
    accepted_cards: tuple[str, ...] = ()

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "PaymentMethod":
        """Create from a backend gateway payload."""
        minimum = data.get("minimum_amount")
        maximum = data.get("maximum_amount")
        return cls(
            id=str(data["id"]),
            title=data.get("title", ""),
            description=data.get("description", ""),
            enabled=data.get("enabled", True),
            test_mode=data.get("test_mode", False),
            supported_countries=tuple(data.get("supported_countries") or ()),
            supported_currencies=tuple(data.get("supported_currencies") or ()),
            minimum_amount=to_decimal(minimum) if minimum is not None else None,
            maximum_amount=to_decimal(maximum) if maximum is not None else None,
            icon=data.get("icon"),
            accepted_cards=tuple(data.get("accepted_cards") or ()),
        )


@dataclass(frozen=True)
class SelectedPaymentMethod(ValueObject):
    """Payment method chosen by the customer."""

    id: str
    title: str = ""


@dataclass(frozen=True)
class PaymentInitResponse(ValueObject):
    """Outcome of starting a payment flow with the backend."""

    payment_id: str
    requires_redirect: bool = False
    redirect_url: str | None = None
    client_secret: str | None = None
    payment_intent_id: str | None = None
    instructions: str | None = None
    expires_at: str | None = None
    raw: dict[str, Any] = field(default_factory=dict, compare=False, repr=False)

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "PaymentInitResponse":
        """Create from a backend payment initialization payload."""
        return cls(
            payment_id=str(data.get("payment_id", "")),
            requires_redirect=data.get("requires_redirect", False),
            redirect_url=data.get("redirect_url"),
            client_secret=data.get("client_secret"),
            payment_intent_id=data.get("payment_intent_id"),
            instructions=data.get("instructions"),
            expires_at=data.get("expires_at"),
            raw=data,
        )
