"""Input schemas for checkout session updates.

Pydantic models for untrusted input coming from storefronts. Pydantic
errors are converted to the package's ``ValidationError`` so callers
only ever deal with one exception hierarchy.
"""

from collections.abc import Mapping
from dataclasses import replace
from datetime import datetime
from decimal import Decimal
from typing import Any

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from checkoutflow.domain.base import utcnow
from checkoutflow.domain.entities import CheckoutSession
from checkoutflow.domain.exceptions import ValidationError
from checkoutflow.domain.value_objects import (
    Address,
    SelectedPaymentMethod,
    SelectedShippingMethod,
)

# Session fields a patch may explicitly clear by sending null.
CLEARABLE_FIELDS = frozenset(
    {
        "billing_address",
        "shipping_address",
        "selected_shipping_method",
        "selected_payment_method",
    }
)


def to_validation_error(exc: PydanticValidationError, message: str) -> ValidationError:
    """Convert a pydantic error into a checkout ValidationError.

    Args:
        exc: Pydantic validation error.
        message: Summary message for the converted error.

    Returns:
        ValidationError with one message per failing field.
    """
    fields: dict[str, str] = {}
    for error in exc.errors():
        location = ".".join(str(part) for part in error["loc"]) or "__root__"
        fields[location] = error["msg"]
    return ValidationError(
        message,
        errors=[f"{name}: {msg}" for name, msg in fields.items()],
        details={"fields": fields},
    )


# ============================================================================
# Address Input
# ============================================================================


class AddressInput(BaseModel):
    """Raw address as submitted by a storefront form."""

    model_config = ConfigDict(extra="forbid", str_strip_whitespace=True)

    first_name: str = Field(default="", max_length=100)
    last_name: str = Field(default="", max_length=100)
    company: str = Field(default="", max_length=200)
    address1: str = Field(default="", max_length=255)
    address2: str = Field(default="", max_length=255)
    city: str = Field(default="", max_length=100)
    state: str = Field(default="", max_length=100)
    postcode: str = Field(default="", max_length=20)
    country: str = Field(default="", max_length=2)
    email: str = Field(default="", max_length=254)
    phone: str = Field(default="", max_length=40)

    def to_address(self) -> Address:
        return Address(**self.model_dump())


class ShippingSelectionInput(BaseModel):
    """Shipping rate picked by the customer."""

    model_config = ConfigDict(extra="forbid")

    method_id: str = Field(..., min_length=1)
    title: str = ""
    cost: Decimal = Field(default=Decimal("0"), ge=0)
    zone_id: str = ""

    def to_selection(self) -> SelectedShippingMethod:
        return SelectedShippingMethod(
            method_id=self.method_id,
            title=self.title,
            cost=self.cost,
            zone_id=self.zone_id,
        )


class PaymentSelectionInput(BaseModel):
    """Payment method picked by the customer."""

    model_config = ConfigDict(extra="forbid")

    id: str = Field(..., min_length=1)
    title: str = ""

    def to_selection(self) -> SelectedPaymentMethod:
        return SelectedPaymentMethod(id=self.id, title=self.title)


def parse_address_input(raw: Mapping[str, Any]) -> Address:
    """Parse a raw address mapping.

    Raises:
        ValidationError: If the mapping has unknown or malformed fields.
    """
    try:
        return AddressInput.model_validate(dict(raw)).to_address()
    except PydanticValidationError as e:
        raise to_validation_error(e, "Invalid address data") from e


# ============================================================================
# Session Patch
# ============================================================================


class SessionPatch(BaseModel):
    """Partial update of a checkout session.

    Only fields that were explicitly provided are applied. Addresses and
    selections can be cleared by sending ``None``; flags and notes
    ignore ``None``.
    """

    model_config = ConfigDict(extra="forbid")

    billing_address: AddressInput | None = None
    shipping_address: AddressInput | None = None
    use_shipping_as_billing: bool | None = None
    selected_shipping_method: ShippingSelectionInput | None = None
    selected_payment_method: PaymentSelectionInput | None = None
    order_notes: str | None = Field(default=None, max_length=1000)
    terms_accepted: bool | None = None
    newsletter_opt_in: bool | None = None

    @classmethod
    def parse(cls, raw: "SessionPatch | Mapping[str, Any]") -> "SessionPatch":
        """Validate raw input into a patch.

        Raises:
            ValidationError: If the input has unknown or malformed fields.
        """
        if isinstance(raw, cls):
            return raw
        try:
            return cls.model_validate(dict(raw))
        except PydanticValidationError as e:
            raise to_validation_error(e, "Invalid checkout session update") from e

    def changes(self) -> dict[str, Any]:
        """Return session field changes as domain values."""
        result: dict[str, Any] = {}
        for name in self.model_fields_set:
            value = getattr(self, name)
            if value is None:
                if name in CLEARABLE_FIELDS:
                    result[name] = None
                continue
            if isinstance(value, AddressInput):
                result[name] = value.to_address()
            elif isinstance(value, (ShippingSelectionInput, PaymentSelectionInput)):
                result[name] = value.to_selection()
            else:
                result[name] = value
        return result


def apply_patch(
    session: CheckoutSession,
    patch: SessionPatch | Mapping[str, Any],
    now: datetime | None = None,
) -> CheckoutSession:
    """Apply a partial update to a session, all or nothing.

    The patch is fully validated before anything is applied, and the
    result is a new session; the given session is never modified.

    Args:
        session: Current session.
        patch: SessionPatch or raw mapping of session fields.
        now: Clock override for expiry checks.

    Returns:
        Updated session with a fresh ``updated_at``.

    Raises:
        SessionExpiredError: If the session has expired.
        ValidationError: If the patch is invalid.
    """
    session.ensure_active(now)
    changes = SessionPatch.parse(patch).changes()
    return replace(session, **changes, updated_at=now or utcnow())
