"""Address validation with country-specific rules.

Required fields are resolved per address from three layers: the base
requirements for the address type and country, caller overrides, and
the checkout-wide validation rules. Missing or malformed fields are hard
errors; phone numbers that do not look right for the country only
produce a warning.
"""

import re
from collections.abc import Mapping
from dataclasses import dataclass, field, fields, replace
from typing import Any

import structlog

from checkoutflow.application.schemas import parse_address_input
from checkoutflow.domain.exceptions import ValidationError
from checkoutflow.domain.value_objects import Address, AddressType, CountryConfig
from checkoutflow.infrastructure.config import CheckoutValidationRules

logger = structlog.get_logger()

EMAIL_PATTERN = re.compile(r"^[^\s@]+@[^\s@]+\.[^\s@]+$")

_NANP_PHONE = r"^\+?1?[-.\s]?\(?\d{3}\)?[-.\s]?\d{3}[-.\s]?\d{4}$"

COUNTRY_CONFIGS: dict[str, CountryConfig] = {
    "US": CountryConfig(
        code="US",
        name="United States",
        postcode_pattern=r"^\d{5}(-\d{4})?$",
        phone_pattern=_NANP_PHONE,
        state_required=True,
    ),
    "CA": CountryConfig(
        code="CA",
        name="Canada",
        postcode_pattern=r"^[A-Za-z]\d[A-Za-z]\s?\d[A-Za-z]\d$",
        phone_pattern=_NANP_PHONE,
        state_required=True,
    ),
    "GB": CountryConfig(
        code="GB",
        name="United Kingdom",
        postcode_pattern=r"^[A-Za-z]{1,2}\d[A-Za-z\d]?\s?\d[A-Za-z]{2}$",
        phone_pattern=r"^\+?44[-.\s]?\d{4}[-.\s]?\d{6}$",
    ),
    "DE": CountryConfig(
        code="DE",
        name="Germany",
        postcode_pattern=r"^\d{5}$",
        phone_pattern=r"^\+?49[-.\s]?\d{3,4}[-.\s]?\d{7,8}$",
    ),
    "FR": CountryConfig(
        code="FR",
        name="France",
        postcode_pattern=r"^\d{5}$",
        phone_pattern=r"^\+?33[-.\s]?\d{1}[-.\s]?\d{2}[-.\s]?\d{2}[-.\s]?\d{2}[-.\s]?\d{2}$",
    ),
    "AU": CountryConfig(
        code="AU",
        name="Australia",
        postcode_pattern=r"^\d{4}$",
        phone_pattern=r"^\+?61[-.\s]?\d{1}[-.\s]?\d{4}[-.\s]?\d{4}$",
        state_required=True,
    ),
    "JP": CountryConfig(
        code="JP",
        name="Japan",
        postcode_pattern=r"^\d{3}-\d{4}$",
        phone_pattern=r"^\+?81[-.\s]?\d{1,4}[-.\s]?\d{1,4}[-.\s]?\d{4}$",
        state_required=True,
    ),
    "BR": CountryConfig(
        code="BR",
        name="Brazil",
        postcode_pattern=r"^\d{5}-?\d{3}$",
        phone_pattern=r"^\+?55[-.\s]?\d{2}[-.\s]?\d{4,5}[-.\s]?\d{4}$",
        state_required=True,
    ),
    "IN": CountryConfig(
        code="IN",
        name="India",
        postcode_pattern=r"^\d{6}$",
        phone_pattern=r"^\+?91[-.\s]?\d{5}[-.\s]?\d{5}$",
        state_required=True,
    ),
    "NL": CountryConfig(
        code="NL",
        name="Netherlands",
        postcode_pattern=r"^\d{4}\s?[A-Za-z]{2}$",
        phone_pattern=r"^\+?31[-.\s]?\d{1,3}[-.\s]?\d{7}$",
    ),
}

# (field, message when missing)
_REQUIRED_MESSAGES: tuple[tuple[str, str], ...] = (
    ("first_name", "First name is required"),
    ("last_name", "Last name is required"),
    ("company", "Company name is required"),
    ("address1", "Street address is required"),
    ("address2", "Address line 2 is required"),
    ("city", "City is required"),
    ("state", "State/Province is required"),
    ("postcode", "Postal/ZIP code is required"),
    ("country", "Country is required"),
    ("email", "Email address is required"),
    ("phone", "Phone number is required"),
)

# (field, minimum length, message)
_MIN_LENGTHS: tuple[tuple[str, int, str], ...] = (
    ("first_name", 2, "First name must be at least 2 characters"),
    ("last_name", 2, "Last name must be at least 2 characters"),
    ("address1", 5, "Street address must be at least 5 characters"),
    ("city", 2, "City must be at least 2 characters"),
)


# ============================================================================
# Validation Types
# ============================================================================


@dataclass(frozen=True)
class FieldRequirements:
    """Which address fields must be filled in."""

    first_name: bool = True
    last_name: bool = True
    company: bool = False
    address1: bool = True
    address2: bool = False
    city: bool = True
    state: bool = False
    postcode: bool = True
    country: bool = True
    email: bool = False
    phone: bool = False

    def required_fields(self) -> list[str]:
        return [f.name for f in fields(self) if getattr(self, f.name)]


@dataclass(frozen=True)
class AddressValidationContext:
    """Context an address is validated in.

    Attributes:
        address_type: Billing or shipping.
        is_guest: Guest checkout.
        field_overrides: Per-field requirement overrides from the caller.
        rules: Checkout-wide validation rules.
    """

    address_type: AddressType = AddressType.SHIPPING
    is_guest: bool = False
    field_overrides: Mapping[str, bool] = field(default_factory=dict)
    rules: CheckoutValidationRules | None = None


@dataclass(frozen=True)
class AddressValidation:
    """Result of validating one address."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)
    warnings: list[str] = field(default_factory=list)


# ============================================================================
# Address Validator
# ============================================================================


class AddressValidator:
    """Validates postal addresses against country rules."""

    def __init__(self, country_configs: Mapping[str, CountryConfig] | None = None) -> None:
        """Initialize validator.

        Args:
            country_configs: Extra or replacement country rules, keyed by code.
        """
        self._countries: dict[str, CountryConfig] = dict(COUNTRY_CONFIGS)
        for code, config in (country_configs or {}).items():
            self._countries[code.upper()] = config

    # -------------------------------------------------------------------------
    # Country Rules
    # -------------------------------------------------------------------------

    def get_country_config(self, country_code: str) -> CountryConfig | None:
        return self._countries.get(country_code.upper())

    def supported_countries(self) -> list[CountryConfig]:
        return list(self._countries.values())

    def set_country_config(self, country_code: str, config: CountryConfig) -> None:
        """Add or replace the rules for a country."""
        self._countries[country_code.upper()] = config

    def get_field_requirements(
        self,
        context: AddressValidationContext,
        country: CountryConfig,
    ) -> FieldRequirements:
        """Resolve required fields for an address.

        Args:
            context: Validation context.
            country: Rules of the address's country.

        Returns:
            Base requirements merged with caller overrides and checkout rules.
        """
        requirements = FieldRequirements(
            state=country.state_required,
            postcode=country.postcode_required,
            email=context.address_type == AddressType.BILLING,
        )
        valid_names = {f.name for f in fields(FieldRequirements)}
        overrides = {k: v for k, v in context.field_overrides.items() if k in valid_names}
        rules = context.rules
        if rules is not None:
            if rules.require_company_name:
                overrides["company"] = True
            if rules.require_phone_number:
                overrides["phone"] = True
            for name in rules.required_fields:
                if name in valid_names:
                    overrides[name] = True
        return replace(requirements, **overrides)

    # -------------------------------------------------------------------------
    # Validation
    # -------------------------------------------------------------------------

    def validate(
        self,
        address: Address,
        context: AddressValidationContext | None = None,
    ) -> AddressValidation:
        """Validate an address.

        Args:
            address: Address to validate.
            context: Validation context, a plain shipping address by default.

        Returns:
            AddressValidation with errors and warnings.
        """
        context = context or AddressValidationContext()
        if not address.country.strip():
            return AddressValidation(is_valid=False, errors=["Country is required"])

        country = self.get_country_config(address.country)
        if country is None:
            return AddressValidation(
                is_valid=False,
                errors=[f'Country "{address.country}" is not supported'],
            )

        errors: list[str] = []
        warnings: list[str] = []
        requirements = self.get_field_requirements(context, country)

        for name, message in _REQUIRED_MESSAGES:
            if getattr(requirements, name) and not getattr(address, name).strip():
                errors.append(message)

        if address.postcode and country.postcode_pattern:
            if not re.fullmatch(country.postcode_pattern, address.postcode):
                errors.append(f"Invalid postal/ZIP code format for {country.name}")

        if address.phone and country.phone_pattern:
            if not re.fullmatch(country.phone_pattern, address.phone):
                warnings.append(f"Phone number format may be invalid for {country.name}")

        for name, minimum, message in _MIN_LENGTHS:
            value = getattr(address, name)
            if value and len(value) < minimum:
                errors.append(message)

        if address.email and not EMAIL_PATTERN.match(address.email):
            errors.append("Invalid email address format")

        return AddressValidation(is_valid=not errors, errors=errors, warnings=warnings)

    def validate_billing(self, address: Address) -> AddressValidation:
        return self.validate(address, AddressValidationContext(address_type=AddressType.BILLING))

    def validate_shipping(self, address: Address) -> AddressValidation:
        return self.validate(address, AddressValidationContext(address_type=AddressType.SHIPPING))

    def parse_address(
        self,
        raw: Mapping[str, Any],
        address_type: AddressType = AddressType.SHIPPING,
    ) -> Address:
        """Parse and validate a raw address.

        Args:
            raw: Address fields as submitted.
            address_type: Billing addresses additionally require an email.

        Returns:
            Parsed Address.

        Raises:
            ValidationError: If the input is malformed or the address is invalid.
        """
        address = parse_address_input(raw)
        result = self.validate(address, AddressValidationContext(address_type=address_type))
        if not result.is_valid:
            raise ValidationError("Address validation failed", errors=result.errors)
        return address

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def addresses_equal(first: Address, second: Address) -> bool:
        """Compare two addresses ignoring the email.

        Used for the "shipping same as billing" shortcut.
        """
        return replace(first, email="") == replace(second, email="")

    def suggest_correction(self, address: Address) -> Address | None:
        """Suggest a normalized version of an address.

        Capitalizes names and city, uppercases the country code and
        formats postcodes for countries with a known layout.

        Returns:
            Corrected address, or None when nothing would change.
        """
        country = self.get_country_config(address.country)
        if country is None:
            return None

        suggested = replace(
            address,
            first_name=_capitalize_words(address.first_name),
            last_name=_capitalize_words(address.last_name),
            city=_capitalize_words(address.city),
            country=address.country.upper(),
            postcode=_format_postcode(address.postcode, country),
        )
        if suggested == address:
            return None
        logger.debug("Address correction suggested", country=country.code)
        return suggested


def _capitalize_words(value: str) -> str:
    return re.sub(r"\b\w", lambda m: m.group(0).upper(), value.lower())


def _format_postcode(postcode: str, country: CountryConfig) -> str:
    cleaned = re.sub(r"\s+", "", postcode).upper()
    if country.code == "CA" and len(cleaned) == 6:
        return f"{cleaned[:3]} {cleaned[3:]}"
    if country.code == "GB" and len(cleaned) >= 5:
        return f"{cleaned[:-3]} {cleaned[-3:]}"
    if country.code == "NL" and len(cleaned) == 6:
        return f"{cleaned[:4]} {cleaned[4:]}"
    return postcode
