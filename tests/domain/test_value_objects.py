"""Tests for domain value objects."""

from dataclasses import FrozenInstanceError
from decimal import Decimal

import pytest

from checkoutflow.domain import (
    Address,
    OrderTotals,
    PaymentInitResponse,
    PaymentMethod,
    SelectedShippingMethod,
    ShippingMethodType,
    ShippingRate,
    ShippingZone,
)
from checkoutflow.domain.value_objects import quantize_amount, to_decimal


# ============================================================================
# Test Fixtures
# ============================================================================


def make_address(**overrides: str) -> Address:
    values = {
        "first_name": "Jane",
        "last_name": "Doe",
        "address1": "123 Main Street",
        "city": "Springfield",
        "state": "IL",
        "postcode": "62701",
        "country": "US",
    }
    values.update(overrides)
    return Address(**values)


# ============================================================================
# Amounts
# ============================================================================


class TestAmounts:
    """Tests for amount helpers."""

    def test_float_keeps_decimal_digits(self) -> None:
        """Floats go through str so 49.99 stays 49.99."""
        assert to_decimal(49.99) == Decimal("49.99")

    def test_empty_values_are_zero(self) -> None:
        """None and empty strings convert to zero."""
        assert to_decimal(None) == Decimal("0")
        assert to_decimal("") == Decimal("0")

    def test_quantize_rounds_half_up(self) -> None:
        """Amounts round half up to cents."""
        assert quantize_amount(Decimal("10.005")) == Decimal("10.01")


# ============================================================================
# Address
# ============================================================================


class TestAddress:
    """Tests for Address value object."""

    def test_is_immutable(self) -> None:
        """Addresses cannot be modified."""
        address = make_address()
        with pytest.raises(FrozenInstanceError):
            address.city = "Chicago"  # type: ignore[misc]

    def test_format_single_line(self) -> None:
        """Single line format skips empty parts."""
        address = make_address(address2="Apt 4")
        assert address.format_single_line() == "123 Main Street, Apt 4, Springfield, IL, 62701, US"

    def test_api_round_trip_uses_backend_keys(self) -> None:
        """API payload uses address_1 / address_2 keys."""
        address = make_address(address2="Apt 4")
        data = address.to_api()

        assert data["address_1"] == "123 Main Street"
        assert data["address_2"] == "Apt 4"
        assert Address.from_api(data) == address

    def test_from_api_tolerates_missing_and_null_fields(self) -> None:
        """Missing or null fields become empty strings."""
        address = Address.from_api({"first_name": "Jane", "company": None, "country": "US"})
        assert address.company == ""
        assert address.city == ""


# ============================================================================
# Totals
# ============================================================================


class TestOrderTotals:
    """Tests for OrderTotals value object."""

    def test_calculated_total(self) -> None:
        """Total is the sum of components minus discount."""
        totals = OrderTotals(
            subtotal=Decimal("100"),
            tax=Decimal("8"),
            shipping=Decimal("10"),
            shipping_tax=Decimal("1"),
            fees=Decimal("2"),
            fees_tax=Decimal("0.50"),
            discount=Decimal("15"),
            total=Decimal("106.50"),
        )
        assert totals.calculated_total() == Decimal("106.50")
        assert totals.is_consistent()

    def test_difference_within_tolerance_is_consistent(self) -> None:
        """One cent of rounding difference is accepted."""
        totals = OrderTotals(subtotal=Decimal("10.00"), total=Decimal("10.01"))
        assert totals.is_consistent()

    def test_difference_above_tolerance_is_inconsistent(self) -> None:
        """Two cents off is inconsistent."""
        totals = OrderTotals(subtotal=Decimal("10.00"), total=Decimal("10.02"))
        assert not totals.is_consistent()

    def test_with_shipping_recomputes_total(self) -> None:
        """Replacing shipping returns new totals with a recomputed total."""
        totals = OrderTotals(subtotal=Decimal("20"), total=Decimal("20"))
        updated = totals.with_shipping(Decimal("5"), Decimal("0.40"))

        assert updated.total == Decimal("25.40")
        assert updated.is_consistent()
        assert totals.total == Decimal("20")


# ============================================================================
# Shipping and Payment
# ============================================================================


class TestShippingRate:
    """Tests for shipping value objects."""

    def test_rate_from_api(self) -> None:
        """Rate payload maps to a ShippingRate."""
        rate = ShippingRate.from_api(
            {"id": 7, "method": "expedited", "title": "Express", "cost": "12.5"}
        )
        assert rate.id == "7"
        assert rate.method == ShippingMethodType.EXPEDITED
        assert rate.cost == Decimal("12.5")
        assert rate.taxable is True

    def test_zone_from_api(self) -> None:
        """Zone payload includes its methods."""
        zone = ShippingZone.from_api(
            {
                "id": 1,
                "name": "Domestic",
                "locations": ["US"],
                "methods": [{"id": "flat_rate:1", "cost": "5"}],
            }
        )
        assert zone.id == "1"
        assert zone.locations == ("US",)
        assert zone.methods[0].method == ShippingMethodType.FLAT_RATE

    def test_selected_from_rate(self) -> None:
        """Selecting a rate copies id, title and cost."""
        rate = ShippingRate(
            id="flat_rate:1",
            method=ShippingMethodType.FLAT_RATE,
            title="Flat",
            cost=Decimal("5"),
        )
        selected = SelectedShippingMethod.from_rate(rate, zone_id="1")
        assert selected == SelectedShippingMethod(
            method_id="flat_rate:1", title="Flat", cost=Decimal("5"), zone_id="1"
        )


class TestPaymentValueObjects:
    """Tests for payment value objects."""

    def test_method_from_api(self) -> None:
        """Gateway payload maps optional limits to Decimal."""
        method = PaymentMethod.from_api(
            {"id": "stripe", "title": "Stripe", "minimum_amount": "0.50", "accepted_cards": ["visa"]}
        )
        assert method.minimum_amount == Decimal("0.50")
        assert method.maximum_amount is None
        assert method.accepted_cards == ("visa",)

    def test_init_response_keeps_raw_payload(self) -> None:
        """Raw payload is kept but does not affect equality."""
        data = {"payment_id": "pay_1", "requires_redirect": True, "redirect_url": "https://x"}
        response = PaymentInitResponse.from_api(data)

        assert response.requires_redirect is True
        assert response.raw == data
        assert response == PaymentInitResponse(
            payment_id="pay_1", requires_redirect=True, redirect_url="https://x"
        )
