"""Tests for shipping rate resolution."""

from datetime import date
from decimal import Decimal

import pytest

from checkoutflow.application.ports import ShippingRateRequest
from checkoutflow.application.shipping import ShippingRateResolver, ShippingRateSet
from checkoutflow.domain.exceptions import ConfigurationError, ShippingUnavailableError
from checkoutflow.domain.value_objects import (
    OrderTotals,
    SelectedShippingMethod,
    ShippingMethodType,
    ShippingRate,
)
from checkoutflow.infrastructure.cache import InMemoryCache
from checkoutflow.infrastructure.config import ShippingConfig
from tests.factories import FakeBackend, build_address, build_cart


# ============================================================================
# Test Fixtures
# ============================================================================


def make_request(**address_overrides: str) -> ShippingRateRequest:
    return ShippingRateRequest.for_cart(build_address(**address_overrides), build_cart())


def make_rate(rate_id: str, method: ShippingMethodType, cost: str, eta: str | None = None) -> ShippingRate:
    return ShippingRate(
        id=rate_id,
        method=method,
        title=rate_id,
        cost=Decimal(cost),
        estimated_delivery=eta,
    )


# ============================================================================
# Rate Lookup
# ============================================================================


class TestGetRates:
    """Tests for ShippingRateResolver.get_rates."""

    @pytest.mark.asyncio
    async def test_fetches_rates(self, backend: FakeBackend) -> None:
        """Rates are mapped from the backend payload."""
        resolver = ShippingRateResolver(backend)

        rate_set = await resolver.get_rates(make_request())

        assert [r.id for r in rate_set.rates] == ["flat_rate:1", "overnight:1", "local_pickup:1"]
        assert rate_set.zones[0].name == "Domestic"
        assert backend.rate_requests[0].destination.country == "US"

    def test_request_only_includes_physical_items(self) -> None:
        """Virtual items are left out of the rate request."""
        request = ShippingRateRequest.for_cart(build_address(), build_cart(needs_shipping=False))
        assert request.items == ()
        assert request.cart_total == Decimal("30.00")

    @pytest.mark.asyncio
    async def test_cached_rates_are_reused(self, backend: FakeBackend) -> None:
        """A second lookup for the same signature hits the cache."""
        resolver = ShippingRateResolver(backend, cache=InMemoryCache())

        first = await resolver.get_rates(make_request())
        second = await resolver.get_rates(make_request())

        assert first == second
        assert len(backend.rate_requests) == 1

    @pytest.mark.asyncio
    async def test_use_cache_false_always_fetches(self, backend: FakeBackend) -> None:
        """Bypassing the cache fetches fresh rates."""
        resolver = ShippingRateResolver(backend, cache=InMemoryCache())

        await resolver.get_rates(make_request())
        await resolver.get_rates(make_request(), use_cache=False)

        assert len(backend.rate_requests) == 2

    @pytest.mark.asyncio
    async def test_different_destination_misses_cache(self, backend: FakeBackend) -> None:
        """Cache keys include the destination."""
        resolver = ShippingRateResolver(backend, cache=InMemoryCache())

        await resolver.get_rates(make_request())
        await resolver.get_rates(make_request(postcode="10001", state="NY"))

        assert len(backend.rate_requests) == 2

    @pytest.mark.asyncio
    async def test_clear_cache(self, backend: FakeBackend) -> None:
        """Clearing the cache forces a refetch."""
        resolver = ShippingRateResolver(backend, cache=InMemoryCache())
        await resolver.get_rates(make_request())

        assert await resolver.clear_cache() == 1
        await resolver.get_rates(make_request())
        assert len(backend.rate_requests) == 2

    @pytest.mark.asyncio
    async def test_restricted_destination(self, backend: FakeBackend) -> None:
        """Restricted countries raise without calling the backend."""
        resolver = ShippingRateResolver(backend, ShippingConfig(restricted_countries=("GB",)))

        with pytest.raises(ShippingUnavailableError):
            await resolver.get_rates(make_request(country="gb", state="", postcode="SW1A 1AA"))
        assert backend.rate_requests == []

    @pytest.mark.asyncio
    async def test_disabled_shipping(self, backend: FakeBackend) -> None:
        """Disabled shipping is a configuration error."""
        resolver = ShippingRateResolver(backend, ShippingConfig(enabled=False))

        with pytest.raises(ConfigurationError):
            await resolver.get_rates(make_request())

    def test_rate_set_from_api(self) -> None:
        """Default rate and threshold are optional."""
        rate_set = ShippingRateSet.from_api(
            {
                "rates": [],
                "default_rate": {"id": "flat_rate:1", "cost": "5"},
                "free_shipping_threshold": "75",
            }
        )
        assert rate_set.default_rate is not None
        assert rate_set.free_shipping_threshold == Decimal("75")


# ============================================================================
# Selection Helpers
# ============================================================================


class TestSelectionHelpers:
    """Tests for rate selection helpers."""

    RATES = [
        make_rate("flat", ShippingMethodType.FLAT_RATE, "5.00"),
        make_rate("pickup", ShippingMethodType.LOCAL_PICKUP, "0"),
        make_rate("express", ShippingMethodType.EXPEDITED, "15.00"),
        make_rate("free", ShippingMethodType.FREE_SHIPPING, "0"),
    ]

    def test_validate_selection(self) -> None:
        """A selection is valid while its rate is still offered."""
        offered = SelectedShippingMethod(method_id="flat", title="Flat", cost=Decimal("5"))
        gone = SelectedShippingMethod(method_id="gone", title="Gone", cost=Decimal("5"))

        assert ShippingRateResolver.validate_selection(offered, self.RATES)
        assert not ShippingRateResolver.validate_selection(gone, self.RATES)

    def test_cheapest_rate_first_wins_ties(self) -> None:
        """Cheapest rate keeps the first of equal costs."""
        assert ShippingRateResolver.cheapest_rate(self.RATES).id == "pickup"
        assert ShippingRateResolver.cheapest_rate([]) is None

    def test_fastest_rate(self) -> None:
        """Expedited beats flat rate when there is no overnight option."""
        assert ShippingRateResolver.fastest_rate(self.RATES).id == "express"

    def test_fastest_rate_single_option(self) -> None:
        """A single option is the fastest; no rates give None."""
        rates = [make_rate("table", ShippingMethodType.TABLE_RATE, "3")]
        assert ShippingRateResolver.fastest_rate(rates).id == "table"
        assert ShippingRateResolver.fastest_rate([]) is None

    def test_filter_rates_by_method(self) -> None:
        """Rates can be filtered by kind."""
        result = ShippingRateResolver.filter_rates_by_method(self.RATES, ShippingMethodType.LOCAL_PICKUP)
        assert [r.id for r in result] == ["pickup"]

    @pytest.mark.asyncio
    async def test_group_rates_by_zone(self, backend: FakeBackend) -> None:
        """Zones keep only methods that are offered."""
        rate_set = await ShippingRateResolver(backend).get_rates(make_request())
        offered = [r for r in rate_set.rates if r.id != "overnight:1"]

        groups = ShippingRateResolver.group_rates_by_zone(offered, rate_set.zones)

        assert [r.id for r in groups["1"]] == ["flat_rate:1"]

    def test_free_shipping_available(self, backend: FakeBackend) -> None:
        """Free shipping applies at or above the threshold."""
        resolver = ShippingRateResolver(backend, ShippingConfig(free_shipping_threshold=Decimal("50")))

        assert resolver.free_shipping_available(Decimal("50"))
        assert not resolver.free_shipping_available(Decimal("49.99"))
        assert resolver.free_shipping_available(Decimal("20"), threshold=Decimal("20"))
        assert not ShippingRateResolver(backend).free_shipping_available(Decimal("1000"))

    def test_update_totals_with_shipping(self) -> None:
        """Selected cost replaces the shipping line."""
        totals = OrderTotals(subtotal=Decimal("30"), total=Decimal("30"))
        selected = SelectedShippingMethod(method_id="flat", title="Flat", cost=Decimal("5"))

        updated = ShippingRateResolver.update_totals_with_shipping(totals, selected, Decimal("0.50"))

        assert updated.shipping == Decimal("5")
        assert updated.total == Decimal("35.50")


class TestEstimateDeliveryDate:
    """Tests for delivery date estimates."""

    # 2024-01-05 is a Friday.
    ORDER_DATE = date(2024, 1, 5)

    def test_business_days_skip_weekends(self) -> None:
        """Upper bound of business days skips the weekend."""
        rate = make_rate("flat", ShippingMethodType.FLAT_RATE, "5", eta="3-5 business days")
        assert ShippingRateResolver.estimate_delivery_date(rate, self.ORDER_DATE) == date(2024, 1, 12)

    def test_calendar_days(self) -> None:
        """Plain days count calendar days."""
        rate = make_rate("flat", ShippingMethodType.FLAT_RATE, "5", eta="2 days")
        assert ShippingRateResolver.estimate_delivery_date(rate, self.ORDER_DATE) == date(2024, 1, 7)

    def test_unparseable_estimate(self) -> None:
        """Missing or free-form estimates give None."""
        assert ShippingRateResolver.estimate_delivery_date(
            make_rate("a", ShippingMethodType.FLAT_RATE, "5"), self.ORDER_DATE
        ) is None
        assert ShippingRateResolver.estimate_delivery_date(
            make_rate("b", ShippingMethodType.FLAT_RATE, "5", eta="soon"), self.ORDER_DATE
        ) is None
