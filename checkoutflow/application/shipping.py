"""Shipping rate resolution.

Rates are priced by the backend for a destination and cart signature.
They are not stable between requests, so checkout validation always
asks for a fresh set (``use_cache=False``) before trusting a selection.
"""

import base64
import json
import re
from collections.abc import Sequence
from dataclasses import dataclass
from datetime import date, timedelta
from decimal import Decimal
from typing import Any

import structlog

from checkoutflow.application.ports import Cache, CheckoutBackend, ShippingRateRequest, SoftCache
from checkoutflow.domain.exceptions import ConfigurationError, ShippingUnavailableError
from checkoutflow.domain.value_objects import (
    OrderTotals,
    SelectedShippingMethod,
    ShippingMethodType,
    ShippingRate,
    ShippingZone,
    to_decimal,
)
from checkoutflow.infrastructure.config import ShippingConfig

logger = structlog.get_logger()

CACHE_PREFIX = "shipping-"

# Rate kinds from fastest to slowest.
FASTEST_PRIORITY: tuple[ShippingMethodType, ...] = (
    ShippingMethodType.OVERNIGHT,
    ShippingMethodType.EXPEDITED,
    ShippingMethodType.FLAT_RATE,
    ShippingMethodType.TABLE_RATE,
    ShippingMethodType.LOCAL_PICKUP,
    ShippingMethodType.FREE_SHIPPING,
)

_DELIVERY_PATTERN = re.compile(r"(\d+)-?(\d+)?\s*(business\s+)?days?", re.IGNORECASE)


@dataclass(frozen=True)
class ShippingRateSet:
    """Rates offered for one destination and cart signature."""

    rates: tuple[ShippingRate, ...] = ()
    zones: tuple[ShippingZone, ...] = ()
    default_rate: ShippingRate | None = None
    free_shipping_threshold: Decimal | None = None

    @classmethod
    def from_api(cls, data: dict[str, Any]) -> "ShippingRateSet":
        """Create from a backend rates payload."""
        default_rate = data.get("default_rate")
        threshold = data.get("free_shipping_threshold")
        return cls(
            rates=tuple(ShippingRate.from_api(r) for r in data.get("rates") or []),
            zones=tuple(ShippingZone.from_api(z) for z in data.get("zones") or []),
            default_rate=ShippingRate.from_api(default_rate) if default_rate else None,
            free_shipping_threshold=to_decimal(threshold) if threshold is not None else None,
        )


class ShippingRateResolver:
    """Fetches and checks shipping rates."""

    def __init__(
        self,
        backend: CheckoutBackend,
        config: ShippingConfig | None = None,
        cache: Cache | None = None,
    ) -> None:
        """Initialize resolver.

        Args:
            backend: Backend that prices shipping.
            config: Shipping settings.
            cache: Optional read-through cache.
        """
        self._backend = backend
        self._config = config or ShippingConfig()
        self._cache = SoftCache(cache)

    @property
    def config(self) -> ShippingConfig:
        return self._config

    # -------------------------------------------------------------------------
    # Rate Lookup
    # -------------------------------------------------------------------------

    def ensure_available(self, country: str) -> None:
        """Raise if shipping cannot be offered to a country.

        Raises:
            ConfigurationError: If shipping is disabled.
            ShippingUnavailableError: If the country is restricted.
        """
        if not self._config.enabled:
            raise ConfigurationError("Shipping is disabled")
        if country.upper() in self._config.restricted_countries:
            raise ShippingUnavailableError(country.upper())

    async def get_rates(
        self,
        request: ShippingRateRequest,
        use_cache: bool = True,
    ) -> ShippingRateSet:
        """Fetch rates for a destination.

        Args:
            request: Destination and cart signature.
            use_cache: Serve from and populate the cache.

        Returns:
            ShippingRateSet from the backend or the cache.

        Raises:
            ConfigurationError: If shipping is disabled.
            ShippingUnavailableError: If the destination is restricted.
            ApiError: If the backend call fails.
        """
        self.ensure_available(request.destination.country)

        key = self.cache_key(request)
        if use_cache:
            cached = await self._cache.get(key)
            if cached is not None:
                logger.debug("Shipping rates served from cache", key=key)
                return cached

        data = await self._backend.get_shipping_rates(request)
        rate_set = ShippingRateSet.from_api(data)
        logger.info(
            "Shipping rates fetched",
            country=request.destination.country,
            rate_count=len(rate_set.rates),
        )

        await self._cache.set(key, rate_set, self._config.cache_timeout_minutes * 60)
        return rate_set

    @staticmethod
    def cache_key(request: ShippingRateRequest) -> str:
        """Cache key from destination and cart signature."""
        key_data = {
            "country": request.destination.country,
            "state": request.destination.state,
            "postcode": request.destination.postcode,
            "item_count": len(request.items),
            "total": str(request.cart_total),
            "currency": request.currency,
        }
        encoded = base64.urlsafe_b64encode(json.dumps(key_data, sort_keys=True).encode())
        return f"{CACHE_PREFIX}rates:{encoded.decode()}"

    async def clear_cache(self) -> int:
        """Drop every cached shipping lookup."""
        removed = await self._cache.invalidate_prefix(CACHE_PREFIX)
        logger.info("Shipping cache cleared", removed=removed)
        return removed

    # -------------------------------------------------------------------------
    # Selection Helpers
    # -------------------------------------------------------------------------

    @staticmethod
    def validate_selection(
        selected: SelectedShippingMethod,
        rates: Sequence[ShippingRate],
    ) -> bool:
        """Check that a selected rate is still offered."""
        return any(rate.id == selected.method_id for rate in rates)

    @staticmethod
    def cheapest_rate(rates: Sequence[ShippingRate]) -> ShippingRate | None:
        """Lowest cost rate; the first one wins ties."""
        if not rates:
            return None
        return min(rates, key=lambda rate: rate.cost)

    @staticmethod
    def fastest_rate(rates: Sequence[ShippingRate]) -> ShippingRate | None:
        """First rate of the fastest available kind, else the first rate."""
        if not rates:
            return None
        for method in FASTEST_PRIORITY:
            for rate in rates:
                if rate.method == method:
                    return rate
        return rates[0]

    @staticmethod
    def filter_rates_by_method(
        rates: Sequence[ShippingRate],
        method: ShippingMethodType,
    ) -> list[ShippingRate]:
        return [rate for rate in rates if rate.method == method]

    @staticmethod
    def group_rates_by_zone(
        rates: Sequence[ShippingRate],
        zones: Sequence[ShippingZone],
    ) -> dict[str, list[ShippingRate]]:
        """Map zone id to the zone's methods that are among ``rates``."""
        offered = {rate.id for rate in rates}
        return {
            zone.id: [method for method in zone.methods if method.id in offered]
            for zone in zones
        }

    def free_shipping_available(
        self,
        cart_total: Decimal,
        threshold: Decimal | None = None,
    ) -> bool:
        """Check a cart total against the free shipping threshold.

        Args:
            cart_total: Cart total.
            threshold: Threshold to use, the configured one by default.
        """
        threshold = threshold if threshold is not None else self._config.free_shipping_threshold
        if not threshold:
            return False
        return cart_total >= threshold

    @staticmethod
    def update_totals_with_shipping(
        totals: OrderTotals,
        selected: SelectedShippingMethod,
        shipping_tax: Decimal = Decimal("0"),
    ) -> OrderTotals:
        """Replace the shipping line of a totals breakdown."""
        return totals.with_shipping(selected.cost, shipping_tax)

    @staticmethod
    def estimate_delivery_date(rate: ShippingRate, order_date: date | None = None) -> date | None:
        """Estimate the latest delivery date for a rate.

        Parses estimates such as "3-5 business days" or "2 days" and
        counts the upper bound, skipping weekends for business days.

        Args:
            rate: Shipping rate with an ``estimated_delivery`` text.
            order_date: Date the order is placed, today by default.

        Returns:
            Estimated delivery date, or None if the estimate is missing
            or cannot be parsed.
        """
        if not rate.estimated_delivery:
            return None
        match = _DELIVERY_PATTERN.search(rate.estimated_delivery)
        if not match:
            return None

        min_days = int(match.group(1))
        max_days = int(match.group(2)) if match.group(2) else min_days
        delivery = order_date or date.today()

        if not match.group(3):
            return delivery + timedelta(days=max_days)

        added = 0
        while added < max_days:
            delivery += timedelta(days=1)
            if delivery.weekday() < 5:
                added += 1
        return delivery
