"""Checkout application service.

Wires the checkout components together from settings and hands out one
flow manager per checkout attempt. Components are shared between flows;
flow managers are not.
"""

from dataclasses import dataclass

import structlog

from checkoutflow.application.address import AddressValidator
from checkoutflow.application.flow import FlowManager
from checkoutflow.application.listeners import CheckoutListener, ListenerRegistry
from checkoutflow.application.order_assembler import OrderAssembler
from checkoutflow.application.payment import PaymentGatewayAdapter
from checkoutflow.application.ports import (
    Cache,
    CheckoutBackend,
    InventoryGateway,
    OrderNotifier,
    SessionStore,
)
from checkoutflow.application.shipping import ShippingRateResolver
from checkoutflow.application.validation import ValidationAggregator
from checkoutflow.infrastructure.config import (
    FlowConfig,
    OrderProcessingConfig,
    PaymentConfig,
    Settings,
    ShippingConfig,
    settings,
)

logger = structlog.get_logger()


@dataclass(frozen=True)
class CheckoutConfig:
    """Configuration of every checkout component."""

    flow: FlowConfig
    shipping: ShippingConfig
    payment: PaymentConfig
    orders: OrderProcessingConfig

    @classmethod
    def from_settings(cls, config: Settings) -> "CheckoutConfig":
        return cls(
            flow=config.flow_config(),
            shipping=config.shipping_config(),
            payment=config.payment_config(),
            orders=config.order_config(),
        )


class CheckoutService:
    """Entry point for storefronts.

    Example:
        service = CheckoutService(backend)
        flow = service.start_flow()
        await flow.initialize(cart)
        await flow.update({"billing_address": {...}}, cart)
        result = await flow.next(cart)
    """

    def __init__(
        self,
        backend: CheckoutBackend,
        inventory: InventoryGateway | None = None,
        config: CheckoutConfig | None = None,
        cache: Cache | None = None,
        session_store: SessionStore | None = None,
        notifier: OrderNotifier | None = None,
    ) -> None:
        """Initialize service.

        Args:
            backend: Commerce backend.
            inventory: Stock gateway; ``backend`` is used when it also
                implements the inventory port.
            config: Component configuration, from ``settings`` by default.
            cache: Optional cache shared by rate, gateway and order lookups.
            session_store: Snapshot storage for flows.
            notifier: Confirmation email sender.
        """
        self.config = config or CheckoutConfig.from_settings(settings)
        if inventory is None and isinstance(backend, InventoryGateway):
            inventory = backend
        self.session_store = session_store

        self.address_validator = AddressValidator()
        self.shipping = ShippingRateResolver(backend, self.config.shipping, cache)
        self.payments = PaymentGatewayAdapter(backend, self.config.payment, cache)
        self.aggregator = ValidationAggregator(self.address_validator, self.shipping, self.payments)
        self.orders = OrderAssembler(
            backend,
            self.payments,
            inventory=inventory,
            config=self.config.orders,
            notifier=notifier,
            cache=cache,
        )

    def start_flow(self, listeners: list[CheckoutListener] | None = None) -> FlowManager:
        """Create a flow manager for one checkout attempt."""
        flow = FlowManager(
            self.aggregator,
            self.orders,
            config=self.config.flow,
            listeners=ListenerRegistry(listeners),
            session_store=self.session_store,
        )
        logger.debug("Checkout flow created", session_id=flow.session_id)
        return flow

    async def clear_caches(self) -> int:
        """Drop cached rate and gateway lookups."""
        return await self.shipping.clear_cache() + await self.payments.clear_cache()


# Global service instance
_checkout_service: CheckoutService | None = None


def get_checkout_service() -> CheckoutService:
    """Get checkout service singleton.

    Uses the HTTP backend, an in-memory cache and session store, and
    the logging notifier, all configured from ``settings``.

    Returns:
        CheckoutService instance.
    """
    global _checkout_service
    if _checkout_service is None:
        from checkoutflow.infrastructure.backend_client import HttpCheckoutBackend
        from checkoutflow.infrastructure.cache import InMemoryCache
        from checkoutflow.infrastructure.notifier import LoggingOrderNotifier
        from checkoutflow.infrastructure.session_store import InMemorySessionStore

        _checkout_service = CheckoutService(
            HttpCheckoutBackend.from_settings(settings),
            cache=InMemoryCache(),
            session_store=InMemorySessionStore(),
            notifier=LoggingOrderNotifier(),
        )
    return _checkout_service


def reset_checkout_service() -> None:
    """Reset checkout service (for testing)."""
    global _checkout_service
    _checkout_service = None
