"""Pytest configuration and fixtures for checkout tests."""

import pytest

from checkoutflow.application.address import AddressValidator
from checkoutflow.application.checkout_service import CheckoutConfig, CheckoutService
from checkoutflow.application.order_assembler import OrderAssembler
from checkoutflow.application.payment import PaymentGatewayAdapter
from checkoutflow.application.shipping import ShippingRateResolver
from checkoutflow.application.validation import ValidationAggregator
from checkoutflow.infrastructure.config import (
    FlowConfig,
    OrderProcessingConfig,
    PaymentConfig,
    ShippingConfig,
)
from checkoutflow.infrastructure.session_store import InMemorySessionStore
from tests.factories import FakeBackend, RecordingListener, RecordingNotifier


# ============================================================================
# Fixtures
# ============================================================================


@pytest.fixture
def backend() -> FakeBackend:
    """Create a fake commerce backend."""
    return FakeBackend()


@pytest.fixture
def notifier() -> RecordingNotifier:
    return RecordingNotifier()


@pytest.fixture
def listener() -> RecordingListener:
    return RecordingListener()


@pytest.fixture
def session_store() -> InMemorySessionStore:
    return InMemorySessionStore()


@pytest.fixture
def flow_config() -> FlowConfig:
    return FlowConfig()


@pytest.fixture
def checkout_config(flow_config: FlowConfig) -> CheckoutConfig:
    """Component configuration independent of the environment."""
    return CheckoutConfig(
        flow=flow_config,
        shipping=ShippingConfig(),
        payment=PaymentConfig(),
        orders=OrderProcessingConfig(),
    )


@pytest.fixture
def service(
    backend: FakeBackend,
    checkout_config: CheckoutConfig,
    session_store: InMemorySessionStore,
    notifier: RecordingNotifier,
) -> CheckoutService:
    """Create a checkout service wired to the fakes."""
    return CheckoutService(
        backend,
        config=checkout_config,
        session_store=session_store,
        notifier=notifier,
    )


@pytest.fixture
def shipping_resolver(backend: FakeBackend) -> ShippingRateResolver:
    return ShippingRateResolver(backend, ShippingConfig())


@pytest.fixture
def payment_adapter(backend: FakeBackend) -> PaymentGatewayAdapter:
    return PaymentGatewayAdapter(backend, PaymentConfig())


@pytest.fixture
def aggregator(
    shipping_resolver: ShippingRateResolver,
    payment_adapter: PaymentGatewayAdapter,
) -> ValidationAggregator:
    return ValidationAggregator(AddressValidator(), shipping_resolver, payment_adapter)


@pytest.fixture
def assembler(
    backend: FakeBackend,
    payment_adapter: PaymentGatewayAdapter,
    notifier: RecordingNotifier,
) -> OrderAssembler:
    return OrderAssembler(
        backend,
        payment_adapter,
        inventory=backend,
        config=OrderProcessingConfig(),
        notifier=notifier,
    )
