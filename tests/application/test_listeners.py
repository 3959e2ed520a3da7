"""Tests for listener dispatch."""

import pytest

from checkoutflow.application.listeners import CheckoutListener, ListenerRegistry
from checkoutflow.domain.exceptions import CheckoutError
from tests.factories import RecordingListener


class FailingListener(CheckoutListener):
    """Raises from every callback it overrides."""

    async def on_step_change(self, new_step: int, previous_step: int) -> None:
        raise RuntimeError("boom")

    async def on_checkout_error(self, error: CheckoutError) -> None:
        raise RuntimeError("boom")


class TestListenerRegistry:
    """Tests for ListenerRegistry."""

    @pytest.mark.asyncio
    async def test_dispatches_in_order(self) -> None:
        """Every listener gets every event."""
        first, second = RecordingListener(), RecordingListener()
        registry = ListenerRegistry([first, second])

        await registry.step_changed(2, 1)
        await registry.step_completed(1)

        assert first.events == second.events == [("step_change", 2, 1), ("step_complete", 1)]

    @pytest.mark.asyncio
    async def test_failing_listener_is_skipped(self) -> None:
        """A raising listener does not stop later ones."""
        recorder = RecordingListener()
        registry = ListenerRegistry([FailingListener(), recorder])
        error = CheckoutError("Something broke")

        await registry.step_changed(2, 1)
        await registry.checkout_failed(error)

        assert recorder.events == [("step_change", 2, 1), ("checkout_error", error)]

    @pytest.mark.asyncio
    async def test_default_callbacks_are_noops(self) -> None:
        """The base listener ignores every event."""
        registry = ListenerRegistry([CheckoutListener()])

        await registry.validation_failed(["Billing address is required"])
        await registry.step_completed(1)

    @pytest.mark.asyncio
    async def test_errors_are_copied(self) -> None:
        """Listeners get their own copy of the error list."""
        recorder = RecordingListener()
        errors = ["Cart is empty"]

        await ListenerRegistry([recorder]).validation_failed(errors)
        recorder.events[0][1].append("mutated")

        assert errors == ["Cart is empty"]

    def test_add_and_remove(self) -> None:
        """Listeners are attached once and can be detached."""
        listener = RecordingListener()
        registry = ListenerRegistry()

        registry.add(listener)
        registry.add(listener)
        assert len(registry) == 1

        registry.remove(listener)
        registry.remove(listener)
        assert len(registry) == 0
