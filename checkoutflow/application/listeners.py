"""Checkout listeners.

Listeners observe the flow manager. Subclass ``CheckoutListener`` and
override the callbacks you need; the rest are no-ops. Any number of
listeners can be attached through ``ListenerRegistry``, and a failing
listener is logged and skipped so it never changes a checkout result.
"""

import structlog

from checkoutflow.domain.entities import Order
from checkoutflow.domain.exceptions import CheckoutError

logger = structlog.get_logger()


class CheckoutListener:
    """Observer interface for checkout flow events."""

    async def on_step_change(self, new_step: int, previous_step: int) -> None:
        """Current step index changed."""

    async def on_step_complete(self, step: int) -> None:
        """A step was validated and left forward."""

    async def on_validation_error(self, errors: list[str]) -> None:
        """Validation rejected a forward transition or the final checkout."""

    async def on_checkout_complete(self, order: Order) -> None:
        """An order was created."""

    async def on_checkout_error(self, error: CheckoutError) -> None:
        """An unexpected failure aborted a flow operation."""


class ListenerRegistry:
    """Ordered collection of listeners with soft-failing dispatch."""

    def __init__(self, listeners: list[CheckoutListener] | None = None) -> None:
        self._listeners: list[CheckoutListener] = list(listeners or [])

    def add(self, listener: CheckoutListener) -> None:
        """Attach a listener. Attaching the same listener twice is a no-op."""
        if listener not in self._listeners:
            self._listeners.append(listener)

    def remove(self, listener: CheckoutListener) -> None:
        """Detach a listener if attached."""
        if listener in self._listeners:
            self._listeners.remove(listener)

    def __len__(self) -> int:
        return len(self._listeners)

    async def step_changed(self, new_step: int, previous_step: int) -> None:
        for listener in self._listeners:
            await self._call(listener, "on_step_change", new_step, previous_step)

    async def step_completed(self, step: int) -> None:
        for listener in self._listeners:
            await self._call(listener, "on_step_complete", step)

    async def validation_failed(self, errors: list[str]) -> None:
        for listener in self._listeners:
            await self._call(listener, "on_validation_error", list(errors))

    async def checkout_completed(self, order: Order) -> None:
        for listener in self._listeners:
            await self._call(listener, "on_checkout_complete", order)

    async def checkout_failed(self, error: CheckoutError) -> None:
        for listener in self._listeners:
            await self._call(listener, "on_checkout_error", error)

    async def _call(self, listener: CheckoutListener, callback: str, *args: object) -> None:
        try:
            await getattr(listener, callback)(*args)
        except Exception as e:
            logger.warning(
                "Checkout listener failed",
                listener=type(listener).__name__,
                callback=callback,
                error=str(e),
                exc_info=True,
            )
