"""Checkout flow manager.

A state machine over step indexes 1..N, where N is the number of steps
built for the cart and N+1 means the checkout is complete:

    1 (address) ──► 2 (shipping) ──► 3 (payment) ──► 4 (review) ──► 5 (complete)
        ◄──────────────── previous() / go_to() ◄──────────────┘

Every forward move validates through the step registry first. State is
replaced, never mutated, so a failing operation leaves the last good
state active.
"""

from dataclasses import dataclass, field, replace
from datetime import timedelta
from typing import Any

import structlog

from checkoutflow.application.listeners import CheckoutListener, ListenerRegistry
from checkoutflow.application.order_assembler import (
    OrderAssembler,
    OrderCreateRequest,
    OrderCreateResponse,
)
from checkoutflow.application.ports import SessionStore
from checkoutflow.application.schemas import SessionPatch, apply_patch
from checkoutflow.application.validation import (
    AggregateValidationResult,
    StepDescriptor,
    ValidationAggregator,
    ValidationContext,
    resolve_steps,
)
from checkoutflow.domain.entities import Cart, CheckoutSession, Order, generate_session_id
from checkoutflow.domain.exceptions import CheckoutFlowError, ValidationError
from checkoutflow.domain.state_machines import CheckoutStepType
from checkoutflow.infrastructure.config import FlowConfig

logger = structlog.get_logger()


# ============================================================================
# Flow State
# ============================================================================


@dataclass(frozen=True)
class CheckoutStep:
    """A step as presented to the storefront."""

    type: CheckoutStepType
    title: str
    description: str
    optional: bool = False
    completed: bool = False
    valid: bool = False
    errors: tuple[str, ...] = ()

    @classmethod
    def from_descriptor(cls, descriptor: StepDescriptor) -> "CheckoutStep":
        return cls(
            type=descriptor.type,
            title=descriptor.title,
            description=descriptor.description,
            optional=descriptor.optional,
        )


@dataclass(frozen=True)
class FlowState:
    """Snapshot of the flow.

    Attributes:
        session: Checkout session, None before ``initialize``.
        steps: Steps built for the cart.
        current_step: 1-based index, ``len(steps) + 1`` once complete.
        completed_steps: Indexes validated and left forward.
        can_proceed: Last validation of the current step passed.
        can_go_back: ``previous()`` is allowed.
        validation: Last validation verdict.
    """

    session: CheckoutSession | None = None
    steps: tuple[CheckoutStep, ...] = ()
    current_step: int = 1
    completed_steps: frozenset[int] = frozenset()
    can_proceed: bool = False
    can_go_back: bool = False
    validation: AggregateValidationResult | None = None

    @property
    def total_steps(self) -> int:
        return len(self.steps)

    @property
    def is_complete(self) -> bool:
        return bool(self.steps) and self.current_step > self.total_steps

    def step_at(self, index: int) -> CheckoutStep | None:
        if 1 <= index <= self.total_steps:
            return self.steps[index - 1]
        return None

    def to_snapshot(self) -> dict[str, Any]:
        """Serialize for the session store."""
        return {
            "session": self.session.to_snapshot() if self.session else None,
            "steps": [step.type.value for step in self.steps],
            "current_step": self.current_step,
            "completed_steps": sorted(self.completed_steps),
            "can_proceed": self.can_proceed,
            "can_go_back": self.can_go_back,
        }


@dataclass
class StepTransitionResult:
    """Outcome of a flow transition.

    On failure ``new_step == previous_step`` and ``errors`` / ``blockers``
    explain why. ``blocking_step`` is set when a forward jump stopped at
    an invalid step. ``order`` is set once the checkout completed.
    """

    success: bool
    new_step: int
    previous_step: int
    validation: AggregateValidationResult | None = None
    errors: list[str] = field(default_factory=list)
    blockers: list[str] = field(default_factory=list)
    blocking_step: int | None = None
    completion: OrderCreateResponse | None = None

    @property
    def order(self) -> Order | None:
        return self.completion.order if self.completion else None

    @classmethod
    def rejected(
        cls,
        step: int,
        errors: list[str],
        validation: AggregateValidationResult | None = None,
        blocking_step: int | None = None,
    ) -> "StepTransitionResult":
        return cls(
            success=False,
            new_step=step,
            previous_step=step,
            validation=validation,
            errors=list(errors),
            blockers=list(validation.blockers) if validation else [],
            blocking_step=blocking_step,
        )


# ============================================================================
# Flow Manager
# ============================================================================


class FlowManager:
    """Drives one checkout session through its steps.

    A manager owns a single session and is not safe for concurrent use;
    callers serialize operations on it.
    """

    def __init__(
        self,
        aggregator: ValidationAggregator,
        assembler: OrderAssembler,
        config: FlowConfig | None = None,
        listeners: ListenerRegistry | list[CheckoutListener] | None = None,
        session_store: SessionStore | None = None,
    ) -> None:
        """Initialize flow manager.

        Args:
            aggregator: Validates steps and the full checkout.
            assembler: Creates the order on completion.
            config: Flow settings.
            listeners: Observers of flow events.
            session_store: Snapshot storage, used when ``persist_session`` is on.
        """
        self._aggregator = aggregator
        self._assembler = assembler
        self._config = config or FlowConfig()
        if isinstance(listeners, ListenerRegistry):
            self._listeners = listeners
        else:
            self._listeners = ListenerRegistry(listeners)
        self._store = session_store
        self._session_id = generate_session_id()
        self._state = FlowState()

    # -------------------------------------------------------------------------
    # Accessors
    # -------------------------------------------------------------------------

    @property
    def state(self) -> FlowState:
        return self._state

    @property
    def session_id(self) -> str:
        return self._session_id

    @property
    def listeners(self) -> ListenerRegistry:
        return self._listeners

    def current_step_descriptor(self) -> CheckoutStep | None:
        """Step at the current index, None before initialization or once complete."""
        return self._state.step_at(self._state.current_step)

    def is_step_completed(self, step: int) -> bool:
        return step in self._state.completed_steps

    async def saved_snapshot(self) -> dict[str, Any] | None:
        """Snapshot last persisted for this session, if any."""
        if self._store is None:
            return None
        return await self._store.load(self._session_id)

    # -------------------------------------------------------------------------
    # Transitions
    # -------------------------------------------------------------------------

    async def initialize(self, cart: Cart, is_guest: bool = False) -> FlowState:
        """Start a checkout for a cart.

        Args:
            cart: Cart to check out.
            is_guest: Guest checkout.

        Returns:
            Flow state at step 1.

        Raises:
            ValidationError: If the cart is malformed, guest checkout is
                disabled or no step applies.
        """
        errors = cart.structural_errors()
        if errors:
            raise ValidationError("Invalid cart", errors=errors, details={"cart_id": cart.id})
        if is_guest and not self._config.validation_rules.allow_guest_checkout:
            raise ValidationError("Guest checkout is not allowed")

        descriptors = resolve_steps(cart, self._config.steps)
        if not descriptors:
            raise ValidationError("No checkout steps apply to this cart")

        session = CheckoutSession.start(
            cart,
            timedelta(minutes=self._config.session_timeout_minutes),
            is_guest=is_guest,
            session_id=self._session_id,
        )
        state = FlowState(
            session=session,
            steps=tuple(CheckoutStep.from_descriptor(d) for d in descriptors),
        )
        await self._commit(state)

        logger.info(
            "Checkout initialized",
            session_id=session.id,
            cart_id=cart.id,
            steps=[d.type.value for d in descriptors],
            is_guest=is_guest,
        )
        return state

    async def next(self, cart: Cart) -> StepTransitionResult:
        """Validate the current step and move forward.

        Moving past the last step completes the checkout.

        Raises:
            SessionExpiredError: If the session has expired.
            CheckoutFlowError: If validation failed unexpectedly.
        """
        self._active_session()
        state = self._state
        current = state.current_step
        if state.is_complete:
            return StepTransitionResult.rejected(current, ["Checkout is already complete"])

        validation = await self._validate_step(current, cart)
        if not validation.can_proceed:
            await self._reject(state, current, validation)
            return StepTransitionResult.rejected(current, validation.critical_errors, validation)

        if current + 1 > state.total_steps:
            descriptor = state.step_at(current)
            if descriptor is not None and descriptor.type == CheckoutStepType.REVIEW:
                # The review step already ran the full pass.
                return await self._place_order(cart, validation)
            return await self.complete(cart)

        new_step = current + 1
        await self._commit(
            replace(
                state,
                steps=_mark_step(state.steps, current, validation, completed=True),
                current_step=new_step,
                completed_steps=state.completed_steps | {current},
                can_proceed=False,
                can_go_back=True,
                validation=validation,
            )
        )
        logger.info("Checkout step completed", session_id=self._session_id, step=current)

        await self._listeners.step_changed(new_step, current)
        await self._listeners.step_completed(current)
        return StepTransitionResult(
            success=True,
            new_step=new_step,
            previous_step=current,
            validation=validation,
        )

    async def previous(self) -> StepTransitionResult:
        """Move back one step.

        Raises:
            SessionExpiredError: If the session has expired.
        """
        self._active_session()
        state = self._state
        current = state.current_step
        if current <= 1 or not state.can_go_back or state.is_complete:
            return StepTransitionResult.rejected(current, ["Cannot go back from current step"])

        new_step = current - 1
        await self._commit(
            replace(
                state,
                steps=_mark_step(state.steps, current, completed=False),
                current_step=new_step,
                completed_steps=state.completed_steps - {current},
                can_proceed=True,
                can_go_back=new_step > 1,
            )
        )
        await self._listeners.step_changed(new_step, current)
        return StepTransitionResult(success=True, new_step=new_step, previous_step=current)

    async def go_to(self, target: int, cart: Cart) -> StepTransitionResult:
        """Jump to a step.

        Forward jumps validate every step from the current one up to the
        target, in order, and stop at the first invalid step. Backward
        jumps trust earlier validation and forget completion of the
        target and everything after it.

        Args:
            target: 1-based step index.
            cart: Current cart snapshot.

        Raises:
            SessionExpiredError: If the session has expired.
            CheckoutFlowError: If validation failed unexpectedly.
        """
        self._active_session()
        state = self._state
        current = state.current_step
        if state.is_complete:
            return StepTransitionResult.rejected(current, ["Checkout is already complete"])
        if not 1 <= target <= state.total_steps:
            return StepTransitionResult.rejected(current, [f"Invalid step: {target}"])
        if target == current:
            return StepTransitionResult(success=True, new_step=current, previous_step=current)

        steps = state.steps
        validation: AggregateValidationResult | None = None
        if target > current:
            for step in range(current, target):
                validation = await self._validate_step(step, cart)
                if not validation.can_proceed:
                    await self._reject(state, step, validation)
                    return StepTransitionResult.rejected(
                        current, validation.critical_errors, validation, blocking_step=step
                    )
                steps = _mark_step(steps, step, validation, completed=True)
            completed = state.completed_steps | frozenset(range(current, target))
        else:
            completed = frozenset(s for s in state.completed_steps if s < target)
            for step in range(target, state.total_steps + 1):
                steps = _mark_step(steps, step, completed=False)

        await self._commit(
            replace(
                state,
                steps=steps,
                current_step=target,
                completed_steps=completed,
                can_proceed=target < current,
                can_go_back=target > 1,
                validation=validation or state.validation,
            )
        )
        await self._listeners.step_changed(target, current)
        return StepTransitionResult(
            success=True,
            new_step=target,
            previous_step=current,
            validation=validation,
        )

    async def update(self, patch: SessionPatch | dict[str, Any], cart: Cart) -> FlowState:
        """Apply a session patch and re-validate the current step.

        The patch is applied all or nothing. Nothing changes if the patch
        is invalid or the validation pass fails unexpectedly.

        Args:
            patch: SessionPatch or raw mapping of session fields.
            cart: Current cart snapshot, its totals replace the session's.

        Returns:
            Updated flow state.

        Raises:
            SessionExpiredError: If the session has expired.
            ValidationError: If the patch is invalid or checkout is complete.
            CheckoutFlowError: If validation failed unexpectedly.
        """
        state = self._state
        session = self._active_session()
        if state.is_complete:
            raise ValidationError("Checkout is already complete")

        updated = replace(apply_patch(session, patch), totals=cart.order_totals())
        candidate = replace(state, session=updated)
        validation = await self._validate_step(state.current_step, cart, candidate)

        new_state = replace(
            candidate,
            steps=_mark_step(candidate.steps, state.current_step, validation),
            can_proceed=validation.can_proceed,
            validation=validation,
        )
        await self._commit(new_state)
        return new_state

    async def complete(self, cart: Cart) -> StepTransitionResult:
        """Run the full validation pass and create the order.

        Raises:
            SessionExpiredError: If the session has expired.
            CheckoutFlowError: If validation or order creation failed
                unexpectedly. Payment initialization failures do not
                raise; they are reported on the completion response.
        """
        self._active_session()
        state = self._state
        if state.is_complete:
            return StepTransitionResult.rejected(state.current_step, ["Checkout is already complete"])

        try:
            validation = await self._aggregator.validate_checkout(self._context(cart))
        except Exception as e:
            raise await self._fail("validation", "Checkout validation failed", e) from e
        return await self._place_order(cart, validation)

    async def _place_order(
        self,
        cart: Cart,
        validation: AggregateValidationResult,
    ) -> StepTransitionResult:
        session = self._active_session()
        state = self._state
        current = state.current_step
        if not validation.can_proceed:
            await self._reject(state, current, validation)
            return StepTransitionResult.rejected(current, validation.critical_errors, validation)

        rules = self._config.validation_rules
        request = OrderCreateRequest(
            cart=cart,
            session=session,
            return_url=rules.return_url,
            cancel_url=rules.cancel_url,
        )
        try:
            completion = await self._assembler.create_order(request)
        except ValidationError as e:
            await self._listeners.validation_failed(e.errors)
            return StepTransitionResult.rejected(current, e.errors, validation)
        except Exception as e:
            raise await self._fail("order_creation", "Order creation failed", e) from e

        final_step = state.total_steps + 1
        await self._commit(
            replace(
                state,
                steps=tuple(replace(s, completed=True, valid=True, errors=()) for s in state.steps),
                current_step=final_step,
                completed_steps=state.completed_steps | {current},
                can_proceed=False,
                can_go_back=False,
                validation=validation,
            )
        )
        logger.info(
            "Checkout completed",
            session_id=session.id,
            order_id=completion.order.id,
            payment_initialized=completion.payment_initialized,
        )
        await self._listeners.checkout_completed(completion.order)
        return StepTransitionResult(
            success=True,
            new_step=final_step,
            previous_step=current,
            validation=validation,
            completion=completion,
        )

    async def reset(self) -> FlowState:
        """Drop the session and start over with a new session id."""
        old_session_id = self._session_id
        self._session_id = generate_session_id()
        self._state = FlowState()
        if self._config.persist_session and self._store is not None:
            try:
                await self._store.clear(old_session_id)
            except Exception as e:
                logger.warning("Session snapshot clear failed", session_id=old_session_id, error=str(e))
        logger.info("Checkout reset", previous_session_id=old_session_id, session_id=self._session_id)
        return self._state

    # -------------------------------------------------------------------------
    # Helpers
    # -------------------------------------------------------------------------

    def _active_session(self) -> CheckoutSession:
        session = self._state.session
        if session is None:
            raise ValidationError("Checkout has not been initialized")
        session.ensure_active()
        return session

    def _context(self, cart: Cart, state: FlowState | None = None) -> ValidationContext:
        session = (state or self._state).session
        if session is None:
            raise ValidationError("Checkout has not been initialized")
        return ValidationContext(
            session=session,
            cart=cart,
            rules=self._config.validation_rules,
            allow_skip_optional=self._config.allow_skip_optional,
        )

    async def _validate_step(
        self,
        step: int,
        cart: Cart,
        state: FlowState | None = None,
    ) -> AggregateValidationResult:
        state = state or self._state
        descriptor = state.step_at(step)
        if descriptor is None:
            raise ValidationError(f"Invalid step: {step}")
        try:
            return await self._aggregator.validate_step(descriptor.type, self._context(cart, state))
        except Exception as e:
            raise await self._fail("validation", f"Validation of step {step} failed", e) from e

    async def _reject(self, state: FlowState, step: int, validation: AggregateValidationResult) -> None:
        await self._commit(
            replace(
                state,
                steps=_mark_step(state.steps, step, validation),
                can_proceed=False,
                validation=validation,
            )
        )
        logger.info(
            "Checkout step rejected",
            session_id=self._session_id,
            step=step,
            blockers=validation.blockers,
        )
        await self._listeners.validation_failed(validation.critical_errors)

    async def _fail(self, stage: str, message: str, error: Exception) -> CheckoutFlowError:
        flow_error = CheckoutFlowError(stage, message, error)
        logger.error(
            message,
            session_id=self._session_id,
            stage=stage,
            error=str(error),
            error_type=type(error).__name__,
        )
        await self._listeners.checkout_failed(flow_error)
        return flow_error

    async def _commit(self, state: FlowState) -> None:
        self._state = state
        if not self._config.persist_session or self._store is None or state.session is None:
            return
        try:
            await self._store.persist(state.session.id, state.to_snapshot())
        except Exception as e:
            logger.warning("Session snapshot persist failed", session_id=state.session.id, error=str(e))


def _mark_step(
    steps: tuple[CheckoutStep, ...],
    index: int,
    validation: AggregateValidationResult | None = None,
    completed: bool | None = None,
) -> tuple[CheckoutStep, ...]:
    if not 1 <= index <= len(steps):
        return steps
    step = steps[index - 1]
    changes: dict[str, Any] = {}
    if validation is not None:
        changes["valid"] = validation.can_proceed
        changes["errors"] = tuple(validation.critical_errors)
    if completed is not None:
        changes["completed"] = completed
    return steps[: index - 1] + (replace(step, **changes),) + steps[index:]
