"""Per-model circuit breakers.

Each model id gets its own breaker, created lazily on first failure and kept for
the lifetime of the owning :class:`BreakerBoard`. All state transitions run
under one ``asyncio.Lock`` per breaker so concurrent failures on the same
model never lose updates.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Callable
from enum import Enum

from pydantic import BaseModel

from .errors import CircuitOpen

logger = logging.getLogger(__name__)


class BreakerState(str, Enum):
    CLOSED = "closed"
    OPEN = "open"
    HALF_OPEN = "half-open"


class BreakerSnapshot(BaseModel):
    """Read-only view of one breaker, for diagnostics."""

    model: str
    state: BreakerState
    consecutive_failures: int
    last_failure_at: float | None = None


class CircuitBreaker:
    """Consecutive-failure breaker with a single half-open trial.

    - closed: calls pass; ``threshold`` consecutive failures open it.
    - open: calls fail with CircuitOpen until ``cooldown`` seconds pass.
    - half-open: exactly one trial call is admitted; its success closes the
      breaker, its failure reopens it immediately.
    """

    def __init__(
        self,
        model: str,
        *,
        threshold: int = 5,
        cooldown: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        on_change: Callable[[str, BreakerState], None] | None = None,
    ) -> None:
        self.model = model
        self.threshold = threshold
        self.cooldown = cooldown
        self._clock = clock
        self._on_change = on_change
        self._lock = asyncio.Lock()
        self._state = BreakerState.CLOSED
        self._failures = 0
        self._last_failure_at: float | None = None
        self._trial_in_flight = False

    @property
    def state(self) -> BreakerState:
        return self._state

    @property
    def consecutive_failures(self) -> int:
        return self._failures

    def _transition(self, new_state: BreakerState) -> None:
        if new_state is self._state:
            return
        old = self._state
        self._state = new_state
        if new_state is BreakerState.CLOSED:
            logger.info("Circuit breaker for %s: %s -> closed", self.model, old.value)
        else:
            logger.warning(
                "Circuit breaker for %s: %s -> %s (failures=%d)",
                self.model, old.value, new_state.value, self._failures,
            )
        if self._on_change is not None:
            self._on_change(self.model, new_state)

    async def acquire(self) -> None:
        """Admit a call or raise CircuitOpen without touching the transport."""
        async with self._lock:
            if self._state is BreakerState.OPEN:
                elapsed = self._clock() - (self._last_failure_at or 0.0)
                if elapsed < self.cooldown:
                    raise CircuitOpen(
                        f"Circuit open for {self.model} after {self._failures} consecutive failures; "
                        f"retry in {self.cooldown - elapsed:.0f}s",
                        retry_after=max(self.cooldown - elapsed, 0.0),
                        model=self.model,
                    )
                self._transition(BreakerState.HALF_OPEN)
            if self._state is BreakerState.HALF_OPEN:
                if self._trial_in_flight:
                    raise CircuitOpen(
                        f"Circuit half-open for {self.model}; trial call already in flight",
                        model=self.model,
                    )
                self._trial_in_flight = True

    async def record_success(self) -> None:
        async with self._lock:
            self._failures = 0
            self._trial_in_flight = False
            self._transition(BreakerState.CLOSED)

    async def record_failure(self) -> None:
        async with self._lock:
            self._failures += 1
            self._last_failure_at = self._clock()
            if self._state is BreakerState.HALF_OPEN:
                self._trial_in_flight = False
                self._transition(BreakerState.OPEN)
            elif self._failures >= self.threshold:
                self._transition(BreakerState.OPEN)

    async def release(self) -> None:
        """Give back a half-open trial slot without recording an outcome.

        Used when the admitted call fails for a reason that says nothing about
        the model's health (e.g. caller validation errors).
        """
        async with self._lock:
            self._trial_in_flight = False

    def snapshot(self) -> BreakerSnapshot:
        return BreakerSnapshot(
            model=self.model,
            state=self._state,
            consecutive_failures=self._failures,
            last_failure_at=self._last_failure_at,
        )


class BreakerBoard:
    """Owns one breaker per model id, created on the model's first failure.

    Models that never failed have no breaker and are always admitted.
    """

    def __init__(
        self,
        *,
        threshold: int = 5,
        cooldown: float = 60.0,
        clock: Callable[[], float] = time.monotonic,
        on_change: Callable[[str, BreakerState], None] | None = None,
    ) -> None:
        self.threshold = threshold
        self.cooldown = cooldown
        self._clock = clock
        self._on_change = on_change
        self._breakers: dict[str, CircuitBreaker] = {}

    def for_model(self, model: str) -> CircuitBreaker:
        # dict get-or-insert has no await point, so this is atomic on the event loop
        breaker = self._breakers.get(model)
        if breaker is None:
            breaker = CircuitBreaker(
                model,
                threshold=self.threshold,
                cooldown=self.cooldown,
                clock=self._clock,
                on_change=self._on_change,
            )
            self._breakers[model] = breaker
        return breaker

    def get(self, model: str) -> CircuitBreaker | None:
        return self._breakers.get(model)

    async def acquire(self, model: str) -> None:
        breaker = self._breakers.get(model)
        if breaker is not None:
            await breaker.acquire()

    async def record_success(self, model: str) -> None:
        breaker = self._breakers.get(model)
        if breaker is not None:
            await breaker.record_success()

    async def record_failure(self, model: str) -> None:
        await self.for_model(model).record_failure()

    async def release(self, model: str) -> None:
        breaker = self._breakers.get(model)
        if breaker is not None:
            await breaker.release()

    def snapshot(self) -> dict[str, BreakerSnapshot]:
        return {model: b.snapshot() for model, b in self._breakers.items()}
