"""In-process call metrics and health status.

The monitor is fed by the invocation factory (one record per logical call)
and by the breaker board (state transitions). It never blocks a call and
holds only bounded history.
"""

from __future__ import annotations

import logging
import time
from collections import deque
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, Field

from .breaker import BreakerState

logger = logging.getLogger(__name__)

MAX_RECENT_CALLS = 1000
HEALTH_WINDOW_SECONDS = 300.0
SLOW_AVERAGE_SECONDS = 15.0

HealthLevel = Literal["healthy", "degraded", "unhealthy"]


class CallRecord(BaseModel):
    model: str
    provider: str
    duration: float
    success: bool
    error_kind: str | None = None
    prompt_chars: int = 0
    response_chars: int = 0
    tokens_used: int = 0
    timestamp: float
    job_id: str | None = None


class ModelMetrics(BaseModel):
    total_requests: int = 0
    successful_requests: int = 0
    failed_requests: int = 0
    total_duration: float = 0.0
    average_duration: float = 0.0
    errors_by_kind: dict[str, int] = Field(default_factory=dict)
    last_request_at: float | None = None
    last_error_at: float | None = None

    @property
    def error_rate(self) -> float:
        return self.failed_requests / self.total_requests if self.total_requests else 0.0


class HealthStatus(BaseModel):
    status: HealthLevel
    success_rate: float | None = None
    average_duration: float | None = None
    recent_request_count: int = 0
    open_breakers: int = 0
    models_with_issues: list[str] = Field(default_factory=list)
    message: str | None = None
    timestamp: str = Field(default_factory=lambda: datetime.now(timezone.utc).isoformat())


class CallMonitor:
    """Aggregates per-model counters, recent call history and breaker states."""

    def __init__(self, *, clock: Callable[[], float] = time.time, max_recent: int = MAX_RECENT_CALLS) -> None:
        self._clock = clock
        self._metrics: dict[str, ModelMetrics] = {}
        self._recent: deque[CallRecord] = deque(maxlen=max_recent)
        self._breaker_states: dict[str, BreakerState] = {}

    def now(self) -> float:
        return self._clock()

    def record(self, record: CallRecord) -> None:
        metrics = self._metrics.setdefault(record.model, ModelMetrics())
        metrics.total_requests += 1
        if record.success:
            metrics.successful_requests += 1
        else:
            metrics.failed_requests += 1
            if record.error_kind:
                metrics.errors_by_kind[record.error_kind] = metrics.errors_by_kind.get(record.error_kind, 0) + 1
            metrics.last_error_at = record.timestamp
        metrics.total_duration += record.duration
        metrics.average_duration = metrics.total_duration / metrics.total_requests
        metrics.last_request_at = record.timestamp
        self._recent.append(record)

        if record.success:
            logger.info(
                "%s/%s completed in %.2fs (tokens=%d)",
                record.provider, record.model, record.duration, record.tokens_used,
            )
        if metrics.average_duration > SLOW_AVERAGE_SECONDS:
            logger.warning("Slow responses from %s: average %.1fs", record.model, metrics.average_duration)
        if metrics.total_requests >= 10 and metrics.error_rate > 0.3:
            logger.warning(
                "High error rate for %s: %.0f%% of %d calls",
                record.model, metrics.error_rate * 100, metrics.total_requests,
            )

    def update_breaker_state(self, model: str, state: BreakerState) -> None:
        """BreakerBoard ``on_change`` hook."""
        self._breaker_states[model] = state

    def metrics(self, model: str | None = None) -> dict[str, ModelMetrics] | ModelMetrics:
        if model is not None:
            return self._metrics.get(model, ModelMetrics())
        return dict(self._metrics)

    def recent(self) -> list[CallRecord]:
        return list(self._recent)

    def models_with_issues(self) -> list[str]:
        flagged = {m for m, metrics in self._metrics.items() if metrics.error_rate > 0.2}
        flagged.update(m for m, state in self._breaker_states.items() if state is BreakerState.OPEN)
        return sorted(flagged)

    def health_status(self) -> HealthStatus:
        """Classify recent traffic (last five minutes) as healthy, degraded or unhealthy."""
        now = self._clock()
        window = [r for r in self._recent if now - r.timestamp < HEALTH_WINDOW_SECONDS]
        open_breakers = sum(1 for s in self._breaker_states.values() if s is BreakerState.OPEN)
        if not window:
            return HealthStatus(
                status="degraded" if open_breakers else "healthy",
                open_breakers=open_breakers,
                models_with_issues=self.models_with_issues(),
                message="No recent requests to analyze",
            )

        success_rate = sum(1 for r in window if r.success) / len(window)
        average = sum(r.duration for r in window) / len(window)
        status: HealthLevel = "healthy"
        if success_rate < 0.5 or open_breakers > 2:
            status = "unhealthy"
        elif success_rate < 0.8 or average > 30.0 or open_breakers > 0:
            status = "degraded"
        return HealthStatus(
            status=status,
            success_rate=round(success_rate, 2),
            average_duration=round(average, 2),
            recent_request_count=len(window),
            open_breakers=open_breakers,
            models_with_issues=self.models_with_issues(),
        )
