"""Tests for per-model circuit breakers."""

from __future__ import annotations

import asyncio

import pytest

from research_relay.breaker import BreakerBoard, BreakerState, CircuitBreaker
from research_relay.errors import CircuitOpen


def _breaker(clock, **kwargs) -> CircuitBreaker:
    return CircuitBreaker("big-model", threshold=5, cooldown=60.0, clock=clock, **kwargs)


class TestCircuitBreaker:
    """State machine: closed -> open -> half-open -> closed/open."""

    async def test_opens_after_threshold_consecutive_failures(self, fake_clock):
        breaker = _breaker(fake_clock)
        for _ in range(4):
            await breaker.record_failure()
        assert breaker.state is BreakerState.CLOSED
        await breaker.record_failure()
        assert breaker.state is BreakerState.OPEN

    async def test_success_resets_failure_count(self, fake_clock):
        breaker = _breaker(fake_clock)
        for _ in range(4):
            await breaker.record_failure()
        await breaker.record_success()
        await breaker.record_failure()
        assert breaker.consecutive_failures == 1
        assert breaker.state is BreakerState.CLOSED

    async def test_open_rejects_with_retry_after(self, fake_clock):
        breaker = _breaker(fake_clock)
        for _ in range(5):
            await breaker.record_failure()
        fake_clock.advance(20)
        with pytest.raises(CircuitOpen) as info:
            await breaker.acquire()
        assert info.value.retry_after == pytest.approx(40.0)
        assert info.value.is_retryable is False

    async def test_half_open_admits_exactly_one_trial(self, fake_clock):
        breaker = _breaker(fake_clock)
        for _ in range(5):
            await breaker.record_failure()
        fake_clock.advance(60)
        await breaker.acquire()
        assert breaker.state is BreakerState.HALF_OPEN
        with pytest.raises(CircuitOpen, match="trial"):
            await breaker.acquire()

    async def test_half_open_success_closes(self, fake_clock):
        breaker = _breaker(fake_clock)
        for _ in range(5):
            await breaker.record_failure()
        fake_clock.advance(61)
        await breaker.acquire()
        await breaker.record_success()
        assert breaker.state is BreakerState.CLOSED
        assert breaker.consecutive_failures == 0
        await breaker.acquire()

    async def test_half_open_failure_reopens_immediately(self, fake_clock):
        breaker = _breaker(fake_clock)
        for _ in range(5):
            await breaker.record_failure()
        fake_clock.advance(61)
        await breaker.acquire()
        await breaker.record_failure()
        assert breaker.state is BreakerState.OPEN
        with pytest.raises(CircuitOpen):
            await breaker.acquire()

    async def test_release_frees_trial_slot(self, fake_clock):
        breaker = _breaker(fake_clock)
        for _ in range(5):
            await breaker.record_failure()
        fake_clock.advance(61)
        await breaker.acquire()
        await breaker.release()
        await breaker.acquire()
        assert breaker.state is BreakerState.HALF_OPEN

    async def test_concurrent_failures_are_not_lost(self, fake_clock):
        breaker = CircuitBreaker("m", threshold=50, clock=fake_clock)
        await asyncio.gather(*(breaker.record_failure() for _ in range(20)))
        assert breaker.consecutive_failures == 20

    async def test_on_change_reports_transitions(self, fake_clock):
        seen: list[tuple[str, BreakerState]] = []
        breaker = _breaker(fake_clock, on_change=lambda m, s: seen.append((m, s)))
        for _ in range(5):
            await breaker.record_failure()
        fake_clock.advance(61)
        await breaker.acquire()
        await breaker.record_success()
        assert [s for _, s in seen] == [BreakerState.OPEN, BreakerState.HALF_OPEN, BreakerState.CLOSED]

    async def test_transition_logged_as_warning(self, fake_clock, caplog):
        breaker = _breaker(fake_clock)
        with caplog.at_level("WARNING", logger="research_relay.breaker"):
            for _ in range(5):
                await breaker.record_failure()
        assert any("closed -> open" in r.message for r in caplog.records)
        assert all(r.levelname == "WARNING" for r in caplog.records)


class TestBreakerBoard:
    """Board creates breakers lazily, on first failure."""

    async def test_no_breaker_until_first_failure(self, fake_clock):
        board = BreakerBoard(clock=fake_clock)
        await board.acquire("m")
        await board.record_success("m")
        assert board.get("m") is None
        await board.record_failure("m")
        assert board.get("m") is not None

    async def test_models_are_independent(self, fake_clock):
        board = BreakerBoard(threshold=2, clock=fake_clock)
        await board.record_failure("a")
        await board.record_failure("a")
        with pytest.raises(CircuitOpen):
            await board.acquire("a")
        await board.acquire("b")

    async def test_snapshot(self, fake_clock):
        board = BreakerBoard(threshold=1, clock=fake_clock)
        await board.record_failure("a")
        snap = board.snapshot()
        assert snap["a"].state is BreakerState.OPEN
        assert snap["a"].consecutive_failures == 1
