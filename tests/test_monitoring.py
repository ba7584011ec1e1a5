"""Tests for call metrics and health classification."""

from __future__ import annotations

import logging

import pytest

from research_relay.breaker import BreakerState
from research_relay.monitoring import CallMonitor, CallRecord

from conftest import FakeClock


def _record(clock, *, model="gpt-4o", success=True, duration=1.0, error_kind=None):
    return CallRecord(
        model=model,
        provider="openai",
        duration=duration,
        success=success,
        error_kind=error_kind,
        timestamp=clock(),
    )


@pytest.fixture()
def clock():
    return FakeClock()


@pytest.fixture()
def monitor(clock):
    return CallMonitor(clock=clock)


class TestMetrics:
    """Per-model counters."""

    def test_counts_and_average(self, monitor, clock):
        monitor.record(_record(clock, duration=1.0))
        monitor.record(_record(clock, duration=3.0))
        monitor.record(_record(clock, success=False, duration=2.0, error_kind="TIMEOUT"))

        metrics = monitor.metrics("gpt-4o")
        assert metrics.total_requests == 3
        assert metrics.successful_requests == 2
        assert metrics.failed_requests == 1
        assert metrics.average_duration == pytest.approx(2.0)
        assert metrics.errors_by_kind == {"TIMEOUT": 1}
        assert metrics.error_rate == pytest.approx(1 / 3)

    def test_unknown_model_has_empty_metrics(self, monitor):
        assert monitor.metrics("nope").total_requests == 0

    def test_recent_is_bounded(self, clock):
        monitor = CallMonitor(clock=clock, max_recent=3)
        for _ in range(5):
            monitor.record(_record(clock))
        assert len(monitor.recent()) == 3

    def test_slow_average_warns(self, monitor, clock, caplog):
        with caplog.at_level(logging.WARNING, logger="research_relay.monitoring"):
            monitor.record(_record(clock, duration=20.0))
        assert "Slow responses" in caplog.text

    def test_high_error_rate_warns_after_ten_calls(self, monitor, clock, caplog):
        with caplog.at_level(logging.WARNING, logger="research_relay.monitoring"):
            for i in range(10):
                monitor.record(_record(clock, success=i < 6, error_kind="NETWORK"))
        assert "High error rate" in caplog.text


class TestHealthStatus:
    """healthy / degraded / unhealthy over the last five minutes."""

    def test_no_traffic_is_healthy(self, monitor):
        health = monitor.health_status()
        assert health.status == "healthy"
        assert health.message == "No recent requests to analyze"

    def test_no_traffic_with_open_breaker_is_degraded(self, monitor):
        monitor.update_breaker_state("o3", BreakerState.OPEN)
        assert monitor.health_status().status == "degraded"

    def test_all_successful_is_healthy(self, monitor, clock):
        for _ in range(5):
            monitor.record(_record(clock))
        health = monitor.health_status()
        assert health.status == "healthy"
        assert health.success_rate == 1.0
        assert health.recent_request_count == 5

    @pytest.mark.parametrize("failures,expected", [(1, "healthy"), (3, "degraded"), (6, "unhealthy")])
    def test_success_rate_thresholds(self, monitor, clock, failures, expected):
        for i in range(10):
            monitor.record(_record(clock, success=i >= failures))
        assert monitor.health_status().status == expected

    def test_slow_average_is_degraded(self, monitor, clock):
        monitor.record(_record(clock, duration=45.0))
        assert monitor.health_status().status == "degraded"

    def test_many_open_breakers_is_unhealthy(self, monitor, clock):
        monitor.record(_record(clock))
        for model in ("a", "b", "c"):
            monitor.update_breaker_state(model, BreakerState.OPEN)
        health = monitor.health_status()
        assert health.status == "unhealthy"
        assert health.open_breakers == 3

    def test_old_calls_fall_out_of_window(self, monitor, clock):
        for _ in range(5):
            monitor.record(_record(clock, success=False))
        clock.advance(301)
        assert monitor.health_status().status == "healthy"

    def test_closed_breaker_clears_issue(self, monitor):
        monitor.update_breaker_state("o3", BreakerState.OPEN)
        assert monitor.models_with_issues() == ["o3"]
        monitor.update_breaker_state("o3", BreakerState.CLOSED)
        assert monitor.models_with_issues() == []
