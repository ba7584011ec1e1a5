"""Tests for the resilience wrapper: retries, breakers, timeouts, validation."""

from __future__ import annotations

import asyncio

import pytest

from research_relay.breaker import BreakerBoard, BreakerState
from research_relay.config import RelayConfig
from research_relay.errors import (
    AuthenticationFailed,
    CallTimeout,
    CircuitOpen,
    ExternalProviderError,
    InvalidResponse,
    NetworkError,
    ValidationFailed,
)
from research_relay.models.invocation import GoogleConfig, InvocationRequest, InvocationResponse
from research_relay.resilience import ResilientHandler
from research_relay.retry import RetryPolicy

from conftest import FakeHandler, make_response, small_spec

BIG = small_spec("big-model", timeout_seconds=60)


def _request(prompt="Summarize the findings", model="big-model") -> InvocationRequest:
    return InvocationRequest(prompt=prompt, config=GoogleConfig(model=model))


def _down(_request):
    return NetworkError("connection reset")


class TestRetries:
    """Transient failures are retried inside one logical call."""

    @pytest.mark.parametrize("failures", [1, 2, 3])
    async def test_succeeds_after_transient_failures(self, make_context, mock_sleep, failures):
        handler = FakeHandler("google", [NetworkError("reset")] * failures + ["recovered"])
        ctx = make_context({"google": handler}, extra_specs=(BIG,))

        response = await ctx.factory.call(_request())

        assert response.content == "recovered"
        assert len(handler.calls) == failures + 1
        assert ctx.breakers.get("big-model") is None

    async def test_gives_up_after_four_attempts(self, make_context, mock_sleep):
        handler = FakeHandler("google", default=_down)
        ctx = make_context({"google": handler}, extra_specs=(BIG,))

        with pytest.raises(NetworkError):
            await ctx.factory.call(_request())

        assert len(handler.calls) == 4
        assert ctx.breakers.get("big-model").consecutive_failures == 1

    async def test_non_retryable_error_fails_on_first_attempt(self, make_context, mock_sleep):
        handler = FakeHandler("google", [AuthenticationFailed("bad key")])
        ctx = make_context({"google": handler}, extra_specs=(BIG,))

        with pytest.raises(AuthenticationFailed):
            await ctx.factory.call(_request())

        assert len(handler.calls) == 1
        mock_sleep.assert_not_awaited()

    async def test_empty_content_retried_once_then_invalid_response(self, make_context, mock_sleep):
        handler = FakeHandler("google", default=lambda r: make_response("   "))
        ctx = make_context({"google": handler}, extra_specs=(BIG,))

        with pytest.raises(InvalidResponse):
            await ctx.factory.call(_request())

        assert len(handler.calls) == 2


class TestBreakerIntegration:
    """Logical-call failures drive the per-model breaker."""

    async def test_breaker_opens_after_five_failed_calls(self, make_context, mock_sleep, fake_clock):
        handler = FakeHandler("google", default=_down)
        ctx = make_context({"google": handler}, extra_specs=(BIG,))

        for _ in range(5):
            with pytest.raises(NetworkError):
                await ctx.factory.call(_request())
        assert len(handler.calls) == 20
        assert ctx.breakers.get("big-model").state is BreakerState.OPEN

        with pytest.raises(CircuitOpen) as info:
            await ctx.factory.call(_request())
        assert len(handler.calls) == 20
        assert info.value.retry_after == pytest.approx(60.0)

        fake_clock.advance(61)
        handler.default = "back"
        response = await ctx.factory.call(_request())
        assert response.content == "back"
        assert len(handler.calls) == 21
        assert ctx.breakers.get("big-model").state is BreakerState.CLOSED

    async def test_breaker_state_reaches_monitor(self, make_context, mock_sleep):
        handler = FakeHandler("google", default=_down)
        ctx = make_context({"google": handler}, extra_specs=(BIG,))
        for _ in range(5):
            with pytest.raises(NetworkError):
                await ctx.factory.call(_request())
        health = ctx.monitor.health_status()
        assert health.open_breakers == 1
        assert "big-model" in health.models_with_issues

    async def test_other_models_unaffected(self, make_context, mock_sleep):
        handler = FakeHandler("google", default=_down)
        other = small_spec("other-model")
        ctx = make_context({"google": handler}, extra_specs=(BIG, other))
        for _ in range(5):
            with pytest.raises(NetworkError):
                await ctx.factory.call(_request())

        handler.default = "fine"
        response = await ctx.factory.call(_request(model="other-model"))
        assert response.content == "fine"


class TestInputValidation:
    """Invalid input never reaches the transport or the breaker."""

    @pytest.mark.parametrize("prompt", ["", "   \n\t "])
    async def test_empty_prompts_rejected(self, make_context, prompt):
        handler = FakeHandler("google")
        ctx = make_context({"google": handler}, extra_specs=(BIG,))

        with pytest.raises(ValidationFailed):
            await ctx.factory.call(_request(prompt))

        assert handler.calls == []
        assert ctx.breakers.get("big-model") is None

    async def test_oversized_prompt_rejected(self, make_context, relay_config):
        handler = FakeHandler("google")
        config = relay_config.model_copy(update={"max_prompt_chars": 10})
        ctx = make_context({"google": handler}, extra_specs=(BIG,), config=config)

        with pytest.raises(ValidationFailed, match="limit is 10"):
            await ctx.factory.call(_request("x" * 11))
        assert handler.calls == []

    async def test_handler_parameter_check_runs_first(self, fake_clock):
        class Strict(FakeHandler):
            def validate_parameters(self, config):
                raise ValidationFailed("top_k out of range")

        inner = Strict("google")
        wrapped = ResilientHandler(inner, breakers=BreakerBoard(clock=fake_clock))
        with pytest.raises(ValidationFailed, match="top_k"):
            await wrapped.generate(_request(), BIG)
        assert inner.calls == []


class TestTimeouts:
    """Per-attempt deadline from the effective timeout."""

    async def test_hanging_call_times_out(self, make_context, relay_config):
        handler = FakeHandler("google", default=lambda r: asyncio.Event().wait())
        config = relay_config.model_copy(update={"family_timeouts": {"google": 0.05}, "retry_max_retries": 0})
        ctx = make_context({"google": handler}, extra_specs=(BIG,), config=config)

        with pytest.raises(CallTimeout) as info:
            await ctx.factory.call(_request())

        assert info.value.is_retryable is True
        assert handler.timeouts == [0.05]

    async def test_timeout_is_retried(self, make_context, relay_config, mock_sleep):
        handler = FakeHandler(
            "google", [lambda r: asyncio.Event().wait(), "second try"],
        )
        config = relay_config.model_copy(update={"family_timeouts": {"google": 0.05}})
        ctx = make_context({"google": handler}, extra_specs=(BIG,), config=config)

        response = await ctx.factory.call(_request())
        assert response.content == "second try"
        assert len(handler.calls) == 2

    async def test_handler_timeout_without_deadline_is_call_timeout(self, fake_clock, mock_sleep):
        inner = FakeHandler("google", [TimeoutError("socket read timed out"), "after reconnect"])
        wrapped = ResilientHandler(inner, breakers=BreakerBoard(clock=fake_clock))

        response = await wrapped.generate(_request(), BIG)

        assert response.content == "after reconnect"
        assert inner.timeouts == [None, None]

    async def test_handler_timeout_without_deadline_surfaces_message(self, fake_clock):
        inner = FakeHandler("google", default=lambda r: TimeoutError("socket read timed out"))
        wrapped = ResilientHandler(inner, breakers=BreakerBoard(clock=fake_clock), policy=RetryPolicy(max_retries=0))

        with pytest.raises(CallTimeout, match="big-model timed out"):
            await wrapped.generate(_request(), BIG)


class TestResponses:
    """Response validation and normalization."""

    async def test_incomplete_flag_preserved(self, make_context):
        partial = make_response("half an answer [Response incomplete]", incomplete=True)
        handler = FakeHandler("google", [partial])
        ctx = make_context({"google": handler}, extra_specs=(BIG,))

        response = await ctx.factory.call(_request())

        assert response.metadata.incomplete is True
        assert response.content.startswith("half an answer")

    def test_negative_duration_clamped(self):
        assert make_response(duration=-3.0).duration == 0.0
        assert make_response(duration=float("nan")).duration == 0.0

    def test_non_response_rejected(self):
        with pytest.raises(InvalidResponse):
            ResilientHandler.validate_response("text", "m")  # type: ignore[arg-type]

    def test_valid_response_passes(self):
        response = make_response("fine")
        assert ResilientHandler.validate_response(response, "m") is response
        assert isinstance(response, InvocationResponse)


class TestRedaction:
    """Credentials never appear in surfaced errors."""

    async def test_secret_scrubbed_from_error(self, make_context, relay_config):
        leak = RuntimeError(f"upstream rejected key {relay_config.openai_api_key} for project")
        handler = FakeHandler("google", [leak])
        ctx = make_context({"google": handler}, extra_specs=(BIG,))

        with pytest.raises(ExternalProviderError) as info:
            await ctx.factory.call(_request())

        assert relay_config.openai_api_key not in info.value.message
        assert info.value.model == "big-model"


class TestCancellation:
    """Cancelling a call frees a half-open trial slot."""

    async def test_cancel_releases_breaker_trial(self, fake_clock):
        board = BreakerBoard(threshold=1, clock=fake_clock)
        await board.record_failure("big-model")
        fake_clock.advance(61)

        started = asyncio.Event()

        async def _hang(request):
            started.set()
            await asyncio.Event().wait()

        wrapped = ResilientHandler(FakeHandler("google", [_hang]), breakers=board, policy=RetryPolicy(max_retries=0))
        task = asyncio.create_task(wrapped.generate(_request(), BIG))
        await started.wait()
        task.cancel()
        with pytest.raises(asyncio.CancelledError):
            await task

        await board.acquire("big-model")
        assert board.get("big-model").state is BreakerState.HALF_OPEN


def test_config_defaults_match_breaker_defaults():
    config = RelayConfig()
    assert config.breaker_failure_threshold == 5
    assert config.breaker_cooldown_seconds == 60.0
