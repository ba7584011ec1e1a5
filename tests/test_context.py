"""Tests for runtime context wiring."""

from __future__ import annotations

from unittest.mock import AsyncMock

import pytest

from research_relay.config import RelayConfig
from research_relay.context import build_context, default_handlers, get_context, set_context
from research_relay.handlers.research import ResearchPipelineHandler
from research_relay.resilience import ResilientHandler

from conftest import FakeHandler


class TestDefaultHandlers:
    """Handlers are created only for configured providers."""

    def test_all_families_with_both_keys(self, relay_config):
        handlers = default_handlers(relay_config)
        assert set(handlers) == {
            "google", "openai-standard", "openai-reasoning", "openai-responses",
            "deep-research:openai", "deep-research:gemini",
        }

    def test_missing_keys_skip_families(self, caplog):
        handlers = default_handlers(RelayConfig())
        assert set(handlers) == {"deep-research:gemini"}
        assert "No Google API key" in caplog.text
        assert "No OpenAI API key" in caplog.text


class TestBuildContext:
    def test_every_handler_is_wrapped(self, make_context):
        ctx = make_context({"google": FakeHandler("google")})
        assert all(isinstance(h, ResilientHandler) for h in ctx.handlers.values())
        assert ctx.factory.handlers is not None
        assert ctx.factory.monitor is ctx.monitor

    def test_pipeline_handler_bound_without_retries(self, make_context):
        pipeline = ResearchPipelineHandler(research_model="gemini-3-pro-preview", run_timeout=60)
        ctx = make_context({"deep-research:gemini": pipeline})
        assert ctx.handlers["deep-research:gemini"].policy.max_retries == 0
        assert pipeline._factory is ctx.factory

    def test_config_drives_breakers_and_retry(self, make_context, relay_config):
        config = relay_config.model_copy(update={"breaker_failure_threshold": 2, "retry_max_retries": 1})
        ctx = make_context({"google": FakeHandler("google")}, config=config)
        assert ctx.breakers.threshold == 2
        assert ctx.handlers["google"].policy.max_retries == 1

    async def test_aclose_closes_handlers(self, make_context):
        handler = FakeHandler("google")
        handler.aclose = AsyncMock()
        ctx = make_context({"google": handler, "openai-standard": FakeHandler("openai-standard")})
        assert await ctx.aclose() == 2
        handler.aclose.assert_awaited_once()

    async def test_aclose_survives_failures(self, make_context):
        handler = FakeHandler("google")
        handler.aclose = AsyncMock(side_effect=RuntimeError("already closed"))
        ctx = make_context({"google": handler})
        assert await ctx.aclose() == 0


class TestProcessContext:
    def test_set_and_get(self, make_context):
        ctx = make_context({})
        set_context(ctx)
        assert get_context() is ctx

    def test_get_builds_from_env(self):
        ctx = get_context()
        assert "google" in ctx.handlers
        assert get_context() is ctx

    @pytest.mark.parametrize("research_model", ["gemini-2.5-pro", "gpt-5"])
    def test_orchestrator_uses_configured_model(self, make_context, relay_config, research_model):
        config = relay_config.model_copy(update={"research_model": research_model})
        ctx = make_context({}, config=config)
        assert ctx.orchestrator().default_model == research_model
