"""Shared test fixtures for research-relay-mcp."""

from __future__ import annotations

from collections.abc import Callable
from typing import Any
from unittest.mock import AsyncMock, patch

import pytest

from research_relay.config import RelayConfig
from research_relay.context import build_context
from research_relay.models.invocation import (
    InvocationRequest,
    InvocationResponse,
    ResponseMetadata,
    Source,
    UsageStats,
)
from research_relay.registry import DEFAULT_MODELS, ModelCapabilitySpec, ModelRegistry


def unwrap_tool(tool: Any) -> Any:
    """Extract the raw coroutine from a FastMCP FunctionTool, if wrapped."""
    return getattr(tool, "fn", tool)


@pytest.fixture(autouse=True, scope="session")
def _unwrap_fastmcp_tools():
    """Make FastMCP-wrapped tools directly awaitable in tests (FastMCP 2.x and 3.x)."""
    import importlib
    import pkgutil

    import research_relay.tools as tools_pkg

    modules = [
        importlib.import_module(info.name)
        for info in pkgutil.walk_packages(tools_pkg.__path__, tools_pkg.__name__ + ".")
    ]
    for mod in modules:
        for name in list(vars(mod)):
            obj = getattr(mod, name, None)
            if obj is not None and hasattr(obj, "fn") and not callable(obj):
                setattr(mod, name, obj.fn)


@pytest.fixture(autouse=True)
def _set_dummy_api_keys(monkeypatch):
    """Ensure tests never hit real provider APIs."""
    monkeypatch.setenv("GEMINI_API_KEY", "test-key-not-real")
    monkeypatch.setenv("OPENAI_API_KEY", "sk-test-key-not-real")


@pytest.fixture(autouse=True)
def _disable_tracing(monkeypatch):
    """Disable MLflow tracing; ``test_tracing.py`` patches the module directly."""
    monkeypatch.setenv("RELAY_TRACING_ENABLED", "false")


@pytest.fixture(autouse=True)
def _isolate_dotenv(tmp_path, monkeypatch):
    """Prevent tests from loading the user's real ~/.config/research-relay/.env."""
    monkeypatch.delenv("RELAY_ENV_FILE", raising=False)
    monkeypatch.setattr("research_relay.dotenv.DEFAULT_ENV_PATH", tmp_path / "nonexistent.env")


@pytest.fixture(autouse=True)
def _reset_process_context():
    """Reset the config and context singletons used by the tool surface."""
    import research_relay.config as cfg_mod
    import research_relay.context as ctx_mod

    cfg_mod._config = None
    ctx_mod._context = None
    yield
    cfg_mod._config = None
    ctx_mod._context = None


@pytest.fixture()
def mock_sleep():
    """Patch the backoff sleep so retry tests run instantly."""
    with patch("research_relay.retry.asyncio.sleep", new_callable=AsyncMock) as sleep:
        yield sleep


# ---------------------------------------------------------------------------
# Fakes
# ---------------------------------------------------------------------------


class FakeClock:
    """Manually advanced monotonic clock for breaker cool-downs."""

    def __init__(self, start: float = 1000.0) -> None:
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance(self, seconds: float) -> None:
        self.now += seconds


def make_response(
    content: str = "ok",
    *,
    model: str = "gemini-2.5-flash",
    sources: list[Source] | None = None,
    total_tokens: int = 0,
    incomplete: bool = False,
    duration: float = 0.1,
) -> InvocationResponse:
    return InvocationResponse(
        content=content,
        usage=UsageStats(total_tokens=total_tokens),
        duration=duration,
        metadata=ResponseMetadata(
            model=model,
            provider="test",
            incomplete=incomplete,
            sources=sources or [],
        ),
    )


class FakeHandler:
    """Scripted provider handler.

    Each ``generate`` call pops the next outcome: an exception is raised, an
    InvocationResponse is returned as-is, a string becomes the content, and a
    callable is invoked with the request to produce one of those. When the
    script runs out, ``default`` is used.
    """

    def __init__(
        self,
        family: str = "google",
        outcomes: list[Any] | None = None,
        *,
        default: Any = "ok",
        supported: frozenset[str] | None = None,
    ) -> None:
        self.family = family
        self.outcomes = list(outcomes or [])
        self.default = default
        self.supported = supported or frozenset({"temperature", "top_p", "top_k", "max_output_tokens"})
        self.calls: list[InvocationRequest] = []
        self.timeouts: list[float | None] = []

    def get_supported_parameters(self) -> frozenset[str]:
        return self.supported

    def validate_parameters(self, config) -> None:
        return None

    async def generate(self, request, spec, *, timeout=None):
        self.calls.append(request)
        self.timeouts.append(timeout)
        outcome = self.outcomes.pop(0) if self.outcomes else self.default
        if callable(outcome) and not isinstance(outcome, type):
            outcome = outcome(request)
            if hasattr(outcome, "__await__"):
                outcome = await outcome
        if isinstance(outcome, BaseException):
            raise outcome
        if isinstance(outcome, InvocationResponse):
            return outcome
        return make_response(str(outcome), model=spec.model_id)


def small_spec(model_id: str = "small-fast", **overrides: Any) -> ModelCapabilitySpec:
    fields: dict[str, Any] = {
        "model_id": model_id,
        "provider": "google",
        "handler_family": "google",
        "supported_parameters": frozenset({"temperature", "max_output_tokens"}),
        "max_output_tokens": 8192,
        "default_config": {"temperature": 0.3, "max_output_tokens": 2048},
        "timeout_seconds": 30,
    }
    fields.update(overrides)
    return ModelCapabilitySpec(**fields)


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def relay_config() -> RelayConfig:
    return RelayConfig(google_api_key="AIzaTESTKEY1234567890", openai_api_key="sk-testsecret12345678")


@pytest.fixture()
def make_context(relay_config, fake_clock) -> Callable[..., Any]:
    """Build a RelayContext around fake handlers and an optional extra registry."""

    def _make(
        handlers: dict[str, Any],
        *,
        extra_specs: tuple[ModelCapabilitySpec, ...] = (),
        config: RelayConfig | None = None,
    ):
        registry = ModelRegistry(DEFAULT_MODELS + extra_specs)
        return build_context(config or relay_config, registry=registry, handlers=handlers, clock=fake_clock)

    return _make
