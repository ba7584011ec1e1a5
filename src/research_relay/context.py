"""Explicit runtime context — registry, breakers, monitor, handlers and factory.

Built once by the process entrypoint (or once per test) and passed to
whatever needs it. Nothing in the library reaches for module-level state.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Callable, Mapping
from dataclasses import dataclass, field

from openai import AsyncOpenAI

from .breaker import BreakerBoard
from .config import RelayConfig, get_config
from .factory import InvocationFactory
from .handlers.base import ProviderHandler
from .handlers.google import GoogleHandler
from .handlers.openai_chat import OpenAIChatHandler
from .handlers.openai_responses import OpenAIResponsesHandler
from .handlers.research import ResearchPipelineHandler
from .models.research import ResearchConfig
from .monitoring import CallMonitor
from .registry import ModelRegistry
from .research.orchestrator import ResearchOrchestrator
from .resilience import ResilientHandler
from .retry import RetryPolicy

logger = logging.getLogger(__name__)


@dataclass
class RelayContext:
    """Everything a caller needs to make model calls or run research."""

    config: RelayConfig
    registry: ModelRegistry
    breakers: BreakerBoard
    monitor: CallMonitor
    handlers: dict[str, ResilientHandler] = field(default_factory=dict)
    factory: InvocationFactory | None = None

    def orchestrator(self, research_config: ResearchConfig | None = None) -> ResearchOrchestrator:
        return ResearchOrchestrator(
            self.factory,
            research_config,
            default_model=self.config.research_model,
            run_timeout=self.config.research_timeout_seconds,
        )

    async def aclose(self) -> int:
        """Close every handler's SDK client; returns how many were closed."""
        closed = 0
        for key, handler in self.handlers.items():
            try:
                await handler.aclose()
                closed += 1
            except Exception:
                logger.warning("Closing handler %s failed", key, exc_info=True)
        return closed


def default_handlers(config: RelayConfig) -> dict[str, ProviderHandler]:
    """Instantiate handlers for every provider that has a credential.

    Families without a credential are skipped with a warning; calling one of
    their models later fails with an Authentication error.
    """
    handlers: dict[str, ProviderHandler] = {}
    if config.google_api_key:
        handlers["google"] = GoogleHandler(config.google_api_key)
    else:
        logger.warning("No Google API key configured; Gemini models are unavailable")
    if config.openai_api_key:
        # the four OpenAI entries share one HTTP client
        client = AsyncOpenAI(api_key=config.openai_api_key, max_retries=0)
        handlers["openai-standard"] = OpenAIChatHandler("", client=client)
        handlers["openai-reasoning"] = OpenAIChatHandler("", reasoning=True, client=client)
        handlers["openai-responses"] = OpenAIResponsesHandler("", client=client)
        handlers["deep-research:openai"] = OpenAIResponsesHandler("", deep_research=True, client=client)
    else:
        logger.warning("No OpenAI API key configured; OpenAI models are unavailable")
    handlers["deep-research:gemini"] = ResearchPipelineHandler(
        research_model=config.research_model,
        run_timeout=config.research_timeout_seconds,
    )
    return handlers


def build_context(
    config: RelayConfig | None = None,
    *,
    registry: ModelRegistry | None = None,
    handlers: Mapping[str, ProviderHandler] | None = None,
    clock: Callable[[], float] = time.monotonic,
) -> RelayContext:
    """Wire registry, breakers, monitor and wrapped handlers into one context.

    Args:
        config: Relay settings; defaults to ``RelayConfig()``.
        registry: Capability registry; defaults to the built-in catalog.
        handlers: Raw handlers keyed by handler family (``deep-research:<variant>``
            for deep-research sub-variants). Defaults to :func:`default_handlers`.
        clock: Monotonic clock for breaker cool-downs (tests inject a fake).
    """
    config = config or RelayConfig()
    registry = registry or ModelRegistry()
    monitor = CallMonitor()
    breakers = BreakerBoard(
        threshold=config.breaker_failure_threshold,
        cooldown=config.breaker_cooldown_seconds,
        clock=clock,
        on_change=monitor.update_breaker_state,
    )
    policy = RetryPolicy(
        max_retries=config.retry_max_retries,
        base_delay=config.retry_base_delay,
        max_delay=config.retry_max_delay,
        retry_rate_limited=config.retry_rate_limited,
    )
    raw = dict(handlers) if handlers is not None else default_handlers(config)

    wrapped: dict[str, ResilientHandler] = {}
    for key, handler in raw.items():
        # a research run is many calls that are each retried; re-running the
        # whole pipeline on failure is left to the caller
        handler_policy = RetryPolicy(max_retries=0) if isinstance(handler, ResearchPipelineHandler) else policy
        wrapped[key] = ResilientHandler(
            handler,
            breakers=breakers,
            policy=handler_policy,
            secrets=config.secrets,
            max_prompt_chars=config.max_prompt_chars,
        )

    factory = InvocationFactory(registry, wrapped, config=config, monitor=monitor)
    for handler in raw.values():
        if isinstance(handler, ResearchPipelineHandler):
            handler.bind(factory)

    return RelayContext(
        config=config,
        registry=registry,
        breakers=breakers,
        monitor=monitor,
        handlers=wrapped,
        factory=factory,
    )


_context: RelayContext | None = None


def get_context() -> RelayContext:
    """Process context for the MCP tool surface; set by the server lifespan."""
    global _context
    if _context is None:
        _context = build_context(get_config())
    return _context


def set_context(context: RelayContext | None) -> None:
    global _context
    _context = context
