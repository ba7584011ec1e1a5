"""OpenAI Chat Completions handler for standard and reasoning (o-series) models."""

from __future__ import annotations

import logging
import time
from typing import Any

from openai import AsyncOpenAI

from ..errors import AuthenticationFailed
from ..models.invocation import (
    GoogleConfig,
    InvocationRequest,
    InvocationResponse,
    OpenAIConfig,
    PromptPair,
    ResponseMetadata,
    UsageStats,
)
from ..registry import ModelCapabilitySpec
from .base import pick_content, require_range, warn_ignored

logger = logging.getLogger(__name__)


def _chat_usage(usage: Any) -> UsageStats:
    if usage is None:
        return UsageStats()
    details = getattr(usage, "completion_tokens_details", None)
    return UsageStats(
        input_tokens=getattr(usage, "prompt_tokens", None) or 0,
        output_tokens=getattr(usage, "completion_tokens", None) or 0,
        reasoning_tokens=getattr(details, "reasoning_tokens", None) or 0,
        total_tokens=getattr(usage, "total_tokens", None) or 0,
    )


def normalize_chat_response(response: Any, *, model: str, duration: float) -> InvocationResponse:
    """First choice → InvocationResponse; ``finish_reason == "length"`` marks it incomplete."""
    choices = getattr(response, "choices", None) or []
    choice = choices[0] if choices else None
    message = getattr(choice, "message", None)
    finish_reason = getattr(choice, "finish_reason", None)
    incomplete = finish_reason == "length"

    content = pick_content(
        getattr(message, "content", None) or "",
        getattr(message, "reasoning_content", None) or "",
        incomplete=incomplete,
        reason="length",
    )
    return InvocationResponse(
        content=content,
        usage=_chat_usage(getattr(response, "usage", None)),
        duration=duration,
        metadata=ResponseMetadata(
            model=model,
            provider="openai",
            finish_reason=finish_reason,
            incomplete=incomplete,
            incomplete_reason="length" if incomplete else None,
        ),
    )


class OpenAIChatHandler:
    """Chat Completions transport.

    Standard models take temperature/top_p; reasoning models reject both, so
    in reasoning mode they are never sent and non-neutral values are logged.
    """

    def __init__(
        self,
        api_key: str,
        *,
        reasoning: bool = False,
        client: AsyncOpenAI | None = None,
    ) -> None:
        if client is None and not api_key:
            raise AuthenticationFailed("No OpenAI API key — set OPENAI_API_KEY")
        self._client = client or AsyncOpenAI(api_key=api_key, max_retries=0)
        self.reasoning = reasoning
        self.family = "openai-reasoning" if reasoning else "openai-standard"

    def get_supported_parameters(self) -> frozenset[str]:
        if self.reasoning:
            return frozenset({"max_output_tokens", "reasoning_effort", "verbosity"})
        return frozenset({"temperature", "top_p", "max_output_tokens", "reasoning_effort", "verbosity"})

    def validate_parameters(self, config: GoogleConfig | OpenAIConfig) -> None:
        require_range("max_output_tokens", config.max_output_tokens, 1, None, family=self.family)
        if self.reasoning:
            warn_ignored(self.family, config.model, "temperature", config.temperature, 1.0)
            warn_ignored(self.family, config.model, "top_p", config.top_p, 1.0)
            return
        require_range("temperature", config.temperature, 0, 2, family=self.family)
        require_range("top_p", config.top_p, 0, 1, family=self.family)

    def build_kwargs(self, request: InvocationRequest, spec: ModelCapabilitySpec) -> dict[str, Any]:
        cfg = request.config
        messages: list[dict[str, str]] = []
        if isinstance(request.prompt, PromptPair):
            # reasoning models take the system slot as "developer"
            role = "developer" if self.reasoning else "system"
            messages.append({"role": role, "content": request.prompt.system_instruction})
            messages.append({"role": "user", "content": request.prompt.user_input})
        else:
            messages.append({"role": "user", "content": request.prompt})

        kwargs: dict[str, Any] = {"model": spec.model_id, "messages": messages}
        if cfg.max_output_tokens is not None:
            kwargs["max_completion_tokens"] = cfg.max_output_tokens
        if not self.reasoning:
            if cfg.temperature is not None:
                kwargs["temperature"] = cfg.temperature
            if cfg.top_p is not None:
                kwargs["top_p"] = cfg.top_p
        effort = getattr(cfg, "reasoning_effort", None)
        if effort:
            kwargs["reasoning_effort"] = effort
        verbosity = getattr(cfg, "verbosity", None)
        if verbosity:
            kwargs["verbosity"] = verbosity
        return kwargs

    async def generate(
        self,
        request: InvocationRequest,
        spec: ModelCapabilitySpec,
        *,
        timeout: float | None = None,
    ) -> InvocationResponse:
        self.validate_parameters(request.config)
        kwargs = self.build_kwargs(request, spec)
        logger.info(
            "[%s] %s call %s (prompt=%d chars)",
            request.job_id or "-", self.family, spec.model_id, len(request.text()),
        )
        start = time.monotonic()
        response = await self._client.chat.completions.create(**kwargs, timeout=timeout)
        return normalize_chat_response(response, model=spec.model_id, duration=time.monotonic() - start)

    async def aclose(self) -> None:
        await self._client.close()
