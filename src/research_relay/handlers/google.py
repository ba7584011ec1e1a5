"""Google (Gemini) handler via the google-genai SDK."""

from __future__ import annotations

import logging
import time
from typing import Any

from google import genai
from google.genai import types

from ..errors import AuthenticationFailed
from ..models.invocation import (
    GoogleConfig,
    InvocationRequest,
    InvocationResponse,
    OpenAIConfig,
    PromptPair,
    ResponseMetadata,
    Source,
    UsageStats,
)
from ..registry import ModelCapabilitySpec
from .base import pick_content, require_range

logger = logging.getLogger(__name__)

GEMINI_OUTPUT_CAP = 65_535


def _enum_text(value: Any) -> str | None:
    if value is None:
        return None
    return str(getattr(value, "value", None) or getattr(value, "name", None) or value)


def _extract_sources(candidate: Any) -> list[Source]:
    """Grounding chunks → Source list (web chunks only)."""
    metadata = getattr(candidate, "grounding_metadata", None)
    chunks = getattr(metadata, "grounding_chunks", None) or []
    sources: list[Source] = []
    for chunk in chunks:
        web = getattr(chunk, "web", None)
        if web is None:
            continue
        sources.append(Source(
            url=getattr(web, "uri", None) or "",
            title=getattr(web, "title", None) or "Web Source",
        ))
    return sources


def _usage(response: Any) -> UsageStats:
    meta = getattr(response, "usage_metadata", None)
    if meta is None:
        return UsageStats()
    input_tokens = getattr(meta, "prompt_token_count", None) or 0
    output_tokens = getattr(meta, "candidates_token_count", None) or 0
    reasoning_tokens = getattr(meta, "thoughts_token_count", None) or 0
    total = getattr(meta, "total_token_count", None) or (input_tokens + output_tokens + reasoning_tokens)
    return UsageStats(
        input_tokens=input_tokens,
        output_tokens=output_tokens,
        reasoning_tokens=reasoning_tokens,
        total_tokens=total,
    )


def normalize_google_response(response: Any, *, model: str, duration: float) -> InvocationResponse:
    """Flatten a GenerateContentResponse into an InvocationResponse.

    Thought parts are kept apart from answer parts so a real answer always
    wins; ``MAX_TOKENS`` marks the response incomplete without discarding it.
    """
    candidates = getattr(response, "candidates", None) or []
    candidate = candidates[0] if candidates else None
    content = getattr(candidate, "content", None)
    parts = getattr(content, "parts", None) or []

    answer = [p.text for p in parts if getattr(p, "text", None) and not getattr(p, "thought", False)]
    thoughts = [p.text for p in parts if getattr(p, "text", None) and getattr(p, "thought", False)]

    finish_reason = _enum_text(getattr(candidate, "finish_reason", None))
    incomplete = finish_reason == "MAX_TOKENS"
    if incomplete:
        logger.warning("%s hit its output token limit, returning partial content", model)

    text = pick_content(
        "\n".join(answer),
        "\n".join(thoughts),
        incomplete=incomplete,
        reason="MAX_TOKENS",
    )
    return InvocationResponse(
        content=text,
        usage=_usage(response),
        duration=duration,
        metadata=ResponseMetadata(
            model=model,
            provider="google",
            finish_reason=finish_reason,
            incomplete=incomplete,
            incomplete_reason="MAX_TOKENS" if incomplete else None,
            sources=_extract_sources(candidate) if candidate is not None else [],
        ),
    )


class GoogleHandler:
    """Gemini models: temperature/top_p/top_k, thinking levels, Search grounding, inline files."""

    family = "google"

    def __init__(self, api_key: str, *, client: genai.Client | None = None) -> None:
        if client is None and not api_key:
            raise AuthenticationFailed("No Google API key — set GEMINI_API_KEY or GOOGLE_API_KEY")
        self._client = client or genai.Client(api_key=api_key)

    def get_supported_parameters(self) -> frozenset[str]:
        return frozenset({
            "temperature", "top_p", "top_k", "max_output_tokens",
            "thinking_level", "use_grounding", "attachments",
        })

    def validate_parameters(self, config: GoogleConfig | OpenAIConfig) -> None:
        require_range("temperature", config.temperature, 0, 2, family="Google AI")
        require_range("top_p", config.top_p, 0, 1, family="Google AI")
        require_range("top_k", getattr(config, "top_k", None), 1, 40, family="Google AI")
        require_range("max_output_tokens", config.max_output_tokens, 100, None, family="Google AI")

    def build_config(self, request: InvocationRequest, spec: ModelCapabilitySpec) -> types.GenerateContentConfig:
        cfg = request.config
        max_tokens = cfg.max_output_tokens
        if max_tokens is not None and max_tokens > GEMINI_OUTPUT_CAP:
            logger.warning(
                "max_output_tokens %d exceeds Gemini limit for %s, capping to %d",
                max_tokens, spec.model_id, GEMINI_OUTPUT_CAP,
            )
            max_tokens = GEMINI_OUTPUT_CAP

        config = types.GenerateContentConfig(
            temperature=cfg.temperature,
            top_p=cfg.top_p,
            top_k=getattr(cfg, "top_k", None),
            max_output_tokens=max_tokens,
        )
        thinking_level = getattr(cfg, "thinking_level", None)
        if thinking_level:
            config.thinking_config = types.ThinkingConfig(thinking_level=thinking_level)
        if isinstance(request.prompt, PromptPair):
            config.system_instruction = request.prompt.system_instruction
        if getattr(cfg, "use_grounding", False):
            config.tools = [types.Tool(google_search=types.GoogleSearch())]
        return config

    def build_contents(self, request: InvocationRequest) -> Any:
        text = request.prompt.user_input if isinstance(request.prompt, PromptPair) else request.prompt
        if not request.attachments:
            return text
        parts = [types.Part.from_bytes(data=a.data, mime_type=a.mime_type) for a in request.attachments]
        parts.append(types.Part(text=text))
        return types.Content(role="user", parts=parts)

    async def generate(
        self,
        request: InvocationRequest,
        spec: ModelCapabilitySpec,
        *,
        timeout: float | None = None,
    ) -> InvocationResponse:
        self.validate_parameters(request.config)
        config = self.build_config(request, spec)
        logger.info(
            "[%s] Google call %s (prompt=%d chars, grounding=%s)",
            request.job_id or "-", spec.model_id, len(request.text()), bool(config.tools),
        )
        start = time.monotonic()
        response = await self._client.aio.models.generate_content(
            model=spec.model_id,
            contents=self.build_contents(request),
            config=config,
        )
        return normalize_google_response(
            response, model=spec.model_id, duration=time.monotonic() - start,
        )

    async def aclose(self) -> None:
        await self._client.aio.aclose()
