"""OpenAI Responses API handler (gpt-5 family and o3-deep-research).

The Responses API returns a list of heterogeneous output items. Message
items carry the answer; reasoning items carry an optional summary. The SDK
object is normalized through ``model_dump()`` so parsing only deals with
plain dicts.
"""

from __future__ import annotations

import base64
import logging
import time
from typing import Any

from openai import AsyncOpenAI

from ..errors import AuthenticationFailed
from ..models.invocation import (
    Attachment,
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
from .base import pick_content, require_range, warn_ignored

logger = logging.getLogger(__name__)


def _attachment_part(attachment: Attachment) -> dict[str, Any]:
    data_url = f"data:{attachment.mime_type};base64,{base64.b64encode(attachment.data).decode('ascii')}"
    if attachment.mime_type.startswith("image/"):
        return {"type": "input_image", "image_url": data_url}
    return {"type": "input_file", "filename": attachment.filename, "file_data": data_url}


def _collect_segments(payload: dict[str, Any]) -> tuple[list[str], list[str], list[Source]]:
    """Split output items into message text, reasoning summaries and cited sources."""
    messages: list[str] = []
    reasoning: list[str] = []
    sources: list[Source] = []
    for item in payload.get("output") or []:
        kind = item.get("type")
        if kind == "message":
            for part in item.get("content") or []:
                if part.get("type") == "output_text" and part.get("text"):
                    messages.append(part["text"])
                for ann in part.get("annotations") or []:
                    if ann.get("type") == "url_citation":
                        sources.append(Source(url=ann.get("url") or "", title=ann.get("title") or ""))
        elif kind == "reasoning":
            for summary in item.get("summary") or []:
                if summary.get("text"):
                    reasoning.append(summary["text"])
    return messages, reasoning, sources


def normalize_responses_payload(
    payload: dict[str, Any],
    *,
    model: str,
    duration: float,
) -> InvocationResponse:
    """Turn a Responses API payload dict into an InvocationResponse.

    A top-level ``output_text`` counts as message text. ``status ==
    "incomplete"`` is preserved on the metadata; if nothing usable came back
    the content becomes partial text plus a diagnostic suffix.
    """
    messages, reasoning, sources = _collect_segments(payload)
    output_text = payload.get("output_text")
    if isinstance(output_text, str) and output_text.strip() and not messages:
        messages.append(output_text)

    status = payload.get("status")
    incomplete = status == "incomplete"
    reason = (payload.get("incomplete_details") or {}).get("reason") if incomplete else None
    if incomplete:
        logger.warning("%s returned an incomplete response (%s)", model, reason or "unknown")

    usage = payload.get("usage") or {}
    details = usage.get("output_tokens_details") or {}
    return InvocationResponse(
        content=pick_content(
            "\n\n".join(messages),
            "\n\n".join(reasoning),
            incomplete=incomplete,
            reason=reason,
        ),
        usage=UsageStats(
            input_tokens=usage.get("input_tokens") or 0,
            output_tokens=usage.get("output_tokens") or 0,
            reasoning_tokens=details.get("reasoning_tokens") or 0,
            total_tokens=usage.get("total_tokens") or 0,
        ),
        duration=duration,
        metadata=ResponseMetadata(
            model=model,
            provider="openai",
            finish_reason=status,
            incomplete=incomplete,
            incomplete_reason=reason,
            sources=sources,
            extra={"response_id": payload.get("id")} if payload.get("id") else {},
        ),
    )


class OpenAIResponsesHandler:
    """Responses API transport.

    In deep-research mode the web-search tool is always attached and a
    reasoning summary is requested, since o3-deep-research refuses calls
    without a data source.
    """

    def __init__(
        self,
        api_key: str,
        *,
        deep_research: bool = False,
        client: AsyncOpenAI | None = None,
    ) -> None:
        if client is None and not api_key:
            raise AuthenticationFailed("No OpenAI API key — set OPENAI_API_KEY")
        self._client = client or AsyncOpenAI(api_key=api_key, max_retries=0)
        self.deep_research = deep_research
        self.family = "deep-research" if deep_research else "openai-responses"

    def get_supported_parameters(self) -> frozenset[str]:
        return frozenset({"max_output_tokens", "reasoning_effort", "verbosity", "use_web_search", "attachments"})

    def validate_parameters(self, config: GoogleConfig | OpenAIConfig) -> None:
        require_range("max_output_tokens", config.max_output_tokens, 1, None, family=self.family)
        warn_ignored(self.family, config.model, "temperature", config.temperature, 1.0)
        warn_ignored(self.family, config.model, "top_p", config.top_p, 1.0)

    def build_kwargs(self, request: InvocationRequest, spec: ModelCapabilitySpec) -> dict[str, Any]:
        cfg = request.config
        if isinstance(request.prompt, PromptPair):
            instructions: str | None = request.prompt.system_instruction
            text = request.prompt.user_input
        else:
            instructions, text = None, request.prompt

        kwargs: dict[str, Any] = {"model": spec.model_id}
        if request.attachments:
            content = [{"type": "input_text", "text": text}]
            content.extend(_attachment_part(a) for a in request.attachments)
            kwargs["input"] = [{"role": "user", "content": content}]
        else:
            kwargs["input"] = text
        if instructions:
            kwargs["instructions"] = instructions
        if cfg.max_output_tokens is not None:
            kwargs["max_output_tokens"] = cfg.max_output_tokens

        reasoning: dict[str, str] = {}
        effort = getattr(cfg, "reasoning_effort", None)
        if effort:
            reasoning["effort"] = effort
        if self.deep_research:
            reasoning["summary"] = "auto"
        if reasoning:
            kwargs["reasoning"] = reasoning

        verbosity = getattr(cfg, "verbosity", None)
        if verbosity:
            kwargs["text"] = {"verbosity": verbosity}

        if self.deep_research:
            kwargs["tools"] = [{"type": "web_search_preview"}]
        elif getattr(cfg, "use_web_search", False):
            kwargs["tools"] = [{"type": "web_search"}]
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
            "[%s] %s call %s (prompt=%d chars, tools=%s)",
            request.job_id or "-", self.family, spec.model_id, len(request.text()),
            [t["type"] for t in kwargs.get("tools", [])],
        )
        start = time.monotonic()
        response = await self._client.responses.create(**kwargs, timeout=timeout)
        payload = response.model_dump() if hasattr(response, "model_dump") else dict(response)
        return normalize_responses_payload(payload, model=spec.model_id, duration=time.monotonic() - start)

    async def aclose(self) -> None:
        await self._client.close()
