"""Shared type aliases and helpers for tool parameters."""

from __future__ import annotations

import json
from typing import Annotated, Literal

from pydantic import Field


def coerce_json_param(value: str | dict | list | None, expected_type: type) -> dict | list | None:
    """Parse MCP JSON-RPC string params back to dict/list.

    MCP JSON-RPC transport may serialize dict/list params as JSON strings.
    Pydantic v2 rejects these — this helper coerces them back.

    Args:
        value: The parameter value (possibly a JSON string).
        expected_type: Expected Python type (``dict`` or ``list``).

    Returns:
        Parsed value if coercion succeeded, original value otherwise.
    """
    if not isinstance(value, str):
        return value
    try:
        parsed = json.loads(value)
        if isinstance(parsed, expected_type):
            return parsed
    except (json.JSONDecodeError, TypeError):
        pass
    return value

# ── Literal enums ────────────────────────────────────────────────────────────

Provider = Literal["google", "openai"]
HandlerFamily = Literal[
    "google", "openai-standard", "openai-reasoning", "openai-responses", "deep-research",
]
ReasoningEffort = Literal["minimal", "low", "medium", "high"]
Verbosity = Literal["low", "medium", "high"]
ThinkingLevel = Literal["minimal", "low", "medium", "high"]
DepthTier = Literal["concise", "balanced", "comprehensive"]
ReportLanguage = Literal["en", "nl"]
ResearchStage = Literal["planning", "executing", "publishing", "finalizing", "complete", "error"]

# Every parameter name a capability spec may list as supported.
ParameterName = Literal[
    "temperature", "top_p", "top_k", "max_output_tokens", "reasoning_effort",
    "verbosity", "thinking_level", "use_grounding", "use_web_search", "attachments",
]

# ── Annotated aliases ────────────────────────────────────────────────────────

ModelId = Annotated[str, Field(min_length=1, description="Registered model identifier")]
QueryParam = Annotated[str, Field(min_length=3, max_length=1_000_000, description="Research query or instruction")]
