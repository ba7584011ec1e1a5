"""Invocation models — per-provider request configs, requests, and normalized responses.

Request configs are a discriminated union on ``provider``; each family only
declares the parameters its API understands, and ``extra="forbid"`` makes
unknown keys fail at the boundary instead of leaking downstream.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Annotated, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

from ..types import ReasoningEffort, ThinkingLevel, Verbosity


class Attachment(BaseModel):
    """Binary input forwarded to providers that accept inline files."""

    model_config = ConfigDict(frozen=True)

    mime_type: str = Field(min_length=3)
    data: bytes
    filename: str = "attachment"


class _BaseModelConfig(BaseModel):
    model_config = ConfigDict(frozen=True, extra="forbid")

    model: str = Field(min_length=1)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    top_p: float | None = Field(default=None, ge=0.0, le=1.0)
    max_output_tokens: int | None = Field(default=None, ge=1, le=1_000_000)


class GoogleConfig(_BaseModelConfig):
    """Parameters understood by the Google (Gemini) family."""

    provider: Literal["google"] = "google"
    top_k: int | None = Field(default=None, ge=1, le=100)
    thinking_level: ThinkingLevel | None = None
    use_grounding: bool = False


class OpenAIConfig(_BaseModelConfig):
    """Parameters understood by the OpenAI families (chat, reasoning, Responses)."""

    provider: Literal["openai"] = "openai"
    reasoning_effort: ReasoningEffort | None = None
    verbosity: Verbosity | None = None
    use_web_search: bool = False


ModelConfig = Annotated[Union[GoogleConfig, OpenAIConfig], Field(discriminator="provider")]


class PromptPair(BaseModel):
    """Separate system instruction and user input."""

    model_config = ConfigDict(frozen=True)

    system_instruction: str
    user_input: str

    def combined(self) -> str:
        """Flatten into the single-prompt form used by transports without a system slot."""
        return f"{self.system_instruction}\n\n### USER INPUT:\n{self.user_input}"


class InvocationRequest(BaseModel):
    """One model call: a prompt (single string or pair) plus its config."""

    model_config = ConfigDict(frozen=True)

    prompt: str | PromptPair
    config: ModelConfig
    attachments: tuple[Attachment, ...] = ()
    job_id: str | None = None

    @property
    def model(self) -> str:
        return self.config.model

    @property
    def wants_grounding(self) -> bool:
        """True when the caller asked for provider-side web search of either flavour."""
        cfg = self.config
        return bool(getattr(cfg, "use_grounding", False) or getattr(cfg, "use_web_search", False))

    def text(self) -> str:
        """Combined prompt text (used for validation and logging lengths)."""
        if isinstance(self.prompt, PromptPair):
            return self.prompt.combined()
        return self.prompt


class UsageStats(BaseModel):
    """Token accounting normalized across providers."""

    input_tokens: int = 0
    output_tokens: int = 0
    reasoning_tokens: int = 0
    total_tokens: int = 0


class Source(BaseModel):
    """A citation surfaced by grounding / web search."""

    url: str = ""
    title: str = ""
    snippet: str = ""
    relevance_score: float | None = None

    @property
    def dedup_key(self) -> str:
        return self.url or self.title


class ResponseMetadata(BaseModel):
    """Provider-level details attached to a response."""

    model: str
    provider: str = ""
    finish_reason: str | None = None
    incomplete: bool = False
    incomplete_reason: str | None = None
    sources: list[Source] = Field(default_factory=list)
    extra: dict = Field(default_factory=dict)


class InvocationResponse(BaseModel):
    """Validated response returned by every handler."""

    content: str
    usage: UsageStats = Field(default_factory=UsageStats)
    duration: float = 0.0
    metadata: ResponseMetadata
    created_at: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))

    @field_validator("duration", mode="before")
    @classmethod
    def clamp_duration(cls, value: object) -> float:
        """Negative or non-numeric durations collapse to zero."""
        try:
            seconds = float(value)  # type: ignore[arg-type]
        except (TypeError, ValueError):
            return 0.0
        if seconds != seconds or seconds < 0:  # NaN or negative
            return 0.0
        return seconds
