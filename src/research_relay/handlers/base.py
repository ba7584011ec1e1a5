"""Provider handler contract and shared normalization helpers.

Every provider family implements :class:`ProviderHandler`. Handlers do the
raw call and turn the provider's response shape into one
:class:`~research_relay.models.invocation.InvocationResponse`; retries,
timeouts and circuit breaking are layered on top by
:class:`~research_relay.resilience.ResilientHandler`.
"""

from __future__ import annotations

import logging
from typing import Protocol, runtime_checkable

from ..errors import ValidationFailed
from ..models.invocation import GoogleConfig, InvocationRequest, InvocationResponse, OpenAIConfig
from ..registry import ModelCapabilitySpec

logger = logging.getLogger(__name__)

INCOMPLETE_SUFFIX = "[Response incomplete ({reason}): output was cut off before a final answer]"


@runtime_checkable
class ProviderHandler(Protocol):
    """One implementation per provider family."""

    family: str

    def get_supported_parameters(self) -> frozenset[str]: ...

    def validate_parameters(self, config: GoogleConfig | OpenAIConfig) -> None: ...

    async def generate(
        self,
        request: InvocationRequest,
        spec: ModelCapabilitySpec,
        *,
        timeout: float | None = None,
    ) -> InvocationResponse: ...


def require_range(
    name: str,
    value: float | int | None,
    low: float,
    high: float | None,
    *,
    family: str,
) -> None:
    """Raise ValidationFailed when *value* is set and outside ``[low, high]``."""
    if value is None:
        return
    if value < low or (high is not None and value > high):
        bound = f"between {low} and {high}" if high is not None else f"at least {low}"
        raise ValidationFailed(f"{name} must be {bound} for {family}, got {value}")


def warn_ignored(family: str, model: str, name: str, value: object, neutral: object) -> None:
    """Log (not raise) when a family-wide unsupported parameter carries a non-neutral value."""
    if value is not None and value != neutral:
        logger.warning("%s ignores %s for %s (got %r)", family, name, model, value)


def pick_content(
    message: str,
    reasoning: str = "",
    *,
    incomplete: bool = False,
    reason: str | None = None,
) -> str:
    """Choose the canonical content string from heterogeneous response segments.

    Precedence: assistant/message text, then reasoning text. When neither is
    populated and the provider reports truncation, return a diagnostic
    marker so the truncation stays visible. Otherwise return ``""`` (the
    resilience layer turns that into InvalidResponse).
    """
    if message.strip():
        return message
    if reasoning.strip():
        return reasoning
    if incomplete:
        return INCOMPLETE_SUFFIX.format(reason=reason or "max_output_tokens")
    return ""
