"""Model capability registry — static, read-only map from model id to capability spec."""

from __future__ import annotations

from collections.abc import Iterable
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .errors import NotRegistered
from .types import HandlerFamily, ParameterName, Provider

_GEMINI_PARAMS: frozenset[ParameterName] = frozenset(
    {"temperature", "top_p", "top_k", "max_output_tokens", "use_grounding", "attachments"}
)
_GEMINI3_PARAMS: frozenset[ParameterName] = _GEMINI_PARAMS | {"thinking_level"}
# The in-process pipeline maps these onto a research run; sampling beyond
# temperature and inline files have no counterpart there.
DEEP_RESEARCH_PARAMS: frozenset[ParameterName] = frozenset(
    {"temperature", "max_output_tokens", "thinking_level", "use_grounding"}
)
_CHAT_PARAMS: frozenset[ParameterName] = frozenset(
    {"temperature", "top_p", "max_output_tokens", "reasoning_effort", "verbosity"}
)
_REASONING_PARAMS: frozenset[ParameterName] = frozenset(
    {"max_output_tokens", "reasoning_effort", "verbosity"}
)
_RESPONSES_PARAMS: frozenset[ParameterName] = _REASONING_PARAMS | {"use_web_search", "attachments"}


class ModelCapabilitySpec(BaseModel):
    """Static description of one model's parameters, limits and transport."""

    model_config = ConfigDict(frozen=True)

    model_id: str
    provider: Provider
    handler_family: HandlerFamily
    supported_parameters: frozenset[ParameterName]
    max_output_tokens: int = Field(gt=0)
    max_input_tokens: int = Field(default=200_000, gt=0)
    default_config: dict[str, Any] = Field(default_factory=dict)
    timeout_seconds: float = Field(default=120.0, gt=0)
    max_timeout_seconds: float = Field(default=1800.0, gt=0)
    requires_responses_api: bool = False
    max_requests_per_minute: int | None = None

    def supports(self, parameter: str) -> bool:
        return parameter in self.supported_parameters


DEFAULT_MODELS: tuple[ModelCapabilitySpec, ...] = (
    ModelCapabilitySpec(
        model_id="gemini-2.5-pro", provider="google", handler_family="google",
        supported_parameters=_GEMINI_PARAMS, max_output_tokens=65_535, max_input_tokens=1_000_000,
        default_config={"temperature": 0.1, "top_p": 0.95, "top_k": 20, "max_output_tokens": 8192},
        timeout_seconds=300, max_requests_per_minute=60,
    ),
    ModelCapabilitySpec(
        model_id="gemini-2.5-flash", provider="google", handler_family="google",
        supported_parameters=_GEMINI_PARAMS, max_output_tokens=65_535, max_input_tokens=1_000_000,
        default_config={"temperature": 0.1, "top_p": 0.95, "top_k": 20, "max_output_tokens": 8192},
        timeout_seconds=300, max_requests_per_minute=1000,
    ),
    ModelCapabilitySpec(
        model_id="gemini-3-pro-preview", provider="google", handler_family="google",
        supported_parameters=_GEMINI3_PARAMS, max_output_tokens=64_000, max_input_tokens=1_000_000,
        default_config={
            "temperature": 1.0, "top_p": 0.95, "top_k": 40,
            "max_output_tokens": 16_384, "thinking_level": "high",
        },
        timeout_seconds=600, max_requests_per_minute=60,
    ),
    ModelCapabilitySpec(
        model_id="gemini-3-flash-preview", provider="google", handler_family="google",
        supported_parameters=_GEMINI3_PARAMS, max_output_tokens=64_000, max_input_tokens=1_000_000,
        default_config={
            "temperature": 1.0, "top_p": 0.95, "top_k": 40,
            "max_output_tokens": 16_384, "thinking_level": "high",
        },
        timeout_seconds=600, max_requests_per_minute=1000,
    ),
    ModelCapabilitySpec(
        model_id="gemini-3-pro-deep-research", provider="google", handler_family="deep-research",
        supported_parameters=DEEP_RESEARCH_PARAMS, max_output_tokens=64_000, max_input_tokens=1_000_000,
        default_config={"temperature": 1.0, "max_output_tokens": 8192},
        timeout_seconds=1800, max_requests_per_minute=10,
    ),
    ModelCapabilitySpec(
        model_id="gpt-4o", provider="openai", handler_family="openai-standard",
        supported_parameters=_CHAT_PARAMS, max_output_tokens=16_384, max_input_tokens=128_000,
        default_config={"temperature": 0.1, "top_p": 0.95, "max_output_tokens": 8192},
        timeout_seconds=300, max_requests_per_minute=500,
    ),
    ModelCapabilitySpec(
        model_id="gpt-4o-mini", provider="openai", handler_family="openai-standard",
        supported_parameters=_CHAT_PARAMS, max_output_tokens=16_384, max_input_tokens=128_000,
        default_config={"temperature": 0.1, "top_p": 0.95, "max_output_tokens": 8192},
        timeout_seconds=300, max_requests_per_minute=1000,
    ),
    ModelCapabilitySpec(
        model_id="gpt-5", provider="openai", handler_family="openai-responses",
        supported_parameters=_RESPONSES_PARAMS, max_output_tokens=128_000, max_input_tokens=272_000,
        default_config={"max_output_tokens": 32_000},
        timeout_seconds=600, requires_responses_api=True, max_requests_per_minute=50,
    ),
    ModelCapabilitySpec(
        model_id="o3-mini", provider="openai", handler_family="openai-reasoning",
        supported_parameters=_REASONING_PARAMS, max_output_tokens=100_000, max_input_tokens=200_000,
        default_config={"max_output_tokens": 8192},
        timeout_seconds=180, max_requests_per_minute=100,
    ),
    ModelCapabilitySpec(
        model_id="o3", provider="openai", handler_family="openai-reasoning",
        supported_parameters=_REASONING_PARAMS, max_output_tokens=100_000, max_input_tokens=200_000,
        default_config={"max_output_tokens": 8192},
        timeout_seconds=600, max_requests_per_minute=50,
    ),
    ModelCapabilitySpec(
        model_id="o3-deep-research", provider="openai", handler_family="deep-research",
        supported_parameters=_RESPONSES_PARAMS, max_output_tokens=100_000, max_input_tokens=200_000,
        default_config={"max_output_tokens": 32_000},
        timeout_seconds=1800, requires_responses_api=True, max_requests_per_minute=10,
    ),
)


class ModelRegistry:
    """Immutable lookup table built once at startup.

    Duplicate model ids are rejected at construction so every id resolves to
    exactly one spec.
    """

    def __init__(self, specs: Iterable[ModelCapabilitySpec] = DEFAULT_MODELS) -> None:
        table: dict[str, ModelCapabilitySpec] = {}
        for spec in specs:
            if spec.model_id in table:
                raise ValueError(f"Duplicate model id in registry: {spec.model_id}")
            table[spec.model_id] = spec
        self._specs = table

    def lookup(self, model_id: str) -> ModelCapabilitySpec:
        """Return the spec for *model_id* or raise NotRegistered."""
        try:
            return self._specs[model_id]
        except KeyError:
            known = ", ".join(sorted(self._specs)) or "(none)"
            raise NotRegistered(
                f"Model '{model_id}' is not registered. Known models: {known}",
                model=model_id,
            ) from None

    def list_supported_parameters(self, model_id: str) -> frozenset[str]:
        return frozenset(self.lookup(model_id).supported_parameters)

    def list_available_models(self) -> list[ModelCapabilitySpec]:
        return list(self._specs.values())

    def __contains__(self, model_id: object) -> bool:
        return model_id in self._specs

    def __len__(self) -> int:
        return len(self._specs)
