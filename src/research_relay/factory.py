"""Invocation factory — validate, filter, dispatch.

The single entry point for model calls. It resolves the capability spec,
normalizes the parameter set against it, picks the wrapped handler for the
model's family and records the outcome into the call monitor.
"""

from __future__ import annotations

import logging
import time
from collections.abc import Mapping
from typing import Any

from .config import RelayConfig
from .errors import AuthenticationFailed, ModelCallError, ValidationFailed, classify_error
from .handlers.base import ProviderHandler
from .models.invocation import GoogleConfig, InvocationRequest, InvocationResponse, OpenAIConfig
from .monitoring import CallMonitor, CallRecord
from .registry import ModelCapabilitySpec, ModelRegistry

logger = logging.getLogger(__name__)

DEFAULT_MAX_OUTPUT_TOKENS = 8192

# Values sent in place of unsupported sampling parameters.
NEUTRAL_DEFAULTS: dict[str, Any] = {
    "temperature": 1.0,
    "top_p": 1.0,
    "top_k": 20,
}

# Always present on the outgoing config, per provider.
_REQUIRED_FIELDS: dict[str, tuple[str, ...]] = {
    "google": ("temperature", "top_p", "top_k", "max_output_tokens"),
    "openai": ("temperature", "top_p", "max_output_tokens"),
}
_OPTIONAL_FIELDS = ("reasoning_effort", "verbosity", "thinking_level")
_FLAG_FIELDS = ("use_grounding", "use_web_search")


def _config_fields(config: GoogleConfig | OpenAIConfig) -> set[str]:
    return set(type(config).model_fields) - {"model", "provider"}


def deep_research_variant(model_id: str) -> str:
    """Sub-family of a deep-research model, taken from its leading name segment."""
    head = model_id.split("-", 1)[0].lower()
    return "gemini" if head == "gemini" else "openai"


def handler_key(spec: ModelCapabilitySpec) -> str:
    if spec.handler_family == "deep-research":
        return f"deep-research:{deep_research_variant(spec.model_id)}"
    return spec.handler_family


class InvocationFactory:
    """Validates requests against the registry and dispatches to wrapped handlers."""

    def __init__(
        self,
        registry: ModelRegistry,
        handlers: Mapping[str, ProviderHandler],
        *,
        config: RelayConfig,
        monitor: CallMonitor | None = None,
    ) -> None:
        self.registry = registry
        self.handlers = dict(handlers)
        self.config = config
        self.monitor = monitor or CallMonitor()

    # ── Validation and filtering ────────────────────────────────────────────

    def validate_config(self, request: InvocationRequest) -> ModelCapabilitySpec:
        """Resolve the spec and check provider/model consistency.

        Caller-set parameters outside the model's supported set are logged,
        not rejected; :meth:`filter_parameters` neutralizes them.
        """
        spec = self.registry.lookup(request.model)
        if request.config.provider != spec.provider:
            raise ValidationFailed(
                f"Model '{spec.model_id}' belongs to provider '{spec.provider}', "
                f"but the request config is for '{request.config.provider}'",
                model=spec.model_id,
            )
        cfg = request.config
        for name in sorted(cfg.model_fields_set - {"model", "provider"}):
            value = getattr(cfg, name)
            if value is None or value is False:
                continue
            if not spec.supports(name):
                logger.warning("%s does not support %s (got %r); it will be neutralized", spec.model_id, name, value)
        if request.attachments and not spec.supports("attachments"):
            logger.warning("%s does not accept attachments; %d dropped", spec.model_id, len(request.attachments))
        return spec

    def filter_parameters(self, request: InvocationRequest, spec: ModelCapabilitySpec) -> InvocationRequest:
        """Return a request whose config only carries what *spec* supports.

        Required fields are always present: supported-but-omitted ones take the
        spec default, unsupported ones take the neutral default. Optional
        parameters the model does not support become ``None``/``False``. Pure
        and idempotent.
        """
        cfg = request.config
        fields = _config_fields(cfg)
        update: dict[str, Any] = {}

        for name in _REQUIRED_FIELDS[cfg.provider]:
            current = getattr(cfg, name)
            if name == "max_output_tokens":
                fallback = spec.default_config.get("max_output_tokens", DEFAULT_MAX_OUTPUT_TOKENS)
                if not spec.supports(name) or current is None:
                    update[name] = fallback
                continue
            if not spec.supports(name):
                update[name] = NEUTRAL_DEFAULTS[name]
            elif current is None:
                update[name] = spec.default_config.get(name, NEUTRAL_DEFAULTS[name])

        for name in _OPTIONAL_FIELDS:
            if name in fields and not spec.supports(name):
                update[name] = None
        for name in _FLAG_FIELDS:
            if name in fields and not spec.supports(name):
                update[name] = False

        changes: dict[str, Any] = {}
        if update:
            changes["config"] = cfg.model_copy(update=update)
        if request.attachments and not spec.supports("attachments"):
            changes["attachments"] = ()
        return request.model_copy(update=changes) if changes else request

    # ── Dispatch ────────────────────────────────────────────────────────────

    def select_handler(self, spec: ModelCapabilitySpec) -> ProviderHandler:
        key = handler_key(spec)
        handler = self.handlers.get(key)
        if handler is None:
            raise AuthenticationFailed(
                f"No handler available for '{key}' (model {spec.model_id}); "
                f"is the {spec.provider} API key configured?",
                model=spec.model_id,
            )
        return handler

    def effective_timeout(self, request: InvocationRequest, spec: ModelCapabilitySpec) -> float:
        """Model timeout (or family override), extended when web search is requested."""
        timeout = self.config.family_timeouts.get(spec.handler_family, spec.timeout_seconds)
        if request.wants_grounding:
            timeout = max(timeout, self.config.grounding_timeout_seconds)
        return min(timeout, spec.max_timeout_seconds)

    def config_for(
        self,
        model_id: str,
        *,
        temperature: float | None = None,
        max_output_tokens: int | None = None,
        effort: str | None = None,
        grounding: bool = False,
    ) -> GoogleConfig | OpenAIConfig:
        """Build a provider-correct config for internal callers (the research pipeline).

        Only parameters the model supports are set, so internally generated
        requests never trip the unsupported-parameter warnings.
        """
        spec = self.registry.lookup(model_id)
        if max_output_tokens is not None:
            max_output_tokens = min(max_output_tokens, spec.max_output_tokens)
        params: dict[str, Any] = {"model": model_id}
        if temperature is not None and spec.supports("temperature"):
            params["temperature"] = temperature
        if max_output_tokens is not None and spec.supports("max_output_tokens"):
            params["max_output_tokens"] = max_output_tokens
        if spec.provider == "google":
            if effort and spec.supports("thinking_level"):
                params["thinking_level"] = effort
            if grounding and spec.supports("use_grounding"):
                params["use_grounding"] = True
            return GoogleConfig(**params)
        if effort and spec.supports("reasoning_effort"):
            params["reasoning_effort"] = effort
        if grounding and spec.supports("use_web_search"):
            params["use_web_search"] = True
        return OpenAIConfig(**params)

    async def call(self, request: InvocationRequest) -> InvocationResponse:
        """Validate, filter and dispatch one request through its wrapped handler.

        The wrapped handler owns retries and the model's breaker; this method
        adds the effective deadline and records the call for monitoring.

        Raises:
            ModelCallError: Exactly one classified error on failure.
        """
        spec = self.validate_config(request)
        filtered = self.filter_parameters(request, spec)
        handler = self.select_handler(spec)
        timeout = self.effective_timeout(filtered, spec)

        start = time.monotonic()
        try:
            response = await handler.generate(filtered, spec, timeout=timeout)
        except ModelCallError as exc:
            self._record(filtered, spec, start, error=exc)
            raise
        except Exception as exc:
            error = classify_error(exc, provider=spec.provider, model=spec.model_id, secrets=self.config.secrets)
            self._record(filtered, spec, start, error=error)
            raise error from exc
        self._record(filtered, spec, start, response=response)
        return response

    def _record(
        self,
        request: InvocationRequest,
        spec: ModelCapabilitySpec,
        start: float,
        *,
        response: InvocationResponse | None = None,
        error: ModelCallError | None = None,
    ) -> None:
        self.monitor.record(CallRecord(
            model=spec.model_id,
            provider=spec.provider,
            duration=time.monotonic() - start,
            success=error is None,
            error_kind=error.kind.value if error is not None else None,
            prompt_chars=len(request.text()),
            response_chars=len(response.content) if response is not None else 0,
            tokens_used=response.usage.total_tokens if response is not None else 0,
            timestamp=self.monitor.now(),
            job_id=request.job_id,
        ))
