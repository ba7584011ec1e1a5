"""Resilience wrapper applied uniformly to every provider handler.

:class:`ResilientHandler` decorates a :class:`~research_relay.handlers.base.ProviderHandler`
and layers, in order: input validation, the model's circuit breaker, a
per-attempt deadline, bounded retry with backoff, response validation and
error classification/redaction. Callers only ever see an
:class:`~research_relay.models.invocation.InvocationResponse` or exactly one
:class:`~research_relay.errors.ModelCallError`.
"""

from __future__ import annotations

import asyncio
import logging

from .breaker import BreakerBoard
from .config import MAX_PROMPT_CHARS
from .errors import (
    CallTimeout,
    ErrorKind,
    InvalidResponse,
    ModelCallError,
    ValidationFailed,
    classify_error,
)
from .handlers.base import ProviderHandler
from .models.invocation import GoogleConfig, InvocationRequest, InvocationResponse, OpenAIConfig
from .registry import ModelCapabilitySpec
from .retry import RetryPolicy, with_retry

logger = logging.getLogger(__name__)

KNOWN_PROVIDERS = frozenset({"google", "openai"})


class ResilientHandler:
    """Decorator that owns retry, timeout, breaker and normalization for one handler."""

    def __init__(
        self,
        inner: ProviderHandler,
        *,
        breakers: BreakerBoard,
        policy: RetryPolicy | None = None,
        secrets: tuple[str, ...] = (),
        max_prompt_chars: int = MAX_PROMPT_CHARS,
    ) -> None:
        self.inner = inner
        self.family = inner.family
        self.breakers = breakers
        self.policy = policy or RetryPolicy()
        self._secrets = secrets
        self._max_prompt_chars = max_prompt_chars

    def get_supported_parameters(self) -> frozenset[str]:
        return self.inner.get_supported_parameters()

    def validate_parameters(self, config: GoogleConfig | OpenAIConfig) -> None:
        self.inner.validate_parameters(config)

    def validate_input(self, request: InvocationRequest) -> None:
        """Reject requests that can never succeed, before any transport work."""
        text = request.text()
        if not text:
            raise ValidationFailed("Prompt must not be empty", model=request.model)
        if not text.strip():
            raise ValidationFailed("Prompt must not be whitespace-only", model=request.model)
        if len(text) > self._max_prompt_chars:
            raise ValidationFailed(
                f"Prompt is {len(text)} characters; the limit is {self._max_prompt_chars}",
                model=request.model,
            )
        if request.config.provider not in KNOWN_PROVIDERS:
            raise ValidationFailed(f"Unknown provider '{request.config.provider}'", model=request.model)
        self.inner.validate_parameters(request.config)

    @staticmethod
    def validate_response(response: InvocationResponse, model: str) -> InvocationResponse:
        if not isinstance(response, InvocationResponse):
            raise InvalidResponse(f"{model} handler returned {type(response).__name__}", model=model)
        if not response.content or not response.content.strip():
            raise InvalidResponse(f"{model} returned empty content", model=model)
        return response

    def _classify(self, exc: BaseException, model: str) -> ModelCallError:
        error = classify_error(exc, provider=self.family, model=model, secrets=self._secrets)
        if error.model is None:
            error.model = model
        return error

    async def _attempt(
        self,
        request: InvocationRequest,
        spec: ModelCapabilitySpec,
        timeout: float | None,
    ) -> InvocationResponse:
        try:
            response = await asyncio.wait_for(
                self.inner.generate(request, spec, timeout=timeout), timeout=timeout,
            )
        except asyncio.TimeoutError:
            message = f"{spec.model_id} timed out"
            if timeout is not None:
                message = f"{spec.model_id} did not respond within {timeout:.0f}s"
            raise CallTimeout(message, model=spec.model_id) from None
        return self.validate_response(response, spec.model_id)

    async def generate(
        self,
        request: InvocationRequest,
        spec: ModelCapabilitySpec,
        *,
        timeout: float | None = None,
    ) -> InvocationResponse:
        """Run one logical call: validate, guard, attempt with retries, record outcome."""
        model = spec.model_id
        self.validate_input(request)
        await self.breakers.acquire(model)
        try:
            response = await with_retry(
                lambda: self._attempt(request, spec, timeout),
                self.policy,
                classify=lambda exc: self._classify(exc, model),
                label=model,
            )
        except asyncio.CancelledError:
            await self.breakers.release(model)
            raise
        except ModelCallError as exc:
            if exc.kind is ErrorKind.VALIDATION:
                await self.breakers.release(model)
            else:
                await self.breakers.record_failure(model)
            logger.error("%s call failed (%s): %s", model, exc.kind.value, exc.message)
            raise
        await self.breakers.record_success(model)
        return response

    async def aclose(self) -> None:
        close = getattr(self.inner, "aclose", None)
        if close is not None:
            await close()
