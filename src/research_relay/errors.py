"""Structured error handling — closed error taxonomy, classification, redaction, tool error model."""

from __future__ import annotations

import asyncio
import re
from collections.abc import Iterable
from enum import Enum
from typing import Any

import httpx
from pydantic import BaseModel

MAX_ERROR_CHARS = 500


class ErrorKind(str, Enum):
    """Machine-readable kinds every surfaced failure is mapped into."""

    VALIDATION = "VALIDATION"
    AUTHENTICATION = "AUTHENTICATION"
    RATE_LIMITED = "RATE_LIMITED"
    NETWORK = "NETWORK"
    TIMEOUT = "TIMEOUT"
    INVALID_RESPONSE = "INVALID_RESPONSE"
    CIRCUIT_OPEN = "CIRCUIT_OPEN"
    EXTERNAL_PROVIDER = "EXTERNAL_PROVIDER"


_HINTS: dict[ErrorKind, str] = {
    ErrorKind.VALIDATION: "Bad request shape or parameter range — fix the input, do not retry",
    ErrorKind.AUTHENTICATION: "Credential missing or rejected — check the provider API key",
    ErrorKind.RATE_LIMITED: "Provider quota exhausted — back off before calling again",
    ErrorKind.NETWORK: "Connectivity failure — retried automatically, check network if it persists",
    ErrorKind.TIMEOUT: "Deadline exceeded — retried automatically, consider a longer timeout",
    ErrorKind.INVALID_RESPONSE: "Provider returned an empty or malformed payload",
    ErrorKind.CIRCUIT_OPEN: "Model is failing repeatedly — calls are paused until the cool-down ends",
    ErrorKind.EXTERNAL_PROVIDER: "Provider error — see message for details",
}


# ── Redaction ────────────────────────────────────────────────────────────────

_SECRET_PATTERNS: tuple[re.Pattern[str], ...] = (
    re.compile(r"(?i)bearer\s+[A-Za-z0-9._~+/=-]+"),
    re.compile(r"sk-[A-Za-z0-9_-]{8,}"),
    re.compile(r"AIza[0-9A-Za-z_-]{10,}"),
    re.compile(r"(?i)((?:api[_-]?key|key|token|access_token)=)[^&\s\"']+"),
    re.compile(r"(?i)(x-goog-api-key[\"']?\s*[:=]\s*[\"']?)[^\s\"',}]+"),
)


def _mask(secret: str) -> str:
    return f"…{secret[-4:]}" if len(secret) > 8 else "…"


def redact(text: str, secrets: Iterable[str] = ()) -> str:
    """Strip credential-shaped substrings and known secrets, then truncate.

    Args:
        text: Raw error text from a provider or transport.
        secrets: Credentials injected at construction time; replaced verbatim.

    Returns:
        Text safe to log or return to callers, at most ``MAX_ERROR_CHARS`` long.
    """
    out = text or ""
    for secret in secrets:
        if secret:
            out = out.replace(secret, _mask(secret))
    for pattern in _SECRET_PATTERNS:
        if pattern.groups:
            out = pattern.sub(lambda m: f"{m.group(1)}[REDACTED]", out)
        else:
            out = pattern.sub("[REDACTED]", out)
    if len(out) > MAX_ERROR_CHARS:
        out = out[: MAX_ERROR_CHARS - 1] + "…"
    return out


# ── Exception hierarchy ──────────────────────────────────────────────────────


class ModelCallError(Exception):
    """Base for every error surfaced by the invocation layer."""

    kind: ErrorKind = ErrorKind.EXTERNAL_PROVIDER
    default_retryable: bool = False

    def __init__(
        self,
        message: str,
        *,
        retryable: bool | None = None,
        retry_after: float | None = None,
        details: dict[str, Any] | None = None,
        model: str | None = None,
    ) -> None:
        super().__init__(message)
        self.message = message
        self.is_retryable = self.default_retryable if retryable is None else retryable
        self.retry_after = retry_after
        self.details = details or {}
        self.model = model
        self.phase: str | None = None

    def __str__(self) -> str:
        return self.message


class ValidationFailed(ModelCallError):
    kind = ErrorKind.VALIDATION


class NotRegistered(ValidationFailed):
    """Model id has no capability spec in the registry."""


class AuthenticationFailed(ModelCallError):
    kind = ErrorKind.AUTHENTICATION


class RateLimited(ModelCallError):
    kind = ErrorKind.RATE_LIMITED


class NetworkError(ModelCallError):
    kind = ErrorKind.NETWORK
    default_retryable = True


class CallTimeout(ModelCallError):
    kind = ErrorKind.TIMEOUT
    default_retryable = True


class InvalidResponse(ModelCallError):
    kind = ErrorKind.INVALID_RESPONSE
    default_retryable = True


class CircuitOpen(ModelCallError):
    kind = ErrorKind.CIRCUIT_OPEN


class ExternalProviderError(ModelCallError):
    kind = ErrorKind.EXTERNAL_PROVIDER


# ── Classification ───────────────────────────────────────────────────────────

_NETWORK_PATTERNS = ("connection refused", "connection reset", "enotfound", "econnrefused",
                     "econnreset", "name or service not known", "network is unreachable")
_RATE_PATTERNS = ("429", "rate limit", "quota", "resource_exhausted")
_TIMEOUT_PATTERNS = ("timed out", "timeout", "deadline exceeded")
_AUTH_PATTERNS = ("401", "unauthorized", "invalid api key", "permission_denied", "unauthenticated")
_SERVICE_PATTERNS = ("500", "502", "503", "504", "service unavailable", "internal error", "overloaded")


def _parse_retry_after(value: Any) -> float | None:
    """Parse a retry-after hint (seconds) from a header or payload value."""
    if value is None:
        return None
    try:
        seconds = float(value)
    except (TypeError, ValueError):
        return None
    return seconds if seconds >= 0 else None


def error_from_status(
    status: int,
    message: str,
    *,
    model: str | None = None,
    retry_after: float | None = None,
) -> ModelCallError:
    """Map an HTTP-style status code onto the taxonomy."""
    details = {"status": status}
    if status in (400, 422):
        return ValidationFailed(message, details=details, model=model)
    if status in (401, 403):
        return AuthenticationFailed(message, details=details, model=model)
    if status == 404:
        return ExternalProviderError(message, details=details, model=model)
    if status == 408:
        return CallTimeout(message, details=details, model=model, retry_after=retry_after)
    if status == 429:
        return RateLimited(message, details=details, model=model, retry_after=retry_after)
    if status >= 500:
        return ExternalProviderError(
            message, retryable=True, details=details, model=model, retry_after=retry_after,
        )
    return ExternalProviderError(message, details=details, model=model)


def _status_of(exc: Exception) -> int | None:
    """Pull an integer status code from SDK errors without importing every SDK."""
    for attr in ("status_code", "code"):
        value = getattr(exc, attr, None)
        if isinstance(value, int) and 100 <= value < 600:
            return value
    return None


def _retry_after_of(exc: Exception) -> float | None:
    response = getattr(exc, "response", None)
    headers = getattr(response, "headers", None)
    if headers is not None:
        try:
            return _parse_retry_after(headers.get("retry-after"))
        except AttributeError:
            return None
    return None


def classify_error(
    exc: BaseException,
    *,
    provider: str = "",
    model: str | None = None,
    secrets: Iterable[str] = (),
) -> ModelCallError:
    """Map any transport/provider exception into exactly one ModelCallError.

    Already-classified errors pass through untouched. Messages are redacted
    before they are stored on the returned error.
    """
    if isinstance(exc, ModelCallError):
        return exc

    label = f"{provider} " if provider else ""
    raw = redact(str(exc) or exc.__class__.__name__, secrets)

    if isinstance(exc, (asyncio.TimeoutError, TimeoutError, httpx.TimeoutException)):
        return CallTimeout(f"{label}request timed out: {raw}", model=model)

    # openai.APITimeoutError subclasses APIConnectionError; check the name first
    name = type(exc).__name__
    if name == "APITimeoutError":
        return CallTimeout(f"{label}request timed out: {raw}", model=model)
    if name == "APIConnectionError" or isinstance(exc, (httpx.TransportError, ConnectionError)):
        return NetworkError(f"{label}network error: {raw}", model=model)

    status = _status_of(exc)
    if status is not None:
        return error_from_status(
            status, f"{label}API error {status}: {raw}",
            model=model, retry_after=_retry_after_of(exc),
        )

    if isinstance(exc, OSError):
        return NetworkError(f"{label}network error: {raw}", model=model)

    lowered = raw.lower()
    if any(p in lowered for p in _RATE_PATTERNS):
        return RateLimited(f"{label}rate limit exceeded: {raw}", model=model)
    if any(p in lowered for p in _AUTH_PATTERNS):
        return AuthenticationFailed(f"{label}authentication failed: {raw}", model=model)
    if any(p in lowered for p in _TIMEOUT_PATTERNS):
        return CallTimeout(f"{label}request timed out: {raw}", model=model)
    if any(p in lowered for p in _NETWORK_PATTERNS):
        return NetworkError(f"{label}network error: {raw}", model=model)
    if any(p in lowered for p in _SERVICE_PATTERNS):
        return ExternalProviderError(f"{label}service error: {raw}", retryable=True, model=model)

    return ExternalProviderError(f"{label}{raw}".strip(), model=model)


# ── Tool surface ─────────────────────────────────────────────────────────────


class ToolError(BaseModel):
    """Structured error returned from any tool."""

    error: str
    kind: str
    hint: str
    retryable: bool = False
    retry_after_seconds: float | None = None
    phase: str | None = None


def make_tool_error(error: Exception) -> dict:
    """Create a serialisable ToolError dict from an exception."""
    classified = classify_error(error)
    return ToolError(
        error=redact(classified.message),
        kind=classified.kind.value,
        hint=_HINTS[classified.kind],
        retryable=classified.is_retryable,
        retry_after_seconds=classified.retry_after,
        phase=classified.phase,
    ).model_dump(mode="json")
