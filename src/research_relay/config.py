"""Relay configuration via environment variables."""

from __future__ import annotations

import json
import logging
import os

from pydantic import BaseModel, Field, field_validator

MAX_PROMPT_CHARS = 1_000_000

logger = logging.getLogger(__name__)


def _is_env_placeholder(value: str) -> bool:
    """Return True when *value* looks like an unresolved shell placeholder."""
    if value.startswith("${") and value.endswith("}"):
        inner = value[2:-1].strip()
        if ":-" in inner:
            inner = inner.split(":-", 1)[0].strip()
        return bool(inner) and all(ch.isalnum() or ch == "_" for ch in inner)
    if value.startswith("$"):
        inner = value[1:].strip()
        return bool(inner) and all(ch.isalnum() or ch == "_" for ch in inner)
    return False


def _secret_from_env(*names: str) -> str:
    """Return the first set, non-placeholder value among *names*."""
    for name in names:
        value = os.getenv(name, "").strip()
        if value and not _is_env_placeholder(value):
            return value
    return ""


def _parse_family_timeouts(raw: str) -> dict[str, float]:
    """Parse ``RELAY_FAMILY_TIMEOUTS`` (JSON object family -> seconds).

    Malformed input is logged and ignored so a typo never blocks startup.
    """
    if not raw.strip():
        return {}
    try:
        parsed = json.loads(raw)
    except json.JSONDecodeError:
        logger.warning("RELAY_FAMILY_TIMEOUTS is not valid JSON, ignoring")
        return {}
    if not isinstance(parsed, dict):
        logger.warning("RELAY_FAMILY_TIMEOUTS must be a JSON object, ignoring")
        return {}
    try:
        return {str(k): float(v) for k, v in parsed.items()}
    except (TypeError, ValueError):
        logger.warning("RELAY_FAMILY_TIMEOUTS values must be numbers of seconds, ignoring")
        return {}


def _resolve_tracing_enabled(flag_value: str, tracking_uri: str) -> bool:
    """Derive tracing_enabled from env vars.

    - ``RELAY_TRACING_ENABLED=false`` → always disabled (explicit opt-out).
    - Otherwise enabled when ``MLFLOW_TRACKING_URI`` is non-empty.
    """
    if flag_value.lower() == "false":
        return False
    return bool(tracking_uri)


class RelayConfig(BaseModel):
    """Runtime configuration resolved from environment."""

    google_api_key: str = Field(default="", repr=False)
    openai_api_key: str = Field(default="", repr=False)
    retry_max_retries: int = Field(default=3)
    retry_base_delay: float = Field(default=1.0)
    retry_max_delay: float = Field(default=60.0)
    retry_rate_limited: bool = Field(default=False)
    breaker_failure_threshold: int = Field(default=5)
    breaker_cooldown_seconds: float = Field(default=60.0)
    grounding_timeout_seconds: float = Field(default=600.0)
    research_timeout_seconds: float = Field(default=1800.0)
    family_timeouts: dict[str, float] = Field(default_factory=dict)
    research_model: str = Field(default="gemini-3-pro-preview")
    max_prompt_chars: int = Field(default=MAX_PROMPT_CHARS)
    tracing_enabled: bool = Field(default=False)
    mlflow_tracking_uri: str = Field(default="")
    mlflow_experiment_name: str = Field(default="research-relay")

    @field_validator("retry_max_retries")
    @classmethod
    def validate_retry_max_retries(cls, value: int) -> int:
        if value < 0:
            raise ValueError("retry_max_retries must be >= 0")
        return value

    @field_validator("breaker_failure_threshold", "max_prompt_chars")
    @classmethod
    def validate_positive_ints(cls, value: int) -> int:
        if value < 1:
            raise ValueError("Configuration values must be >= 1")
        return value

    @field_validator(
        "retry_base_delay", "retry_max_delay", "breaker_cooldown_seconds",
        "grounding_timeout_seconds", "research_timeout_seconds",
    )
    @classmethod
    def validate_positive_seconds(cls, value: float) -> float:
        if value <= 0:
            raise ValueError("Delays and timeouts must be > 0")
        return value

    @field_validator("family_timeouts")
    @classmethod
    def validate_family_timeouts(cls, value: dict[str, float]) -> dict[str, float]:
        for family, seconds in value.items():
            if seconds <= 0:
                raise ValueError(f"Timeout for family '{family}' must be > 0")
        return value

    @property
    def secrets(self) -> tuple[str, ...]:
        """Credentials to scrub from any surfaced error text."""
        return tuple(s for s in (self.google_api_key, self.openai_api_key) if s)

    @classmethod
    def from_env(cls) -> RelayConfig:
        """Build config from environment variables."""
        tracking_uri = os.getenv("MLFLOW_TRACKING_URI", "")
        return cls(
            google_api_key=_secret_from_env("GEMINI_API_KEY", "GOOGLE_API_KEY"),
            openai_api_key=_secret_from_env("OPENAI_API_KEY"),
            retry_max_retries=int(os.getenv("RELAY_RETRY_MAX_RETRIES", "3")),
            retry_base_delay=float(os.getenv("RELAY_RETRY_BASE_DELAY", "1.0")),
            retry_max_delay=float(os.getenv("RELAY_RETRY_MAX_DELAY", "60.0")),
            retry_rate_limited=os.getenv("RELAY_RETRY_RATE_LIMITED", "").lower() in ("1", "true", "yes"),
            breaker_failure_threshold=int(os.getenv("RELAY_BREAKER_THRESHOLD", "5")),
            breaker_cooldown_seconds=float(os.getenv("RELAY_BREAKER_COOLDOWN", "60")),
            grounding_timeout_seconds=float(os.getenv("RELAY_GROUNDING_TIMEOUT", "600")),
            research_timeout_seconds=float(os.getenv("RELAY_RESEARCH_TIMEOUT", "1800")),
            family_timeouts=_parse_family_timeouts(os.getenv("RELAY_FAMILY_TIMEOUTS", "")),
            research_model=os.getenv("RELAY_RESEARCH_MODEL", "gemini-3-pro-preview"),
            tracing_enabled=_resolve_tracing_enabled(
                os.getenv("RELAY_TRACING_ENABLED", ""), tracking_uri,
            ),
            mlflow_tracking_uri=tracking_uri,
            mlflow_experiment_name=os.getenv("MLFLOW_EXPERIMENT_NAME", "research-relay"),
        )


_config: RelayConfig | None = None


def get_config() -> RelayConfig:
    """Return the process config, creating it on first access.

    Only the server entrypoint and tracing read this; library components
    receive their config through :class:`~research_relay.context.RelayContext`.
    Loads ``~/.config/research-relay/.env`` before reading env vars.
    Process environment always takes precedence over the config file.
    """
    global _config
    if _config is None:
        from .dotenv import load_dotenv

        injected = load_dotenv()
        if injected:
            logger.info(
                "Loaded %d var(s) from config: %s",
                len(injected),
                ", ".join(injected.keys()),
            )
        _config = RelayConfig.from_env()
    return _config
