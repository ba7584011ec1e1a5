"""Auto-load provider credentials and relay settings from a shared env file.

Reads ``~/.config/research-relay/.env`` (or the file named by
``RELAY_ENV_FILE``) and injects values the process environment leaves
unset. No external dependencies; no variable expansion.
"""

from __future__ import annotations

import os
from pathlib import Path

DEFAULT_ENV_PATH = Path.home() / ".config" / "research-relay" / ".env"
ENV_FILE_OVERRIDE = "RELAY_ENV_FILE"


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in ('"', "'"):
        return value[1:-1]
    return value


def _needs_value(key: str, current: str | None) -> bool:
    """Return True when *current* should be replaced by the file's value.

    Blank values and unresolved self-references such as ``${OPENAI_API_KEY}``
    (left behind by hosts that template env blocks) count as unset.
    """
    if current is None:
        return True
    normalized = _strip_quotes(current.strip()).strip()
    if not normalized:
        return True
    if normalized in {f"${key}", f"${{{key}}}"}:
        return True
    return normalized.startswith(f"${{{key}:-") and normalized.endswith("}")


def parse_dotenv(path: Path) -> dict[str, str]:
    """Parse ``KEY=VALUE`` lines from *path*.

    Accepts ``export`` prefixes, single/double quoted values, blank lines
    and ``#`` comments. A missing file yields an empty dict.
    """
    if not path.is_file():
        return {}

    result: dict[str, str] = {}
    for raw_line in path.read_text().splitlines():
        line = raw_line.strip()
        if not line or line.startswith("#"):
            continue
        line = line.removeprefix("export ").lstrip()
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        result[key] = _strip_quotes(value.strip())
    return result


def resolve_env_path() -> Path:
    """Return the env file to load, honouring ``RELAY_ENV_FILE``."""
    override = os.environ.get(ENV_FILE_OVERRIDE, "").strip()
    return Path(override).expanduser() if override else DEFAULT_ENV_PATH


def load_dotenv(path: Path | None = None) -> dict[str, str]:
    """Inject vars from *path* into ``os.environ`` where currently unset.

    Returns:
        The vars that were actually injected.
    """
    parsed = parse_dotenv(path or resolve_env_path())
    injected = {k: v for k, v in parsed.items() if _needs_value(k, os.environ.get(k))}
    os.environ.update(injected)
    return injected
