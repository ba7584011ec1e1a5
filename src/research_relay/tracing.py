"""Optional MLflow tracing.

Two layers when enabled:

1. **Autolog**: ``mlflow.gemini.autolog()`` and ``mlflow.openai.autolog()``
   record every SDK call made by the provider handlers as child spans.
2. **Tool spans**: :func:`trace` wraps the MCP tool entrypoints so a
   ``research_run`` shows every planner/executor/publisher call beneath it.

The import is guarded; without ``mlflow-tracing`` installed every function
here is a no-op.

Env vars (all optional):
    MLFLOW_TRACKING_URI: Trace store. Empty = tracing disabled.
    MLFLOW_EXPERIMENT_NAME: Experiment name (default ``research-relay``).
    RELAY_TRACING_ENABLED: ``"false"`` force-disables even with a URI.
"""

from __future__ import annotations

import importlib
import logging
from collections.abc import Callable
from typing import Any

logger = logging.getLogger(__name__)

try:
    import mlflow

    _HAS_MLFLOW = True
except ImportError:
    _HAS_MLFLOW = False

_AUTOLOG_FLAVORS = ("gemini", "openai")


def is_enabled() -> bool:
    if not _HAS_MLFLOW:
        return False
    from .config import get_config

    return get_config().tracing_enabled


def trace(
    func: Callable | None = None,
    *,
    name: str | None = None,
    span_type: str | None = None,
    attributes: dict[str, Any] | None = None,
) -> Callable:
    """``@mlflow.trace`` when tracing is on, identity otherwise."""
    if not is_enabled():
        return func if func is not None else (lambda f: f)
    return mlflow.trace(func, name=name, span_type=span_type, attributes=attributes)


def setup() -> None:
    """Point MLflow at the configured store and enable SDK autologging.

    Never raises: a tracing problem must not keep the server from starting.
    """
    if not is_enabled():
        return

    from .config import get_config

    cfg = get_config()
    try:
        mlflow.set_tracking_uri(cfg.mlflow_tracking_uri)
        mlflow.set_experiment(cfg.mlflow_experiment_name)
    except Exception:
        logger.warning("MLflow tracing setup failed, continuing without tracing", exc_info=True)
        return

    for flavor in _AUTOLOG_FLAVORS:
        try:
            importlib.import_module(f"mlflow.{flavor}").autolog()
        except Exception:
            logger.warning("MLflow %s autolog unavailable", flavor, exc_info=True)
    logger.info(
        "MLflow tracing enabled (uri=%s, experiment=%s)",
        cfg.mlflow_tracking_uri, cfg.mlflow_experiment_name,
    )


def shutdown() -> None:
    if not is_enabled():
        return
    try:
        mlflow.flush_trace_async_logging()
    except Exception:
        logger.warning("MLflow trace flush failed", exc_info=True)
