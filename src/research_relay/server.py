"""Main FastMCP server — mounts all sub-servers."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager

from fastmcp import FastMCP

from . import tracing
from .config import get_config
from .context import build_context, set_context
from .tools.models import models_server
from .tools.research import research_server

logger = logging.getLogger(__name__)


@asynccontextmanager
async def _lifespan(server: FastMCP):
    """Build the process context on startup; close SDK clients on shutdown."""
    context = build_context(get_config())
    set_context(context)
    tracing.setup()
    try:
        yield {}
    finally:
        closed = await context.aclose()
        set_context(None)
        tracing.shutdown()
        logger.info("Lifespan shutdown: closed %d handler(s)", closed)


app = FastMCP(
    "research-relay",
    instructions=(
        "Resilient access to Gemini and OpenAI models behind one contract, "
        "plus a plan/execute/publish/finalize deep-research pipeline."
    ),
    lifespan=_lifespan,
)

app.mount(models_server)
app.mount(research_server)


def main() -> None:
    """Entry-point for ``research-relay-mcp`` console script."""
    app.run()


if __name__ == "__main__":
    main()
