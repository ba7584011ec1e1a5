"""Research tools — 1 tool on a FastMCP sub-server."""

from __future__ import annotations

import logging
from typing import Annotated

from fastmcp import FastMCP
from mcp.types import ToolAnnotations
from pydantic import Field

from ..context import get_context
from ..errors import make_tool_error
from ..models.research import ResearchConfig, ResearchProgress
from ..tracing import trace
from ..types import DepthTier, ModelId, QueryParam, ReportLanguage

logger = logging.getLogger(__name__)
research_server = FastMCP("research")


@research_server.tool(annotations=ToolAnnotations(readOnlyHint=True, openWorldHint=True))
@trace(name="research_run", span_type="TOOL")
async def research_run(
    query: QueryParam,
    max_questions: Annotated[int, Field(ge=1, le=20, description="Upper bound on planned sub-questions")] = 5,
    parallel_executors: Annotated[int, Field(ge=1, le=10, description="Sub-questions researched concurrently")] = 3,
    depth: DepthTier = "balanced",
    language: ReportLanguage = "en",
    use_grounding: bool = True,
    polish_directive: Annotated[str | None, Field(
        description="Optional post-processing instruction applied to the final report",
    )] = None,
    model: ModelId | None = None,
) -> dict:
    """Run the four-phase research pipeline: plan, execute, publish, finalize.

    Sub-questions that fail become degraded findings (confidence 0) instead
    of failing the run; publish or finalize failures return a tool error
    naming the phase reached.

    Args:
        query: Research question or full instruction (format requirements are honored).
        max_questions: Upper bound on planned sub-questions.
        parallel_executors: Batch size for concurrent sub-question research.
        depth: Report depth tier: "concise", "balanced" or "comprehensive".
        language: Report language ("en" or "nl").
        use_grounding: Enable provider-side web search for sub-questions.
        polish_directive: Optional post-processing instruction for the final text.
        model: Override the configured research model for every phase.

    Returns:
        Dict with query, summary, questions, findings, synthesis, sources and
        metadata, or a tool error.
    """
    try:
        relay = get_context()
        if model is not None:
            relay.registry.lookup(model)
        config = ResearchConfig(
            max_questions=max_questions,
            parallel_executors=parallel_executors,
            depth=depth,
            report_language=language,
            use_grounding=use_grounding,
            polish_directive=polish_directive,
            planner_model=model,
            executor_model=model,
            synthesis_model=model,
        )

        def log_progress(progress: ResearchProgress) -> None:
            logger.info("research_run %s %.0f%%: %s", progress.stage, progress.progress_percent, progress.message)

        report = await relay.orchestrator(config).run(query, log_progress)
        return report.model_dump(mode="json")
    except Exception as exc:
        return make_tool_error(exc)
