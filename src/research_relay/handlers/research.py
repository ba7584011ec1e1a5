"""In-process deep-research handler backed by the research orchestrator.

Registered for ``gemini-*`` deep-research models. It runs the full
four-phase pipeline through the same invocation factory and returns the
report as one markdown document.
"""

from __future__ import annotations

import logging
import time
from datetime import date

from ..errors import ValidationFailed
from ..models.invocation import (
    GoogleConfig,
    InvocationRequest,
    InvocationResponse,
    OpenAIConfig,
    ResponseMetadata,
    UsageStats,
)
from ..models.research import ResearchConfig, ResearchProgress, ResearchReport
from ..registry import DEEP_RESEARCH_PARAMS, ModelCapabilitySpec
from ..types import DepthTier

logger = logging.getLogger(__name__)

MAX_REPORT_SOURCES = 20
MAX_FINDING_SOURCES = 3
SNIPPET_CHARS = 150

_DEPTH_BY_THINKING_LEVEL: dict[str | None, DepthTier] = {
    "minimal": "concise",
    "low": "concise",
    "medium": "balanced",
    "high": "comprehensive",
}


def format_report(report: ResearchReport) -> str:
    """Render a ResearchReport as a standalone markdown document."""
    meta = report.metadata
    sections = [
        "# Deep Research Report\n",
        f"**Research question:** {report.query}\n",
        f"**Date:** {date.today().isoformat()}\n",
        f"**Sources consulted:** {meta.sources_consulted}\n",
        "---\n",
        "## Summary\n",
        f"{report.summary}\n",
        "---\n",
        "## Findings\n",
        f"{report.synthesis}\n",
        "---\n",
    ]

    if report.findings:
        sections.append("## Detailed Findings\n")
        for idx, finding in enumerate(report.findings, start=1):
            sections.append(f"### {idx}. {finding.question}\n")
            sections.append(f"{finding.answer}\n")
            if finding.sources:
                sections.append("\n**Sources:**\n")
                for source in finding.sources[:MAX_FINDING_SOURCES]:
                    sections.append(f"- [{source.title or source.url}]({source.url or '#'})\n")
            sections.append("\n")
        sections.append("---\n")

    if report.sources:
        sections.append("## References\n")
        for idx, source in enumerate(report.sources[:MAX_REPORT_SOURCES], start=1):
            sections.append(f"{idx}. **{source.title or source.url}**\n")
            if source.url:
                sections.append(f"   {source.url}\n")
            if source.snippet:
                sections.append(f"   _{source.snippet[:SNIPPET_CHARS]}..._\n")
            sections.append("\n")

    sections.append("---\n")
    sections.append(
        f"_Duration: {round(meta.duration_seconds)}s | Questions: {meta.questions_generated} "
        f"| Tokens: ~{meta.total_tokens_used} | Model: {meta.model}_\n"
    )
    return "".join(sections)


class ResearchPipelineHandler:
    """Deep-research sub-variant that runs the local pipeline.

    The invocation factory is bound after construction because the pipeline
    calls back into the same factory that dispatches to this handler.
    """

    family = "deep-research"

    def __init__(self, *, research_model: str, run_timeout: float) -> None:
        self.research_model = research_model
        self.run_timeout = run_timeout
        self._factory = None

    def bind(self, factory) -> None:
        self._factory = factory

    def get_supported_parameters(self) -> frozenset[str]:
        return DEEP_RESEARCH_PARAMS

    def validate_parameters(self, config: GoogleConfig | OpenAIConfig) -> None:
        """Per-phase configs are validated by the handlers the pipeline calls."""

    def research_config(self, request: InvocationRequest) -> ResearchConfig:
        """Map the caller's model config onto a pipeline run.

        ``thinking_level`` picks the depth tier and is passed to every phase;
        ``temperature`` overrides the per-phase sampling defaults.
        """
        cfg = request.config
        # grounding stays on unless the caller explicitly turned it off
        grounding = getattr(cfg, "use_grounding", True) if "use_grounding" in cfg.model_fields_set else True
        thinking_level = getattr(cfg, "thinking_level", None)
        return ResearchConfig(
            depth=_DEPTH_BY_THINKING_LEVEL.get(thinking_level, "balanced"),
            thinking_level=thinking_level,
            temperature=cfg.temperature,
            use_grounding=grounding,
            executor_max_output_tokens=max(cfg.max_output_tokens or 8192, 100),
            timeout_seconds=self.run_timeout,
        )

    async def generate(
        self,
        request: InvocationRequest,
        spec: ModelCapabilitySpec,
        *,
        timeout: float | None = None,
    ) -> InvocationResponse:
        # imported here: the orchestrator imports the factory, which imports handlers
        from ..research.orchestrator import ResearchOrchestrator

        if self._factory is None:
            raise ValidationFailed("Research pipeline handler is not bound to a factory", model=spec.model_id)

        job_id = request.job_id

        def log_progress(progress: ResearchProgress) -> None:
            logger.info(
                "[%s] Research progress: %s %.0f%% %s",
                job_id or "-", progress.stage, progress.progress_percent, progress.message,
            )

        start = time.monotonic()
        orchestrator = ResearchOrchestrator(
            self._factory,
            self.research_config(request),
            default_model=self.research_model,
        )
        report = await orchestrator.run(request.text(), log_progress, job_id=job_id)
        return InvocationResponse(
            content=format_report(report),
            usage=UsageStats(total_tokens=report.metadata.total_tokens_used),
            duration=time.monotonic() - start,
            metadata=ResponseMetadata(
                model=spec.model_id,
                provider=spec.provider,
                finish_reason="complete",
                sources=list(report.sources),
                extra={
                    "questions_generated": report.metadata.questions_generated,
                    "sources_consulted": report.metadata.sources_consulted,
                    "findings": len(report.findings),
                    "degraded_findings": report.metadata.degraded_findings,
                    "research_model": report.metadata.model,
                },
            ),
        )
