"""Research orchestrator — drives plan, execute, publish and finalize.

One :meth:`ResearchOrchestrator.run` call is one research run. Internal
parallelism (the executor batches) and progress delivery are hidden behind
a single awaitable; :meth:`run_sync` wraps it for blocking callers.
"""

from __future__ import annotations

import asyncio
import logging
import time
import uuid
from dataclasses import dataclass

from ..errors import CallTimeout, ModelCallError, classify_error
from ..factory import InvocationFactory
from ..models.research import ResearchConfig, ResearchMetadata, ResearchReport
from ..types import ResearchStage
from .executor import execute_research
from .planner import fallback_plan, plan_research
from .progress import ProgressCallback, ProgressChannel
from .publisher import dedupe_sources, extract_summary, finalize_report, publish_report

logger = logging.getLogger(__name__)

DEFAULT_RUN_TIMEOUT = 1800.0


@dataclass
class _RunState:
    """Furthest stage reached by one run."""

    stage: ResearchStage = "planning"


class ResearchOrchestrator:
    """Four-phase pipeline over one free-text query.

    Args:
        factory: Invocation factory every phase calls through.
        config: Per-run settings (question bound, fan-out, depth, language).
        default_model: Model used for any phase without an explicit model.
        run_timeout: Deadline for the whole run in seconds.
    """

    def __init__(
        self,
        factory: InvocationFactory,
        config: ResearchConfig | None = None,
        *,
        default_model: str | None = None,
        run_timeout: float | None = None,
    ) -> None:
        self.factory = factory
        self.config = config or ResearchConfig()
        self.default_model = default_model or factory.config.research_model
        self.run_timeout = self.config.timeout_seconds or run_timeout or factory.config.research_timeout_seconds

    def _model(self, override: str | None) -> str:
        return override or self.default_model

    async def run(
        self,
        query: str,
        progress: ProgressCallback | None = None,
        *,
        job_id: str | None = None,
    ) -> ResearchReport:
        """Run the full pipeline and return the assembled report.

        Raises:
            ModelCallError: Publish/finalize failures or the run deadline,
                with ``phase`` set to the furthest stage reached.
        """
        job_id = job_id or uuid.uuid4().hex[:12]
        state = _RunState()
        async with ProgressChannel(progress) as channel:
            try:
                return await asyncio.wait_for(
                    self._run(query, channel, job_id, state), timeout=self.run_timeout,
                )
            except asyncio.TimeoutError:
                error: ModelCallError = CallTimeout(
                    f"Research run exceeded {self.run_timeout:.0f}s during {state.stage}",
                )
                cause: BaseException | None = None
            except ModelCallError as exc:
                error, cause = exc, None
            except Exception as exc:
                error, cause = classify_error(exc), exc
            error.phase = state.stage
            logger.error("[%s] Research failed during %s: %s", job_id, state.stage, error.message)
            await channel.publish("error", f"Research failed during {state.stage}: {error.message}", channel.last_percent)
        if cause is not None:
            raise error from cause
        raise error

    def run_sync(
        self,
        query: str,
        progress: ProgressCallback | None = None,
        *,
        job_id: str | None = None,
    ) -> ResearchReport:
        """Blocking wrapper around :meth:`run` for callers without an event loop."""
        return asyncio.run(self.run(query, progress, job_id=job_id))

    async def _run(
        self, query: str, progress: ProgressChannel, job_id: str, state: _RunState,
    ) -> ResearchReport:
        cfg = self.config
        start = time.monotonic()
        total_tokens = 0

        # Phase 1: plan (never aborts)
        state.stage = "planning"
        await progress.publish("planning", "Decomposing the query into sub-questions", 5)
        planner_model = self._model(cfg.planner_model)
        try:
            questions, usage = await plan_research(self.factory, query, cfg, planner_model, job_id=job_id)
            total_tokens += usage.total_tokens
        except ModelCallError as exc:
            logger.warning("[%s] Planner call failed (%s), using the query as the only sub-question", job_id, exc.kind.value)
            questions = fallback_plan(query)
        await progress.publish("planning", f"Planned {len(questions)} sub-questions", 20)

        # Phase 2: execute
        state.stage = "executing"
        await progress.publish("executing", f"Researching {len(questions)} sub-questions", 25)
        findings = await execute_research(
            self.factory, questions, query, cfg, self._model(cfg.executor_model), progress, job_id=job_id,
        )
        total_tokens += sum(f.tokens_used for f in findings)
        degraded = sum(1 for f in findings if f.degraded)
        sources = dedupe_sources(findings)

        # Phase 3: publish
        state.stage = "publishing"
        await progress.publish("publishing", f"Synthesizing {len(findings)} findings", 82)
        synthesis_model = self._model(cfg.synthesis_model)
        intermediate = await publish_report(
            self.factory, query, findings, sources, cfg, synthesis_model, job_id=job_id,
        )
        total_tokens += intermediate.usage.total_tokens

        # Phase 4: finalize
        state.stage = "finalizing"
        await progress.publish("finalizing", "Writing the final report", 90)
        final_text, final = await finalize_report(
            self.factory, query, intermediate.content, findings, sources, cfg, synthesis_model, job_id=job_id,
        )
        total_tokens += final.usage.total_tokens

        state.stage = "complete"
        report = ResearchReport(
            query=query,
            summary=extract_summary(final_text),
            questions=tuple(questions),
            findings=tuple(findings),
            synthesis=final_text,
            intermediate_report=intermediate.content,
            sources=tuple(sources),
            metadata=ResearchMetadata(
                questions_generated=len(questions),
                sources_consulted=len(sources),
                total_tokens_used=total_tokens,
                duration_seconds=round(time.monotonic() - start, 2),
                model=synthesis_model,
                depth=cfg.depth,
                degraded_findings=degraded,
            ),
        )
        await progress.publish("complete", "Research complete", 100, findings=list(findings))
        logger.info(
            "[%s] Research complete: %d questions, %d sources, %d degraded, %.1fs",
            job_id, len(questions), len(sources), degraded, report.metadata.duration_seconds,
        )
        return report
