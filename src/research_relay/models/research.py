"""Research pipeline models — questions, findings, reports, depth profiles, progress.

Used by the four-phase orchestrator in :mod:`research_relay.research`.
Reports are frozen once assembled; callers receive an immutable snapshot.
"""

from __future__ import annotations

from datetime import datetime, timezone
from typing import Literal

from pydantic import BaseModel, ConfigDict, Field

from ..types import DepthTier, ReportLanguage, ResearchStage, ThinkingLevel
from .invocation import Source


class ResearchQuestion(BaseModel):
    """A sub-question produced by the planner."""

    id: str
    question: str = Field(min_length=1)
    priority: Literal["high", "medium", "low"] = "medium"
    expected_scope: str = ""


class ResearchFinding(BaseModel):
    """Result of researching one sub-question."""

    question_id: str
    question: str
    answer: str
    sources: list[Source] = Field(default_factory=list)
    confidence: float = Field(default=0.0, ge=0.0, le=1.0)
    tokens_used: int = 0
    degraded: bool = False
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class WordRange(BaseModel):
    model_config = ConfigDict(frozen=True)

    min: int
    max: int


class DepthProfile(BaseModel):
    """Length and effort targets for one depth tier."""

    model_config = ConfigDict(frozen=True)

    executor_words: WordRange
    summary_words: WordRange
    analysis_words: WordRange
    implications_words: WordRange
    conclusion_words: WordRange
    publisher_total_words: int
    final_report_words: WordRange
    reasoning_effort: ThinkingLevel


DEPTH_PROFILES: dict[str, DepthProfile] = {
    "concise": DepthProfile(
        executor_words=WordRange(min=400, max=600),
        summary_words=WordRange(min=200, max=400),
        analysis_words=WordRange(min=600, max=1000),
        implications_words=WordRange(min=200, max=400),
        conclusion_words=WordRange(min=150, max=250),
        publisher_total_words=1500,
        final_report_words=WordRange(min=1500, max=2500),
        reasoning_effort="low",
    ),
    "balanced": DepthProfile(
        executor_words=WordRange(min=600, max=1000),
        summary_words=WordRange(min=400, max=600),
        analysis_words=WordRange(min=1200, max=2000),
        implications_words=WordRange(min=400, max=700),
        conclusion_words=WordRange(min=250, max=400),
        publisher_total_words=3000,
        final_report_words=WordRange(min=3000, max=5000),
        reasoning_effort="medium",
    ),
    "comprehensive": DepthProfile(
        executor_words=WordRange(min=1000, max=1500),
        summary_words=WordRange(min=600, max=1000),
        analysis_words=WordRange(min=2000, max=3000),
        implications_words=WordRange(min=700, max=1200),
        conclusion_words=WordRange(min=400, max=600),
        publisher_total_words=5000,
        final_report_words=WordRange(min=5000, max=7500),
        reasoning_effort="high",
    ),
}


class ResearchConfig(BaseModel):
    """Per-run settings for the research orchestrator."""

    model_config = ConfigDict(frozen=True)

    max_questions: int = Field(default=5, ge=1, le=20)
    parallel_executors: int = Field(default=3, ge=1, le=10)
    use_grounding: bool = True
    depth: DepthTier = "balanced"
    report_language: ReportLanguage = "en"
    polish_directive: str | None = None
    planner_model: str | None = None
    executor_model: str | None = None
    synthesis_model: str | None = None
    executor_max_output_tokens: int = Field(default=8192, ge=100)
    synthesis_max_output_tokens: int = Field(default=32768, ge=100)
    timeout_seconds: float | None = Field(default=None, gt=0)
    temperature: float | None = Field(default=None, ge=0.0, le=2.0)
    thinking_level: ThinkingLevel | None = None

    @property
    def profile(self) -> DepthProfile:
        return DEPTH_PROFILES[self.depth]

    @property
    def reasoning_effort(self) -> ThinkingLevel:
        """Explicit thinking level, else the depth tier's effort."""
        return self.thinking_level or self.profile.reasoning_effort

    def phase_temperature(self, default: float) -> float:
        return default if self.temperature is None else self.temperature


class ResearchMetadata(BaseModel):
    """Run-level bookkeeping attached to a report."""

    model_config = ConfigDict(frozen=True)

    questions_generated: int
    sources_consulted: int
    total_tokens_used: int
    duration_seconds: float
    model: str
    depth: DepthTier
    degraded_findings: int = 0
    timestamp: datetime = Field(default_factory=lambda: datetime.now(timezone.utc))


class ResearchReport(BaseModel):
    """Final output of one orchestration run."""

    model_config = ConfigDict(frozen=True)

    query: str
    summary: str
    questions: tuple[ResearchQuestion, ...]
    findings: tuple[ResearchFinding, ...]
    synthesis: str
    intermediate_report: str = ""
    sources: tuple[Source, ...] = ()
    metadata: ResearchMetadata


class ResearchProgress(BaseModel):
    """Payload delivered to the caller's progress callback."""

    stage: ResearchStage
    message: str
    progress_percent: float = Field(ge=0.0, le=100.0)
    current_question: str | None = None
    findings: list[ResearchFinding] | None = None
