"""Publish and finalize phases: synthesis over findings, then the final deliverable."""

from __future__ import annotations

import logging
import re
from collections.abc import Iterable

from ..factory import InvocationFactory
from ..models.invocation import InvocationRequest, InvocationResponse, PromptPair, Source
from ..models.research import ResearchConfig, ResearchFinding
from ..prompts.research import (
    FINALIZER_PROMPT,
    FINALIZER_SYSTEM,
    FINDING_BLOCK,
    LANGUAGE_INSTRUCTIONS,
    POLISH_BLOCK,
    PUBLISHER_PROMPT,
    PUBLISHER_SYSTEM,
)

logger = logging.getLogger(__name__)

SUMMARY_FALLBACK_CHARS = 500

_SOURCES_HEADING = re.compile(r"(?im)^\s*#{1,6}\s*(sources|bronnen)\s*$")
_SUMMARY_TITLES = ("executive summary", "summary", "samenvatting")


def dedupe_sources(findings: Iterable[ResearchFinding]) -> list[Source]:
    """Unique sources across findings, first occurrence wins (key: url, else title)."""
    seen: set[str] = set()
    unique: list[Source] = []
    for finding in findings:
        for source in finding.sources:
            key = source.dedup_key
            if not key or key in seen:
                continue
            seen.add(key)
            unique.append(source)
    return unique


def format_findings(findings: Iterable[ResearchFinding]) -> str:
    return "\n".join(
        FINDING_BLOCK.format(index=i, question=f.question, confidence=f.confidence, answer=f.answer)
        for i, f in enumerate(findings, start=1)
    )


def format_sources(sources: list[Source]) -> str:
    if not sources:
        return "(no external sources)"
    return "\n".join(f"[{i}] {s.title or s.url} - {s.url}" for i, s in enumerate(sources, start=1))


def _heading_title(line: str) -> str | None:
    stripped = line.strip()
    if stripped.startswith("#"):
        title = stripped.lstrip("#").strip()
    elif stripped.startswith("**") and stripped.endswith("**") and len(stripped) > 4:
        title = stripped.strip("*").strip()
    else:
        return None
    return re.sub(r"^\d+[.)]\s*", "", title).rstrip(":").strip().lower()


def extract_summary(text: str) -> str:
    """Text under the first Summary heading, else the first 500 characters."""
    lines = text.splitlines()
    for index, line in enumerate(lines):
        title = _heading_title(line)
        if title is None or not title.startswith(_SUMMARY_TITLES):
            continue
        body: list[str] = []
        for following in lines[index + 1:]:
            if _heading_title(following) is not None:
                break
            body.append(following)
        summary = "\n".join(body).strip()
        if summary:
            return summary
    stripped = text.strip()
    if len(stripped) > SUMMARY_FALLBACK_CHARS:
        return stripped[:SUMMARY_FALLBACK_CHARS] + "..."
    return stripped


def append_sources_section(text: str, sources: list[Source]) -> str:
    """Append a numbered sources section unless the text already ends with one."""
    if not sources or _SOURCES_HEADING.search(text):
        return text
    return f"{text.rstrip()}\n\n## Sources\n{format_sources(sources)}\n"


def _synthesis_request(
    factory: InvocationFactory,
    model: str,
    config: ResearchConfig,
    prompt: PromptPair,
    job_id: str | None,
) -> InvocationRequest:
    return InvocationRequest(
        prompt=prompt,
        config=factory.config_for(
            model,
            temperature=config.phase_temperature(0.7),
            max_output_tokens=config.synthesis_max_output_tokens,
            effort=config.reasoning_effort,
        ),
        job_id=job_id,
    )


async def publish_report(
    factory: InvocationFactory,
    query: str,
    findings: list[ResearchFinding],
    sources: list[Source],
    config: ResearchConfig,
    model: str,
    *,
    job_id: str | None = None,
) -> InvocationResponse:
    """Synthesize all findings into the intermediate report. Errors propagate."""
    profile = config.profile
    prompt = PromptPair(
        system_instruction=PUBLISHER_SYSTEM,
        user_input=PUBLISHER_PROMPT.format(
            query=query,
            findings=format_findings(findings),
            sources=format_sources(sources),
            summary_min=profile.summary_words.min,
            summary_max=profile.summary_words.max,
            analysis_min=profile.analysis_words.min,
            analysis_max=profile.analysis_words.max,
            implications_min=profile.implications_words.min,
            implications_max=profile.implications_words.max,
            conclusion_min=profile.conclusion_words.min,
            conclusion_max=profile.conclusion_words.max,
            total_words=profile.publisher_total_words,
            language_instruction=LANGUAGE_INSTRUCTIONS[config.report_language],
        ),
    )
    response = await factory.call(_synthesis_request(factory, model, config, prompt, job_id))
    logger.info("Publisher produced %d characters", len(response.content))
    return response


async def finalize_report(
    factory: InvocationFactory,
    query: str,
    intermediate: str,
    findings: list[ResearchFinding],
    sources: list[Source],
    config: ResearchConfig,
    model: str,
    *,
    job_id: str | None = None,
) -> tuple[str, InvocationResponse]:
    """Rewrite against the original request; returns (final text with sources, raw response)."""
    words = config.profile.final_report_words
    polish = POLISH_BLOCK.format(directive=config.polish_directive) if config.polish_directive else ""
    prompt = PromptPair(
        system_instruction=FINALIZER_SYSTEM,
        user_input=FINALIZER_PROMPT.format(
            query=query,
            intermediate=intermediate,
            findings=format_findings(findings),
            sources=format_sources(sources),
            depth=config.depth,
            final_words=f"{words.min}-{words.max}",
            polish_block=polish,
            language_instruction=LANGUAGE_INSTRUCTIONS[config.report_language],
        ),
    )
    response = await factory.call(_synthesis_request(factory, model, config, prompt, job_id))
    return append_sources_section(response.content, sources), response
