"""Execute phase: answer sub-questions in bounded parallel batches."""

from __future__ import annotations

import asyncio
import logging

from ..errors import classify_error
from ..factory import InvocationFactory
from ..models.invocation import InvocationRequest, InvocationResponse, PromptPair
from ..models.research import ResearchConfig, ResearchFinding, ResearchQuestion
from ..prompts.research import EXECUTOR_PROMPT, EXECUTOR_SYSTEM, LANGUAGE_INSTRUCTIONS
from .progress import ProgressChannel

logger = logging.getLogger(__name__)

LONG_ANSWER_CHARS = 500
CHARS_PER_TOKEN = 3

EXECUTE_START_PERCENT = 25.0
EXECUTE_END_PERCENT = 80.0


def compute_confidence(answer: str, source_count: int) -> float:
    """``min(0.5 + 0.1*sources + (0.3 if long answer else 0.1), 1.0)``."""
    length_bonus = 0.3 if len(answer) > LONG_ANSWER_CHARS else 0.1
    return min(0.5 + 0.1 * source_count + length_bonus, 1.0)


def estimate_tokens(response: InvocationResponse) -> int:
    return response.usage.total_tokens or len(response.content) // CHARS_PER_TOKEN


def degraded_finding(question: ResearchQuestion, reason: str) -> ResearchFinding:
    return ResearchFinding(
        question_id=question.id,
        question=question.question,
        answer=f"This sub-question could not be researched: {reason}",
        confidence=0.0,
        degraded=True,
    )


async def research_question(
    factory: InvocationFactory,
    question: ResearchQuestion,
    query: str,
    config: ResearchConfig,
    model: str,
    *,
    job_id: str | None = None,
) -> ResearchFinding:
    """Answer one sub-question. Failures become a degraded finding, never an exception."""
    words = config.profile.executor_words
    request = InvocationRequest(
        prompt=PromptPair(
            system_instruction=EXECUTOR_SYSTEM,
            user_input=EXECUTOR_PROMPT.format(
                query=query,
                priority=question.priority,
                question=question.question,
                expected_scope=question.expected_scope or "Not specified",
                min_words=words.min,
                max_words=words.max,
                language_instruction=LANGUAGE_INSTRUCTIONS[config.report_language],
            ),
        ),
        config=factory.config_for(
            model,
            temperature=config.phase_temperature(1.0),
            max_output_tokens=config.executor_max_output_tokens,
            effort=config.thinking_level or "medium",
            grounding=config.use_grounding,
        ),
        job_id=job_id,
    )
    try:
        response = await factory.call(request)
    except Exception as exc:
        error = classify_error(exc, model=model)
        logger.warning("Sub-question %s degraded (%s): %s", question.id, error.kind.value, error.message)
        return degraded_finding(question, error.message)

    sources = response.metadata.sources
    return ResearchFinding(
        question_id=question.id,
        question=question.question,
        answer=response.content,
        sources=sources,
        confidence=compute_confidence(response.content, len(sources)),
        tokens_used=estimate_tokens(response),
    )


async def execute_research(
    factory: InvocationFactory,
    questions: list[ResearchQuestion],
    query: str,
    config: ResearchConfig,
    model: str,
    progress: ProgressChannel,
    *,
    job_id: str | None = None,
) -> list[ResearchFinding]:
    """Run questions in batches of ``parallel_executors``; results stay index-aligned."""
    total = len(questions)
    span = EXECUTE_END_PERCENT - EXECUTE_START_PERCENT
    completed = 0
    findings: list[ResearchFinding] = []

    async def run_one(question: ResearchQuestion) -> ResearchFinding:
        nonlocal completed
        finding = await research_question(factory, question, query, config, model, job_id=job_id)
        completed += 1
        await progress.publish(
            "executing",
            f"Sub-question {completed}/{total} done" + (" (degraded)" if finding.degraded else ""),
            EXECUTE_START_PERCENT + span * completed / total,
            current_question=question.question,
        )
        return finding

    batch_size = config.parallel_executors
    for start in range(0, total, batch_size):
        batch = questions[start:start + batch_size]
        logger.info(
            "Executing batch %d/%d (%d sub-questions)",
            start // batch_size + 1, (total + batch_size - 1) // batch_size, len(batch),
        )
        # gather preserves argument order, which keeps findings aligned with questions
        findings.extend(await asyncio.gather(*(run_one(q) for q in batch)))
        await progress.publish(
            "executing",
            f"Batch complete: {len(findings)}/{total} sub-questions researched",
            EXECUTE_START_PERCENT + span * len(findings) / total,
            findings=list(findings),
        )
    return findings
