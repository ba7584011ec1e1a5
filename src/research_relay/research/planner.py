"""Plan phase: decompose a query into bounded sub-questions."""

from __future__ import annotations

import json
import logging
import re

from pydantic import ValidationError

from ..factory import InvocationFactory
from ..models.invocation import InvocationRequest, PromptPair, UsageStats
from ..models.research import ResearchConfig, ResearchQuestion
from ..prompts.research import LANGUAGE_INSTRUCTIONS, PLANNER_PROMPT, PLANNER_SYSTEM

logger = logging.getLogger(__name__)

PLANNER_MAX_OUTPUT_TOKENS = 4096

_FENCE = re.compile(r"```(?:json)?\s*(.*?)```", re.DOTALL | re.IGNORECASE)


def _strip_fence(text: str) -> str:
    match = _FENCE.search(text)
    return match.group(1).strip() if match else text.strip()


def fallback_plan(query: str) -> list[ResearchQuestion]:
    return [ResearchQuestion(
        id="q1",
        question=query,
        priority="high",
        expected_scope="Answer the original query directly",
    )]


def parse_plan(text: str, query: str, max_questions: int) -> list[ResearchQuestion]:
    """Parse the planner's JSON into questions, degrading to the query itself.

    The result always has between 1 and *max_questions* entries. Any
    structural problem (not JSON, not a list, an element without a
    ``question``) falls back to one sub-question equal to *query*.
    """
    try:
        data = json.loads(_strip_fence(text))
    except (json.JSONDecodeError, TypeError):
        logger.warning("Planner output is not valid JSON, falling back to the original query")
        return fallback_plan(query)

    if isinstance(data, dict) and isinstance(data.get("questions"), list):
        data = data["questions"]
    if not isinstance(data, list) or not data:
        logger.warning("Planner output is not a non-empty JSON array, falling back to the original query")
        return fallback_plan(query)

    questions: list[ResearchQuestion] = []
    seen_ids: set[str] = set()
    try:
        for index, item in enumerate(data[:max_questions], start=1):
            if not isinstance(item, dict) or not str(item.get("question") or "").strip():
                raise ValueError(f"element {index} has no question")
            qid = str(item.get("id") or "").strip() or f"q{index}"
            if qid in seen_ids:
                qid = f"q{index}"
            seen_ids.add(qid)
            priority = str(item.get("priority") or "medium").lower()
            questions.append(ResearchQuestion(
                id=qid,
                question=str(item["question"]).strip(),
                priority=priority if priority in ("high", "medium", "low") else "medium",
                expected_scope=str(item.get("expected_scope") or item.get("expectedScope") or ""),
            ))
    except (ValueError, ValidationError) as exc:
        logger.warning("Planner output is structurally invalid (%s), falling back to the original query", exc)
        return fallback_plan(query)
    return questions


async def plan_research(
    factory: InvocationFactory,
    query: str,
    config: ResearchConfig,
    model: str,
    *,
    job_id: str | None = None,
) -> tuple[list[ResearchQuestion], UsageStats]:
    """One planning call. Parse failures degrade; transport errors propagate."""
    prompt = PromptPair(
        system_instruction=PLANNER_SYSTEM,
        user_input=PLANNER_PROMPT.format(
            query=query,
            max_questions=config.max_questions,
            language_instruction=LANGUAGE_INSTRUCTIONS[config.report_language],
        ),
    )
    request = InvocationRequest(
        prompt=prompt,
        config=factory.config_for(
            model,
            temperature=config.phase_temperature(1.0),
            max_output_tokens=PLANNER_MAX_OUTPUT_TOKENS,
            effort=config.reasoning_effort,
        ),
        job_id=job_id,
    )
    response = await factory.call(request)
    questions = parse_plan(response.content, query, config.max_questions)
    logger.info("Planner produced %d sub-questions", len(questions))
    return questions, response.usage
