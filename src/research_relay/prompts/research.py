"""Prompt templates for the four-phase research pipeline.

Templates use ``str.format`` placeholders. Literal braces in the JSON
examples are doubled.
"""

from __future__ import annotations

PLANNER_SYSTEM = """\
You are a research planner. Break a research question into focused, \
independently answerable sub-questions. Cover distinct angles; avoid overlap. \
Respond with JSON only."""

PLANNER_PROMPT = """\
RESEARCH QUERY:
{query}

Decompose this query into at most {max_questions} sub-questions.

Return a JSON array where each element has:
- "id": short identifier such as "q1"
- "question": the sub-question, self-contained
- "priority": "high", "medium" or "low"
- "expected_scope": one sentence on what a complete answer covers

Example:
[
  {{"id": "q1", "question": "...", "priority": "high", "expected_scope": "..."}}
]
{language_instruction}"""

EXECUTOR_SYSTEM = """\
You are a research analyst answering one sub-question of a larger study. \
Be specific and factual. Cite sources where possible. If evidence is thin \
or conflicting, say so."""

EXECUTOR_PROMPT = """\
ORIGINAL RESEARCH QUERY (context only):
{query}

SUB-QUESTION ({priority} priority):
{question}

EXPECTED SCOPE:
{expected_scope}

Answer the sub-question in about {min_words}-{max_words} words. \
Name the sources you relied on.
{language_instruction}"""

PUBLISHER_SYSTEM = """\
You are a research editor. Merge the findings of several analysts into one \
coherent report. Resolve overlap, flag contradictions, and keep every claim \
traceable to a finding."""

PUBLISHER_PROMPT = """\
RESEARCH QUERY:
{query}

FINDINGS:
{findings}

SOURCES:
{sources}

Write an intermediate report with these sections and targets:
## Summary ({summary_min}-{summary_max} words)
## Analysis ({analysis_min}-{analysis_max} words)
## Implications ({implications_min}-{implications_max} words)
## Conclusion ({conclusion_min}-{conclusion_max} words)

Total length about {total_words} words.
{language_instruction}"""

FINALIZER_SYSTEM = """\
You are producing the final deliverable of a research run. The original \
request below is authoritative: follow any structure, format or tone it \
asks for, using the research material as your evidence base."""

FINALIZER_PROMPT = """\
ORIGINAL REQUEST:
{query}

RESEARCH REPORT (intermediate):
{intermediate}

FINDINGS:
{findings}

SOURCES:
{sources}

Write the final report ({depth} depth, about {final_words} words). \
Start with a "## Summary" section. Reference sources by number.
{polish_block}{language_instruction}"""

POLISH_BLOCK = """\
POST-PROCESSING DIRECTIVE (apply to the whole text):
{directive}

"""

LANGUAGE_INSTRUCTIONS: dict[str, str] = {
    "en": "",
    "nl": "\nIMPORTANT: Write ALL output in Dutch (Nederlands).",
}

FINDING_BLOCK = """\
### [{index}] {question}
Confidence: {confidence:.0%}
{answer}
"""
