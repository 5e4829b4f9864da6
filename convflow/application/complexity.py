"""Heuristic check for whether a request warrants the full workflow.

Fast and local: keywords, length, sentence count and list markers decide,
and a few starter clarification questions are proposed for complex requests.
"""

import re

from pydantic import BaseModel, Field

from convflow.domain.models.workflow_state import ClarificationQuestion, QuestionKind


COMPLEX_KEYWORDS = (
    "create",
    "build",
    "implement",
    "set up",
    "configure",
    "migrate",
    "refactor",
    "integrate",
    "automate",
    "analyze and",
    "multiple",
    "all",
    "every",
    "batch",
    "bulk",
    "across",
    "comprehensive",
    "complete",
    "full",
    "entire",
)

SIMPLE_KEYWORDS = (
    "what is",
    "how do",
    "show me",
    "list",
    "find",
    "get",
    "tell me",
    "explain",
    "help with",
    "status",
    "check",
)

_LIST_MARKER = re.compile(r"(\d+\.|•|-|\*)\s")
_SENTENCE_SPLIT = re.compile(r"[.!?]+")


class ComplexityAnalysis(BaseModel):
    is_complex: bool
    reason: str
    suggested_questions: list[ClarificationQuestion] = Field(default_factory=list)


def _has_word(message: str, keyword: str) -> bool:
    return re.search(rf"\b{re.escape(keyword)}\b", message) is not None


def analyze_request(message: str) -> ComplexityAnalysis:
    lower = message.lower()
    word_count = len(message.split())
    sentence_count = len([s for s in _SENTENCE_SPLIT.split(message) if s.strip()])

    has_complex = any(_has_word(lower, k) for k in COMPLEX_KEYWORDS)
    has_simple = any(_has_word(lower, k) for k in SIMPLE_KEYWORDS)
    has_list = bool(_LIST_MARKER.search(message)) or (" and " in message and "," in message)

    if has_simple and not has_complex and word_count < 15:
        return ComplexityAnalysis(is_complex=False, reason="Simple query detected")

    if not (has_complex or word_count > 30 or sentence_count > 2 or has_list):
        return ComplexityAnalysis(is_complex=False, reason="Standard request")

    questions: list[ClarificationQuestion] = []
    if has_list or sentence_count > 2:
        questions.append(
            ClarificationQuestion(
                id="priority",
                question="Which of these tasks should be prioritized first?",
                kind=QuestionKind.CHOICE,
                options=["First mentioned", "Most impactful", "Quickest wins first"],
                required=False,
            )
        )
    if _has_word(lower, "create") or _has_word(lower, "build"):
        questions.append(
            ClarificationQuestion(
                id="details",
                question="Do you have specific requirements or preferences for the implementation?",
                kind=QuestionKind.TEXT,
                required=True,
            )
        )
    if any(_has_word(lower, k) for k in ("all", "every", "bulk")):
        questions.append(
            ClarificationQuestion(
                id="scope",
                question="Should this apply to all items, or would you like to select specific ones?",
                kind=QuestionKind.CHOICE,
                options=["All items", "Let me select specific items"],
                required=True,
            )
        )

    return ComplexityAnalysis(
        is_complex=True,
        reason="Complex request with multiple requirements",
        suggested_questions=questions,
    )
