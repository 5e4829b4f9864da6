"""Clarification phase: questions, answers and completion detection."""

import logging
from datetime import datetime
from typing import Callable

from convflow.domain.errors import CommandRejected
from convflow.domain.models.workflow_state import (
    Answer,
    ClarificationQuestion,
    ClarificationState,
    QuestionKind,
)

logger = logging.getLogger(__name__)

_YES = "yes"
_NO = "no"


def normalize_answer(question: ClarificationQuestion, answer: Answer | bool) -> Answer:
    """Coerce an answer to the shape its question kind expects.

    Raises:
        CommandRejected: If the answer does not fit the question
    """
    kind = question.kind

    if kind == QuestionKind.CONFIRMATION:
        if isinstance(answer, bool):
            return _YES if answer else _NO
        if isinstance(answer, str) and answer.strip().lower() in (_YES, _NO):
            return answer.strip().lower()
        raise CommandRejected(
            f"Question '{question.id}' expects 'yes' or 'no', got {answer!r}"
        )

    if kind == QuestionKind.MULTI_SELECT:
        if not isinstance(answer, list):
            raise CommandRejected(f"Question '{question.id}' expects a list of options")
        picked = list(dict.fromkeys(answer))
        if question.options is not None:
            unknown = [a for a in picked if a not in question.options]
            if unknown:
                raise CommandRejected(
                    f"Question '{question.id}' has no options {unknown}"
                )
        if question.required and not picked:
            raise CommandRejected(f"Question '{question.id}' requires a selection")
        return picked

    if not isinstance(answer, str):
        raise CommandRejected(f"Question '{question.id}' expects a text answer")

    if kind == QuestionKind.CHOICE and question.options is not None:
        if answer not in question.options:
            raise CommandRejected(
                f"'{answer}' is not an option for question '{question.id}'"
            )

    return answer


class ClarificationEngine:
    """Mutations of ClarificationState.

    Methods return True when the state changed and raise CommandRejected
    when the request addresses an unknown question or carries a bad answer.
    """

    def __init__(self, clock: Callable[[], datetime]) -> None:
        self._clock = clock

    def set_questions(
        self,
        state: ClarificationState,
        questions: list[ClarificationQuestion],
    ) -> bool:
        """Replace the question list wholesale."""
        ids = [q.id for q in questions]
        if len(ids) != len(set(ids)):
            raise CommandRejected("Question ids must be unique")
        state.questions = [q.model_copy(deep=True) for q in questions]
        state.current_question_index = 0
        state.is_complete = len(questions) == 0
        return True

    def answer_question(
        self,
        state: ClarificationState,
        question_id: str,
        answer: Answer | bool,
    ) -> bool:
        question = self._find(state, question_id)
        question.answer = normalize_answer(question, answer)
        question.answered_at = self._clock()
        if question.kind == QuestionKind.MULTI_SELECT:
            question.selection = list(question.answer)
        self._recompute(state)
        return True

    def toggle_option(
        self,
        state: ClarificationState,
        question_id: str,
        option: str,
    ) -> bool:
        """Add or remove option from a multi-select draft selection.

        Toggling never answers the question.
        """
        question = self._find(state, question_id)
        if question.kind != QuestionKind.MULTI_SELECT:
            raise CommandRejected(f"Question '{question_id}' is not multi-select")
        if question.options is not None and option not in question.options:
            raise CommandRejected(
                f"'{option}' is not an option for question '{question_id}'"
            )
        if option in question.selection:
            question.selection.remove(option)
        else:
            question.selection.append(option)
        return True

    def confirm_selection(self, state: ClarificationState, question_id: str) -> bool:
        """Commit the draft selection of a multi-select question as its answer."""
        question = self._find(state, question_id)
        if question.kind != QuestionKind.MULTI_SELECT:
            raise CommandRejected(f"Question '{question_id}' is not multi-select")
        return self.answer_question(state, question_id, list(question.selection))

    def complete(self, state: ClarificationState, *, force: bool = False) -> None:
        if not state.is_complete and not force:
            unanswered = sum(1 for q in state.questions if not q.is_answered)
            raise CommandRejected(
                f"Clarification incomplete: {unanswered} questions unanswered"
            )
        if force and not state.is_complete:
            logger.info("Clarification completed by override with unanswered questions")
        state.is_complete = True

    @staticmethod
    def _find(state: ClarificationState, question_id: str) -> ClarificationQuestion:
        for question in state.questions:
            if question.id == question_id:
                return question
        raise CommandRejected(f"Unknown question id: {question_id}")

    @staticmethod
    def _recompute(state: ClarificationState) -> None:
        """Point at the first unanswered question, or the last one if none remain."""
        questions = state.questions
        first_open = next(
            (i for i, q in enumerate(questions) if not q.is_answered),
            None,
        )
        if first_open is None:
            state.current_question_index = max(len(questions) - 1, 0)
            state.is_complete = True
        else:
            state.current_question_index = first_open
            state.is_complete = False
