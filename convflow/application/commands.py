"""Closed set of commands accepted by the workflow engine.

Each command is a pydantic model tagged by ``type``; ``Command`` is their
discriminated union so any transport (CLI, JSON, tests) can hand the engine
a plain payload.
"""

import json
from typing import Annotated, Any, Literal, Union, get_args

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter

from convflow.domain.models.workflow_state import (
    Answer,
    ClarificationQuestion,
    OverallStatus,
    PhaseEvent,
    Plan,
    PlanUpdate,
    ReviewItem,
    TaskStatus,
)


class _Command(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)


# === Session lifecycle ===

class StartWorkflow(_Command):
    type: Literal["start"] = "start"
    original_request: str


class RequestNewTask(_Command):
    type: Literal["request_new_task"] = "request_new_task"
    original_request: str = ""


class GoBack(_Command):
    type: Literal["go_back"] = "go_back"


class ExitWorkflow(_Command):
    type: Literal["exit"] = "exit"


class RestoreSession(_Command):
    type: Literal["restore"] = "restore"
    snapshot: str | dict[str, Any]


# === Clarification ===

class SetQuestions(_Command):
    type: Literal["set_questions"] = "set_questions"
    questions: list[ClarificationQuestion]


class AnswerQuestion(_Command):
    type: Literal["answer_question"] = "answer_question"
    question_id: str
    answer: bool | Answer


class ToggleOption(_Command):
    type: Literal["toggle_option"] = "toggle_option"
    question_id: str
    option: str


class ConfirmSelection(_Command):
    type: Literal["confirm_selection"] = "confirm_selection"
    question_id: str


class CompleteClarification(_Command):
    type: Literal["complete_clarification"] = "complete_clarification"
    force: bool = False


# === Planning ===

class SetPlan(_Command):
    type: Literal["set_plan"] = "set_plan"
    plan: Plan


class UpdatePlan(_Command):
    type: Literal["update_plan"] = "update_plan"
    update: PlanUpdate


class AddFeedback(_Command):
    type: Literal["add_feedback"] = "add_feedback"
    text: str


class RemoveTask(_Command):
    type: Literal["remove_task"] = "remove_task"
    task_id: str


class ConfirmPlan(_Command):
    type: Literal["confirm_plan"] = "confirm_plan"


# === Execution ===

class StartExecution(_Command):
    type: Literal["start_execution"] = "start_execution"


class UpdateTaskStatus(_Command):
    type: Literal["update_task_status"] = "update_task_status"
    task_id: str
    status: TaskStatus
    result: str | None = None
    error: str | None = None


class SetCurrentTask(_Command):
    type: Literal["set_current_task"] = "set_current_task"
    task_id: str | None = None


class PauseExecution(_Command):
    type: Literal["pause_execution"] = "pause_execution"


class ResumeExecution(_Command):
    type: Literal["resume_execution"] = "resume_execution"


class CancelExecution(_Command):
    type: Literal["cancel_execution"] = "cancel_execution"


class CompleteExecution(_Command):
    type: Literal["complete_execution"] = "complete_execution"


# === Review ===

class SetReview(_Command):
    type: Literal["set_review"] = "set_review"
    items: list[ReviewItem] = Field(default_factory=list)
    summary: str = ""
    overall_status: OverallStatus = OverallStatus.SUCCESS


class SetNextActions(_Command):
    type: Literal["set_next_actions"] = "set_next_actions"
    actions: list[str]


class SummarizeExecution(_Command):
    type: Literal["summarize_execution"] = "summarize_execution"


Command = Annotated[
    Union[
        StartWorkflow,
        RequestNewTask,
        GoBack,
        ExitWorkflow,
        RestoreSession,
        SetQuestions,
        AnswerQuestion,
        ToggleOption,
        ConfirmSelection,
        CompleteClarification,
        SetPlan,
        UpdatePlan,
        AddFeedback,
        RemoveTask,
        ConfirmPlan,
        StartExecution,
        UpdateTaskStatus,
        SetCurrentTask,
        PauseExecution,
        ResumeExecution,
        CancelExecution,
        CompleteExecution,
        SetReview,
        SetNextActions,
        SummarizeExecution,
    ],
    Field(discriminator="type"),
]

_COMMAND_ADAPTER: TypeAdapter[Command] = TypeAdapter(Command)


# Commands that move the phase graph; everything else stays in one phase.
COMMAND_EVENTS: dict[str, PhaseEvent] = {
    "start": PhaseEvent.START,
    "complete_clarification": PhaseEvent.REQUIREMENTS_COMPLETE,
    "confirm_plan": PhaseEvent.PLAN_CONFIRMED,
    "cancel_execution": PhaseEvent.EXECUTION_COMPLETE,
    "complete_execution": PhaseEvent.EXECUTION_COMPLETE,
    "request_new_task": PhaseEvent.REQUEST_NEW_TASK,
    "go_back": PhaseEvent.GO_BACK,
    "exit": PhaseEvent.EXIT,
}


def command_types() -> list[str]:
    """Every ``type`` tag in the Command union."""
    union, *_ = get_args(Command)
    return [m.model_fields["type"].default for m in get_args(union)]


def parse_command(payload: str | bytes | dict[str, Any]) -> Command:
    """Build a command from a wire payload.

    Raises:
        pydantic.ValidationError: If the payload is not a known command
    """
    if isinstance(payload, (str, bytes)):
        payload = json.loads(payload)
    return _COMMAND_ADAPTER.validate_python(payload)
