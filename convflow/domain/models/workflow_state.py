from enum import Enum
from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class ConversationPhase(str, Enum):
    """Workflow phase - WHERE the conversation is.

    Exactly one phase is active; only its sub-state is meaningful.
    """

    IDLE = "idle"                    # No active workflow
    CLARIFICATION = "clarification"  # Collecting missing requirements
    PLANNING = "planning"            # Building and confirming a task plan
    EXECUTION = "execution"          # External executor is running tasks
    REVIEW = "review"                # Summarizing outcomes


class PhaseEvent(str, Enum):
    """Events that move the workflow along the phase graph."""

    START = "start"
    REQUIREMENTS_COMPLETE = "requirements_complete"
    PLAN_CONFIRMED = "plan_confirmed"
    EXECUTION_COMPLETE = "execution_complete"
    REQUEST_NEW_TASK = "request_new_task"
    EXIT = "exit"
    GO_BACK = "go_back"


class QuestionKind(str, Enum):
    TEXT = "text"
    CHOICE = "choice"
    MULTI_SELECT = "multi-select"
    CONFIRMATION = "confirmation"


class TaskStatus(str, Enum):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"

    @property
    def is_terminal(self) -> bool:
        return self in (TaskStatus.COMPLETED, TaskStatus.FAILED, TaskStatus.SKIPPED)


class ReviewItemStatus(str, Enum):
    SUCCESS = "success"
    WARNING = "warning"
    ERROR = "error"


class OverallStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILURE = "failure"


Answer = str | list[str]


# ============================================================================
# Clarification
# ============================================================================


class ClarificationQuestion(BaseModel):
    """A single piece of missing information to collect before planning."""

    model_config = ConfigDict(extra="forbid")

    id: str
    question: str = ""
    kind: QuestionKind = QuestionKind.TEXT
    options: list[str] | None = None
    required: bool = True
    answer: Answer | None = None
    answered_at: datetime | None = None

    # Draft multi-select picks; not an answer until confirmed.
    selection: list[str] = Field(default_factory=list)

    @field_validator("id")
    @classmethod
    def _id_non_empty(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("question id must be non-empty")
        return v2

    @property
    def is_answered(self) -> bool:
        return self.answer is not None


class ClarificationState(BaseModel):
    original_request: str = ""
    questions: list[ClarificationQuestion] = Field(default_factory=list)
    current_question_index: int = 0
    # Zero questions is complete; set_questions recomputes it
    is_complete: bool = True

    @field_validator("questions")
    @classmethod
    def _unique_question_ids(
        cls, v: list[ClarificationQuestion]
    ) -> list[ClarificationQuestion]:
        seen: set[str] = set()
        for q in v:
            if q.id in seen:
                raise ValueError(f"duplicate question id: {q.id}")
            seen.add(q.id)
        return v


# ============================================================================
# Planning
# ============================================================================


class PlanTask(BaseModel):
    """A unit of work in a plan.

    Dependencies are advisory metadata unless the engine is configured to
    enforce them.
    """

    model_config = ConfigDict(extra="forbid")

    id: str
    title: str = ""
    description: str = ""
    order: int = 0
    dependencies: list[str] = Field(default_factory=list)
    status: TaskStatus = TaskStatus.PENDING
    result: str | None = None
    error: str | None = None

    # Planner-supplied hints for the executor
    tool_name: str | None = None
    tool_input: dict[str, Any] | None = None

    @field_validator("id")
    @classmethod
    def _id_non_empty(cls, v: str) -> str:
        v2 = v.strip()
        if not v2:
            raise ValueError("task id must be non-empty")
        return v2


class Plan(BaseModel):
    """Versioned, ordered collection of tasks produced by the planner."""

    model_config = ConfigDict(extra="forbid")

    id: str
    title: str = ""
    description: str = ""
    tasks: list[PlanTask] = Field(default_factory=list)
    version: int = 1
    confirmed_at: datetime | None = None

    @field_validator("version")
    @classmethod
    def _version_ge_1(cls, v: int) -> int:
        if v < 1:
            raise ValueError("version must be >= 1")
        return v

    @model_validator(mode="after")
    def _unique_task_ids(self) -> "Plan":
        ids = [t.id for t in self.tasks]
        if len(ids) != len(set(ids)):
            dupes = sorted({i for i in ids if ids.count(i) > 1})
            raise ValueError(f"duplicate task ids: {dupes}")
        return self

    def get_task(self, task_id: str) -> PlanTask | None:
        for task in self.tasks:
            if task.id == task_id:
                return task
        return None


class PlanUpdate(BaseModel):
    """Partial plan update; unset fields are left alone."""

    model_config = ConfigDict(extra="forbid")

    title: str | None = None
    description: str | None = None
    tasks: list[PlanTask] | None = None


class PlanningState(BaseModel):
    current_plan: Plan | None = None
    is_confirmed: bool = False
    user_feedback: list[str] = Field(default_factory=list)


# ============================================================================
# Execution
# ============================================================================


class ExecutionProgress(BaseModel):
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    current_task_id: str | None = None
    percentage: int = 0
    started_at: datetime | None = None
    completed_at: datetime | None = None


class TaskResult(BaseModel):
    success: bool
    result: str | None = None
    error: str | None = None


class ExecutionState(BaseModel):
    progress: ExecutionProgress = Field(default_factory=ExecutionProgress)
    is_paused: bool = False
    is_cancelled: bool = False
    task_results: dict[str, TaskResult] = Field(default_factory=dict)


# ============================================================================
# Review
# ============================================================================


class ReviewItem(BaseModel):
    task_id: str
    task_title: str = ""
    status: ReviewItemStatus
    summary: str = ""
    details: str | None = None


class ReviewState(BaseModel):
    items: list[ReviewItem] = Field(default_factory=list)
    summary: str = ""
    overall_status: OverallStatus = OverallStatus.SUCCESS
    next_actions: list[str] = Field(default_factory=list)


# ============================================================================
# Session
# ============================================================================


class WorkflowSession(BaseModel):
    """Complete state snapshot of one conversation workflow.

    All four phase sub-states always exist; only the active phase's
    sub-state is semantically meaningful.
    """

    phase: ConversationPhase = ConversationPhase.IDLE
    session_id: str = ""
    started_at: datetime | None = None

    clarification: ClarificationState = Field(default_factory=ClarificationState)
    planning: PlanningState = Field(default_factory=PlanningState)
    execution: ExecutionState = Field(default_factory=ExecutionState)
    review: ReviewState = Field(default_factory=ReviewState)

    @property
    def is_workflow_active(self) -> bool:
        return self.phase != ConversationPhase.IDLE
