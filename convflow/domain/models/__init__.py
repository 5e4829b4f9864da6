"""Domain models for the conversation workflow engine."""

from .workflow_state import (
    ClarificationQuestion,
    ClarificationState,
    ConversationPhase,
    ExecutionProgress,
    ExecutionState,
    OverallStatus,
    PhaseEvent,
    Plan,
    PlanningState,
    PlanTask,
    PlanUpdate,
    QuestionKind,
    ReviewItem,
    ReviewItemStatus,
    ReviewState,
    TaskResult,
    TaskStatus,
    WorkflowSession,
)


__all__ = [
    "ClarificationQuestion",
    "ClarificationState",
    "ConversationPhase",
    "ExecutionProgress",
    "ExecutionState",
    "OverallStatus",
    "PhaseEvent",
    "Plan",
    "PlanningState",
    "PlanTask",
    "PlanUpdate",
    "QuestionKind",
    "ReviewItem",
    "ReviewItemStatus",
    "ReviewState",
    "TaskResult",
    "TaskStatus",
    "WorkflowSession",
]
