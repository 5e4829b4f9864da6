"""Workflow event types for observer notifications."""

from enum import Enum


class WorkflowEventType(str, Enum):
    """Typed events emitted as commands are applied to a session."""

    # Phase lifecycle
    PHASE_ENTERED = "phase_entered"

    # Command outcomes
    COMMAND_APPLIED = "command_applied"
    COMMAND_REJECTED = "command_rejected"

    # Execution
    TASK_STATUS_CHANGED = "task_status_changed"
    EXECUTION_PAUSED = "execution_paused"
    EXECUTION_RESUMED = "execution_resumed"
    EXECUTION_CANCELLED = "execution_cancelled"

    # Session lifecycle
    SESSION_RESTORED = "session_restored"
    WORKFLOW_EXITED = "workflow_exited"
