"""Workflow event payload model."""

from datetime import datetime
from typing import Any

from pydantic import BaseModel, Field

from convflow.domain.events.event_types import WorkflowEventType
from convflow.domain.models.workflow_state import ConversationPhase


class WorkflowEvent(BaseModel):
    """Immutable event payload for workflow notifications."""

    model_config = {"frozen": True}

    event_type: WorkflowEventType
    session_id: str
    timestamp: datetime
    phase: ConversationPhase
    command: str | None = None
    task_id: str | None = None
    metadata: dict[str, Any] = Field(default_factory=dict)
