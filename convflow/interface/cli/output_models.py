from typing import Any, Literal

from pydantic import BaseModel, Field


class BaseOutput(BaseModel):
    schema_version: int = 1
    command: str
    exit_code: int
    error: str | None = None


class CommandOutput(BaseOutput):
    """Result of a state-changing subcommand."""

    outcome: Literal["applied", "unchanged", "rejected"] | None = None
    phase: str | None = None
    session_id: str | None = None
    reason: str | None = None


class ProgressSummary(BaseModel):
    total_tasks: int = 0
    completed_tasks: int = 0
    failed_tasks: int = 0
    percentage: int = 0
    current_task_id: str | None = None
    is_paused: bool = False
    is_cancelled: bool = False


class StatusOutput(BaseOutput):
    command: str = "status"
    phase: str | None = None
    phase_name: str | None = None
    session_id: str | None = None
    is_workflow_active: bool = False
    valid_events: list[str] = Field(default_factory=list)
    completion_errors: list[str] = Field(default_factory=list)
    progress: ProgressSummary | None = None


class ShowOutput(BaseOutput):
    command: str = "show"
    session: dict[str, Any] | None = None


class KeysOutput(BaseOutput):
    command: str = "keys"
    keys: list[str] = Field(default_factory=list)
    total: int = 0


class AnalyzeOutput(BaseOutput):
    command: str = "analyze"
    is_complex: bool = False
    reason: str = ""
    suggested_questions: list[dict[str, Any]] = Field(default_factory=list)
