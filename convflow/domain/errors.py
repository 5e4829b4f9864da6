"""Domain-level exceptions for the conversation workflow engine."""

from convflow.domain.models.workflow_state import ConversationPhase, PhaseEvent


class CommandRejected(Exception):
    """Raised inside the engine when a command cannot be applied.

    Never escapes WorkflowEngine.apply(); it is turned into a rejected result.
    """

    def __init__(self, reason: str):
        self.reason = reason
        super().__init__(reason)


class InvalidTransition(CommandRejected):
    """Raised when a command is not valid from the current phase."""

    def __init__(
        self,
        command: str,
        phase: ConversationPhase,
        event: PhaseEvent | None = None,
    ):
        self.command = command
        self.phase = phase
        self.event = event
        event_str = f" ({event.value})" if event else ""
        super().__init__(
            f"Command '{command}'{event_str} is not valid from {phase.value}"
        )


class SnapshotError(Exception):
    """Raised when a serialized session cannot be parsed or validated."""

    pass
