"""Load, apply, persist: the session owner's command loop.

The engine is pure state; this layer reads the stored snapshot, applies one
command and writes the result back only when something changed.
"""

import logging
from dataclasses import dataclass, field
from datetime import datetime
from typing import Callable

from convflow.application.commands import Command
from convflow.application.config_models import EngineConfig
from convflow.application.workflow_engine import (
    CommandResult,
    WorkflowEngine,
    utcnow,
)
from convflow.domain.events.emitter import WorkflowEventEmitter
from convflow.domain.models.workflow_state import WorkflowSession
from convflow.domain.persistence.session_store import SessionStore

logger = logging.getLogger(__name__)


@dataclass
class WorkflowOrchestrator:
    """Session owner binding a WorkflowEngine to a SessionStore."""

    session_store: SessionStore
    engine_config: EngineConfig = field(default_factory=EngineConfig)
    event_emitter: WorkflowEventEmitter | None = None
    clock: Callable[[], datetime] = utcnow

    def __post_init__(self) -> None:
        if self.event_emitter is None:
            self.event_emitter = WorkflowEventEmitter()

    def load(self) -> WorkflowSession:
        """Cold-start read. Never writes the snapshot back."""
        return self.session_store.load()

    def engine(self, session: WorkflowSession | None = None) -> WorkflowEngine:
        return WorkflowEngine(
            session=session if session is not None else self.load(),
            config=self.engine_config,
            event_emitter=self.event_emitter,
            clock=self.clock,
        )

    def execute(self, command: Command) -> CommandResult:
        """Apply one command to the stored session and persist the outcome.

        Returns:
            The engine's CommandResult
        """
        result = self.engine().apply(command)
        self.persist(result)
        return result

    def persist(self, result: CommandResult) -> None:
        """Write the session after an applied command.

        Unchanged and rejected commands leave the snapshot alone; exit
        clears it.
        """
        if not result.applied:
            return
        if result.command == "exit":
            self.session_store.clear()
            logger.debug("Cleared session snapshot on exit")
            return
        self.session_store.save(result.session)
