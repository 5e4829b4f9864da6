"""Command application for one conversation workflow session.

Every command is checked against the PhaseGraph (or, for commands that stay
in one phase, against the phases that accept it), applied to a deep copy of
the session, and swapped in only on success. Rejections never raise: they
come back as a rejected CommandResult and a warning log.
"""

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Callable

from convflow.application.clarification import ClarificationEngine
from convflow.application.commands import (
    COMMAND_EVENTS,
    AddFeedback,
    AnswerQuestion,
    CancelExecution,
    Command,
    CompleteClarification,
    CompleteExecution,
    ConfirmPlan,
    ConfirmSelection,
    ExitWorkflow,
    GoBack,
    PauseExecution,
    RemoveTask,
    RequestNewTask,
    RestoreSession,
    ResumeExecution,
    SetCurrentTask,
    SetNextActions,
    SetPlan,
    SetQuestions,
    SetReview,
    StartExecution,
    StartWorkflow,
    SummarizeExecution,
    ToggleOption,
    UpdatePlan,
    UpdateTaskStatus,
)
from convflow.application.config_models import EngineConfig
from convflow.application.execution import ExecutionEngine
from convflow.application.planning import PlanEngine
from convflow.application.review import ReviewEngine
from convflow.application.transitions import PhaseGraph
from convflow.domain.errors import CommandRejected, InvalidTransition
from convflow.domain.events.emitter import WorkflowEventEmitter
from convflow.domain.events.event import WorkflowEvent
from convflow.domain.events.event_types import WorkflowEventType
from convflow.domain.models.workflow_state import (
    Answer,
    ClarificationQuestion,
    ClarificationState,
    ConversationPhase,
    OverallStatus,
    PhaseEvent,
    Plan,
    PlanUpdate,
    ReviewItem,
    TaskStatus,
    WorkflowSession,
)
from convflow.domain.persistence.session_store import SessionStore

logger = logging.getLogger(__name__)


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _new_session_id() -> str:
    return uuid.uuid4().hex


_ALL_PHASES = frozenset(ConversationPhase)

# Phases accepting commands that do not move along the graph
COMMAND_PHASES: dict[str, frozenset[ConversationPhase]] = {
    "set_questions": frozenset({ConversationPhase.CLARIFICATION}),
    "answer_question": frozenset({ConversationPhase.CLARIFICATION}),
    "toggle_option": frozenset({ConversationPhase.CLARIFICATION}),
    "confirm_selection": frozenset({ConversationPhase.CLARIFICATION}),
    "set_plan": frozenset({ConversationPhase.PLANNING}),
    "update_plan": frozenset({ConversationPhase.PLANNING}),
    "add_feedback": frozenset({ConversationPhase.PLANNING}),
    "remove_task": frozenset({ConversationPhase.PLANNING}),
    "start_execution": frozenset({ConversationPhase.EXECUTION}),
    "update_task_status": frozenset({ConversationPhase.EXECUTION}),
    "set_current_task": frozenset({ConversationPhase.EXECUTION}),
    "pause_execution": frozenset({ConversationPhase.EXECUTION}),
    "resume_execution": frozenset({ConversationPhase.EXECUTION}),
    "set_review": frozenset({ConversationPhase.REVIEW}),
    "set_next_actions": frozenset({ConversationPhase.REVIEW}),
    "summarize_execution": frozenset({ConversationPhase.REVIEW}),
    "restore": _ALL_PHASES,
}

# Extra notifications beyond COMMAND_APPLIED / PHASE_ENTERED
_COMMAND_NOTIFICATIONS: dict[str, WorkflowEventType] = {
    "update_task_status": WorkflowEventType.TASK_STATUS_CHANGED,
    "pause_execution": WorkflowEventType.EXECUTION_PAUSED,
    "resume_execution": WorkflowEventType.EXECUTION_RESUMED,
    "cancel_execution": WorkflowEventType.EXECUTION_CANCELLED,
    "restore": WorkflowEventType.SESSION_RESTORED,
    "exit": WorkflowEventType.WORKFLOW_EXITED,
}


class CommandOutcome(str, Enum):
    APPLIED = "applied"      # State changed
    UNCHANGED = "unchanged"  # Valid, but nothing to do (e.g. pause while paused)
    REJECTED = "rejected"    # Invalid transition or reference; state untouched


@dataclass(frozen=True, slots=True)
class CommandResult:
    """Outcome of one command.

    Attributes:
        outcome: applied, unchanged or rejected
        command: The command's type tag
        phase: Phase after the command
        session: Session after the command (same object when not applied)
        reason: Why the command was rejected
    """

    outcome: CommandOutcome
    command: str
    phase: ConversationPhase
    session: WorkflowSession
    reason: str | None = None

    @property
    def applied(self) -> bool:
        return self.outcome == CommandOutcome.APPLIED

    @property
    def rejected(self) -> bool:
        return self.outcome == CommandOutcome.REJECTED


# Handler returns the new session, or None when nothing changed
_Handler = Callable[[WorkflowSession, Any], "WorkflowSession | None"]


@dataclass
class WorkflowEngine:
    """Single-writer state machine over one WorkflowSession.

    The engine owns no persistence; WorkflowOrchestrator saves the session
    after each applied command.
    """

    session: WorkflowSession = field(default_factory=WorkflowSession)
    config: EngineConfig = field(default_factory=EngineConfig)
    event_emitter: WorkflowEventEmitter | None = None
    clock: Callable[[], datetime] = utcnow
    id_factory: Callable[[], str] = _new_session_id

    def __post_init__(self) -> None:
        if self.event_emitter is None:
            self.event_emitter = WorkflowEventEmitter()

        self._clarification = ClarificationEngine(self.clock)
        self._planning = PlanEngine(self.clock)
        self._execution = ExecutionEngine(
            self.clock,
            enforce_dependencies=self.config.enforce_dependencies,
            skip_pending_on_cancel=self.config.skip_pending_on_cancel,
        )
        self._review = ReviewEngine()

        self._handlers: dict[type, _Handler] = {
            StartWorkflow: self._handle_start,
            RequestNewTask: self._handle_request_new_task,
            GoBack: self._handle_go_back,
            ExitWorkflow: self._handle_exit,
            RestoreSession: self._handle_restore,
            SetQuestions: self._handle_set_questions,
            AnswerQuestion: self._handle_answer_question,
            ToggleOption: self._handle_toggle_option,
            ConfirmSelection: self._handle_confirm_selection,
            CompleteClarification: self._handle_complete_clarification,
            SetPlan: self._handle_set_plan,
            UpdatePlan: self._handle_update_plan,
            AddFeedback: self._handle_add_feedback,
            RemoveTask: self._handle_remove_task,
            ConfirmPlan: self._handle_confirm_plan,
            StartExecution: self._handle_start_execution,
            UpdateTaskStatus: self._handle_update_task_status,
            SetCurrentTask: self._handle_set_current_task,
            PauseExecution: self._handle_pause,
            ResumeExecution: self._handle_resume,
            CancelExecution: self._handle_cancel,
            CompleteExecution: self._handle_complete_execution,
            SetReview: self._handle_set_review,
            SetNextActions: self._handle_set_next_actions,
            SummarizeExecution: self._handle_summarize,
        }

    # ========================================================================
    # Read model
    # ========================================================================

    @property
    def phase(self) -> ConversationPhase:
        return self.session.phase

    @property
    def is_workflow_active(self) -> bool:
        return self.session.is_workflow_active

    def can_transition(self, event: PhaseEvent | str) -> bool:
        """Unknown event names have no edge and yield False."""
        try:
            event = PhaseEvent(event)
        except ValueError:
            return False
        return PhaseGraph.can_transition(self.session.phase, event)

    def valid_events(self) -> list[PhaseEvent]:
        return PhaseGraph.valid_events(self.session.phase)

    # ========================================================================
    # Dispatch
    # ========================================================================

    def apply(self, command: Command) -> CommandResult:
        """Apply one command atomically.

        Args:
            command: Any member of the Command union

        Returns:
            CommandResult; the engine's session is replaced only when applied
        """
        name = command.type
        phase = self.session.phase

        try:
            target = self._guard(name, phase)
            handler = self._handlers[type(command)]
            draft = self.session.model_copy(deep=True)
            updated = handler(draft, command)
        except CommandRejected as e:
            logger.warning(f"Rejected '{name}' in phase {phase.value}: {e.reason}")
            self._emit(
                WorkflowEventType.COMMAND_REJECTED,
                command=name,
                metadata={"reason": e.reason},
            )
            return CommandResult(
                outcome=CommandOutcome.REJECTED,
                command=name,
                phase=phase,
                session=self.session,
                reason=e.reason,
            )

        if updated is None:
            return CommandResult(
                outcome=CommandOutcome.UNCHANGED,
                command=name,
                phase=phase,
                session=self.session,
            )

        if target is not None:
            updated.phase = target
        self.session = updated
        logger.debug(f"Applied '{name}': {phase.value} -> {updated.phase.value}")

        self._emit(WorkflowEventType.COMMAND_APPLIED, command=name)
        notification = _COMMAND_NOTIFICATIONS.get(name)
        if notification is not None:
            self._emit(notification, command=name, task_id=getattr(command, "task_id", None))
        if updated.phase != phase:
            self._emit(
                WorkflowEventType.PHASE_ENTERED,
                command=name,
                metadata={"from": phase.value},
            )

        return CommandResult(
            outcome=CommandOutcome.APPLIED,
            command=name,
            phase=updated.phase,
            session=updated,
        )

    @staticmethod
    def _guard(name: str, phase: ConversationPhase) -> ConversationPhase | None:
        """Validate the command against the current phase.

        Returns:
            Target phase for graph-moving commands, None otherwise

        Raises:
            InvalidTransition: If the current phase does not accept the command
        """
        event = COMMAND_EVENTS.get(name)
        if event is not None:
            target = PhaseGraph.next_phase(phase, event)
            if target is None:
                raise InvalidTransition(name, phase, event)
            return target

        if phase not in COMMAND_PHASES[name]:
            raise InvalidTransition(name, phase)
        return None

    # ========================================================================
    # Command methods
    # ========================================================================

    def start(self, original_request: str) -> CommandResult:
        return self.apply(StartWorkflow(original_request=original_request))

    def set_questions(
        self, questions: list[ClarificationQuestion | dict[str, Any]]
    ) -> CommandResult:
        return self.apply(SetQuestions(questions=questions))

    def answer_question(self, question_id: str, answer: Answer | bool) -> CommandResult:
        return self.apply(AnswerQuestion(question_id=question_id, answer=answer))

    def toggle_option(self, question_id: str, option: str) -> CommandResult:
        return self.apply(ToggleOption(question_id=question_id, option=option))

    def confirm_selection(self, question_id: str) -> CommandResult:
        return self.apply(ConfirmSelection(question_id=question_id))

    def complete_clarification(self, force: bool = False) -> CommandResult:
        return self.apply(CompleteClarification(force=force))

    def set_plan(self, plan: Plan | dict[str, Any]) -> CommandResult:
        return self.apply(SetPlan(plan=plan))

    def update_plan(self, update: PlanUpdate | dict[str, Any]) -> CommandResult:
        return self.apply(UpdatePlan(update=update))

    def add_feedback(self, text: str) -> CommandResult:
        return self.apply(AddFeedback(text=text))

    def remove_task(self, task_id: str) -> CommandResult:
        return self.apply(RemoveTask(task_id=task_id))

    def confirm_plan(self) -> CommandResult:
        return self.apply(ConfirmPlan())

    def start_execution(self) -> CommandResult:
        return self.apply(StartExecution())

    def update_task_status(
        self,
        task_id: str,
        status: TaskStatus | str,
        result: str | None = None,
        error: str | None = None,
    ) -> CommandResult:
        return self.apply(
            UpdateTaskStatus(task_id=task_id, status=status, result=result, error=error)
        )

    def set_current_task(self, task_id: str | None) -> CommandResult:
        return self.apply(SetCurrentTask(task_id=task_id))

    def pause_execution(self) -> CommandResult:
        return self.apply(PauseExecution())

    def resume_execution(self) -> CommandResult:
        return self.apply(ResumeExecution())

    def cancel_execution(self) -> CommandResult:
        return self.apply(CancelExecution())

    def complete_execution(self) -> CommandResult:
        return self.apply(CompleteExecution())

    def set_review(
        self,
        items: list[ReviewItem | dict[str, Any]],
        summary: str,
        overall_status: OverallStatus | str,
    ) -> CommandResult:
        return self.apply(
            SetReview(items=items, summary=summary, overall_status=overall_status)
        )

    def set_next_actions(self, actions: list[str]) -> CommandResult:
        return self.apply(SetNextActions(actions=actions))

    def summarize_execution(self) -> CommandResult:
        return self.apply(SummarizeExecution())

    def request_new_task(self, original_request: str = "") -> CommandResult:
        return self.apply(RequestNewTask(original_request=original_request))

    def go_back(self) -> CommandResult:
        return self.apply(GoBack())

    def exit(self) -> CommandResult:
        return self.apply(ExitWorkflow())

    def restore(self, snapshot: str | dict[str, Any]) -> CommandResult:
        return self.apply(RestoreSession(snapshot=snapshot))

    # ========================================================================
    # Handlers
    # ========================================================================

    def _handle_start(self, draft: WorkflowSession, cmd: StartWorkflow) -> WorkflowSession:
        request = cmd.original_request.strip()
        if not request:
            raise CommandRejected("Original request must be non-empty")
        return WorkflowSession(
            session_id=self.id_factory(),
            started_at=self.clock(),
            clarification=ClarificationState(original_request=request),
        )

    def _handle_request_new_task(
        self, draft: WorkflowSession, cmd: RequestNewTask
    ) -> WorkflowSession:
        fresh = WorkflowSession()
        draft.clarification = ClarificationState(original_request=cmd.original_request.strip())
        draft.planning = fresh.planning
        draft.execution = fresh.execution
        draft.review = fresh.review
        return draft

    def _handle_go_back(self, draft: WorkflowSession, cmd: GoBack) -> WorkflowSession:
        return draft

    def _handle_exit(self, draft: WorkflowSession, cmd: ExitWorkflow) -> WorkflowSession:
        return WorkflowSession()

    def _handle_restore(
        self, draft: WorkflowSession, cmd: RestoreSession
    ) -> WorkflowSession:
        return SessionStore.restore(cmd.snapshot)

    def _handle_set_questions(
        self, draft: WorkflowSession, cmd: SetQuestions
    ) -> WorkflowSession:
        self._clarification.set_questions(draft.clarification, cmd.questions)
        return draft

    def _handle_answer_question(
        self, draft: WorkflowSession, cmd: AnswerQuestion
    ) -> WorkflowSession:
        self._clarification.answer_question(draft.clarification, cmd.question_id, cmd.answer)
        return draft

    def _handle_toggle_option(
        self, draft: WorkflowSession, cmd: ToggleOption
    ) -> WorkflowSession:
        self._clarification.toggle_option(draft.clarification, cmd.question_id, cmd.option)
        return draft

    def _handle_confirm_selection(
        self, draft: WorkflowSession, cmd: ConfirmSelection
    ) -> WorkflowSession:
        self._clarification.confirm_selection(draft.clarification, cmd.question_id)
        return draft

    def _handle_complete_clarification(
        self, draft: WorkflowSession, cmd: CompleteClarification
    ) -> WorkflowSession:
        self._clarification.complete(draft.clarification, force=cmd.force)
        return draft

    def _handle_set_plan(self, draft: WorkflowSession, cmd: SetPlan) -> WorkflowSession:
        self._planning.set_plan(draft.planning, cmd.plan)
        return draft

    def _handle_update_plan(self, draft: WorkflowSession, cmd: UpdatePlan) -> WorkflowSession:
        self._planning.update_plan(draft.planning, cmd.update)
        return draft

    def _handle_add_feedback(self, draft: WorkflowSession, cmd: AddFeedback) -> WorkflowSession:
        self._planning.add_feedback(draft.planning, cmd.text)
        return draft

    def _handle_remove_task(self, draft: WorkflowSession, cmd: RemoveTask) -> WorkflowSession:
        self._planning.remove_task(draft.planning, cmd.task_id)
        return draft

    def _handle_confirm_plan(self, draft: WorkflowSession, cmd: ConfirmPlan) -> WorkflowSession:
        plan = self._planning.confirm(draft.planning)
        draft.execution = self._execution.initialize(plan)
        return draft

    def _handle_start_execution(
        self, draft: WorkflowSession, cmd: StartExecution
    ) -> WorkflowSession | None:
        return draft if self._execution.start(draft.execution) else None

    def _handle_update_task_status(
        self, draft: WorkflowSession, cmd: UpdateTaskStatus
    ) -> WorkflowSession:
        self._execution.update_task_status(
            draft.execution,
            self._require_plan(draft),
            cmd.task_id,
            cmd.status,
            result=cmd.result,
            error=cmd.error,
        )
        return draft

    def _handle_set_current_task(
        self, draft: WorkflowSession, cmd: SetCurrentTask
    ) -> WorkflowSession | None:
        changed = self._execution.set_current_task(
            draft.execution, self._require_plan(draft), cmd.task_id
        )
        return draft if changed else None

    def _handle_pause(self, draft: WorkflowSession, cmd: PauseExecution) -> WorkflowSession | None:
        return draft if self._execution.pause(draft.execution) else None

    def _handle_resume(
        self, draft: WorkflowSession, cmd: ResumeExecution
    ) -> WorkflowSession | None:
        return draft if self._execution.resume(draft.execution) else None

    def _handle_cancel(self, draft: WorkflowSession, cmd: CancelExecution) -> WorkflowSession:
        skipped = self._execution.cancel(draft.execution, draft.planning.current_plan)
        if skipped:
            logger.info(f"Cancelled execution; skipped tasks {skipped}")
        return draft

    def _handle_complete_execution(
        self, draft: WorkflowSession, cmd: CompleteExecution
    ) -> WorkflowSession:
        self._execution.complete(draft.execution)
        return draft

    def _handle_set_review(self, draft: WorkflowSession, cmd: SetReview) -> WorkflowSession:
        self._review.set_review(draft.review, cmd.items, cmd.summary, cmd.overall_status)
        return draft

    def _handle_set_next_actions(
        self, draft: WorkflowSession, cmd: SetNextActions
    ) -> WorkflowSession | None:
        return draft if self._review.set_next_actions(draft.review, cmd.actions) else None

    def _handle_summarize(
        self, draft: WorkflowSession, cmd: SummarizeExecution
    ) -> WorkflowSession:
        review = self._review.assemble(draft.planning.current_plan, draft.execution)
        self._review.set_review(draft.review, review.items, review.summary, review.overall_status)
        return draft

    # ========================================================================
    # Helpers
    # ========================================================================

    @staticmethod
    def _require_plan(session: WorkflowSession) -> Plan:
        plan = session.planning.current_plan
        if plan is None:
            raise CommandRejected("No confirmed plan to execute")
        return plan

    def _emit(
        self,
        event_type: WorkflowEventType,
        *,
        command: str | None = None,
        task_id: str | None = None,
        metadata: dict[str, Any] | None = None,
    ) -> None:
        self.event_emitter.emit(
            WorkflowEvent(
                event_type=event_type,
                session_id=self.session.session_id,
                timestamp=self.clock(),
                phase=self.session.phase,
                command=command,
                task_id=task_id,
                metadata=metadata or {},
            )
        )
