"""Declarative phase graph for the conversation workflow.

PhaseGraph maps (current_phase, event) -> next_phase. It is a pure lookup:
an event with no edge from the current phase yields None, and callers treat
that as a rejected command, never a crash.
"""

from dataclasses import dataclass, field

from convflow.domain.models.workflow_state import (
    ConversationPhase,
    PhaseEvent,
    WorkflowSession,
)


_TransitionKey = tuple[ConversationPhase, PhaseEvent]


# Phase order for steppers; idle is outside the order
PHASE_ORDER: list[ConversationPhase] = [
    ConversationPhase.CLARIFICATION,
    ConversationPhase.PLANNING,
    ConversationPhase.EXECUTION,
    ConversationPhase.REVIEW,
]

PHASE_DISPLAY_NAMES: dict[ConversationPhase, str] = {
    ConversationPhase.IDLE: "Ready",
    ConversationPhase.CLARIFICATION: "Clarifying",
    ConversationPhase.PLANNING: "Planning",
    ConversationPhase.EXECUTION: "Executing",
    ConversationPhase.REVIEW: "Complete",
}

PHASE_DESCRIPTIONS: dict[ConversationPhase, str] = {
    ConversationPhase.IDLE: "Ready to help with your request",
    ConversationPhase.CLARIFICATION: "Gathering requirements to understand your needs",
    ConversationPhase.PLANNING: "Creating a detailed execution plan",
    ConversationPhase.EXECUTION: "Executing the planned tasks",
    ConversationPhase.REVIEW: "Reviewing results and next steps",
}


@dataclass(frozen=True, slots=True)
class PhaseValidation:
    """Whether the active phase has met its completion requirements."""

    is_valid: bool
    errors: list[str] = field(default_factory=list)


class PhaseGraph:
    """Legal phase transitions and guard helpers.

    Usage:
        nxt = PhaseGraph.next_phase(session.phase, PhaseEvent.PLAN_CONFIRMED)
        if nxt is None:
            # reject, leave state unchanged
    """

    _TRANSITIONS: dict[_TransitionKey, ConversationPhase] = {
        # === Forward edges ===
        (ConversationPhase.IDLE, PhaseEvent.START): ConversationPhase.CLARIFICATION,
        (ConversationPhase.CLARIFICATION, PhaseEvent.REQUIREMENTS_COMPLETE): ConversationPhase.PLANNING,
        (ConversationPhase.PLANNING, PhaseEvent.PLAN_CONFIRMED): ConversationPhase.EXECUTION,
        (ConversationPhase.EXECUTION, PhaseEvent.EXECUTION_COMPLETE): ConversationPhase.REVIEW,
        (ConversationPhase.REVIEW, PhaseEvent.REQUEST_NEW_TASK): ConversationPhase.CLARIFICATION,

        # === Exit from anywhere ===
        (ConversationPhase.IDLE, PhaseEvent.EXIT): ConversationPhase.IDLE,
        (ConversationPhase.CLARIFICATION, PhaseEvent.EXIT): ConversationPhase.IDLE,
        (ConversationPhase.PLANNING, PhaseEvent.EXIT): ConversationPhase.IDLE,
        (ConversationPhase.EXECUTION, PhaseEvent.EXIT): ConversationPhase.IDLE,
        (ConversationPhase.REVIEW, PhaseEvent.EXIT): ConversationPhase.IDLE,

        # === One step back ===
        (ConversationPhase.CLARIFICATION, PhaseEvent.GO_BACK): ConversationPhase.IDLE,
        (ConversationPhase.PLANNING, PhaseEvent.GO_BACK): ConversationPhase.CLARIFICATION,
        (ConversationPhase.EXECUTION, PhaseEvent.GO_BACK): ConversationPhase.PLANNING,
    }

    @classmethod
    def next_phase(
        cls,
        phase: ConversationPhase,
        event: PhaseEvent,
    ) -> ConversationPhase | None:
        """Get the phase reached by event from phase, or None if no edge."""
        return cls._TRANSITIONS.get((phase, event))

    @classmethod
    def can_transition(cls, phase: ConversationPhase, event: PhaseEvent) -> bool:
        return (phase, event) in cls._TRANSITIONS

    @classmethod
    def valid_events(cls, phase: ConversationPhase) -> list[PhaseEvent]:
        """List events with an edge out of phase, in declaration order."""
        return [e for (p, e) in cls._TRANSITIONS if p == phase]

    @classmethod
    def edges(cls) -> list[tuple[ConversationPhase, PhaseEvent, ConversationPhase]]:
        return [(p, e, nxt) for (p, e), nxt in cls._TRANSITIONS.items()]

    # ========================================================================
    # Ordering helpers
    # ========================================================================

    @staticmethod
    def phase_index(phase: ConversationPhase) -> int:
        """Position in PHASE_ORDER; idle is -1."""
        if phase == ConversationPhase.IDLE:
            return -1
        return PHASE_ORDER.index(phase)

    @classmethod
    def is_phase_before(cls, phase: ConversationPhase, other: ConversationPhase) -> bool:
        return cls.phase_index(phase) < cls.phase_index(other)

    @classmethod
    def is_phase_after(cls, phase: ConversationPhase, other: ConversationPhase) -> bool:
        return cls.phase_index(phase) > cls.phase_index(other)

    @classmethod
    def previous_phase(cls, phase: ConversationPhase) -> ConversationPhase | None:
        return cls.next_phase(phase, PhaseEvent.GO_BACK)

    # ========================================================================
    # Completion guards
    # ========================================================================

    @staticmethod
    def validate_phase_completion(session: WorkflowSession) -> PhaseValidation:
        """Check whether the active phase's work is done.

        Advisory: the engine only gates clarification completion on it
        (without force). Callers use the errors for display.
        """
        errors: list[str] = []
        phase = session.phase

        if phase == ConversationPhase.CLARIFICATION:
            questions = session.clarification.questions
            unanswered = sum(1 for q in questions if not q.is_answered)
            if unanswered:
                errors.append(f"{unanswered} questions still need answers")

        elif phase == ConversationPhase.PLANNING:
            plan = session.planning.current_plan
            if plan is None:
                errors.append("No plan has been proposed yet")
            else:
                if not session.planning.is_confirmed:
                    errors.append("Plan must be confirmed before execution")
                if not plan.tasks:
                    errors.append("Plan must have at least one task")

        elif phase == ConversationPhase.EXECUTION:
            plan = session.planning.current_plan
            tasks = plan.tasks if plan else []
            remaining = sum(1 for t in tasks if not t.status.is_terminal)
            if remaining:
                errors.append(f"{remaining} tasks still pending")

        return PhaseValidation(is_valid=not errors, errors=errors)
