"""Planning phase: versioned task plan, dependency upkeep, feedback log."""

import logging
from datetime import datetime
from typing import Callable

from convflow.domain.errors import CommandRejected
from convflow.domain.models.workflow_state import (
    Plan,
    PlanningState,
    PlanTask,
    PlanUpdate,
)

logger = logging.getLogger(__name__)


def normalize_tasks(tasks: list[PlanTask]) -> list[PlanTask]:
    """Return copies of tasks that satisfy the plan invariants.

    - sorted by ``order`` (stable) and re-indexed densely from 0
    - no task depends on itself
    - dependencies only reference tasks in the list, without duplicates

    Raises:
        CommandRejected: If two tasks share an id
    """
    ids = [t.id for t in tasks]
    if len(ids) != len(set(ids)):
        raise CommandRejected("Task ids must be unique")
    known = set(ids)

    normalized: list[PlanTask] = []
    for index, task in enumerate(sorted(tasks, key=lambda t: t.order)):
        deps = [d for d in dict.fromkeys(task.dependencies) if d != task.id and d in known]
        if len(deps) != len(task.dependencies):
            dropped = sorted(set(task.dependencies) - set(deps))
            logger.debug(f"Task '{task.id}': dropped dependencies {dropped}")
        normalized.append(
            task.model_copy(update={"order": index, "dependencies": deps}, deep=True)
        )
    return normalized


class PlanEngine:
    """Mutations of PlanningState.

    Every structural change to the plan bumps ``version``. Task order is
    ``order`` ascending; dependencies are display metadata here.
    """

    def __init__(self, clock: Callable[[], datetime]) -> None:
        self._clock = clock

    def set_plan(self, state: PlanningState, plan: Plan) -> bool:
        """Install a new plan at version 1, unconfirmed."""
        state.current_plan = plan.model_copy(
            update={
                "tasks": normalize_tasks(plan.tasks),
                "version": 1,
                "confirmed_at": None,
            },
            deep=True,
        )
        state.is_confirmed = False
        return True

    def update_plan(self, state: PlanningState, update: PlanUpdate) -> bool:
        """Merge the set fields of update into the plan.

        An update is an explicit revision, so it always drops confirmation.
        """
        plan = self._require_plan(state)

        changes = {
            name: getattr(update, name)
            for name in update.model_fields_set
            if getattr(update, name) is not None
        }
        if "tasks" in changes:
            changes["tasks"] = normalize_tasks(changes["tasks"])

        for name, value in changes.items():
            setattr(plan, name, value)
        plan.version += 1
        plan.confirmed_at = None
        state.is_confirmed = False
        return True

    def add_feedback(self, state: PlanningState, text: str) -> bool:
        """Record a revision request; the planner answers with update_plan."""
        feedback = text.strip()
        if not feedback:
            raise CommandRejected("Feedback must be non-empty")
        state.user_feedback.append(feedback)
        return True

    def remove_task(self, state: PlanningState, task_id: str) -> bool:
        plan = self._require_plan(state)
        if state.is_confirmed:
            raise CommandRejected("Cannot remove tasks from a confirmed plan")
        if plan.get_task(task_id) is None:
            raise CommandRejected(f"Unknown task id: {task_id}")

        remaining = [t for t in plan.tasks if t.id != task_id]
        for index, task in enumerate(remaining):
            task.order = index
            task.dependencies = [d for d in task.dependencies if d != task_id]
        plan.tasks = remaining
        plan.version += 1
        return True

    def confirm(self, state: PlanningState) -> Plan:
        """Accept the current plan; returns it for execution setup."""
        plan = self._require_plan(state)
        plan.confirmed_at = self._clock()
        state.is_confirmed = True
        return plan

    @staticmethod
    def _require_plan(state: PlanningState) -> Plan:
        if state.current_plan is None:
            raise CommandRejected("No plan has been set")
        return state.current_plan
