"""Execution phase: per-task status, aggregate progress, pause/cancel flags.

The engine never runs tasks. An external executor reports progress through
update_task_status/set_current_task and polls is_paused/is_cancelled.
"""

import logging
import math
from datetime import datetime
from typing import Callable

from convflow.domain.errors import CommandRejected
from convflow.domain.models.workflow_state import (
    ExecutionProgress,
    ExecutionState,
    Plan,
    TaskResult,
    TaskStatus,
)

logger = logging.getLogger(__name__)


def compute_percentage(completed: int, failed: int, total: int) -> int:
    """round(100 * (completed + failed) / total), halves rounded up; 0 if total is 0."""
    if total <= 0:
        return 0
    return int(math.floor(100 * (completed + failed) / total + 0.5))


class ExecutionEngine:
    """Mutations of ExecutionState and the task statuses of the confirmed plan."""

    def __init__(
        self,
        clock: Callable[[], datetime],
        *,
        enforce_dependencies: bool = False,
        skip_pending_on_cancel: bool = False,
    ) -> None:
        self._clock = clock
        self.enforce_dependencies = enforce_dependencies
        self.skip_pending_on_cancel = skip_pending_on_cancel

    def initialize(self, plan: Plan) -> ExecutionState:
        """Fresh execution state for a just-confirmed plan."""
        state = ExecutionState(
            progress=ExecutionProgress(
                total_tasks=len(plan.tasks),
                started_at=self._clock(),
            )
        )
        self._recount(state, plan)
        return state

    def start(self, state: ExecutionState) -> bool:
        if state.progress.started_at is not None:
            return False
        state.progress.started_at = self._clock()
        return True

    def update_task_status(
        self,
        state: ExecutionState,
        plan: Plan,
        task_id: str,
        status: TaskStatus,
        result: str | None = None,
        error: str | None = None,
    ) -> bool:
        task = plan.get_task(task_id)
        if task is None:
            raise CommandRejected(f"Unknown task id: {task_id}")

        if self.enforce_dependencies and status in (TaskStatus.IN_PROGRESS, TaskStatus.COMPLETED):
            blocked = []
            for dep in task.dependencies:
                dep_task = plan.get_task(dep)
                if dep_task is not None and dep_task.status != TaskStatus.COMPLETED:
                    blocked.append(dep)
            if blocked:
                raise CommandRejected(
                    f"Task '{task_id}' is waiting on dependencies {blocked}"
                )

        task.status = status
        task.result = result
        task.error = error

        if status.is_terminal:
            state.task_results[task_id] = TaskResult(
                success=status == TaskStatus.COMPLETED,
                result=result,
                error=error,
            )
        else:
            # Task is running again; any earlier outcome is stale
            state.task_results.pop(task_id, None)

        if status == TaskStatus.FAILED:
            logger.info(f"Task '{task_id}' failed: {error}")

        self._recount(state, plan)
        return True

    def set_current_task(
        self,
        state: ExecutionState,
        plan: Plan,
        task_id: str | None,
    ) -> bool:
        if task_id is not None and plan.get_task(task_id) is None:
            raise CommandRejected(f"Unknown task id: {task_id}")
        if state.progress.current_task_id == task_id:
            return False
        state.progress.current_task_id = task_id
        return True

    def pause(self, state: ExecutionState) -> bool:
        self._require_not_cancelled(state)
        if state.is_paused:
            return False
        state.is_paused = True
        return True

    def resume(self, state: ExecutionState) -> bool:
        self._require_not_cancelled(state)
        if not state.is_paused:
            return False
        state.is_paused = False
        return True

    def cancel(self, state: ExecutionState, plan: Plan | None) -> list[str]:
        """Flag execution as cancelled.

        Returns:
            Ids of tasks marked skipped (only when skip_pending_on_cancel is set)
        """
        self._require_not_cancelled(state)
        state.is_cancelled = True

        skipped: list[str] = []
        if self.skip_pending_on_cancel and plan is not None:
            for task in plan.tasks:
                if not task.status.is_terminal:
                    task.status = TaskStatus.SKIPPED
                    task.error = "Execution cancelled"
                    state.task_results[task.id] = TaskResult(
                        success=False, error="Execution cancelled"
                    )
                    skipped.append(task.id)
            self._recount(state, plan)
        return skipped

    def complete(self, state: ExecutionState) -> bool:
        state.progress.completed_at = self._clock()
        return True

    @staticmethod
    def _require_not_cancelled(state: ExecutionState) -> None:
        if state.is_cancelled:
            raise CommandRejected("Execution was cancelled")

    @staticmethod
    def _recount(state: ExecutionState, plan: Plan) -> None:
        """Derive counters and percentage from the full task list."""
        progress = state.progress
        progress.total_tasks = len(plan.tasks)
        progress.completed_tasks = sum(
            1 for t in plan.tasks if t.status == TaskStatus.COMPLETED
        )
        progress.failed_tasks = sum(
            1 for t in plan.tasks if t.status == TaskStatus.FAILED
        )
        progress.percentage = compute_percentage(
            progress.completed_tasks,
            progress.failed_tasks,
            progress.total_tasks,
        )
