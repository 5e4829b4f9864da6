"""Review phase: terminal summary of execution outcomes."""

from dataclasses import dataclass, field

from convflow.domain.errors import CommandRejected
from convflow.domain.models.workflow_state import (
    ExecutionState,
    OverallStatus,
    Plan,
    ReviewItem,
    ReviewItemStatus,
    ReviewState,
    TaskStatus,
)


@dataclass(frozen=True, slots=True)
class ReviewDraft:
    """Review payload assembled from execution outcomes."""

    items: list[ReviewItem] = field(default_factory=list)
    summary: str = ""
    overall_status: OverallStatus = OverallStatus.SUCCESS


class ReviewEngine:
    """Installs and assembles the review payload."""

    def set_review(
        self,
        state: ReviewState,
        items: list[ReviewItem],
        summary: str,
        overall_status: OverallStatus,
    ) -> bool:
        state.items = [item.model_copy(deep=True) for item in items]
        state.summary = summary
        state.overall_status = overall_status
        state.next_actions = []
        return True

    def set_next_actions(self, state: ReviewState, actions: list[str]) -> bool:
        cleaned = [a.strip() for a in actions if a.strip()]
        if cleaned == state.next_actions:
            return False
        state.next_actions = cleaned
        return True

    def assemble(self, plan: Plan | None, execution: ExecutionState) -> ReviewDraft:
        """Summarize every task of the plan, in order.

        completed -> success, failed -> error, skipped or never finished ->
        warning. Overall status is failure when nothing succeeded, partial
        when anything did not succeed, success otherwise.
        """
        if plan is None:
            raise CommandRejected("No plan to review")

        items: list[ReviewItem] = []
        for task in sorted(plan.tasks, key=lambda t: t.order):
            outcome = execution.task_results.get(task.id)
            if task.status == TaskStatus.COMPLETED:
                status = ReviewItemStatus.SUCCESS
                summary = task.result or (outcome.result if outcome else None) or "Completed"
            elif task.status == TaskStatus.FAILED:
                status = ReviewItemStatus.ERROR
                summary = task.error or (outcome.error if outcome else None) or "Failed"
            elif task.status == TaskStatus.SKIPPED:
                status = ReviewItemStatus.WARNING
                summary = task.error or "Skipped"
            else:
                status = ReviewItemStatus.WARNING
                summary = "Not executed"
            items.append(
                ReviewItem(
                    task_id=task.id,
                    task_title=task.title,
                    status=status,
                    summary=summary,
                    details=task.description or None,
                )
            )

        total = len(items)
        succeeded = sum(1 for i in items if i.status == ReviewItemStatus.SUCCESS)
        failed = sum(1 for i in items if i.status == ReviewItemStatus.ERROR)

        if total and succeeded == 0:
            overall = OverallStatus.FAILURE
        elif succeeded < total:
            overall = OverallStatus.PARTIAL
        else:
            overall = OverallStatus.SUCCESS

        summary = f"Completed {succeeded} of {total} tasks"
        if failed:
            summary += f" ({failed} failed)"
        if execution.is_cancelled:
            summary += "; execution was cancelled"

        return ReviewDraft(items=items, summary=summary, overall_status=overall)
