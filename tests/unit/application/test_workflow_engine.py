"""Tests for WorkflowEngine command application.

Covers the phase lifecycle, rejection semantics (state untouched,
warning logged, event emitted) and idempotent no-op commands.
"""

import logging

import pytest

from convflow.application.commands import COMMAND_EVENTS, command_types
from convflow.application.workflow_engine import (
    COMMAND_PHASES,
    CommandOutcome,
    WorkflowEngine,
)
from convflow.domain.models.workflow_state import (
    ConversationPhase,
    OverallStatus,
    PhaseEvent,
    Plan,
    PlanTask,
    QuestionKind,
    TaskStatus,
)
from convflow.domain.persistence.session_store import SessionStore


class TestPhaseLifecycle:
    """Walkthroughs of the phase lifecycle, one step at a time."""

    def test_start_enters_clarification(self, engine: WorkflowEngine) -> None:
        result = engine.start("fix the leak")

        assert result.outcome == CommandOutcome.APPLIED
        assert engine.phase == ConversationPhase.CLARIFICATION
        assert engine.session.clarification.original_request == "fix the leak"
        assert engine.session.clarification.questions == []
        assert engine.session.session_id == "sess-1"
        assert engine.is_workflow_active

    def test_start_without_questions_can_complete_clarification(self, engine: WorkflowEngine) -> None:
        engine.start("x")
        assert engine.session.clarification.is_complete is True

        result = engine.complete_clarification()

        assert result.applied
        assert engine.phase == ConversationPhase.PLANNING

    def test_new_task_without_questions_can_complete_clarification(
        self, execution_engine: WorkflowEngine
    ) -> None:
        execution_engine.complete_execution()
        execution_engine.request_new_task("next")

        assert execution_engine.complete_clarification().applied
        assert execution_engine.phase == ConversationPhase.PLANNING

    def test_update_confirmed_plan_after_go_back_drops_confirmation(
        self, execution_engine: WorkflowEngine
    ) -> None:
        execution_engine.go_back()

        result = execution_engine.update_plan({"title": "Revised"})

        planning = execution_engine.session.planning
        assert result.applied
        assert planning.is_confirmed is False
        assert planning.current_plan.confirmed_at is None
        assert planning.current_plan.version == 2

    def test_answering_only_question_completes_clarification(self, engine: WorkflowEngine) -> None:
        engine.start("fix the leak")
        engine.set_questions([{"id": "q1", "kind": "confirmation", "required": True}])

        engine.answer_question("q1", "yes")

        clar = engine.session.clarification
        assert clar.is_complete is True
        assert clar.current_question_index == 0

    def test_remove_first_task_reindexes_and_strips_dependency(self, planning_engine: WorkflowEngine) -> None:
        planning_engine.set_plan(
            {
                "id": "p1",
                "tasks": [
                    {"id": "t1", "order": 0, "dependencies": []},
                    {"id": "t2", "order": 1, "dependencies": ["t1"]},
                ],
            }
        )

        planning_engine.remove_task("t1")

        tasks = planning_engine.session.planning.current_plan.tasks
        assert [(t.id, t.order, t.dependencies) for t in tasks] == [("t2", 0, [])]

    def test_confirm_plan_enters_execution_with_zero_progress(self, planning_engine: WorkflowEngine, three_task_plan: Plan) -> None:
        planning_engine.set_plan(three_task_plan)

        planning_engine.confirm_plan()

        progress = planning_engine.session.execution.progress
        assert planning_engine.phase == ConversationPhase.EXECUTION
        assert progress.total_tasks == 3
        assert progress.percentage == 0
        assert planning_engine.session.planning.is_confirmed is True

    def test_completed_and_failed_tasks_count_toward_percentage(self, execution_engine: WorkflowEngine) -> None:
        execution_engine.update_task_status("t1", "completed")
        execution_engine.update_task_status("t2", "failed", "-", "boom")

        progress = execution_engine.session.execution.progress
        assert progress.completed_tasks == 1
        assert progress.failed_tasks == 1
        assert progress.percentage == 67

    def test_resume_after_cancel_is_rejected(self, execution_engine: WorkflowEngine) -> None:
        execution_engine.cancel_execution()

        assert execution_engine.phase == ConversationPhase.REVIEW
        assert execution_engine.session.execution.is_cancelled is True
        before = execution_engine.session

        result = execution_engine.resume_execution()

        assert result.rejected
        assert execution_engine.session is before
        assert execution_engine.phase == ConversationPhase.REVIEW


class TestRejection:
    def test_invalid_transition_leaves_state(self, engine: WorkflowEngine) -> None:
        before = engine.session

        result = engine.confirm_plan()

        assert result.outcome == CommandOutcome.REJECTED
        assert result.reason == "Command 'confirm_plan' (plan_confirmed) is not valid from idle"
        assert engine.session is before

    def test_rejection_logs_warning(
        self, engine: WorkflowEngine, caplog: pytest.LogCaptureFixture
    ) -> None:
        with caplog.at_level(logging.WARNING, logger="convflow.application.workflow_engine"):
            engine.go_back()
        assert "Rejected 'go_back' in phase idle" in caplog.text

    def test_rejection_emits_event(self, engine: WorkflowEngine, recorder) -> None:
        engine.pause_execution()
        assert recorder.types == ["command_rejected"]
        assert recorder.events[0].metadata["reason"].startswith("Command 'pause_execution'")

    def test_failed_handler_does_not_leak_partial_changes(
        self, planning_engine: WorkflowEngine, three_task_plan: Plan
    ) -> None:
        planning_engine.set_plan(three_task_plan)
        planning_engine.confirm_plan()
        planning_engine.go_back()
        snapshot = SessionStore.snapshot(planning_engine.session)

        result = planning_engine.remove_task("t1")

        assert result.rejected
        assert SessionStore.snapshot(planning_engine.session) == snapshot

    def test_unknown_task_is_rejected_not_raised(self, execution_engine: WorkflowEngine) -> None:
        result = execution_engine.update_task_status("nope", TaskStatus.COMPLETED)
        assert result.rejected
        assert result.reason == "Unknown task id: nope"

    def test_start_requires_request(self, engine: WorkflowEngine) -> None:
        assert engine.start("   ").rejected
        assert engine.phase == ConversationPhase.IDLE

    def test_start_only_from_idle(self, engine: WorkflowEngine) -> None:
        engine.start("one")
        assert engine.start("two").rejected
        assert engine.session.clarification.original_request == "one"

    def test_complete_clarification_with_open_questions(self, engine: WorkflowEngine) -> None:
        engine.start("x")
        engine.set_questions([{"id": "q1"}])

        assert engine.complete_clarification().rejected
        assert engine.complete_clarification(force=True).applied
        assert engine.phase == ConversationPhase.PLANNING


class TestUnchanged:
    def test_pause_twice(self, execution_engine: WorkflowEngine, recorder) -> None:
        assert execution_engine.pause_execution().applied
        before = execution_engine.session
        recorder.events.clear()

        result = execution_engine.pause_execution()

        assert result.outcome == CommandOutcome.UNCHANGED
        assert execution_engine.session is before
        assert recorder.events == []

    def test_resume_when_running(self, execution_engine: WorkflowEngine) -> None:
        assert execution_engine.resume_execution().outcome == CommandOutcome.UNCHANGED

    def test_same_current_task(self, execution_engine: WorkflowEngine) -> None:
        execution_engine.set_current_task("t1")
        assert execution_engine.set_current_task("t1").outcome == CommandOutcome.UNCHANGED


class TestEvents:
    def test_phase_change_emits_phase_entered(self, engine: WorkflowEngine, recorder) -> None:
        engine.start("x")

        assert recorder.types == ["command_applied", "phase_entered"]
        entered = recorder.events[1]
        assert entered.phase == ConversationPhase.CLARIFICATION
        assert entered.metadata == {"from": "idle"}
        assert entered.session_id == "sess-1"

    def test_task_update_emits_task_event(self, execution_engine: WorkflowEngine, recorder) -> None:
        recorder.events.clear()
        execution_engine.update_task_status("t2", TaskStatus.IN_PROGRESS)

        assert recorder.types == ["command_applied", "task_status_changed"]
        assert recorder.events[1].task_id == "t2"

    def test_exit_emits_workflow_exited(self, execution_engine: WorkflowEngine, recorder) -> None:
        recorder.events.clear()
        execution_engine.exit()
        assert recorder.types == ["command_applied", "workflow_exited", "phase_entered"]


class TestLifecycle:
    def test_exit_resets_everything(self, execution_engine: WorkflowEngine) -> None:
        result = execution_engine.exit()

        assert result.applied
        assert execution_engine.phase == ConversationPhase.IDLE
        assert execution_engine.session.session_id == ""
        assert execution_engine.session.planning.current_plan is None
        assert not execution_engine.is_workflow_active

    def test_exit_from_idle_is_allowed(self, engine: WorkflowEngine) -> None:
        assert engine.exit().applied
        assert engine.phase == ConversationPhase.IDLE

    def test_go_back_keeps_sub_state(self, planning_engine: WorkflowEngine, three_task_plan: Plan) -> None:
        planning_engine.set_plan(three_task_plan)

        planning_engine.go_back()

        assert planning_engine.phase == ConversationPhase.CLARIFICATION
        assert planning_engine.session.planning.current_plan is not None

    def test_reconfirm_after_go_back_recounts(self, execution_engine: WorkflowEngine) -> None:
        execution_engine.update_task_status("t1", TaskStatus.COMPLETED)
        execution_engine.go_back()

        execution_engine.confirm_plan()

        assert execution_engine.phase == ConversationPhase.EXECUTION
        assert execution_engine.session.execution.progress.completed_tasks == 1
        assert execution_engine.session.execution.progress.percentage == 33

    def test_summarize_and_new_task(self, execution_engine: WorkflowEngine) -> None:
        execution_engine.update_task_status("t1", TaskStatus.COMPLETED, result="found")
        execution_engine.complete_execution()

        assert execution_engine.summarize_execution().applied
        review = execution_engine.session.review
        assert review.overall_status == OverallStatus.PARTIAL
        assert review.summary == "Completed 1 of 3 tasks"

        execution_engine.set_next_actions(["ship it"])
        assert execution_engine.session.review.next_actions == ["ship it"]

        execution_engine.request_new_task("and the other leak")

        session = execution_engine.session
        assert session.phase == ConversationPhase.CLARIFICATION
        assert session.session_id == "sess-1"
        assert session.clarification.original_request == "and the other leak"
        assert session.planning.current_plan is None
        assert session.review.items == []

    def test_set_review_directly(self, execution_engine: WorkflowEngine) -> None:
        execution_engine.complete_execution()
        result = execution_engine.set_review(
            [{"task_id": "t1", "status": "success", "summary": "ok"}],
            "done",
            "success",
        )
        assert result.applied
        assert execution_engine.session.review.items[0].task_id == "t1"

    def test_multi_select_flow(self, engine: WorkflowEngine) -> None:
        engine.start("x")
        engine.set_questions(
            [{"id": "envs", "kind": QuestionKind.MULTI_SELECT, "options": ["dev", "prod"]}]
        )

        engine.toggle_option("envs", "prod")
        engine.toggle_option("envs", "dev")
        engine.confirm_selection("envs")

        q = engine.session.clarification.questions[0]
        assert q.answer == ["prod", "dev"]
        assert engine.session.clarification.is_complete

    def test_restore_replaces_session(self, execution_engine: WorkflowEngine) -> None:
        snapshot = SessionStore.snapshot(execution_engine.session)
        other = WorkflowEngine()

        result = other.restore(snapshot)

        assert result.applied
        assert other.phase == ConversationPhase.EXECUTION
        assert SessionStore.snapshot(other.session) == snapshot

    def test_restore_corrupt_snapshot_falls_back_to_idle(self, execution_engine: WorkflowEngine) -> None:
        result = execution_engine.restore("{not json")

        assert result.applied
        assert execution_engine.phase == ConversationPhase.IDLE

    def test_enforced_dependencies_config(self, make_engine, three_task_plan: Plan) -> None:
        engine = make_engine(enforce_dependencies=True)
        engine.start("x")
        engine.complete_clarification()
        engine.set_plan(three_task_plan)
        engine.confirm_plan()

        assert engine.update_task_status("t2", TaskStatus.IN_PROGRESS).rejected

    def test_skip_pending_on_cancel_config(self, make_engine) -> None:
        engine = make_engine(skip_pending_on_cancel=True)
        engine.start("x")
        engine.complete_clarification()
        engine.set_plan(Plan(id="p", tasks=[PlanTask(id="a"), PlanTask(id="b", order=1)]))
        engine.confirm_plan()
        engine.update_task_status("a", TaskStatus.COMPLETED)

        engine.cancel_execution()

        assert engine.session.planning.current_plan.get_task("b").status == TaskStatus.SKIPPED


class TestDispatchTables:
    def test_every_command_has_a_handler(self, engine: WorkflowEngine) -> None:
        handled = {cls.model_fields["type"].default for cls in engine._handlers}
        assert handled == set(command_types())

    def test_every_command_is_guarded(self) -> None:
        for name in command_types():
            assert name in COMMAND_EVENTS or name in COMMAND_PHASES, name

    def test_can_transition_accepts_strings(self, engine: WorkflowEngine) -> None:
        assert engine.can_transition("start")
        assert not engine.can_transition(PhaseEvent.GO_BACK)
        assert engine.valid_events() == [PhaseEvent.START, PhaseEvent.EXIT]

    def test_can_transition_unknown_event_is_false(self, engine: WorkflowEngine) -> None:
        assert engine.can_transition("bogus") is False
