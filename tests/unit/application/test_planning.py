"""Tests for PlanEngine and task normalization."""

import pytest

from convflow.application.planning import PlanEngine, normalize_tasks
from convflow.domain.errors import CommandRejected
from convflow.domain.models.workflow_state import (
    Plan,
    PlanningState,
    PlanTask,
    PlanUpdate,
)


@pytest.fixture
def planner(clock) -> PlanEngine:
    return PlanEngine(clock)


@pytest.fixture
def state(planner: PlanEngine, three_task_plan: Plan) -> PlanningState:
    s = PlanningState()
    planner.set_plan(s, three_task_plan)
    return s


class TestNormalizeTasks:
    def test_sorts_and_reindexes(self) -> None:
        tasks = [
            PlanTask(id="c", order=10),
            PlanTask(id="a", order=2),
            PlanTask(id="b", order=5),
        ]
        out = normalize_tasks(tasks)
        assert [(t.id, t.order) for t in out] == [("a", 0), ("b", 1), ("c", 2)]

    def test_strips_self_dangling_and_duplicate_dependencies(self) -> None:
        tasks = [
            PlanTask(id="a", order=0),
            PlanTask(id="b", order=1, dependencies=["b", "a", "ghost", "a"]),
        ]
        out = normalize_tasks(tasks)
        assert out[1].dependencies == ["a"]

    def test_does_not_mutate_input(self) -> None:
        task = PlanTask(id="a", order=7, dependencies=["a"])
        normalize_tasks([task])
        assert task.order == 7
        assert task.dependencies == ["a"]

    def test_duplicate_ids_rejected(self) -> None:
        with pytest.raises(CommandRejected, match="unique"):
            normalize_tasks([PlanTask(id="a"), PlanTask(id="a")])


class TestSetPlan:
    def test_installs_unconfirmed_version_one(
        self, planner: PlanEngine, three_task_plan: Plan
    ) -> None:
        s = PlanningState(is_confirmed=True)
        planner.set_plan(s, three_task_plan.model_copy(update={"version": 4}))

        assert s.current_plan is not None
        assert s.current_plan.version == 1
        assert s.current_plan.confirmed_at is None
        assert s.is_confirmed is False

    def test_stores_a_copy(self, planner: PlanEngine, three_task_plan: Plan) -> None:
        s = PlanningState()
        planner.set_plan(s, three_task_plan)
        s.current_plan.tasks[0].title = "changed"
        assert three_task_plan.tasks[0].title == "Find leak"


class TestRemoveTask:
    def test_remove_first_task_reindexes_and_strips_dependency(
        self, planner: PlanEngine
    ) -> None:
        s = PlanningState()
        planner.set_plan(
            s,
            Plan(
                id="p",
                tasks=[
                    PlanTask(id="t1", order=0),
                    PlanTask(id="t2", order=1, dependencies=["t1"]),
                ],
            ),
        )

        planner.remove_task(s, "t1")

        assert len(s.current_plan.tasks) == 1
        remaining = s.current_plan.tasks[0]
        assert remaining.id == "t2"
        assert remaining.order == 0
        assert remaining.dependencies == []
        assert s.current_plan.version == 2

    def test_remove_middle_task(self, planner: PlanEngine, state: PlanningState) -> None:
        planner.remove_task(state, "t2")
        assert [(t.id, t.order) for t in state.current_plan.tasks] == [("t1", 0), ("t3", 1)]
        assert state.current_plan.get_task("t3").dependencies == []

    def test_unknown_task_rejected(self, planner: PlanEngine, state: PlanningState) -> None:
        with pytest.raises(CommandRejected, match="Unknown task id: t9"):
            planner.remove_task(state, "t9")
        assert state.current_plan.version == 1

    def test_confirmed_plan_rejected(self, planner: PlanEngine, state: PlanningState) -> None:
        planner.confirm(state)
        with pytest.raises(CommandRejected, match="confirmed"):
            planner.remove_task(state, "t1")

    def test_without_plan_rejected(self, planner: PlanEngine) -> None:
        with pytest.raises(CommandRejected, match="No plan"):
            planner.remove_task(PlanningState(), "t1")


class TestUpdatePlan:
    def test_partial_update_bumps_version(self, planner: PlanEngine, state: PlanningState) -> None:
        planner.update_plan(state, PlanUpdate(title="Fix it properly"))

        assert state.current_plan.title == "Fix it properly"
        assert len(state.current_plan.tasks) == 3
        assert state.current_plan.version == 2

    def test_task_replacement_is_normalized(
        self, planner: PlanEngine, state: PlanningState
    ) -> None:
        planner.update_plan(
            state,
            PlanUpdate(tasks=[PlanTask(id="x", order=3, dependencies=["x"])]),
        )
        task = state.current_plan.tasks[0]
        assert task.order == 0
        assert task.dependencies == []

    def test_update_unconfirms(self, planner: PlanEngine, state: PlanningState) -> None:
        planner.confirm(state)

        planner.update_plan(state, PlanUpdate(description="revised"))

        assert state.is_confirmed is False
        assert state.current_plan.confirmed_at is None

    def test_without_plan_rejected(self, planner: PlanEngine) -> None:
        with pytest.raises(CommandRejected):
            planner.update_plan(PlanningState(), PlanUpdate(title="x"))


class TestFeedbackAndConfirm:
    def test_feedback_is_stripped_and_appended(
        self, planner: PlanEngine, state: PlanningState
    ) -> None:
        planner.add_feedback(state, "  split task two  ")
        planner.add_feedback(state, "add tests")
        assert state.user_feedback == ["split task two", "add tests"]

    def test_blank_feedback_rejected(self, planner: PlanEngine, state: PlanningState) -> None:
        with pytest.raises(CommandRejected):
            planner.add_feedback(state, "   ")

    def test_confirm_stamps_plan(self, planner: PlanEngine, state: PlanningState, clock) -> None:
        expected = clock.now

        plan = planner.confirm(state)

        assert plan is state.current_plan
        assert plan.confirmed_at == expected
        assert state.is_confirmed is True

    def test_confirm_without_plan_rejected(self, planner: PlanEngine) -> None:
        with pytest.raises(CommandRejected, match="No plan has been set"):
            planner.confirm(PlanningState())
