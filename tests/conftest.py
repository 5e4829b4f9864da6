from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Callable

import pytest

from convflow.application.config_models import EngineConfig
from convflow.application.workflow_engine import WorkflowEngine
from convflow.domain.events.emitter import WorkflowEventEmitter
from convflow.domain.events.event import WorkflowEvent
from convflow.domain.models.workflow_state import Plan, PlanTask


FIXED_START = datetime(2024, 1, 1, 12, 0, tzinfo=timezone.utc)


class FakeClock:
    """Deterministic clock; each call advances one second."""

    def __init__(self, start: datetime = FIXED_START) -> None:
        self.now = start

    def __call__(self) -> datetime:
        current = self.now
        self.now = current + timedelta(seconds=1)
        return current


class RecordingObserver:
    """Collects every event it receives."""

    def __init__(self) -> None:
        self.events: list[WorkflowEvent] = []

    def on_event(self, event: WorkflowEvent) -> None:
        self.events.append(event)

    @property
    def types(self) -> list[str]:
        return [e.event_type.value for e in self.events]


@pytest.fixture
def sessions_root(tmp_path: Path) -> Path:
    """Isolated sessions root for tests.

    Tests should not write into the real repo's .convflow/sessions directory.
    """
    return tmp_path / "sessions"


@pytest.fixture(autouse=True)
def _isolated_home(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep a developer's ~/.convflow/config.yml out of the tests."""
    home = tmp_path / "home"
    home.mkdir()
    monkeypatch.setenv("HOME", str(home))


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture
def recorder() -> RecordingObserver:
    return RecordingObserver()


@pytest.fixture
def emitter(recorder: RecordingObserver) -> WorkflowEventEmitter:
    e = WorkflowEventEmitter()
    e.subscribe(recorder)
    return e


@pytest.fixture
def make_engine(
    clock: FakeClock, emitter: WorkflowEventEmitter
) -> Callable[..., WorkflowEngine]:
    """Factory for engines wired to the fake clock and recording emitter."""

    def _make(**config: Any) -> WorkflowEngine:
        return WorkflowEngine(
            config=EngineConfig(**config),
            event_emitter=emitter,
            clock=clock,
            id_factory=lambda: "sess-1",
        )

    return _make


@pytest.fixture
def engine(make_engine: Callable[..., WorkflowEngine]) -> WorkflowEngine:
    return make_engine()


@pytest.fixture
def three_task_plan() -> Plan:
    return Plan(
        id="p1",
        title="Fix the leak",
        tasks=[
            PlanTask(id="t1", title="Find leak", order=0),
            PlanTask(id="t2", title="Patch pipe", order=1, dependencies=["t1"]),
            PlanTask(id="t3", title="Verify", order=2, dependencies=["t2"]),
        ],
    )


@pytest.fixture
def planning_engine(engine: WorkflowEngine) -> WorkflowEngine:
    """Engine in planning with no questions asked."""
    engine.start("fix the leak")
    engine.complete_clarification()
    return engine


@pytest.fixture
def execution_engine(planning_engine: WorkflowEngine, three_task_plan: Plan) -> WorkflowEngine:
    """Engine in execution over the confirmed three-task plan."""
    planning_engine.set_plan(three_task_plan)
    planning_engine.confirm_plan()
    return planning_engine
