"""Workflow event system for observer pattern notifications."""

from convflow.domain.events.event_types import WorkflowEventType
from convflow.domain.events.event import WorkflowEvent
from convflow.domain.events.observer import WorkflowObserver
from convflow.domain.events.emitter import WorkflowEventEmitter
from convflow.domain.events.stderr_observer import StderrEventObserver

__all__ = [
    "WorkflowEventType",
    "WorkflowEvent",
    "WorkflowObserver",
    "WorkflowEventEmitter",
    "StderrEventObserver",
]
