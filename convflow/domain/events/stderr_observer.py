"""Stderr event observer for CLI integration."""

import click

from convflow.domain.events.event import WorkflowEvent


class StderrEventObserver:
    """Emits events as structured lines to stderr."""

    def on_event(self, event: WorkflowEvent) -> None:
        parts = [f"[EVENT] {event.event_type.value}", f"phase={event.phase.value}"]
        if event.command:
            parts.append(f"command={event.command}")
        if event.task_id:
            parts.append(f"task={event.task_id}")
        for key, value in sorted(event.metadata.items()):
            parts.append(f"{key}={value}")
        click.echo(" ".join(parts), err=True)
