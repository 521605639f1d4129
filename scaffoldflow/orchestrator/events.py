"""Lifecycle notifications for orchestrator and pipeline runs.

Components publish named events through an ``EventDispatcher``; observers
subscribe to it for logging, metrics or tests.  Delivery is fire-and-forget:
an observer that raises is reported on the console and otherwise ignored, so
no control flow ever depends on a notification being received.

Observers shipped here:

* ``ConsoleObserver`` -- Rich rendering of phase headers, results and failures.
* ``EventRecorder``   -- bounded, filterable in-memory event history.
"""

from __future__ import annotations

from collections import deque
from collections.abc import Iterable
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional, Protocol, runtime_checkable

from scaffoldflow.utils import (
    console,
    format_duration,
    print_error,
    print_phase_header,
    print_success,
    print_summary_table,
    print_warning,
)


class EventName(str, Enum):
    """Every notification the orchestrator and executor publish."""

    # Orchestrator
    STATE_CHANGED = "state:changed"
    PHASE_STARTING = "phase:starting"
    PHASE_COMPLETED = "phase:completed"
    PHASE_FAILED = "phase:failed"
    PHASE_SKIPPED = "phase:skipped"
    RUN_STARTED = "run:started"
    RUN_COMPLETED = "run:completed"
    RUN_FAILED = "run:failed"
    RUN_RECOVERED = "run:recovered"

    # Pipeline executor
    PIPELINE_STARTED = "pipeline:started"
    PIPELINE_COMPLETED = "pipeline:completed"
    PIPELINE_FAILED = "pipeline:failed"
    PHASE_BEFORE = "phase:before"
    PHASE_AFTER = "phase:after"
    PHASE_ERROR = "phase:error"
    HOOK_ERROR = "hook:error"
    DRY_RUN_PHASE = "dryrun:phase"


@runtime_checkable
class PipelineObserver(Protocol):
    """Anything with a ``notify(event, payload)`` method."""

    def notify(self, event: EventName, payload: dict[str, Any]) -> None: ...


class EventDispatcher:
    """Fan-out of lifecycle events to subscribed observers.

    Args:
        observers: Initial observers, notified in subscription order.
    """

    def __init__(self, observers: Iterable[PipelineObserver] | None = None) -> None:
        self._observers: list[PipelineObserver] = list(observers or [])

    @property
    def observers(self) -> list[PipelineObserver]:
        return list(self._observers)

    def subscribe(self, observer: PipelineObserver) -> PipelineObserver:
        if not isinstance(observer, PipelineObserver):
            raise TypeError("Observer must define notify(event, payload).")
        self._observers.append(observer)
        return observer

    def unsubscribe(self, observer: PipelineObserver) -> None:
        if observer in self._observers:
            self._observers.remove(observer)

    def emit(self, event: EventName, **payload: Any) -> None:
        """Deliver *event* to every observer; observer failures never propagate."""
        for observer in list(self._observers):
            try:
                observer.notify(event, payload)
            except Exception as exc:
                print_warning(
                    f"Observer {type(observer).__name__} failed on {event.value}: {exc}"
                )


# ---------------------------------------------------------------------------
# Console observer
# ---------------------------------------------------------------------------


def _phase_name(value: Any) -> str:
    return getattr(value, "value", str(value))


class ConsoleObserver:
    """Render run progress with Rich.

    Args:
        show_transitions: Also print every state transition (noisy).
    """

    def __init__(self, show_transitions: bool = False) -> None:
        self.show_transitions = show_transitions

    def notify(self, event: EventName, payload: dict[str, Any]) -> None:
        handler = getattr(self, f"_on_{event.name.lower()}", None)
        if handler is not None:
            handler(payload)

    def _on_run_started(self, payload: dict[str, Any]) -> None:
        console.print(f"[bold bright_cyan]Run {payload.get('run_id')} started[/bold bright_cyan]")

    def _on_state_changed(self, payload: dict[str, Any]) -> None:
        if self.show_transitions:
            console.print(
                f"  [dim]{_phase_name(payload.get('from_state'))} -> "
                f"{_phase_name(payload.get('to_state'))}[/dim]"
            )

    def _on_phase_starting(self, payload: dict[str, Any]) -> None:
        print_phase_header(payload.get("order", 0), _phase_name(payload.get("phase_id")))

    def _on_phase_completed(self, payload: dict[str, Any]) -> None:
        seconds = (payload.get("duration_ms") or 0.0) / 1000
        suffix = " (recovered)" if payload.get("recovered") else ""
        print_success(
            f"Phase {_phase_name(payload.get('phase_id'))} completed in "
            f"{format_duration(seconds)}{suffix}"
        )

    def _on_phase_skipped(self, payload: dict[str, Any]) -> None:
        console.print(f"  [dim]Phase {_phase_name(payload.get('phase_id'))} skipped[/dim]")

    def _on_phase_failed(self, payload: dict[str, Any]) -> None:
        print_error(
            f"Phase {_phase_name(payload.get('phase_id'))} FAILED: {payload.get('error')}"
        )

    def _on_hook_error(self, payload: dict[str, Any]) -> None:
        print_warning(
            f"{payload.get('kind')}-hook failed for {_phase_name(payload.get('phase_id'))}: "
            f"{payload.get('error')}"
        )

    def _on_dry_run_phase(self, payload: dict[str, Any]) -> None:
        marker = "[yellow]!" if payload.get("input_valid") is False else "[green]+"
        console.print(
            f"  {marker}[/] {_phase_name(payload.get('phase_id'))} ({payload.get('action')})"
        )

    def _on_run_completed(self, payload: dict[str, Any]) -> None:
        metrics = payload.get("metrics")
        if metrics is None:
            return
        print_summary_table(
            {
                "Run": metrics.run_id,
                "Completed": ", ".join(p.value for p in metrics.completed_phases) or "-",
                "Skipped": ", ".join(p.value for p in metrics.skipped_phases) or "-",
                "Duration": format_duration(metrics.total_duration_ms / 1000),
            },
            title="Run Summary",
        )

    def _on_run_failed(self, payload: dict[str, Any]) -> None:
        print_error(f"Run {payload.get('run_id')} failed: {payload.get('error')}")


# ---------------------------------------------------------------------------
# Event history
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class RecordedEvent:
    """A single notification captured by ``EventRecorder``."""

    sequence: int
    name: EventName
    payload: dict[str, Any]
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))


class EventRecorder:
    """Keep a bounded history of events for inspection and post-mortems.

    Args:
        max_history: Events retained; the oldest are dropped first.
            ``0`` keeps everything.
    """

    def __init__(self, max_history: int = 10_000) -> None:
        if max_history < 0:
            raise ValueError("max_history must be >= 0")
        self._history: deque[RecordedEvent] = deque(maxlen=max_history or None)
        self._sequence = 0
        self.recording = True

    def notify(self, event: EventName, payload: dict[str, Any]) -> None:
        if not self.recording:
            return
        self._sequence += 1
        self._history.append(RecordedEvent(self._sequence, event, dict(payload)))

    def __len__(self) -> int:
        return len(self._history)

    @property
    def current_sequence(self) -> int:
        return self._sequence

    @property
    def names(self) -> list[EventName]:
        """Event names in delivery order."""
        return [e.name for e in self._history]

    def get_history(
        self,
        event: EventName | str | None = None,
        phase_id: Any = None,
        run_id: Optional[str] = None,
        since: Optional[int] = None,
    ) -> list[RecordedEvent]:
        """Return recorded events matching every given filter.

        Args:
            event: Event name (enum member or its string value).
            phase_id: Only events whose payload ``phase_id`` equals this.
            run_id: Only events whose payload ``run_id`` equals this.
            since: Only events with a sequence number greater than this.
        """
        wanted = EventName(event) if event is not None else None
        matches = []
        for record in self._history:
            if wanted is not None and record.name is not wanted:
                continue
            if phase_id is not None and record.payload.get("phase_id") != phase_id:
                continue
            if run_id is not None and record.payload.get("run_id") != run_id:
                continue
            if since is not None and record.sequence <= since:
                continue
            matches.append(record)
        return matches

    def clear(self) -> None:
        self._history.clear()
