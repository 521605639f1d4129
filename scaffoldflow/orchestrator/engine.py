"""Run orchestrator.

Central state machine that drives the five-phase pipeline
(DISCOVER -> ELICIT -> BLUEPRINT -> GENERATE -> INTEGRATE), validating each
phase's contract before and after its handler runs, accumulating handler
output into the run context, and recording timing and errors so that a
failed run can be resumed.

Usage::

    orchestrator = Orchestrator()
    orchestrator.register_phase_handler(Phase.DISCOVER, discover)
    ...
    context = await orchestrator.start({"userInput": "A REST API for invoices"})
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable, Iterable, Mapping
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Optional, Union

from scaffoldflow.config import OrchestratorConfig
from scaffoldflow.orchestrator.errors import (
    HandlerFailure,
    OrchestratorStateError,
    PhaseInputError,
    PhaseOutputError,
    ScaffoldFlowError,
    TransitionViolation,
    UnregisteredHandlerError,
    ValidationFailedError,
)
from scaffoldflow.orchestrator.events import (
    ConsoleObserver,
    EventDispatcher,
    EventName,
    EventRecorder,
    PipelineObserver,
)
from scaffoldflow.orchestrator.models import (
    ErrorRecord,
    OrchestratorState,
    Phase,
    RecoveredPhase,
    ResumeCheck,
    RunContext,
    RunMetrics,
    TimingEntry,
    TimingStatus,
)
from scaffoldflow.orchestrator.registry import PhaseRegistry
from scaffoldflow.state import save_checkpoint
from scaffoldflow.utils import elapsed_ms, maybe_await, print_warning, snapshot

PhaseOutput = Union[Mapping[str, Any], RecoveredPhase]
PhaseHandler = Callable[[dict[str, Any]], Union[PhaseOutput, Awaitable[PhaseOutput]]]
SkipPredicate = Callable[[dict[str, Any]], bool]

_S = OrchestratorState


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class Orchestrator:
    """Stateful controller for one pipeline run at a time.

    Handlers and skip conditions are registered once and survive ``reset()``;
    the ``RunContext`` is replaced on every ``start()`` / ``reset()``.  Use
    one instance per concurrent run.

    Args:
        registry: Phase contracts and transition matrix. A private
            ``PhaseRegistry`` is created when omitted.
        config: Orchestrator settings.
        max_retries: Overrides ``config.max_retries``.
        observers: Observers subscribed to the event channel.
        dispatcher: Existing event channel to publish on (observers are
            added to it).

    Every event is also kept in ``history``, an ``EventRecorder`` bounded by
    ``config.max_event_history``.
    """

    def __init__(
        self,
        registry: Optional[PhaseRegistry] = None,
        *,
        config: Optional[OrchestratorConfig] = None,
        max_retries: Optional[int] = None,
        observers: Optional[Iterable[PipelineObserver]] = None,
        dispatcher: Optional[EventDispatcher] = None,
    ) -> None:
        self.config = config or OrchestratorConfig()
        self._registry = registry or PhaseRegistry()
        self._max_retries = self.config.max_retries if max_retries is None else max_retries
        if self._max_retries < 0:
            raise ValueError("max_retries must be >= 0")

        self.events = dispatcher or EventDispatcher()
        self.history = self.events.subscribe(EventRecorder(self.config.max_event_history))
        for observer in observers or ():
            self.events.subscribe(observer)
        if self.config.verbose:
            self.events.subscribe(ConsoleObserver())

        self._handlers: dict[Phase, PhaseHandler] = {}
        self._skip_conditions: dict[Phase, SkipPredicate] = {}
        self._context = RunContext()

    # ------------------------------------------------------------------
    # Read-only accessors
    # ------------------------------------------------------------------

    @property
    def registry(self) -> PhaseRegistry:
        return self._registry

    @property
    def max_retries(self) -> int:
        return self._max_retries

    @property
    def state(self) -> OrchestratorState:
        return self._context.current_state

    @property
    def current_phase(self) -> Optional[Phase]:
        return self._context.current_phase

    @property
    def run_id(self) -> str:
        return self._context.run_id

    @property
    def context(self) -> RunContext:
        """Deep copy of the full run context."""
        return self._context.model_copy(deep=True)

    @property
    def data(self) -> dict[str, Any]:
        """Deep copy of the accumulated phase data."""
        return snapshot(self._context.data)

    @property
    def timing(self) -> list[TimingEntry]:
        return [entry.model_copy() for entry in self._context.timing]

    @property
    def checkpoint_path(self) -> Optional[Path]:
        return self.config.checkpoint_path(self._context.run_id)

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def register_phase_handler(self, phase_id: Phase | str, handler: PhaseHandler) -> "Orchestrator":
        """Bind *handler* to a phase, replacing any previous handler.

        The handler receives a copy of the accumulated data and returns (or
        resolves to) a mapping containing every declared output key.
        """
        phase = self._registry.get_definition(phase_id).id
        if not callable(handler):
            raise TypeError(f'Handler for "{phase.value}" must be callable.')
        self._handlers[phase] = handler
        return self

    def register_skip_condition(self, phase_id: Phase | str, predicate: SkipPredicate) -> "Orchestrator":
        """Skip the phase whenever ``predicate(data)`` is true when it is reached."""
        phase = self._registry.get_definition(phase_id).id
        if not callable(predicate):
            raise TypeError(f'Skip condition for "{phase.value}" must be callable.')
        self._skip_conditions[phase] = predicate
        return self

    def get_skip_condition(self, phase_id: Phase | str) -> Optional[SkipPredicate]:
        return self._skip_conditions.get(self._registry.get_definition(phase_id).id)

    def get_handler(self, phase_id: Phase | str) -> Optional[PhaseHandler]:
        return self._handlers.get(self._registry.get_definition(phase_id).id)

    def has_handler(self, phase_id: Phase | str) -> bool:
        return self.get_handler(phase_id) is not None

    # ------------------------------------------------------------------
    # Lifecycle
    # ------------------------------------------------------------------

    async def start(self, initial_data: Optional[Mapping[str, Any]] = None) -> RunContext:
        """Start a fresh run seeded with *initial_data*.

        Returns:
            A copy of the final run context (state ``COMPLETE``).

        Raises:
            OrchestratorStateError: If the orchestrator is not ``IDLE``.
            ScaffoldFlowError: Any phase or validation failure; the run is
                left in ``ERROR``.
        """
        if self._context.current_state is not _S.IDLE:
            raise OrchestratorStateError(
                f'Cannot start: current state is "{self._context.current_state.value}". '
                "Call reset() first or use resume()."
            )

        self._context = RunContext(data=snapshot(dict(initial_data or {})))
        self.events.emit(
            EventName.RUN_STARTED,
            run_id=self._context.run_id,
            timestamp=self._context.started_at,
        )

        await self._drive()
        return self.context

    async def resume(self, additional_data: Optional[Mapping[str, Any]] = None) -> RunContext:
        """Continue a failed run from its current phase.

        Phases already completed are not re-run.  Each call counts against
        ``max_retries``.

        Raises:
            OrchestratorStateError: If the run is ``IDLE``, ``COMPLETE`` or out
                of retries.
        """
        check = self.can_resume()
        if not check:
            raise OrchestratorStateError(f"Cannot resume: {check.reason}")

        self._context.data.update(snapshot(dict(additional_data or {})))
        self._context.retry_count += 1

        self.events.emit(
            EventName.RUN_RECOVERED,
            run_id=self._context.run_id,
            retry_count=self._context.retry_count,
            resume_phase=self._context.current_phase,
        )

        await self._drive(self._context.current_phase)
        return self.context

    def reset(self, preserve_data: bool = False) -> "Orchestrator":
        """Abandon the current run and return to ``IDLE``.

        Args:
            preserve_data: Carry the previous run's data map (only) into the
                fresh context.
        """
        previous = self._context
        self._context = RunContext()
        if preserve_data:
            self._context.data = snapshot(previous.data)

        self.events.emit(
            EventName.STATE_CHANGED,
            from_state=previous.current_state,
            to_state=_S.IDLE,
            run_id=self._context.run_id,
        )
        return self

    def restore(self, context: RunContext) -> "Orchestrator":
        """Adopt a checkpointed run context so it can be resumed.

        Raises:
            OrchestratorStateError: If a run is already in progress.
        """
        if self._context.current_state is not _S.IDLE:
            raise OrchestratorStateError(
                "Cannot restore a checkpoint while a run is in progress. Call reset() first."
            )
        self._context = context.model_copy(deep=True)
        return self

    # ------------------------------------------------------------------
    # Single phase execution
    # ------------------------------------------------------------------

    async def execute_phase(self, phase_id: Phase | str) -> dict[str, Any]:
        """Run one phase atomically.

        Evaluates the skip condition, validates inputs, enters the phase
        state, invokes the handler with a data snapshot, validates its
        output and merges it.  Any failure is recorded, moves the run to
        ``ERROR`` and is re-raised with the context data untouched.

        Returns:
            A copy of the merged output (``{}`` when skipped or recovered).

        Raises:
            OrchestratorStateError: If the run is already ``COMPLETE``.
        """
        definition = self._registry.get_definition(phase_id)
        phase = definition.id
        ctx = self._context
        if ctx.current_state is _S.COMPLETE:
            raise OrchestratorStateError(
                f'Cannot execute phase "{phase.value}": run already completed. Call reset() first.'
            )
        ctx.current_phase = phase

        started = time.monotonic()
        entry: Optional[TimingEntry] = None

        try:
            skip = self._skip_conditions.get(phase)
            if skip is not None and skip(snapshot(ctx.data)):
                self._transition_to(definition.state)
                self._record_skip(phase)
                return {}

            input_check = self._registry.validate_phase_input(phase, ctx.data)
            if not input_check.valid:
                raise PhaseInputError(phase, input_check.missing)

            self._transition_to(definition.state)

            entry = TimingEntry(phase=phase)
            ctx.timing.append(entry)
            self.events.emit(
                EventName.PHASE_STARTING,
                phase_id=phase,
                run_id=ctx.run_id,
                order=definition.order,
                input_keys=list(ctx.data),
            )

            handler = self._handlers.get(phase)
            if handler is None:
                raise UnregisteredHandlerError(phase)

            try:
                output = await maybe_await(handler(snapshot(ctx.data)))
            except ScaffoldFlowError:
                raise
            except Exception as exc:
                raise HandlerFailure(phase, exc) from exc

            if isinstance(output, RecoveredPhase):
                self._record_completion(phase, entry, started, {}, recovered=True)
                return {}

            if not isinstance(output, Mapping):
                raise PhaseOutputError(
                    phase,
                    list(definition.output_keys),
                    detail=f"handler returned {type(output).__name__}, expected a mapping",
                )
            output_check = self._registry.validate_phase_output(phase, output)
            if not output_check.valid:
                raise PhaseOutputError(phase, output_check.missing)

            merged = snapshot(dict(output))
            self._record_completion(phase, entry, started, merged)
            return snapshot(merged)

        except Exception as exc:
            self._record_failure(phase, exc, entry, started)
            raise

    # ------------------------------------------------------------------
    # Metrics & introspection
    # ------------------------------------------------------------------

    def get_metrics(self) -> RunMetrics:
        """Timing summary for the current (or most recent) run."""
        ctx = self._context
        total = sum(entry.duration_ms or 0.0 for entry in ctx.timing)
        return RunMetrics(
            run_id=ctx.run_id,
            total_duration_ms=round(total, 2),
            phases=self.timing,
            completed_phases=list(ctx.completed_phases),
            skipped_phases=list(ctx.skipped_phases),
            error_count=len(ctx.errors),
        )

    def get_errors(self) -> list[ErrorRecord]:
        return [record.model_copy() for record in self._context.errors]

    def can_resume(self) -> ResumeCheck:
        """Whether ``resume()`` is currently allowed (truthy when it is)."""
        state = self._context.current_state
        if state is _S.IDLE:
            return ResumeCheck(resumable=False, reason="Pipeline has not been started.")
        if state is _S.COMPLETE:
            return ResumeCheck(resumable=False, reason="Pipeline already completed successfully.")
        if self._context.retry_count >= self._max_retries:
            return ResumeCheck(
                resumable=False,
                reason=f"Maximum retry count ({self._max_retries}) exceeded.",
            )
        return ResumeCheck(resumable=True)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    async def _drive(self, start_from: Optional[Phase] = None) -> None:
        """Run the remaining phases, the validation pass, and complete."""
        try:
            await self._run_phases(start_from)
            self._validate_run()
        except Exception as exc:
            self._fail_run(exc)
            raise
        finally:
            await self._checkpoint()

        self.events.emit(
            EventName.RUN_COMPLETED,
            run_id=self._context.run_id,
            metrics=self.get_metrics(),
        )

    async def _run_phases(self, start_from: Optional[Phase]) -> None:
        order = self._registry.phase_order
        start_index = order.index(start_from) if start_from is not None else 0

        for phase in order[start_index:]:
            # Already done on a previous attempt.
            if phase in self._context.completed_phases:
                continue
            await self.execute_phase(phase)
            await self._checkpoint()

    def _validate_run(self) -> None:
        """Re-check every completed phase's outputs against the final context."""
        ctx = self._context
        try:
            self._transition_to(_S.VALIDATING)
            for phase in list(ctx.completed_phases):
                if phase in ctx.recovered_phases:
                    continue
                check = self._registry.validate_phase_output(phase, ctx.data)
                if not check.valid:
                    self._demote_from(phase)
                    raise ValidationFailedError(phase, check.missing)
            self._transition_to(_S.COMPLETE)
        except ScaffoldFlowError as exc:
            self._record_error(exc.phase_id or ctx.current_phase, exc)
            raise

        ctx.completed_at = _utcnow()

    def _transition_to(self, target: OrchestratorState) -> None:
        ctx = self._context
        source = ctx.current_state
        result = self._registry.validate_transition(source, target)
        if not result.valid:
            raise TransitionViolation(source, target, result.reason or "")

        ctx.current_state = target
        self.events.emit(
            EventName.STATE_CHANGED,
            from_state=source,
            to_state=target,
            run_id=ctx.run_id,
            timestamp=_utcnow(),
        )

    def _record_skip(self, phase: Phase) -> None:
        ctx = self._context
        now = _utcnow()
        ctx.skipped_phases.append(phase)
        ctx.timing.append(
            TimingEntry(
                phase=phase,
                started_at=now,
                ended_at=now,
                duration_ms=0.0,
                status=TimingStatus.SKIPPED,
            )
        )
        self.events.emit(EventName.PHASE_SKIPPED, phase_id=phase, run_id=ctx.run_id)

    def _record_completion(
        self,
        phase: Phase,
        entry: TimingEntry,
        started: float,
        output: dict[str, Any],
        recovered: bool = False,
    ) -> None:
        ctx = self._context
        self._invalidate_after(phase, keep=set(output))
        if phase in ctx.completed_phases:
            ctx.completed_phases.remove(phase)
        if phase in ctx.recovered_phases:
            ctx.recovered_phases.remove(phase)

        ctx.data.update(output)
        entry.ended_at = _utcnow()
        entry.duration_ms = elapsed_ms(started)
        entry.status = TimingStatus.COMPLETED

        ctx.completed_phases.append(phase)
        if recovered:
            ctx.recovered_phases.append(phase)

        self.events.emit(
            EventName.PHASE_COMPLETED,
            phase_id=phase,
            run_id=ctx.run_id,
            duration_ms=entry.duration_ms,
            output_keys=list(output),
            recovered=recovered,
        )

    def _invalidate_after(self, phase: Phase, keep: set[str]) -> None:
        """Forget completions (and their outputs) of phases after a re-run *phase*."""
        ctx = self._context
        order = self._registry.get_definition(phase).order
        stale = [p for p in ctx.completed_phases if self._registry.get_definition(p).order > order]
        for later in stale:
            ctx.completed_phases.remove(later)
            if later in ctx.recovered_phases:
                ctx.recovered_phases.remove(later)
            for key in self._registry.get_definition(later).output_keys:
                if key not in keep:
                    ctx.data.pop(key, None)

    def _demote_from(self, phase: Phase) -> None:
        """Mark *phase* and every later completion as not done, so resume re-runs them."""
        ctx = self._context
        order = self._registry.get_definition(phase).order
        ctx.completed_phases = [
            p for p in ctx.completed_phases if self._registry.get_definition(p).order < order
        ]
        ctx.current_phase = phase

    def _record_failure(
        self,
        phase: Phase,
        exc: Exception,
        entry: Optional[TimingEntry],
        started: float,
    ) -> None:
        ctx = self._context
        if entry is None:
            entry = TimingEntry(phase=phase)
            ctx.timing.append(entry)
        entry.ended_at = _utcnow()
        entry.duration_ms = elapsed_ms(started)
        entry.status = TimingStatus.FAILED
        entry.error = str(exc)

        self._record_error(phase, exc)
        self.events.emit(
            EventName.PHASE_FAILED,
            phase_id=phase,
            run_id=ctx.run_id,
            error=exc,
            duration_ms=entry.duration_ms,
        )
        self._enter_error()

    def _record_error(self, phase: Optional[Phase], exc: Exception) -> None:
        self._context.errors.append(
            ErrorRecord(phase=phase, message=str(exc), code=getattr(exc, "code", ""))
        )

    def _enter_error(self) -> None:
        state = self._context.current_state
        if state is not _S.ERROR and self._registry.is_valid_transition(state, _S.ERROR):
            self._transition_to(_S.ERROR)

    def _fail_run(self, exc: Exception) -> None:
        self._enter_error()
        self.events.emit(
            EventName.RUN_FAILED,
            run_id=self._context.run_id,
            error=exc,
            phase_id=self._context.current_phase,
        )

    async def _checkpoint(self) -> None:
        path = self.checkpoint_path
        if path is None:
            return
        try:
            await save_checkpoint(self._context, path)
        except OSError as exc:
            print_warning(f"Could not write checkpoint {path}: {exc}")
