"""scaffoldflow pipeline executor.

High-level runner over an ``Orchestrator`` that adds cross-cutting behaviour
without touching phase handlers:

* before/after hooks per phase or for every phase (``"*"``),
* skip predicates (any true predicate skips the phase),
* error boundaries that can absorb a handler failure,
* a dry-run mode that previews sequencing and contracts without running
  any handler.

Hooks, predicates and boundaries are compiled into an immutable
``CompiledPipeline`` at the start of every run, so registrations made after
a handler was bound still apply.

Usage::

    executor = PipelineExecutor()
    executor.register_handler(Phase.DISCOVER, discover)
    executor.before("*", log_phase)
    result = await executor.run({"userInput": "A CLI for managing dotfiles"})
"""

from __future__ import annotations

import time
from collections.abc import Awaitable, Callable, Iterator, Mapping
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Optional, Union

from scaffoldflow.config import OrchestratorConfig
from scaffoldflow.orchestrator import (
    ErrorRecord,
    EventName,
    HookError,
    Orchestrator,
    OrchestratorStateError,
    Phase,
    PhaseHandler,
    PhaseRegistry,
    PipelineResult,
    RecoveredPhase,
    SkipPredicate,
    TimingEntry,
    TimingStatus,
)
from scaffoldflow.utils import elapsed_ms, generate_run_id, maybe_await, snapshot

WILDCARD = "*"


@dataclass(frozen=True)
class HookContext:
    """What hooks and error boundaries receive about the phase in flight."""

    phase_id: Phase
    run_id: str
    data: dict[str, Any]
    dry_run: bool = False


Hook = Callable[[HookContext], Union[None, Awaitable[None]]]
ErrorBoundary = Callable[[BaseException, HookContext], Union[bool, Awaitable[bool]]]
HookKey = Union[Phase, str]


# ---------------------------------------------------------------------------
# Compiled pipeline
# ---------------------------------------------------------------------------


@dataclass(frozen=True)
class PhasePlan:
    """Everything that will run for one phase, in order."""

    phase: Phase
    handler: Optional[PhaseHandler] = None
    before: tuple[Hook, ...] = ()
    after: tuple[Hook, ...] = ()
    skip_predicates: tuple[SkipPredicate, ...] = ()
    boundary: Optional[ErrorBoundary] = None

    def should_skip(self, data: Mapping[str, Any], fail_open: bool = False) -> bool:
        """True if any skip predicate holds for *data*.

        With *fail_open* a raising predicate counts as false instead of
        propagating.
        """
        for predicate in self.skip_predicates:
            try:
                if predicate(snapshot(dict(data))):
                    return True
            except Exception:
                if not fail_open:
                    raise
        return False


@dataclass(frozen=True)
class CompiledPipeline:
    """Per-phase plans in pipeline order, built fresh for each run."""

    plans: tuple[PhasePlan, ...]
    dry_run: bool = False

    def __iter__(self) -> Iterator[PhasePlan]:
        return iter(self.plans)

    def __len__(self) -> int:
        return len(self.plans)

    def plan_for(self, phase_id: Phase | str) -> PhasePlan:
        phase = Phase(phase_id)
        for plan in self.plans:
            if plan.phase is phase:
                return plan
        raise KeyError(phase_id)


# ---------------------------------------------------------------------------
# PipelineExecutor
# ---------------------------------------------------------------------------


class PipelineExecutor:
    """Run the five-phase pipeline with hooks, boundaries and dry-run support.

    Args:
        orchestrator: The orchestrator to drive. A new one is created (sharing
            *registry* and *config*) when omitted.
        registry: Phase contracts. Defaults to the orchestrator's registry.
        dry_run: Start in dry-run mode.
        config: Settings for a newly created orchestrator.
    """

    def __init__(
        self,
        orchestrator: Optional[Orchestrator] = None,
        registry: Optional[PhaseRegistry] = None,
        *,
        dry_run: bool = False,
        config: Optional[OrchestratorConfig] = None,
    ) -> None:
        self._orchestrator = orchestrator or Orchestrator(registry, config=config)
        self._registry = registry or self._orchestrator.registry
        self._dry_run = bool(dry_run)

        self._handlers: dict[Phase, PhaseHandler] = {}
        self._installed: dict[Phase, PhaseHandler] = {}
        self._adopted_skips: dict[Phase, SkipPredicate] = {}
        self._installed_skips: dict[Phase, SkipPredicate] = {}
        self._before: dict[HookKey, list[Hook]] = {}
        self._after: dict[HookKey, list[Hook]] = {}
        self._skip_conditions: dict[HookKey, list[SkipPredicate]] = {}
        self._boundaries: dict[HookKey, ErrorBoundary] = {}

    # ------------------------------------------------------------------
    # Accessors
    # ------------------------------------------------------------------

    @property
    def orchestrator(self) -> Orchestrator:
        return self._orchestrator

    @property
    def registry(self) -> PhaseRegistry:
        return self._registry

    @property
    def is_dry_run(self) -> bool:
        return self._dry_run

    def set_dry_run(self, enabled: bool) -> "PipelineExecutor":
        """Toggle dry-run mode: simulate phases without calling handlers."""
        self._dry_run = bool(enabled)
        return self

    # ------------------------------------------------------------------
    # Registration
    # ------------------------------------------------------------------

    def before(self, phase_id: Phase | str, hook: Hook) -> "PipelineExecutor":
        """Run *hook* just before the phase handler (``"*"`` for every phase)."""
        self._hook_list(self._before, "before", phase_id, hook).append(hook)
        return self

    def after(self, phase_id: Phase | str, hook: Hook) -> "PipelineExecutor":
        """Run *hook* just after the phase handler succeeds (``"*"`` for every phase)."""
        self._hook_list(self._after, "after", phase_id, hook).append(hook)
        return self

    def skip_when(self, phase_id: Phase | str, predicate: SkipPredicate) -> "PipelineExecutor":
        """Skip the phase if *predicate* (or any other registered one) is true."""
        key = self._key(phase_id)
        if not callable(predicate):
            raise TypeError("Skip predicate must be callable.")
        self._skip_conditions.setdefault(key, []).append(predicate)
        return self

    def on_phase_error(self, phase_id: Phase | str, boundary: ErrorBoundary) -> "PipelineExecutor":
        """Install an error boundary for a phase (``"*"`` for every phase).

        Replaces any previous boundary under the same key; a phase-specific
        boundary takes precedence over the wildcard one.  When the phase
        handler raises, ``boundary(error, hook_context)`` is awaited; a truthy
        result records the phase as completed with nothing merged and the run
        continues.  Otherwise the original error propagates.
        """
        key = self._key(phase_id)
        if not callable(boundary):
            raise TypeError("Error boundary must be callable.")
        self._boundaries[key] = boundary
        return self

    def register_handler(self, phase_id: Phase | str, handler: PhaseHandler) -> "PipelineExecutor":
        """Bind *handler* to a phase on the underlying orchestrator."""
        self._orchestrator.register_phase_handler(phase_id, handler)
        self._handlers[self._registry.get_definition(phase_id).id] = handler
        return self

    # ------------------------------------------------------------------
    # Compilation
    # ------------------------------------------------------------------

    def compile(self) -> CompiledPipeline:
        """Snapshot the current handlers, hooks, predicates and boundaries."""
        plans = []
        for phase in self._registry.phase_order:
            plans.append(
                PhasePlan(
                    phase=phase,
                    handler=self._original_handler(phase),
                    before=tuple(self._before.get(WILDCARD, []) + self._before.get(phase, [])),
                    after=tuple(self._after.get(WILDCARD, []) + self._after.get(phase, [])),
                    skip_predicates=tuple(
                        self._skip_conditions.get(WILDCARD, [])
                        + self._original_skip_condition(phase)
                        + self._skip_conditions.get(phase, [])
                    ),
                    boundary=self._boundaries.get(phase) or self._boundaries.get(WILDCARD),
                )
            )
        return CompiledPipeline(plans=tuple(plans), dry_run=self._dry_run)

    # ------------------------------------------------------------------
    # Execution
    # ------------------------------------------------------------------

    async def run(self, initial_data: Optional[Mapping[str, Any]] = None) -> PipelineResult:
        """Run the whole pipeline; failures are reported in the result, not raised."""
        started = time.monotonic()
        if self._dry_run:
            return await self._execute_dry_run(dict(initial_data or {}), started)

        self._orchestrator.reset()
        self._install(self.compile())
        self._emit(
            EventName.PIPELINE_STARTED,
            run_id=self._orchestrator.run_id,
            dry_run=False,
            phases=list(self._registry.phase_order),
        )

        try:
            await self._orchestrator.start(initial_data or {})
        except Exception as exc:
            return self._finish(started, exc)
        return self._finish(started)

    async def resume(self, additional_data: Optional[Mapping[str, Any]] = None) -> PipelineResult:
        """Resume a failed run through the orchestrator.

        Raises:
            OrchestratorStateError: If the orchestrator cannot resume.
        """
        check = self._orchestrator.can_resume()
        if not check:
            raise OrchestratorStateError(f"Cannot resume: {check.reason}")

        started = time.monotonic()
        self._install(self.compile())
        try:
            await self._orchestrator.resume(additional_data or {})
        except Exception as exc:
            return self._finish(started, exc)
        return self._finish(started)

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _key(self, phase_id: Phase | str) -> HookKey:
        if phase_id == WILDCARD:
            return WILDCARD
        return self._registry.get_definition(phase_id).id

    def _hook_list(
        self, table: dict[HookKey, list[Hook]], kind: str, phase_id: Phase | str, hook: Hook
    ) -> list[Hook]:
        key = self._key(phase_id)
        if not callable(hook):
            raise TypeError(f"{kind}-hook must be callable.")
        return table.setdefault(key, [])

    def _original_handler(self, phase: Phase) -> Optional[PhaseHandler]:
        """Unwrapped handler for *phase*, adopting ones bound directly on the orchestrator."""
        current = self._orchestrator.get_handler(phase)
        if current is not None and current is not self._installed.get(phase):
            self._handlers[phase] = current
        return self._handlers.get(phase)

    def _original_skip_condition(self, phase: Phase) -> list[SkipPredicate]:
        """Skip condition set directly on the orchestrator, if any."""
        current = self._orchestrator.get_skip_condition(phase)
        if current is not None and current is not self._installed_skips.get(phase):
            self._adopted_skips[phase] = current
        adopted = self._adopted_skips.get(phase)
        return [adopted] if adopted is not None else []

    def _install(self, pipeline: CompiledPipeline) -> None:
        for plan in pipeline:
            if plan.handler is not None:
                wrapped = self._wrap(plan)
                self._orchestrator.register_phase_handler(plan.phase, wrapped)
                self._installed[plan.phase] = wrapped
            if plan.skip_predicates:
                predicate = plan.should_skip
                self._orchestrator.register_skip_condition(plan.phase, predicate)
                self._installed_skips[plan.phase] = predicate

    def _wrap(self, plan: PhasePlan) -> PhaseHandler:
        handler = plan.handler
        assert handler is not None  # only called for bound phases

        async def wrapped(data: dict[str, Any]) -> Any:
            base = snapshot(data)
            hook_ctx = HookContext(
                phase_id=plan.phase,
                run_id=self._orchestrator.run_id,
                data=snapshot(base),
            )
            await self._run_hooks("before", plan.phase, plan.before, hook_ctx)
            self._emit(EventName.PHASE_BEFORE, phase_id=plan.phase, run_id=hook_ctx.run_id)

            try:
                output = await maybe_await(handler(data))
            except Exception as exc:
                if plan.boundary is not None and await maybe_await(plan.boundary(exc, hook_ctx)):
                    self._emit(EventName.PHASE_ERROR, phase_id=plan.phase, error=exc, handled=True)
                    return RecoveredPhase(exc)
                self._emit(EventName.PHASE_ERROR, phase_id=plan.phase, error=exc, handled=False)
                raise

            merged = base
            if isinstance(output, Mapping):
                merged.update(snapshot(dict(output)))
            after_ctx = HookContext(phase_id=plan.phase, run_id=hook_ctx.run_id, data=merged)
            await self._run_hooks("after", plan.phase, plan.after, after_ctx)
            self._emit(EventName.PHASE_AFTER, phase_id=plan.phase, run_id=hook_ctx.run_id)
            return output

        return wrapped

    async def _run_hooks(
        self, kind: str, phase: Phase, hooks: tuple[Hook, ...], hook_ctx: HookContext
    ) -> None:
        """Run hooks sequentially; the first failure aborts the phase as a ``HookError``."""
        for hook in hooks:
            try:
                await maybe_await(hook(hook_ctx))
            except Exception as exc:
                self._emit(EventName.HOOK_ERROR, kind=kind, phase_id=phase, error=exc)
                raise HookError(kind, phase, exc) from exc

    async def _run_hooks_best_effort(
        self, kind: str, phase: Phase, hooks: tuple[Hook, ...], hook_ctx: HookContext
    ) -> None:
        for hook in hooks:
            try:
                await maybe_await(hook(hook_ctx))
            except Exception as exc:
                self._emit(EventName.HOOK_ERROR, kind=kind, phase_id=phase, error=exc, dry_run=True)

    def _finish(self, started: float, error: Optional[Exception] = None) -> PipelineResult:
        ctx = self._orchestrator.context
        errors: list[ErrorRecord] = list(ctx.errors)
        if error is not None and not errors:
            errors.append(
                ErrorRecord(
                    phase=getattr(error, "phase_id", None) or ctx.current_phase,
                    message=str(error),
                    code=getattr(error, "code", ""),
                )
            )

        result = PipelineResult(
            success=error is None,
            run_id=ctx.run_id,
            data=ctx.data,
            timing=ctx.timing,
            completed_phases=ctx.completed_phases,
            skipped_phases=ctx.skipped_phases,
            total_duration_ms=elapsed_ms(started),
            errors=errors,
            dry_run=False,
        )
        self._emit(
            EventName.PIPELINE_COMPLETED if result.success else EventName.PIPELINE_FAILED,
            run_id=result.run_id,
            result=result,
        )
        return result

    async def _execute_dry_run(self, initial_data: dict[str, Any], started: float) -> PipelineResult:
        """Simulate every phase: no handler runs and orchestrator state is untouched."""
        pipeline = self.compile()
        run_id = generate_run_id()
        data = snapshot(initial_data)
        result = PipelineResult(run_id=run_id, dry_run=True)

        self._emit(
            EventName.PIPELINE_STARTED,
            run_id=run_id,
            dry_run=True,
            phases=[plan.phase for plan in pipeline],
        )

        for plan in pipeline:
            definition = self._registry.get_definition(plan.phase)
            phase_started = time.monotonic()

            if plan.should_skip(data, fail_open=True):
                skipped = TimingEntry(phase=plan.phase, duration_ms=0.0, status=TimingStatus.SKIPPED)
                skipped.ended_at = skipped.started_at
                result.skipped_phases.append(plan.phase)
                result.timing.append(skipped)
                self._emit(EventName.DRY_RUN_PHASE, phase_id=plan.phase, run_id=run_id, action="skipped")
                continue

            input_check = self._registry.validate_phase_input(plan.phase, data)
            hook_ctx = HookContext(phase_id=plan.phase, run_id=run_id, data=snapshot(data), dry_run=True)
            await self._run_hooks_best_effort("before", plan.phase, plan.before, hook_ctx)

            data.update({key: f"[dry-run placeholder for {key}]" for key in definition.output_keys})

            entry = TimingEntry(
                phase=plan.phase,
                status=(
                    TimingStatus.SIMULATED
                    if input_check.valid
                    else TimingStatus.SIMULATED_WITH_WARNINGS
                ),
            )
            entry.duration_ms = elapsed_ms(phase_started)
            entry.ended_at = datetime.now(timezone.utc)
            result.timing.append(entry)

            if not input_check.valid:
                result.errors.append(
                    ErrorRecord(
                        phase=plan.phase,
                        message=f"Missing required inputs: [{', '.join(input_check.missing)}]",
                        code="PHASE_INPUT_INVALID",
                    )
                )
            result.completed_phases.append(plan.phase)

            after_ctx = HookContext(phase_id=plan.phase, run_id=run_id, data=snapshot(data), dry_run=True)
            await self._run_hooks_best_effort("after", plan.phase, plan.after, after_ctx)

            self._emit(
                EventName.DRY_RUN_PHASE,
                phase_id=plan.phase,
                run_id=run_id,
                action="simulated",
                input_valid=input_check.valid,
                output_keys=list(definition.output_keys),
            )

        result.success = not result.errors
        result.data = data
        result.total_duration_ms = elapsed_ms(started)

        self._emit(EventName.PIPELINE_COMPLETED, run_id=run_id, result=result)
        return result

    def _emit(self, event: EventName, **payload: Any) -> None:
        self._orchestrator.events.emit(event, **payload)


# ---------------------------------------------------------------------------
# Default instance
# ---------------------------------------------------------------------------

_default_executor: Optional[PipelineExecutor] = None


def get_default_executor(fresh: bool = False) -> PipelineExecutor:
    """Return a process-wide executor for simple, single-run scripts.

    Concurrent runs must each construct their own ``PipelineExecutor``.
    """
    global _default_executor
    if fresh or _default_executor is None:
        _default_executor = PipelineExecutor()
    return _default_executor
