"""Pydantic v2 models for the phase orchestrator.

Defines the phase and state enumerations, the immutable phase contracts, the
mutable per-run context with its timing and error logs, and the result
objects returned by validation, metrics and pipeline execution.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field, computed_field

from scaffoldflow.utils import generate_run_id


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


# ---------------------------------------------------------------------------
# Enumerations
# ---------------------------------------------------------------------------

class Phase(str, Enum):
    """The five canonical pipeline phases, in execution order."""
    DISCOVER = "DISCOVER"
    ELICIT = "ELICIT"
    BLUEPRINT = "BLUEPRINT"
    GENERATE = "GENERATE"
    INTEGRATE = "INTEGRATE"


class OrchestratorState(str, Enum):
    """Orchestrator states: one active state per phase plus bookkeeping states."""
    IDLE = "IDLE"
    DISCOVERING = "DISCOVERING"
    ELICITING = "ELICITING"
    BLUEPRINTING = "BLUEPRINTING"
    GENERATING = "GENERATING"
    INTEGRATING = "INTEGRATING"
    VALIDATING = "VALIDATING"
    COMPLETE = "COMPLETE"
    ERROR = "ERROR"


class TimingStatus(str, Enum):
    """Status recorded on a phase timing entry."""
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    SKIPPED = "skipped"
    SIMULATED = "simulated"
    SIMULATED_WITH_WARNINGS = "simulated-with-warnings"


PHASE_ORDER: tuple[Phase, ...] = (
    Phase.DISCOVER,
    Phase.ELICIT,
    Phase.BLUEPRINT,
    Phase.GENERATE,
    Phase.INTEGRATE,
)


# ---------------------------------------------------------------------------
# Phase contracts
# ---------------------------------------------------------------------------

class PhaseDefinition(BaseModel):
    """Declared contract of a single phase. Defined once, never mutated."""

    model_config = ConfigDict(frozen=True)

    id: Phase = Field(..., description="Phase identifier")
    label: str = Field(..., description="Human-readable name")
    description: str = Field(default="", description="What this phase accomplishes")
    state: OrchestratorState = Field(..., description="State that is active while the phase runs")
    required_input_keys: tuple[str, ...] = Field(
        default=(), description="Context keys that must be present before the phase starts"
    )
    optional_input_keys: tuple[str, ...] = Field(
        default=(), description="Context keys used when available"
    )
    output_keys: tuple[str, ...] = Field(
        default=(), description="Keys every handler output must contain"
    )
    order: int = Field(..., ge=0, description="Zero-based execution order")


class TransitionResult(BaseModel):
    """Outcome of checking a proposed state transition."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    reason: Optional[str] = None


class InputValidation(BaseModel):
    """Presence check of a phase's inputs against a context."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    missing: list[str] = Field(default_factory=list, description="Required keys not present")
    optional: list[str] = Field(default_factory=list, description="Optional keys that are present")


class OutputValidation(BaseModel):
    """Presence check of a phase's declared outputs against a mapping."""

    model_config = ConfigDict(frozen=True)

    valid: bool
    missing: list[str] = Field(default_factory=list, description="Declared keys not produced")
    produced: list[str] = Field(default_factory=list, description="Declared keys produced")


# ---------------------------------------------------------------------------
# Run context
# ---------------------------------------------------------------------------

class TimingEntry(BaseModel):
    """One phase attempt in the append-only timing log."""

    phase: Phase
    started_at: datetime = Field(default_factory=_utcnow)
    ended_at: Optional[datetime] = None
    duration_ms: Optional[float] = Field(default=None, ge=0.0)
    status: TimingStatus = TimingStatus.RUNNING
    error: Optional[str] = None


class ErrorRecord(BaseModel):
    """A failure recorded against a run (or a dry-run warning)."""

    phase: Optional[Phase] = None
    message: str
    code: str = Field(default="", description="Machine-readable error code, e.g. PHASE_INPUT_INVALID")
    timestamp: datetime = Field(default_factory=_utcnow)


class RunContext(BaseModel):
    """Mutable state of exactly one pipeline run.

    Created fresh by ``Orchestrator.start()`` / ``reset()`` and mutated only
    by phase execution. Accessors hand out deep copies.
    """

    run_id: str = Field(default_factory=generate_run_id)
    current_state: OrchestratorState = OrchestratorState.IDLE
    current_phase: Optional[Phase] = None
    data: dict[str, Any] = Field(default_factory=dict, description="Accumulated phase data")
    timing: list[TimingEntry] = Field(default_factory=list)
    completed_phases: list[Phase] = Field(default_factory=list)
    skipped_phases: list[Phase] = Field(default_factory=list)
    recovered_phases: list[Phase] = Field(
        default_factory=list,
        description="Completed phases whose failure an error boundary absorbed",
    )
    errors: list[ErrorRecord] = Field(default_factory=list)
    started_at: datetime = Field(default_factory=_utcnow)
    completed_at: Optional[datetime] = None
    retry_count: int = Field(default=0, ge=0)


class RunMetrics(BaseModel):
    """Aggregate timing for the current (or most recent) run."""

    run_id: str
    total_duration_ms: float = 0.0
    phases: list[TimingEntry] = Field(default_factory=list)
    completed_phases: list[Phase] = Field(default_factory=list)
    skipped_phases: list[Phase] = Field(default_factory=list)
    error_count: int = 0


class ResumeCheck(BaseModel):
    """Whether a run may be resumed; truthy when it can."""

    model_config = ConfigDict(frozen=True)

    resumable: bool
    reason: Optional[str] = None

    def __bool__(self) -> bool:
        return self.resumable


class PipelineResult(BaseModel):
    """Normalized outcome of ``PipelineExecutor.run()`` / ``resume()``."""

    success: bool = False
    run_id: str
    data: dict[str, Any] = Field(default_factory=dict)
    timing: list[TimingEntry] = Field(default_factory=list)
    completed_phases: list[Phase] = Field(default_factory=list)
    skipped_phases: list[Phase] = Field(default_factory=list)
    total_duration_ms: float = 0.0
    errors: list[ErrorRecord] = Field(default_factory=list)
    dry_run: bool = False

    @computed_field  # type: ignore[misc]
    @property
    def error_count(self) -> int:
        """Number of errors (or dry-run warnings) collected."""
        return len(self.errors)


class RecoveredPhase:
    """Marker output for a phase whose handler failure was absorbed.

    Returned by a wrapped handler after an error boundary reports the
    failure as handled; the orchestrator records the phase as completed
    without merging anything into the context.
    """

    __slots__ = ("error",)

    def __init__(self, error: BaseException) -> None:
        self.error = error

    def __repr__(self) -> str:
        return f"RecoveredPhase({self.error!r})"
