"""Exception taxonomy for the phase orchestrator.

Every exception carries a machine-readable ``code`` (the same string that is
stored on ``ErrorRecord.code``) and, where one applies, the ``phase_id`` it
was raised for.
"""

from __future__ import annotations

from typing import Any, Optional


class ScaffoldFlowError(Exception):
    """Base class for all orchestrator failures."""

    code: str = "SCAFFOLDFLOW_ERROR"

    def __init__(self, message: str, phase_id: Optional[Any] = None) -> None:
        self.phase_id = phase_id
        super().__init__(message)


class UnknownPhaseError(ScaffoldFlowError, KeyError):
    """Raised when a phase id is not one of the canonical phases."""

    code = "UNKNOWN_PHASE"

    def __init__(self, phase_id: Any) -> None:
        super().__init__(f'Unknown phase: "{phase_id}"')
        self.phase_id = phase_id

    def __str__(self) -> str:
        # KeyError would otherwise repr() the message.
        return self.args[0]


class OrchestratorStateError(ScaffoldFlowError):
    """Raised when start/resume/restore is called in the wrong state."""

    code = "INVALID_STATE"


# ---------------------------------------------------------------------------
# Contract violations
# ---------------------------------------------------------------------------


class ContractViolation(ScaffoldFlowError):
    """A phase contract (inputs or outputs) was not honoured."""

    def __init__(self, message: str, phase_id: Any, missing: list[str]) -> None:
        super().__init__(message, phase_id)
        self.missing = list(missing)


class PhaseInputError(ContractViolation):
    """Required input keys are absent from the context."""

    code = "PHASE_INPUT_INVALID"

    def __init__(self, phase_id: Any, missing: list[str]) -> None:
        super().__init__(
            f'Phase "{_name(phase_id)}" is missing required inputs: [{", ".join(missing)}]',
            phase_id,
            missing,
        )


class PhaseOutputError(ContractViolation):
    """A handler returned output without every declared key."""

    code = "PHASE_OUTPUT_INVALID"

    def __init__(self, phase_id: Any, missing: list[str], detail: str = "") -> None:
        message = (
            f'Phase "{_name(phase_id)}" handler did not produce required outputs: '
            f'[{", ".join(missing)}]'
        )
        if detail:
            message = f"{message} ({detail})"
        super().__init__(message, phase_id, missing)


class ValidationFailedError(ContractViolation):
    """Post-run check found a completed phase's outputs missing from the context."""

    code = "VALIDATION_FAILED"

    def __init__(self, phase_id: Any, missing: list[str]) -> None:
        super().__init__(
            f'Post-run validation failed: phase "{_name(phase_id)}" is missing '
            f'outputs [{", ".join(missing)}] from context.',
            phase_id,
            missing,
        )


# ---------------------------------------------------------------------------
# Transition / execution failures
# ---------------------------------------------------------------------------


class TransitionViolation(ScaffoldFlowError):
    """A state transition outside the transition matrix was attempted."""

    code = "INVALID_TRANSITION"

    def __init__(self, from_state: Any, to_state: Any, reason: str) -> None:
        super().__init__(f"Invalid state transition: {reason}")
        self.from_state = from_state
        self.to_state = to_state


class UnregisteredHandlerError(ScaffoldFlowError):
    """A phase was executed without a bound handler."""

    code = "HANDLER_NOT_REGISTERED"

    def __init__(self, phase_id: Any) -> None:
        super().__init__(
            f'No handler registered for phase "{_name(phase_id)}". '
            "Register one with register_phase_handler().",
            phase_id,
        )


class HandlerFailure(ScaffoldFlowError):
    """A registered handler raised; the original exception is on ``original``."""

    code = "HANDLER_FAILED"

    def __init__(self, phase_id: Any, original: BaseException) -> None:
        super().__init__(f'Phase "{_name(phase_id)}" handler failed: {original}', phase_id)
        self.original = original


class HookError(ScaffoldFlowError):
    """A before/after hook raised, aborting the phase."""

    code = "HOOK_FAILED"

    def __init__(self, kind: str, phase_id: Any, original: BaseException) -> None:
        super().__init__(
            f'{kind}-hook for phase "{_name(phase_id)}" failed: {original}', phase_id
        )
        self.kind = kind
        self.original = original


class CheckpointError(ScaffoldFlowError):
    """A run checkpoint could not be read or parsed."""

    code = "CHECKPOINT_INVALID"


def _name(phase_id: Any) -> str:
    return getattr(phase_id, "value", phase_id)
