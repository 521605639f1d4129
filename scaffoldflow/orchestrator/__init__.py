"""Phase orchestrator: contracts, run state machine and lifecycle events.

Usage::

    from scaffoldflow.orchestrator import Orchestrator, Phase

    orchestrator = Orchestrator()
    orchestrator.register_phase_handler(Phase.DISCOVER, discover)
    context = await orchestrator.start({"userInput": "..."})
"""

from scaffoldflow.orchestrator.engine import Orchestrator, PhaseHandler, SkipPredicate
from scaffoldflow.orchestrator.errors import (
    CheckpointError,
    ContractViolation,
    HandlerFailure,
    HookError,
    OrchestratorStateError,
    PhaseInputError,
    PhaseOutputError,
    ScaffoldFlowError,
    TransitionViolation,
    UnknownPhaseError,
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
    PHASE_ORDER,
    ErrorRecord,
    OrchestratorState,
    Phase,
    PhaseDefinition,
    PipelineResult,
    RecoveredPhase,
    RunContext,
    RunMetrics,
    TimingEntry,
    TimingStatus,
)
from scaffoldflow.orchestrator.registry import PHASE_DEFINITIONS, TRANSITIONS, PhaseRegistry

__all__ = [
    "PHASE_DEFINITIONS",
    "PHASE_ORDER",
    "TRANSITIONS",
    "CheckpointError",
    "ConsoleObserver",
    "ContractViolation",
    "ErrorRecord",
    "EventDispatcher",
    "EventName",
    "EventRecorder",
    "HandlerFailure",
    "HookError",
    "Orchestrator",
    "OrchestratorState",
    "OrchestratorStateError",
    "Phase",
    "PhaseDefinition",
    "PhaseHandler",
    "PhaseInputError",
    "PhaseOutputError",
    "PhaseRegistry",
    "PipelineObserver",
    "PipelineResult",
    "RecoveredPhase",
    "RunContext",
    "RunMetrics",
    "ScaffoldFlowError",
    "SkipPredicate",
    "TimingEntry",
    "TimingStatus",
    "TransitionViolation",
    "UnknownPhaseError",
    "UnregisteredHandlerError",
    "ValidationFailedError",
]
