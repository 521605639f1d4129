"""scaffoldflow: contract-driven five-phase project scaffolding pipeline.

Drives Discover -> Elicit -> Blueprint -> Generate -> Integrate through
caller-supplied phase handlers, enforcing each phase's input/output contract
and the legal state transitions between them.

Usage::

    from scaffoldflow import Phase, PipelineExecutor

    executor = PipelineExecutor()
    executor.register_handler(Phase.DISCOVER, discover)
    ...
    result = await executor.run({"userInput": "A REST API for invoices"})
"""

from scaffoldflow.config import OrchestratorConfig
from scaffoldflow.orchestrator import (
    Orchestrator,
    OrchestratorState,
    Phase,
    PhaseRegistry,
    PipelineResult,
    RunContext,
)
from scaffoldflow.pipeline import (
    CompiledPipeline,
    HookContext,
    PhasePlan,
    PipelineExecutor,
    get_default_executor,
)
from scaffoldflow.state import load_checkpoint, save_checkpoint

__version__ = "0.1.0"

__all__ = [
    "CompiledPipeline",
    "HookContext",
    "Orchestrator",
    "OrchestratorConfig",
    "OrchestratorState",
    "Phase",
    "PhasePlan",
    "PhaseRegistry",
    "PipelineExecutor",
    "PipelineResult",
    "RunContext",
    "get_default_executor",
    "load_checkpoint",
    "save_checkpoint",
]
