"""Shared pytest fixtures for the scaffoldflow test suite.

Provides reusable fixtures for:
- Deterministic handlers for all five phases
- Orchestrators and executors wired with those handlers
- An event recorder subscribed to the orchestrator's event channel
- Sample seed data for a run
"""

from __future__ import annotations

from typing import Any, Callable

import pytest

from scaffoldflow.orchestrator import EventRecorder, Orchestrator, Phase, PhaseRegistry
from scaffoldflow.pipeline import PipelineExecutor


# ---------------------------------------------------------------------------
# Handlers
# ---------------------------------------------------------------------------

def discover(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "domain": "api",
        "constraints": ["python>=3.10"],
        "requirements": [f"serve: {data['userInput']}"],
        "detectedPatterns": ["rest"],
    }


async def elicit(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "refinedRequirements": data["requirements"] + ["auth: token"],
        "userPreferences": {"framework": "fastapi"},
        "clarifications": [],
    }


def blueprint(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "architecturePattern": "modular",
        "directoryStructure": ["app/", "tests/"],
        "dependencyGraph": {"app": []},
        "configTemplates": ["pyproject.toml"],
        "fileManifest": ["app/main.py", "tests/test_main.py"],
    }


async def generate(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "generatedFiles": list(data["fileManifest"]),
        "generationReport": {"count": len(data["fileManifest"])},
    }


def integrate(data: dict[str, Any]) -> dict[str, Any]:
    return {
        "integrationManifest": {"files": data["generatedFiles"]},
        "claudeConfig": {"instructions": "CLAUDE.md"},
        "finalReport": "ok",
    }


HANDLERS: dict[Phase, Callable[[dict[str, Any]], Any]] = {
    Phase.DISCOVER: discover,
    Phase.ELICIT: elicit,
    Phase.BLUEPRINT: blueprint,
    Phase.GENERATE: generate,
    Phase.INTEGRATE: integrate,
}

@pytest.fixture
def phase_handlers() -> dict[Phase, Callable[[dict[str, Any]], Any]]:
    """Deterministic handlers for every phase (mix of sync and async)."""
    return dict(HANDLERS)


@pytest.fixture
def seed_data() -> dict[str, Any]:
    return {"userInput": "Build a REST API for invoices"}


# ---------------------------------------------------------------------------
# Orchestrator / executor
# ---------------------------------------------------------------------------

@pytest.fixture
def registry() -> PhaseRegistry:
    return PhaseRegistry()


@pytest.fixture
def recorder() -> EventRecorder:
    return EventRecorder()


@pytest.fixture
def orchestrator(registry: PhaseRegistry, recorder: EventRecorder, phase_handlers) -> Orchestrator:
    """Orchestrator with every phase handler bound and events recorded."""
    orch = Orchestrator(registry, observers=[recorder])
    for phase, handler in phase_handlers.items():
        orch.register_phase_handler(phase, handler)
    return orch


@pytest.fixture
def bare_orchestrator(registry: PhaseRegistry, recorder: EventRecorder) -> Orchestrator:
    """Orchestrator without any handlers."""
    return Orchestrator(registry, observers=[recorder])


@pytest.fixture
def executor(registry: PhaseRegistry, recorder: EventRecorder, phase_handlers) -> PipelineExecutor:
    """Executor with every phase handler registered and events recorded."""
    ex = PipelineExecutor(Orchestrator(registry, observers=[recorder]))
    for phase, handler in phase_handlers.items():
        ex.register_handler(phase, handler)
    return ex
