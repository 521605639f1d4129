"""Pipeline smoke tests for scaffoldflow.

These tests drive the full five-phase pipeline through ``PipelineExecutor``
with checkpointing enabled, including a failure in one process that is
restored and resumed by a fresh executor, and a verbose run rendered by the
console observer.
"""

from __future__ import annotations

from pathlib import Path
from typing import Any

import pytest

from scaffoldflow import (
    Orchestrator,
    OrchestratorConfig,
    OrchestratorState,
    Phase,
    PipelineExecutor,
    load_checkpoint,
)
from scaffoldflow.orchestrator import EventName, EventRecorder, TimingStatus


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------

def _make_executor(
    handlers: dict[Phase, Any], config: OrchestratorConfig, **overrides: Any
) -> tuple[PipelineExecutor, EventRecorder]:
    """Executor with every handler registered; *overrides* replace handlers by phase name."""
    recorder = EventRecorder()
    executor = PipelineExecutor(Orchestrator(config=config, observers=[recorder]))
    for phase, handler in handlers.items():
        executor.register_handler(phase, overrides.get(phase.value, handler))
    return executor, recorder


# ---------------------------------------------------------------------------
# Tests
# ---------------------------------------------------------------------------


@pytest.mark.integration
class TestPipelineSmoke:
    """End-to-end runs across the executor, orchestrator and checkpoints."""

    async def test_full_run_with_checkpoint(self, tmp_path: Path, phase_handlers) -> None:
        config = OrchestratorConfig(checkpoint_dir=tmp_path / "checkpoints")
        executor, recorder = _make_executor(phase_handlers, config)
        audit: list[str] = []
        executor.after("*", lambda ctx: audit.append(ctx.phase_id.value))

        result = await executor.run({"userInput": "A CLI for managing dotfiles"})

        assert result.success, result.errors
        assert audit == [p.value for p in Phase]
        assert result.data["integrationManifest"] == {"files": ["app/main.py", "tests/test_main.py"]}

        checkpoint = load_checkpoint(tmp_path / "checkpoints" / f"{result.run_id}.json")
        assert checkpoint.current_state is OrchestratorState.COMPLETE
        assert checkpoint.data == result.data
        assert len(recorder.get_history(EventName.PHASE_COMPLETED, run_id=result.run_id)) == 5

    async def test_failure_restored_and_resumed_elsewhere(self, tmp_path: Path, phase_handlers) -> None:
        config = OrchestratorConfig(checkpoint_dir=tmp_path)

        def broken_generate(data: dict[str, Any]) -> dict[str, Any]:
            raise ConnectionError("template service unreachable")

        first, _ = _make_executor(phase_handlers, config, GENERATE=broken_generate)
        failed = await first.run({"userInput": "A REST API for invoices"})

        assert failed.success is False
        assert failed.errors[0].phase is Phase.GENERATE

        # A new process picks the run up from its checkpoint.
        second, recorder = _make_executor(phase_handlers, config)
        second.orchestrator.restore(load_checkpoint(tmp_path / f"{failed.run_id}.json"))
        assert second.orchestrator.state is OrchestratorState.ERROR

        result = await second.resume()

        assert result.success, result.errors
        assert result.run_id == failed.run_id
        assert result.completed_phases == list(Phase)
        assert [t.status for t in result.timing].count(TimingStatus.FAILED) == 1
        started = [e.payload["phase_id"] for e in recorder.get_history(EventName.PHASE_STARTING)]
        assert started == [Phase.GENERATE, Phase.INTEGRATE]

    async def test_dry_run_then_live_run(self, tmp_path: Path, phase_handlers) -> None:
        config = OrchestratorConfig(checkpoint_dir=tmp_path)
        executor, _ = _make_executor(phase_handlers, config)

        preview = await executor.set_dry_run(True).run({"userInput": "A static site"})
        assert preview.success and preview.dry_run
        assert list(tmp_path.iterdir()) == []

        result = await executor.set_dry_run(False).run({"userInput": "A static site"})
        assert result.success
        assert result.run_id != preview.run_id

    async def test_verbose_console_output(self, capsys: pytest.CaptureFixture[str], phase_handlers) -> None:
        executor, _ = _make_executor(phase_handlers, OrchestratorConfig(verbose=True))
        result = await executor.run({"userInput": "A chat bot"})

        assert result.success
        out = capsys.readouterr().out
        assert "Phase 1: DISCOVER" in out
        assert "Phase 5: INTEGRATE" in out
        assert "Run Summary" in out
