"""scaffoldflow configuration.

Typed settings for the orchestrator and the pipeline executor. All settings
use Pydantic v2 models so they are validated at construction time and can be
serialised to/from JSON or read from environment variables.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import Any, Optional

from pydantic import BaseModel, Field

_TRUTHY = {"1", "true", "yes", "on"}


class OrchestratorConfig(BaseModel):
    """Global orchestrator configuration.

    Instances are typically created once by the caller and passed to
    ``Orchestrator`` / ``PipelineExecutor``; both fall back to the defaults
    when none is given.
    """

    max_retries: int = Field(
        default=3, ge=0, description="How many times a failed run may be resumed"
    )
    checkpoint_dir: Optional[Path] = Field(
        default=None,
        description="When set, the run context is written here after every phase",
    )
    verbose: bool = Field(
        default=False, description="Attach a Rich console observer to new orchestrators"
    )
    max_event_history: int = Field(
        default=1_000,
        ge=0,
        description="Events kept in the orchestrator's history (0 = unbounded)",
    )

    # ------------------------------------------------------------------
    # Derived paths
    # ------------------------------------------------------------------

    def checkpoint_path(self, run_id: str) -> Optional[Path]:
        """Path of the checkpoint file for *run_id*, or ``None`` when disabled."""
        if self.checkpoint_dir is None:
            return None
        return self.checkpoint_dir / f"{run_id}.json"

    # ------------------------------------------------------------------
    # Serialisation helpers
    # ------------------------------------------------------------------

    def save(self, path: Path) -> Path:
        """Persist the configuration to a JSON file.

        Args:
            path: Destination file. Parent directories are created.

        Returns:
            The path where the file was written.
        """
        target = Path(path)
        target.parent.mkdir(parents=True, exist_ok=True)
        target.write_text(self.model_dump_json(indent=2), encoding="utf-8")
        return target

    @classmethod
    def load(cls, path: Path) -> "OrchestratorConfig":
        """Load a previously-saved configuration from JSON.

        Args:
            path: The JSON file to read.

        Returns:
            A validated ``OrchestratorConfig`` instance.
        """
        raw = Path(path).read_text(encoding="utf-8")
        return cls.model_validate_json(raw)

    @classmethod
    def from_env(cls) -> "OrchestratorConfig":
        """Build an ``OrchestratorConfig`` from environment variables.

        Recognised variables (all optional):
            SCAFFOLDFLOW_MAX_RETRIES, SCAFFOLDFLOW_CHECKPOINT_DIR,
            SCAFFOLDFLOW_VERBOSE, SCAFFOLDFLOW_MAX_EVENT_HISTORY.
        """
        kwargs: dict[str, Any] = {}
        if os.environ.get("SCAFFOLDFLOW_MAX_RETRIES"):
            kwargs["max_retries"] = int(os.environ["SCAFFOLDFLOW_MAX_RETRIES"])
        if os.environ.get("SCAFFOLDFLOW_MAX_EVENT_HISTORY"):
            kwargs["max_event_history"] = int(os.environ["SCAFFOLDFLOW_MAX_EVENT_HISTORY"])
        if os.environ.get("SCAFFOLDFLOW_CHECKPOINT_DIR"):
            kwargs["checkpoint_dir"] = Path(os.environ["SCAFFOLDFLOW_CHECKPOINT_DIR"])
        if os.environ.get("SCAFFOLDFLOW_VERBOSE"):
            kwargs["verbose"] = os.environ["SCAFFOLDFLOW_VERBOSE"].strip().lower() in _TRUTHY

        return cls(**kwargs)
