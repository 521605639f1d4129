"""Run checkpoints.

Persists a ``RunContext`` to JSON after each phase so that a run interrupted
in one process can be restored into a fresh orchestrator and resumed.
"""

from __future__ import annotations

import json
from pathlib import Path

from pydantic import ValidationError

from scaffoldflow.orchestrator.errors import CheckpointError
from scaffoldflow.orchestrator.models import RunContext
from scaffoldflow.utils import load_json, save_json


async def save_checkpoint(context: RunContext, path: str | Path) -> Path:
    """Write *context* to *path* as pretty-printed JSON.

    Context data is written as-is; values JSON cannot represent are
    stringified, so such payloads do not survive a restore unchanged.

    Returns:
        The path that was written.
    """
    payload = context.model_dump(mode="json", exclude={"data"})
    payload["data"] = context.data
    target = Path(path)
    await save_json(payload, target)
    return target


def load_checkpoint(path: str | Path) -> RunContext:
    """Read a checkpoint written by ``save_checkpoint``.

    Raises:
        CheckpointError: If the file is missing, not JSON, or not a run context.
    """
    source = Path(path)
    if not source.exists():
        raise CheckpointError(f"Checkpoint not found: {source}")
    try:
        return RunContext.model_validate(load_json(source))
    except (json.JSONDecodeError, ValidationError) as exc:
        raise CheckpointError(f"Corrupt checkpoint {source}: {exc}") from exc
