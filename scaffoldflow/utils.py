"""Shared utility functions for scaffoldflow.

Provides JSON I/O, structural snapshots of run data, run identifiers,
duration formatting, and the Rich-based console helpers used by observers
and summaries.
"""

from __future__ import annotations

import asyncio
import copy
import inspect
import json
import secrets
import time
from pathlib import Path
from typing import Any

from rich.console import Console
from rich.rule import Rule
from rich.table import Table

console = Console()

# ---------------------------------------------------------------------------
# Run identifiers & snapshots
# ---------------------------------------------------------------------------


def generate_run_id() -> str:
    """Return a unique, roughly time-ordered run identifier.

    Examples::

        generate_run_id() -> "run_19a3f2c4b1e_4fa2c9"
    """
    millis = int(time.time() * 1000)
    return f"run_{millis:x}_{secrets.token_hex(3)}"


def snapshot(value: Any) -> Any:
    """Return a structural deep copy of *value*.

    Unlike a JSON round-trip this preserves tuples, sets, dataclasses,
    datetimes and other non-JSON payloads by type, so handlers see exactly
    what earlier phases produced.
    """
    return copy.deepcopy(value)


async def maybe_await(value: Any) -> Any:
    """Await *value* if it is awaitable, otherwise return it unchanged.

    Lets handlers, hooks and error boundaries be plain functions or
    coroutines interchangeably.
    """
    if inspect.isawaitable(value):
        return await value
    return value


# ---------------------------------------------------------------------------
# JSON I/O
# ---------------------------------------------------------------------------


def load_json(path: str | Path) -> dict[str, Any]:
    """Load and parse a JSON file.

    Args:
        path: Path to the JSON file.

    Returns:
        Parsed dictionary.

    Raises:
        FileNotFoundError: If the file does not exist.
        json.JSONDecodeError: If the file is not valid JSON.
    """
    file_path = Path(path)
    raw = file_path.read_text(encoding="utf-8")
    data = json.loads(raw)
    if not isinstance(data, dict):
        return {"_root": data}
    return data


async def save_json(data: dict[str, Any] | list[Any], path: str | Path) -> None:
    """Save data as pretty-printed JSON.

    Parent directories are created automatically.  Values that JSON cannot
    represent are stringified.  The write itself is performed in a
    thread-pool executor to avoid blocking the event loop on large files.

    Args:
        data: Serialisable data (dict or list).
        path: Destination file path.
    """
    file_path = Path(path)
    file_path.parent.mkdir(parents=True, exist_ok=True)
    content = json.dumps(data, indent=2, ensure_ascii=False, default=str)

    loop = asyncio.get_running_loop()
    await loop.run_in_executor(None, file_path.write_text, content, "utf-8")


# ---------------------------------------------------------------------------
# Formatting helpers
# ---------------------------------------------------------------------------


def format_duration(seconds: float) -> str:
    """Format a duration in seconds to a human-readable string.

    Examples::

        format_duration(3.7)    -> "3.7s"
        format_duration(65.2)   -> "1m 5s"
        format_duration(3661.0) -> "1h 1m 1s"
    """
    if seconds < 0:
        return "0.0s"

    hours = int(seconds // 3600)
    minutes = int((seconds % 3600) // 60)
    secs = seconds % 60

    parts: list[str] = []
    if hours > 0:
        parts.append(f"{hours}h")
    if minutes > 0:
        parts.append(f"{minutes}m")

    if hours > 0 or minutes > 0:
        parts.append(f"{int(secs)}s")
    else:
        parts.append(f"{secs:.1f}s")

    return " ".join(parts)


def elapsed_ms(started: float) -> float:
    """Milliseconds since the ``time.monotonic()`` reading *started*, to 0.01ms."""
    return round((time.monotonic() - started) * 1000, 2)


# ---------------------------------------------------------------------------
# Rich output helpers
# ---------------------------------------------------------------------------


PHASE_COLORS: dict[str, str] = {
    "DISCOVER": "bright_cyan",
    "ELICIT": "bright_green",
    "BLUEPRINT": "bright_yellow",
    "GENERATE": "bright_magenta",
    "INTEGRATE": "bright_blue",
}


def print_phase_header(order: int, name: str) -> None:
    """Print a prominent phase header using Rich.

    Renders a full-width rule with the phase position and name, coloured
    according to the phase.

    Args:
        order: Zero-based phase position in the pipeline.
        name: Phase identifier, e.g. ``"BLUEPRINT"``.
    """
    color = PHASE_COLORS.get(name.upper(), "white")
    console.print()
    console.print(
        Rule(
            f"[bold {color}] Phase {order + 1}: {name.upper()} [/bold {color}]",
            style=color,
        )
    )
    console.print()


def print_summary_table(data: dict[str, str], title: str = "Summary") -> None:
    """Print a two-column key/value summary table.

    Args:
        data: Mapping of label -> value.
        title: Table title.
    """
    table = Table(title=title, show_header=True, header_style="bold cyan")
    table.add_column("Item", style="dim", no_wrap=True)
    table.add_column("Value")

    for key, value in data.items():
        table.add_row(key, str(value))

    console.print(table)
    console.print()


def print_success(message: str) -> None:
    """Print a green success message."""
    console.print(f"[bold green]{message}[/bold green]")


def print_error(message: str) -> None:
    """Print a red error message."""
    console.print(f"[bold red]{message}[/bold red]")


def print_warning(message: str) -> None:
    """Print a yellow warning message."""
    console.print(f"[bold yellow]{message}[/bold yellow]")
