"""Console output for the board, the orchestrator and batch runs.

Every helper takes an optional ``task`` id. When given, the line carries a
``[task-3]`` tag so interleaved output from detector, orchestrator and batch
queue can be told apart.
"""

from __future__ import annotations

from rich.console import Console
from rich.markup import escape

console = Console(highlight=False)
_err_console = Console(highlight=False, stderr=True)

_verbose = False


def set_verbose(enabled: bool) -> None:
    global _verbose
    _verbose = enabled


def _line(level: str, style: str, msg: str, task: str | None) -> str:
    tag = f"[{style}]\\[{level}][/{style}]"
    if task:
        tag = f"{tag} [cyan]\\[{escape(task)}][/cyan]"
    return f"{tag} {msg}"


def info(msg: str, *, task: str | None = None) -> None:
    console.print(_line("INFO", "blue", msg, task))


def success(msg: str, *, task: str | None = None) -> None:
    console.print(_line("OK", "green", msg, task))


def warn(msg: str, *, task: str | None = None) -> None:
    console.print(_line("WARN", "yellow", msg, task))


def error(msg: str, *, task: str | None = None) -> None:
    _err_console.print(_line("ERROR", "red", msg, task))


def debug(msg: str, *, task: str | None = None) -> None:
    if _verbose:
        console.print(_line("DEBUG", "dim", msg, task), style="dim")


def task_event(marker: str, style: str, label: str, task_id: str, suffix: str = "") -> None:
    """Print a one-line task event such as ``● Implement login (task-3)``."""
    line = f"  [{style}]{marker}[/{style}] {escape(label[:45])} ({escape(task_id)})"
    if suffix:
        line = f"{line} {suffix}"
    console.print(line)
