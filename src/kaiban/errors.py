"""Error taxonomy shared by the task store and the execution orchestrator."""

from __future__ import annotations

from pathlib import Path


class KaibanError(Exception):
    """Base class for every error raised by kaiban."""


class TaskNotFoundError(KaibanError, LookupError):
    """No task file carries the requested id."""

    def __init__(self, task_id: str) -> None:
        super().__init__(f"Task with ID {task_id} not found")
        self.task_id = task_id


class AlreadyRunningError(KaibanError):
    """An execution (or a batch) is already active for the target."""

    def __init__(self, target: str) -> None:
        super().__init__(f"{target} is already running")
        self.target = target


class EmptyBatchError(KaibanError, ValueError):
    """A batch was requested with no task ids."""

    def __init__(self) -> None:
        super().__init__("Batch execution needs at least one task id")


class TaskParseError(KaibanError):
    """A task file could not be read or decoded."""

    def __init__(self, path: Path, reason: str) -> None:
        super().__init__(f"Error parsing task file {path}: {reason}")
        self.path = path
        self.reason = reason


class PRDSyncError(KaibanError):
    """The linked requirements document could not be updated."""


class LaunchError(KaibanError):
    """The external CLI process could not be started."""

    def __init__(self, task_id: str, reason: str) -> None:
        super().__init__(f"Failed to launch task {task_id}: {reason}")
        self.task_id = task_id
        self.reason = reason


class NoProviderError(KaibanError):
    """None of the supported AI command-line tools is installed."""


MISSING_EXECUTABLE_PATTERNS: tuple[str, ...] = (
    "command not found",
    "no such file or directory",
    "not recognized as an internal or external command",
    "enoent",
)


def looks_like_missing_executable(text: str) -> bool:
    """Return ``True`` when a launch failure message points at a missing CLI."""
    if not text:
        return False
    lower = text.lower()
    return any(pattern in lower for pattern in MISSING_EXECUTABLE_PATTERNS)
