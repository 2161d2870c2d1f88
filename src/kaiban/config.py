"""Configuration defaults, env vars, and runtime options for kaiban."""

from __future__ import annotations

import os
import subprocess
from dataclasses import dataclass, field
from pathlib import Path


DEFAULT_TASKS_DIR = ".agent/TASKS"
DEFAULT_PRD_BASE_PATH = ".agent/PRDS"
DEFAULT_LOGS_DIR = ".agent/logs"

DEFAULT_EXECUTION_TIMEOUT = 30  # minutes
DEFAULT_POLL_INTERVAL = 10.0  # seconds

_TRUE_VALUES = {"1", "true", "yes", "on"}
_FALSE_VALUES = {"0", "false", "no", "off"}


def _env_bool(name: str) -> bool | None:
    raw = os.environ.get(name)
    if raw is None:
        return None
    value = raw.strip().lower()
    if value in _TRUE_VALUES:
        return True
    if value in _FALSE_VALUES:
        return False
    return None


def _env_number(name: str, cast: type) -> int | float | None:
    raw = os.environ.get(name, "").strip()
    if not raw:
        return None
    try:
        return cast(raw)
    except ValueError:
        return None


@dataclass
class Config:
    """Runtime configuration for the store and the orchestrator."""

    # Workspace layout
    workspace: str = ""
    tasks_dir: str = DEFAULT_TASKS_DIR
    prd_base_path: str = DEFAULT_PRD_BASE_PATH
    logs_dir: str = DEFAULT_LOGS_DIR
    default_status: str = "To Do"

    # CLI provider ("auto" picks the first available one)
    provider: str = "auto"
    executable_path: str = ""
    prompt_template: str = ""
    additional_flags: str | None = None
    use_ralph_loop: bool = False

    # Execution
    execution_timeout: float = DEFAULT_EXECUTION_TIMEOUT
    poll_interval: float = DEFAULT_POLL_INTERVAL
    watch_files: bool = True
    desktop_notifications: bool = True

    # Misc
    verbose: bool = False

    # Statuses a detector treats as "the agent is finished"
    completion_statuses: tuple[str, ...] = field(default=("Done", "Testing"))

    def __post_init__(self) -> None:
        if not self.workspace:
            self.workspace = os.environ.get("KAIBAN_WORKSPACE") or str(resolve_workspace_root())
        # Environment overrides only apply to values left at their defaults.
        if self.prd_base_path == DEFAULT_PRD_BASE_PATH:
            self.prd_base_path = os.environ.get("KAIBAN_PRD_BASE_PATH") or self.prd_base_path
        if self.provider == "auto":
            self.provider = os.environ.get("KAIBAN_PROVIDER") or self.provider

        timeout = _env_number("KAIBAN_EXECUTION_TIMEOUT", float)
        if timeout is not None and self.execution_timeout == DEFAULT_EXECUTION_TIMEOUT:
            self.execution_timeout = timeout
        poll = _env_number("KAIBAN_POLL_INTERVAL", float)
        if poll is not None and self.poll_interval == DEFAULT_POLL_INTERVAL:
            self.poll_interval = poll
        watch = _env_bool("KAIBAN_WATCH_FILES")
        if watch is False:
            self.watch_files = False

        if self.default_status not in ("To Do", "Backlog"):
            raise ValueError(
                f"default_status must be 'To Do' or 'Backlog', got {self.default_status!r}"
            )

    # ── derived paths ────────────────────────────────────────────

    @property
    def workspace_path(self) -> Path:
        return Path(self.workspace)

    @property
    def tasks_path(self) -> Path:
        return self.workspace_path / self.tasks_dir

    @property
    def prd_base(self) -> Path:
        return self.workspace_path / self.prd_base_path

    @property
    def logs_path(self) -> Path:
        return self.workspace_path / self.logs_dir

    @property
    def timeout_seconds(self) -> float:
        return self.execution_timeout * 60


def resolve_workspace_root() -> Path:
    """Return the git repository root, falling back to cwd."""
    try:
        result = subprocess.run(
            ["git", "rev-parse", "--show-toplevel"],
            capture_output=True,
            text=True,
            check=True,
        )
        return Path(result.stdout.strip())
    except (subprocess.CalledProcessError, FileNotFoundError):
        return Path.cwd()
