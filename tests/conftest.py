"""Shared fixtures for kaiban tests.

File handling in tests:
- Use tmp_path for the workspace so tests are isolated and cleaned up.
- Use kaiban.io_utils read_text/write_text for consistent UTF-8 I/O.

Execution tests run a real child process: ``ScriptProvider`` launches the
current Python interpreter with the prompt as a ``-c`` script, so a test
decides what the "agent" does by choosing the prompt template.
"""

from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable

import pytest

from kaiban import log
from kaiban.config import Config
from kaiban.io_utils import write_text
from kaiban.providers.base import CLIProvider
from kaiban.tasks.store import TaskStore

# Sleeps long enough that only a stop or a test-driven status change ends it.
SLEEP_SCRIPT = "import time; time.sleep(30)  # {taskFile}"

# Moves its task file to Done, then exits.
FINISH_SCRIPT = (
    "import pathlib, re, time; time.sleep(0.3); "
    "p = pathlib.Path(r'{taskFile}'); "
    r"p.write_text(re.sub(r'(?m)^\*\*Status:\*\*.*$', '**Status:** Done', p.read_text()))"
)

# Exits without touching the task file.
NOOP_SCRIPT = "pass  # {taskFile}"


class ScriptProvider(CLIProvider):
    """Runs ``python -c <prompt>``; the prompt template is the script."""

    name = "script"
    display_name = "Script"
    default_executable = sys.executable
    default_flags = "-c"


class FlakyProvider(ScriptProvider):
    """A ScriptProvider whose launch fails for the task files named in *fail_for*."""

    def __init__(self, fail_for: set[str], **kwargs: object) -> None:
        super().__init__(**kwargs)  # type: ignore[arg-type]
        self.fail_for = fail_for

    async def launch(self, cmd, *, cwd=None, log_file=None):  # type: ignore[override]
        prompt = cmd[-1]
        if any(name in prompt for name in self.fail_for):
            raise FileNotFoundError(f"No such file or directory: {cmd[0]}")
        return await super().launch(cmd, cwd=cwd, log_file=log_file)


@pytest.fixture(autouse=True)
def _quiet_env(monkeypatch: pytest.MonkeyPatch) -> None:
    """Keep KAIBAN_* variables from the developer's shell out of tests."""
    for name in (
        "KAIBAN_WORKSPACE",
        "KAIBAN_PRD_BASE_PATH",
        "KAIBAN_PROVIDER",
        "KAIBAN_EXECUTION_TIMEOUT",
        "KAIBAN_POLL_INTERVAL",
        "KAIBAN_WATCH_FILES",
    ):
        monkeypatch.delenv(name, raising=False)
    log.set_verbose(False)


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """An empty workspace with the task and PRD directories in place."""
    (tmp_path / ".agent" / "TASKS").mkdir(parents=True)
    (tmp_path / ".agent" / "PRDS").mkdir(parents=True)
    return tmp_path


@pytest.fixture
def cfg(workspace: Path) -> Config:
    """Config for fast tests: short poll, no file watching, no toasts."""
    return Config(
        workspace=str(workspace),
        poll_interval=0.05,
        watch_files=False,
        desktop_notifications=False,
    )


@pytest.fixture
def store(cfg: Config) -> TaskStore:
    return TaskStore(cfg)


@pytest.fixture
def make_task_file(workspace: Path) -> Callable[..., Path]:
    """Factory: write a task file in the canonical layout and return its path."""

    def _make(
        task_id: str = "task-1",
        label: str = "Sample task",
        *,
        status: str = "To Do",
        priority: str = "Medium",
        order: int | None = None,
        prd: str = "",
        rejection_count: int = 0,
        updated: str = "2025-01-01T00:00:00.000Z",
        extra: str = "",
        name: str = "",
    ) -> Path:
        lines = [
            f"## Task: {label}",
            "",
            f"**ID:** {task_id}",
            f"**Label:** {label}",
            "**Description:** Something to do",
            "**Type:** Feature",
            f"**Status:** {status}",
            f"**Priority:** {priority}",
        ]
        if order is not None:
            lines.append(f"**Order:** {order}")
        lines += [
            "**Created:** 2025-01-01T00:00:00.000Z",
            f"**Updated:** {updated}",
            f"**PRD:** [Link]({prd})" if prd else "**PRD:**",
            "**Claimed-By:**",
            "**Claimed-At:**",
            "**Completed-At:**",
            f"**Rejection-Count:** {rejection_count}",
            "**Agent-Notes:**",
        ]
        if extra:
            lines.append(extra)
        lines += ["", "---", ""]
        path = workspace / ".agent" / "TASKS" / (name or f"{task_id}.md")
        write_text(path, "\n".join(lines))
        return path

    return _make


@pytest.fixture
def make_prd(workspace: Path) -> Callable[..., Path]:
    """Factory: write a PRD under ``.agent/PRDS`` and return its path."""

    def _make(rel: str = "feature.md", content: str = "# Feature\n\nBody text\n") -> Path:
        path = workspace / ".agent" / "PRDS" / rel
        write_text(path, content)
        return path

    return _make
