"""Base class for the AI command-line tools that carry out a task."""

from __future__ import annotations

import asyncio
import re
import shlex
import shutil
import subprocess
import sys
from pathlib import Path

from kaiban.io_utils import open_text

DEFAULT_PROMPT_TEMPLATE = (
    "Read the task file at {taskFile} and implement it. The task contains a link "
    "to the PRD with full requirements. Update the task status to Done when complete."
)

_VERSION_RE = re.compile(r"\d+\.\d+(\.\d+)?")


class CLIProvider:
    """One external CLI: how to find it and how to hand it a task file.

    Subclasses set the class attributes; instances carry the user overrides
    for executable, prompt template and flags.
    """

    name: str = "base"
    display_name: str = "CLI"
    default_executable: str = ""
    default_flags: str = ""
    install_hint: str = ""

    def __init__(
        self,
        *,
        executable_path: str = "",
        prompt_template: str = "",
        additional_flags: str | None = None,
    ) -> None:
        self.executable_path = executable_path or self.default_executable
        self.prompt_template = prompt_template or DEFAULT_PROMPT_TEMPLATE
        self.additional_flags = self.default_flags if additional_flags is None else additional_flags

    # ── command construction ─────────────────────────────────────

    def build_prompt(self, task_file: str) -> str:
        return self.prompt_template.replace("{taskFile}", task_file)

    def build_cmd(self, task_file: str) -> list[str]:
        """Return the argv that asks this CLI to work on *task_file*.

        The flags string is split shell-style and the prompt is passed as a
        single argument; nothing is handed to a shell.
        """
        executable = shutil.which(self.executable_path) or self.executable_path
        return [executable, *shlex.split(self.additional_flags), self.build_prompt(task_file)]

    def render_cmd(self, task_file: str) -> str:
        """The command as a copy-pasteable shell line, for logs and dry runs."""
        return shlex.join(self.build_cmd(task_file))

    # ── availability ─────────────────────────────────────────────

    def resolve_executable(self) -> str | None:
        return shutil.which(self.executable_path)

    def check_available(self) -> str | None:
        """Return an error message if the CLI is not installed, else ``None``."""
        if self.resolve_executable():
            return None
        msg = f"{self.display_name} not found in PATH ({self.executable_path})"
        if self.install_hint:
            msg = f"{msg}. {self.install_hint}"
        return msg

    def detect_version(self) -> str:
        """Best-effort ``--version`` probe; ``""`` when it cannot be read."""
        exe = self.resolve_executable()
        if not exe:
            return ""
        try:
            proc = subprocess.run(
                [exe, "--version"],
                capture_output=True,
                text=True,
                encoding="utf-8",
                errors="replace",
                timeout=5,
            )
        except (OSError, subprocess.TimeoutExpired):
            return ""
        m = _VERSION_RE.search(proc.stdout or "")
        return m.group(0) if m else ""

    # ── process control ──────────────────────────────────────────

    async def launch(
        self,
        cmd: list[str],
        *,
        cwd: Path | None = None,
        log_file: Path | None = None,
    ) -> asyncio.subprocess.Process:
        """Start *cmd* detached from our stdin, appending its output to *log_file*.

        Raises ``OSError`` when the executable cannot be started and
        ``ValueError`` when an argument holds a NUL byte.
        """
        kwargs: dict[str, object] = {"stdin": asyncio.subprocess.DEVNULL, "cwd": cwd}
        creationflags = self._creationflags()
        if creationflags:
            kwargs["creationflags"] = creationflags

        if log_file is None:
            return await asyncio.create_subprocess_exec(
                *cmd,
                stdout=asyncio.subprocess.DEVNULL,
                stderr=asyncio.subprocess.DEVNULL,
                **kwargs,  # type: ignore[arg-type]
            )

        log_file.parent.mkdir(parents=True, exist_ok=True)
        # The child keeps its own copy of the descriptor once spawned.
        with open_text(log_file, "a") as fh:
            return await asyncio.create_subprocess_exec(
                *cmd,
                stdout=fh,
                stderr=asyncio.subprocess.STDOUT,
                **kwargs,  # type: ignore[arg-type]
            )

    @staticmethod
    def _creationflags() -> int:
        if sys.platform == "win32":
            return int(getattr(subprocess, "CREATE_NEW_PROCESS_GROUP", 0))
        return 0


async def terminate_process(proc: asyncio.subprocess.Process, grace: float = 2.0) -> None:
    """Terminate *proc*, escalating to kill after *grace* seconds."""
    if proc.returncode is not None:
        return
    try:
        proc.terminate()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=grace)
        return
    except asyncio.TimeoutError:
        pass

    try:
        proc.kill()
    except ProcessLookupError:
        return
    try:
        await asyncio.wait_for(proc.wait(), timeout=grace)
    except asyncio.TimeoutError:
        pass
