"""ExecutionOrchestrator: launch one external CLI run per task and track it.

The handle registry is the single source of truth for "is this task
running". A handle is reserved before the process is spawned and released
exactly once, whichever of completion, timeout or stop happens first.
"""

from __future__ import annotations

import asyncio
import shlex
import time
from dataclasses import dataclass, field
from pathlib import Path

from rich.markup import escape

from kaiban import log
from kaiban.config import Config
from kaiban.detector import CompletionDetector, DetectorState
from kaiban.errors import (
    AlreadyRunningError,
    LaunchError,
    TaskNotFoundError,
    looks_like_missing_executable,
)
from kaiban.notify import Notifier
from kaiban.prd import slugify
from kaiban.providers.base import CLIProvider, terminate_process
from kaiban.tasks.model import TaskStatus
from kaiban.tasks.store import TaskStore


@dataclass
class ExecutionHandle:
    """The live CLI run for one task."""

    task_id: str
    label: str
    task_file: str
    provider: str
    command: list[str]
    log_file: Path
    batch: bool = False
    process: asyncio.subprocess.Process | None = None
    started_at: float = field(default_factory=time.monotonic)
    outcome: asyncio.Future[DetectorState] = field(
        default_factory=lambda: asyncio.get_running_loop().create_future()
    )

    @property
    def pid(self) -> int | None:
        return self.process.pid if self.process else None

    async def wait(self) -> DetectorState:
        """Wait until the run completes, times out or is stopped."""
        return await asyncio.shield(self.outcome)


class ExecutionOrchestrator:
    """Start and stop CLI executions and react to their completion."""

    def __init__(
        self,
        cfg: Config,
        store: TaskStore,
        provider: CLIProvider,
        *,
        detector: CompletionDetector | None = None,
        notifier: Notifier | None = None,
    ) -> None:
        self.cfg = cfg
        self.store = store
        self.provider = provider
        self.detector = detector or CompletionDetector(store, cfg)
        self.notifier = notifier or Notifier()
        self._handles: dict[str, ExecutionHandle] = {}
        self._reapers: set[asyncio.Task[None]] = set()

    # ── registry accessors ───────────────────────────────────────

    def is_running(self, task_id: str) -> bool:
        return task_id in self._handles

    def running_ids(self) -> list[str]:
        return list(self._handles)

    def handle(self, task_id: str) -> ExecutionHandle | None:
        return self._handles.get(task_id)

    async def wait(self, task_id: str) -> DetectorState | None:
        handle = self._handles.get(task_id)
        if handle is None:
            return None
        return await handle.wait()

    def _log_file(self, task_id: str) -> Path:
        return self.cfg.logs_path / f"{slugify(task_id) or 'task'}.log"

    # ── start / stop ─────────────────────────────────────────────

    async def start(self, task_id: str, *, batch: bool = False) -> ExecutionHandle:
        """Launch the configured CLI on *task_id* and begin watching it.

        Raises :class:`AlreadyRunningError`, :class:`TaskNotFoundError` or
        :class:`LaunchError`.
        """
        if task_id in self._handles:
            raise AlreadyRunningError(f"Task {task_id}")

        task = self.store.get_task(task_id)
        handle = ExecutionHandle(
            task_id=task_id,
            label=task.label,
            task_file=task.file_path,
            provider=self.provider.name,
            command=[],
            log_file=self._log_file(task_id),
            batch=batch,
        )
        # Reserve before the first await so a concurrent start sees it.
        self._handles[task_id] = handle

        try:
            handle.command = self.provider.build_cmd(task.file_path)
            log.debug(f"Launching {escape(shlex.join(handle.command))}", task=task_id)
            handle.process = await self.provider.launch(
                handle.command,
                cwd=self.cfg.workspace_path,
                log_file=handle.log_file,
            )
        except (OSError, ValueError) as e:
            # ValueError: unbalanced quotes in the flags or a NUL in an argument.
            self._release(task_id, handle)
            reason = str(e)
            if looks_like_missing_executable(reason) and self.provider.install_hint:
                reason = f"{reason}. {self.provider.install_hint}"
            err = LaunchError(task_id, reason)
            self.notifier.error(task_id, str(err))
            raise err from e

        if self._handles.get(task_id) is not handle:
            # stop() ran while the process was spawning.
            await terminate_process(handle.process)
            return handle

        try:
            self.store.update_task_status(task_id, TaskStatus.DOING)
        except (TaskNotFoundError, OSError):
            # The file vanished or could not be written after launch.
            await terminate_process(handle.process)
            self._release(task_id, handle)
            raise

        self.detector.watch(
            task_id,
            self._on_outcome,
            process=handle.process,
        )
        self.notifier.started(task_id, task.label, self.provider.display_name)
        return handle

    async def stop(self, task_id: str) -> bool:
        """Terminate the run for *task_id*. Returns ``False`` when none was active."""
        handle = self._handles.get(task_id)
        if handle is None:
            return False

        # The detector is not registered yet while a launch is in flight.
        self.detector.stop(task_id)
        self._release(task_id, handle, DetectorState.STOPPED)
        if handle.process is not None:
            await terminate_process(handle.process)
        self.notifier.stopped(task_id)
        return True

    async def shutdown(self) -> None:
        """Stop every active run and drop the reapers of abandoned processes."""
        for task_id in list(self._handles):
            await self.stop(task_id)
        for job in list(self._reapers):
            job.cancel()
        if self._reapers:
            await asyncio.gather(*self._reapers, return_exceptions=True)

    # ── outcome handling ─────────────────────────────────────────

    def _release(
        self,
        task_id: str,
        handle: ExecutionHandle,
        outcome: DetectorState | None = None,
    ) -> bool:
        if self._handles.get(task_id) is not handle:
            return False
        del self._handles[task_id]
        if not handle.outcome.done():
            if outcome is None:
                handle.outcome.cancel()
            else:
                handle.outcome.set_result(outcome)
        return True

    def _reap(self, handle: ExecutionHandle) -> None:
        """Keep waiting on a process we no longer track so it is not left a zombie."""
        proc = handle.process
        if proc is None or proc.returncode is not None:
            return

        async def _wait() -> None:
            code = await proc.wait()
            log.debug(f"Abandoned run exited with code {code}", task=handle.task_id)

        job = asyncio.create_task(_wait(), name=f"reap-{handle.task_id}")
        self._reapers.add(job)
        job.add_done_callback(self._reapers.discard)

    def _on_outcome(self, task_id: str, outcome: DetectorState) -> None:
        handle = self._handles.get(task_id)
        if handle is None:
            return

        if outcome is DetectorState.COMPLETED:
            self._release(task_id, handle, outcome)
            self._reap(handle)
            if not handle.batch:
                self.notifier.completed(task_id, handle.label)
            else:
                log.task_event("✓", "green", handle.label, task_id)
        elif outcome is DetectorState.TIMED_OUT:
            # Abandon without killing; the task keeps whatever status it has.
            self._release(task_id, handle, outcome)
            self._reap(handle)
            self.notifier.timed_out(task_id, self.cfg.execution_timeout)
        elif outcome is DetectorState.STOPPED:
            self._release(task_id, handle, outcome)
