"""BatchQueue: run a list of tasks one after another through the orchestrator."""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from enum import Enum

from rich.markup import escape

from kaiban import log
from kaiban.detector import DetectorState
from kaiban.errors import AlreadyRunningError, EmptyBatchError, KaibanError
from kaiban.notify import Notifier
from kaiban.orchestrator import ExecutionOrchestrator


class BatchState(str, Enum):
    IDLE = "idle"
    RUNNING = "running"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


@dataclass
class BatchSummary:
    state: BatchState
    total: int
    completed: int
    skipped: int
    not_started: int = 0
    results: dict[str, str] = field(default_factory=dict)

    @property
    def cancelled(self) -> bool:
        return self.state is BatchState.CANCELLED


@dataclass
class _BatchRun:
    task_ids: list[str]
    index: int = 0
    completed: int = 0
    skipped: int = 0
    current: str | None = None
    cancel_event: asyncio.Event = field(default_factory=asyncio.Event)
    results: dict[str, str] = field(default_factory=dict)

    def skip(self, task_id: str, reason: str) -> None:
        self.skipped += 1
        self.results[task_id] = reason


class BatchQueue:
    """Sequential execution of a task list.

    At most one batch runs at a time. Each task gets one CLI execution; the
    next starts only after the previous one completed, timed out, was
    stopped or failed to launch.
    """

    def __init__(self, orchestrator: ExecutionOrchestrator, notifier: Notifier | None = None) -> None:
        self.orchestrator = orchestrator
        self.notifier = notifier or orchestrator.notifier
        self.state = BatchState.IDLE
        self._run: _BatchRun | None = None

    @property
    def active(self) -> bool:
        return self._run is not None

    @property
    def current_task(self) -> str | None:
        return self._run.current if self._run else None

    async def start_batch(self, task_ids: list[str]) -> BatchSummary:
        """Run *task_ids* in order and return the counts once finished or cancelled."""
        if self._run is not None:
            raise AlreadyRunningError("A batch")
        if not task_ids:
            raise EmptyBatchError()

        run = _BatchRun(task_ids=list(task_ids))
        self._run = run
        self.state = BatchState.RUNNING
        log.info(f"Starting batch of {len(run.task_ids)} task(s)")
        try:
            final = await self._drive(run)
        finally:
            self._run = None

        summary = self._finalize(run, final)
        self.state = BatchState.IDLE
        return summary

    async def cancel_batch(self) -> bool:
        """Cancel the active batch. Returns ``False`` when none is running."""
        run = self._run
        if run is None:
            return False
        run.cancel_event.set()
        if run.current is not None:
            await self.orchestrator.stop(run.current)
        return True

    # ── internals ────────────────────────────────────────────────

    async def _drive(self, run: _BatchRun) -> BatchState:
        total = len(run.task_ids)
        while True:
            if run.cancel_event.is_set():
                return BatchState.CANCELLED
            if run.index >= total:
                return BatchState.COMPLETED

            task_id = run.task_ids[run.index]
            await self._step(run, task_id)
            run.current = None
            run.index += 1
            self.notifier.batch_progress(run.index, total, run.completed, run.skipped)

    async def _step(self, run: _BatchRun, task_id: str) -> None:
        if self.orchestrator.is_running(task_id):
            log.debug("Skipping: already executing", task=task_id)
            run.skip(task_id, "already running")
            return

        run.current = task_id
        try:
            handle = await self.orchestrator.start(task_id, batch=True)
        except (KaibanError, OSError) as e:
            log.warn(f"Skipping: {escape(str(e))}", task=task_id)
            run.skip(task_id, "failed to start")
            return

        outcome = await handle.wait()
        if outcome is DetectorState.COMPLETED:
            run.completed += 1
            run.results[task_id] = outcome.value
        else:
            run.skip(task_id, outcome.value)

    def _finalize(self, run: _BatchRun, final: BatchState) -> BatchSummary:
        total = len(run.task_ids)
        not_started = total - run.index
        for task_id in run.task_ids[run.index:]:
            run.skip(task_id, "not started")

        self.state = final
        summary = BatchSummary(
            state=final,
            total=total,
            completed=run.completed,
            skipped=run.skipped,
            not_started=not_started,
            results=run.results,
        )
        self.notifier.batch_finished(
            summary.cancelled, total, summary.completed, summary.skipped, not_started
        )
        return summary
