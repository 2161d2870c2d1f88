"""CompletionDetector: decide when an unsupervised CLI run has finished.

The external agent signals completion only by editing its task file (moving
it to Done or Testing). Three triggers look for that edit:

* a file-change notification on the task directory (``watchfiles``),
* a poll tick every ``poll_interval`` seconds, in case a change is missed,
* the launched process exiting.

Any trigger may fire for the same edit. Each watched task id is a small
state machine, ``WATCHING -> COMPLETED | TIMED_OUT | STOPPED``, and only
the trigger that still finds the watch registered may move it out of
``WATCHING``; later triggers are no-ops.
"""

from __future__ import annotations

import asyncio
import time
from collections.abc import Callable
from dataclasses import dataclass, field
from enum import Enum

from watchfiles import Change, awatch

from kaiban import log
from kaiban.config import Config
from kaiban.errors import AlreadyRunningError
from kaiban.tasks.store import TaskStore


class DetectorState(str, Enum):
    WATCHING = "watching"
    COMPLETED = "completed"
    TIMED_OUT = "timed_out"
    STOPPED = "stopped"


OutcomeCallback = Callable[[str, DetectorState], None]


def _is_task_file(_change: Change, path: str) -> bool:
    return path.endswith(".md")


@dataclass
class _Watch:
    task_id: str
    on_outcome: OutcomeCallback
    state: DetectorState = DetectorState.WATCHING
    started_at: float = field(default_factory=time.monotonic)
    stop_event: asyncio.Event = field(default_factory=asyncio.Event)
    jobs: list[asyncio.Task[None]] = field(default_factory=list)


class CompletionDetector:
    """Watches executing tasks until they reach a completion status."""

    def __init__(self, store: TaskStore, cfg: Config) -> None:
        self.store = store
        self.cfg = cfg
        self._watches: dict[str, _Watch] = {}

    # ── registry ─────────────────────────────────────────────────

    def is_watching(self, task_id: str) -> bool:
        return task_id in self._watches

    def watched_ids(self) -> list[str]:
        return list(self._watches)

    def watch(
        self,
        task_id: str,
        on_outcome: OutcomeCallback,
        *,
        timeout: float | None = None,
        process: asyncio.subprocess.Process | None = None,
    ) -> None:
        """Start watching *task_id*; *on_outcome* is called exactly once.

        *timeout* is in seconds and defaults to the configured execution
        timeout; ``0`` or a negative value disables it.
        """
        if task_id in self._watches:
            raise AlreadyRunningError(f"Completion watch for {task_id}")

        watch = _Watch(task_id=task_id, on_outcome=on_outcome)
        self._watches[task_id] = watch

        limit = self.cfg.timeout_seconds if timeout is None else timeout
        watch.jobs.append(asyncio.create_task(self._poll_loop(watch), name=f"poll-{task_id}"))
        if limit > 0:
            watch.jobs.append(
                asyncio.create_task(self._timeout_timer(watch, limit), name=f"timeout-{task_id}")
            )
        if self.cfg.watch_files:
            watch.jobs.append(asyncio.create_task(self._file_watch(watch), name=f"fswatch-{task_id}"))
        if process is not None:
            watch.jobs.append(
                asyncio.create_task(self._process_exit(watch, process), name=f"exit-{task_id}")
            )
        log.debug(f"Watching for completion (timeout {limit:g}s)", task=task_id)

    def stop(self, task_id: str) -> bool:
        """Force *task_id* to STOPPED. Returns ``False`` if it was not watched."""
        watch = self._watches.get(task_id)
        if watch is None:
            return False
        return self._finish(watch, DetectorState.STOPPED)

    def stop_all(self) -> None:
        for watch in list(self._watches.values()):
            self._finish(watch, DetectorState.STOPPED)

    def check(self, task_id: str) -> bool:
        """Run one completion check now. Returns ``True`` if it reported COMPLETED."""
        watch = self._watches.get(task_id)
        if watch is None:
            return False
        return self._check(watch)

    # ── transitions ──────────────────────────────────────────────

    def _check(self, watch: _Watch) -> bool:
        if self._watches.get(watch.task_id) is not watch:
            return False
        try:
            task = self.store.find_task(watch.task_id)
        except OSError as e:
            log.warn(f"Completion check failed: {e}", task=watch.task_id)
            return False
        if task is None or task.status not in self.cfg.completion_statuses:
            return False
        return self._finish(watch, DetectorState.COMPLETED)

    def _finish(self, watch: _Watch, outcome: DetectorState) -> bool:
        # Only the first trigger that still finds the watch registered wins.
        if self._watches.get(watch.task_id) is not watch:
            return False
        del self._watches[watch.task_id]
        watch.state = outcome
        watch.stop_event.set()

        current = asyncio.current_task()
        for job in watch.jobs:
            if job is not current and not job.done():
                job.cancel()

        elapsed = time.monotonic() - watch.started_at
        log.debug(f"watching -> {outcome.value} after {elapsed:.1f}s", task=watch.task_id)
        try:
            watch.on_outcome(watch.task_id, outcome)
        except Exception as e:
            log.error(f"Outcome handler failed: {e}", task=watch.task_id)
        return True

    # ── triggers ─────────────────────────────────────────────────

    async def _poll_loop(self, watch: _Watch) -> None:
        while watch.state is DetectorState.WATCHING:
            await asyncio.sleep(self.cfg.poll_interval)
            self._check(watch)

    async def _timeout_timer(self, watch: _Watch, seconds: float) -> None:
        await asyncio.sleep(seconds)
        self._finish(watch, DetectorState.TIMED_OUT)

    async def _process_exit(self, watch: _Watch, process: asyncio.subprocess.Process) -> None:
        code = await process.wait()
        log.debug(f"Process exited with code {code}", task=watch.task_id)
        self._check(watch)

    async def _file_watch(self, watch: _Watch) -> None:
        root = self.store.root
        if not root.is_dir():
            log.debug(f"{root} does not exist; relying on polling", task=watch.task_id)
            return
        try:
            async for _changes in awatch(
                root,
                watch_filter=_is_task_file,
                stop_event=watch.stop_event,
            ):
                self._check(watch)
                if watch.state is not DetectorState.WATCHING:
                    return
        except (OSError, RuntimeError) as e:
            log.warn(f"File watching unavailable ({e}); relying on polling", task=watch.task_id)
