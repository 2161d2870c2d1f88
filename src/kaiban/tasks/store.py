"""TaskStore: the file-backed task records behind the board.

Every task lives in its own Markdown file under ``<workspace>/.agent/TASKS``.
The store never caches: each operation re-reads the files, so edits made by
agents or by hand are picked up immediately. Mutations rewrite single field
lines in place and leave the rest of the file alone.
"""

from __future__ import annotations

import re
from collections.abc import Callable
from pathlib import Path

from kaiban import log
from kaiban.config import Config
from kaiban.errors import PRDSyncError, TaskNotFoundError, TaskParseError
from kaiban.io_utils import read_text, write_text
from kaiban.prd import resolve_prd_path, slugify, sync_prd_status
from kaiban.tasks.model import TASK_PRIORITIES, TASK_STATUSES, Task, TaskStatus, coerce_status
from kaiban.tasks.parser import (
    SEPARATOR,
    field_line,
    field_name,
    insert_after,
    next_timestamp,
    parse_task,
    replace_fields,
    serialize_task,
)

_EXCLUDED_FILES = {"README.md"}
_TASK_ID_RE = re.compile(r"^task-(\d+)$")

# Where to put a field line that a hand-written file is missing
_INSERT_ANCHORS: dict[str, tuple[str, ...]] = {
    "Status": ("Type", "Description", "Label", "ID"),
    "Order": ("Priority", "Status"),
    "Updated": ("Created", "Order", "Priority", "Status"),
    "PRD": ("Updated", "Created", "Priority"),
    "Rejection-Count": ("Completed-At", "Claimed-At", "Claimed-By", "Updated"),
}

# Mutation callback: (lines, task, timestamp) -> lines
Mutation = Callable[[list[str], Task, str], list[str]]


def _set_fields(lines: list[str], fields: dict[str, str]) -> list[str]:
    """Rewrite *fields* (name -> full line), inserting any that are missing."""
    lines, seen = replace_fields(lines, fields)
    for name, line in fields.items():
        if name not in seen:
            insert_after(lines, _INSERT_ANCHORS.get(name, ()), line)
    return lines


def _metadata_end(lines: list[str]) -> int:
    """Index of the ``---`` line closing the metadata block, or ``len(lines)``."""
    in_metadata = False
    for idx, line in enumerate(lines):
        if field_name(line):
            in_metadata = True
        elif in_metadata and line.startswith(SEPARATOR):
            return idx
    return len(lines)


class TaskStore:
    """Parse and mutate the task files of one workspace."""

    def __init__(self, cfg: Config) -> None:
        self.cfg = cfg

    @property
    def root(self) -> Path:
        return self.cfg.tasks_path

    @property
    def project(self) -> str:
        return self.cfg.workspace_path.name

    # ── reading ──────────────────────────────────────────────────

    def task_files(self) -> list[Path]:
        """All candidate task files under the task root, recursively."""
        if not self.root.is_dir():
            return []
        return sorted(
            p for p in self.root.rglob("*.md")
            if p.is_file() and p.name not in _EXCLUDED_FILES
        )

    def parse_file(self, path: Path) -> Task | None:
        """Parse one file. Raises :class:`TaskParseError` if it cannot be read."""
        try:
            content = read_text(path)
        except (OSError, UnicodeDecodeError) as e:
            raise TaskParseError(path, str(e)) from e
        return parse_task(
            content,
            file_path=str(path),
            project=self.project,
            default_status=self.cfg.default_status,
        )

    def parse_tasks(self) -> list[Task]:
        """Parse every task file; unreadable files are logged and skipped."""
        tasks: list[Task] = []
        for path in self.task_files():
            try:
                task = self.parse_file(path)
            except TaskParseError as e:
                log.warn(str(e))
                continue
            if task is None:
                log.debug(f"Skipping {path}: missing '## Task:' title line")
                continue
            tasks.append(task)
        return tasks

    def get_task(self, task_id: str) -> Task:
        if task_id:
            for task in self.parse_tasks():
                if task.id == task_id:
                    return task
        raise TaskNotFoundError(task_id)

    def find_task(self, task_id: str) -> Task | None:
        try:
            return self.get_task(task_id)
        except TaskNotFoundError:
            return None

    def group_by_status(self, tasks: list[Task]) -> dict[str, list[Task]]:
        """Bucket *tasks* by status. Every known status gets a (possibly empty) list.

        Tasks whose status is not one of the known values land in no bucket.
        """
        grouped: dict[str, list[Task]] = {status: [] for status in TASK_STATUSES}
        for task in tasks:
            bucket = grouped.get(task.status)
            if bucket is None:
                log.debug(f"Task {task.id or task.file_path} has unknown status {task.status!r}")
                continue
            bucket.append(task)
        return grouped

    # ── mutations ────────────────────────────────────────────────

    def _rewrite(self, task_id: str, mutate: Mutation) -> Task:
        """Re-read the task's file, apply *mutate*, write it back, re-parse."""
        task = self.get_task(task_id)
        path = Path(task.file_path)
        try:
            content = read_text(path)
        except FileNotFoundError as e:
            raise TaskNotFoundError(task_id) from e

        stamp = next_timestamp(task.updated)
        lines = mutate(content.split("\n"), task, stamp)
        write_text(path, "\n".join(lines))

        updated = self.parse_file(path)
        return updated if updated is not None else task

    def _sync_prd(self, task: Task, status: str) -> None:
        if not task.prd_path:
            return
        prd_file = resolve_prd_path(
            task.prd_path,
            task_file=Path(task.file_path),
            prd_base=self.cfg.prd_base,
            workspace=self.cfg.workspace_path,
        )
        if prd_file is None:
            log.debug(f"PRD {task.prd_path} for task {task.id} not found; skipping status sync")
            return
        try:
            sync_prd_status(prd_file, status)
        except PRDSyncError as e:
            log.warn(str(e))
            return
        log.debug(f"PRD {prd_file} status -> {status}")

    def update_task_status(
        self,
        task_id: str,
        new_status: str | TaskStatus,
        order: int | None = None,
    ) -> Task:
        """Move a task to *new_status* (and optionally a new column position)."""
        status = coerce_status(new_status)

        def mutate(lines: list[str], _task: Task, stamp: str) -> list[str]:
            fields = {
                "Status": field_line("Status", status),
                "Updated": field_line("Updated", stamp),
            }
            if order is not None:
                fields["Order"] = field_line("Order", order)
            return _set_fields(lines, fields)

        task = self._rewrite(task_id, mutate)
        self._sync_prd(task, status)
        return task

    def update_task_order(self, task_id: str, order: int) -> Task:
        def mutate(lines: list[str], _task: Task, stamp: str) -> list[str]:
            return _set_fields(lines, {
                "Order": field_line("Order", order),
                "Updated": field_line("Updated", stamp),
            })

        return self._rewrite(task_id, mutate)

    def update_task(
        self,
        task_id: str,
        *,
        label: str | None = None,
        description: str | None = None,
        type: str | None = None,
        priority: str | None = None,
        status: str | TaskStatus | None = None,
    ) -> Task:
        """Partially update the editable fields of a task."""
        new_status = coerce_status(status) if status is not None else None
        if priority is not None and priority not in TASK_PRIORITIES:
            raise ValueError(f"Unknown priority {priority!r}. Valid priorities: {', '.join(TASK_PRIORITIES)}.")

        def mutate(lines: list[str], _task: Task, stamp: str) -> list[str]:
            # Descriptive fields are only replaced where present, never inserted
            optional: dict[str, str] = {}
            if label is not None:
                optional["Label"] = field_line("Label", label)
                if lines and lines[0].startswith("## Task:"):
                    lines[0] = f"## Task: {label}"
            if description is not None:
                optional["Description"] = field_line("Description", description)
            if type is not None:
                optional["Type"] = field_line("Type", type)
            if priority is not None:
                optional["Priority"] = field_line("Priority", priority)
            lines, _seen = replace_fields(lines, optional)

            required = {"Updated": field_line("Updated", stamp)}
            if new_status is not None:
                required["Status"] = field_line("Status", new_status)
            return _set_fields(lines, required)

        task = self._rewrite(task_id, mutate)
        if new_status is not None:
            self._sync_prd(task, new_status)
        return task

    def update_task_prd(self, task_id: str, prd_path: str) -> Task:
        def mutate(lines: list[str], _task: Task, stamp: str) -> list[str]:
            return _set_fields(lines, {
                "PRD": field_line("PRD", f"[Link]({prd_path})"),
                "Updated": field_line("Updated", stamp),
            })

        return self._rewrite(task_id, mutate)

    def reject_task(self, task_id: str, note: str) -> Task:
        """Send a task back to "To Do", bumping its rejection count and logging *note*."""
        todo = TaskStatus.TODO.value
        entry_note = " ".join(note.split())

        def mutate(lines: list[str], task: Task, stamp: str) -> list[str]:
            lines = _set_fields(lines, {
                "Status": field_line("Status", todo),
                "Updated": field_line("Updated", stamp),
                "Rejection-Count": field_line("Rejection-Count", task.rejection_count + 1),
            })
            lines, _seen = replace_fields(lines, {
                "Claimed-By": field_line("Claimed-By"),
                "Claimed-At": field_line("Claimed-At"),
                "Completed-At": field_line("Completed-At"),
            })

            entry = f"- {stamp[:10]}: {entry_note}"
            for idx, line in enumerate(lines):
                if field_name(line) == "Rejections":
                    lines.insert(idx + 1, entry)
                    return lines
            end = _metadata_end(lines)
            lines[end:end] = [field_line("Rejections"), entry]
            return lines

        task = self._rewrite(task_id, mutate)
        self._sync_prd(task, todo)
        return task

    def write_task(self, task: Task) -> None:
        """Serialize *task* in full to its ``file_path``."""
        if not task.file_path:
            raise ValueError(f"Task {task.id!r} has no file_path")
        write_text(task.file_path, serialize_task(task))

    # ── creation ─────────────────────────────────────────────────

    def next_task_id(self) -> str:
        highest = 0
        for task in self.parse_tasks():
            m = _TASK_ID_RE.match(task.id)
            if m:
                highest = max(highest, int(m.group(1)))
        return f"task-{highest + 1}"

    def _unique_path(self, label: str) -> Path:
        stem = slugify(label) or "task"
        path = self.root / f"{stem}.md"
        counter = 1
        while path.exists():
            path = self.root / f"{stem}-{counter}.md"
            counter += 1
        return path

    def create_task(
        self,
        label: str,
        *,
        description: str = "",
        type: str = "Task",
        priority: str = "Medium",
        status: str | None = None,
        prd_path: str = "",
        order: int | None = None,
    ) -> Task:
        """Allocate an id and a file for a new task and write it."""
        stamp = next_timestamp()
        task = Task(
            id=self.next_task_id(),
            label=label,
            description=description,
            type=type,
            status=coerce_status(status or self.cfg.default_status),
            priority=priority,
            created=stamp,
            updated=stamp,
            prd_path=prd_path,
            file_path=str(self._unique_path(label)),
            project=self.project,
            order=order,
        )
        self.write_task(task)
        log.debug(f"Created {task.id} at {task.file_path}")
        return task
