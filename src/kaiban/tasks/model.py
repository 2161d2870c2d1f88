"""Task data model, status/priority vocabularies and board ordering."""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum


class TaskStatus(str, Enum):
    BACKLOG = "Backlog"
    TODO = "To Do"
    DOING = "Doing"
    TESTING = "Testing"
    DONE = "Done"
    BLOCKED = "Blocked"


class TaskPriority(str, Enum):
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


TASK_STATUSES: tuple[str, ...] = tuple(s.value for s in TaskStatus)
TASK_PRIORITIES: tuple[str, ...] = tuple(p.value for p in TaskPriority)

_PRIORITY_RANK = {"High": 0, "Medium": 1, "Low": 2}


@dataclass
class Task:
    id: str
    label: str = ""
    description: str = ""
    type: str = "Task"
    status: str = TaskStatus.TODO.value
    priority: str = TaskPriority.MEDIUM.value
    created: str = ""
    updated: str = ""
    prd_path: str = ""
    file_path: str = ""
    project: str = ""
    order: int | None = None
    claimed_by: str = ""
    claimed_at: str = ""
    completed_at: str = ""
    rejection_count: int = 0
    agent_notes: str = ""

    @property
    def completed(self) -> bool:
        return self.status == TaskStatus.DONE.value


def coerce_status(value: str | TaskStatus) -> str:
    """Return the plain string for *value*, rejecting unknown statuses."""
    raw = value.value if isinstance(value, TaskStatus) else value
    if raw not in TASK_STATUSES:
        allowed = ", ".join(TASK_STATUSES)
        raise ValueError(f"Unknown status {raw!r}. Valid statuses: {allowed}.")
    return raw


def priority_rank(priority: str) -> int:
    return _PRIORITY_RANK.get(priority, _PRIORITY_RANK["Medium"])


def _sort_key(task: Task) -> tuple[int, int, int]:
    if task.order is None:
        return (1, 0, priority_rank(task.priority))
    return (0, task.order, priority_rank(task.priority))


def sort_tasks(tasks: list[Task]) -> list[Task]:
    """Order a column: explicit ``order`` first (ascending), then by priority."""
    return sorted(tasks, key=_sort_key)
