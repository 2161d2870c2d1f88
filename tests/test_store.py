"""Tests for TaskStore: reading the board and mutating task files."""

from __future__ import annotations

from pathlib import Path

import pytest

from kaiban.errors import TaskNotFoundError, TaskParseError
from kaiban.io_utils import read_text, write_text
from kaiban.tasks.model import Task, TaskStatus, sort_tasks


# ── reading ──────────────────────────────────────────────────────


def test_parse_tasks_reads_nested_directories(store, make_task_file, workspace):
    make_task_file("task-1", "Top level")
    make_task_file("task-2", "Nested", name="epic/task-2.md")

    ids = sorted(t.id for t in store.parse_tasks())

    assert ids == ["task-1", "task-2"]


def test_parse_tasks_skips_readme_and_untitled_files(store, make_task_file, workspace):
    make_task_file("task-1")
    tasks_dir = workspace / ".agent" / "TASKS"
    write_text(tasks_dir / "README.md", "## Task: Not really\n\n**ID:** task-99\n---\n")
    write_text(tasks_dir / "notes.md", "# Just notes\n")

    assert [t.id for t in store.parse_tasks()] == ["task-1"]


def test_parse_tasks_skips_unreadable_file(store, make_task_file, workspace):
    make_task_file("task-1")
    (workspace / ".agent" / "TASKS" / "broken.md").write_bytes(b"## Task: x\n\xff\xfe\xfa")

    assert [t.id for t in store.parse_tasks()] == ["task-1"]


def test_parse_file_raises_parse_error(store, workspace):
    path = workspace / ".agent" / "TASKS" / "broken.md"
    path.write_bytes(b"\xff\xfe\xfa")

    with pytest.raises(TaskParseError):
        store.parse_file(path)


def test_parse_tasks_without_task_dir(cfg):
    from kaiban.tasks.store import TaskStore

    cfg.tasks_dir = "missing/TASKS"
    assert TaskStore(cfg).parse_tasks() == []


def test_project_is_workspace_name(store, make_task_file, workspace):
    make_task_file("task-1")
    assert store.get_task("task-1").project == workspace.name


def test_get_task_not_found(store, make_task_file):
    make_task_file("task-1")

    with pytest.raises(TaskNotFoundError, match="Task with ID task-9 not found"):
        store.get_task("task-9")
    with pytest.raises(TaskNotFoundError):
        store.get_task("")
    assert store.find_task("task-9") is None


def test_group_by_status_has_every_column(store):
    grouped = store.group_by_status([
        Task(id="a", status="Doing"),
        Task(id="b", status="Doing"),
        Task(id="c", status="Done"),
    ])

    assert list(grouped) == [s.value for s in TaskStatus]
    assert [t.id for t in grouped["Doing"]] == ["a", "b"]
    assert grouped["Blocked"] == []


def test_group_by_status_drops_unknown_status(store):
    grouped = store.group_by_status([Task(id="a", status="Review"), Task(id="b")])

    assert sum(len(col) for col in grouped.values()) == 1
    assert [t.id for t in grouped["To Do"]] == ["b"]


def test_sort_tasks_orders_then_priority():
    tasks = [
        Task(id="low", priority="Low"),
        Task(id="o2", order=2, priority="High"),
        Task(id="high", priority="High"),
        Task(id="o1", order=1, priority="Low"),
    ]
    assert [t.id for t in sort_tasks(tasks)] == ["o1", "o2", "high", "low"]


# ── status updates ───────────────────────────────────────────────


def test_backlog_to_todo_with_order(store, make_task_file):
    path = make_task_file("task-1", status="Backlog")

    task = store.update_task_status("task-1", "To Do", 2)

    assert task.status == "To Do"
    assert task.order == 2
    assert task.updated > "2025-01-01T00:00:00.000Z"
    content = read_text(path)
    assert "**Status:** To Do" in content
    assert "**Order:** 2" in content
    # Order is inserted right after Priority when the file had none.
    lines = content.split("\n")
    assert lines.index("**Order:** 2") == lines.index("**Priority:** Medium") + 1


def test_update_status_replaces_existing_order(store, make_task_file):
    path = make_task_file("task-1", order=5)

    store.update_task_status("task-1", "Doing", 1)

    content = read_text(path)
    assert content.count("**Order:**") == 1
    assert "**Order:** 1" in content


def test_update_status_accepts_enum(store, make_task_file):
    make_task_file("task-1")
    assert store.update_task_status("task-1", TaskStatus.TESTING).status == "Testing"


def test_update_status_rejects_unknown_status(store, make_task_file):
    make_task_file("task-1")
    with pytest.raises(ValueError, match="Unknown status"):
        store.update_task_status("task-1", "Review")


def test_update_status_not_found(store):
    with pytest.raises(TaskNotFoundError):
        store.update_task_status("task-404", "Done")


def test_updated_is_monotonic(store, make_task_file):
    make_task_file("task-1", updated="2999-01-01T00:00:00.000Z")

    task = store.update_task_status("task-1", "Doing")

    assert task.updated >= "2999-01-01T00:00:00.000Z"


def test_update_inserts_missing_status_line(store, workspace):
    path = workspace / ".agent" / "TASKS" / "hand.md"
    write_text(path, "## Task: Hand written\n\n**ID:** task-5\n**Type:** Bug\n---\n")

    task = store.update_task_status("task-5", "Doing")

    assert task.status == "Doing"
    lines = read_text(path).split("\n")
    assert lines[lines.index("**Type:** Bug") + 1] == "**Status:** Doing"


def test_update_preserves_body_below_separator(store, make_task_file):
    path = make_task_file("task-1")
    write_text(path, read_text(path) + "\n## Notes\nkeep me\n")

    store.update_task_status("task-1", "Done")

    assert "keep me" in read_text(path)


def test_update_task_order(store, make_task_file):
    make_task_file("task-1", order=1)
    assert store.update_task_order("task-1", 7).order == 7


def test_update_task_partial_fields(store, make_task_file):
    path = make_task_file("task-1", "Old title")

    task = store.update_task("task-1", label="New title", priority="High")

    assert task.label == "New title"
    assert task.priority == "High"
    assert task.status == "To Do"
    assert read_text(path).startswith("## Task: New title\n")


def test_update_task_rejects_unknown_priority(store, make_task_file):
    make_task_file("task-1")
    with pytest.raises(ValueError):
        store.update_task("task-1", priority="Urgent")


def test_update_task_prd(store, make_task_file):
    make_task_file("task-1")
    assert store.update_task_prd("task-1", "../PRDS/new.md").prd_path == "../PRDS/new.md"


# ── rejection ────────────────────────────────────────────────────


def test_reject_increments_count_and_clears_claims(store, make_task_file):
    path = make_task_file("task-1", status="Testing", rejection_count=2)
    content = read_text(path).replace("**Claimed-By:**", "**Claimed-By:** agent-7")
    write_text(path, content)

    task = store.reject_task("task-1", "Tests   fail\non CI")

    assert task.status == "To Do"
    assert task.rejection_count == 3
    assert task.claimed_by == ""
    content = read_text(path)
    assert "**Rejections:**" in content
    assert ": Tests fail on CI" in content


def test_reject_twice_appends_to_rejections(store, make_task_file):
    path = make_task_file("task-1", status="Testing")

    store.reject_task("task-1", "first")
    task = store.reject_task("task-1", "second")

    assert task.rejection_count == 2
    content = read_text(path)
    assert content.count("**Rejections:**") == 1
    assert content.index(": second") < content.index(": first")


def test_reject_inserts_missing_count(store, workspace):
    path = workspace / ".agent" / "TASKS" / "hand.md"
    write_text(
        path,
        "## Task: Hand\n\n**ID:** task-5\n**Status:** Done\n**Updated:** 2025-01-01T00:00:00.000Z\n---\n",
    )

    task = store.reject_task("task-5", "nope")

    assert task.rejection_count == 1
    assert task.status == "To Do"


# ── creation ─────────────────────────────────────────────────────


def test_create_task_allocates_next_id(store, make_task_file, workspace):
    make_task_file("task-3")

    task = store.create_task("Add search", priority="High")

    assert task.id == "task-4"
    assert task.status == "To Do"
    assert Path(task.file_path) == workspace / ".agent" / "TASKS" / "add-search.md"
    assert store.get_task("task-4").label == "Add search"


def test_create_task_uses_default_status(cfg):
    from kaiban.tasks.store import TaskStore

    cfg.default_status = "Backlog"
    task = TaskStore(cfg).create_task("Later")

    assert task.id == "task-1"
    assert task.status == "Backlog"


def test_create_task_avoids_name_clash(store):
    first = store.create_task("Same name")
    second = store.create_task("Same name")

    assert first.file_path != second.file_path
    assert second.file_path.endswith("same-name-1.md")


def test_write_task_requires_path(store):
    with pytest.raises(ValueError):
        store.write_task(Task(id="task-1"))
