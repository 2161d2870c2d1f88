"""Markdown codec for task files.

A task file starts with ``## Task: <Title>`` and carries its metadata as
``**Field:** value`` lines, terminated by a ``---`` line::

    ## Task: Add login page

    **ID:** task-7
    **Status:** To Do
    **Priority:** High
    ---

Mutations rewrite individual field lines in place so that anything else in
the file (free-form notes, rejection logs) survives untouched.
"""

from __future__ import annotations

import re
from datetime import datetime, timezone

from kaiban.tasks.model import Task

TITLE_RE = re.compile(r"^## Task:\s*(.+)$")
FIELD_RE = re.compile(r"^\*\*([A-Za-z][A-Za-z -]*):\*\*\s*(.*)$")
PRD_LINK_RE = re.compile(r"^\[([^\]]*)\]\((.+)\)$")
SEPARATOR = "---"

# Field name in the file -> Task attribute for plain string fields
_STRING_FIELDS: dict[str, str] = {
    "ID": "id",
    "Label": "label",
    "Description": "description",
    "Type": "type",
    "Status": "status",
    "Priority": "priority",
    "Created": "created",
    "Updated": "updated",
    "Claimed-By": "claimed_by",
    "Claimed-At": "claimed_at",
    "Completed-At": "completed_at",
}


def now_iso() -> str:
    """UTC timestamp in the ``2025-01-31T09:15:00.000Z`` form task files use."""
    stamp = datetime.now(timezone.utc).isoformat(timespec="milliseconds")
    return stamp.replace("+00:00", "Z")


def _parse_iso(value: str) -> datetime | None:
    try:
        parsed = datetime.fromisoformat(value.strip().replace("Z", "+00:00"))
    except ValueError:
        return None
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def next_timestamp(previous: str = "") -> str:
    """Return a timestamp that never sorts before *previous*.

    Guards the ``Updated`` field against wall-clock steps backwards.
    """
    stamp = now_iso()
    if not previous:
        return stamp
    prev = _parse_iso(previous)
    current = _parse_iso(stamp)
    if prev is not None and current is not None and prev > current:
        return previous.strip()
    return stamp


def field_line(name: str, value: object = "") -> str:
    return f"**{name}:** {value}".rstrip()


def field_name(line: str) -> str | None:
    """Return the field name of a ``**Field:** value`` line, else ``None``."""
    m = FIELD_RE.match(line.rstrip("\r"))
    return m.group(1) if m else None


def _collect_notes(lines: list[str], start: int) -> str:
    notes: list[str] = []
    idx = start
    while idx < len(lines):
        line = lines[idx].rstrip("\r")
        if line.startswith("**") or line.startswith(SEPARATOR):
            break
        if line.strip():
            notes.append(line)
        idx += 1
    return "\n".join(notes)


def parse_task(
    content: str,
    file_path: str = "",
    project: str = "",
    default_status: str = "To Do",
) -> Task | None:
    """Decode a task file. Returns ``None`` when the title marker is missing."""
    lines = content.split("\n")
    title = TITLE_RE.match(lines[0].rstrip("\r")) if lines else None
    if not title:
        return None

    values: dict[str, object] = {}
    in_metadata = False

    for idx, raw in enumerate(lines):
        line = raw.rstrip("\r")
        if line.startswith(SEPARATOR):
            if in_metadata:
                break
            continue

        m = FIELD_RE.match(line)
        if not m:
            continue
        name, value = m.group(1), m.group(2).strip()
        in_metadata = True

        if name in _STRING_FIELDS:
            if value:
                values[_STRING_FIELDS[name]] = value
        elif name == "PRD":
            link = PRD_LINK_RE.match(value)
            if link:
                values["prd_path"] = link.group(2).strip()
        elif name == "Order":
            if value.isdigit():
                values["order"] = int(value)
        elif name == "Rejection-Count":
            if value.isdigit():
                values["rejection_count"] = int(value)
        elif name == "Agent-Notes":
            notes = _collect_notes(lines, idx + 1)
            values["agent_notes"] = f"{value}\n{notes}".strip() if value else notes

    label = title.group(1).strip()
    values.setdefault("label", label)
    values.setdefault("status", default_status)
    return Task(
        id=str(values.pop("id", "")),
        file_path=file_path,
        project=project,
        **values,  # type: ignore[arg-type]
    )


def serialize_task(task: Task) -> str:
    """Encode *task* in the canonical task-file layout."""
    out = [
        f"## Task: {task.label}",
        "",
        field_line("ID", task.id),
        field_line("Label", task.label),
        field_line("Description", task.description),
        field_line("Type", task.type),
        field_line("Status", task.status),
        field_line("Priority", task.priority),
    ]
    if task.order is not None:
        out.append(field_line("Order", task.order))
    out += [
        field_line("Created", task.created),
        field_line("Updated", task.updated),
        field_line("PRD", f"[Link]({task.prd_path})" if task.prd_path else ""),
        field_line("Claimed-By", task.claimed_by),
        field_line("Claimed-At", task.claimed_at),
        field_line("Completed-At", task.completed_at),
        field_line("Rejection-Count", task.rejection_count),
        field_line("Agent-Notes"),
    ]
    if task.agent_notes:
        out.append(task.agent_notes)
    out += ["", SEPARATOR, ""]
    return "\n".join(out)


def replace_fields(lines: list[str], replacements: dict[str, str]) -> tuple[list[str], set[str]]:
    """Rewrite the field lines named in *replacements*.

    Returns the new lines and the set of field names that were found.
    """
    seen: set[str] = set()
    out: list[str] = []
    for raw in lines:
        name = field_name(raw)
        if name in replacements:
            seen.add(name)
            eol = "\r" if raw.endswith("\r") else ""
            out.append(replacements[name] + eol)
        else:
            out.append(raw)
    return out, seen


def insert_after(lines: list[str], anchors: tuple[str, ...], new_line: str) -> bool:
    """Insert *new_line* after the first field found among *anchors* (in order).

    Returns ``False`` when no anchor field exists; *lines* is then unchanged.
    """
    for anchor in anchors:
        for idx, raw in enumerate(lines):
            if field_name(raw) == anchor:
                lines.insert(idx + 1, new_line)
                return True
    return False
