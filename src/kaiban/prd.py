"""Requirements documents (PRDs): locate the file a task links to and keep
its ``**Status:**`` line in step with the task."""

from __future__ import annotations

import re
from pathlib import Path, PurePosixPath

from kaiban.errors import PRDSyncError
from kaiban.io_utils import read_text, write_text

STATUS_LINE_RE = re.compile(r"^\*\*Status:\*\*", re.IGNORECASE)


def _relative_to_base(prd_path: str, base_name: str) -> str:
    """Strip the ``../`` walk (and the base dir itself) from a task-relative link.

    ``../../PRDS/auth/login.md`` with base ``PRDS`` becomes ``auth/login.md``.
    Only a whole path segment matches the base name.
    """
    # PurePosixPath drops "." segments; only leading ".." remain.
    parts = PurePosixPath(prd_path).parts
    if base_name and base_name in parts[:-1]:
        return "/".join(parts[parts.index(base_name) + 1:])

    if prd_path.startswith(("../", "./")):
        start = 0
        while start < len(parts) and parts[start] == "..":
            start += 1
        return "/".join(parts[start:])

    return prd_path


def prd_candidates(
    prd_path: str,
    *,
    task_file: Path,
    prd_base: Path,
    workspace: Path,
) -> list[Path]:
    """Return the locations tried for *prd_path*, in resolution order."""
    if not prd_path:
        return []
    link = Path(prd_path)
    if link.is_absolute():
        return [link]

    candidates = [
        prd_base / _relative_to_base(prd_path, prd_base.name),
        (task_file.parent / prd_path).resolve(),
        workspace / prd_path,
    ]
    unique: list[Path] = []
    for cand in candidates:
        if cand not in unique:
            unique.append(cand)
    return unique


def resolve_prd_path(
    prd_path: str,
    *,
    task_file: Path,
    prd_base: Path,
    workspace: Path,
) -> Path | None:
    """Return the first existing PRD file for a task's link, or ``None``."""
    for cand in prd_candidates(prd_path, task_file=task_file, prd_base=prd_base, workspace=workspace):
        if cand.is_file():
            return cand
    return None


def apply_status(content: str, status: str) -> str:
    """Return *content* with its status line set to *status*.

    Existing ``**Status:**`` lines are replaced; otherwise one is inserted
    right after the first heading (or at the very top when there is none).
    """
    lines = content.split("\n")
    new_line = f"**Status:** {status}"

    if any(STATUS_LINE_RE.match(line) for line in lines):
        lines = [new_line if STATUS_LINE_RE.match(line) else line for line in lines]
        return "\n".join(lines)

    insert_at = 0
    for idx, line in enumerate(lines):
        if line.startswith("#"):
            insert_at = idx + 1
            break
    lines.insert(insert_at, new_line)
    return "\n".join(lines)


def sync_prd_status(prd_file: Path, status: str) -> None:
    """Write *status* into the PRD at *prd_file*. Raises :class:`PRDSyncError`."""
    try:
        content = read_text(prd_file)
        write_text(prd_file, apply_status(content, status))
    except (OSError, UnicodeDecodeError) as e:
        raise PRDSyncError(f"Failed to update PRD status in {prd_file}: {e}") from e


def read_prd_status(prd_file: Path) -> str:
    """Return the value of the PRD's status line, or ``""``."""
    for line in read_text(prd_file, errors="replace").splitlines():
        if STATUS_LINE_RE.match(line):
            return line.split(":**", 1)[1].strip()
    return ""


def slugify(text: str, max_len: int = 50) -> str:
    """Convert text to a file-name-safe slug."""
    slug = re.sub(r"[^a-z0-9]+", "-", text.lower()).strip("-")
    return slug[:max_len].rstrip("-")
