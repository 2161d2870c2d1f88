"""UTF-8 text I/O helpers shared by the task store and PRD sync."""

from __future__ import annotations

import os
import tempfile
from io import TextIOWrapper
from pathlib import Path
from typing import Any

PathLike = Path | str


def read_text(path: PathLike, errors: str = "strict") -> str:
    """Read *path* as UTF-8 text without newline translation."""
    p = path if isinstance(path, Path) else Path(path)
    with open(p, encoding="utf-8", errors=errors, newline="") as fh:
        return fh.read()


def write_text(path: PathLike, text: str) -> None:
    """Replace the contents of *path* with *text*.

    The new content is written to a sibling temp file and moved into place,
    so readers never observe a half-written task file.
    """
    p = path if isinstance(path, Path) else Path(path)
    p.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(prefix=f".{p.name}.", suffix=".tmp", dir=p.parent)
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="") as fh:
            fh.write(text)
        os.replace(tmp, p)
    except BaseException:
        Path(tmp).unlink(missing_ok=True)
        raise


def open_text(
    path: PathLike,
    mode: str = "r",
    *,
    encoding: str = "utf-8",
    errors: str = "strict",
    **kwargs: Any,
) -> TextIOWrapper:
    """Open *path* for text I/O with UTF-8 by default. Used for execution logs."""
    return open(path, mode, encoding=encoding, errors=errors, **kwargs)
