"""Crash-safe replacement of small state files (task store, state, workspace)."""
from __future__ import annotations

import json
import os
import tempfile
from pathlib import Path
from typing import Any


def _sync_parent(path: Path) -> None:
    """fsync the directory holding ``path``; ignored where unsupported."""
    flags = os.O_RDONLY | getattr(os, "O_DIRECTORY", 0)
    try:
        fd = os.open(str(path.parent), flags)
    except OSError:
        return
    try:
        os.fsync(fd)
    except OSError:
        pass
    finally:
        os.close(fd)


def atomic_write_text(
    path: Path,
    content: str,
    *,
    encoding: str = "utf-8",
    mode: int | None = None,
    dir_mode: int | None = None,
) -> None:
    """Replace ``path`` with ``content``; readers never see a partial file.

    ``mode`` is applied to the new file before it becomes visible;
    ``dir_mode`` only when the parent directory has to be created.
    """
    if dir_mode is None:
        path.parent.mkdir(parents=True, exist_ok=True)
    else:
        path.parent.mkdir(mode=dir_mode, parents=True, exist_ok=True)

    fd, name = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.", suffix=".tmp")
    staged = Path(name)
    try:
        with os.fdopen(fd, "w", encoding=encoding) as f:
            f.write(content)
            f.flush()
            os.fsync(f.fileno())
        if mode is not None:
            os.chmod(staged, mode)
        os.replace(staged, path)
    except BaseException:
        staged.unlink(missing_ok=True)
        raise
    _sync_parent(path)


def atomic_write_json(
    path: Path,
    payload: Any,
    *,
    mode: int | None = None,
    dir_mode: int | None = None,
) -> None:
    """Pretty-printed JSON variant of :func:`atomic_write_text`."""
    text = json.dumps(payload, indent=2, ensure_ascii=False) + "\n"
    atomic_write_text(path, text, mode=mode, dir_mode=dir_mode)
