"""Atomic file helpers for state records.

Writers create a temp file in the destination directory, fsync it and
swap it in with os.replace, so readers in other processes only ever see
the old record or the new one.
"""

import contextlib
import json
import os
import tempfile
from pathlib import Path


def atomic_write(path: Path, text: str) -> None:
    """Atomically replace path with text."""
    path.parent.mkdir(parents=True, exist_ok=True)

    fd, temp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    temp_path = Path(temp_name)
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as fh:
            fh.write(text)
            fh.flush()
            os.fsync(fh.fileno())
        os.replace(temp_path, path)
        _fsync_dir(path.parent)
    except BaseException:
        with contextlib.suppress(OSError):
            temp_path.unlink()
        raise


def atomic_write_json(path: Path, data) -> None:
    atomic_write(path, json.dumps(data, indent=2, ensure_ascii=False) + "\n")


def _fsync_dir(directory: Path) -> None:
    # Directory fsync makes the rename durable; unsupported on some platforms.
    try:
        dir_fd = os.open(str(directory), os.O_RDONLY)
    except OSError:
        return
    try:
        os.fsync(dir_fd)
    except OSError:
        pass
    finally:
        os.close(dir_fd)


def remove_file(path: Path) -> bool:
    """Delete path if present. Returns True if something was removed."""
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
