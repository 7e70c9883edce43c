"""
Advisory locks for the state directory.

flock-based: one lock for the workflow singleton, one per story so that
processes working different stories never wait on each other.
"""

import atexit
import fcntl
import logging
import os
import time
from contextlib import contextmanager
from pathlib import Path

from ralph.state.store import check_story_id

logger = logging.getLogger(__name__)

POLL_INTERVAL = 0.05


class LockTimeout(Exception):
    """Lock acquisition timed out."""

    def __init__(self, lock_name: str, timeout: float):
        self.lock_name = lock_name
        self.timeout = timeout
        super().__init__(f"Could not acquire {lock_name} within {timeout}s")


@contextmanager
def _acquire_lock(lock_file: Path, timeout: float, lock_name: str):
    """
    Hold an exclusive flock on lock_file for the duration of the block.

    Lock files are never deleted: removing one lets two processes hold
    "exclusive" locks on different inodes with the same path.
    """
    lock_file.parent.mkdir(parents=True, exist_ok=True)

    fd = os.open(str(lock_file), os.O_CREAT | os.O_RDWR, 0o644)
    start = time.monotonic()
    try:
        while True:
            try:
                fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except BlockingIOError:
                if time.monotonic() - start > timeout:
                    raise LockTimeout(lock_name, timeout) from None
                time.sleep(POLL_INTERVAL)
    except BaseException:
        os.close(fd)
        raise

    def release():
        try:
            fcntl.flock(fd, fcntl.LOCK_UN)
            os.close(fd)
        except OSError:
            pass

    atexit.register(release)
    try:
        os.ftruncate(fd, 0)
        os.write(fd, f"{os.getpid()}\n".encode())
        logger.debug(f"[LOCK] acquired {lock_name}")
        yield
    finally:
        atexit.unregister(release)
        release()
        logger.debug(f"[LOCK] released {lock_name}")


@contextmanager
def workflow_lock(state_dir: Path, timeout: float = 30):
    """Serialize mutations of the workflow singleton (phase, current story)."""
    with _acquire_lock(state_dir / "locks" / "workflow.lock", timeout, "workflow lock"):
        yield


@contextmanager
def story_lock(state_dir: Path, story_id: str, timeout: float = 30):
    """Serialize read-modify-write cycles on one story's records.

    Raises ValueError for an id that is not a plain file-name token.
    """
    lock_file = state_dir / "locks" / "stories" / f"{check_story_id(story_id)}.lock"
    with _acquire_lock(lock_file, timeout, f"lock for story {story_id}"):
        yield


def is_story_locked(state_dir: Path, story_id: str) -> bool:
    """True if another process currently holds the story lock."""
    lock_file = state_dir / "locks" / "stories" / f"{check_story_id(story_id)}.lock"
    if not lock_file.exists():
        return False
    fd = os.open(str(lock_file), os.O_RDONLY)
    try:
        fcntl.flock(fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
        fcntl.flock(fd, fcntl.LOCK_UN)
        return False
    except BlockingIOError:
        return True
    finally:
        os.close(fd)
