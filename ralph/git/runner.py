"""Git command runner with timeout handling."""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT = 60


@dataclass
class GitResult:
    """Result of a git command. Check .success before using output."""
    returncode: int
    stdout: str
    stderr: str
    timed_out: bool = False

    @property
    def success(self) -> bool:
        return self.returncode == 0 and not self.timed_out


def run_git(args: list[str], cwd: Path, timeout: int = DEFAULT_TIMEOUT) -> GitResult:
    """
    Run `git -C <cwd> <args>`.

    Never raises for git failures or timeouts; those come back in GitResult.
    A missing git binary is reported the same way.
    """
    cmd = ["git", "-C", str(cwd)] + args
    try:
        result = subprocess.run(cmd, capture_output=True, text=True, timeout=timeout)
    except subprocess.TimeoutExpired:
        logger.warning(f"[GIT] timed out after {timeout}s: git {' '.join(args)}")
        return GitResult(returncode=-1, stdout="", stderr=f"Command timed out after {timeout}s", timed_out=True)
    except FileNotFoundError as e:
        return GitResult(returncode=-1, stdout="", stderr=f"git not available: {e}")

    if result.returncode != 0:
        logger.debug(f"[GIT] git {' '.join(args)} -> {result.returncode}: {result.stderr.strip()}")
    return GitResult(returncode=result.returncode, stdout=result.stdout, stderr=result.stderr)
