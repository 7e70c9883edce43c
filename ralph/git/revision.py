"""Capture and restore working-tree revisions for story rollback."""

from pathlib import Path

from ralph.git.runner import GitResult, run_git


def get_head_revision(worktree: Path) -> str | None:
    """Full SHA of HEAD, or None if unavailable (not a repo, no commits)."""
    result = run_git(["rev-parse", "--verify", "HEAD"], worktree)
    if not result.success:
        return None
    return result.stdout.strip() or None


def revision_exists(worktree: Path, revision: str) -> bool:
    result = run_git(["cat-file", "-e", f"{revision}^{{commit}}"], worktree)
    return result.success


def has_uncommitted_changes(worktree: Path, exclude: list[str] | None = None) -> bool:
    """Staged, unstaged or untracked changes outside the excluded paths."""
    result = run_git(["status", "--porcelain", "--", "."] + _exclude_specs(exclude), worktree)
    return bool(result.stdout.strip())


def _exclude_specs(exclude: list[str] | None) -> list[str]:
    return [f":(exclude){path}" for path in (exclude or [])]


def restore_tree(worktree: Path, revision: str, exclude: list[str] | None = None) -> GitResult:
    """
    Make index and working tree match revision, leaving HEAD alone.

    Tracked files absent from revision are removed; excluded paths are
    not touched.
    """
    args = ["restore", f"--source={revision}", "--staged", "--worktree", "--", "."]
    return run_git(args + _exclude_specs(exclude), worktree)


def clean_untracked(worktree: Path, exclude: list[str] | None = None) -> GitResult:
    """Remove untracked files and directories outside the excluded paths."""
    return run_git(["clean", "-fd", "--", "."] + _exclude_specs(exclude), worktree)


def revert_to_revision(worktree: Path, revision: str, exclude: list[str] | None = None) -> GitResult:
    """Restore tracked files, then drop untracked ones. Stops at the first failure."""
    restored = restore_tree(worktree, revision, exclude)
    if not restored.success:
        return restored
    return clean_untracked(worktree, exclude)
