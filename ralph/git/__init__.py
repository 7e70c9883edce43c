"""Git operations for the workflow engine.

Return type conventions:
- Functions returning GitResult: caller must check .success.
- Functions returning bool/str: False/None when git fails.
"""

from ralph.git.runner import GitResult, run_git
from ralph.git.revision import (
    clean_untracked,
    get_head_revision,
    has_uncommitted_changes,
    restore_tree,
    revert_to_revision,
    revision_exists,
)

__all__ = [
    "GitResult",
    "run_git",
    "get_head_revision",
    "revision_exists",
    "has_uncommitted_changes",
    "restore_tree",
    "clean_untracked",
    "revert_to_revision",
]
