"""Version-control capability used by the patch engine."""

from patcher.vcs.git import (
    GitApplyError,
    GitResult,
    apply,
    check_apply,
    check_git_available,
    is_clean,
    is_work_tree,
)

__all__ = [
    "GitApplyError",
    "GitResult",
    "apply",
    "check_apply",
    "check_git_available",
    "is_clean",
    "is_work_tree",
]
