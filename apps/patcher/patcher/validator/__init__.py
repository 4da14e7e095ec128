"""Verification and application of individual patches."""

from patcher.validator.patch_applicator import (
    apply_patch,
    artifact_path,
    effect_present,
    require_artifact,
    revert_patch,
)
from patcher.validator.types import (
    ApplyOutcome,
    ApplyResult,
    BatchResult,
    RevertOutcome,
    RevertResult,
)
from patcher.validator.verifier import check_rule, is_satisfied

__all__ = [
    "apply_patch",
    "artifact_path",
    "effect_present",
    "require_artifact",
    "revert_patch",
    "ApplyOutcome",
    "ApplyResult",
    "BatchResult",
    "RevertOutcome",
    "RevertResult",
    "check_rule",
    "is_satisfied",
]
