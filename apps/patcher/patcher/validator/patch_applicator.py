"""Apply one patch artifact to the target tree, idempotently.

Sequence for apply_patch():
  1. Effect already present        -> already-satisfied, tree untouched.
  2. `git apply --check` dry run   -> on failure go to 4.
  3. `git apply`, then re-verify   -> applied, or failed if the expected
                                      content is still missing (stale
                                      artifact).
  4. Re-verify after a failed dry run -> already-satisfied (flagged as
                                      verified_after_failure) or failed with
                                      the dry-run diagnostic.

The tree is written only in step 3, at most once per call.

"Effect present" means every verification rule of the patch passes. A patch
declared without rules falls back to a reverse dry run: if the artifact
could be backed out cleanly, its changes are already in the tree.
"""

import logging
from pathlib import Path
from typing import Optional

from patcher.core.errors import PatchEnvironmentError
from patcher.registry.types import PatchDescriptor
from patcher.validator.types import (
    ApplyOutcome,
    ApplyResult,
    RevertOutcome,
    RevertResult,
)
from patcher.validator.verifier import is_satisfied
from patcher.vcs import git
from patcher.vcs.git import GitApplyError

logger = logging.getLogger(__name__)


def artifact_path(patch: PatchDescriptor, patches_dir: Path) -> Path:
    """Location of the patch's diff file."""
    return Path(patches_dir) / patch.file


def require_artifact(patch: PatchDescriptor, patches_dir: Path) -> Path:
    """Return the artifact path, raising PatchEnvironmentError if missing."""
    path = artifact_path(patch, patches_dir)
    if not path.is_file():
        raise PatchEnvironmentError(
            f"Patch file not found for '{patch.id}': {path}"
        )
    return path


def effect_present(
    patch: PatchDescriptor,
    tree_root: Path,
    patches_dir: Path,
    timeout: Optional[float] = git.DEFAULT_TIMEOUT_SECONDS,
) -> bool:
    """Return True if the patch's changes are already in the tree."""
    if not patch.verification.is_empty:
        return is_satisfied(tree_root, patch.verification)

    artifact = artifact_path(patch, patches_dir)
    if not artifact.is_file():
        return False
    try:
        return git.check_apply(tree_root, artifact, reverse=True, timeout=timeout).ok
    except GitApplyError as exc:
        logger.warning("Reverse check for %s failed: %s", patch.id, exc)
        return False


def apply_patch(
    patch: PatchDescriptor,
    tree_root: Path,
    patches_dir: Path,
    timeout: Optional[float] = git.DEFAULT_TIMEOUT_SECONDS,
) -> ApplyResult:
    """Apply `patch` to `tree_root`.

    Never raises for a patch that does not apply; that is reported as an
    ApplyResult with outcome FAILED. Raises PatchEnvironmentError only when
    the artifact file itself is missing.
    """
    if effect_present(patch, tree_root, patches_dir, timeout):
        logger.info("Patch %s already applied", patch.id)
        return ApplyResult(
            patch_id=patch.id,
            outcome=ApplyOutcome.ALREADY_SATISFIED,
            message="changes already present",
        )

    artifact = require_artifact(patch, patches_dir)

    try:
        dry_run = git.check_apply(tree_root, artifact, timeout=timeout)
        dry_run_error = None if dry_run.ok else dry_run.diagnostic
    except GitApplyError as exc:
        dry_run_error = str(exc)

    if dry_run_error is None:
        return _apply_checked(patch, tree_root, patches_dir, artifact, timeout)

    # Dry run refused the artifact. The content may still be there, e.g. a
    # partially overlapping upstream change or an artifact applied by hand.
    if effect_present(patch, tree_root, patches_dir, timeout):
        logger.warning(
            "Patch %s: git apply --check failed but verification passed; "
            "treating as applied (dry run: %s)",
            patch.id,
            dry_run_error,
        )
        return ApplyResult(
            patch_id=patch.id,
            outcome=ApplyOutcome.ALREADY_SATISFIED,
            message=f"dry run failed but changes are present: {dry_run_error}",
            verified_after_failure=True,
        )

    logger.error("Failed to apply patch %s: %s", patch.id, dry_run_error)
    return ApplyResult(
        patch_id=patch.id,
        outcome=ApplyOutcome.FAILED,
        message=f"dry run failed: {dry_run_error}",
    )


def _apply_checked(
    patch: PatchDescriptor,
    tree_root: Path,
    patches_dir: Path,
    artifact: Path,
    timeout: Optional[float],
) -> ApplyResult:
    try:
        git.apply(tree_root, artifact, timeout=timeout)
    except GitApplyError as exc:
        logger.error("Failed to apply patch %s: %s", patch.id, exc)
        return ApplyResult(
            patch_id=patch.id,
            outcome=ApplyOutcome.FAILED,
            message=str(exc),
        )

    if patch.verification.is_empty:
        logger.info("Patch %s applied (no verification rules declared)", patch.id)
        return ApplyResult(patch_id=patch.id, outcome=ApplyOutcome.APPLIED)

    if not is_satisfied(tree_root, patch.verification):
        logger.error(
            "Patch %s applied but verification patterns are missing; artifact is stale",
            patch.id,
        )
        return ApplyResult(
            patch_id=patch.id,
            outcome=ApplyOutcome.FAILED,
            message="applied cleanly but expected content is missing (stale patch?)",
        )

    logger.info("Patch %s applied", patch.id)
    return ApplyResult(patch_id=patch.id, outcome=ApplyOutcome.APPLIED)


def revert_patch(
    patch: PatchDescriptor,
    tree_root: Path,
    patches_dir: Path,
    timeout: Optional[float] = git.DEFAULT_TIMEOUT_SECONDS,
) -> RevertResult:
    """Back out a previously applied patch with `git apply --reverse`."""
    if not effect_present(patch, tree_root, patches_dir, timeout):
        return RevertResult(
            patch_id=patch.id,
            outcome=RevertOutcome.NOT_APPLIED,
            message="patch is not currently applied",
        )

    artifact = require_artifact(patch, patches_dir)

    try:
        check = git.check_apply(tree_root, artifact, reverse=True, timeout=timeout)
        if not check.ok:
            raise GitApplyError(f"reverse dry run failed: {check.diagnostic}")
        git.apply(tree_root, artifact, reverse=True, timeout=timeout)
    except GitApplyError as exc:
        logger.error("Failed to revert patch %s: %s", patch.id, exc)
        return RevertResult(
            patch_id=patch.id,
            outcome=RevertOutcome.FAILED,
            message=str(exc),
        )

    logger.info("Patch %s reverted", patch.id)
    return RevertResult(patch_id=patch.id, outcome=RevertOutcome.REVERTED)
