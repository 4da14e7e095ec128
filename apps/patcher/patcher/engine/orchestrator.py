"""Top-level patch workflow: select -> resolve -> apply -> report.

PatchOrchestrator ties the registry, resolver and applicator together for
the apply/status/list/enable/disable/revert commands. All paths are passed
in explicitly.

Patches are applied strictly one at a time, in resolved order: artifacts can
touch overlapping files, so patch N+1 starts only after patch N (including
its post-verification) is done. A failed patch does not stop the batch;
later patches that do not depend on it are still attempted.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable, Optional

from patcher.core.errors import ConfigurationError, PatchEnvironmentError
from patcher.engine.resolver import dependents_of, resolve_order
from patcher.registry.loader import PatchRegistry, save_registry
from patcher.registry.types import PatchDescriptor, ToggleResult
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
    RevertResult,
)
from patcher.vcs import git

logger = logging.getLogger(__name__)


@dataclass
class PatchStatus:
    """One row of a status/list report.

    applied is None for list reports, which never inspect the tree.
    """

    patch_id: str
    name: str
    description: str
    category: str
    category_label: str
    enabled: bool
    file: str
    applied: Optional[bool] = None

    def to_dict(self) -> dict:
        return {
            "id": self.patch_id,
            "name": self.name,
            "description": self.description,
            "category": self.category,
            "enabled": self.enabled,
            "file": self.file,
            "applied": self.applied,
        }


def group_by_category(rows: Iterable[PatchStatus]) -> dict[str, list[PatchStatus]]:
    """Group report rows by category label, keeping first-seen order."""
    groups: dict[str, list[PatchStatus]] = {}
    for row in rows:
        groups.setdefault(row.category_label, []).append(row)
    return groups


class PatchOrchestrator:
    def __init__(
        self,
        registry: PatchRegistry,
        tree_root: Path,
        patches_dir: Path,
        git_timeout: Optional[float] = git.DEFAULT_TIMEOUT_SECONDS,
    ):
        self.registry = registry
        self.tree_root = Path(tree_root)
        self.patches_dir = Path(patches_dir)
        self.git_timeout = git_timeout

    # ------------------------------------------------------------------
    # Selection and planning
    # ------------------------------------------------------------------

    def select(
        self,
        patch_ids: Iterable[str] = (),
        category: Optional[str] = None,
        include_disabled: bool = False,
    ) -> list[str]:
        """Return the root ids for an apply run, in declaration order.

        Explicit ids are always included, even when disabled. A category
        adds its enabled patches (all of them with include_disabled). With
        neither, every enabled patch is requested (every patch with
        include_disabled).
        """
        explicit = list(dict.fromkeys(patch_ids))
        for patch_id in explicit:
            self.registry.get(patch_id)
        if category is not None:
            self._check_category(category)

        wanted: set[str] = set(explicit)
        if category is not None:
            wanted.update(
                p.id
                for p in self.registry
                if p.category == category and (p.enabled or include_disabled)
            )
        elif not explicit:
            wanted.update(
                self.registry.ids if include_disabled else self.registry.enabled_ids
            )

        return [p.id for p in self.registry if p.id in wanted]

    def plan(
        self,
        patch_ids: Iterable[str] = (),
        category: Optional[str] = None,
        include_disabled: bool = False,
    ) -> list[str]:
        """Resolve the full apply order for a selection.

        Prerequisites are included even when disabled or outside the
        category filter.
        """
        requested = self.select(patch_ids, category, include_disabled)
        return resolve_order(self.registry.by_id, requested)

    # ------------------------------------------------------------------
    # Apply / revert
    # ------------------------------------------------------------------

    def apply(
        self,
        patch_ids: Iterable[str] = (),
        category: Optional[str] = None,
        include_disabled: bool = False,
    ) -> BatchResult:
        """Apply the selected patches and their prerequisites.

        Configuration and environment problems raise before the tree is
        touched. Per-patch failures are collected in the returned batch.
        """
        order = self.plan(patch_ids, category, include_disabled)
        batch = BatchResult(order=order)
        if not order:
            logger.info("No patches selected")
            return batch

        self._require_tree()
        by_id = self.registry.by_id
        for patch_id in order:
            require_artifact(by_id[patch_id], self.patches_dir)

        if not git.is_clean(self.tree_root, timeout=self.git_timeout):
            logger.warning(
                "Working tree %s has uncommitted changes; patches will still be applied",
                self.tree_root,
            )

        failed: set[str] = set()
        for patch_id in order:
            patch = by_id[patch_id]
            blocked = [d for d in patch.dependencies if d in failed]
            # A dependent whose effect is already in the tree is still reported
            # as satisfied.
            if blocked and not effect_present(
                patch, self.tree_root, self.patches_dir, self.git_timeout
            ):
                result = ApplyResult(
                    patch_id=patch_id,
                    outcome=ApplyOutcome.FAILED,
                    message=f"skipped: prerequisite {', '.join(blocked)} failed",
                )
                logger.error("Skipping patch %s: prerequisite %s failed", patch_id, ", ".join(blocked))
            else:
                result = apply_patch(patch, self.tree_root, self.patches_dir, self.git_timeout)

            if result.outcome == ApplyOutcome.FAILED:
                failed.add(patch_id)
            batch.results.append(result)

        if batch.failed:
            logger.error("%d patch(es) failed to apply", len(batch.failed))
        return batch

    def revert(self, patch_id: str) -> RevertResult:
        patch = self.registry.get(patch_id)
        self._require_tree()

        applied_dependents = [
            dep_id
            for dep_id in dependents_of(self.registry.by_id, patch_id)
            if effect_present(self.registry.get(dep_id), self.tree_root, self.patches_dir, self.git_timeout)
        ]
        if applied_dependents:
            logger.warning(
                "Reverting %s while dependent patch(es) %s are applied",
                patch_id,
                ", ".join(applied_dependents),
            )

        return revert_patch(patch, self.tree_root, self.patches_dir, self.git_timeout)

    # ------------------------------------------------------------------
    # Reporting (read-only)
    # ------------------------------------------------------------------

    def status(self, category: Optional[str] = None) -> list[PatchStatus]:
        """Enabled flag and live applied state for each patch."""
        self._require_tree()
        rows = []
        for patch in self._filtered(category):
            row = self._row(patch)
            row.applied = effect_present(patch, self.tree_root, self.patches_dir, self.git_timeout)
            rows.append(row)
        return rows

    def list(self, category: Optional[str] = None) -> list[PatchStatus]:
        """Enabled flag for each patch; never inspects the tree."""
        return [self._row(patch) for patch in self._filtered(category)]

    # ------------------------------------------------------------------
    # Enable / disable
    # ------------------------------------------------------------------

    def enable(self, patch_id: str) -> ToggleResult:
        registry, result = self.registry.enable(patch_id)
        return self._commit(registry, result)

    def disable(self, patch_id: str) -> ToggleResult:
        registry, result = self.registry.disable(patch_id)
        return self._commit(registry, result)

    # ------------------------------------------------------------------
    # Helpers
    # ------------------------------------------------------------------

    def _commit(self, registry: PatchRegistry, result: ToggleResult) -> ToggleResult:
        if result.changed:
            save_registry(registry)
            self.registry = registry
        else:
            logger.info(result.message)
        return result

    def _require_tree(self) -> None:
        if not git.check_git_available():
            raise PatchEnvironmentError("git binary not found; install git and retry")
        if not self.tree_root.is_dir():
            raise PatchEnvironmentError(f"Target tree not found: {self.tree_root}")
        if not git.is_work_tree(self.tree_root, timeout=self.git_timeout):
            raise PatchEnvironmentError(
                f"Target tree is not a git working tree: {self.tree_root}"
            )

    def _check_category(self, category: str) -> None:
        known = set(self.registry.categories) | {p.category for p in self.registry}
        if category not in known:
            raise ConfigurationError(f"Unknown category '{category}'")

    def _filtered(self, category: Optional[str]) -> list[PatchDescriptor]:
        if category is None:
            return self._category_sorted(list(self.registry))
        self._check_category(category)
        return [p for p in self.registry if p.category == category]

    def _category_sorted(self, patches: list[PatchDescriptor]) -> list[PatchDescriptor]:
        """Declared categories first, in declaration order, then the rest."""
        rank = {key: i for i, key in enumerate(self.registry.categories)}
        return sorted(patches, key=lambda p: rank.get(p.category, len(rank)))

    def _row(self, patch: PatchDescriptor) -> PatchStatus:
        return PatchStatus(
            patch_id=patch.id,
            name=patch.name,
            description=patch.description,
            category=patch.category,
            category_label=self.registry.category_label(patch.category),
            enabled=patch.enabled,
            file=str(artifact_path(patch, self.patches_dir)),
        )
