"""Load and persist the patch declarations document.

The document is YAML with two top-level collections:

    categories:  mapping of category key -> {name, description}
    patches:     list of patch records (id, name, file, description,
                 category, enabled, dependencies, checkApplied)

Persistence follows a load -> compute -> replace cycle: the whole document
is parsed into memory, toggles produce a new in-memory snapshot, and
save_registry() serializes the snapshot to a temp file beside the original
and swaps it in with os.replace(). Only `enabled` values are ever changed;
every other field and the key order of each record are written back as
loaded. YAML comments are not part of the document model and are dropped.
"""

import copy
import logging
import os
import re
import tempfile
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any, Iterator, Optional

import yaml

from patcher.core.errors import (
    ConfigurationError,
    DisableRefusedError,
    PatchEnvironmentError,
    UnknownPatchError,
)
from patcher.registry.patterns import compile_pattern
from patcher.registry.types import (
    CategoryDescriptor,
    MatchType,
    PatchDescriptor,
    ToggleResult,
    VerificationRule,
    VerificationSpec,
)

logger = logging.getLogger(__name__)

PATCH_SUFFIX = ".patch"


@dataclass(frozen=True)
class PatchRegistry:
    """Immutable snapshot of the declarations document.

    `patches` keeps declaration order, which is also the order requested
    ids are fed to the resolver. `document` is the raw parsed YAML kept
    for round-tripping on save.
    """

    path: Path
    patches: tuple[PatchDescriptor, ...] = ()
    categories: dict[str, CategoryDescriptor] = field(default_factory=dict)
    document: dict = field(default_factory=dict, repr=False)

    def __iter__(self) -> Iterator[PatchDescriptor]:
        return iter(self.patches)

    def __len__(self) -> int:
        return len(self.patches)

    @property
    def by_id(self) -> dict[str, PatchDescriptor]:
        return {p.id: p for p in self.patches}

    @property
    def ids(self) -> list[str]:
        return [p.id for p in self.patches]

    @property
    def enabled_ids(self) -> list[str]:
        return [p.id for p in self.patches if p.enabled]

    def get(self, patch_id: str) -> PatchDescriptor:
        for patch in self.patches:
            if patch.id == patch_id:
                return patch
        raise UnknownPatchError(patch_id)

    def category_label(self, key: str) -> str:
        category = self.categories.get(key)
        if category is None:
            return key or "uncategorized"
        return category.name

    def enabled_dependents(self, patch_id: str) -> list[str]:
        """Enabled patches that list `patch_id` as a direct dependency."""
        return [
            p.id
            for p in self.patches
            if p.enabled and patch_id in p.dependencies
        ]

    def enable(self, patch_id: str) -> tuple["PatchRegistry", ToggleResult]:
        """Return a snapshot with `patch_id` enabled.

        Enabling never checks dependencies: a disabled prerequisite is
        still pulled in by the resolver when the dependent is applied.
        """
        return self._set_enabled(patch_id, True)

    def disable(self, patch_id: str) -> tuple["PatchRegistry", ToggleResult]:
        """Return a snapshot with `patch_id` disabled.

        Raises DisableRefusedError if any enabled patch depends on it.
        """
        patch = self.get(patch_id)
        if patch.enabled:
            dependents = self.enabled_dependents(patch_id)
            if dependents:
                raise DisableRefusedError(patch_id, dependents)
        return self._set_enabled(patch_id, False)

    def _set_enabled(
        self, patch_id: str, enabled: bool
    ) -> tuple["PatchRegistry", ToggleResult]:
        patch = self.get(patch_id)
        state = "enabled" if enabled else "disabled"

        if patch.enabled == enabled:
            return self, ToggleResult(
                patch_id=patch_id,
                enabled=enabled,
                changed=False,
                message=f"Patch '{patch_id}' is already {state}",
            )

        document = copy.deepcopy(self.document)
        for record in document.get("patches") or []:
            if isinstance(record, dict) and _record_id(record) == patch_id:
                record["enabled"] = enabled
                break

        patches = tuple(
            replace(p, enabled=enabled) if p.id == patch_id else p
            for p in self.patches
        )
        updated = replace(self, patches=patches, document=document)
        logger.info("Patch %s %s", patch_id, state)
        return updated, ToggleResult(
            patch_id=patch_id,
            enabled=enabled,
            changed=True,
            message=f"Patch '{patch_id}' {state}",
        )


# ---------------------------------------------------------------------------
# Loading
# ---------------------------------------------------------------------------


def load_registry(config_path: Path) -> PatchRegistry:
    """Parse the declarations document at `config_path`.

    Raises:
        PatchEnvironmentError: file missing, unreadable, or not valid YAML.
        ConfigurationError: records are malformed or inconsistent.
    """
    config_path = Path(config_path)
    if not config_path.is_file():
        raise PatchEnvironmentError(
            f"Patch configuration not found: {config_path}"
        )

    try:
        raw_text = config_path.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        raise PatchEnvironmentError(
            f"Cannot read patch configuration {config_path}: {exc}"
        ) from exc

    try:
        document = yaml.safe_load(raw_text)
    except yaml.YAMLError as exc:
        raise PatchEnvironmentError(
            f"Cannot parse patch configuration {config_path}: {exc}"
        ) from exc

    if document is None:
        document = {}
    if not isinstance(document, dict):
        raise PatchEnvironmentError(
            f"Patch configuration {config_path} must be a mapping at the top level"
        )

    categories = _parse_categories(document.get("categories"))
    patches = _parse_patches(document.get("patches"), categories)

    logger.debug(
        "Loaded %d patch(es) in %d categor(ies) from %s",
        len(patches),
        len(categories),
        config_path,
    )
    return PatchRegistry(
        path=config_path,
        patches=patches,
        categories=categories,
        document=document,
    )


def _parse_categories(raw: Any) -> dict[str, CategoryDescriptor]:
    if raw is None:
        return {}
    if not isinstance(raw, dict):
        raise ConfigurationError("'categories' must be a mapping of key -> details")

    categories: dict[str, CategoryDescriptor] = {}
    for key, details in raw.items():
        key = str(key)
        if details is None:
            details = {}
        if isinstance(details, str):
            details = {"name": details}
        if not isinstance(details, dict):
            raise ConfigurationError(f"Category '{key}' must be a mapping")
        categories[key] = CategoryDescriptor(
            key=key,
            name=str(details.get("name") or key),
            description=str(details.get("description") or ""),
        )
    return categories


def _parse_patches(
    raw: Any, categories: dict[str, CategoryDescriptor]
) -> tuple[PatchDescriptor, ...]:
    if raw is None:
        return ()
    if not isinstance(raw, list):
        raise ConfigurationError("'patches' must be a list of patch records")

    patches: list[PatchDescriptor] = []
    seen: set[str] = set()
    for index, record in enumerate(raw):
        patch = _parse_patch(record, index)
        if patch.id in seen:
            raise ConfigurationError(f"Duplicate patch id '{patch.id}'")
        if categories and patch.category and patch.category not in categories:
            raise ConfigurationError(
                f"Patch '{patch.id}' uses undeclared category '{patch.category}'"
            )
        seen.add(patch.id)
        patches.append(patch)

    for patch in patches:
        for dep in patch.dependencies:
            if dep not in seen:
                raise UnknownPatchError(dep, referrer=patch.id)

    return tuple(patches)


def _record_id(record: dict) -> str:
    """Stripped id of a raw patch record, or "" if missing or not a string."""
    raw = record.get("id")
    return raw.strip() if isinstance(raw, str) else ""


def _parse_patch(record: Any, index: int) -> PatchDescriptor:
    if not isinstance(record, dict):
        raise ConfigurationError(f"Patch record #{index} must be a mapping")

    patch_id = _record_id(record)
    if not patch_id:
        raise ConfigurationError(f"Patch record #{index} has no 'id'")

    enabled = record.get("enabled", True)
    if not isinstance(enabled, bool):
        raise ConfigurationError(
            f"Patch '{patch_id}': 'enabled' must be true or false"
        )

    deps_raw = record.get("dependencies") or []
    if not isinstance(deps_raw, list) or not all(isinstance(d, str) for d in deps_raw):
        raise ConfigurationError(
            f"Patch '{patch_id}': 'dependencies' must be a list of ids"
        )
    # Ordered set: keep the first occurrence of each id.
    dependencies = tuple(dict.fromkeys(d.strip() for d in deps_raw))
    if patch_id in dependencies:
        raise ConfigurationError(f"Patch '{patch_id}' depends on itself")

    return PatchDescriptor(
        id=patch_id,
        name=str(record.get("name") or patch_id),
        file=str(record.get("file") or f"{patch_id}{PATCH_SUFFIX}"),
        description=str(record.get("description") or ""),
        category=str(record.get("category") or ""),
        enabled=enabled,
        dependencies=dependencies,
        verification=_parse_verification(patch_id, record.get("checkApplied")),
    )


def _parse_verification(patch_id: str, raw: Any) -> VerificationSpec:
    if raw is None:
        return VerificationSpec()
    if not isinstance(raw, dict):
        raise ConfigurationError(f"Patch '{patch_id}': 'checkApplied' must be a mapping")

    try:
        match_type = MatchType.parse(raw.get("type"))
    except ValueError:
        raise ConfigurationError(
            f"Patch '{patch_id}': unknown checkApplied type '{raw.get('type')}'"
        )

    files = raw.get("files") or []
    if not isinstance(files, list):
        raise ConfigurationError(f"Patch '{patch_id}': 'checkApplied.files' must be a list")

    rules: list[VerificationRule] = []
    for entry in files:
        if not isinstance(entry, dict) or not entry.get("path"):
            raise ConfigurationError(
                f"Patch '{patch_id}': each checkApplied entry needs a 'path'"
            )
        patterns = entry.get("patterns") or []
        if isinstance(patterns, str):
            patterns = [patterns]
        if not isinstance(patterns, list) or not patterns:
            raise ConfigurationError(
                f"Patch '{patch_id}': checkApplied entry for {entry['path']} has no patterns"
            )
        patterns = [str(p) for p in patterns]
        for pattern in patterns:
            try:
                compile_pattern(pattern, match_type)
            except re.error as exc:
                raise ConfigurationError(
                    f"Patch '{patch_id}': invalid pattern {pattern!r}: {exc}"
                )
        rules.append(VerificationRule(path=str(entry["path"]), patterns=tuple(patterns)))

    return VerificationSpec(match_type=match_type, rules=tuple(rules))


# ---------------------------------------------------------------------------
# Saving
# ---------------------------------------------------------------------------


def save_registry(registry: PatchRegistry, path: Optional[Path] = None) -> Path:
    """Write the registry document back atomically.

    The serialized document replaces the target in a single os.replace()
    so an interrupted write never leaves a truncated file behind.
    """
    target = Path(path or registry.path)
    text = yaml.safe_dump(
        registry.document,
        sort_keys=False,
        default_flow_style=False,
        allow_unicode=True,
    )

    try:
        fd, tmp_name = tempfile.mkstemp(
            prefix=f".{target.name}.", suffix=".tmp", dir=str(target.parent)
        )
    except OSError as exc:
        raise PatchEnvironmentError(
            f"Cannot write patch configuration {target}: {exc}"
        ) from exc

    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            handle.write(text)
        if target.exists():
            os.chmod(tmp_name, target.stat().st_mode & 0o777)
        os.replace(tmp_name, target)
    except OSError as exc:
        Path(tmp_name).unlink(missing_ok=True)
        raise PatchEnvironmentError(
            f"Cannot write patch configuration {target}: {exc}"
        ) from exc

    logger.debug("Saved patch configuration to %s", target)
    return target
