"""Patch declarations: loading, toggling, and persisting."""

from patcher.registry.loader import PatchRegistry, load_registry, save_registry
from patcher.registry.types import (
    CategoryDescriptor,
    MatchType,
    PatchDescriptor,
    ToggleResult,
    VerificationRule,
    VerificationSpec,
)

__all__ = [
    "PatchRegistry",
    "load_registry",
    "save_registry",
    "CategoryDescriptor",
    "MatchType",
    "PatchDescriptor",
    "ToggleResult",
    "VerificationRule",
    "VerificationSpec",
]
