"""Dependency resolution and the apply/status workflow."""

from patcher.engine.orchestrator import PatchOrchestrator, PatchStatus, group_by_category
from patcher.engine.resolver import dependents_of, resolve_order

__all__ = [
    "PatchOrchestrator",
    "PatchStatus",
    "group_by_category",
    "dependents_of",
    "resolve_order",
]
