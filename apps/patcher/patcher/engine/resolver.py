"""Dependency ordering for patch sets.

Depth-first expansion with three-state marking. Every node starts
UNVISITED, becomes IN_PROGRESS while its prerequisites are being expanded,
and DONE once it has been emitted. Reaching an IN_PROGRESS node again means
the path on the stack loops back on itself.

The walk keeps its own stack of (id, remaining dependencies) frames rather
than recursing, so arbitrarily long prerequisite chains resolve.
"""

from enum import Enum
from typing import Iterable, Iterator, Mapping, Optional

from patcher.core.errors import DependencyCycleError, UnknownPatchError
from patcher.registry.types import PatchDescriptor


class _Mark(Enum):
    UNVISITED = 0
    IN_PROGRESS = 1
    DONE = 2


def resolve_order(
    patches: Mapping[str, PatchDescriptor],
    requested: Iterable[str],
) -> list[str]:
    """Return an apply order covering `requested` and all prerequisites.

    Every prerequisite precedes its dependents and each id appears once,
    positioned by first encounter. Requested ids are expanded in the order
    given; dependencies in the order declared.

    Raises:
        UnknownPatchError: a requested id or a dependency is not declared.
        DependencyCycleError: the reachable graph contains a cycle. The
            error's `cycle` attribute holds the offending path.
    """
    marks: dict[str, _Mark] = {}
    order: list[str] = []
    stack: list[tuple[str, Iterator[str]]] = []

    def enter(patch_id: str, referrer: Optional[str]) -> None:
        mark = marks.get(patch_id, _Mark.UNVISITED)
        if mark is _Mark.DONE:
            return
        if mark is _Mark.IN_PROGRESS:
            path = [frame_id for frame_id, _ in stack]
            start = path.index(patch_id)
            raise DependencyCycleError(path[start:] + [patch_id])

        patch = patches.get(patch_id)
        if patch is None:
            raise UnknownPatchError(patch_id, referrer=referrer)

        marks[patch_id] = _Mark.IN_PROGRESS
        stack.append((patch_id, iter(patch.dependencies)))

    for root in requested:
        enter(root, None)
        while stack:
            patch_id, remaining = stack[-1]
            dep = next(remaining, None)
            if dep is not None:
                enter(dep, patch_id)
                continue
            stack.pop()
            marks[patch_id] = _Mark.DONE
            order.append(patch_id)

    return order


def dependents_of(
    patches: Mapping[str, PatchDescriptor],
    patch_id: str,
) -> list[str]:
    """Ids of patches that list `patch_id` as a direct dependency."""
    return [p.id for p in patches.values() if patch_id in p.dependencies]
