"""Error taxonomy for the patch engine.

ConfigurationError and PatchEnvironmentError are fatal: they are raised
before any mutation of the target tree or the configuration document.
Per-patch application failures are not exceptions; they are reported as
ApplyResult objects with outcome "failed".
"""

from typing import Iterable, Optional, Sequence


class PatcherError(Exception):
    """Base class for all fatal patcher errors."""


class ConfigurationError(PatcherError):
    """Raised when the patch declarations are inconsistent.

    Covers unknown ids (in a request, an enable/disable, or a dependency
    list), malformed records, undeclared categories, and dependency cycles.
    """


class UnknownPatchError(ConfigurationError):
    """Raised when a patch id is referenced but never declared."""

    def __init__(self, patch_id: str, referrer: Optional[str] = None):
        self.patch_id = patch_id
        self.referrer = referrer
        if referrer:
            message = f"Patch '{referrer}' depends on unknown patch '{patch_id}'"
        else:
            message = f"Unknown patch '{patch_id}'"
        super().__init__(message)


class DependencyCycleError(ConfigurationError):
    """Raised when patch dependencies form a cycle.

    `cycle` is the offending path with the first id repeated at the end,
    e.g. ["a", "b", "a"].
    """

    def __init__(self, cycle: Sequence[str]):
        self.cycle = list(cycle)
        super().__init__(
            f"Dependency cycle detected at '{self.cycle[0]}': "
            + " -> ".join(self.cycle)
        )


class DisableRefusedError(ConfigurationError):
    """Raised when disabling a patch would strand enabled dependents."""

    def __init__(self, patch_id: str, dependents: Iterable[str]):
        self.patch_id = patch_id
        self.dependents = list(dependents)
        super().__init__(
            f"Cannot disable '{patch_id}': required by enabled patch(es) "
            + ", ".join(self.dependents)
        )


class PatchEnvironmentError(PatcherError):
    """Raised when the environment cannot support the requested operation.

    Target tree missing or not a git working tree, patch artifact missing,
    configuration document missing or unparsable.
    """
