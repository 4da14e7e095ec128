"""Types for the patch registry.

PatchDescriptor and CategoryDescriptor are immutable: a loaded registry is a
snapshot, and enable/disable produce a new snapshot rather than editing the
old one in place.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Optional


class MatchType(StrEnum):
    """How verification patterns are matched against file content."""

    CONTAINS = "contains"  # plain substring
    GREP = "grep"  # POSIX basic regular expression, per line
    REGEX = "regex"  # Python re.search, multiline

    @classmethod
    def parse(cls, raw: Optional[str]) -> "MatchType":
        return cls((raw or cls.CONTAINS.value).strip().lower())


@dataclass(frozen=True)
class VerificationRule:
    """One file and the patterns it must contain once the patch is in."""

    path: str
    patterns: tuple[str, ...]


@dataclass(frozen=True)
class VerificationSpec:
    """The content contract of a patch.

    A patch is considered present only if every rule is satisfied.
    An empty spec cannot prove anything and is treated as unverifiable.
    """

    match_type: MatchType = MatchType.CONTAINS
    rules: tuple[VerificationRule, ...] = ()

    @property
    def is_empty(self) -> bool:
        return not self.rules


@dataclass(frozen=True)
class PatchDescriptor:
    """Identity and metadata for one patch artifact."""

    id: str
    name: str
    file: str
    description: str = ""
    category: str = ""
    enabled: bool = True
    dependencies: tuple[str, ...] = ()
    verification: VerificationSpec = field(default_factory=VerificationSpec)


@dataclass(frozen=True)
class CategoryDescriptor:
    key: str
    name: str
    description: str = ""


@dataclass(frozen=True)
class ToggleResult:
    """Outcome of an enable/disable request."""

    patch_id: str
    enabled: bool
    changed: bool
    message: str
