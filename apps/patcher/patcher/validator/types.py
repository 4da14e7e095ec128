"""Types for the apply/verify pipeline.

ApplyResult captures one patch attempt; BatchResult aggregates a run.
Neither is persisted: both are produced fresh per command invocation.
"""

from dataclasses import dataclass, field
from enum import StrEnum
from typing import Optional


class ApplyOutcome(StrEnum):
    ALREADY_SATISFIED = "already-satisfied"
    APPLIED = "applied"
    FAILED = "failed"


class RevertOutcome(StrEnum):
    NOT_APPLIED = "not-applied"
    REVERTED = "reverted"
    FAILED = "failed"


@dataclass
class ApplyResult:
    """Outcome of applying a single patch.

    verified_after_failure marks the fallback path: git refused the
    artifact but the verification patterns were found anyway. That covers
    both a harmless already-applied artifact and a pattern too weak to
    catch a real mismatch, so it is reported separately from a plain
    already-satisfied result.
    """

    patch_id: str
    outcome: ApplyOutcome
    message: Optional[str] = None
    verified_after_failure: bool = False

    @property
    def is_success(self) -> bool:
        return self.outcome != ApplyOutcome.FAILED

    def to_dict(self) -> dict:
        return {
            "patch_id": self.patch_id,
            "outcome": self.outcome.value,
            "message": self.message,
            "verified_after_failure": self.verified_after_failure,
            "is_success": self.is_success,
        }


@dataclass
class RevertResult:
    patch_id: str
    outcome: RevertOutcome
    message: Optional[str] = None

    @property
    def is_success(self) -> bool:
        return self.outcome != RevertOutcome.FAILED

    def to_dict(self) -> dict:
        return {
            "patch_id": self.patch_id,
            "outcome": self.outcome.value,
            "message": self.message,
            "is_success": self.is_success,
        }


@dataclass
class BatchResult:
    """All results of one apply run, in the order patches were attempted."""

    order: list[str] = field(default_factory=list)
    results: list[ApplyResult] = field(default_factory=list)

    @property
    def failed(self) -> list[ApplyResult]:
        return [r for r in self.results if r.outcome == ApplyOutcome.FAILED]

    @property
    def is_success(self) -> bool:
        return not self.failed

    @property
    def exit_code(self) -> int:
        return 0 if self.is_success else 1

    def count(self, outcome: ApplyOutcome) -> int:
        return sum(1 for r in self.results if r.outcome == outcome)

    def to_dict(self) -> dict:
        return {
            "order": self.order,
            "results": [r.to_dict() for r in self.results],
            "applied": self.count(ApplyOutcome.APPLIED),
            "already_satisfied": self.count(ApplyOutcome.ALREADY_SATISFIED),
            "failed": len(self.failed),
            "is_success": self.is_success,
        }
