"""Content checks that decide whether a patch's effect is present.

Read-only: files are only opened for reading. A missing file means "not
satisfied", never an error. Unreadable files are logged and likewise
reported as not satisfied.
"""

import logging
from pathlib import Path
from typing import Optional

from patcher.registry.patterns import compile_pattern
from patcher.registry.types import MatchType, VerificationRule, VerificationSpec

logger = logging.getLogger(__name__)


def resolve_under(tree_root: Path, rel_path: str) -> Optional[Path]:
    """Resolve `rel_path` inside `tree_root`, or None if it escapes it."""
    root = Path(tree_root).resolve()
    candidate = (root / rel_path).resolve()
    if candidate != root and root not in candidate.parents:
        return None
    return candidate


def pattern_matches(content: str, pattern: str, match_type: MatchType) -> bool:
    compiled = compile_pattern(pattern, match_type)
    if compiled is None:
        return pattern in content
    return compiled.search(content) is not None


def check_rule(
    tree_root: Path,
    rule: VerificationRule,
    match_type: MatchType = MatchType.CONTAINS,
) -> bool:
    """Return True if the rule's file exists and contains every pattern."""
    target = resolve_under(tree_root, rule.path)
    if target is None:
        logger.warning("Verification path %s escapes target tree %s", rule.path, tree_root)
        return False

    if not target.is_file():
        return False

    try:
        content = target.read_text(encoding="utf-8")
    except (OSError, UnicodeDecodeError) as exc:
        logger.warning("Cannot read %s for verification: %s", target, exc)
        return False

    for pattern in rule.patterns:
        if not pattern_matches(content, pattern, match_type):
            logger.debug("Pattern %r not found in %s", pattern, rule.path)
            return False
    return True


def is_satisfied(tree_root: Path, spec: VerificationSpec) -> bool:
    """Return True only if every rule of `spec` is satisfied.

    An empty spec proves nothing and returns False.
    """
    if spec.is_empty:
        return False
    return all(check_rule(tree_root, rule, spec.match_type) for rule in spec.rules)
