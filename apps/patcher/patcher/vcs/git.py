"""Dry-run and apply patch artifacts with `git apply`.

Every call takes the target tree explicitly and runs git with `cwd` set to
it; nothing here depends on the process working directory.

`git apply` is all-or-nothing per artifact: if any hunk fails to apply,
no file is touched. The engine relies on that for atomicity and does not
roll back partial hunks itself.
"""

import logging
import subprocess
from dataclasses import dataclass
from pathlib import Path
from typing import Optional

logger = logging.getLogger(__name__)

# git exit codes
_EXIT_SUCCESS = 0

DEFAULT_TIMEOUT_SECONDS = 120.0


class GitApplyError(Exception):
    """Raised when git cannot apply (or reverse) an artifact."""

    def __init__(self, message: str, stdout: str = "", stderr: str = ""):
        self.stdout = stdout
        self.stderr = stderr
        super().__init__(message)


@dataclass
class GitResult:
    """Captured outcome of one git invocation."""

    returncode: int
    stdout: str = ""
    stderr: str = ""

    @property
    def ok(self) -> bool:
        return self.returncode == _EXIT_SUCCESS

    @property
    def diagnostic(self) -> str:
        """First meaningful line of output, for one-line failure reports."""
        for text in (self.stderr, self.stdout):
            for line in text.splitlines():
                if line.strip():
                    return line.strip()
        return f"git exited with code {self.returncode}"


def check_apply(
    tree: Path,
    artifact: Path,
    reverse: bool = False,
    timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
) -> GitResult:
    """Validate that `artifact` applies cleanly without touching the tree.

    With reverse=True the check succeeds when the artifact's changes are
    already present and could be backed out.
    """
    cmd = ["git", "apply", "--check"]
    if reverse:
        cmd.append("--reverse")
    cmd.append(str(artifact))
    return _run_git(tree, cmd, timeout)


def apply(
    tree: Path,
    artifact: Path,
    reverse: bool = False,
    timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS,
) -> GitResult:
    """Apply (or with reverse=True, back out) `artifact` in `tree`.

    Raises GitApplyError if git rejects the artifact.
    """
    cmd = ["git", "apply"]
    if reverse:
        cmd.append("--reverse")
    cmd.append(str(artifact))

    result = _run_git(tree, cmd, timeout)
    if not result.ok:
        action = "reverse" if reverse else "apply"
        raise GitApplyError(
            f"git {action} failed with exit code {result.returncode}: {result.diagnostic}",
            stdout=result.stdout,
            stderr=result.stderr,
        )

    logger.debug("git apply%s %s succeeded in %s", " --reverse" if reverse else "", artifact, tree)
    return result


def is_work_tree(path: Path, timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS) -> bool:
    """Return True if `path` is inside a git working tree."""
    if not Path(path).is_dir():
        return False
    try:
        result = _run_git(path, ["git", "rev-parse", "--is-inside-work-tree"], timeout)
    except GitApplyError:
        return False
    return result.ok and result.stdout.strip() == "true"


def is_clean(path: Path, timeout: Optional[float] = DEFAULT_TIMEOUT_SECONDS) -> bool:
    """Return True if the working tree has no uncommitted changes."""
    try:
        result = _run_git(path, ["git", "status", "--porcelain"], timeout)
    except GitApplyError:
        return False
    return result.ok and not result.stdout.strip()


def check_git_available() -> bool:
    """Return True if the git binary is accessible."""
    try:
        result = subprocess.run(
            ["git", "--version"],
            capture_output=True,
            text=True,
        )
        return result.returncode == _EXIT_SUCCESS
    except FileNotFoundError:
        return False


def _run_git(tree: Path, cmd: list[str], timeout: Optional[float]) -> GitResult:
    try:
        completed = subprocess.run(
            cmd,
            cwd=str(tree),
            capture_output=True,
            text=True,
            timeout=timeout,
        )
    except FileNotFoundError:
        raise GitApplyError("git binary not found; ensure `git` is installed on the system")
    except subprocess.TimeoutExpired:
        raise GitApplyError(f"{' '.join(cmd[:2])} timed out after {timeout}s")
    except OSError as exc:
        raise GitApplyError(f"Unexpected error running git: {exc}")

    return GitResult(
        returncode=completed.returncode,
        stdout=completed.stdout or "",
        stderr=completed.stderr or "",
    )
