"""Shared fixtures for the patcher test suite.

`git_tree` is a real git working tree in a temp directory; tests that use it
are skipped when git is not installed. Patch artifacts are produced with
difflib in the `a/` `b/` prefix format that `git apply` expects.
"""

import difflib
import logging
import shutil
import subprocess
from pathlib import Path
from typing import Callable, Optional

import pytest
import yaml



def make_diff(original: str, modified: str, filename: str) -> str:
    lines = difflib.unified_diff(
        original.splitlines(keepends=True),
        modified.splitlines(keepends=True),
        fromfile=f"a/{filename}",
        tofile=f"b/{filename}",
        lineterm="\n",
    )
    return "".join(lines)


@pytest.fixture
def git_tree(tmp_path: Path) -> Path:
    if shutil.which("git") is None:
        pytest.skip("git not installed")
    tree = tmp_path / "opencode"
    tree.mkdir()
    subprocess.run(["git", "init", "-q"], cwd=tree, check=True, capture_output=True)
    return tree


@pytest.fixture
def patches_dir(tmp_path: Path) -> Path:
    path = tmp_path / "patches"
    path.mkdir()
    return path


@pytest.fixture
def write_patch(patches_dir: Path) -> Callable[..., Path]:
    """Write a .patch artifact turning `original` into `modified` for `filename`."""

    def _write(name: str, filename: str, original: str, modified: str) -> Path:
        artifact = patches_dir / f"{name}.patch"
        artifact.write_text(make_diff(original, modified, filename))
        return artifact

    return _write


@pytest.fixture
def write_config(tmp_path: Path) -> Callable[..., Path]:
    """Write a patches.config.yaml from a list of patch records."""

    def _write(patches: list[dict], categories: Optional[dict] = None) -> Path:
        document: dict = {}
        if categories is not None:
            document["categories"] = categories
        document["patches"] = patches
        path = tmp_path / "patches.config.yaml"
        path.write_text(yaml.safe_dump(document, sort_keys=False))
        return path

    return _write


def patch_record(
    patch_id: str,
    deps: Optional[list[str]] = None,
    enabled: bool = True,
    category: str = "core",
    files: Optional[list[dict]] = None,
    check_type: str = "contains",
) -> dict:
    record = {
        "id": patch_id,
        "name": patch_id.replace("-", " ").title(),
        "file": f"{patch_id}.patch",
        "description": f"{patch_id} patch",
        "category": category,
        "enabled": enabled,
        "dependencies": deps or [],
    }
    if files is not None:
        record["checkApplied"] = {"type": check_type, "files": files}
    return record


@pytest.fixture
def record() -> Callable[..., dict]:
    return patch_record


@pytest.fixture(autouse=True)
def restore_root_logging():
    """configure_structlog() replaces root handlers; undo that after each test."""
    root = logging.getLogger()
    handlers, level = list(root.handlers), root.level
    yield
    root.handlers = handlers
    root.setLevel(level)
