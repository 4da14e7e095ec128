"""Tests for the apply/status/list/enable/disable workflow."""

import hashlib
from pathlib import Path
from unittest.mock import patch

import pytest
import yaml

from patcher.core.errors import (
    ConfigurationError,
    DependencyCycleError,
    DisableRefusedError,
    PatchEnvironmentError,
    UnknownPatchError,
)
from patcher.engine.orchestrator import PatchOrchestrator, group_by_category
from patcher.registry.loader import load_registry
from patcher.validator.types import ApplyOutcome, RevertOutcome

CATEGORIES = {
    "core": {"name": "Core", "description": "Behaviour fixes"},
    "ui": {"name": "UI", "description": "TUI tweaks"},
}

ORIGINAL = "export const value = 1\n"


def _patched(pid: str) -> str:
    return f"export const value = 1\n// patched by {pid}\n"


def _files(pid: str) -> list[dict]:
    return [{"path": f"src/{pid}.ts", "patterns": [f"patched by {pid}"]}]


@pytest.fixture
def scenario(git_tree, patches_dir, write_config, write_patch, record):
    """Registry {a, b (deps a), c (deps a, disabled), d (ui)} over a real git tree."""
    for pid in ("a", "b", "c", "d"):
        target = git_tree / "src" / f"{pid}.ts"
        target.parent.mkdir(exist_ok=True)
        target.write_text(ORIGINAL)
        write_patch(pid, f"src/{pid}.ts", ORIGINAL, _patched(pid))

    config = write_config(
        [
            record("a", files=_files("a")),
            record("b", deps=["a"], files=_files("b")),
            record("c", deps=["a"], enabled=False, files=_files("c")),
            record("d", category="ui", files=_files("d")),
        ],
        categories=CATEGORIES,
    )
    return config


def _orchestrator(config: Path, tree: Path, patches_dir: Path) -> PatchOrchestrator:
    return PatchOrchestrator(load_registry(config), tree_root=tree, patches_dir=patches_dir)


def _digest_tree(*paths: Path) -> dict[str, str]:
    digests = {}
    for root in paths:
        files = [root] if root.is_file() else sorted(p for p in root.rglob("*") if p.is_file())
        for f in files:
            digests[str(f)] = hashlib.sha256(f.read_bytes()).hexdigest()
    return digests


class TestPlan:
    def test_abc_registry(self, git_tree, patches_dir, write_config, record):
        config = write_config(
            [record("A"), record("B", deps=["A"]), record("C", deps=["A"], enabled=False)],
            categories=CATEGORIES,
        )
        orch = _orchestrator(config, git_tree, patches_dir)
        assert orch.plan() == ["A", "B"]
        assert orch.plan(include_disabled=True) == ["A", "B", "C"]

    def test_default_selects_enabled_only(self, scenario, git_tree, patches_dir):
        orch = _orchestrator(scenario, git_tree, patches_dir)
        assert orch.plan() == ["a", "b", "d"]

    def test_all_includes_disabled_in_dependency_order(self, scenario, git_tree, patches_dir):
        orch = _orchestrator(scenario, git_tree, patches_dir)
        assert orch.plan(include_disabled=True) == ["a", "b", "c", "d"]

    def test_category_filter_pulls_prerequisites_from_other_categories(
        self, git_tree, patches_dir, write_config, record
    ):
        config = write_config(
            [record("base", enabled=False), record("footer", deps=["base"], category="ui")],
            categories=CATEGORIES,
        )
        orch = _orchestrator(config, git_tree, patches_dir)
        assert orch.plan(category="ui") == ["base", "footer"]
        assert orch.plan(category="core") == []
        assert orch.plan(category="core", include_disabled=True) == ["base"]

    def test_explicit_patch_is_forced_even_if_disabled(self, scenario, git_tree, patches_dir):
        orch = _orchestrator(scenario, git_tree, patches_dir)
        assert orch.plan(patch_ids=["c"]) == ["a", "c"]

    def test_explicit_patch_unions_with_category(self, scenario, git_tree, patches_dir):
        orch = _orchestrator(scenario, git_tree, patches_dir)
        assert orch.plan(patch_ids=["c"], category="ui") == ["a", "c", "d"]

    def test_unknown_patch_id(self, scenario, git_tree, patches_dir):
        with pytest.raises(UnknownPatchError):
            _orchestrator(scenario, git_tree, patches_dir).plan(patch_ids=["ghost"])

    def test_unknown_category(self, scenario, git_tree, patches_dir):
        with pytest.raises(ConfigurationError, match="Unknown category 'nope'"):
            _orchestrator(scenario, git_tree, patches_dir).plan(category="nope")


class TestApply:
    def test_applies_enabled_patches_in_order(self, scenario, git_tree, patches_dir):
        batch = _orchestrator(scenario, git_tree, patches_dir).apply()

        assert batch.order == ["a", "b", "d"]
        assert [r.outcome for r in batch.results] == [ApplyOutcome.APPLIED] * 3
        assert batch.exit_code == 0
        assert (git_tree / "src" / "c.ts").read_text() == ORIGINAL
        assert (git_tree / "src" / "b.ts").read_text() == _patched("b")

    def test_second_run_is_all_already_satisfied(self, scenario, git_tree, patches_dir):
        _orchestrator(scenario, git_tree, patches_dir).apply()
        before = _digest_tree(git_tree / "src")

        batch = _orchestrator(scenario, git_tree, patches_dir).apply()

        assert {r.outcome for r in batch.results} == {ApplyOutcome.ALREADY_SATISFIED}
        assert _digest_tree(git_tree / "src") == before

    def test_failure_does_not_stop_independent_patches(self, scenario, git_tree, patches_dir):
        (git_tree / "src" / "a.ts").write_text("export const value = 2\n")

        batch = _orchestrator(scenario, git_tree, patches_dir).apply()
        outcomes = {r.patch_id: r for r in batch.results}

        assert outcomes["a"].outcome == ApplyOutcome.FAILED
        assert outcomes["b"].outcome == ApplyOutcome.FAILED
        assert "prerequisite a failed" in outcomes["b"].message
        assert outcomes["d"].outcome == ApplyOutcome.APPLIED
        assert batch.exit_code == 1
        assert (git_tree / "src" / "b.ts").read_text() == ORIGINAL

    def test_dependent_already_present_is_not_failed_by_prerequisite(
        self, scenario, git_tree, patches_dir
    ):
        (git_tree / "src" / "a.ts").write_text("export const value = 2\n")
        (git_tree / "src" / "b.ts").write_text(_patched("b"))

        batch = _orchestrator(scenario, git_tree, patches_dir).apply()
        outcomes = {r.patch_id: r.outcome for r in batch.results}

        assert outcomes["a"] == ApplyOutcome.FAILED
        assert outcomes["b"] == ApplyOutcome.ALREADY_SATISFIED
        assert [r.patch_id for r in batch.failed] == ["a"]

    def test_missing_artifact_aborts_before_any_change(self, scenario, git_tree, patches_dir):
        (patches_dir / "d.patch").unlink()
        before = _digest_tree(git_tree / "src")

        with pytest.raises(PatchEnvironmentError, match="Patch file not found for 'd'"):
            _orchestrator(scenario, git_tree, patches_dir).apply()
        assert _digest_tree(git_tree / "src") == before

    def test_tree_must_be_git_work_tree(self, scenario, tmp_path, patches_dir):
        plain = tmp_path / "plain"
        plain.mkdir()
        with pytest.raises(PatchEnvironmentError, match="not a git working tree"):
            _orchestrator(scenario, plain, patches_dir).apply()

    def test_git_binary_missing(self, scenario, git_tree, patches_dir):
        with patch("patcher.engine.orchestrator.git.check_git_available", return_value=False):
            with pytest.raises(PatchEnvironmentError, match="git binary not found"):
                _orchestrator(scenario, git_tree, patches_dir).apply()

    def test_missing_tree(self, scenario, tmp_path, patches_dir):
        with pytest.raises(PatchEnvironmentError, match="Target tree not found"):
            _orchestrator(scenario, tmp_path / "absent", patches_dir).apply()

    def test_cycle_aborts_before_any_change(self, git_tree, patches_dir, write_config, write_patch, record):
        (git_tree / "x.ts").write_text(ORIGINAL)
        write_patch("x", "x.ts", ORIGINAL, _patched("x"))
        config = write_config(
            [record("x", deps=["y"]), record("y", deps=["x"])],
            categories=CATEGORIES,
        )
        with pytest.raises(DependencyCycleError):
            _orchestrator(config, git_tree, patches_dir).apply()
        assert (git_tree / "x.ts").read_text() == ORIGINAL

    def test_nothing_selected_is_noop(self, git_tree, patches_dir, write_config, record):
        config = write_config([record("a", enabled=False)], categories=CATEGORIES)
        batch = _orchestrator(config, git_tree, patches_dir).apply()
        assert batch.order == []
        assert batch.exit_code == 0

    def test_preexisting_content_short_circuits(self, scenario, git_tree, patches_dir):
        (git_tree / "src" / "a.ts").write_text(_patched("a"))
        (patches_dir / "a.patch").write_text("not a diff at all\n")

        batch = _orchestrator(scenario, git_tree, patches_dir).apply(patch_ids=["a"])

        assert batch.results[0].outcome == ApplyOutcome.ALREADY_SATISFIED
        assert batch.results[0].verified_after_failure is False


class TestReadOnlyReports:
    def test_status_reports_live_applied_state(self, scenario, git_tree, patches_dir):
        orch = _orchestrator(scenario, git_tree, patches_dir)
        orch.apply(patch_ids=["a"])

        rows = {r.patch_id: r for r in orch.status()}
        assert rows["a"].applied is True
        assert rows["b"].applied is False
        assert rows["c"].enabled is False

    def test_status_and_list_do_not_mutate(self, scenario, git_tree, patches_dir):
        before = _digest_tree(scenario, git_tree / "src", patches_dir)
        orch = _orchestrator(scenario, git_tree, patches_dir)

        orch.status()
        orch.status(category="ui")
        orch.list()
        orch.list(category="core")

        assert _digest_tree(scenario, git_tree / "src", patches_dir) == before

    def test_list_groups_by_category(self, scenario, git_tree, patches_dir):
        rows = _orchestrator(scenario, git_tree, patches_dir).list()
        groups = group_by_category(rows)

        assert list(groups) == ["Core", "UI"]
        assert [r.patch_id for r in groups["Core"]] == ["a", "b", "c"]
        assert all(r.applied is None for r in rows)

    def test_list_does_not_need_a_tree(self, scenario, tmp_path, patches_dir):
        rows = _orchestrator(scenario, tmp_path / "absent", patches_dir).list(category="ui")
        assert [r.patch_id for r in rows] == ["d"]

    def test_status_requires_tree(self, scenario, tmp_path, patches_dir):
        with pytest.raises(PatchEnvironmentError):
            _orchestrator(scenario, tmp_path / "absent", patches_dir).status()


class TestToggle:
    def test_enable_persists(self, scenario, git_tree, patches_dir):
        result = _orchestrator(scenario, git_tree, patches_dir).enable("c")

        assert result.changed is True
        saved = yaml.safe_load(scenario.read_text())
        assert [p["enabled"] for p in saved["patches"]] == [True, True, True, True]

    def test_noop_does_not_rewrite_document(self, scenario, git_tree, patches_dir):
        before = _digest_tree(scenario)
        result = _orchestrator(scenario, git_tree, patches_dir).enable("a")
        assert result.changed is False
        assert _digest_tree(scenario) == before

    def test_disable_refused_for_enabled_dependency(self, scenario, git_tree, patches_dir):
        before = _digest_tree(scenario)
        with pytest.raises(DisableRefusedError, match="required by enabled patch"):
            _orchestrator(scenario, git_tree, patches_dir).disable("a")
        assert _digest_tree(scenario) == before

    def test_disable_then_plan_excludes(self, scenario, git_tree, patches_dir):
        orch = _orchestrator(scenario, git_tree, patches_dir)
        orch.disable("d")
        assert orch.plan() == ["a", "b"]
        assert load_registry(scenario).get("d").enabled is False

    def test_unknown_id_does_not_save(self, scenario, git_tree, patches_dir):
        before = _digest_tree(scenario)
        with pytest.raises(UnknownPatchError):
            _orchestrator(scenario, git_tree, patches_dir).enable("ghost")
        assert _digest_tree(scenario) == before


class TestRevert:
    def test_revert_applied_patch(self, scenario, git_tree, patches_dir):
        orch = _orchestrator(scenario, git_tree, patches_dir)
        orch.apply(patch_ids=["d"])

        result = orch.revert("d")

        assert result.outcome == RevertOutcome.REVERTED
        assert (git_tree / "src" / "d.ts").read_text() == ORIGINAL

    def test_revert_warns_about_applied_dependents(self, scenario, git_tree, patches_dir, caplog):
        orch = _orchestrator(scenario, git_tree, patches_dir)
        orch.apply()

        result = orch.revert("a")

        assert result.outcome == RevertOutcome.REVERTED
        assert "dependent patch(es) b are applied" in caplog.text
