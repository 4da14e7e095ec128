"""Command-line entry point: `oc-patch` / `python -m patcher`.

Commands:
  apply    [--category C] [--all] [--patch ID ...]
  status   [--category C]
  list     [--category C]
  enable   --patch ID
  disable  --patch ID
  revert   --patch ID

Global options include --json, which prints command results as JSON on
stdout instead of the text report.

Exit codes: 0 success, 1 one or more patches failed, 2 configuration
error, 3 environment error.
"""

import argparse
import json
import logging
import sys
from dataclasses import asdict
from pathlib import Path
from typing import Optional, Sequence

from pydantic import ValidationError

from patcher.core.config import Settings, get_settings
from patcher.core.errors import ConfigurationError, PatchEnvironmentError
from patcher.core.logging import configure_structlog
from patcher.engine.orchestrator import PatchOrchestrator, PatchStatus, group_by_category
from patcher.registry.loader import load_registry
from patcher.validator.types import ApplyOutcome, BatchResult, RevertOutcome

logger = logging.getLogger(__name__)

EXIT_OK = 0
EXIT_PATCH_FAILED = 1
EXIT_CONFIGURATION = 2
EXIT_ENVIRONMENT = 3

RULE = "=" * 50


def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="oc-patch",
        description="Apply and manage OpenCode source patches.",
    )
    parser.add_argument("--config", type=Path, help="Patch configuration file (YAML).")
    parser.add_argument("--tree", type=Path, help="Target OpenCode working tree.")
    parser.add_argument("--patches-dir", type=Path, help="Directory holding *.patch files.")
    parser.add_argument("--json-logs", action="store_true", help="Emit logs as JSON lines.")
    parser.add_argument("--json", action="store_true", help="Print command results as JSON.")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable debug logging.")

    sub = parser.add_subparsers(dest="command", metavar="command")

    apply_p = sub.add_parser("apply", help="Apply enabled patches (default).")
    apply_p.add_argument("--category", help="Only patches in this category.")
    apply_p.add_argument(
        "--all",
        dest="include_disabled",
        action="store_true",
        help="Include disabled patches.",
    )
    apply_p.add_argument(
        "--patch",
        dest="patches",
        action="append",
        default=[],
        metavar="ID",
        help="Apply this patch even if disabled (repeatable).",
    )

    for name, help_text in (
        ("status", "Show enabled and applied state per patch."),
        ("list", "List all patches grouped by category."),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--category", help="Only patches in this category.")

    for name, help_text in (
        ("enable", "Enable a patch."),
        ("disable", "Disable a patch."),
        ("revert", "Back out an applied patch."),
    ):
        p = sub.add_parser(name, help=help_text)
        p.add_argument("--patch", dest="patch", required=True, metavar="ID")

    return parser


def _resolve_settings(args: argparse.Namespace, settings: Settings) -> tuple[Path, Path, Path]:
    config = args.config or settings.patcher_config_file
    tree = args.tree or settings.opencode_dir
    patches_dir = args.patches_dir or settings.patcher_patches_dir
    return Path(config), Path(tree), Path(patches_dir)


def main(argv: Optional[Sequence[str]] = None, settings: Optional[Settings] = None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)
    command = args.command or "apply"
    if args.command is None:
        # Defaults the apply subparser would have set.
        args.category = None
        args.include_disabled = False
        args.patches = []

    if settings is None:
        try:
            settings = get_settings()
        except ValidationError as exc:
            print(f"Configuration error: {exc}", file=sys.stderr)
            return EXIT_CONFIGURATION
    configure_structlog(debug=settings.debug and not args.json_logs, verbose=args.verbose)

    config_path, tree_root, patches_dir = _resolve_settings(args, settings)

    try:
        registry = load_registry(config_path)
        orchestrator = PatchOrchestrator(
            registry,
            tree_root=tree_root,
            patches_dir=patches_dir,
            git_timeout=settings.patcher_git_timeout_seconds,
        )
        return _dispatch(command, args, orchestrator)
    except ConfigurationError as exc:
        print(f"Configuration error: {exc}", file=sys.stderr)
        return EXIT_CONFIGURATION
    except PatchEnvironmentError as exc:
        print(f"Environment error: {exc}", file=sys.stderr)
        return EXIT_ENVIRONMENT


def _dispatch(command: str, args: argparse.Namespace, orchestrator: PatchOrchestrator) -> int:
    if command == "apply":
        batch = orchestrator.apply(
            patch_ids=args.patches,
            category=args.category,
            include_disabled=args.include_disabled,
        )
        if args.json:
            _print_json(batch.to_dict())
            return batch.exit_code
        return _report_batch(batch)

    if command in ("status", "list"):
        if command == "status":
            title, rows = "OpenCode Patches Status", orchestrator.status(args.category)
        else:
            title, rows = "OpenCode Patches", orchestrator.list(args.category)
        if args.json:
            _print_json([row.to_dict() for row in rows])
        else:
            _print_report(title, rows, show_applied=command == "status")
        return EXIT_OK

    if command in ("enable", "disable"):
        toggle = getattr(orchestrator, command)
        result = toggle(args.patch)
        if args.json:
            _print_json(asdict(result))
        else:
            print(result.message)
        return EXIT_OK

    if command == "revert":
        result = orchestrator.revert(args.patch)
        if args.json:
            _print_json(result.to_dict())
        elif result.outcome == RevertOutcome.FAILED:
            print(f"{result.patch_id}: revert failed: {result.message}", file=sys.stderr)
        elif result.outcome == RevertOutcome.NOT_APPLIED:
            print(f"{result.patch_id}: not applied")
        else:
            print(f"{result.patch_id}: reverted")
        return EXIT_OK if result.is_success else EXIT_PATCH_FAILED

    raise ValueError(f"Unknown command: {command}")


def _print_json(payload) -> None:
    print(json.dumps(payload, indent=2))


def _report_batch(batch: BatchResult) -> int:
    for result in batch.failed:
        print(f"{result.patch_id}: {result.message}", file=sys.stderr)

    if batch.failed:
        print(f"{len(batch.failed)} patch(es) failed to apply", file=sys.stderr)
        return EXIT_PATCH_FAILED

    flagged = [r.patch_id for r in batch.results if r.verified_after_failure]
    summary = (
        f"{batch.count(ApplyOutcome.APPLIED)} applied, "
        f"{batch.count(ApplyOutcome.ALREADY_SATISFIED)} already present"
    )
    if flagged:
        summary += f" ({len(flagged)} matched verification despite dry-run failure: {', '.join(flagged)})"
    print(summary)
    return EXIT_OK


def _print_report(title: str, rows: list[PatchStatus], show_applied: bool) -> None:
    print(title)
    print(RULE)
    for label, group in group_by_category(rows).items():
        print(f"\n[{label}]")
        for row in group:
            enabled = "enabled" if row.enabled else "disabled"
            line = f"  {row.patch_id} ({enabled})"
            if show_applied:
                line += " - applied" if row.applied else " - not applied"
            print(line)
            if row.description:
                print(f"      {row.description}")
    print("\n" + RULE)


if __name__ == "__main__":
    raise SystemExit(main())
