"""CLI entry point for discovering and running k6 tests."""

import argparse
import asyncio
import contextlib
import dataclasses
import json
import logging
import signal
import sys
from collections.abc import Sequence
from pathlib import Path
from typing import Any

from k6_test_explorer.config_loader import find_config, load_config
from k6_test_explorer.coordinator import LeafOutcome, RunCoordinator, RunRequest
from k6_test_explorer.engine import EngineRunner
from k6_test_explorer.models.config import ExplorerConfig
from k6_test_explorer.models.result import EngineStatus
from k6_test_explorer.models.tree import TestNode
from k6_test_explorer.reconciler import FileWatchReconciler
from k6_test_explorer.tree import TestTree
from k6_test_explorer.watcher import watch_workspace

STATUS_SYMBOLS = {
    "passed": "✅",
    "failed": "❌",
}

log = logging.getLogger("k6_test_explorer")


class LogReporter:
    """Reports run transitions through logging."""

    def __init__(self, logger: logging.Logger) -> None:
        self.log = logger

    def started(self, node: TestNode) -> None:
        self.log.info("▶ %s", node.id)

    def passed(self, node: TestNode, duration: float | None) -> None:
        self.log.info("%s %s (%s)", STATUS_SYMBOLS["passed"], node.id, _seconds(duration))

    def failed(self, node: TestNode, message: str, duration: float | None) -> None:
        self.log.info("%s %s (%s)", STATUS_SYMBOLS["failed"], node.id, _seconds(duration))
        self.log.info("  Message: %s", message)

    def output(self, node: TestNode, line: str) -> None:
        self.log.debug("  [%s] %s", node.label, line)

    def end(self) -> None:
        self.log.debug("Run finished")


def _seconds(duration: float | None) -> str:
    return f"{duration:.2f}s" if duration is not None else "not started"


def log_results_summary(log: logging.Logger, outcomes: Sequence[LeafOutcome]) -> None:
    """Log a formatted summary of run outcomes."""
    log.info("=" * 80)
    log.info("Test Results Summary:")
    log.info("=" * 80)

    for outcome in outcomes:
        status = "passed" if outcome.result.success else "failed"
        log.info(
            "%s %s: %s (%s)",
            STATUS_SYMBOLS[status],
            outcome.node.id,
            status,
            _seconds(outcome.result.duration),
        )
        if outcome.result.error:
            log.info("  Message: %s", outcome.result.error)


def format_tree(tree: TestTree) -> dict[str, Any]:
    """Format the test tree for JSON output."""
    files: list[dict[str, Any]] = []
    for file_node in tree.files:
        files.append(
            {
                "id": file_node.id,
                "label": file_node.label,
                "description": file_node.description,
                "tests": [
                    {
                        "id": leaf.id,
                        "label": leaf.label,
                        "description": leaf.description,
                        "range": dataclasses.asdict(leaf.range) if leaf.range else None,
                    }
                    for leaf in tree.children_of(file_node)
                ],
            }
        )

    return {
        "total": sum(len(f["tests"]) for f in files),
        "files": files,
    }


def format_output(outcomes: Sequence[LeafOutcome]) -> dict[str, Any]:
    """Format run outcomes for JSON output."""
    results = [
        {
            "test": outcome.node.id,
            "status": "passed" if outcome.result.success else "failed",
            "duration": outcome.result.duration,
            "message": outcome.result.error,
        }
        for outcome in outcomes
    ]

    return {
        "total": len(results),
        "passed": sum(1 for r in results if r["status"] == "passed"),
        "failed": sum(1 for r in results if r["status"] == "failed"),
        "results": results,
    }


def format_engine_status(status: EngineStatus) -> dict[str, Any]:
    """Format the engine availability check for JSON output."""
    return dataclasses.asdict(status)


async def build_config(args: argparse.Namespace) -> ExplorerConfig:
    """Load configuration and apply command-line overrides."""
    if args.config is not None:
        config = await load_config(args.config)
    else:
        config = await find_config(args.workspace)

    overrides: dict[str, Any] = {}
    if args.k6_path:
        overrides["engine_executable_path"] = args.k6_path
    if args.secrets_file:
        overrides["secrets_file_path"] = args.secrets_file
    if args.engine_args:
        overrides["default_engine_args"] = list(args.engine_args)
    if args.pattern:
        overrides["test_file_pattern"] = args.pattern

    return config.model_copy(update=overrides) if overrides else config


async def discover(
    config: ExplorerConfig, workspace_roots: Sequence[Path]
) -> tuple[TestTree, FileWatchReconciler]:
    """Build the test tree for the workspace."""
    tree = TestTree(workspace_root=workspace_roots[0] if workspace_roots else None)
    reconciler = FileWatchReconciler(
        tree=tree, config=config, workspace_roots=workspace_roots
    )
    await reconciler.refresh()
    log.info("Discovered %d test file(s)", len(tree.files))
    return tree, reconciler


async def list_tests(config: ExplorerConfig, workspace_roots: Sequence[Path]) -> int:
    """Print the discovered test tree and return exit code."""
    tree, _ = await discover(config, workspace_roots)
    print(json.dumps(format_tree(tree), indent=2))
    return 0


def find_selected_node(
    tree: TestTree, test_id: str, workspace_roots: Sequence[Path]
) -> TestNode | None:
    """Look up a node by id, then as a file path relative to cwd or a root."""
    node = tree.get(test_id)
    if node is not None:
        return node

    candidates = [Path(test_id), *(root / test_id for root in workspace_roots)]
    for candidate in candidates:
        node = tree.find_by_path(candidate)
        if node is not None:
            return node
    return None


async def run(
    config: ExplorerConfig,
    workspace_roots: Sequence[Path],
    test_ids: Sequence[str] = (),
    cancel: asyncio.Event | None = None,
) -> int:
    """Run selected tests (all when none given) and return exit code."""
    tree, _ = await discover(config, workspace_roots)

    include: list[TestNode] | None = None
    if test_ids:
        include = []
        for test_id in test_ids:
            node = find_selected_node(tree, test_id, workspace_roots)
            if node is None:
                log.error("Unknown test id: %s", test_id)
                return 2
            include.append(node)

    engine = EngineRunner(config=config, workspace_roots=workspace_roots)
    coordinator = RunCoordinator(tree=tree, engine=engine)
    outcomes = await coordinator.execute(
        RunRequest(include=include), LogReporter(log), cancel
    )

    log_results_summary(log, outcomes)
    print(json.dumps(format_output(outcomes), indent=2))

    has_failures = any(not outcome.result.success for outcome in outcomes)
    return 1 if has_failures else 0


async def check(config: ExplorerConfig) -> int:
    """Check that the k6 executable works and return exit code."""
    engine = EngineRunner(config=config)
    status = await engine.check_engine_available()
    if status.available:
        log.info("k6 %s is available", status.version)
    else:
        log.error("k6 is not available: %s", status.error)
    print(json.dumps(format_engine_status(status), indent=2))
    return 0 if status.available else 1


async def watch(
    config: ExplorerConfig, workspace_roots: Sequence[Path], stop_event: asyncio.Event
) -> int:
    """Keep the tree up to date with file changes until stopped."""
    tree, reconciler = await discover(config, workspace_roots)

    def _log_tree() -> None:
        log.info(
            "Test tree: %d file(s), %d test(s)",
            len(tree.files),
            len(tree.resolve_leaves(None)),
        )

    _log_tree()
    await watch_workspace(reconciler, stop_event, on_batch=_log_tree)
    return 0


async def dispatch(args: argparse.Namespace) -> int:
    """Load configuration and run the selected command."""
    try:
        config = await build_config(args)
    except (FileNotFoundError, ValueError) as e:
        log.error("Configuration error: %s", e)
        return 2

    stop_event = asyncio.Event()
    if args.command in {"run", "watch"}:
        loop = asyncio.get_running_loop()
        for sig in (signal.SIGINT, signal.SIGTERM):
            with contextlib.suppress(NotImplementedError):
                loop.add_signal_handler(sig, stop_event.set)

    match args.command:
        case "list":
            return await list_tests(config, args.workspace)
        case "run":
            return await run(config, args.workspace, args.test_ids, stop_event)
        case "check":
            return await check(config)
        case "watch":
            return await watch(config, args.workspace, stop_event)
        case _:  # pragma: no cover
            raise ValueError(f"Unknown command: {args.command}")


def build_parser() -> argparse.ArgumentParser:
    """Build the command-line parser."""
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--workspace",
        type=Path,
        action="append",
        help="Workspace folder to scan (repeatable, default: current directory)",
    )
    common.add_argument(
        "--config",
        type=Path,
        default=None,
        help="YAML configuration file (default: k6-test-explorer.yaml in workspace)",
    )
    common.add_argument("--k6-path", default=None, help="k6 executable to invoke")
    common.add_argument(
        "--secrets-file", default=None, help="Secrets file passed to k6"
    )
    common.add_argument(
        "--arg",
        dest="engine_args",
        action="append",
        default=[],
        help="Extra argument for 'k6 run' (repeatable)",
    )
    common.add_argument("--pattern", default=None, help="Test file glob")
    common.add_argument(
        "-v", "--verbose", action="store_true", help="Enable debug logging"
    )

    parser = argparse.ArgumentParser(description="Discover and run k6 load tests")
    subparsers = parser.add_subparsers(dest="command", required=True)

    subparsers.add_parser("list", parents=[common], help="List discovered tests")
    run_parser = subparsers.add_parser("run", parents=[common], help="Run tests")
    run_parser.add_argument(
        "test_ids",
        nargs="*",
        help="File or test ids to run (default: all tests)",
    )
    subparsers.add_parser(
        "check", parents=[common], help="Check that k6 is installed"
    )
    subparsers.add_parser(
        "watch", parents=[common], help="Watch the workspace for test changes"
    )
    return parser


def main() -> None:
    """CLI entry point."""
    args = build_parser().parse_args()
    if not args.workspace:
        args.workspace = [Path.cwd()]

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
        stream=sys.stderr,
    )

    exit_code = asyncio.run(dispatch(args))
    sys.exit(exit_code)


if __name__ == "__main__":  # pragma: no cover
    main()
