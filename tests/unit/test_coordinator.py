"""Tests for the run coordinator."""

import asyncio
from collections.abc import Sequence
from pathlib import Path
from typing import Any
from unittest.mock import Mock, call

import pytest

from k6_test_explorer.coordinator import RunCoordinator, RunRequest
from k6_test_explorer.engine import EngineRunner
from k6_test_explorer.models.result import RunResult
from k6_test_explorer.models.tree import TestEntry, TestNode
from k6_test_explorer.testing.factories import RunResultFactory
from k6_test_explorer.tree import TestTree


@pytest.fixture
def tree(tmp_path: Path) -> TestTree:
    """Create a tree with two files holding three leaves."""
    tree = TestTree(workspace_root=tmp_path)
    tree.upsert_file(tmp_path / "a.test.js", [TestEntry(name="A")])
    tree.upsert_file(
        tmp_path / "b.test.js", [TestEntry(name="B"), TestEntry(name="C")]
    )
    return tree


@pytest.fixture
def engine_mock() -> Mock:
    """Create mock engine runner."""
    return Mock(spec=EngineRunner)


@pytest.fixture
def reporter() -> Mock:
    """Create mock reporter recording transitions in order."""
    return Mock()


@pytest.fixture
def coordinator(tree: TestTree, engine_mock: Mock) -> RunCoordinator:
    """Create coordinator with mock engine."""
    return RunCoordinator(tree=tree, engine=engine_mock)


def leaves(tree: TestTree) -> Sequence[TestNode]:
    return tree.resolve_leaves(None)


async def test_runs_all_leaves_in_order(
    coordinator: RunCoordinator, engine_mock: Mock, reporter: Mock, tree: TestTree
) -> None:
    """Runs every leaf sequentially and reports passed transitions."""
    a, b, c = leaves(tree)
    engine_mock.run.return_value = RunResult(success=True, duration=1.5)

    outcomes = await coordinator.execute(RunRequest(), reporter)

    assert [o.node for o in outcomes] == [a, b, c]
    assert reporter.mock_calls == [
        call.started(a),
        call.passed(a, 1.5),
        call.started(b),
        call.passed(b, 1.5),
        call.started(c),
        call.passed(c, 1.5),
        call.end(),
    ]


async def test_reports_failure_with_message_and_duration(
    coordinator: RunCoordinator, engine_mock: Mock, reporter: Mock, tree: TestTree
) -> None:
    """Failed results carry the error text and duration."""
    a = leaves(tree)[0]
    engine_mock.run.return_value = RunResult(success=False, duration=2.0, error="boom")

    await coordinator.execute(RunRequest(include=[a]), reporter)

    reporter.failed.assert_called_once_with(a, "boom", 2.0)
    reporter.passed.assert_not_called()


async def test_failure_without_message_uses_generic_text(
    coordinator: RunCoordinator, engine_mock: Mock, reporter: Mock, tree: TestTree
) -> None:
    """A failed result without error text still gets a reason."""
    a = leaves(tree)[0]
    engine_mock.run.return_value = RunResultFactory.build(success=False, duration=None)

    await coordinator.execute(RunRequest(include=[a]), reporter)

    reporter.failed.assert_called_once_with(a, "Test failed", None)


async def test_exception_fails_only_that_leaf(
    coordinator: RunCoordinator, engine_mock: Mock, reporter: Mock, tree: TestTree
) -> None:
    """An exception while running a leaf does not abort the others."""
    a, b, c = leaves(tree)
    engine_mock.run.side_effect = [
        RunResult(success=True, duration=1.0),
        RuntimeError("engine crashed"),
        RunResult(success=True, duration=1.0),
    ]

    outcomes = await coordinator.execute(RunRequest(), reporter)

    assert [o.result.success for o in outcomes] == [True, False, True]
    assert outcomes[1].result.error == "engine crashed"
    assert outcomes[1].result.duration is None
    reporter.failed.assert_called_once_with(b, "engine crashed", None)
    assert reporter.started.call_args_list == [call(a), call(b), call(c)]


async def test_cancellation_after_first_leaf_stops_run(
    coordinator: RunCoordinator, engine_mock: Mock, reporter: Mock, tree: TestTree
) -> None:
    """Cancelling after A completes never starts B or C."""
    a = leaves(tree)[0]
    cancel = asyncio.Event()

    async def run_and_cancel(*args: Any, **kwargs: Any) -> RunResult:
        cancel.set()
        return RunResult(success=True, duration=0.5)

    engine_mock.run.side_effect = run_and_cancel

    outcomes = await coordinator.execute(RunRequest(), reporter, cancel)

    assert [o.node for o in outcomes] == [a]
    assert reporter.mock_calls == [call.started(a), call.passed(a, 0.5), call.end()]
    engine_mock.run.assert_awaited_once()


async def test_cancelled_before_start_runs_nothing(
    coordinator: RunCoordinator, engine_mock: Mock, reporter: Mock
) -> None:
    """A run cancelled up front starts no leaves but still ends."""
    cancel = asyncio.Event()
    cancel.set()

    outcomes = await coordinator.execute(RunRequest(), reporter, cancel)

    assert outcomes == []
    engine_mock.run.assert_not_called()
    assert reporter.mock_calls == [call.end()]


async def test_passes_cancel_signal_to_engine(
    coordinator: RunCoordinator, engine_mock: Mock, reporter: Mock, tree: TestTree
) -> None:
    """The run's cancellation signal reaches the engine."""
    a = leaves(tree)[0]
    cancel = asyncio.Event()
    engine_mock.run.return_value = RunResult(success=True, duration=0.1)

    await coordinator.execute(RunRequest(include=[a]), reporter, cancel)

    args = engine_mock.run.await_args
    assert args.args == (a, cancel)


async def test_file_selection_runs_its_children(
    coordinator: RunCoordinator, engine_mock: Mock, reporter: Mock, tree: TestTree
) -> None:
    """Selecting a file node runs its leaves in insertion order."""
    file_b = tree.files[1]
    engine_mock.run.return_value = RunResult(success=True, duration=0.1)

    outcomes = await coordinator.execute(RunRequest(include=[file_b]), reporter)

    assert [o.node.label for o in outcomes] == ["B", "C"]


async def test_forwards_engine_output(
    coordinator: RunCoordinator, engine_mock: Mock, reporter: Mock, tree: TestTree
) -> None:
    """Output lines streamed by the engine reach the reporter."""
    a = leaves(tree)[0]

    async def run_with_output(*args: Any, on_output: Any, **kwargs: Any) -> RunResult:
        on_output("running (00m01.0s)")
        return RunResult(success=True, duration=1.0)

    engine_mock.run.side_effect = run_with_output

    await coordinator.execute(RunRequest(include=[a]), reporter)

    reporter.output.assert_called_once_with(a, "running (00m01.0s)")


async def test_empty_tree_only_ends(
    engine_mock: Mock, reporter: Mock, tmp_path: Path
) -> None:
    """Running an empty tree reports nothing but the end of the run."""
    coordinator = RunCoordinator(tree=TestTree(tmp_path), engine=engine_mock)

    outcomes = await coordinator.execute(RunRequest(), reporter)

    assert outcomes == []
    assert reporter.mock_calls == [call.end()]
