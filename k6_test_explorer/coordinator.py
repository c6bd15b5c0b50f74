"""Run coordinator executing resolved leaves one at a time."""

import asyncio
import logging
from collections.abc import Sequence
from dataclasses import dataclass
from typing import Protocol

from k6_test_explorer.engine import EngineRunner
from k6_test_explorer.models.result import RunResult
from k6_test_explorer.models.tree import TestNode
from k6_test_explorer.tree import TestTree

log = logging.getLogger(__name__)


class RunReporter(Protocol):
    """Receives per-leaf state transitions of one run."""

    def started(self, node: TestNode) -> None: ...

    def passed(self, node: TestNode, duration: float | None) -> None: ...

    def failed(self, node: TestNode, message: str, duration: float | None) -> None: ...

    def output(self, node: TestNode, line: str) -> None: ...

    def end(self) -> None: ...


@dataclass(frozen=True, kw_only=True)
class RunRequest:
    """Nodes to run; ``include=None`` runs every known leaf."""

    include: Sequence[TestNode] | None = None


@dataclass(frozen=True, kw_only=True)
class LeafOutcome:
    """Result container for one executed leaf."""

    node: TestNode
    result: RunResult


@dataclass(frozen=True, kw_only=True)
class RunCoordinator:
    """Expands run requests against the tree and executes leaves in order."""

    tree: TestTree
    engine: EngineRunner

    async def execute(
        self,
        request: RunRequest,
        reporter: RunReporter,
        cancel: asyncio.Event | None = None,
    ) -> Sequence[LeafOutcome]:
        """Run every leaf selected by ``request``.

        Leaves run sequentially in tree order. Cancellation is checked
        before each leaf; a leaf already started is left to the engine,
        which kills its process. A failure of one leaf never stops the
        remaining ones.

        Args:
            request: Selection to expand into leaves
            reporter: Receives started/passed/failed transitions
            cancel: Cancellation signal for this run

        Returns:
            Outcomes of the leaves that were started, in execution order

        """
        leaves = self.tree.resolve_leaves(request.include)
        log.info("Running %d test(s)...", len(leaves))

        outcomes: list[LeafOutcome] = []
        try:
            for leaf in leaves:
                if cancel is not None and cancel.is_set():
                    log.info(
                        "Run cancelled, skipping %d test(s)", len(leaves) - len(outcomes)
                    )
                    break

                outcomes.append(await self._run_leaf(leaf, reporter, cancel))
        finally:
            reporter.end()

        log.info("Test execution completed")
        return outcomes

    async def _run_leaf(
        self,
        leaf: TestNode,
        reporter: RunReporter,
        cancel: asyncio.Event | None,
    ) -> LeafOutcome:
        reporter.started(leaf)

        try:
            result = await self.engine.run(
                leaf, cancel, on_output=lambda line: reporter.output(leaf, line)
            )
        except Exception as e:
            log.error("Test execution failed: %s", e, exc_info=e)
            result = RunResult(success=False, error=str(e))

        if result.success:
            reporter.passed(leaf, result.duration)
        else:
            reporter.failed(leaf, result.error or "Test failed", result.duration)

        log.info(
            "Test completed: test=%s success=%s duration=%s",
            leaf.id,
            result.success,
            f"{result.duration:.1f}s" if result.duration is not None else "n/a",
        )
        return LeafOutcome(node=leaf, result=result)
