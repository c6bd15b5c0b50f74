"""Models for discovered tests and the nodes of the test tree."""

from dataclasses import dataclass
from typing import Literal


@dataclass(frozen=True, kw_only=True)
class SourceRange:
    """Zero-based line/column span used for navigation."""

    start_line: int
    start_column: int
    end_line: int
    end_column: int


@dataclass(frozen=True, kw_only=True)
class TestEntry:
    """Entry point recognized in a test script."""

    __test__ = False

    name: str
    description: str | None = None
    range: SourceRange | None = None


@dataclass(frozen=True, kw_only=True)
class TestNode:
    """Node of the test tree: a file container or a runnable leaf."""

    __test__ = False

    id: str
    label: str
    path: str
    kind: Literal["file", "test"]
    range: SourceRange | None = None
    description: str | None = None
    children: tuple[str, ...] = ()
    parent_id: str | None = None

    @property
    def is_leaf(self) -> bool:
        """Leaves are the runnable nodes."""
        return self.kind == "test"
