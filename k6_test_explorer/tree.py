"""Two-level test tree of file nodes and their runnable leaves."""

import logging
from collections.abc import Iterable, Sequence
from pathlib import Path

from k6_test_explorer.models.tree import TestEntry, TestNode

log = logging.getLogger(__name__)


def file_node_id(path: Path) -> str:
    """Canonical identifier of the file node for ``path``."""
    return str(path.resolve())


def leaf_node_id(file_id: str, name: str) -> str:
    """Identifier of a leaf, derived from its file node and entry name."""
    return f"{file_id}::{name}"


class TestTree:
    """Index of file nodes and leaves keyed by identifier.

    File nodes sit at the top level in insertion order; each owns the
    leaves built from one discovery pass. Nodes are immutable: a changed
    file is replaced together with its whole subtree.
    """

    __test__ = False

    def __init__(self, workspace_root: Path | None = None) -> None:
        self.workspace_root = workspace_root.resolve() if workspace_root else None
        self._nodes: dict[str, TestNode] = {}
        self._files: dict[str, None] = {}

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, node_id: object) -> bool:
        return node_id in self._nodes

    @property
    def files(self) -> Sequence[TestNode]:
        """Top-level file nodes in insertion order."""
        return [self._nodes[file_id] for file_id in self._files]

    def get(self, node_id: str) -> TestNode | None:
        return self._nodes.get(node_id)

    def children_of(self, node: TestNode) -> Sequence[TestNode]:
        return [self._nodes[child_id] for child_id in node.children]

    def find_by_path(self, path: Path) -> TestNode | None:
        """Return the file node discovered from ``path``, if any."""
        return self._nodes.get(file_node_id(path))

    def upsert_file(self, path: Path, entries: Sequence[TestEntry]) -> TestNode | None:
        """Replace the subtree for ``path`` with one built from ``entries``.

        Nothing is inserted when ``entries`` is empty, and an existing node
        for the path is then left alone.
        """
        if not entries:
            log.debug("No tests in %s, skipping", path)
            return None

        file_id = file_node_id(path)
        self.remove_file(path)

        leaves: dict[str, TestNode] = {}
        for entry in entries:
            leaf_id = leaf_node_id(file_id, entry.name)
            if leaf_id in leaves:
                log.warning(
                    "Duplicate test %r in %s, keeping the last declaration",
                    entry.name,
                    path,
                )
            leaves[leaf_id] = TestNode(
                id=leaf_id,
                label=entry.name,
                path=file_id,
                kind="test",
                range=entry.range,
                description=entry.description,
                parent_id=file_id,
            )

        file_node = TestNode(
            id=file_id,
            label=Path(file_id).name,
            path=file_id,
            kind="file",
            description=self._relative_description(Path(file_id)),
            children=tuple(leaves),
        )

        self._nodes[file_id] = file_node
        self._nodes.update(leaves)
        self._files[file_id] = None
        log.debug("Discovered %d test(s) in %s", len(leaves), file_id)
        return file_node

    def remove_file(self, path: Path) -> bool:
        """Delete the file node for ``path`` and its leaves; False if absent."""
        file_id = file_node_id(path)
        node = self._nodes.pop(file_id, None)
        if node is None:
            return False

        for child_id in node.children:
            self._nodes.pop(child_id, None)
        del self._files[file_id]
        log.debug("Removed %s from test tree", file_id)
        return True

    def clear(self) -> None:
        self._nodes.clear()
        self._files.clear()

    def resolve_leaves(self, selection: Iterable[TestNode] | None) -> list[TestNode]:
        """Flatten a selection into the ordered list of leaves to run.

        ``None`` selects every file in the tree. Selected nodes are looked
        up again by identifier, so nodes removed since they were selected
        are skipped and replaced files contribute their current leaves.
        Each leaf appears at most once.
        """
        if selection is None:
            roots = self.files
        else:
            roots = []
            for selected in selection:
                current = self._nodes.get(selected.id)
                if current is None:
                    log.debug("Selected node %s is no longer in the tree", selected.id)
                    continue
                roots.append(current)

        leaves: dict[str, TestNode] = {}
        for node in roots:
            if node.is_leaf:
                leaves.setdefault(node.id, node)
            else:
                for child in self.children_of(node):
                    leaves.setdefault(child.id, child)

        return list(leaves.values())

    def _relative_description(self, path: Path) -> str | None:
        if self.workspace_root is None:
            return None
        try:
            return path.relative_to(self.workspace_root).as_posix()
        except ValueError:
            return None
