"""Keep the test tree in step with file-system change notifications."""

import asyncio
import logging
import os
from collections.abc import AsyncIterator, Awaitable, Callable, Sequence
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from enum import StrEnum
from pathlib import Path

from k6_test_explorer.discovery import discover_tests
from k6_test_explorer.models.config import ExplorerConfig
from k6_test_explorer.models.tree import TestEntry
from k6_test_explorer.patterns import matches_glob, relative_to_roots
from k6_test_explorer.tree import TestTree, file_node_id

log = logging.getLogger(__name__)


class FileChangeKind(StrEnum):
    """Kind of file-system notification."""

    CREATED = "created"
    MODIFIED = "modified"
    DELETED = "deleted"


@dataclass(frozen=True, kw_only=True)
class FileChangeEvent:
    """A single create/modify/delete notification for one path."""

    kind: FileChangeKind
    path: Path


@dataclass(kw_only=True)
class FileWatchReconciler:
    """Re-discovers single files on change and updates the tree in place."""

    tree: TestTree
    config: ExplorerConfig
    workspace_roots: Sequence[Path]
    discover: Callable[[Path], Awaitable[Sequence[TestEntry]]] = discover_tests
    _locks: dict[str, tuple[asyncio.Lock, int]] = field(
        default_factory=dict, init=False, repr=False
    )

    def is_test_file(self, path: Path) -> bool:
        """Check a path against the configured include and exclude globs."""
        rel_path = relative_to_roots(path, self.workspace_roots)
        if rel_path is None:
            return False
        if matches_glob(rel_path, self.config.exclude_pattern):
            return False
        return matches_glob(rel_path, self.config.test_file_pattern)

    async def handle(self, event: FileChangeEvent) -> None:
        """Apply one change notification to the tree."""
        if not self.is_test_file(event.path):
            log.debug("Ignoring %s event for %s", event.kind, event.path)
            return

        async with self._path_lock(event.path):
            if event.kind is FileChangeKind.DELETED:
                self.tree.remove_file(event.path)
                return
            await self._rediscover(event.path)

    async def refresh(self) -> None:
        """Rebuild the whole tree from every test file in the workspace."""
        self.tree.clear()

        for root in self.workspace_roots:
            files = await asyncio.to_thread(self._find_test_files, root)
            log.info("Found %d test file(s) under %s", len(files), root)
            for path in files:
                async with self._path_lock(path):
                    await self._rediscover(path)

    async def _rediscover(self, path: Path) -> None:
        entries = await self.discover(path)
        if entries:
            self.tree.upsert_file(path, entries)
        else:
            self.tree.remove_file(path)

    @asynccontextmanager
    async def _path_lock(self, path: Path) -> AsyncIterator[None]:
        # Entries live only while someone holds or waits for the lock
        key = file_node_id(path)
        lock, users = self._locks.get(key, (asyncio.Lock(), 0))
        self._locks[key] = (lock, users + 1)
        try:
            async with lock:
                yield
        finally:
            lock, users = self._locks[key]
            if users == 1:
                del self._locks[key]
            else:
                self._locks[key] = (lock, users - 1)

    def _find_test_files(self, root: Path) -> list[Path]:
        found: list[Path] = []
        for dirpath, dirnames, filenames in os.walk(root):
            current = Path(dirpath)
            rel_dir = current.relative_to(root).as_posix()
            # Prune excluded directories in place
            dirnames[:] = sorted(
                d
                for d in dirnames
                if not matches_glob(
                    f"{d}/" if rel_dir == "." else f"{rel_dir}/{d}/",
                    self.config.exclude_pattern,
                )
            )
            for name in filenames:
                rel_path = name if rel_dir == "." else f"{rel_dir}/{name}"
                if matches_glob(
                    rel_path, self.config.test_file_pattern
                ) and not matches_glob(rel_path, self.config.exclude_pattern):
                    found.append(current / name)
        return sorted(found)
