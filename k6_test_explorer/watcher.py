"""Feed watchfiles notifications into the reconciler."""

import asyncio
import logging
from collections.abc import Callable, Iterable
from pathlib import Path

from watchfiles import Change, awatch

from k6_test_explorer.reconciler import (
    FileChangeEvent,
    FileChangeKind,
    FileWatchReconciler,
)

log = logging.getLogger(__name__)

CHANGE_KINDS: dict[Change, FileChangeKind] = {
    Change.added: FileChangeKind.CREATED,
    Change.modified: FileChangeKind.MODIFIED,
    Change.deleted: FileChangeKind.DELETED,
}


def to_events(changes: Iterable[tuple[Change, str]]) -> list[FileChangeEvent]:
    """Convert a watchfiles batch into events, ordered by path."""
    return [
        FileChangeEvent(kind=CHANGE_KINDS[change], path=Path(raw_path))
        for change, raw_path in sorted(changes, key=lambda c: (c[1], c[0]))
    ]


async def watch_workspace(
    reconciler: FileWatchReconciler,
    stop_event: asyncio.Event,
    on_batch: Callable[[], None] | None = None,
) -> None:
    """Apply file changes under the workspace roots until ``stop_event`` is set."""
    log.info(
        "Watching %s for %s",
        ", ".join(str(root) for root in reconciler.workspace_roots),
        reconciler.config.test_file_pattern,
    )

    async for changes in awatch(
        *reconciler.workspace_roots,
        watch_filter=lambda _change, path: reconciler.is_test_file(Path(path)),
        stop_event=stop_event,
        ignore_permission_denied=True,
    ):
        events = to_events(changes)
        log.info("Applying %d file change(s)", len(events))
        for event in events:
            await reconciler.handle(event)
        if on_batch is not None:
            on_batch()
