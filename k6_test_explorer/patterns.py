"""Glob matching for test file patterns, with ``{a,b}`` and ``**`` support."""

import fnmatch
import re
from collections.abc import Sequence
from pathlib import Path

_BRACE_RE = re.compile(r"\{([^{}]*)\}")


def expand_braces(pattern: str) -> Sequence[str]:
    """Expand brace alternatives: ``*.{js,ts}`` -> ``*.js``, ``*.ts``."""
    match = _BRACE_RE.search(pattern)
    if match is None:
        return [pattern]

    head, tail = pattern[: match.start()], pattern[match.end() :]
    expanded: list[str] = []
    for option in match.group(1).split(","):
        expanded.extend(expand_braces(f"{head}{option}{tail}"))
    return expanded


def matches_glob(rel_path: str, pattern: str) -> bool:
    """Check a POSIX relative path against a glob.

    Matching is per path segment: ``*`` and ``?`` never cross ``/``, while
    a ``**`` segment matches zero or more whole segments.
    """
    parts = rel_path.split("/")
    return any(
        _match_segments(parts, expanded.split("/"))
        for expanded in expand_braces(pattern)
    )


def _match_segments(parts: Sequence[str], pattern_parts: Sequence[str]) -> bool:
    if not pattern_parts:
        return not parts

    head, rest = pattern_parts[0], pattern_parts[1:]
    if head == "**":
        return any(_match_segments(parts[i:], rest) for i in range(len(parts) + 1))
    return (
        bool(parts)
        and fnmatch.fnmatch(parts[0], head)
        and _match_segments(parts[1:], rest)
    )


def relative_to_roots(path: Path, roots: Sequence[Path]) -> str | None:
    """Path relative to the first root containing it, or None."""
    resolved = path.resolve()
    for root in roots:
        try:
            return resolved.relative_to(root.resolve()).as_posix()
        except ValueError:
            continue
    return None
