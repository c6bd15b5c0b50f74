"""Locate k6 test entry points in script sources without parsing them.

Matching is line based: a default export spread over several lines is not
recognized, and text inside comments or string literals can match.
"""

import asyncio
import logging
import re
from collections.abc import Sequence
from pathlib import Path

from k6_test_explorer.models.tree import SourceRange, TestEntry

log = logging.getLogger(__name__)

DEFAULT_ENTRY_NAME = "default"
DEFAULT_ENTRY_DESCRIPTION = "Main k6 test function"
FALLBACK_ENTRY_NAME = "k6 test"
FALLBACK_ENTRY_DESCRIPTION = "K6 performance test"

# export default [async] function (...) [: ReturnType] { or ;
DEFAULT_FUNCTION_RE = re.compile(
    r"export\s+default\s+(?:async\s+)?function\s*\([^)]*\)\s*"
    r"(?::\s*[\w<>\[\]|\s,]+\s*)?[{;]"
)
# export default [async] (...) [: ReturnType] =>
DEFAULT_ARROW_RE = re.compile(
    r"export\s+default\s+(?:async\s+)?\([^)]*\)\s*"
    r"(?::\s*[\w<>\[\]|\s,.:]+\s*)?=>"
)

K6_MARKERS: Sequence[re.Pattern[str]] = tuple(
    re.compile(pattern)
    for pattern in (
        r"import.*from\s+['\"]k6['\"]",
        r"import.*from\s+['\"]k6/",
        r"require\(['\"]k6['\"]\)",
        r"require\(['\"]k6/",
        r"export\s+let\s+options",
        r"export\s+const\s+options",
        r"export\s+default\s+function",
        r"scenarios:",
        r"check\(",
        r"sleep\(",
        r"group\(",
        r"__VU",
        r"__ITER",
    )
)


async def discover_tests(path: Path) -> Sequence[TestEntry]:
    """Read a script and return its entry points.

    Unreadable files are logged and reported as containing no tests.
    """
    try:
        content = await asyncio.to_thread(path.read_text, encoding="utf-8")
    except (OSError, UnicodeDecodeError) as e:
        log.warning("Error reading file %s: %s", path, e)
        return []

    return parse_test_file(content)


def parse_test_file(content: str) -> Sequence[TestEntry]:
    """Extract entry points from script text.

    Every line declaring a default-exported function or arrow function
    yields one ``default`` entry. When no such line exists but the text
    looks like a k6 script, a single synthetic entry anchored at the top
    of the file is returned instead.
    """
    entries: list[TestEntry] = []

    for line_no, raw in enumerate(content.split("\n")):
        line = raw.removesuffix("\r")
        if DEFAULT_FUNCTION_RE.search(line) or DEFAULT_ARROW_RE.search(line):
            entries.append(
                TestEntry(
                    name=DEFAULT_ENTRY_NAME,
                    description=DEFAULT_ENTRY_DESCRIPTION,
                    range=SourceRange(
                        start_line=line_no,
                        start_column=0,
                        end_line=line_no,
                        end_column=len(line),
                    ),
                )
            )

    if not entries and looks_like_k6_test(content):
        entries.append(
            TestEntry(
                name=FALLBACK_ENTRY_NAME,
                description=FALLBACK_ENTRY_DESCRIPTION,
                range=SourceRange(
                    start_line=0, start_column=0, end_line=0, end_column=0
                ),
            )
        )

    return entries


def looks_like_k6_test(content: str) -> bool:
    """Check for k6 imports, options exports or well-known API calls."""
    return any(marker.search(content) for marker in K6_MARKERS)
