"""Fixtures for integration tests running fake k6 executables."""

import stat
from pathlib import Path
from typing import Protocol

import pytest


class MakeEngineFn(Protocol):
    """Protocol for fake engine creation function."""

    def __call__(self, body: str) -> Path:
        """Write an executable shell script and return its path."""


@pytest.fixture
def workspace(tmp_path: Path) -> Path:
    """Create a workspace folder with one k6 script."""
    root = tmp_path / "workspace"
    (root / "tests").mkdir(parents=True)
    (root / "tests" / "load.test.js").write_text(
        "import http from 'k6/http';\n\nexport default function () {\n}\n"
    )
    return root


@pytest.fixture
def make_engine(tmp_path: Path) -> MakeEngineFn:
    """Return a function creating fake k6 executables."""
    counter = [0]

    def _make(body: str) -> Path:
        counter[0] += 1
        path = tmp_path / "bin" / f"k6-{counter[0]}"
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_text(f"#!/bin/sh\n{body}\n")
        path.chmod(path.stat().st_mode | stat.S_IXUSR | stat.S_IXGRP | stat.S_IXOTH)
        return path

    return _make
