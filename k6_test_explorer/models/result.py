"""Models for test execution results."""

from dataclasses import dataclass


@dataclass(frozen=True, kw_only=True)
class RunResult:
    """Result of a single leaf execution.

    ``duration`` is wall time in seconds, ``None`` when the engine process
    never started.
    """

    success: bool
    duration: float | None = None
    error: str | None = None
    output: str | None = None


@dataclass(frozen=True, kw_only=True)
class EngineStatus:
    """Outcome of the engine availability check."""

    available: bool
    version: str | None = None
    error: str | None = None
