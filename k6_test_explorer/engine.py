"""Run k6 as an external process and turn its exit into a RunResult."""

import asyncio
import logging
import os
import re
import signal
import time
from collections.abc import Callable, Sequence
from dataclasses import dataclass
from pathlib import Path

from k6_test_explorer.models.config import ExplorerConfig
from k6_test_explorer.models.result import EngineStatus, RunResult
from k6_test_explorer.models.tree import TestNode

log = logging.getLogger(__name__)

RUN_SUBCOMMAND = "run"
VERSION_SUBCOMMAND = "version"
VERSION_CHECK_TIMEOUT = 5.0
VERSION_RE = re.compile(r"k6 v([\d.]+)")
CANCELLED_MESSAGE = "Run cancelled"
READ_CHUNK_SIZE = 65536

OutputCallback = Callable[[str], None]


def build_engine_args(config: ExplorerConfig, target_path: str) -> list[str]:
    """Build the k6 argument vector for one script.

    The order is fixed: subcommand, configured default arguments, the
    secret source when a secrets file is configured, then the target.
    """
    args = [RUN_SUBCOMMAND, *config.default_engine_args]
    if config.secrets_file_path:
        args.append(f"--secret-source=file={config.secrets_file_path}")
    args.append(target_path)
    return args


def resolve_working_directory(path: Path, workspace_roots: Sequence[Path]) -> Path:
    """Workspace root containing ``path``, or the script's own directory."""
    resolved = path.resolve()
    for root in workspace_roots:
        root = root.resolve()
        if resolved.is_relative_to(root):
            return root
    return resolved.parent


def exit_error(returncode: int | None, stderr: str) -> str:
    """Failure text for a non-zero exit: stderr, or the exit code."""
    return stderr.strip() or f"Process exited with code {returncode}"


@dataclass(frozen=True, kw_only=True)
class EngineRunner:
    """Spawns k6 for test leaves and for the availability check."""

    config: ExplorerConfig
    workspace_roots: Sequence[Path] = ()

    async def run(
        self,
        node: TestNode,
        cancel: asyncio.Event | None = None,
        on_output: OutputCallback | None = None,
    ) -> RunResult:
        """Execute one leaf with k6.

        Exactly one process is spawned per call, and none when ``cancel``
        is already set. Setting ``cancel`` while the process runs kills it.
        Cancellation is reported as a failed result.

        Args:
            node: Leaf to execute; its file path is the k6 target
            cancel: Cancellation signal for the surrounding run
            on_output: Receives each stdout/stderr line as it arrives

        Returns:
            Result of the execution; never raises for process failures

        """
        if cancel is not None and cancel.is_set():
            return RunResult(success=False, error=CANCELLED_MESSAGE)

        args = build_engine_args(self.config, node.path)
        cwd = resolve_working_directory(Path(node.path), self.workspace_roots)
        log.info(
            "Running %s %s (cwd=%s)",
            self.config.engine_executable_path,
            " ".join(args),
            cwd,
        )

        start = time.monotonic()
        try:
            process = await asyncio.create_subprocess_exec(
                self.config.engine_executable_path,
                *args,
                cwd=cwd,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            log.error("Failed to start %s: %s", self.config.engine_executable_path, e)
            return RunResult(success=False, error=str(e))

        stdout_lines: list[str] = []
        stderr_lines: list[str] = []
        completion = asyncio.ensure_future(
            _collect(process, stdout_lines, stderr_lines, on_output)
        )

        try:
            cancelled = await _wait_or_cancel(completion, cancel)
            if cancelled:
                log.info("Cancellation requested, killing k6 (pid=%s)", process.pid)
                _kill(process)
            await completion
        finally:
            if process.returncode is None:
                _kill(process)
            if not completion.done():
                completion.cancel()

        duration = time.monotonic() - start
        output = "".join(stdout_lines)

        if cancelled:
            return RunResult(
                success=False, duration=duration, error=CANCELLED_MESSAGE, output=output
            )

        returncode = process.returncode
        if returncode == 0:
            return RunResult(success=True, duration=duration, output=output)

        log.info("k6 exited with code %s for %s", returncode, node.path)
        return RunResult(
            success=False,
            duration=duration,
            error=exit_error(returncode, "".join(stderr_lines)),
            output=output,
        )

    async def check_engine_available(
        self, timeout: float = VERSION_CHECK_TIMEOUT
    ) -> EngineStatus:
        """Run ``k6 version`` and report whether the engine can be used."""
        try:
            process = await asyncio.create_subprocess_exec(
                self.config.engine_executable_path,
                VERSION_SUBCOMMAND,
                stdout=asyncio.subprocess.PIPE,
                stderr=asyncio.subprocess.PIPE,
                start_new_session=True,
            )
        except OSError as e:
            return EngineStatus(available=False, error=str(e))

        try:
            stdout, stderr = await asyncio.wait_for(
                process.communicate(), timeout=timeout
            )
        except TimeoutError:
            _kill(process)
            await process.wait()
            return EngineStatus(
                available=False, error="Timeout waiting for k6 version check"
            )

        if process.returncode != 0:
            return EngineStatus(
                available=False,
                error=exit_error(
                    process.returncode, stderr.decode("utf-8", errors="replace")
                ),
            )

        match = VERSION_RE.search(stdout.decode("utf-8", errors="replace"))
        return EngineStatus(
            available=True, version=match.group(1) if match else "unknown"
        )


async def _collect(
    process: asyncio.subprocess.Process,
    stdout_lines: list[str],
    stderr_lines: list[str],
    on_output: OutputCallback | None,
) -> int:
    # Read in chunks, output lines have no length limit
    async def _drain(stream: asyncio.StreamReader | None, buf: list[str]) -> None:
        if stream is None:
            return

        def _emit(raw: bytes) -> None:
            line = raw.decode("utf-8", errors="replace")
            buf.append(line)
            if on_output is not None:
                on_output(line.rstrip("\r\n"))

        pending = b""
        while chunk := await stream.read(READ_CHUNK_SIZE):
            *complete, pending = (pending + chunk).split(b"\n")
            for raw in complete:
                _emit(raw + b"\n")
        if pending:
            _emit(pending)

    await asyncio.gather(
        _drain(process.stdout, stdout_lines),
        _drain(process.stderr, stderr_lines),
    )
    return await process.wait()


async def _wait_or_cancel(
    completion: asyncio.Future[int], cancel: asyncio.Event | None
) -> bool:
    """Wait for the process; True if ``cancel`` fired first."""
    if cancel is None:
        await completion
        return False

    cancel_wait = asyncio.ensure_future(cancel.wait())
    try:
        await asyncio.wait(
            {completion, cancel_wait}, return_when=asyncio.FIRST_COMPLETED
        )
    finally:
        cancel_wait.cancel()

    return not completion.done()


def _kill(process: asyncio.subprocess.Process) -> None:
    # k6 runs as a session leader, so its group also holds any children
    # that inherited the output pipes
    try:
        if hasattr(os, "killpg"):
            os.killpg(process.pid, signal.SIGKILL)
        else:
            process.kill()
    except ProcessLookupError:
        pass
