"""External process execution with timeouts and cooperative cancellation.

Every external collaborator (builder, emulator installer, container engine,
uploader) is invoked through a CommandRunner so the pipeline can cancel
in-flight work and tests can substitute a fake.
"""

from __future__ import annotations

import os
import subprocess
import threading
import time
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Protocol

import structlog

from wheelhouse_core.errors import PipelineCancelledError

logger = structlog.get_logger(__name__)

# Interval at which a running process is checked for cancellation
POLL_INTERVAL_SECONDS = 0.25

TIMEOUT_EXIT_CODE = -1


class CancellationToken:
    """Run-wide cancellation flag shared by every cell.

    Example:
        >>> token = CancellationToken()
        >>> token.cancel()
        >>> token.cancelled
        True
    """

    def __init__(self) -> None:
        self._event = threading.Event()

    @property
    def cancelled(self) -> bool:
        """Whether cancellation was requested."""
        return self._event.is_set()

    def cancel(self) -> None:
        """Request cancellation."""
        self._event.set()

    def raise_if_cancelled(self) -> None:
        """Raise PipelineCancelledError if cancellation was requested."""
        if self._event.is_set():
            raise PipelineCancelledError()


@dataclass(frozen=True)
class CommandResult:
    """Result of one external command.

    Attributes:
        argv: Command that was run.
        exit_code: Process exit code (TIMEOUT_EXIT_CODE on timeout).
        stdout: Captured standard output.
        stderr: Captured standard error.
        duration_ms: Wall time in milliseconds.
        timed_out: Whether the command hit its timeout.
    """

    argv: tuple[str, ...]
    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0
    timed_out: bool = False

    @property
    def ok(self) -> bool:
        """Command exited zero."""
        return self.exit_code == 0

    @property
    def output(self) -> str:
        """Combined stdout and stderr."""
        return f"{self.stdout}\n{self.stderr}".strip()

    def tail(self, lines: int = 20) -> str:
        """Last lines of combined output, for error details."""
        return "\n".join(self.output.splitlines()[-lines:])


class Runner(Protocol):
    """Anything that can run an external command."""

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        cancel: CancellationToken | None = None,
    ) -> CommandResult: ...


class CommandRunner:
    """Runs argv lists (never through a shell) and captures their output.

    Environment values passed in ``env`` are added to the child process only
    and are never logged.
    """

    def __init__(self, poll_interval: float = POLL_INTERVAL_SECONDS) -> None:
        self.poll_interval = poll_interval

    def run(
        self,
        argv: Sequence[str],
        *,
        cwd: Path | None = None,
        env: Mapping[str, str] | None = None,
        timeout: float | None = None,
        cancel: CancellationToken | None = None,
    ) -> CommandResult:
        """Run a command to completion, timeout, or cancellation.

        Args:
            argv: Program and arguments.
            cwd: Working directory.
            env: Extra environment for the child process.
            timeout: Seconds before the process is killed.
            cancel: Cancellation token checked while the process runs.

        Returns:
            CommandResult. A missing executable yields exit code 127.

        Raises:
            PipelineCancelledError: If cancelled before or while running.
        """
        if cancel is not None:
            cancel.raise_if_cancelled()

        argv = tuple(argv)
        log = logger.bind(program=argv[0] if argv else "")
        log.debug("command_started", argv=list(argv), cwd=str(cwd) if cwd else None)

        child_env = None
        if env:
            child_env = dict(os.environ)
            child_env.update(env)

        start = time.monotonic()
        try:
            proc = subprocess.Popen(
                argv,
                cwd=str(cwd) if cwd else None,
                env=child_env,
                stdout=subprocess.PIPE,
                stderr=subprocess.PIPE,
                text=True,
            )
        except FileNotFoundError as e:
            log.error("command_not_found", error=str(e))
            return CommandResult(argv=argv, exit_code=127, stderr=str(e))

        deadline = start + timeout if timeout is not None else None
        while True:
            try:
                stdout, stderr = proc.communicate(timeout=self.poll_interval)
                break
            except subprocess.TimeoutExpired:
                if cancel is not None and cancel.cancelled:
                    proc.kill()
                    proc.communicate()
                    log.warning("command_cancelled")
                    raise PipelineCancelledError() from None
                if deadline is not None and time.monotonic() >= deadline:
                    proc.kill()
                    stdout, stderr = proc.communicate()
                    duration_ms = int((time.monotonic() - start) * 1000)
                    log.error("command_timeout", timeout_seconds=timeout)
                    return CommandResult(
                        argv=argv,
                        exit_code=TIMEOUT_EXIT_CODE,
                        stdout=stdout or "",
                        stderr=(stderr or "") + f"\nCommand timed out after {timeout}s",
                        duration_ms=duration_ms,
                        timed_out=True,
                    )

        duration_ms = int((time.monotonic() - start) * 1000)
        log.debug("command_completed", exit_code=proc.returncode, duration_ms=duration_ms)
        return CommandResult(
            argv=argv,
            exit_code=proc.returncode,
            stdout=stdout or "",
            stderr=stderr or "",
            duration_ms=duration_ms,
        )
