"""Subprocess seam: every external tool call returns a CommandResult."""

import logging
import subprocess
import time
from collections.abc import Callable, Sequence
from pathlib import Path
from typing import Protocol, TypeVar

from git import Git
from git.exc import GitCommandNotFound

from .errors import CommandTimeoutError
from .models import CommandResult

logger = logging.getLogger(__name__)

T = TypeVar("T")

# Exit code reported when the executable itself cannot be found.
COMMAND_NOT_FOUND = 127


class Runner(Protocol):
    """Narrow interface over external tool invocations."""

    def run(
        self, args: Sequence[str], timeout: float, cwd: Path | None = None
    ) -> CommandResult: ...


class CommandRunner:
    """Runs commands as argv lists on the host, never through a shell."""

    def __init__(self, cwd: Path | str | None = None):
        self.cwd = Path(cwd) if cwd else None

    def run(
        self, args: Sequence[str], timeout: float, cwd: Path | None = None
    ) -> CommandResult:
        argv = [str(arg) for arg in args]
        logger.debug(f"Running {argv} (timeout {timeout}s)")
        try:
            completed = subprocess.run(
                argv,
                cwd=cwd or self.cwd,
                capture_output=True,
                text=True,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            raise CommandTimeoutError(argv, timeout) from e
        except FileNotFoundError:
            return CommandResult(
                args=argv,
                exit_code=COMMAND_NOT_FOUND,
                stderr=f"{argv[0]}: command not found",
            )
        return CommandResult(
            args=argv,
            exit_code=completed.returncode,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
        )


class GitRunner:
    """Runs git subcommands through GitPython's command executor."""

    def __init__(self, working_dir: Path | str):
        self.working_dir = Path(working_dir)
        self.git = Git(str(self.working_dir))

    def run(
        self, args: Sequence[str], timeout: float, cwd: Path | None = None
    ) -> CommandResult:
        argv = [str(arg) for arg in args]
        if argv and argv[0] == "git":
            argv = argv[1:]
        command = ["git", *argv]
        logger.debug(f"Running {command} (timeout {timeout}s)")
        git = Git(str(cwd)) if cwd else self.git
        try:
            status, stdout, stderr = git.execute(
                command,
                with_extended_output=True,
                with_exceptions=False,
                kill_after_timeout=timeout,
            )
        except GitCommandNotFound:
            return CommandResult(
                args=command, exit_code=COMMAND_NOT_FOUND, stderr="git: command not found"
            )
        if status != 0 and "did not complete in" in (stderr or ""):
            raise CommandTimeoutError(command, timeout)
        return CommandResult(
            args=command, exit_code=status, stdout=stdout or "", stderr=stderr or ""
        )


def backoff_delays(attempts: int, base: float, cap: float) -> list[float]:
    """Capped exponential delays slept between ``attempts`` tries."""
    return [min(cap, base * (2**i)) for i in range(max(attempts - 1, 0))]


def retry_with_backoff(
    operation: Callable[[], T],
    *,
    attempts: int,
    base: float,
    cap: float,
    should_retry: Callable[[Exception], bool],
    sleep: Callable[[float], None] = time.sleep,
    description: str = "operation",
) -> T:
    """Call ``operation`` until it succeeds or the attempt bound is reached.

    Exceptions rejected by ``should_retry`` propagate immediately; the last
    exception propagates once attempts are exhausted.
    """
    delays = backoff_delays(attempts, base, cap)
    for attempt in range(1, attempts + 1):
        try:
            return operation()
        except Exception as e:
            if attempt == attempts or not should_retry(e):
                raise
            delay = delays[attempt - 1]
            logger.warning(
                f"{description} failed (attempt {attempt}/{attempts}): {e}; retrying in {delay:g}s"
            )
            sleep(delay)
    raise AssertionError("unreachable")
