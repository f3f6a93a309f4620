"""
Command runner — execute host commands and capture their output.

This is the most fundamental collaborator: uninstall steps, group
changes, service control and fact probes all go through it.  A runner
returns the exit code; deciding whether non-zero is an error is up to
the caller.  Only failures to launch or finish raise.
"""

from __future__ import annotations

import logging
import shutil
import subprocess
import time
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass

from hostconverge.core.engine.errors import ActionTimeoutError, ProcessExecError

logger = logging.getLogger(__name__)

# Interpreter → argv prefix; the command text is appended as one argument
INTERPRETERS: dict[str, list[str]] = {
    "sh": ["sh", "-c"],
    "bash": ["bash", "-c"],
    "powershell": [
        "powershell.exe",
        "-NoLogo",
        "-NonInteractive",
        "-NoProfile",
        "-ExecutionPolicy",
        "Bypass",
        "-Command",
    ],
    "cmd": ["cmd.exe", "/c"],
}


@dataclass(frozen=True)
class CommandResult:
    """Exit status and captured output of one command."""

    exit_code: int
    stdout: str = ""
    stderr: str = ""
    duration_ms: int = 0

    @property
    def ok(self) -> bool:
        return self.exit_code == 0


class CommandRunner(ABC):
    """Runs a command on the managed host."""

    @abstractmethod
    def run(
        self,
        command: str | Sequence[str],
        interpreter: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        """Run ``command``.

        A string with an ``interpreter`` is handed to that interpreter;
        a sequence is executed directly.

        Raises:
            ProcessExecError: If the command cannot be launched.
            ActionTimeoutError: If it does not finish within ``timeout``.
        """

    def succeeds(self, command: str | Sequence[str], interpreter: str | None = None) -> bool:
        """Fact-probe helper: True if the command exits 0."""
        try:
            return self.run(command, interpreter=interpreter).ok
        except ProcessExecError:
            return False


def build_argv(command: str | Sequence[str], interpreter: str | None) -> list[str]:
    """Resolve the argv for a command and interpreter."""
    if isinstance(command, str):
        prefix = INTERPRETERS.get(interpreter or "sh")
        if prefix is None:
            raise ProcessExecError(f"Unknown interpreter '{interpreter}'")
        return [*prefix, command]
    return list(command)


class SubprocessRunner(CommandRunner):
    """Run commands with ``subprocess.run``.

    Args:
        default_timeout: Deadline applied when a call passes none.
            None means wait indefinitely.
    """

    def __init__(self, default_timeout: float | None = None):
        self._default_timeout = default_timeout

    @staticmethod
    def is_available(interpreter: str = "sh") -> bool:
        prefix = INTERPRETERS.get(interpreter)
        return bool(prefix) and shutil.which(prefix[0]) is not None

    def run(
        self,
        command: str | Sequence[str],
        interpreter: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        argv = build_argv(command, interpreter)
        timeout = timeout if timeout is not None else self._default_timeout

        logger.debug("Executing: %s", argv)
        start = time.monotonic()

        try:
            result = subprocess.run(
                argv,
                capture_output=True,
                text=True,
                timeout=timeout,
            )
        except subprocess.TimeoutExpired as e:
            raise ActionTimeoutError(
                f"Command timed out after {timeout}s: {argv[0]}", timeout=timeout
            ) from e
        except OSError as e:
            raise ProcessExecError(f"Cannot execute {argv[0]}: {e}") from e

        elapsed_ms = int((time.monotonic() - start) * 1000)
        logger.debug("Exit %d after %dms: %s", result.returncode, elapsed_ms, argv[0])

        return CommandResult(
            exit_code=result.returncode,
            stdout=result.stdout.strip(),
            stderr=result.stderr.strip(),
            duration_ms=elapsed_ms,
        )
