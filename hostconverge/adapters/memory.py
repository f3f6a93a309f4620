"""
In-memory collaborators — a host that lives in a few dicts.

Used by the test suite and by ``hostconverge run --simulate`` to converge
recipes without touching real services, files or processes.  Each double
records what it was asked to do and can be told to fail.
"""

from __future__ import annotations

from collections.abc import Callable, Sequence
from pathlib import PurePosixPath

from hostconverge.adapters.services.controller import ServiceController, ServiceStatus
from hostconverge.adapters.shell.command import CommandResult, CommandRunner
from hostconverge.adapters.shell.filesystem import FileStore
from hostconverge.core.engine.errors import FileWriteError, ServiceControlError

CommandHandler = Callable[[str], CommandResult]


class MemoryServiceController(ServiceController):
    """Services held in a dict; transitions update the dict.

    Services not in the dict report ``default`` (absent unless given).
    """

    name = "memory-service"

    def __init__(
        self,
        services: dict[str, ServiceStatus] | None = None,
        default: ServiceStatus | None = None,
    ):
        self.services: dict[str, ServiceStatus] = dict(services or {})
        self._default = default or ServiceStatus(exists=False)
        self.calls: list[tuple[str, str]] = []
        self._failures: dict[tuple[str, str], str] = {}

    def add(self, service: str, running: bool = False, start_mode: str = "manual") -> None:
        self.services[service] = ServiceStatus(
            exists=True, running=running, start_mode=start_mode  # type: ignore[arg-type]
        )

    def set_failure(self, service: str, state: str, error: str = "Mock failure") -> None:
        """Make one transition fail."""
        self._failures[(service, state)] = error

    def transitions_for(self, service: str) -> list[str]:
        return [state for name, state in self.calls if name == service]

    def status(self, service: str) -> ServiceStatus:
        return self.services.get(service, self._default)

    def transition(self, service: str, state: str) -> None:
        self.calls.append((service, state))
        if (service, state) in self._failures:
            raise ServiceControlError(self._failures[(service, state)])
        self.services[service] = self.status(service).after(state)


class MemoryFileStore(FileStore):
    """Files held in a dict of path → bytes.

    ``directories`` lists the parents that exist; writing below any
    other directory fails like it would on disk.  Leave it as None to
    accept every parent.
    """

    def __init__(
        self,
        files: dict[str, bytes] | None = None,
        directories: set[str] | None = None,
    ):
        self.files: dict[str, bytes] = dict(files or {})
        self.directories = directories
        self.writes: list[str] = []
        self._failures: dict[str, str] = {}

    def set_failure(self, path: str, error: str = "Mock failure") -> None:
        self._failures[path] = error

    def read(self, path: str) -> bytes | None:
        return self.files.get(path)

    def write_atomic(self, path: str, content: bytes, mode: int | None = None) -> None:
        if path in self._failures:
            raise FileWriteError(self._failures[path])
        parent = str(PurePosixPath(path).parent)
        if self.directories is not None and parent not in self.directories:
            raise FileWriteError(f"Parent directory does not exist: {parent}")
        self.files[path] = content
        self.writes.append(path)


class ScriptedCommandRunner(CommandRunner):
    """Answers commands from a script of substring → result rules.

    The first rule whose pattern occurs in the command line wins.
    Unmatched commands get ``default``.  Every call is logged.
    """

    def __init__(self, default: CommandResult | None = None):
        self._default = default or CommandResult(exit_code=0)
        self._rules: list[tuple[str, CommandHandler]] = []
        self.calls: list[tuple[str, str | None]] = []

    def on(
        self,
        pattern: str,
        exit_code: int = 0,
        stdout: str = "",
        stderr: str = "",
        handler: CommandHandler | None = None,
    ) -> ScriptedCommandRunner:
        """Script the answer for commands containing ``pattern``."""
        if handler is None:
            fixed = CommandResult(exit_code=exit_code, stdout=stdout, stderr=stderr)

            def handler(_command: str) -> CommandResult:
                return fixed

        self._rules.append((pattern, handler))
        return self

    def commands(self) -> list[str]:
        return [command for command, _ in self.calls]

    def ran(self, pattern: str) -> int:
        """How many logged commands contain ``pattern``."""
        return sum(1 for command in self.commands() if pattern in command)

    def run(
        self,
        command: str | Sequence[str],
        interpreter: str | None = None,
        timeout: float | None = None,
    ) -> CommandResult:
        line = command if isinstance(command, str) else " ".join(command)
        self.calls.append((line, interpreter))
        for pattern, handler in self._rules:
            if pattern in line:
                return handler(line)
        return self._default
