"""
Windows service controller — the Service Control Manager.

Status comes from ``sc.exe query`` / ``sc.exe qc`` (stable, parseable
output); transitions use the PowerShell service cmdlets, which wait for
the service to settle before returning.
"""

from __future__ import annotations

import re
import shutil

from hostconverge.adapters.services.controller import ServiceController, ServiceStatus
from hostconverge.adapters.shell.command import CommandRunner
from hostconverge.core.engine.errors import ServiceControlError

# sc.exe exit code for "The specified service does not exist"
ERROR_SERVICE_DOES_NOT_EXIST = 1060

_STATE_RE = re.compile(r"^\s*STATE\s*:\s*\d+\s+(\w+)", re.MULTILINE)
_START_TYPE_RE = re.compile(r"^\s*START_TYPE\s*:\s*\d+\s+(\w+)", re.MULTILINE)

_CMDLETS = {
    "start": "Start-Service -Name '{name}'",
    "stop": "Stop-Service -Name '{name}' -Force",
    "restart": "Restart-Service -Name '{name}' -Force",
    "enable": "Set-Service -Name '{name}' -StartupType Automatic",
    "disable": "Set-Service -Name '{name}' -StartupType Disabled",
}


class WindowsServiceController(ServiceController):
    name = "windows-scm"

    def __init__(self, runner: CommandRunner):
        self._runner = runner

    def is_available(self) -> bool:
        return shutil.which("sc.exe") is not None

    def status(self, service: str) -> ServiceStatus:
        query = self._runner.run(["sc.exe", "query", service])
        if query.exit_code == ERROR_SERVICE_DOES_NOT_EXIST:
            return ServiceStatus(exists=False)
        if not query.ok:
            raise ServiceControlError(
                query.stdout or query.stderr or f"sc.exe query {service} failed"
            )

        config = self._runner.run(["sc.exe", "qc", service])
        if not config.ok:
            raise ServiceControlError(
                config.stdout or config.stderr or f"sc.exe qc {service} failed"
            )

        state = _STATE_RE.search(query.stdout)
        start_type = _START_TYPE_RE.search(config.stdout)
        running = bool(state) and state.group(1) in ("RUNNING", "START_PENDING")

        mode = start_type.group(1) if start_type else ""
        if mode == "AUTO_START":
            start_mode = "auto"
        elif mode == "DISABLED":
            start_mode = "disabled"
        else:
            start_mode = "manual"

        return ServiceStatus(exists=True, running=running, start_mode=start_mode)

    def transition(self, service: str, state: str) -> None:
        template = _CMDLETS.get(state)
        if template is None:
            raise ServiceControlError(f"Unknown service state '{state}'")
        safe_name = service.replace("'", "''")
        result = self._runner.run(
            template.format(name=safe_name), interpreter="powershell"
        )
        if not result.ok:
            raise ServiceControlError(
                result.stderr or f"{state} {service} exited with {result.exit_code}"
            )
