"""
systemd service controller — ``systemctl`` on Linux hosts.
"""

from __future__ import annotations

import shutil

from hostconverge.adapters.services.controller import ServiceController, ServiceStatus
from hostconverge.adapters.shell.command import CommandRunner
from hostconverge.core.engine.errors import ServiceControlError

_RUNNING_STATES = {"active", "activating", "reloading"}
_AUTO_STATES = {"enabled", "enabled-runtime", "alias"}
_DISABLED_STATES = {"disabled", "masked", "masked-runtime"}


def parse_show(output: str) -> dict[str, str]:
    """Parse ``systemctl show`` ``Key=Value`` lines."""
    props: dict[str, str] = {}
    for line in output.splitlines():
        key, sep, value = line.partition("=")
        if sep:
            props[key.strip()] = value.strip()
    return props


class SystemdServiceController(ServiceController):
    name = "systemd"

    def __init__(self, runner: CommandRunner):
        self._runner = runner

    def is_available(self) -> bool:
        return shutil.which("systemctl") is not None

    def status(self, service: str) -> ServiceStatus:
        result = self._runner.run([
            "systemctl", "show", service,
            "--property=LoadState,ActiveState,UnitFileState",
        ])
        if not result.ok:
            raise ServiceControlError(
                result.stderr or f"systemctl show {service} exited with {result.exit_code}"
            )

        props = parse_show(result.stdout)
        if props.get("LoadState", "not-found") == "not-found":
            return ServiceStatus(exists=False)

        unit_state = props.get("UnitFileState", "")
        if unit_state in _AUTO_STATES:
            start_mode = "auto"
        elif unit_state in _DISABLED_STATES:
            start_mode = "disabled"
        else:
            start_mode = "manual"

        return ServiceStatus(
            exists=True,
            running=props.get("ActiveState", "") in _RUNNING_STATES,
            start_mode=start_mode,
        )

    def transition(self, service: str, state: str) -> None:
        result = self._runner.run(["systemctl", state, service])
        if not result.ok:
            raise ServiceControlError(
                result.stderr or f"systemctl {state} {service} exited with {result.exit_code}"
            )
