"""
Service controller — the platform-neutral half of service management.

A controller reads a service's status once, walks the requested states
in order, and only performs the transitions that are actually needed.
Stopping or disabling a service that does not exist is already
satisfied; starting, enabling or restarting one is an error.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass, replace
from typing import Literal

from hostconverge.core.engine.errors import ServiceControlError

logger = logging.getLogger(__name__)

StartMode = Literal["auto", "manual", "disabled"]


@dataclass(frozen=True)
class ServiceStatus:
    """Point-in-time view of one service."""

    exists: bool
    running: bool = False
    start_mode: StartMode = "manual"

    def needs(self, state: str) -> bool:
        """Whether ``state`` requires a transition from this status."""
        if state == "restart":
            return True
        if not self.exists:
            return state in ("start", "enable")
        if state == "start":
            return not self.running
        if state == "stop":
            return self.running
        if state == "enable":
            return self.start_mode != "auto"
        if state == "disable":
            return self.start_mode != "disabled"
        raise ServiceControlError(f"Unknown service state '{state}'")

    def after(self, state: str) -> ServiceStatus:
        """Status once ``state`` has been applied."""
        if state in ("start", "restart"):
            return replace(self, running=True)
        if state == "stop":
            return replace(self, running=False)
        if state == "enable":
            return replace(self, start_mode="auto")
        if state == "disable":
            return replace(self, start_mode="disabled")
        return self


class ServiceController(ABC):
    """Drives services toward requested states."""

    name = "service"

    @abstractmethod
    def status(self, service: str) -> ServiceStatus:
        """Query the current status of ``service``.

        Raises:
            ServiceControlError: If the service manager cannot be queried.
        """

    @abstractmethod
    def transition(self, service: str, state: str) -> None:
        """Perform one transition.

        Raises:
            ServiceControlError: If the service manager refuses.
        """

    def is_available(self) -> bool:
        return True

    def set_state(
        self,
        service: str,
        states: Sequence[str],
        dry_run: bool = False,
    ) -> list[str]:
        """Apply ``states`` in order; return the transitions performed.

        An empty list means the service already matched.
        """
        if not states:
            return []

        status = self.status(service)
        performed: list[str] = []

        for state in states:
            if not status.needs(state):
                logger.debug("service[%s] already satisfies '%s'", service, state)
                continue
            if not status.exists:
                raise ServiceControlError(f"Service '{service}' does not exist")
            if not dry_run:
                logger.debug("service[%s] → %s", service, state)
                self.transition(service, state)
            status = status.after(state)
            performed.append(state)

        return performed
