"""
Service adapter — converge ``service`` actions through a controller.
"""

from __future__ import annotations

from hostconverge.adapters.base import Adapter, ExecutionContext
from hostconverge.adapters.services.controller import ServiceController
from hostconverge.core.models.action import ServiceStateChange
from hostconverge.core.models.outcome import Outcome


class ServiceAdapter(Adapter):
    def __init__(self, controller: ServiceController):
        self._controller = controller

    @property
    def name(self) -> str:
        return self._controller.name

    @property
    def kind(self) -> str:
        return "service"

    @property
    def controller(self) -> ServiceController:
        return self._controller

    def is_available(self) -> bool:
        return self._controller.is_available()

    def validate(
        self, action: ServiceStateChange, context: ExecutionContext
    ) -> tuple[bool, str]:
        if not action.name:
            return False, "Missing required field: 'name'"
        return True, ""

    def apply(self, action: ServiceStateChange, context: ExecutionContext) -> Outcome:
        if not action.states:
            return Outcome.noop(
                context.rule_id,
                output=f"service[{action.name}] has no states to apply",
            )

        performed = self._controller.set_state(
            action.name, action.states, dry_run=context.dry_run
        )
        metadata = {"service": action.name, "transitions": performed}

        if not performed:
            return Outcome.noop(
                context.rule_id,
                output=f"service[{action.name}] already {', '.join(action.states)}",
                metadata=metadata,
            )

        prefix = "[dry-run] would " if context.dry_run else ""
        return Outcome.change(
            context.rule_id,
            output=f"{prefix}{', '.join(performed)} service[{action.name}]",
            metadata=metadata,
        )
