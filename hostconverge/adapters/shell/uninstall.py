"""
Uninstall adapter — run platform-specific uninstall commands.

The command text is a jinja2 template, rendered with the host facts and
the action's variables, so one rule covers every architecture::

    variables:
      arch: "{{ 'x64' if facts.kernel.machine == 'x86_64' else 'Win32' }}"
    command: |
      $app = Get-WmiObject -Class Win32_Product -Filter "Name = 'NSClient++ ({{ arch }})'"
      $app.Uninstall()

Idempotence comes from the ``only_if`` probe: when it exits non-zero
the package is already gone and nothing runs.
"""

from __future__ import annotations

import logging

from hostconverge.adapters.base import Adapter, ExecutionContext
from hostconverge.adapters.shell.command import CommandRunner
from hostconverge.adapters.templates import TemplateRenderer
from hostconverge.core.engine.errors import ProcessExecError
from hostconverge.core.models.action import ExternalUninstall
from hostconverge.core.models.outcome import Outcome

logger = logging.getLogger(__name__)


class UninstallAdapter(Adapter):
    """Run ``uninstall`` actions through a CommandRunner."""

    def __init__(self, runner: CommandRunner, renderer: TemplateRenderer):
        self._runner = runner
        self._renderer = renderer

    @property
    def name(self) -> str:
        return "uninstall"

    @property
    def kind(self) -> str:
        return "uninstall"

    def is_available(self) -> bool:
        return True

    def validate(
        self, action: ExternalUninstall, context: ExecutionContext
    ) -> tuple[bool, str]:
        if not action.command.strip():
            return False, "Missing required field: 'command'"
        return True, ""

    def apply(self, action: ExternalUninstall, context: ExecutionContext) -> Outcome:
        render_ctx = context.render_context()
        # String variables are templates too, rendered against the facts
        for key, value in action.variables.items():
            if isinstance(value, str):
                value = self._renderer.render_string(value, render_ctx)
            render_ctx[key] = value

        command = self._renderer.render_string(action.command, render_ctx).strip()
        metadata = {"command": command, "interpreter": action.interpreter}

        if action.only_if:
            probe = self._renderer.render_string(action.only_if, render_ctx).strip()
            metadata["only_if"] = probe
            check = self._runner.run(
                probe, interpreter=action.interpreter, timeout=action.timeout
            )
            if not check.ok:
                logger.debug("only_if probe exited %d; skipping", check.exit_code)
                return Outcome.noop(
                    context.rule_id,
                    output=f"{action.package or 'package'} not installed",
                    metadata=metadata,
                )

        if context.dry_run:
            return Outcome.change(
                context.rule_id,
                output=f"[dry-run] would run {action.interpreter} uninstall",
                metadata=metadata,
            )

        result = self._runner.run(
            command, interpreter=action.interpreter, timeout=action.timeout
        )
        metadata["return_code"] = result.exit_code
        if not result.ok:
            raise ProcessExecError(
                result.stderr or f"Uninstall exited with code {result.exit_code}"
            )

        return Outcome.change(
            context.rule_id,
            output=result.stdout or f"{action.package or 'package'} uninstalled",
            metadata=metadata,
        )
