"""
Group adapter — local group membership on POSIX hosts.

Reads the current members with ``getent group`` and only calls
``gpasswd`` for the difference.
"""

from __future__ import annotations

import logging
import shutil

from hostconverge.adapters.base import Adapter, ExecutionContext
from hostconverge.adapters.shell.command import CommandRunner
from hostconverge.core.engine.errors import ProcessExecError
from hostconverge.core.models.action import GroupMembership
from hostconverge.core.models.outcome import Outcome

logger = logging.getLogger(__name__)


def parse_group_line(line: str) -> list[str]:
    """Members of a ``name:x:gid:a,b,c`` group database line."""
    fields = line.strip().split(":")
    if len(fields) < 4 or not fields[3]:
        return []
    return [m for m in fields[3].split(",") if m]


class GroupAdapter(Adapter):
    """Converge ``group`` actions."""

    def __init__(self, runner: CommandRunner):
        self._runner = runner

    @property
    def name(self) -> str:
        return "gpasswd"

    @property
    def kind(self) -> str:
        return "group"

    def is_available(self) -> bool:
        return shutil.which("gpasswd") is not None

    def validate(self, action: GroupMembership, context: ExecutionContext) -> tuple[bool, str]:
        if not action.members:
            return False, "Group action needs at least one member"
        return True, ""

    def current_members(self, group: str) -> list[str]:
        result = self._runner.run(["getent", "group", group])
        if not result.ok:
            raise ProcessExecError(f"Group '{group}' does not exist")
        return parse_group_line(result.stdout)

    def apply(self, action: GroupMembership, context: ExecutionContext) -> Outcome:
        current = self.current_members(action.group)
        wanted = list(action.members)
        missing = [m for m in wanted if m not in current]
        extra = [] if action.append else [m for m in current if m not in wanted]
        metadata = {"group": action.group, "before": current}

        if not missing and not extra:
            return Outcome.noop(
                context.rule_id,
                output=f"{action.group} already has {', '.join(wanted)}",
                metadata=metadata,
            )

        if context.dry_run:
            return Outcome.change(
                context.rule_id,
                output=f"[dry-run] would add {missing} / remove {extra} in {action.group}",
                metadata=metadata,
            )

        if action.append:
            for member in missing:
                self._gpasswd(["-a", member, action.group])
        else:
            self._gpasswd(["-M", ",".join(wanted), action.group])

        logger.info("Group %s: +%s -%s", action.group, missing, extra)
        return Outcome.change(
            context.rule_id,
            output=f"{action.group}: added {', '.join(missing) or '-'}"
            + (f", removed {', '.join(extra)}" if extra else ""),
            metadata=metadata,
        )

    def _gpasswd(self, args: list[str]) -> None:
        result = self._runner.run(["gpasswd", *args])
        if not result.ok:
            raise ProcessExecError(
                result.stderr or f"gpasswd {' '.join(args)} exited with {result.exit_code}"
            )
