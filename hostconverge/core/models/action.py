"""
Action models — the desired-state vocabulary of a rule.

Every rule carries exactly one action.  Actions are a tagged union on
``kind``; the adapter registry dispatches on the same key.

    service     ensure a service reaches an ordered list of states
    template    render a template and converge a file to its content
    uninstall   run a platform-specific uninstall command
    group       ensure users belong to a local group
"""

from __future__ import annotations

from typing import Annotated, Any, Literal, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator

ServiceState = Literal["start", "stop", "enable", "disable", "restart"]


class ServiceStateChange(BaseModel):
    """Drive a service through ``states`` in order.

    An empty ``states`` list does nothing on its own; such a rule exists
    only so other rules can notify it.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["service"] = "service"
    name: str
    states: tuple[ServiceState, ...] = ()

    @field_validator("states", mode="before")
    @classmethod
    def _accept_single_state(cls, value: Any) -> Any:
        if isinstance(value, str):
            return (value,)
        if value is None:
            return ()
        return value

    def describe(self) -> str:
        states = ", ".join(self.states) or "nothing"
        return f"service[{self.name}] → {states}"


class FileRender(BaseModel):
    """Render ``template`` with ``variables`` and write it to ``path``."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["template"] = "template"
    path: str
    template: str
    variables: dict[str, Any] = Field(default_factory=dict)
    mode: int | None = None

    def describe(self) -> str:
        return f"template[{self.path}] ← {self.template}"


class ExternalUninstall(BaseModel):
    """Run an uninstall command.

    ``command`` and ``only_if`` are jinja2 templates rendered against the
    host facts (as ``facts``) and ``variables``.  When ``only_if`` is set
    and exits non-zero, the package is considered absent and nothing runs.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["uninstall"] = "uninstall"
    package: str = ""
    command: str
    interpreter: Literal["sh", "bash", "powershell", "cmd"] = "sh"
    only_if: str | None = None
    variables: dict[str, Any] = Field(default_factory=dict)
    timeout: float | None = None

    def describe(self) -> str:
        return f"uninstall[{self.package or self.interpreter}]"


class GroupMembership(BaseModel):
    """Ensure ``members`` belong to ``group``.

    With ``append`` false the member list is authoritative and other
    members are removed.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    kind: Literal["group"] = "group"
    group: str
    members: tuple[str, ...]
    append: bool = True

    def describe(self) -> str:
        return f"group[{self.group}] ∋ {', '.join(self.members)}"


Action = Annotated[
    Union[ServiceStateChange, FileRender, ExternalUninstall, GroupMembership],
    Field(discriminator="kind"),
]

ACTION_KINDS = ("service", "template", "uninstall", "group")
