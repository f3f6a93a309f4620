"""
Adapter base — the contract between the evaluator and the host.

Each adapter applies one action kind (``service``, ``template``,
``uninstall``, ``group``) and reports an Outcome: ``noop`` when the host
already matches, ``changed`` when it had to act.

Adapters may raise ``ActionError`` subtypes for failed side effects.
The registry converts those into ``failed`` outcomes, so the evaluator
never sees a raw exception from an adapter.
"""

from __future__ import annotations

from abc import ABC, abstractmethod
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from hostconverge.core.models.facts import FactView, HostFacts
from hostconverge.core.models.outcome import Outcome


class ExecutionContext(BaseModel):
    """Everything an adapter needs to apply one action."""

    model_config = ConfigDict(arbitrary_types_allowed=True)

    rule_id: str
    facts: HostFacts = Field(default_factory=HostFacts)
    dry_run: bool = False

    def render_context(self, variables: dict[str, Any] | None = None) -> dict[str, Any]:
        """Template context: ``facts`` plus the action's own variables.

        ``node`` is an alias for ``facts`` so recipe templates can read
        ``node.platform`` the way cookbook authors expect.  Both resolve
        dotted paths like predicates do.
        """
        facts = FactView(self.facts)
        return {"facts": facts, "node": facts, **(variables or {})}


class Adapter(ABC):
    """Abstract base class for all adapters.

    To create a new adapter:
        1. Subclass Adapter
        2. Implement name, kind, is_available, apply
        3. Register it in the AdapterRegistry
    """

    @property
    @abstractmethod
    def name(self) -> str:
        """The adapter identifier (e.g., 'systemd', 'jinja-file')."""

    @property
    @abstractmethod
    def kind(self) -> str:
        """The action kind this adapter handles."""

    @abstractmethod
    def is_available(self) -> bool:
        """Check if the underlying tool exists on this host.

        Should be fast and never raise.
        """

    def validate(self, action: Any, context: ExecutionContext) -> tuple[bool, str]:
        """Validate that the action can be applied.

        Returns:
            (is_valid, error_message). error_message is empty if valid.
        """
        return True, ""

    @abstractmethod
    def apply(self, action: Any, context: ExecutionContext) -> Outcome:
        """Converge the host toward ``action``.

        Must be idempotent: when the host already matches, return a
        ``noop`` outcome and touch nothing.  In a dry run, report what
        would change without changing it.

        Raises:
            ActionError: If the side effect fails.
        """

    def __repr__(self) -> str:
        return f"<{self.__class__.__name__} name={self.name!r} kind={self.kind!r}>"
