"""
Rule — one predicate, one action, optional notification target.

Rules are static configuration: built once (from YAML or in code) and
never changed while a pass runs.
"""

from __future__ import annotations

from collections.abc import Callable
from dataclasses import dataclass
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from hostconverge.core.models.action import Action, ServiceStateChange
from hostconverge.core.models.facts import HostFacts
from hostconverge.core.models.predicate import parse_predicate

PredicateFn = Callable[[HostFacts], bool]


@dataclass(frozen=True)
class Rule:
    """A desired-state rule.

    Attributes:
        id: Unique within a rule set.
        action: What to converge.
        when: Predicate over host facts; None means always.
        notifies: Id of a service rule to restart if this rule changes
            something.  The restart happens once, after every rule ran.
        critical: A failure of this rule halts the pass.
        description: Free text for humans.
    """

    id: str
    action: Any
    when: PredicateFn | None = None
    notifies: str | None = None
    critical: bool = False
    description: str = ""

    @property
    def kind(self) -> str:
        return self.action.kind

    @property
    def is_service(self) -> bool:
        return isinstance(self.action, ServiceStateChange)

    def applies_to(self, facts: HostFacts) -> bool:
        if self.when is None:
            return True
        return bool(self.when(facts))

    def facts_referenced(self) -> set[str]:
        """Fact paths a data-driven predicate reads (empty for callables)."""
        collect = getattr(self.when, "facts_referenced", None)
        return collect() if collect else set()


class RuleSpec(BaseModel):
    """YAML form of a rule, validated before it becomes a ``Rule``."""

    model_config = ConfigDict(extra="forbid", populate_by_name=True)

    id: str
    description: str = ""
    when: Any = None
    action: Action
    notifies: str | None = None
    critical: bool = False

    def to_rule(self, prefix: str = "") -> Rule:
        """Compile the predicate and freeze the rule.

        Raises:
            PredicateError: If ``when`` is malformed.
        """
        rule_id = f"{prefix}{self.id}"
        notifies = f"{prefix}{self.notifies}" if self.notifies else None
        return Rule(
            id=rule_id,
            action=self.action,
            when=parse_predicate(self.when, rule_id=rule_id),
            notifies=notifies,
            critical=self.critical,
            description=self.description,
        )


class Probes(BaseModel):
    """Facts a recipe needs gathered from the live host."""

    model_config = ConfigDict(extra="forbid")

    users: list[str] = Field(default_factory=list)
    directories: list[str] = Field(default_factory=list)
    groups: list[str] = Field(default_factory=list)

    def merge(self, other: Probes) -> Probes:
        return Probes(
            users=list(dict.fromkeys(self.users + other.users)),
            directories=list(dict.fromkeys(self.directories + other.directories)),
            groups=list(dict.fromkeys(self.groups + other.groups)),
        )

    @classmethod
    def from_fact_paths(cls, paths: set[str]) -> Probes:
        """Derive probes from the fact paths predicates reference."""
        probes = cls()
        for path in sorted(paths):
            head, _, rest = path.partition(".")
            if not rest:
                continue
            if head == "users":
                probes.users.append(rest)
            elif head == "directories":
                probes.directories.append(rest)
            elif head == "groups":
                probes.groups.append(rest)
        return probes
