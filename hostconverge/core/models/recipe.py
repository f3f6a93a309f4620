"""
Recipe — a named, ordered table of rules loaded from YAML.

Recipes live in ``recipes/<name>.yml``::

    name: nagios_datadog_check
    description: Nagios check for the Datadog agent
    probes:
      users: [dd-agent]
    rules:
      - id: conf
        when: {directories./etc/dd-agent/conf.d: true}
        action:
          kind: template
          path: /etc/dd-agent/conf.d/nagios.yaml
          template: datadog_check.yaml.j2
        notifies: datadog-agent
      - id: datadog-agent
        action: {kind: service, name: datadog-agent, states: []}
"""

from __future__ import annotations

from pydantic import BaseModel, ConfigDict, Field

from hostconverge.core.models.rule import Probes, Rule, RuleSpec


class Recipe(BaseModel):
    """A recipe definition."""

    model_config = ConfigDict(extra="forbid")

    name: str
    description: str = ""
    probes: Probes = Field(default_factory=Probes)
    rules: list[RuleSpec] = Field(default_factory=list)

    def compile(self, qualify: bool = True) -> list[Rule]:
        """Turn the rule specs into frozen ``Rule`` objects.

        With ``qualify`` set, rule ids become ``<recipe>:<id>`` so that
        several recipes can share a pass.
        """
        prefix = f"{self.name}:" if qualify else ""
        return [spec.to_rule(prefix) for spec in self.rules]

    def all_probes(self) -> Probes:
        """Declared probes plus those implied by the rules' predicates."""
        referenced: set[str] = set()
        for rule in self.compile(qualify=False):
            referenced |= rule.facts_referenced()
        return self.probes.merge(Probes.from_fact_paths(referenced))
