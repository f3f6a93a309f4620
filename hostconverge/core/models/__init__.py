"""
Domain models — facts, predicates, rules, actions, outcomes.

All models are re-exported here for convenient access:

    from hostconverge.core.models import HostFacts, Rule, ServiceStateChange, Outcome
"""

from hostconverge.core.models.action import (
    ACTION_KINDS,
    Action,
    ExternalUninstall,
    FileRender,
    GroupMembership,
    ServiceStateChange,
)
from hostconverge.core.models.facts import FactView, HostFacts, MissingFactError
from hostconverge.core.models.outcome import EvaluationResult, Outcome
from hostconverge.core.models.predicate import (
    AllOf,
    AnyOf,
    Condition,
    Not,
    parse_predicate,
)
from hostconverge.core.models.recipe import Recipe
from hostconverge.core.models.rule import Probes, Rule, RuleSpec

__all__ = [
    # action.py
    "ACTION_KINDS",
    "Action",
    # predicate.py
    "AllOf",
    "AnyOf",
    "Condition",
    # outcome.py
    "EvaluationResult",
    "ExternalUninstall",
    "FactView",
    "FileRender",
    "GroupMembership",
    # facts.py
    "HostFacts",
    "MissingFactError",
    "Not",
    "Outcome",
    # rule.py
    "Probes",
    # recipe.py
    "Recipe",
    "Rule",
    "RuleSpec",
    "ServiceStateChange",
    "parse_predicate",
]
