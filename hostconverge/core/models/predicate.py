"""
Data-driven predicates over HostFacts.

Recipes declare their ``when:`` clauses as plain YAML; this module turns
them into callable pydantic models.  Accepted shapes::

    when:                           # shorthand: every pair must be equal
      platform: windows

    when:
      fact: kernel.machine          # a single condition
      one_of: [x86_64, amd64]

    when:
      any:                          # combinators nest freely
        - fact: users.dd-agent
          truthy: true
        - not: {platform: windows}

A missing fact raises ``MissingFactError`` out of the predicate; the
evaluator decides whether that means "skip" or "fail".
"""

from __future__ import annotations

from collections.abc import Mapping
from typing import Any, Union

from pydantic import BaseModel, ConfigDict, ValidationError, model_validator

from hostconverge.core.engine.errors import PredicateError
from hostconverge.core.models.facts import HostFacts, MissingFactError

_TESTS = ("equals", "not_equals", "one_of", "present", "truthy")
_COMBINATORS = ("all", "any", "not")


class Condition(BaseModel):
    """One test against one fact."""

    model_config = ConfigDict(frozen=True, extra="forbid")

    fact: str
    equals: Any = None
    not_equals: Any = None
    one_of: tuple[Any, ...] | None = None
    present: bool | None = None
    truthy: bool | None = None

    @model_validator(mode="after")
    def _exactly_one_test(self) -> Condition:
        given = [name for name in _TESTS if name in self.model_fields_set]
        if len(given) != 1:
            raise ValueError(
                f"condition on '{self.fact}' needs exactly one of "
                f"{', '.join(_TESTS)}; got {given or 'none'}"
            )
        if not self.fact:
            raise ValueError("condition has an empty fact path")
        return self

    @property
    def test(self) -> str:
        return next(name for name in _TESTS if name in self.model_fields_set)

    def __call__(self, facts: HostFacts) -> bool:
        test = self.test
        if test == "present":
            return (self.fact in facts) == self.present

        value = facts[self.fact]
        if test == "equals":
            return value == self.equals
        if test == "not_equals":
            return value != self.not_equals
        if test == "one_of":
            return value in (self.one_of or ())
        return bool(value) == self.truthy

    def facts_referenced(self) -> set[str]:
        return {self.fact}


class AllOf(BaseModel):
    """True when every member is true.  Short-circuits on the first false."""

    model_config = ConfigDict(frozen=True)

    members: tuple[Predicate, ...]

    def __call__(self, facts: HostFacts) -> bool:
        return all(member(facts) for member in self.members)

    def facts_referenced(self) -> set[str]:
        return set().union(*(m.facts_referenced() for m in self.members))


class AnyOf(BaseModel):
    """True when some member is true.

    A member with a missing fact does not hide a true sibling; the
    missing fact is only reported when no member matched.
    """

    model_config = ConfigDict(frozen=True)

    members: tuple[Predicate, ...]

    def __call__(self, facts: HostFacts) -> bool:
        missing: MissingFactError | None = None
        for member in self.members:
            try:
                if member(facts):
                    return True
            except MissingFactError as e:
                missing = missing or e
        if missing is not None:
            raise missing
        return False

    def facts_referenced(self) -> set[str]:
        return set().union(*(m.facts_referenced() for m in self.members))


class Not(BaseModel):
    model_config = ConfigDict(frozen=True)

    member: Predicate

    def __call__(self, facts: HostFacts) -> bool:
        return not self.member(facts)

    def facts_referenced(self) -> set[str]:
        return self.member.facts_referenced()


Predicate = Union[Condition, AllOf, AnyOf, Not]

AllOf.model_rebuild()
AnyOf.model_rebuild()
Not.model_rebuild()


def parse_predicate(raw: Any, rule_id: str | None = None) -> Predicate | None:
    """Build a predicate tree from its YAML form.

    Returns None for an empty clause (the rule always applies).

    Raises:
        PredicateError: If the clause is malformed.
    """
    if raw is None:
        return None
    try:
        return _parse(raw)
    except PredicateError as e:
        if rule_id and e.rule_id is None:
            raise PredicateError(str(e), rule_id=rule_id) from e
        raise
    except ValidationError as e:
        raise PredicateError(_first_error(e), rule_id=rule_id) from e


def _parse(raw: Any) -> Predicate:
    if isinstance(raw, list):
        if not raw:
            raise PredicateError("empty condition list")
        return AllOf(members=tuple(_parse(item) for item in raw))

    if not isinstance(raw, Mapping):
        raise PredicateError(f"expected a mapping or list, got {type(raw).__name__}")

    if not raw:
        raise PredicateError("empty condition mapping")

    if "fact" in raw:
        return Condition.model_validate(dict(raw))

    combinators = [key for key in _COMBINATORS if key in raw]
    if combinators:
        if len(raw) != 1:
            raise PredicateError(
                f"'{combinators[0]}' cannot be mixed with other keys: {sorted(raw)}"
            )
        key = combinators[0]
        body = raw[key]
        if key == "not":
            return Not(member=_parse(body))
        if not isinstance(body, list) or not body:
            raise PredicateError(f"'{key}' needs a non-empty list")
        members = tuple(_parse(item) for item in body)
        return AllOf(members=members) if key == "all" else AnyOf(members=members)

    # Shorthand: {fact: expected, ...}
    conditions = tuple(
        Condition(fact=str(fact), equals=expected) for fact, expected in raw.items()
    )
    return conditions[0] if len(conditions) == 1 else AllOf(members=conditions)


def _first_error(error: ValidationError) -> str:
    errors = error.errors()
    if not errors:
        return str(error)
    return str(errors[0].get("msg", error))
