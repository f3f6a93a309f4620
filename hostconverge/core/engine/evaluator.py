"""
Convergence evaluator — the central loop of a pass.

Takes a frozen HostFacts snapshot and an ordered list of rules, and for
each rule: evaluates its predicate, applies its action through the
adapter registry, and queues a restart for the rule it notifies.  When
every rule has run, queued restarts are flushed, once per service.

Flow:
    validate rules → (strict) check facts
                   → for each rule: predicate → dispatch → queue
                   → flush notifications → EvaluationResult

Rules run strictly in declared order, one at a time.  Later rules see
the real-world effects of earlier ones (stop before uninstall), but
never a changed fact snapshot.
"""

from __future__ import annotations

import logging
import uuid
from collections.abc import Iterable, Iterator
from datetime import UTC, datetime

from hostconverge.adapters.base import ExecutionContext
from hostconverge.adapters.registry import AdapterRegistry
from hostconverge.core.engine.errors import (
    EvaluationHalted,
    IncompleteFactsError,
    PredicateError,
)
from hostconverge.core.models.action import ServiceStateChange
from hostconverge.core.models.facts import HostFacts, MissingFactError
from hostconverge.core.models.outcome import EvaluationResult, Outcome
from hostconverge.core.models.rule import Rule
from hostconverge.core.persistence.audit import AuditEntry, AuditWriter

logger = logging.getLogger(__name__)

_MARKERS = {"changed": "✓", "noop": "·", "skipped": "⊘", "failed": "✗"}


class NotificationQueue:
    """Pending restarts for one pass, deduplicated by service name.

    Insertion order is kept so restarts happen in the order the first
    notification for each service arrived.
    """

    def __init__(self) -> None:
        self._pending: dict[str, str] = {}   # service name → target rule id

    def enqueue(self, service: str, rule_id: str) -> bool:
        """Queue a restart; return False if one was already pending."""
        if service in self._pending:
            return False
        self._pending[service] = rule_id
        return True

    def drain(self) -> Iterator[tuple[str, str]]:
        """Yield (service, rule_id) pairs and empty the queue."""
        pending, self._pending = self._pending, {}
        yield from pending.items()

    def __contains__(self, service: object) -> bool:
        return service in self._pending

    def __len__(self) -> int:
        return len(self._pending)


def validate_rules(rules: Iterable[Rule]) -> dict[str, Rule]:
    """Check a rule set before anything is applied.

    Returns the rules indexed by id.

    Raises:
        PredicateError: On duplicate ids, or a ``notifies`` target that
            is missing or is not a service rule.
    """
    by_id: dict[str, Rule] = {}
    for rule in rules:
        if not rule.id:
            raise PredicateError("rule has an empty id")
        if rule.id in by_id:
            raise PredicateError("duplicate rule id", rule_id=rule.id)
        if rule.when is not None and not callable(rule.when):
            raise PredicateError("predicate is not callable", rule_id=rule.id)
        by_id[rule.id] = rule

    for rule in by_id.values():
        if rule.notifies is None:
            continue
        target = by_id.get(rule.notifies)
        if target is None:
            raise PredicateError(
                f"notifies unknown rule '{rule.notifies}'", rule_id=rule.id
            )
        if not target.is_service:
            raise PredicateError(
                f"notifies '{rule.notifies}', which is not a service rule",
                rule_id=rule.id,
            )

    return by_id


def check_facts(facts: HostFacts, rules: Iterable[Rule]) -> None:
    """Fail before anything is applied if a predicate needs a missing fact.

    Predicates are pure over the frozen snapshot, so this gives the same
    answer the pass itself would reach, just before any host change.

    Raises:
        IncompleteFactsError: Naming the first missing fact and its rule.
    """
    for rule in rules:
        try:
            rule.applies_to(facts)
        except MissingFactError as e:
            raise IncompleteFactsError(e.path, rule_id=rule.id) from e
        except Exception:
            # Recorded as a failed rule when the pass reaches it
            continue


def evaluate(
    facts: HostFacts,
    rules: Iterable[Rule],
    registry: AdapterRegistry,
    strict: bool = False,
    dry_run: bool = False,
    pass_id: str | None = None,
) -> EvaluationResult:
    """Run one convergence pass.

    Args:
        facts: Host snapshot; read-only for the whole pass.
        rules: Rules in the order they must run.
        registry: Adapter dispatch for every action kind.
        strict: Raise on a missing fact instead of skipping the rule.
        dry_run: Report what would change without changing it.
        pass_id: Identifier for logs and the audit ledger.

    Returns:
        EvaluationResult with one outcome per rule, followed by one per
        flushed notification.

    Raises:
        PredicateError: If the rule set is malformed (nothing applied).
        IncompleteFactsError: In strict mode, when a fact is missing;
            raised before any rule is applied.
        EvaluationHalted: When a critical rule fails; carries the
            partial result.
    """
    rules = list(rules)
    by_id = validate_rules(rules)
    if strict:
        check_facts(facts, rules)

    result = EvaluationResult(
        pass_id=pass_id or generate_pass_id(),
        dry_run=dry_run,
        facts=facts.to_dict(),
    )
    queue = NotificationQueue()
    restarted: set[str] = set()
    skipped: set[str] = set()

    logger.info("Pass %s: %d rules%s", result.pass_id, len(rules), " (dry run)" if dry_run else "")

    for rule in rules:
        outcome = _evaluate_rule(rule, facts, registry, strict, dry_run)
        _record(result, outcome)

        if outcome.status == "skipped":
            skipped.add(rule.id)
        elif outcome.changed:
            if rule.is_service and "restart" in rule.action.states:
                restarted.add(rule.action.name)
            if rule.notifies:
                target = by_id[rule.notifies]
                if queue.enqueue(target.action.name, target.id):
                    logger.debug("%s queued restart of %s", rule.id, target.action.name)
        elif outcome.failed and rule.critical:
            _halt(result, rule.id, outcome.reason)

    for service, target_id in queue.drain():
        target = by_id[target_id]
        outcome = _flush_one(service, target, registry, facts, dry_run, restarted, skipped)
        _record(result, outcome)
        if outcome.changed:
            restarted.add(service)
        elif outcome.failed and target.critical:
            _halt(result, target_id, outcome.reason)

    logger.info(
        "Pass %s %s: %d changed, %d noop, %d skipped, %d failed",
        result.pass_id, result.status,
        result.changed, result.noop, result.skipped, result.failed,
    )
    return result


def _evaluate_rule(
    rule: Rule,
    facts: HostFacts,
    registry: AdapterRegistry,
    strict: bool,
    dry_run: bool,
) -> Outcome:
    try:
        applies = rule.applies_to(facts)
    except MissingFactError as e:
        if strict:
            raise IncompleteFactsError(e.path, rule_id=rule.id) from e
        return Outcome.skip(rule.id, reason=f"fact '{e.path}' is absent")
    except PredicateError as e:
        return Outcome.failure(rule.id, str(e), kind="predicate")
    except Exception as e:
        error = PredicateError(f"predicate raised {type(e).__name__}: {e}", rule_id=rule.id)
        return Outcome.failure(rule.id, str(error), kind="predicate")

    if not applies:
        return Outcome.skip(rule.id, reason="predicate is false")

    context = ExecutionContext(rule_id=rule.id, facts=facts, dry_run=dry_run)
    return registry.dispatch(rule.action, context)


def _flush_one(
    service: str,
    target: Rule,
    registry: AdapterRegistry,
    facts: HostFacts,
    dry_run: bool,
    restarted: set[str],
    skipped: set[str],
) -> Outcome:
    if target.id in skipped:
        return Outcome.skip(
            target.id,
            reason=f"service[{service}] rule not applicable on this host",
            notification=True,
        )
    if service in restarted:
        return Outcome.noop(
            target.id,
            output=f"service[{service}] already restarted this pass",
            notification=True,
        )

    context = ExecutionContext(rule_id=target.id, facts=facts, dry_run=dry_run)
    outcome = registry.dispatch(ServiceStateChange(name=service, states=("restart",)), context)
    outcome.notification = True
    return outcome


def _record(result: EvaluationResult, outcome: Outcome) -> None:
    result.record(outcome)
    marker = _MARKERS.get(outcome.status, "?")
    detail = outcome.error or outcome.output or outcome.reason
    suffix = " (notified)" if outcome.notification else ""
    if outcome.failed:
        logger.warning("%s %s%s → failed: %s", marker, outcome.rule_id, suffix, detail)
    else:
        logger.info("%s %s%s → %s %s", marker, outcome.rule_id, suffix, outcome.status, detail)


def _halt(result: EvaluationResult, rule_id: str, reason: str) -> None:
    result.halted = True
    logger.error("Critical rule %s failed; halting pass %s", rule_id, result.pass_id)
    raise EvaluationHalted(result, rule_id, reason)


def write_audit_entry(
    result: EvaluationResult,
    audit_writer: AuditWriter,
    recipes: list[str] | None = None,
    duration_ms: int = 0,
    hostname: str = "",
) -> None:
    """Append a pass summary to the audit ledger."""
    entry = AuditEntry(
        pass_id=result.pass_id,
        hostname=hostname,
        recipes=recipes or [],
        status=result.status,
        dry_run=result.dry_run,
        rules_total=result.total,
        rules_changed=result.changed,
        rules_noop=result.noop,
        rules_skipped=result.skipped,
        rules_failed=result.failed,
        changed=[o.rule_id for o in result.applied if o.changed],
        errors=[f"{o.rule_id}: {o.error}" for o in result.applied if o.failed],
        duration_ms=duration_ms,
    )
    audit_writer.write(entry)


def generate_pass_id() -> str:
    """Generate a unique pass ID."""
    now = datetime.now(UTC).strftime("%Y%m%d-%H%M%S")
    short = uuid.uuid4().hex[:6]
    return f"pass-{now}-{short}"
