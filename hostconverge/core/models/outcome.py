"""
Outcome and EvaluationResult — what a pass reports back.

Adapters return Outcomes; the evaluator collects them, in order, into an
EvaluationResult.  The caller always gets the full list, failures
included, never just a pass/fail flag.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import UTC, datetime
from typing import Any, Literal

from pydantic import BaseModel, Field

OutcomeStatus = Literal["skipped", "noop", "changed", "failed"]


def _now_iso() -> str:
    """Current UTC time as ISO string."""
    return datetime.now(UTC).isoformat()


class Outcome(BaseModel):
    """Terminal state of one rule in one pass."""

    rule_id: str
    status: OutcomeStatus

    reason: str = ""                 # why skipped / why it failed
    output: str = ""                 # human summary of what happened
    error: str | None = None
    error_kind: str | None = None    # service, file, process, timeout, predicate

    started_at: str = Field(default_factory=_now_iso)
    duration_ms: int = 0

    notification: bool = False       # produced by the end-of-pass flush
    dry_run: bool = False

    metadata: dict[str, Any] = Field(default_factory=dict)

    @property
    def changed(self) -> bool:
        return self.status == "changed"

    @property
    def failed(self) -> bool:
        return self.status == "failed"

    @classmethod
    def skip(cls, rule_id: str, reason: str = "", **kwargs: Any) -> Outcome:
        """Predicate false (or not applicable)."""
        return cls(rule_id=rule_id, status="skipped", reason=reason, **kwargs)

    @classmethod
    def noop(cls, rule_id: str, output: str = "", **kwargs: Any) -> Outcome:
        """Already in the desired state."""
        return cls(rule_id=rule_id, status="noop", output=output, **kwargs)

    @classmethod
    def change(cls, rule_id: str, output: str = "", **kwargs: Any) -> Outcome:
        """A mutation was applied (or would be, in a dry run)."""
        return cls(rule_id=rule_id, status="changed", output=output, **kwargs)

    @classmethod
    def failure(
        cls,
        rule_id: str,
        error: str,
        kind: str | None = None,
        **kwargs: Any,
    ) -> Outcome:
        """The action's side effect failed."""
        return cls(
            rule_id=rule_id,
            status="failed",
            reason=error,
            error=error,
            error_kind=kind,
            **kwargs,
        )


@dataclass
class EvaluationResult:
    """Ordered outcomes of one convergence pass."""

    pass_id: str = ""
    applied: list[Outcome] = field(default_factory=list)
    halted: bool = False
    dry_run: bool = False
    facts: dict[str, Any] = field(default_factory=dict)

    def record(self, outcome: Outcome) -> None:
        self.applied.append(outcome)

    def outcome_for(self, rule_id: str, notification: bool = False) -> Outcome | None:
        """Return the outcome recorded for ``rule_id``, if any."""
        for outcome in self.applied:
            if outcome.rule_id == rule_id and outcome.notification == notification:
                return outcome
        return None

    def _count(self, status: str) -> int:
        return sum(1 for o in self.applied if o.status == status)

    @property
    def total(self) -> int:
        return len(self.applied)

    @property
    def changed(self) -> int:
        return self._count("changed")

    @property
    def noop(self) -> int:
        return self._count("noop")

    @property
    def skipped(self) -> int:
        return self._count("skipped")

    @property
    def failed(self) -> int:
        return self._count("failed")

    @property
    def all_ok(self) -> bool:
        return self.failed == 0 and not self.halted

    @property
    def status(self) -> str:
        if self.halted:
            return "halted"
        if self.failed == 0:
            return "ok"
        if self.changed + self.noop > 0:
            return "partial"
        return "failed"

    def to_dict(self) -> dict:
        return {
            "pass_id": self.pass_id,
            "status": self.status,
            "dry_run": self.dry_run,
            "total": self.total,
            "changed": self.changed,
            "noop": self.noop,
            "skipped": self.skipped,
            "failed": self.failed,
            "applied": [o.model_dump(mode="json") for o in self.applied],
        }
