"""
Error taxonomy for convergence passes.

Two families:

    PredicateError / IncompleteFactsError
        Something is wrong with the rules or the facts they read.
        Raised before or instead of touching the host.

    ActionError (+ subtypes)
        An external side effect failed: service control, file access,
        process execution.  Adapters raise these; the registry turns
        them into ``failed`` outcomes so the pass keeps going.

EvaluationHalted wraps the partial result when a critical rule fails.
"""

from __future__ import annotations

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from hostconverge.core.models.outcome import EvaluationResult


class ConvergeError(Exception):
    """Base class for every error raised by hostconverge."""


class PredicateError(ConvergeError):
    """A rule or predicate definition is malformed."""

    def __init__(self, message: str, rule_id: str | None = None):
        self.rule_id = rule_id
        if rule_id:
            message = f"rule '{rule_id}': {message}"
        super().__init__(message)


class IncompleteFactsError(ConvergeError):
    """A predicate referenced a fact that is absent (strict mode only)."""

    def __init__(self, fact: str, rule_id: str | None = None):
        self.fact = fact
        self.rule_id = rule_id
        where = f" (rule '{rule_id}')" if rule_id else ""
        super().__init__(f"Missing host fact '{fact}'{where}")


class ActionError(ConvergeError):
    """An action's underlying side effect failed."""

    kind = "action"

    def __init__(self, detail: str, kind: str | None = None):
        if kind is not None:
            self.kind = kind
        self.detail = detail
        super().__init__(f"{self.kind}: {detail}")


class ServiceControlError(ActionError):
    kind = "service"


class FileReadError(ActionError):
    kind = "file"


class FileWriteError(ActionError):
    kind = "file"


class ProcessExecError(ActionError):
    kind = "process"


class ActionTimeoutError(ActionError):
    """A command did not finish within its deadline."""

    kind = "timeout"

    def __init__(self, detail: str, timeout: float | None = None):
        self.timeout = timeout
        super().__init__(detail)


class EvaluationHalted(ConvergeError):
    """A critical rule failed; the pass stopped early.

    ``result`` holds every outcome recorded up to and including the
    failing rule.
    """

    def __init__(self, result: EvaluationResult, rule_id: str, reason: str):
        self.result = result
        self.rule_id = rule_id
        self.reason = reason
        super().__init__(f"Critical rule '{rule_id}' failed: {reason}")
