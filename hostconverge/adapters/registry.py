"""
Adapter registry — central dispatch for all actions.

The registry is the single point of adapter management.  It registers
one adapter per action kind, validates, applies, times each call, and
turns adapter errors into ``failed`` outcomes.  The evaluator never
talks to adapters directly — always through the registry.
"""

from __future__ import annotations

import logging
import time
from typing import Any

from hostconverge.adapters.base import Adapter, ExecutionContext
from hostconverge.core.engine.errors import ActionError
from hostconverge.core.models.outcome import Outcome

logger = logging.getLogger(__name__)


class AdapterRegistry:
    """Central registry and dispatcher for adapters, keyed by action kind."""

    def __init__(self) -> None:
        self._adapters: dict[str, Adapter] = {}

    def register(self, adapter: Adapter) -> None:
        """Register an adapter for its action kind."""
        kind = adapter.kind
        if kind in self._adapters:
            logger.warning(
                "Overwriting adapter for '%s': %s → %s",
                kind, self._adapters[kind].name, adapter.name,
            )
        self._adapters[kind] = adapter
        logger.debug("Registered adapter %s for kind '%s'", adapter.name, kind)

    def unregister(self, kind: str) -> None:
        """Remove the adapter for an action kind."""
        self._adapters.pop(kind, None)

    def get(self, kind: str) -> Adapter | None:
        """Look up the adapter for an action kind."""
        return self._adapters.get(kind)

    def list_kinds(self) -> list[str]:
        """List all action kinds with a registered adapter."""
        return list(self._adapters.keys())

    def adapter_status(self) -> dict[str, dict[str, Any]]:
        """Availability of every registered adapter."""
        status = {}
        for kind, adapter in self._adapters.items():
            try:
                available = adapter.is_available()
            except Exception:
                available = False
            status[kind] = {
                "name": adapter.name,
                "kind": kind,
                "available": available,
                "type": adapter.__class__.__name__,
            }
        return status

    def dispatch(self, action: Any, context: ExecutionContext) -> Outcome:
        """Apply an action through its adapter.

        This is the main dispatch method. It:
        1. Resolves the adapter for ``action.kind``
        2. Validates the action
        3. Applies it (adapters honour ``context.dry_run``)
        4. Returns an Outcome (never raises)
        """
        start_time = time.monotonic()
        kind = getattr(action, "kind", "")
        rule_id = context.rule_id

        adapter = self._adapters.get(kind)
        if adapter is None:
            return Outcome.failure(
                rule_id,
                f"No adapter registered for '{kind}'",
                kind="dispatch",
            )

        # Validate
        try:
            is_valid, error_msg = adapter.validate(action, context)
        except Exception as e:
            return Outcome.failure(rule_id, f"Validation error: {e}", kind="dispatch")
        if not is_valid:
            return Outcome.failure(
                rule_id, f"Validation failed: {error_msg}", kind="dispatch"
            )

        # Apply
        try:
            outcome = adapter.apply(action, context)
        except ActionError as e:
            logger.debug("Adapter %s failed on %s: %s", adapter.name, rule_id, e)
            outcome = Outcome.failure(
                rule_id,
                e.detail,
                kind=e.kind,
                metadata={"adapter": adapter.name},
            )
        except Exception as e:
            logger.error("Adapter %s raised during apply: %s", adapter.name, e)
            outcome = Outcome.failure(
                rule_id,
                f"Unexpected error: {e}",
                kind="internal",
                metadata={"adapter": adapter.name},
            )

        outcome.duration_ms = int((time.monotonic() - start_time) * 1000)
        outcome.dry_run = context.dry_run
        return outcome
