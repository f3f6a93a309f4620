"""
Converge use case — run recipes against this host.

This is the top-level orchestrator: it loads config, selects recipes,
gathers facts, wires the adapters for the host's platform, evaluates,
and writes the audit ledger.  The full vertical slice from
``hostconverge run`` to an audited pass.
"""

from __future__ import annotations

import logging
import time
from dataclasses import dataclass, field
from pathlib import Path

from hostconverge.adapters.memory import (
    MemoryFileStore,
    MemoryServiceController,
    ScriptedCommandRunner,
)
from hostconverge.adapters.registry import AdapterRegistry
from hostconverge.adapters.services.adapter import ServiceAdapter
from hostconverge.adapters.services.controller import ServiceStatus
from hostconverge.adapters.services.systemd import SystemdServiceController
from hostconverge.adapters.services.windows import WindowsServiceController
from hostconverge.adapters.shell.command import CommandRunner, SubprocessRunner
from hostconverge.adapters.shell.filesystem import LocalFileStore, TemplateFileAdapter
from hostconverge.adapters.shell.groups import GroupAdapter
from hostconverge.adapters.shell.uninstall import UninstallAdapter
from hostconverge.adapters.templates import JinjaTemplateRenderer
from hostconverge.core.config.loader import ConfigError, ConvergeConfig, load_config
from hostconverge.core.config.recipe_loader import discover_recipes
from hostconverge.core.engine.errors import (
    EvaluationHalted,
    IncompleteFactsError,
    PredicateError,
)
from hostconverge.core.engine.evaluator import evaluate, generate_pass_id, write_audit_entry
from hostconverge.core.models.facts import HostFacts
from hostconverge.core.models.outcome import EvaluationResult
from hostconverge.core.models.recipe import Recipe
from hostconverge.core.models.rule import Probes, Rule
from hostconverge.core.observability.logging_config import pass_context
from hostconverge.core.persistence.audit import AuditWriter
from hostconverge.core.services.facts import (
    assume_directories,
    gather_facts,
    probe_directories,
)

logger = logging.getLogger(__name__)


@dataclass
class ConvergeResult:
    """Result of converging one or more recipes."""

    result: EvaluationResult | None = None
    recipes: list[str] = field(default_factory=list)
    facts: HostFacts | None = None
    audit_path: Path | None = None
    halted_rule: str | None = None
    error: str | None = None

    @property
    def exit_code(self) -> int:
        if self.error:
            return 2
        if self.result is None or not self.result.all_ok:
            return 1
        return 0

    def to_dict(self) -> dict:
        data: dict = {"recipes": self.recipes}
        if self.error:
            data["error"] = self.error
            return data
        if self.result:
            data.update(self.result.to_dict())
        if self.halted_rule:
            data["halted_rule"] = self.halted_rule
        if self.audit_path:
            data["audit_path"] = str(self.audit_path)
        return data


def build_registry(
    facts: HostFacts,
    config: ConvergeConfig,
    runner: CommandRunner,
    simulate: bool = False,
) -> AdapterRegistry:
    """Wire one adapter per action kind for this host.

    The service controller follows the ``os`` fact.  In simulate mode
    services and files live in memory and nothing on the host changes.
    """
    renderer = JinjaTemplateRenderer(config.resolved_template_dirs)

    if simulate:
        # Every service the recipes name exists and is running
        controller = MemoryServiceController(
            default=ServiceStatus(exists=True, running=True, start_mode="auto")
        )
        store = MemoryFileStore()
    else:
        if facts.get("os") == "windows":
            controller = WindowsServiceController(runner)
        else:
            controller = SystemdServiceController(runner)
        store = LocalFileStore()

    registry = AdapterRegistry()
    registry.register(ServiceAdapter(controller))
    registry.register(TemplateFileAdapter(renderer, store))
    registry.register(UninstallAdapter(runner, renderer))
    registry.register(GroupAdapter(runner))
    return registry


def _rules_and_probes(recipes: list[Recipe]) -> tuple[list[Rule], Probes]:
    rules: list[Rule] = []
    probes = Probes()
    for recipe in recipes:
        rules.extend(recipe.compile())
        probes = probes.merge(recipe.all_probes())
    return rules, probes


def collect_facts(
    recipe_names: list[str],
    config_path: Path | None = None,
    facts_file: Path | None = None,
    runner: CommandRunner | None = None,
) -> HostFacts:
    """Gather the snapshot a pass over ``recipe_names`` would see.

    Raises:
        ConfigError: On invalid config, recipes or facts file.
    """
    config = load_config(config_path)
    catalog = discover_recipes(config.resolved_recipe_dirs)
    names = recipe_names or catalog.names()
    _, probes = _rules_and_probes(catalog.select(names))
    return gather_facts(
        probes,
        runner or SubprocessRunner(default_timeout=config.command_timeout),
        overrides=config.attributes,
        facts_file=facts_file,
    )


def converge(
    recipe_names: list[str],
    config_path: Path | None = None,
    facts_file: Path | None = None,
    strict: bool | None = None,
    dry_run: bool = False,
    simulate: bool = False,
    facts: HostFacts | None = None,
    registry: AdapterRegistry | None = None,
    runner: CommandRunner | None = None,
    write_audit: bool = True,
) -> ConvergeResult:
    """Converge this host to the named recipes.

    Args:
        recipe_names: Recipes to run, in order.
        config_path: Explicit hostconverge.yml (default: search upward).
        facts_file: Synthetic facts merged over the gathered ones.
        strict: Fail on missing facts (default: from config).
        dry_run: Report changes without making them.
        simulate: Use in-memory services, files and commands.
        facts: Pre-built snapshot; skips fact gathering.
        registry: Pre-configured adapter registry.
        runner: Command runner for probes and adapters.
        write_audit: Append the pass to the audit ledger.

    Returns:
        ConvergeResult; configuration problems are reported in ``error``.
    """
    outcome = ConvergeResult(recipes=list(recipe_names))

    # ── Load config and recipes ──────────────────────────────────
    try:
        config = load_config(config_path)
        catalog = discover_recipes(config.resolved_recipe_dirs)
        recipes = catalog.select(recipe_names)
    except ConfigError as e:
        outcome.error = str(e)
        return outcome

    if not recipes:
        outcome.error = "No recipes selected."
        return outcome

    rules, probes = _rules_and_probes(recipes)

    if runner is None:
        if simulate:
            runner = ScriptedCommandRunner()
        else:
            runner = SubprocessRunner(default_timeout=config.command_timeout)

    # ── Gather facts ─────────────────────────────────────────────
    if facts is None:
        try:
            facts = gather_facts(
                probes,
                runner,
                overrides=config.attributes,
                facts_file=facts_file,
                directory_probe=assume_directories if simulate else probe_directories,
            )
        except ConfigError as e:
            outcome.error = str(e)
            return outcome
    outcome.facts = facts

    if registry is None:
        registry = build_registry(facts, config, runner, simulate=simulate)

    # ── Evaluate ─────────────────────────────────────────────────
    pass_id = generate_pass_id()
    strict = config.strict_facts if strict is None else strict
    start = time.monotonic()

    with pass_context(pass_id):
        try:
            outcome.result = evaluate(
                facts,
                rules,
                registry,
                strict=strict,
                dry_run=dry_run,
                pass_id=pass_id,
            )
        except EvaluationHalted as e:
            outcome.result = e.result
            outcome.halted_rule = e.rule_id
        except (IncompleteFactsError, PredicateError) as e:
            outcome.error = str(e)
            return outcome

    duration_ms = int((time.monotonic() - start) * 1000)

    # ── Write audit log ──────────────────────────────────────────
    if write_audit and not simulate:
        writer = AuditWriter(path=config.resolved_audit_file, root=config.root)
        write_audit_entry(
            outcome.result,
            writer,
            recipes=[r.name for r in recipes],
            duration_ms=duration_ms,
            hostname=str(facts.get("hostname", "")),
        )
        outcome.audit_path = writer.path

    return outcome
