"""
hostconverge — CLI entrypoint.

Usage:
    hostconverge --help
    hostconverge run nagios_datadog_check
    hostconverge run nagios_client_windows_uninstall --dry-run
    hostconverge facts --json
    hostconverge recipes list
"""

from __future__ import annotations

import json
import sys
from pathlib import Path

import click

from hostconverge import __version__
from hostconverge.core.observability.logging_config import setup_from_flags

_STATUS_COLORS = {
    "changed": "green",
    "noop": "white",
    "skipped": "bright_black",
    "failed": "red",
}
_MARKERS = {"changed": "✓", "noop": "·", "skipped": "⊘", "failed": "✗"}


@click.group()
@click.version_option(version=__version__, prog_name="hostconverge")
@click.option("--verbose", "-v", is_flag=True, help="Enable verbose output.")
@click.option("--quiet", "-q", is_flag=True, help="Suppress non-essential output.")
@click.option("--debug", is_flag=True, help="Enable debug logging (very verbose).")
@click.option(
    "--config",
    "-c",
    "config_path",
    type=click.Path(exists=False, dir_okay=False),
    default=None,
    help="Path to hostconverge.yml (default: auto-detect).",
)
@click.pass_context
def cli(
    ctx: click.Context,
    verbose: bool,
    quiet: bool,
    debug: bool,
    config_path: str | None,
) -> None:
    """hostconverge — converge monitoring agents to their declared state."""
    ctx.ensure_object(dict)
    ctx.obj["quiet"] = quiet
    ctx.obj["config_path"] = Path(config_path) if config_path else None

    setup_from_flags(debug=debug, verbose=verbose, quiet=quiet)


@cli.command()
@click.argument("recipes", nargs=-1, required=True)
@click.option(
    "--facts",
    "facts_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML/JSON file of facts merged over the gathered ones.",
)
@click.option("--strict", is_flag=True, default=None, help="Fail on missing facts instead of skipping.")
@click.option("--dry-run", is_flag=True, help="Report what would change without changing it.")
@click.option("--simulate", is_flag=True, help="Converge against an in-memory host.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def run(
    ctx: click.Context,
    recipes: tuple[str, ...],
    facts_file: Path | None,
    strict: bool | None,
    dry_run: bool,
    simulate: bool,
    as_json: bool,
) -> None:
    """Converge this host to one or more RECIPES, in order."""
    from hostconverge.core.use_cases.converge import converge

    outcome = converge(
        list(recipes),
        config_path=ctx.obj.get("config_path"),
        facts_file=facts_file,
        strict=strict or None,
        dry_run=dry_run,
        simulate=simulate,
    )

    if as_json:
        click.echo(json.dumps(outcome.to_dict(), indent=2))
        sys.exit(outcome.exit_code)

    if outcome.error:
        click.secho(f"❌ {outcome.error}", fg="red", err=True)
        sys.exit(outcome.exit_code)

    result = outcome.result
    assert result is not None  # guaranteed after error check above
    quiet = ctx.obj.get("quiet", False)

    if not quiet:
        mode = " (dry run)" if dry_run else " (simulated)" if simulate else ""
        click.secho(f"\n🔧 {', '.join(recipes)}{mode}", fg="cyan", bold=True)

    for o in result.applied:
        if quiet and o.status in ("noop", "skipped"):
            continue
        label = f"{o.rule_id}{' (notified)' if o.notification else ''}"
        detail = o.error or o.output or o.reason
        click.secho(f"   {_MARKERS[o.status]} {o.status:<8}", fg=_STATUS_COLORS[o.status], nl=False)
        click.echo(f" {label}  {detail}")

    click.echo()
    summary = (
        f"   {result.changed} changed, {result.noop} unchanged, "
        f"{result.skipped} skipped, {result.failed} failed"
    )
    color = {"ok": "green", "partial": "yellow"}.get(result.status, "red")
    click.secho(summary, fg=color)
    if outcome.halted_rule:
        click.secho(f"   Halted: critical rule {outcome.halted_rule} failed", fg="red")

    sys.exit(outcome.exit_code)


@cli.command()
@click.argument("recipes", nargs=-1)
@click.option(
    "--facts",
    "facts_file",
    type=click.Path(exists=True, dir_okay=False, path_type=Path),
    default=None,
    help="YAML/JSON file of facts merged over the gathered ones.",
)
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def facts(
    ctx: click.Context,
    recipes: tuple[str, ...],
    facts_file: Path | None,
    as_json: bool,
) -> None:
    """Show the facts a pass over RECIPES (default: all) would see."""
    from hostconverge.core.config.loader import ConfigError
    from hostconverge.core.use_cases.converge import collect_facts

    try:
        snapshot = collect_facts(
            list(recipes),
            config_path=ctx.obj.get("config_path"),
            facts_file=facts_file,
        )
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(2)

    data = snapshot.to_dict()
    if as_json:
        click.echo(json.dumps(data, indent=2, sort_keys=True))
        return

    import yaml

    click.echo(yaml.safe_dump(data, sort_keys=True, default_flow_style=False).rstrip())


@cli.command()
@click.option("-n", "count", default=10, show_default=True, help="Number of passes to show.")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def history(ctx: click.Context, count: int, as_json: bool) -> None:
    """Show recent passes from the audit ledger."""
    from hostconverge.core.config.loader import ConfigError, load_config
    from hostconverge.core.persistence.audit import AuditWriter

    try:
        config = load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(2)

    writer = AuditWriter(path=config.resolved_audit_file, root=config.root)
    entries = writer.read_recent(count)

    if as_json:
        click.echo(json.dumps([e.model_dump(mode="json") for e in entries], indent=2))
        return

    if not entries:
        click.echo(f"No passes recorded in {writer.path}")
        return

    for entry in entries:
        color = {"ok": "green", "partial": "yellow"}.get(entry.status, "red")
        click.echo(f"{entry.timestamp}  {entry.pass_id}  ", nl=False)
        click.secho(f"{entry.status:<8}", fg=color, nl=False)
        click.echo(
            f" {','.join(entry.recipes)}  "
            f"+{entry.rules_changed} ={entry.rules_noop} ⊘{entry.rules_skipped} ✗{entry.rules_failed}"
        )


# ── Register sub-command groups from hostconverge/ui/cli/ ─────────

from hostconverge.ui.cli.recipes import recipes  # noqa: E402

cli.add_command(recipes)


if __name__ == "__main__":
    cli()
