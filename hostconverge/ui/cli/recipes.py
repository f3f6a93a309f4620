"""
CLI commands for recipes — list, inspect, validate.

Thin wrappers over ``hostconverge.core.config.recipe_loader``.

Usage::

    hostconverge recipes list
    hostconverge recipes show nagios_datadog_check
    hostconverge recipes check
"""

from __future__ import annotations

import json
import sys

import click


def _catalog(ctx: click.Context):
    from hostconverge.core.config.loader import ConfigError, load_config
    from hostconverge.core.config.recipe_loader import discover_recipes

    try:
        config = load_config(ctx.obj.get("config_path"))
    except ConfigError as e:
        click.secho(f"❌ {e}", fg="red", err=True)
        sys.exit(2)
    return discover_recipes(config.resolved_recipe_dirs)


@click.group()
def recipes() -> None:
    """Recipes — the rule tables hostconverge can apply."""


@recipes.command("list")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def list_recipes(ctx: click.Context, as_json: bool) -> None:
    """List available recipes."""
    catalog = _catalog(ctx)

    if as_json:
        click.echo(json.dumps([
            {
                "name": name,
                "description": catalog.recipes[name].description,
                "rules": len(catalog.recipes[name].rules),
                "source": str(catalog.sources[name]),
            }
            for name in catalog.names()
        ], indent=2))
        return

    if not catalog.recipes:
        click.echo("No recipes found.")
        return

    for name in catalog.names():
        recipe = catalog.recipes[name]
        click.secho(f"  {name}", fg="cyan", bold=True, nl=False)
        click.echo(f"  ({len(recipe.rules)} rules)  {recipe.description}")


@recipes.command("show")
@click.argument("name")
@click.option("--json-output", "--json", "as_json", is_flag=True, help="Output as JSON.")
@click.pass_context
def show_recipe(ctx: click.Context, name: str, as_json: bool) -> None:
    """Show the rules of recipe NAME, in evaluation order."""
    catalog = _catalog(ctx)
    recipe = catalog.get(name)
    if recipe is None:
        click.secho(f"❌ Unknown recipe '{name}'", fg="red", err=True)
        sys.exit(2)

    if as_json:
        click.echo(json.dumps(recipe.model_dump(mode="json"), indent=2))
        return

    click.secho(f"\n📋 {recipe.name}", fg="cyan", bold=True)
    if recipe.description:
        click.echo(f"   {recipe.description}")
    click.echo(f"   {catalog.sources[name]}\n")

    for i, spec in enumerate(recipe.rules, start=1):
        flags = " [critical]" if spec.critical else ""
        click.secho(f"   {i}. {spec.id}{flags}", bold=True)
        click.echo(f"      {spec.action.describe()}")
        if spec.when is not None:
            click.echo(f"      when: {json.dumps(spec.when)}")
        if spec.notifies:
            click.echo(f"      notifies: {spec.notifies} (restart)")
    click.echo()


@recipes.command("check")
@click.pass_context
def check_recipes(ctx: click.Context) -> None:
    """Validate every recipe; exit non-zero if any fails to load."""
    catalog = _catalog(ctx)

    for name in catalog.names():
        click.secho(f"  ✓ {name}", fg="green")
    for path, error in catalog.errors.items():
        click.secho(f"  ✗ {path}: {error}", fg="red")

    if catalog.errors:
        sys.exit(1)
