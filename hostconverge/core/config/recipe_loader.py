"""
Recipe loader — loads rule tables from YAML files.

Recipes live in ``<dir>/<name>.yml``.  The recipes shipped with
hostconverge are always available; directories from hostconverge.yml
are searched first, so a local file can replace a built-in recipe of
the same name.
"""

from __future__ import annotations

import logging
from collections.abc import Iterable
from dataclasses import dataclass, field
from pathlib import Path

import yaml
from pydantic import ValidationError

from hostconverge.core.config.loader import ConfigError
from hostconverge.core.engine.errors import PredicateError
from hostconverge.core.engine.evaluator import validate_rules
from hostconverge.core.models.recipe import Recipe

logger = logging.getLogger(__name__)

PACKAGE_RECIPES = Path(__file__).resolve().parent.parent.parent / "recipes"

_SUFFIXES = (".yml", ".yaml")


def load_recipe(path: Path) -> Recipe:
    """Load and validate a single recipe file.

    The recipe's rules are compiled and checked (predicates, notification
    targets) so a broken recipe is rejected before any pass starts.

    Raises:
        ConfigError: If the file is unreadable or the recipe invalid.
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read recipe {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in recipe {path}: {e}") from e

    if not isinstance(data, dict):
        raise ConfigError(f"Recipe {path} is not a mapping")

    data.setdefault("name", path.stem)

    try:
        recipe = Recipe.model_validate(data)
        validate_rules(recipe.compile())
    except ValidationError as e:
        raise ConfigError(f"Invalid recipe {path}: {e}") from e
    except PredicateError as e:
        raise ConfigError(f"Invalid recipe {path}: {e}") from e

    logger.debug("Loaded recipe %s (%d rules) from %s", recipe.name, len(recipe.rules), path)
    return recipe


@dataclass
class RecipeCatalog:
    """Every recipe found, plus the files that failed to load."""

    recipes: dict[str, Recipe] = field(default_factory=dict)
    sources: dict[str, Path] = field(default_factory=dict)
    errors: dict[Path, str] = field(default_factory=dict)

    def get(self, name: str) -> Recipe | None:
        return self.recipes.get(name)

    def names(self) -> list[str]:
        return sorted(self.recipes)

    def select(self, names: Iterable[str]) -> list[Recipe]:
        """Recipes by name, in the order given.

        Raises:
            ConfigError: If a name is unknown.
        """
        selected = []
        for name in names:
            recipe = self.recipes.get(name)
            if recipe is None:
                known = ", ".join(self.names()) or "none"
                raise ConfigError(f"Unknown recipe '{name}' (available: {known})")
            selected.append(recipe)
        return selected


def discover_recipes(
    recipe_dirs: Iterable[Path] = (),
    include_builtin: bool = True,
) -> RecipeCatalog:
    """Discover and load every recipe.

    Configured directories take precedence over the built-in recipes.
    Files that fail to load are logged and reported in ``errors``.
    """
    catalog = RecipeCatalog()
    search = list(recipe_dirs)
    if include_builtin:
        search.append(PACKAGE_RECIPES)

    for directory in search:
        if not directory.is_dir():
            logger.debug("Recipe directory not found: %s", directory)
            continue

        for path in sorted(directory.iterdir()):
            if path.suffix not in _SUFFIXES or not path.is_file():
                continue
            try:
                recipe = load_recipe(path)
            except ConfigError as e:
                logger.warning("%s", e)
                catalog.errors[path] = str(e)
                continue

            if recipe.name in catalog.recipes:
                logger.debug(
                    "Recipe %s from %s shadowed by %s",
                    recipe.name, path, catalog.sources[recipe.name],
                )
                continue
            catalog.recipes[recipe.name] = recipe
            catalog.sources[recipe.name] = path

    logger.info("Discovered %d recipes: %s", len(catalog.recipes), catalog.names())
    return catalog
