"""
Template renderer — jinja2 over the packaged and configured template dirs.

Templates are looked up by id (their file name, e.g.
``datadog_check.yaml.j2``) in the configured directories first, then in
the templates shipped with hostconverge.  Undefined variables are
errors, never silent blanks.
"""

from __future__ import annotations

import logging
from abc import ABC, abstractmethod
from collections.abc import Sequence
from pathlib import Path
from typing import Any

import jinja2

from hostconverge.core.engine.errors import ActionError

logger = logging.getLogger(__name__)

PACKAGE_TEMPLATES = Path(__file__).resolve().parent.parent / "templates"


class RenderError(ActionError):
    kind = "render"


class TemplateRenderer(ABC):
    """Renders a template id with a context into file content."""

    @abstractmethod
    def render(self, template_id: str, context: dict[str, Any]) -> bytes:
        """Render ``template_id``.

        Raises:
            RenderError: If the template is missing or fails to render.
        """

    @abstractmethod
    def render_string(self, source: str, context: dict[str, Any]) -> str:
        """Render an inline template (commands, probes)."""


class JinjaTemplateRenderer(TemplateRenderer):
    """jinja2-backed renderer."""

    def __init__(self, search_path: Sequence[Path] = ()):
        dirs = [str(p) for p in search_path] + [str(PACKAGE_TEMPLATES)]
        self.env = jinja2.Environment(
            loader=jinja2.FileSystemLoader(dirs),
            undefined=jinja2.StrictUndefined,
            keep_trailing_newline=True,
            autoescape=False,
        )

    def render(self, template_id: str, context: dict[str, Any]) -> bytes:
        try:
            template = self.env.get_template(template_id)
            return template.render(context).encode("utf-8")
        except jinja2.TemplateNotFound as e:
            raise RenderError(f"Template not found: {e.name}") from e
        except jinja2.TemplateError as e:
            raise RenderError(f"Cannot render {template_id}: {e}") from e

    def render_string(self, source: str, context: dict[str, Any]) -> str:
        try:
            return self.env.from_string(source).render(context)
        except jinja2.TemplateError as e:
            raise RenderError(f"Cannot render inline template: {e}") from e

    def list_templates(self) -> list[str]:
        return self.env.list_templates()
