"""
Filesystem adapter — converge files to rendered template content.

The adapter renders the template, compares the bytes with what is on
disk, and writes only when they differ.  Writes are atomic (write to a
temp file in the same directory, then rename) so a crash never leaves a
half-written config behind.
"""

from __future__ import annotations

import hashlib
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from pathlib import Path

from hostconverge.adapters.base import Adapter, ExecutionContext
from hostconverge.adapters.templates import TemplateRenderer
from hostconverge.core.engine.errors import FileReadError, FileWriteError
from hostconverge.core.models.action import FileRender
from hostconverge.core.models.outcome import Outcome

logger = logging.getLogger(__name__)


class FileStore(ABC):
    """Reads and atomically writes whole files."""

    @abstractmethod
    def read(self, path: str) -> bytes | None:
        """Current content, or None if the file does not exist.

        Raises:
            FileReadError: If the file exists but cannot be read.
        """

    @abstractmethod
    def write_atomic(self, path: str, content: bytes, mode: int | None = None) -> None:
        """Replace the file's content in one step.

        Raises:
            FileWriteError: If the write fails.
        """


class LocalFileStore(FileStore):
    """The host's real filesystem."""

    def read(self, path: str) -> bytes | None:
        target = Path(path)
        if not target.is_file():
            return None
        try:
            return target.read_bytes()
        except OSError as e:
            raise FileReadError(f"Cannot read {target}: {e}") from e

    def write_atomic(self, path: str, content: bytes, mode: int | None = None) -> None:
        target = Path(path)
        if not target.parent.is_dir():
            raise FileWriteError(f"Parent directory does not exist: {target.parent}")

        try:
            fd, tmp_path = tempfile.mkstemp(
                dir=target.parent,
                prefix=f".{target.name}.",
                suffix=".tmp",
            )
        except OSError as e:
            raise FileWriteError(f"Cannot create temp file in {target.parent}: {e}") from e

        tmp = Path(tmp_path)
        try:
            with os.fdopen(fd, "wb") as f:
                f.write(content)
            if mode is not None:
                tmp.chmod(mode)
            elif target.exists():
                tmp.chmod(target.stat().st_mode & 0o7777)
            else:
                tmp.chmod(0o644)
            tmp.replace(target)
            logger.debug("Wrote %d bytes to %s", len(content), target)
        except OSError as e:
            tmp.unlink(missing_ok=True)
            raise FileWriteError(f"Cannot write {target}: {e}") from e


def _digest(content: bytes | None) -> str | None:
    if content is None:
        return None
    return hashlib.sha256(content).hexdigest()[:12]


class TemplateFileAdapter(Adapter):
    """Converge ``template`` actions.

    Compares rendered content with the file on disk; identical content
    is a no-op and never touches the file.
    """

    def __init__(self, renderer: TemplateRenderer, store: FileStore):
        self._renderer = renderer
        self._store = store

    @property
    def name(self) -> str:
        return "template-file"

    @property
    def kind(self) -> str:
        return "template"

    def is_available(self) -> bool:
        return True  # filesystem is always available

    def validate(self, action: FileRender, context: ExecutionContext) -> tuple[bool, str]:
        if not action.path:
            return False, "Missing required field: 'path'"
        if not action.template:
            return False, "Missing required field: 'template'"
        return True, ""

    def apply(self, action: FileRender, context: ExecutionContext) -> Outcome:
        content = self._renderer.render(
            action.template, context.render_context(action.variables)
        )
        current = self._store.read(action.path)

        metadata = {
            "path": action.path,
            "template": action.template,
            "before": _digest(current),
            "after": _digest(content),
        }

        if current == content:
            return Outcome.noop(
                context.rule_id,
                output=f"{action.path} up to date",
                metadata=metadata,
            )

        if context.dry_run:
            return Outcome.change(
                context.rule_id,
                output=f"[dry-run] would write {len(content)} bytes to {action.path}",
                metadata=metadata,
            )

        self._store.write_atomic(action.path, content, mode=action.mode)
        verb = "created" if current is None else "updated"
        return Outcome.change(
            context.rule_id,
            output=f"{action.path} {verb} ({len(content)} bytes)",
            metadata=metadata,
        )
