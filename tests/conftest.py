"""
Shared test fixtures and configuration.

Most tests run against an in-memory host: services, files and commands
live in the doubles from ``hostconverge.adapters.memory``.
"""

from pathlib import Path

import pytest

from hostconverge.adapters.memory import (
    MemoryFileStore,
    MemoryServiceController,
    ScriptedCommandRunner,
)
from hostconverge.adapters.registry import AdapterRegistry
from hostconverge.adapters.services.adapter import ServiceAdapter
from hostconverge.adapters.shell.filesystem import TemplateFileAdapter
from hostconverge.adapters.shell.groups import GroupAdapter
from hostconverge.adapters.shell.uninstall import UninstallAdapter
from hostconverge.adapters.templates import JinjaTemplateRenderer


@pytest.fixture
def services() -> MemoryServiceController:
    return MemoryServiceController()


@pytest.fixture
def files() -> MemoryFileStore:
    return MemoryFileStore()


@pytest.fixture
def runner() -> ScriptedCommandRunner:
    return ScriptedCommandRunner()


@pytest.fixture
def templates_dir(tmp_path: Path) -> Path:
    """Return a temporary template directory searched before the built-ins."""
    templates = tmp_path / "templates"
    templates.mkdir()
    return templates


@pytest.fixture
def renderer(templates_dir: Path) -> JinjaTemplateRenderer:
    return JinjaTemplateRenderer([templates_dir])


@pytest.fixture
def registry(services, files, runner, renderer) -> AdapterRegistry:
    """A registry wired to the in-memory host."""
    registry = AdapterRegistry()
    registry.register(ServiceAdapter(services))
    registry.register(TemplateFileAdapter(renderer, files))
    registry.register(UninstallAdapter(runner, renderer))
    registry.register(GroupAdapter(runner))
    return registry


@pytest.fixture
def workspace(tmp_path: Path, monkeypatch: pytest.MonkeyPatch) -> Path:
    """Run the test from an empty directory, with no hostconverge.yml above it."""
    monkeypatch.chdir(tmp_path)
    return tmp_path.resolve()
