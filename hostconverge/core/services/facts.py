"""
Host fact gathering — build the HostFacts snapshot for a pass.

Facts come from three places, later ones winning:

    1. The live host: platform, kernel, hostname, and the probes the
       recipes asked for (users, directories, groups).
    2. ``attributes`` from hostconverge.yml.
    3. A facts file given on the command line.

Probes go through a CommandRunner so tests can fake them without
touching real processes.
"""

from __future__ import annotations

import logging
import platform
import socket
from collections.abc import Callable, Mapping
from pathlib import Path
from typing import Any

import yaml

from hostconverge.adapters.shell.command import CommandRunner
from hostconverge.core.config.loader import ConfigError
from hostconverge.core.models.facts import HostFacts, deep_merge
from hostconverge.core.models.rule import Probes

logger = logging.getLogger(__name__)

# platform.machine() spellings → the kernel.machine values recipes test for
_MACHINE_ALIASES = {
    "amd64": "x86_64",
    "x64": "x86_64",
    "x86-64": "x86_64",
    "arm64": "aarch64",
    "i386": "i686",
    "x86": "i686",
}

# /etc/os-release ID → platform_family
_FAMILIES = {
    "debian": "debian",
    "ubuntu": "debian",
    "linuxmint": "debian",
    "raspbian": "debian",
    "rhel": "rhel",
    "centos": "rhel",
    "rocky": "rhel",
    "almalinux": "rhel",
    "ol": "rhel",
    "fedora": "fedora",
    "amzn": "amazon",
    "sles": "suse",
    "opensuse-leap": "suse",
    "arch": "arch",
    "alpine": "alpine",
}


def normalize_machine(machine: str) -> str:
    lowered = machine.strip().lower()
    return _MACHINE_ALIASES.get(lowered, lowered)


def parse_os_release(text: str) -> dict[str, str]:
    """Parse the KEY=value lines of /etc/os-release."""
    info: dict[str, str] = {}
    for line in text.splitlines():
        key, sep, value = line.strip().partition("=")
        if sep and key and not key.startswith("#"):
            info[key] = value.strip().strip('"').strip("'")
    return info


def _detect_platform() -> dict[str, Any]:
    """Platform facts from the running interpreter's host."""
    system = platform.system().lower()
    facts: dict[str, Any] = {
        "os": system,
        "kernel": {
            "name": platform.system(),
            "release": platform.release(),
            "machine": normalize_machine(platform.machine()),
        },
        "hostname": socket.gethostname(),
    }

    if system == "windows":
        facts["platform"] = "windows"
        facts["platform_family"] = "windows"
        facts["platform_version"] = platform.version()
    elif system == "linux":
        release = {}
        try:
            release = parse_os_release(Path("/etc/os-release").read_text(encoding="utf-8"))
        except OSError:
            logger.debug("No /etc/os-release; platform falls back to 'linux'")
        distro_id = release.get("ID", "linux")
        facts["platform"] = distro_id
        facts["platform_family"] = _FAMILIES.get(
            distro_id, (release.get("ID_LIKE") or "linux").split()[0]
        )
        facts["platform_version"] = release.get("VERSION_ID", "")
    else:
        facts["platform"] = system
        facts["platform_family"] = system
        facts["platform_version"] = platform.release()

    return facts


def probe_users(users: list[str], runner: CommandRunner) -> dict[str, bool]:
    """Whether each user exists (``id -u <name>`` exits 0)."""
    return {user: runner.succeeds(["id", "-u", user]) for user in users}


def probe_groups(groups: list[str], runner: CommandRunner) -> dict[str, bool]:
    return {group: runner.succeeds(["getent", "group", group]) for group in groups}


def probe_directories(directories: list[str]) -> dict[str, bool]:
    return {path: Path(path).is_dir() for path in directories}


def assume_directories(directories: list[str]) -> dict[str, bool]:
    """Directory probe for simulated passes: every probed directory exists."""
    return dict.fromkeys(directories, True)


def load_facts_file(path: Path) -> dict[str, Any]:
    """Load synthetic facts from a YAML or JSON file.

    Raises:
        ConfigError: If the file is unreadable or not a mapping.
    """
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError(f"Cannot read facts file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigError(f"Invalid YAML in facts file {path}: {e}") from e

    if data is None:
        return {}
    if not isinstance(data, dict):
        raise ConfigError(f"Expected a mapping in {path}, got {type(data).__name__}")
    return data


def gather_facts(
    probes: Probes,
    runner: CommandRunner,
    overrides: Mapping[str, Any] | None = None,
    facts_file: Path | None = None,
    live: bool = True,
    directory_probe: Callable[[list[str]], dict[str, bool]] = probe_directories,
) -> HostFacts:
    """Gather the snapshot for one pass.

    Args:
        probes: Users, directories and groups to check.
        runner: Used for user and group probes.
        overrides: Attributes merged over the live facts.
        facts_file: Synthetic facts merged last.
        live: With False, skip the live host entirely and build the
            snapshot from ``overrides`` and ``facts_file`` alone.
        directory_probe: Answers the directory probes (default: the
            real filesystem).
    """
    data: dict[str, Any] = {}

    if live:
        data = _detect_platform()
        if probes.users:
            data["users"] = probe_users(probes.users, runner)
        if probes.groups:
            data["groups"] = probe_groups(probes.groups, runner)
        if probes.directories:
            data["directories"] = directory_probe(probes.directories)

    if overrides:
        data = deep_merge(data, overrides)
    if facts_file is not None:
        data = deep_merge(data, load_facts_file(facts_file))

    logger.debug("Gathered %d top-level facts", len(data))
    return HostFacts(data)
