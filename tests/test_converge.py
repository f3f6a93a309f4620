"""
Tests for the converge use case — config, recipes, facts, adapters and
audit wired together.
"""

import textwrap
from pathlib import Path

import pytest

from hostconverge.adapters.memory import ScriptedCommandRunner
from hostconverge.core.config.loader import CONFIG_FILE, ConvergeConfig
from hostconverge.core.models.facts import HostFacts
from hostconverge.core.persistence.audit import AuditWriter
from hostconverge.core.use_cases.converge import build_registry, collect_facts, converge

WINDOWS = "nagios_client_windows_uninstall"
DATADOG = "nagios_datadog_check"

WINDOWS_HOST = HostFacts({
    "os": "windows",
    "platform": "windows",
    "hostname": "win-1",
    "kernel": {"machine": "x86_64"},
})


@pytest.fixture
def project(tmp_path: Path) -> Path:
    """A hostconverge.yml with a local recipe that writes below tmp_path."""
    root = tmp_path.resolve()
    (root / "etc").mkdir()
    (root / "templates").mkdir()
    (root / "templates" / "app.conf.j2").write_text("host={{ facts.hostname }}\n")
    (root / "recipes").mkdir()
    (root / "recipes" / "app.yml").write_text(textwrap.dedent(f"""\
        name: app
        rules:
          - id: conf
            action:
              kind: template
              path: {root / "etc" / "app.conf"}
              template: app.conf.j2
            notifies: svc
          - id: svc
            action: {{kind: service, name: app, states: []}}
    """))
    (root / CONFIG_FILE).write_text(textwrap.dedent("""\
        recipe_dirs: [recipes]
        template_dirs: [templates]
    """))
    return root


def _systemd_runner() -> ScriptedCommandRunner:
    return ScriptedCommandRunner().on(
        "systemctl show",
        stdout="LoadState=loaded\nActiveState=active\nUnitFileState=enabled",
    )


class TestConverge:
    def test_full_pass_on_linux(self, project: Path):
        runner = _systemd_runner()
        outcome = converge(
            ["app"],
            config_path=project / CONFIG_FILE,
            facts=HostFacts({"os": "linux", "hostname": "web-1"}),
            runner=runner,
        )

        assert outcome.error is None
        assert outcome.exit_code == 0
        assert outcome.result.changed == 2
        assert (project / "etc" / "app.conf").read_text() == "host=web-1\n"
        assert runner.ran("systemctl restart app") == 1

        entries = AuditWriter(root=project).read_all()
        assert outcome.audit_path == project / ".hostconverge" / "audit.ndjson"
        assert len(entries) == 1
        assert entries[0].recipes == ["app"]
        assert entries[0].hostname == "web-1"
        assert entries[0].status == "ok"
        assert entries[0].pass_id == outcome.result.pass_id

    def test_second_pass_changes_nothing(self, project: Path):
        runner = _systemd_runner()
        facts = HostFacts({"os": "linux", "hostname": "web-1"})
        converge(["app"], config_path=project / CONFIG_FILE, facts=facts, runner=runner)
        outcome = converge(["app"], config_path=project / CONFIG_FILE, facts=facts, runner=runner)

        assert outcome.result.changed == 0
        assert runner.ran("systemctl restart") == 1
        assert len(AuditWriter(root=project).read_all()) == 2

    def test_dry_run(self, project: Path):
        runner = _systemd_runner()
        outcome = converge(
            ["app"],
            config_path=project / CONFIG_FILE,
            facts=HostFacts({"os": "linux", "hostname": "web-1"}),
            runner=runner,
            dry_run=True,
        )
        assert outcome.result.changed == 2
        assert not (project / "etc" / "app.conf").exists()
        assert runner.ran("systemctl restart") == 0
        assert AuditWriter(root=project).read_all()[0].dry_run is True

    def test_unknown_recipe(self, workspace: Path):
        outcome = converge(["nope"])
        assert outcome.exit_code == 2
        assert "Unknown recipe 'nope'" in outcome.error
        assert outcome.to_dict() == {"recipes": ["nope"], "error": outcome.error}

    def test_no_recipes(self, workspace: Path):
        assert converge([]).error == "No recipes selected."

    def test_strict_missing_fact(self, workspace: Path, registry):
        outcome = converge(
            [WINDOWS],
            facts=HostFacts({"os": "linux"}),
            registry=registry,
            strict=True,
            write_audit=False,
        )
        assert outcome.exit_code == 2
        assert "Missing host fact 'platform'" in outcome.error

    def test_strict_from_config(self, tmp_path: Path, registry):
        config = tmp_path / CONFIG_FILE
        config.write_text("strict_facts: true\n")
        outcome = converge(
            [WINDOWS],
            config_path=config,
            facts=HostFacts({}),
            registry=registry,
            write_audit=False,
        )
        assert outcome.exit_code == 2

    def test_critical_halt(self, tmp_path: Path, registry, files):
        root = tmp_path.resolve()
        (root / "recipes").mkdir()
        (root / "recipes" / "halting.yml").write_text(textwrap.dedent("""\
            rules:
              - id: conf
                critical: true
                action: {kind: template, path: /etc/app.conf, template: datadog_check.yaml.j2}
              - id: svc
                action: {kind: service, name: app, states: [start]}
        """))
        (root / CONFIG_FILE).write_text("recipe_dirs: [recipes]\n")
        files.set_failure("/etc/app.conf", "read-only file system")

        outcome = converge(
            ["halting"],
            config_path=root / CONFIG_FILE,
            facts=HostFacts({}),
            registry=registry,
        )

        assert outcome.exit_code == 1
        assert outcome.halted_rule == "halting:conf"
        assert outcome.result.status == "halted"
        assert outcome.to_dict()["halted_rule"] == "halting:conf"
        assert AuditWriter(root=root).read_all()[0].status == "halted"

    def test_simulate_writes_no_audit(self, workspace: Path, tmp_path: Path):
        facts_file = tmp_path / "facts.yml"
        facts_file.write_text("platform: windows\nos: windows\nkernel:\n  machine: x86_64\n")

        outcome = converge([WINDOWS], facts_file=facts_file, simulate=True)

        assert outcome.exit_code == 0
        assert [o.status for o in outcome.result.applied] == ["changed", "changed"]
        assert outcome.audit_path is None
        assert not (workspace / ".hostconverge").exists()

    def test_simulate_assumes_probed_directories(self, workspace: Path):
        outcome = converge([DATADOG], simulate=True)

        assert outcome.exit_code == 0, outcome.error
        assert outcome.facts["directories./etc/dd-agent/conf.d"] is True
        assert outcome.result.outcome_for(f"{DATADOG}:nagios-yaml").changed
        assert outcome.result.outcome_for(f"{DATADOG}:nagios-check").changed
        assert outcome.result.outcome_for(f"{DATADOG}:datadog-agent", notification=True).changed

    def test_simulate_facts_file_overrides_directories(self, workspace: Path, tmp_path: Path):
        facts_file = tmp_path / "facts.yml"
        facts_file.write_text("directories:\n  /etc/dd-agent/conf.d: false\n")

        outcome = converge([DATADOG], facts_file=facts_file, simulate=True)

        assert outcome.result.outcome_for(f"{DATADOG}:nagios-yaml").status == "skipped"
        assert outcome.result.outcome_for(f"{DATADOG}:nagios-check").changed

    def test_invalid_facts_file(self, workspace: Path, tmp_path: Path):
        facts_file = tmp_path / "facts.yml"
        facts_file.write_text("- not a mapping\n")
        outcome = converge([WINDOWS], facts_file=facts_file, simulate=True)
        assert outcome.exit_code == 2


class TestBuildRegistry:
    def test_windows_controller(self):
        registry = build_registry(WINDOWS_HOST, ConvergeConfig(), ScriptedCommandRunner())
        assert registry.get("service").name == "windows-scm"
        assert sorted(registry.list_kinds()) == ["group", "service", "template", "uninstall"]

    def test_systemd_controller(self):
        registry = build_registry(HostFacts({"os": "linux"}), ConvergeConfig(), ScriptedCommandRunner())
        assert registry.get("service").name == "systemd"

    def test_simulated(self):
        registry = build_registry(WINDOWS_HOST, ConvergeConfig(), ScriptedCommandRunner(), simulate=True)
        assert registry.get("service").name == "memory-service"


class TestCollectFacts:
    def test_probes_for_selected_recipes(self, workspace: Path):
        runner = ScriptedCommandRunner()
        facts = collect_facts([DATADOG], runner=runner)
        assert facts["users.dd-agent"] is True
        assert "directories./etc/dd-agent/conf.d" in facts
        assert runner.ran("id -u dd-agent") == 1

    def test_all_recipes_by_default(self, workspace: Path):
        runner = ScriptedCommandRunner()
        facts = collect_facts([], runner=runner)
        assert "users.dd-agent" in facts
