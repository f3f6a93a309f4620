"""
Tests for the convergence evaluator — ordering, notifications, idempotence,
strict facts, critical rules, and the audit entry.
"""

from pathlib import Path

import pytest

from hostconverge.adapters.shell.command import CommandResult
from hostconverge.core.engine.errors import (
    EvaluationHalted,
    IncompleteFactsError,
    PredicateError,
)
from hostconverge.core.engine.evaluator import (
    NotificationQueue,
    evaluate,
    generate_pass_id,
    validate_rules,
    write_audit_entry,
)
from hostconverge.core.models.action import (
    ExternalUninstall,
    FileRender,
    GroupMembership,
    ServiceStateChange,
)
from hostconverge.core.models.facts import HostFacts
from hostconverge.core.models.predicate import Condition
from hostconverge.core.models.rule import Rule
from hostconverge.core.persistence.audit import AuditWriter

CONF = "/etc/dd-agent/conf.d/nagios.yaml"
CHECK = "/etc/dd-agent/checks.d/nagios.py"

ON_WINDOWS = Condition(fact="platform", equals="windows")
CONF_DIR = Condition(fact="directories./etc/dd-agent/conf.d", equals=True)
CHECK_DIR = Condition(fact="directories./etc/dd-agent/checks.d", equals=True)


def _rule(id, action, when=None, notifies=None, critical=False) -> Rule:
    return Rule(id=id, action=action, when=when, notifies=notifies, critical=critical)


def _windows_rules() -> list:
    return [
        _rule("nscp", ServiceStateChange(name="nscp", states=["stop", "disable"]), ON_WINDOWS),
        _rule(
            "uninstall",
            ExternalUninstall(
                package="NSClient++",
                command="uninstall NSClient++ ({{ arch }})",
                only_if="installed NSClient++ ({{ arch }})",
                interpreter="powershell",
                variables={
                    "arch": "{{ 'x64' if facts.kernel.machine == 'x86_64' else 'Win32' }}",
                },
            ),
            ON_WINDOWS,
        ),
    ]


def _datadog_rules() -> list:
    return [
        _rule("conf", FileRender(path=CONF, template="conf.j2"), CONF_DIR, notifies="agent"),
        _rule("check", FileRender(path=CHECK, template="check.j2"), CHECK_DIR, notifies="agent"),
        _rule("agent", ServiceStateChange(name="datadog-agent")),
    ]


@pytest.fixture
def datadog_templates(templates_dir: Path) -> Path:
    (templates_dir / "conf.j2").write_text("instances: []\n")
    (templates_dir / "check.j2").write_text("# check for {{ facts.hostname }}\n")
    return templates_dir


DATADOG_HOST = HostFacts({
    "hostname": "web-1",
    "directories": {"/etc/dd-agent/conf.d": True, "/etc/dd-agent/checks.d": True},
})


# ── Notification queue ───────────────────────────────────────────────


class TestNotificationQueue:
    def test_dedup(self):
        queue = NotificationQueue()
        assert queue.enqueue("datadog-agent", "agent")
        assert not queue.enqueue("datadog-agent", "agent")
        assert len(queue) == 1
        assert "datadog-agent" in queue

    def test_drain_keeps_order_and_empties(self):
        queue = NotificationQueue()
        queue.enqueue("b", "rule-b")
        queue.enqueue("a", "rule-a")
        assert list(queue.drain()) == [("b", "rule-b"), ("a", "rule-a")]
        assert len(queue) == 0


# ── Rule validation ──────────────────────────────────────────────────


class TestValidateRules:
    def test_indexes_by_id(self):
        assert list(validate_rules(_datadog_rules())) == ["conf", "check", "agent"]

    def test_duplicate_id(self):
        rules = [_rule("a", ServiceStateChange(name="x")), _rule("a", ServiceStateChange(name="y"))]
        with pytest.raises(PredicateError, match="duplicate"):
            validate_rules(rules)

    def test_dangling_notifies(self):
        rules = [_rule("conf", FileRender(path=CONF, template="conf.j2"), notifies="ghost")]
        with pytest.raises(PredicateError, match="unknown rule 'ghost'"):
            validate_rules(rules)

    def test_notifies_non_service(self):
        rules = [
            _rule("a", FileRender(path=CONF, template="conf.j2"), notifies="b"),
            _rule("b", GroupMembership(group="g", members=["u"])),
        ]
        with pytest.raises(PredicateError, match="not a service rule"):
            validate_rules(rules)

    def test_non_callable_predicate(self):
        with pytest.raises(PredicateError, match="not callable"):
            validate_rules([_rule("a", ServiceStateChange(name="x"), when="platform")])

    def test_invalid_rules_apply_nothing(self, registry, services):
        services.add("x", running=False)
        rules = [
            _rule("a", ServiceStateChange(name="x", states=["start"])),
            _rule("b", FileRender(path=CONF, template="conf.j2"), notifies="ghost"),
        ]
        with pytest.raises(PredicateError):
            evaluate(HostFacts(), rules, registry)
        assert services.calls == []


# ── Scenarios ────────────────────────────────────────────────────────


class TestWindowsUninstall:
    def test_stop_then_uninstall(self, registry, services, runner):
        services.add("nscp", running=True, start_mode="auto")
        seen_running: list[bool] = []

        def uninstall(line: str) -> CommandResult:
            seen_running.append(services.status("nscp").running)
            return CommandResult(0)

        runner.on("uninstall NSClient++", handler=uninstall)
        facts = HostFacts({"platform": "windows", "kernel": {"machine": "x86_64"}})

        result = evaluate(facts, _windows_rules(), registry)

        assert [o.rule_id for o in result.applied] == ["nscp", "uninstall"]
        assert [o.status for o in result.applied] == ["changed", "changed"]
        assert services.transitions_for("nscp") == ["stop", "disable"]
        assert runner.calls[-1] == ("uninstall NSClient++ (x64)", "powershell")
        assert seen_running == [False]

    def test_32_bit(self, registry, services, runner):
        services.add("nscp", running=True)
        facts = HostFacts({"platform": "windows", "kernel": {"machine": "i686"}})
        evaluate(facts, _windows_rules(), registry)
        assert runner.commands()[-1] == "uninstall NSClient++ (Win32)"

    def test_non_windows_touches_nothing(self, registry, services, runner):
        facts = HostFacts({"platform": "ubuntu", "kernel": {"machine": "x86_64"}})
        result = evaluate(facts, _windows_rules(), registry)
        assert [o.status for o in result.applied] == ["skipped", "skipped"]
        assert services.calls == []
        assert runner.calls == []

    def test_second_pass_is_noop(self, registry, services, runner):
        services.add("nscp", running=True, start_mode="auto")
        installed = {"x64": True}

        def probe(line: str) -> CommandResult:
            return CommandResult(0 if installed["x64"] else 1)

        def uninstall(line: str) -> CommandResult:
            installed["x64"] = False
            return CommandResult(0)

        runner.on("uninstall NSClient++", handler=uninstall)
        runner.on("installed NSClient++", handler=probe)
        facts = HostFacts({"platform": "windows", "kernel": {"machine": "x86_64"}})

        first = evaluate(facts, _windows_rules(), registry)
        second = evaluate(facts, _windows_rules(), registry)

        assert first.changed == 2
        assert [o.status for o in second.applied] == ["noop", "noop"]
        assert runner.ran("uninstall NSClient++") == 1


class TestDatadogCheck:
    def test_changes_restart_once(self, registry, services, files, datadog_templates):
        services.add("datadog-agent", running=True, start_mode="auto")

        result = evaluate(DATADOG_HOST, _datadog_rules(), registry)

        assert [(o.rule_id, o.status, o.notification) for o in result.applied] == [
            ("conf", "changed", False),
            ("check", "changed", False),
            ("agent", "noop", False),
            ("agent", "changed", True),
        ]
        assert services.transitions_for("datadog-agent") == ["restart"]
        assert files.files[CONF] == b"instances: []\n"
        assert files.files[CHECK] == b"# check for web-1\n"

    def test_up_to_date_does_not_restart(self, registry, services, files, datadog_templates):
        services.add("datadog-agent", running=True, start_mode="auto")
        files.files[CONF] = b"instances: []\n"
        files.files[CHECK] = b"# check for web-1\n"

        result = evaluate(DATADOG_HOST, _datadog_rules(), registry)

        assert [o.status for o in result.applied] == ["noop", "noop", "noop"]
        assert result.outcome_for("agent", notification=True) is None
        assert services.calls == []
        assert files.writes == []

    def test_one_change_restarts(self, registry, services, files, datadog_templates):
        services.add("datadog-agent", running=True)
        files.files[CONF] = b"instances: []\n"

        result = evaluate(DATADOG_HOST, _datadog_rules(), registry)

        assert result.outcome_for("conf").status == "noop"
        assert result.outcome_for("check").changed
        assert result.outcome_for("agent", notification=True).changed
        assert services.transitions_for("datadog-agent") == ["restart"]

    def test_missing_directory_skips(self, registry, services, files, datadog_templates):
        facts = HostFacts({
            "hostname": "web-1",
            "directories": {"/etc/dd-agent/conf.d": False, "/etc/dd-agent/checks.d": False},
        })
        result = evaluate(facts, _datadog_rules(), registry)
        assert [o.status for o in result.applied] == ["skipped", "skipped", "noop"]
        assert files.writes == []
        assert services.calls == []

    def test_second_pass_is_noop(self, registry, services, files, datadog_templates):
        services.add("datadog-agent", running=True)
        evaluate(DATADOG_HOST, _datadog_rules(), registry)
        second = evaluate(DATADOG_HOST, _datadog_rules(), registry)
        assert second.changed == 0
        assert second.outcome_for("agent", notification=True) is None
        assert services.transitions_for("datadog-agent") == ["restart"]

    def test_group_membership(self, registry, runner):
        runner.on("getent group www-data", stdout="www-data:x:33:")
        rules = [
            _rule(
                "www-data",
                GroupMembership(group="www-data", members=["dd-agent"]),
                Condition(fact="users.dd-agent", equals=True),
            ),
        ]
        with_user = evaluate(HostFacts({"users": {"dd-agent": True}}), rules, registry)
        without_user = evaluate(HostFacts({"users": {"dd-agent": False}}), rules, registry)
        assert with_user.applied[0].changed
        assert without_user.applied[0].status == "skipped"
        assert runner.ran("gpasswd") == 1


# ── Notifications ────────────────────────────────────────────────────


class TestNotifications:
    def test_target_already_restarted(self, registry, services, files, datadog_templates):
        services.add("datadog-agent", running=True)
        rules = [
            _rule("conf", FileRender(path=CONF, template="conf.j2"), CONF_DIR, notifies="agent"),
            _rule("agent", ServiceStateChange(name="datadog-agent", states=["restart"])),
        ]

        result = evaluate(DATADOG_HOST, rules, registry)

        flushed = result.outcome_for("agent", notification=True)
        assert flushed.status == "noop"
        assert "already restarted" in flushed.output
        assert services.transitions_for("datadog-agent") == ["restart"]

    def test_skipped_target_is_not_restarted(self, registry, services, files, datadog_templates):
        services.add("datadog-agent", running=True)
        rules = [
            _rule("conf", FileRender(path=CONF, template="conf.j2"), CONF_DIR, notifies="agent"),
            _rule("agent", ServiceStateChange(name="datadog-agent"), ON_WINDOWS),
        ]
        facts = DATADOG_HOST.merged({"platform": "ubuntu"})

        result = evaluate(facts, rules, registry)

        flushed = result.outcome_for("agent", notification=True)
        assert flushed.status == "skipped"
        assert services.calls == []

    def test_failed_rule_does_not_notify(self, registry, services, files, datadog_templates):
        services.add("datadog-agent", running=True)
        files.set_failure(CONF)
        rules = [r for r in _datadog_rules() if r.id != "check"]
        result = evaluate(DATADOG_HOST, rules, registry)
        assert result.outcome_for("conf").failed
        assert result.outcome_for("agent", notification=True) is None
        assert services.calls == []

    def test_restarts_after_every_rule(self, registry, services, files, datadog_templates):
        services.add("datadog-agent", running=True)
        services.add("nscp", running=False)
        rules = _datadog_rules() + [
            _rule("nscp", ServiceStateChange(name="nscp", states=["start"])),
        ]

        evaluate(DATADOG_HOST, rules, registry)

        assert services.calls == [("nscp", "start"), ("datadog-agent", "restart")]

    def test_failed_restart_is_reported(self, registry, services, files, datadog_templates):
        services.add("datadog-agent", running=True)
        services.set_failure("datadog-agent", "restart", "unit failed")
        result = evaluate(DATADOG_HOST, _datadog_rules(), registry)
        flushed = result.outcome_for("agent", notification=True)
        assert flushed.failed
        assert flushed.error == "unit failed"
        assert result.status == "partial"


# ── Facts ────────────────────────────────────────────────────────────


class TestFacts:
    def test_missing_fact_skips(self, registry, services):
        rules = [_rule("nscp", ServiceStateChange(name="nscp", states=["stop"]), ON_WINDOWS)]
        result = evaluate(HostFacts({}), rules, registry)
        assert result.applied[0].status == "skipped"
        assert "platform" in result.applied[0].reason

    def test_missing_fact_strict(self, registry, services):
        rules = [_rule("nscp", ServiceStateChange(name="nscp", states=["stop"]), ON_WINDOWS)]
        with pytest.raises(IncompleteFactsError) as exc:
            evaluate(HostFacts({}), rules, registry, strict=True)
        assert exc.value.fact == "platform"
        assert exc.value.rule_id == "nscp"

    def test_strict_checks_before_any_change(self, registry, services):
        services.add("nscp", running=True, start_mode="auto")
        rules = [
            _rule("stop", ServiceStateChange(name="nscp", states=["stop"])),
            _rule(
                "disable",
                ServiceStateChange(name="nscp", states=["disable"]),
                Condition(fact="kernel.machine", equals="x86_64"),
            ),
        ]

        with pytest.raises(IncompleteFactsError) as exc:
            evaluate(HostFacts({"platform": "windows"}), rules, registry, strict=True)

        assert exc.value.rule_id == "disable"
        assert services.calls == []

    def test_strict_allows_absence_tests(self, registry, services):
        services.add("nscp", running=True)
        rules = [
            _rule(
                "stop",
                ServiceStateChange(name="nscp", states=["stop"]),
                Condition(fact="users.nagios", present=False),
            ),
        ]
        result = evaluate(HostFacts({}), rules, registry, strict=True)
        assert result.outcome_for("stop").changed

    def test_facts_unchanged_by_pass(self, registry, services, runner):
        services.add("nscp", running=True)
        facts = HostFacts({"platform": "windows", "kernel": {"machine": "x86_64"}})
        before = facts.to_dict()
        evaluate(facts, _windows_rules(), registry)
        assert facts.to_dict() == before

    def test_predicate_cannot_mutate_facts(self, registry, services):
        def sneaky(facts):
            facts["kernel"]["machine"] = "i686"
            return True

        services.add("nscp", running=True)
        facts = HostFacts({"platform": "windows", "kernel": {"machine": "x86_64"}})
        rules = [
            _rule("sneaky", ServiceStateChange(name="nscp", states=["stop"]), sneaky),
            _rule("after", ServiceStateChange(name="nscp", states=["stop"]), ON_WINDOWS),
        ]

        result = evaluate(facts, rules, registry)

        assert result.outcome_for("sneaky").failed
        assert result.outcome_for("sneaky").error_kind == "predicate"
        assert result.outcome_for("after").changed
        assert facts["kernel.machine"] == "x86_64"


# ── Failures ─────────────────────────────────────────────────────────


class TestFailures:
    def test_failure_does_not_stop_later_rules(self, registry, services, files, datadog_templates):
        files.set_failure(CONF, "disk full")
        services.add("datadog-agent", running=True)
        result = evaluate(DATADOG_HOST, _datadog_rules(), registry)
        assert result.outcome_for("conf").error == "disk full"
        assert result.outcome_for("check").changed
        assert result.status == "partial"

    def test_critical_failure_halts(self, registry, services, files, datadog_templates):
        files.set_failure(CONF, "disk full")
        services.add("datadog-agent", running=True)
        rules = _datadog_rules()
        rules[0] = _rule(
            "conf", FileRender(path=CONF, template="conf.j2"), CONF_DIR,
            notifies="agent", critical=True,
        )

        with pytest.raises(EvaluationHalted) as exc:
            evaluate(DATADOG_HOST, rules, registry)

        halted = exc.value
        assert halted.rule_id == "conf"
        assert halted.result.halted
        assert halted.result.status == "halted"
        assert [o.rule_id for o in halted.result.applied] == ["conf"]
        assert files.writes == []
        assert services.calls == []

    def test_critical_failure_skips_pending_restarts(
        self, registry, services, files, datadog_templates
    ):
        services.add("datadog-agent", running=True)
        services.add("nscp", running=True)
        services.set_failure("nscp", "stop")
        rules = _datadog_rules() + [
            _rule("nscp", ServiceStateChange(name="nscp", states=["stop"]), critical=True),
        ]

        with pytest.raises(EvaluationHalted):
            evaluate(DATADOG_HOST, rules, registry)

        assert services.transitions_for("datadog-agent") == []

    def test_critical_rule_skipped_is_fine(self, registry, services):
        rules = [
            _rule("nscp", ServiceStateChange(name="nscp", states=["stop"]), ON_WINDOWS, critical=True),
        ]
        result = evaluate(HostFacts({"platform": "ubuntu"}), rules, registry)
        assert result.status == "ok"


# ── Dry run ──────────────────────────────────────────────────────────


class TestDryRun:
    def test_reports_without_changing(self, registry, services, files, datadog_templates):
        services.add("datadog-agent", running=True)

        result = evaluate(DATADOG_HOST, _datadog_rules(), registry, dry_run=True)

        assert result.dry_run
        assert result.outcome_for("conf").changed
        assert result.outcome_for("conf").dry_run
        assert result.outcome_for("agent", notification=True).changed
        assert files.writes == []
        assert services.calls == []


# ── Audit ────────────────────────────────────────────────────────────


class TestAuditEntry:
    def test_write_audit_entry(self, tmp_path: Path, registry, services, files, datadog_templates):
        services.add("datadog-agent", running=True)
        files.set_failure(CHECK, "read-only file system")
        result = evaluate(DATADOG_HOST, _datadog_rules(), registry, pass_id="pass-test")

        writer = AuditWriter(path=tmp_path / "audit.ndjson")
        write_audit_entry(result, writer, recipes=["nagios_datadog_check"], hostname="web-1")

        entry = writer.read_all()[0]
        assert entry.pass_id == "pass-test"
        assert entry.status == "partial"
        assert entry.recipes == ["nagios_datadog_check"]
        assert entry.rules_changed == 2
        assert entry.rules_failed == 1
        assert entry.changed == ["conf", "agent"]
        assert entry.errors == ["check: read-only file system"]

    def test_pass_id_format(self):
        pass_id = generate_pass_id()
        assert pass_id.startswith("pass-")
        assert pass_id != generate_pass_id()
