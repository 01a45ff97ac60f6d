"""Tests for the sharegate CLI: rule administration and decision checks."""

import pytest
import yaml
from click.testing import CliRunner

from sharegate.access import AccessRule, PrincipalType, RuleFileStore
from sharegate.cli import main


# ---------------------------------------------------------------------------
# Fixtures
# ---------------------------------------------------------------------------

ALICE = {
    "user_id": "u-alice",
    "display_name": "Alice",
    "roles": ["ANALYST"],
    "department_id": "FIN",
    "team_id": "FIN-AP",
    "clearance_level": "CONFIDENTIAL",
}

RECORD = {
    "id": "rec-1",
    "name": "Q3 forecast",
    "sensitivity_level": "INTERNAL",
    "organization_level": "INDIVIDUAL",
    "department_id": "FIN",
    "team_id": "FIN-AP",
    "owner_id": "u-alice",
}


def _write_yaml(tmp_path, name, data):
    path = tmp_path / name
    path.write_text(yaml.dump(data, default_flow_style=False, sort_keys=False))
    return str(path)


@pytest.fixture
def runner():
    return CliRunner()


@pytest.fixture
def rule_store(isolated_env):
    return RuleFileStore(isolated_env["SHAREGATE_RULES_DIR"])


@pytest.fixture
def alice_file(tmp_path):
    return _write_yaml(tmp_path, "alice.yaml", ALICE)


@pytest.fixture
def record_file(tmp_path):
    return _write_yaml(tmp_path, "rec-1.yaml", RECORD)


# ---------------------------------------------------------------------------
# rules
# ---------------------------------------------------------------------------


class TestRulesCommands:
    def test_list_empty(self, runner):
        result = runner.invoke(main, ["rules", "list"])
        assert result.exit_code == 0
        assert "No rules found." in result.output

    def test_list_ordered(self, runner, rule_store):
        rule_store.save_rule(AccessRule(id="late", name="Late", principal_type=PrincipalType.ALL, priority=9))
        rule_store.save_rule(AccessRule(
            id="early",
            name="Early",
            principal_type=PrincipalType.ROLE,
            principal_value="EDITOR",
            can_read=True,
            priority=1,
        ))

        result = runner.invoke(main, ["rules", "list"])

        assert result.exit_code == 0
        assert result.output.index("early") < result.output.index("late")
        assert "R---" in result.output

    def test_list_for_record(self, runner, rule_store):
        rule_store.save_rule(AccessRule(id="scoped", name="Scoped", principal_type=PrincipalType.ALL, record_id="rec-9"))
        rule_store.save_rule(AccessRule(id="global", name="Global", principal_type=PrincipalType.ALL))

        result = runner.invoke(main, ["rules", "list", "--record", "rec-1"])

        assert "global" in result.output
        assert "scoped" not in result.output

    def test_list_by_principal(self, runner, rule_store):
        rule_store.save_rule(AccessRule(id="fin", name="Finance", principal_type=PrincipalType.DEPARTMENT, principal_value="FIN"))
        rule_store.save_rule(AccessRule(id="hr", name="HR", principal_type=PrincipalType.DEPARTMENT, principal_value="HR"))
        rule_store.save_rule(AccessRule(id="editors", name="Editors", principal_type=PrincipalType.ROLE, principal_value="EDITOR"))

        by_type = runner.invoke(main, ["rules", "list", "-t", "department"])
        by_value = runner.invoke(main, ["rules", "list", "-t", "DEPARTMENT", "-p", "HR"])

        assert by_type.exit_code == 0
        assert "fin" in by_type.output and "hr" in by_type.output
        assert "editors" not in by_type.output
        assert "DEPARTMENT:HR" in by_value.output
        assert "DEPARTMENT:FIN" not in by_value.output

    def test_list_principal_needs_type(self, runner):
        result = runner.invoke(main, ["rules", "list", "-p", "HR"])
        assert result.exit_code == 2
        assert "--principal requires --principal-type" in result.output

    def test_show(self, runner, rule_store):
        rule_store.save_rule(AccessRule(
            id="finance-columns",
            name="Finance columns",
            principal_type=PrincipalType.DEPARTMENT,
            principal_value="FIN",
            can_read=True,
            conditions={"clearance": "SECRET"},
            visible_columns=["name", "id"],
        ))

        result = runner.invoke(main, ["rules", "show", "finance-columns"])

        assert result.exit_code == 0
        assert "Rule: Finance columns (finance-columns)" in result.output
        assert "Scope: (all records)" in result.output
        assert "clearance>=SECRET" in result.output
        assert "Visible columns: id, name" in result.output

    def test_show_missing(self, runner):
        result = runner.invoke(main, ["rules", "show", "nope"])
        assert result.exit_code != 0
        assert "Rule not found: nope" in result.output


# ---------------------------------------------------------------------------
# check / columns
# ---------------------------------------------------------------------------


class TestCheckCommand:
    def test_allowed(self, runner, alice_file, record_file):
        result = runner.invoke(main, ["check", "-i", alice_file, "-r", record_file, "-o", "read"])

        assert result.exit_code == 0
        assert "ALLOWED" in result.output
        assert "Partial access: yes" in result.output
        assert "financial_data" not in result.output

    def test_denied_exits_1(self, runner, tmp_path, record_file):
        stranger = _write_yaml(tmp_path, "zed.yaml", {**ALICE, "user_id": "u-zed"})

        result = runner.invoke(main, ["check", "-i", stranger, "-r", record_file, "-o", "read"])

        assert result.exit_code == 1
        assert "DENIED" in result.output
        assert "Stage: RBAC" in result.output
        assert "Reason: DENIED_ROLE" in result.output

    def test_business_hours_from_env(self, runner, monkeypatch, alice_file, record_file):
        monkeypatch.setenv("SHAREGATE_REQUIRE_BUSINESS_HOURS", "true")

        result = runner.invoke(main, [
            "check", "-i", alice_file, "-r", record_file, "-o", "READ",
            "--at", "2026-10-14T03:00:00Z",
        ])

        assert result.exit_code == 1
        assert "Stage: CBAC" in result.output

    def test_rule_from_store(self, runner, rule_store, alice_file, record_file):
        rule_store.save_rule(AccessRule(id="no-update", name="No updates", principal_type=PrincipalType.ALL, can_read=True))

        result = runner.invoke(main, ["check", "-i", alice_file, "-r", record_file, "-o", "update"])

        assert result.exit_code == 1
        assert "Access denied by rule: No updates" in result.output

    def test_bad_yaml(self, runner, tmp_path, record_file):
        bad = tmp_path / "bad.yaml"
        bad.write_text("- just\n- a list\n")

        result = runner.invoke(main, ["check", "-i", str(bad), "-r", record_file, "-o", "read"])

        assert result.exit_code != 0
        assert "must contain a mapping" in result.output

    def test_bad_timestamp(self, runner, alice_file, record_file):
        result = runner.invoke(main, [
            "check", "-i", alice_file, "-r", record_file, "-o", "read", "--at", "yesterday",
        ])
        assert result.exit_code == 2


class TestColumnsCommand:
    def test_columns(self, runner, alice_file, record_file):
        result = runner.invoke(main, ["columns", "-i", alice_file, "-r", record_file])

        assert result.exit_code == 0
        lines = result.output.split()
        assert lines == sorted(lines)
        assert "confidential_notes" in lines
        assert "financial_data" not in lines


class TestRulesAdministration:
    RULE = {
        "id": "editors-read",
        "name": "Editors read",
        "principal_type": "ROLE",
        "principal_value": "EDITOR",
        "can_read": True,
        "conditions": {"department": "FIN"},
    }

    def test_add(self, runner, tmp_path, rule_store):
        rule_file = _write_yaml(tmp_path, "rule.yaml", self.RULE)

        result = runner.invoke(main, ["rules", "add", rule_file])

        assert result.exit_code == 0
        assert "Added rule 'Editors read' (editors-read) for ROLE:EDITOR" in result.output
        stored = rule_store.get_rule("editors-read")
        assert stored.can_read is True
        assert stored.principal_value == "EDITOR"

    def test_add_existing_needs_replace(self, runner, tmp_path, rule_store):
        rule_store.save_rule(AccessRule(id="editors-read", name="Old", principal_type=PrincipalType.ALL))
        rule_file = _write_yaml(tmp_path, "rule.yaml", self.RULE)

        refused = runner.invoke(main, ["rules", "add", rule_file])
        assert refused.exit_code != 0
        assert "Rule already exists: editors-read" in refused.output
        assert rule_store.get_rule("editors-read").name == "Old"

        replaced = runner.invoke(main, ["rules", "add", rule_file, "--replace"])
        assert replaced.exit_code == 0
        assert "Replaced rule" in replaced.output
        assert rule_store.get_rule("editors-read").name == "Editors read"

    def test_add_malformed(self, runner, tmp_path, rule_store):
        rule_file = _write_yaml(tmp_path, "rule.yaml", {**self.RULE, "conditions": {"location": "HQ"}})

        result = runner.invoke(main, ["rules", "add", rule_file])

        assert result.exit_code != 0
        assert "Invalid rule" in result.output
        assert rule_store.get_rule("editors-read") is None

    def test_delete(self, runner, rule_store):
        rule_store.save_rule(AccessRule(id="temp", name="Temp", principal_type=PrincipalType.ALL))

        result = runner.invoke(main, ["rules", "delete", "temp"])

        assert result.exit_code == 0
        assert "Deleted rule: temp" in result.output
        assert rule_store.get_rule("temp") is None

    def test_delete_missing(self, runner):
        result = runner.invoke(main, ["rules", "delete", "nope"])
        assert result.exit_code != 0
        assert "Rule not found: nope" in result.output
