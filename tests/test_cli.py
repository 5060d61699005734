"""Tests for the forum-schema command-line interface."""

import json
from pathlib import Path

import pytest
from click.testing import CliRunner

from forum_schema.cli import cli


class ExportFixture:
    """Helper to write a small export into a temporary directory."""

    def __init__(self, root: Path):
        self.root = root
        self.config_path = root / "forum-schema.toml"
        self.config_path.write_text("[membership]\nexplicit_with_criteria = false\n")

    def write(self, name: str, data) -> Path:
        path = self.root / name
        path.write_text(json.dumps(data), encoding="utf-8")
        return path

    def write_standard(self) -> None:
        self.write("users.json", [
            {"id": 1, "name": "alice", "email": "alice@example.com"},
            {"id": 2, "name": "administrator", "email": "root@example.com"},
            {"id": 3, "name": "carol", "email": "carol@example.com", "isBanned": True},
        ])
        self.write("comments.json", [
            {"id": 100, "author": 1, "versions": [{"editor": 1, "text": "a"}]},
            {"id": 101, "author": 1, "versions": [{"editor": 1, "text": "b"}]},
            {"id": 102, "author": 2, "versions": [{"editor": 2, "text": "c"}]},
        ])
        self.write("usergroups.json", [
            {
                "id": 10,
                "name": "Chatty",
                "criteria": [{"orGroup": 0, "key": "comments", "predicate": "ge", "value": 2}],
            },
            {
                "id": 20,
                "name": "Admins",
                "criteria": [{"orGroup": 0, "key": "name", "predicate": "substr", "value": "admin"}],
            },
            {"id": 30, "name": "Moderators", "users": [{"id": 3}]},
        ])


@pytest.fixture
def export(tmp_path) -> ExportFixture:
    return ExportFixture(tmp_path)


def run(export: ExportFixture, *args: str):
    runner = CliRunner()
    return runner.invoke(cli, ["--config", str(export.config_path), *args])


class TestValidate:
    """Tests for the validate command."""

    def test_valid_users(self, export):
        export.write_standard()
        result = run(export, "validate", "users", str(export.root / "users.json"))
        assert result.exit_code == 0, result.output
        assert "3 users OK" in result.output

    def test_usergroups_report_criteria(self, export):
        export.write_standard()
        result = run(export, "validate", "usergroups", str(export.root / "usergroups.json"))
        assert result.exit_code == 0, result.output
        assert "2 criteria checked" in result.output

    def test_invalid_criterion_fails(self, export):
        path = export.write("usergroups.json", [
            {"id": 1, "criteria": [{"key": "comments", "predicate": "substr", "value": 5}]},
        ])
        result = run(export, "validate", "usergroups", str(path))
        assert result.exit_code == 1
        assert "needs a string" in result.output

    def test_output_writes_normalised_records(self, export):
        export.write_standard()
        output = export.root / "out" / "users.json"
        result = run(export, "validate", "users", str(export.root / "users.json"), "-o", str(output))
        assert result.exit_code == 0, result.output
        assert json.loads(output.read_text(encoding="utf-8"))[2]["isBanned"] is True


class TestMembers:
    """Tests for the members command."""

    def test_resolves_members(self, export):
        export.write_standard()
        result = run(
            export,
            "members",
            str(export.root / "usergroups.json"),
            str(export.root / "users.json"),
            "--comments",
            str(export.root / "comments.json"),
        )
        assert result.exit_code == 0, result.output
        assert "10 (Chatty): 1 members" in result.output
        assert "20 (Admins): 1 members" in result.output
        assert "30 (Moderators): 1 members" in result.output

    def test_group_filter(self, export):
        export.write_standard()
        result = run(
            export,
            "members",
            str(export.root / "usergroups.json"),
            str(export.root / "users.json"),
            "--group",
            "30",
        )
        assert result.exit_code == 0, result.output
        assert "Chatty" not in result.output
        assert "30 (Moderators): 1 members" in result.output

    def test_unknown_group(self, export):
        export.write_standard()
        result = run(
            export,
            "members",
            str(export.root / "usergroups.json"),
            str(export.root / "users.json"),
            "-g",
            "99",
        )
        assert result.exit_code == 1
        assert "Usergroup not found: 99" in result.output

    def test_misconfigured_usergroup_reported(self, export):
        export.write_standard()
        usergroups = export.write("broken.json", [
            {"id": 40, "name": "Broken", "criteria": [{"key": "name", "predicate": "ge", "value": 1}]},
            {"id": 41, "name": "Banned", "criteria": [{"key": "isBanned", "predicate": "eq", "value": True}]},
        ])
        result = run(export, "members", str(usergroups), str(export.root / "users.json"))

        assert result.exit_code == 1
        assert "40 (Broken): ABORTED" in result.output
        assert "41 (Banned): 1 members" in result.output
        assert "1 usergroup(s) aborted" in result.output

    def test_invalid_criterion_aborts_only_its_usergroup(self, export):
        """A criterion rejected while loading does not stop the other usergroups."""
        export.write_standard()
        usergroups = export.write("usergroups.json", [
            {"id": 40, "name": "Broken", "criteria": [{"key": "name", "predicate": "substr", "value": 5}]},
            {"id": 41, "name": "Banned", "criteria": [{"key": "isBanned", "predicate": "eq", "value": True}]},
        ])
        result = run(export, "members", str(usergroups), str(export.root / "users.json"))

        assert result.exit_code == 1
        assert "40: ABORTED" in result.output
        assert "needs a string" in result.output
        assert "41 (Banned): 1 members" in result.output
        assert "1 usergroup(s) aborted" in result.output

    def test_group_filter_skips_rejected_usergroup(self, export):
        export.write_standard()
        usergroups = export.write("usergroups.json", [
            {"id": 40, "name": "Broken", "criteria": [{"key": "name", "predicate": "substr", "value": 5}]},
            {"id": 41, "name": "Banned", "criteria": [{"key": "isBanned", "predicate": "eq", "value": True}]},
        ])
        result = run(export, "members", str(usergroups), str(export.root / "users.json"), "-g", "41")

        assert result.exit_code == 0, result.output
        assert "ABORTED" not in result.output
        assert "41 (Banned): 1 members" in result.output

    def test_users_not_utf8(self, export):
        export.write_standard()
        users = export.root / "latin1.json"
        users.write_bytes(b'[{"id": 1, "name": "\xff\xfe"}]')
        result = run(export, "members", str(export.root / "usergroups.json"), str(users))

        assert result.exit_code == 1
        assert "not valid UTF-8" in result.output


class TestCheck:
    """Tests for the check command."""

    def test_match_and_no_match(self, export):
        export.write_standard()
        attributes = export.write("attributes.json", {"comments": 5, "name": "bob"})
        result = run(export, "check", str(export.root / "usergroups.json"), str(attributes))

        assert result.exit_code == 0, result.output
        assert "10 (Chatty): match" in result.output
        assert "20 (Admins): no match" in result.output
        assert "30 (Moderators): no criteria" in result.output

    def test_type_error_reported(self, export):
        export.write_standard()
        attributes = export.write("attributes.json", {"comments": "lots"})
        result = run(
            export, "check", str(export.root / "usergroups.json"), str(attributes), "-g", "10"
        )
        assert result.exit_code == 1
        assert "10 (Chatty): ERROR" in result.output

    def test_attributes_must_be_object(self, export):
        export.write_standard()
        attributes = export.write("attributes.json", [1, 2])
        result = run(export, "check", str(export.root / "usergroups.json"), str(attributes))
        assert result.exit_code == 1
        assert "expected a JSON object" in result.output

    def test_attributes_not_utf8(self, export):
        export.write_standard()
        attributes = export.root / "attributes.json"
        attributes.write_bytes(b'{"name": "\xff\xfe"}')
        result = run(export, "check", str(export.root / "usergroups.json"), str(attributes))

        assert result.exit_code == 1
        assert "not valid UTF-8" in result.output

    def test_invalid_criterion_reported_per_usergroup(self, export):
        export.write("usergroups.json", [
            {"id": 40, "criteria": [{"key": "name", "predicate": "substr", "value": 5}]},
            {"id": 41, "criteria": [{"key": "comments", "predicate": "ge", "value": 2}]},
        ])
        attributes = export.write("attributes.json", {"comments": 5})
        result = run(export, "check", str(export.root / "usergroups.json"), str(attributes))

        assert result.exit_code == 1
        assert "40: ERROR" in result.output
        assert "41: match" in result.output


class TestConfigOption:
    """Tests for the global --config option."""

    def test_invalid_config(self, export):
        export.config_path.write_text("[membership\n")
        result = run(export, "validate", "users", str(export.config_path))
        assert result.exit_code == 1
        assert "Invalid TOML" in result.output
