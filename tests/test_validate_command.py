"""
Tests for the routekit-validate payload validator.

Covers:
- validate_payload() findings for each check category
- CLI exit codes (0 pass, 1 validation failed, 2 fatal)
- --json and --strict output modes
"""

from __future__ import annotations

import json

import pytest
import yaml

from conftest import wire

from routekit.config.runtime_config import EngineConfig
from routekit.tools.validate_command import (
    EXIT_FATAL_ERROR,
    EXIT_SUCCESS,
    EXIT_VALIDATION_FAILED,
    main,
    validate_payload,
)
from routekit.validator import ValidationResult

LOGIN_RESPONSE = {
    "code": 200,
    "message": "success",
    "data": {"id": 1},
    "route_command": {
        "version": 300,
        "command": wire("NavigateTo", path="/advanced"),
        "fallback": {"version": 200, "command": wire("NavigateTo", path="/basic")},
    },
}


def run_main(argv):
    with pytest.raises(SystemExit) as exc_info:
        main(argv)
    return exc_info.value.code


class TestValidatePayload:
    """Tests for validate_payload()."""

    def test_bare_command_passes(self):
        result = validate_payload(wire("NavigateTo", path="/home"), "cmd.json")

        assert not result.has_errors()
        assert not result.has_warnings()

    def test_fallback_is_reported_as_warning(self):
        result = validate_payload(LOGIN_RESPONSE, "login.json")

        assert not result.has_errors()
        warnings = result.issues_of_type("VERSION")
        assert len(warnings) == 1
        assert "2.0.0 fallback" in warnings[0].problem

    def test_incompatible_chain(self):
        result = validate_payload(LOGIN_RESPONSE, "login.json", client_version=100)

        errors = result.issues_of_type("VERSION")
        assert result.has_errors()
        assert errors[0].location == "login.json:route_command"

    def test_protocol_error_location(self):
        payload = wire("Sequence", commands=[wire("Teleport")])

        result = validate_payload(payload, "bad.json")

        assert len(result.errors) == 1
        error = result.errors[0]
        assert error.issue_type == "PROTOCOL"
        assert error.location == "bad.json:command.payload.commands[0]"
        assert "unknown command type 'Teleport'" in error.problem

    def test_invalid_response_shape(self):
        result = validate_payload({"code": "two hundred", "route_command": None}, "r.json")

        assert result.issues_of_type("PROTOCOL")
        assert result.has_errors()

    def test_response_without_command(self):
        result = validate_payload({"code": 200, "message": "ok", "route_command": None}, "r.json")

        assert not result.has_errors()
        assert result.has_warnings()

    def test_depth_and_fallback_caps(self):
        config = EngineConfig(max_command_depth=2, max_fallback_depth=0)
        payload = {
            "version": 300,
            "command": wire("Sequence", commands=[wire("Sequence", commands=[wire("NavigateTo", path="/")])]),
            "fallback": {"version": 200, "command": wire("NavigateTo", path="/")},
        }

        result = validate_payload(payload, "p.json", config=config)

        assert result.issues_of_type("DEPTH")
        assert [e.issue_type for e in result.errors].count("FALLBACK") == 1

    def test_fallback_order_warning(self):
        payload = {
            "version": 200,
            "command": wire("NavigateTo", path="/"),
            "fallback": {"version": 210, "command": wire("NavigateTo", path="/")},
        }

        result = validate_payload(payload, "p.json")

        assert not result.has_errors()
        assert "not lower" in result.issues_of_type("FALLBACK")[0].problem

    def test_condition_and_data_type(self):
        payload = wire(
            "Sequence",
            commands=[
                wire("Conditional", condition="user.__class__", if_true=wire("NavigateTo", path="/")),
                wire("ProcessData", data_type="widgets", data={}),
            ],
        )

        result = validate_payload(payload, "p.json")

        assert [e.issue_type for e in result.errors] == ["CONDITION"]
        assert [w.issue_type for w in result.warnings] == ["DATA_TYPE"]

    def test_zero_timeout_warning(self):
        payload = {
            "version": 200,
            "command": wire("NavigateTo", path="/"),
            "metadata": {"timeout_ms": 0},
        }

        result = validate_payload(payload, "p.json")

        assert result.issues_of_type("METADATA")


class TestValidationResult:
    """Tests for finding formatting."""

    def test_format_and_strict(self):
        result = ValidationResult()
        result.add_warning("VERSION", "a.json:route_command", "runs fallback", "Check it")

        assert result.warnings[0].format().startswith("[WARN] VERSION: a.json:route_command")

        result.promote_warnings()

        assert result.has_errors()
        assert not result.has_warnings()
        assert result.errors[0].format().startswith("[FAIL] VERSION")
        assert result.to_dict()["status"] == "FAIL"


class TestCli:
    """Tests for main() exit codes and output modes."""

    def test_pass(self, tmp_path, capsys):
        path = tmp_path / "cmd.json"
        path.write_text(json.dumps(wire("NavigateTo", path="/home")), encoding="utf-8")

        assert run_main([str(path)]) == EXIT_SUCCESS
        assert "PASSED" in capsys.readouterr().out

    def test_yaml_input(self, tmp_path):
        path = tmp_path / "login.yaml"
        path.write_text(yaml.safe_dump(LOGIN_RESPONSE), encoding="utf-8")

        assert run_main([str(path)]) == EXIT_SUCCESS

    def test_strict_fails_on_warnings(self, tmp_path):
        path = tmp_path / "login.json"
        path.write_text(json.dumps(LOGIN_RESPONSE), encoding="utf-8")

        assert run_main(["--strict", str(path)]) == EXIT_VALIDATION_FAILED

    def test_validation_failure(self, tmp_path, capsys):
        path = tmp_path / "bad.json"
        path.write_text(json.dumps(wire("Teleport")), encoding="utf-8")

        assert run_main([str(path)]) == EXIT_VALIDATION_FAILED
        assert "[FAIL] PROTOCOL" in capsys.readouterr().err

    def test_client_version_flag(self, tmp_path):
        path = tmp_path / "login.json"
        path.write_text(json.dumps(LOGIN_RESPONSE), encoding="utf-8")

        assert run_main(["--client-version", "100", str(path)]) == EXIT_VALIDATION_FAILED

    def test_json_report(self, tmp_path, capsys):
        path = tmp_path / "login.json"
        path.write_text(json.dumps(LOGIN_RESPONSE), encoding="utf-8")

        assert run_main(["--json", str(path)]) == EXIT_SUCCESS

        report = json.loads(capsys.readouterr().out)
        assert report["status"] == "PASS"
        assert report["client_version"] == 200
        assert report["warning_count"] == 1
        assert report["files"] == [str(path)]

    def test_missing_file_is_fatal(self, tmp_path, capsys):
        assert run_main([str(tmp_path / "absent.json")]) == EXIT_FATAL_ERROR
        assert "ERROR" in capsys.readouterr().err

    def test_unparseable_file_is_fatal(self, tmp_path, capsys):
        path = tmp_path / "broken.json"
        path.write_text("{not: [valid", encoding="utf-8")

        assert run_main(["--json", str(path)]) == EXIT_FATAL_ERROR
        assert json.loads(capsys.readouterr().out)["status"] == "ERROR"
