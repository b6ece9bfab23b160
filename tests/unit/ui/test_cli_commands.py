"""
intentforge — unit tests for the CLI command router

File: tests/unit/ui/test_cli_commands.py
Last updated: 2026-10-18

Purpose
- Exercise each subcommand through ``run_cli`` against a temporary config and state store.

What this test file should cover
- run: success exit code and JSON payload shape.
- route: routed metadata, and exit 2 with a structured budget error.
- validate: accepted and rejected specification files.
- status/resume: lookups of known and unknown builds.
- config: redacted effective config output.

Functional requirements
- Offline; every path lives under ``tmp_path``.
"""

from __future__ import annotations

import json
from pathlib import Path
from typing import Any

import pytest

from intentforge.main import ExitCode, cli_entrypoint
from intentforge.ui.cli import run_cli

pytestmark = pytest.mark.unit


@pytest.fixture(autouse=True)
def _isolated_env(monkeypatch: pytest.MonkeyPatch) -> None:
    import os

    for key in list(os.environ):
        if key.startswith("INTENTFORGE_"):
            monkeypatch.delenv(key, raising=False)
    monkeypatch.setenv("NO_COLOR", "1")


@pytest.fixture
def config_path(tmp_path: Path) -> Path:
    path = tmp_path / "intentforge.toml"
    path.write_text(
        "\n".join(
            [
                "[paths]",
                'state_db = "state/intentforge.sqlite"',
                'output_root = "out"',
                "",
                "[observability]",
                'log_dir = "logs"',
                "",
            ]
        ),
        encoding="utf-8",
    )
    return path


def _spec(**overrides: Any) -> dict[str, Any]:
    spec: dict[str, Any] = {
        "version": "1.0",
        "component_type": "star-rating",
        "component_name": "StarRating",
        "namespace": "Contoso",
        "display_name": "Star Rating",
        "description": "Displays a read-only star rating.",
        "interactivity": "read-only",
        "capabilities": {
            "capability_id": "star-rating",
            "features": ["display-rating", "read-only-mode"],
            "customizations": {"stars": 5},
        },
        "properties": [
            {"name": "value", "display_name": "Value", "data_type": "Decimal", "usage": "bound"}
        ],
        "resources": {"code": "index.ts"},
        "events": [],
    }
    spec.update(overrides)
    return spec


def _json_output(capsys: pytest.CaptureFixture[str]) -> dict[str, Any]:
    out = capsys.readouterr().out.strip().splitlines()
    return json.loads(out[-1])


def test_run_json_reports_success(
    config_path: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = run_cli(["run", "5-star rating, read-only", "--config", str(config_path), "--json"])

    payload = _json_output(capsys)
    assert code == ExitCode.SUCCESS
    assert payload["command"] == "run"
    assert payload["status"] == "success"
    assert payload["build_id"].startswith("build_")
    assert Path(payload["artifact_path"]).is_file()
    assert [item["rule_id"] for item in payload["downgrades"]] == ["A11Y_KEYBOARD"]
    assert (tmp_path / "state" / "intentforge.sqlite").is_file()
    assert any((tmp_path / "logs").iterdir())


def test_run_vague_request_exits_rejected_with_clarification(
    config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = run_cli(["run", "something read-only", "--config", str(config_path), "--json"])

    payload = _json_output(capsys)
    assert code == ExitCode.REJECTED
    assert payload["status"] == "clarification_required"
    assert payload["build_id"] is None
    assert payload["clarification"]["confidence"] == pytest.approx(0.35)


def test_run_rejects_malformed_option(
    config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = run_cli(["run", "5-star rating", "--option", "theme", "--config", str(config_path)])

    assert code == 2
    assert "--option expects KEY=VALUE" in capsys.readouterr().err


def test_route_prints_metadata_and_costs(
    config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = run_cli(["route", "interpret_intent", "--config", str(config_path), "--json"])

    payload = _json_output(capsys)
    assert code == 0
    assert payload["metadata"]["estimated_cost"] == 2900
    assert len(payload["costs"]) == 3
    assert payload["budget"]["max_cost"] == 5000


def test_route_budget_exceeded_exits_two_with_structured_error(
    config_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("INTENTFORGE_ROUTER_MAX_COST", "1000")

    code = run_cli(["route", "interpret_intent", "--config", str(config_path), "--json"])

    payload = _json_output(capsys)
    assert code == 2
    error = payload["error"]
    assert error["code"] == "budget_exceeded"
    assert error["metric"] == "max_cost"
    assert error["total"] == 2900
    assert error["limit"] == 1000
    assert len(error["files"]) == 3


def test_route_missing_parameter_is_a_usage_error(
    config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = run_cli(["route", "generate_component_spec", "--config", str(config_path)])

    assert code == 2
    assert "capability_id" in capsys.readouterr().err


def test_validate_accepts_clean_spec_and_writes_fixed_copy(
    config_path: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    spec_path = tmp_path / "spec.json"
    spec_path.write_text(json.dumps(_spec()), encoding="utf-8")
    fixed_path = tmp_path / "fixed.json"

    code = run_cli(
        [
            "validate",
            str(spec_path),
            "--write-fixed",
            str(fixed_path),
            "--config",
            str(config_path),
            "--json",
        ]
    )

    payload = _json_output(capsys)
    assert code == 0
    assert payload["is_valid"] is True
    fixed = json.loads(fixed_path.read_text(encoding="utf-8"))
    assert fixed["accessibility"]["keyboard_support"] is True


def test_validate_rejects_spec_with_unfixable_error(
    config_path: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    spec_path = tmp_path / "spec.json"
    spec_path.write_text(json.dumps(_spec(namespace="contoso controls")), encoding="utf-8")

    code = run_cli(["validate", str(spec_path), "--config", str(config_path), "--json"])

    payload = _json_output(capsys)
    assert code == 1
    assert payload["is_valid"] is False
    assert [item["rule_id"] for item in payload["rules"]["errors"]] == ["PCF_NAMING_002"]


def test_validate_missing_file_is_a_usage_error(
    config_path: Path, tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = run_cli(["validate", str(tmp_path / "absent.json"), "--config", str(config_path)])

    assert code == 2
    assert "file not found" in capsys.readouterr().err


def test_status_lists_builds_after_run(
    config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    run_cli(["run", "5-star rating, read-only", "--config", str(config_path), "--json"])
    build_id = _json_output(capsys)["build_id"]

    code = run_cli(["status", "--config", str(config_path), "--json"])
    listed = _json_output(capsys)
    assert code == 0
    assert [item["build_id"] for item in listed["builds"]] == [build_id]

    code = run_cli(["status", build_id, "--config", str(config_path), "--json"])
    single = _json_output(capsys)
    assert code == 0
    assert single["build"]["status"] == "completed"
    assert len(single["stages"]) == 8
    assert single["result"]["status"] == "success"


def test_resume_unknown_build_exits_two(
    config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = run_cli(["resume", "build_0000000000000000", "--config", str(config_path)])

    assert code == 2
    assert "build not found" in capsys.readouterr().err


def test_config_prints_effective_profile(
    config_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = run_cli(["config", "--config", str(config_path), "--profile", "strict", "--json"])

    payload = _json_output(capsys)
    assert code == 0
    assert payload["active_profile"] == "strict"
    assert payload["config"]["router"]["max_cost"] == 4000


def test_entrypoint_maps_missing_config_file_to_config_error(
    tmp_path: Path, capsys: pytest.CaptureFixture[str]
) -> None:
    code = cli_entrypoint(["config", "--config", str(tmp_path / "missing.toml")])

    assert code == ExitCode.CONFIG_ERROR
    assert "config file not found" in capsys.readouterr().err
