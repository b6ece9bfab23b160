"""
intentforge — end-to-end smoke test

File: tests/smoke/test_end_to_end.py
Last updated: 2026-10-18

Purpose
- Drive the console entrypoint through a full build, a repeat run, and a resume, then inspect
  the persisted state and the packaged archive.
"""

from __future__ import annotations

import json
import sqlite3
import zipfile
from pathlib import Path

import pytest

from intentforge.main import cli_entrypoint


@pytest.mark.smoke
def test_end_to_end_build_is_persisted_and_idempotent(
    tmp_path: Path, monkeypatch: pytest.MonkeyPatch, capsys: pytest.CaptureFixture[str]
) -> None:
    monkeypatch.setenv("INTENTFORGE_PATHS_STATE_DB", str(tmp_path / "state" / "builds.sqlite"))
    monkeypatch.setenv("INTENTFORGE_PATHS_OUTPUT_ROOT", str(tmp_path / "out"))
    monkeypatch.setenv("INTENTFORGE_OBSERVABILITY_LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.chdir(tmp_path)

    assert cli_entrypoint(["run", "5-star rating, read-only", "--json"]) == 0
    first = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    build_id = first["build_id"]
    artifact = Path(first["artifact_path"])

    assert first["status"] == "success"
    assert first["resumed"] is False
    assert artifact.parent == tmp_path / "out" / build_id
    with zipfile.ZipFile(artifact) as archive:
        names = archive.namelist()
    assert len(names) == 8
    assert "ControlManifest.Input.xml" in names
    first_bytes = artifact.read_bytes()

    assert cli_entrypoint(["run", "5-star rating, read-only", "--json"]) == 0
    repeated = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert repeated["build_id"] == build_id
    assert repeated["resumed"] is True
    assert artifact.read_bytes() == first_bytes

    assert cli_entrypoint(["resume", build_id, "--json"]) == 0
    resumed = json.loads(capsys.readouterr().out.strip().splitlines()[-1])
    assert resumed["status"] == "success"
    assert resumed["artifact_path"] == first["artifact_path"]

    with sqlite3.connect(tmp_path / "state" / "builds.sqlite") as conn:
        status = conn.execute(
            "SELECT status FROM builds WHERE id = ?", (build_id,)
        ).fetchone()
        stage_count = conn.execute(
            "SELECT COUNT(*) FROM stage_records WHERE build_id = ?", (build_id,)
        ).fetchone()
    assert status == ("completed",)
    assert stage_count == (8,)
    assert (tmp_path / "logs" / build_id).is_dir()
