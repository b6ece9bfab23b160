"""
intentforge — build state repositories

File: src/intentforge/persistence/repositories.py
Last updated: 2026-10-18

Purpose
- Repository/DAO interfaces for reading/writing build state to the state DB.

What should be included in this file
- Repositories: BuildRepo (mutable top-level row), StageRecordRepo (append-only).
- Atomic stage commit: stage record insert and build transition in one transaction.
- Pagination for listing builds.

Functional requirements
- A stage record is durable before the build row reflects the new current stage.
- Retry state ``(stage, attempt, next_retry_at)`` is persisted explicitly on the build row.

Non-functional requirements
- Must be efficient; avoid loading entire build history into memory.
"""

from __future__ import annotations

import json
from collections.abc import Mapping, Sequence
from typing import TYPE_CHECKING, Any, Final, cast

from intentforge.domain import ids
from intentforge.domain.models import (
    BuildResult,
    BuildState,
    BuildStatus,
    RetryState,
    Stage,
    StageRecord,
)
from intentforge.persistence.state_db import RowValue, SQLParams, StateDB
from intentforge.utils.hashing import canonical_json

if TYPE_CHECKING:
    import sqlite3

_MAX_PAGE_SIZE: Final[int] = 1_000

_BUILD_COLUMNS: Final[str] = """
    id,
    digest,
    status,
    current_stage_index,
    request_json,
    capability_id,
    contract_version,
    failure_json,
    retry_stage_index,
    retry_attempt,
    next_retry_at,
    created_at,
    updated_at
"""


class _BaseRepo:
    def __init__(self, db: StateDB) -> None:
        self._db = db
        self._db.migrate()

    @staticmethod
    def _validate_page(limit: int, offset: int) -> None:
        if limit <= 0 or limit > _MAX_PAGE_SIZE:
            raise ValueError(f"limit must be in [1, {_MAX_PAGE_SIZE}]")
        if offset < 0:
            raise ValueError("offset must be >= 0")


class StageRecordRepo(_BaseRepo):
    """Append-only repository for committed stage outputs."""

    def add(self, record: StageRecord, *, conn: sqlite3.Connection | None = None) -> StageRecord:
        ids.validate_build_id(record.build_id)
        self._db.execute(
            """
            INSERT INTO stage_records (
                build_id,
                stage_index,
                stage,
                artifact_json,
                attempts,
                duration_ms,
                status,
                completed_at
            ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
            """,
            (
                record.build_id,
                record.stage.index,
                record.stage.value,
                canonical_json(dict(record.artifact)),
                record.attempts,
                record.duration_ms,
                record.status,
                record.completed_at,
            ),
            conn=conn,
        )
        return record

    def get(self, build_id: str, stage: Stage) -> StageRecord | None:
        ids.validate_build_id(build_id)
        row = self._db.query_one(
            "SELECT * FROM stage_records WHERE build_id = ? AND stage_index = ?",
            (build_id, stage.index),
        )
        return None if row is None else _stage_record_from_row(row)

    def list_for_build(
        self, build_id: str, *, conn: sqlite3.Connection | None = None
    ) -> list[StageRecord]:
        ids.validate_build_id(build_id)
        rows = self._db.query_all(
            "SELECT * FROM stage_records WHERE build_id = ? ORDER BY stage_index ASC",
            (build_id,),
            conn=conn,
        )
        return [_stage_record_from_row(row) for row in rows]


class BuildRepo(_BaseRepo):
    """Repository for build rows, lifecycle transitions, and stage commits."""

    def __init__(self, db: StateDB) -> None:
        super().__init__(db)
        self._stages = StageRecordRepo(db)

    @property
    def stages(self) -> StageRecordRepo:
        return self._stages

    def add(self, state: BuildState) -> BuildState:
        return self._persist(state)

    def get(self, build_id: str, *, with_artifacts: bool = True) -> BuildState | None:
        ids.validate_build_id(build_id)
        with self._db.connection() as conn:
            row = self._db.query_one(
                f"SELECT {_BUILD_COLUMNS} FROM builds WHERE id = ?", (build_id,), conn=conn
            )
            if row is None:
                return None
            state = _build_state_from_row(row)
            if with_artifacts:
                for record in self._stages.list_for_build(build_id, conn=conn):
                    state.stage_artifacts[record.stage] = record.artifact
        return state

    def list(
        self,
        *,
        status: BuildStatus | str | None = None,
        limit: int = 100,
        offset: int = 0,
    ) -> list[BuildState]:
        self._validate_page(limit, offset)
        sql = f"SELECT {_BUILD_COLUMNS} FROM builds"
        params: list[object] = []
        if status is not None:
            sql += " WHERE status = ?"
            params.append(BuildStatus(status).value)
        sql += " ORDER BY created_at DESC, id DESC LIMIT ? OFFSET ?"
        params.extend((limit, offset))
        rows = self._db.query_all(sql, cast("SQLParams", tuple(params)))
        return [_build_state_from_row(row) for row in rows]

    def set_status(
        self,
        build_id: str,
        status: BuildStatus | str,
        *,
        updated_at: str,
        failure: Mapping[str, Any] | None = None,
        result: BuildResult | None = None,
    ) -> None:
        ids.validate_build_id(build_id)
        next_status = BuildStatus(status)
        changed = self._db.execute(
            """
            UPDATE builds
            SET status = ?,
                failure_json = ?,
                result_json = ?,
                retry_stage_index = NULL,
                retry_attempt = NULL,
                next_retry_at = NULL,
                updated_at = ?
            WHERE id = ?
            """,
            (
                next_status.value,
                canonical_json(dict(failure)) if failure is not None else None,
                canonical_json(result.to_dict()) if result is not None else None,
                updated_at,
                build_id,
            ),
        )
        if changed == 0:
            raise ValueError(f"build_id not found: {build_id}")

    def set_retry(self, build_id: str, retry: RetryState | None, *, updated_at: str) -> None:
        ids.validate_build_id(build_id)
        params: SQLParams = (
            retry.stage.index if retry is not None else None,
            retry.attempt if retry is not None else None,
            retry.next_retry_at if retry is not None else None,
            updated_at,
            build_id,
        )
        changed = self._db.execute(
            """
            UPDATE builds
            SET retry_stage_index = ?, retry_attempt = ?, next_retry_at = ?, updated_at = ?
            WHERE id = ?
            """,
            params,
        )
        if changed == 0:
            raise ValueError(f"build_id not found: {build_id}")

    def commit_stages(self, state: BuildState, records: Sequence[StageRecord]) -> None:
        """Append stage records and advance the build row in a single transaction.

        When the build row does not exist yet it is inserted first, which lets stages that
        ran before the identifier existed be flushed together with the first keyed stage.
        """

        if not records:
            return
        last = records[-1]
        with self._db.transaction() as conn:
            existing = self._db.query_one(
                "SELECT status FROM builds WHERE id = ?", (state.build_id,), conn=conn
            )
            if existing is None:
                self._persist(state, conn=conn)
            elif existing.get("status") != BuildStatus.RUNNING.value:
                raise ValueError(
                    f"build {state.build_id} is {existing.get('status')}; cannot commit stages"
                )
            for record in records:
                if record.build_id != state.build_id:
                    raise ValueError(
                        f"stage record build_id mismatch: {record.build_id} != {state.build_id}"
                    )
                self._stages.add(record, conn=conn)
            self._db.execute(
                """
                UPDATE builds
                SET current_stage_index = ?,
                    retry_stage_index = NULL,
                    retry_attempt = NULL,
                    next_retry_at = NULL,
                    updated_at = ?
                WHERE id = ?
                """,
                (last.stage.index, last.completed_at, state.build_id),
                conn=conn,
            )

    def get_result(self, build_id: str) -> BuildResult | None:
        ids.validate_build_id(build_id)
        row = self._db.query_one("SELECT result_json FROM builds WHERE id = ?", (build_id,))
        if row is None or row.get("result_json") is None:
            return None
        payload = _load_json_object(_row_text(row, "result_json", "builds.result_json"), "result")
        return BuildResult.from_dict(payload)

    def _persist(
        self,
        state: BuildState,
        *,
        conn: sqlite3.Connection | None = None,
    ) -> BuildState:
        ids.validate_build_id(state.build_id)
        retry = state.retry
        placeholders = ", ".join("?" * len(_BUILD_COLUMNS.split(",")))
        sql = f"INSERT INTO builds ({_BUILD_COLUMNS}) VALUES ({placeholders})"
        params: SQLParams = (
            state.build_id,
            state.digest,
            state.status.value,
            state.current_stage.index,
            canonical_json(dict(state.request)),
            state.capability_id,
            state.contract_version,
            canonical_json(dict(state.failure)) if state.failure is not None else None,
            retry.stage.index if retry is not None else None,
            retry.attempt if retry is not None else None,
            retry.next_retry_at if retry is not None else None,
            state.created_at,
            state.updated_at,
        )
        self._db.execute(sql, params, conn=conn)
        return state


def _build_state_from_row(row: Mapping[str, RowValue]) -> BuildState:
    failure_json = row.get("failure_json")
    retry_index = row.get("retry_stage_index")
    retry: RetryState | None = None
    if isinstance(retry_index, int):
        retry = RetryState(
            stage=Stage.from_index(retry_index),
            attempt=_row_int(row, "retry_attempt", "builds.retry_attempt"),
            next_retry_at=_row_text(row, "next_retry_at", "builds.next_retry_at"),
        )
    return BuildState(
        build_id=_row_text(row, "id", "builds.id"),
        digest=_row_text(row, "digest", "builds.digest"),
        status=BuildStatus(_row_text(row, "status", "builds.status")),
        current_stage=Stage.from_index(
            _row_int(row, "current_stage_index", "builds.current_stage_index")
        ),
        request=_load_json_object(
            _row_text(row, "request_json", "builds.request_json"), "builds.request_json"
        ),
        capability_id=_row_text(row, "capability_id", "builds.capability_id"),
        contract_version=_row_text(row, "contract_version", "builds.contract_version"),
        created_at=_row_text(row, "created_at", "builds.created_at"),
        updated_at=_row_text(row, "updated_at", "builds.updated_at"),
        failure=(
            _load_json_object(failure_json, "builds.failure_json")
            if isinstance(failure_json, str)
            else None
        ),
        retry=retry,
    )


def _stage_record_from_row(row: Mapping[str, RowValue]) -> StageRecord:
    return StageRecord(
        build_id=_row_text(row, "build_id", "stage_records.build_id"),
        stage=Stage.from_index(_row_int(row, "stage_index", "stage_records.stage_index")),
        artifact=_load_json_object(
            _row_text(row, "artifact_json", "stage_records.artifact_json"),
            "stage_records.artifact_json",
        ),
        completed_at=_row_text(row, "completed_at", "stage_records.completed_at"),
        attempts=_row_int(row, "attempts", "stage_records.attempts"),
        duration_ms=_row_int(row, "duration_ms", "stage_records.duration_ms"),
        status=_row_text(row, "status", "stage_records.status"),
    )


def _row_text(row: Mapping[str, RowValue], key: str, path: str) -> str:
    value = row.get(key)
    if not isinstance(value, str):
        raise ValueError(f"{path}: expected text value")
    return value


def _row_int(row: Mapping[str, RowValue], key: str, path: str) -> int:
    value = row.get(key)
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValueError(f"{path}: expected integer value")
    return value


def _load_json_object(payload: str, path: str) -> dict[str, object]:
    if not isinstance(payload, str):
        raise ValueError(f"{path}: expected JSON string")
    try:
        loaded = json.loads(payload)
    except json.JSONDecodeError as exc:
        raise ValueError(f"{path}: invalid JSON ({exc})") from exc
    if not isinstance(loaded, dict):
        raise ValueError(f"{path}: JSON root must be object")
    out: dict[str, object] = {}
    for key, value in loaded.items():
        if not isinstance(key, str):
            raise ValueError(f"{path}: key must be text")
        out[key] = value
    return out


__all__ = [
    "BuildRepo",
    "StageRecordRepo",
]
