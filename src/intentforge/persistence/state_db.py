"""
intentforge — build state database

File: src/intentforge/persistence/state_db.py
Last updated: 2026-10-18

Purpose
- Own the SQLite file that records builds and their committed stages.

What should be included in this file
- The ``builds`` / ``stage_records`` schema as one checksummed migration.
- Connection setup (WAL, foreign keys, busy timeout) and bounded retry on SQLITE_BUSY.
- Transactions that nest through savepoints so repositories can compose writes.
- Integrity check for operators.

Functional requirements
- Stage records are append-only; triggers reject UPDATE and DELETE on them.
- A migration whose recorded checksum no longer matches the code is refused, not reapplied.
- Constraint violations surface as ``sqlite3.IntegrityError`` so callers can tell a duplicate
  commit from an I/O failure.

Non-functional requirements
- Connections are short-lived; nothing holds a lock between calls.
"""

from __future__ import annotations

import hashlib
import sqlite3
import time
from collections.abc import Iterator, Sequence
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import UTC, datetime
from pathlib import Path
from typing import Final

from intentforge.constants import STATE_DB_SCHEMA_VERSION
from intentforge.domain.models import STAGE_ORDER, BuildStatus

SQLValue = str | int | float | bytes | None
SQLParams = Sequence[SQLValue]
RowValue = str | int | float | bytes | None

DEFAULT_BUSY_TIMEOUT_MS: Final[int] = 5_000
DEFAULT_BUSY_RETRY_LIMIT: Final[int] = 4
DEFAULT_BUSY_RETRY_BACKOFF_MS: Final[int] = 25

_STATUS_CHECK: Final[str] = ", ".join(f"'{item.value}'" for item in BuildStatus)
_LAST_STAGE: Final[int] = len(STAGE_ORDER) - 1

_SCHEMA_VERSIONS_DDL: Final[str] = """
CREATE TABLE IF NOT EXISTS schema_versions (
    version INTEGER PRIMARY KEY CHECK (version > 0),
    name TEXT NOT NULL,
    checksum TEXT NOT NULL CHECK (length(checksum) = 64),
    applied_at TEXT NOT NULL
)
"""

_BUILD_STATE_DDL: Final[tuple[str, ...]] = (
    f"""
    CREATE TABLE IF NOT EXISTS builds (
        id TEXT PRIMARY KEY,
        digest TEXT NOT NULL CHECK (length(digest) = 64),
        status TEXT NOT NULL CHECK (status IN ({_STATUS_CHECK})),
        current_stage_index INTEGER NOT NULL
            CHECK (current_stage_index BETWEEN 0 AND {_LAST_STAGE}),
        request_json TEXT NOT NULL,
        capability_id TEXT NOT NULL,
        contract_version TEXT NOT NULL,
        failure_json TEXT,
        result_json TEXT,
        retry_stage_index INTEGER,
        retry_attempt INTEGER CHECK (retry_attempt IS NULL OR retry_attempt >= 1),
        next_retry_at TEXT,
        created_at TEXT NOT NULL,
        updated_at TEXT NOT NULL
    )
    """,
    f"""
    CREATE TABLE IF NOT EXISTS stage_records (
        build_id TEXT NOT NULL REFERENCES builds(id),
        stage_index INTEGER NOT NULL CHECK (stage_index BETWEEN 0 AND {_LAST_STAGE}),
        stage TEXT NOT NULL,
        artifact_json TEXT NOT NULL,
        attempts INTEGER NOT NULL CHECK (attempts >= 1),
        duration_ms INTEGER NOT NULL CHECK (duration_ms >= 0),
        status TEXT NOT NULL,
        completed_at TEXT NOT NULL,
        PRIMARY KEY (build_id, stage_index)
    )
    """,
    *(
        f"""
        CREATE TRIGGER IF NOT EXISTS stage_records_no_{action.lower()}
        BEFORE {action} ON stage_records
        BEGIN
            SELECT RAISE(ABORT, 'stage_records is append-only');
        END
        """
        for action in ("UPDATE", "DELETE")
    ),
    "CREATE INDEX IF NOT EXISTS idx_builds_status_updated ON builds(status, updated_at DESC)",
    "CREATE INDEX IF NOT EXISTS idx_builds_created ON builds(created_at DESC)",
)


class StateDBError(RuntimeError):
    """Base class for persistence DB errors."""


class StateDBBusyError(StateDBError):
    """The database stayed locked through every retry."""


class StateDBMigrationError(StateDBError):
    """Schema migrations cannot be applied safely."""


class StateDBCorruptionError(StateDBError):
    """SQLite reported a malformed database file."""


@dataclass(frozen=True, slots=True)
class MigrationRecord:
    version: int
    name: str
    checksum: str
    applied_at: str


@dataclass(frozen=True, slots=True)
class Migration:
    version: int
    name: str
    statements: tuple[str, ...]

    @property
    def checksum(self) -> str:
        # Whitespace-insensitive: reindenting a statement keeps old databases valid.
        digest = hashlib.sha256(f"{self.version}:{self.name}\n".encode())
        for statement in self.statements:
            digest.update(" ".join(statement.split()).encode("utf-8"))
            digest.update(b"\n--\n")
        return digest.hexdigest()


MIGRATIONS: Final[tuple[Migration, ...]] = (
    Migration(version=1, name="build_state_schema", statements=_BUILD_STATE_DDL),
)

_BUSY_CODES: Final[frozenset[int]] = frozenset({sqlite3.SQLITE_BUSY, sqlite3.SQLITE_LOCKED})
_CORRUPT_CODES: Final[frozenset[int]] = frozenset({sqlite3.SQLITE_CORRUPT, sqlite3.SQLITE_NOTADB})


class StateDB:
    """Thin, retrying wrapper around one SQLite database file."""

    def __init__(
        self,
        path: str | Path,
        *,
        busy_timeout_ms: int = DEFAULT_BUSY_TIMEOUT_MS,
        busy_retry_limit: int = DEFAULT_BUSY_RETRY_LIMIT,
        busy_retry_backoff_ms: int = DEFAULT_BUSY_RETRY_BACKOFF_MS,
    ) -> None:
        for name, value in (
            ("busy_timeout_ms", busy_timeout_ms),
            ("busy_retry_limit", busy_retry_limit),
            ("busy_retry_backoff_ms", busy_retry_backoff_ms),
        ):
            if value < 0:
                raise ValueError(f"{name} must be >= 0")
        self._path = Path(path).expanduser()
        self._busy_timeout_ms = busy_timeout_ms
        self._busy_retry_limit = busy_retry_limit
        self._busy_retry_backoff_s = busy_retry_backoff_ms / 1000.0
        self._savepoints = 0

    @property
    def path(self) -> Path:
        return self._path

    # ------------------------------------------------------------------ connections

    def connect(self) -> sqlite3.Connection:
        self._path.parent.mkdir(parents=True, exist_ok=True)
        conn = sqlite3.connect(
            self._path,
            timeout=self._busy_timeout_ms / 1000.0,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys=ON")
        conn.execute(f"PRAGMA busy_timeout={self._busy_timeout_ms}")
        mode = conn.execute("PRAGMA journal_mode=WAL").fetchone()
        if mode is None or str(mode[0]).lower() != "wal":
            conn.close()
            raise StateDBError(f"could not enable WAL journaling for {self._path}")
        return conn

    @contextmanager
    def connection(self) -> Iterator[sqlite3.Connection]:
        conn = self.connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(
        self,
        *,
        conn: sqlite3.Connection | None = None,
        immediate: bool = True,
    ) -> Iterator[sqlite3.Connection]:
        """Atomic unit of work; nested calls on the same connection become savepoints."""

        if conn is None:
            with self.connection() as owned:
                with self.transaction(conn=owned, immediate=immediate) as tx:
                    yield tx
            return

        if not conn.in_transaction:
            self._run(conn, "BEGIN IMMEDIATE" if immediate else "BEGIN", (), operation="begin")
            try:
                yield conn
            except Exception:
                self._run(conn, "ROLLBACK", (), operation="rollback")
                raise
            self._run(conn, "COMMIT", (), operation="commit")
            return

        self._savepoints += 1
        savepoint = f"sp_{self._savepoints}"
        self._run(conn, f"SAVEPOINT {savepoint}", (), operation="savepoint")
        try:
            yield conn
        except Exception:
            self._run(conn, f"ROLLBACK TO SAVEPOINT {savepoint}", (), operation="rollback")
            self._run(conn, f"RELEASE SAVEPOINT {savepoint}", (), operation="release")
            raise
        self._run(conn, f"RELEASE SAVEPOINT {savepoint}", (), operation="release")

    # ------------------------------------------------------------------ statements

    def execute(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> int:
        """Run one statement and return the affected row count."""

        if conn is not None:
            return self._run(conn, sql, params, operation="execute statement").rowcount
        with self.transaction() as tx:
            return self._run(tx, sql, params, operation="execute statement").rowcount

    def query_all(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> list[dict[str, RowValue]]:
        if conn is None:
            with self.connection() as owned:
                return self.query_all(sql, params, conn=owned)
        cursor = self._run(conn, sql, params, operation="query")
        return [dict(row) for row in cursor.fetchall()]

    def query_one(
        self,
        sql: str,
        params: SQLParams = (),
        *,
        conn: sqlite3.Connection | None = None,
    ) -> dict[str, RowValue] | None:
        rows = self.query_all(sql, params, conn=conn)
        return rows[0] if rows else None

    # ------------------------------------------------------------------ schema

    def migrate(self) -> int:
        """Apply pending migrations and return the resulting schema version.

        Safe to call on every start; already-applied migrations are only checksum-verified.
        """

        known = {migration.version for migration in MIGRATIONS}
        missing = [v for v in range(1, STATE_DB_SCHEMA_VERSION + 1) if v not in known]
        if missing:
            raise StateDBMigrationError(f"no migration defined for schema version(s) {missing}")

        with self.connection() as conn:
            self._run(conn, _SCHEMA_VERSIONS_DDL, (), operation="create schema_versions")
            applied = self._applied(conn)
            newest = max(applied, default=0)
            if newest > STATE_DB_SCHEMA_VERSION:
                raise StateDBMigrationError(
                    f"database schema version {newest} is newer than supported "
                    f"version {STATE_DB_SCHEMA_VERSION}"
                )
            for migration in MIGRATIONS:
                if migration.version > STATE_DB_SCHEMA_VERSION:
                    break
                record = applied.get(migration.version)
                if record is None:
                    self._apply(conn, migration)
                elif record.checksum != migration.checksum:
                    raise StateDBMigrationError(
                        f"migration {migration.version} ({migration.name}) was changed after "
                        f"it was applied: db={record.checksum} code={migration.checksum}"
                    )
            return self.schema_version(conn=conn)

    def schema_version(self, *, conn: sqlite3.Connection | None = None) -> int:
        row = self.query_one(
            "SELECT COALESCE(MAX(version), 0) AS version FROM schema_versions", conn=conn
        )
        version = 0 if row is None else row["version"]
        if not isinstance(version, int):
            raise StateDBMigrationError("schema_versions.version must be an integer")
        return version

    def schema_history(self) -> list[MigrationRecord]:
        with self.connection() as conn:
            return list(self._applied(conn).values())

    def integrity_check(self, *, max_errors: int = 100) -> tuple[str, ...]:
        """Run ``PRAGMA integrity_check``; an empty tuple means the file is healthy."""

        if max_errors <= 0:
            raise ValueError("max_errors must be > 0")
        rows = self.query_all(f"PRAGMA integrity_check({max_errors})")
        messages = tuple(str(row.get("integrity_check", "")) for row in rows)
        return () if messages == ("ok",) else messages

    def __enter__(self) -> StateDB:
        self.migrate()
        return self

    def __exit__(self, exc_type: object, exc: object, tb: object) -> None:
        del exc_type, exc, tb

    # ------------------------------------------------------------------ internals

    def _applied(self, conn: sqlite3.Connection) -> dict[int, MigrationRecord]:
        rows = self._run(
            conn,
            "SELECT version, name, checksum, applied_at FROM schema_versions ORDER BY version",
            (),
            operation="load schema_versions",
        ).fetchall()
        return {
            int(row["version"]): MigrationRecord(
                version=int(row["version"]),
                name=str(row["name"]),
                checksum=str(row["checksum"]),
                applied_at=str(row["applied_at"]),
            )
            for row in rows
        }

    def _apply(self, conn: sqlite3.Connection, migration: Migration) -> None:
        operation = f"apply migration {migration.version}"
        with self.transaction(conn=conn) as tx:
            for statement in migration.statements:
                self._run(tx, statement, (), operation=operation)
            self._run(
                tx,
                "INSERT INTO schema_versions (version, name, checksum, applied_at) "
                "VALUES (?, ?, ?, ?)",
                (migration.version, migration.name, migration.checksum, _utc_now_iso()),
                operation=operation,
            )

    def _run(
        self,
        conn: sqlite3.Connection,
        sql: str,
        params: SQLParams,
        *,
        operation: str,
    ) -> sqlite3.Cursor:
        attempt = 0
        while True:
            try:
                return conn.execute(sql, tuple(params))
            except sqlite3.IntegrityError:
                raise
            except sqlite3.Error as exc:
                code = getattr(exc, "sqlite_errorcode", None)
                busy = code in _BUSY_CODES or "locked" in str(exc).lower()
                if busy and attempt < self._busy_retry_limit:
                    time.sleep(self._busy_retry_backoff_s * (2**attempt))
                    attempt += 1
                    continue
                if busy:
                    raise StateDBBusyError(
                        f"{operation} still locked after {attempt + 1} attempt(s) "
                        f"on {self._path}: {exc}"
                    ) from exc
                if code in _CORRUPT_CODES:
                    raise StateDBCorruptionError(
                        f"{operation} failed for {self._path}: {exc}; "
                        "run StateDB.integrity_check() to inspect the file"
                    ) from exc
                raise StateDBError(f"{operation} failed for {self._path}: {exc}") from exc


def _utc_now_iso() -> str:
    return datetime.now(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


__all__ = [
    "DEFAULT_BUSY_RETRY_BACKOFF_MS",
    "DEFAULT_BUSY_RETRY_LIMIT",
    "DEFAULT_BUSY_TIMEOUT_MS",
    "MIGRATIONS",
    "Migration",
    "MigrationRecord",
    "RowValue",
    "SQLParams",
    "SQLValue",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
]
