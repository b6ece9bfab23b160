"""Persistence layer: SQLite state database and build repositories."""

from intentforge.persistence.repositories import BuildRepo, StageRecordRepo
from intentforge.persistence.state_db import (
    StateDB,
    StateDBBusyError,
    StateDBCorruptionError,
    StateDBError,
    StateDBMigrationError,
)

__all__ = [
    "BuildRepo",
    "StageRecordRepo",
    "StateDB",
    "StateDBBusyError",
    "StateDBCorruptionError",
    "StateDBError",
    "StateDBMigrationError",
]
