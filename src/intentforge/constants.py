"""Stable constants shared across pipeline planes."""

from __future__ import annotations

from pathlib import PurePosixPath
from typing import Final

# Collaborator contract versions (MAJOR.MINOR).
CONTRACT_VERSION: Final[str] = "1.0"
MIN_SUPPORTED_CONTRACT_VERSION: Final[str] = "1.0"

# Schema versions for persisted contracts.
CONFIG_SCHEMA_VERSION: Final[int] = 1
RULE_SET_SCHEMA_VERSION: Final[int] = 1
STATE_DB_SCHEMA_VERSION: Final[int] = 1

# Default runtime paths (relative to workspace root unless overridden by config).
STATE_DIR: Final[PurePosixPath] = PurePosixPath("state")
OUTPUT_DIR: Final[PurePosixPath] = PurePosixPath("out")
LOG_DIR: Final[PurePosixPath] = PurePosixPath("logs")

# Artifact root value that selects the store bundled inside the package.
BUNDLED_ARTIFACT_ROOT: Final[str] = "<bundled>"

# Intent interpretation.
CLARIFICATION_CONFIDENCE_THRESHOLD: Final[float] = 0.6
DEFAULT_NAMESPACE: Final[str] = "Contoso"

# Context routing defaults.
DEFAULT_MAX_COST: Final[int] = 5_000
DEFAULT_MAX_FILES: Final[int] = 10
DEFAULT_MAX_BYTES: Final[int] = 1_048_576
DEFAULT_SIZE_ESTIMATE: Final[int] = 500
DEFAULT_CACHE_TTL_SECONDS: Final[float] = 3_600.0

__all__ = [
    "BUNDLED_ARTIFACT_ROOT",
    "CLARIFICATION_CONFIDENCE_THRESHOLD",
    "CONFIG_SCHEMA_VERSION",
    "CONTRACT_VERSION",
    "DEFAULT_CACHE_TTL_SECONDS",
    "DEFAULT_MAX_BYTES",
    "DEFAULT_MAX_COST",
    "DEFAULT_MAX_FILES",
    "DEFAULT_NAMESPACE",
    "DEFAULT_SIZE_ESTIMATE",
    "LOG_DIR",
    "MIN_SUPPORTED_CONTRACT_VERSION",
    "OUTPUT_DIR",
    "RULE_SET_SCHEMA_VERSION",
    "STATE_DB_SCHEMA_VERSION",
    "STATE_DIR",
]
