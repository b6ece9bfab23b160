"""Domain models, identifiers, and error taxonomy."""

from intentforge.domain import errors, ids
from intentforge.domain.models import (
    STAGE_ORDER,
    BudgetPolicy,
    BuildOutcome,
    BuildResult,
    BuildState,
    BuildStatus,
    Capability,
    Context,
    RetryState,
    Severity,
    Stage,
    Task,
    ValidationResult,
)

__all__ = [
    "STAGE_ORDER",
    "BudgetPolicy",
    "BuildOutcome",
    "BuildResult",
    "BuildState",
    "BuildStatus",
    "Capability",
    "Context",
    "RetryState",
    "Severity",
    "Stage",
    "Task",
    "ValidationResult",
    "errors",
    "ids",
]
