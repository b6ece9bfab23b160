"""
intentforge — stage retry policy

File: src/intentforge/control_plane/retry.py
Last updated: 2026-10-18

Purpose
- Classify stage failures and compute bounded exponential backoff for transient ones.

What should be included in this file
- Backoff configuration and delay computation.
- Per-stage attempt budgets loaded from the ``[retry]`` config section.
- Failure classification into transient / validation / fatal handling.

Functional requirements
- Deterministic stages never retry.
- Only ``TransientError`` (and collaborator ``TimeoutError``) is retryable.
- Delays are capped at ``max_delay_seconds``.

Non-functional requirements
- No jitter: schedules are reproducible under an injected clock.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import StrEnum
from types import MappingProxyType
from typing import Final

from intentforge.domain.errors import FatalError, PipelineError, TransientError
from intentforge.domain.models import RetryState, Stage
from intentforge.utils.concurrency import iso8601z

DEFAULT_STAGE_MAX_ATTEMPTS: Final[Mapping[Stage, int]] = MappingProxyType(
    {
        Stage.INIT: 1,
        Stage.INTERPRET_INTENT: 3,
        Stage.MATCH_CAPABILITY: 3,
        Stage.GENERATE_SPEC: 2,
        Stage.VALIDATE_RULES: 1,
        Stage.FINAL_VALIDATE: 1,
        Stage.GENERATE_CODE: 2,
        Stage.PACKAGE: 1,
    }
)
DETERMINISTIC_STAGES: Final[frozenset[Stage]] = frozenset(
    {Stage.INIT, Stage.VALIDATE_RULES, Stage.FINAL_VALIDATE}
)


class FailureHandling(StrEnum):
    RETRY = "retry"
    FAIL = "fail"


@dataclass(frozen=True, slots=True)
class BackoffConfig:
    """Bounded exponential backoff policy."""

    initial_delay_seconds: float = 0.5
    multiplier: float = 2.0
    max_delay_seconds: float = 8.0

    def __post_init__(self) -> None:
        if self.initial_delay_seconds < 0:
            raise ValueError("initial_delay_seconds must be >= 0")
        if self.multiplier < 1.0:
            raise ValueError("multiplier must be >= 1.0")
        if self.max_delay_seconds < 0:
            raise ValueError("max_delay_seconds must be >= 0")
        if self.initial_delay_seconds > self.max_delay_seconds:
            raise ValueError("initial_delay_seconds must be <= max_delay_seconds")


def compute_backoff_delay(*, retry_number: int, config: BackoffConfig) -> float:
    """Return bounded exponential backoff delay for retry attempt N (1-based)."""

    if retry_number <= 0:
        raise ValueError("retry_number must be > 0")

    base_delay = config.initial_delay_seconds * (config.multiplier ** (retry_number - 1))
    return min(base_delay, config.max_delay_seconds)


@dataclass(frozen=True, slots=True)
class RetryPolicy:
    backoff: BackoffConfig = field(default_factory=BackoffConfig)
    stage_max_attempts: Mapping[Stage, int] = field(
        default_factory=lambda: DEFAULT_STAGE_MAX_ATTEMPTS
    )

    def __post_init__(self) -> None:
        for stage in DETERMINISTIC_STAGES:
            if self.max_attempts(stage) != 1:
                raise ValueError(f"deterministic stage {stage.value} must not retry")

    def max_attempts(self, stage: Stage) -> int:
        return max(1, int(self.stage_max_attempts.get(stage, 1)))

    def classify(self, error: BaseException) -> FailureHandling:
        if isinstance(error, PipelineError):
            return FailureHandling.RETRY if error.retryable else FailureHandling.FAIL
        if isinstance(error, TimeoutError):
            return FailureHandling.RETRY
        return FailureHandling.FAIL

    def should_retry(self, stage: Stage, attempt: int, error: BaseException) -> bool:
        """``attempt`` is the 1-based number of the attempt that just failed."""

        return (
            self.classify(error) is FailureHandling.RETRY and attempt < self.max_attempts(stage)
        )

    def schedule(
        self, stage: Stage, failed_attempt: int, now: datetime
    ) -> tuple[RetryState, float]:
        delay = compute_backoff_delay(retry_number=failed_attempt, config=self.backoff)
        state = RetryState(
            stage=stage,
            attempt=failed_attempt + 1,
            next_retry_at=iso8601z(now + timedelta(seconds=delay)),
        )
        return state, delay

    @classmethod
    def from_config(cls, retry_config: Mapping[str, object]) -> RetryPolicy:
        attempts_raw = retry_config.get("stage_max_attempts", {})
        attempts: dict[Stage, int] = dict(DEFAULT_STAGE_MAX_ATTEMPTS)
        if isinstance(attempts_raw, Mapping):
            for name, value in attempts_raw.items():
                attempts[Stage(str(name))] = int(str(value))
        return cls(
            backoff=BackoffConfig(
                initial_delay_seconds=_as_float(retry_config, "initial_delay_seconds", 0.5),
                multiplier=_as_float(retry_config, "multiplier", 2.0),
                max_delay_seconds=_as_float(retry_config, "max_delay_seconds", 8.0),
            ),
            stage_max_attempts=MappingProxyType(attempts),
        )


def _as_float(section: Mapping[str, object], key: str, default: float) -> float:
    value = section.get(key, default)
    if isinstance(value, bool) or not isinstance(value, (int, float)):
        raise ValueError(f"retry.{key} must be a number")
    return float(value)


def normalize_failure(error: BaseException) -> PipelineError:
    """Map non-pipeline exceptions raised by collaborators onto the taxonomy."""

    if isinstance(error, PipelineError):
        return error
    if isinstance(error, TimeoutError):
        return TransientError(f"collaborator timed out: {error}", reason="timeout")
    return FatalError(f"{type(error).__name__}: {error}", code="collaborator_error")


__all__ = [
    "DEFAULT_STAGE_MAX_ATTEMPTS",
    "DETERMINISTIC_STAGES",
    "BackoffConfig",
    "FailureHandling",
    "RetryPolicy",
    "compute_backoff_delay",
    "normalize_failure",
]
