"""Unit tests for stage failure classification and bounded backoff."""

from __future__ import annotations

from datetime import UTC, datetime

import pytest

from intentforge.control_plane.retry import (
    BackoffConfig,
    FailureHandling,
    RetryPolicy,
    compute_backoff_delay,
    normalize_failure,
)
from intentforge.domain.errors import (
    ContractViolation,
    FatalError,
    TransientError,
    ValidationError,
)
from intentforge.domain.models import RetryState, Stage

pytestmark = pytest.mark.unit


def test_backoff_doubles_and_is_capped() -> None:
    config = BackoffConfig(initial_delay_seconds=0.5, multiplier=2.0, max_delay_seconds=3.0)

    delays = [compute_backoff_delay(retry_number=n, config=config) for n in range(1, 6)]

    assert delays == [0.5, 1.0, 2.0, 3.0, 3.0]


def test_invalid_backoff_config_is_rejected() -> None:
    with pytest.raises(ValueError, match="multiplier"):
        BackoffConfig(multiplier=0.5)
    with pytest.raises(ValueError, match="retry_number"):
        compute_backoff_delay(retry_number=0, config=BackoffConfig())


@pytest.mark.parametrize(
    ("error", "handling"),
    [
        (TransientError("rate limited", reason="rate_limit"), FailureHandling.RETRY),
        (TimeoutError("slow"), FailureHandling.RETRY),
        (ContractViolation("spec_generator", ["bad"]), FailureHandling.FAIL),
        (ValidationError("validate_rules", []), FailureHandling.FAIL),
        (FatalError("broken"), FailureHandling.FAIL),
        (RuntimeError("boom"), FailureHandling.FAIL),
    ],
)
def test_failure_classification(error: BaseException, handling: FailureHandling) -> None:
    assert RetryPolicy().classify(error) is handling


def test_attempt_budgets_bound_retries() -> None:
    policy = RetryPolicy()
    transient = TransientError("network down")

    assert policy.should_retry(Stage.INTERPRET_INTENT, 2, transient)
    assert not policy.should_retry(Stage.INTERPRET_INTENT, 3, transient)
    assert policy.should_retry(Stage.GENERATE_SPEC, 1, transient)
    assert not policy.should_retry(Stage.GENERATE_SPEC, 2, transient)
    assert not policy.should_retry(Stage.VALIDATE_RULES, 1, transient)
    assert not policy.should_retry(Stage.PACKAGE, 1, transient)


def test_schedule_returns_next_attempt_and_due_time() -> None:
    policy = RetryPolicy(backoff=BackoffConfig(initial_delay_seconds=0.5, max_delay_seconds=4.0))
    now = datetime(2026, 10, 18, 12, 0, 0, tzinfo=UTC)

    state, delay = policy.schedule(Stage.GENERATE_SPEC, 1, now)

    assert delay == 0.5
    assert state == RetryState(
        stage=Stage.GENERATE_SPEC, attempt=2, next_retry_at="2026-10-18T12:00:00.500000Z"
    )


def test_deterministic_stages_may_not_retry() -> None:
    with pytest.raises(ValueError, match="validate_rules must not retry"):
        RetryPolicy(stage_max_attempts={Stage.VALIDATE_RULES: 2})


def test_from_config_overrides_budgets_and_backoff() -> None:
    policy = RetryPolicy.from_config(
        {
            "initial_delay_seconds": 1,
            "multiplier": 3,
            "max_delay_seconds": 10,
            "stage_max_attempts": {"generate_code": 4},
        }
    )

    assert policy.max_attempts(Stage.GENERATE_CODE) == 4
    assert policy.max_attempts(Stage.INTERPRET_INTENT) == 3
    assert policy.backoff.multiplier == 3.0


def test_normalize_failure_maps_foreign_exceptions() -> None:
    timeout = normalize_failure(TimeoutError("slow"))
    other = normalize_failure(KeyError("x"))

    assert isinstance(timeout, TransientError)
    assert timeout.code == "transient_timeout"
    assert isinstance(other, FatalError)
    assert other.code == "collaborator_error"
