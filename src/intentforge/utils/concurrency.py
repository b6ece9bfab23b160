"""Cancellation and clock primitives shared by the pipeline planes."""

from __future__ import annotations

import threading
import time
from collections.abc import Callable
from datetime import UTC, datetime

Clock = Callable[[], float]
Sleeper = Callable[[float], None]
WallClock = Callable[[], datetime]


class OperationCancelledError(RuntimeError):
    """Raised when a cancellation token is observed at a checkpoint."""


class CancellationToken:
    """Cooperative cancellation token backed by ``threading.Event``."""

    def __init__(self) -> None:
        self._event = threading.Event()
        self._reason: str | None = None

    def cancel(self, reason: str | None = None) -> None:
        self._reason = reason
        self._event.set()

    @property
    def is_cancelled(self) -> bool:
        return self._event.is_set()

    @property
    def reason(self) -> str | None:
        return self._reason

    def wait(self, timeout: float | None = None) -> bool:
        return self._event.wait(timeout)

    def raise_if_cancelled(self) -> None:
        if self._event.is_set():
            raise OperationCancelledError(self._reason or "operation cancelled")


def monotonic_clock() -> float:
    return time.monotonic()


def real_sleep(seconds: float) -> None:
    if seconds > 0:
        time.sleep(seconds)


def utc_now() -> datetime:
    return datetime.now(UTC)


def iso8601z(value: datetime) -> str:
    """Render a timezone-aware datetime as ISO-8601 with a ``Z`` suffix."""

    if value.tzinfo is None or value.utcoffset() is None:
        raise ValueError("datetime must be timezone-aware")
    return value.astimezone(UTC).isoformat(timespec="microseconds").replace("+00:00", "Z")


__all__ = [
    "CancellationToken",
    "Clock",
    "OperationCancelledError",
    "Sleeper",
    "WallClock",
    "iso8601z",
    "monotonic_clock",
    "real_sleep",
    "utc_now",
]
