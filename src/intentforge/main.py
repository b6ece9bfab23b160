"""Executable CLI entrypoint for ``intentforge``.

Every outcome, including uncaught exceptions, ends as one of the ``ExitCode`` values.
"""

from __future__ import annotations

import sys
import traceback
from enum import IntEnum
from typing import TYPE_CHECKING, Final

from intentforge.config.loader import ConfigLoadError
from intentforge.config.schema import ConfigValidationError
from intentforge.domain.errors import FailureKind, PipelineError
from intentforge.domain.models import BuildOutcome, BuildResult

if TYPE_CHECKING:
    from collections.abc import Iterator, Sequence


class ExitCode(IntEnum):
    SUCCESS = 0
    REJECTED = 1
    CONFIG_ERROR = 2
    COLLABORATOR_ERROR = 3
    INTERNAL_ERROR = 4


_EXIT_BY_KIND: Final[dict[str, ExitCode]] = {
    FailureKind.BUDGET.value: ExitCode.CONFIG_ERROR,
    FailureKind.VALIDATION.value: ExitCode.REJECTED,
    FailureKind.SYSTEM.value: ExitCode.INTERNAL_ERROR,
    FailureKind.CONTRACT.value: ExitCode.COLLABORATOR_ERROR,
    FailureKind.TRANSIENT.value: ExitCode.COLLABORATOR_ERROR,
    FailureKind.FATAL.value: ExitCode.COLLABORATOR_ERROR,
}

# Usage and environment problems the user can fix by changing inputs.
_CONFIG_ERROR_TYPES: Final[tuple[type[BaseException], ...]] = (
    ConfigLoadError,
    ConfigValidationError,
    FileNotFoundError,
    NotADirectoryError,
    PermissionError,
    ValueError,
)


def cli_entrypoint(argv: Sequence[str] | None = None) -> int:
    """Entrypoint used by ``python -m intentforge`` and the console script."""

    from intentforge.ui.cli import run_cli

    try:
        return _as_exit_code(run_cli(argv))
    except SystemExit as exc:
        return _as_exit_code(exc.code)
    except Exception as exc:  # noqa: BLE001 - process boundary
        code = _exit_code_for_exception(exc)
        if code is ExitCode.INTERNAL_ERROR:
            traceback.print_exception(exc, file=sys.stderr)
        else:
            print(str(exc).strip() or type(exc).__name__, file=sys.stderr)
        return int(code)


def exit_code_for_result(result: BuildResult) -> ExitCode:
    """Exit code for a finished build: success 0, rejected or clarification 1, else by kind."""

    if result.status is BuildOutcome.SUCCESS:
        return ExitCode.SUCCESS
    if result.status in {BuildOutcome.REJECTED, BuildOutcome.CLARIFICATION_REQUIRED}:
        return ExitCode.REJECTED
    kind = (result.failure or {}).get("kind")
    return _EXIT_BY_KIND.get(str(kind), ExitCode.COLLABORATOR_ERROR)


def _as_exit_code(raw: object) -> int:
    if raw is None:
        return int(ExitCode.SUCCESS)
    if isinstance(raw, int) and raw in {code.value for code in ExitCode}:
        return raw
    if isinstance(raw, str) and raw.strip():
        print(raw.strip(), file=sys.stderr)
    return int(ExitCode.INTERNAL_ERROR)


def _exit_code_for_exception(exc: BaseException) -> ExitCode:
    """First recognizable error along the ``__cause__`` / ``__context__`` chain wins."""

    for item in _causes(exc):
        if isinstance(item, PipelineError):
            return _EXIT_BY_KIND[item.kind.value]
        if isinstance(item, _CONFIG_ERROR_TYPES):
            return ExitCode.CONFIG_ERROR
    return ExitCode.INTERNAL_ERROR


def _causes(exc: BaseException) -> Iterator[BaseException]:
    seen: set[int] = set()
    current: BaseException | None = exc
    while current is not None and id(current) not in seen:
        seen.add(id(current))
        yield current
        if current.__cause__ is not None:
            current = current.__cause__
        elif not current.__suppress_context__:
            current = current.__context__
        else:
            current = None


__all__ = ["ExitCode", "cli_entrypoint", "exit_code_for_result"]
