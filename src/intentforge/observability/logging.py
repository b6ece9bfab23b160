"""Structured logging setup: structlog routed through stdlib into JSON-lines files."""

from __future__ import annotations

import logging
import re
import threading
from collections.abc import Iterator, Mapping, MutableMapping
from contextlib import contextmanager
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Final

import structlog

JSONScalar = str | int | float | bool | None
JSONValue = JSONScalar | list["JSONValue"] | dict[str, "JSONValue"]

_REDACTED_VALUE: Final[str] = "***REDACTED***"
_DEFAULT_LOG_FILENAME: Final[str] = "intentforge.jsonl"
_ROOT_LOGGER_NAME: Final[str] = "intentforge"

_SENSITIVE_KEY_TERMS: Final[tuple[str, ...]] = (
    "secret",
    "token",
    "password",
    "passphrase",
    "api_key",
    "apikey",
    "authorization",
    "credential",
    "cookie",
    "private_key",
)

_SENSITIVE_ASSIGNMENT_PATTERN: Final[re.Pattern[str]] = re.compile(
    r"(?i)\b(api[_-]?key|token|password|secret|authorization)\b\s*([:=])\s*([^\s,;]+)"
)
_BEARER_TOKEN_PATTERN: Final[re.Pattern[str]] = re.compile(r"(?i)\bbearer\s+[A-Za-z0-9._~+/-]+=*")

_ACTIVE_HANDLE_LOCK = threading.Lock()
_ACTIVE_HANDLE: LoggingHandle | None = None


@dataclass(frozen=True, slots=True)
class LoggingConfig:
    """Resolved ``[observability]`` settings for a single build."""

    build_id: str
    base_log_dir: Path
    level: int = logging.INFO
    log_to_stderr: bool = False
    redact_secrets: bool = True
    log_filename: str = _DEFAULT_LOG_FILENAME


class LoggingHandle:
    """Runtime handle for an active logging setup; ``close`` detaches its handlers."""

    def __init__(
        self,
        *,
        config: LoggingConfig,
        log_path: Path,
        handlers: tuple[logging.Handler, ...],
    ) -> None:
        self.config = config
        self.log_path = log_path
        self._handlers = handlers
        self._closed = False

    @property
    def build_id(self) -> str:
        return self.config.build_id

    @property
    def handlers(self) -> tuple[logging.Handler, ...]:
        return self._handlers

    def flush(self) -> None:
        for handler in self._handlers:
            handler.flush()

    def close(self) -> None:
        if self._closed:
            return
        root = logging.getLogger(_ROOT_LOGGER_NAME)
        for handler in self._handlers:
            handler.flush()
            root.removeHandler(handler)
            handler.close()
        self._closed = True


def configure_logging(
    observability_config: Mapping[str, object] | None = None,
    *,
    build_id: str,
    log_dir: Path | str | None = None,
) -> LoggingHandle:
    """Route structlog events into ``<log_dir>/<build_id>/intentforge.jsonl``.

    Parameters
    ----------
    observability_config:
        Mapping compatible with the ``[observability]`` section of ``intentforge.toml``.
    build_id:
        Directory name for this build's log file.
    log_dir:
        Optional override for the base log directory.
    """

    cfg = dict(observability_config or {})
    raw_dir = log_dir if log_dir is not None else cfg.get("log_dir", "logs")
    config = LoggingConfig(
        build_id=_validate_build_id(build_id),
        base_log_dir=Path(str(raw_dir)),
        level=_parse_log_level(cfg.get("log_level", "INFO")),
        log_to_stderr=bool(cfg.get("log_to_stderr", False)),
        redact_secrets=bool(cfg.get("redact_secrets", True)),
    )
    return setup_structured_logging(config)


def setup_structured_logging(config: LoggingConfig) -> LoggingHandle:
    """Install JSON-lines handlers for one build, replacing any previous setup."""

    _close_active_handle()

    build_log_dir = config.base_log_dir / config.build_id
    build_log_dir.mkdir(parents=True, exist_ok=True)
    log_path = build_log_dir / config.log_filename

    _configure_structlog(redact=config.redact_secrets)
    formatter = structlog.stdlib.ProcessorFormatter(
        foreign_pre_chain=_shared_processors(redact=config.redact_secrets),
        processors=[
            structlog.stdlib.ProcessorFormatter.remove_processors_meta,
            structlog.processors.JSONRenderer(sort_keys=True, ensure_ascii=False),
        ],
    )

    handlers: list[logging.Handler] = [logging.FileHandler(log_path, encoding="utf-8")]
    if config.log_to_stderr:
        handlers.append(logging.StreamHandler())

    root = logging.getLogger(_ROOT_LOGGER_NAME)
    root.setLevel(config.level)
    root.propagate = False
    for handler in handlers:
        handler.setLevel(config.level)
        handler.setFormatter(formatter)
        root.addHandler(handler)

    handle = LoggingHandle(config=config, log_path=log_path, handlers=tuple(handlers))
    with _ACTIVE_HANDLE_LOCK:
        global _ACTIVE_HANDLE
        _ACTIVE_HANDLE = handle
    return handle


def shutdown_logging(handle: LoggingHandle | None = None) -> None:
    """Close ``handle`` (or the active handle) and detach its handlers."""

    if handle is None:
        _close_active_handle()
        return
    handle.close()
    with _ACTIVE_HANDLE_LOCK:
        global _ACTIVE_HANDLE
        if _ACTIVE_HANDLE is handle:
            _ACTIVE_HANDLE = None


def get_active_logging_handle() -> LoggingHandle | None:
    with _ACTIVE_HANDLE_LOCK:
        return _ACTIVE_HANDLE


@contextmanager
def correlation_scope(**fields: str | None) -> Iterator[None]:
    """Temporarily bind correlation fields (``build_id``, ``stage``) to every event."""

    bound = {key: value for key, value in fields.items() if value is not None}
    with structlog.contextvars.bound_contextvars(**bound):
        yield


def redact_event(
    logger: object, method_name: str, event_dict: MutableMapping[str, Any]
) -> MutableMapping[str, Any]:
    """structlog processor masking secret-looking keys and inline credentials."""

    del logger, method_name
    for key in list(event_dict):
        event_dict[key] = _redact_value(event_dict[key], key_context=key)
    return event_dict


def _configure_structlog(*, redact: bool) -> None:
    structlog.configure(
        processors=[
            *_shared_processors(redact=redact),
            structlog.stdlib.ProcessorFormatter.wrap_for_formatter,
        ],
        logger_factory=structlog.stdlib.LoggerFactory(),
        wrapper_class=structlog.stdlib.BoundLogger,
        cache_logger_on_first_use=False,
    )


def _shared_processors(*, redact: bool) -> list[Any]:
    processors: list[Any] = [
        structlog.contextvars.merge_contextvars,
        structlog.stdlib.add_log_level,
        structlog.stdlib.add_logger_name,
        structlog.processors.TimeStamper(fmt="iso", utc=True),
        structlog.processors.format_exc_info,
    ]
    if redact:
        processors.append(redact_event)
    return processors


def _close_active_handle() -> None:
    with _ACTIVE_HANDLE_LOCK:
        global _ACTIVE_HANDLE
        existing = _ACTIVE_HANDLE
        _ACTIVE_HANDLE = None
    if existing is not None:
        existing.close()


def _validate_build_id(build_id: str) -> str:
    if not isinstance(build_id, str):
        raise ValueError(f"build_id must be a string, got {type(build_id).__name__}")
    normalized = build_id.strip()
    if not normalized:
        raise ValueError("build_id must not be empty")
    if Path(normalized).name != normalized:
        raise ValueError("build_id must not include path separators")
    return normalized


def _parse_log_level(value: object) -> int:
    if isinstance(value, int) and not isinstance(value, bool):
        return value
    if not isinstance(value, str):
        raise ValueError(f"level must be int or str, got {type(value).__name__}")
    parsed = logging.getLevelName(value.strip().upper())
    if isinstance(parsed, int):
        return parsed
    raise ValueError(f"unsupported logging level {value!r}")


def _redact_value(value: Any, *, key_context: str | None) -> Any:
    if key_context is not None and _requires_redaction_for_key(key_context):
        return _REDACTED_VALUE
    if isinstance(value, str):
        return _redact_string(value)
    if isinstance(value, (list, tuple)):
        return [_redact_value(item, key_context=None) for item in value]
    if isinstance(value, Mapping):
        return {str(key): _redact_value(item, key_context=str(key)) for key, item in value.items()}
    return value


def _requires_redaction_for_key(key: str) -> bool:
    key_lower = key.lower()
    return any(term in key_lower for term in _SENSITIVE_KEY_TERMS)


def _redact_string(text: str) -> str:
    redacted = _SENSITIVE_ASSIGNMENT_PATTERN.sub(
        lambda match: f"{match.group(1)}{match.group(2)}{_REDACTED_VALUE}", text
    )
    return _BEARER_TOKEN_PATTERN.sub(f"Bearer {_REDACTED_VALUE}", redacted)


__all__ = [
    "JSONScalar",
    "JSONValue",
    "LoggingConfig",
    "LoggingHandle",
    "configure_logging",
    "correlation_scope",
    "get_active_logging_handle",
    "redact_event",
    "setup_structured_logging",
    "shutdown_logging",
]
