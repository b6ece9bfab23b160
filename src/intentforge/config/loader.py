"""
intentforge — runtime config loader.

File: src/intentforge/config/loader.py
Last updated: 2026-10-18

Purpose
- Resolve the effective pipeline config from built-in defaults, ``intentforge.toml``, a named
  profile, ``INTENTFORGE_*`` environment variables, and CLI overrides.

What should be included in this file
- Layer order: defaults < file < profile < env < CLI.
- TOML loading via ``tomllib``.
- Environment variable names derived from config key paths, with typed coercion.
- Path normalization relative to the config file location.
- Redacted deterministic dump of the effective config.

Functional requirements
- Every layer is validated by the schema module; secrets embedded in files are rejected there.
- Coercion failures name the environment variable and the config path it targets.

Non-functional requirements
- Same inputs always yield the same config; ``os.environ`` is only read when no explicit
  environment mapping is passed.
"""

from __future__ import annotations

import json
import os
import tomllib
from collections.abc import Callable, Iterator, Mapping
from pathlib import Path
from typing import Any, Final

from intentforge.config.schema import (
    PATH_FIELDS,
    apply_profile_overlay,
    assert_valid_config,
    default_config,
    merge_config,
    redact_config,
)
from intentforge.constants import BUNDLED_ARTIFACT_ROOT

DEFAULT_CONFIG_FILE: Final[str] = "intentforge.toml"
ENV_PREFIX: Final[str] = "INTENTFORGE_"
PROFILE_ENV_VAR: Final[str] = f"{ENV_PREFIX}PROFILE"

# Sections that can never be overridden from the environment.
_ENV_EXCLUDED_SECTIONS: Final[frozenset[str]] = frozenset({"meta", "profiles"})

_TRUTHY: Final[frozenset[str]] = frozenset({"1", "true", "yes", "on"})
_FALSY: Final[frozenset[str]] = frozenset({"0", "false", "no", "off"})

KeyPath = tuple[str, ...]


class ConfigLoadError(ValueError):
    """Raised when config cannot be read or an override cannot be coerced."""


def load_config(
    config_path: str | Path | None = None,
    *,
    profile: str | None = None,
    cli_overrides: Mapping[str, object] | None = None,
    environ: Mapping[str, str] | None = None,
) -> dict[str, Any]:
    """Load the effective config.

    An explicit ``config_path`` must exist; without one, ``./intentforge.toml`` is used when
    present and silently skipped otherwise. ``cli_overrides`` keys are dotted config paths
    (``router.max_cost``); the special key ``profile`` selects a profile like ``profile=``.
    """

    env = os.environ if environ is None else environ
    overrides = dict(cli_overrides or {})
    source = _config_file(config_path)

    config = assert_valid_config(
        merge_config(default_config(), _read_toml(source, required=config_path is not None))
    )
    selected = _select_profile(profile, overrides.pop("profile", None), env)
    if selected is not None:
        config = apply_profile_overlay(config, selected)

    config = merge_config(config, _env_layer(config, env))
    config = merge_config(config, _cli_layer(overrides))
    config = assert_valid_config(config)
    return assert_valid_config(normalize_paths(config, base_dir=source.parent))


def normalize_paths(config: Mapping[str, object], *, base_dir: Path) -> dict[str, Any]:
    """Resolve relative path fields against ``base_dir``; the bundled artifact root is kept."""

    normalized = merge_config({}, config)
    for key_path in PATH_FIELDS:
        section = normalized.get(key_path[0])
        if not isinstance(section, dict):
            continue
        raw = section.get(key_path[1])
        if isinstance(raw, str) and raw != BUNDLED_ARTIFACT_ROOT:
            section[key_path[1]] = _absolute_posix(raw, base_dir)
    return normalized


def effective_config(config: Mapping[str, object]) -> dict[str, Any]:
    """Redacted view of ``config`` for logs and the ``config`` command."""

    return redact_config(config)


def dump_effective_config(config: Mapping[str, object]) -> str:
    return json.dumps(
        effective_config(config), sort_keys=True, separators=(",", ":"), ensure_ascii=False
    )


def env_var_name(key_path: KeyPath) -> str:
    """``("router", "max_cost")`` -> ``INTENTFORGE_ROUTER_MAX_COST``."""

    return ENV_PREFIX + "_".join(part.upper() for part in key_path)


# ---------------------------------------------------------------------------
# File layer
# ---------------------------------------------------------------------------


def _config_file(config_path: str | Path | None) -> Path:
    raw = Path(config_path).expanduser() if config_path is not None else Path(DEFAULT_CONFIG_FILE)
    return raw.resolve()


def _read_toml(path: Path, *, required: bool) -> dict[str, Any]:
    if not path.is_file():
        if required:
            raise ConfigLoadError(f"config file not found: {path}")
        return {}
    try:
        return tomllib.loads(path.read_text(encoding="utf-8"))
    except tomllib.TOMLDecodeError as exc:
        raise ConfigLoadError(f"invalid TOML in {path}: {exc}") from exc
    except (OSError, UnicodeDecodeError) as exc:
        raise ConfigLoadError(f"unable to read config file {path}: {exc}") from exc


# ---------------------------------------------------------------------------
# Profile, env, and CLI layers
# ---------------------------------------------------------------------------


def _select_profile(
    explicit: str | None, from_cli: object, env: Mapping[str, str]
) -> str | None:
    if from_cli is not None and not isinstance(from_cli, str):
        raise ConfigLoadError("cli override 'profile' must be a string")
    for candidate in (explicit, from_cli, env.get(PROFILE_ENV_VAR)):
        if candidate is not None:
            return candidate.strip() or None
    return None


def _env_layer(config: Mapping[str, object], env: Mapping[str, str]) -> dict[str, Any]:
    """Collect overrides for every scalar already present in ``config``.

    The current value's type decides how the raw string is parsed.
    """

    layer: dict[str, Any] = {}
    for key_path, current in _scalar_leaves(config):
        if key_path[0] in _ENV_EXCLUDED_SECTIONS:
            continue
        name = env_var_name(key_path)
        if name not in env:
            continue
        _assign(layer, key_path, _parse_env_value(name, key_path, env[name], current))
    return layer


def _scalar_leaves(
    payload: Mapping[str, object], prefix: KeyPath = ()
) -> Iterator[tuple[KeyPath, object]]:
    for key in sorted(payload):
        value = payload[key]
        if isinstance(value, Mapping):
            yield from _scalar_leaves(value, (*prefix, key))
        elif isinstance(value, (bool, int, float, str)):
            yield (*prefix, key), value


def _parse_bool(text: str) -> bool:
    lowered = text.lower()
    if lowered in _TRUTHY:
        return True
    if lowered in _FALSY:
        return False
    raise ValueError(text)


# bool must be checked before int.
_PARSERS: Final[tuple[tuple[type, Callable[[str], object], str], ...]] = (
    (bool, _parse_bool, "a boolean (true/false/1/0/yes/no/on/off)"),
    (int, int, "an integer"),
    (float, float, "a number"),
    (str, str, "a string"),
)


def _parse_env_value(name: str, key_path: KeyPath, raw: str, current: object) -> object:
    text = raw.strip()
    for kind, parse, label in _PARSERS:
        if not isinstance(current, kind):
            continue
        try:
            return parse(text)
        except ValueError as exc:
            raise ConfigLoadError(f"{name} -> {'.'.join(key_path)} must be {label}") from exc
    return text


def _cli_layer(overrides: Mapping[str, object]) -> dict[str, Any]:
    layer: dict[str, Any] = {}
    for dotted in sorted(overrides):
        key_path = tuple(part for part in dotted.split(".") if part)
        if not key_path:
            raise ConfigLoadError(f"invalid CLI override key {dotted!r}")
        value = overrides[dotted]
        _assign(layer, key_path, merge_config({}, value) if isinstance(value, Mapping) else value)
    return layer


def _assign(target: dict[str, Any], key_path: KeyPath, value: object) -> None:
    node = target
    for part in key_path[:-1]:
        node = node.setdefault(part, {})
    node[key_path[-1]] = value


def _absolute_posix(raw: str, base_dir: Path) -> str:
    candidate = Path(os.path.expandvars(raw)).expanduser()
    if not candidate.is_absolute():
        candidate = base_dir / candidate
    return Path(os.path.normpath(candidate)).as_posix()


__all__ = [
    "DEFAULT_CONFIG_FILE",
    "ENV_PREFIX",
    "PROFILE_ENV_VAR",
    "ConfigLoadError",
    "dump_effective_config",
    "effective_config",
    "env_var_name",
    "load_config",
    "normalize_paths",
]
