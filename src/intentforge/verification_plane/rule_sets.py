"""Versioned YAML rule-set documents bound to the built-in check catalog."""

from __future__ import annotations

from collections.abc import Mapping
from pathlib import Path
from typing import Final, cast

import yaml

from intentforge.constants import RULE_SET_SCHEMA_VERSION
from intentforge.domain.errors import RuleDefinitionError
from intentforge.domain.models import Severity
from intentforge.verification_plane.builtin_rules import BUILTIN_CHECKS, CheckCatalog
from intentforge.verification_plane.rule_engine import Rule, RuleSet

_REQUIRED_DOCUMENT_FIELDS: Final[frozenset[str]] = frozenset(
    {"schema_version", "rule_set", "version", "rules"}
)
_ALLOWED_DOCUMENT_FIELDS: Final[frozenset[str]] = _REQUIRED_DOCUMENT_FIELDS | {"description"}
_REQUIRED_RULE_FIELDS: Final[frozenset[str]] = frozenset(
    {"id", "category", "severity", "check", "message", "suggestion"}
)
_ALLOWED_RULE_FIELDS: Final[frozenset[str]] = _REQUIRED_RULE_FIELDS | {"auto_fixable"}


def load_rule_set_text(
    text: str | bytes,
    *,
    source: str = "<rule set>",
    catalog: CheckCatalog | None = None,
) -> RuleSet:
    """Parse YAML text into a bound ``RuleSet``."""

    try:
        loaded = cast("object", yaml.safe_load(text))
    except yaml.YAMLError as exc:
        raise RuleDefinitionError(f"{source}: invalid YAML ({exc})") from exc
    return parse_rule_set_document(loaded, source=source, catalog=catalog)


def load_rule_set_file(path: str | Path, *, catalog: CheckCatalog | None = None) -> RuleSet:
    target = Path(path)
    with target.open("r", encoding="utf-8") as handle:
        return load_rule_set_text(handle.read(), source=target.name, catalog=catalog)


def parse_rule_set_document(
    document: object,
    *,
    source: str = "<rule set>",
    catalog: CheckCatalog | None = None,
) -> RuleSet:
    """Validate a decoded document and bind each rule's ``check`` to ``catalog``."""

    target = catalog if catalog is not None else BUILTIN_CHECKS
    payload = _as_mapping(document, source)
    keys = set(payload)
    missing = sorted(_REQUIRED_DOCUMENT_FIELDS - keys)
    if missing:
        raise RuleDefinitionError(f"{source}: missing required fields: {missing}")
    unknown = sorted(keys - _ALLOWED_DOCUMENT_FIELDS)
    if unknown:
        raise RuleDefinitionError(f"{source}: unexpected fields: {unknown}")

    schema_version = payload["schema_version"]
    if schema_version != RULE_SET_SCHEMA_VERSION:
        raise RuleDefinitionError(
            f"{source}.schema_version: expected {RULE_SET_SCHEMA_VERSION}, got {schema_version!r}"
        )
    name = _as_text(payload["rule_set"], f"{source}.rule_set")
    version = _as_text(payload["version"], f"{source}.version")
    rules_raw = payload["rules"]
    if not isinstance(rules_raw, list):
        raise RuleDefinitionError(f"{source}.rules: expected a sequence")

    rules = tuple(
        _parse_rule(item, location=f"{source}.rules[{index}]", catalog=target)
        for index, item in enumerate(rules_raw)
    )
    return RuleSet(name=name, version=version, rules=rules)


def _parse_rule(value: object, *, location: str, catalog: CheckCatalog) -> Rule:
    parsed = _as_mapping(value, location)
    keys = set(parsed)
    missing = sorted(_REQUIRED_RULE_FIELDS - keys)
    if missing:
        raise RuleDefinitionError(f"{location}: missing required fields: {missing}")
    unknown = sorted(keys - _ALLOWED_RULE_FIELDS)
    if unknown:
        raise RuleDefinitionError(f"{location}: unexpected fields: {unknown}")

    severity_raw = _as_text(parsed["severity"], f"{location}.severity")
    try:
        severity = Severity(severity_raw.lower())
    except ValueError:
        allowed = ", ".join(item.value for item in Severity)
        raise RuleDefinitionError(
            f"{location}.severity: invalid value {severity_raw!r}; expected one of: {allowed}"
        ) from None
    auto_fixable = parsed.get("auto_fixable", False)
    if not isinstance(auto_fixable, bool):
        raise RuleDefinitionError(f"{location}.auto_fixable: expected boolean")

    try:
        return catalog.build_rule(
            rule_id=_as_text(parsed["id"], f"{location}.id"),
            category=_as_text(parsed["category"], f"{location}.category"),
            severity=severity,
            check=_as_text(parsed["check"], f"{location}.check"),
            message=_as_text(parsed["message"], f"{location}.message"),
            suggestion=_as_text(parsed["suggestion"], f"{location}.suggestion"),
            auto_fixable=auto_fixable,
        )
    except RuleDefinitionError as exc:
        raise RuleDefinitionError(f"{location}: {exc}") from exc


def _as_mapping(value: object, location: str) -> dict[str, object]:
    if not isinstance(value, Mapping):
        raise RuleDefinitionError(f"{location}: expected mapping, got {type(value).__name__}")
    parsed: dict[str, object] = {}
    for key, item in value.items():
        if not isinstance(key, str):
            raise RuleDefinitionError(f"{location}: keys must be strings")
        parsed[key] = item
    return parsed


def _as_text(value: object, location: str) -> str:
    if not isinstance(value, str) or not value.strip():
        raise RuleDefinitionError(f"{location}: expected non-empty string")
    return value.strip()


__all__ = [
    "load_rule_set_file",
    "load_rule_set_text",
    "parse_rule_set_document",
]
