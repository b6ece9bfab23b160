"""
intentforge — built-in rule check catalog

File: src/intentforge/verification_plane/builtin_rules.py
Last updated: 2026-10-18

Purpose
- Hold the reviewed predicate/fix implementations that rule-set documents bind to by name.

What should be included in this file
- A deterministic check registry and the decorator used to populate it.
- Naming, binding, manifest, performance, accessibility, and capability checks.
- The capability rule set applied during final validation.

Functional requirements
- Predicates are pure and return ``Violation | None``.
- Fixes deep-copy nothing themselves: the engine hands them a private copy to rewrite.
- Capability checks require ``RuleContext.capability`` and raise without it.

Non-functional requirements
- Rule text never becomes code; documents may only name checks registered here.
"""

from __future__ import annotations

import re
from collections.abc import Callable, Mapping
from dataclasses import dataclass
from typing import Any, Final

from intentforge.domain.errors import RuleDefinitionError
from intentforge.domain.models import Severity
from intentforge.verification_plane.rule_engine import (
    Condition,
    Fix,
    FixResult,
    Rule,
    RuleContext,
    RuleSet,
    Spec,
    Violation,
)

PASCAL_CASE_RE: Final[re.Pattern[str]] = re.compile(r"^[A-Z][A-Za-z0-9]*$")
CAMEL_CASE_RE: Final[re.Pattern[str]] = re.compile(r"^[a-z][a-zA-Z0-9]*$")

DISPLAY_NAME_MAX_LENGTH: Final[int] = 100
DESCRIPTION_MIN_LENGTH: Final[int] = 10
DESCRIPTION_MAX_LENGTH: Final[int] = 500
MAX_RECOMMENDED_PROPERTIES: Final[int] = 10


@dataclass(frozen=True, slots=True)
class RuleCheck:
    """Named predicate with an optional fix; the unit rule documents bind to."""

    name: str
    condition: Condition
    fix: Fix | None = None

    @property
    def fixable(self) -> bool:
        return self.fix is not None


class CheckCatalog:
    """Deterministic registry of reviewed rule checks."""

    def __init__(self) -> None:
        self._checks: dict[str, RuleCheck] = {}

    def register(self, name: str, condition: Condition, fix: Fix | None = None) -> None:
        normalized = name.strip() if isinstance(name, str) else ""
        if not normalized:
            raise RuleDefinitionError("check name must be a non-empty string")
        if normalized in self._checks:
            raise RuleDefinitionError(f"check {normalized!r} is already registered")
        self._checks[normalized] = RuleCheck(name=normalized, condition=condition, fix=fix)

    def get(self, name: str) -> RuleCheck:
        try:
            return self._checks[name]
        except KeyError:
            known = ", ".join(self.names())
            raise RuleDefinitionError(f"unknown check {name!r}; known checks: {known}") from None

    def names(self) -> tuple[str, ...]:
        return tuple(sorted(self._checks))

    def build_rule(
        self,
        *,
        rule_id: str,
        category: str,
        severity: Severity | str,
        check: str,
        message: str,
        suggestion: str,
        auto_fixable: bool = False,
    ) -> Rule:
        """Instantiate a ``Rule`` whose predicate and fix come from check ``check``."""

        bound = self.get(check)
        if auto_fixable and not bound.fixable:
            raise RuleDefinitionError(
                f"rule {rule_id}: check {check!r} has no fix, so auto_fixable must be false"
            )
        return Rule(
            rule_id=rule_id,
            category=category,
            severity=Severity(severity),
            condition=bound.condition,
            message=message,
            suggestion=suggestion,
            auto_fixable=auto_fixable,
            fix=bound.fix if auto_fixable else None,
        )


BUILTIN_CHECKS = CheckCatalog()


def register_check(
    name: str,
    *,
    fix: Fix | None = None,
    catalog: CheckCatalog | None = None,
) -> Callable[[Condition], Condition]:
    """Decorator registering a predicate (and optional fix) under ``name``."""

    target = catalog if catalog is not None else BUILTIN_CHECKS

    def decorator(condition: Condition) -> Condition:
        target.register(name, condition, fix)
        return condition

    return decorator


def lookup(spec: Spec, dotted: str, default: Any = None) -> Any:
    node: Any = spec
    for part in dotted.split("."):
        if not isinstance(node, Mapping) or part not in node:
            return default
        node = node[part]
    return node


def _section(spec: dict[str, Any], key: str) -> dict[str, Any]:
    value = spec.get(key)
    if not isinstance(value, dict):
        value = {}
        spec[key] = value
    return value


def _properties(spec: Spec) -> list[Mapping[str, Any]]:
    value = spec.get("properties")
    if not isinstance(value, list):
        return []
    return [item for item in value if isinstance(item, Mapping)]


def _require_capability(ctx: RuleContext) -> Any:
    if ctx.capability is None:
        raise ValueError("capability checks require a capability in the rule context")
    return ctx.capability


# -- naming ---------------------------------------------------------------------------------


@register_check("pascal_case_component_name")
def _component_name_pascal(spec: Spec, ctx: RuleContext) -> Violation | None:
    name = spec.get("component_name")
    if isinstance(name, str) and PASCAL_CASE_RE.fullmatch(name):
        return None
    return Violation(path="component_name", detail=f"got {name!r}")


@register_check("pascal_case_namespace")
def _namespace_pascal(spec: Spec, ctx: RuleContext) -> Violation | None:
    namespace = spec.get("namespace")
    if isinstance(namespace, str) and PASCAL_CASE_RE.fullmatch(namespace):
        return None
    return Violation(path="namespace", detail=f"got {namespace!r}")


def _non_camel_property_names(spec: Spec) -> list[str]:
    return [
        str(item.get("name"))
        for item in _properties(spec)
        if not CAMEL_CASE_RE.fullmatch(str(item.get("name", "")))
    ]


_WORD_SEPARATOR_RE: Final[re.Pattern[str]] = re.compile(r"[^A-Za-z0-9]+")


def _camel_case(name: str) -> str:
    """``Max_Stars`` and ``max-stars`` both become ``maxStars``."""

    words = [word for word in _WORD_SEPARATOR_RE.split(name) if word]
    if not words:
        return name
    head = words[0][:1].lower() + words[0][1:]
    return head + "".join(word[:1].upper() + word[1:] for word in words[1:])


def _fix_property_names(spec: Spec, ctx: RuleContext) -> FixResult:
    fixed = dict(spec)
    original: list[str] = []
    renamed: list[str] = []
    properties: list[Any] = []
    for item in spec.get("properties", []):
        if isinstance(item, Mapping):
            name = str(item.get("name", ""))
            if not CAMEL_CASE_RE.fullmatch(name):
                original.append(name)
                name = _camel_case(name)
                renamed.append(name)
                item = {**item, "name": name}
        properties.append(item)
    fixed["properties"] = properties
    return FixResult(
        spec=fixed, path="properties[].name", original_value=original, fixed_value=renamed
    )


@register_check("camel_case_property_names", fix=_fix_property_names)
def _property_names_camel(spec: Spec, ctx: RuleContext) -> Violation | None:
    offenders = _non_camel_property_names(spec)
    if not offenders:
        return None
    return Violation(path="properties[].name", detail=", ".join(offenders))


# -- binding and manifest -------------------------------------------------------------------


@register_check("bound_property_present")
def _has_bound_property(spec: Spec, ctx: RuleContext) -> Violation | None:
    if any(item.get("usage") == "bound" for item in _properties(spec)):
        return None
    return Violation(path="properties", detail="no property with usage 'bound'")


@register_check("display_name_length")
def _display_name_length(spec: Spec, ctx: RuleContext) -> Violation | None:
    value = spec.get("display_name")
    text = value if isinstance(value, str) else ""
    if 1 <= len(text.strip()) and len(text) <= DISPLAY_NAME_MAX_LENGTH:
        return None
    return Violation(path="display_name", detail=f"length {len(text)}")


@register_check("description_length")
def _description_length(spec: Spec, ctx: RuleContext) -> Violation | None:
    value = spec.get("description")
    text = value if isinstance(value, str) else ""
    if DESCRIPTION_MIN_LENGTH <= len(text) <= DESCRIPTION_MAX_LENGTH:
        return None
    return Violation(path="description", detail=f"length {len(text)}")


@register_check("property_count")
def _property_count(spec: Spec, ctx: RuleContext) -> Violation | None:
    count = len(_properties(spec))
    if count <= MAX_RECOMMENDED_PROPERTIES:
        return None
    return Violation(path="properties", detail=f"{count} properties")


# -- accessibility --------------------------------------------------------------------------


def _fix_keyboard_support(spec: Spec, ctx: RuleContext) -> FixResult:
    fixed = dict(spec)
    accessibility = dict(_section(fixed, "accessibility"))
    interaction = dict(_section(fixed, "interaction"))
    methods_raw = interaction.get("input_methods")
    methods = [str(item) for item in methods_raw] if isinstance(methods_raw, list) else []
    original = {
        "keyboard_support": accessibility.get("keyboard_support"),
        "input_methods": list(methods),
    }
    accessibility["keyboard_support"] = True
    if "keyboard" not in methods:
        methods.append("keyboard")
    interaction["input_methods"] = methods
    fixed["accessibility"] = accessibility
    fixed["interaction"] = interaction
    return FixResult(
        spec=fixed,
        path="accessibility.keyboard_support",
        original_value=original,
        fixed_value={"keyboard_support": True, "input_methods": list(methods)},
    )


@register_check("keyboard_navigation", fix=_fix_keyboard_support)
def _keyboard_navigation(spec: Spec, ctx: RuleContext) -> Violation | None:
    methods = lookup(spec, "interaction.input_methods", [])
    if lookup(spec, "accessibility.keyboard_support") is True and (
        isinstance(methods, list) and "keyboard" in methods
    ):
        return None
    return Violation(path="accessibility.keyboard_support", detail="keyboard navigation missing")


def _fix_aria_label(spec: Spec, ctx: RuleContext) -> FixResult:
    fixed = dict(spec)
    accessibility = dict(_section(fixed, "accessibility"))
    original = accessibility.get("aria_label")
    label = str(spec.get("display_name") or spec.get("component_name") or "")
    accessibility["aria_label"] = label
    fixed["accessibility"] = accessibility
    return FixResult(
        spec=fixed, path="accessibility.aria_label", original_value=original, fixed_value=label
    )


@register_check("aria_label_present", fix=_fix_aria_label)
def _aria_label_present(spec: Spec, ctx: RuleContext) -> Violation | None:
    label = lookup(spec, "accessibility.aria_label")
    if isinstance(label, str) and label.strip():
        return None
    return Violation(path="accessibility.aria_label", detail="aria label missing")


# -- capability-bound -----------------------------------------------------------------------


def _spec_features(spec: Spec) -> list[str]:
    features = lookup(spec, "capabilities.features", [])
    return [str(item) for item in features] if isinstance(features, list) else []


@register_check("capability_features_supported")
def _features_supported(spec: Spec, ctx: RuleContext) -> Violation | None:
    capability = _require_capability(ctx)
    unsupported = [item for item in _spec_features(spec) if not capability.supports(item)]
    if not unsupported:
        return None
    return Violation(
        path="capabilities.features",
        detail=f"not supported by {capability.capability_id}: {', '.join(unsupported)}",
    )


@register_check("capability_limits_respected")
def _limits_respected(spec: Spec, ctx: RuleContext) -> Violation | None:
    capability = _require_capability(ctx)
    customizations = lookup(spec, "capabilities.customizations", {})
    if not isinstance(customizations, Mapping):
        return None
    exceeded: list[str] = []
    for key in sorted(customizations):
        value = customizations[key]
        limit = capability.limit_for(key)
        if limit is None or isinstance(value, bool) or not isinstance(value, (int, float)):
            continue
        if value > limit:
            exceeded.append(f"{key}={value} > {limit}")
    if not exceeded:
        return None
    return Violation(path="capabilities.customizations", detail="; ".join(exceeded))


@register_check("capability_forbidden_behaviors")
def _forbidden_behaviors(spec: Spec, ctx: RuleContext) -> Violation | None:
    capability = _require_capability(ctx)
    events = spec.get("events")
    used = set(_spec_features(spec))
    if isinstance(events, list):
        used.update(str(item) for item in events)
    hits = [item for item in capability.forbidden if item.behavior in used]
    if not hits:
        return None
    detail = "; ".join(
        f"{item.behavior} ({item.reason}"
        + (f"; use {item.alternative})" if item.alternative else ")")
        for item in hits
    )
    return Violation(path="capabilities.features", detail=detail)


def capability_rule_set(catalog: CheckCatalog | None = None) -> RuleSet:
    """Capability-bound rules applied by final validation."""

    source = catalog if catalog is not None else BUILTIN_CHECKS
    return RuleSet(
        name="capability",
        version="1.0",
        rules=(
            source.build_rule(
                rule_id="CAP_FEATURE_001",
                category="capability",
                severity=Severity.ERROR,
                check="capability_features_supported",
                message="Specification requests a feature the capability does not support",
                suggestion="Remove the feature or pick a capability that supports it",
            ),
            source.build_rule(
                rule_id="CAP_LIMIT_001",
                category="capability",
                severity=Severity.ERROR,
                check="capability_limits_respected",
                message="Customization exceeds the capability limit",
                suggestion="Lower the customization value to the declared maximum",
            ),
            source.build_rule(
                rule_id="CAP_FORBIDDEN_001",
                category="capability",
                severity=Severity.WARNING,
                check="capability_forbidden_behaviors",
                message="Specification uses a behavior the capability forbids",
                suggestion="Use the documented alternative behavior",
            ),
        ),
    )


__all__ = [
    "BUILTIN_CHECKS",
    "CAMEL_CASE_RE",
    "PASCAL_CASE_RE",
    "CheckCatalog",
    "RuleCheck",
    "capability_rule_set",
    "lookup",
    "register_check",
]
