"""Deterministic file generation plan handed to the code build executor."""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Final

from intentforge.constants import CONTRACT_VERSION
from intentforge.domain.errors import FatalError
from intentforge.verification_plane.builtin_rules import PASCAL_CASE_RE

PLAN_STEP_COUNT: Final[int] = 8

# (template, output path); ``{name}`` is the component name.
_PLAN_TEMPLATE: Final[tuple[tuple[str, str], ...]] = (
    ("ControlManifest.Input.xml.tmpl", "ControlManifest.Input.xml"),
    ("package.json.tmpl", "package.json"),
    ("tsconfig.json.tmpl", "tsconfig.json"),
    ("index.ts.tmpl", "index.ts"),
    ("css/component.css.tmpl", "css/{name}.css"),
    ("strings/strings.resx.tmpl", "strings/{name}.resx"),
    ("README.md.tmpl", "README.md"),
    ("gitignore.tmpl", ".gitignore"),
)


class PlanValidationError(FatalError):
    """The generation plan is malformed."""

    def __init__(self, detail: str) -> None:
        super().__init__(detail, code="invalid_plan")


@dataclass(frozen=True, slots=True)
class PlanStep:
    order: int
    template_name: str
    output_path: str
    required: bool = True

    def to_dict(self) -> dict[str, Any]:
        return {
            "order": self.order,
            "template_name": self.template_name,
            "output_path": self.output_path,
            "required": self.required,
        }


@dataclass(frozen=True, slots=True)
class GenerationPlan:
    component_name: str
    capability_id: str
    steps: tuple[PlanStep, ...]
    version: str = CONTRACT_VERSION

    @property
    def output_paths(self) -> tuple[str, ...]:
        return tuple(step.output_path for step in self.steps)

    def to_dict(self) -> dict[str, Any]:
        return {
            "version": self.version,
            "component_name": self.component_name,
            "capability_id": self.capability_id,
            "steps": [step.to_dict() for step in self.steps],
        }


def create_plan(spec: Mapping[str, Any]) -> GenerationPlan:
    name = spec.get("component_name")
    if not isinstance(name, str) or not PASCAL_CASE_RE.fullmatch(name):
        raise PlanValidationError(f"component_name must be PascalCase, got {name!r}")
    capabilities = spec.get("capabilities")
    capability_id = (
        capabilities.get("capability_id") if isinstance(capabilities, Mapping) else None
    )
    plan = GenerationPlan(
        component_name=name,
        capability_id=str(capability_id or ""),
        steps=tuple(
            PlanStep(order=index, template_name=template, output_path=output.format(name=name))
            for index, (template, output) in enumerate(_PLAN_TEMPLATE, start=1)
        ),
    )
    validate_plan(plan)
    return plan


def validate_plan(plan: GenerationPlan) -> None:
    if plan.version != CONTRACT_VERSION:
        raise PlanValidationError(
            f"plan version mismatch: expected {CONTRACT_VERSION}, got {plan.version}"
        )
    if len(plan.steps) != PLAN_STEP_COUNT:
        raise PlanValidationError(
            f"plan must have exactly {PLAN_STEP_COUNT} steps, got {len(plan.steps)}"
        )
    for expected, step in enumerate(plan.steps, start=1):
        if step.order != expected:
            raise PlanValidationError(
                f"plan steps must be sequential: expected order {expected}, got {step.order}"
            )
    if len(set(plan.output_paths)) != len(plan.steps):
        raise PlanValidationError("plan output paths must be unique")


__all__ = [
    "PLAN_STEP_COUNT",
    "GenerationPlan",
    "PlanStep",
    "PlanValidationError",
    "create_plan",
    "validate_plan",
]
