"""
intentforge — external collaborator interfaces

File: src/intentforge/control_plane/collaborators.py
Last updated: 2026-10-18

Purpose
- Declare the seams the orchestrator calls out through: intent interpretation, capability
  lookup, specification generation, and code build/packaging.

What should be included in this file
- ``Protocol`` definitions for each collaborator.
- Result records returned by the build executor, with the checks the orchestrator applies.

Functional requirements
- Every planned file must appear in the generated set.
- The packaged artifact name must be ``{ComponentName}_{build_id}.zip``.

Non-functional requirements
- Collaborator output is untrusted; nothing here repairs it.
"""

from __future__ import annotations

from collections.abc import Mapping
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Protocol, runtime_checkable

from intentforge.control_plane.generation_plan import GenerationPlan
from intentforge.domain.errors import ContractViolation
from intentforge.domain.models import Capability, IntentResult

CODE_BUILD_EXECUTOR = "code_build_executor"


@runtime_checkable
class IntentInterpreter(Protocol):
    def interpret(self, raw_text: str) -> IntentResult: ...


@runtime_checkable
class CapabilitySource(Protocol):
    def get(self, capability_id: str) -> Capability | None: ...


@runtime_checkable
class SpecGenerator(Protocol):
    def generate(
        self, intent: Mapping[str, Any], capability: Capability
    ) -> Mapping[str, Any]: ...


@dataclass(frozen=True, slots=True)
class GeneratedFiles:
    output_dir: str
    files: tuple[str, ...]

    def to_dict(self) -> dict[str, Any]:
        return {"output_dir": self.output_dir, "files": list(self.files)}

    @classmethod
    def from_dict(cls, data: Mapping[str, Any]) -> GeneratedFiles:
        return cls(
            output_dir=str(data.get("output_dir", "")),
            files=tuple(str(item) for item in data.get("files", [])),
        )


@dataclass(frozen=True, slots=True)
class BuildArtifact:
    artifact_name: str
    artifact_path: str
    sha256: str
    size_bytes: int

    def to_dict(self) -> dict[str, Any]:
        return {
            "artifact_name": self.artifact_name,
            "artifact_path": self.artifact_path,
            "sha256": self.sha256,
            "size_bytes": self.size_bytes,
        }


@runtime_checkable
class CodeBuildExecutor(Protocol):
    def generate_code(
        self, spec: Mapping[str, Any], plan: GenerationPlan, output_dir: Path
    ) -> GeneratedFiles: ...

    def package(
        self,
        spec: Mapping[str, Any],
        files: GeneratedFiles,
        output_dir: Path,
        artifact_name: str,
    ) -> BuildArtifact: ...


def artifact_name_for(component_name: str, build_id: str) -> str:
    return f"{component_name}_{build_id}.zip"


def check_generated_files(plan: GenerationPlan, generated: object) -> GeneratedFiles:
    if not isinstance(generated, GeneratedFiles):
        raise ContractViolation(
            CODE_BUILD_EXECUTOR, [f"expected GeneratedFiles, got {type(generated).__name__}"]
        )
    missing = [path for path in plan.output_paths if path not in set(generated.files)]
    if missing:
        raise ContractViolation(
            CODE_BUILD_EXECUTOR, [f"planned file not generated: {path}" for path in missing]
        )
    return generated


def check_artifact(artifact: object, expected_name: str) -> BuildArtifact:
    if not isinstance(artifact, BuildArtifact):
        raise ContractViolation(
            CODE_BUILD_EXECUTOR, [f"expected BuildArtifact, got {type(artifact).__name__}"]
        )
    if artifact.artifact_name != expected_name:
        raise ContractViolation(
            CODE_BUILD_EXECUTOR,
            [f"artifact name {artifact.artifact_name!r} does not match {expected_name!r}"],
        )
    return artifact


__all__ = [
    "BuildArtifact",
    "CapabilitySource",
    "CodeBuildExecutor",
    "GeneratedFiles",
    "IntentInterpreter",
    "SpecGenerator",
    "artifact_name_for",
    "check_artifact",
    "check_generated_files",
]
