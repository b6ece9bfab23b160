"""Control-plane public API."""

from intentforge.control_plane.collaborators import (
    BuildArtifact,
    CapabilitySource,
    CodeBuildExecutor,
    GeneratedFiles,
    IntentInterpreter,
    SpecGenerator,
)
from intentforge.control_plane.generation_plan import GenerationPlan, PlanStep, create_plan
from intentforge.control_plane.offline import OfflineCollaborators, offline_collaborators
from intentforge.control_plane.orchestrator import (
    PipelineOrchestrator,
    build_orchestrator,
    build_router,
)
from intentforge.control_plane.retry import BackoffConfig, RetryPolicy

__all__ = [
    "BackoffConfig",
    "BuildArtifact",
    "CapabilitySource",
    "CodeBuildExecutor",
    "GeneratedFiles",
    "GenerationPlan",
    "IntentInterpreter",
    "OfflineCollaborators",
    "PipelineOrchestrator",
    "PlanStep",
    "RetryPolicy",
    "SpecGenerator",
    "build_orchestrator",
    "build_router",
    "create_plan",
    "offline_collaborators",
]
