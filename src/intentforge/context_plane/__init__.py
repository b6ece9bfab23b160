"""Context plane: static routing table, artifact stores, cache, and the context router."""

from intentforge.context_plane.artifact_store import (
    ArtifactStore,
    FileArtifactStore,
    InMemoryArtifactStore,
    bundled_artifact_root,
    open_artifact_store,
)
from intentforge.context_plane.cache import ArtifactCache, CacheStats
from intentforge.context_plane.deserializers import deserialize
from intentforge.context_plane.required_files import (
    REQUIRED_ARTIFACTS,
    SIZE_TABLE,
    ArtifactEntry,
    ResolvedArtifact,
    estimate_cost,
    resolve_required_files,
)
from intentforge.context_plane.router import ContextRouter

__all__ = [
    "REQUIRED_ARTIFACTS",
    "SIZE_TABLE",
    "ArtifactCache",
    "ArtifactEntry",
    "ArtifactStore",
    "CacheStats",
    "ContextRouter",
    "FileArtifactStore",
    "InMemoryArtifactStore",
    "ResolvedArtifact",
    "bundled_artifact_root",
    "deserialize",
    "estimate_cost",
    "open_artifact_store",
    "resolve_required_files",
]
