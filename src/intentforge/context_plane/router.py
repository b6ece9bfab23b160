"""
intentforge — context router

File: src/intentforge/context_plane/router.py
Last updated: 2026-10-18

Purpose
- Resolve ``(task, parameters)`` to the minimal artifact bundle a stage may see, enforcing the
  budget before anything is decoded or handed downstream.

What should be included in this file
- Path resolution through the static routing table.
- Cache-then-store loading with per-file hit/miss accounting.
- Cost estimation from the size table and byte totals from actual content.
- Budget enforcement, then shape-specific deserialization.
- One ``context_routing_decision`` log event per route.

Functional requirements
- A context never contains an artifact outside its task's table entry.
- ``BudgetExceeded`` names the metric, total, limit, and the full file list.
- Optional entries whose artifact is missing are omitted; required ones are fatal.
- The router never retries.

Non-functional requirements
- Deterministic output for fixed task, parameters, and store contents.
- Safe for concurrent use; shared state lives only in the injected cache.
"""

from __future__ import annotations

import time
from collections.abc import Callable, Mapping
from datetime import datetime
from typing import Any

import structlog

from intentforge.constants import DEFAULT_SIZE_ESTIMATE
from intentforge.context_plane.artifact_store import ArtifactStore
from intentforge.context_plane.cache import ArtifactCache
from intentforge.context_plane.deserializers import deserialize
from intentforge.context_plane.required_files import (
    REQUIRED_ARTIFACTS,
    SIZE_TABLE,
    ArtifactEntry,
    ResolvedArtifact,
    coerce_task,
    estimate_cost,
    resolve_required_files,
)
from intentforge.domain.errors import ArtifactNotFoundError, BudgetExceeded
from intentforge.domain.models import (
    ArtifactCost,
    BudgetPolicy,
    Context,
    ContextMetadata,
    Task,
)
from intentforge.utils.concurrency import iso8601z, utc_now


class ContextRouter:
    """Route tasks to budgeted, deserialized artifact contexts."""

    def __init__(
        self,
        store: ArtifactStore,
        *,
        budget: BudgetPolicy,
        cache: ArtifactCache | None = None,
        size_table: Mapping[str, int] | None = None,
        table: Mapping[Task, tuple[ArtifactEntry, ...]] | None = None,
        default_size_estimate: int = DEFAULT_SIZE_ESTIMATE,
        validate_on_load: bool = True,
        clock: Callable[[], datetime] | None = None,
        logger: Any | None = None,
    ) -> None:
        self._store = store
        self._budget = budget
        self._cache = cache
        self._size_table = size_table if size_table is not None else SIZE_TABLE
        self._table = table if table is not None else REQUIRED_ARTIFACTS
        self._default_size_estimate = default_size_estimate
        self._validate_on_load = validate_on_load
        self._clock = clock if clock is not None else utc_now
        self._logger = logger if logger is not None else structlog.get_logger(__name__)

    @property
    def budget(self) -> BudgetPolicy:
        return self._budget

    @property
    def cache(self) -> ArtifactCache | None:
        return self._cache

    def required_files(
        self, task: Task | str, parameters: Mapping[str, str] | None = None
    ) -> tuple[ResolvedArtifact, ...]:
        return resolve_required_files(task, parameters, table=self._table)

    def route(self, task: Task | str, parameters: Mapping[str, str] | None = None) -> Context:
        started = time.perf_counter()
        parsed_task = coerce_task(task)
        resolved = self.required_files(parsed_task, parameters)

        loaded: list[tuple[ResolvedArtifact, bytes]] = []
        costs: list[ArtifactCost] = []
        hits: list[str] = []
        misses: list[str] = []
        for artifact in resolved:
            raw, hit = self._load(artifact)
            if raw is None:
                continue
            (hits if hit else misses).append(artifact.path)
            loaded.append((artifact, raw))
            costs.append(
                ArtifactCost(
                    path=artifact.path,
                    estimated_cost=estimate_cost(
                        artifact.path,
                        size_table=self._size_table,
                        default=self._default_size_estimate,
                    ),
                    size_bytes=len(raw),
                    cache_hit=hit,
                )
            )

        files = tuple(item.path for item, _ in loaded)
        total_cost = sum(item.estimated_cost for item in costs)
        total_bytes = sum(item.size_bytes for item in costs)
        self._enforce_budget(parsed_task, files, total_cost, total_bytes)

        artifacts = {
            item.key: deserialize(item.shape, item.path, raw, validate=self._validate_on_load)
            for item, raw in loaded
        }
        metadata = ContextMetadata(
            task=parsed_task,
            files_loaded=files,
            estimated_cost=total_cost,
            estimated_bytes=total_bytes,
            cache_hit=bool(files) and not misses,
            cache_hits=tuple(hits),
            cache_misses=tuple(misses),
            created_at=iso8601z(self._clock()),
        )
        self._logger.info(
            "context_routing_decision",
            task=parsed_task.value,
            files=list(files),
            cost_breakdown={item.path: item.estimated_cost for item in costs},
            estimated_cost=total_cost,
            estimated_bytes=total_bytes,
            cache_hits=len(hits),
            cache_misses=len(misses),
            duration_ms=int((time.perf_counter() - started) * 1000),
        )
        return Context(metadata=metadata, artifacts=artifacts, costs=tuple(costs))

    def _load(self, artifact: ResolvedArtifact) -> tuple[bytes | None, bool]:
        if self._cache is not None:
            cached = self._cache.get(artifact.path)
            if cached is not None:
                return cached, True
        try:
            raw = self._store.read_bytes(artifact.path)
        except ArtifactNotFoundError:
            if artifact.optional:
                return None, False
            raise
        if self._cache is not None:
            raw = self._cache.set(artifact.path, raw)
        return raw, False

    def _enforce_budget(
        self, task: Task, files: tuple[str, ...], total_cost: int, total_bytes: int
    ) -> None:
        totals = (
            ("max_cost", total_cost, self._budget.max_cost),
            ("max_files", len(files), self._budget.max_files),
            ("max_bytes", total_bytes, self._budget.max_bytes),
        )
        exceeded = [(metric, total, limit) for metric, total, limit in totals if total > limit]
        if not exceeded:
            return
        metric, total, limit = exceeded[0]
        raise BudgetExceeded(
            task=task.value,
            metric=metric,
            total=total,
            limit=limit,
            files=files,
            exceeded=[name for name, _, _ in exceeded],
        )


__all__ = ["ContextRouter"]
