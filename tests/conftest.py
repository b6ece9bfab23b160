"""Shared fixtures: bundled artifact store, deterministic clocks, and orchestrator wiring."""

from __future__ import annotations

from collections.abc import Callable, Iterator, Mapping
from dataclasses import dataclass, field
from datetime import UTC, datetime, timedelta
from pathlib import Path
from typing import Any

import pytest

from intentforge.config.schema import default_config
from intentforge.context_plane.artifact_store import FileArtifactStore, bundled_artifact_root
from intentforge.context_plane.router import ContextRouter
from intentforge.control_plane.collaborators import BuildArtifact, GeneratedFiles
from intentforge.control_plane.generation_plan import GenerationPlan
from intentforge.control_plane.offline import offline_collaborators
from intentforge.control_plane.orchestrator import PipelineOrchestrator
from intentforge.control_plane.retry import BackoffConfig, RetryPolicy
from intentforge.domain.models import BudgetPolicy, Capability, IntentResult
from intentforge.observability.logging import shutdown_logging
from intentforge.persistence.repositories import BuildRepo
from intentforge.persistence.state_db import StateDB

FIXED_NOW = datetime(2026, 10, 18, 12, 0, 0, tzinfo=UTC)


@pytest.fixture(autouse=True)
def _cleanup_logging() -> Iterator[None]:
    yield
    shutdown_logging()


class FakeClock:
    """Monotonic and wall clock that only moves when told to (or when slept on)."""

    def __init__(self, start: datetime = FIXED_NOW) -> None:
        self._start = start
        self.elapsed = 0.0

    def monotonic(self) -> float:
        return self.elapsed

    def now(self) -> datetime:
        return self._start + timedelta(seconds=self.elapsed)

    def advance(self, seconds: float) -> None:
        self.elapsed += seconds


@dataclass
class RecordingSleeper:
    clock: FakeClock
    delays: list[float] = field(default_factory=list)
    on_sleep: Callable[[float], None] | None = None

    def __call__(self, seconds: float) -> None:
        self.delays.append(seconds)
        self.clock.advance(seconds)
        if self.on_sleep is not None:
            self.on_sleep(seconds)


class CountingCollaborators:
    """Offline collaborators wrapped with call counters and optional failure scripts."""

    def __init__(self, router: ContextRouter, store: FileArtifactStore) -> None:
        inner = offline_collaborators(router, store)
        self._inner = inner
        self.calls: dict[str, int] = dict.fromkeys(
            ("interpret", "capability", "spec", "code", "package"), 0
        )
        self.spec_script: list[Callable[[], None]] = []
        self.package_script: list[Callable[[], None]] = []
        self.spec_override: Callable[[dict[str, Any]], dict[str, Any]] | None = None

    def interpret(self, raw_text: str) -> IntentResult:
        self.calls["interpret"] += 1
        return self._inner.interpreter.interpret(raw_text)

    def get(self, capability_id: str) -> Capability | None:
        self.calls["capability"] += 1
        return self._inner.capability_source.get(capability_id)

    def generate(self, intent: Mapping[str, Any], capability: Capability) -> Mapping[str, Any]:
        self.calls["spec"] += 1
        if self.spec_script:
            self.spec_script.pop(0)()
        spec = self._inner.spec_generator.generate(intent, capability)
        if self.spec_override is not None:
            spec = self.spec_override(spec)
        return spec

    def generate_code(
        self, spec: Mapping[str, Any], plan: GenerationPlan, output_dir: Path
    ) -> GeneratedFiles:
        self.calls["code"] += 1
        return self._inner.executor.generate_code(spec, plan, output_dir)

    def package(
        self,
        spec: Mapping[str, Any],
        files: GeneratedFiles,
        output_dir: Path,
        artifact_name: str,
    ) -> BuildArtifact:
        self.calls["package"] += 1
        if self.package_script:
            self.package_script.pop(0)()
        return self._inner.executor.package(spec, files, output_dir, artifact_name)


@dataclass
class PipelineHarness:
    orchestrator: PipelineOrchestrator
    collaborators: CountingCollaborators
    repo: BuildRepo
    clock: FakeClock
    sleeper: RecordingSleeper
    output_root: Path


@pytest.fixture()
def artifact_store() -> FileArtifactStore:
    return FileArtifactStore(bundled_artifact_root())


@pytest.fixture()
def fake_clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def make_router(
    artifact_store: FileArtifactStore, fake_clock: FakeClock
) -> Callable[..., ContextRouter]:
    def factory(
        *,
        max_cost: int = 5000,
        max_files: int = 10,
        max_bytes: int = 1_048_576,
        size_table: Mapping[str, int] | None = None,
    ) -> ContextRouter:
        return ContextRouter(
            artifact_store,
            budget=BudgetPolicy(max_cost=max_cost, max_files=max_files, max_bytes=max_bytes),
            size_table=size_table,
            clock=fake_clock.now,
        )

    return factory


@pytest.fixture()
def make_pipeline(
    tmp_path: Path,
    artifact_store: FileArtifactStore,
    fake_clock: FakeClock,
    make_router: Callable[..., ContextRouter],
) -> Callable[..., PipelineHarness]:
    def factory(
        *,
        size_table: Mapping[str, int] | None = None,
        retry_policy: RetryPolicy | None = None,
        state_db: Path | None = None,
    ) -> PipelineHarness:
        router = make_router(size_table=size_table)
        # Collaborators read their mapping artifacts under the default size table.
        collaborators = CountingCollaborators(make_router(), artifact_store)
        repo = BuildRepo(StateDB(state_db or tmp_path / "state" / "intentforge.sqlite"))
        sleeper = RecordingSleeper(fake_clock)
        output_root = tmp_path / "out"
        orchestrator = PipelineOrchestrator(
            router,
            repo,
            interpreter=collaborators,
            capability_source=collaborators,
            spec_generator=collaborators,
            executor=collaborators,
            output_root=output_root,
            retry_policy=retry_policy
            or RetryPolicy(backoff=BackoffConfig(initial_delay_seconds=0.5, max_delay_seconds=4.0)),
            clock=fake_clock.monotonic,
            wall_clock=fake_clock.now,
            sleeper=sleeper,
        )
        return PipelineHarness(
            orchestrator=orchestrator,
            collaborators=collaborators,
            repo=repo,
            clock=fake_clock,
            sleeper=sleeper,
            output_root=output_root,
        )

    return factory


@pytest.fixture()
def pipeline_config(tmp_path: Path) -> dict[str, Any]:
    config: dict[str, Any] = dict(default_config())
    config["paths"] = {
        "artifact_root": "<bundled>",
        "state_db": (tmp_path / "state" / "intentforge.sqlite").as_posix(),
        "output_root": (tmp_path / "out").as_posix(),
    }
    config["observability"] = {
        "log_level": "INFO",
        "log_dir": (tmp_path / "logs").as_posix(),
        "log_to_stderr": False,
        "redact_secrets": True,
    }
    return config
