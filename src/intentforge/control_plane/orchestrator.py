"""
intentforge — pipeline orchestrator

File: src/intentforge/control_plane/orchestrator.py
Last updated: 2026-10-18

Purpose
- Drive one build through the eight-stage state machine: init, interpret_intent,
  match_capability, generate_spec, validate_rules, final_validate, generate_code, package.

What should be included in this file
- ``PipelineOrchestrator`` with ``execute``, ``resume`` and ``status``.
- Per-stage routing, collaborator calls with bounded retry, and trust-boundary checks.
- Durable stage commits keyed by the deterministic build identifier.
- ``build_orchestrator`` wiring the router, store, state DB, and collaborators from config.

Functional requirements
- Stages before the build identifier exists are held in memory and flushed together with the
  first keyed commit.
- Each stage record is persisted before the next stage starts.
- Clarification halts at interpret_intent without persisting a build.
- A completed build returns its persisted result; a failed build is never resumed.
- Cancellation leaves the build ``running`` at its last committed stage.

Non-functional requirements
- Clock, wall clock, and sleeper are injectable so retry schedules are reproducible.
- One thread of control per build; the orchestrator holds no per-build mutable state.
"""

from __future__ import annotations

from collections.abc import Callable, Mapping
from dataclasses import dataclass, replace
from datetime import datetime
from pathlib import Path
from typing import Any, TypeVar

import structlog

from intentforge.constants import (
    CLARIFICATION_CONFIDENCE_THRESHOLD,
    CONTRACT_VERSION,
    MIN_SUPPORTED_CONTRACT_VERSION,
)
from intentforge.context_plane.artifact_store import ArtifactStore, open_artifact_store
from intentforge.context_plane.cache import ArtifactCache
from intentforge.context_plane.router import ContextRouter
from intentforge.control_plane.collaborators import (
    CapabilitySource,
    CodeBuildExecutor,
    GeneratedFiles,
    IntentInterpreter,
    SpecGenerator,
    artifact_name_for,
    check_artifact,
    check_generated_files,
)
from intentforge.control_plane.generation_plan import create_plan
from intentforge.control_plane.offline import offline_collaborators
from intentforge.control_plane.retry import RetryPolicy, normalize_failure
from intentforge.domain.errors import (
    BuildNotFoundError,
    CapabilityNotFoundError,
    ContractViolation,
    PipelineError,
    ValidationError,
)
from intentforge.domain.ids import build_output_path, canonicalize_request, compute_build_id
from intentforge.domain.models import (
    BudgetPolicy,
    BuildOutcome,
    BuildResult,
    BuildState,
    BuildStatus,
    Capability,
    IntentResult,
    Stage,
    StageRecord,
    Task,
)
from intentforge.observability.logging import correlation_scope
from intentforge.persistence.repositories import BuildRepo
from intentforge.persistence.state_db import StateDB
from intentforge.utils.concurrency import (
    CancellationToken,
    Clock,
    OperationCancelledError,
    Sleeper,
    WallClock,
    iso8601z,
    monotonic_clock,
    real_sleep,
    utc_now,
)
from intentforge.verification_plane.contracts import (
    INTENT_INTERPRETER,
    check_capability,
    check_intent_result,
    check_spec_trust,
    final_validate,
)
from intentforge.verification_plane.rule_engine import RuleContext, RuleEngine, RuleSet

T = TypeVar("T")
StageHandler = Callable[[BuildState, CancellationToken], tuple[dict[str, Any], int]]

RULE_SET_NAME = "component"


@dataclass(frozen=True, slots=True)
class _StagedOutput:
    stage: Stage
    artifact: dict[str, Any]
    attempts: int
    duration_ms: int
    completed_at: str


class PipelineOrchestrator:
    """Deterministic stage machine from raw request text to a packaged component."""

    def __init__(
        self,
        router: ContextRouter,
        repo: BuildRepo,
        *,
        interpreter: IntentInterpreter,
        capability_source: CapabilitySource,
        spec_generator: SpecGenerator,
        executor: CodeBuildExecutor,
        output_root: str | Path,
        rule_engine: RuleEngine | None = None,
        retry_policy: RetryPolicy | None = None,
        confidence_threshold: float = CLARIFICATION_CONFIDENCE_THRESHOLD,
        contract_version: str = CONTRACT_VERSION,
        minimum_contract_version: str = MIN_SUPPORTED_CONTRACT_VERSION,
        clock: Clock | None = None,
        wall_clock: WallClock | None = None,
        sleeper: Sleeper | None = None,
        logger: Any | None = None,
    ) -> None:
        self._router = router
        self._repo = repo
        self._interpreter = interpreter
        self._capability_source = capability_source
        self._spec_generator = spec_generator
        self._executor = executor
        self._output_root = Path(output_root)
        self._rule_engine = rule_engine if rule_engine is not None else RuleEngine()
        self._retry_policy = retry_policy if retry_policy is not None else RetryPolicy()
        self._confidence_threshold = confidence_threshold
        self._contract_version = contract_version
        self._minimum_contract_version = minimum_contract_version
        self._clock = clock if clock is not None else monotonic_clock
        self._wall_clock = wall_clock if wall_clock is not None else utc_now
        self._sleeper = sleeper if sleeper is not None else real_sleep
        self._logger = logger if logger is not None else structlog.get_logger(__name__)
        self._handlers: dict[Stage, StageHandler] = {
            Stage.GENERATE_SPEC: self._generate_spec,
            Stage.VALIDATE_RULES: self._validate_rules,
            Stage.FINAL_VALIDATE: self._final_validate,
            Stage.GENERATE_CODE: self._generate_code,
            Stage.PACKAGE: self._package,
        }

    @property
    def repo(self) -> BuildRepo:
        return self._repo

    @property
    def router(self) -> ContextRouter:
        return self._router

    # ------------------------------------------------------------------ public surface

    def execute(
        self,
        user_input: str,
        options: Mapping[str, object] | None = None,
        *,
        cancellation: CancellationToken | None = None,
    ) -> BuildResult:
        """Run a request end to end, or pick up the build it already identifies."""

        token = cancellation if cancellation is not None else CancellationToken()
        request = canonicalize_request(user_input, options)
        staged: list[_StagedOutput] = []
        try:
            staged.append(self._run_unkeyed(Stage.INIT, token, lambda: self._init(request)))
            interpreted = self._run_unkeyed(
                Stage.INTERPRET_INTENT, token, lambda: self._interpret(request, token)
            )
            staged.append(interpreted)
            if interpreted.artifact["needs_clarification"]:
                return self._clarification_result(interpreted, staged)
            intent = interpreted.artifact["intent_result"]["candidate_intent"]
            matched = self._run_unkeyed(
                Stage.MATCH_CAPABILITY, token, lambda: self._match_capability(intent, token)
            )
            staged.append(matched)
        except PipelineError as exc:
            timings = {item.stage.value: item.duration_ms for item in staged}
            self._logger.error("build_failed", build_id=None, failure=exc.to_dict())
            return BuildResult(
                status=BuildOutcome.ERROR,
                build_id=None,
                stage_timings_ms=timings,
                failure=exc.to_dict(),
            )

        capability_id = str(matched.artifact["capability_id"])
        identifier = compute_build_id(request, capability_id, self._contract_version)
        existing = self._repo.get(identifier.build_id)
        if existing is not None:
            self._logger.info(
                "build_identified_existing",
                build_id=existing.build_id,
                status=existing.status.value,
                current_stage=existing.current_stage.value,
            )
            return self._continue(existing, token)

        now = iso8601z(self._wall_clock())
        state = BuildState(
            build_id=identifier.build_id,
            digest=identifier.digest,
            status=BuildStatus.RUNNING,
            current_stage=Stage.MATCH_CAPABILITY,
            request=request,
            capability_id=capability_id,
            contract_version=self._contract_version,
            created_at=now,
            updated_at=now,
        )
        self._commit(state, staged)
        return self._advance(state, token, resumed=False)

    def resume(
        self, build_id: str, *, cancellation: CancellationToken | None = None
    ) -> BuildResult:
        """Continue a persisted build from its last committed stage."""

        state = self._repo.get(build_id)
        if state is None:
            raise BuildNotFoundError(build_id)
        token = cancellation if cancellation is not None else CancellationToken()
        return self._continue(state, token)

    def status(self, build_id: str) -> BuildState | None:
        return self._repo.get(build_id, with_artifacts=False)

    # ------------------------------------------------------------------ stage driving

    def _continue(self, state: BuildState, token: CancellationToken) -> BuildResult:
        if state.status in {BuildStatus.COMPLETED, BuildStatus.FAILED}:
            stored = self._repo.get_result(state.build_id)
            if stored is None:
                stored = BuildResult(
                    status=BuildOutcome.ERROR, build_id=state.build_id, failure=state.failure
                )
            self._logger.info(
                "build_resume_skipped", build_id=state.build_id, status=state.status.value
            )
            return replace(stored, resumed=True)
        return self._advance(state, token, resumed=True)

    def _advance(
        self, state: BuildState, token: CancellationToken, *, resumed: bool
    ) -> BuildResult:
        stage = state.current_stage.next
        try:
            while stage is not None:
                output = self._run_keyed(stage, state, token)
                self._commit(state, [output])
                stage = stage.next
        except ValidationError as exc:
            return self._fail(state, exc, BuildOutcome.REJECTED, resumed=resumed)
        except PipelineError as exc:
            return self._fail(state, exc, BuildOutcome.ERROR, resumed=resumed)
        except OperationCancelledError as exc:
            self._logger.warning(
                "build_cancelled",
                build_id=state.build_id,
                last_committed_stage=state.current_stage.value,
                reason=str(exc),
            )
            raise
        return self._complete(state, resumed=resumed)

    def _run_unkeyed(
        self,
        stage: Stage,
        token: CancellationToken,
        body: Callable[[], tuple[dict[str, Any], int]],
    ) -> _StagedOutput:
        with correlation_scope(stage=stage.value):
            return self._timed(stage, token, body)

    def _run_keyed(
        self, stage: Stage, state: BuildState, token: CancellationToken
    ) -> _StagedOutput:
        handler = self._handlers[stage]
        with correlation_scope(build_id=state.build_id, stage=stage.value):
            return self._timed(stage, token, lambda: handler(state, token))

    def _timed(
        self,
        stage: Stage,
        token: CancellationToken,
        body: Callable[[], tuple[dict[str, Any], int]],
    ) -> _StagedOutput:
        token.raise_if_cancelled()
        self._logger.info("stage_started", stage=stage.value)
        started = self._clock()
        artifact, attempts = body()
        duration_ms = max(0, int((self._clock() - started) * 1000))
        return _StagedOutput(
            stage=stage,
            artifact=artifact,
            attempts=attempts,
            duration_ms=duration_ms,
            completed_at=iso8601z(self._wall_clock()),
        )

    def _commit(self, state: BuildState, outputs: list[_StagedOutput]) -> None:
        records = [
            StageRecord(
                build_id=state.build_id,
                stage=item.stage,
                artifact=item.artifact,
                completed_at=item.completed_at,
                attempts=item.attempts,
                duration_ms=item.duration_ms,
            )
            for item in outputs
        ]
        self._repo.commit_stages(state, records)
        for record in records:
            state.stage_artifacts[record.stage] = record.artifact
            state.current_stage = record.stage
            state.updated_at = record.completed_at
            self._logger.info(
                "stage_committed",
                build_id=state.build_id,
                stage=record.stage.value,
                attempts=record.attempts,
                duration_ms=record.duration_ms,
            )
        state.retry = None

    def _call(
        self,
        stage: Stage,
        token: CancellationToken,
        call: Callable[[], T],
        *,
        state: BuildState | None = None,
    ) -> tuple[T, int]:
        """Invoke a collaborator with bounded retry; returns ``(value, attempts)``.

        A retry persisted on ``state`` for this stage is honored first: the call waits until
        ``next_retry_at`` and continues the attempt count from there.
        """

        attempt = 1
        if state is not None and state.retry is not None and state.retry.stage is stage:
            attempt = state.retry.attempt
            self._wait_until(state.retry.next_retry_at, token)
        while True:
            token.raise_if_cancelled()
            try:
                value = call()
            except Exception as exc:  # noqa: BLE001
                failure = normalize_failure(exc)
                if not self._retry_policy.should_retry(stage, attempt, failure):
                    if failure is exc:
                        raise
                    raise failure from exc
                retry, delay = self._retry_policy.schedule(stage, attempt, self._wall_clock())
                if state is not None:
                    self._repo.set_retry(
                        state.build_id, retry, updated_at=iso8601z(self._wall_clock())
                    )
                    state.retry = retry
                self._logger.warning(
                    "stage_retry_scheduled",
                    stage=stage.value,
                    failed_attempt=attempt,
                    next_attempt=retry.attempt,
                    delay_seconds=delay,
                    next_retry_at=retry.next_retry_at,
                    failure=failure.to_dict(),
                )
                self._sleeper(delay)
                attempt = retry.attempt
                continue
            token.raise_if_cancelled()
            return value, attempt

    def _wait_until(self, deadline: str, token: CancellationToken) -> None:
        remaining = (datetime.fromisoformat(deadline) - self._wall_clock()).total_seconds()
        if remaining > 0:
            token.raise_if_cancelled()
            self._sleeper(remaining)

    # ------------------------------------------------------------------ stages

    def _init(self, request: Mapping[str, Any]) -> tuple[dict[str, Any], int]:
        return {"request": dict(request), "contract_version": self._contract_version}, 1

    def _interpret(
        self, request: Mapping[str, Any], token: CancellationToken
    ) -> tuple[dict[str, Any], int]:
        context = self._router.route(Task.INTERPRET_INTENT)
        text = str(request["text"])
        result, attempts = self._call(
            Stage.INTERPRET_INTENT, token, lambda: self._interpreter.interpret(text)
        )
        if not isinstance(result, IntentResult):
            raise ContractViolation(
                INTENT_INTERPRETER, [f"expected IntentResult, got {type(result).__name__}"]
            )
        check = check_intent_result(
            result,
            confidence_threshold=self._confidence_threshold,
            minimum_version=self._minimum_contract_version,
            schema=context.get("schema"),
        )
        if check.conservative_clarification:
            self._logger.warning(
                "intent_clarification_warning",
                confidence=result.confidence,
                threshold=self._confidence_threshold,
                question=result.clarification_question,
            )
        artifact = {
            "intent_result": result.to_dict(),
            "needs_clarification": check.needs_clarification,
        }
        return artifact, attempts

    def _match_capability(
        self, intent: Mapping[str, Any], token: CancellationToken
    ) -> tuple[dict[str, Any], int]:
        context = self._router.route(Task.MATCH_CAPABILITY)
        component_type = str(intent.get("component_type", ""))
        capability_id = _capability_for(context.require("registry"), component_type)
        if capability_id is None:
            raise CapabilityNotFoundError(component_type or "<unspecified>")
        capability, attempts = self._call(
            Stage.MATCH_CAPABILITY, token, lambda: self._capability_source.get(capability_id)
        )
        checked = check_capability(capability, capability_id)
        return {"capability_id": capability_id, "capability": checked.to_dict()}, attempts

    def _generate_spec(
        self, state: BuildState, token: CancellationToken
    ) -> tuple[dict[str, Any], int]:
        context = self._router.route(
            Task.GENERATE_COMPONENT_SPEC, {"capability_id": state.capability_id}
        )
        capability: Capability = context.require("capability")
        intent = _prior(state, Stage.INTERPRET_INTENT)["intent_result"]["candidate_intent"]
        spec, attempts = self._call(
            Stage.GENERATE_SPEC,
            token,
            lambda: self._spec_generator.generate(intent, capability),
            state=state,
        )
        trusted = check_spec_trust(
            spec, state.capability_id, minimum_version=self._minimum_contract_version
        )
        return {"spec": trusted}, attempts

    def _validate_rules(
        self, state: BuildState, token: CancellationToken
    ) -> tuple[dict[str, Any], int]:
        context = self._router.route(Task.VALIDATE_RULES)
        rule_set = RuleSet.combine(
            RULE_SET_NAME, [context.require("core_rules"), context.require("accessibility_rules")]
        )
        capability = Capability.from_dict(_prior(state, Stage.MATCH_CAPABILITY)["capability"])
        outcome = self._rule_engine.evaluate(
            _prior(state, Stage.GENERATE_SPEC)["spec"],
            rule_set,
            RuleContext(capability=capability),
        )
        result = outcome.result
        if not result.is_valid:
            raise ValidationError(
                Stage.VALIDATE_RULES.value,
                [item.to_dict() for item in result.errors],
                warnings=[item.to_dict() for item in result.warnings],
                downgrades=[item.to_dict() for item in result.downgrades],
            )
        return {"spec": outcome.spec, "validation": result.to_dict()}, 1

    def _final_validate(
        self, state: BuildState, token: CancellationToken
    ) -> tuple[dict[str, Any], int]:
        context = self._router.route(Task.VALIDATE_FINAL, {"capability_id": state.capability_id})
        result = final_validate(
            _prior(state, Stage.VALIDATE_RULES)["spec"],
            schema=context.require("schema"),
            capability=context.require("capability"),
            engine=self._rule_engine,
        )
        if not result.is_valid:
            raise ValidationError(
                Stage.FINAL_VALIDATE.value,
                [item.to_dict() for item in result.errors],
                warnings=[item.to_dict() for item in result.warnings],
            )
        return {"validation": result.to_dict()}, 1

    def _generate_code(
        self, state: BuildState, token: CancellationToken
    ) -> tuple[dict[str, Any], int]:
        spec = _prior(state, Stage.VALIDATE_RULES)["spec"]
        plan = create_plan(spec)
        output_dir = build_output_path(self._output_root, state.build_id)
        generated, attempts = self._call(
            Stage.GENERATE_CODE,
            token,
            lambda: self._executor.generate_code(spec, plan, output_dir),
            state=state,
        )
        files = check_generated_files(plan, generated)
        return {"plan": plan.to_dict(), "files": files.to_dict()}, attempts

    def _package(
        self, state: BuildState, token: CancellationToken
    ) -> tuple[dict[str, Any], int]:
        spec = _prior(state, Stage.VALIDATE_RULES)["spec"]
        files = GeneratedFiles.from_dict(_prior(state, Stage.GENERATE_CODE)["files"])
        output_dir = build_output_path(self._output_root, state.build_id)
        artifact_name = artifact_name_for(str(spec["component_name"]), state.build_id)
        artifact, attempts = self._call(
            Stage.PACKAGE,
            token,
            lambda: self._executor.package(spec, files, output_dir, artifact_name),
            state=state,
        )
        return check_artifact(artifact, artifact_name).to_dict(), attempts

    # ------------------------------------------------------------------ results

    def _clarification_result(
        self, interpreted: _StagedOutput, staged: list[_StagedOutput]
    ) -> BuildResult:
        intent_result = interpreted.artifact["intent_result"]
        clarification = {
            "question": intent_result.get("clarification_question"),
            "confidence": intent_result.get("confidence"),
            "unmapped_phrases": list(intent_result.get("unmapped_phrases") or []),
        }
        self._logger.info("build_clarification_required", **clarification)
        return BuildResult(
            status=BuildOutcome.CLARIFICATION_REQUIRED,
            build_id=None,
            stage_timings_ms={item.stage.value: item.duration_ms for item in staged},
            clarification=clarification,
        )

    def _complete(self, state: BuildState, *, resumed: bool) -> BuildResult:
        packaged = _prior(state, Stage.PACKAGE)
        result = BuildResult(
            status=BuildOutcome.SUCCESS,
            build_id=state.build_id,
            artifact_path=str(packaged["artifact_path"]),
            warnings=self._collected(state, "warnings"),
            downgrades=self._collected(state, "downgrades"),
            stage_timings_ms=self._timings(state.build_id),
            resumed=resumed,
        )
        self._repo.set_status(
            state.build_id,
            BuildStatus.COMPLETED,
            updated_at=iso8601z(self._wall_clock()),
            result=result,
        )
        state.status = BuildStatus.COMPLETED
        self._logger.info(
            "build_completed",
            build_id=state.build_id,
            artifact_path=result.artifact_path,
            warnings=len(result.warnings),
            downgrades=len(result.downgrades),
            stage_timings_ms=dict(result.stage_timings_ms),
        )
        return result

    def _fail(
        self,
        state: BuildState,
        error: PipelineError,
        outcome: BuildOutcome,
        *,
        resumed: bool,
    ) -> BuildResult:
        failure = error.to_dict()
        warnings = self._collected(state, "warnings")
        downgrades = self._collected(state, "downgrades")
        errors: tuple[Mapping[str, Any], ...] = ()
        if isinstance(error, ValidationError):
            errors = error.violations
            warnings += error.warnings
            downgrades += error.downgrades
        result = BuildResult(
            status=outcome,
            build_id=state.build_id,
            errors=errors,
            warnings=warnings,
            downgrades=downgrades,
            stage_timings_ms=self._timings(state.build_id),
            failure=failure,
            resumed=resumed,
        )
        self._repo.set_status(
            state.build_id,
            BuildStatus.FAILED,
            updated_at=iso8601z(self._wall_clock()),
            failure=failure,
            result=result,
        )
        state.status = BuildStatus.FAILED
        state.failure = failure
        self._logger.error(
            "build_failed",
            build_id=state.build_id,
            last_committed_stage=state.current_stage.value,
            failure=failure,
        )
        return result

    @staticmethod
    def _collected(state: BuildState, key: str) -> tuple[Mapping[str, Any], ...]:
        items: list[Mapping[str, Any]] = []
        for stage in (Stage.VALIDATE_RULES, Stage.FINAL_VALIDATE):
            artifact = state.stage_artifacts.get(stage)
            if artifact is not None:
                items.extend(artifact.get("validation", {}).get(key, []))
        return tuple(items)

    def _timings(self, build_id: str) -> dict[str, int]:
        return {
            record.stage.value: record.duration_ms
            for record in self._repo.stages.list_for_build(build_id)
        }


def _prior(state: BuildState, stage: Stage) -> Mapping[str, Any]:
    """Artifact committed by an earlier stage; later stages are never visible."""

    if stage.index > state.current_stage.index:
        raise ValueError(
            f"stage {stage.value} has not been committed (last: {state.current_stage.value})"
        )
    artifact = state.stage_artifacts.get(stage)
    if artifact is None:
        raise ValueError(f"missing committed artifact for stage {stage.value}")
    return artifact


def _capability_for(registry: Mapping[str, Any], component_type: str) -> str | None:
    if not component_type:
        return None
    for entry in registry.get("capabilities", []):
        if isinstance(entry, Mapping) and component_type in entry.get("component_types", []):
            capability_id = entry.get("capability_id")
            if isinstance(capability_id, str) and capability_id:
                return capability_id
    return None


def build_router(
    config: Mapping[str, Any],
    *,
    store: ArtifactStore | None = None,
    logger: Any | None = None,
) -> tuple[ContextRouter, ArtifactStore]:
    """Build the configured router and the store it reads from."""

    router_config = config["router"]
    artifact_store = (
        store if store is not None else open_artifact_store(config["paths"]["artifact_root"])
    )
    cache = (
        ArtifactCache(ttl_seconds=float(router_config["cache_ttl_seconds"]))
        if router_config["enable_caching"]
        else None
    )
    router = ContextRouter(
        artifact_store,
        budget=BudgetPolicy(
            max_cost=int(router_config["max_cost"]),
            max_files=int(router_config["max_files"]),
            max_bytes=int(router_config["max_bytes"]),
        ),
        cache=cache,
        default_size_estimate=int(router_config["default_size_estimate"]),
        validate_on_load=bool(router_config["validate_on_load"]),
        logger=logger,
    )
    return router, artifact_store


def build_orchestrator(
    config: Mapping[str, Any],
    *,
    store: ArtifactStore | None = None,
    sleeper: Sleeper | None = None,
    logger: Any | None = None,
) -> PipelineOrchestrator:
    """Wire an orchestrator with the offline collaborators from an effective config."""

    router, artifact_store = build_router(config, store=store, logger=logger)
    collaborators = offline_collaborators(router, artifact_store)
    intent_config = config["intent"]
    return PipelineOrchestrator(
        router,
        BuildRepo(StateDB(config["paths"]["state_db"])),
        interpreter=collaborators.interpreter,
        capability_source=collaborators.capability_source,
        spec_generator=collaborators.spec_generator,
        executor=collaborators.executor,
        output_root=config["paths"]["output_root"],
        retry_policy=RetryPolicy.from_config(config["retry"]),
        confidence_threshold=float(intent_config["confidence_threshold"]),
        contract_version=str(intent_config["contract_version"]),
        sleeper=sleeper,
        logger=logger,
    )


__all__ = [
    "PipelineOrchestrator",
    "build_orchestrator",
    "build_router",
]
