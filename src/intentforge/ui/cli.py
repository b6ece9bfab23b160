"""Command-line interface router for intentforge."""

from __future__ import annotations

import argparse
import json
import sys
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from intentforge.config import (
    ConfigLoadError,
    ConfigValidationError,
    assert_valid_config,
    effective_config,
    load_config,
)
from intentforge.control_plane import build_orchestrator, build_router
from intentforge.domain.errors import BudgetExceeded, BuildNotFoundError, PipelineError
from intentforge.domain.models import BuildOutcome, BuildResult, BuildStatus, Capability, Task
from intentforge.main import exit_code_for_result
from intentforge.observability import configure_logging, shutdown_logging
from intentforge.persistence import BuildRepo, StateDB
from intentforge.ui.render import CLIRenderer, create_renderer
from intentforge.utils.concurrency import utc_now
from intentforge.verification_plane import RuleContext, RuleEngine, RuleSet, final_validate


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: int = 1

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="intentforge",
        description=(
            "intentforge: deterministic intent-to-component build pipeline.\n\n"
            "Common workflows:\n"
            '  intentforge run "5-star rating, read-only"   Build a component\n'
            "  intentforge status                           List recent builds\n"
            "  intentforge resume <BUILD_ID>                Continue an interrupted build\n"
            "  intentforge route interpret_intent           Show a routed context\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "--config",
        dest="config_path",
        default=None,
        help="Path to TOML config (default: ./intentforge.toml if present).",
    )
    common.add_argument("--profile", default=None, help="Optional config profile overlay name.")
    common.add_argument(
        "--verbose", "-v", action="store_true", default=False, help="Show detailed output."
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )
    common.add_argument("--json", action="store_true", help="Emit deterministic JSON output")

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Build a component from a natural-language request",
        description=(
            "Interpret the request, match a capability, generate and validate a component\n"
            "specification, then render and package the component.\n\n"
            "Examples:\n"
            '  intentforge run "5-star rating, read-only"\n'
            '  intentforge run "rating control" --option theme=dark --json\n'
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument("request", help="Natural-language component request")
    run_parser.add_argument(
        "--option",
        dest="options",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Request option hashed into the build identifier (repeatable).",
    )
    run_parser.set_defaults(handler=_cmd_run)

    # resume --------------------------------------------------------------
    resume_parser = subparsers.add_parser(
        "resume",
        parents=[common],
        help="Continue a persisted build from its last committed stage",
    )
    resume_parser.add_argument("build_id", help="Build identifier (build_<16 hex>)")
    resume_parser.set_defaults(handler=_cmd_resume)

    # status --------------------------------------------------------------
    status_parser = subparsers.add_parser(
        "status",
        parents=[common],
        help="Show one build or list recent builds",
    )
    status_parser.add_argument("build_id", nargs="?", default=None, help="Build identifier")
    status_parser.add_argument(
        "--status",
        dest="status_filter",
        choices=tuple(status.value for status in BuildStatus),
        default=None,
        help="Only list builds with this status",
    )
    status_parser.add_argument("--limit", type=int, default=20, help="Maximum builds to list")
    status_parser.set_defaults(handler=_cmd_status)

    # route ---------------------------------------------------------------
    route_parser = subparsers.add_parser(
        "route",
        parents=[common],
        help="Resolve and budget-check the context for a routing task",
        description=(
            "Resolve the artifact list for a task, enforce the budget, and print the\n"
            "context metadata with its per-file cost breakdown.\n\n"
            "Examples:\n"
            "  intentforge route interpret_intent\n"
            "  intentforge route generate_component_spec --param capability_id=star-rating\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    route_parser.add_argument("task", choices=[task.value for task in Task], help="Routing task")
    route_parser.add_argument(
        "--param",
        dest="params",
        action="append",
        default=[],
        metavar="KEY=VALUE",
        help="Path parameter such as capability_id=star-rating (repeatable).",
    )
    route_parser.set_defaults(handler=_cmd_route)

    # validate ------------------------------------------------------------
    validate_parser = subparsers.add_parser(
        "validate",
        parents=[common],
        help="Run the rule pass and final validation on a component specification file",
    )
    validate_parser.add_argument("spec_path", help="Path to a component specification JSON file")
    validate_parser.add_argument(
        "--capability",
        dest="capability_id",
        default=None,
        help="Capability id (default: the component's capabilities.capability_id)",
    )
    validate_parser.add_argument(
        "--write-fixed",
        dest="write_fixed",
        default=None,
        help="Write the auto-fixed specification to this path",
    )
    validate_parser.set_defaults(handler=_cmd_validate)

    # config --------------------------------------------------------------
    config_parser = subparsers.add_parser(
        "config",
        parents=[common],
        help="Print the effective (redacted) configuration",
    )
    config_parser.set_defaults(handler=_cmd_config)

    return parser


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    handler = getattr(namespace, "handler", None)
    if not callable(handler):
        parser.print_help(sys.stderr)
        return 2

    try:
        result = handler(namespace)
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return exc.exit_code
    return int(result)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_run(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    options = _parse_pairs(args.options, "--option")
    session = "run-" + utc_now().strftime("%Y%m%dT%H%M%SZ")
    handle = configure_logging(config["observability"], build_id=session)
    try:
        orchestrator = build_orchestrator(config)
        try:
            result = orchestrator.execute(args.request, options or None)
        except ValueError as exc:
            raise CLIError(str(exc), exit_code=2) from exc
    finally:
        shutdown_logging(handle)
    return _report_build(args, "run", result)


def _cmd_resume(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    handle = configure_logging(config["observability"], build_id=args.build_id)
    try:
        orchestrator = build_orchestrator(config)
        try:
            result = orchestrator.resume(args.build_id)
        except (BuildNotFoundError, ValueError) as exc:
            raise CLIError(str(exc), exit_code=2) from exc
    finally:
        shutdown_logging(handle)
    return _report_build(args, "resume", result)


def _cmd_status(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    repo = BuildRepo(StateDB(config["paths"]["state_db"]))

    if args.build_id is None:
        if args.limit <= 0:
            raise CLIError("--limit must be > 0", exit_code=2)
        builds = repo.list(status=args.status_filter, limit=args.limit)
        payload: dict[str, object] = {
            "command": "status",
            "builds": [state.to_dict() for state in builds],
        }
        if _flag(args, "json"):
            _emit_json(payload)
            return 0
        renderer = _get_renderer(args)
        if not builds:
            renderer.text(f"No builds found in {config['paths']['state_db']}")
            renderer.next_steps(['intentforge run "5-star rating, read-only"'])
            return 0
        renderer.table(
            ("Build", "Status", "Stage", "Capability", "Updated"),
            [
                (
                    state.build_id,
                    state.status.value,
                    state.current_stage.value,
                    state.capability_id,
                    state.updated_at,
                )
                for state in builds
            ],
            title="Builds:",
        )
        return 0

    try:
        state = repo.get(args.build_id)
    except ValueError as exc:
        raise CLIError(str(exc), exit_code=2) from exc
    if state is None:
        raise CLIError(f"build not found: {args.build_id}", exit_code=2)
    stored = repo.get_result(state.build_id)
    stages = repo.stages.list_for_build(state.build_id)
    payload = {
        "command": "status",
        "build": state.to_dict(),
        "stages": [
            {
                "stage": record.stage.value,
                "attempts": record.attempts,
                "duration_ms": record.duration_ms,
                "completed_at": record.completed_at,
            }
            for record in stages
        ],
        "result": stored.to_dict() if stored is not None else None,
    }
    if _flag(args, "json"):
        _emit_json(payload)
        return 0

    renderer = _get_renderer(args)
    renderer.status(state.build_id, state.status.value)
    renderer.kv("Capability", state.capability_id)
    renderer.kv("Request", state.request.get("text", ""))
    renderer.kv("Last committed stage", state.current_stage.value)
    if state.retry is not None:
        renderer.kv(
            "Pending retry",
            f"{state.retry.stage.value} attempt {state.retry.attempt} "
            f"at {state.retry.next_retry_at}",
        )
    if state.failure is not None:
        renderer.kv("Failure", state.failure.get("detail", ""))
    renderer.table(
        ("Stage", "Attempts", "Duration (ms)"),
        [(record.stage.value, str(record.attempts), str(record.duration_ms)) for record in stages],
        title="Committed stages:",
    )
    if state.status is BuildStatus.RUNNING:
        renderer.next_steps([f"intentforge resume {state.build_id}"])
    return 0


def _cmd_route(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    params = _parse_pairs(args.params, "--param")
    router, _ = build_router(config)
    try:
        context = router.route(args.task, params)
    except BudgetExceeded as exc:
        if _flag(args, "json"):
            _emit_json({"command": "route", "error": exc.to_dict()})
        else:
            print(f"error: {exc}", file=sys.stderr)
        return 2
    except (PipelineError, ValueError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc

    payload: dict[str, object] = {
        "command": "route",
        "metadata": context.metadata.to_dict(),
        "costs": [cost.to_dict() for cost in context.costs],
        "budget": router.budget.to_dict(),
    }
    if _flag(args, "json"):
        _emit_json(payload)
        return 0

    renderer = _get_renderer(args)
    metadata = context.metadata
    renderer.kv("Task", metadata.task.value)
    renderer.kv(
        "Estimated cost", f"{metadata.estimated_cost} / {router.budget.max_cost}"
    )
    renderer.kv("Files", f"{len(metadata.files_loaded)} / {router.budget.max_files}")
    renderer.kv("Bytes", f"{metadata.estimated_bytes} / {router.budget.max_bytes}")
    renderer.table(
        ("Path", "Cost", "Bytes"),
        [(cost.path, str(cost.estimated_cost), str(cost.size_bytes)) for cost in context.costs],
        title="Artifacts:",
    )
    return 0


def _cmd_validate(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    spec = _read_json_object(Path(args.spec_path))
    capabilities = spec.get("capabilities")
    capability_id = args.capability_id or (
        capabilities.get("capability_id") if isinstance(capabilities, Mapping) else None
    )
    if not isinstance(capability_id, str) or not capability_id:
        raise CLIError("capability id is required (--capability or capabilities.capability_id)")

    router, _ = build_router(config)
    engine = RuleEngine()
    rules_context = router.route(Task.VALIDATE_RULES)
    final_context = router.route(Task.VALIDATE_FINAL, {"capability_id": capability_id})
    capability: Capability = final_context.require("capability")
    rule_set = RuleSet.combine(
        "component",
        [rules_context.require("core_rules"), rules_context.require("accessibility_rules")],
    )
    outcome = engine.evaluate(spec, rule_set, RuleContext(capability=capability))
    final = final_validate(
        outcome.spec,
        schema=final_context.require("schema"),
        capability=capability,
        engine=engine,
    )
    valid = outcome.is_valid and final.is_valid
    if args.write_fixed:
        Path(args.write_fixed).write_text(
            json.dumps(outcome.spec, indent=2, sort_keys=True, ensure_ascii=False) + "\n",
            encoding="utf-8",
        )

    payload: dict[str, object] = {
        "command": "validate",
        "is_valid": valid,
        "rules": outcome.result.to_dict(),
        "final": final.to_dict(),
    }
    exit_code = 0 if valid else 1
    if _flag(args, "json"):
        _emit_json(payload)
        return exit_code

    renderer = _get_renderer(args)
    renderer.status(str(args.spec_path), "success" if valid else "rejected")
    renderer.kv(
        "Rules passed",
        f"{outcome.result.passed_rules + final.passed_rules}"
        f" / {outcome.result.total_rules + final.total_rules}",
    )
    renderer.issues("Errors:", [item.to_dict() for item in outcome.result.errors + final.errors])
    renderer.issues(
        "Warnings:", [item.to_dict() for item in outcome.result.warnings + final.warnings]
    )
    renderer.downgrades([item.to_dict() for item in outcome.result.downgrades])
    return exit_code


def _cmd_config(args: argparse.Namespace) -> int:
    config = _load_effective_config(args)
    redacted = effective_config(config)

    payload: dict[str, object] = {
        "command": "config",
        "active_profile": args.profile,
        "config": redacted,
    }
    if _flag(args, "json"):
        _emit_json(payload)
        return 0

    renderer = _get_renderer(args)
    renderer.kv("Active profile", args.profile or "(default)")
    renderer.text(json.dumps(redacted, indent=2, sort_keys=True, ensure_ascii=False))
    return 0


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _report_build(args: argparse.Namespace, command: str, result: BuildResult) -> int:
    exit_code = int(exit_code_for_result(result))
    if _flag(args, "json"):
        _emit_json({"command": command, **result.to_dict()})
        return exit_code

    renderer = _get_renderer(args)
    renderer.status(result.build_id or "(no build)", result.status.value)
    if result.resumed:
        renderer.kv("Resumed", "true")
    if result.artifact_path:
        renderer.kv("Artifact", result.artifact_path)
    if result.clarification is not None:
        renderer.kv("Question", result.clarification.get("question") or "(none)")
        renderer.kv("Confidence", result.clarification.get("confidence"))
    if result.failure is not None and result.status is not BuildOutcome.REJECTED:
        renderer.kv("Failure", result.failure.get("detail", ""))
    renderer.issues("Errors:", result.errors)
    renderer.issues("Warnings:", result.warnings)
    renderer.downgrades(result.downgrades)
    if renderer.verbose and result.stage_timings_ms:
        renderer.table(
            ("Stage", "Duration (ms)"),
            [(stage, str(ms)) for stage, ms in result.stage_timings_ms.items()],
            title="Stage timings:",
        )
    if result.build_id is not None:
        renderer.next_steps([f"intentforge status {result.build_id}"])
    return exit_code


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    return create_renderer(no_color=_flag(args, "no_color"), verbose=_flag(args, "verbose"))


def _load_effective_config(args: argparse.Namespace) -> dict[str, Any]:
    try:
        loaded = load_config(args.config_path, profile=args.profile)
        return assert_valid_config(loaded)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc), exit_code=2) from exc


def _parse_pairs(raw: Sequence[str], flag: str) -> dict[str, str]:
    pairs: dict[str, str] = {}
    for item in raw:
        key, sep, value = item.partition("=")
        if not sep or not key.strip():
            raise CLIError(f"{flag} expects KEY=VALUE, got {item!r}", exit_code=2)
        pairs[key.strip()] = value.strip()
    return pairs


def _read_json_object(path: Path) -> dict[str, Any]:
    try:
        payload = json.loads(path.read_text(encoding="utf-8"))
    except FileNotFoundError as exc:
        raise CLIError(f"file not found: {path}", exit_code=2) from exc
    except json.JSONDecodeError as exc:
        raise CLIError(f"{path} is not valid JSON: {exc}", exit_code=2) from exc
    if not isinstance(payload, dict):
        raise CLIError(f"{path} must contain a JSON object", exit_code=2)
    return payload


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = ["CLIError", "build_parser", "run_cli"]
