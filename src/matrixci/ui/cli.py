"""Command-line interface router for matrixci."""

from __future__ import annotations

import argparse
import asyncio
import json
import sys
import uuid
from collections.abc import Mapping, Sequence
from dataclasses import dataclass
from typing import Final

from matrixci.config import (
    ConfigLoadError,
    ConfigValidationError,
    dump_effective_config,
    load_config,
)
from matrixci.constants import REPORT_SCHEMA_VERSION
from matrixci.domain.models import (
    InstallReport,
    PipelineRun,
    StageStatus,
    VariantRun,
    VariantStatus,
    Verdict,
)
from matrixci.main import ExitCode
from matrixci.observability.logging import open_run_log
from matrixci.pipeline import PipelineConfiguration, run_pipeline, summarize
from matrixci.ui.render import CLIRenderer, create_renderer

_FAILURE_TAIL_LINES: Final[int] = 20


@dataclass(frozen=True, slots=True)
class CLIError(RuntimeError):
    """Typed CLI failure with an explicit process exit code."""

    message: str
    exit_code: ExitCode = ExitCode.CONFIG_ERROR

    def __str__(self) -> str:
        return self.message


# ---------------------------------------------------------------------------
# Parser
# ---------------------------------------------------------------------------


def build_parser() -> argparse.ArgumentParser:
    """Build the argparse command router for all supported CLI workflows."""

    parser = argparse.ArgumentParser(
        prog="matrixci",
        description=(
            "matrixci: toolchain matrix CI runner.\n\n"
            "Common workflows:\n"
            "  matrixci run matrix.toml        Install deps, run every variant, print verdict\n"
            "  matrixci validate matrix.toml   Print the effective config as JSON\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument(
        "config_path",
        metavar="CONFIG",
        help="Path to the matrix config (.toml, .yml, or .yaml).",
    )
    common.add_argument(
        "--verbose",
        "-v",
        action="store_true",
        default=False,
        help="Show full stage output and mirror structured logs to stderr.",
    )
    common.add_argument(
        "--no-color",
        action="store_true",
        default=False,
        help="Disable colored output (also respects NO_COLOR env var).",
    )

    subparsers = parser.add_subparsers(dest="command", required=True)

    # run -----------------------------------------------------------------
    run_parser = subparsers.add_parser(
        "run",
        parents=[common],
        help="Run setup and every toolchain variant, then classify",
        description=(
            "Install native dependencies, run every stage for every toolchain variant, and\n"
            "reduce the outcomes to one Green/Red verdict.\n\n"
            "Exit codes: 0 green, 1 blocking failure, 2 config error, 3 installer failure,\n"
            "4 internal error.\n\n"
            "Examples:\n"
            "  matrixci run matrix.toml\n"
            "  matrixci run matrix.toml --max-parallel 2 --json\n"
        ),
        formatter_class=argparse.RawDescriptionHelpFormatter,
    )
    run_parser.add_argument(
        "--max-parallel",
        type=int,
        default=None,
        help="Override execution.max_parallel_variants.",
    )
    run_parser.add_argument(
        "--max-attempts",
        type=int,
        default=None,
        help="Override retry.max_attempts for the fetch step.",
    )
    run_parser.add_argument(
        "--json",
        action="store_true",
        default=False,
        help="Emit the full run report as JSON instead of the status log.",
    )
    run_parser.set_defaults(handler=_cmd_run)

    # validate ------------------------------------------------------------
    validate_parser = subparsers.add_parser(
        "validate",
        parents=[common],
        help="Validate a config and print the effective config as JSON",
    )
    validate_parser.set_defaults(handler=_cmd_validate)

    return parser


# ---------------------------------------------------------------------------
# Entrypoints
# ---------------------------------------------------------------------------


def run_cli(argv: Sequence[str] | None = None) -> int:
    """Parse argv, route to a command handler, and return process exit code."""

    parser = build_parser()
    namespace = parser.parse_args(list(argv) if argv is not None else None)
    try:
        return int(namespace.handler(namespace))
    except CLIError as exc:
        print(f"error: {exc}", file=sys.stderr)
        return int(exc.exit_code)


# ---------------------------------------------------------------------------
# Command handlers
# ---------------------------------------------------------------------------


def _cmd_run(args: argparse.Namespace) -> int:
    config = _load_effective_config(
        args,
        overrides={
            "execution.max_parallel_variants": getattr(args, "max_parallel", None),
            "retry.max_attempts": getattr(args, "max_attempts", None),
        },
    )
    configuration = _build_configuration(config)

    run_id = f"run-{uuid.uuid4().hex[:12]}"
    observability = config.get("observability")
    run_log = open_run_log(
        observability if isinstance(observability, Mapping) else None,
        run_id=run_id,
        log_to_stderr=_flag(args, "verbose"),
    )
    try:
        run = asyncio.run(run_pipeline(configuration, run_id=run_id))
    finally:
        run_log.close()

    exit_code = exit_code_for(run)

    if _flag(args, "json"):
        payload: dict[str, object] = {
            "command": "run",
            "schema_version": REPORT_SCHEMA_VERSION,
            "log_path": run_log.path.as_posix(),
            "exit_code": exit_code,
            **run.to_dict(),
        }
        _emit_json(payload)
        return exit_code

    renderer = _get_renderer(args)
    render_run(renderer, run)
    renderer.kv("Log", run_log.path.as_posix())
    return exit_code


def _cmd_validate(args: argparse.Namespace) -> int:
    config = _load_effective_config(args, overrides={})
    _build_configuration(config)
    print(dump_effective_config(config))
    return ExitCode.GREEN


# ---------------------------------------------------------------------------
# Rendering
# ---------------------------------------------------------------------------


def exit_code_for(run: PipelineRun) -> ExitCode:
    """Map a sealed run onto the process exit code."""

    if run.install_failed:
        return ExitCode.INSTALL_FAILED
    if run.verdict is Verdict.GREEN:
        return ExitCode.GREEN
    return ExitCode.RED


def render_run(renderer: CLIRenderer, run: PipelineRun) -> None:
    """Render the status log: setup steps, one block per variant, then the verdict."""

    renderer.kv("Run ID", run.run_id)
    for report in run.install_reports:
        _render_install(renderer, report)

    for variant_run in run.variant_runs:
        _render_variant(renderer, variant_run)

    counts = summarize(run)
    detail = ", ".join(f"{status.value}={counts[status]}" for status in VariantStatus)
    if run.install_failed:
        failed = run.failed_install
        step = failed.failed_step if failed is not None else "unknown"
        detail = f"installer failed at {step}; {detail}"
    renderer.verdict(run.verdict is Verdict.GREEN, detail)


def _render_install(renderer: CLIRenderer, report: InstallReport) -> None:
    title = "Setup" if report.variant_id is None else f"Setup [{report.variant_id}]"
    renderer.section(title)
    for step in report.steps:
        label = f"{step.step_name} (attempts={step.attempt_count})"
        if step.succeeded:
            renderer.ok(label)
            if renderer.verbose and step.stdout:
                renderer.block(step.stdout)
            continue
        last = step.attempts[-1] if step.attempts else None
        if last is not None and last.error:
            label = f"{label}: {last.error}"
        elif last is not None:
            label = f"{label}: exit code {last.exit_code}"
        renderer.fail(label)
        _render_output(renderer, step.stdout, step.stderr)


def _render_variant(renderer: CLIRenderer, variant_run: VariantRun) -> None:
    variant = variant_run.variant
    suffix = " (allowed to fail)" if variant.allowed_to_fail else ""
    renderer.section(
        f"== {variant.toolchain} #{variant.index}{suffix}: {variant_run.terminal_status.value}"
    )
    for result in variant_run.stage_results:
        timing = f"({result.duration_ms} ms)"
        if result.status is StageStatus.SKIPPED:
            renderer.skip(result.stage_name)
        elif result.status is StageStatus.SUCCESS:
            renderer.ok(f"{result.stage_name} {timing}")
            if renderer.verbose and result.output:
                renderer.block(result.output)
        else:
            reason = result.error or f"exit code {result.exit_code}"
            label = f"{result.stage_name} {timing}: {reason}"
            if variant.allowed_to_fail:
                renderer.allowed_fail(label)
            else:
                renderer.fail(label)
            _render_output(renderer, result.stdout, result.stderr)
    if variant_run.cancelled:
        renderer.warning("variant cancelled before completing its stages")


def _render_output(renderer: CLIRenderer, stdout: str, stderr: str) -> None:
    combined = "\n".join(part.rstrip("\n") for part in (stdout, stderr) if part)
    if not combined:
        return
    lines = combined.splitlines()
    if not renderer.verbose and len(lines) > _FAILURE_TAIL_LINES:
        omitted = len(lines) - _FAILURE_TAIL_LINES
        lines = [f"... ({omitted} earlier lines omitted)", *lines[-_FAILURE_TAIL_LINES:]]
    renderer.block("\n".join(lines))


# ---------------------------------------------------------------------------
# Helpers
# ---------------------------------------------------------------------------


def _emit_json(payload: Mapping[str, object]) -> None:
    """Emit a JSON payload to stdout with deterministic formatting."""

    print(json.dumps(payload, sort_keys=True, separators=(",", ":"), ensure_ascii=False))


def _get_renderer(args: argparse.Namespace) -> CLIRenderer:
    """Retrieve or create a CLI renderer from the parsed namespace."""

    no_color = _flag(args, "no_color")
    verbose = _flag(args, "verbose")
    return create_renderer(no_color=no_color, verbose=verbose)


def _load_effective_config(
    args: argparse.Namespace,
    *,
    overrides: Mapping[str, object],
) -> dict[str, object]:
    try:
        loaded = load_config(args.config_path, cli_overrides=overrides)
    except (ConfigLoadError, ConfigValidationError) as exc:
        raise CLIError(str(exc)) from exc

    return {key: value for key, value in loaded.items()}


def _build_configuration(config: Mapping[str, object]) -> PipelineConfiguration:
    try:
        return PipelineConfiguration.from_config(config)
    except (KeyError, TypeError, ValueError) as exc:
        raise CLIError(f"invalid config: {exc}") from exc


def _flag(args: argparse.Namespace, name: str) -> bool:
    return bool(getattr(args, name, False))


__all__ = [
    "CLIError",
    "build_parser",
    "exit_code_for",
    "render_run",
    "run_cli",
]
