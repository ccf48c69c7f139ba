"""popforge Pipeline Orchestrator.

Drives one target project through the canonical stages:

Stage 1: SCAFFOLD            -- Materialize the template, run the backend hook.
Stage 2: VALIDATE TOOLCHAIN  -- Probe every required tool, report all gaps at once.
Stage 3: BUILD               -- Compile through the backend.
Stage 4: TEST                -- Run the project's tests through the backend.
Stage 5: DEPLOY              -- Only on request: instantiate / launch locally.

Usage::

    popforge new contract ./flipper
    popforge new parachain ./my-chain --provider parity --deploy
    popforge build ./flipper
    python -m popforge.pipeline templates
"""

from __future__ import annotations

import argparse
import asyncio
import sys
import time
import traceback
from collections.abc import Callable
from pathlib import Path

from pydantic import BaseModel, Field
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from popforge.backends import Backend, OrderViolation, create_backend
from popforge.config import Config
from popforge.models import (
    PipelineResult,
    PipelineStage,
    PipelineStatus,
    StageOutcome,
    StageRecord,
    TargetKind,
)
from popforge.runner import ProcessRunner
from popforge.scaffolder import (
    BUILTIN_TEMPLATES,
    BuiltIn,
    LocalPath,
    Provider,
    RemoteRepository,
    ResolveError,
    TargetKindMismatch,
    TemplateResolver,
    TemplateSource,
    default_template,
    detect_target_kind,
    ensure_target_kind,
    is_provider_correct,
)
from popforge.telemetry import TelemetryReporter
from popforge.toolchain import ToolchainDetector, UnmetToolchainError, print_toolchain_table
from popforge.utils import (
    STAGE_NAMES,
    console,
    format_duration,
    print_error,
    print_stage_header,
    print_success,
    print_summary_table,
    print_warning,
)

BackendFactory = Callable[[TargetKind, ProcessRunner, Config], Backend]


class TargetRequest(BaseModel):
    """What the caller asked the pipeline to do."""

    kind: TargetKind
    project: Path
    source: TemplateSource | None = Field(
        default=None, description="Template to scaffold from; None runs on an existing project"
    )
    variables: dict[str, str] = Field(default_factory=dict)
    overwrite: bool = False
    deploy: bool = False


# ---------------------------------------------------------------------------
# Pipeline Orchestrator
# ---------------------------------------------------------------------------


class Pipeline:
    """Stage state machine for a single target project.

    The backend is chosen once, when the run starts, and the same instance
    handles every stage. A retryable failure is re-attempted up to
    ``config.retry.retry_budget`` times after a fixed delay; any other failure
    aborts the run and no later stage is attempted.

    Attributes:
        config: Global configuration.
        backend: Backend selected for the current run.
        result: Result of the current (or last) run, also kept after an interrupt.
    """

    def __init__(
        self,
        config: Config | None = None,
        runner: ProcessRunner | None = None,
        resolver: TemplateResolver | None = None,
        detector: ToolchainDetector | None = None,
        telemetry: TelemetryReporter | None = None,
        backend_factory: BackendFactory = create_backend,
    ) -> None:
        self.config = config or Config()
        self.runner = runner or ProcessRunner(
            output_cap_bytes=self.config.runner.output_cap_bytes,
            kill_grace_seconds=self.config.runner.kill_grace_seconds,
        )
        self.resolver = resolver or TemplateResolver(
            self.runner,
            fetch_timeout=self.config.resolver.fetch_timeout,
            ssh_fallback=self.config.resolver.ssh_fallback,
            pin_latest_release=self.config.resolver.pin_latest_release,
        )
        self.detector = detector or ToolchainDetector(
            self.runner, probe_timeout=self.config.toolchain.probe_timeout
        )
        self.telemetry = telemetry or TelemetryReporter(
            endpoint=self.config.telemetry.endpoint,
            timeout=self.config.telemetry.timeout,
            enabled=self.config.telemetry.enabled,
        )
        self.backend_factory = backend_factory
        self.backend: Backend | None = None
        self.result: PipelineResult | None = None
        self._in_flight: tuple[PipelineStage, int, float] | None = None

    # ------------------------------------------------------------------
    # Run
    # ------------------------------------------------------------------

    async def run(self, request: TargetRequest) -> PipelineResult:
        """Execute every stage for *request* and return the result.

        Raises:
            asyncio.CancelledError: On user interrupt, after recording the
                interrupted stage and marking the result aborted.
        """
        pipeline_start = time.monotonic()
        stages = PipelineStage.canonical_order(include_deploy=request.deploy)

        console.print(
            Panel(
                f"[bold bright_cyan]popforge pipeline[/bold bright_cyan]\n"
                f"Target  : {request.kind.value}\n"
                f"Project : {escape(str(request.project))}\n"
                f"Stages  : {', '.join(stage.value for stage in stages)}",
                title="[bold]Pipeline Start[/bold]",
                border_style="bright_cyan",
            )
        )

        self.backend = self.backend_factory(request.kind, self.runner, self.config)
        self.result = PipelineResult(
            target_kind=request.kind,
            project_path=str(request.project),
            backend=self.backend.name,
        )

        status = PipelineStatus.COMPLETED
        try:
            for stage in stages:
                record = await self._run_stage(stage, request)
                self.result.stages.append(record)
                if record.outcome.is_failed:
                    status = PipelineStatus.ABORTED
                    break
        except asyncio.CancelledError:
            self._record_interrupt()
            self._finish(PipelineStatus.ABORTED, pipeline_start)
            raise

        return self._finish(status, pipeline_start)

    def _finish(self, status: PipelineStatus, pipeline_start: float) -> PipelineResult:
        assert self.result is not None
        self.result.status = status
        self.result.duration_seconds = time.monotonic() - pipeline_start
        self._print_final_summary()
        self._report_telemetry()
        return self.result

    # ------------------------------------------------------------------
    # Stage execution with retry
    # ------------------------------------------------------------------

    async def _run_stage(self, stage: PipelineStage, request: TargetRequest) -> StageRecord:
        budget = self.config.retry.retry_budget
        stage_start = time.monotonic()
        attempt = 0

        while True:
            attempt += 1
            self._in_flight = (stage, attempt, stage_start)
            print_stage_header(stage, attempt)
            outcome = await self._attempt(stage, request)

            if outcome.is_failed and outcome.retryable:
                if attempt <= budget:
                    print_warning(
                        f"  {STAGE_NAMES[stage]} failed with a transient error; "
                        f"retrying in {self.config.retry.retry_delay:g}s"
                    )
                    await asyncio.sleep(self.config.retry.retry_delay)
                    continue
                outcome = StageOutcome.failed(
                    f"{outcome.error}\n(retry budget exhausted after {attempt} attempt(s))",
                    retryable=False,
                )
            break

        self._in_flight = None
        elapsed = time.monotonic() - stage_start
        self._print_outcome(stage, outcome, elapsed)
        return StageRecord(stage=stage, outcome=outcome, attempts=attempt, duration_seconds=elapsed)

    async def _attempt(self, stage: PipelineStage, request: TargetRequest) -> StageOutcome:
        handlers = {
            PipelineStage.SCAFFOLD: self.stage_scaffold,
            PipelineStage.VALIDATE_TOOLCHAIN: self.stage_validate_toolchain,
            PipelineStage.BUILD: self.stage_build,
            PipelineStage.TEST: self.stage_test,
            PipelineStage.DEPLOY: self.stage_deploy,
        }
        try:
            return await handlers[stage](request)
        except OrderViolation as exc:
            return StageOutcome.failed(str(exc))
        except Exception as exc:
            console.print(f"[dim]{escape(traceback.format_exc())}[/dim]")
            return StageOutcome.failed(f"{type(exc).__name__}: {exc}")

    def _record_interrupt(self) -> None:
        if self._in_flight is None or self.result is None:
            return
        stage, attempt, started = self._in_flight
        self.result.stages.append(
            StageRecord(
                stage=stage,
                outcome=StageOutcome.failed("interrupted by user"),
                attempts=attempt,
                duration_seconds=time.monotonic() - started,
            )
        )
        self._in_flight = None

    # ------------------------------------------------------------------
    # Stages
    # ------------------------------------------------------------------

    async def stage_scaffold(self, request: TargetRequest) -> StageOutcome:
        """Materialize the template and hand the project to the backend hook."""
        project = request.project
        if request.source is None:
            if not project.is_dir():
                return StageOutcome.failed(f"Project directory not found: {project}")
            try:
                ensure_target_kind(project, request.kind)
            except TargetKindMismatch as exc:
                return StageOutcome.failed(str(exc))
            return StageOutcome.skipped(f"using existing project at {project}")

        try:
            materialized = await self.resolver.resolve(
                request.source,
                project,
                variables=request.variables,
                overwrite=request.overwrite,
                kind=request.kind,
            )
        except ResolveError as exc:
            return StageOutcome.failed(str(exc))

        assert self.backend is not None
        hook = await self.backend.scaffold_hook(project, materialized)
        if not hook.is_success:
            return hook
        return StageOutcome.success(f"{hook.summary} (template: {materialized.template})")

    async def stage_validate_toolchain(self, request: TargetRequest) -> StageOutcome:
        """Detect the toolchain and fail once with every deficiency listed."""
        assert self.backend is not None and self.result is not None
        requirements = self.backend.requirements(include_deploy=request.deploy)
        profile = await self.detector.detect(requirements)
        self.result.toolchain = profile.as_versions()

        deficiencies = profile.deficiencies(requirements)
        print_toolchain_table(profile, requirements, deficiencies)
        if deficiencies:
            return StageOutcome.failed(str(UnmetToolchainError(deficiencies)))
        return StageOutcome.success(f"{len(requirements)} required tool(s) found")

    async def stage_build(self, request: TargetRequest) -> StageOutcome:
        assert self.backend is not None
        return await self.backend.build(request.project)

    async def stage_test(self, request: TargetRequest) -> StageOutcome:
        assert self.backend is not None
        return await self.backend.test(request.project)

    async def stage_deploy(self, request: TargetRequest) -> StageOutcome:
        assert self.backend is not None
        return await self.backend.deploy(request.project)

    # ------------------------------------------------------------------
    # Reporting
    # ------------------------------------------------------------------

    def _report_telemetry(self) -> None:
        assert self.result is not None
        outcome = self.result.status.value
        failure = self.result.first_failure()
        if failure is not None:
            outcome = f"{outcome}:{failure.stage.value}"
        self.telemetry.report(self.telemetry.event("pipeline.run", self.result.target_kind, outcome))

    def _print_outcome(self, stage: PipelineStage, outcome: StageOutcome, elapsed: float) -> None:
        name = STAGE_NAMES[stage]
        if outcome.is_success:
            print_success(f"{name} completed in {format_duration(elapsed)}")
        elif outcome.is_skipped:
            print_warning(f"{name} skipped: {escape(outcome.reason)}")
        else:
            print_error(f"{name} FAILED after {format_duration(elapsed)}")
            console.print(escape(outcome.error))

    def _print_final_summary(self) -> None:
        """Print every attempted stage and the overall status."""
        assert self.result is not None
        result = self.result

        table = Table(title="Stages", show_header=True, header_style="bold cyan")
        table.add_column("Stage", no_wrap=True)
        table.add_column("Outcome")
        table.add_column("Attempts", justify="right")
        table.add_column("Duration", justify="right")
        table.add_column("Details")
        styles = {"success": "green", "failed": "red", "skipped": "yellow"}
        for record in result.stages:
            status = record.outcome.status.value
            detail = record.outcome.message().strip().splitlines()
            table.add_row(
                STAGE_NAMES[record.stage],
                f"[{styles[status]}]{status}[/{styles[status]}]",
                str(record.attempts),
                format_duration(record.duration_seconds),
                escape(detail[0] if detail else ""),
            )
        console.print()
        console.print(table)

        if result.success and self.backend is not None:
            info = self.backend.target_info()
            print_summary_table(
                {
                    "Artifacts": info.artifact_dir,
                    "Rebuild": info.build_command,
                    "Test": info.test_command,
                    "Deploy": info.deploy_command,
                },
                title=info.description,
            )

        if result.success:
            border_style = "bold green"
            status_text = "[bold green]PIPELINE COMPLETED[/bold green]"
        else:
            border_style = "bold red"
            status_text = "[bold red]PIPELINE ABORTED[/bold red]"

        detail_lines = [
            status_text,
            "",
            f"Target   : {result.target_kind.value} ({result.backend} backend)",
            f"Project  : {escape(result.project_path)}",
            f"Duration : {format_duration(result.duration_seconds)}",
        ]
        if result.total_retries:
            detail_lines.append(f"Retries  : {result.total_retries}")

        console.print(
            Panel("\n".join(detail_lines), title="[bold]Pipeline Complete[/bold]", border_style=border_style)
        )


# ---------------------------------------------------------------------------
# CLI helpers
# ---------------------------------------------------------------------------


def parse_variables(pairs: list[str]) -> dict[str, str]:
    """Parse ``KEY=VALUE`` strings into a mapping."""
    variables: dict[str, str] = {}
    for pair in pairs:
        key, sep, value = pair.partition("=")
        key = key.strip()
        if not sep or not key:
            raise ValueError(f"Invalid variable '{pair}' (expected KEY=VALUE)")
        variables[key] = value
    return variables


def source_from_args(args: argparse.Namespace, kind: TargetKind) -> TemplateSource:
    """Build the template source selected on the command line."""
    if args.path:
        return LocalPath(path=Path(args.path))
    if args.repo:
        return RemoteRepository(url=args.repo, reference=args.ref)

    provider = Provider(args.provider) if args.provider else None
    if args.template:
        entry = BUILTIN_TEMPLATES.get(args.template)
        if entry is not None and provider is not None and not is_provider_correct(entry, provider):
            raise ValueError(f"Template '{args.template}' is not provided by {provider.value}")
        return BuiltIn(name=args.template)
    return BuiltIn(name=default_template(kind, provider).name)


def load_config(args: argparse.Namespace) -> Config:
    base = Config.load(Path(args.config)) if args.config else None
    config = Config.from_env(base)
    if args.no_telemetry:
        config.telemetry.enabled = False
    if args.retry_budget is not None:
        config.retry.retry_budget = args.retry_budget
    return config


def print_templates() -> None:
    table = Table(title="Built-in templates", show_header=True, header_style="bold cyan")
    table.add_column("Name", no_wrap=True)
    table.add_column("Kind")
    table.add_column("Provider")
    table.add_column("Description")
    for entry in BUILTIN_TEMPLATES.values():
        table.add_row(entry.name, entry.kind.value, entry.provider.value, entry.description)
    console.print(table)


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        prog="popforge",
        description="popforge -- scaffold, build, test and deploy contracts and parachains",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog=(
            "Examples:\n"
            "  popforge new contract ./flipper\n"
            "  popforge new parachain ./chain --provider openzeppelin\n"
            "  popforge new parachain ./chain --repo https://github.com/org/tpl --ref v1.0.0\n"
            "  popforge build ./flipper --deploy\n"
        ),
    )
    common = argparse.ArgumentParser(add_help=False)
    common.add_argument("--deploy", action="store_true", help="Run the deploy stage after tests pass")
    common.add_argument("--no-telemetry", action="store_true", help="Do not send anonymous usage events")
    common.add_argument("--config", default=None, help="JSON configuration file")
    common.add_argument("--retry-budget", type=int, default=None, help="Extra attempts for transient failures")

    sub = parser.add_subparsers(dest="command", required=True)

    new = sub.add_parser("new", parents=[common], help="Scaffold a new project and run the pipeline")
    new.add_argument("kind", choices=[k.value for k in TargetKind], help="Target kind")
    new.add_argument("destination", help="Project directory to create")
    origin = new.add_mutually_exclusive_group()
    origin.add_argument("--template", "-t", default=None, help="Built-in template name")
    origin.add_argument("--path", default=None, help="Local template directory")
    origin.add_argument("--repo", default=None, help="Remote git repository URL")
    new.add_argument("--ref", default=None, help="Branch, tag or commit of --repo")
    new.add_argument("--provider", choices=[p.value for p in Provider], default=None)
    new.add_argument("--var", "-v", action="append", default=[], metavar="KEY=VALUE", help="Template variable")
    new.add_argument("--overwrite", action="store_true", help="Replace the contents of a non-empty destination")

    build = sub.add_parser("build", parents=[common], help="Build and test an existing project")
    build.add_argument("project", nargs="?", default=".", help="Project directory (default: .)")
    build.add_argument("--kind", choices=[k.value for k in TargetKind], default=None)

    sub.add_parser("templates", help="List built-in templates")
    return parser


def _request_from_args(args: argparse.Namespace) -> TargetRequest:
    if args.command == "new":
        kind = TargetKind(args.kind)
        return TargetRequest(
            kind=kind,
            project=Path(args.destination),
            source=source_from_args(args, kind),
            variables=parse_variables(args.var),
            overwrite=args.overwrite,
            deploy=args.deploy,
        )

    project = Path(args.project)
    kind = TargetKind(args.kind) if args.kind else detect_target_kind(project)
    if kind is None:
        raise ValueError(f"Cannot tell whether {project} is a contract or a parachain; pass --kind")
    return TargetRequest(kind=kind, project=project, deploy=args.deploy)


# ---------------------------------------------------------------------------
# CLI entry point
# ---------------------------------------------------------------------------


async def run_pipeline(pipeline: Pipeline, request: TargetRequest) -> PipelineResult:
    """Run *pipeline*, then let pending telemetry finish within its timeout."""
    try:
        return await pipeline.run(request)
    finally:
        await pipeline.telemetry.flush()


def main(argv: list[str] | None = None) -> None:
    """CLI entry point for ``popforge`` and ``python -m popforge.pipeline``."""
    args = _build_parser().parse_args(argv)

    if args.command == "templates":
        print_templates()
        return

    try:
        config = load_config(args)
        request = _request_from_args(args)
    except (ValueError, OSError) as exc:
        console.print(f"[bold red]Error:[/bold red] {escape(str(exc))}")
        sys.exit(2)

    pipeline = Pipeline(config)
    try:
        result = asyncio.run(run_pipeline(pipeline, request))
    except KeyboardInterrupt:
        print_error("Interrupted; the project directory was left as-is.")
        sys.exit(130)

    if result.success:
        console.print("[bold green]Pipeline completed successfully![/bold green]")
        return

    failure = result.first_failure()
    if failure is not None:
        first_line = failure.outcome.error.strip().splitlines()[0] if failure.outcome.error.strip() else ""
        print_error(f"{STAGE_NAMES[failure.stage]} failed: {escape(first_line)}")
    sys.exit(1)


if __name__ == "__main__":
    main()
