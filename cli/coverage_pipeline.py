import enum
import tempfile
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Sequence

import click

import cargo_workspace_helpers
import constants
import hermetic
from coverage_config import CoverageConfig
from stage_tracking import StageRecord, StageTracker


class PipelineState(enum.Enum):
    START = "start"
    DIRECTORY_RESOLVED = "directory-resolved"
    ARTIFACTS_CLEANED = "artifacts-cleaned"
    TESTS_RUN = "tests-run"
    REPORT_AGGREGATED = "report-aggregated"
    REPORT_CORRECTED = "report-corrected"
    FAILED = "failed"


@dataclass
class StageResult:
    stage: str
    returncode: int
    value: Any = None
    # Set when covrun itself detected the failure, rather than a tool.
    message: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass
class PipelineOutcome:
    state: PipelineState
    returncode: int
    # Last state entered successfully; equals `state` unless the run failed.
    reached: PipelineState = PipelineState.START
    final_report: Path | None = None
    failed_stage: str | None = None
    stages: list[StageRecord] = field(default_factory=list)
    elapsed_ms: int = 0


def _failure(stage: str, message: str, returncode: int = 1) -> StageResult:
    return StageResult(stage, returncode, message=message)


def report_failure(result: StageResult):
    """Prints the single `ERROR:` line covrun adds for a failed stage."""
    if result.message:
        click.echo(f"ERROR: {result.stage} failed: {result.message}", err=True)
    else:
        click.echo(f"ERROR: {result.stage} failed (exit status {result.returncode})", err=True)


def resolve_output_directory(cfg: CoverageConfig, runner: hermetic.Runner) -> StageResult:
    stage = "resolve_output_directory"
    cp = runner(
        hermetic.Invocation(
            program=cfg.tools["cargo"],
            args=cargo_workspace_helpers.metadata_args(),
            cwd=cfg.project_root,
            capture_output=True,
        )
    )
    if cp.returncode != 0:
        # We captured cargo's output in order to parse it, so relay its complaint.
        if cp.stderr:
            click.echo(cp.stderr, err=True, nl=False)
        return StageResult(stage, cp.returncode)

    try:
        target_dir = cargo_workspace_helpers.target_directory_from_metadata(cp.stdout)
    except ValueError as e:
        return _failure(stage, str(e))
    return StageResult(stage, 0, target_dir)


def remove_artifact_files(target_dir: Path, extension: str = constants.ARTIFACT_EXTENSION) -> int:
    """Deletes every `*.<extension>` file below `target_dir/debug`.

    Returns the number of files removed. A missing profile directory
    simply means there is nothing to remove."""
    profile_dir = target_dir / constants.ARTIFACT_PROFILE_SUBDIR
    if not profile_dir.is_dir():
        return 0

    stale = [p for p in profile_dir.rglob(f"*.{extension}") if p.is_file()]
    for path in stale:
        path.unlink()
    return len(stale)


def clean_stale_artifacts(cfg: CoverageConfig, target_dir: Path) -> StageResult:
    stage = "clean_stale_artifacts"
    try:
        removed = remove_artifact_files(target_dir, cfg.artifact_extension)
    except OSError as e:
        return _failure(stage, f"could not remove stale .{cfg.artifact_extension} files: {e}")
    click.echo(
        f"Removed {removed} stale .{cfg.artifact_extension} file(s) from "
        f"{target_dir / constants.ARTIFACT_PROFILE_SUBDIR}"
    )
    return StageResult(stage, 0, removed)


def cargo_test_invocation(
    cfg: CoverageConfig, scope: str | None = None, extra_args: Sequence[str] = ()
) -> hermetic.Invocation:
    """Builds the instrumented `cargo test` call.

    Scoped runs forward `extra_args` untouched; whole-project runs apply
    the configured features and exclusions and pin the test thread count."""
    if scope is not None:
        args = [*cfg.toolchain_args(), "test", *extra_args]
        cwd = cfg.project_root / scope
    else:
        if extra_args:
            raise ValueError("extra test arguments are only accepted for a scoped run")
        args = [*cfg.toolchain_args(), "test", "--workspace", "--no-fail-fast"]
        if cfg.features:
            args += ["--features", " ".join(cfg.features)]
        for pkg in cfg.exclude:
            args += ["--exclude", pkg]
        args += ["--", f"--test-threads={cfg.test_threads}"]
        cwd = cfg.project_root

    return hermetic.Invocation(
        program=cfg.tools["cargo"],
        args=args,
        cwd=cwd,
        env_ext=cfg.instrumentation_env(),
        env_remove=list(constants.INSTRUMENTATION_ENV_REMOVE),
    )


def run_instrumented_tests(
    cfg: CoverageConfig,
    scope: str | None,
    extra_args: Sequence[str],
    runner: hermetic.Runner,
) -> StageResult:
    stage = "run_instrumented_tests"
    if scope is not None and not (cfg.project_root / scope).is_dir():
        return _failure(stage, f"scope {scope!r} is not a directory under {cfg.project_root}")

    if scope is None and cfg.exclude:
        try:
            unknown = cargo_workspace_helpers.unknown_packages(cfg.project_root, cfg.exclude)
        except (OSError, tomllib.TOMLDecodeError) as e:
            # cargo also finds manifests in parent directories, so the
            # project root need not hold one of its own.
            click.echo(f"WARNING: could not check excluded packages: {e}", err=True)
            unknown = []
        for pkg in unknown:
            click.echo(f"WARNING: excluded package {pkg!r} is not a workspace member", err=True)

    cp = runner(cargo_test_invocation(cfg, scope, extra_args))
    return StageResult(stage, cp.returncode)


def aggregate_invocation(
    cfg: CoverageConfig, target_dir: Path, temp_report: Path
) -> hermetic.Invocation:
    # fmt: off
    args = [
        str(target_dir),
        "-s", str(cfg.project_root),
        "-t", "lcov",
        "--llvm",
        "--branch",
        "--ignore-not-existing",
        "--ignore", "/*",
        "-o", str(temp_report),
    ]
    # fmt: on
    return hermetic.Invocation(program=cfg.tools["grcov"], args=args, cwd=cfg.project_root)


def aggregate_coverage(
    cfg: CoverageConfig, target_dir: Path, handoff_dir: Path, runner: hermetic.Runner
) -> StageResult:
    temp_report = handoff_dir / constants.REPORT_FILENAME
    cp = runner(aggregate_invocation(cfg, target_dir, temp_report))
    return StageResult("aggregate_coverage", cp.returncode, temp_report)


def correct_invocation(
    cfg: CoverageConfig, temp_report: Path, final_report: Path
) -> hermetic.Invocation:
    return hermetic.Invocation(
        program=cfg.tools["covfix"],
        args=["-o", str(final_report), str(temp_report)],
        cwd=cfg.project_root,
    )


def correct_report(cfg: CoverageConfig, temp_report: Path, runner: hermetic.Runner) -> StageResult:
    stage = "correct_report"
    final_report = cfg.final_report_path()
    if final_report.resolve() == temp_report.resolve():
        return _failure(stage, f"intermediate and final report are both {final_report}")

    # A report left over from an earlier run must not pass for this run's.
    final_report.unlink(missing_ok=True)
    cp = runner(correct_invocation(cfg, temp_report, final_report))
    if cp.returncode != 0:
        return StageResult(stage, cp.returncode)
    if not final_report.is_file():
        return _failure(stage, f"{cfg.tools['covfix']} exited cleanly but wrote no {final_report}")
    return StageResult(stage, 0, final_report)


def run_pipeline(
    cfg: CoverageConfig,
    scope: str | None = None,
    extra_args: Sequence[str] = (),
    runner: hermetic.Runner | None = None,
    handoff_dir: Path | None = None,
) -> PipelineOutcome:
    """Runs the five coverage stages in order, stopping at the first failure.

    The intermediate report lives in `handoff_dir`, or in a temporary
    directory removed when the run ends."""
    if runner is None:
        runner = hermetic.run_invocation
    tracker = StageTracker()
    reached = PipelineState.START

    def step(next_state: PipelineState, fn, *args) -> StageResult:
        nonlocal reached
        with tracker.tracking(fn.__name__):
            result = fn(*args)
            tracker.set_exit_code(result.returncode)
        if result.ok:
            reached = next_state
        return result

    def failed(result: StageResult) -> PipelineOutcome:
        report_failure(result)
        return PipelineOutcome(
            state=PipelineState.FAILED,
            returncode=result.returncode,
            reached=reached,
            failed_stage=result.stage,
            stages=tracker.finalize(),
            elapsed_ms=tracker.elapsed_ms(),
        )

    with tempfile.TemporaryDirectory(prefix="covrun-") as tmp:
        handoff = handoff_dir if handoff_dir is not None else Path(tmp)

        resolved = step(PipelineState.DIRECTORY_RESOLVED, resolve_output_directory, cfg, runner)
        if not resolved.ok:
            return failed(resolved)
        target_dir: Path = resolved.value

        cleaned = step(PipelineState.ARTIFACTS_CLEANED, clean_stale_artifacts, cfg, target_dir)
        if not cleaned.ok:
            return failed(cleaned)

        tested = step(
            PipelineState.TESTS_RUN, run_instrumented_tests, cfg, scope, extra_args, runner
        )
        if not tested.ok:
            return failed(tested)

        aggregated = step(
            PipelineState.REPORT_AGGREGATED, aggregate_coverage, cfg, target_dir, handoff, runner
        )
        if not aggregated.ok:
            return failed(aggregated)

        corrected = step(
            PipelineState.REPORT_CORRECTED, correct_report, cfg, aggregated.value, runner
        )
        if not corrected.ok:
            return failed(corrected)

    return PipelineOutcome(
        state=reached,
        returncode=0,
        reached=reached,
        final_report=corrected.value,
        stages=tracker.finalize(),
        elapsed_ms=tracker.elapsed_ms(),
    )
