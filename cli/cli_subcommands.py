from pathlib import Path
from typing import Sequence

import click

import coverage_pipeline
import hermetic
import lcov_summary
import repo_root
from coverage_config import CoverageConfig, load_config
from stage_tracking import RunRecord, write_run_record


def resolve_project_root(project_root: Path | None) -> Path:
    if project_root is not None:
        return project_root.resolve()
    return repo_root.find_repo_root_dir_Path()


def echo_summary(report: Path) -> bool:
    """Returns True if the report could be summarized, False otherwise"""
    try:
        totals = lcov_summary.parse_lcov(report)
    except (OSError, ValueError) as e:
        click.echo(f"WARNING: could not summarize {report}: {e}", err=True)
        return False
    click.echo(lcov_summary.format_summary(totals))
    return True


def echo_stage_timings(outcome: coverage_pipeline.PipelineOutcome):
    for rec in outcome.stages:
        status = "ok" if rec.exit_code == 0 else f"exit {rec.exit_code}"
        click.echo(f"  {rec.name:<26} {rec.elapsed_ms / 1000:8.2f} s  {status}")
    click.echo(f"  {'total':<26} {outcome.elapsed_ms / 1000:8.2f} s")


def do_run(
    cfg: CoverageConfig,
    scope: str | None,
    extra_args: Sequence[str],
    record_path: Path | None = None,
    runner: hermetic.Runner | None = None,
) -> int:
    """Runs the coverage pipeline and returns the exit status to propagate."""
    outcome = coverage_pipeline.run_pipeline(cfg, scope, extra_args, runner=runner)

    click.echo("Stage timings:")
    echo_stage_timings(outcome)

    if record_path is not None:
        write_run_record(
            RunRecord(
                project_root=str(cfg.project_root),
                scope=scope,
                extra_args=list(extra_args),
                final_state=outcome.state.value,
                exit_code=outcome.returncode,
                final_report=str(outcome.final_report) if outcome.final_report else None,
                elapsed_ms=outcome.elapsed_ms,
                stages=outcome.stages,
            ),
            record_path,
        )

    if outcome.final_report is not None:
        click.echo(f"Wrote {outcome.final_report}")
        if cfg.summary:
            echo_summary(outcome.final_report)
    return outcome.returncode


def do_clean(cfg: CoverageConfig, runner: hermetic.Runner | None = None) -> int:
    runner = runner or hermetic.run_invocation
    result = coverage_pipeline.resolve_output_directory(cfg, runner)
    if result.ok:
        result = coverage_pipeline.clean_stale_artifacts(cfg, result.value)
    if not result.ok:
        coverage_pipeline.report_failure(result)
    return result.returncode


def do_target_dir(cfg: CoverageConfig, runner: hermetic.Runner | None = None) -> int:
    runner = runner or hermetic.run_invocation
    resolved = coverage_pipeline.resolve_output_directory(cfg, runner)
    if resolved.ok:
        click.echo(str(resolved.value))
    else:
        coverage_pipeline.report_failure(resolved)
    return resolved.returncode


def load_project_config(project_root: Path | None) -> CoverageConfig:
    return load_config(resolve_project_root(project_root))
