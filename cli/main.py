import os
import sys
from pathlib import Path

import click

import cli_subcommands
from coverage_config import ConfigError, CoverageConfig


def project_root_option(fn):
    return click.option(
        "--project-root",
        type=click.Path(exists=True, file_okay=False, dir_okay=True, path_type=Path),
        help="Cargo project to measure (default: discovered from the current directory).",
    )(fn)


def load_or_exit(project_root: Path | None) -> CoverageConfig:
    try:
        return cli_subcommands.load_project_config(project_root)
    except FileNotFoundError as e:
        click.echo(f"ERROR: {e}", err=True)
        sys.exit(1)
    except ConfigError as e:
        click.echo(f"ERROR: invalid configuration: {e}", err=True)
        sys.exit(2)


@click.group()
def cli():
    pass


# Options must precede SCOPE; everything after SCOPE belongs to `cargo test`.
# With interspersed args disabled, Click stops option parsing at the first
# positional and hands the remainder over untouched, `--` included.
@cli.command(
    context_settings={"ignore_unknown_options": True, "allow_interspersed_args": False}
)
@project_root_option
@click.option("--quiet", is_flag=True, help="Do not echo the commands being run.")
@click.option(
    "--record",
    type=click.Path(dir_okay=False, path_type=Path),
    help="Write a JSON record of the run (stages, timings, exit codes) to this file.",
)
@click.argument("scope", required=False)
@click.argument("extra_args", nargs=-1, type=click.UNPROCESSED)
def run(project_root, quiet, record, scope, extra_args):
    """Run the tests with coverage instrumentation and write an lcov report.

    Without SCOPE the whole workspace is tested. With SCOPE, only the crate in
    that subdirectory is tested and EXTRA_ARGS are passed to `cargo test` as-is.
    """
    if scope is not None and scope.startswith("-"):
        raise click.UsageError(f"No such option: {scope}")

    if quiet:
        os.environ["COVRUN_SHOW_CMDS"] = "0"

    cfg = load_or_exit(project_root)
    sys.exit(cli_subcommands.do_run(cfg, scope, list(extra_args), record_path=record))


@cli.command()
@project_root_option
def clean(project_root):
    """Delete stale coverage data files from the build output directory."""
    cfg = load_or_exit(project_root)
    sys.exit(cli_subcommands.do_clean(cfg))


@cli.command()
@project_root_option
def target_dir(project_root):
    """Print the build output directory cargo reports."""
    os.environ["COVRUN_SHOW_CMDS"] = "0"
    cfg = load_or_exit(project_root)
    sys.exit(cli_subcommands.do_target_dir(cfg))


@cli.command()
@project_root_option
@click.argument(
    "report", required=False, type=click.Path(exists=True, dir_okay=False, path_type=Path)
)
def summary(project_root, report):
    """Summarize an lcov report (default: the project's coverage report)."""
    if report is None:
        cfg = load_or_exit(project_root)
        report = cfg.final_report_path()
        if not report.is_file():
            click.echo(f"ERROR: {report} does not exist; run `covrun run` first", err=True)
            sys.exit(1)
    if not cli_subcommands.echo_summary(report):
        sys.exit(1)


if __name__ == "__main__":
    cli()
