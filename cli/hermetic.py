import subprocess
import shlex
import os
from dataclasses import dataclass, field
from pathlib import Path
from typing import Callable, Sequence, TypeAlias

import click

import constants


@dataclass
class Invocation:
    """One call of an external tool.

    Notes:
    - `env_ext` entries override the inherited environment; names listed in
      `env_remove` are dropped from it afterwards.
    - With `capture_output`, stdout/stderr are returned as text instead of
      being passed through to the terminal.
    """

    program: str
    args: list[str]
    cwd: Path
    env_ext: dict[str, str] = field(default_factory=dict)
    env_remove: list[str] = field(default_factory=list)
    capture_output: bool = False

    def argv(self) -> list[str]:
        return [self.program, *self.args]


Runner: TypeAlias = Callable[[Invocation], subprocess.CompletedProcess]

RunSpec: TypeAlias = str | Sequence[str | os.PathLike[str]]


def mk_env_for(env_ext=None, env_remove=None, env=None) -> dict[str, str]:
    if env is None:
        env = os.environ.copy()
    else:
        env = dict(env)

    if env_ext is not None:
        env = {**env, **env_ext}

    for name in env_remove or []:
        env.pop(name, None)

    return env


def shellize(cmd: RunSpec) -> str:
    if isinstance(cmd, str):
        return cmd
    else:
        return " ".join(shlex.quote(str(x)) for x in cmd)


def show_cmds() -> bool:
    return os.environ.get("COVRUN_SHOW_CMDS", "1") != "0"


def common_helper_for_run(cmd: RunSpec, cmd_cwd: Path | str | None = None, env_ext=None):
    if not show_cmds():
        return

    prefix = "".join(f"{k}={shlex.quote(v)} " for k, v in (env_ext or {}).items())

    def print_cmd_only():
        click.echo(f": {prefix}{shellize(cmd)}")

    def print_cmd_within(cdpath: Path):
        click.echo(f": ( cd {cdpath.as_posix()} ; {prefix}{shellize(cmd)} )")

    if cmd_cwd is None:
        print_cmd_only()
        return

    invoked_from = Path.cwd().resolve()
    cmd_cwd = Path(cmd_cwd).resolve()
    if cmd_cwd == invoked_from:
        print_cmd_only()
    else:
        try:
            cdpath = cmd_cwd.relative_to(invoked_from)
            print_cmd_within(cdpath)
        except ValueError:
            print_cmd_within(cmd_cwd)


def run_invocation(inv: Invocation) -> subprocess.CompletedProcess:
    """Runs `inv` to completion without raising on a non-zero exit.

    Exit statuses follow shell conventions, so that callers can propagate
    them unchanged:
    - 127 when the program cannot be found,
    - 126 when it exists but cannot be executed,
    - 128 + N when it was killed by signal N.
    """
    common_helper_for_run(inv.argv(), inv.cwd, inv.env_ext)

    try:
        cp = subprocess.run(
            inv.argv(),
            cwd=inv.cwd,
            check=False,
            env=mk_env_for(inv.env_ext, inv.env_remove),
            capture_output=inv.capture_output,
            text=True if inv.capture_output else None,
        )
    except FileNotFoundError as e:
        click.echo(f"{inv.program}: {e.strerror}", err=True)
        return subprocess.CompletedProcess(
            inv.argv(), constants.EXIT_TOOL_MISSING, stdout="", stderr=str(e)
        )
    except PermissionError as e:
        click.echo(f"{inv.program}: {e.strerror}", err=True)
        return subprocess.CompletedProcess(
            inv.argv(), constants.EXIT_TOOL_NOT_EXECUTABLE, stdout="", stderr=str(e)
        )

    if cp.returncode < 0:
        cp.returncode = constants.EXIT_SIGNAL_BASE - cp.returncode
    return cp
