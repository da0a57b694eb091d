import tomllib
from pathlib import Path


def _declares_workspace(cargo_toml: Path) -> bool:
    with cargo_toml.open("rb") as f:
        return "workspace" in tomllib.load(f)


def find_repo_root_dir_Path(start: Path | None = None) -> Path:
    """Returns the root of the Cargo project containing `start` (default: cwd).

    The outermost directory whose Cargo.toml declares a `[workspace]` wins;
    without one, the nearest directory holding a Cargo.toml is used.
    """
    here = (start or Path.cwd()).resolve()

    nearest: Path | None = None
    workspace_root: Path | None = None
    for candidate in [here, *here.parents]:
        cargo_toml = candidate / "Cargo.toml"
        if not cargo_toml.is_file():
            continue
        if nearest is None:
            nearest = candidate
        if _declares_workspace(cargo_toml):
            workspace_root = candidate

    root = workspace_root or nearest
    if root is None:
        raise FileNotFoundError(f"No Cargo.toml found in {here} or any parent directory")
    return root
