import json
import tomllib
from pathlib import Path


def metadata_args() -> list[str]:
    return ["metadata", "--no-deps", "--format-version", "1"]


def target_directory_from_metadata(metadata_json: str) -> Path:
    """Extracts `target_directory` from `cargo metadata` JSON output.

    Raises ValueError if the output is not JSON or lacks the field."""
    try:
        metadata = json.loads(metadata_json)
    except json.JSONDecodeError as e:
        raise ValueError(f"cargo metadata produced invalid JSON: {e}") from e

    target_dir = metadata.get("target_directory") if isinstance(metadata, dict) else None
    if not isinstance(target_dir, str) or not target_dir:
        raise ValueError("cargo metadata output has no target_directory")
    return Path(target_dir)


def packages_for_cargo_workspace(
    workspace_root: Path,
) -> list[str]:
    cargo_toml_path = workspace_root / "Cargo.toml"
    with cargo_toml_path.open("rb") as f:
        ct = tomllib.load(f)

    if "workspace" not in ct:
        if "package" not in ct:
            return []
        return [ct["package"]["name"]]

    package_names = []
    if "package" in ct:
        package_names.append(ct["package"]["name"])

    for member in ct["workspace"].get("members", []):
        # Cargo allows globs like "crates/*" in members.
        for member_dir in sorted(workspace_root.glob(member)):
            member_toml = member_dir / "Cargo.toml"
            if not member_toml.is_file():
                continue
            with member_toml.open("rb") as f:
                member_ct = tomllib.load(f)
            if "package" in member_ct:
                package_names.append(member_ct["package"]["name"])
    return package_names


def unknown_packages(workspace_root: Path, names: list[str]) -> list[str]:
    """Returns the entries of `names` that are not packages of the workspace."""
    known = set(packages_for_cargo_workspace(workspace_root))
    return [name for name in names if name not in known]
