import os
import tomllib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any

import constants


class ConfigError(ValueError):
    pass


@dataclass
class CoverageConfig:
    """Project policy for a coverage run.

    Notes:
    - `features` and `exclude` only apply to whole-project runs. Scoped runs
      forward the caller's arguments verbatim and inherit the crate's defaults.
    - `toolchain` is a rustup specifier such as "+nightly"; when None, cargo
      picks whatever rustup resolves for the project.
    - `env` is layered over `constants.INSTRUMENTATION_ENV`.
    """

    project_root: Path
    features: list[str] = field(default_factory=list)
    exclude: list[str] = field(default_factory=list)
    toolchain: str | None = None
    test_threads: int = 1
    artifact_extension: str = constants.ARTIFACT_EXTENSION
    output: str = constants.REPORT_FILENAME
    summary: bool = True
    tools: dict[str, str] = field(default_factory=lambda: dict(constants.TOOLS))
    env: dict[str, str] = field(default_factory=dict)

    def final_report_path(self) -> Path:
        return self.project_root / self.output

    def instrumentation_env(self) -> dict[str, str]:
        return {**constants.INSTRUMENTATION_ENV, **self.env}

    def toolchain_args(self) -> list[str]:
        return [self.toolchain] if self.toolchain else []


def _expect(value: Any, kind: type, where: str) -> Any:
    # bool is an int subclass; `test_threads = true` should not slip through.
    if isinstance(value, bool) and kind is int:
        raise ConfigError(f"{where}: expected int, got bool")
    if not isinstance(value, kind):
        raise ConfigError(f"{where}: expected {kind.__name__}, got {type(value).__name__}")
    return value


def _expect_str_list(value: Any, where: str) -> list[str]:
    _expect(value, list, where)
    for item in value:
        _expect(item, str, f"{where}[]")
    return list(value)


def _expect_str_table(value: Any, where: str) -> dict[str, str]:
    _expect(value, dict, where)
    for k, v in value.items():
        _expect(v, str, f"{where}.{k}")
    return dict(value)


def _check_keys(table: dict, allowed: set[str], where: str):
    unknown = sorted(set(table) - allowed)
    if unknown:
        raise ConfigError(f"{where}: unknown key(s) {', '.join(unknown)}")


def config_from_dict(project_root: Path, doc: dict[str, Any]) -> CoverageConfig:
    cfg = CoverageConfig(project_root=project_root)
    _check_keys(doc, {"test", "report", "tools", "env"}, constants.CONFIG_FILENAME)

    test = _expect(doc.get("test", {}), dict, "[test]")
    _check_keys(test, {"features", "exclude", "toolchain", "test_threads"}, "[test]")
    if "features" in test:
        cfg.features = _expect_str_list(test["features"], "test.features")
    if "exclude" in test:
        cfg.exclude = _expect_str_list(test["exclude"], "test.exclude")
    if "toolchain" in test:
        cfg.toolchain = _expect(test["toolchain"], str, "test.toolchain")
    if "test_threads" in test:
        cfg.test_threads = _expect(test["test_threads"], int, "test.test_threads")
        if cfg.test_threads < 1:
            raise ConfigError("test.test_threads: must be at least 1")

    report = _expect(doc.get("report", {}), dict, "[report]")
    _check_keys(report, {"output", "artifact_extension", "summary"}, "[report]")
    if "output" in report:
        cfg.output = _expect(report["output"], str, "report.output")
    if "artifact_extension" in report:
        cfg.artifact_extension = _expect(
            report["artifact_extension"], str, "report.artifact_extension"
        ).lstrip(".")
    if "summary" in report:
        cfg.summary = _expect(report["summary"], bool, "report.summary")

    tools = _expect_str_table(doc.get("tools", {}), "tools")
    _check_keys(tools, set(constants.TOOLS), "[tools]")
    cfg.tools.update(tools)

    cfg.env = _expect_str_table(doc.get("env", {}), "env")
    return cfg


def load_config(project_root: Path) -> CoverageConfig:
    """Reads `covrun.toml` from the project root (if present) and applies
    environment overrides."""
    config_path = project_root / constants.CONFIG_FILENAME
    doc: dict[str, Any] = {}
    if config_path.is_file():
        try:
            with config_path.open("rb") as f:
                doc = tomllib.load(f)
        except tomllib.TOMLDecodeError as e:
            raise ConfigError(f"{config_path}: {e}") from e

    cfg = config_from_dict(project_root, doc)

    if "COVRUN_CARGO_TOOLCHAIN_SPEC" in os.environ:
        cfg.toolchain = os.environ["COVRUN_CARGO_TOOLCHAIN_SPEC"] or None
    return cfg
