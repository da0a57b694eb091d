"""
Common definitions for tests

Definitions decorated with `pytest.fixture` are pytest test fixtures
(see pytest documentation). In short, they are executed by
by the pytest framework before a test that requests them, that is,
given a test

`test_foo(a, b, c)`

the framework will look for a fixture named `a`, execute it
(potentially pulling in other fixtures), and provide the returned
value as the value for `a` within `test_foo`.

No test here runs cargo, grcov or rust-covfix. `fake_runner` stands in for
them, recording each `hermetic.Invocation` and imitating the files the real
tools would leave behind.
"""

import json
import shutil
import subprocess
from pathlib import Path

import pytest

import hermetic
from coverage_config import CoverageConfig

SAMPLE_LCOV = """\
SF:alpha/src/lib.rs
FN:1,alpha::add
FNDA:3,alpha::add
DA:1,3
DA:2,3
DA:5,0
BRDA:2,0,0,3
BRDA:2,0,1,-
LF:3
LH:2
end_of_record
"""


class FakeRunner:
    """Records invocations and plays the part of the external tools.

    `returncodes` maps a stage key ("metadata", "test", "grcov", "covfix")
    to the exit status that tool should report."""

    def __init__(self, target_dir: Path):
        self.target_dir = target_dir
        self.invocations: list[hermetic.Invocation] = []
        self.returncodes: dict[str, int] = {}
        self.covfix_writes_output = True

    @staticmethod
    def key_for(inv: hermetic.Invocation) -> str:
        if inv.program == "grcov":
            return "grcov"
        if inv.program == "rust-covfix":
            return "covfix"
        args = [a for a in inv.args if not a.startswith("+")]
        return "metadata" if args[:1] == ["metadata"] else "test"

    def calls(self, key: str) -> list[hermetic.Invocation]:
        return [inv for inv in self.invocations if self.key_for(inv) == key]

    def keys(self) -> list[str]:
        return [self.key_for(inv) for inv in self.invocations]

    def __call__(self, inv: hermetic.Invocation) -> subprocess.CompletedProcess:
        self.invocations.append(inv)
        key = self.key_for(inv)
        rc = self.returncodes.get(key, 0)
        stdout = ""
        stderr = ""
        if rc != 0:
            stderr = f"{key} failed\n"
        elif key == "metadata":
            stdout = json.dumps({"packages": [], "target_directory": str(self.target_dir)})
        elif key == "test":
            data_dir = self.target_dir / "debug" / "deps"
            data_dir.mkdir(parents=True, exist_ok=True)
            (data_dir / "alpha-1234.gcda").write_bytes(b"fresh")
        elif key == "grcov":
            out = Path(inv.args[inv.args.index("-o") + 1])
            out.write_text(SAMPLE_LCOV, encoding="utf-8")
        elif key == "covfix" and self.covfix_writes_output:
            out = Path(inv.args[inv.args.index("-o") + 1])
            shutil.copyfile(inv.args[-1], out)
        return subprocess.CompletedProcess(inv.argv(), rc, stdout=stdout, stderr=stderr)


def write_crate(crate_dir: Path, name: str):
    (crate_dir / "src").mkdir(parents=True, exist_ok=True)
    (crate_dir / "Cargo.toml").write_text(
        f'[package]\nname = "{name}"\nversion = "0.1.0"\n', encoding="utf-8"
    )
    (crate_dir / "src" / "lib.rs").write_text("pub fn add(a: u32, b: u32) -> u32 { a + b }\n")


@pytest.fixture(autouse=True)
def covrun_env(monkeypatch):
    """Keeps the caller's COVRUN_* settings out of the tests"""
    monkeypatch.delenv("COVRUN_CARGO_TOOLCHAIN_SPEC", raising=False)
    monkeypatch.setenv("COVRUN_SHOW_CMDS", "1")


@pytest.fixture
def project(tmp_path) -> Path:
    """A Cargo workspace with member crates `alpha` and `beta`"""
    root = tmp_path / "project"
    root.mkdir()
    (root / "Cargo.toml").write_text(
        '[workspace]\nmembers = ["alpha", "beta"]\n', encoding="utf-8"
    )
    write_crate(root / "alpha", "alpha")
    write_crate(root / "beta", "beta")
    return root


@pytest.fixture
def target_dir(project) -> Path:
    """The build output directory, with stale coverage data from an earlier run"""
    target = project / "target"
    for rel in ["debug/deps/alpha-old.gcda", "debug/build/beta/out/beta-old.gcda"]:
        stale = target / rel
        stale.parent.mkdir(parents=True, exist_ok=True)
        stale.write_bytes(b"stale")
    (target / "debug" / "deps" / "alpha-old.gcno").write_bytes(b"notes")
    return target


@pytest.fixture
def fake_runner(target_dir) -> FakeRunner:
    return FakeRunner(target_dir)


@pytest.fixture
def cfg(project) -> CoverageConfig:
    return CoverageConfig(project_root=project)


@pytest.fixture
def handoff_dir(tmp_path) -> Path:
    """A hand-off directory that outlives the run, so tests can inspect it"""
    handoff = tmp_path / "handoff"
    handoff.mkdir()
    return handoff
