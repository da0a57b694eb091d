import json

from click.testing import CliRunner

import cli_subcommands
import hermetic
import main


def invoke(args: list[str]):
    return CliRunner().invoke(main.cli, args, catch_exceptions=False)


def test_run_whole_project(project, fake_runner, monkeypatch):
    monkeypatch.setattr(hermetic, "run_invocation", fake_runner)

    result = invoke(["run", "--project-root", str(project)])

    assert result.exit_code == 0, result.output
    assert fake_runner.keys() == ["metadata", "test", "grcov", "covfix"]
    assert (project / "lcov.info").is_file()
    assert "Coverage summary (1 files):" in result.output
    assert "lines       66.7%  (2 of 3)" in result.output


def test_run_scoped_forwards_everything_after_scope(project, fake_runner, monkeypatch):
    monkeypatch.setattr(hermetic, "run_invocation", fake_runner)

    result = invoke(
        ["run", "--project-root", str(project), "alpha", "--release", "--", "--nocapture"]
    )

    assert result.exit_code == 0, result.output
    [test_call] = fake_runner.calls("test")
    assert test_call.cwd == project / "alpha"
    assert test_call.args == ["test", "--release", "--", "--nocapture"]


def test_run_propagates_test_failure_exit_code(project, fake_runner, monkeypatch):
    monkeypatch.setattr(hermetic, "run_invocation", fake_runner)
    fake_runner.returncodes["test"] = 101

    result = invoke(["run", "--project-root", str(project)])

    assert result.exit_code == 101
    assert fake_runner.keys() == ["metadata", "test"]
    assert not (project / "lcov.info").exists()


def test_run_reports_tool_killed_by_signal(project, tmp_path):
    tool = tmp_path / "cargo-killed"
    tool.write_text("#!/bin/sh\nkill -9 $$\n", encoding="utf-8")
    tool.chmod(0o755)
    (project / "covrun.toml").write_text(f'[tools]\ncargo = "{tool}"\n')

    result = invoke(["run", "--project-root", str(project)])

    assert result.exit_code == 137
    assert "ERROR: resolve_output_directory failed (exit status 137)" in result.output


def test_run_from_directory_without_manifest(project, fake_runner, monkeypatch):
    # cargo finds the workspace manifest in a parent directory.
    monkeypatch.setattr(hermetic, "run_invocation", fake_runner)
    docs = project / "docs"
    docs.mkdir()
    (docs / "covrun.toml").write_text('[test]\nexclude = ["beta"]\n')

    result = invoke(["run", "--project-root", str(docs)])

    assert result.exit_code == 0, result.output
    assert "could not check excluded packages" in result.output
    [test_call] = fake_runner.calls("test")
    assert test_call.args[test_call.args.index("--exclude") + 1] == "beta"
    assert (docs / "lcov.info").is_file()


def test_coverage_run_alias(project, fake_runner, monkeypatch):
    monkeypatch.setattr(hermetic, "run_invocation", fake_runner)

    result = CliRunner().invoke(main.run, ["--project-root", str(project), "beta"])

    assert result.exit_code == 0, result.output
    [test_call] = fake_runner.calls("test")
    assert test_call.args == ["test"]


def test_option_without_scope_is_rejected(project, fake_runner, monkeypatch):
    monkeypatch.setattr(hermetic, "run_invocation", fake_runner)

    result = CliRunner().invoke(main.run, ["--project-root", str(project), "--release"])

    assert result.exit_code == 2
    assert fake_runner.invocations == []


def test_run_writes_record(project, fake_runner, monkeypatch, tmp_path):
    monkeypatch.setattr(hermetic, "run_invocation", fake_runner)
    record = tmp_path / "run.json"

    result = invoke(["run", "--project-root", str(project), "--record", str(record)])

    assert result.exit_code == 0, result.output
    doc = json.loads(record.read_text())
    assert doc["final_state"] == "report-corrected"
    assert doc["exit_code"] == 0
    assert doc["final_report"] == str(project / "lcov.info")
    assert [s["name"] for s in doc["stages"]][0] == "resolve_output_directory"
    assert len(doc["stages"]) == 5


def test_quiet_disables_command_echo(project, fake_runner, monkeypatch):
    monkeypatch.setattr(hermetic, "run_invocation", fake_runner)
    monkeypatch.setenv("COVRUN_SHOW_CMDS", "1")

    result = invoke(["run", "--project-root", str(project), "--quiet"])

    assert result.exit_code == 0, result.output
    assert not hermetic.show_cmds()


def test_invalid_config_exits_2(project, fake_runner, monkeypatch):
    monkeypatch.setattr(hermetic, "run_invocation", fake_runner)
    (project / "covrun.toml").write_text("[test]\nfeatures = 'gpu'\n")

    result = invoke(["run", "--project-root", str(project)])

    assert result.exit_code == 2
    assert "test.features" in result.output
    assert fake_runner.invocations == []


def test_no_cargo_project(tmp_path, monkeypatch):
    monkeypatch.chdir(tmp_path)

    result = invoke(["run"])

    assert result.exit_code == 1
    assert "No Cargo.toml" in result.output


def test_clean(project, fake_runner, target_dir, monkeypatch):
    monkeypatch.setattr(hermetic, "run_invocation", fake_runner)

    result = invoke(["clean", "--project-root", str(project)])

    assert result.exit_code == 0, result.output
    assert list(target_dir.rglob("*.gcda")) == []
    assert fake_runner.keys() == ["metadata"]


def test_target_dir(project, fake_runner, target_dir, monkeypatch):
    monkeypatch.setattr(hermetic, "run_invocation", fake_runner)
    monkeypatch.setenv("COVRUN_SHOW_CMDS", "1")

    result = invoke(["target-dir", "--project-root", str(project)])

    assert result.exit_code == 0
    assert result.output.strip() == str(target_dir)


def test_summary_of_explicit_report(tmp_path):
    report = tmp_path / "other.info"
    report.write_text("SF:a.rs\nDA:1,1\nDA:2,0\nend_of_record\n")

    result = invoke(["summary", str(report)])

    assert result.exit_code == 0
    assert "lines       50.0%  (1 of 2)" in result.output


def test_summary_without_report(project):
    result = invoke(["summary", "--project-root", str(project)])

    assert result.exit_code == 1
    assert "run `covrun run` first" in result.output


def test_do_run_skips_summary_when_disabled(cfg, fake_runner, capsys):
    cfg.summary = False

    assert cli_subcommands.do_run(cfg, None, [], runner=fake_runner) == 0

    out = capsys.readouterr().out
    assert "Wrote" in out
    assert "Coverage summary" not in out
