import json

import pytest
from typer.testing import CliRunner

from matrixrun import __version__
from matrixrun.cli import app

runner = CliRunner()

PASSING = """
name: smoke
matrix:
  target: [a, b]
steps:
  - name: build
    run: "true"
  - name: test
    run: test -n "$MATRIX_TARGET"
"""

FAILING_ON_B = """
name: smoke
matrix:
  target: [a, b]
steps:
  - name: build
    run: "true"
  - name: test
    run: 'test "$MATRIX_TARGET" != b'
"""


@pytest.fixture
def repo(tmp_path):
    return tmp_path


def _pipeline(repo, text):
    p = repo / ".matrixrun" / "pipeline.yaml"
    p.parent.mkdir(parents=True, exist_ok=True)
    p.write_text(text, encoding="utf-8")
    return p


def test_cli_help():
    res = runner.invoke(app, ["--help"])
    assert res.exit_code == 0
    assert "Matrix pipeline runner" in res.stdout


def test_cli_version():
    res = runner.invoke(app, ["--version"])
    assert res.exit_code == 0
    assert f"matrixrun version: {__version__}" in res.stdout


@pytest.mark.parametrize("cmd", ["run", "expand", "status", "init", "doctor", "cleanup"])
def test_command_help(cmd):
    res = runner.invoke(app, [cmd, "--help"])
    assert res.exit_code == 0


def test_run_pass(repo):
    _pipeline(repo, PASSING)
    res = runner.invoke(app, ["run", "--repo", str(repo), "--pipeline-id", "p1"])

    assert res.exit_code == 0, res.output
    assert "PASS" in res.stdout
    status = json.loads((repo / ".matrixrun" / "runs" / "p1" / "PIPELINE_STATUS.json").read_text())
    assert status["status"] == "success"


def test_run_fail_reports_failing_entry(repo):
    _pipeline(repo, FAILING_ON_B)
    res = runner.invoke(app, ["run", "--repo", str(repo), "--pipeline-id", "p1"])

    assert res.exit_code == 1, res.output
    assert "FAIL" in res.stdout
    status = json.loads((repo / ".matrixrun" / "runs" / "p1" / "PIPELINE_STATUS.json").read_text())
    assert status["failed_runs"] == ["02_b"]


def test_run_env_override(repo):
    _pipeline(repo, FAILING_ON_B.replace("!= b", "!= b -a \"$MODE\" = ci"))
    res = runner.invoke(app, ["run", "--repo", str(repo), "-e", "MODE=ci", "--pipeline-id", "p1"])
    assert res.exit_code == 1, res.output
    run_a = json.loads((repo / ".matrixrun" / "runs" / "p1" / "runs" / "01_a" / "RUN.json").read_text())
    assert run_a["status"] == "success"


def test_run_configuration_error(repo):
    _pipeline(repo, "matrix:\n  target: []\nsteps:\n  - run: 'true'\n")
    res = runner.invoke(app, ["run", "--repo", str(repo)])
    assert res.exit_code == 2
    assert "error" in res.stdout


def test_run_rejects_bad_env_and_id(repo):
    _pipeline(repo, PASSING)
    assert runner.invoke(app, ["run", "--repo", str(repo), "--env", "NOVALUE"]).exit_code == 2
    assert runner.invoke(app, ["run", "--repo", str(repo), "--pipeline-id", "../x"]).exit_code == 2


def test_expand_lists_runs_without_executing(repo):
    _pipeline(repo, PASSING)
    res = runner.invoke(app, ["expand", "--repo", str(repo), "--steps"])

    assert res.exit_code == 0, res.output
    assert "2 runs" in res.stdout
    assert "01_a" in res.stdout
    assert "02_b" in res.stdout
    assert not (repo / ".matrixrun" / "runs").exists()


def test_expand_configuration_error(repo):
    _pipeline(repo, "matrix: {}\nsteps:\n  - run: 'true'\n")
    res = runner.invoke(app, ["expand", "--repo", str(repo)])
    assert res.exit_code == 2
    assert "Configuration error" in res.stdout


def test_status_after_run(repo):
    _pipeline(repo, PASSING)
    runner.invoke(app, ["run", "--repo", str(repo), "--pipeline-id", "p1"])

    res = runner.invoke(app, ["status", "--repo", str(repo), "--pipeline", "p1"])
    assert res.exit_code == 0
    assert "success" in res.stdout

    missing = runner.invoke(app, ["status", "--repo", str(repo), "--pipeline", "p2"])
    assert missing.exit_code == 2


def test_status_rejects_invalid_status_file(repo):
    pdir = repo / ".matrixrun" / "runs" / "p1"
    pdir.mkdir(parents=True)
    (pdir / "PIPELINE_STATUS.json").write_text(
        json.dumps({"pipeline_id": "p1", "status": "maybe"}), encoding="utf-8"
    )

    res = runner.invoke(app, ["status", "--repo", str(repo), "--pipeline", "p1"])
    assert res.exit_code == 2
    assert "Invalid PIPELINE_STATUS.json" in res.stdout

    (pdir / "PIPELINE_STATUS.json").write_text("{not json", encoding="utf-8")
    res = runner.invoke(app, ["status", "--repo", str(repo), "--pipeline", "p1"])
    assert res.exit_code == 2


def test_init_writes_template_once(repo):
    res = runner.invoke(app, ["init", "--repo", str(repo)])
    assert res.exit_code == 0
    assert (repo / ".matrixrun" / "pipeline.yaml").exists()

    res = runner.invoke(app, ["init", "--repo", str(repo)])
    assert "already exists" in res.stdout

    res = runner.invoke(app, ["init", "--repo", str(repo), "--force"])
    assert "Wrote pipeline template" in res.stdout


def test_doctor_smoke(repo):
    _pipeline(repo, PASSING)
    res = runner.invoke(app, ["doctor", "--repo", str(repo)])
    # host tools vary; the command must report rather than crash
    assert res.exit_code in (0, 2)
    assert "matrixrun doctor" in res.stdout


def test_cleanup_without_worktrees(repo):
    res = runner.invoke(app, ["cleanup", "--repo", str(repo), "--pipeline", "p1"])
    assert res.exit_code == 0
    assert "No worktrees" in res.stdout
