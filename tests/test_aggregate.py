import itertools

from matrixrun.aggregate import aggregate, render_report
from matrixrun.config import MatrixAxis, StepSpec
from matrixrun.matrix import expand_matrix
from matrixrun.results import RunResult, StepResult

FMT = StepSpec(index=2, name="check-format", run="cargo fmt --check")
TESTS = StepSpec(index=4, name="run-tests", run="cargo test")


def _runs():
    wasm, x86, arm = expand_matrix([MatrixAxis("target", ("wasm32", "x86_64", "aarch64"))])
    return [
        RunResult(
            context=wasm,
            step_results=(StepResult(step=FMT, status="failure", exit_code=1, diagnostics="Diff in src/lib.rs"),),
            status="failure",
            failure_kind="step",
            not_executed=("check-lints", "run-tests"),
        ),
        RunResult(
            context=x86,
            step_results=(StepResult(step=FMT, status="success", exit_code=0), StepResult(step=TESTS, status="success", exit_code=0)),
            status="success",
        ),
        RunResult(
            context=arm,
            step_results=(),
            status="failure",
            failure_kind="checkout",
            error="git worktree add HEAD failed",
            not_executed=("check-format", "run-tests"),
        ),
    ]


def test_aggregate_is_order_independent():
    runs = _runs()
    baseline = aggregate(runs)
    for perm in itertools.permutations(runs):
        assert aggregate(perm) == baseline
    assert [r.context.index for r in baseline.runs] == [1, 2, 3]


def test_aggregate_success_iff_every_run_succeeded():
    runs = _runs()
    assert aggregate(runs).status == "failure"
    assert aggregate([runs[1]]).status == "success"
    assert aggregate([runs[1]]).ok
    assert aggregate([]).status == "success"


def test_failures_name_first_failing_step():
    result = aggregate(_runs())
    failures = result.failures()

    assert [f.slug for f in failures] == ["01_wasm32", "03_aarch64"]
    step_failure, checkout_failure = failures
    assert step_failure.run == "target=wasm32"
    assert step_failure.step_name == "check-format"
    assert step_failure.kind == "step"
    assert step_failure.exit_code == 1
    assert step_failure.diagnostics == "Diff in src/lib.rs"

    assert checkout_failure.step_name is None
    assert checkout_failure.kind == "checkout"
    assert checkout_failure.diagnostics == "git worktree add HEAD failed"
    assert result.counts() == {"failure": 2, "success": 1}


def test_render_report():
    md = render_report(aggregate(_runs()), pipeline_id="p1", name="CI")

    assert md.startswith("# CI")
    assert "Result: **FAILURE**" in md
    assert "| 1 | target=wasm32 | failure | 1 | check-format |" in md
    assert "| 2 | target=x86_64 | success | 2 |  |" in md
    assert "| 3 | target=aarch64 | failure | 0 | checkout |" in md
    assert "## Failures" in md
    assert "Diff in src/lib.rs" in md


def test_render_report_without_failures():
    md = render_report(aggregate([_runs()[1]]), pipeline_id="p1", name="CI")
    assert "Result: **SUCCESS**" in md
    assert "## Failures" not in md
