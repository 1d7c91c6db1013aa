from __future__ import annotations

"""Step and run results.

CONTRACT
- StepResult is produced once per executed step and never mutated.
- RunResult holds StepResults up to and including the first failure, the
  names of steps that never executed, and the failure kind of the run.
- RunResult.status is "success" iff every recorded StepResult succeeded and
  no run-level error (checkout, cancellation, crash) occurred.
"""

from dataclasses import dataclass
from pathlib import Path
from typing import Literal

from .config import StepSpec
from .matrix import RunContext, RunPlan

StepStatus = Literal["success", "failure", "error", "cancelled"]
RunStatus = Literal["success", "failure", "cancelled"]


@dataclass(frozen=True)
class StepResult:
    step: StepSpec
    status: StepStatus
    exit_code: int
    stdout_path: Path | None = None
    stderr_path: Path | None = None
    elapsed_s: float = 0.0
    diagnostics: str = ""
    error: str | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"


@dataclass(frozen=True)
class RunResult:
    context: RunContext
    step_results: tuple[StepResult, ...]
    status: RunStatus
    failure_kind: str | None = None
    error: str | None = None
    not_executed: tuple[str, ...] = ()
    workdir: Path | None = None

    @property
    def ok(self) -> bool:
        return self.status == "success"

    @property
    def failed_step(self) -> StepResult | None:
        for r in self.step_results:
            if not r.ok:
                return r
        return None


def crashed_run(plan: RunPlan, exc: BaseException) -> RunResult:
    return RunResult(
        context=plan.context,
        step_results=(),
        status="failure",
        failure_kind="crash",
        error=f"{type(exc).__name__}: {exc}",
        not_executed=tuple(s.name for s in plan.steps),
    )
