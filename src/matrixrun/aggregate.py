from __future__ import annotations

"""Aggregation of run results into one pipeline verdict.

CONTRACT
- Inputs: RunResults in any order
- Outputs (required):
  - PipelineResult (status success iff every run succeeded)
  - FailureReports naming, per failed run, the first failing step and its diagnostics
  - REPORT.md text via render_report()
- Invariants:
  - Order independent and idempotent: runs are stored sorted by enumeration index
  - Does not infer root causes; it surfaces exit status and captured output only
- Failure:
  - None (pure)
"""

from collections import Counter
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .results import RunResult


@dataclass(frozen=True)
class FailureReport:
    run: str
    slug: str
    matrix: dict[str, str]
    kind: str
    step_index: int | None
    step_name: str | None
    status: str
    exit_code: int | None
    diagnostics: str
    stderr_log: Path | None = None


@dataclass(frozen=True)
class PipelineResult:
    runs: tuple[RunResult, ...]
    status: str

    @property
    def ok(self) -> bool:
        return self.status == "success"

    def counts(self) -> dict[str, int]:
        return dict(Counter(r.status for r in self.runs))

    def failures(self) -> list[FailureReport]:
        reports = []
        for r in self.runs:
            if r.ok:
                continue
            step = r.failed_step
            reports.append(
                FailureReport(
                    run=r.context.label,
                    slug=r.context.slug,
                    matrix=r.context.matrix,
                    kind=r.failure_kind or "step",
                    step_index=step.step.index if step else None,
                    step_name=step.step.name if step else None,
                    status=step.status if step else r.status,
                    exit_code=step.exit_code if step else None,
                    diagnostics=(step.diagnostics if step else "") or (r.error or ""),
                    stderr_log=step.stderr_path if step else None,
                )
            )
        return reports


def aggregate(run_results: Iterable[RunResult]) -> PipelineResult:
    runs = tuple(sorted(run_results, key=lambda r: r.context.index))
    status = "success" if all(r.ok for r in runs) else "failure"
    return PipelineResult(runs=runs, status=status)


def render_report(result: PipelineResult, *, pipeline_id: str, name: str) -> str:
    md = [
        f"# {name}",
        "",
        f"Pipeline: `{pipeline_id}`",
        f"Result: **{result.status.upper()}**",
        "",
        "## Runs",
        "",
        "| # | Matrix | Status | Steps | First failure |",
        "|---|--------|--------|-------|---------------|",
    ]
    for r in result.runs:
        failed = r.failed_step
        first = failed.step.name if failed else (r.failure_kind or "")
        md.append(
            f"| {r.context.index} | {r.context.label} | {r.status} "
            f"| {len(r.step_results)} | {first} |"
        )
    md.append("")

    failures = result.failures()
    if failures:
        md += ["## Failures", ""]
        for f in failures:
            where = f"step {f.step_index} `{f.step_name}`" if f.step_name else f.kind
            exit_part = f" exit={f.exit_code}" if f.exit_code is not None else ""
            md += [f"### {f.run}", "", f"- failed at: {where} ({f.kind}){exit_part}"]
            if f.stderr_log:
                md.append(f"- stderr: `{f.stderr_log}`")
            if f.diagnostics:
                md += ["", "```", f.diagnostics, "```"]
            md.append("")
    return "\n".join(md)
