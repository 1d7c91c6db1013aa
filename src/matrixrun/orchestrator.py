from __future__ import annotations

"""Pipeline orchestrator: expand, execute runs in parallel, aggregate.

CONTRACT
- Inputs: RunConfig (repo, pipeline file, artifacts root, overrides)
- Outputs (required):
  - PipelineOutcome (status, pipeline_dir, report_file, result)
  - Artifacts in .matrixrun/runs/<pipeline_id>/
    - PIPELINE.json, PIPELINE_STATUS.json, REPORT.md, events.jsonl
    - runs/<slug>/RUN.json and per-step logs
- Invariants:
  - Configuration errors abort before any run starts (status "error")
  - Runs are isolated: a failing or crashing run never aborts its siblings,
    unless fail_fast is enabled, in which case siblings are cancelled
  - Always writes PIPELINE_STATUS.json
- Failure:
  - Unexpected exceptions write CRASH.txt and report status "error"
"""

import asyncio
import threading
import traceback
from dataclasses import dataclass
from pathlib import Path

from loguru import logger

from .aggregate import PipelineResult, aggregate, render_report
from .artifacts.schemas import PipelineMeta, PipelineStatus, RunRecord
from .artifacts.store import ArtifactStore
from .checkout import checkout_for
from .config import (
    MatrixAxis,
    PipelineSpec,
    RunConfig,
    StepSpec,
    ToolchainSpec,
    load_pipeline_file,
)
from .errors import ConfigurationError
from .executor import RunExecutor
from .matrix import RunPlan, plan_runs
from .results import RunResult, crashed_run
from .util.events import EventLog
from .util.shell import CommandRunner, run_cmd

PIPELINE_FILE = Path(".matrixrun") / "pipeline.yaml"


@dataclass(frozen=True)
class PipelineOutcome:
    status: str
    pipeline_dir: Path
    report_file: Path | None = None
    result: PipelineResult | None = None
    error: str | None = None


def default_pipeline() -> PipelineSpec:
    # Fallback if no pipeline file is provided or found in the repo.
    return PipelineSpec(
        name="CI",
        axes=[MatrixAxis("target", ("wasm32-unknown-unknown", "x86_64-unknown-linux-gnu"))],
        env={"CARGO_TERM_COLOR": "always"},
        steps=[
            StepSpec(
                index=1,
                name="Install rust",
                toolchain=ToolchainSpec(
                    installer="rustup",
                    channel="stable",
                    target="${{ matrix.target }}",
                    components=("clippy", "rustfmt"),
                ),
            ),
            StepSpec(index=2, name="Check formatting", run="cargo fmt --check"),
            StepSpec(index=3, name="Check lints", run="cargo clippy --all-targets --all-features"),
            StepSpec(index=4, name="Run tests", run="cargo test --all-targets --all-features"),
        ],
    )


def resolve_pipeline_file(repo: Path, pipeline_file: Path | None = None) -> Path | None:
    if pipeline_file is not None:
        if not pipeline_file.exists():
            raise ConfigurationError(f"Pipeline file not found: {pipeline_file}")
        return pipeline_file
    repo_file = repo / PIPELINE_FILE
    return repo_file if repo_file.exists() else None


def load_pipeline(repo: Path, pipeline_file: Path | None = None) -> tuple[PipelineSpec, Path | None]:
    path = resolve_pipeline_file(repo, pipeline_file)
    if path is None:
        logger.warning(f"No {PIPELINE_FILE} in {repo}; using the default Rust pipeline")
        return default_pipeline(), None
    return load_pipeline_file(path), path


def _pipeline_meta(cfg: RunConfig, pipeline: PipelineSpec, path: Path | None,
                   fail_fast: bool, max_parallel: int | None) -> PipelineMeta:
    return PipelineMeta(
        pipeline_id=cfg.pipeline_id,
        name=pipeline.name,
        repo_path=str(cfg.repo_path),
        pipeline_file=str(path) if path else None,
        axes={a.name: list(a.values) for a in pipeline.axes},
        steps=[s.name for s in pipeline.steps],
        env_keys=sorted(set(pipeline.env) | set(cfg.env_overrides)),
        fail_fast=fail_fast,
        max_parallel=max_parallel,
        checkout=pipeline.checkout.strategy,
        container=pipeline.container,
    )


async def run_pipeline(
    cfg: RunConfig,
    *,
    runner: CommandRunner | None = None,
    cancel: threading.Event | None = None,
) -> PipelineOutcome:
    store = ArtifactStore(cfg.pipeline_dir())
    store.ensure()
    ev = EventLog(store.path("events.jsonl"), pipeline_id=cfg.pipeline_id)
    if cancel is None:
        cancel = threading.Event()

    try:
        try:
            pipeline, path = load_pipeline(cfg.repo_path, cfg.pipeline_file)
            plans = plan_runs(pipeline, cfg.env_overrides)
        except ConfigurationError as exc:
            ev.emit("expand", action="config_error", error=str(exc))
            logger.error(f"Configuration error: {exc}")
            store.write_text("CONFIG_ERROR.txt", f"{exc}\n")
            store.write_status(
                PipelineStatus(pipeline_id=cfg.pipeline_id, status="error", message=str(exc))
            )
            return PipelineOutcome(status="error", pipeline_dir=store.pipeline_dir, error=str(exc))

        fail_fast = cfg.fail_fast if cfg.fail_fast is not None else pipeline.strategy.fail_fast
        max_parallel = cfg.max_parallel or pipeline.strategy.max_parallel
        store.write_meta(_pipeline_meta(cfg, pipeline, path, fail_fast, max_parallel))
        store.write_status(
            PipelineStatus(pipeline_id=cfg.pipeline_id, status="running", message="starting")
        )
        ev.emit("expand", action="done", runs=[p.context.slug for p in plans])

        if runner is None:
            runner = run_cmd
        executor = RunExecutor(
            store=store,
            checkout=checkout_for(pipeline.checkout, cfg.repo_path, store),
            runner=runner,
            cancel=cancel,
            events=ev,
            default_timeout_s=pipeline.timeout_s,
            container=pipeline.container,
        )
        sem = asyncio.Semaphore(max_parallel or len(plans))

        async def _process_run(plan: RunPlan) -> RunResult:
            async with sem:
                result = await asyncio.to_thread(executor.execute, plan)
            store.write_run(RunRecord.from_result(result))
            if fail_fast and not result.ok and not cancel.is_set():
                ev.emit("run", run=plan.context.slug, action="fail_fast_cancel")
                logger.warning(f"[{plan.context.slug}] failed; cancelling remaining runs")
                cancel.set()
            return result

        try:
            gathered = await asyncio.gather(
                *[_process_run(p) for p in plans], return_exceptions=True
            )
        except asyncio.CancelledError:
            # Interrupted (e.g. Ctrl-C): stop child processes in worker threads.
            cancel.set()
            raise

        results: list[RunResult] = []
        for plan, r in zip(plans, gathered):
            if isinstance(r, BaseException):
                ev.emit("run", run=plan.context.slug, action="crash", error=str(r))
                logger.error(f"[{plan.context.slug}] crashed: {r}")
                store.write_text(
                    Path("runs") / plan.context.slug / "CRASH.txt",
                    "".join(traceback.format_exception(type(r), r, r.__traceback__)),
                )
                r = crashed_run(plan, r)
                store.write_run(RunRecord.from_result(r))
            results.append(r)

        pipeline_result = aggregate(results)
        report = store.write_text(
            "REPORT.md",
            render_report(pipeline_result, pipeline_id=cfg.pipeline_id, name=pipeline.name),
        )
        ev.emit("aggregate", action="done", status=pipeline_result.status, **pipeline_result.counts())
        store.write_status(
            PipelineStatus(
                pipeline_id=cfg.pipeline_id,
                status=pipeline_result.status,
                message="completed",
                runs={r.context.slug: r.status for r in pipeline_result.runs},
                failed_runs=[r.context.slug for r in pipeline_result.runs if not r.ok],
            )
        )
        return PipelineOutcome(
            status=pipeline_result.status,
            pipeline_dir=store.pipeline_dir,
            report_file=report,
            result=pipeline_result,
        )
    except Exception as exc:  # pragma: no cover
        ev.emit("crash", action="exception", error=str(exc))
        logger.exception("Pipeline crashed")
        store.write_text("CRASH.txt", traceback.format_exc())
        store.write_status(
            PipelineStatus(pipeline_id=cfg.pipeline_id, status="error", message=f"crash: {exc}")
        )
        return PipelineOutcome(status="error", pipeline_dir=store.pipeline_dir, error=str(exc))
