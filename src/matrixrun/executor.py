from __future__ import annotations

"""Run executor: one RunContext, ordered steps, fail fast.

CONTRACT
- Inputs: RunPlan (RunContext + rendered steps)
- Outputs (required):
  - RunResult with StepResults up to and including the first failure
  - runs/<slug>/logs/<NN>_<step>.stdout.log / .stderr.log per executed step
- Invariants:
  - Steps execute strictly in declared order, each at most once, no retries
  - Child env = os.environ + RunContext.env + toolchain bindings + step env;
    the parent environment is never mutated
  - With a container image, every step of the run executes in ONE container
    started for the run and removed afterwards
  - A set cancel token terminates the active child and skips the rest
  - Diagnostics are redacted against the full environment the child saw
- Failure:
  - Run-level errors (CheckoutError, ToolchainError, StepFailure,
    ExecutionError, RunCancelled) are recorded on the RunResult, not raised
  - Unexpected exceptions are recorded as failure kind "crash" with
    runs/<slug>/CRASH.txt; StepResults gathered so far are kept
"""

import os
import threading
import traceback
from dataclasses import dataclass, field
from pathlib import Path

from loguru import logger

from .artifacts.store import ArtifactStore
from .checkout import CheckoutProvider
from .config import StepSpec, ToolchainSpec
from .errors import (
    CheckoutError,
    ConfigurationError,
    ExecutionError,
    RunCancelled,
    RunError,
    StepFailure,
    ToolchainError,
)
from .matrix import RunContext, RunPlan
from .results import RunResult, StepResult, StepStatus
from .toolchains.base import ToolchainInstaller
from .toolchains.command import CommandInstaller
from .toolchains.preinstalled import PreinstalledToolchain
from .toolchains.rustup import RustupInstaller
from .util.events import EventLog
from .util.paths import safe_filename
from .util.redaction import Redactor
from .util.shell import CmdResult, CommandRunner, DockerSession, read_tail, run_cmd

DIAGNOSTIC_LINES = 40


def installer_for(spec: ToolchainSpec, runner: CommandRunner) -> ToolchainInstaller:
    if spec.installer == "rustup":
        return RustupInstaller(runner=runner)
    if spec.installer == "command":
        return CommandInstaller(runner=runner)
    if spec.installer == "preinstalled":
        return PreinstalledToolchain(runner=runner)
    raise ConfigurationError(f"Unknown toolchain installer: {spec.installer}")


def container_name(pipeline_id: str, slug: str) -> str:
    return f"matrixrun-{pipeline_id}-{slug}"


def _status_for(res: CmdResult) -> StepStatus:
    if res.cancelled:
        return "cancelled"
    if res.spawn_error is not None:
        return "error"
    return "success" if res.returncode == 0 else "failure"


@dataclass
class RunExecutor:
    store: ArtifactStore
    checkout: CheckoutProvider
    runner: CommandRunner = field(default=run_cmd)
    cancel: threading.Event = field(default_factory=threading.Event)
    events: EventLog | None = None
    default_timeout_s: float | None = None
    container: str | None = None

    def execute(self, plan: RunPlan) -> RunResult:
        ctx = plan.context
        ev = self.events.bind(run=ctx.slug) if self.events else None
        env = dict(ctx.env)
        results: list[StepResult] = []
        failure_kind: str | None = None
        error: str | None = None
        workdir = None

        if ev:
            ev.emit("run", action="start", matrix=ctx.matrix)
        logger.info(f"[{ctx.slug}] start ({ctx.label})")

        try:
            self._raise_if_cancelled()
            workdir = self.checkout.prepare(ctx)
            session = None
            try:
                runner = self.runner
                if self.container:
                    session = self._start_container(ctx, workdir)
                    runner = session.runner()
                for step in plan.steps:
                    self._raise_if_cancelled()
                    result, bindings = self._run_step(step, ctx, workdir, env, runner, ev)
                    results.append(result)
                    env.update(bindings)
                    self._raise_for(result)
            finally:
                if session is not None:
                    session.stop(workdir)
                self.checkout.release(ctx)
        except RunError as exc:
            failure_kind = exc.kind
            error = str(exc)
            logger.warning(f"[{ctx.slug}] {exc.kind}: {exc}")
        except Exception as exc:
            failure_kind = "crash"
            error = f"{type(exc).__name__}: {exc}"
            logger.exception(f"[{ctx.slug}] crashed")
            self.store.write_text(Path("runs") / ctx.slug / "CRASH.txt", traceback.format_exc())
            if ev:
                ev.emit("run", action="crash", error=error)

        executed = {r.step.index for r in results}
        if failure_kind == "cancelled":
            status = "cancelled"
        elif failure_kind is None and all(r.ok for r in results):
            status = "success"
        else:
            status = "failure"

        run_result = RunResult(
            context=ctx,
            step_results=tuple(results),
            status=status,
            failure_kind=failure_kind,
            error=error,
            not_executed=tuple(s.name for s in plan.steps if s.index not in executed),
            workdir=workdir,
        )
        if ev:
            ev.emit("run", action="finish", status=status, failure_kind=failure_kind)
        logger.info(f"[{ctx.slug}] {status}")
        return run_result

    def _raise_if_cancelled(self) -> None:
        if self.cancel.is_set():
            raise RunCancelled("pipeline cancelled")

    def _start_container(self, ctx: RunContext, workdir: Path) -> DockerSession:
        session = DockerSession(
            image=self.container,
            name=container_name(self.store.pipeline_dir.name, ctx.slug),
            runner_fn=self.runner,
        )
        res = session.start(
            workdir,
            stdout_path=self.store.run_path(ctx.slug, "logs", "container.stdout.log"),
            stderr_path=self.store.run_path(ctx.slug, "logs", "container.stderr.log"),
        )
        if not res.ok:
            detail = read_tail(res.stderr_path, 5) or f"rc={res.returncode}"
            raise CheckoutError(f"container {self.container} failed to start for {ctx.label}: {detail}")
        logger.debug(f"[{ctx.slug}] container {session.name} started")
        return session

    def _raise_for(self, result: StepResult) -> None:
        step = result.step
        if result.status == "success":
            return
        if result.status == "cancelled":
            raise RunCancelled(f"step {step.name!r} cancelled", result)
        if result.status == "error":
            raise ExecutionError(f"step {step.name!r} could not start: {result.error}", result)
        if step.kind == "toolchain":
            raise ToolchainError(
                f"toolchain install {step.name!r} failed (exit {result.exit_code})", result
            )
        raise StepFailure(f"step {step.name!r} failed (exit {result.exit_code})", result)

    def _run_step(
        self,
        step: StepSpec,
        ctx: RunContext,
        workdir: Path,
        env: dict[str, str],
        runner: CommandRunner,
        ev: EventLog | None,
    ) -> tuple[StepResult, dict[str, str]]:
        stem = f"{step.index:02d}_{safe_filename(step.name, default='step')}"
        stdout_path = self.store.run_path(ctx.slug, "logs", f"{stem}.stdout.log")
        stderr_path = self.store.run_path(ctx.slug, "logs", f"{stem}.stderr.log")
        step_env = env | step.env
        timeout_s = step.timeout_s or self.default_timeout_s

        if ev:
            ev.emit("step", action="start", index=step.index, name=step.name, kind=step.kind)
        logger.debug(f"[{ctx.slug}] step {step.index} {step.name}")

        bindings: dict[str, str] = {}
        if step.toolchain is not None:
            installer = installer_for(step.toolchain, runner)
            install = installer.install(
                step.toolchain,
                cwd=workdir,
                env=step_env,
                stdout_path=stdout_path,
                stderr_path=stderr_path,
                timeout_s=timeout_s,
                cancel=self.cancel,
            )
            res, bindings = install.result, install.env
        else:
            res = runner(
                step.command,
                workdir,
                stdout_path=stdout_path,
                stderr_path=stderr_path,
                env=step_env,
                timeout_s=timeout_s,
                cancel=self.cancel,
            )

        status = _status_for(res)
        diagnostics = ""
        if status != "success":
            # host runs inherit os.environ, so its secrets can show up in output too
            redactor = Redactor.for_env(dict(os.environ) | step_env)
            tail = "\n".join(
                part
                for part in (
                    read_tail(res.stdout_path, DIAGNOSTIC_LINES),
                    read_tail(res.stderr_path, DIAGNOSTIC_LINES),
                )
                if part
            )
            diagnostics = redactor.redact(tail)
        result = StepResult(
            step=step,
            status=status,
            exit_code=res.returncode,
            stdout_path=res.stdout_path,
            stderr_path=res.stderr_path,
            elapsed_s=res.elapsed_s,
            diagnostics=diagnostics,
            error=res.spawn_error or ("timeout" if res.timed_out else None),
        )
        if ev:
            ev.emit(
                "step",
                action="finish",
                index=step.index,
                name=step.name,
                status=status,
                exit_code=res.returncode,
                elapsed_s=round(res.elapsed_s, 3),
            )
        return result, (bindings if status == "success" else {})
