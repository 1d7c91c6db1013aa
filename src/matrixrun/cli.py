"""CLI entrypoint.

Primary command:
- matrixrun run ...

Utilities:
- matrixrun expand
- matrixrun status
- matrixrun init
- matrixrun doctor
- matrixrun cleanup

CONTRACT
- Inputs: Command line arguments (parsed by Typer)
- Outputs (required):
  - Exit code 0 on pipeline success, 1 on failure, 2 on configuration error,
    130 when interrupted
  - Console output (Rich tables) describing runs and failures
- Invariants:
  - Pipeline ids and --env bindings are validated before execution
  - Orchestration is delegated to matrixrun.orchestrator
- Failure:
  - Invalid arguments raise typer.BadParameter
"""

from __future__ import annotations

import asyncio
import json
import sys
import threading
from pathlib import Path

import typer
from loguru import logger
from rich.console import Console
from rich.markup import escape
from rich.panel import Panel
from rich.table import Table

from . import __version__
from .config import RunConfig
from .doctor import doctor_report
from .errors import ConfigurationError
from .matrix import plan_runs
from .orchestrator import load_pipeline, run_pipeline
from .util.ids import new_pipeline_id, validate_pipeline_id
from .util.paths import ensure_dir

app = typer.Typer(add_completion=False, help="Matrix pipeline runner: every matrix entry, every check, one verdict.")
console = Console()

_STATUS_STYLE = {
    "success": "green",
    "failure": "red",
    "cancelled": "yellow",
    "error": "red",
}


def _version_callback(value: bool):
    if value:
        console.print(f"matrixrun version: {__version__}")
        raise typer.Exit()


def _configure_logging(verbose: bool) -> None:
    logger.remove()
    logger.add(
        sys.stderr,
        level="DEBUG" if verbose else "INFO",
        format="<green>{time:HH:mm:ss}</green> <level>{level: <7}</level> {message}",
    )


@app.callback()
def main(
    version: bool = typer.Option(
        False, "--version", callback=_version_callback, is_eager=True, help="Show version."
    ),
    verbose: bool = typer.Option(False, "--verbose", "-v", help="Debug logging."),
):
    _configure_logging(verbose)


_REPO_OPTION = typer.Option(
    Path("."),
    "--repo",
    help="Repository root (default: current dir).",
)
_PIPELINE_FILE_OPTION = typer.Option(
    None,
    "--pipeline-file",
    "-f",
    help="Pipeline YAML file (default: <repo>/.matrixrun/pipeline.yaml).",
)
_ARTIFACTS_DIR_OPTION = typer.Option(
    None,
    "--artifacts-dir",
    help="Artifacts root (default: <repo>/.matrixrun/runs).",
)
_PIPELINE_ID_OPTION = typer.Option(
    None,
    "--pipeline-id",
    help="Pipeline id (default: auto).",
)
_PIPELINE_ID_REQUIRED_OPTION = typer.Option(
    ...,
    "--pipeline",
    help="Pipeline id.",
)
_ENV_OPTION = typer.Option(
    None,
    "--env",
    "-e",
    help="Process-wide binding KEY=VALUE (repeatable; overrides the pipeline env).",
)


def _artifacts_root(repo: Path, artifacts_dir: Path | None) -> Path:
    return artifacts_dir if artifacts_dir is not None else repo / ".matrixrun" / "runs"


def _parse_env(items: list[str] | None) -> dict[str, str]:
    env: dict[str, str] = {}
    for item in items or []:
        key, sep, value = item.partition("=")
        if not sep or not key:
            raise typer.BadParameter(f"Expected KEY=VALUE, got {item!r}", param_hint="--env")
        env[key] = value
    return env


def _checked_pipeline_id(pipeline_id: str) -> str:
    try:
        return validate_pipeline_id(pipeline_id)
    except ValueError as e:
        raise typer.BadParameter(str(e)) from e


@app.command()
def run(
    repo: Path = _REPO_OPTION,
    pipeline_file: Path | None = _PIPELINE_FILE_OPTION,
    artifacts_dir: Path | None = _ARTIFACTS_DIR_OPTION,
    pipeline_id: str | None = _PIPELINE_ID_OPTION,
    env: list[str] | None = _ENV_OPTION,
    fail_fast: bool | None = typer.Option(
        None, "--fail-fast/--no-fail-fast", help="Cancel sibling runs after the first failure."
    ),
    max_parallel: int | None = typer.Option(
        None, "--max-parallel", min=1, help="Maximum concurrently executing runs."
    ),
) -> None:
    """Expand the matrix and run every step for every entry."""
    pid = _checked_pipeline_id(pipeline_id or new_pipeline_id())
    root = _artifacts_root(repo, artifacts_dir)
    ensure_dir(root)

    cfg = RunConfig(
        repo_path=repo.resolve(),
        pipeline_id=pid,
        artifacts_root=root,
        pipeline_file=pipeline_file,
        env_overrides=_parse_env(env),
        fail_fast=fail_fast,
        max_parallel=max_parallel,
    )
    cancel = threading.Event()
    try:
        outcome = asyncio.run(run_pipeline(cfg, cancel=cancel))
    except KeyboardInterrupt:
        cancel.set()
        console.print(f"[yellow]Pipeline {pid} cancelled[/yellow]")
        raise typer.Exit(code=130)

    if outcome.status == "error":
        console.print(f"[red]Pipeline {pid} error:[/red] {outcome.error}")
        raise typer.Exit(code=2)

    result = outcome.result
    table = Table(title=f"matrixrun {pid}")
    table.add_column("#")
    table.add_column("Matrix")
    table.add_column("Status")
    table.add_column("Steps")
    table.add_column("First failure")
    for r in result.runs:
        failed = r.failed_step
        style = _STATUS_STYLE.get(r.status, "white")
        table.add_row(
            str(r.context.index),
            r.context.label,
            f"[{style}]{r.status}[/{style}]",
            f"{len(r.step_results)}/{len(r.step_results) + len(r.not_executed)}",
            failed.step.name if failed else (r.failure_kind or ""),
        )
    console.print(table)

    for f in result.failures():
        title = f"{f.run}: {f.step_name or f.kind}"
        console.print(Panel(f.diagnostics or "(no output captured)", title=title, border_style="red"))

    console.print(f"Artifacts: {outcome.pipeline_dir}")
    if outcome.report_file:
        console.print(f"Report: {outcome.report_file}")
    if result.ok:
        console.print("[green]PASS[/green]")
    else:
        console.print("[red]FAIL[/red]")
        raise typer.Exit(code=1)


@app.command()
def expand(
    repo: Path = _REPO_OPTION,
    pipeline_file: Path | None = _PIPELINE_FILE_OPTION,
    env: list[str] | None = _ENV_OPTION,
    show_steps: bool = typer.Option(False, "--steps", help="Show rendered step commands."),
) -> None:
    """Print the runs the matrix expands to, without executing anything."""
    try:
        pipeline, _ = load_pipeline(repo, pipeline_file)
        plans = plan_runs(pipeline, _parse_env(env))
    except ConfigurationError as e:
        console.print(f"[red]Configuration error:[/red] {e}")
        raise typer.Exit(code=2)

    table = Table(title=f"{pipeline.name}: {len(plans)} runs")
    table.add_column("#")
    table.add_column("Run")
    for axis in pipeline.axes:
        table.add_column(axis.name)
    for plan in plans:
        table.add_row(str(plan.context.index), plan.context.slug, *(v for _, v in plan.context.values))
    console.print(table)

    if show_steps:
        for plan in plans:
            console.print(f"[bold]{plan.context.label}[/bold]")
            for step in plan.steps:
                if step.toolchain is not None:
                    tc = step.toolchain
                    detail = f"{tc.installer} {tc.channel} target={tc.target or '-'} components={','.join(tc.components) or '-'}"
                else:
                    cmd = step.command
                    detail = cmd if isinstance(cmd, str) else " ".join(cmd)
                console.print(f"  {step.index}. {step.name}: {detail}")


@app.command()
def status(
    repo: Path = _REPO_OPTION,
    pipeline_id: str = _PIPELINE_ID_REQUIRED_OPTION,
    artifacts_dir: Path | None = _ARTIFACTS_DIR_OPTION,
) -> None:
    """Show PIPELINE_STATUS.json of a previous pipeline."""
    from .artifacts.schemas import validate_pipeline_status

    pid = _checked_pipeline_id(pipeline_id)
    status_path = _artifacts_root(repo, artifacts_dir) / pid / "PIPELINE_STATUS.json"
    if not status_path.exists():
        raise typer.BadParameter(f"No status found: {status_path}")
    try:
        data = json.loads(status_path.read_text(encoding="utf-8"))
    except json.JSONDecodeError as e:
        console.print(f"[red]Invalid PIPELINE_STATUS.json:[/red] {escape(str(e))}")
        raise typer.Exit(code=2)
    ok, parsed, err = validate_pipeline_status(data)
    if not ok:
        console.print(f"[red]Invalid PIPELINE_STATUS.json:[/red] {escape(err)}")
        raise typer.Exit(code=2)
    console.print_json(parsed.model_dump_json())


@app.command()
def init(
    repo: Path = _REPO_OPTION,
    force: bool = typer.Option(False, "--force", help="Overwrite an existing pipeline file."),
) -> None:
    """Write a starter `.matrixrun/pipeline.yaml` into a repo."""
    from .init import write_templates

    written = write_templates(repo, force=force)
    if written:
        console.print(f"[green]Wrote pipeline template to[/green] {written}")
    else:
        console.print("[yellow]Pipeline file already exists (use --force to overwrite)[/yellow]")


@app.command()
def doctor(
    repo: Path = _REPO_OPTION,
    pipeline_file: Path | None = _PIPELINE_FILE_OPTION,
) -> None:
    """Environment and preflight checks."""
    report = doctor_report(repo=repo, pipeline_file=pipeline_file)
    table = Table(title="matrixrun doctor")
    table.add_column("Check")
    table.add_column("Status")
    table.add_column("Details")
    for item in report.items:
        table.add_row(item.name, item.status, item.details)
    console.print(table)
    if report.ok:
        console.print("[green]OK[/green]")
    else:
        raise typer.Exit(code=2)


@app.command()
def cleanup(
    repo: Path = _REPO_OPTION,
    pipeline_id: str = _PIPELINE_ID_REQUIRED_OPTION,
    artifacts_dir: Path | None = _ARTIFACTS_DIR_OPTION,
) -> None:
    """Remove worktrees left behind by a pipeline."""
    from .artifacts.store import ArtifactStore
    from .checkout import WorktreeCheckout

    pid = _checked_pipeline_id(pipeline_id)
    store = ArtifactStore(_artifacts_root(repo, artifacts_dir) / pid)
    removed = WorktreeCheckout(repo=repo.resolve(), store=store).cleanup()
    if removed:
        console.print(f"[green]Removed {removed} worktrees for pipeline {pid}[/green]")
    else:
        console.print(f"[yellow]No worktrees found for pipeline {pid}[/yellow]")


if __name__ == "__main__":
    app()
