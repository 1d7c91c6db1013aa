"""matrixrun package.

Simple API for callers that want one verdict for a repository:

    import matrixrun

    # Run .matrixrun/pipeline.yaml (or the default Rust pipeline)
    result = matrixrun.run("/path/to/repo")

    # Explicit pipeline file and process-wide bindings
    result = matrixrun.run("/path/to/repo", "ci.yaml", env={"CARGO_TERM_COLOR": "never"})
"""

__version__ = "0.1.0"

import asyncio
from pathlib import Path
from typing import Optional

from .aggregate import PipelineResult, aggregate
from .config import PipelineSpec, RunConfig, load_pipeline_file
from .errors import ConfigurationError
from .matrix import RunContext, expand_matrix, plan_runs
from .orchestrator import run_pipeline
from .util.ids import new_pipeline_id


def run(
    repo: str | Path,
    pipeline_file: Optional[str | Path] = None,
    *,
    pipeline_id: Optional[str] = None,
    env: Optional[dict[str, str]] = None,
) -> dict:
    """Run a pipeline. Returns structured result.

    Args:
        repo: Path to the repository the steps run in
        pipeline_file: Optional pipeline YAML (default: <repo>/.matrixrun/pipeline.yaml)
        pipeline_id: Optional custom pipeline ID (auto-generated if not provided)
        env: Optional process-wide bindings overriding the pipeline env

    Returns:
        dict with keys: status, pipeline_dir, report_file, runs, failures
    """
    repo_path = Path(repo).resolve()
    cfg = RunConfig(
        repo_path=repo_path,
        pipeline_id=pipeline_id or new_pipeline_id(),
        artifacts_root=repo_path / ".matrixrun" / "runs",
        pipeline_file=Path(pipeline_file) if pipeline_file else None,
        env_overrides=dict(env or {}),
    )
    outcome = asyncio.run(run_pipeline(cfg))

    runs = {}
    failures = []
    if outcome.result is not None:
        runs = {r.context.slug: r.status for r in outcome.result.runs}
        failures = [
            {
                "run": f.run,
                "step": f.step_name,
                "kind": f.kind,
                "exit_code": f.exit_code,
                "diagnostics": f.diagnostics,
            }
            for f in outcome.result.failures()
        ]

    return {
        "status": outcome.status,
        "pipeline_dir": str(outcome.pipeline_dir),
        "report_file": str(outcome.report_file) if outcome.report_file else None,
        "runs": runs,
        "failures": failures,
        "error": outcome.error,
    }


__all__ = [
    "run",
    "run_pipeline",
    "expand_matrix",
    "plan_runs",
    "aggregate",
    "load_pipeline_file",
    "ConfigurationError",
    "PipelineResult",
    "PipelineSpec",
    "RunConfig",
    "RunContext",
]
