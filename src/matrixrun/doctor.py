from __future__ import annotations

"""Environment health checks.

CONTRACT
- Inputs: Repo path, optional pipeline file
- Outputs (required):
  - DoctorReport (ok=bool, items=[(name, status, details)])
- Invariants:
  - Checks: pipeline file, git, rustup, cargo, docker (only when a container is declared)
  - Does not modify system state (read-only checks)
- Failure:
  - Returns DoctorReport with ok=False if critical checks fail (pipeline file
    invalid, git missing for worktree checkout, installer binary missing)
"""

from dataclasses import dataclass
from pathlib import Path

from .config import PipelineSpec, load_pipeline_file
from .errors import ConfigurationError
from .orchestrator import PIPELINE_FILE, default_pipeline
from .util.shell import run_cmd, which


@dataclass(frozen=True)
class DoctorItem:
    name: str
    status: str
    details: str


@dataclass(frozen=True)
class DoctorReport:
    ok: bool
    items: list[DoctorItem]


def _installers(pipeline: PipelineSpec) -> set[str]:
    return {s.toolchain.installer for s in pipeline.steps if s.toolchain is not None}


def doctor_report(repo: Path, pipeline_file: Path | None = None) -> DoctorReport:
    items: list[DoctorItem] = []
    ok = True

    # 1. Pipeline file
    path = pipeline_file or repo / PIPELINE_FILE
    pipeline = default_pipeline()
    if path.exists():
        try:
            pipeline = load_pipeline_file(path)
            items.append(
                DoctorItem(
                    "pipeline file",
                    "OK",
                    f"{len(pipeline.axes)} axes, {len(pipeline.steps)} steps",
                )
            )
        except ConfigurationError as e:
            ok = False
            items.append(DoctorItem("pipeline file", "FAIL", str(e)))
    else:
        items.append(
            DoctorItem("pipeline file", "WARN", f"Missing {path}; the default Rust pipeline applies")
        )

    # 2. git (critical only for worktree checkout)
    git_bin = which("git")
    worktree = pipeline.checkout.strategy == "worktree"
    if git_bin:
        items.append(DoctorItem("git binary", "OK", git_bin))
    elif worktree:
        ok = False
        items.append(DoctorItem("git binary", "FAIL", "git not found; worktree checkout unavailable"))
    else:
        items.append(DoctorItem("git binary", "INFO", "git not found"))
    if worktree and not (repo / ".git").exists():
        ok = False
        items.append(DoctorItem("git repo", "FAIL", "Not a git repo (required for worktree checkout)."))

    # 3. Toolchain binaries
    installers = _installers(pipeline)
    rustup_bin = which("rustup")
    if rustup_bin:
        items.append(DoctorItem("rustup", "OK", rustup_bin))
    elif "rustup" in installers and not pipeline.container:
        ok = False
        items.append(DoctorItem("rustup", "FAIL", "rustup not found; 'rustup' installer steps will fail"))
    else:
        items.append(DoctorItem("rustup", "INFO", "rustup not found"))

    cargo_bin = which("cargo")
    if cargo_bin:
        items.append(DoctorItem("cargo", "OK", cargo_bin))
    else:
        items.append(DoctorItem("cargo", "WARN", "cargo not found in PATH"))

    # 4. Container runtime
    if pipeline.container:
        docker_bin = which("docker")
        if not docker_bin:
            ok = False
            items.append(DoctorItem("docker", "FAIL", f"docker not found; container {pipeline.container} unavailable"))
        else:
            res = run_cmd(["docker", "info"], cwd=repo, timeout_s=5)
            if res.returncode == 0:
                items.append(DoctorItem("docker", "OK", docker_bin))
            else:
                ok = False
                items.append(DoctorItem("docker", "FAIL", "docker installed but not running/accessible"))

    return DoctorReport(ok=ok, items=items)
