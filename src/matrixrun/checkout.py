from __future__ import annotations

"""Source checkout providers.

CONTRACT
- Inputs: Repo path, RunContext, revision reference
- Outputs (required):
  - prepare(ctx) -> working tree path the run's steps execute in
  - release(ctx) removes whatever prepare() created
- Invariants:
  - `inplace`: every run uses the repository itself (nothing created)
  - `worktree`: one detached git worktree per run at
    <repo>/.matrixrun/worktrees/<pipeline_id>/<slug>, removed on release
  - git worktree add/remove calls are serialized (shared .git metadata)
- Failure:
  - prepare() raises CheckoutError; the run fails before step 1
  - release() only logs warnings
"""

import shutil
import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from loguru import logger

from .artifacts.store import ArtifactStore
from .config import CheckoutSpec
from .errors import CheckoutError
from .matrix import RunContext
from .util.shell import read_tail, run_cmd


class CheckoutProvider(Protocol):
    def prepare(self, ctx: RunContext) -> Path: ...
    def release(self, ctx: RunContext) -> None: ...


def _is_git_repo(repo: Path) -> bool:
    return (repo / ".git").exists()


@dataclass
class InPlaceCheckout:
    repo: Path

    def prepare(self, ctx: RunContext) -> Path:
        if not self.repo.is_dir():
            raise CheckoutError(f"Working tree not found: {self.repo}")
        return self.repo

    def release(self, ctx: RunContext) -> None:
        return None


@dataclass
class WorktreeCheckout:
    repo: Path
    store: ArtifactStore
    ref: str = "HEAD"
    keep: bool = False
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False)

    def _worktrees_root(self) -> Path:
        return self.repo / ".matrixrun" / "worktrees" / self.store.pipeline_dir.name

    def get_worktree_path(self, ctx: RunContext) -> Path:
        return self._worktrees_root() / ctx.slug

    def prepare(self, ctx: RunContext) -> Path:
        if not _is_git_repo(self.repo):
            raise CheckoutError(f"Worktree checkout needs a git repository: {self.repo}")

        wt_dir = self.get_worktree_path(ctx)
        if wt_dir.exists():
            return wt_dir
        wt_dir.parent.mkdir(parents=True, exist_ok=True)

        with self._lock:
            res = run_cmd(
                ["git", "worktree", "add", "--detach", str(wt_dir), self.ref],
                cwd=self.repo,
                stdout_path=self.store.run_path(ctx.slug, "logs", "checkout.stdout.log"),
                stderr_path=self.store.run_path(ctx.slug, "logs", "checkout.stderr.log"),
                timeout_s=120,
            )
        if not res.ok:
            detail = read_tail(res.stderr_path, 5) or f"rc={res.returncode}"
            raise CheckoutError(f"git worktree add {self.ref} failed for {ctx.label}: {detail}")
        logger.debug(f"Checked out {self.ref} for {ctx.label} at {wt_dir}")
        return wt_dir

    def release(self, ctx: RunContext) -> None:
        if self.keep:
            return
        self._remove(self.get_worktree_path(ctx))

    def _remove(self, wt_dir: Path) -> None:
        with self._lock:
            if wt_dir.exists():
                res = run_cmd(
                    ["git", "worktree", "remove", "--force", str(wt_dir)],
                    cwd=self.repo,
                    timeout_s=60,
                )
                if res.returncode != 0:
                    logger.warning(f"Failed to remove worktree {wt_dir}; removing directory")
                    shutil.rmtree(wt_dir, ignore_errors=True)
            run_cmd(["git", "worktree", "prune"], cwd=self.repo, timeout_s=30)

    def cleanup(self) -> int:
        """Remove every worktree left behind by this pipeline. Returns the count."""
        root = self._worktrees_root()
        if not root.exists():
            return 0
        removed = 0
        for wt_dir in sorted(p for p in root.iterdir() if p.is_dir()):
            self._remove(wt_dir)
            removed += 1
        try:
            root.rmdir()
        except OSError:
            pass
        return removed


def checkout_for(spec: CheckoutSpec, repo: Path, store: ArtifactStore) -> CheckoutProvider:
    if spec.strategy == "worktree":
        return WorktreeCheckout(repo=repo, store=store, ref=spec.ref)
    return InPlaceCheckout(repo=repo)
