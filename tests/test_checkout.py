import shutil
import subprocess

import pytest

from matrixrun.artifacts.store import ArtifactStore
from matrixrun.checkout import InPlaceCheckout, WorktreeCheckout, checkout_for
from matrixrun.config import CheckoutSpec, MatrixAxis
from matrixrun.errors import CheckoutError
from matrixrun.matrix import expand_matrix

needs_git = pytest.mark.skipif(shutil.which("git") is None, reason="git not installed")


def _git(repo, *args):
    subprocess.run(
        ["git", "-c", "user.name=t", "-c", "user.email=t@example.com", *args],
        cwd=repo,
        check=True,
        capture_output=True,
    )


@pytest.fixture
def git_repo(tmp_path):
    repo = tmp_path / "repo"
    repo.mkdir()
    _git(repo, "init", "-q")
    (repo / "Cargo.toml").write_text("[package]\nname = \"demo\"\n", encoding="utf-8")
    _git(repo, "add", ".")
    _git(repo, "commit", "-q", "-m", "init")
    return repo


@pytest.fixture
def contexts():
    return expand_matrix([MatrixAxis("target", ("wasm32", "x86_64"))])


def _store(tmp_path):
    store = ArtifactStore(tmp_path / "artifacts" / "p1")
    store.ensure()
    return store


def test_inplace_uses_repo(tmp_path, contexts):
    checkout = InPlaceCheckout(tmp_path)
    assert checkout.prepare(contexts[0]) == tmp_path
    checkout.release(contexts[0])
    assert tmp_path.exists()


def test_inplace_missing_dir(tmp_path, contexts):
    with pytest.raises(CheckoutError, match="Working tree not found"):
        InPlaceCheckout(tmp_path / "missing").prepare(contexts[0])


def test_checkout_for_strategy(tmp_path):
    store = _store(tmp_path)
    assert isinstance(checkout_for(CheckoutSpec(), tmp_path, store), InPlaceCheckout)
    wt = checkout_for(CheckoutSpec(strategy="worktree", ref="main"), tmp_path, store)
    assert isinstance(wt, WorktreeCheckout)
    assert wt.ref == "main"


def test_worktree_requires_git_repo(tmp_path, contexts):
    checkout = WorktreeCheckout(repo=tmp_path, store=_store(tmp_path))
    with pytest.raises(CheckoutError, match="git repository"):
        checkout.prepare(contexts[0])


@needs_git
def test_worktree_per_run_is_isolated_and_removed(tmp_path, git_repo, contexts):
    checkout = WorktreeCheckout(repo=git_repo, store=_store(tmp_path))

    dirs = [checkout.prepare(ctx) for ctx in contexts]
    assert dirs[0] != dirs[1]
    for d in dirs:
        assert (d / "Cargo.toml").exists()
    assert dirs[0] == git_repo / ".matrixrun" / "worktrees" / "p1" / "01_wasm32"

    (dirs[0] / "scratch.txt").write_text("x", encoding="utf-8")
    assert not (dirs[1] / "scratch.txt").exists()

    for ctx in contexts:
        checkout.release(ctx)
    assert not any(d.exists() for d in dirs)


@needs_git
def test_worktree_bad_ref(tmp_path, git_repo, contexts):
    checkout = WorktreeCheckout(repo=git_repo, store=_store(tmp_path), ref="no-such-ref")
    with pytest.raises(CheckoutError, match="no-such-ref"):
        checkout.prepare(contexts[0])


@needs_git
def test_cleanup_removes_leftover_worktrees(tmp_path, git_repo, contexts):
    store = _store(tmp_path)
    kept = WorktreeCheckout(repo=git_repo, store=store, keep=True)
    for ctx in contexts:
        kept.prepare(ctx)
        kept.release(ctx)

    assert WorktreeCheckout(repo=git_repo, store=store).cleanup() == 2
    assert not (git_repo / ".matrixrun" / "worktrees" / "p1").exists()
