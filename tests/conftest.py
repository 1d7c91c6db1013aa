import threading
import time
from pathlib import Path

import pytest

from matrixrun.util.shell import CmdResult


class SpyRunner:
    """Command runner double that records every invocation.

    `fail` maps a predicate over (cmd_text, env) to an exit code; the first
    matching predicate decides the exit status, otherwise the command succeeds.
    """

    def __init__(self, fail=None, delay_s: float = 0.0, spawn_error=None):
        self.calls = []
        self.fail = fail or []
        self.delay_s = delay_s
        self.spawn_error = spawn_error
        self._lock = threading.Lock()

    def __call__(self, cmd, cwd, stdout_path=None, stderr_path=None, env=None, timeout_s=None, cancel=None):
        text = cmd if isinstance(cmd, str) else " ".join(cmd)
        with self._lock:
            self.calls.append({"cmd": cmd, "text": text, "cwd": Path(cwd), "env": dict(env or {})})
        if self.delay_s:
            time.sleep(self.delay_s)

        rc = 0
        for predicate, code in self.fail:
            if predicate(text, env or {}):
                rc = code
                break
        spawn_error = self.spawn_error(text) if self.spawn_error else None
        if spawn_error:
            rc = 127

        for p in (stdout_path, stderr_path):
            if p is not None:
                p.parent.mkdir(parents=True, exist_ok=True)
        if stdout_path is not None:
            stdout_path.write_text(f"$ {text}\n", encoding="utf-8")
        if stderr_path is not None:
            stderr_path.write_text(f"error: {text} exited {rc}\n" if rc else "", encoding="utf-8")

        return CmdResult(
            cmd=text,
            returncode=rc,
            stdout_path=stdout_path or Path("/dev/null"),
            stderr_path=stderr_path or Path("/dev/null"),
            elapsed_s=self.delay_s,
            stdout_bytes=0,
            stderr_bytes=0,
            spawn_error=spawn_error,
        )

    def texts(self):
        return [c["text"] for c in self.calls]


@pytest.fixture
def spy():
    return SpyRunner()


RUST_CI_YAML = """
name: CI
env:
  CARGO_TERM_COLOR: always
matrix:
  target: [wasm32-unknown-unknown, x86_64-unknown-linux-gnu]
steps:
  - name: install-toolchain
    toolchain:
      installer: rustup
      channel: stable
      target: ${{ matrix.target }}
      components: "clippy, rustfmt"
  - name: check-format
    run: cargo fmt --check
  - name: check-lints
    run: cargo clippy --all-targets --all-features
  - name: run-tests
    run: cargo test --all-targets --all-features
"""


@pytest.fixture
def rust_ci_file(tmp_path):
    p = tmp_path / "pipeline.yaml"
    p.write_text(RUST_CI_YAML, encoding="utf-8")
    return p
