from __future__ import annotations

"""Command execution (the process host).

CONTRACT
- Inputs: Command (str -> shell, list -> argv), cwd, env overlay, timeout, cancel token
- Outputs (required):
  - CmdResult(returncode, stdout_path, stderr_path, timed_out, cancelled, spawn_error)
- Invariants:
  - Writes stdout/stderr to files (temp files when no path is given)
  - env is overlaid on os.environ for the CHILD only; os.environ is never mutated
  - Timeout -> returncode 124, cancellation -> returncode 130
  - The child runs in its own session so the whole process group is terminated
- Failure:
  - Never raises for non-zero exit or for a process that cannot be started;
    the latter is reported through `spawn_error` (returncode 127)
"""

import os
import shlex
import signal
import subprocess
import tempfile
import threading
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable

_POLL_S = 0.1
_KILL_GRACE_S = 5.0

TIMEOUT_RC = 124
SPAWN_FAILED_RC = 127
CANCELLED_RC = 130


def which(cmd: str) -> str | None:
    for p in os.environ.get("PATH", "").split(os.pathsep):
        candidate = Path(p) / cmd
        if candidate.exists() and os.access(candidate, os.X_OK):
            return str(candidate)
    return None


@dataclass(frozen=True)
class CmdResult:
    cmd: str
    returncode: int
    stdout_path: Path
    stderr_path: Path
    elapsed_s: float
    stdout_bytes: int
    stderr_bytes: int
    timed_out: bool = False
    cancelled: bool = False
    spawn_error: str | None = None

    @property
    def ok(self) -> bool:
        return self.returncode == 0 and not self.cancelled and self.spawn_error is None


CommandRunner = Callable[..., CmdResult]


def _temp_log(prefix: str) -> Path:
    tf = tempfile.NamedTemporaryFile(delete=False, prefix=prefix)
    tf.close()
    return Path(tf.name)


def _terminate(p: subprocess.Popen) -> None:
    try:
        if os.name == "posix":
            os.killpg(p.pid, signal.SIGTERM)
        else:
            p.terminate()
        p.wait(timeout=_KILL_GRACE_S)
    except subprocess.TimeoutExpired:
        if os.name == "posix":
            os.killpg(p.pid, signal.SIGKILL)
        else:
            p.kill()
        p.wait()
    except ProcessLookupError:
        p.wait()


def _wait(
    p: subprocess.Popen, timeout_s: float | None, cancel: threading.Event | None
) -> tuple[int, bool, bool]:
    """Block until exit, timeout or cancellation. Returns (rc, timed_out, cancelled)."""
    deadline = time.monotonic() + timeout_s if timeout_s else None
    while True:
        try:
            return p.wait(timeout=_POLL_S), False, False
        except subprocess.TimeoutExpired:
            pass
        if cancel is not None and cancel.is_set():
            _terminate(p)
            return CANCELLED_RC, False, True
        if deadline is not None and time.monotonic() >= deadline:
            _terminate(p)
            return TIMEOUT_RC, True, False


def run_cmd(
    cmd: str | list[str],
    cwd: Path,
    stdout_path: Path | None = None,
    stderr_path: Path | None = None,
    env: dict[str, str] | None = None,
    timeout_s: float | None = None,
    cancel: threading.Event | None = None,
) -> CmdResult:
    """Run a command and store stdout/stderr to files.

    A str runs through the shell, a list runs as an argument vector.
    """
    if stdout_path is None:
        stdout_path = _temp_log("mrun_stdout_")
    if stderr_path is None:
        stderr_path = _temp_log("mrun_stderr_")

    stdout_path.parent.mkdir(parents=True, exist_ok=True)
    stderr_path.parent.mkdir(parents=True, exist_ok=True)

    use_shell = isinstance(cmd, str)
    timed_out = cancelled = False
    spawn_error = None

    start_t = time.time()
    with (
        stdout_path.open("w", encoding="utf-8") as out_f,
        stderr_path.open("w", encoding="utf-8") as err_f,
    ):
        try:
            p = subprocess.Popen(
                cmd,
                cwd=str(cwd),
                shell=use_shell,
                env=(os.environ | env) if env else None,
                stdout=out_f,
                stderr=err_f,
                text=True,
                start_new_session=(os.name == "posix"),
            )
        except OSError as e:
            rc = SPAWN_FAILED_RC
            spawn_error = str(e)
            err_f.write(f"\nFailed to start process: {e}\n")
        else:
            rc, timed_out, cancelled = _wait(p, timeout_s, cancel)
            if timed_out:
                err_f.write("\nTimeout expired.\n")
            if cancelled:
                err_f.write("\nCancelled.\n")

    end_t = time.time()

    out_b = stdout_path.stat().st_size if stdout_path.exists() else 0
    err_b = stderr_path.stat().st_size if stderr_path.exists() else 0

    return CmdResult(
        cmd=cmd if isinstance(cmd, str) else shlex.join(cmd),
        returncode=rc,
        stdout_path=stdout_path,
        stderr_path=stderr_path,
        elapsed_s=end_t - start_t,
        stdout_bytes=out_b,
        stderr_bytes=err_b,
        timed_out=timed_out,
        cancelled=cancelled,
        spawn_error=spawn_error,
    )


def run_cmd_docker(
    cmd: str | list[str],
    cwd: Path,
    stdout_path: Path | None = None,
    stderr_path: Path | None = None,
    env: dict[str, str] | None = None,
    timeout_s: float | None = None,
    cancel: threading.Event | None = None,
    container: str = "",
    runner: CommandRunner | None = None,
) -> CmdResult:
    """Run a command with `docker exec` inside an already running container.

    Only the env overlay is forwarded into the container, never the host
    environment.
    """
    docker_cmd = ["docker", "exec", "-w", "/work"]
    for k, v in (env or {}).items():
        docker_cmd.extend(["-e", f"{k}={v}"])

    inner = cmd if isinstance(cmd, str) else shlex.join(cmd)
    docker_cmd.extend([container, "/bin/sh", "-c", inner])

    return (runner or run_cmd)(
        cmd=docker_cmd,
        cwd=cwd,
        stdout_path=stdout_path,
        stderr_path=stderr_path,
        env=None,
        timeout_s=timeout_s,
        cancel=cancel,
    )


@dataclass
class DockerSession:
    """One long-lived container per run.

    CONTRACT
    - start() launches `image` detached (`sleep infinity`) with the working
      tree mounted at /work
    - runner() returns a CommandRunner executing every step in that same
      container, so toolchain installs persist for later steps of the run
    - stop() force-removes the container
    """

    image: str
    name: str
    runner_fn: CommandRunner | None = None

    def _run(self, cmd: list[str], cwd: Path, **kwargs) -> CmdResult:
        return (self.runner_fn or run_cmd)(cmd, cwd, **kwargs)

    def start(
        self, cwd: Path, stdout_path: Path | None = None, stderr_path: Path | None = None
    ) -> CmdResult:
        return self._run(
            [
                "docker", "run",
                "-d", "--rm",
                "--name", self.name,
                "-v", f"{cwd.resolve()}:/work",
                "-w", "/work",
                self.image,
                "sleep", "infinity",
            ],
            cwd,
            stdout_path=stdout_path,
            stderr_path=stderr_path,
            timeout_s=300,
        )

    def runner(self) -> CommandRunner:
        def _runner(cmd, cwd, stdout_path=None, stderr_path=None, env=None, timeout_s=None, cancel=None):
            return run_cmd_docker(
                cmd,
                cwd,
                stdout_path=stdout_path,
                stderr_path=stderr_path,
                env=env,
                timeout_s=timeout_s,
                cancel=cancel,
                container=self.name,
                runner=self.runner_fn,
            )

        return _runner

    def stop(self, cwd: Path) -> CmdResult:
        return self._run(["docker", "rm", "-f", self.name], cwd, timeout_s=60)


def read_tail(path: Path | None, max_lines: int = 40) -> str:
    if path is None or not path.exists():
        return ""
    lines = path.read_text(encoding="utf-8", errors="replace").splitlines()
    return "\n".join(lines[-max_lines:])


if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="Run a command the way pipeline steps run")
    parser.add_argument("--cmd", required=True, help="Command to run (shell)")
    parser.add_argument("--cwd", default=".", help="Working directory")
    parser.add_argument("--timeout", type=float, default=None, help="Timeout in seconds")
    args = parser.parse_args()

    res = run_cmd(cmd=args.cmd, cwd=Path(args.cwd), timeout_s=args.timeout)
    print(f"Exit code: {res.returncode} ({res.elapsed_s:.2f}s)")
    print(f"Stdout: {res.stdout_path.read_text(encoding='utf-8')}")
    print(f"Stderr: {res.stderr_path.read_text(encoding='utf-8')}")
    sys.exit(res.returncode)
