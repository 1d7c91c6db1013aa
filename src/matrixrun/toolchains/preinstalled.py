from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path

from ..config import ToolchainSpec
from ..util.shell import CommandRunner, run_cmd
from .base import ToolchainInstall, ToolchainInstaller


@dataclass
class PreinstalledToolchain(ToolchainInstaller):
    """Nothing to install; prove the toolchain binary answers `--version`."""

    runner: CommandRunner = field(default=run_cmd)
    default_binary: str = "cargo"

    def install(
        self,
        spec: ToolchainSpec,
        *,
        cwd: Path,
        env: dict[str, str],
        stdout_path: Path,
        stderr_path: Path,
        timeout_s: float | None = None,
        cancel: threading.Event | None = None,
    ) -> ToolchainInstall:
        res = self.runner(
            [spec.binary or self.default_binary, "--version"],
            cwd,
            stdout_path=stdout_path,
            stderr_path=stderr_path,
            env=env,
            timeout_s=timeout_s,
            cancel=cancel,
        )
        return ToolchainInstall(result=res)
