from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path

from ..config import ToolchainSpec
from ..util.shell import CommandRunner, run_cmd
from .base import ToolchainInstall, ToolchainInstaller


@dataclass
class CommandInstaller(ToolchainInstaller):
    """Install a toolchain with a user-declared shell command.

    The command sees TOOLCHAIN_CHANNEL, TOOLCHAIN_TARGET and
    TOOLCHAIN_COMPONENTS (comma separated) in its environment.
    """

    runner: CommandRunner = field(default=run_cmd)

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
        install_env = env | {
            "TOOLCHAIN_CHANNEL": spec.channel,
            "TOOLCHAIN_TARGET": spec.target or "",
            "TOOLCHAIN_COMPONENTS": ",".join(spec.components),
        }
        res = self.runner(
            spec.command,
            cwd,
            stdout_path=stdout_path,
            stderr_path=stderr_path,
            env=install_env,
            timeout_s=timeout_s,
            cancel=cancel,
        )
        return ToolchainInstall(result=res)
