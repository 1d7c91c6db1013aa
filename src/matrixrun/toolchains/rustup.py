from __future__ import annotations

import threading
from dataclasses import dataclass, field
from pathlib import Path

from ..config import ToolchainSpec
from ..util.shell import CommandRunner, run_cmd
from .base import ToolchainInstall, ToolchainInstaller


@dataclass
class RustupInstaller(ToolchainInstaller):
    """Install a Rust toolchain through rustup.

    CONTRACT
    - Inputs: channel (e.g. stable), optional target triple, component names
    - Outputs:
      - ToolchainInstall whose env pins RUSTUP_TOOLCHAIN=<channel> for later steps
    - Invariants:
      - Uses `rustup toolchain install` so the host's default toolchain is untouched
      - Installs with the minimal profile plus the requested components/target
    - Failure:
      - Non-zero rustup exit is reported through the result, never raised
    """

    runner: CommandRunner = field(default=run_cmd)
    profile: str = "minimal"

    def argv(self, spec: ToolchainSpec) -> list[str]:
        cmd = ["rustup", "toolchain", "install", spec.channel, "--profile", self.profile]
        if spec.target:
            cmd += ["--target", spec.target]
        for component in spec.components:
            cmd += ["--component", component]
        return cmd

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
            self.argv(spec),
            cwd,
            stdout_path=stdout_path,
            stderr_path=stderr_path,
            env=env,
            timeout_s=timeout_s,
            cancel=cancel,
        )
        return ToolchainInstall(result=res, env={"RUSTUP_TOOLCHAIN": spec.channel})
