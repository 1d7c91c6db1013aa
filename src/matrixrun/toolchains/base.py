from __future__ import annotations

"""Toolchain installer protocol.

CONTRACT
- Inputs: ToolchainSpec (rendered for one run), cwd, env, log paths, timeout, cancel token
- Outputs (required):
  - ToolchainInstall(result, env)
- Invariants:
  - `env` holds bindings the remaining steps of the SAME run must see
    (e.g. RUSTUP_TOOLCHAIN); installers never mutate os.environ or global
    toolchain defaults
  - Success/failure is exposed only through `result`
- Failure:
  - Never raises on installer exit status; the executor maps it to ToolchainError
"""

import threading
from dataclasses import dataclass, field
from pathlib import Path
from typing import Protocol

from ..config import ToolchainSpec
from ..util.shell import CmdResult


@dataclass(frozen=True)
class ToolchainInstall:
    result: CmdResult
    env: dict[str, str] = field(default_factory=dict)


class ToolchainInstaller(Protocol):
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
    ) -> ToolchainInstall: ...
