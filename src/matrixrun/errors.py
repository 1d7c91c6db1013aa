from __future__ import annotations

"""Error taxonomy.

CONTRACT
- ConfigurationError aborts the whole pipeline before any run starts.
- RunError subclasses are fatal to ONE run only; the executor converts them
  into an explicit RunResult (status + failure kind) so siblings proceed.
- Every RunError carries a `kind` tag used in reports and RUN.json.
"""

from typing import TYPE_CHECKING

if TYPE_CHECKING:
    from .results import StepResult


class MatrixRunError(Exception):
    """Base class for all matrixrun errors."""


class ConfigurationError(MatrixRunError):
    """Malformed pipeline file, matrix, or step template."""


class RunError(MatrixRunError):
    kind = "run"

    def __init__(self, message: str, result: StepResult | None = None) -> None:
        super().__init__(message)
        self.result = result


class CheckoutError(RunError):
    kind = "checkout"


class ToolchainError(RunError):
    kind = "toolchain"


class StepFailure(RunError):
    kind = "step"


class ExecutionError(RunError):
    """The command runner could not start the process at all."""

    kind = "execution"


class RunCancelled(RunError):
    kind = "cancelled"
