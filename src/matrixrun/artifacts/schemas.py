from __future__ import annotations

"""Artifact schemas.

CONTRACT
- Inputs: Pydantic models
- Outputs:
  - Validated JSON-serializable objects
- Invariants:
  - Defines the shape of PIPELINE.json, PIPELINE_STATUS.json and runs/<slug>/RUN.json
  - All schemas have schema_version int field
- Failure:
  - Raises ValidationError on schema mismatch
"""

from typing import TYPE_CHECKING, Literal

from pydantic import BaseModel, Field

if TYPE_CHECKING:
    from ..results import RunResult, StepResult


class PipelineStatus(BaseModel):
    schema_version: int = 1
    pipeline_id: str
    status: Literal["running", "success", "failure", "error"]
    message: str = ""
    runs: dict[str, str] = Field(default_factory=dict)
    failed_runs: list[str] = Field(default_factory=list)


class PipelineMeta(BaseModel):
    schema_version: int = 1
    pipeline_id: str
    name: str
    repo_path: str
    pipeline_file: str | None = None
    axes: dict[str, list[str]] = Field(default_factory=dict)
    steps: list[str] = Field(default_factory=list)
    env_keys: list[str] = Field(default_factory=list)
    fail_fast: bool = False
    max_parallel: int | None = None
    checkout: str = "inplace"
    container: str | None = None


class StepRecord(BaseModel):
    schema_version: int = 1
    index: int
    name: str
    kind: Literal["toolchain", "command"]
    status: Literal["success", "failure", "error", "cancelled"]
    exit_code: int
    elapsed_s: float = 0.0
    stdout_log: str | None = None
    stderr_log: str | None = None
    error: str | None = None

    @classmethod
    def from_result(cls, r: StepResult) -> StepRecord:
        return cls(
            index=r.step.index,
            name=r.step.name,
            kind=r.step.kind,
            status=r.status,
            exit_code=r.exit_code,
            elapsed_s=round(r.elapsed_s, 3),
            stdout_log=str(r.stdout_path) if r.stdout_path else None,
            stderr_log=str(r.stderr_path) if r.stderr_path else None,
            error=r.error,
        )


class RunRecord(BaseModel):
    schema_version: int = 1
    index: int
    slug: str
    matrix: dict[str, str]
    status: Literal["success", "failure", "cancelled"]
    failure_kind: str | None = None
    error: str | None = None
    steps: list[StepRecord] = Field(default_factory=list)
    not_executed: list[str] = Field(default_factory=list)

    @classmethod
    def from_result(cls, r: RunResult) -> RunRecord:
        return cls(
            index=r.context.index,
            slug=r.context.slug,
            matrix=r.context.matrix,
            status=r.status,
            failure_kind=r.failure_kind,
            error=r.error,
            steps=[StepRecord.from_result(s) for s in r.step_results],
            not_executed=list(r.not_executed),
        )


def validate_pipeline_status(data: dict) -> tuple[bool, PipelineStatus | None, str]:
    """Validate PIPELINE_STATUS.json against schema.

    Returns: (is_valid, parsed_status, error_message)
    """
    try:
        return True, PipelineStatus(**data), ""
    except Exception as e:
        return False, None, str(e)
