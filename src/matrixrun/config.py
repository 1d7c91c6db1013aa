from __future__ import annotations

"""Configuration models.

CONTRACT
- Inputs: YAML pipeline file path (pipeline.yaml) or dictionary data
- Outputs (required):
  - Validated PipelineSpec (axes, steps, env, strategy, checkout) and RunConfig
- Invariants:
  - Matrix axes keep their declared order; values are coerced to strings
  - Each step declares exactly one of `run`, `argv` or `toolchain`
  - Step indexes are 1-based and follow declaration order
- Failure:
  - Raises ConfigurationError on unreadable YAML, schema violations or bad steps
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Literal

import yaml

from .errors import ConfigurationError

CheckoutStrategy = Literal["inplace", "worktree"]
INSTALLERS = ("rustup", "command", "preinstalled")


@dataclass(frozen=True)
class MatrixAxis:
    name: str
    values: tuple[str, ...]


@dataclass(frozen=True)
class ToolchainSpec:
    installer: str = "rustup"
    channel: str = "stable"
    target: str | None = None
    components: tuple[str, ...] = ()
    command: str | None = None
    binary: str | None = None


@dataclass(frozen=True)
class StepSpec:
    index: int
    name: str
    run: str | None = None
    argv: tuple[str, ...] | None = None
    toolchain: ToolchainSpec | None = None
    env: dict[str, str] = field(default_factory=dict)
    timeout_s: float | None = None

    @property
    def kind(self) -> str:
        return "toolchain" if self.toolchain is not None else "command"

    @property
    def command(self) -> str | list[str]:
        if self.argv is not None:
            return list(self.argv)
        if self.run is not None:
            return self.run
        raise ConfigurationError(f"Step {self.name!r} has no command")


@dataclass(frozen=True)
class StrategyConfig:
    fail_fast: bool = False
    max_parallel: int | None = None


@dataclass(frozen=True)
class CheckoutSpec:
    strategy: CheckoutStrategy = "inplace"
    ref: str = "HEAD"


@dataclass(frozen=True)
class PipelineSpec:
    name: str
    axes: list[MatrixAxis]
    steps: list[StepSpec]
    env: dict[str, str] = field(default_factory=dict)
    exclude: list[dict[str, str]] = field(default_factory=list)
    strategy: StrategyConfig = field(default_factory=StrategyConfig)
    checkout: CheckoutSpec = field(default_factory=CheckoutSpec)
    timeout_s: float | None = None
    container: str | None = None


@dataclass(frozen=True)
class RunConfig:
    repo_path: Path
    pipeline_id: str
    artifacts_root: Path
    pipeline_file: Path | None
    env_overrides: dict[str, str] = field(default_factory=dict)
    fail_fast: bool | None = None
    max_parallel: int | None = None

    def pipeline_dir(self) -> Path:
        return self.artifacts_root / self.pipeline_id


_SCALAR = {"type": ["string", "number", "boolean"]}

PIPELINE_SCHEMA = {
    "type": "object",
    "properties": {
        "name": {"type": "string"},
        "env": {"type": "object", "additionalProperties": _SCALAR},
        "strategy": {
            "type": "object",
            "properties": {
                "fail_fast": {"type": "boolean"},
                "max_parallel": {"type": ["integer", "null"], "minimum": 1},
            },
            "additionalProperties": False,
        },
        "matrix": {
            "type": "object",
            "additionalProperties": {"type": "array", "items": _SCALAR},
        },
        "exclude": {
            "type": "array",
            "items": {"type": "object", "additionalProperties": _SCALAR},
        },
        "checkout": {
            "type": "object",
            "properties": {
                "strategy": {"type": "string", "enum": ["inplace", "worktree"]},
                "ref": {"type": "string"},
            },
            "additionalProperties": False,
        },
        "timeout_s": {"type": ["number", "null"], "exclusiveMinimum": 0},
        "container": {"type": ["string", "null"]},
        "steps": {
            "type": "array",
            "minItems": 1,
            "items": {
                "type": "object",
                "properties": {
                    "name": {"type": "string"},
                    "run": {"type": "string"},
                    "argv": {"type": "array", "items": {"type": "string"}, "minItems": 1},
                    "toolchain": {
                        "type": "object",
                        "properties": {
                            "installer": {"type": "string", "enum": list(INSTALLERS)},
                            "channel": {"type": "string"},
                            "target": {"type": ["string", "null"]},
                            "components": {
                                "type": ["string", "array"],
                                "items": {"type": "string"},
                            },
                            "command": {"type": "string"},
                            "binary": {"type": "string"},
                        },
                        "additionalProperties": False,
                    },
                    "env": {"type": "object", "additionalProperties": _SCALAR},
                    "timeout_s": {"type": ["number", "null"], "exclusiveMinimum": 0},
                },
            },
        },
    },
    "required": ["matrix", "steps"],
}


def scalar_str(value: Any) -> str:
    # YAML `true` must render as it would in a shell, not as Python's `True`.
    if isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def _str_map(raw: dict[str, Any] | None) -> dict[str, str]:
    return {str(k): scalar_str(v) for k, v in (raw or {}).items()}


def _parse_components(raw: str | list[str] | None) -> tuple[str, ...]:
    if raw is None:
        return ()
    items = raw.split(",") if isinstance(raw, str) else raw
    return tuple(c.strip() for c in items if c.strip())


def _parse_toolchain(raw: dict[str, Any]) -> ToolchainSpec:
    spec = ToolchainSpec(
        installer=str(raw.get("installer", "rustup")),
        channel=str(raw.get("channel", "stable")),
        target=raw.get("target"),
        components=_parse_components(raw.get("components")),
        command=raw.get("command"),
        binary=raw.get("binary"),
    )
    if spec.installer == "command" and not spec.command:
        raise ConfigurationError("toolchain installer 'command' requires a `command`")
    return spec


def _parse_step(index: int, raw: dict[str, Any]) -> StepSpec:
    declared = [k for k in ("run", "argv", "toolchain") if raw.get(k) is not None]
    if len(declared) != 1:
        raise ConfigurationError(
            f"Step {index} must declare exactly one of run/argv/toolchain (got {declared or 'none'})"
        )
    toolchain = _parse_toolchain(raw["toolchain"]) if "toolchain" in declared else None
    argv = tuple(raw["argv"]) if "argv" in declared else None
    run = raw.get("run")
    default_name = run or (" ".join(argv) if argv else f"toolchain {toolchain.installer}")
    return StepSpec(
        index=index,
        name=str(raw.get("name") or default_name),
        run=run,
        argv=argv,
        toolchain=toolchain,
        env=_str_map(raw.get("env")),
        timeout_s=raw.get("timeout_s"),
    )


def parse_pipeline(data: dict[str, Any], *, source: str = "<pipeline>") -> PipelineSpec:
    import jsonschema  # lazy import

    try:
        jsonschema.validate(instance=data, schema=PIPELINE_SCHEMA)
    except jsonschema.ValidationError as e:
        where = "/".join(str(p) for p in e.absolute_path) or "<root>"
        raise ConfigurationError(f"Invalid pipeline file {source} at {where}: {e.message}") from e

    axes = [
        MatrixAxis(name=str(name), values=tuple(scalar_str(v) for v in values))
        for name, values in data["matrix"].items()
    ]
    steps = [_parse_step(i, s) for i, s in enumerate(data["steps"], start=1)]
    strategy_raw = data.get("strategy", {}) or {}
    checkout_raw = data.get("checkout", {}) or {}
    return PipelineSpec(
        name=str(data.get("name", "pipeline")),
        axes=axes,
        steps=steps,
        env=_str_map(data.get("env")),
        exclude=[_str_map(e) for e in data.get("exclude", []) or []],
        strategy=StrategyConfig(
            fail_fast=bool(strategy_raw.get("fail_fast", False)),
            max_parallel=strategy_raw.get("max_parallel"),
        ),
        checkout=CheckoutSpec(
            strategy=checkout_raw.get("strategy", "inplace"),
            ref=str(checkout_raw.get("ref", "HEAD")),
        ),
        timeout_s=data.get("timeout_s"),
        container=data.get("container"),
    )


def load_pipeline_file(path: Path) -> PipelineSpec:
    try:
        data = yaml.safe_load(path.read_text(encoding="utf-8")) or {}
    except OSError as e:
        raise ConfigurationError(f"Cannot read pipeline file {path}: {e}") from e
    except yaml.YAMLError as e:
        raise ConfigurationError(f"Invalid YAML in {path}: {e}") from e
    if not isinstance(data, dict):
        raise ConfigurationError(f"Pipeline file {path} must contain a mapping")
    return parse_pipeline(data, source=str(path))


if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="Pipeline file loader")
    parser.add_argument("--pipeline", required=True, help="Path to pipeline.yaml")
    args = parser.parse_args()

    try:
        spec = load_pipeline_file(Path(args.pipeline))
        print(f"Loaded {spec.name!r}: {len(spec.axes)} axes, {len(spec.steps)} steps.")
        for axis in spec.axes:
            print(f"  {axis.name}: {', '.join(axis.values)}")
    except ConfigurationError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
