from __future__ import annotations

"""Matrix expansion and run planning.

CONTRACT
- Inputs: ordered MatrixAxis list, optional exclusions, process-wide env bindings
- Outputs (required):
  - expand_matrix(): RunContexts in declared order (first axis varies slowest)
  - plan_runs(): one RunPlan per RunContext with every step template rendered
- Invariants:
  - Pure and deterministic; nothing is executed
  - RunContext.env = process-wide bindings overlaid with MATRIX_<AXIS> bindings
    (per-run bindings win on key conflict)
  - `${{ matrix.<axis> }}` / `${{ env.<NAME> }}` placeholders are resolved
    before any run starts
- Failure:
  - Raises ConfigurationError (no axes, empty axis, duplicate axis, bad
    exclusion, unknown placeholder); no RunContexts are produced
"""

import itertools
import re
from dataclasses import dataclass, replace
from typing import Iterable, Mapping

from .config import MatrixAxis, PipelineSpec, StepSpec
from .errors import ConfigurationError
from .util.ids import run_slug

_PLACEHOLDER_RE = re.compile(r"\$\{\{\s*(matrix|env)\.([A-Za-z0-9_.-]+)\s*\}\}")
_BINDING_RE = re.compile(r"[^A-Za-z0-9]+")


@dataclass(frozen=True)
class RunContext:
    index: int
    values: tuple[tuple[str, str], ...]
    env: dict[str, str]

    @property
    def matrix(self) -> dict[str, str]:
        return dict(self.values)

    @property
    def slug(self) -> str:
        return run_slug(self.index, [v for _, v in self.values])

    @property
    def label(self) -> str:
        return ", ".join(f"{k}={v}" for k, v in self.values)


@dataclass(frozen=True)
class RunPlan:
    context: RunContext
    steps: tuple[StepSpec, ...]


def axis_binding(name: str) -> str:
    return "MATRIX_" + _BINDING_RE.sub("_", name).strip("_").upper()


def _validate_axes(axes: list[MatrixAxis]) -> None:
    if not axes:
        raise ConfigurationError("Matrix must declare at least one axis")
    seen: set[str] = set()
    for axis in axes:
        if axis.name in seen:
            raise ConfigurationError(f"Duplicate matrix axis: {axis.name!r}")
        seen.add(axis.name)
        if not axis.values:
            raise ConfigurationError(f"Matrix axis {axis.name!r} has no values")


def _excluded(combo: dict[str, str], exclude: Iterable[Mapping[str, str]]) -> bool:
    return any(all(combo.get(k) == v for k, v in rule.items()) for rule in exclude)


def expand_matrix(
    axes: list[MatrixAxis],
    exclude: Iterable[Mapping[str, str]] = (),
    base_env: Mapping[str, str] | None = None,
) -> list[RunContext]:
    _validate_axes(axes)
    exclude = list(exclude)
    names = [a.name for a in axes]
    for rule in exclude:
        unknown = set(rule) - set(names)
        if unknown:
            raise ConfigurationError(f"Exclusion names unknown axis: {', '.join(sorted(unknown))}")

    contexts: list[RunContext] = []
    for combo in itertools.product(*(a.values for a in axes)):
        pairs = tuple(zip(names, combo))
        if _excluded(dict(pairs), exclude):
            continue
        env = dict(base_env or {})
        env.update({axis_binding(k): v for k, v in pairs})
        contexts.append(RunContext(index=len(contexts) + 1, values=pairs, env=env))

    if not contexts:
        raise ConfigurationError("Matrix exclusions removed every combination")
    return contexts


def render(template: str, ctx: RunContext) -> str:
    matrix = ctx.matrix

    def _sub(m: re.Match) -> str:
        scope, key = m.group(1), m.group(2)
        source = matrix if scope == "matrix" else ctx.env
        if key not in source:
            raise ConfigurationError(f"Unknown placeholder {m.group(0)!r} for run {ctx.label}")
        return source[key]

    return _PLACEHOLDER_RE.sub(_sub, template)


def render_step(step: StepSpec, ctx: RunContext) -> StepSpec:
    changes: dict = {
        "name": render(step.name, ctx),
        "env": {k: render(v, ctx) for k, v in step.env.items()},
    }
    if step.run is not None:
        changes["run"] = render(step.run, ctx)
    if step.argv is not None:
        changes["argv"] = tuple(render(a, ctx) for a in step.argv)
    if step.toolchain is not None:
        tc = step.toolchain
        changes["toolchain"] = replace(
            tc,
            channel=render(tc.channel, ctx),
            target=render(tc.target, ctx) if tc.target else None,
            components=tuple(render(c, ctx) for c in tc.components),
            command=render(tc.command, ctx) if tc.command else None,
        )
    return replace(step, **changes)


def plan_runs(pipeline: PipelineSpec, base_env: Mapping[str, str] | None = None) -> list[RunPlan]:
    env = dict(pipeline.env)
    env.update(base_env or {})
    contexts = expand_matrix(pipeline.axes, pipeline.exclude, env)
    return [
        RunPlan(context=ctx, steps=tuple(render_step(s, ctx) for s in pipeline.steps))
        for ctx in contexts
    ]
