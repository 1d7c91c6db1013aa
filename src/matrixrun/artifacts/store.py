from __future__ import annotations

import json
from dataclasses import dataclass
from pathlib import Path
from typing import Any

from .schemas import PipelineMeta, PipelineStatus, RunRecord


@dataclass(frozen=True)
class ArtifactStore:
    """Artifact storage manager.

    CONTRACT
    - Inputs: Pipeline directory path (.matrixrun/runs/<pipeline_id>)
    - Outputs:
      - PIPELINE.json, PIPELINE_STATUS.json, REPORT.md, events.jsonl
      - runs/<slug>/RUN.json and runs/<slug>/logs/*.log
    - Invariants:
      - Enforces path safety (prevents traversal outside pipeline_dir)
      - Ensures parent directories exist on write
    - Failure:
      - Raises ValueError on unsafe path access
    """
    pipeline_dir: Path

    def ensure(self) -> None:
        self.pipeline_dir.mkdir(parents=True, exist_ok=True)
        (self.pipeline_dir / "runs").mkdir(exist_ok=True)

    def path(self, *parts: str) -> Path:
        p = self.pipeline_dir.joinpath(*parts)
        base = self.pipeline_dir.resolve(strict=False)
        try:
            p.resolve(strict=False).relative_to(base)
        except ValueError as exc:
            raise ValueError(f"Refusing to access path outside pipeline_dir: {p}") from exc
        return p

    def run_path(self, slug: str, *parts: str) -> Path:
        return self.path("runs", slug, *parts)

    def write_json(self, rel: str | Path, data: Any) -> Path:
        p = self.path(str(rel))
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(data, indent=2, ensure_ascii=False) + "\n", encoding="utf-8")
        return p

    def read_json(self, rel: str | Path) -> Any:
        p = self.path(str(rel))
        return json.loads(p.read_text(encoding="utf-8"))

    def write_text(self, rel: str | Path, text: str) -> Path:
        p = self.path(str(rel))
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(text, encoding="utf-8")
        return p

    def write_meta(self, meta: PipelineMeta) -> Path:
        return self.write_json("PIPELINE.json", meta.model_dump())

    def write_status(self, status: PipelineStatus) -> Path:
        return self.write_json("PIPELINE_STATUS.json", status.model_dump())

    def write_run(self, record: RunRecord) -> Path:
        return self.write_json(Path("runs") / record.slug / "RUN.json", record.model_dump())
