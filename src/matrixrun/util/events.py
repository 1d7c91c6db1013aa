from __future__ import annotations

"""Structured event log (events.jsonl).

CONTRACT
- Inputs: stage name plus arbitrary JSON-serializable fields
- Outputs:
  - Appends one JSON line per event to the configured path
- Invariants:
  - Adds `ts_ms` and `pipeline_id` automatically
  - Loggers returned by bind() share the file lock, so events emitted from
    concurrent run threads never interleave within a line
- Failure:
  - Raises OSError if the log path is not writable
"""

import json
import threading
import time
from dataclasses import dataclass, field, replace
from pathlib import Path
from typing import Any


@dataclass
class EventLog:
    path: Path
    pipeline_id: str | None = None
    bound: dict[str, Any] = field(default_factory=dict)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def bind(self, **fields: Any) -> EventLog:
        return replace(self, bound={**self.bound, **fields}, _lock=self._lock)

    def emit(self, stage: str, **fields: Any) -> None:
        event: dict[str, Any] = {"ts_ms": int(time.time() * 1000), "stage": stage}
        if self.pipeline_id:
            event["pipeline_id"] = self.pipeline_id
        event.update(self.bound)
        event.update(fields)
        line = json.dumps(event, ensure_ascii=False, default=str)
        with self._lock:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with self.path.open("a", encoding="utf-8") as f:
                f.write(line + "\n")

    def read(self) -> list[dict[str, Any]]:
        if not self.path.exists():
            return []
        return [
            json.loads(line)
            for line in self.path.read_text(encoding="utf-8").splitlines()
            if line.strip()
        ]
