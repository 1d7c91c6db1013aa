from __future__ import annotations

"""Template initializer.

CONTRACT
- Inputs: Repo path
- Outputs (required):
  - Writes .matrixrun/pipeline.yaml
- Invariants:
  - Creates .matrixrun directory if missing
  - Does not overwrite an existing pipeline file (by default)
- Failure:
  - Raises OSError on permission issues
"""

from pathlib import Path

from .orchestrator import PIPELINE_FILE
from .util.paths import copy_template


def write_templates(repo: Path, force: bool = False) -> Path | None:
    dest = repo / PIPELINE_FILE
    return dest if copy_template("pipeline.yaml", dest, overwrite=force) else None
