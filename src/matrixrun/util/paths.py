from __future__ import annotations

"""Path utilities.

CONTRACT
- Inputs: strings (filenames) or paths
- Outputs:
  - safe_filename() returns sanitized string (no path separators)
  - ensure_dir() creates directory tree
  - copy_template() writes a bundled template to dest
- Invariants:
  - safe_filename replaces `[^A-Za-z0-9_.-]` runs with `_`
  - copy_template never overwrites existing files (unless `overwrite=True`)
- Failure:
  - copy_template raises FileNotFoundError if the template is missing
"""

import importlib.resources
import re
from pathlib import Path

from .. import templates

_SAFE_FILENAME_RE = re.compile(r"[^A-Za-z0-9_.-]+")


def ensure_dir(path: Path) -> None:
    path.mkdir(parents=True, exist_ok=True)


def copy_template(template_name: str, dest: Path, overwrite: bool = False) -> bool:
    if dest.exists() and not overwrite:
        return False
    text = importlib.resources.files(templates).joinpath(template_name).read_text(encoding="utf-8")
    dest.parent.mkdir(parents=True, exist_ok=True)
    dest.write_text(text, encoding="utf-8")
    return True


def safe_filename(name: str, *, default: str = "item") -> str:
    cleaned = _SAFE_FILENAME_RE.sub("_", name).strip("._-")
    return cleaned or default
