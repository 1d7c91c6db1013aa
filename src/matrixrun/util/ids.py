from __future__ import annotations

"""ID generation and validation.

CONTRACT
- Inputs: Pipeline IDs, axis values
- Outputs (required):
  - new_pipeline_id() returns a time-sortable string
  - validate_pipeline_id() returns the validated ID or raises
  - run_slug() returns a filesystem-safe, index-prefixed run directory name
- Invariants:
  - Pipeline IDs match `[A-Za-z0-9][A-Za-z0-9_.-]{0,63}`
  - Slugs are unique per run because they carry the enumeration index
- Failure:
  - Raises ValueError on invalid IDs
"""

import datetime
import random
import re
import string

from .paths import safe_filename

_PIPELINE_ID_RE = re.compile(r"^[A-Za-z0-9][A-Za-z0-9_.-]{0,63}$")


def new_pipeline_id() -> str:
    # YYYYMMDD_HHMMSS_<rand4>
    ts = datetime.datetime.now(datetime.timezone.utc).strftime("%Y%m%d_%H%M%S")
    suffix = "".join(random.choice(string.ascii_lowercase + string.digits) for _ in range(4))
    return f"{ts}_{suffix}"


def validate_pipeline_id(pipeline_id: str) -> str:
    if not _PIPELINE_ID_RE.fullmatch(pipeline_id):
        raise ValueError(
            "Invalid pipeline id. Use 1-64 chars: letters/digits, plus '._-'. Must start with a "
            "letter or digit."
        )
    return pipeline_id


def run_slug(index: int, values: list[str] | tuple[str, ...]) -> str:
    return f"{index:02d}_{safe_filename('_'.join(values), default='run')}"


if __name__ == "__main__":
    import argparse
    import sys

    parser = argparse.ArgumentParser(description="Utilities for pipeline IDs")
    parser.add_argument("--new", action="store_true", help="Generate a new pipeline ID")
    parser.add_argument("--validate", help="Validate a pipeline ID (returns it or fails)")
    args = parser.parse_args()

    try:
        if args.new:
            print(new_pipeline_id())
        elif args.validate:
            print(validate_pipeline_id(args.validate))
        else:
            parser.print_help()
            sys.exit(1)
    except ValueError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
