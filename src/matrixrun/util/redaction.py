from __future__ import annotations

"""Redaction of captured step output.

CONTRACT
- Inputs: text strings, optionally the environment a step ran with
- Outputs:
  - redacted text string
- Invariants:
  - Replaces known token shapes (GitHub, OpenAI, crates.io) with [REDACTED]
  - Replaces literal values of secret-looking env vars (*TOKEN*, *SECRET*,
    *PASSWORD*, *KEY*) when built with `Redactor.for_env`
  - Best-effort; does not guarantee all secrets are caught
- Failure:
  - None (returns the original text when nothing matches)
"""

import re
from dataclasses import dataclass, field

DEFAULT_PATTERNS = [
    re.compile(r"ghp_[A-Za-z0-9]{20,}"),
    re.compile(r"github_pat_[A-Za-z0-9_]{20,}"),
    re.compile(r"sk-[A-Za-z0-9]{20,}"),
    re.compile(r"cio[A-Za-z0-9]{32}"),
]

_SECRET_KEY_RE = re.compile(r"TOKEN|SECRET|PASSWORD|KEY", re.IGNORECASE)
# Short values would mask ordinary words in build output.
_MIN_SECRET_LEN = 6


@dataclass(frozen=True)
class Redactor:
    patterns: list[re.Pattern] = field(default_factory=lambda: list(DEFAULT_PATTERNS))
    secret_values: tuple[str, ...] = ()

    @classmethod
    def for_env(cls, env: dict[str, str]) -> Redactor:
        values = sorted(
            {v for k, v in env.items() if _SECRET_KEY_RE.search(k) and len(v) >= _MIN_SECRET_LEN},
            key=len,
            reverse=True,
        )
        return cls(secret_values=tuple(values))

    def redact(self, text: str) -> str:
        out = text
        for value in self.secret_values:
            out = out.replace(value, "[REDACTED]")
        for pat in self.patterns:
            out = pat.sub("[REDACTED]", out)
        return out
