from __future__ import annotations

import os
from pathlib import Path
from typing import Dict, Iterable

_COMMENT_PREFIXES: tuple[str, ...] = ("#", "//")


def _strip_quotes(value: str) -> str:
    if len(value) >= 2 and value[0] == value[-1] and value[0] in {'"', "'"}:
        return value[1:-1]
    return value


def parse_env_lines(lines: Iterable[str]) -> Dict[str, str]:
    """Parse ``KEY=value`` lines, skipping blanks, comments and malformed rows."""

    parsed: Dict[str, str] = {}
    for raw_line in lines:
        line = raw_line.strip()
        if not line or line.startswith(_COMMENT_PREFIXES):
            continue
        if line.startswith("export "):
            line = line[len("export "):]
        key, sep, value = line.partition("=")
        key = key.strip()
        if not sep or not key:
            continue
        parsed[key] = _strip_quotes(value.strip())
    return parsed


def load_env_file(path: str | Path = ".env") -> Dict[str, str]:
    """Populate ``os.environ`` from ``path`` and return the keys it applied.

    Variables already present in the environment are never overwritten, so
    venue credentials exported by the shell take precedence over the file.
    """

    env_path = Path(path)
    if not env_path.is_file():
        return {}
    try:
        content = env_path.read_text(encoding="utf-8")
    except OSError:
        return {}
    applied: Dict[str, str] = {}
    for key, value in parse_env_lines(content.splitlines()).items():
        if key in os.environ:
            continue
        os.environ[key] = value
        applied[key] = value
    return applied


def ensure_defaults(pairs: Iterable[tuple[str, str]]) -> None:
    for key, value in pairs:
        os.environ.setdefault(key, value)
