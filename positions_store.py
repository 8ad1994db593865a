"""JSON snapshot storage for the running position state."""

from __future__ import annotations

import json
import logging
import os
import threading
from pathlib import Path
from typing import Any, Dict, Mapping


_STORE_ENV = "POSITION_STATE_PATH"
_DEFAULT_PATH = Path("data/position_state.json")
_LOCK = threading.RLock()

LOGGER = logging.getLogger(__name__)


def _store_path() -> Path:
    override = os.environ.get(_STORE_ENV)
    if override:
        return Path(override)
    return _DEFAULT_PATH


def get_store_path() -> Path:
    """Return the configured path for the position snapshot."""

    return _store_path()


def _ensure_parent(path: Path) -> None:
    try:
        path.parent.mkdir(parents=True, exist_ok=True)
    except OSError:
        pass


def load_state(path: Path | None = None) -> Dict[str, Any] | None:
    """Return the last persisted snapshot, or ``None`` when there is none."""

    target = path or _store_path()
    with _LOCK:
        if not target.exists():
            return None
        try:
            raw = target.read_text(encoding="utf-8")
        except OSError:
            return None
    if not raw.strip():
        return None
    try:
        payload = json.loads(raw)
    except json.JSONDecodeError:
        LOGGER.warning("position snapshot is not valid JSON", extra={"path": str(target)})
        return None
    if not isinstance(payload, Mapping):
        return None
    return {str(key): value for key, value in payload.items()}


def save_state(state: Mapping[str, Any], path: Path | None = None) -> None:
    target = path or _store_path()
    snapshot = dict(state)
    with _LOCK:
        _ensure_parent(target)
        tmp_path = target.with_suffix(target.suffix + ".tmp")
        try:
            with tmp_path.open("w", encoding="utf-8") as handle:
                json.dump(snapshot, handle, indent=2, sort_keys=True)
            tmp_path.replace(target)
        except OSError as exc:
            LOGGER.warning(
                "position snapshot write failed",
                extra={"path": str(target), "error": str(exc)},
            )


def reset_store(path: Path | None = None) -> None:
    target = path or _store_path()
    with _LOCK:
        try:
            target.unlink()
        except FileNotFoundError:
            pass


__all__ = ["get_store_path", "load_state", "reset_store", "save_state"]
