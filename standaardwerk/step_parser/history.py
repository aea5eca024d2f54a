"""Training history persistence."""
from __future__ import annotations

import json
from collections.abc import Mapping
from pathlib import Path
from typing import Any, cast

from .normalize import now_iso

HISTORY_LIMIT = 200


def ensure_history() -> dict[str, Any]:
    timestamp = now_iso()
    return {
        "metadata": {
            "created_at": timestamp,
            "updated_at": timestamp,
            "iteration_count": 0,
            "last_state": None,
        },
        "iterations": [],
    }


def load_history(path: Path) -> dict[str, Any]:
    if not path.exists():
        return ensure_history()
    with path.open("r", encoding="utf-8") as fh:
        return cast(dict[str, Any], json.load(fh))


def save_history(path: Path, history: Mapping[str, Any]) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    with path.open("w", encoding="utf-8") as fh:
        json.dump(history, fh, indent=2, sort_keys=True)


def record_iteration(
    history: dict[str, Any], entry: Mapping[str, Any], state: str
) -> dict[str, Any]:
    iterations = cast(list[dict[str, Any]], history.setdefault("iterations", []))
    iterations.append(dict(entry))
    if len(iterations) > HISTORY_LIMIT:
        del iterations[:-HISTORY_LIMIT]
    metadata = cast(dict[str, Any], history.setdefault("metadata", {}))
    metadata["updated_at"] = now_iso()
    metadata["iteration_count"] = len(iterations)
    metadata["last_state"] = state
    return history


def mark_state(history: dict[str, Any], state: str) -> dict[str, Any]:
    metadata = cast(dict[str, Any], history.setdefault("metadata", {}))
    metadata["updated_at"] = now_iso()
    metadata["last_state"] = state
    return history
