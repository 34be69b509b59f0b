"""JSON manifest persistence shared by the chunk and whole-file indexes."""

from __future__ import annotations

import json
import logging
import os
from datetime import datetime, timezone
from pathlib import Path
from typing import Any

logger = logging.getLogger(__name__)

MANIFEST_VERSION = 1


def now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def load_manifest(path: Path, model_id: str) -> dict[str, Any] | None:
    """Read a manifest, or None if it is missing, unreadable, or stale.

    A manifest written by a different embedding model or format version is
    treated the same as a missing one.
    """
    if not path.is_file():
        return None
    try:
        data = json.loads(path.read_text(encoding="utf-8"))
    except (OSError, ValueError) as e:
        logger.info("Discarding unreadable index manifest %s: %s", path, e)
        return None
    if not isinstance(data, dict):
        logger.info("Discarding malformed index manifest %s", path)
        return None
    if data.get("version") != MANIFEST_VERSION:
        logger.info("Discarding index manifest %s (version %r)", path, data.get("version"))
        return None
    if data.get("model_id") != model_id:
        logger.info(
            "Discarding index manifest %s (built with %r, current model %r)",
            path, data.get("model_id"), model_id,
        )
        return None
    return data


def save_manifest(path: Path, data: dict[str, Any]) -> int:
    """Write ``data`` atomically; returns the number of bytes written."""
    path.parent.mkdir(parents=True, exist_ok=True)
    payload = json.dumps(data, separators=(",", ":"))
    tmp = path.with_suffix(path.suffix + ".tmp")
    tmp.write_text(payload, encoding="utf-8")
    os.replace(tmp, path)
    logger.debug("Saved index manifest %s (%d bytes)", path, len(payload))
    return len(payload)


def delete_manifest(path: Path) -> bool:
    try:
        path.unlink()
        return True
    except FileNotFoundError:
        return False
