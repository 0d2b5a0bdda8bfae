from __future__ import annotations

import hashlib
import json
import logging
from pathlib import Path
from typing import Any

from papertrade.core.orchestration import time_utils

logger = logging.getLogger(__name__)


class DiskTTLCache:
    """JSON records on disk keyed by a sha256 of the cache key."""

    def __init__(self, base_dir: str):
        self.base_dir = Path(base_dir)

    def path_for_key(self, key: str) -> Path:
        digest = hashlib.sha256(key.encode("utf-8")).hexdigest()
        return self.base_dir / f"{digest}.json"

    def get(self, key: str, now_iso: str | None = None) -> dict[str, Any] | None:
        record = self._read(key)
        if record is None:
            return None
        age_seconds = time_utils.seconds_between(record["cached_at"], now_iso or time_utils.now_iso())
        if age_seconds > record["ttl_seconds"]:
            return None
        return record["payload"]

    def get_stale(self, key: str) -> dict[str, Any] | None:
        record = self._read(key)
        return record["payload"] if record is not None else None

    def set(self, key: str, payload: dict[str, Any], ttl_seconds: int) -> None:
        path = self.path_for_key(key)
        record = {
            "cached_at": time_utils.now_iso(),
            "ttl_seconds": int(ttl_seconds),
            "payload": payload,
        }
        try:
            path.parent.mkdir(parents=True, exist_ok=True)
            with path.open("w", encoding="utf-8") as f:
                json.dump(record, f, ensure_ascii=True, sort_keys=True)
        except OSError as exc:
            # Cache write failures should not break history lookups.
            logger.warning("Cache write failed for %s: %s", path, exc)

    def _read(self, key: str) -> dict[str, Any] | None:
        path = self.path_for_key(key)
        if not path.exists():
            return None
        try:
            with path.open("r", encoding="utf-8") as f:
                record = json.load(f)
        except (OSError, json.JSONDecodeError):
            return None
        if not isinstance(record, dict):
            return None
        if not isinstance(record.get("cached_at"), str) or not isinstance(record.get("ttl_seconds"), int):
            return None
        if not isinstance(record.get("payload"), dict):
            return None
        return record
