"""Two-tier result cache: in-process TTL entries plus on-disk fallback files.

The TTL tier answers repeat requests without touching the backend. The
fallback tier keeps the last successful result per source on disk and is only
read once every live attempt has failed.
"""

import json
import logging
import re
import time
from collections.abc import Callable
from dataclasses import dataclass
from pathlib import Path

from pydantic import ValidationError

from knowledge_engine.models.knowledge import ExecutionResult

logger = logging.getLogger(__name__)

_UNSAFE_FILENAME = re.compile(r"[^A-Za-z0-9._-]")


@dataclass
class _CacheEntry:
    expires_at: float
    result: ExecutionResult


class TTLCache:
    """In-memory TTL cache keyed by source id; expiry is checked lazily."""

    def __init__(self, clock: Callable[[], float] = time.monotonic):
        self._entries: dict[str, _CacheEntry] = {}
        self._clock = clock

    def get(self, key: str) -> ExecutionResult | None:
        entry = self._entries.get(key)
        if entry is None:
            return None
        if entry.expires_at <= self._clock():
            del self._entries[key]
            return None
        return entry.result

    def put(self, key: str, result: ExecutionResult, ttl_seconds: float) -> None:
        if ttl_seconds <= 0:
            return
        self._entries[key] = _CacheEntry(expires_at=self._clock() + ttl_seconds, result=result)

    def expire(self, key: str | None = None) -> None:
        """Drop one entry, or every entry when ``key`` is None."""
        if key is None:
            self._entries.clear()
        else:
            self._entries.pop(key, None)

    def __len__(self) -> int:
        return len(self._entries)


class FallbackStore:
    """Persists the last successful result per source as a JSON file."""

    def __init__(self, cache_dir: str | Path = "data/knowledge-cache"):
        self.cache_dir = Path(cache_dir)

    def path_for(self, source_id: str) -> Path:
        return self.cache_dir / f"{_UNSAFE_FILENAME.sub('_', source_id)}.json"

    def persist_fallback(self, source_id: str, result: ExecutionResult) -> None:
        path = self.path_for(source_id)
        try:
            self.cache_dir.mkdir(parents=True, exist_ok=True)
            path.write_text(
                json.dumps(result.model_dump(mode="json"), indent=2, ensure_ascii=False),
                encoding="utf-8",
            )
        except (OSError, TypeError, ValueError) as e:
            logger.warning(f"Failed to persist knowledge cache for {source_id}: {e}")

    def read_fallback(self, source_id: str) -> ExecutionResult | None:
        path = self.path_for(source_id)
        if not path.exists():
            return None
        try:
            data = json.loads(path.read_text(encoding="utf-8"))
            return ExecutionResult.model_validate(data)
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning(f"Unreadable fallback cache for {source_id} at {path}: {e}")
            return None
