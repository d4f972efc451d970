import json
import logging
import os
import threading
import time
from pathlib import Path
from typing import Callable

from pydantic import ValidationError

from .models import CacheEntry, Report
from .settings import DiggerConfig

logger = logging.getLogger(__name__)


class CacheStore:
    """
    Persistent, bounded Report cache keyed by normalized URL.

    What this implementation does:
    - Keeps an index {url: CacheEntry} in memory and mirrors it to a JSON file
    - `get` is a hit only while the entry is younger than the retention window;
      a hit refreshes `last_accessed` (LRU, not insertion order)
    - `put` replaces the whole entry, drops expired entries, then evicts the
      least recently accessed entries until the ceiling holds

    Behavior:
    - Expiry is lazy: stale entries stay readable through `peek` until the next write
    - An unreadable cache file is treated as empty
    - A failed save is logged; the in-memory index stays authoritative
    - All operations are serialized by one lock
    """

    def __init__(
        self,
        path: str | Path | None,
        retention_s: float = 48 * 3600,
        max_entries: int = 50,
        clock: Callable[[], float] = time.time,
    ):
        self.path = Path(path) if path is not None else None
        self.retention_s = retention_s
        self.max_entries = max_entries
        self._clock = clock
        self._lock = threading.Lock()
        self._index: dict[str, CacheEntry] = {}
        self._load_index()

    @classmethod
    def from_config(cls, config: DiggerConfig) -> "CacheStore":
        return cls(
            config.resolved_cache_path,
            retention_s=config.cache_retention_s,
            max_entries=config.cache_max_entries,
        )

    def __len__(self) -> int:
        with self._lock:
            return len(self._index)

    def __contains__(self, key: str) -> bool:
        with self._lock:
            return key in self._index

    def get(self, key: str) -> CacheEntry | None:
        """
        Return the entry for `key` if it is still fresh, refreshing its
        `last_accessed`. Expired or missing entries return None.
        """
        with self._lock:
            entry = self._index.get(key)
            if entry is None:
                return None
            now = self._clock()
            if self._is_expired(entry, now):
                return None
            entry = entry.model_copy(update={"last_accessed": now})
            self._index[key] = entry
            self._save_index()
            return entry

    def peek(self, key: str) -> CacheEntry | None:
        """Return the stored entry, fresh or not, without touching `last_accessed`."""
        with self._lock:
            return self._index.get(key)

    def put(self, key: str, report: Report) -> CacheEntry:
        with self._lock:
            now = self._clock()
            entry = CacheEntry(url=key, data=report, timestamp=now, last_accessed=now)
            self._index[key] = entry
            self._evict(now, keep=key)
            self._save_index()
            return entry

    def delete(self, key: str) -> bool:
        with self._lock:
            removed = self._index.pop(key, None) is not None
            if removed:
                self._save_index()
            return removed

    def clear(self) -> None:
        with self._lock:
            self._index.clear()
            self._save_index()

    def _is_expired(self, entry: CacheEntry, now: float) -> bool:
        return (now - entry.timestamp) >= self.retention_s

    def _evict(self, now: float, keep: str) -> None:
        for key in [k for k, e in self._index.items() if k != keep and self._is_expired(e, now)]:
            del self._index[key]
            logger.debug("cache: expired %s", key)

        while len(self._index) > self.max_entries:
            candidates = [k for k in self._index if k != keep] or list(self._index)
            oldest = min(candidates, key=lambda k: self._index[k].last_accessed)
            del self._index[oldest]
            logger.debug("cache: evicted %s", oldest)

    def _load_index(self) -> None:
        """
        Load entries from disk, skipping any that no longer validate.
        """
        if self.path is None or not self.path.exists():
            return
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
        except (OSError, ValueError) as exc:
            logger.warning("cache: unreadable index %s (%s), starting empty", self.path, exc)
            return
        if not isinstance(raw, dict):
            return
        for key, value in raw.items():
            try:
                self._index[key] = CacheEntry.model_validate(value)
            except ValidationError:
                logger.info("cache: dropping invalid entry %s", key)

    def _save_index(self) -> None:
        """
        Persist the index atomically (write to a sibling file, then replace).
        """
        if self.path is None:
            return
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            payload = {k: e.model_dump(mode="json") for k, e in self._index.items()}
            tmp = self.path.with_suffix(self.path.suffix + ".tmp")
            tmp.write_text(json.dumps(payload, ensure_ascii=False), encoding="utf-8")
            os.replace(tmp, self.path)
        except OSError as exc:
            logger.warning("cache: failed to save %s: %s", self.path, exc)
