"""Parse cache for agent files.

Thread-safe, keyed by absolute path, validated against the file's
modification time and evicted in insertion order.
"""

import hashlib
from dataclasses import dataclass, field
from datetime import datetime
from threading import RLock
from typing import Any

from loguru import logger

from .types import AgentAST, Dialect, ValidationResult


def content_hash(text: str) -> str:
    return hashlib.md5(text.encode("utf-8")).hexdigest()


@dataclass
class CacheEntry:
    path: str
    content_hash: str
    ast: AgentAST
    validation: ValidationResult
    dialect: Dialect
    last_modified: int
    size: int
    cached_at: datetime = field(default_factory=datetime.now)


class AgentParseCache:
    """Cache of parse results keyed by file path.

    An entry is only served while the file's modification time matches the
    one recorded when it was parsed.
    """

    def __init__(self, max_size: int = 100):
        """Initialize the parse cache.

        Args:
            max_size: Maximum number of cache entries

        """
        self.max_size = max_size
        self.entries: dict[str, CacheEntry] = {}
        self.lock = RLock()
        self.stats = {"hits": 0, "misses": 0, "evictions": 0, "sets": 0, "invalidations": 0}

        logger.debug(f"Initialized AgentParseCache: max_size={max_size}")

    def get(self, path: str, last_modified: int) -> CacheEntry | None:
        """Cached entry for ``path`` if it was parsed at ``last_modified``.

        Args:
            path: Absolute file path
            last_modified: Current modification time in nanoseconds

        Returns:
            The entry, or None when missing or stale

        """
        with self.lock:
            entry = self.entries.get(path)
            if entry is None or entry.last_modified != last_modified:
                self.stats["misses"] += 1
                return None
            self.stats["hits"] += 1
            return entry

    def put(self, entry: CacheEntry) -> None:
        with self.lock:
            self.entries.pop(entry.path, None)
            while len(self.entries) >= self.max_size:
                self._evict_oldest()
            self.entries[entry.path] = entry
            self.stats["sets"] += 1

    def invalidate(self, path: str) -> bool:
        with self.lock:
            if self.entries.pop(path, None) is not None:
                self.stats["invalidations"] += 1
                logger.debug(f"Invalidated cache entry: {path}")
                return True
            return False

    def clear(self) -> None:
        with self.lock:
            count = len(self.entries)
            self.entries.clear()
            logger.info(f"Cleared {count} cache entries")

    def _evict_oldest(self) -> None:
        oldest = next(iter(self.entries))
        del self.entries[oldest]
        self.stats["evictions"] += 1
        logger.debug(f"Evicted cache entry: {oldest}")

    def __len__(self) -> int:
        with self.lock:
            return len(self.entries)

    def __contains__(self, path: str) -> bool:
        with self.lock:
            return path in self.entries

    def get_stats(self) -> dict[str, Any]:
        """Get cache statistics."""
        with self.lock:
            lookups = self.stats["hits"] + self.stats["misses"]
            return {
                **self.stats,
                "size": len(self.entries),
                "max_size": self.max_size,
                "hit_rate": self.stats["hits"] / lookups if lookups else 0.0,
                "paths": list(self.entries),
            }
