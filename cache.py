"""
Correspondence cache for one reconciliation run
"""

import logging
from typing import Any, Callable, Dict, Hashable, Tuple


logger = logging.getLogger(__name__)


class _Sentinel:
    def __init__(self, name: str):
        self.name = name

    def __repr__(self):
        return self.name

    def __bool__(self):
        return False


# Returned by lookup() when nothing has been stored for a key
MISS = _Sentinel("MISS")
# Stored when the expensive lookup found no counterpart
NOT_FOUND = _Sentinel("NOT_FOUND")

GROUP_PAIR = "group_pair"
CONTACT = "contact"
MEMBER = "member"


class CorrespondenceCache:
    """
    Memoizes Community -> Directory identifier lookups.

    Entries are never evicted or invalidated; a cache lives exactly as long
    as the run that owns it, so a new run always starts cold.
    """

    def __init__(self):
        self._entries: Dict[Tuple[str, Hashable], Any] = {}
        self.hits = 0
        self.misses = 0

    def lookup(self, kind: str, key: Hashable) -> Any:
        value = self._entries.get((kind, key), MISS)
        if value is MISS:
            self.misses += 1
            logger.debug(f"Cache miss: {kind} {key}")
        else:
            self.hits += 1
            logger.debug(f"Cache hit: {kind} {key}")
        return value

    def store(self, kind: str, key: Hashable, value: Any) -> None:
        """Store a value. None is stored as NOT_FOUND."""
        if value is None:
            value = NOT_FOUND
        self._entries[(kind, key)] = value

    def get_or_load(self, kind: str, key: Hashable, loader: Callable[[], Any]) -> Any:
        """
        Return the cached value, calling loader() on a miss.
        Returns None when the key is known to have no counterpart.
        """
        value = self.lookup(kind, key)
        if value is MISS:
            value = loader()
            self.store(kind, key, value)
            return value
        if value is NOT_FOUND:
            return None
        return value

    def forget(self, kind: str, key: Hashable) -> None:
        """Drop one entry, used after this run deleted the record it points at."""
        self._entries.pop((kind, key), None)

    def __len__(self):
        return len(self._entries)

    def stats(self) -> Dict[str, int]:
        return {"entries": len(self._entries), "hits": self.hits, "misses": self.misses}
