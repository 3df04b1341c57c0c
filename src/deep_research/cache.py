"""
In-memory embedding cache keyed by "<task_type>:<normalized text>".

Append-only unless max_entries is given, in which case the least recently
used entry is evicted. Values for the same key are interchangeable, so
concurrent writers may race without harm (last write wins).
"""

from collections import OrderedDict
from typing import List, Optional


def cache_key(text: str, task_type: str) -> str:
    return f"{task_type}:{text.strip()}"


class EmbeddingCache:
    def __init__(self, max_entries: Optional[int] = None):
        self.max_entries = max_entries
        self._entries: "OrderedDict[str, List[float]]" = OrderedDict()
        self.hits = 0
        self.misses = 0

    def get(self, text: str, task_type: str) -> Optional[List[float]]:
        key = cache_key(text, task_type)
        vector = self._entries.get(key)
        if vector is None:
            self.misses += 1
            return None
        self.hits += 1
        if self.max_entries is not None:
            self._entries.move_to_end(key)
        return vector

    def put(self, text: str, task_type: str, vector: List[float]) -> None:
        # empty vectors mean "embedding failed" and are never cached
        if not vector:
            return
        key = cache_key(text, task_type)
        self._entries[key] = vector
        if self.max_entries is not None:
            self._entries.move_to_end(key)
            while len(self._entries) > self.max_entries:
                self._entries.popitem(last=False)

    def __contains__(self, key: str) -> bool:
        return key in self._entries

    def __len__(self) -> int:
        return len(self._entries)
