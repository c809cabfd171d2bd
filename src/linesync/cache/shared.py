from __future__ import annotations

import threading
from typing import List, Sequence, Tuple

from linesync.cache.models import CollectionCache, CollectionId
from linesync.cache.store import CacheStore


class SharedCache:
    """Lock-guarded cache shared by all chunk workers of one run.

    Every mutation is followed by a persist inside the same critical
    section, so the file on disk never lags a flag the workers have seen.
    """

    def __init__(self, *, store: CacheStore, cid: CollectionId, cache: CollectionCache) -> None:
        self._store = store
        self._cid = cid
        self._cache = cache
        self._keys = cache.keys()
        self._lock = threading.Lock()

    @property
    def cid(self) -> CollectionId:
        return self._cid

    def __len__(self) -> int:
        return len(self._keys)

    def key_at(self, index: int) -> str:
        return self._keys[index]

    def all_on_chain(self, indexes: Sequence[int]) -> bool:
        with self._lock:
            return all(self._cache.items[self._keys[i]].on_chain for i in indexes)

    def lines(self, indexes: Sequence[int]) -> List[Tuple[str, str]]:
        """(uri, name) pairs in index order."""
        with self._lock:
            out = []
            for i in indexes:
                it = self._cache.items[self._keys[i]]
                out.append((it.link, it.name))
            return out

    def mark_committed(self, indexes: Sequence[int]) -> None:
        with self._lock:
            for i in indexes:
                it = self._cache.items[self._keys[i]]
                it.on_chain = True
                it.verify_run = False
            self._store.save(self._cid, self._cache)

    def persist(self) -> None:
        with self._lock:
            self._store.save(self._cid, self._cache)

    def snapshot(self) -> CollectionCache:
        with self._lock:
            return self._cache.model_copy(deep=True)
