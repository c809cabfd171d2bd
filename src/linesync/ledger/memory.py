from __future__ import annotations

import threading
import uuid as uuidlib
from dataclasses import dataclass, field
from typing import Callable, Dict, List, Optional, Sequence, Set

from linesync.errors import RemoteCommitError
from linesync.ledger.client import ConfigLine, CreatedCollection
from linesync.manifest import CreateCollectionParams


@dataclass(slots=True)
class CommitCall:
    handle: str
    start_index: int
    records: List[ConfigLine]


@dataclass
class _Collection:
    params: CreateCollectionParams
    lines: Dict[int, ConfigLine] = field(default_factory=dict)


class InMemoryLedgerClient:
    """
    In-process ledger used for unit tests and dry runs.

    - Does not touch the network
    - Stores lines per index (overwrite-safe, like the real program)
    - fail_starts: start indexes whose commit raises RemoteCommitError
    - fail_when: optional predicate(start_index, attempt) for finer control
    """

    def __init__(
        self,
        *,
        authority: str = "memory-authority",
        fail_starts: Optional[Set[int]] = None,
        fail_when: Optional[Callable[[int, int], bool]] = None,
    ) -> None:
        self._authority = authority
        self._fail_starts: Set[int] = set(fail_starts or ())
        self._fail_when = fail_when
        self._lock = threading.Lock()
        self._collections: Dict[str, _Collection] = {}
        self._attempts: Dict[int, int] = {}
        self.create_calls: List[CreateCollectionParams] = []
        self.commit_calls: List[CommitCall] = []

    @property
    def authority(self) -> str:
        return self._authority

    def create_collection(self, params: CreateCollectionParams) -> CreatedCollection:
        with self._lock:
            self.create_calls.append(params)
            n = len(self._collections) + 1
            handle = f"mem-collection-{n}"
            self._collections[handle] = _Collection(params=params)
            return CreatedCollection(handle=handle, uuid=uuidlib.uuid4().hex[:6])

    def commit_batch(self, handle: str, start_index: int, records: Sequence[ConfigLine]) -> None:
        recs = list(records)
        with self._lock:
            self.commit_calls.append(CommitCall(handle=handle, start_index=int(start_index), records=recs))
            attempt = self._attempts.get(int(start_index), 0) + 1
            self._attempts[int(start_index)] = attempt

            if int(start_index) in self._fail_starts:
                raise RemoteCommitError("remote_rejected", f"injected failure at {start_index}")
            if self._fail_when is not None and self._fail_when(int(start_index), attempt):
                raise RemoteCommitError("remote_rejected", f"injected failure at {start_index} attempt {attempt}")

            coll = self._collections.get(handle)
            if coll is None:
                raise RemoteCommitError("unknown_collection", handle)
            max_lines = int(coll.params.max_number_of_lines)
            if int(start_index) + len(recs) > max_lines:
                raise RemoteCommitError("index_out_of_range", f"{start_index}+{len(recs)} > {max_lines}")
            for off, rec in enumerate(recs):
                coll.lines[int(start_index) + off] = rec

    def lines(self, handle: str) -> Dict[int, ConfigLine]:
        with self._lock:
            coll = self._collections.get(handle)
            return dict(coll.lines) if coll else {}

    def register_collection(self, handle: str, params: CreateCollectionParams) -> None:
        """Seed a collection created elsewhere (e.g. by a previous process)."""
        with self._lock:
            self._collections.setdefault(handle, _Collection(params=params))
