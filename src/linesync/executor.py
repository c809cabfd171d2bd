from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from typing import List, Optional

from linesync.batcher import InnerBatch, OuterChunk
from linesync.cache.shared import SharedCache
from linesync.errors import RemoteCommitError
from linesync.ledger.client import ConfigLine, LedgerClient
from linesync.metrics import inc_counter
from linesync.sync_logging import log_event

log = logging.getLogger("linesync.executor")

COMMITTED = "committed"
SKIPPED = "skipped"
FAILED = "failed"


@dataclass(frozen=True, slots=True)
class BatchOutcome:
    batch: InnerBatch
    status: str  # COMMITTED | SKIPPED | FAILED
    error: Optional[RemoteCommitError] = None

    @property
    def ok(self) -> bool:
        return self.status != FAILED


class CommitExecutor:
    """Commits inner batches of one collection.

    A batch is sent whole whenever any of its records is still pending,
    including batches a previous run left half-marked. Client failures are
    contained at the batch boundary; cache persistence failures are not.
    """

    def __init__(
        self,
        *,
        client: LedgerClient,
        handle: str,
        cache: SharedCache,
        abort: Optional[threading.Event] = None,
    ) -> None:
        self._client = client
        self._handle = handle
        self._cache = cache
        self._abort = abort or threading.Event()

    def _range_label(self, batch: InnerBatch) -> str:
        return f"{self._cache.key_at(batch.start)}-{self._cache.key_at(batch.last)}"

    def commit(self, batch: InnerBatch) -> BatchOutcome:
        indexes = batch.indexes
        if self._cache.all_on_chain(indexes):
            inc_counter("commit_batches_skipped_total")
            return BatchOutcome(batch=batch, status=SKIPPED)

        records = [ConfigLine(uri=uri, name=name) for uri, name in self._cache.lines(indexes)]
        log.info("adding config lines %s", self._range_label(batch))

        try:
            self._client.commit_batch(self._handle, batch.start, records)
        except Exception as e:
            err = e if isinstance(e, RemoteCommitError) else RemoteCommitError("commit_failed", f"{type(e).__name__}: {e}")
            inc_counter("commit_batches_failed_total")
            log_event(
                log,
                "commit_batch_failed",
                level=logging.ERROR,
                collection=str(self._cache.cid),
                handle=self._handle,
                start=batch.start,
                stop=batch.stop,
                range=self._range_label(batch),
                error=str(err),
            )
            return BatchOutcome(batch=batch, status=FAILED, error=err)

        # PersistenceError escapes from here and aborts the run.
        self._cache.mark_committed(indexes)
        inc_counter("commit_batches_ok_total")
        return BatchOutcome(batch=batch, status=COMMITTED)

    def run_chunk(self, chunk: OuterChunk) -> List[BatchOutcome]:
        """Commit a chunk's batches one after another, in index order."""
        out: List[BatchOutcome] = []
        for batch in chunk.batches:
            if self._abort.is_set():
                break
            out.append(self.commit(batch))
        return out
