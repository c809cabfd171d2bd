from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional

from linesync.batcher import OuterChunk, partition
from linesync.cache.models import CollectionCache, CollectionId, ProgramHandle
from linesync.cache.shared import SharedCache
from linesync.cache.store import CacheStore
from linesync.config import DEFAULT_INNER_SIZE, DEFAULT_OUTER_SIZE, SyncConfig
from linesync.errors import ConfigError, LinesyncError, MissingCollectionConfig, RemoteCommitError
from linesync.executor import COMMITTED, FAILED, SKIPPED, BatchOutcome, CommitExecutor
from linesync.ledger.client import LedgerClient
from linesync.manifest import CreateCollectionParams
from linesync.metrics import snapshot as metrics_snapshot
from linesync.sync_logging import log_event

Json = Dict[str, Any]

log = logging.getLogger("linesync.sync")


@dataclass(frozen=True, slots=True)
class BatchFailure:
    start: int
    stop: int
    range: str
    error: str


@dataclass(frozen=True)
class SyncReport:
    collection: str
    total_batches: int
    succeeded_batches: int
    failed_batches: int
    skipped_batches: int
    failures: List[BatchFailure] = field(default_factory=list)

    @property
    def ok(self) -> bool:
        return self.failed_batches == 0

    @property
    def attempted_batches(self) -> int:
        return self.succeeded_batches + self.failed_batches

    def to_json(self) -> Json:
        return {
            "ok": self.ok,
            "collection": self.collection,
            "total_batches": self.total_batches,
            "attempted_batches": self.attempted_batches,
            "succeeded_batches": self.succeeded_batches,
            "failed_batches": self.failed_batches,
            "skipped_batches": self.skipped_batches,
            "failures": [
                {"start": f.start, "stop": f.stop, "range": f.range, "error": f.error} for f in self.failures
            ],
        }


class SyncOrchestrator:
    """Top-level driver for one collection cache.

    run() never raises for a failed batch; it raises only for fatal
    conditions (ConfigError, PersistenceError), before or instead of a report.
    """

    def __init__(
        self,
        *,
        store: CacheStore,
        cid: CollectionId,
        client: LedgerClient,
        outer_size: int = DEFAULT_OUTER_SIZE,
        inner_size: int = DEFAULT_INNER_SIZE,
        max_concurrency: Optional[int] = None,
    ) -> None:
        self._store = store
        self._cid = cid
        self._client = client
        self._outer_size = int(outer_size)
        self._inner_size = int(inner_size)
        self._max_concurrency = max_concurrency

    @classmethod
    def from_config(cls, cfg: SyncConfig, *, client: LedgerClient) -> "SyncOrchestrator":
        return cls(
            store=CacheStore(cache_dir=cfg.cache_dir),
            cid=CollectionId(env=cfg.env, cache_name=cfg.cache_name),
            client=client,
            outer_size=cfg.outer_size,
            inner_size=cfg.inner_size,
            max_concurrency=cfg.max_concurrency,
        )

    @property
    def cid(self) -> CollectionId:
        return self._cid

    # ----------------------------
    # Collection creation
    # ----------------------------

    def create_collection(self, params: CreateCollectionParams) -> ProgramHandle:
        with self._store.lock(self._cid):
            cache = self._store.load(self._cid) or CollectionCache()
            if cache.program is not None:
                raise ConfigError(
                    "collection_exists",
                    "a collection already exists for this cache; clear it first to create a new one",
                    {"collection": str(self._cid), "handle": cache.program.address},
                )
            if not cache.items:
                raise ConfigError("no_items", "no items in cache", {"collection": str(self._cid)})
            if int(params.max_number_of_lines) < len(cache.items):
                raise ConfigError(
                    "collection_too_small",
                    f"max_number_of_lines={params.max_number_of_lines} < items={len(cache.items)}",
                )

            try:
                res = self._client.create_collection(params)
            except LinesyncError:
                raise
            except Exception as e:
                raise RemoteCommitError("create_failed", f"{type(e).__name__}: {e}", {"collection": str(self._cid)})

            # Flags left over from an earlier collection say nothing about this one.
            stale = 0
            for it in cache.items.values():
                if it.on_chain:
                    it.on_chain = False
                    stale += 1

            cache.program = ProgramHandle(uuid=res.uuid, candy_machine=res.handle)
            cache.authority = self._client.authority
            self._store.save(self._cid, cache)

        log_event(
            log,
            "collection_created",
            collection=str(self._cid),
            handle=res.handle,
            uuid=res.uuid,
            authority=cache.authority,
            stale_items_reset=stale,
        )
        return cache.program

    def create_and_sync(self, params: CreateCollectionParams) -> SyncReport:
        self.create_collection(params)
        return self.run()

    # ----------------------------
    # Sync
    # ----------------------------

    def _load_for_sync(self) -> CollectionCache:
        cache = self._store.load(self._cid)
        if cache is None:
            raise ConfigError("cache_not_found", f"no cache file at {self._store.path_for(self._cid)}")
        if cache.program is None or not cache.program.address:
            raise MissingCollectionConfig("missing_program_config", "cache has no remote collection handle")
        if not cache.items:
            raise ConfigError("no_items", "no items in cache", {"collection": str(self._cid)})
        return cache

    def run(self, total_count: Optional[int] = None) -> SyncReport:
        with self._store.lock(self._cid):
            cache = self._load_for_sync()
            n = len(cache.items) if total_count is None else int(total_count)
            if n < 0 or n > len(cache.items):
                raise ConfigError("bad_total_count", f"total_count={n} outside 0..{len(cache.items)}")

            handle = str(cache.program.address)  # type: ignore[union-attr]
            shared = SharedCache(store=self._store, cid=self._cid, cache=cache)
            plan = partition(n, self._outer_size, self._inner_size)

            log_event(
                log,
                "sync_start",
                collection=str(self._cid),
                handle=handle,
                records=n,
                chunks=len(plan),
                batches=sum(len(c.batches) for c in plan),
            )

            outcomes = self._dispatch(plan, handle=handle, shared=shared)

            # Covers any write a worker may have skipped.
            shared.persist()

        report = self._report(outcomes, shared)
        log_event(
            log,
            "sync_done",
            level=logging.INFO if report.ok else logging.WARNING,
            collection=report.collection,
            total_batches=report.total_batches,
            succeeded=report.succeeded_batches,
            failed=report.failed_batches,
            skipped=report.skipped_batches,
            # Cumulative for the process, not this run.
            process_counters=metrics_snapshot()["counters"],
        )
        log.info("Done. Successful = %s", report.ok)
        return report

    def _dispatch(self, plan: List[OuterChunk], *, handle: str, shared: SharedCache) -> List[BatchOutcome]:
        abort = threading.Event()
        executor = CommitExecutor(client=self._client, handle=handle, cache=shared, abort=abort)
        gate = threading.BoundedSemaphore(self._max_concurrency) if self._max_concurrency else None

        results: List[List[BatchOutcome]] = [[] for _ in plan]
        fatal: List[BaseException] = []
        fatal_lock = threading.Lock()

        def _work(i: int, chunk: OuterChunk) -> None:
            if gate is not None:
                gate.acquire()
            try:
                if abort.is_set():
                    return
                results[i] = executor.run_chunk(chunk)
            except BaseException as e:
                with fatal_lock:
                    fatal.append(e)
                abort.set()
                log.exception("chunk %d-%d aborted", chunk.start, chunk.stop)
            finally:
                if gate is not None:
                    gate.release()

        threads = [
            threading.Thread(target=_work, args=(i, chunk), name=f"linesync-chunk-{chunk.start}", daemon=True)
            for i, chunk in enumerate(plan)
        ]
        for t in threads:
            t.start()
        for t in threads:
            t.join()

        if fatal:
            raise fatal[0]

        return [o for chunk_out in results for o in chunk_out]

    def _report(self, outcomes: List[BatchOutcome], shared: SharedCache) -> SyncReport:
        failures = [
            BatchFailure(
                start=o.batch.start,
                stop=o.batch.stop,
                range=f"{shared.key_at(o.batch.start)}-{shared.key_at(o.batch.last)}",
                error=str(o.error),
            )
            for o in outcomes
            if o.status == FAILED
        ]
        return SyncReport(
            collection=str(self._cid),
            total_batches=len(outcomes),
            succeeded_batches=sum(1 for o in outcomes if o.status == COMMITTED),
            failed_batches=len(failures),
            skipped_batches=sum(1 for o in outcomes if o.status == SKIPPED),
            failures=failures,
        )

    # ----------------------------
    # Inspection
    # ----------------------------

    def status(self) -> Json:
        return cache_status(self._store, self._cid)


def cache_status(store: CacheStore, cid: CollectionId) -> Json:
    cache = store.load(cid)
    if cache is None:
        return {"ok": False, "collection": str(cid), "error": "cache_not_found"}
    committed = cache.committed_count()
    return {
        "ok": True,
        "collection": str(cid),
        "handle": cache.program.address if cache.program else None,
        "authority": cache.authority,
        "items": len(cache.items),
        "committed": committed,
        "pending": len(cache.items) - committed,
    }
