from __future__ import annotations

import json
import logging
import threading
import time
from collections import defaultdict
from typing import Dict, List

import pytest

from linesync.cache.models import CollectionCache, CollectionId
from linesync.cache.store import CacheStore
from linesync.errors import ConfigError, MissingCollectionConfig, PersistenceError
from linesync.ledger.memory import InMemoryLedgerClient
from linesync.manifest import CreateCollectionParams
from linesync.orchestrator import SyncOrchestrator


def _orch(store: CacheStore, cid: CollectionId, client, **kw) -> SyncOrchestrator:
    return SyncOrchestrator(store=store, cid=cid, client=client, **kw)


def test_25_records_one_chunk_three_batches(store: CacheStore, cid: CollectionId, seeded) -> None:
    client = seeded(25)
    report = _orch(store, cid, client, outer_size=1000, inner_size=10).run()

    assert report.ok is True
    assert (report.succeeded_batches, report.failed_batches) == (3, 0)
    assert [len(c.records) for c in client.commit_calls] == [10, 10, 5]

    cache = store.load(cid)
    assert cache is not None
    assert cache.committed_count() == 25
    assert sorted(client.lines("mem-collection-1")) == list(range(25))


def test_second_run_makes_no_remote_calls(store: CacheStore, cid: CollectionId, seeded) -> None:
    client = seeded(25)
    orch = _orch(store, cid, client)
    orch.run()
    calls_after_first = len(client.commit_calls)

    report = orch.run()
    assert len(client.commit_calls) == calls_after_first
    assert report.failed_batches == 0
    assert report.succeeded_batches == 0
    assert report.skipped_batches == 3


def test_resume_only_commits_pending_records(store: CacheStore, cid: CollectionId, seeded) -> None:
    client = seeded(10, on_chain=3)
    report = _orch(store, cid, client, inner_size=3).run()

    # [0,3) is already on chain; [3,10) is split per inner_size.
    assert [(c.start_index, len(c.records)) for c in client.commit_calls] == [(3, 3), (6, 3), (9, 1)]
    assert report.skipped_batches == 1
    assert report.succeeded_batches == 3


def test_one_failing_batch_out_of_five(store: CacheStore, cid: CollectionId, seeded) -> None:
    client = seeded(50, fail_starts={20})
    report = _orch(store, cid, client).run()

    assert report.ok is False
    assert (report.succeeded_batches, report.failed_batches) == (4, 1)
    assert report.failures[0].start == 20 and report.failures[0].stop == 30
    assert report.failures[0].range == "20-29"

    cache = store.load(cid)
    assert cache is not None
    failed = set(range(20, 30))
    for i in range(50):
        assert cache.items[str(i)].on_chain == (i not in failed)


def test_failed_batch_is_picked_up_by_a_later_run(store: CacheStore, cid: CollectionId, seeded) -> None:
    client = seeded(30, fail_when=lambda start, attempt: start == 10 and attempt == 1)
    orch = _orch(store, cid, client)

    first = orch.run()
    assert first.failed_batches == 1

    second = orch.run()
    assert second.ok is True
    assert second.succeeded_batches == 1
    assert [c.start_index for c in client.commit_calls] == [0, 10, 20, 10]


def test_chunks_run_concurrently_but_batches_within_a_chunk_stay_ordered(
    store: CacheStore, cid: CollectionId, seeded
) -> None:
    client = seeded(60)
    barrier = threading.Barrier(3, timeout=5)
    seen: Dict[str, List[int]] = defaultdict(list)
    original = client.commit_batch

    def _commit(handle, start_index, records):
        name = threading.current_thread().name
        if not seen[name]:
            # Every chunk worker must be in flight at the same time.
            barrier.wait()
        seen[name].append(start_index)
        original(handle, start_index, records)

    client.commit_batch = _commit  # type: ignore[method-assign]
    report = _orch(store, cid, client, outer_size=20, inner_size=5).run()

    assert report.ok is True
    assert report.succeeded_batches == 12
    assert sorted(seen.values()) == [[0, 5, 10, 15], [20, 25, 30, 35], [40, 45, 50, 55]]


def test_max_concurrency_bounds_workers(store: CacheStore, cid: CollectionId, seeded) -> None:
    client = seeded(40)
    active = 0
    peak = 0
    lock = threading.Lock()
    original = client.commit_batch

    def _commit(handle, start_index, records):
        nonlocal active, peak
        with lock:
            active += 1
            peak = max(peak, active)
        try:
            original(handle, start_index, records)
        finally:
            with lock:
                active -= 1

    client.commit_batch = _commit  # type: ignore[method-assign]
    report = _orch(store, cid, client, outer_size=10, inner_size=5, max_concurrency=1).run()
    assert report.succeeded_batches == 8
    assert peak == 1


def test_concurrent_chunks_never_overlap_saves_and_disk_tracks_each_commit(
    store: CacheStore, cid: CollectionId, seeded, monkeypatch: pytest.MonkeyPatch
) -> None:
    client = seeded(40)
    original_commit = client.commit_batch
    original_save = store.save

    in_save = threading.Lock()
    overlaps: List[str] = []
    on_disk: List[set] = []

    def _commit(handle, start_index, records):
        time.sleep(0.005)
        original_commit(handle, start_index, records)

    def _save(save_cid, cache):
        if not in_save.acquire(blocking=False):
            overlaps.append(threading.current_thread().name)
            return original_save(save_cid, cache)
        try:
            time.sleep(0.002)
            original_save(save_cid, cache)
            expected = {k for k, it in cache.items.items() if it.on_chain}
            disk = store.load(save_cid)
            assert disk is not None
            committed = {k for k, it in disk.items.items() if it.on_chain}
            # The file matches the flags at the moment of the write.
            assert committed == expected
            on_disk.append(committed)
        finally:
            in_save.release()

    client.commit_batch = _commit  # type: ignore[method-assign]
    monkeypatch.setattr(store, "save", _save)
    report = _orch(store, cid, client, outer_size=10, inner_size=5).run()

    assert report.succeeded_batches == 8
    assert overlaps == []

    # One write per committed batch, then the closing write.
    assert [len(s) for s in on_disk] == [5, 10, 15, 20, 25, 30, 35, 40, 40]
    for earlier, later in zip(on_disk, on_disk[1:]):
        assert earlier <= later

    # Each write adds exactly the batch that was just committed.
    starts = set()
    for earlier, later in zip([set()] + on_disk[:8], on_disk[:8]):
        added = sorted(int(k) for k in later - earlier)
        assert added == list(range(added[0], added[0] + 5))
        starts.add(added[0])
    assert starts == {c.start_index for c in client.commit_calls}


def test_sync_done_reports_this_run_only(
    store: CacheStore, cid: CollectionId, seeded, caplog: pytest.LogCaptureFixture
) -> None:
    client = seeded(25)
    orch = _orch(store, cid, client)
    orch.run()

    caplog.clear()
    with caplog.at_level(logging.INFO, logger="linesync.sync"):
        orch.run()

    done = [json.loads(r.getMessage()) for r in caplog.records if '"event":"sync_done"' in r.getMessage()]
    assert len(done) == 1
    assert (done[0]["succeeded"], done[0]["failed"], done[0]["skipped"]) == (0, 0, 3)
    assert "counters" not in done[0]
    # Process-wide totals are labelled as such and include the first run.
    assert done[0]["process_counters"]["commit_batches_ok_total"] == 3
    assert done[0]["process_counters"]["commit_batches_skipped_total"] == 3


def test_total_count_limits_the_index_universe(store: CacheStore, cid: CollectionId, seeded) -> None:
    client = seeded(30)
    report = _orch(store, cid, client).run(total_count=15)
    assert report.succeeded_batches == 2
    assert [len(c.records) for c in client.commit_calls] == [10, 5]

    with pytest.raises(ConfigError):
        _orch(store, cid, client).run(total_count=31)


def test_run_without_collection_handle_fails_fast(
    store: CacheStore, cid: CollectionId, cache_factory
) -> None:
    store.save(cid, cache_factory(5))
    client = InMemoryLedgerClient()
    with pytest.raises(MissingCollectionConfig):
        _orch(store, cid, client).run()
    assert client.commit_calls == []


def test_run_without_cache_file_is_config_error(store: CacheStore, cid: CollectionId) -> None:
    with pytest.raises(ConfigError) as ei:
        _orch(store, cid, InMemoryLedgerClient()).run()
    assert ei.value.code == "cache_not_found"


def test_persistence_failure_aborts_run_without_report(
    store: CacheStore, cid: CollectionId, seeded, monkeypatch: pytest.MonkeyPatch
) -> None:
    client = seeded(30)

    def _fail(*args, **kwargs):
        raise PersistenceError("cache_write_failed", "permission denied")

    monkeypatch.setattr(store, "save", _fail)
    with pytest.raises(PersistenceError):
        _orch(store, cid, client, outer_size=10).run()


# ----------------------------
# Collection creation
# ----------------------------


def test_create_collection_stores_handle_and_authority(
    store: CacheStore, cid: CollectionId, cache_factory
) -> None:
    store.save(cid, cache_factory(12))
    client = InMemoryLedgerClient(authority="Auth111")
    orch = _orch(store, cid, client)

    handle = orch.create_collection(CreateCollectionParams(max_number_of_lines=12, symbol="LORE"))
    assert handle.address == "mem-collection-1"

    cache = store.load(cid)
    assert cache is not None
    assert cache.program is not None and cache.program.address == "mem-collection-1"
    assert cache.authority == "Auth111"
    assert len(client.create_calls) == 1


def test_create_when_collection_exists_makes_no_remote_calls(
    store: CacheStore, cid: CollectionId, cache_factory
) -> None:
    store.save(cid, cache_factory(5, handle="existing-1"))
    client = InMemoryLedgerClient()

    with pytest.raises(ConfigError) as ei:
        _orch(store, cid, client).create_collection(CreateCollectionParams(max_number_of_lines=5))
    assert ei.value.code == "collection_exists"
    assert client.create_calls == []
    assert client.commit_calls == []


def test_create_without_items_is_config_error(store: CacheStore, cid: CollectionId) -> None:
    store.save(cid, CollectionCache())
    client = InMemoryLedgerClient()
    with pytest.raises(ConfigError) as ei:
        _orch(store, cid, client).create_collection(CreateCollectionParams(max_number_of_lines=1))
    assert ei.value.code == "no_items"
    assert client.create_calls == []


def test_create_resets_flags_left_by_an_earlier_collection(
    store: CacheStore, cid: CollectionId, cache_factory
) -> None:
    # Cache whose program entry was cleared after a previous collection.
    store.save(cid, cache_factory(10, on_chain=10))
    client = InMemoryLedgerClient()

    report = _orch(store, cid, client).create_and_sync(CreateCollectionParams(max_number_of_lines=10))
    assert report.succeeded_batches == 1
    assert len(client.commit_calls) == 1

    cache = store.load(cid)
    assert cache is not None
    assert all(it.on_chain and it.verify_run is False for it in cache.items.values())


def test_create_and_sync_end_to_end(store: CacheStore, cid: CollectionId, cache_factory) -> None:
    store.save(cid, cache_factory(25))
    client = InMemoryLedgerClient()
    orch = _orch(store, cid, client)

    report = orch.create_and_sync(CreateCollectionParams(max_number_of_lines=25))
    assert report.to_json()["succeeded_batches"] == 3
    assert orch.status() == {
        "ok": True,
        "collection": "devnet-test",
        "handle": "mem-collection-1",
        "authority": "memory-authority",
        "items": 25,
        "committed": 25,
        "pending": 0,
    }
