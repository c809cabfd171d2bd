from __future__ import annotations

import sys
from pathlib import Path
from typing import Callable, Dict

import pytest

# Ensure local "src/" takes precedence over any globally-installed "linesync" package.
ROOT = Path(__file__).resolve().parents[1]
SRC = ROOT / "src"

src_str = str(SRC)
if src_str not in sys.path:
    sys.path.insert(0, src_str)

from linesync import metrics  # noqa: E402
from linesync.cache.models import CollectionCache, CollectionId, ItemRecord, ProgramHandle  # noqa: E402
from linesync.cache.store import CacheStore  # noqa: E402
from linesync.ledger.memory import InMemoryLedgerClient  # noqa: E402
from linesync.manifest import CreateCollectionParams  # noqa: E402


@pytest.fixture(autouse=True)
def _reset_metrics() -> None:
    metrics.reset()


@pytest.fixture
def cid() -> CollectionId:
    return CollectionId(env="devnet", cache_name="test")


@pytest.fixture
def store(tmp_path: Path) -> CacheStore:
    return CacheStore(cache_dir=str(tmp_path / ".cache"))


def make_cache(n: int, *, handle: str | None = None, on_chain: int = 0) -> CollectionCache:
    """n items keyed "0".."n-1"; the first `on_chain` already committed."""
    items: Dict[str, ItemRecord] = {}
    for i in range(n):
        items[str(i)] = ItemRecord(name=f"Item #{i}", link=f"https://arweave.net/item-{i}", on_chain=i < on_chain)
    program = ProgramHandle(uuid="abc123", candy_machine=handle) if handle else None
    return CollectionCache(program=program, authority="memory-authority" if handle else None, items=items)


@pytest.fixture
def cache_factory() -> Callable[..., CollectionCache]:
    return make_cache


@pytest.fixture
def seeded(store: CacheStore, cid: CollectionId) -> Callable[..., InMemoryLedgerClient]:
    """Write a cache with an existing collection and return a client that knows it."""

    def _seed(n: int, *, on_chain: int = 0, **client_kw) -> InMemoryLedgerClient:
        handle = "mem-collection-1"
        store.save(cid, make_cache(n, handle=handle, on_chain=on_chain))
        client = InMemoryLedgerClient(**client_kw)
        client.register_collection(handle, CreateCollectionParams(max_number_of_lines=max(1, n)))
        return client

    return _seed
