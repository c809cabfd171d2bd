# src/linesync/cache/store.py
from __future__ import annotations

import json
import logging
import os
import tempfile
from pathlib import Path
from typing import Optional

from pydantic import ValidationError

from linesync.cache.models import CollectionCache, CollectionId
from linesync.cache.single_writer import SingleWriterLock
from linesync.errors import PersistenceError
from linesync.sync_logging import log_event

log = logging.getLogger("linesync.cache")


class CacheStore:
    """File-backed cache store, one JSON file per (env, cache_name).

    Layout: <cache_dir>/<env>-<cache_name>.json

    Writes go to a temp file in the same directory and are moved into place
    with os.replace(), so readers see either the old or the new file.
    """

    def __init__(self, *, cache_dir: str) -> None:
        self.cache_dir = Path(cache_dir)

    def path_for(self, cid: CollectionId) -> Path:
        return self.cache_dir / cid.filename

    def lock(self, cid: CollectionId) -> SingleWriterLock:
        return SingleWriterLock(str(self.cache_dir / f"{cid}.lock"))

    def load(self, cid: CollectionId) -> Optional[CollectionCache]:
        p = self.path_for(cid)
        if not p.exists():
            return None
        try:
            raw = json.loads(p.read_text(encoding="utf-8"))
        except OSError as e:
            raise PersistenceError("cache_read_failed", str(e), {"path": str(p)})
        except json.JSONDecodeError as e:
            raise PersistenceError("cache_malformed", str(e), {"path": str(p)})
        if not isinstance(raw, dict):
            raise PersistenceError("cache_malformed", "cache must be a JSON object", {"path": str(p)})
        try:
            return CollectionCache.model_validate(raw)
        except ValidationError as e:
            raise PersistenceError("cache_malformed", str(e), {"path": str(p)})

    def save(self, cid: CollectionId, cache: CollectionCache) -> None:
        p = self.path_for(cid)
        body = json.dumps(cache.to_json_dict(), ensure_ascii=False)
        tmp_name = ""
        try:
            p.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(prefix=f".{p.name}.", suffix=".tmp", dir=str(p.parent))
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                f.write(body)
                f.flush()
                os.fsync(f.fileno())
            os.replace(tmp_name, p)
            tmp_name = ""
        except OSError as e:
            log_event(log, "cache_save_failed", level=logging.ERROR, collection=str(cid), path=str(p), error=str(e))
            raise PersistenceError("cache_write_failed", str(e), {"path": str(p)})
        finally:
            if tmp_name:
                try:
                    os.unlink(tmp_name)
                except OSError:
                    pass
        log.debug("saved cache %s (%d items)", cid, len(cache.items))
