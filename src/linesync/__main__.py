from __future__ import annotations

import argparse
import json
import logging
import sys
from typing import List

from linesync.cache.models import CollectionId
from linesync.cache.store import CacheStore
from linesync.config import SyncConfig, load_sync_config
from linesync.crypto.sig import load_wallet_key
from linesync.env import load_dotenv_if_present
from linesync.errors import LinesyncError
from linesync.ledger.http import HttpLedgerClient
from linesync.manifest import CreateCollectionParams, load_manifest
from linesync.orchestrator import SyncOrchestrator, cache_status
from linesync.sync_logging import configure_structured_logging

log = logging.getLogger("linesync.cli")


def _add_common(ap: argparse.ArgumentParser) -> None:
    ap.add_argument("--config", dest="config_path", default=None, help="YAML/JSON sync config file")
    ap.add_argument("-e", "--env", dest="env", default=None, help="Cluster env name (devnet, testnet, mainnet-beta)")
    ap.add_argument("-k", "--keypair", dest="keypair_path", default=None, help="Wallet key file")
    ap.add_argument("-c", "--cache-name", dest="cache_name", default=None, help="Cache file name")
    ap.add_argument("--cache-dir", dest="cache_dir", default=None)
    ap.add_argument("-r", "--rpc-url", dest="rpc_url", default=None)
    ap.add_argument("-l", "--log-level", dest="log_level", default=None)
    ap.add_argument("--outer-size", dest="outer_size", type=int, default=None)
    ap.add_argument("--inner-size", dest="inner_size", type=int, default=None)
    ap.add_argument("--max-concurrency", dest="max_concurrency", type=int, default=None)


def _parse_args(argv: List[str]) -> argparse.Namespace:
    ap = argparse.ArgumentParser(prog="linesync", description="Batched config-line sync to a remote ledger collection")
    sub = ap.add_subparsers(dest="command", required=True)

    create = sub.add_parser("create", help="Create the remote collection, then sync all config lines")
    _add_common(create)
    create.add_argument("manifest", help="JSON file containing collection metadata")
    create.add_argument("--immutable", dest="mutable", action="store_false")
    create.add_argument("--no-retain-authority", dest="retain_authority", action="store_false")

    sync = sub.add_parser("sync", help="Commit pending config lines of an existing collection")
    _add_common(sync)
    sync.add_argument("--total-count", dest="total_count", type=int, default=None)

    status = sub.add_parser("status", help="Show committed/pending counts from the cache")
    _add_common(status)

    return ap.parse_args(argv)


def _config_from_args(args: argparse.Namespace) -> SyncConfig:
    overrides = {
        k: getattr(args, k, None)
        for k in (
            "env",
            "keypair_path",
            "cache_name",
            "cache_dir",
            "rpc_url",
            "log_level",
            "outer_size",
            "inner_size",
            "max_concurrency",
            "total_count",
        )
    }
    return load_sync_config(config_path=args.config_path, overrides=overrides)


def _client(cfg: SyncConfig) -> HttpLedgerClient:
    return HttpLedgerClient(rpc_url=cfg.rpc_url, key=load_wallet_key(cfg.keypair_path), timeout_s=cfg.rpc_timeout_s)


def main(argv: List[str]) -> int:
    load_dotenv_if_present()
    args = _parse_args(argv)

    try:
        cfg = _config_from_args(args)
        configure_structured_logging(cfg.log_level)

        cid = CollectionId(env=cfg.env, cache_name=cfg.cache_name)
        store = CacheStore(cache_dir=cfg.cache_dir)

        if args.command == "status":
            res = cache_status(store, cid)
            print(json.dumps(res, indent=2))
            return 0 if res.get("ok") else 1

        orch = SyncOrchestrator.from_config(cfg, client=_client(cfg))

        if args.command == "create":
            manifest = load_manifest(args.manifest)
            current = store.load(cid)
            params = CreateCollectionParams.from_manifest(
                manifest,
                # An empty cache is rejected by create_collection itself.
                item_count=max(1, len(current.items) if current else 0),
                mutable=bool(args.mutable),
                retain_authority=bool(args.retain_authority),
            )
            report = orch.create_and_sync(params)
        else:
            report = orch.run(total_count=cfg.total_count)
    except LinesyncError as e:
        log.error("%s", e)
        print(f"ERROR: {e}", file=sys.stderr)
        return 2

    print(json.dumps(report.to_json(), indent=2))
    return 0 if report.ok else 1


def _entrypoint() -> int:
    return main(sys.argv[1:])


if __name__ == "__main__":
    raise SystemExit(_entrypoint())
