# src/linesync/config.py
from __future__ import annotations

import os
from dataclasses import dataclass
from pathlib import Path
from typing import Any, Dict, Optional

import yaml

from linesync.errors import ConfigError

Json = Dict[str, Any]

DEFAULT_OUTER_SIZE = 1000
DEFAULT_INNER_SIZE = 10


def _as_int(v: Any, default: int) -> int:
    if v is None:
        return int(default)
    try:
        return int(v)
    except (TypeError, ValueError):
        raise ConfigError("bad_int", f"expected an integer, got {v!r}")


def _as_opt_int(v: Any) -> Optional[int]:
    if v is None or (isinstance(v, str) and not v.strip()):
        return None
    return _as_int(v, 0)


def _as_float(v: Any, default: float) -> float:
    if v is None:
        return float(default)
    try:
        return float(v)
    except (TypeError, ValueError):
        raise ConfigError("bad_float", f"expected a number, got {v!r}")


def _as_str(v: Any, default: str) -> str:
    if v is None:
        return str(default)
    s = str(v)
    return s if s.strip() else str(default)


@dataclass(frozen=True)
class SyncConfig:
    cache_name: str
    env: str  # cluster name, e.g. "devnet" | "testnet" | "mainnet-beta"
    cache_dir: str

    outer_size: int
    inner_size: int
    # None means one worker per outer chunk.
    max_concurrency: Optional[int]
    # None means every item in the cache.
    total_count: Optional[int]

    rpc_url: str
    keypair_path: str
    rpc_timeout_s: float

    log_level: str


_LOG_LEVELS = {"DEBUG", "INFO", "WARNING", "ERROR", "CRITICAL"}


def validate_sync_config(cfg: SyncConfig) -> None:
    """Fail-fast validation for operator config."""

    for name, v in (("cache_name", cfg.cache_name), ("env", cfg.env), ("cache_dir", cfg.cache_dir)):
        if not isinstance(v, str) or not v.strip():
            raise ConfigError("bad_config", f"{name} must be a non-empty string")

    if os.sep in cfg.cache_name or os.sep in cfg.env:
        raise ConfigError("bad_config", "cache_name and env must not contain path separators")

    if int(cfg.outer_size) < 1:
        raise ConfigError("bad_config", f"outer_size must be >= 1; got: {cfg.outer_size}")

    if int(cfg.inner_size) < 1:
        raise ConfigError("bad_config", f"inner_size must be >= 1; got: {cfg.inner_size}")

    if cfg.max_concurrency is not None and int(cfg.max_concurrency) < 1:
        raise ConfigError("bad_config", f"max_concurrency must be >= 1; got: {cfg.max_concurrency}")

    if cfg.total_count is not None and int(cfg.total_count) < 0:
        raise ConfigError("bad_config", f"total_count must be >= 0; got: {cfg.total_count}")

    if float(cfg.rpc_timeout_s) <= 0:
        raise ConfigError("bad_config", f"rpc_timeout_s must be > 0; got: {cfg.rpc_timeout_s}")

    if str(cfg.log_level).strip().upper() not in _LOG_LEVELS:
        raise ConfigError("bad_config", f"log_level must be one of {sorted(_LOG_LEVELS)}; got: {cfg.log_level!r}")


def default_sync_config() -> SyncConfig:
    return SyncConfig(
        cache_name="temp",
        env="devnet",
        cache_dir="./.cache",
        outer_size=DEFAULT_OUTER_SIZE,
        inner_size=DEFAULT_INNER_SIZE,
        max_concurrency=None,
        total_count=None,
        rpc_url="http://127.0.0.1:8899",
        keypair_path="",
        rpc_timeout_s=30.0,
        log_level="INFO",
    )


def sync_config_from_mapping(raw: Json, *, base: Optional[SyncConfig] = None) -> SyncConfig:
    d = base or default_sync_config()
    cfg = SyncConfig(
        cache_name=_as_str(raw.get("cache_name"), d.cache_name),
        env=_as_str(raw.get("env"), d.env),
        cache_dir=_as_str(raw.get("cache_dir"), d.cache_dir),
        outer_size=_as_int(raw.get("outer_size"), d.outer_size),
        inner_size=_as_int(raw.get("inner_size"), d.inner_size),
        max_concurrency=_as_opt_int(raw["max_concurrency"]) if "max_concurrency" in raw else d.max_concurrency,
        total_count=_as_opt_int(raw["total_count"]) if "total_count" in raw else d.total_count,
        rpc_url=_as_str(raw.get("rpc_url"), d.rpc_url),
        keypair_path=str(raw.get("keypair_path") or d.keypair_path),
        rpc_timeout_s=_as_float(raw.get("rpc_timeout_s"), d.rpc_timeout_s),
        log_level=_as_str(raw.get("log_level"), d.log_level).upper(),
    )
    validate_sync_config(cfg)
    return cfg


def read_sync_config_file(path: str) -> SyncConfig:
    """Read a YAML (or JSON, which is valid YAML) config file."""
    p = Path(path)
    try:
        raw = yaml.safe_load(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError("config_unreadable", f"cannot read {path}: {e}")
    except yaml.YAMLError as e:
        raise ConfigError("config_malformed", f"cannot parse {path}: {e}")
    if raw is None:
        raw = {}
    if not isinstance(raw, dict):
        raise ConfigError("config_malformed", "sync config must be a mapping")
    return sync_config_from_mapping(raw)


_ENV_KEYS = {
    "cache_name": "LINESYNC_CACHE_NAME",
    "env": "LINESYNC_ENV",
    "cache_dir": "LINESYNC_CACHE_DIR",
    "outer_size": "LINESYNC_OUTER_SIZE",
    "inner_size": "LINESYNC_INNER_SIZE",
    "max_concurrency": "LINESYNC_MAX_CONCURRENCY",
    "rpc_url": "LINESYNC_RPC_URL",
    "keypair_path": "LINESYNC_KEYPAIR",
    "rpc_timeout_s": "LINESYNC_RPC_TIMEOUT_S",
    "log_level": "LINESYNC_LOG_LEVEL",
}


def load_sync_config(*, config_path: Optional[str] = None, overrides: Optional[Json] = None) -> SyncConfig:
    """Resolve config: file (arg or LINESYNC_CONFIG_PATH), then env vars, then explicit overrides."""
    p = config_path or os.environ.get("LINESYNC_CONFIG_PATH")
    cfg = read_sync_config_file(p) if p else default_sync_config()

    from_env: Json = {}
    for field_name, env_name in _ENV_KEYS.items():
        v = os.environ.get(env_name)
        if v is not None and v.strip():
            from_env[field_name] = v
    if from_env:
        cfg = sync_config_from_mapping(from_env, base=cfg)

    if overrides:
        present = {k: v for k, v in overrides.items() if v is not None}
        if present:
            cfg = sync_config_from_mapping(present, base=cfg)

    validate_sync_config(cfg)
    return cfg
