# src/linesync/crypto/sig.py
from __future__ import annotations

import base64
import json
from pathlib import Path
from typing import Any, Dict

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey
from cryptography.hazmat.primitives.serialization import Encoding, PublicFormat

from linesync.errors import ConfigError

Json = Dict[str, Any]


def _decode_bytes(s: str) -> bytes:
    s = s.strip()
    if not s:
        raise ValueError("empty string")
    # hex
    try:
        return bytes.fromhex(s)
    except ValueError:
        pass
    # base64 / base64url
    try:
        padding = "=" * (-len(s) % 4)
        s2 = (s + padding).replace("-", "+").replace("_", "/")
        return base64.b64decode(s2, validate=True)
    except ValueError as e:
        raise ValueError("not hex or base64") from e


def private_key_from_bytes(raw: bytes) -> Ed25519PrivateKey:
    # Wallet files commonly hold the 64-byte seed||pubkey form; the seed is the first 32 bytes.
    if len(raw) == 64:
        raw = raw[:32]
    if len(raw) != 32:
        raise ValueError("ed25519 privkey must be 32-byte seed (or 64-byte expanded key)")
    return Ed25519PrivateKey.from_private_bytes(raw)


def load_wallet_key(path: str) -> Ed25519PrivateKey:
    """Load a wallet key file.

    Accepted shapes:
      - JSON array of byte values (32 or 64 entries)
      - a single hex or base64 string (optionally JSON-quoted)
    """
    if not path:
        raise ConfigError("missing_keypair", "keypair path is required")
    p = Path(path).expanduser()
    try:
        text = p.read_text(encoding="utf-8").strip()
    except OSError as e:
        raise ConfigError("keypair_unreadable", f"cannot read {path}: {e}")

    try:
        obj = json.loads(text)
    except json.JSONDecodeError:
        obj = text

    try:
        if isinstance(obj, list):
            return private_key_from_bytes(bytes(int(b) for b in obj))
        if isinstance(obj, str):
            return private_key_from_bytes(_decode_bytes(obj))
    except ValueError as e:
        raise ConfigError("bad_keypair", f"{path}: {e}")
    raise ConfigError("bad_keypair", f"{path}: unsupported key file shape")


def public_key_hex(key: Ed25519PrivateKey) -> str:
    return key.public_key().public_bytes(Encoding.Raw, PublicFormat.Raw).hex()


def canonical_message(obj: Json) -> bytes:
    return json.dumps(obj, sort_keys=True, separators=(",", ":"), ensure_ascii=False).encode("utf-8")


def sign_ed25519(*, message: bytes, key: Ed25519PrivateKey) -> str:
    return key.sign(message).hex()


def verify_ed25519_signature(*, message: bytes, sig: str, pubkey: str) -> bool:
    try:
        sig_b = _decode_bytes(sig)
        pk_b = _decode_bytes(pubkey)
        Ed25519PublicKey.from_public_bytes(pk_b).verify(sig_b, message)
        return True
    except (InvalidSignature, ValueError):
        return False
