from __future__ import annotations

import json
import logging
import urllib.error
import urllib.parse
import urllib.request
from typing import Any, Dict, Sequence, Tuple

from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey

from linesync.crypto.sig import canonical_message, public_key_hex, sign_ed25519
from linesync.errors import RemoteCommitError
from linesync.ledger.client import ConfigLine, CreatedCollection
from linesync.manifest import CreateCollectionParams

Json = Dict[str, Any]

log = logging.getLogger("linesync.ledger.http")


class HttpLedgerClient:
    """JSON-over-HTTP adapter for a ledger gateway.

    Endpoints (POST, JSON bodies):
      /collections                   -> {"handle": str, "uuid": str}
      /collections/<handle>/lines    -> {"ok": true}

    Every body is an envelope {"authority", "payload", "sig"} where sig is the
    hex Ed25519 signature of the canonical JSON payload.
    """

    def __init__(self, *, rpc_url: str, key: Ed25519PrivateKey, timeout_s: float = 30.0) -> None:
        base = str(rpc_url or "").strip()
        if not base:
            raise ValueError("rpc_url must be a non-empty string")
        self._base = base.rstrip("/")
        self._key = key
        self._authority = public_key_hex(key)
        self._timeout_s = float(timeout_s)

    @property
    def authority(self) -> str:
        return self._authority

    def envelope(self, payload: Json) -> Json:
        return {
            "authority": self._authority,
            "payload": payload,
            "sig": sign_ed25519(message=canonical_message(payload), key=self._key),
        }

    def _post(self, path: str, payload: Json) -> Tuple[bool, str, int]:
        """Returns (ok, body_text, status_code)."""
        url = f"{self._base}{path}"
        data = json.dumps(self.envelope(payload), sort_keys=True, separators=(",", ":")).encode("utf-8")
        req = urllib.request.Request(url=url, method="POST", data=data)
        req.add_header("Content-Type", "application/json")
        req.add_header("Accept", "application/json")

        try:
            with urllib.request.urlopen(req, timeout=self._timeout_s) as resp:
                status = int(getattr(resp, "status", 200))
                body = resp.read().decode("utf-8", errors="replace")
                return (200 <= status < 300), body, status
        except urllib.error.HTTPError as e:
            try:
                body = e.read().decode("utf-8", errors="replace")
            except OSError:
                body = ""
            return False, body or str(e), int(getattr(e, "code", 0) or 0)
        except (urllib.error.URLError, OSError) as e:
            return False, str(e), 0

    def create_collection(self, params: CreateCollectionParams) -> CreatedCollection:
        ok, body, status = self._post("/collections", params.to_wire())
        if not ok:
            raise RemoteCommitError("create_failed", body.strip() or f"http_status:{status}", {"status": status})
        try:
            res = json.loads(body)
            return CreatedCollection(handle=str(res["handle"]), uuid=str(res["uuid"]))
        except (json.JSONDecodeError, KeyError, TypeError) as e:
            raise RemoteCommitError("create_bad_response", str(e), {"body": body[:2000]})

    def commit_batch(self, handle: str, start_index: int, records: Sequence[ConfigLine]) -> None:
        payload: Json = {
            "index": int(start_index),
            "config_lines": [{"uri": r.uri, "name": r.name} for r in records],
        }
        path = f"/collections/{urllib.parse.quote(handle, safe='')}/lines"
        ok, body, status = self._post(path, payload)
        if not ok:
            # Cap the message; gateway error pages can be large.
            raise RemoteCommitError("commit_failed", (body.strip() or f"http_status:{status}")[:2000], {"status": status})
        log.debug("committed %d lines at %d to %s", len(records), start_index, handle)
