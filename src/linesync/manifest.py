from __future__ import annotations

"""Collection-creation parameters.

The manifest is the collection-level metadata JSON produced by the asset
tooling; only the fields the remote program needs at creation are read.
"""

import json
from pathlib import Path
from typing import Any, Dict, List

from pydantic import BaseModel, ConfigDict, Field, ValidationError

from linesync.errors import ConfigError

Json = Dict[str, Any]


class Creator(BaseModel):
    model_config = ConfigDict(extra="forbid")

    address: str = Field(..., min_length=1)
    verified: bool = True
    share: int = Field(..., ge=0, le=100)


class CreateCollectionParams(BaseModel):
    model_config = ConfigDict(extra="forbid", frozen=True)

    max_number_of_lines: int = Field(..., ge=1)
    symbol: str = ""
    seller_fee_basis_points: int = Field(default=0, ge=0, le=10_000)
    is_mutable: bool = True
    max_supply: int = Field(default=0, ge=0)
    retain_authority: bool = True
    creators: List[Creator] = Field(default_factory=list)

    @classmethod
    def from_manifest(
        cls,
        manifest: Json,
        *,
        item_count: int,
        mutable: bool = True,
        retain_authority: bool = True,
    ) -> "CreateCollectionParams":
        if not isinstance(manifest, dict):
            raise ConfigError("bad_manifest", "manifest must be a JSON object")
        props = manifest.get("properties") if isinstance(manifest.get("properties"), dict) else {}
        raw_creators = props.get("creators") or []
        if not isinstance(raw_creators, list):
            raise ConfigError("bad_manifest", "properties.creators must be a list")
        try:
            return cls(
                max_number_of_lines=int(item_count),
                symbol=str(manifest.get("symbol") or ""),
                seller_fee_basis_points=int(manifest.get("seller_fee_basis_points") or 0),
                is_mutable=bool(mutable),
                max_supply=0,
                retain_authority=bool(retain_authority),
                # Creators listed in the manifest are verified by the creating wallet.
                creators=[
                    Creator(address=str(c.get("address") or ""), verified=True, share=int(c.get("share") or 0))
                    for c in raw_creators
                    if isinstance(c, dict)
                ],
            )
        except (ValidationError, TypeError, ValueError) as e:
            raise ConfigError("bad_manifest", str(e))

    def to_wire(self) -> Json:
        return self.model_dump(mode="json")


def load_manifest(path: str) -> Json:
    p = Path(path)
    try:
        raw = json.loads(p.read_text(encoding="utf-8"))
    except OSError as e:
        raise ConfigError("manifest_unreadable", f"cannot read {path}: {e}")
    except json.JSONDecodeError as e:
        raise ConfigError("bad_manifest", f"cannot parse {path}: {e}")
    if not isinstance(raw, dict):
        raise ConfigError("bad_manifest", "manifest must be a JSON object")
    return raw
