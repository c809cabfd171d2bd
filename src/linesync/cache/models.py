from __future__ import annotations

"""Persisted cache schema.

Key names match the JSON files written by the upload step (camelCase), so an
existing cache can be resumed as-is. Unknown keys are kept on round-trip.
"""

from dataclasses import dataclass
from typing import Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field


@dataclass(frozen=True, slots=True)
class CollectionId:
    env: str
    cache_name: str

    @property
    def filename(self) -> str:
        return f"{self.env}-{self.cache_name}.json"

    def __str__(self) -> str:
        return f"{self.env}-{self.cache_name}"


class ItemRecord(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    name: str
    link: str = Field(..., description="Content URI")
    on_chain: bool = Field(default=False, alias="onChain")
    verify_run: Optional[bool] = Field(default=None, alias="verifyRun")


class ProgramHandle(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    uuid: str
    candy_machine: Optional[str] = Field(default=None, alias="candyMachine")
    # Legacy caches store the address under "config".
    config: Optional[str] = None

    @property
    def address(self) -> Optional[str]:
        return self.candy_machine or self.config


class CollectionCache(BaseModel):
    model_config = ConfigDict(extra="allow", populate_by_name=True)

    program: Optional[ProgramHandle] = None
    authority: Optional[str] = None
    items: Dict[str, ItemRecord] = Field(default_factory=dict)

    def keys(self) -> List[str]:
        """Item keys in logical order."""
        return list(self.items.keys())

    def committed_count(self) -> int:
        return sum(1 for it in self.items.values() if it.on_chain)

    def to_json_dict(self) -> dict:
        # Only our own optional fields are omitted when unset; unknown keys keep explicit nulls.
        out = self.model_dump(mode="json", by_alias=True)
        _drop_none(out, ("program", "authority"))
        if isinstance(out.get("program"), dict):
            _drop_none(out["program"], ("candyMachine", "config"))
        for item in out.get("items", {}).values():
            _drop_none(item, ("verifyRun",))
        return out


def _drop_none(d: dict, keys: tuple) -> None:
    for k in keys:
        if k in d and d[k] is None:
            del d[k]
