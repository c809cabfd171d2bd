from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol, Sequence, runtime_checkable

from linesync.manifest import CreateCollectionParams


@dataclass(frozen=True, slots=True)
class ConfigLine:
    uri: str
    name: str


@dataclass(frozen=True, slots=True)
class CreatedCollection:
    handle: str
    uuid: str


@runtime_checkable
class LedgerClient(Protocol):
    """Capabilities the sync engine needs from the remote ledger program.

    Implementations raise on any failure; a normal return means the remote
    acknowledged the call.
    """

    @property
    def authority(self) -> str:
        """Identity that will own collections created through this client."""
        ...

    def create_collection(self, params: CreateCollectionParams) -> CreatedCollection:
        ...

    def commit_batch(self, handle: str, start_index: int, records: Sequence[ConfigLine]) -> None:
        """Write records at [start_index, start_index + len(records)).

        Must tolerate leading records that were already written (per-index
        overwrite).
        """
        ...
