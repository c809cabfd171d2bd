from __future__ import annotations

from dataclasses import dataclass
from typing import Any


@dataclass
class LinesyncError(Exception):
    """Canonical error type for sync failures."""

    code: str
    reason: str
    details: Any | None = None

    def __str__(self) -> str:  # pragma: no cover
        if self.details is None:
            return f"{self.code}:{self.reason}"
        return f"{self.code}:{self.reason}:{self.details}"


class ConfigError(LinesyncError):
    """Fatal. Raised before any remote call is made."""


class MissingCollectionConfig(ConfigError):
    """The cache has no remote collection handle to commit into."""


class PersistenceError(LinesyncError):
    """Fatal. Cache could not be read or written."""


class RemoteCommitError(LinesyncError):
    """Per-batch remote failure. Recorded in the report, never propagated by a run."""
