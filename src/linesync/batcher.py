from __future__ import annotations

from dataclasses import dataclass
from typing import List, Tuple

from linesync.config import DEFAULT_INNER_SIZE, DEFAULT_OUTER_SIZE


@dataclass(frozen=True, slots=True)
class InnerBatch:
    """Contiguous index range [start, stop) committed by one remote call."""

    start: int
    stop: int

    def __len__(self) -> int:
        return self.stop - self.start

    @property
    def indexes(self) -> range:
        return range(self.start, self.stop)

    @property
    def last(self) -> int:
        return self.stop - 1


@dataclass(frozen=True, slots=True)
class OuterChunk:
    """Coarse slice [start, stop) handled by a single worker."""

    start: int
    stop: int
    batches: Tuple[InnerBatch, ...]

    def __len__(self) -> int:
        return self.stop - self.start


def partition(
    total_count: int,
    outer_size: int = DEFAULT_OUTER_SIZE,
    inner_size: int = DEFAULT_INNER_SIZE,
) -> List[OuterChunk]:
    """Split [0, total_count) into outer chunks of inner batches.

    Depends only on the three counts. Inner batches never cross an outer
    chunk boundary, so when outer_size is not a multiple of inner_size the
    last batch of each chunk is short.
    """
    if int(total_count) < 0:
        raise ValueError(f"total_count must be >= 0; got: {total_count}")
    if int(outer_size) < 1:
        raise ValueError(f"outer_size must be >= 1; got: {outer_size}")
    if int(inner_size) < 1:
        raise ValueError(f"inner_size must be >= 1; got: {inner_size}")

    out: List[OuterChunk] = []
    for c_start in range(0, total_count, outer_size):
        c_stop = min(c_start + outer_size, total_count)
        batches = tuple(
            InnerBatch(start=b_start, stop=min(b_start + inner_size, c_stop))
            for b_start in range(c_start, c_stop, inner_size)
        )
        out.append(OuterChunk(start=c_start, stop=c_stop, batches=batches))
    return out
