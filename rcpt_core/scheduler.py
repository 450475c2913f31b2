from __future__ import annotations

from dataclasses import dataclass
from typing import Sequence

from .errors import InvalidConfiguration
from .grouping import Unit


@dataclass(frozen=True)
class Batch:
    index: int
    units: tuple[Unit, ...]

    def __len__(self) -> int:
        return len(self.units)

    @property
    def receipts(self) -> list[int]:
        return [u.receipt_index for u in self.units]


def chunk(units: Sequence[Unit], size: int) -> tuple[Batch, ...]:
    """Fixed-size slices in original order; the last one may be shorter.

    Batches are meant to run one after another: the job parameter of a batch
    depends on which of its units survived phase 1.
    """
    if size <= 0:
        raise InvalidConfiguration(f"batch size must be positive, got {size}")
    items = tuple(units)
    return tuple(
        Batch(index=n + 1, units=items[start:start + size])
        for n, start in enumerate(range(0, len(items), size))
    )


__all__ = ["Batch", "chunk"]
