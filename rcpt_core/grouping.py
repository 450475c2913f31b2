from __future__ import annotations

import logging
from dataclasses import dataclass
from pathlib import Path
from typing import Iterable

from .records import Entry
from .utils import format_ranges, unique


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Unit:
    """All entries of one receipt; the unit of scheduling and failure tracking."""

    receipt_index: int
    entries: tuple[Entry, ...]
    # Distinct invoice numbers, first-seen order (drives the search-and-add step)
    invoice_numbers: tuple[str, ...]
    # Distinct InvMaster values of entries still needing correction (remote job parameter)
    invoice_indices: tuple[int, ...]
    # Distinct InvMaster values of every entry (partition affinity)
    touched_invoices: tuple[int, ...]

    @property
    def raw_lines(self) -> tuple[str, ...]:
        return tuple(e.line for e in self.entries)

    @property
    def entry_count(self) -> int:
        return len(self.entries)


def build_unit(receipt_index: int, entries: Iterable[Entry]) -> Unit:
    ents = tuple(entries)
    return Unit(
        receipt_index=receipt_index,
        entries=ents,
        invoice_numbers=tuple(unique(e.invoice_number for e in ents)),
        invoice_indices=tuple(unique(e.invoice_index for e in ents if e.status.needs_correction)),
        touched_invoices=tuple(unique(e.invoice_index for e in ents)),
    )


def group_units(entries: Iterable[Entry]) -> tuple[Unit, ...]:
    """Group entries by receipt index, in order of first appearance."""
    by_receipt: dict[int, list[Entry]] = {}
    for e in entries:
        by_receipt.setdefault(e.receipt_index, []).append(e)
    units = tuple(build_unit(k, ents) for k, ents in by_receipt.items())
    logger.info(
        "Grouped %d entries into %d receipt(s)",
        sum(u.entry_count for u in units), len(units),
    )
    return units


def load_exclusions(path: str | Path | None) -> set[int]:
    """Read one receipt index per line; a missing file means no exclusions."""
    if not path:
        return set()
    p = Path(path).expanduser()
    if not p.exists():
        logger.info("No exclusion list at %s", p)
        return set()
    keys: set[int] = set()
    for line in p.read_text(encoding="utf-8").splitlines():
        tok = line.strip()
        if tok.isdigit():
            keys.add(int(tok))
    return keys


def drop_excluded(units: Iterable[Unit], excluded: Iterable[int]) -> tuple[Unit, ...]:
    skip = set(excluded)
    all_units = tuple(units)
    kept = tuple(u for u in all_units if u.receipt_index not in skip)
    dropped = [u.receipt_index for u in all_units if u.receipt_index in skip]
    if dropped:
        logger.info("Skipping %d previously blocked receipt(s): %s", len(dropped), format_ranges(dropped))
    return kept


__all__ = [
    "Unit",
    "build_unit",
    "group_units",
    "load_exclusions",
    "drop_excluded",
]
