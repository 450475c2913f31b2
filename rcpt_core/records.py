"""Parse the tab-separated malformed-receipt feed into typed entries.

Column positions are configurable under `input.columns`; the defaults match
the export the feed is pulled from:

    0:ARMIndex  1:InvMaster  2:InvNumber  3:Matter  4:RcptMaster
    5:GLDate  6:Currency  7:ARAmt  8:ARFee  9:ARList  10:IsReversed
    11:ArchetypeCode  12:ARMaster  13:Currency  14:RcptAmt  15:CollAmt
    16:Difference  [17:Status]

Numeric fields that do not parse (or parse to NaN/Infinity) raise
`ParseError`; nothing is coerced to zero.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from decimal import Decimal, InvalidOperation
from enum import Enum
from pathlib import Path
from typing import Iterable, Mapping

from .config import CFG
from .errors import ParseError, SourceUnavailable


logger = logging.getLogger(__name__)

DEFAULT_COLUMNS: dict[str, int] = {
    "arm_index": 0,
    "invoice_index": 1,
    "invoice_number": 2,
    "receipt_index": 4,
    "difference": 16,
    "status": 17,
}

_INT_RE = re.compile(r"^[+-]?\d+$")


class EntryStatus(str, Enum):
    MALFORMED = "malformed"
    FIXED = "fixed"
    SKIPPED = "skipped"

    @property
    def needs_correction(self) -> bool:
        return self is EntryStatus.MALFORMED


@dataclass(frozen=True)
class Entry:
    arm_index: int
    invoice_index: int
    invoice_number: str
    receipt_index: int
    difference: Decimal
    status: EntryStatus = EntryStatus.MALFORMED
    line_no: int = 0
    line: str = ""


def _columns() -> dict[str, int]:
    cols = dict(DEFAULT_COLUMNS)
    cols.update({k: int(v) for k, v in ((CFG.get("input", {}) or {}).get("columns") or {}).items()})
    return cols


def _int_field(cols: list[str], idx: int, name: str, line_no: int, line: str) -> int:
    raw = cols[idx].strip()
    if not _INT_RE.match(raw):
        raise ParseError(f"{name} is not an integer: {raw!r}", line_no, line)
    return int(raw)


def _decimal_field(cols: list[str], idx: int, name: str, line_no: int, line: str) -> Decimal:
    raw = cols[idx].strip()
    try:
        val = Decimal(raw)
    except InvalidOperation:
        raise ParseError(f"{name} is not a number: {raw!r}", line_no, line) from None
    if not val.is_finite():
        raise ParseError(f"{name} is not finite: {raw!r}", line_no, line)
    return val


def parse_line(line: str, line_no: int = 0, columns: Mapping[str, int] | None = None) -> Entry:
    cm = dict(columns) if columns is not None else _columns()
    cols = line.rstrip("\r\n").split("\t")
    required = max(v for k, v in cm.items() if k != "status")
    if len(cols) <= required:
        raise ParseError(f"expected at least {required + 1} tab-separated columns, got {len(cols)}", line_no, line)

    status = EntryStatus.MALFORMED
    s_idx = cm.get("status")
    if s_idx is not None and s_idx < len(cols) and cols[s_idx].strip():
        raw_status = cols[s_idx].strip().lower()
        try:
            status = EntryStatus(raw_status)
        except ValueError:
            raise ParseError(f"unknown status {cols[s_idx].strip()!r}", line_no, line) from None

    return Entry(
        arm_index=_int_field(cols, cm["arm_index"], "arm_index", line_no, line),
        invoice_index=_int_field(cols, cm["invoice_index"], "invoice_index", line_no, line),
        invoice_number=cols[cm["invoice_number"]].strip(),
        receipt_index=_int_field(cols, cm["receipt_index"], "receipt_index", line_no, line),
        difference=_decimal_field(cols, cm["difference"], "difference", line_no, line),
        status=status,
        line_no=line_no,
        line=line.rstrip("\r\n"),
    )


def iter_record_lines(text: str) -> Iterable[tuple[int, str]]:
    """(1-based line number, line) for every non-blank line."""
    for no, line in enumerate(text.splitlines(), start=1):
        if line.strip():
            yield no, line


def parse_text(text: str, columns: Mapping[str, int] | None = None) -> tuple[Entry, ...]:
    return tuple(parse_line(line, no, columns) for no, line in iter_record_lines(text))


def read_source_lines(path: str | Path) -> list[str]:
    """Non-blank raw lines of the feed, in file order."""
    p = Path(path).expanduser()
    if not p.exists():
        raise SourceUnavailable(f"Malformed data file not found: {p}")
    return [line for _, line in iter_record_lines(p.read_text(encoding="utf-8"))]


def load_entries(path: str | Path, columns: Mapping[str, int] | None = None) -> tuple[Entry, ...]:
    p = Path(path).expanduser()
    if not p.exists():
        raise SourceUnavailable(f"Malformed data file not found: {p}")
    entries = parse_text(p.read_text(encoding="utf-8"), columns)
    logger.info("Parsed %d entries from %s", len(entries), p)
    return entries


__all__ = [
    "Entry",
    "EntryStatus",
    "DEFAULT_COLUMNS",
    "parse_line",
    "parse_text",
    "iter_record_lines",
    "read_source_lines",
    "load_entries",
]
