"""Append-only failure ledger ("blacklist") and its offline aggregation.

Each run appends blocked receipts to its own timestamped file:

    # Receipt 5369791 — Matter does not allow ...
    <raw tab-separated lines of the receipt>
    <blank>

Older files use a bare "<receipt> <message>" header instead. Header format
detection lives only in `parse_ledger_text`; everything else works with
`LedgerEntry` or plain receipt indices.
"""

from __future__ import annotations

import logging
import re
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Iterable, Sequence

from .config import CFG
from .grouping import Unit


logger = logging.getLogger(__name__)

_HEADER_RE = re.compile(r"^#\s*(?:Receipt\s+)?(\d+)\b")
_LEGACY_RE = re.compile(r"^(\d{5,}) .+")
_KEY_COLUMN = 4


@dataclass(frozen=True)
class LedgerEntry:
    receipt_index: int
    reason: str
    raw_lines: tuple[str, ...]

    def render(self) -> str:
        reason = " ".join((self.reason or "").split())
        body = "".join(f"{line}\n" for line in self.raw_lines)
        return f"# Receipt {self.receipt_index} — {reason}\n{body}\n"


class FailureLedger:
    """Single-writer, append-only. `path=None` keeps entries in memory only."""

    def __init__(self, path: str | Path | None = None):
        self.path = Path(path).expanduser() if path else None
        self._entries: list[LedgerEntry] = []

    @classmethod
    def for_run(
        cls,
        directory: str | Path,
        filename_template: str | None = None,
        now: datetime | None = None,
    ) -> "FailureLedger":
        tmpl = filename_template or (CFG.get("ledger", {}) or {}).get("filename_template", "blackList_{ts}")
        ts = (now or datetime.now()).strftime("%Y%m%d_%H%M%S")
        return cls(Path(directory).expanduser() / tmpl.format(ts=ts))

    @property
    def entries(self) -> tuple[LedgerEntry, ...]:
        return tuple(self._entries)

    @property
    def receipts(self) -> list[int]:
        return [e.receipt_index for e in self._entries]

    def __len__(self) -> int:
        return len(self._entries)

    def record(self, unit: Unit, reason: str) -> LedgerEntry:
        entry = LedgerEntry(unit.receipt_index, reason, unit.raw_lines)
        self._entries.append(entry)
        if self.path is not None:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            with open(self.path, "a", encoding="utf-8") as fh:
                fh.write(entry.render())
        logger.error("  ✗ Receipt %s blocked: %s", unit.receipt_index, reason)
        return entry


def _key_from_data_line(line: str) -> int | None:
    cols = line.split("\t")
    if len(cols) > _KEY_COLUMN and cols[_KEY_COLUMN].strip().isdigit():
        return int(cols[_KEY_COLUMN].strip())
    return None


def parse_ledger_text(text: str) -> set[int]:
    """Receipt indices named in one ledger file, any header format."""
    keys: set[int] = set()
    for line in text.splitlines():
        m = _HEADER_RE.match(line)
        if m:
            keys.add(int(m.group(1)))
            continue
        if "\t" in line:
            k = _key_from_data_line(line)
            if k is not None:
                keys.add(k)
            continue
        m = _LEGACY_RE.match(line)
        if m:
            keys.add(int(m.group(1)))
    return keys


def ledger_files(directory: str | Path, globs: Sequence[str] | None = None) -> list[Path]:
    patterns = globs or (CFG.get("ledger", {}) or {}).get("scan_globs") or ["blackList", "blackList_*"]
    base = Path(directory).expanduser()
    found: dict[Path, None] = {}
    for pat in patterns:
        for p in sorted(base.glob(pat)):
            if p.is_file():
                found[p] = None
    return list(found)


def aggregate_blocked_keys(paths: Iterable[str | Path]) -> list[int]:
    keys: set[int] = set()
    for p in paths:
        keys |= parse_ledger_text(Path(p).read_text(encoding="utf-8"))
    return sorted(keys)


def write_blocked_keys(keys: Iterable[int], out_path: str | Path) -> Path:
    out = Path(out_path).expanduser()
    out.parent.mkdir(parents=True, exist_ok=True)
    out.write_text("".join(f"{k}\n" for k in keys), encoding="utf-8")
    return out


__all__ = [
    "LedgerEntry",
    "FailureLedger",
    "parse_ledger_text",
    "ledger_files",
    "aggregate_blocked_keys",
    "write_blocked_keys",
]
