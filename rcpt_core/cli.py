"""CLI helpers for the offline tools.

`split` partitions a malformed feed into K files that share no receipt and
no invoice, so K runs can go in parallel. `blocked` folds every failure
ledger in a directory into one sorted exclusion list.
"""

from __future__ import annotations

from typing import List
from pathlib import Path

from .config import CFG, project_root
from .errors import FATAL_ERRORS
from .grouping import group_units
from .ledger import aggregate_blocked_keys, ledger_files, write_blocked_keys
from .partition import partition_units, write_partition
from .records import parse_line, read_source_lines


def _resolve(path: str | Path) -> Path:
    p = Path(path).expanduser()
    return p if p.is_absolute() else project_root() / p


def run_split_argv(argv: List[str]) -> int:
    """Split a feed into independent groups.

    Usage: rcpt.py split [source] [--groups K] [--out-dir DIR]
    """
    part_cfg = CFG.get("partition", {}) or {}
    source = None
    out_dir = None
    groups = part_cfg.get("groups", 3)
    it = iter(argv)
    for tok in it:
        if tok in {"--groups", "-k"}:
            groups = next(it, groups)
            continue
        if tok == "--out-dir":
            out_dir = next(it, None)
            continue
        if source is None:
            source = tok
    try:
        k = int(groups)
    except (TypeError, ValueError):
        print(f"[split] --groups must be an integer, got {groups!r}")
        return 1

    src = _resolve(source or (CFG.get("input", {}) or {}).get("source", "resources/malformedData"))
    try:
        lines = read_source_lines(src)
        entries = [parse_line(line, no) for no, line in enumerate(lines, start=1)]
        units = group_units(entries)
        plan = partition_units(units, k)
        dest = _resolve(out_dir) if out_dir else src.parent
        paths = write_partition(plan, lines, dest, src.name)
    except FATAL_ERRORS as e:
        print(f"[split] Failed: {e}")
        return 2

    print(f"[split] {len(units)} receipts in {plan.components} components → {len(plan.groups)} groups")
    for g, p in zip(plan.groups, paths):
        print(f"  group {g.number}: {len(g.units)} receipts, {g.entry_count} lines → {p}")
    print("[split] no receipt or invoice overlaps between groups")
    return 0


def run_blocked_argv(argv: List[str]) -> int:
    """Aggregate failure ledgers into a blocked-keys file.

    Usage: rcpt.py blocked [--dir DIR] [--out FILE]
    """
    ledger_cfg = CFG.get("ledger", {}) or {}
    directory = ledger_cfg.get("dir", "resources")
    out = ledger_cfg.get("blocked_keys_file", "resources/allBlacklistedReceipts.txt")
    it = iter(argv)
    for tok in it:
        if tok == "--dir":
            directory = next(it, directory)
        elif tok == "--out":
            out = next(it, out)

    files = ledger_files(_resolve(directory))
    if not files:
        print(f"[blocked] no ledger files under {_resolve(directory)}")
        return 1
    keys = aggregate_blocked_keys(files)
    path = write_blocked_keys(keys, _resolve(out))
    print(f"[blocked] {len(keys)} receipt(s) from {len(files)} file(s) → {path}")
    return 0


__all__ = [
    "run_split_argv",
    "run_blocked_argv",
]
