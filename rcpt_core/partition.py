"""Split receipts into K independent groups for separate runs.

Receipts that share an invoice (InvMaster) must land in the same group, or
two runs would trigger the remote job against the same invoice. Connected
components are found with union-find over dense receipt indices, then packed
first-fit-decreasing by entry count into the least-loaded group.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from itertools import combinations
from pathlib import Path
from typing import Iterable, Sequence

from .config import CFG
from .errors import InvalidConfiguration, PartitionInvariantViolated
from .grouping import Unit
from .records import parse_line


logger = logging.getLogger(__name__)


class UnionFind:
    """Disjoint sets over 0..n-1 with path compression and union by rank."""

    def __init__(self, n: int):
        self.parent = list(range(n))
        self.rank = [0] * n

    def find(self, x: int) -> int:
        root = x
        while self.parent[root] != root:
            root = self.parent[root]
        while self.parent[x] != root:
            self.parent[x], x = root, self.parent[x]
        return root

    def union(self, a: int, b: int) -> int:
        ra, rb = self.find(a), self.find(b)
        if ra == rb:
            return ra
        if self.rank[ra] < self.rank[rb]:
            ra, rb = rb, ra
        self.parent[rb] = ra
        if self.rank[ra] == self.rank[rb]:
            self.rank[ra] += 1
        return ra


@dataclass
class PartitionGroup:
    number: int
    units: list[Unit]
    entry_count: int = 0

    @property
    def receipts(self) -> set[int]:
        return {u.receipt_index for u in self.units}

    @property
    def invoices(self) -> set[int]:
        return {inv for u in self.units for inv in u.touched_invoices}


@dataclass(frozen=True)
class PartitionPlan:
    groups: tuple[PartitionGroup, ...]
    components: int

    def group_of(self, receipt_index: int) -> int | None:
        for g in self.groups:
            if receipt_index in g.receipts:
                return g.number
        return None


def connected_components(units: Sequence[Unit]) -> list[list[int]]:
    """Unit positions grouped by shared invoices, each list in input order."""
    uf = UnionFind(len(units))
    first_owner: dict[int, int] = {}
    for pos, unit in enumerate(units):
        for inv in unit.touched_invoices:
            owner = first_owner.setdefault(inv, pos)
            if owner != pos:
                uf.union(owner, pos)
    comps: dict[int, list[int]] = {}
    for pos in range(len(units)):
        comps.setdefault(uf.find(pos), []).append(pos)
    return list(comps.values())


def verify_partition(groups: Sequence[PartitionGroup]) -> None:
    for a, b in combinations(groups, 2):
        shared_rcpt = a.receipts & b.receipts
        if shared_rcpt:
            raise PartitionInvariantViolated(
                f"groups {a.number} and {b.number} share receipts {sorted(shared_rcpt)[:10]}"
            )
        shared_inv = a.invoices & b.invoices
        if shared_inv:
            raise PartitionInvariantViolated(
                f"groups {a.number} and {b.number} share invoices {sorted(shared_inv)[:10]}"
            )


def partition_units(units: Sequence[Unit], k: int) -> PartitionPlan:
    if k < 1:
        raise InvalidConfiguration(f"partition group count must be >= 1, got {k}")
    comps = connected_components(units)

    sized = [
        (sum(units[p].entry_count for p in comp), min(units[p].receipt_index for p in comp), comp)
        for comp in comps
    ]
    # Largest first; smaller receipt index first among equals
    sized.sort(key=lambda t: (-t[0], t[1]))

    groups = tuple(PartitionGroup(number=i + 1, units=[]) for i in range(k))
    for load, _, comp in sized:
        target = min(groups, key=lambda g: (g.entry_count, g.number))
        target.units.extend(units[p] for p in comp)
        target.entry_count += load

    verify_partition(groups)
    big = [t for t in sized if len(t[2]) > 1]
    logger.info("Connected components: %d (%d spanning several receipts)", len(sized), len(big))
    for g in groups:
        logger.info("Group %d: %d receipts, %d lines", g.number, len(g.units), g.entry_count)
    return PartitionPlan(groups=groups, components=len(sized))


def split_lines(plan: PartitionPlan, lines: Iterable[str]) -> list[list[str]]:
    """Each group's original lines, in original file order."""
    owner: dict[int, int] = {}
    for i, g in enumerate(plan.groups):
        for r in g.receipts:
            owner[r] = i
    out: list[list[str]] = [[] for _ in plan.groups]
    for no, line in enumerate(lines, start=1):
        idx = owner.get(parse_line(line, no).receipt_index)
        if idx is not None:
            out[idx].append(line)
    return out


def write_partition(
    plan: PartitionPlan,
    lines: Sequence[str],
    out_dir: str | Path,
    stem: str,
    filename_template: str | None = None,
) -> list[Path]:
    tmpl = filename_template or (CFG.get("partition", {}) or {}).get("filename_template", "{stem}{n}")
    out = Path(out_dir).expanduser()
    out.mkdir(parents=True, exist_ok=True)
    written: list[Path] = []
    for g, group_lines in zip(plan.groups, split_lines(plan, lines)):
        path = out / tmpl.format(stem=stem, n=g.number)
        path.write_text("\n".join(group_lines) + "\n", encoding="utf-8")
        logger.info("Written %s: %d lines", path.name, len(group_lines))
        written.append(path)
    return written


__all__ = [
    "UnionFind",
    "PartitionGroup",
    "PartitionPlan",
    "connected_components",
    "partition_units",
    "verify_partition",
    "split_lines",
    "write_partition",
]
