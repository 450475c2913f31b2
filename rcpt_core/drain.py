"""Phase 3: work the target application's pending list until it is empty.

The pending list is newest first, so its tail is the oldest opened receipt.
Each pass opens the oldest item not yet set aside, re-attaches the next
queued receipt's invoices (remove all, then search-and-add each invoice
number in order), and submits. An item that does not close is set aside
for the rest of the drain and never reopened, so the next receipt is never
attached to it. A list that stops shrinking for `drain.stall_threshold`
consecutive observations ends the drain early; whatever is left is
reported for manual handling.
"""

from __future__ import annotations

import logging
from collections import deque
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Iterable, Sequence

from .classify import TIMEOUT_REASON
from .context import RunContext
from .errors import DriverError
from .grouping import Unit
from .state import WorkflowState
from .utils import poll_until
from .workflow import SubmitResult


logger = logging.getLogger(__name__)


class StopReason(str, Enum):
    EMPTY = "empty"
    STALLED = "stalled"
    EXHAUSTED = "exhausted"


class ItemOutcome(str, Enum):
    CONFIRMED = "confirmed"
    # still pending after a notification or timeout, references intact
    LEFT = "left"
    # a driver failure interrupted it, references possibly half replaced
    ABANDONED = "abandoned"


@dataclass
class DrainResult:
    stop_reason: StopReason
    iterations: int = 0
    confirmed: int = 0
    sizes: list[int] = field(default_factory=list)
    leftover: int | None = None
    unreconciled: tuple[int, ...] = ()
    set_aside: list[Any] = field(default_factory=list)
    abandoned: list[Any] = field(default_factory=list)

    @property
    def stalled(self) -> bool:
        return self.stop_reason is StopReason.STALLED


class StallDetector:
    """Counts consecutive observations where the list did not shrink.

    The first observation is the baseline and never counts as a stall.
    """

    def __init__(self, threshold: int):
        self.threshold = threshold
        self.count = 0
        self._last: int | None = None

    def observe(self, size: int) -> bool:
        if self._last is not None and size >= self._last:
            self.count += 1
        else:
            self.count = 0
        self._last = size
        return self.count >= self.threshold


def await_item_closed(ctx: RunContext) -> SubmitResult:
    s = ctx.settings

    def check() -> SubmitResult | None:
        if not ctx.app.is_item_open():
            return SubmitResult(ok=True)
        note = ctx.app.detect_notification()
        if note:
            return SubmitResult(ok=False, text=note)
        return None

    hit = poll_until(check, s.submit_timeout_s, s.submit_poll_interval_s, now=ctx.now, sleep=ctx.sleep)
    return hit if hit is not None else SubmitResult(ok=False)


def _reconcile(ctx: RunContext, unit: Unit) -> None:
    nav = ctx.settings.navigation_timeout_s
    ctx.app.remove_all_references()
    for label in unit.invoice_numbers:
        logger.info("    ▹ Adding invoice %s", label)
        ctx.app.search_and_add_reference(label, nav)
    ctx.states.mark(unit.receipt_index, WorkflowState.RECONCILED)


def _verify_description(ctx: RunContext, label: str) -> None:
    s = ctx.settings
    desc = ctx.app.read_field(s.field_name("folder_description")) or ""
    if s.folder_description not in desc:
        logger.warning("    %s does not carry folder description %r (found %r)", label, s.folder_description, desc)


def next_item(items: Sequence[Any], set_aside: Sequence[Any]) -> Any | None:
    """Oldest pending item (closest to the tail) not set aside, else None."""
    for item in reversed(items):
        if item not in set_aside:
            return item
    return None


def submit_item(ctx: RunContext, item: Any, queue: deque) -> ItemOutcome:
    """Open, reconcile and submit one pending item."""
    s = ctx.settings
    unit: Unit | None = None
    label = f"item {item!r}"
    try:
        ctx.app.open_list_item(item, s.navigation_timeout_s)
        if queue:
            unit = queue.popleft()
            label = f"receipt {unit.receipt_index}"
            logger.info("  ▸ Reconciling receipt %s (%d invoice(s))", unit.receipt_index, len(unit.invoice_numbers))
            _reconcile(ctx, unit)
        else:
            logger.info("  ▸ Submitting carried-over item %r unchanged", item)
        if s.verify_description:
            _verify_description(ctx, label)
        ctx.app.submit()
        result = await_item_closed(ctx)
    except DriverError as exc:
        logger.error("  ✗ Pending item %r (%s) abandoned: %s", item, label, exc)
        if unit is not None:
            ctx.states.mark(unit.receipt_index, WorkflowState.FAILED, str(exc))
        return ItemOutcome.ABANDONED

    if result.ok:
        if unit is not None:
            ctx.states.mark(unit.receipt_index, WorkflowState.SUBMITTED)
        logger.info("    ✓ Submitted %s", label)
        return ItemOutcome.CONFIRMED

    kind = ctx.classifier.classify(result.text)
    reason = result.text or TIMEOUT_REASON
    if kind.fatal:
        # Left in the pending list for manual resolution
        if unit is not None:
            ctx.ledger.record(unit, reason)
            ctx.states.mark(unit.receipt_index, WorkflowState.FAILED, reason)
        else:
            logger.error("  ✗ %s blocked: %s", label, reason)
        return ItemOutcome.LEFT

    if not result.timed_out:
        try:
            ctx.app.dismiss_notification()
        except DriverError as exc:
            logger.warning("    Could not dismiss notification on %s: %s", label, exc)
    logger.warning("    %s: %s (%s, continuing)", label, reason, kind.value)
    if unit is not None:
        ctx.states.mark(unit.receipt_index, WorkflowState.SUBMITTED, reason)
    return ItemOutcome.LEFT


def drain_pending(ctx: RunContext, survivors: Iterable[Unit]) -> DrainResult:
    s = ctx.settings
    nav = s.navigation_timeout_s
    queue: deque[Unit] = deque(survivors)
    stall = StallDetector(s.drain_stall_threshold)
    result = DrainResult(stop_reason=StopReason.EXHAUSTED)

    while result.iterations < s.drain_max_iterations:
        items = list(ctx.app.fetch_pending_list(nav))
        result.sizes.append(len(items))
        if not items:
            result.stop_reason = StopReason.EMPTY
            break
        if stall.observe(len(items)):
            logger.warning(
                "  Pending list stuck at %d item(s) for %d observations; ending drain",
                len(items), stall.count,
            )
            result.stop_reason = StopReason.STALLED
            break
        item = next_item(items, result.set_aside)
        if item is None:
            logger.warning("  Only set-aside items remain (%d); ending drain", len(items))
            result.stop_reason = StopReason.STALLED
            break
        result.iterations += 1
        logger.info("  %d pending item(s); opening the oldest open one", len(items))
        outcome = submit_item(ctx, item, queue)
        if outcome is ItemOutcome.CONFIRMED:
            result.confirmed += 1
            continue
        result.set_aside.append(item)
        if outcome is ItemOutcome.ABANDONED:
            result.abandoned.append(item)

    result.unreconciled = tuple(u.receipt_index for u in queue)
    try:
        result.leftover = len(ctx.app.fetch_pending_list(nav))
    except DriverError as exc:
        logger.warning("  Could not re-check the pending list: %s", exc)
    if result.leftover:
        logger.warning("  %d pending item(s) likely require manual intervention", result.leftover)
    if result.abandoned:
        logger.error(
            "  %d item(s) abandoned mid-reconciliation, check their references by hand: %s",
            len(result.abandoned), ", ".join(repr(i) for i in result.abandoned),
        )
    logger.info(
        "  Drain finished (%s): %d iteration(s), %d confirmed submission(s)",
        result.stop_reason.value, result.iterations, result.confirmed,
    )
    return result


__all__ = [
    "StopReason",
    "ItemOutcome",
    "DrainResult",
    "StallDetector",
    "await_item_closed",
    "next_item",
    "submit_item",
    "drain_pending",
]
