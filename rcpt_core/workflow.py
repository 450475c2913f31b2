"""Phase 1: open each receipt and file the reversal/reallocation folder.

Per receipt: open it, read its type and date, open the Folder dialog, pick
the unit derived from the type (the skip-unit dialog has no selector), tick
Reversal then Reallocate, fill date and description, submit, and wait for
the receipt index to turn into the sentinel value.

A blocking notification ledgers the receipt and cancels it. Any other
notification (or no result before the deadline) is dismissed and the
receipt stays a candidate for phases 2 and 3.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from typing import Iterable

from .classify import NotificationKind, TIMEOUT_REASON
from .context import RunContext
from .errors import DriverError
from .grouping import Unit
from .state import WorkflowState
from .utils import poll_until


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class SubmitResult:
    ok: bool
    text: str | None = None

    @property
    def timed_out(self) -> bool:
        return not self.ok and self.text is None


@dataclass(frozen=True)
class UnitOutcome:
    unit: Unit
    survived: bool
    kind: NotificationKind | None = None
    reason: str = ""


def unit_code(receipt_type: str, separator: str = "-") -> str:
    """'9200-Something' → '9200'."""
    return (receipt_type or "").split(separator)[0].strip()


def await_index_sentinel(ctx: RunContext) -> SubmitResult:
    """Wait until the index field shows the sentinel or a notification pops up."""
    s = ctx.settings
    index_field = s.field_name("receipt_index")
    sentinel = s.index_sentinel.strip().lower()

    def check() -> SubmitResult | None:
        status = ctx.app.read_status_field(index_field)
        if status is not None and status.strip().lower() == sentinel:
            return SubmitResult(ok=True)
        note = ctx.app.detect_notification()
        if note:
            return SubmitResult(ok=False, text=note)
        return None

    hit = poll_until(check, s.submit_timeout_s, s.submit_poll_interval_s, now=ctx.now, sleep=ctx.sleep)
    return hit if hit is not None else SubmitResult(ok=False)


class UnitWorkflow:
    def __init__(self, ctx: RunContext):
        self.ctx = ctx

    def _fill_folder(self, unit: Unit) -> None:
        app, s = self.ctx.app, self.ctx.settings
        nav = s.navigation_timeout_s

        app.open_by_key(unit.receipt_index, nav)
        self.ctx.states.mark(unit.receipt_index, WorkflowState.OPENED)
        logger.info("    ✓ Receipt %s opened", unit.receipt_index)

        rcpt_type = app.read_field(s.field_name("receipt_type")) or ""
        rcpt_date = app.read_field(s.field_name("receipt_date")) or ""
        code = unit_code(rcpt_type, s.unit_separator)
        logger.debug("    type=%r date=%r unit=%r", rcpt_type, rcpt_date, code)

        app.open_dialog(s.field_name("folder_dialog"), nav)
        if code != s.skip_unit_code:
            app.select_from_filtered_list(s.field_name("folder_unit"), code, nav)

        # Reallocate is only enabled once Reversal is ticked
        app.toggle_option(s.field_name("reversal"), nav)
        app.toggle_option(s.field_name("reallocate"), nav)

        app.fill_field(s.field_name("folder_date"), rcpt_date)
        app.fill_field(s.field_name("folder_description"), s.folder_description)

    def _cancel(self, unit: Unit) -> None:
        try:
            self.ctx.app.cancel_and_confirm(self.ctx.settings.navigation_timeout_s)
        except DriverError as exc:
            logger.warning("    Could not cancel receipt %s: %s", unit.receipt_index, exc)

    def run(self, unit: Unit) -> UnitOutcome:
        ctx = self.ctx
        key = unit.receipt_index
        logger.info("  ▸ Processing receipt %s (%d invoice(s))", key, len(unit.invoice_numbers))
        try:
            self._fill_folder(unit)
            ctx.app.submit()
            result = await_index_sentinel(ctx)
        except DriverError as exc:
            logger.warning("    Receipt %s failed before submit completed: %s", key, exc)
            ctx.states.mark(key, WorkflowState.FAILED, str(exc))
            self._cancel(unit)
            return UnitOutcome(unit, survived=False, reason=str(exc))

        if result.ok:
            ctx.states.mark(key, WorkflowState.CORRECTED)
            logger.info("    ✓ Folder submitted for receipt %s", key)
            return UnitOutcome(unit, survived=True)

        kind = ctx.classifier.classify(result.text)
        reason = result.text or TIMEOUT_REASON
        if kind.fatal:
            ctx.ledger.record(unit, reason)
            ctx.states.mark(key, WorkflowState.BLOCKED, reason)
            self._cancel(unit)
            return UnitOutcome(unit, survived=False, kind=kind, reason=reason)

        if not result.timed_out:
            try:
                ctx.app.dismiss_notification()
            except DriverError as exc:
                logger.warning("    Could not dismiss notification on receipt %s: %s", key, exc)
        logger.warning("    Receipt %s: %s (%s, continuing)", key, reason, kind.value)
        ctx.states.mark(key, WorkflowState.CORRECTED, reason)
        return UnitOutcome(unit, survived=True, kind=kind, reason=reason)

    def run_batch(self, units: Iterable[Unit]) -> list[UnitOutcome]:
        return [self.run(u) for u in units]


__all__ = [
    "SubmitResult",
    "UnitOutcome",
    "UnitWorkflow",
    "unit_code",
    "await_index_sentinel",
]
