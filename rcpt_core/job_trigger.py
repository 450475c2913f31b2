"""Phase 2: run the remote job once for a batch's surviving receipts."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable

from .context import RunContext
from .errors import BatchJobFailed, BatchJobTimeout
from .grouping import Unit
from .state import WorkflowState
from .utils import poll_until, unique


logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class JobResult:
    parameter: str
    started: bool = False
    status: str | None = None
    polls: int = 0
    invoices: tuple[int, ...] = field(default_factory=tuple)

    @property
    def skipped(self) -> bool:
        return not self.started


def job_parameter(units: Iterable[Unit]) -> tuple[int, ...]:
    """Union of the units' InvMaster values, first-seen order."""
    return tuple(unique(inv for u in units for inv in u.invoice_indices))


def trigger_job(ctx: RunContext, survivors: Iterable[Unit]) -> JobResult:
    """Start the job and poll until it completes.

    Raises BatchJobTimeout past the job deadline and BatchJobFailed on a
    terminal failure status. Neither is attributable to one receipt.
    """
    units = list(survivors)
    invoices = job_parameter(units)
    param = ",".join(str(i) for i in invoices)
    if not invoices:
        logger.info("  No invoices to send to the job; skipping")
        return JobResult(parameter="")

    s = ctx.settings
    logger.info("  ▸ Triggering job for %d receipt(s), invoices: %s", len(units), param)
    ctx.jobs.open_job_surface(s.navigation_timeout_s)
    ctx.jobs.start(param)
    for u in units:
        ctx.states.mark(u.receipt_index, WorkflowState.JOB_TRIGGERED)

    failures = {f.lower() for f in s.failure_statuses}
    polls = 0

    def check() -> str | None:
        nonlocal polls
        polls += 1
        status = ctx.jobs.read_status()
        logger.debug("    job status: %r", status)
        if status and s.completed_status.lower() in status.lower():
            return status
        if status and status.strip().lower() in failures:
            raise BatchJobFailed(status.strip())
        return None

    done = poll_until(
        check,
        s.job_timeout_s,
        s.job_poll_interval_s,
        now=ctx.now,
        sleep=ctx.sleep,
        between=ctx.jobs.refresh,
    )
    if done is None:
        raise BatchJobTimeout("remote job", s.job_timeout_s)
    logger.info("    ✓ Job completed after %d poll(s)", polls)
    return JobResult(parameter=param, started=True, status=done, polls=polls, invoices=invoices)


__all__ = ["JobResult", "job_parameter", "trigger_job"]
