"""End-to-end reconciliation run.

Loads the malformed feed, groups it into receipts, drops previously blocked
receipts, chunks the rest into batches and runs each batch through phase 1
(folder correction), phase 2 (remote job) and phase 3 (pending-list drain),
strictly one batch after another. Writes the run report at the end.
Designed to be called from CLI wrappers.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Sequence
import logging
import time

from .config import CFG, RunSettings, project_root
from .context import RunContext
from .drain import DrainResult, drain_pending
from .drivers import build_from_factory
from .errors import DriverError, FATAL_ERRORS, RcptError
from .grouping import Unit, drop_excluded, group_units, load_exclusions
from .job_trigger import JobResult, trigger_job
from .ledger import FailureLedger
from .records import load_entries
from .report import write_run_report
from .scheduler import Batch, chunk
from .state import StateBook, WorkflowState
from .utils import is_true_flag
from .workflow import UnitOutcome, UnitWorkflow


logger = logging.getLogger(__name__)


@dataclass
class BatchResult:
    batch: Batch
    outcomes: List[UnitOutcome] = field(default_factory=list)
    job: JobResult | None = None
    drain: DrainResult | None = None
    error: str = ""

    @property
    def survivors(self) -> List[Unit]:
        return [o.unit for o in self.outcomes if o.survived]

    @property
    def failed(self) -> bool:
        return bool(self.error)


@dataclass
class RunSummary:
    states: StateBook
    ledger: FailureLedger
    batches: List[BatchResult] = field(default_factory=list)
    started_at: datetime = field(default_factory=datetime.now)
    finished_at: datetime | None = None

    @property
    def failed_batches(self) -> List[int]:
        return [br.batch.index for br in self.batches if br.failed]


def _resolve(path: str | Path) -> Path:
    p = Path(path).expanduser()
    return p if p.is_absolute() else project_root() / p


def prepare_units(source: str | Path, exclude_file: str | Path | None = None) -> tuple[Unit, ...]:
    entries = load_entries(source)
    units = group_units(entries)
    return drop_excluded(units, load_exclusions(exclude_file))


def run_batch(ctx: RunContext, batch: Batch, total: int | None = None) -> BatchResult:
    res = BatchResult(batch=batch)
    logger.info("═══ Batch %d/%s: %d receipt(s) ═══", batch.index, total or "?", len(batch))

    logger.info("── Phase 1: correct receipts ──")
    res.outcomes = UnitWorkflow(ctx).run_batch(batch.units)
    survivors = res.survivors
    logger.info("  %d of %d receipt(s) survived phase 1", len(survivors), len(batch))

    logger.info("── Phase 2: trigger job ──")
    try:
        res.job = trigger_job(ctx, survivors)
    except DriverError as exc:
        res.error = f"job: {exc}"
        logger.error("  ✗ Batch %d job failed, skipping its drain: %s", batch.index, exc)
        return res

    logger.info("── Phase 3: drain pending list ──")
    try:
        res.drain = drain_pending(ctx, survivors)
    except DriverError as exc:
        res.error = f"drain: {exc}"
        logger.error("  ✗ Batch %d drain aborted: %s", batch.index, exc)
        return res

    for u in survivors:
        if ctx.states.state_of(u.receipt_index) is WorkflowState.SUBMITTED:
            ctx.states.mark(u.receipt_index, WorkflowState.COMPLETED)
    return res


def run_batches(
    ctx: RunContext,
    batches: Sequence[Batch],
    on_batch: Callable[[BatchResult], None] | None = None,
) -> RunSummary:
    summary = RunSummary(states=ctx.states, ledger=ctx.ledger)
    for b in batches:
        for u in b.units:
            ctx.states.get(u.receipt_index)
    for b in batches:
        br = run_batch(ctx, b, total=len(batches))
        summary.batches.append(br)
        if on_batch is not None:
            on_batch(br)
    summary.finished_at = datetime.now()
    counts = ctx.states.counts()
    logger.info(
        "Run finished: %d batch(es), %d failed, states=%s, blocked=%d",
        len(batches), len(summary.failed_batches), counts, len(ctx.ledger),
    )
    return summary


def _close(obj) -> None:
    closer = getattr(obj, "close", None)
    if callable(closer):
        try:
            closer()
        except Exception as exc:
            logger.warning("Error closing %s: %s", type(obj).__name__, exc)


def run_cli(argv: List[str]) -> int:
    """`rcpt.py run [source] [KEY=VALUE ...]`

    Recognised overrides: source, batch_size, exclude, ledger_dir, report_dir.
    Exit codes: 0 done, 1 done with failed batches, 2 bad input or config,
    3 drivers unavailable.
    """
    overrides: Dict[str, str] = {}
    remaining: List[str] = []
    for arg in argv:
        if "=" in arg:
            k, v = arg.split("=", 1)
            overrides[k.strip().lower()] = v
        else:
            remaining.append(arg)

    input_cfg = CFG.get("input", {}) or {}
    ledger_cfg = CFG.get("ledger", {}) or {}
    source = _resolve(
        remaining[0] if remaining else overrides.get("source", input_cfg.get("source", "resources/malformedData"))
    )
    exclude = overrides.get("exclude", input_cfg.get("exclude_file"))
    ledger_dir = _resolve(overrides.get("ledger_dir", ledger_cfg.get("dir", "resources")))

    overall_start = time.time()
    try:
        cfg = CFG
        if "batch_size" in overrides:
            cfg = {**CFG, "run": {**(CFG.get("run", {}) or {}), "batch_size": overrides["batch_size"]}}
        settings = RunSettings.from_cfg(cfg)
        units = prepare_units(source, _resolve(exclude) if exclude else None)
        batches = chunk(units, settings.batch_size)
    except FATAL_ERRORS as exc:
        logger.error("%s: %s", type(exc).__name__, exc)
        return 2
    logger.info("Prepared %d receipt(s) in %d batch(es) of up to %d", len(units), len(batches), settings.batch_size)
    setup_time = time.time() - overall_start

    try:
        app = build_from_factory("target_app")
        jobs = build_from_factory("job")
    except (LookupError, ImportError, AttributeError, ValueError, TypeError, RcptError) as exc:
        logger.error("Cannot build drivers: %s", exc)
        return 3

    ledger = FailureLedger.for_run(ledger_dir)
    logger.info("Failure ledger for this run: %s", ledger.path)
    ctx = RunContext(app=app, jobs=jobs, settings=settings, ledger=ledger)
    try:
        summary = run_batches(ctx, batches)
    finally:
        _close(jobs)
        _close(app)
    run_time = time.time() - overall_start - setup_time

    export_cfg = CFG.get("export", {}) or {}
    if is_true_flag(export_cfg.get("enable", True)):
        out_dir = _resolve(overrides.get("report_dir", export_cfg.get("dir", "reports")))
        try:
            paths = write_run_report(summary, out_dir, source.stem)
            logger.info("Report → %s", paths)
        except OSError as exc:
            logger.warning("Run report not written: %s", exc)

    logger.info("Timing summary → setup: %.2fs | batches: %.2fs", setup_time, run_time)
    return 1 if summary.failed_batches else 0


__all__ = [
    "BatchResult",
    "RunSummary",
    "prepare_units",
    "run_batch",
    "run_batches",
    "run_cli",
]
