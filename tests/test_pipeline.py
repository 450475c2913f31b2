import json

import pytest

from conftest import FakeApp, FakeJobs, feed_line, units_from
from rcpt_core import pipeline
from rcpt_core.scheduler import chunk
from rcpt_core.state import WorkflowState


def _wire(app, jobs):
    def on_start(param):
        # newest first: the job adds one pending item per invoice
        app.pending[:0] = [f"job{len(jobs.params)}-{inv}" for inv in reversed(param.split(","))]
    jobs.on_start = on_start


def test_run_batches_end_to_end(make_ctx):
    app = FakeApp(outcomes={20: "Receipt type does not allow reversal"})
    jobs = FakeJobs(statuses=["Completed"])
    _wire(app, jobs)
    ctx = make_ctx(app=app, jobs=jobs)
    units = units_from([(10, 1, "A"), (20, 2, "B"), (30, 3, "C")])
    summary = pipeline.run_batches(ctx, chunk(units, 2))

    assert jobs.params == ["1", "3"]
    assert ctx.states.state_of(10) is WorkflowState.COMPLETED
    assert ctx.states.state_of(20) is WorkflowState.BLOCKED
    assert ctx.states.state_of(30) is WorkflowState.COMPLETED
    assert ctx.ledger.receipts == [20]
    assert summary.failed_batches == []
    assert [br.drain.confirmed for br in summary.batches] == [1, 1]
    assert summary.finished_at is not None


def test_batches_run_strictly_in_order(make_ctx):
    app = FakeApp()
    jobs = FakeJobs(statuses=["Completed"])
    _wire(app, jobs)
    ctx = make_ctx(app=app, jobs=jobs)
    pipeline.run_batches(ctx, chunk(units_from([(r, r, f"I{r}") for r in (1, 2, 3)]), 2))
    opened = [c[1] for c in app.calls if c[0] == "open_by_key"]
    first_fetch = app.names().index("fetch")
    assert opened == [1, 2, 3]
    # batch 2 receipts open only after batch 1 drained
    assert app.calls.index(("open_by_key", 3)) > first_fetch


def test_job_failure_skips_drain_and_continues(make_ctx):
    app = FakeApp()
    jobs = FakeJobs(statuses=["Failed"])
    ctx = make_ctx(app=app, jobs=jobs)
    summary = pipeline.run_batches(ctx, chunk(units_from([(1, 1, "A"), (2, 2, "B")]), 1))
    assert summary.failed_batches == [1, 2]
    assert all(br.drain is None for br in summary.batches)
    assert "fetch" not in app.names()
    assert ctx.states.state_of(1) is WorkflowState.JOB_TRIGGERED


def test_batch_with_no_survivors_skips_job(make_ctx):
    app = FakeApp(outcomes={1: "does not allow"})
    jobs = FakeJobs()
    ctx = make_ctx(app=app, jobs=jobs)
    (br,) = pipeline.run_batches(ctx, chunk(units_from([(1, 1, "A")]), 5)).batches
    assert br.job.skipped
    assert jobs.params == []
    assert br.drain.stop_reason.value == "empty"


class CrashingJobs(FakeJobs):
    crashed = False

    def start(self, parameter):
        if not self.crashed:
            self.crashed = True
            raise RuntimeError("connection reset")
        super().start(parameter)


def test_unexpected_job_exception_fails_batch_and_continues(make_ctx):
    app = FakeApp()
    jobs = CrashingJobs(statuses=["Completed"])
    _wire(app, jobs)
    ctx = make_ctx(app=app, jobs=jobs)
    summary = pipeline.run_batches(ctx, chunk(units_from([(1, 1, "A"), (2, 2, "B")]), 1))
    assert summary.failed_batches == [1]
    assert "RuntimeError" in summary.batches[0].error
    assert summary.batches[1].drain.confirmed == 1
    assert jobs.params == ["2"]
    assert ctx.states.state_of(2) is WorkflowState.COMPLETED


@pytest.fixture
def feed(tmp_path):
    src = tmp_path / "malformedData"
    rows = [feed_line(1, 1, "A", 10), feed_line(2, 2, "B", 20), feed_line(3, 3, "C", 30)]
    src.write_text("\n".join(rows) + "\n", encoding="utf-8")
    (tmp_path / "blocked.txt").write_text("30\n", encoding="utf-8")
    return src


def test_run_cli(feed, tmp_path, monkeypatch):
    app = FakeApp(outcomes={20: "does not allow"})
    jobs = FakeJobs(statuses=["Completed"])
    _wire(app, jobs)
    monkeypatch.setattr(pipeline, "build_from_factory", lambda section: app if section == "target_app" else jobs)

    code = pipeline.run_cli([
        str(feed),
        f"exclude={tmp_path / 'blocked.txt'}",
        f"ledger_dir={tmp_path / 'ledgers'}",
        f"report_dir={tmp_path / 'reports'}",
        "batch_size=5",
    ])
    assert code == 0
    assert jobs.params == ["1"]
    assert ("open_by_key", 30) not in app.calls
    (ledger_file,) = (tmp_path / "ledgers").glob("blackList_*")
    assert ledger_file.read_text(encoding="utf-8").startswith("# Receipt 20 — does not allow")
    (report,) = (tmp_path / "reports").glob("malformedData_run_*.json")
    data = json.loads(report.read_text(encoding="utf-8"))
    assert data["state_counts"] == {"completed": 1, "blocked": 1}


def test_run_cli_missing_source(tmp_path):
    assert pipeline.run_cli([str(tmp_path / "missing")]) == 2


def test_run_cli_bad_batch_size(feed):
    assert pipeline.run_cli([str(feed), "batch_size=0"]) == 2


def test_run_cli_without_driver(feed, monkeypatch):
    def no_driver(section):
        raise LookupError(f"{section}.factory is not configured")
    monkeypatch.setattr(pipeline, "build_from_factory", no_driver)
    assert pipeline.run_cli([str(feed)]) == 3
