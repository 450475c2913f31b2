"""Pytest fixtures: scripted target application, job service and a fake clock."""

from __future__ import annotations

import pytest

from rcpt_core.classify import NotificationClassifier
from rcpt_core.config import RunSettings
from rcpt_core.context import RunContext
from rcpt_core.errors import DriverError, OperationTimeout
from rcpt_core.grouping import group_units
from rcpt_core.ledger import FailureLedger
from rcpt_core.records import parse_line


def feed_line(arm, inv, inv_no, rcpt, diff="0.00", status=None):
    """One tab-separated feed row with the standard 17 (or 18) columns."""
    cols = [""] * 17
    cols[0] = str(arm)
    cols[1] = str(inv)
    cols[2] = str(inv_no)
    cols[3] = "MATTER-1"
    cols[4] = str(rcpt)
    cols[5] = "2024-01-31"
    cols[6] = "USD"
    cols[16] = str(diff)
    if status is not None:
        cols.append(status)
    return "\t".join(cols)


def units_from(rows):
    """rows: (receipt, invoice_index, invoice_number) triples."""
    lines = [feed_line(100 + n, inv, inv_no, rcpt) for n, (rcpt, inv, inv_no) in enumerate(rows)]
    return group_units(parse_line(line, n) for n, line in enumerate(lines, start=1))


class FakeClock:
    def __init__(self):
        self.t = 0.0
        self.sleeps = []

    def now(self):
        return self.t

    def sleep(self, seconds):
        self.sleeps.append(seconds)
        self.t += seconds


class FakeApp:
    """Scripted target application.

    `outcomes` maps a receipt to the notification shown after its folder
    submit (None = nothing ever appears); receipts not listed succeed.
    `drain_outcomes` does the same for pending-list items, which are removed
    from `pending` when they submit cleanly.
    `fail_open` receipts time out on open; `fail_add` labels fail to attach.
    """

    def __init__(self, receipts=None, outcomes=None, pending=None, drain_outcomes=None, fail_open=(), fail_add=()):
        self.receipts = receipts or {}
        self.outcomes = outcomes or {}
        self.pending = list(pending or [])
        self.drain_outcomes = drain_outcomes or {}
        self.fail_open = set(fail_open)
        self.fail_add = set(fail_add)
        self.calls = []
        self.description = ""
        self._mode = None
        self._current = None
        self._submitted = False

    def open_by_key(self, key, timeout_s):
        self.calls.append(("open_by_key", key))
        if key in self.fail_open:
            raise OperationTimeout(f"open receipt {key}", timeout_s)
        self._mode, self._current, self._submitted = "receipt", key, False

    def read_field(self, name):
        if self._mode == "item":
            return self.description
        rtype, rdate = self.receipts.get(self._current, ("9200-Standard", "2024-01-31"))
        return {"receipt_type": rtype, "receipt_date": rdate}.get(name, "")

    def open_dialog(self, name, timeout_s):
        self.calls.append(("open_dialog", name))

    def select_from_filtered_list(self, name, value, timeout_s):
        self.calls.append(("select", name, value))

    def toggle_option(self, name, timeout_s):
        self.calls.append(("toggle", name))

    def fill_field(self, name, value):
        self.calls.append(("fill", name, value))
        if name == "folder_description":
            self.description = value

    def submit(self):
        self.calls.append(("submit", self._current))
        self._submitted = True
        if self._mode == "item" and self._current not in self.drain_outcomes:
            self.pending.remove(self._current)

    def read_status_field(self, name):
        if self._submitted and self._mode == "receipt" and self._current not in self.outcomes:
            return "Auto"
        return str(self._current)

    def detect_notification(self):
        if not self._submitted:
            return None
        if self._mode == "item":
            return self.drain_outcomes.get(self._current)
        return self.outcomes.get(self._current)

    def dismiss_notification(self):
        self.calls.append(("dismiss", self._current))

    def cancel_and_confirm(self, timeout_s):
        self.calls.append(("cancel", self._current))

    def fetch_pending_list(self, timeout_s):
        self.calls.append(("fetch",))
        return list(self.pending)

    def open_list_item(self, item, timeout_s):
        self.calls.append(("open_item", item))
        self._mode, self._current, self._submitted = "item", item, False

    def is_item_open(self):
        if self._mode != "item":
            return False
        return not (self._submitted and self._current not in self.drain_outcomes)

    def remove_all_references(self):
        self.calls.append(("remove_all",))

    def search_and_add_reference(self, label, timeout_s):
        self.calls.append(("add_ref", label))
        if label in self.fail_add:
            raise DriverError(f"reference {label} not found")

    def names(self):
        return [c[0] for c in self.calls]


class FakeJobs:
    """Job service whose status advances one step per refresh."""

    def __init__(self, statuses=("Running", "Completed"), on_start=None):
        self.statuses = list(statuses)
        self.on_start = on_start
        self.params = []
        self.refreshes = 0
        self.opened = 0
        self._pos = 0

    def open_job_surface(self, timeout_s):
        self.opened += 1

    def start(self, parameter):
        self.params.append(parameter)
        self._pos = 0
        if self.on_start is not None:
            self.on_start(parameter)

    def refresh(self):
        self.refreshes += 1
        self._pos = min(self._pos + 1, len(self.statuses) - 1)

    def read_status(self):
        return self.statuses[self._pos] if self.statuses else None


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def settings():
    return RunSettings(
        batch_size=2,
        submit_timeout_s=5,
        submit_poll_interval_s=1,
        job_timeout_s=9,
        job_poll_interval_s=3,
        drain_max_iterations=50,
        drain_stall_threshold=3,
    )


@pytest.fixture
def make_ctx(clock, settings):
    def _make(app=None, jobs=None, ledger=None, **overrides):
        return RunContext(
            app=app if app is not None else FakeApp(),
            jobs=jobs if jobs is not None else FakeJobs(),
            settings=settings if not overrides else RunSettings(**{**settings.__dict__, **overrides}),
            ledger=ledger if ledger is not None else FailureLedger(),
            classifier=NotificationClassifier(["does not allow"], ["saved with warnings"]),
            now=clock.now,
            sleep=clock.sleep,
        )
    return _make
