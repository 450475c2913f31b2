from __future__ import annotations

import logging
from dataclasses import dataclass, field
from enum import Enum
from typing import Iterable


logger = logging.getLogger(__name__)


class WorkflowState(str, Enum):
    PENDING = "pending"
    OPENED = "opened"
    CORRECTED = "corrected"
    BLOCKED = "blocked"
    RECONCILED = "reconciled"
    SUBMITTED = "submitted"
    JOB_TRIGGERED = "job_triggered"
    COMPLETED = "completed"
    FAILED = "failed"


@dataclass
class UnitRecord:
    receipt_index: int
    state: WorkflowState = WorkflowState.PENDING
    reason: str = ""
    history: list[tuple[WorkflowState, str]] = field(default_factory=list)


class StateBook:
    """In-memory per-receipt workflow state for one run."""

    def __init__(self, receipts: Iterable[int] = ()):
        self._records: dict[int, UnitRecord] = {}
        for r in receipts:
            self.get(r)

    def get(self, receipt_index: int) -> UnitRecord:
        rec = self._records.get(receipt_index)
        if rec is None:
            rec = UnitRecord(receipt_index, history=[(WorkflowState.PENDING, "")])
            self._records[receipt_index] = rec
        return rec

    def mark(self, receipt_index: int, state: WorkflowState, reason: str = "") -> UnitRecord:
        rec = self.get(receipt_index)
        rec.state = state
        rec.reason = reason
        rec.history.append((state, reason))
        logger.debug("receipt %s → %s %s", receipt_index, state.value, reason)
        return rec

    def state_of(self, receipt_index: int) -> WorkflowState:
        return self.get(receipt_index).state

    def in_state(self, state: WorkflowState) -> list[int]:
        return [k for k, rec in self._records.items() if rec.state is state]

    def records(self) -> list[UnitRecord]:
        return list(self._records.values())

    def counts(self) -> dict[str, int]:
        out: dict[str, int] = {}
        for rec in self._records.values():
            out[rec.state.value] = out.get(rec.state.value, 0) + 1
        return out


__all__ = ["WorkflowState", "UnitRecord", "StateBook"]
