from __future__ import annotations

import time
from dataclasses import dataclass, field
from typing import Callable

from .classify import NotificationClassifier
from .config import RunSettings
from .drivers import JobService, TargetApplication, guarded
from .ledger import FailureLedger
from .state import StateBook


@dataclass
class RunContext:
    """Run-scoped collaborators and state, passed to every phase.

    `now` and `sleep` drive every deadline and poll interval, so tests can
    substitute a fake clock.
    """

    app: TargetApplication
    jobs: JobService
    settings: RunSettings
    ledger: FailureLedger = field(default_factory=FailureLedger)
    classifier: NotificationClassifier = field(default_factory=NotificationClassifier.from_cfg)
    states: StateBook = field(default_factory=StateBook)
    now: Callable[[], float] = time.monotonic
    sleep: Callable[[float], None] = time.sleep

    def __post_init__(self) -> None:
        # phases only catch DriverError; library exceptions are re-raised as one
        self.app = guarded(self.app)
        self.jobs = guarded(self.jobs)


__all__ = ["RunContext"]
