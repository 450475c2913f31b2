"""Error taxonomy for the receipt reconciliation runner.

Fatal kinds (`SourceUnavailable`, `InvalidConfiguration`,
`PartitionInvariantViolated`, `ParseError`) end the whole run. Driver and
timeout errors are caught at unit or batch level and degrade into logged,
ledgered or reported conditions.
"""

from __future__ import annotations


class RcptError(Exception):
    """Base class for all errors raised by rcpt_core."""


class SourceUnavailable(RcptError, FileNotFoundError):
    """The malformed-records source file does not exist."""


class InvalidConfiguration(RcptError, ValueError):
    """A run setting is missing or out of range (e.g. batch size <= 0)."""


class PartitionInvariantViolated(RcptError):
    """Two partition groups share a receipt or an invoice."""


class ParseError(RcptError, ValueError):
    def __init__(self, message: str, line_no: int | None = None, line: str | None = None):
        self.line_no = line_no
        self.line = line
        where = f"line {line_no}: " if line_no is not None else ""
        super().__init__(f"{where}{message}")


class DriverError(RcptError):
    """An action against the target application or job service failed."""


class OperationTimeout(DriverError):
    def __init__(self, operation: str, timeout_s: float):
        self.operation = operation
        self.timeout_s = timeout_s
        super().__init__(f"{operation} did not finish within {timeout_s:g}s")


class BatchJobTimeout(OperationTimeout):
    """The remote job for a batch never reported completion."""


class BatchJobFailed(DriverError):
    def __init__(self, status: str):
        self.status = status
        super().__init__(f"remote job ended with status {status!r}")


FATAL_ERRORS: tuple[type[RcptError], ...] = (
    SourceUnavailable,
    InvalidConfiguration,
    PartitionInvariantViolated,
    ParseError,
)


__all__ = [
    "RcptError",
    "SourceUnavailable",
    "InvalidConfiguration",
    "PartitionInvariantViolated",
    "ParseError",
    "DriverError",
    "OperationTimeout",
    "BatchJobTimeout",
    "BatchJobFailed",
    "FATAL_ERRORS",
]
