"""Classify notification text shown by the target application.

Blocking phrases mean the receipt cannot be corrected at all and must be
ledgered. Informational phrases are known to be harmless. Anything else is
UNKNOWN and treated as non-fatal, with a warning so the phrase can be added
to `notifications.blocking` or `notifications.informational` in config.
"""

from __future__ import annotations

import logging
import re
from enum import Enum
from typing import Iterable

from .config import CFG


logger = logging.getLogger(__name__)

TIMEOUT_REASON = "Timed out waiting for the submit result"


class NotificationKind(str, Enum):
    BLOCKING = "blocking"
    INFORMATIONAL = "informational"
    UNKNOWN = "unknown"
    TIMEOUT = "timeout"

    @property
    def fatal(self) -> bool:
        return self is NotificationKind.BLOCKING


def _compile(phrases: Iterable[str]) -> list[re.Pattern]:
    return [re.compile(re.escape(str(p).strip()), re.IGNORECASE) for p in phrases if str(p).strip()]


class NotificationClassifier:
    def __init__(self, blocking: Iterable[str], informational: Iterable[str] = ()):
        self._rules: list[tuple[re.Pattern, NotificationKind]] = [
            *((pat, NotificationKind.BLOCKING) for pat in _compile(blocking)),
            *((pat, NotificationKind.INFORMATIONAL) for pat in _compile(informational)),
        ]

    @classmethod
    def from_cfg(cls, cfg: dict | None = None) -> "NotificationClassifier":
        notes = ((CFG if cfg is None else cfg).get("notifications", {}) or {})
        return cls(
            blocking=notes.get("blocking") or ["does not allow"],
            informational=notes.get("informational") or [],
        )

    def classify(self, text: str | None) -> NotificationKind:
        if text is None:
            return NotificationKind.TIMEOUT
        for pat, kind in self._rules:
            if pat.search(text):
                return kind
        logger.warning("Unrecognised notification treated as non-fatal: %r", text)
        return NotificationKind.UNKNOWN


__all__ = ["NotificationKind", "NotificationClassifier", "TIMEOUT_REASON"]
