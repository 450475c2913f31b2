"""Interfaces of the two external systems a run drives.

The UI automation behind `TargetApplication` (and the identity-provider
login it needs) is supplied by the deployment and loaded from
`target_app.factory`. Implementations raise `DriverError` when an action
fails and `OperationTimeout` when it does not finish within `timeout_s`.

Field and option names passed in are the logical names from `ui.fields`;
mapping them to selectors is the driver's business.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Protocol, Sequence, runtime_checkable

from .config import CFG
from .errors import DriverError, RcptError
from .utils import load_factory


logger = logging.getLogger(__name__)


@runtime_checkable
class TargetApplication(Protocol):
    # phase 1
    def open_by_key(self, key: int, timeout_s: float) -> None: ...
    def read_field(self, name: str) -> str: ...
    def open_dialog(self, name: str, timeout_s: float) -> None: ...
    def select_from_filtered_list(self, name: str, value: str, timeout_s: float) -> None: ...
    def toggle_option(self, name: str, timeout_s: float) -> None: ...
    def fill_field(self, name: str, value: str) -> None: ...
    def submit(self) -> None: ...
    def read_status_field(self, name: str) -> str | None: ...
    def detect_notification(self) -> str | None: ...
    def dismiss_notification(self) -> None: ...
    def cancel_and_confirm(self, timeout_s: float) -> None: ...

    # phase 3
    def fetch_pending_list(self, timeout_s: float) -> Sequence[Any]: ...
    def open_list_item(self, item: Any, timeout_s: float) -> None: ...
    def is_item_open(self) -> bool: ...
    def remove_all_references(self) -> None: ...
    def search_and_add_reference(self, label: str, timeout_s: float) -> None: ...


@runtime_checkable
class JobService(Protocol):
    def open_job_surface(self, timeout_s: float) -> None: ...
    def start(self, parameter: str) -> None: ...
    def refresh(self) -> None: ...
    def read_status(self) -> str | None: ...


def build_from_factory(section: str, cfg: dict | None = None) -> Any:
    """Instantiate `<section>.factory` with the section's config dict."""
    sect = ((CFG if cfg is None else cfg).get(section, {}) or {})
    spec = str(sect.get("factory", "") or "").strip()
    if not spec:
        raise LookupError(f"{section}.factory is not configured")
    logger.info("Loading %s driver from %s", section, spec)
    return load_factory(spec)(sect)


class GuardedDriver:
    """Wraps a driver so any non-rcpt exception from a call surfaces as DriverError.

    Automation libraries raise their own exception types; the phases only
    handle `DriverError`, so anything else would otherwise end the run.
    """

    def __init__(self, inner: Any):
        self._inner = inner

    @property
    def inner(self) -> Any:
        return self._inner

    def __getattr__(self, name: str) -> Any:
        attr = getattr(self._inner, name)
        if not callable(attr):
            return attr

        @functools.wraps(attr)
        def call(*args, **kwargs):
            try:
                return attr(*args, **kwargs)
            except RcptError:
                raise
            except Exception as exc:
                raise DriverError(f"{name} failed: {type(exc).__name__}: {exc}") from exc

        return call


def guarded(driver: Any) -> Any:
    return driver if isinstance(driver, GuardedDriver) else GuardedDriver(driver)


__all__ = ["TargetApplication", "JobService", "GuardedDriver", "guarded", "build_from_factory"]
