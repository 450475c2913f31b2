"""Generic utility helpers shared across modules.

Includes the bounded spin-wait used by every polling loop, insertion-order
de-duplication, strict truth-flag checks, `module:callable` factory loading
and compact integer range formatting for logs.
"""

from __future__ import annotations

import importlib
import time
from typing import Any, Callable, Hashable, Iterable, Optional, TypeVar

T = TypeVar("T")
H = TypeVar("H", bound=Hashable)


def poll_until(
    check: Callable[[], Optional[T]],
    timeout_s: float,
    interval_s: float,
    *,
    now: Callable[[], float] = time.monotonic,
    sleep: Callable[[float], None] = time.sleep,
    between: Callable[[], None] | None = None,
) -> Optional[T]:
    """Call `check` until it returns something other than None.

    Returns that value, or None once `timeout_s` has elapsed. `check` always
    runs at least once. `between` runs after each sleep, before the next check
    (e.g. a refresh click).
    """
    deadline = now() + timeout_s
    while True:
        hit = check()
        if hit is not None:
            return hit
        if now() >= deadline:
            return None
        sleep(interval_s)
        if between is not None:
            between()


def unique(values: Iterable[H]) -> list[H]:
    """Distinct values, first occurrence wins."""
    return list(dict.fromkeys(values))


def is_true_flag(x) -> bool:
    """Strict truth flag: true/1/yes/y/on (case-insensitive)."""
    if isinstance(x, bool):
        return x
    return str(x).strip().lower() in ("true", "1", "yes", "y", "on")


def load_factory(spec: str) -> Callable[..., Any]:
    """Resolve a 'package.module:callable' string."""
    mod_name, sep, attr = (spec or "").partition(":")
    if not sep or not mod_name or not attr:
        raise ValueError(f"expected 'module:callable', got {spec!r}")
    obj: Any = importlib.import_module(mod_name)
    for part in attr.split("."):
        obj = getattr(obj, part)
    if not callable(obj):
        raise TypeError(f"{spec} is not callable")
    return obj


def format_ranges(nums: Iterable[int]) -> str:
    """Format a list of ints into compact ranges like '1-3,5,7-9'."""
    arr = sorted({int(n) for n in (nums or [])})
    if not arr:
        return ""
    out = []
    start = prev = arr[0]
    for n in arr[1:]:
        if n == prev + 1:
            prev = n
            continue
        out.append(f"{start}-{prev}" if start != prev else f"{start}")
        start = prev = n
    out.append(f"{start}-{prev}" if start != prev else f"{start}")
    return ",".join(out)


__all__ = [
    "poll_until",
    "unique",
    "is_true_flag",
    "load_factory",
    "format_ranges",
]
