"""Timers that estimate the running time of a function in seconds."""

from __future__ import annotations

import signal
import time
from typing import Any, Callable

# Initial value of the interval timer, in seconds.
MAX_ETIME = 86400


def _check_runs(n: int) -> None:
    if n <= 0:
        raise ValueError("number of runs must be positive")


def ftimer_itimer(f: Callable[[Any], Any], arg: Any, n: int) -> float:
    """Time ``n`` runs of ``f(arg)`` with the real interval timer.

    Returns the average running time in seconds. Where interval timers
    are not available the monotonic clock is used instead.
    """
    _check_runs(n)
    if not hasattr(signal, "setitimer"):
        start = time.monotonic()
        for _ in range(n):
            f(arg)
        return (time.monotonic() - start) / n

    previous = signal.setitimer(signal.ITIMER_REAL, MAX_ETIME)
    try:
        remaining, _ = signal.getitimer(signal.ITIMER_REAL)
        start = MAX_ETIME - remaining
        for _ in range(n):
            f(arg)
        remaining, _ = signal.getitimer(signal.ITIMER_REAL)
        tmeas = (MAX_ETIME - remaining) - start
    finally:
        signal.setitimer(signal.ITIMER_REAL, *previous)
    return tmeas / n


def ftimer_gettod(f: Callable[[Any], Any], arg: Any, n: int) -> float:
    """Time ``n`` runs of ``f(arg)`` with the time of day.

    Returns the average running time in seconds.
    """
    _check_runs(n)
    start = time.time()
    for _ in range(n):
        f(arg)
    return (time.time() - start) / n