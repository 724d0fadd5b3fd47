"""Cycle counters and clock-rate estimation.

The counter counts ticks of the highest-resolution clock available, which
are nanoseconds. Clock rates measured with it are therefore rates of that
clock and not of the processor itself.
"""

from __future__ import annotations

import os
import time
from typing import Optional, Protocol

# Number of timer-interrupt events observed during calibration.
NEVENT = 100
# Minimum gap in cycles between readings that may hold a timer interrupt.
THRESHOLD = 1000
# Smallest cycles-per-tick ratio accepted as a real measurement.
RECORDTHRESH = 3000


def _clock_ticks_per_second() -> int:
    try:
        return os.sysconf("SC_CLK_TCK")
    except (AttributeError, ValueError, OSError):
        return 100


# Clock ticks per second used for process user time.
CLK_TCK = _clock_ticks_per_second()


def _user_ticks() -> int:
    return round(os.times().user * CLK_TCK)


class Counter(Protocol):
    """Anything that can be started and then read for elapsed cycles."""

    def start(self) -> None: ...

    def elapsed(self) -> float: ...


class CycleCounter:
    """Counts clock cycles elapsed since the last call to :meth:`start`."""

    def __init__(self) -> None:
        self._start = time.perf_counter_ns()

    def start(self) -> None:
        """Record the current value of the counter."""
        self._start = time.perf_counter_ns()

    def elapsed(self) -> float:
        """Return the number of cycles since the last call to :meth:`start`."""
        return float(time.perf_counter_ns() - self._start)


class CompensatedCounter:
    """A counter that subtracts the cycles spent in timer interrupts."""

    def __init__(self, counter: Optional[Counter] = None) -> None:
        self.counter: Counter = counter if counter is not None else CycleCounter()
        self.cyc_per_tick = 0.0
        self._start_tick = 0

    def calibrate(self, verbose: bool = False) -> float:
        """Estimate how many cycles one timer interrupt costs and return it."""
        oldc = _user_ticks()
        self.counter.start()
        oldt = self.counter.elapsed()
        events = 0
        while events < NEVENT:
            newt = self.counter.elapsed()
            if newt - oldt >= THRESHOLD:
                newc = _user_ticks()
                if newc > oldc:
                    cpt = (newt - oldt) / (newc - oldc)
                    if (self.cyc_per_tick == 0.0 or self.cyc_per_tick > cpt) \
                            and cpt > RECORDTHRESH:
                        self.cyc_per_tick = cpt
                    events += 1
                    oldc = newc
                oldt = newt
        if verbose:
            print(f"Setting cyc_per_tick to {self.cyc_per_tick:f}")
        return self.cyc_per_tick

    def start(self) -> None:
        """Start counting, calibrating first if that has not been done."""
        if self.cyc_per_tick == 0.0:
            self.calibrate(False)
        self._start_tick = _user_ticks()
        self.counter.start()

    def elapsed(self) -> float:
        """Return the elapsed cycles less the estimated interrupt overhead."""
        cycles = self.counter.elapsed()
        ticks = _user_ticks() - self._start_tick
        return cycles - ticks * self.cyc_per_tick


def ovhd(counter: Optional[Counter] = None) -> float:
    """Measure the overhead of starting and reading the counter."""
    if counter is None:
        counter = CycleCounter()
    result = 0.0
    # Twice, to get rid of cache effects.
    for _ in range(2):
        counter.start()
        result = counter.elapsed()
    return result


def mhz_full(verbose: bool, sleeptime: float) -> float:
    """Estimate the clock rate in MHz by counting cycles over a sleep."""
    if sleeptime <= 0:
        raise ValueError("sleeptime must be positive")
    counter = CycleCounter()
    counter.start()
    time.sleep(sleeptime)
    rate = counter.elapsed() / (1e6 * sleeptime)
    if verbose:
        print(f"Processor clock rate ~= {rate:.1f} MHz")
    return rate


def mhz(verbose: bool = False) -> float:
    """Estimate the clock rate in MHz with the default sleep of two seconds."""
    return mhz_full(verbose, 2)