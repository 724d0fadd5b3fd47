"""Measure the running time of a function with the K-best scheme.

A function is run repeatedly until its K fastest runs agree within a
tolerance, or until a maximum number of samples has been taken; the
fastest run is then reported.
"""

from __future__ import annotations

import bisect
import enum
import functools
from dataclasses import dataclass
from typing import Any, Callable, List, Tuple

from mallocsim.clock import CompensatedCounter, CycleCounter, mhz
from mallocsim.ftimer import ftimer_gettod, ftimer_itimer


class KBestSampler:
    """Keeps the K smallest of the samples added to it, in ascending order."""

    def __init__(self, kbest: int = 3, epsilon: float = 0.01) -> None:
        if kbest < 1:
            raise ValueError("kbest must be at least 1")
        self.kbest = kbest
        self.epsilon = epsilon
        self.count = 0
        self._values: List[float] = []

    @property
    def values(self) -> Tuple[float, ...]:
        """The smallest samples seen so far, smallest first."""
        return tuple(self._values)

    def add(self, value: float) -> None:
        """Add a sample."""
        if len(self._values) < self.kbest:
            bisect.insort(self._values, value)
        elif value < self._values[-1]:
            self._values.pop()
            bisect.insort(self._values, value)
        self.count += 1

    def has_converged(self) -> bool:
        """Whether the K smallest samples lie within epsilon of each other."""
        return (
            self.count >= self.kbest
            and (1 + self.epsilon) * self._values[0] >= self._values[-1]
        )

    def best(self) -> float:
        """Return the smallest sample."""
        if not self._values:
            raise ValueError("no samples have been added")
        return self._values[0]


@dataclass
class FcycParams:
    """Parameters of the K-best measurement."""

    kbest: int = 3
    maxsamples: int = 20
    epsilon: float = 0.01
    compensate: bool = False
    clear_cache: bool = False
    cache_bytes: int = 1 << 19
    cache_block: int = 32


@functools.lru_cache(maxsize=1)
def _cache_buffer(size: int) -> bytearray:
    return bytearray(size)


@functools.lru_cache(maxsize=None)
def _compensated_counter() -> CompensatedCounter:
    return CompensatedCounter(CycleCounter())


def _clear_cache(params: FcycParams) -> int:
    buf = _cache_buffer(params.cache_bytes)
    return sum(buf[::max(params.cache_block, 1)])


def fcyc(f: Callable[[Any], Any], arg: Any, params: FcycParams = None) -> float:
    """Estimate the cycles used by ``f(arg)`` with the K-best scheme."""
    if params is None:
        params = FcycParams()
    sampler = KBestSampler(params.kbest, params.epsilon)
    counter = _compensated_counter() if params.compensate else CycleCounter()
    while True:
        if params.clear_cache:
            _clear_cache(params)
        counter.start()
        f(arg)
        sampler.add(counter.elapsed())
        if sampler.has_converged() or sampler.count >= params.maxsamples:
            break
    return sampler.best()


class TimingMethod(enum.Enum):
    """How the running time of a function is measured."""

    FCYC = "fcyc"
    ITIMER = "itimer"
    GETTOD = "gettod"


class FunctionTimer:
    """Measures the running time of a function in seconds."""

    def __init__(self, method: TimingMethod = TimingMethod.GETTOD,
                 verbose: int = 0) -> None:
        self.method = method
        self.verbose = verbose
        self.mhz = 0.0
        self.params = FcycParams()
        if method is TimingMethod.FCYC:
            if verbose:
                print("Measuring performance with a cycle counter.")
            self.params = FcycParams(
                kbest=3, maxsamples=20, epsilon=0.01,
                compensate=True, clear_cache=True,
            )
            self.mhz = mhz(verbose > 0)
        elif method is TimingMethod.ITIMER:
            if verbose:
                print("Measuring performance with the interval timer.")
        elif verbose:
            print("Measuring performance with gettimeofday().")

    def fsecs(self, f: Callable[[Any], Any], arg: Any) -> float:
        """Return the running time of ``f(arg)`` in seconds."""
        if self.method is TimingMethod.FCYC:
            return fcyc(f, arg, self.params) / (self.mhz * 1e6)
        if self.method is TimingMethod.ITIMER:
            return ftimer_itimer(f, arg, 10)
        return ftimer_gettod(f, arg, 10)