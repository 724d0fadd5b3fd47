"""Trace files of allocator requests and bookkeeping of allocated payloads.

A trace file starts with four header numbers: the suggested heap size, the
number of block ids, the number of requests and a weight. Then come the
requests, one per line:

    a <id> <size>   allocate a block
    r <id> <size>   reallocate a block
    f <id>          free a block
"""

from __future__ import annotations

import enum
from dataclasses import dataclass, field
from typing import Dict, Iterator, List, Optional, Tuple

from mallocsim.memlib import ALIGNMENT

# Number of header lines before the first request in a trace file.
HDRLINES = 4


class OpType(enum.Enum):
    """Kind of allocator request."""

    ALLOC = "a"
    FREE = "f"
    REALLOC = "r"


@dataclass(frozen=True)
class TraceOp:
    """A single allocator request."""

    type: OpType
    index: int
    size: int = 0


@dataclass
class Trace:
    """The requests of one trace file and the blocks they produce."""

    sugg_heapsize: int
    num_ids: int
    num_ops: int
    weight: int
    ops: List[TraceOp] = field(default_factory=list)
    blocks: List[Optional[int]] = field(default_factory=list)
    block_sizes: List[int] = field(default_factory=list)

    def __post_init__(self) -> None:
        if not self.blocks:
            self.blocks = [None] * self.num_ids
        if not self.block_sizes:
            self.block_sizes = [0] * self.num_ids


class TraceError(Exception):
    """Raised when a trace file cannot be read or is malformed."""


class MallocError(Exception):
    """An error made by the allocator while running a trace."""

    def __init__(self, tracenum: int, opnum: int, message: str) -> None:
        self.tracenum = tracenum
        self.opnum = opnum
        self.message = message
        super().__init__(
            f"ERROR [trace {tracenum}, line {self.line()}]: {message}"
        )

    def line(self) -> int:
        """Line number in the trace file (origin 1) of the failing request."""
        return self.opnum + HDRLINES + 1


class RangeList:
    """The extents of all allocated payloads, used to detect overlaps."""

    def __init__(self) -> None:
        self._ranges: Dict[int, int] = {}

    def __len__(self) -> int:
        return len(self._ranges)

    def __iter__(self) -> Iterator[Tuple[int, int]]:
        return iter(reversed(list(self._ranges.items())))

    def __contains__(self, lo: object) -> bool:
        return lo in self._ranges

    def add(self, lo: int, size: int, heap_lo: int, heap_hi: int) -> None:
        """Record a payload of ``size`` bytes at ``lo`` after checking it.

        Raises ValueError describing the problem if the payload is
        misaligned, lies outside the heap or overlaps another payload.
        """
        if size <= 0:
            raise ValueError("payload size must be positive")
        hi = lo + size - 1

        if lo % ALIGNMENT:
            raise ValueError(
                f"Payload address ({lo:#x}) not aligned to {ALIGNMENT} bytes"
            )

        if lo < heap_lo or lo > heap_hi or hi < heap_lo or hi > heap_hi:
            raise ValueError(
                f"Payload ({lo:#x}:{hi:#x}) lies outside heap "
                f"({heap_lo:#x}:{heap_hi:#x})"
            )

        for plo, phi in self:
            if plo <= lo <= phi or plo <= hi <= phi:
                raise ValueError(
                    f"Payload ({lo:#x}:{hi:#x}) overlaps another payload "
                    f"({plo:#x}:{phi:#x})"
                )

        self._ranges[lo] = hi

    def remove(self, lo: int) -> None:
        """Forget the payload starting at ``lo``, if there is one."""
        self._ranges.pop(lo, None)

    def clear(self) -> None:
        """Forget every payload."""
        self._ranges.clear()


def _number(tokens: Iterator[str], name: str, what: str) -> int:
    try:
        token = next(tokens)
    except StopIteration:
        raise TraceError(f"Missing {what} in tracefile {name}") from None
    try:
        value = int(token)
    except ValueError:
        raise TraceError(f"Bad {what} ({token}) in tracefile {name}") from None
    if value < 0:
        raise TraceError(f"Negative {what} ({value}) in tracefile {name}")
    return value


def parse_trace(text: str, name: str = "<trace>") -> Trace:
    """Parse the contents of a trace file."""
    tokens = iter(text.split())
    trace = Trace(
        sugg_heapsize=_number(tokens, name, "suggested heap size"),
        num_ids=_number(tokens, name, "number of ids"),
        num_ops=_number(tokens, name, "number of ops"),
        weight=_number(tokens, name, "weight"),
    )

    max_index = 0
    for kind in tokens:
        code = kind[0]
        if code in ("a", "r"):
            index = _number(tokens, name, "block id")
            size = _number(tokens, name, "block size")
            op_type = OpType.ALLOC if code == "a" else OpType.REALLOC
            trace.ops.append(TraceOp(op_type, index, size))
            max_index = max(max_index, index)
        elif code == "f":
            index = _number(tokens, name, "block id")
            if index >= trace.num_ids:
                raise TraceError(
                    f"Block id {index} out of range in tracefile {name}"
                )
            trace.ops.append(TraceOp(OpType.FREE, index))
        else:
            raise TraceError(
                f"Bogus type character ({code}) in tracefile {name}"
            )

    if max_index != trace.num_ids - 1:
        raise TraceError(
            f"Largest block id {max_index} does not match "
            f"{trace.num_ids} ids in tracefile {name}"
        )
    if trace.num_ops != len(trace.ops):
        raise TraceError(
            f"Found {len(trace.ops)} requests instead of {trace.num_ops} "
            f"in tracefile {name}"
        )
    return trace


def read_trace(tracedir: str, filename: str) -> Trace:
    """Read the trace file ``filename`` from the directory ``tracedir``."""
    path = f"{tracedir}{filename}"
    try:
        with open(path, encoding="ascii", errors="replace") as handle:
            text = handle.read()
    except OSError as exc:
        raise TraceError(f"Could not open {path} in read_trace") from exc
    return parse_trace(text, path)