"""A simulated memory system with a growable, never-shrinking heap.

Addresses are plain integers that start at zero at the bottom of the heap.
Words are 4 bytes, stored little-endian, which is what the allocator uses
for its block headers and footers.
"""

from __future__ import annotations

import mmap

# Default tracefile directory, overridable on the driver's command line.
TRACEDIR = "/afs/cs/project/ics2/im/labs/malloclab/traces/"

# Default tracefiles run by the driver.
DEFAULT_TRACEFILES = (
    "amptjp-bal.rep",
    "cccp-bal.rep",
    "cp-decl-bal.rep",
    "expr-bal.rep",
    "coalescing-bal.rep",
    "random-bal.rep",
    "random2-bal.rep",
    "binary-bal.rep",
    "binary2-bal.rep",
    "realloc-bal.rep",
    "realloc2-bal.rep",
)

# Reference libc throughput (ops/sec) that caps the throughput score.
AVG_LIBC_THRUPUT = 600e3

# Weight of space utilization in the performance index.
UTIL_WEIGHT = 0.60

# Payload alignment requirement in bytes.
ALIGNMENT = 8

# Maximum heap size in bytes (20 MB).
MAX_HEAP = 20 * (1 << 20)

# Size in bytes of a word read or written by read_word/write_word.
WORD_SIZE = 4

_WORD_MAX = (1 << (8 * WORD_SIZE)) - 1


class OutOfMemoryError(MemoryError):
    """Raised when the heap cannot be extended by the requested amount."""


class MemorySystem:
    """A model of a process heap grown by an sbrk-style break pointer."""

    def __init__(self, max_heap: int = MAX_HEAP) -> None:
        if max_heap < 0:
            raise ValueError("max_heap must not be negative")
        self.max_heap = max_heap
        self._storage = bytearray()
        self._brk = 0

    def sbrk(self, incr: int) -> int:
        """Extend the heap by ``incr`` bytes and return the old break address."""
        if incr < 0 or self._brk + incr > self.max_heap:
            raise OutOfMemoryError("mem_sbrk failed. Ran out of memory...")
        old_brk = self._brk
        self._brk += incr
        if self._brk > len(self._storage):
            self._storage.extend(bytes(self._brk - len(self._storage)))
        return old_brk

    def reset_brk(self) -> None:
        """Reset the break pointer so that the heap is empty again."""
        self._brk = 0

    def heap_lo(self) -> int:
        """Return the address of the first heap byte."""
        return 0

    def heap_hi(self) -> int:
        """Return the address of the last heap byte (-1 for an empty heap)."""
        return self._brk - 1

    def heapsize(self) -> int:
        """Return the current heap size in bytes."""
        return self._brk

    def pagesize(self) -> int:
        """Return the page size of the system."""
        return mmap.PAGESIZE

    def _check(self, addr: int, size: int) -> None:
        if size < 0:
            raise ValueError("size must not be negative")
        if addr < 0 or addr + size > self._brk:
            raise IndexError(
                f"access of {size} bytes at {addr} lies outside heap "
                f"(0:{self._brk - 1})"
            )

    def read_word(self, addr: int) -> int:
        """Read the unsigned word stored at ``addr``."""
        self._check(addr, WORD_SIZE)
        return int.from_bytes(self._storage[addr:addr + WORD_SIZE], "little")

    def write_word(self, addr: int, value: int) -> None:
        """Store the unsigned word ``value`` at ``addr``."""
        if not 0 <= value <= _WORD_MAX:
            raise ValueError(f"word value {value} out of range")
        self._check(addr, WORD_SIZE)
        self._storage[addr:addr + WORD_SIZE] = value.to_bytes(WORD_SIZE, "little")

    def read(self, addr: int, size: int) -> bytes:
        """Return ``size`` bytes starting at ``addr``."""
        self._check(addr, size)
        return bytes(self._storage[addr:addr + size])

    def write(self, addr: int, data: bytes) -> None:
        """Copy ``data`` into the heap starting at ``addr``."""
        self._check(addr, len(data))
        self._storage[addr:addr + len(data)] = data

    def fill(self, addr: int, value: int, size: int) -> None:
        """Set ``size`` bytes starting at ``addr`` to the low byte of ``value``."""
        self._check(addr, size)
        self._storage[addr:addr + size] = bytes([value & 0xFF]) * size