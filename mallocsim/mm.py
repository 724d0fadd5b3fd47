"""An implicit free-list allocator with boundary-tag coalescing.

Each block has a 4-byte header and a 4-byte footer holding the block size
with the allocated flag in the low bit. The heap starts with a word of
alignment padding and an allocated prologue block of 8 bytes. It ends with
an allocated epilogue header of size 0. These sentinel blocks remove edge
cases during coalescing. Placement is first fit by default, or next fit if
the allocator is asked for it.
"""

from __future__ import annotations

from dataclasses import dataclass
from typing import Iterator, List, Optional

from mallocsim.memlib import MemorySystem, OutOfMemoryError

WSIZE = 4            # word size (bytes)
DSIZE = 8            # doubleword size (bytes)
CHUNKSIZE = 1 << 12  # initial heap extension (bytes)
OVERHEAD = 8         # header plus footer (bytes)
MIN_BLOCK = DSIZE + OVERHEAD

_SIZE_MASK = ~0x7
_ALLOC_BIT = 0x1


class HeapError(Exception):
    """Raised when the allocator is misused or cannot satisfy a request."""


@dataclass(frozen=True)
class Team:
    """Identification of the people responsible for an allocator."""

    teamname: str
    name1: str
    id1: str
    name2: str = ""
    id2: str = ""


@dataclass(frozen=True)
class Block:
    """A heap block as seen through its header."""

    address: int
    size: int
    allocated: bool


def _pack(size: int, alloc: bool) -> int:
    return size | (_ALLOC_BIT if alloc else 0)


class Allocator:
    """A malloc/free/realloc package working on a simulated heap."""

    def __init__(self, memory: MemorySystem, next_fit: bool = False) -> None:
        self.memory = memory
        self.next_fit = next_fit
        self._heap_listp: Optional[int] = None
        self._rover: Optional[int] = None

    @property
    def team(self) -> Team:
        """The team record describing this allocator."""
        name = "implicit next fit" if self.next_fit else "implicit first fit"
        return Team(name, "Example Student", "student")

    # Word-level access to the heap.

    def _get(self, addr: int) -> int:
        return self.memory.read_word(addr)

    def _put(self, addr: int, value: int) -> None:
        self.memory.write_word(addr, value)

    def _size(self, bp: int) -> int:
        return self._get(bp - WSIZE) & _SIZE_MASK

    def _is_alloc(self, bp: int) -> bool:
        return bool(self._get(bp - WSIZE) & _ALLOC_BIT)

    def _ftrp(self, bp: int) -> int:
        return bp + self._size(bp) - DSIZE

    def _next(self, bp: int) -> int:
        return bp + self._size(bp)

    def _prev(self, bp: int) -> int:
        return bp - (self._get(bp - DSIZE) & _SIZE_MASK)

    def _set(self, bp: int, size: int, alloc: bool) -> None:
        self._put(bp - WSIZE, _pack(size, alloc))
        self._put(bp + size - DSIZE, _pack(size, alloc))

    def _require_init(self) -> int:
        if self._heap_listp is None:
            raise HeapError("allocator has not been initialised")
        return self._heap_listp

    # Public interface.

    def init(self) -> None:
        """Create an empty heap and extend it with a free chunk.

        Raises OutOfMemoryError if the memory system cannot hold it.
        """
        start = self.memory.sbrk(4 * WSIZE)
        self._put(start, 0)                                  # alignment padding
        self._put(start + WSIZE, _pack(OVERHEAD, True))      # prologue header
        self._put(start + DSIZE, _pack(OVERHEAD, True))      # prologue footer
        self._put(start + WSIZE + DSIZE, _pack(0, True))     # epilogue header
        self._heap_listp = start + DSIZE
        self._rover = self._heap_listp
        self._extend_heap(CHUNKSIZE // WSIZE)

    def malloc(self, size: int) -> Optional[int]:
        """Allocate a block with at least ``size`` bytes of payload.

        Returns the payload address, or None for a request of no bytes.
        Raises OutOfMemoryError when the heap cannot grow far enough.
        """
        self._require_init()
        if size <= 0:
            return None
        if size <= DSIZE:
            asize = DSIZE + OVERHEAD
        else:
            asize = DSIZE * ((size + OVERHEAD + (DSIZE - 1)) // DSIZE)

        bp = self._find_fit(asize)
        if bp is None:
            bp = self._extend_heap(max(asize, CHUNKSIZE) // WSIZE)
        self._place(bp, asize)
        return bp

    def free(self, bp: int) -> None:
        """Free the block whose payload starts at ``bp``."""
        self._require_init()
        size = self._size(bp)
        self._set(bp, size, False)
        self._coalesce(bp)

    def realloc(self, ptr: int, size: int) -> int:
        """Move the block at ``ptr`` to a new block of ``size`` payload bytes.

        The leading bytes are copied over and the old block is freed.
        """
        try:
            newp = self.malloc(size)
        except OutOfMemoryError as exc:
            raise HeapError("mm_malloc failed in mm_realloc") from exc
        if newp is None:
            raise HeapError("mm_malloc failed in mm_realloc")
        copy_size = min(self._size(ptr), size)
        self.memory.write(newp, self.memory.read(ptr, copy_size))
        self.free(ptr)
        return newp

    def blocks(self) -> Iterator[Block]:
        """Yield every block between the prologue and the epilogue."""
        bp = self._next(self._require_init())
        while (size := self._size(bp)) > 0:
            yield Block(bp, size, self._is_alloc(bp))
            bp += size

    def check_heap(self, verbose: bool = False) -> List[str]:
        """Check the heap for consistency and return the problems found.

        With ``verbose`` set, every block is printed as it is visited.
        """
        heap_listp = self._require_init()
        problems: List[str] = []
        if verbose:
            print(f"Heap ({heap_listp:#x}):")

        if self._size(heap_listp) != DSIZE or not self._is_alloc(heap_listp):
            problems.append("Bad prologue header")
        problems.extend(self._check_block(heap_listp))

        bp = heap_listp
        while self._size(bp) > 0:
            if verbose:
                print(self._describe(bp))
            problems.extend(self._check_block(bp))
            bp = self._next(bp)

        if verbose:
            print(self._describe(bp))
        if self._size(bp) != 0 or not self._is_alloc(bp):
            problems.append("Bad epilogue header")
        return problems

    # Internal helpers.

    def _extend_heap(self, words: int) -> int:
        size = (words + 1) * WSIZE if words % 2 else words * WSIZE
        bp = self.memory.sbrk(size)
        self._set(bp, size, False)                      # free block
        self._put(bp + size - WSIZE, _pack(0, True))    # new epilogue header
        return self._coalesce(bp)

    def _place(self, bp: int, asize: int) -> None:
        csize = self._size(bp)
        if csize - asize >= MIN_BLOCK:
            self._set(bp, asize, True)
            self._set(bp + asize, csize - asize, False)
        else:
            self._set(bp, csize, True)

    def _fits(self, bp: int, asize: int) -> bool:
        return not self._is_alloc(bp) and asize <= self._size(bp)

    def _find_fit(self, asize: int) -> Optional[int]:
        heap_listp = self._require_init()
        if not self.next_fit:
            bp = heap_listp
            while self._size(bp) > 0:
                if self._fits(bp, asize):
                    return bp
                bp = self._next(bp)
            return None

        old_rover = self._rover
        while self._size(self._rover) > 0:
            if self._fits(self._rover, asize):
                return self._rover
            self._rover = self._next(self._rover)
        self._rover = heap_listp
        while self._rover < old_rover:
            if self._fits(self._rover, asize):
                return self._rover
            self._rover = self._next(self._rover)
        return None

    def _coalesce(self, bp: int) -> int:
        prev_alloc = self._is_alloc(self._prev(bp))
        next_alloc = self._is_alloc(self._next(bp))
        size = self._size(bp)

        if prev_alloc and next_alloc:
            return bp
        if prev_alloc:
            size += self._size(self._next(bp))
            self._set(bp, size, False)
        elif next_alloc:
            bp = self._prev(bp)
            size += self._size(bp)
            self._set(bp, size, False)
        else:
            nxt = self._next(bp)
            bp = self._prev(bp)
            size += self._size(bp) + self._size(nxt)
            self._set(bp, size, False)

        # Keep the next-fit rover off the interior of a merged block.
        if self._rover is not None and bp < self._rover < bp + size:
            self._rover = bp
        return bp

    def _describe(self, bp: int) -> str:
        hsize = self._size(bp)
        if hsize == 0:
            return f"{bp:#x}: EOL"
        footer = self._get(self._ftrp(bp))
        halloc = "a" if self._is_alloc(bp) else "f"
        falloc = "a" if footer & _ALLOC_BIT else "f"
        return (
            f"{bp:#x}: header: [{hsize}:{halloc}] "
            f"footer: [{footer & _SIZE_MASK}:{falloc}]"
        )

    def _check_block(self, bp: int) -> List[str]:
        problems = []
        if bp % DSIZE:
            problems.append(f"Error: {bp:#x} is not doubleword aligned")
        if self._get(bp - WSIZE) != self._get(self._ftrp(bp)):
            problems.append("Error: header does not match footer")
        return problems