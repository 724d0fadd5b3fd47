"""Run allocator traces and score correctness, space use and throughput.

Every trace is first checked for correctness: payloads must be aligned,
lie inside the heap, never overlap, and survive a reallocation. Valid
traces are then scored for space utilization and timed. The scores of
all traces are combined into a performance index out of 100.
"""

from __future__ import annotations

import getopt
import sys
from dataclasses import dataclass
from typing import List, Optional, Sequence, Tuple

from mallocsim.fcyc import FunctionTimer, TimingMethod
from mallocsim.memlib import (
    AVG_LIBC_THRUPUT,
    DEFAULT_TRACEFILES,
    TRACEDIR,
    UTIL_WEIGHT,
    MemorySystem,
    OutOfMemoryError,
)
from mallocsim.mm import Allocator, HeapError, Team
from mallocsim.trace import (
    MallocError,
    OpType,
    RangeList,
    Trace,
    TraceError,
    TraceOp,
    read_trace,
)

_USAGE = """\
Usage: mdriver [-hvVal] [-f <file>] [-t <dir>]
Options
\t-a         Don't check the team structure.
\t-f <file>  Use <file> as the trace file.
\t-g         Generate summary info for autograder.
\t-h         Print this message.
\t-l         Run libc malloc as well.
\t-t <dir>   Directory to find default traces.
\t-v         Print per-trace performance breakdowns.
\t-V         Print additional debug info.
"""


@dataclass
class Stats:
    """Results of running one trace with one allocator.

    ``secs`` and ``util`` are meaningful only when ``valid`` is true;
    ``util`` is always 0 for the system allocator.
    """

    ops: float
    valid: bool = False
    secs: float = 0.0
    util: float = 0.0


def _block(trace: Trace, index: int) -> int:
    address = trace.blocks[index]
    if address is None:
        raise TraceError(f"Block id {index} is used before it is allocated")
    return address


def _add_range(ranges: RangeList, lo: int, size: int, memory: MemorySystem,
               tracenum: int, opnum: int) -> None:
    try:
        ranges.add(lo, size, memory.heap_lo(), memory.heap_hi())
    except ValueError as exc:
        raise MallocError(tracenum, opnum, str(exc)) from exc


def eval_mm_valid(trace: Trace, tracenum: int, ranges: RangeList,
                  allocator: Allocator) -> bool:
    """Check that the allocator runs the trace correctly.

    Returns True, or raises MallocError describing the first problem.
    """
    memory = allocator.memory
    memory.reset_brk()
    ranges.clear()

    try:
        allocator.init()
    except (OutOfMemoryError, HeapError) as exc:
        raise MallocError(tracenum, 0, "mm_init failed.") from exc

    for opnum, op in enumerate(trace.ops):
        index, size = op.index, op.size
        fill = index & 0xFF

        if op.type is OpType.ALLOC:
            try:
                p = allocator.malloc(size)
            except (OutOfMemoryError, HeapError):
                p = None
            if p is None:
                raise MallocError(tracenum, opnum, "mm_malloc failed.")
            _add_range(ranges, p, size, memory, tracenum, opnum)
            # Fill the payload so that a later realloc can be checked.
            memory.fill(p, fill, size)
            trace.blocks[index] = p
            trace.block_sizes[index] = size

        elif op.type is OpType.REALLOC:
            oldp = _block(trace, index)
            try:
                newp = allocator.realloc(oldp, size)
            except (OutOfMemoryError, HeapError):
                newp = None
            if newp is None:
                raise MallocError(tracenum, opnum, "mm_realloc failed.")
            ranges.remove(oldp)
            _add_range(ranges, newp, size, memory, tracenum, opnum)

            kept = min(trace.block_sizes[index], size)
            if any(byte != fill for byte in memory.read(newp, kept)):
                raise MallocError(
                    tracenum, opnum,
                    "mm_realloc did not preserve the data from old block",
                )
            memory.fill(newp, fill, size)
            trace.blocks[index] = newp
            trace.block_sizes[index] = size

        else:
            p = _block(trace, index)
            ranges.remove(p)
            allocator.free(p)

    return True


def eval_mm_util(trace: Trace, allocator: Allocator) -> float:
    """Return the peak total payload divided by the final heap size."""
    memory = allocator.memory
    memory.reset_brk()
    try:
        allocator.init()
    except OutOfMemoryError as exc:
        raise HeapError("mm_init failed in eval_mm_util") from exc

    total_size = 0
    max_total_size = 0
    for op in trace.ops:
        index = op.index
        if op.type is OpType.ALLOC:
            try:
                p = allocator.malloc(op.size)
            except OutOfMemoryError:
                p = None
            if p is None:
                raise HeapError("mm_malloc failed in eval_mm_util")
            trace.blocks[index] = p
            trace.block_sizes[index] = op.size
            total_size += op.size
            max_total_size = max(max_total_size, total_size)

        elif op.type is OpType.REALLOC:
            oldsize = trace.block_sizes[index]
            try:
                newp = allocator.realloc(_block(trace, index), op.size)
            except (OutOfMemoryError, HeapError) as exc:
                raise HeapError("mm_realloc failed in eval_mm_util") from exc
            trace.blocks[index] = newp
            trace.block_sizes[index] = op.size
            total_size += op.size - oldsize
            max_total_size = max(max_total_size, total_size)

        else:
            allocator.free(_block(trace, index))
            total_size -= trace.block_sizes[index]

    return max_total_size / memory.heapsize()


def eval_mm_speed(trace: Trace, allocator: Allocator) -> None:
    """Run the trace on the allocator with no checks; this is what is timed."""
    allocator.memory.reset_brk()
    try:
        allocator.init()
    except OutOfMemoryError as exc:
        raise HeapError("mm_init failed in eval_mm_speed") from exc

    for op in trace.ops:
        index = op.index
        if op.type is OpType.ALLOC:
            try:
                p = allocator.malloc(op.size)
            except OutOfMemoryError:
                p = None
            if p is None:
                raise HeapError("mm_malloc error in eval_mm_speed")
            trace.blocks[index] = p
        elif op.type is OpType.REALLOC:
            try:
                newp = allocator.realloc(_block(trace, index), op.size)
            except (OutOfMemoryError, HeapError) as exc:
                raise HeapError("mm_realloc error in eval_mm_speed") from exc
            trace.blocks[index] = newp
        else:
            allocator.free(_block(trace, index))


def _libc_step(blocks: List[Optional[bytearray]], op: TraceOp) -> None:
    if op.type is OpType.ALLOC:
        blocks[op.index] = bytearray(op.size)
    elif op.type is OpType.REALLOC:
        old = blocks[op.index] or bytearray()
        new = bytearray(op.size)
        kept = min(len(old), op.size)
        new[:kept] = old[:kept]
        blocks[op.index] = new
    else:
        blocks[op.index] = None


def eval_libc_valid(trace: Trace, tracenum: int) -> bool:
    """Check that the system allocator can run the trace to completion."""
    blocks: List[Optional[bytearray]] = [None] * trace.num_ids
    for opnum, op in enumerate(trace.ops):
        try:
            _libc_step(blocks, op)
        except MemoryError as exc:
            kind = "realloc" if op.type is OpType.REALLOC else "malloc"
            raise MallocError(tracenum, opnum, f"libc {kind} failed") from exc
    return True


def eval_libc_speed(trace: Trace) -> None:
    """Run the trace on the system allocator; this is what is timed."""
    blocks: List[Optional[bytearray]] = [None] * trace.num_ids
    for op in trace.ops:
        _libc_step(blocks, op)


def _ratio(numerator: float, denominator: float) -> float:
    if denominator == 0:
        return float("inf") if numerator > 0 else float("nan")
    return numerator / denominator


def performance_index(stats: Sequence[Stats]) -> Tuple[float, float, float]:
    """Return the utilization points, throughput points and their sum.

    Each part is scored out of 100 and weighted by UTIL_WEIGHT; the
    throughput part stops growing once it reaches AVG_LIBC_THRUPUT.
    """
    if not stats:
        raise ValueError("no trace results to score")
    secs = sum(s.secs for s in stats)
    ops = sum(s.ops for s in stats)
    avg_util = sum(s.util for s in stats) / len(stats)
    throughput = _ratio(ops, secs)

    p1 = UTIL_WEIGHT * avg_util
    if throughput > AVG_LIBC_THRUPUT:
        p2 = 1.0 - UTIL_WEIGHT
    else:
        p2 = (1.0 - UTIL_WEIGHT) * (throughput / AVG_LIBC_THRUPUT)
    return p1 * 100, p2 * 100, (p1 + p2) * 100.0


def format_results(stats: Sequence[Stats], errors: int) -> str:
    """Return a table of per-trace results followed by a total line."""
    lines = [
        f"{'trace':>5}{' valid':>7} {'util':>5}{'ops':>8}{'secs':>10}{'Kops':>6}"
    ]
    secs = ops = util = 0.0
    for i, s in enumerate(stats):
        if s.valid:
            kops = _ratio(s.ops / 1e3, s.secs)
            lines.append(
                f"{i:2d}{'yes':>10}{s.util * 100.0:5.0f}%{s.ops:8.0f}"
                f"{s.secs:10.6f}{kops:6.0f}"
            )
            secs += s.secs
            ops += s.ops
            util += s.util
        else:
            lines.append(f"{i:2d}{'no':>10}{'-':>6}{'-':>8}{'-':>10}{'-':>6}")

    label = "Total       "
    if errors == 0 and stats:
        lines.append(
            f"{label:>12}{_ratio(util, len(stats)) * 100.0:5.0f}%{ops:8.0f}"
            f"{secs:10.6f}{_ratio(ops / 1e3, secs):6.0f}"
        )
    else:
        lines.append(f"{label:>12}{'-':>6}{'-':>8}{'-':>10}{'-':>6}")
    return "\n".join(lines)


def check_team(team: Team) -> List[str]:
    """Validate the team record and return the lines that describe it.

    Raises ValueError if a required field is missing.
    """
    if not team.teamname:
        raise ValueError(
            "ERROR: Please provide the information about your team."
        )
    lines = [f"Team Name:{team.teamname}"]
    if not team.name1 or not team.id1:
        raise ValueError("ERROR.  You must fill in all team member 1 fields!")
    lines.append(f"Member 1 :{team.name1}:{team.id1}")
    if bool(team.name2) != bool(team.id2):
        raise ValueError(
            "ERROR.  You must fill in all or none of the team member 2 "
            "ID fields!"
        )
    if team.name2:
        lines.append(f"Member 2 :{team.name2}:{team.id2}")
    return lines


def _run_libc(tracedir: str, tracefiles: Sequence[str], verbose: int,
              timer: FunctionTimer) -> List[Stats]:
    if verbose > 1:
        print("\nTesting libc malloc")
    results = []
    for tracenum, filename in enumerate(tracefiles):
        if verbose > 1:
            print(f"Reading tracefile: {filename}")
        trace = read_trace(tracedir, filename)
        stats = Stats(ops=float(trace.num_ops))
        if verbose > 1:
            print("Checking libc malloc for correctness, ", end="")
        stats.valid = eval_libc_valid(trace, tracenum)
        if stats.valid:
            if verbose > 1:
                print("and performance.")
            stats.secs = timer.fsecs(eval_libc_speed, trace)
        results.append(stats)
    return results


def _run_mm(tracedir: str, tracefiles: Sequence[str], verbose: int,
            timer: FunctionTimer,
            allocator: Allocator) -> Tuple[List[Stats], int]:
    if verbose > 1:
        print("\nTesting mm malloc")
    results = []
    errors = 0
    ranges = RangeList()
    for tracenum, filename in enumerate(tracefiles):
        if verbose > 1:
            print(f"Reading tracefile: {filename}")
        trace = read_trace(tracedir, filename)
        stats = Stats(ops=float(trace.num_ops))
        if verbose > 1:
            print("Checking mm_malloc for correctness, ", end="")
        try:
            stats.valid = eval_mm_valid(trace, tracenum, ranges, allocator)
        except MallocError as exc:
            errors += 1
            print(exc)
            stats.valid = False
        if stats.valid:
            if verbose > 1:
                print("efficiency, ", end="")
            stats.util = eval_mm_util(trace, allocator)
            if verbose > 1:
                print("and performance.")
            stats.secs = timer.fsecs(
                lambda t: eval_mm_speed(t, allocator), trace
            )
        results.append(stats)
    return results, errors


def main(argv: Optional[Sequence[str]] = None) -> int:
    """Run the driver with command-line arguments; return the exit status."""
    if argv is None:
        argv = sys.argv[1:]
    try:
        opts, _ = getopt.getopt(list(argv), "f:t:hvVgal")
    except getopt.GetoptError:
        sys.stderr.write(_USAGE)
        return 1

    tracefiles: Optional[List[str]] = None
    tracedir = TRACEDIR
    team_check = True
    run_libc = False
    autograder = False
    verbose = 0

    for opt, value in opts:
        if opt == "-g":
            autograder = True
        elif opt == "-f":
            tracefiles = [value]
            tracedir = "./"
        elif opt == "-t":
            if tracefiles is not None:
                continue
            tracedir = value if value.endswith("/") else value + "/"
        elif opt == "-a":
            team_check = False
        elif opt == "-l":
            run_libc = True
        elif opt == "-v":
            verbose = 1
        elif opt == "-V":
            verbose = 2
        elif opt == "-h":
            sys.stderr.write(_USAGE)
            return 0

    memory = MemorySystem()
    allocator = Allocator(memory)

    if team_check:
        try:
            team_lines = check_team(allocator.team)
        except ValueError as exc:
            print(exc)
            return 1
        for line in team_lines:
            print(line)

    if tracefiles is None:
        tracefiles = list(DEFAULT_TRACEFILES)
        print(f"Using default tracefiles in {tracedir}")

    timer = FunctionTimer(TimingMethod.GETTOD, verbose)

    try:
        if run_libc:
            libc_stats = _run_libc(tracedir, tracefiles, verbose, timer)
            if verbose:
                print("\nResults for libc malloc:")
                print(format_results(libc_stats, 0))
        mm_stats, errors = _run_mm(tracedir, tracefiles, verbose, timer,
                                   allocator)
    except (TraceError, MallocError, HeapError, OutOfMemoryError) as exc:
        print(exc)
        return 1

    if verbose:
        print("\nResults for mm malloc:")
        print(format_results(mm_stats, errors))
        print()

    numcorrect = sum(1 for s in mm_stats if s.valid)
    if errors == 0:
        p1, p2, perfindex = performance_index(mm_stats)
        print(f"Perf index = {p1:.0f} (util) + {p2:.0f} (thru) = "
              f"{perfindex:.0f}/100")
    else:
        perfindex = 0.0
        print(f"Terminated with {errors} errors")

    if autograder:
        print(f"correct:{numcorrect}")
        print(f"perfidx:{perfindex:.0f}")
    return 0