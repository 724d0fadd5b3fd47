# mallocsim

mallocsim simulates a small heap, runs a dynamic memory allocator on it, and
scores the allocator against trace files of allocation requests.

The package has these modules:

- `mallocsim.memlib`: `MemorySystem`, a simulated heap of fixed maximum size
  (20 MB by default). It grows through `sbrk` and never shrinks. It offers
  4-byte little-endian word access (`read_word`, `write_word`) and byte access
  (`read`, `write`, `fill`). Growing past the limit raises `OutOfMemoryError`.
  Addresses are plain integers that start at 0.
- `mallocsim.mm`: `Allocator`, an allocator with an implicit free list and
  boundary-tag coalescing. Payloads are 8-byte aligned. It searches first fit
  by default, or next fit when `next_fit=True` is passed. `blocks()` yields
  every heap block as a `Block(address, size, allocated)`. `check_heap()`
  returns a list of the problems it finds, and with `verbose=True` it also
  prints each block.
- `mallocsim.trace`: reads trace files (`read_trace`, `parse_trace`) into
  `Trace` objects. `RangeList` records allocated payloads and rejects any that
  are misaligned, lie outside the heap, or overlap another payload.
- `mallocsim.clock`, `mallocsim.ftimer`, `mallocsim.fcyc`: timing helpers.
  They provide a nanosecond cycle counter, an interrupt-compensated counter,
  interval-timer and time-of-day timers, K-best sampling (`fcyc`), and
  `FunctionTimer`, which times a function by one of the `TimingMethod`s.
- `mallocsim.driver`: the `mdriver` command. It checks, scores and times the
  allocator on traces.

## Installation

```
pip install .
```

To install with the test dependencies:

```
pip install .[test]
```

## Using the allocator

```python
from mallocsim.memlib import MemorySystem
from mallocsim.mm import Allocator

memory = MemorySystem(20 * (1 << 20))
allocator = Allocator(memory, next_fit=False)
allocator.init()

p = allocator.malloc(100)
memory.fill(p, 0xAB, 100)
q = allocator.realloc(p, 200)   # the first 100 bytes are copied over
allocator.free(q)

for block in allocator.blocks():
    print(block)

assert allocator.check_heap() == []
```

`malloc(0)` returns `None`. `realloc` always moves the block: it allocates a
new block, copies the data across, and frees the old one.

## Trace files

A trace file begins with four integers:

1. the suggested heap size (not used)
2. the number of block ids
3. the number of requests
4. a weight (not used)

Each request after the header is one of the following:

```
a <id> <size>    allocate
r <id> <size>    reallocate
f <id>           free
```

A malformed file raises `TraceError`. This includes an unknown request letter,
a wrong request count, and a largest id that does not match the id count.

## Running the driver

```
mdriver -f path/to/trace.rep
mdriver -t path/to/traces/ -v
```

Options:

| Option | Effect |
|---|---|
| `-a` | Skip the team check. |
| `-f <file>` | Use only this trace file, relative to the current directory. |
| `-g` | Also print `correct:<n>` and `perfidx:<n>` summary lines. |
| `-h` | Print usage. |
| `-l` | Also run and time the traces with plain Python buffers as a baseline. |
| `-t <dir>` | Directory that holds the default traces (ignored after `-f`). |
| `-v` | Print a results table for each trace. |
| `-V` | Print extra progress output as well. |

The driver checks each trace first. Every payload must be aligned, must lie
inside the heap, must not overlap another payload, and must keep its data
across `realloc`. Errors are reported with the trace number and the line of
the request that failed. A valid trace is then measured for utilization and
timed. Utilization is the peak total payload divided by the final heap size.
Timing uses the time of day, averaged over 10 runs.

The performance index weights utilization at 60% and throughput at 40%.
Throughput stops counting once it reaches 600 Kops/s. If any trace fails its
check, the driver prints `Terminated with <n> errors` instead of an index.

## What it does not do

No trace files ship with the package. Without `-t` or `-f`, the driver looks
for its eleven default trace names in a fixed directory that is unlikely to
exist on your machine. Point it at your own traces.

## Running the tests

```
pytest
```