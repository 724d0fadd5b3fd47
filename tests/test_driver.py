import pytest

from mallocsim.driver import (
    Stats,
    check_team,
    eval_libc_speed,
    eval_libc_valid,
    eval_mm_speed,
    eval_mm_util,
    eval_mm_valid,
    format_results,
    main,
    performance_index,
)
from mallocsim.memlib import MemorySystem
from mallocsim.mm import Allocator, Team
from mallocsim.trace import MallocError, RangeList, TraceError, parse_trace

GOOD_TRACE = """20000
2
5
1
a 0 512
a 1 128
r 0 640
f 1
f 0
"""

ZERO_TRACE = """20000
1
1
1
a 0 0
"""


class _BumpAllocator:
    """A test allocator that never reuses memory, with optional faults."""

    def __init__(self, memory, overlap=False, copy=True):
        self.memory = memory
        self.overlap = overlap
        self.copy = copy
        self._sizes = {}
        self._last = None

    def init(self):
        self.memory.sbrk(8)
        self._sizes = {}
        self._last = None

    def malloc(self, size):
        if self.overlap and self._last is not None:
            return self._last
        addr = self.memory.sbrk((size + 7) // 8 * 8)
        self._sizes[addr] = size
        self._last = addr
        return addr

    def free(self, bp):
        self._sizes.pop(bp, None)

    def realloc(self, ptr, size):
        newp = self.malloc(size)
        if self.copy:
            kept = min(self._sizes.get(ptr, 0), size)
            self.memory.write(newp, self.memory.read(ptr, kept))
        return newp


@pytest.fixture
def allocator():
    return Allocator(MemorySystem())


def test_eval_mm_valid_accepts_good_trace(allocator):
    trace = parse_trace(GOOD_TRACE)
    ranges = RangeList()
    assert eval_mm_valid(trace, 0, ranges, allocator) is True
    assert len(ranges) == 0
    assert trace.block_sizes[0] == 640
    assert allocator.check_heap() == []


def test_eval_mm_valid_keeps_live_ranges(allocator):
    trace = parse_trace("0\n2\n2\n1\na 0 24\na 1 40\n")
    ranges = RangeList()
    eval_mm_valid(trace, 0, ranges, allocator)
    assert len(ranges) == 2
    assert trace.blocks[0] in ranges and trace.blocks[1] in ranges


def test_eval_mm_valid_rejects_zero_size_malloc(allocator):
    trace = parse_trace(ZERO_TRACE)
    with pytest.raises(MallocError) as info:
        eval_mm_valid(trace, 3, RangeList(), allocator)
    assert info.value.message == "mm_malloc failed."
    assert info.value.tracenum == 3
    assert info.value.line() == 5


def test_eval_mm_valid_detects_overlap():
    fake = _BumpAllocator(MemorySystem(), overlap=True)
    trace = parse_trace("0\n2\n2\n1\na 0 16\na 1 16\n")
    with pytest.raises(MallocError) as info:
        eval_mm_valid(trace, 0, RangeList(), fake)
    assert "overlaps another payload" in info.value.message
    assert info.value.opnum == 1


def test_eval_mm_valid_detects_lost_realloc_data():
    fake = _BumpAllocator(MemorySystem(), copy=False)
    trace = parse_trace("0\n2\n3\n1\na 0 16\na 1 16\nr 1 32\n")
    with pytest.raises(MallocError) as info:
        eval_mm_valid(trace, 0, RangeList(), fake)
    assert info.value.message == (
        "mm_realloc did not preserve the data from old block"
    )
    assert info.value.line() == 7


def test_eval_mm_valid_accepts_copying_fake():
    fake = _BumpAllocator(MemorySystem(), copy=True)
    trace = parse_trace("0\n2\n3\n1\na 0 16\na 1 16\nr 1 32\n")
    assert eval_mm_valid(trace, 0, RangeList(), fake) is True


def test_eval_mm_util_is_peak_over_heap(allocator):
    trace = parse_trace("0\n1\n1\n1\na 0 512\n")
    util = eval_mm_util(trace, allocator)
    assert 0 < util <= 1
    assert util == pytest.approx(512 / allocator.memory.heapsize())


def test_eval_mm_util_on_good_trace(allocator):
    trace = parse_trace(GOOD_TRACE)
    util = eval_mm_util(trace, allocator)
    assert 0 < util <= 1


def test_eval_mm_speed_leaves_heap_free(allocator):
    trace = parse_trace(GOOD_TRACE)
    eval_mm_speed(trace, allocator)
    assert allocator.check_heap() == []
    assert all(not block.allocated for block in allocator.blocks())


def test_eval_libc_valid_and_speed():
    trace = parse_trace(GOOD_TRACE)
    assert eval_libc_valid(trace, 0) is True
    assert eval_libc_speed(trace) is None


def test_eval_mm_valid_rejects_realloc_of_unallocated(allocator):
    trace = parse_trace("0\n1\n1\n1\nr 0 16\n")
    with pytest.raises(TraceError):
        eval_mm_valid(trace, 0, RangeList(), allocator)


def test_performance_index_caps_throughput():
    stats = [Stats(ops=1e6, valid=True, secs=1.0, util=1.0)]
    util_points, thru_points, total = performance_index(stats)
    assert util_points == pytest.approx(60.0)
    assert thru_points == pytest.approx(40.0)
    assert total == pytest.approx(100.0)


def test_performance_index_parts_add_up():
    stats = [
        Stats(ops=150e3, valid=True, secs=1.0, util=0.5),
        Stats(ops=150e3, valid=True, secs=1.0, util=0.5),
    ]
    util_points, thru_points, total = performance_index(stats)
    assert thru_points < 40.0
    assert util_points < 60.0
    assert total == pytest.approx(util_points + thru_points)


def test_performance_index_needs_stats():
    with pytest.raises(ValueError):
        performance_index([])


def test_format_results_header_and_rows():
    stats = [
        Stats(ops=1000, valid=True, secs=0.5, util=0.75),
        Stats(ops=10, valid=False),
    ]
    lines = format_results(stats, 0).splitlines()
    assert lines[0] == "trace  valid  util     ops      secs  Kops"
    assert lines[1].split() == ["0", "yes", "75%", "1000", "0.500000", "2"]
    assert lines[2].split() == ["1", "no", "-", "-", "-", "-"]
    assert lines[3].startswith("Total")
    assert len(lines) == 4


def test_format_results_with_errors_hides_totals():
    stats = [Stats(ops=10, valid=False)]
    lines = format_results(stats, 1).splitlines()
    assert lines[-1].split() == ["Total", "-", "-", "-", "-"]


def test_check_team_lines():
    lines = check_team(Team("team", "Some Name", "id1", "Other", "id2"))
    assert lines == [
        "Team Name:team",
        "Member 1 :Some Name:id1",
        "Member 2 :Other:id2",
    ]


@pytest.mark.parametrize(
    "team",
    [
        Team("", "Some Name", "id1"),
        Team("team", "", "id1"),
        Team("team", "Some Name", ""),
        Team("team", "Some Name", "id1", "Other", ""),
        Team("team", "Some Name", "id1", "", "id2"),
    ],
)
def test_check_team_rejects_incomplete(team):
    with pytest.raises(ValueError):
        check_team(team)


def test_main_runs_single_trace(tmp_path, monkeypatch, capsys):
    (tmp_path / "short.rep").write_text(GOOD_TRACE)
    monkeypatch.chdir(tmp_path)
    assert main(["-f", "short.rep", "-g", "-v"]) == 0
    out = capsys.readouterr().out
    assert "Team Name:implicit first fit" in out
    assert "Results for mm malloc:" in out
    assert "Perf index = " in out
    assert "correct:1" in out


def test_main_with_libc(tmp_path, monkeypatch, capsys):
    (tmp_path / "short.rep").write_text(GOOD_TRACE)
    monkeypatch.chdir(tmp_path)
    assert main(["-a", "-l", "-v", "-f", "short.rep"]) == 0
    out = capsys.readouterr().out
    assert "Results for libc malloc:" in out
    assert "Team Name" not in out


def test_main_reports_allocator_errors(tmp_path, monkeypatch, capsys):
    (tmp_path / "zero.rep").write_text(ZERO_TRACE)
    monkeypatch.chdir(tmp_path)
    assert main(["-f", "zero.rep", "-g"]) == 0
    out = capsys.readouterr().out
    assert "ERROR [trace 0, line 5]: mm_malloc failed." in out
    assert "Terminated with 1 errors" in out
    assert "correct:0" in out
    assert "perfidx:0" in out


def test_main_uses_trace_directory(tmp_path, capsys):
    assert main(["-a", "-t", str(tmp_path)]) == 1
    out = capsys.readouterr().out
    assert f"Using default tracefiles in {tmp_path}/" in out
    assert "Could not open" in out


def test_main_missing_file(tmp_path, monkeypatch, capsys):
    monkeypatch.chdir(tmp_path)
    assert main(["-f", "absent.rep"]) == 1
    assert "Could not open ./absent.rep" in capsys.readouterr().out


def test_main_help_and_bad_option(capsys):
    assert main(["-h"]) == 0
    assert capsys.readouterr().err.startswith("Usage: mdriver")
    assert main(["-x"]) == 1
    assert "Usage: mdriver" in capsys.readouterr().err