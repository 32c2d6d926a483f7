# tests/test_drainer.py - Tests for per-CPU draining
"""
Unit tests for PerCPUDrainer and CPUStreamSet.
"""

import io
import os

import pytest

from ftrace_collector.collector.drainer import CPUStream, CPUStreamSet, PerCPUDrainer
from ftrace_collector.collector.errors import TraceIOError
from ftrace_collector.collector.kernel import KernelTraceInterface
from conftest import CPU_DATA, RecordingKernel, ScriptedStream


def make_drainer(tmp_path, source, chunk_size=4096, sink=None, cpu=0):
    sink_path = tmp_path / f'cpu{cpu}'
    if sink is None:
        sink = open(sink_path, 'wb', buffering=0)
    stream = CPUStream(cpu=cpu, source=source, sink=sink, sink_path=sink_path)
    return PerCPUDrainer(stream, chunk_size)


class PartialSink(io.RawIOBase):
    """Sink that accepts at most `limit` bytes per write"""

    def __init__(self, limit):
        self.limit = limit
        self.data = bytearray()

    def writable(self):
        return True

    def write(self, b):
        n = min(len(b), self.limit)
        self.data += bytes(b[:n])
        return n


class TestPerCPUDrainer:
    """Test cases for PerCPUDrainer"""

    def test_drain_copies_bytes_verbatim(self, tmp_path, tracing_root):
        """Test that all available bytes are appended in order"""
        source = KernelTraceInterface(tracing_root).open_raw_stream(0)
        drainer = make_drainer(tmp_path, source, chunk_size=1000)

        appended = drainer.drain()
        drainer.stream.sink.close()
        source.close()

        assert appended == len(CPU_DATA[0])
        assert (tmp_path / 'cpu0').read_bytes() == CPU_DATA[0]
        assert drainer.reads == 6
        assert drainer.bytes_written == len(CPU_DATA[0])

    def test_drain_empty_buffer_is_idempotent(self, tmp_path, tracing_root):
        """Test that a second pass with no new data appends nothing"""
        source = KernelTraceInterface(tracing_root).open_raw_stream(1)
        drainer = make_drainer(tmp_path, source)

        first = drainer.drain()
        second = drainer.drain()
        drainer.stream.sink.close()
        source.close()

        assert first == len(CPU_DATA[1])
        assert second == 0
        assert (tmp_path / 'cpu0').read_bytes() == CPU_DATA[1]

    def test_drain_picks_up_new_data(self, tmp_path, tracing_root):
        """Test that bytes produced between passes are appended after earlier ones"""
        raw = tracing_root / 'per_cpu' / 'cpu1' / 'trace_pipe_raw'
        source = KernelTraceInterface(tracing_root).open_raw_stream(1)
        drainer = make_drainer(tmp_path, source)

        drainer.drain()
        with open(raw, 'ab') as f:
            f.write(b'-more')
        drainer.drain()
        drainer.stream.sink.close()
        source.close()

        assert (tmp_path / 'cpu0').read_bytes() == CPU_DATA[1] + b'-more'

    def test_would_block_is_not_an_error(self, tmp_path):
        """Test that an empty non-blocking pipe ends the pass quietly"""
        read_fd, write_fd = os.pipe()
        os.set_blocking(read_fd, False)
        source = open(read_fd, 'rb', buffering=0)
        drainer = make_drainer(tmp_path, source)

        try:
            assert drainer.drain() == 0

            os.write(write_fd, b'page')
            assert drainer.drain() == 4
            assert drainer.drain() == 0
        finally:
            os.close(write_fd)
            source.close()
            drainer.stream.sink.close()

        assert (tmp_path / 'cpu0').read_bytes() == b'page'

    def test_read_failure_names_cpu(self, tmp_path):
        """Test that a read error surfaces as TraceIOError with the CPU index"""
        drainer = make_drainer(tmp_path, ScriptedStream([b'x'], fail_at=1), cpu=3)

        with pytest.raises(TraceIOError) as exc_info:
            drainer.drain()
        drainer.stream.sink.close()

        assert exc_info.value.cpu == 3
        assert 'cpu 3' in str(exc_info.value)

    def test_short_writes_are_completed(self, tmp_path):
        """Test that partial writes are finished rather than dropped"""
        sink = PartialSink(limit=3)
        drainer = make_drainer(tmp_path, ScriptedStream([b'abcdefgh']), sink=sink)

        assert drainer.drain() == 8
        assert bytes(sink.data) == b'abcdefgh'
        assert drainer.bytes_written == 8

    def test_stalled_write_raises(self, tmp_path):
        """Test that a sink accepting nothing is reported"""
        drainer = make_drainer(tmp_path, ScriptedStream([b'abc']), sink=PartialSink(limit=0))

        with pytest.raises(TraceIOError, match='Short write'):
            drainer.drain()

    def test_invalid_chunk_size(self, tmp_path):
        """Test that the scratch buffer must not be empty"""
        with pytest.raises(ValueError):
            make_drainer(tmp_path, ScriptedStream([]), chunk_size=0)


class TestCPUStreamSet:
    """Test cases for CPUStreamSet"""

    def test_open_one_pair_per_cpu(self, tmp_path, tracing_root):
        """Test that one drainer and one output file exist per CPU"""
        traces = tmp_path / 'traces'
        traces.mkdir()
        streams = CPUStreamSet(KernelTraceInterface(tracing_root), traces, chunk_size=4096)

        streams.open(2)
        try:
            assert len(streams) == 2
            assert [d.cpu for d in streams] == [0, 1]
            for drainer in streams:
                drainer.drain()
        finally:
            streams.close()

        assert sorted(p.name for p in traces.iterdir()) == ['cpu0', 'cpu1']
        assert streams.bytes_by_cpu() == {0: len(CPU_DATA[0]), 1: len(CPU_DATA[1])}

    def test_failed_open_closes_everything(self, tmp_path, tracing_root):
        """Test that a missing CPU closes the streams opened before it"""
        traces = tmp_path / 'traces'
        traces.mkdir()
        kernel = RecordingKernel(tracing_root)
        streams = CPUStreamSet(kernel, traces, chunk_size=4096)

        with pytest.raises(TraceIOError) as exc_info:
            streams.open(3)

        assert exc_info.value.cpu == 2
        assert not streams.is_open
        assert len(kernel.opened) == 2
        assert all(stream.closed for stream in kernel.opened)

    def test_close_is_idempotent(self, tmp_path, tracing_root):
        """Test that closing twice is harmless"""
        traces = tmp_path / 'traces'
        traces.mkdir()
        kernel = RecordingKernel(tracing_root)
        streams = CPUStreamSet(kernel, traces, chunk_size=4096)

        streams.open(2)
        streams.close()
        streams.close()

        assert all(stream.closed for stream in kernel.opened)
        assert all(d.stream.sink.closed for d in streams)
