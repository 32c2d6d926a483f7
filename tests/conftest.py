# tests/conftest.py - Shared fixtures
"""
Fake FTrace and sysfs trees built from regular files.
"""

import errno
import io

import pytest

from ftrace_collector.collector.errors import TraceIOError
from ftrace_collector.collector.kernel import KernelTraceInterface
from ftrace_collector.collector.session import DEFAULT_EVENTS, TraceConfiguration


CPU_DATA = {
    0: bytes(range(256)) * 20,
    1: b'ring-buffer-page-cpu1',
}

CONTROL_FILES = ('tracing_on', 'free_buffer', 'current_tracer', 'trace_options',
                 'buffer_size_kb', 'set_event')


@pytest.fixture
def tracing_root(tmp_path):
    """Tracing root with control files, two CPUs and the default event formats"""
    root = tmp_path / 'tracing'
    root.mkdir()

    for name in CONTROL_FILES:
        (root / name).write_text('')
    (root / 'tracing_on').write_text('1')

    for cpu, data in CPU_DATA.items():
        cpu_dir = root / 'per_cpu' / f'cpu{cpu}'
        cpu_dir.mkdir(parents=True)
        (cpu_dir / 'trace_pipe_raw').write_bytes(data)

    for event in DEFAULT_EVENTS:
        category, name = event.split(':')
        event_dir = root / 'events' / category / name
        event_dir.mkdir(parents=True)
        (event_dir / 'format').write_text(f"name: {name}\nID: 1\nformat:\n")
    (root / 'events' / 'header_page').write_text("field: u64 timestamp;\n")

    return root


@pytest.fixture
def devices_root(tmp_path):
    """Devices root with two NUMA nodes and some entries that must be skipped"""
    root = tmp_path / 'devices'
    node_root = root / 'system' / 'node'

    for node, cpu in (('node0', 'cpu0'), ('node0', 'cpu1')):
        topology = node_root / node / cpu / 'topology'
        topology.mkdir(parents=True)
        (topology / 'core_id').write_text(cpu[-1] + '\n')
        (topology / 'physical_package_id').write_text('0\n')

    # cpu without topology, non-matching entries
    (node_root / 'node1' / 'cpu2').mkdir(parents=True)
    (node_root / 'node0' / 'cpulist').write_text('0-1\n')
    (node_root / 'node0' / 'power').mkdir()
    (node_root / 'has_cpu').write_text('0-2\n')

    return root


@pytest.fixture
def make_config(tracing_root, devices_root, tmp_path):
    def _make(**overrides):
        values = {
            'tracing_root': tracing_root,
            'devices_root': devices_root,
            'output_dir': tmp_path / 'out',
            'buffer_size_kb': 4096,
            'events': DEFAULT_EVENTS,
        }
        values.update(overrides)
        return TraceConfiguration(**values)
    return _make


class ScriptedStream(io.RawIOBase):
    """
    Raw stream that yields one chunk per drain pass, then reports
    "would block". Raises EIO on pass number fail_at (1-based).
    """

    def __init__(self, chunks, fail_at=None):
        self.chunks = list(chunks)
        self.fail_at = fail_at
        self.passes = 0
        self._pending = True

    def readable(self):
        return True

    def readinto(self, buf):
        if self.fail_at is not None and self.passes + 1 >= self.fail_at:
            raise OSError(errno.EIO, "Input/output error")
        if self._pending and self.chunks:
            chunk = self.chunks.pop(0)
            buf[:len(chunk)] = chunk
            self._pending = False
            return len(chunk)
        self._pending = True
        self.passes += 1
        return None


class RecordingKernel(KernelTraceInterface):
    """
    KernelTraceInterface that records every control write and can be told
    to fail specific controls or substitute scripted CPU streams.
    """

    def __init__(self, tracing_root, streams=None):
        super().__init__(tracing_root)
        self.calls = []
        self.fail_on = set()
        self.streams = streams or {}
        self.opened = []
        self.guards = []

    def write_controls(self, relative_path, values):
        values = list(values)
        if str(relative_path) in self.fail_on:
            self.calls.append(('fail', str(relative_path)))
            raise TraceIOError("Injected failure", path=self.path(relative_path))
        for value in values:
            self.calls.append(('write', str(relative_path), value))
        super().write_controls(relative_path, values)

    def open_raw_stream(self, cpu):
        if cpu in self.streams:
            stream = self.streams[cpu]
        else:
            stream = super().open_raw_stream(cpu)
        self.opened.append(stream)
        return stream

    def open_clear_guard(self):
        if 'free_buffer' in self.fail_on:
            raise TraceIOError("Injected failure", path=self.path('free_buffer'))
        guard = super().open_clear_guard()
        self.calls.append(('guard',))
        self.guards.append(guard)
        return guard

    def writes(self):
        return [call[1:] for call in self.calls if call[0] == 'write']
