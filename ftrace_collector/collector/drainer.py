# ftrace_collector/collector/drainer.py - Per-CPU ring buffer draining
"""
Copies raw ring buffer pages from the kernel into per-CPU trace files.

Each CPU has its own trace_pipe_raw, opened non-blocking, and its own
destination file. A drain pass reads until the kernel has nothing more to
offer right now and appends the bytes verbatim.
"""

from contextlib import ExitStack
from dataclasses import dataclass
from pathlib import Path
from typing import BinaryIO, Dict, Iterator, Optional
import logging

from ftrace_collector.collector.errors import TraceIOError


@dataclass
class CPUStream:
    """
    Source and destination of one CPU's trace data.
    """
    cpu: int
    source: BinaryIO
    sink: BinaryIO
    sink_path: Path


class PerCPUDrainer:
    """
    Drains one CPU's raw ring buffer into its destination file.
    """

    def __init__(self, stream: CPUStream, chunk_size: int):
        """
        Initialize the drainer.

        Args:
            stream: The CPU's open source/destination pair
            chunk_size: Size of the scratch buffer used for each read
        """
        if chunk_size <= 0:
            raise ValueError(f"chunk_size must be greater than zero, got {chunk_size}")

        self.stream = stream
        self.cpu = stream.cpu
        self._scratch = bytearray(chunk_size)

        self.bytes_read = 0
        self.bytes_written = 0
        self.reads = 0

        self.logger = logging.getLogger(__name__)

    def drain(self) -> int:
        """
        Read everything currently available and append it to the sink.

        Returns:
            Number of bytes appended during this call

        Raises:
            TraceIOError: On a read failure other than "no data" or on a
                write that cannot be completed
        """
        appended = 0
        view = memoryview(self._scratch)

        while True:
            try:
                n = self.stream.source.readinto(self._scratch)
            except BlockingIOError:
                n = None
            except OSError as e:
                raise TraceIOError(f"Unable to read cpu buffer: {e}", cpu=self.cpu) from e

            # None means the read would block; 0 means nothing left for now.
            if not n:
                break

            self.reads += 1
            self.bytes_read += n
            self._write_all(view[:n])
            appended += n

        if appended:
            self.logger.debug(f"cpu{self.cpu}: drained {appended} bytes")

        return appended

    def _write_all(self, data: memoryview):
        """
        Write data to the sink, finishing short writes.

        Raises:
            TraceIOError: If the sink fails or stops accepting bytes
        """
        remaining = data
        while remaining:
            try:
                written = self.stream.sink.write(remaining)
            except OSError as e:
                raise TraceIOError(
                    f"Failed to write trace data: {e}", path=self.stream.sink_path, cpu=self.cpu
                ) from e

            if not written:
                raise TraceIOError(
                    f"Short write: {len(remaining)} of {len(data)} bytes not persisted",
                    path=self.stream.sink_path, cpu=self.cpu,
                )

            self.bytes_written += written
            remaining = remaining[written:]


class CPUStreamSet:
    """
    Owns the CPUStream of every CPU for one capture.

    Streams are registered on an ExitStack as they are opened, so a failure
    part way through opening, or any later exit, closes all of them.
    """

    def __init__(self, kernel, traces_dir: Path, chunk_size: int):
        """
        Initialize the stream set.

        Args:
            kernel: KernelTraceInterface used to open the raw streams
            traces_dir: Directory receiving one file per CPU
            chunk_size: Scratch buffer size for each drainer
        """
        self.kernel = kernel
        self.traces_dir = Path(traces_dir)
        self.chunk_size = chunk_size

        self.drainers: Dict[int, PerCPUDrainer] = {}
        self._exit_stack: Optional[ExitStack] = None
        self.logger = logging.getLogger(__name__)

    @property
    def is_open(self) -> bool:
        return self._exit_stack is not None

    def open(self, cpu_count: int):
        """
        Open the source/destination pair of CPUs 0..cpu_count-1.

        Raises:
            TraceIOError: If any pair fails to open; nothing is left open
        """
        if self.is_open:
            raise RuntimeError("CPU streams are already open")

        stack = ExitStack()
        drainers = {}
        try:
            for cpu in range(cpu_count):
                source = stack.enter_context(self.kernel.open_raw_stream(cpu))

                sink_path = self.traces_dir / f'cpu{cpu}'
                try:
                    sink = open(sink_path, 'wb', buffering=0)
                except OSError as e:
                    raise TraceIOError(f"Unable to create trace file: {e}", path=sink_path, cpu=cpu) from e
                stack.enter_context(sink)

                stream = CPUStream(cpu=cpu, source=source, sink=sink, sink_path=sink_path)
                drainers[cpu] = PerCPUDrainer(stream, self.chunk_size)
        except BaseException:
            stack.close()
            raise

        self._exit_stack = stack
        self.drainers = drainers
        self.logger.info(f"Opened trace streams for {cpu_count} CPUs")

    def __iter__(self) -> Iterator[PerCPUDrainer]:
        return iter(self.drainers[cpu] for cpu in sorted(self.drainers))

    def __len__(self) -> int:
        return len(self.drainers)

    def close(self):
        """
        Close every stream. Safe to call more than once.
        """
        if self._exit_stack is None:
            return

        stack, self._exit_stack = self._exit_stack, None
        try:
            stack.close()
        except OSError as e:
            raise TraceIOError(f"Failed to close trace streams: {e}", path=self.traces_dir) from e
        self.logger.debug(f"Closed trace streams for {len(self.drainers)} CPUs")

    def bytes_by_cpu(self) -> Dict[int, int]:
        return {cpu: drainer.bytes_written for cpu, drainer in sorted(self.drainers.items())}
