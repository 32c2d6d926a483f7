# ftrace_collector/collector/kernel.py - Thin wrapper over the FTrace control files
"""
Access to the kernel tracing control surface.

FTrace is driven entirely through pseudo files under the tracing root
(usually /sys/kernel/debug/tracing or /sys/kernel/tracing). This module
keeps all of the raw file handling in one place so the session logic can be
tested against a fake tracing root made of regular files.

No retry policy lives here; callers decide what to do with failures.
"""

import os
from pathlib import Path
from typing import BinaryIO, Iterable, Union
import logging

from ftrace_collector.collector.errors import TraceIOError


class BufferClearGuard:
    """
    Open handle on the kernel's free_buffer control.

    While the handle is open the ring buffer is kept. Closing it frees the
    buffer, and with the disable_on_free option set it also turns tracing
    off. The handle is closed at most once.
    """

    def __init__(self, fd: int, path: Path):
        self._fd = fd
        self.path = path
        self._released = False
        self.logger = logging.getLogger(__name__)

    @property
    def released(self) -> bool:
        return self._released

    def release(self):
        """
        Close the handle, clearing the kernel ring buffer.

        Calling this again after a successful release does nothing.
        """
        if self._released:
            return

        self._released = True
        try:
            os.close(self._fd)
        except OSError as e:
            raise TraceIOError(f"Failed to release buffer clear guard: {e}", path=self.path) from e

        self.logger.debug(f"Released {self.path}")

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.release()
        return False


class KernelTraceInterface:
    """
    Reads and writes FTrace control files relative to a tracing root.
    """

    TRACING_ON = 'tracing_on'
    FREE_BUFFER = 'free_buffer'
    CURRENT_TRACER = 'current_tracer'
    TRACE_OPTIONS = 'trace_options'
    BUFFER_SIZE_KB = 'buffer_size_kb'
    SET_EVENT = 'set_event'

    def __init__(self, tracing_root: Union[str, Path]):
        """
        Initialize the interface.

        Args:
            tracing_root: Root directory of the FTrace filesystem
        """
        self.tracing_root = Path(tracing_root)
        self.logger = logging.getLogger(__name__)

    def path(self, relative_path: Union[str, Path]) -> Path:
        """Absolute path of a control file under the tracing root"""
        return self.tracing_root / relative_path

    def raw_stream_path(self, cpu: int) -> Path:
        return self.path(Path('per_cpu') / f'cpu{cpu}' / 'trace_pipe_raw')

    def write_control(self, relative_path: Union[str, Path], value: str):
        """
        Overwrite a control file with a short scalar value.

        Args:
            relative_path: Control file path relative to the tracing root
            value: Value to write

        Raises:
            TraceIOError: If the file cannot be opened or the write is short
        """
        self.write_controls(relative_path, [value])

    def write_controls(self, relative_path: Union[str, Path], values: Iterable[str]):
        """
        Truncate a control file once, then write each value with its own
        write call so the kernel parses each one as a separate command.

        Args:
            relative_path: Control file path relative to the tracing root
            values: Values to write, in order

        Raises:
            TraceIOError: If the file cannot be opened or any write is short
        """
        path = self.path(relative_path)

        try:
            control = open(path, 'wb', buffering=0)
        except OSError as e:
            raise TraceIOError(f"Could not open control file for writing: {e}", path=path) from e

        with control:
            for value in values:
                data = str(value).encode('utf-8')
                try:
                    written = control.write(data)
                except OSError as e:
                    raise TraceIOError(f"Failed to write '{value}': {e}", path=path) from e

                if written != len(data):
                    raise TraceIOError(
                        f"Short write of '{value}' ({written} of {len(data)} bytes)", path=path
                    )

                self.logger.debug(f"Wrote '{value}' to {path}")

    def read_control(self, relative_path: Union[str, Path]) -> str:
        """
        Read the current text of a control file.

        Raises:
            TraceIOError: If the file cannot be read
        """
        path = self.path(relative_path)
        try:
            with open(path, 'r') as f:
                return f.read().strip()
        except OSError as e:
            raise TraceIOError(f"Could not read control file: {e}", path=path) from e

    def open_raw_stream(self, cpu: int) -> BinaryIO:
        """
        Open the raw ring buffer pipe of one CPU without blocking.

        Reads on the returned unbuffered file return None when no data is
        currently available.

        Args:
            cpu: Logical CPU index

        Returns:
            Unbuffered binary file object

        Raises:
            TraceIOError: If the pipe does not exist or cannot be opened
        """
        path = self.raw_stream_path(cpu)

        try:
            fd = os.open(path, os.O_RDONLY | os.O_NONBLOCK)
        except OSError as e:
            raise TraceIOError(f"Unable to open raw trace stream: {e}", path=path, cpu=cpu) from e

        return os.fdopen(fd, 'rb', buffering=0)

    def open_clear_guard(self) -> BufferClearGuard:
        """
        Open the free_buffer control read-only.

        Raises:
            TraceIOError: If the control cannot be opened
        """
        path = self.path(self.FREE_BUFFER)

        try:
            fd = os.open(path, os.O_RDONLY)
        except OSError as e:
            raise TraceIOError(f"Unable to open free_buffer file: {e}", path=path) from e

        self.logger.debug(f"Holding {path} open")
        return BufferClearGuard(fd, path)
