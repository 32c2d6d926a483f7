# ftrace_collector/collector/session.py - Trace session state machine
"""
Trace session controller.

A TraceSession configures FTrace, drains every CPU's ring buffer for a
capture window, stops tracing and hands the staged files to the archive
packager. All state changes go through SessionState transitions:

    IDLE -> CONFIGURING -> TRACING -> STOPPING -> STOPPED
    (any state) -> FAILED

The free_buffer handle is held from configuration until teardown. With
the disable_on_free option set, closing it clears the ring buffer and turns
tracing off, so a session that dies without stopping still leaves the
kernel idle once the process exits.
"""

import enum
import re
import tempfile
import time
from concurrent.futures import ThreadPoolExecutor, wait
from dataclasses import dataclass, field
from datetime import datetime
from pathlib import Path
from typing import Callable, Dict, List, Optional, Tuple, Union
import logging

from ftrace_collector.collector.drainer import CPUStreamSet
from ftrace_collector.collector.errors import (
    CaptureFailedError,
    PreconditionError,
    TraceError,
    TraceIOError,
)
from ftrace_collector.collector.kernel import BufferClearGuard, KernelTraceInterface
from ftrace_collector.exporters.archive import ArchivePackager
from ftrace_collector.exporters.stager import ArtifactStager
from ftrace_collector.utils.helpers import online_cpu_count


DEFAULT_EVENTS = (
    'sched:sched_switch',
    'sched:sched_wakeup',
    'sched:sched_wakeup_new',
    'sched:sched_migrate_task',
)
DEFAULT_BUFFER_SIZE_KB = 4096
DEFAULT_TRACING_ROOT = '/sys/kernel/debug/tracing'
DEFAULT_DEVICES_ROOT = '/sys/devices'
DEFAULT_POLL_INTERVAL = 0.1
ARCHIVE_NAME = 'trace.tar.gz'

EVENT_PATTERN = re.compile(r'^[^:/\s]+:[^:/\s]+$')


@dataclass(frozen=True)
class TraceConfiguration:
    """
    Immutable description of what to trace and where to put it.
    """
    tracing_root: Path
    devices_root: Path
    output_dir: Path
    buffer_size_kb: int = DEFAULT_BUFFER_SIZE_KB
    events: Tuple[str, ...] = DEFAULT_EVENTS

    def __post_init__(self):
        if isinstance(self.buffer_size_kb, bool) or not isinstance(self.buffer_size_kb, int):
            raise ValueError(f"buffer_size_kb must be an integer, got {self.buffer_size_kb!r}")
        if self.buffer_size_kb <= 0:
            raise ValueError("buffer_size_kb must be greater than zero")

        events = []
        for event in self.events:
            event = event.strip()
            if not EVENT_PATTERN.match(event):
                raise ValueError(f"Invalid event '{event}', expected 'category:event'")
            if event not in events:
                events.append(event)
        if not events:
            raise ValueError("At least one event is required")

        # Frozen dataclass: normalise through object.__setattr__
        object.__setattr__(self, 'tracing_root', Path(self.tracing_root))
        object.__setattr__(self, 'devices_root', Path(self.devices_root))
        object.__setattr__(self, 'output_dir', Path(self.output_dir))
        object.__setattr__(self, 'events', tuple(events))

    @property
    def archive_path(self) -> Path:
        return self.output_dir / ARCHIVE_NAME


class SessionState(enum.Enum):
    IDLE = 'idle'
    CONFIGURING = 'configuring'
    TRACING = 'tracing'
    STOPPING = 'stopping'
    STOPPED = 'stopped'
    FAILED = 'failed'


_TRANSITIONS = {
    SessionState.IDLE: {SessionState.CONFIGURING},
    SessionState.CONFIGURING: {SessionState.TRACING, SessionState.STOPPING},
    SessionState.TRACING: {SessionState.STOPPING},
    SessionState.STOPPING: {SessionState.STOPPED},
    SessionState.STOPPED: {SessionState.CONFIGURING},
    SessionState.FAILED: set(),
}


@dataclass
class CaptureSummary:
    """
    Outcome of a successful capture.
    """
    events: Tuple[str, ...]
    capture_seconds: float
    elapsed_seconds: float
    ticks: int
    bytes_by_cpu: Dict[int, int] = field(default_factory=dict)
    archive_path: Optional[Path] = None

    @property
    def cpu_count(self) -> int:
        return len(self.bytes_by_cpu)

    @property
    def total_bytes(self) -> int:
        return sum(self.bytes_by_cpu.values())


class TraceSession:
    """
    Drives one FTrace capture from configuration to teardown.

    Use it as a context manager so teardown runs on every exit path:

        with TraceSession(config) as session:
            summary = session.trace(capture_seconds=10)
    """

    def __init__(self, config: TraceConfiguration,
                 kernel: Optional[KernelTraceInterface] = None,
                 stager=None,
                 packager=None,
                 cpu_count: Optional[Callable[[], int]] = None,
                 poll_interval: float = DEFAULT_POLL_INTERVAL,
                 drain_workers: int = 1):
        """
        Initialize the session.

        Args:
            config: What to trace and where to write it
            kernel: Control file access (defaults to config.tracing_root)
            stager: Object with stage(staging_root); defaults to ArtifactStager
            packager: Object with package(staging_root, archive_path);
                defaults to ArchivePackager
            cpu_count: Returns the number of online CPUs (defaults to the host count)
            poll_interval: Seconds between drain passes
            drain_workers: Threads used per drain pass (1 = sequential)
        """
        if poll_interval <= 0:
            raise ValueError("poll_interval must be greater than zero")
        if drain_workers < 1:
            raise ValueError("drain_workers must be at least 1")

        self.config = config
        self.kernel = kernel or KernelTraceInterface(config.tracing_root)
        self.stager = stager or ArtifactStager(config.tracing_root, config.devices_root, config.events)
        self.packager = packager or ArchivePackager()
        self.cpu_count = cpu_count or online_cpu_count
        self.poll_interval = poll_interval
        self.drain_workers = drain_workers

        self._state = SessionState.IDLE
        self._guard: Optional[BufferClearGuard] = None
        self._streams: Optional[CPUStreamSet] = None
        self._executor: Optional[ThreadPoolExecutor] = None
        self.ticks = 0

        self.logger = logging.getLogger(__name__)

    @property
    def state(self) -> SessionState:
        return self._state

    @property
    def streams(self) -> Optional[CPUStreamSet]:
        return self._streams

    def _transition(self, new_state: SessionState):
        if new_state is not SessionState.FAILED and new_state not in _TRANSITIONS[self._state]:
            raise PreconditionError(
                f"Illegal session transition {self._state.value} -> {new_state.value}"
            )
        self.logger.debug(f"Session state {self._state.value} -> {new_state.value}")
        self._state = new_state

    def _require(self, *states: SessionState, message: str):
        if self._state not in states:
            raise PreconditionError(f"{message} (session is {self._state.value})")

    def configure(self):
        """
        Prepare FTrace for a new capture.

        Order matters: tracing is disabled first, then the free_buffer
        handle is taken before any option that depends on it.

        Raises:
            PreconditionError: If the session is configuring or tracing
            TraceIOError: On the first failed control write; the session is
                left FAILED with the clear guard released
        """
        self._require(SessionState.IDLE, SessionState.STOPPED, message="Already tracing")
        self._transition(SessionState.CONFIGURING)
        self.ticks = 0

        kernel = self.kernel
        try:
            kernel.write_control(kernel.TRACING_ON, '0')

            self._guard = kernel.open_clear_guard()

            kernel.write_control(kernel.CURRENT_TRACER, 'nop')
            # Closing free_buffer now also stops tracing
            kernel.write_control(kernel.TRACE_OPTIONS, 'disable_on_free')
            kernel.write_control(kernel.BUFFER_SIZE_KB, str(self.config.buffer_size_kb))
            kernel.write_controls(kernel.SET_EVENT, self.config.events)
        except TraceError as e:
            self.logger.error(f"Failed to configure FTrace: {e}")
            self._release_quietly()
            self._transition(SessionState.FAILED)
            raise

        self.logger.info(
            f"FTrace configured: buffer {self.config.buffer_size_kb} KB, "
            f"events {', '.join(self.config.events)}"
        )

    def start(self, traces_dir: Union[str, Path]):
        """
        Open one stream per online CPU and turn tracing on.

        Args:
            traces_dir: Directory receiving one raw file per CPU

        Raises:
            PreconditionError: If the session is not configured
            TraceIOError: If a stream cannot be opened or tracing cannot be
                enabled; every opened stream is closed and the session is
                left FAILED
        """
        self._require(SessionState.CONFIGURING, message="Session is not configured")

        traces_dir = Path(traces_dir)
        try:
            try:
                traces_dir.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise TraceIOError(f"Unable to create directories: {e}", path=traces_dir) from e

            cpu_count = self.cpu_count()
            self._streams = CPUStreamSet(self.kernel, traces_dir, chunk_size=self.config.buffer_size_kb)
            self._streams.open(cpu_count)

            if self.drain_workers > 1:
                self._executor = ThreadPoolExecutor(
                    max_workers=min(self.drain_workers, max(cpu_count, 1)),
                    thread_name_prefix='ftrace-drain',
                )

            self.kernel.write_control(self.kernel.TRACING_ON, '1')
        except TraceError as e:
            self.logger.error(f"Failed to start tracing: {e}")
            self._disable_tracing_quietly()
            self._release_quietly()
            self._transition(SessionState.FAILED)
            raise

        self._transition(SessionState.TRACING)
        self.logger.info(f"Tracing started on {cpu_count} CPUs")

    def drain_all(self):
        """
        Drain every CPU once.

        Raises:
            PreconditionError: If the session is not tracing
            TraceIOError: From the first CPU that fails
        """
        self._require(SessionState.TRACING, message="Not currently in a trace")
        self._drain_pass()

    def _drain_pass(self):
        if self._executor is None:
            # Stop at the first failing CPU
            for drainer in self._streams:
                drainer.drain()
            return

        futures = {drainer.cpu: self._executor.submit(drainer.drain) for drainer in self._streams}
        wait(futures.values())
        for cpu in sorted(futures):
            error = futures[cpu].exception()
            if error is not None:
                raise error

    def capture(self, duration: float) -> Optional[TraceError]:
        """
        Drain all CPUs every poll interval until duration has elapsed.

        A drain failure ends the loop early. It is returned rather than
        raised so the caller can still stop the trace; data already written
        stays in the trace files.

        Args:
            duration: Capture window in seconds

        Returns:
            The drain failure, or None if the full window was captured

        Raises:
            PreconditionError: If the session is not tracing
        """
        self._require(SessionState.TRACING, message="Not currently in a trace")
        if duration <= 0:
            raise ValueError("duration must be greater than zero")

        self.logger.info(f"Waiting {duration} seconds")

        start_time = time.monotonic()
        deadline = start_time + duration
        time.sleep(self.poll_interval)
        while time.monotonic() <= deadline:
            try:
                self.drain_all()
            except TraceError as e:
                self.logger.error(f"Drain failed on tick {self.ticks + 1}: {e}")
                return e
            self.ticks += 1
            time.sleep(self.poll_interval)

        self.logger.debug(f"Capture window closed after {self.ticks} ticks")
        return None

    def stop(self, final_copy: bool = False):
        """
        Turn tracing off, optionally drain what is left, then close every
        stream and release the clear guard.

        Args:
            final_copy: Drain all CPUs once more after tracing is off

        Raises:
            PreconditionError: If the session is not configured or tracing;
                no kernel write is made
            TraceIOError: If tracing could not be disabled, the final drain
                failed, or resources could not be released
        """
        self._require(SessionState.CONFIGURING, SessionState.TRACING, message="Not currently in a trace")
        self._transition(SessionState.STOPPING)

        try:
            self.kernel.write_control(self.kernel.TRACING_ON, '0')
        except TraceError:
            self.logger.warning(
                f"Failed to stop tracing. FTrace may still be running. Double check that "
                f"{self.kernel.path(self.kernel.TRACING_ON)} is set to '0'"
            )
            self._release_quietly()
            self._transition(SessionState.FAILED)
            raise

        if final_copy and self._streams is not None and self._streams.is_open:
            try:
                self._drain_pass()
            except TraceError as e:
                self.logger.error(f"Final drain failed: {e}")
                self._release_quietly()
                self._transition(SessionState.FAILED)
                raise

        errors = self._release_resources()
        if errors:
            self._transition(SessionState.FAILED)
            raise errors[0]

        self._transition(SessionState.STOPPED)
        self.logger.info("Tracing stopped")

    def _disable_tracing_quietly(self):
        try:
            self.kernel.write_control(self.kernel.TRACING_ON, '0')
        except TraceError as e:
            self.logger.warning(
                f"Failed to disable tracing: {e}. Double check that "
                f"{self.kernel.path(self.kernel.TRACING_ON)} is set to '0'"
            )

    def _release_resources(self) -> List[TraceError]:
        """
        Close streams, the drain pool and the clear guard.

        Every resource is attempted even if an earlier one fails.

        Returns:
            Errors raised while releasing
        """
        errors = []

        if self._streams is not None:
            try:
                self._streams.close()
            except TraceError as e:
                errors.append(e)

        if self._executor is not None:
            self._executor.shutdown(wait=True)
            self._executor = None

        if self._guard is not None:
            guard, self._guard = self._guard, None
            try:
                guard.release()
            except TraceError as e:
                errors.append(e)

        return errors

    def _release_quietly(self):
        for error in self._release_resources():
            self.logger.error(f"Error while releasing trace resources: {error}")

    def close(self):
        """
        Teardown safety net.

        Stops an active session without a final copy, logging instead of
        raising. Does nothing once the session has stopped or failed.
        """
        if self._state in (SessionState.CONFIGURING, SessionState.TRACING):
            self.logger.warning(f"Session closed while {self._state.value}, stopping trace")
            try:
                self.stop(final_copy=False)
            except TraceError as e:
                self.logger.error(f"Failed to stop trace during teardown: {e}")
        elif self._state is SessionState.STOPPING:
            # Interrupted part way through stop()
            self._disable_tracing_quietly()
            self._release_quietly()
            self._transition(SessionState.FAILED)
        else:
            self._release_quietly()

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc_value, traceback):
        self.close()
        return False

    def trace(self, capture_seconds: float) -> CaptureSummary:
        """
        Capture a complete trace and package it as trace.tar.gz.

        Args:
            capture_seconds: How long to capture for

        Returns:
            Summary of the capture

        Raises:
            TraceError: On any failure. If both draining and stopping
                failed, a CaptureFailedError holding both messages
        """
        self._require(SessionState.IDLE, SessionState.STOPPED, message="Already tracing")

        self.logger.info(
            f"Trace date {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}: capture for "
            f"{capture_seconds} seconds, send output to {self.config.output_dir}"
        )

        with tempfile.TemporaryDirectory(prefix='ftrace-collector-') as staging:
            staging_root = Path(staging)

            try:
                self.configure()
                self.stager.stage(staging_root)
                self.start(staging_root / 'traces')

                started = time.monotonic()
                drain_error = self.capture(capture_seconds)
            except BaseException:
                self.close()
                raise

            stop_error = None
            try:
                self.stop(final_copy=True)
            except TraceError as e:
                stop_error = e
            except BaseException:
                self.close()
                raise
            elapsed = time.monotonic() - started

            summary = CaptureSummary(
                events=self.config.events,
                capture_seconds=capture_seconds,
                elapsed_seconds=elapsed,
                ticks=self.ticks,
                bytes_by_cpu=self._streams.bytes_by_cpu(),
            )

            archive_path = self.config.archive_path
            try:
                self.packager.package(staging_root, archive_path)
                summary.archive_path = archive_path
            except TraceError as e:
                if drain_error is None and stop_error is None:
                    raise
                self.logger.error(f"Failed to package partial capture: {e}")

        if drain_error is not None and stop_error is not None:
            raise CaptureFailedError(drain_error, stop_error)
        if drain_error is not None:
            raise drain_error
        if stop_error is not None:
            raise stop_error

        self.logger.info(
            f"Trace capture finished at {datetime.now().strftime('%Y-%m-%d %H:%M:%S')}"
        )
        return summary
