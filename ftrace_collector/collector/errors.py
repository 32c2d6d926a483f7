# ftrace_collector/collector/errors.py - Error taxonomy for trace sessions
"""
Exceptions raised by the trace session engine.

Every failure surfaced to the CLI derives from TraceError so it can be
reported as a single message with a non-zero exit code.
"""

from typing import Optional, Union
from pathlib import Path


class TraceError(Exception):
    """Base class for all trace collection failures."""


class PreconditionError(TraceError):
    """
    An operation was requested in a session state that does not allow it.
    """


class TraceIOError(TraceError, OSError):
    """
    A failed open/read/write/close against the kernel or the filesystem.

    Always carries the offending path, the CPU index, or both.
    """

    def __init__(self, message: str, path: Optional[Union[str, Path]] = None,
                 cpu: Optional[int] = None):
        details = []
        if cpu is not None:
            details.append(f"cpu {cpu}")
        if path is not None:
            details.append(str(path))
        full_message = f"{message} ({', '.join(details)})" if details else message

        super().__init__(full_message)
        self.message = full_message
        self.path = Path(path) if path is not None else None
        self.cpu = cpu

    def __str__(self):
        return self.message


class InsufficientPrivilegesError(TraceError, PermissionError):
    """Raised before any kernel interaction when not running as root."""


class CaptureFailedError(TraceError):
    """
    A capture failed during draining and/or while stopping.

    Neither failure is dropped: the message holds both, separated by a
    blank line, drain failure first.
    """

    def __init__(self, drain_error: Optional[BaseException] = None,
                 stop_error: Optional[BaseException] = None):
        self.drain_error = drain_error
        self.stop_error = stop_error
        messages = [str(e) for e in (drain_error, stop_error) if e is not None]
        super().__init__("\n\n".join(messages))
