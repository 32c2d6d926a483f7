# ftrace_collector/utils/helpers.py - Helper functions
"""
General utility and helper functions.
"""

import os
from pathlib import Path
from typing import Union
import logging

from ftrace_collector.collector.errors import InsufficientPrivilegesError


logger = logging.getLogger(__name__)


def check_root_privileges() -> bool:
    """
    Check if running with root privileges.

    Returns:
        True if running as root, False otherwise
    """
    return os.geteuid() == 0 if hasattr(os, 'geteuid') else False


def require_root():
    """
    Raises:
        InsufficientPrivilegesError: If not running as root
    """
    if not check_root_privileges():
        raise InsufficientPrivilegesError(
            "The trace collector must be run as root in order to access FTrace"
        )


def online_cpu_count() -> int:
    """
    Number of CPUs currently online.

    Returns:
        Online CPU count, falling back to the configured count
    """
    try:
        count = os.sysconf('SC_NPROCESSORS_ONLN')
    except (AttributeError, ValueError, OSError):
        count = -1

    if count <= 0:
        count = os.cpu_count() or 1

    return count


def check_tracefs(tracing_root: Union[str, Path]) -> bool:
    """
    Check that the FTrace control surface exists under tracing_root.

    Returns:
        True if tracing_on is present, False otherwise
    """
    tracing_on = Path(tracing_root) / 'tracing_on'
    return tracing_on.exists()


def format_bytes(bytes_count: int) -> str:
    """
    Format bytes into human-readable string.

    Args:
        bytes_count: Number of bytes

    Returns:
        Formatted string (e.g., "1.5 MB")
    """
    for unit in ['B', 'KB', 'MB', 'GB', 'TB']:
        if bytes_count < 1024.0:
            return f"{bytes_count:.1f} {unit}"
        bytes_count /= 1024.0

    return f"{bytes_count:.1f} PB"


def check_prerequisites(tracing_root: Union[str, Path], devices_root: Union[str, Path]) -> bool:
    """
    Check all prerequisites for collecting a trace.

    Returns:
        True if all prerequisites are met, False otherwise
    """
    checks = [
        ("Root privileges", check_root_privileges()),
        (f"Trace root {tracing_root}", Path(tracing_root).is_dir()),
        ("FTrace control files", check_tracefs(tracing_root)),
        (f"Devices root {devices_root}", Path(devices_root).is_dir()),
    ]

    all_passed = True

    print("Checking prerequisites...")
    for name, passed in checks:
        status = "✓" if passed else "✗"
        print(f"  {status} {name}")

        if not passed:
            all_passed = False

    return all_passed
