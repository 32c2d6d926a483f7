# ftrace_collector/__init__.py - FTrace trace collector
"""
Host-side collector for the Linux kernel's FTrace ring buffers.
"""

__version__ = "0.1.0"
