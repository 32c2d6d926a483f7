# ftrace_collector/collector/__init__.py - Trace session engine
"""
Collector module for capturing FTrace ring buffers.

This module provides:
- kernel.py: Access to the FTrace control files and the free_buffer guard
- drainer.py: Non-blocking per-CPU ring buffer draining
- session.py: Session state machine driving a capture
- errors.py: Error taxonomy
"""
