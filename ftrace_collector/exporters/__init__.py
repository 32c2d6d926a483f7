# ftrace_collector/exporters/__init__.py - Exporters module
"""
Exporters for turning a capture into its output artifacts.

This module provides:
- stager.py: Event format and CPU topology staging
- archive.py: trace.tar.gz packaging
- stdout.py: Console capture summary
"""
