# ftrace_collector/exporters/stager.py - Stage event formats and CPU topology
"""
Copies the descriptor files needed to decode a raw capture into the
staging tree:

    formats/<category>/<event>/format
    formats/header_page
    topology/node<N>/cpu<M>/topology/*
    metadata.textproto
"""

import re
import shutil
from pathlib import Path
from typing import Iterable, Union
import logging

from ftrace_collector.collector.errors import TraceIOError


NODE_PATTERN = re.compile(r'^node\d+$')
CPU_PATTERN = re.compile(r'^cpu\d+$')


def copy_pseudo_file(src: Path, dst: Path):
    """
    Copy a kernel-generated file by streaming it.

    Sysfs and tracefs report sizes that do not match their content, so the
    copy reads until EOF instead of trusting stat().

    Raises:
        TraceIOError: If either side fails
    """
    try:
        with open(src, 'rb') as fin, open(dst, 'wb') as fout:
            shutil.copyfileobj(fin, fout)
    except OSError as e:
        raise TraceIOError(f"Failed to copy {src}: {e}", path=dst) from e


def _make_dirs(path: Path):
    try:
        path.mkdir(parents=True, exist_ok=True)
    except OSError as e:
        raise TraceIOError(f"Unable to create directories: {e}", path=path) from e


class ArtifactStager:
    """
    Stages event format and topology descriptors next to the trace data.
    """

    def __init__(self, tracing_root: Union[str, Path], devices_root: Union[str, Path],
                 events: Iterable[str]):
        """
        Initialize the stager.

        Args:
            tracing_root: Root directory of the FTrace filesystem
            devices_root: Root directory of the devices filesystem
            events: Events whose format files are staged
        """
        self.tracing_root = Path(tracing_root)
        self.devices_root = Path(devices_root)
        self.events = list(events)
        self.logger = logging.getLogger(__name__)

    def stage(self, staging_root: Union[str, Path]):
        """
        Populate staging_root with formats, topology and metadata.

        Raises:
            TraceIOError: On the first file that cannot be staged
        """
        staging_root = Path(staging_root)
        _make_dirs(staging_root)

        self.copy_formats(staging_root / 'formats')
        self.copy_topology(staging_root / 'topology')
        self.write_metadata(staging_root)

    def copy_formats(self, out: Path):
        formats_root = self.tracing_root / 'events'

        for event in self.events:
            category, name = event.split(':', 1)
            out_dir = out / category / name
            _make_dirs(out_dir)
            copy_pseudo_file(formats_root / category / name / 'format', out_dir / 'format')

        _make_dirs(out)
        copy_pseudo_file(formats_root / 'header_page', out / 'header_page')
        self.logger.info(f"Staged {len(self.events)} event formats")

    def copy_topology(self, out: Path):
        node_root = self.devices_root / 'system' / 'node'
        try:
            nodes = sorted(p for p in node_root.iterdir() if NODE_PATTERN.match(p.name))
        except OSError as e:
            raise TraceIOError(f"Unable to list NUMA nodes: {e}", path=node_root) from e

        cpu_count = 0
        for node in nodes:
            for cpu_dir, entries in self._cpu_topologies(node):
                out_dir = out / node.name / cpu_dir.name / 'topology'
                _make_dirs(out_dir)
                for entry in entries:
                    copy_pseudo_file(entry, out_dir / entry.name)
                cpu_count += 1

        self.logger.info(f"Staged topology for {cpu_count} CPUs across {len(nodes)} nodes")

    def _cpu_topologies(self, node: Path):
        """List (cpu_dir, topology files) for each cpuN under a node."""
        found = []
        current = node
        try:
            for cpu_dir in sorted(node.iterdir()):
                topology = cpu_dir / 'topology'
                if not CPU_PATTERN.match(cpu_dir.name) or not topology.is_dir():
                    continue
                current = topology
                found.append((cpu_dir, [e for e in sorted(topology.iterdir()) if e.is_file()]))
        except OSError as e:
            raise TraceIOError(f"Unable to read CPU topology: {e}", path=current) from e
        return found

    def write_metadata(self, staging_root: Path):
        path = staging_root / 'metadata.textproto'
        try:
            path.write_text("trace_type: FTRACE\n")
        except OSError as e:
            raise TraceIOError(f"Unable to write metadata: {e}", path=path) from e
