# ftrace_collector/cli.py - Command-line interface
"""
Command-line interface for the FTrace collector.
"""

import click
import signal
import sys
from pathlib import Path

from ftrace_collector.collector.errors import TraceError
from ftrace_collector.collector.kernel import KernelTraceInterface
from ftrace_collector.collector.session import (
    DEFAULT_DEVICES_ROOT,
    DEFAULT_TRACING_ROOT,
    TraceConfiguration,
    TraceSession,
)
from ftrace_collector.exporters.stdout import StdoutExporter
from ftrace_collector.utils.config import Config
from ftrace_collector.utils.helpers import check_prerequisites, require_root
from ftrace_collector.utils.logger import get_logger, setup_logging


logger = get_logger(__name__)


def _fail(message: str):
    click.echo(message, err=True)
    sys.exit(1)


def _raise_interrupt(signum, frame):
    raise KeyboardInterrupt


@click.group()
@click.option('--log-level', default='INFO', type=click.Choice(['DEBUG', 'INFO', 'WARNING', 'ERROR']))
@click.option('--log-file', type=click.Path(), help='Log file path')
@click.pass_context
def cli(ctx, log_level, log_file):
    """
    FTrace collector

    Records the kernel's per-CPU FTrace ring buffers for a fixed window and
    saves them, with event formats and CPU topology, to trace.tar.gz.
    """
    ctx.ensure_object(dict)

    setup_logging(level=log_level, log_file=log_file, use_colors=sys.stdout.isatty())

    ctx.obj['log_level'] = log_level
    ctx.obj['log_file'] = log_file


@cli.command()
@click.option('--out', type=click.Path(file_okay=False), help='Path to directory to save trace in')
@click.option('--capture_seconds', type=int, help='Number of seconds to record a trace')
@click.option('--buffer_size', type=int, help='Size of the trace buffer in KB. Default 4096')
@click.option('--events', help='Comma separated list of FTrace events to collect. '
                               'Defaults to the scheduling events')
@click.option('--kernel_trace_root', help='Path to the root directory of the Ftrace filesystem')
@click.option('--kernel_devices_root', help='Path to the root directory of the devices filesystem')
@click.option('--config', type=click.Path(exists=True, dir_okay=False), help='YAML configuration file')
@click.option('--save_config', type=click.Path(dir_okay=False),
              help='Write the effective configuration to this YAML file before tracing')
@click.option('--summary/--no-summary', default=True, help='Print a capture summary when done')
@click.pass_context
def trace(ctx, out, capture_seconds, buffer_size, events, kernel_trace_root,
          kernel_devices_root, config, save_config, summary):
    """
    Capture a trace and save it to OUT/trace.tar.gz.

    Example:
        ftrace-collector trace --out /tmp/trace --capture_seconds 10
        ftrace-collector trace --out /tmp/trace --capture_seconds 5 --events sched:sched_switch
    """
    try:
        require_root()
    except TraceError as e:
        _fail(str(e))

    if not out:
        _fail("--out is required.")
    if capture_seconds is None or capture_seconds <= 0:
        _fail("--capture_seconds must be greater than zero")

    try:
        cfg = Config(config)
    except ValueError as e:
        _fail(str(e))

    # Flags override the config file
    if buffer_size is not None:
        cfg.set('tracer.buffer_size_kb', buffer_size)
    if events:
        cfg.set('tracer.events', [e.strip() for e in events.split(',') if e.strip()])
    if kernel_trace_root:
        cfg.set('kernel.trace_root', kernel_trace_root)
    if kernel_devices_root:
        cfg.set('kernel.devices_root', kernel_devices_root)

    buffer_size_kb = cfg.get('tracer.buffer_size_kb')
    if not isinstance(buffer_size_kb, int) or buffer_size_kb <= 0:
        _fail("--buffer_size must be greater than zero")

    for key in ('capture.poll_interval_ms', 'capture.drain_workers'):
        value = cfg.get(key)
        if not isinstance(value, int) or isinstance(value, bool) or value <= 0:
            _fail(f"{key} must be a positive integer, got {value!r}")

    for option, key in (('--kernel_trace_root', 'kernel.trace_root'),
                        ('--kernel_devices_root', 'kernel.devices_root')):
        if not Path(cfg.get(key)).exists():
            _fail(f"Path provided to {option}, {cfg.get(key)} does not exist")

    try:
        trace_config = TraceConfiguration(
            tracing_root=cfg.get('kernel.trace_root'),
            devices_root=cfg.get('kernel.devices_root'),
            output_dir=out,
            buffer_size_kb=buffer_size_kb,
            events=tuple(cfg.get('tracer.events', [])),
        )
        session = TraceSession(
            trace_config,
            poll_interval=cfg.get('capture.poll_interval_ms') / 1000.0,
            drain_workers=cfg.get('capture.drain_workers'),
        )
    except ValueError as e:
        _fail(str(e))

    if save_config:
        try:
            cfg.save_to_file(save_config)
        except OSError as e:
            _fail(f"Unable to save configuration to {save_config}: {e}")

    previous_handler = signal.signal(signal.SIGTERM, _raise_interrupt)
    try:
        with session:
            capture_summary = session.trace(capture_seconds)
    except TraceError as e:
        logger.debug("Trace failed", exc_info=True)
        _fail(str(e))
    except KeyboardInterrupt:
        _fail("Interrupted, tracing stopped")
    finally:
        signal.signal(signal.SIGTERM, previous_handler)

    if summary:
        StdoutExporter().print_summary(capture_summary)


@cli.command()
@click.option('--kernel_trace_root', default=DEFAULT_TRACING_ROOT,
              help='Path to the root directory of the Ftrace filesystem')
@click.option('--kernel_devices_root', default=DEFAULT_DEVICES_ROOT,
              help='Path to the root directory of the devices filesystem')
def check(kernel_trace_root, kernel_devices_root):
    """
    Check system prerequisites for collecting a trace.

    Verifies:
    - Root privileges
    - FTrace filesystem and control files
    - Devices filesystem
    """
    passed = check_prerequisites(kernel_trace_root, kernel_devices_root)

    if passed:
        kernel = KernelTraceInterface(kernel_trace_root)
        try:
            click.echo(f"  tracing_on = {kernel.read_control(kernel.TRACING_ON)}")
        except TraceError as e:
            click.echo(f"  ✗ {e}")
            passed = False

    if passed:
        click.echo("\n✓ All prerequisites met!")
        sys.exit(0)
    else:
        click.echo("\n✗ Some prerequisites are missing")
        sys.exit(1)


def main():
    """Console entry point; usage errors exit with status 1."""
    try:
        cli.main(obj={}, standalone_mode=False)
    except click.exceptions.Abort:
        _fail("Aborted!")
    except click.ClickException as e:
        e.show()
        sys.exit(1)


if __name__ == '__main__':
    main()
