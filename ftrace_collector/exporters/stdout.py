# ftrace_collector/exporters/stdout.py - Console output exporter
"""
Prints a capture summary to stdout in human-readable format.
"""

from colorama import Fore, Style, init
import logging

from ftrace_collector.utils.helpers import format_bytes


# Initialize colorama
init(autoreset=True)


class StdoutExporter:
    """
    Prints capture summaries with colored output.
    """

    def __init__(self, use_colors: bool = True):
        """
        Initialize the stdout exporter.

        Args:
            use_colors: Whether to use colored output
        """
        self.use_colors = use_colors
        self.logger = logging.getLogger(__name__)

    def _c(self, color: str) -> str:
        return color if self.use_colors else ''

    def print_summary(self, summary):
        """
        Print a CaptureSummary.

        Args:
            summary: Summary returned by TraceSession.trace()
        """
        cyan, yellow, reset = self._c(Fore.CYAN), self._c(Fore.YELLOW), self._c(Style.RESET_ALL)

        print(f"\n{cyan}{'='*60}{reset}")
        print(f"{cyan}Capture Summary{reset}")
        print(f"{cyan}{'='*60}{reset}\n")

        print(f"{yellow}Events:{reset} {', '.join(summary.events)}")
        print(f"  Requested: {summary.capture_seconds}s")
        print(f"  Elapsed:   {summary.elapsed_seconds:.2f}s ({summary.ticks} drain passes)")
        print(f"  CPUs:      {summary.cpu_count}")
        print(f"  Total:     {format_bytes(summary.total_bytes)}")

        print(f"\n{'CPU':<8} {'Bytes':>14}")
        print(f"{'-'*23}")
        for cpu, count in sorted(summary.bytes_by_cpu.items()):
            color = self._c(Fore.RED) if count == 0 else ''
            print(f"{color}cpu{cpu:<5} {count:>14}{reset}")

        if summary.archive_path is not None:
            print(f"\n{self._c(Fore.GREEN)}Archive: {summary.archive_path}{reset}")

        print()
