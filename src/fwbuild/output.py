"""
Centralized logging and output module for fwbuild.

This module provides timestamped output from program launch to help audit
where time is spent during builds. All output is prefixed with elapsed time
in MM:SS.cc format (minutes:seconds.centiseconds).

Every message carries a verbosity level. A message is printed when its level
is less than or equal to the current verbosity:

    SILENT   nothing but errors
    QUIET    warnings and results
    DEFAULT  normal progress
    VERBOSE  per-directory and per-file detail

Example output:
    00:00.12 Building target targets/blinky...
    00:00.15 [1/4] Resolving packages...
    00:01.23       Compiling libs/os
    00:02.67 WARNING: API conflict: console (libs/console/full <-> libs/console/stub)

Usage:
    from fwbuild.output import Verbosity, status_message, log_detail, set_verbosity

    set_verbosity(Verbosity.VERBOSE)
    status_message(Verbosity.DEFAULT, "Linking app.elf")
    log_detail("Archive: libs/os/os.a", verbose_only=True)
"""

import sys
import time
from enum import IntEnum
from types import TracebackType
from typing import Iterable, Optional, Sequence, TextIO

from rich.console import Console
from rich.table import Table


class Verbosity(IntEnum):
    """Status message verbosity levels."""

    SILENT = 0
    QUIET = 1
    DEFAULT = 2
    VERBOSE = 3

    def __str__(self) -> str:
        return self.name.lower()


# Global state for the timer
_start_time: Optional[float] = None
_output_stream: Optional[TextIO] = None  # None writes to the current sys.stdout
_verbosity: Verbosity = Verbosity.DEFAULT


def init_timer(output_stream: Optional[TextIO] = None) -> None:
    """
    Initialize the program timer.

    Call this at program startup to set the reference time for all timestamps.
    If not called explicitly, it will be called automatically on first log.

    Args:
        output_stream: Optional output stream (defaults to sys.stdout)
    """
    global _start_time, _output_stream
    _start_time = time.time()
    if output_stream is not None:
        _output_stream = output_stream


def set_verbosity(verbosity: Verbosity) -> None:
    """
    Set the verbosity level for status output.

    Args:
        verbosity: Highest message level that still gets printed
    """
    global _verbosity
    _verbosity = Verbosity(verbosity)


def get_elapsed() -> float:
    """
    Get elapsed time since timer initialization.

    Returns:
        Elapsed time in seconds
    """
    global _start_time
    if _start_time is None:
        init_timer()
    return time.time() - _start_time  # type: ignore


def format_timestamp() -> str:
    """
    Format the current elapsed time as MM:SS.cc.

    Returns:
        Formatted timestamp string
    """
    elapsed = get_elapsed()
    minutes = int(elapsed // 60)
    seconds = elapsed % 60
    return f"{minutes:02d}:{seconds:05.2f}"


def _print(message: str, end: str = "\n") -> None:
    """
    Internal print function with timestamp.

    Args:
        message: Message to print
        end: End character (default newline)
    """
    timestamp = format_timestamp()
    line = f"{timestamp} {message}{end}"
    stream = _output_stream if _output_stream is not None else sys.stdout
    stream.write(line)
    stream.flush()


def _enabled(level: Verbosity) -> bool:
    return level <= _verbosity


def status_message(level: Verbosity, message: str) -> None:
    """
    Print a status message if the current verbosity allows it.

    Args:
        level: Verbosity level of the message
        message: Message to print
    """
    if _enabled(level):
        _print(message.rstrip("\n"))


def log(message: str, verbose_only: bool = False) -> None:
    """
    Log a message with timestamp.

    Args:
        message: Message to log
        verbose_only: If True, only print at VERBOSE level
    """
    status_message(Verbosity.VERBOSE if verbose_only else Verbosity.DEFAULT, message)


def log_phase(phase: int, total: int, message: str, verbose_only: bool = False) -> None:
    """
    Log a build phase message.

    Format: [N/M] message

    Args:
        phase: Current phase number
        total: Total number of phases
        message: Phase description
        verbose_only: If True, only print at VERBOSE level
    """
    log(f"[{phase}/{total}] {message}", verbose_only)


def log_detail(message: str, indent: int = 6, verbose_only: bool = False) -> None:
    """
    Log a detail message (indented).

    Args:
        message: Detail message
        indent: Number of spaces to indent (default 6)
        verbose_only: If True, only print at VERBOSE level
    """
    log(f"{' ' * indent}{message}", verbose_only)


def log_file(source_type: str, filename: str, cached: bool = False, verbose_only: bool = True) -> None:
    """
    Log a file compilation message.

    Format: [source_type] filename (cached)

    Args:
        source_type: Type of source (e.g., 'c', 'asm', 'archive')
        filename: Name of the file
        cached: If True, append "(cached)" to message
        verbose_only: If True, only print at VERBOSE level
    """
    suffix = " (cached)" if cached else ""
    log_detail(f"[{source_type}] {filename}{suffix}", verbose_only=verbose_only)


def log_error(message: str) -> None:
    """
    Log an error message.

    Errors are printed at every verbosity level, SILENT included.

    Args:
        message: Error message
    """
    _print(f"ERROR: {message}")


def log_warning(message: str) -> None:
    """
    Log a warning message.

    Args:
        message: Warning message
    """
    status_message(Verbosity.QUIET, f"WARNING: {message}")


def log_success(message: str) -> None:
    """
    Log a success message.

    Args:
        message: Success message
    """
    status_message(Verbosity.QUIET, message)


def log_dependency_table(rows: Iterable[Sequence[str]], title: str = "Resolved packages") -> None:
    """
    Render the resolved package set as a table at VERBOSE level.

    Args:
        rows: (package, dependencies, provided APIs, required APIs) tuples
        title: Table title
    """
    if not _enabled(Verbosity.VERBOSE):
        return

    table = Table(title=title, show_lines=False)
    table.add_column("Package", style="bold")
    table.add_column("Deps")
    table.add_column("APIs")
    table.add_column("Req APIs")
    for row in rows:
        table.add_row(*row)

    console = Console(file=_output_stream or sys.stdout, highlight=False, soft_wrap=True)
    console.print(table)


class TimedLogger:
    """
    Context manager for logging with elapsed time tracking.

    Usage:
        with TimedLogger("Compiling packages", phase=(2, 4)) as logger:
            # Do compilation
            logger.detail("Compiled 10 packages")
        # Automatically logs completion time
    """

    def __init__(self, operation: str, phase: Optional[tuple[int, int]] = None, verbose_only: bool = False):
        """
        Initialize timed logger.

        Args:
            operation: Description of the operation
            phase: Optional (current, total) phase numbers
            verbose_only: If True, only print at VERBOSE level
        """
        self.operation = operation
        self.phase = phase
        self.verbose_only = verbose_only
        self.start_time = 0.0

    def __enter__(self) -> "TimedLogger":
        self.start_time = time.time()
        if self.phase:
            log_phase(self.phase[0], self.phase[1], f"{self.operation}...", self.verbose_only)
        else:
            log(f"{self.operation}...", self.verbose_only)
        return self

    def __exit__(
        self,
        exc_type: Optional[type[BaseException]],
        exc_val: Optional[BaseException],
        exc_tb: Optional[TracebackType],
    ) -> None:
        del exc_val, exc_tb  # Unused
        elapsed = time.time() - self.start_time
        if exc_type is None:
            log_detail(f"Done ({elapsed:.2f}s)", verbose_only=self.verbose_only)
        return None

    def detail(self, message: str) -> None:
        """Log a detail message within this operation."""
        log_detail(message, verbose_only=self.verbose_only)
