"""Subprocess utilities for platform-safe process execution.

This module provides wrappers around subprocess module that automatically
apply platform-specific flags to prevent console window flashing on Windows,
and a timeout wrapper that tears down the whole process tree when an external
tool hangs.
"""

import logging
import subprocess
import sys
from pathlib import Path
from typing import Any, Optional, Sequence, Union

import psutil

logger = logging.getLogger(__name__)


class ToolTimeoutError(Exception):
    """Raised when an external tool exceeds its time budget."""

    def __init__(self, cmd: Sequence[str], timeout: float, output: str = ""):
        self.cmd = list(cmd)
        self.timeout = timeout
        self.output = output
        super().__init__(f"Command timed out after {timeout:g}s: {' '.join(self.cmd)}")


def get_subprocess_creation_flags() -> int:
    """Get platform-specific subprocess creation flags.

    Returns:
        - Windows: subprocess.CREATE_NO_WINDOW (prevents console window)
        - Other platforms: 0 (no special flags)
    """
    if sys.platform == "win32":
        return subprocess.CREATE_NO_WINDOW
    return 0


def _apply_platform_defaults(kwargs: dict[str, Any]) -> None:
    default_flags = get_subprocess_creation_flags()

    if "creationflags" in kwargs:
        kwargs["creationflags"] = kwargs["creationflags"] | default_flags
    elif default_flags:
        kwargs["creationflags"] = default_flags

    # Auto-redirect stdin to prevent console input handle inheritance
    if "stdin" not in kwargs:
        kwargs["stdin"] = subprocess.DEVNULL


def safe_run(cmd: list[str], **kwargs: Any) -> subprocess.CompletedProcess:
    """Execute subprocess.run with platform-specific flags.

    Automatically applies:
    - CREATE_NO_WINDOW on Windows (prevents console window)
    - stdin=DEVNULL (prevents console input handle inheritance)

    Args:
        cmd: Command and arguments (same as subprocess.run)
        **kwargs: Additional arguments passed to subprocess.run

    Returns:
        CompletedProcess result from subprocess.run

    Note:
        - If 'creationflags' is explicitly provided in kwargs,
          it will be OR'd with platform defaults to preserve custom flags.
        - If 'stdin' is explicitly provided in kwargs, it will be used as-is.
          Otherwise, stdin is automatically redirected to subprocess.DEVNULL.
    """
    _apply_platform_defaults(kwargs)
    return subprocess.run(cmd, **kwargs)


def safe_popen(cmd: list[str], **kwargs: Any) -> subprocess.Popen:
    """Execute subprocess.Popen with platform-specific flags.

    Similar to safe_run() but for Popen cases where you need
    the process handle for long-running operations.

    Args:
        cmd: Command and arguments (same as subprocess.Popen)
        **kwargs: Additional arguments passed to subprocess.Popen

    Returns:
        Popen process handle
    """
    _apply_platform_defaults(kwargs)
    return subprocess.Popen(cmd, **kwargs)


def kill_process_tree(pid: int, timeout: float = 3.0) -> None:
    """Kill a process and every descendant it spawned.

    Args:
        pid: Root process id
        timeout: Seconds to wait for the processes to exit
    """
    try:
        root = psutil.Process(pid)
    except psutil.NoSuchProcess:
        return

    processes = root.children(recursive=True)
    processes.append(root)
    for proc in processes:
        try:
            proc.kill()
        except psutil.NoSuchProcess:
            continue

    _gone, alive = psutil.wait_procs(processes, timeout=timeout)
    for proc in alive:
        logger.warning(f"Process {proc.pid} survived kill")


def run_with_timeout(
    cmd: Sequence[Union[str, Path]],
    timeout: Optional[float],
    cwd: Optional[Path] = None,
) -> subprocess.CompletedProcess:
    """Run a command to completion, capturing combined stdout/stderr as text.

    Unlike subprocess.run(timeout=...), expiry kills the whole process tree
    (compiler drivers spawn cc1/as/collect2 children).

    Args:
        cmd: Command and arguments
        timeout: Seconds before the process tree is killed (None waits forever)
        cwd: Working directory for the child process only

    Returns:
        CompletedProcess with stdout holding the combined output

    Raises:
        ToolTimeoutError: If the command exceeds the timeout
    """
    args = [str(part) for part in cmd]
    logger.debug(f"Running: {' '.join(args)}")

    proc = safe_popen(
        args,
        cwd=str(cwd) if cwd is not None else None,
        stdout=subprocess.PIPE,
        stderr=subprocess.STDOUT,
        text=True,
    )
    try:
        output, _ = proc.communicate(timeout=timeout)
    except subprocess.TimeoutExpired:
        kill_process_tree(proc.pid)
        output, _ = proc.communicate()
        raise ToolTimeoutError(args, timeout or 0.0, output or "")
    except KeyboardInterrupt:
        kill_process_tree(proc.pid)
        raise

    return subprocess.CompletedProcess(args, proc.returncode, output or "", "")
