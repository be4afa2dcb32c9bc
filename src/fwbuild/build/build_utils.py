"""Build utilities for fwbuild.

Filesystem helpers shared by build steps.
"""

import os
import shutil
import stat
import sys
from pathlib import Path
from typing import Any, Callable


def remove_readonly(func: Callable[[str], None], path: str, excinfo: Any) -> None:
    """
    Error handler for shutil.rmtree on Windows.

    On Windows, read-only files cannot be deleted and will cause
    shutil.rmtree to fail. This handler removes the read-only attribute
    and retries the operation once.

    Args:
        func: The function that raised the exception
        path: The path to the file/directory
        excinfo: Exception information (unused)
    """
    del excinfo  # Unused
    os.chmod(path, stat.S_IWRITE)
    func(path)


def safe_rmtree(path: Path) -> None:
    """
    Remove a directory tree, clearing read-only attributes on the way.

    A missing directory is not an error.

    Args:
        path: Path to directory to remove

    Raises:
        OSError: If the directory cannot be removed
    """
    if not path.exists():
        return

    if sys.version_info >= (3, 12):
        shutil.rmtree(path, onexc=remove_readonly)
    else:
        shutil.rmtree(path, onerror=remove_readonly)
