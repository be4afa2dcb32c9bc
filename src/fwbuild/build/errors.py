"""Build error taxonomy.

Every failure that aborts a build is a BuildError tagged with one ErrorKind.
The original exception, when there is one, is kept as ``cause`` (and chained
with ``raise ... from``).
"""

from enum import Enum
from typing import List, Optional, Sequence, Tuple


class ErrorKind(Enum):
    """Kind of build failure."""

    CONFIGURATION = "configuration"
    UNSATISFIED_API = "unsatisfied_api"
    FILESYSTEM = "filesystem"
    COMPILE = "compile"
    LINK = "link"
    TEST_FAILURE = "test_failure"


class BuildError(Exception):
    """Base class for errors that abort a build."""

    kind: ErrorKind = ErrorKind.CONFIGURATION

    def __init__(self, message: str, cause: Optional[BaseException] = None):
        super().__init__(message)
        self.message = message
        self.cause = cause

    def __str__(self) -> str:
        return self.message


class ConfigurationError(BuildError):
    """Missing or unresolvable target, BSP, compiler or dependency reference."""

    kind = ErrorKind.CONFIGURATION


class UnsatisfiedApiError(BuildError):
    """One or more required APIs have no provider after resolution.

    Attributes:
        unsatisfied: Every (package full name, API name) pair left unsatisfied
    """

    kind = ErrorKind.UNSATISFIED_API

    def __init__(self, unsatisfied: Sequence[Tuple[str, str]]):
        self.unsatisfied: List[Tuple[str, str]] = list(unsatisfied)
        lines = [f"    * {api}, required by: {pkg}" for pkg, api in self.unsatisfied]
        super().__init__("Unsatisfied APIs detected:\n" + "\n".join(lines))


class FilesystemError(BuildError):
    """A directory could not be accessed or removed."""

    kind = ErrorKind.FILESYSTEM


class CompileError(BuildError):
    """Compilation or archiving failed."""

    kind = ErrorKind.COMPILE


class LinkError(BuildError):
    """Linking failed."""

    kind = ErrorKind.LINK


class TestFailure(BuildError):
    """A test executable exited with a non-zero status.

    Attributes:
        package: Name of the package under test
        output: Combined stdout/stderr of the test executable
    """

    kind = ErrorKind.TEST_FAILURE
    __test__ = False

    def __init__(self, package: str, output: str, cause: Optional[BaseException] = None):
        self.package = package
        self.output = output
        super().__init__(f"Test failure ({package}):\n{output}", cause)
