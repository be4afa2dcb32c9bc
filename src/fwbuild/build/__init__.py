"""Build system for fwbuild.

Resolution, flag aggregation and the compile/archive/link orchestration.
"""

from .build_context import BuildParams
from .build_package import BuildPackage, ResolutionState
from .build_profiles import BuildProfile
from .builder import Builder, BuildState
from .compiler_info import CompilerInfo, merge_all
from .errors import (
    BuildError,
    CompileError,
    ConfigurationError,
    ErrorKind,
    FilesystemError,
    LinkError,
    TestFailure,
    UnsatisfiedApiError,
)
from .feature_filter import FeatureFilter, FilterEntry
from .resolver import DependencyResolver
from .toolchain import GccCompiler, ICompiler, UnitKind

__all__ = [
    "BuildError",
    "BuildPackage",
    "BuildParams",
    "BuildProfile",
    "BuildState",
    "Builder",
    "CompileError",
    "CompilerInfo",
    "ConfigurationError",
    "DependencyResolver",
    "ErrorKind",
    "FeatureFilter",
    "FilesystemError",
    "FilterEntry",
    "GccCompiler",
    "ICompiler",
    "LinkError",
    "ResolutionState",
    "TestFailure",
    "UnitKind",
    "UnsatisfiedApiError",
    "merge_all",
]
