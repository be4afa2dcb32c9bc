"""Compiler Flag Aggregation.

This module defines CompilerInfo, the mergeable bag of compiler settings.

Design:
    - Additive categories (cflags, lflags, aflags, includes, ignore patterns)
      accumulate on merge, without deduplication
    - Overwritable categories (linker_script) are replaced by a later
      non-empty value
    - Merging is explicit: callers decide the order, and therefore the
      priority, in which packages contribute
"""

from dataclasses import dataclass, field, fields
from pathlib import Path
from typing import List, Optional

ADDITIVE_FIELDS = ("cflags", "lflags", "aflags", "includes", "ignore_files", "ignore_dirs")
OVERWRITABLE_FIELDS = ("linker_script",)


@dataclass
class CompilerInfo:
    """Aggregated compiler settings.

    Attributes:
        cflags: C compiler flags, preprocessor defines included
        lflags: Linker flags
        aflags: Assembler flags
        includes: Include directories
        ignore_files: Regular expressions of source file names to skip
        ignore_dirs: Regular expressions of directory names to skip
        linker_script: Linker script path (overwritable)
    """

    cflags: List[str] = field(default_factory=list)
    lflags: List[str] = field(default_factory=list)
    aflags: List[str] = field(default_factory=list)
    includes: List[Path] = field(default_factory=list)
    ignore_files: List[str] = field(default_factory=list)
    ignore_dirs: List[str] = field(default_factory=list)
    linker_script: Optional[Path] = None

    def add_compiler_info(self, other: "CompilerInfo") -> "CompilerInfo":
        """Merge another info on top of this one, in place.

        Args:
            other: Info contributed by a higher-priority source

        Returns:
            self, to allow chaining
        """
        for name in ADDITIVE_FIELDS:
            getattr(self, name).extend(getattr(other, name))
        for name in OVERWRITABLE_FIELDS:
            value = getattr(other, name)
            if value:
                setattr(self, name, value)
        return self

    def add_define(self, define: str) -> None:
        """Append a ``-D`` preprocessor define."""
        self.cflags.append(f"-D{define}")

    def copy(self) -> "CompilerInfo":
        return CompilerInfo(**{f.name: _copy_value(getattr(self, f.name)) for f in fields(self)})


def _copy_value(value):  # type: ignore[no-untyped-def]
    if isinstance(value, list):
        return list(value)
    return value


def merge_all(*infos: Optional[CompilerInfo]) -> CompilerInfo:
    """Merge infos in order into a new CompilerInfo, skipping None."""
    result = CompilerInfo()
    for info in infos:
        if info is not None:
            result.add_compiler_info(info)
    return result
