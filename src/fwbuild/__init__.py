"""fwbuild - firmware build orchestrator for package-based embedded projects."""

__version__ = "0.1.0"
