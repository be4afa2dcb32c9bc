"""Package model for fwbuild.

Local packages, the project registry, targets and board support packages.
"""

from .package import LocalPackage, PackageError, get_list_features, get_string_features
from .project import Project
from .target import BspPackage, Target

__all__ = [
    "BspPackage",
    "LocalPackage",
    "PackageError",
    "Project",
    "Target",
    "get_list_features",
    "get_string_features",
]
