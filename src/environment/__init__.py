"""The ``__pypackages__`` library tree and its lock."""

from .layout import InstalledPackageRecord, LibraryLayout, major_minor
from .locking import EnvironmentLock
from .materializer import Materializer, PackageState, StagedPackage

__all__ = [
    "EnvironmentLock",
    "InstalledPackageRecord",
    "LibraryLayout",
    "Materializer",
    "PackageState",
    "StagedPackage",
    "major_minor",
]
