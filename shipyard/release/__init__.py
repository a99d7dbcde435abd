"""Local release build and packaging."""

from shipyard.release.builder import BuildResult, ReleaseBuilder
from shipyard.release.packager import ARCHIVE_NAME, ReleasePackage, ReleasePackager

__all__ = [
    "ARCHIVE_NAME",
    "BuildResult",
    "ReleaseBuilder",
    "ReleasePackage",
    "ReleasePackager",
]
