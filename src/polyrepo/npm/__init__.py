"""npm wrappers used for linking local builds and installs."""

from .client import BUILD_MARKERS, NpmClient, check_npm, read_manifest

__all__ = ["NpmClient", "BUILD_MARKERS", "check_npm", "read_manifest"]
