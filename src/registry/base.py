"""Abstract package index client."""

from abc import ABC, abstractmethod
from typing import Iterable, List

from resolver.models import PackageCandidate
from versioning.models import Requirement, Version


class IndexClient(ABC):
    """Capability to query available versions and metadata for a package name.

    Implementations may block on network I/O and raise ``IndexUnavailable``
    (transient) or ``PackageNotFound`` (terminal for that name).
    """

    @abstractmethod
    def list_versions(self, name: str) -> List[PackageCandidate]:
        """Return every candidate for ``name``, newest first."""

    @abstractmethod
    def fetch_metadata(self, name: str, version: Version) -> List[Requirement]:
        """Return the declared dependencies of one release, markers included."""

    def prefetch(self, names: Iterable[str]) -> None:
        """Warm caches for ``names``; the base implementation does nothing."""
