"""Error kinds surfaced by the resolution and installation pipeline.

Every public entry point either returns a value or raises one of these.
Nothing in the core calls ``sys.exit``; mapping errors to exit codes is the
caller's job (see ``constants.ExitCodes``).
"""

from __future__ import annotations

from typing import Iterable, List, Optional, Sequence, Tuple


class PyPackageError(Exception):
    """Base class for all pipeline errors."""


class ConfigError(PyPackageError):
    """Invalid configuration value or unreadable configuration file."""


class InvalidVersion(PyPackageError, ValueError):
    """A version string could not be parsed."""

    def __init__(self, text: str, reason: Optional[str] = None):
        self.text = text
        message = f"Invalid version: {text!r}"
        if reason:
            message = f"{message} ({reason})"
        super().__init__(message)


class InvalidRequirement(PyPackageError, ValueError):
    """A requirement or constraint expression could not be parsed."""


class IndexUnavailable(PyPackageError):
    """The package index could not be reached; the caller may retry."""

    retryable = True


class PackageNotFound(PyPackageError):
    """The package index has no project by this name."""

    def __init__(self, name: str):
        self.name = name
        super().__init__(f"Package not found: {name}")


class Unsatisfiable(PyPackageError):
    """No assignment of versions satisfies every requirement.

    Attributes:
        package: Normalized name of the package whose requirements collided.
        requirements: ``(requester, requirement)`` pairs that cannot hold
            together. The requester is ``"<root>"`` for manifest requirements
            or ``"name version"`` for a dependency declared by a candidate.
    """

    def __init__(
        self,
        package: str,
        requirements: Sequence[Tuple[str, str]],
        incompatibilities: Optional[Iterable[object]] = None,
    ):
        self.package = package
        self.requirements = list(requirements)
        self.incompatibilities = list(incompatibilities or [])
        terms = "; ".join(f"{who} requires {req}" for who, req in self.requirements)
        super().__init__(f"Unable to resolve {package}: {terms}")

    @property
    def packages(self) -> List[str]:
        """Names of every package involved in the conflict, sorted."""
        names = {self.package}
        for requester, _ in self.requirements:
            if requester != "<root>":
                names.add(requester.split(" ", 1)[0])
        return sorted(names)


class CorruptLockfile(PyPackageError):
    """The lockfile is structurally invalid."""


class IntegrityViolation(PyPackageError):
    """Downloaded bytes do not match the expected digest."""

    def __init__(self, name: str, version: str, expected: Optional[str], actual: str):
        self.name = name
        self.version = version
        self.expected = expected
        self.actual = actual
        super().__init__(
            f"Hash mismatch for {name} {version}: expected {expected}, got {actual}"
        )


class AcquisitionFailed(PyPackageError):
    """Downloading an artifact failed after all retries."""

    def __init__(self, name: str, version: str, cause: BaseException):
        self.name = name
        self.version = version
        self.cause = cause
        super().__init__(f"Failed to download {name} {version}: {cause}")


class AcquisitionCancelled(PyPackageError):
    """The download was abandoned because the run was cancelled."""

    def __init__(self, name: str, version: str):
        self.name = name
        self.version = version
        super().__init__(f"Download of {name} {version} cancelled")


class UnsafeArchiveEntry(PyPackageError):
    """An archive entry would be written outside the extraction root."""

    def __init__(self, entry: str, reason: str = "path escapes extraction root"):
        self.entry = entry
        super().__init__(f"Unsafe archive entry {entry!r}: {reason}")


class ArchiveTooLarge(PyPackageError):
    """Decompressed archive size exceeds the configured ceiling."""

    def __init__(self, size: int, limit: int):
        self.size = size
        self.limit = limit
        super().__init__(f"Archive expands to {size} bytes, limit is {limit}")


class MaterializationError(PyPackageError):
    """Staging or committing a package into the library tree failed."""


class EnvironmentLocked(PyPackageError):
    """Another invocation holds the environment lock."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Environment is locked by another process: {path}")


class UnsupportedArchive(PyPackageError):
    """The artifact is neither a zip nor a gzip-compressed tar archive."""

    def __init__(self, path: str):
        self.path = path
        super().__init__(f"Unsupported archive format: {path}")


class CorruptArchive(PyPackageError):
    """The artifact verified against its digest but cannot be read as an archive."""

    def __init__(self, path: str, reason: str):
        self.path = path
        self.reason = reason
        super().__init__(f"Corrupt archive {path}: {reason}")
