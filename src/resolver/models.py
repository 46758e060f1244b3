"""Data models for package candidates and resolution results."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Iterator, List, Optional, Tuple

from constants import SourceOrigin
from versioning.models import Requirement, Version

ROOT = "<root>"


@dataclass(frozen=True)
class PackageCandidate:
    """A concrete (name, version) offered by a source.

    ``dependencies`` is None until the metadata has been fetched.
    """
    name: str
    version: Version
    source: str
    filename: Optional[str] = None
    digest: Optional[str] = None  # "sha256:<hex>"
    requires_python: Optional[str] = None
    origin: SourceOrigin = SourceOrigin.INDEX
    dependencies: Optional[Tuple[Requirement, ...]] = field(default=None, compare=False, hash=False)

    @property
    def label(self) -> str:
        return f"{self.name} {self.version}"

    def with_dependencies(self, dependencies) -> "PackageCandidate":
        return replace(self, dependencies=tuple(dependencies))


@dataclass(frozen=True)
class Incompatibility:
    """A learned fact: these requirements on ``package`` cannot hold together."""
    package: str
    terms: FrozenSet[Tuple[str, str]]  # (requester, requirement text)

    def __str__(self) -> str:
        rendered = ", ".join(f"{who}: {req}" for who, req in sorted(self.terms))
        return f"{self.package} <- {{{rendered}}}"


@dataclass
class ResolvedPackage:
    """One node of the resolution graph."""
    candidate: PackageCandidate
    dependencies: Tuple[str, ...] = ()
    extras: Tuple[str, ...] = ()

    @property
    def name(self) -> str:
        return self.candidate.name

    @property
    def version(self) -> Version:
        return self.candidate.version


class ResolutionGraph:
    """Chosen versions, one per package name, with depends-on edges."""

    def __init__(self, nodes: Dict[str, ResolvedPackage], roots: Tuple[Requirement, ...] = ()):
        self._nodes = dict(nodes)
        self.roots = tuple(roots)

    def __len__(self) -> int:
        return len(self._nodes)

    def __contains__(self, name: str) -> bool:
        return name in self._nodes

    def __iter__(self) -> Iterator[ResolvedPackage]:
        for name in sorted(self._nodes):
            yield self._nodes[name]

    def __getitem__(self, name: str) -> ResolvedPackage:
        return self._nodes[name]

    def get(self, name: str) -> Optional[ResolvedPackage]:
        return self._nodes.get(name)

    @property
    def names(self) -> List[str]:
        return sorted(self._nodes)

    def versions(self) -> Dict[str, str]:
        return {name: str(node.version) for name, node in sorted(self._nodes.items())}

    def edges(self) -> List[Tuple[str, str]]:
        return [
            (node.name, dep) for node in self for dep in node.dependencies
        ]
