"""Lockfile data model and validation."""

from __future__ import annotations

import hashlib
from dataclasses import dataclass, field
from typing import Dict, Iterable, List, Optional, Sequence, Tuple

from constants import Constants
from resolver.models import ResolutionGraph
from resolver.policy import LockedPin
from versioning.markers import target_environment
from versioning.models import Requirement, Version


def requirements_hash(requirements: Iterable[Requirement], python_version: str) -> str:
    """sha256 over the sorted root requirements and the interpreter version."""
    lines = sorted(str(r) for r in requirements)
    lines.append(f"python={python_version}")
    return "sha256:" + hashlib.sha256("\n".join(lines).encode("utf-8")).hexdigest()


@dataclass(frozen=True)
class LockEntry:
    """One pinned package."""
    name: str
    version: str
    source: str
    digest: Optional[str] = None
    filename: Optional[str] = None
    dependencies: Tuple[str, ...] = ()
    extras: Tuple[str, ...] = ()

    @property
    def parsed_version(self) -> Version:
        return Version(self.version)

    @property
    def label(self) -> str:
        return f"{self.name} {self.version}"


@dataclass(frozen=True)
class Lockfile:
    """Pinned packages plus the inputs they were resolved for.

    Entries are kept sorted by name so equal resolutions serialize to
    identical bytes.
    """
    python_version: str
    requirements_hash: str
    entries: Tuple[LockEntry, ...] = ()
    version: int = Constants.LOCKFILE_VERSION
    _index: Dict[str, LockEntry] = field(default=None, init=False, repr=False, compare=False)  # type: ignore[assignment]

    def __post_init__(self):
        ordered = tuple(sorted(self.entries, key=lambda e: e.name))
        object.__setattr__(self, "entries", ordered)
        object.__setattr__(self, "_index", {e.name: e for e in ordered})

    @classmethod
    def from_graph(
        cls,
        graph: ResolutionGraph,
        requirements: Sequence[Requirement],
        python_version: str,
    ) -> "Lockfile":
        entries = [
            LockEntry(
                name=node.name,
                version=str(node.version),
                source=node.candidate.source,
                digest=node.candidate.digest,
                filename=node.candidate.filename,
                dependencies=tuple(node.dependencies),
                extras=tuple(node.extras),
            )
            for node in graph
        ]
        return cls(
            python_version=python_version,
            requirements_hash=requirements_hash(requirements, python_version),
            entries=tuple(entries),
        )

    def __len__(self) -> int:
        return len(self.entries)

    def __contains__(self, name: str) -> bool:
        return name in self._index

    def get(self, name: str) -> Optional[LockEntry]:
        return self._index.get(name)

    def locked_pins(self) -> Dict[str, LockedPin]:
        """Preferences to feed back into the resolver on the next run."""
        return {e.name: LockedPin(e.parsed_version, e.source) for e in self.entries}

    def problems(self, requirements: Sequence[Requirement], python_version: str) -> List[str]:
        """Reasons this lockfile does not describe ``requirements``; empty when valid."""
        found: List[str] = []
        if self.python_version != python_version:
            found.append(f"locked for Python {self.python_version}, not {python_version}")
        if self.requirements_hash != requirements_hash(requirements, python_version):
            found.append("requirements changed since the lockfile was written")

        environment = target_environment(python_version)
        for requirement in requirements:
            if not requirement.applies(environment):
                continue
            entry = self.get(requirement.name)
            if entry is None:
                found.append(f"{requirement.name} is not locked")
            elif requirement.url and entry.source != requirement.url:
                found.append(f"{requirement.name} is locked from {entry.source}, not {requirement.url}")
            elif not requirement.constraint.contains(entry.parsed_version):
                found.append(f"locked {entry.label} does not satisfy {requirement}")
        for entry in self.entries:
            for dependency in entry.dependencies:
                if dependency not in self._index:
                    found.append(f"{entry.label} depends on unlocked {dependency}")
        return found

    def is_valid_for(self, requirements: Sequence[Requirement], python_version: str) -> bool:
        return not self.problems(requirements, python_version)
