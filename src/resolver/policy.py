"""Candidate filtering and tie-break ordering.

Order of preference, applied after every imposed requirement has filtered
the pool:

1. the version recorded in the previous lockfile, when it still fits;
2. otherwise the highest version;
3. among equal versions offered by both the index and a direct URL, the
   origin named by ``SourcePolicy.prefer``.
"""

from dataclasses import dataclass
from typing import Iterable, List, Optional

from constants import PrereleasePolicy, SourceOrigin
from errors import ConfigError
from resolver.models import PackageCandidate
from versioning.models import Constraint, Version


@dataclass(frozen=True)
class SourcePolicy:
    """Which origins may supply a package and which wins a version tie."""
    allow_index: bool = True
    allow_direct: bool = True
    prefer: SourceOrigin = SourceOrigin.INDEX

    def __post_init__(self):
        if not (self.allow_index or self.allow_direct):
            raise ConfigError("At least one of index or direct sources must be allowed")

    def rank(self, candidate: PackageCandidate) -> int:
        """Lower ranks sort first."""
        return 0 if candidate.origin == self.prefer else 1


@dataclass(frozen=True)
class LockedPin:
    """A version (and optionally source) remembered from a previous lockfile."""
    version: Version
    source: Optional[str] = None


def filter_prereleases(
    candidates: Iterable[PackageCandidate],
    constraint: Constraint,
    policy: PrereleasePolicy,
) -> List[PackageCandidate]:
    """Keep candidates the constraint admits under the pre-release policy."""
    pool = list(candidates)
    if policy == PrereleasePolicy.ALLOW:
        return [c for c in pool if constraint.admits(c.version, allow_prereleases=True)]
    finals = [c for c in pool if constraint.admits(c.version, allow_prereleases=False)]
    if finals or policy == PrereleasePolicy.EXCLUDE:
        return finals
    return [c for c in pool if constraint.admits(c.version, allow_prereleases=True)]


def order_candidates(
    candidates: Iterable[PackageCandidate],
    source_policy: SourcePolicy,
    locked: Optional[LockedPin] = None,
) -> List[PackageCandidate]:
    """Sort candidates into decision order (see module docstring)."""
    pool = sorted(candidates, key=lambda c: (c.filename or "", c.source))
    pool.sort(key=source_policy.rank)
    pool.sort(key=lambda c: c.version, reverse=True)
    if locked is None:
        return pool
    pinned = [c for c in pool if c.version == locked.version]
    pinned.sort(key=lambda c: 0 if locked.source and c.source == locked.source else 1)
    return pinned + [c for c in pool if c.version != locked.version]
