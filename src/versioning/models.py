"""Data models for versions, constraint clauses and requirements."""

from __future__ import annotations

import functools
from dataclasses import dataclass, field
from enum import Enum
from typing import Optional, Tuple

from packaging import version as pkg_version
from packaging.markers import Marker

from errors import InvalidVersion


@functools.total_ordering
class Version:
    """A PEP 440 version with a total order.

    Equality follows release semantics rather than text: ``1.0 == 1.0.0``.
    Wildcard segments (``1.*``) are read as zero.
    """

    __slots__ = ("text", "_parsed")

    def __init__(self, text: str):
        if not isinstance(text, str) or not text.strip():
            raise InvalidVersion(str(text), "empty version")
        self.text = text.strip()
        try:
            self._parsed = pkg_version.Version(self.text.replace("*", "0"))
        except pkg_version.InvalidVersion as exc:
            raise InvalidVersion(self.text) from exc

    @property
    def release(self) -> Tuple[int, ...]:
        return self._parsed.release

    @property
    def major(self) -> int:
        return self._parsed.major

    @property
    def minor(self) -> int:
        return self._parsed.minor

    @property
    def micro(self) -> int:
        return self._parsed.micro

    @property
    def pre(self) -> Optional[Tuple[str, int]]:
        return self._parsed.pre

    @property
    def post(self) -> Optional[int]:
        return self._parsed.post

    @property
    def local(self) -> Optional[str]:
        return self._parsed.local

    @property
    def is_prerelease(self) -> bool:
        return self._parsed.is_prerelease

    @property
    def public(self) -> "Version":
        """This version without its local segment."""
        if self.local is None:
            return self
        return Version(self._parsed.public)

    @property
    def base(self) -> "Version":
        """Release segments only (no pre, post, dev or local parts)."""
        return Version(self._parsed.base_version)

    def __eq__(self, other: object) -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._parsed == other._parsed

    def __lt__(self, other: "Version") -> bool:
        if not isinstance(other, Version):
            return NotImplemented
        return self._parsed < other._parsed

    def __hash__(self) -> int:
        return hash(self._parsed)

    def __str__(self) -> str:
        return str(self._parsed)

    def __repr__(self) -> str:
        return f"Version('{self}')"


class Operator(Enum):
    """Clause operators accepted in constraint expressions."""
    ARBITRARY = "==="
    EQ = "=="
    NE = "!="
    LE = "<="
    GE = ">="
    COMPATIBLE = "~="
    LT = "<"
    GT = ">"
    CARET = "^"
    TILDE = "~"


def _release_prefix(release: Tuple[int, ...], length: int) -> Tuple[int, ...]:
    padded = release + (0,) * max(0, length - len(release))
    return padded[:length]


def _bump(release: Tuple[int, ...], index: int) -> Version:
    bumped = list(release[: index + 1])
    bumped[index] += 1
    return Version(".".join(str(p) for p in bumped))


@dataclass(frozen=True)
class Clause:
    """A single ``(operator, version)`` comparison."""
    operator: Operator
    text: str  # version text as written, without the operator
    wildcard: bool = False

    @property
    def version(self) -> Version:
        text = self.text[:-2] if self.wildcard else self.text
        return Version(text)

    @property
    def is_exact(self) -> bool:
        return self.operator in (Operator.EQ, Operator.ARBITRARY) and not self.wildcard

    def _upper_bound(self) -> Version:
        """Exclusive upper bound for caret, tilde and compatible-release clauses."""
        target = self.version
        release = target.release
        if self.operator == Operator.CARET:
            for index, part in enumerate(release):
                if part != 0:
                    return _bump(release, index)
            return _bump(release, len(release) - 1)
        if self.operator == Operator.TILDE:
            given = len(self.text.split("."))
            return _bump(_release_prefix(release, 2), 0 if given < 2 else 1)
        # ~=X.Y.Z keeps every segment but the last
        return _bump(release, len(release) - 2)

    def matches(self, candidate: Version) -> bool:
        """Evaluate this clause against ``candidate``; pure and total."""
        op = self.operator
        if op == Operator.ARBITRARY:
            return candidate.text.lower() == self.text.lower() or str(candidate) == self.text
        target = self.version
        if op in (Operator.EQ, Operator.NE):
            if self.wildcard:
                length = len(target.release)
                equal = _release_prefix(candidate.release, length) == target.release
            elif target.local is None:
                equal = candidate.public == target
            else:
                equal = candidate == target
            return equal if op == Operator.EQ else not equal
        public = candidate.public
        if op == Operator.LE:
            return public <= target
        if op == Operator.GE:
            return public >= target
        if op == Operator.LT:
            if not public < target:
                return False
            # <V never admits pre-releases of V itself unless V is one
            return target.is_prerelease or not (
                public.is_prerelease and public.base == target.base
            )
        if op == Operator.GT:
            if not public > target:
                return False
            return target.post is not None or not (
                public.post is not None and public.base == target.base
            )
        lower_ok = public >= target
        return lower_ok and public < self._upper_bound()

    def __str__(self) -> str:
        return f"{self.operator.value}{self.text}"


@dataclass(frozen=True)
class Constraint:
    """Conjunction of clauses. An empty constraint admits every version."""
    clauses: Tuple[Clause, ...] = ()

    @property
    def is_any(self) -> bool:
        return not self.clauses

    def contains(self, candidate: Version) -> bool:
        return all(clause.matches(candidate) for clause in self.clauses)

    def names_prerelease(self, candidate: Version) -> bool:
        """True when an exact clause explicitly requests this pre-release."""
        return any(
            clause.is_exact and clause.matches(candidate) for clause in self.clauses
        )

    def admits(self, candidate: Version, allow_prereleases: bool = False) -> bool:
        """``contains`` plus the pre-release gate."""
        if not self.contains(candidate):
            return False
        if candidate.is_prerelease and not allow_prereleases:
            return self.names_prerelease(candidate)
        return True

    def merge(self, other: "Constraint") -> "Constraint":
        seen = list(self.clauses)
        for clause in other.clauses:
            if clause not in seen:
                seen.append(clause)
        return Constraint(tuple(seen))

    def __str__(self) -> str:
        return ",".join(str(c) for c in self.clauses)


@dataclass(frozen=True)
class Requirement:
    """A named package plus constraint, extras, environment gate and optional URL."""
    name: str  # normalized
    constraint: Constraint = field(default_factory=Constraint)
    extras: Tuple[str, ...] = ()
    marker: Optional[Marker] = field(default=None, compare=False, hash=False)
    url: Optional[str] = None
    raw_name: Optional[str] = field(default=None, compare=False, hash=False)
    marker_text: Optional[str] = None

    def applies(self, environment: dict, extra: str = "") -> bool:
        """Evaluate the environment predicate (always True without one)."""
        if self.marker is None:
            return True
        env = dict(environment)
        env["extra"] = extra
        return self.marker.evaluate(env)

    def without_marker(self) -> "Requirement":
        return Requirement(
            name=self.name,
            constraint=self.constraint,
            extras=self.extras,
            url=self.url,
            raw_name=self.raw_name,
        )

    def __str__(self) -> str:
        text = self.name
        if self.extras:
            text += "[" + ",".join(self.extras) + "]"
        if self.url:
            text += f" @ {self.url}"
        elif self.constraint.clauses:
            text += str(self.constraint)
        if self.marker_text:
            text += f"; {self.marker_text}"
        return text
