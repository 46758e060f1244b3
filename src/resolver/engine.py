"""Backtracking dependency resolver.

The search keeps an explicit stack of decision points. Each point holds the
immutable ``SearchState`` from before the decision and the candidates not
yet tried, so backtracking is a matter of dropping stack entries and
re-deciding from a stored snapshot; nothing is undone in place.

On a conflict the resolver learns an ``Incompatibility`` and jumps back to
the most recent decision among the packages responsible for it (conflict
directed backjumping). Decision points accumulate the culprits of every
failed alternative, so when a point runs out of candidates the search
continues at the most recent decision that could still change the outcome.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field, replace
from typing import Dict, FrozenSet, Iterable, List, Mapping, Optional, Sequence, Tuple

from constants import PrereleasePolicy, SourceOrigin
from common.logging_utils import extra_context, is_debug_enabled
from errors import PackageNotFound, Unsatisfiable
from registry.base import IndexClient
from registry.cache import CachingIndexClient
from registry.direct import candidate_from_url, url_version
from resolver.models import (
    ROOT,
    Incompatibility,
    PackageCandidate,
    ResolutionGraph,
    ResolvedPackage,
)
from resolver.policy import LockedPin, SourcePolicy, filter_prereleases, order_candidates
from versioning.markers import requires_python_ok, target_environment
from versioning.models import Constraint, Requirement

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class Imposition:
    """A requirement placed on a package name, and who placed it."""
    requester: str  # ROOT or "name version"
    parent: Optional[str]  # requesting package name, None for roots
    requirement: Requirement

    @property
    def term(self) -> Tuple[str, str]:
        return (self.requester, str(self.requirement))


@dataclass(frozen=True)
class SearchState:
    """Snapshot of a partial assignment. Never mutated after construction."""
    assignments: Mapping[str, PackageCandidate] = field(default_factory=dict)
    impositions: Mapping[str, Tuple[Imposition, ...]] = field(default_factory=dict)
    frontier: Tuple[str, ...] = ()
    extras: Mapping[str, FrozenSet[str]] = field(default_factory=dict)
    edges: Mapping[str, Tuple[str, ...]] = field(default_factory=dict)

    def next_unassigned(self) -> Optional[str]:
        for name in self.frontier:
            if name not in self.assignments:
                return name
        return None

    def terms(self, name: str) -> FrozenSet[Tuple[str, str]]:
        return frozenset(i.term for i in self.impositions.get(name, ()))


@dataclass(frozen=True)
class DecisionPoint:
    """A choice made for ``name`` from ``state``; ``remaining`` are untried."""
    state: SearchState
    name: str
    remaining: Tuple[PackageCandidate, ...]
    conflict_set: FrozenSet[str] = frozenset()


@dataclass(frozen=True)
class Conflict:
    package: str
    culprits: FrozenSet[str]
    terms: Tuple[Tuple[str, str], ...] = ()


class Resolver:
    """Turn root requirements into a ``ResolutionGraph`` or raise ``Unsatisfiable``.

    Args:
        index: Source of candidates and metadata. Wrapped in a
            ``CachingIndexClient`` unless it already is one.
        python_version: Target interpreter, used for markers and
            ``requires_python``.
        prerelease_policy: How pre-releases are admitted.
        source_policy: Index versus direct-URL preference.
        locked: Previously locked pins, preferred when still compatible.
    """

    def __init__(
        self,
        index: IndexClient,
        *,
        python_version: str,
        prerelease_policy: PrereleasePolicy = PrereleasePolicy.EXCLUDE,
        source_policy: Optional[SourcePolicy] = None,
        locked: Optional[Mapping[str, LockedPin]] = None,
    ):
        self._index = index if isinstance(index, CachingIndexClient) else CachingIndexClient(index)
        self.python_version = python_version
        self.prerelease_policy = prerelease_policy
        self.source_policy = source_policy or SourcePolicy()
        self.locked = dict(locked or {})
        self._environment = target_environment(python_version)
        self.incompatibilities: List[Incompatibility] = []
        self._last_conflict: Optional[Conflict] = None
        self.decisions = 0

    # -- public ---------------------------------------------------------

    def resolve(self, requirements: Iterable[Requirement]) -> ResolutionGraph:
        roots = tuple(r for r in requirements if r.applies(self._environment))
        self.incompatibilities = []
        self._last_conflict = None
        self.decisions = 0

        state = SearchState()
        for requirement in roots:
            state, conflict = self._impose(state, ROOT, None, requirement)
            if conflict is not None:
                raise self._unsatisfiable(conflict)
        self._index.prefetch(state.frontier)

        stack: List[DecisionPoint] = []
        while True:
            name = state.next_unassigned()
            if name is None:
                graph = self._graph(state, roots)
                logger.info(
                    "Resolved %d packages after %d decisions",
                    len(graph),
                    self.decisions,
                    extra=extra_context(event="resolve", outcome="success", count=len(graph)),
                )
                return graph

            candidates = self._candidates(state, name)
            if not candidates:
                conflict = self._no_candidates(state, name)
                stack = self._absorb(stack, conflict)
            else:
                # Parents that narrowed the pool become culprits once it runs out.
                narrowed_by = frozenset(
                    i.parent for i in state.impositions.get(name, ()) if i.parent is not None and i.parent != name
                )
                stack.append(
                    DecisionPoint(state=state, name=name, remaining=tuple(candidates), conflict_set=narrowed_by)
                )
            state, stack = self._next_alternative(stack)

    # -- search ---------------------------------------------------------

    def _next_alternative(self, stack: List[DecisionPoint]) -> Tuple[SearchState, List[DecisionPoint]]:
        """Try untried candidates from the top of the stack until one sticks."""
        while True:
            top = stack[-1]
            if not top.remaining:
                stack.pop()
                stack = self._absorb(stack, Conflict(top.name, top.conflict_set))
                continue
            candidate = top.remaining[0]
            stack[-1] = replace(top, remaining=top.remaining[1:])
            self.decisions += 1
            if is_debug_enabled(logger):
                logger.debug(
                    "Trying %s",
                    candidate.label,
                    extra=extra_context(event="decide", package=top.name, depth=len(stack)),
                )
            state, conflict = self._assign(top.state, candidate)
            if conflict is None:
                self._index.prefetch(n for n in state.frontier if n not in state.assignments)
                return state, stack
            stack = self._absorb(stack, conflict)

    def _absorb(self, stack: List[DecisionPoint], conflict: Conflict) -> List[DecisionPoint]:
        """Jump back to the latest decision among the conflict's culprits."""
        if conflict.terms:
            self._last_conflict = conflict
            incompatibility = Incompatibility(conflict.package, frozenset(conflict.terms))
            if incompatibility not in self.incompatibilities:
                self.incompatibilities.append(incompatibility)
                logger.debug("Learned incompatibility %s", incompatibility)
        while stack and stack[-1].name not in conflict.culprits:
            stack.pop()
        if not stack:
            raise self._unsatisfiable(self._last_conflict or conflict)
        top = stack[-1]
        stack[-1] = replace(top, conflict_set=top.conflict_set | (conflict.culprits - {top.name}))
        return stack

    def _assign(self, state: SearchState, candidate: PackageCandidate) -> Tuple[SearchState, Optional[Conflict]]:
        """Assign ``candidate`` and impose its dependencies."""
        candidate = self._with_dependencies(candidate)
        name = candidate.name
        assignments = dict(state.assignments)
        assignments[name] = candidate
        state = replace(state, assignments=assignments)

        requester = candidate.label
        for dependency in self._dependencies(candidate, state.extras.get(name, frozenset())):
            state, conflict = self._impose(state, requester, name, dependency)
            if conflict is not None:
                return state, conflict
        return state, None

    def _impose(
        self,
        state: SearchState,
        requester: str,
        parent: Optional[str],
        requirement: Requirement,
    ) -> Tuple[SearchState, Optional[Conflict]]:
        name = requirement.name
        imposition = Imposition(requester, parent, requirement)
        existing = state.impositions.get(name, ())
        if imposition not in existing:
            impositions = dict(state.impositions)
            impositions[name] = existing + (imposition,)
            state = replace(state, impositions=impositions)

        if parent is not None and parent != name:
            targets = state.edges.get(parent, ())
            if name not in targets:
                edges = dict(state.edges)
                edges[parent] = targets + (name,)
                state = replace(state, edges=edges)

        old_extras = state.extras.get(name, frozenset())
        added_extras = frozenset(requirement.extras) - old_extras
        if added_extras:
            extras = dict(state.extras)
            extras[name] = old_extras | added_extras
            state = replace(state, extras=extras)

        assigned = state.assignments.get(name)
        if assigned is None:
            if name not in state.frontier:
                state = replace(state, frontier=state.frontier + (name,))
            return state, self._known_incompatible(state, name)

        # Already decided: check only, never re-expand (this is what makes
        # dependency cycles terminate).
        if not self._candidate_satisfies(assigned, requirement):
            culprits = {name}
            if parent is not None:
                culprits.add(parent)
            return state, Conflict(
                package=name,
                culprits=frozenset(culprits),
                terms=tuple(i.term for i in state.impositions[name]),
            )
        for dependency in self._dependencies(assigned, added_extras, base=False):
            state, conflict = self._impose(state, assigned.label, name, dependency)
            if conflict is not None:
                return state, conflict
        return state, None

    def _known_incompatible(self, state: SearchState, name: str) -> Optional[Conflict]:
        """Fail early when the impositions on ``name`` contain a learned incompatibility."""
        terms = state.terms(name)
        for incompatibility in self.incompatibilities:
            if incompatibility.package == name and incompatibility.terms <= terms:
                culprits = {
                    i.parent for i in state.impositions[name]
                    if i.parent is not None and i.term in incompatibility.terms
                }
                return Conflict(name, frozenset(culprits), tuple(sorted(incompatibility.terms)))
        return None

    def _no_candidates(self, state: SearchState, name: str) -> Conflict:
        impositions = state.impositions.get(name, ())
        culprits = frozenset(i.parent for i in impositions if i.parent is not None)
        return Conflict(name, culprits, tuple(i.term for i in impositions))

    # -- candidates -----------------------------------------------------

    def _candidates(self, state: SearchState, name: str) -> List[PackageCandidate]:
        requirements = [i.requirement for i in state.impositions.get(name, ())]
        constraint = Constraint()
        for requirement in requirements:
            constraint = constraint.merge(requirement.constraint)

        pool: List[PackageCandidate] = []
        if self.source_policy.allow_index:
            pool.extend(self._index.list_versions(name))
        if self.source_policy.allow_direct:
            for url in sorted({r.url for r in requirements if r.url}):
                direct = candidate_from_url(name, url)
                if direct is not None:
                    pool.append(direct)

        pool = [
            c for c in pool
            if all(self._candidate_satisfies(c, r, check_constraint=False) for r in requirements)
            and requires_python_ok(c.requires_python, self.python_version)
        ]
        pool = filter_prereleases(pool, constraint, self.prerelease_policy)
        ordered = order_candidates(pool, self.source_policy, self.locked.get(name))
        if is_debug_enabled(logger):
            logger.debug(
                "Candidates for %s: %s",
                name,
                ", ".join(str(c.version) for c in ordered) or "none",
                extra=extra_context(event="candidates", package=name, count=len(ordered)),
            )
        return ordered

    @staticmethod
    def _candidate_satisfies(
        candidate: PackageCandidate,
        requirement: Requirement,
        check_constraint: bool = True,
    ) -> bool:
        if requirement.url:
            if candidate.source == requirement.url:
                return True
            pinned = url_version(requirement.url)
            if pinned is None or candidate.version != pinned:
                return False
        if not check_constraint:
            return True
        return requirement.constraint.contains(candidate.version)

    def _with_dependencies(self, candidate: PackageCandidate) -> PackageCandidate:
        if candidate.dependencies is not None:
            return candidate
        try:
            dependencies = self._index.fetch_metadata(candidate.name, candidate.version)
        except PackageNotFound:
            if candidate.origin != SourceOrigin.DIRECT:
                raise
            logger.warning("No index metadata for direct source %s; assuming no dependencies", candidate.source)
            dependencies = []
        return candidate.with_dependencies(dependencies)

    def _dependencies(
        self,
        candidate: PackageCandidate,
        extras: Iterable[str],
        base: bool = True,
    ) -> List[Requirement]:
        """Applicable dependencies: the base set and/or the requested extras."""
        result: List[Requirement] = []
        for dependency in candidate.dependencies or ():
            in_base = dependency.applies(self._environment, "")
            if in_base:
                if base:
                    result.append(dependency.without_marker())
                continue
            if any(dependency.applies(self._environment, extra) for extra in sorted(extras)):
                result.append(dependency.without_marker())
        return result

    # -- results --------------------------------------------------------

    def _graph(self, state: SearchState, roots: Sequence[Requirement]) -> ResolutionGraph:
        nodes: Dict[str, ResolvedPackage] = {}
        for name, candidate in state.assignments.items():
            nodes[name] = ResolvedPackage(
                candidate=candidate,
                dependencies=tuple(sorted(state.edges.get(name, ()))),
                extras=tuple(sorted(state.extras.get(name, frozenset()))),
            )
        return ResolutionGraph(nodes, tuple(roots))

    def _unsatisfiable(self, conflict: Conflict) -> Unsatisfiable:
        error = Unsatisfiable(
            conflict.package,
            sorted(conflict.terms),
            incompatibilities=list(self.incompatibilities),
        )
        logger.info(
            "Resolution failed: %s",
            error,
            extra=extra_context(event="resolve", outcome="unsatisfiable", package=conflict.package),
        )
        return error


def resolve(
    requirements: Iterable[Requirement],
    index: IndexClient,
    *,
    python_version: str,
    **options,
) -> ResolutionGraph:
    """Convenience wrapper around ``Resolver(...).resolve(...)``."""
    return Resolver(index, python_version=python_version, **options).resolve(requirements)
