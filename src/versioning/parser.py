"""Parsing utilities for versions, constraint expressions and requirements."""

import re
from typing import Optional, Union

from packaging.markers import InvalidMarker, Marker

from errors import InvalidRequirement, InvalidVersion
from .models import Clause, Constraint, Operator, Requirement, Version

_NAME = r"[A-Za-z0-9](?:[A-Za-z0-9._-]*[A-Za-z0-9])?"
_REQUIREMENT_RE = re.compile(
    rf"^\s*(?P<name>{_NAME})\s*(?:\[(?P<extras>[^\]]*)\])?\s*(?P<rest>.*)$"
)
_PYPROJECT_SPEC_RE = re.compile(r"""^=\s*["'](?P<spec>.*)["']\s*$""")
_CLAUSE_RE = re.compile(r"^(?P<op>===|==|!=|<=|>=|~=|<|>|\^|~)?\s*(?P<version>.+)$")
_URL_MARKER_SPLIT = re.compile(r"\s+;\s*|;\s+")
_SEPARATORS = re.compile(r"[-_.]+")


def normalize_name(name: str) -> str:
    """Normalize a package name: case-insensitive, separator runs collapsed to ``-``."""
    return _SEPARATORS.sub("-", name.strip()).lower()


def parse_version(text: str) -> Version:
    """Parse a version string; raises ``InvalidVersion``."""
    return Version(text)


def parse_clause(text: str) -> Optional[Clause]:
    """Parse one comparison clause. Returns None for the match-anything ``*``."""
    text = text.strip().replace(" ", "")
    if text in ("", "*"):
        return None
    match = _CLAUSE_RE.match(text)
    if not match:
        raise InvalidRequirement(f"Problem parsing constraint: {text!r}")
    operator = Operator(match.group("op")) if match.group("op") else Operator.EQ
    version_text = match.group("version")

    if operator == Operator.ARBITRARY:
        return Clause(operator, version_text)

    wildcard = version_text.endswith(".*")
    if wildcard and operator not in (Operator.EQ, Operator.NE):
        raise InvalidRequirement(f"Wildcard only allowed with == or !=: {text!r}")
    clause = Clause(operator, version_text, wildcard)
    try:
        parsed = clause.version
    except InvalidVersion as exc:
        raise InvalidRequirement(f"Problem parsing constraint {text!r}: {exc}") from exc
    if operator == Operator.COMPATIBLE and len(parsed.release) < 2:
        raise InvalidRequirement(f"~= needs at least two release segments: {text!r}")
    return clause


def parse_constraint(text: Optional[str]) -> Constraint:
    """Parse a comma-separated conjunction of clauses, e.g. ``>=1.2,<2.0``."""
    if text is None:
        return Constraint()
    clauses = []
    for part in text.split(","):
        clause = parse_clause(part)
        if clause is not None and clause not in clauses:
            clauses.append(clause)
    return Constraint(tuple(clauses))


def _parse_marker(text: str) -> Optional[Marker]:
    text = text.strip()
    if not text:
        return None
    try:
        return Marker(text)
    except InvalidMarker as exc:
        raise InvalidRequirement(f"Invalid environment marker {text!r}: {exc}") from exc


def parse_requirement(text: str) -> Requirement:
    """Parse a requirement string.

    Accepted forms::

        requests
        requests[socks,security] (>=2.0,<3) ; python_version >= "3.8"
        requests>=2.0
        requests = "^2.0"            (pyproject table form)
        requests @ https://host/requests-2.0-py3-none-any.whl#sha256=...
    """
    if not isinstance(text, str) or not text.strip():
        raise InvalidRequirement("Empty requirement")
    match = _REQUIREMENT_RE.match(text)
    if not match:
        raise InvalidRequirement(f"Problem parsing version requirement: {text!r}")

    raw_name = match.group("name")
    extras_text = match.group("extras") or ""
    extras = tuple(sorted({normalize_name(e) for e in extras_text.split(",") if e.strip()}))
    rest = match.group("rest").strip()

    url = None
    marker_text = ""
    spec_text = ""
    if rest.startswith("@"):
        parts = _URL_MARKER_SPLIT.split(rest[1:].strip(), maxsplit=1)
        url = parts[0].strip()
        marker_text = parts[1] if len(parts) > 1 else ""
        if not url:
            raise InvalidRequirement(f"Missing URL in direct reference: {text!r}")
    else:
        spec_text, _, marker_text = rest.partition(";")
        spec_text = spec_text.strip()
        pyproject = _PYPROJECT_SPEC_RE.match(spec_text)
        if pyproject:
            spec_text = pyproject.group("spec")
        if spec_text.startswith("(") and spec_text.endswith(")"):
            spec_text = spec_text[1:-1]

    marker = _parse_marker(marker_text)
    return Requirement(
        name=normalize_name(raw_name),
        constraint=parse_constraint(spec_text),
        extras=extras,
        marker=marker,
        url=url,
        raw_name=raw_name,
        marker_text=str(marker) if marker is not None else None,
    )


def satisfies(
    version: Union[str, Version],
    constraint: Union[str, Constraint],
    allow_prereleases: Optional[bool] = None,
) -> bool:
    """Return True when ``version`` satisfies every clause of ``constraint``.

    Without ``allow_prereleases`` no pre-release gate is applied; passing a
    bool applies the same gate candidate selection uses.
    """
    if isinstance(version, str):
        version = parse_version(version)
    if isinstance(constraint, str):
        constraint = parse_constraint(constraint)
    if allow_prereleases is None:
        return constraint.contains(version)
    return constraint.admits(version, allow_prereleases=allow_prereleases)
