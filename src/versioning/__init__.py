"""Version and constraint model."""

from .models import Clause, Constraint, Operator, Requirement, Version
from .parser import (
    normalize_name,
    parse_clause,
    parse_constraint,
    parse_requirement,
    parse_version,
    satisfies,
)

__all__ = [
    "Clause",
    "Constraint",
    "Operator",
    "Requirement",
    "Version",
    "normalize_name",
    "parse_clause",
    "parse_constraint",
    "parse_requirement",
    "parse_version",
    "satisfies",
]
