"""Lockfile model and TOML persistence."""

from .io import from_persisted_form, read_lockfile, to_persisted_form, write_lockfile
from .model import LockEntry, Lockfile, requirements_hash

__all__ = [
    "LockEntry",
    "Lockfile",
    "from_persisted_form",
    "read_lockfile",
    "requirements_hash",
    "to_persisted_form",
    "write_lockfile",
]
