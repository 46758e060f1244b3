"""TOML persistence for lockfiles."""

from __future__ import annotations

import hashlib
import logging
import os
import re
import sys
import tempfile
from pathlib import Path
from typing import Any, Dict, List, Union

import tomli_w

from common.logging_utils import extra_context
from errors import CorruptLockfile, InvalidVersion
from lockfile.model import LockEntry, Lockfile
from versioning.models import Version
from versioning.parser import normalize_name

if sys.version_info >= (3, 11):
    import tomllib
else:
    import tomli as tomllib

logger = logging.getLogger(__name__)

_ENTRY_KEYS = ("name", "version", "source", "digest", "filename", "dependencies", "extras")
_DIGEST_RE = re.compile(r"^(?P<algorithm>[A-Za-z0-9_-]+):(?P<value>[0-9a-fA-F]+)$")


def to_persisted_form(lockfile: Lockfile) -> str:
    """Render ``lockfile`` as TOML. Keys appear in a fixed order."""
    document: Dict[str, Any] = {
        "metadata": {
            "lock-version": lockfile.version,
            "python-version": lockfile.python_version,
            "requirements-hash": lockfile.requirements_hash,
        },
    }
    packages = []
    for entry in lockfile.entries:
        table: Dict[str, Any] = {"name": entry.name, "version": entry.version, "source": entry.source}
        if entry.digest:
            table["digest"] = entry.digest
        if entry.filename:
            table["filename"] = entry.filename
        table["dependencies"] = list(entry.dependencies)
        table["extras"] = list(entry.extras)
        packages.append(table)
    if packages:
        document["package"] = packages
    return tomli_w.dumps(document)


def _string(table: Dict[str, Any], key: str, where: str, required: bool = True) -> Any:
    value = table.get(key)
    if value is None and not required:
        return None
    if not isinstance(value, str) or not value:
        raise CorruptLockfile(f"{where}: '{key}' must be a non-empty string")
    return value


def _digest(table: Dict[str, Any], where: str) -> Any:
    value = _string(table, "digest", where, required=False)
    if value is None:
        return None
    match = _DIGEST_RE.match(value)
    if not match or match.group("algorithm").lower() not in hashlib.algorithms_available:
        raise CorruptLockfile(f"{where}: 'digest' must look like '<algorithm>:<hex>', got {value!r}")
    return value


def _names(table: Dict[str, Any], key: str, where: str) -> tuple:
    value = table.get(key, [])
    if not isinstance(value, list) or not all(isinstance(v, str) for v in value):
        raise CorruptLockfile(f"{where}: '{key}' must be a list of strings")
    return tuple(value)


def _entry(table: Any, position: int) -> LockEntry:
    where = f"package #{position + 1}"
    if not isinstance(table, dict):
        raise CorruptLockfile(f"{where}: expected a table")
    unknown = set(table) - set(_ENTRY_KEYS)
    if unknown:
        raise CorruptLockfile(f"{where}: unknown keys {sorted(unknown)}")
    version = _string(table, "version", where)
    try:
        Version(version)
    except InvalidVersion as exc:
        raise CorruptLockfile(f"{where}: {exc}") from exc
    return LockEntry(
        name=normalize_name(_string(table, "name", where)),
        version=version,
        source=_string(table, "source", where),
        digest=_digest(table, where),
        filename=_string(table, "filename", where, required=False),
        dependencies=tuple(normalize_name(d) for d in _names(table, "dependencies", where)),
        extras=_names(table, "extras", where),
    )


def from_persisted_form(text: str) -> Lockfile:
    """Parse TOML produced by ``to_persisted_form``; raises ``CorruptLockfile``."""
    try:
        document = tomllib.loads(text)
    except tomllib.TOMLDecodeError as exc:
        raise CorruptLockfile(f"Lockfile is not valid TOML: {exc}") from exc

    metadata = document.get("metadata")
    if not isinstance(metadata, dict):
        raise CorruptLockfile("Lockfile has no [metadata] table")
    lock_version = metadata.get("lock-version")
    if not isinstance(lock_version, int) or isinstance(lock_version, bool):
        raise CorruptLockfile("metadata: 'lock-version' must be an integer")

    raw_packages = document.get("package", [])
    if not isinstance(raw_packages, list):
        raise CorruptLockfile("'package' must be an array of tables")
    entries: List[LockEntry] = [_entry(table, i) for i, table in enumerate(raw_packages)]
    names = [e.name for e in entries]
    if len(set(names)) != len(names):
        raise CorruptLockfile("Lockfile pins a package more than once")

    return Lockfile(
        python_version=_string(metadata, "python-version", "metadata"),
        requirements_hash=_string(metadata, "requirements-hash", "metadata"),
        entries=tuple(entries),
        version=lock_version,
    )


def read_lockfile(path: Union[str, Path]) -> Lockfile:
    path = Path(path)
    try:
        text = path.read_text(encoding="utf-8")
    except UnicodeDecodeError as exc:
        raise CorruptLockfile(f"{path} is not UTF-8 text") from exc
    lockfile = from_persisted_form(text)
    logger.debug(
        "Read lockfile",
        extra=extra_context(event="lockfile_read", target=str(path), count=len(lockfile)),
    )
    return lockfile


def write_lockfile(path: Union[str, Path], lockfile: Lockfile) -> None:
    """Write atomically: a temporary file in the same directory, then ``os.replace``."""
    path = Path(path)
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", suffix=".tmp", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8", newline="\n") as handle:
            handle.write(to_persisted_form(lockfile))
        os.replace(tmp_name, path)
    except BaseException:
        if os.path.exists(tmp_name):
            os.unlink(tmp_name)
        raise
    logger.info(
        "Wrote lockfile with %d packages",
        len(lockfile),
        extra=extra_context(event="lockfile_write", target=str(path), count=len(lockfile)),
    )
