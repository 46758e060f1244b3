"""Safe extraction of wheels and source archives."""

from __future__ import annotations

import configparser
import gzip
import logging
import os
import posixpath
import re
import shutil
import tarfile
import zipfile
import zlib
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Optional, Tuple, Union

from constants import Constants
from common.logging_utils import Timer, extra_context
from errors import ArchiveTooLarge, CorruptArchive, UnsafeArchiveEntry
from archive.formats import ArchiveEntry, ArchiveReader, open_archive

logger = logging.getLogger(__name__)

_DRIVE = re.compile(r"^[A-Za-z]:")
_METADATA_SUFFIXES = (".dist-info", ".egg-info", ".data")
_READ_ERRORS = (
    zipfile.BadZipFile,
    zipfile.LargeZipFile,
    tarfile.TarError,
    gzip.BadGzipFile,
    EOFError,
    zlib.error,
    UnicodeDecodeError,
)


@dataclass
class ExtractedPackage:
    """Files unpacked from one artifact."""
    root: Path
    kind: str  # "wheel" or "sdist"
    top_level: Tuple[str, ...] = ()
    modules: Tuple[str, ...] = ()
    files: Tuple[str, ...] = ()
    console_scripts: Dict[str, str] = field(default_factory=dict)
    size: int = 0


def safe_entry_path(name: str) -> str:
    """Normalize an entry name, rejecting absolute paths and ``..`` escapes."""
    cleaned = name.replace("\\", "/")
    if cleaned.startswith("/") or _DRIVE.match(cleaned):
        raise UnsafeArchiveEntry(name, "absolute path")
    parts = [p for p in cleaned.split("/") if p not in ("", ".")]
    if ".." in parts:
        raise UnsafeArchiveEntry(name, "parent directory reference")
    return "/".join(parts)


def _check_link(entry: ArchiveEntry, path: str) -> None:
    target = (entry.link_target or "").replace("\\", "/")
    if not target or target.startswith("/") or _DRIVE.match(target):
        raise UnsafeArchiveEntry(entry.path, f"link to absolute path {entry.link_target!r}")
    # Hard link targets are archive-relative, symlink targets entry-relative.
    base = "" if entry.is_hardlink else posixpath.dirname(path)
    resolved = posixpath.normpath(posixpath.join(base, target))
    if resolved == ".." or resolved.startswith("../"):
        raise UnsafeArchiveEntry(entry.path, f"link escapes extraction root: {entry.link_target!r}")


def _validate(entries: List[ArchiveEntry], max_total_size: int) -> List[Tuple[ArchiveEntry, str]]:
    checked = []
    declared = 0
    for entry in entries:
        if entry.is_special:
            raise UnsafeArchiveEntry(entry.path, "special file")
        path = safe_entry_path(entry.path)
        if not path:
            continue
        if entry.is_link:
            _check_link(entry, path)
        declared += entry.size
        if declared > max_total_size:
            raise ArchiveTooLarge(declared, max_total_size)
        checked.append((entry, path))
    return checked


def _common_prefix(paths: List[str]) -> Optional[str]:
    """The single top-level directory shared by every path, if there is one."""
    tops = {p.split("/", 1)[0] for p in paths}
    if len(tops) != 1:
        return None
    top = tops.pop()
    if all(p == top or p.startswith(top + "/") for p in paths) and any("/" in p for p in paths):
        return top
    return None


def _is_wheel(paths: List[str]) -> bool:
    return any(p.split("/", 1)[0].endswith(".dist-info") for p in paths)


def read_console_scripts(text: str) -> Dict[str, str]:
    """Parse the ``[console_scripts]`` section of an ``entry_points.txt``."""
    parser = configparser.ConfigParser(delimiters=("=",), interpolation=None)
    parser.optionxform = str  # type: ignore[assignment]
    try:
        parser.read_string(text)
    except configparser.Error as exc:
        logger.warning("Ignoring unreadable entry_points.txt: %s", exc)
        return {}
    if not parser.has_section("console_scripts"):
        return {}
    return {name: value.strip() for name, value in parser.items("console_scripts")}


class _Writer:
    """Copy entries under ``dest`` while counting actual bytes written."""

    def __init__(self, reader: ArchiveReader, dest: Path, limit: int):
        self.reader = reader
        self.dest = dest
        self.limit = limit
        self.written = 0

    def write(self, entry: ArchiveEntry, relative: str) -> None:
        target = self.dest / relative
        if entry.is_dir:
            target.mkdir(parents=True, exist_ok=True)
            return
        target.parent.mkdir(parents=True, exist_ok=True)
        if entry.is_link and not entry.is_hardlink:
            if target.exists() or target.is_symlink():
                target.unlink()
            os.symlink(entry.link_target, target)
            return
        with self.reader.open(entry) as src, open(target, "wb") as out:
            while True:
                chunk = src.read(Constants.DOWNLOAD_CHUNK_SIZE)
                if not chunk:
                    break
                self.written += len(chunk)
                if self.written > self.limit:
                    raise ArchiveTooLarge(self.written, self.limit)
                out.write(chunk)


def extract(
    archive_path: Union[str, Path],
    dest: Union[str, Path],
    max_total_size: int = Constants.MAX_ARCHIVE_BYTES,
) -> ExtractedPackage:
    """Unpack ``archive_path`` into ``dest``.

    Every entry is checked before anything is written. A source archive whose
    members all live under one ``name-version/`` directory is unpacked with
    that directory stripped. On any failure ``dest`` is removed.

    Raises:
        UnsafeArchiveEntry: absolute path, ``..`` escape, link escaping the
            root or a special file.
        ArchiveTooLarge: declared or actual size over ``max_total_size``.
        UnsupportedArchive: not a zip or tar.gz.
        CorruptArchive: the archive structure is damaged (bad CRC,
            truncated stream and the like).
    """
    dest = Path(dest)
    try:
        return _unpack(Path(archive_path), dest, max_total_size)
    except _READ_ERRORS as exc:
        shutil.rmtree(dest, ignore_errors=True)
        logger.warning(
            "Unreadable archive %s: %s",
            Path(archive_path).name,
            exc,
            extra=extra_context(event="extract", outcome="corrupt"),
        )
        raise CorruptArchive(str(archive_path), str(exc) or type(exc).__name__) from exc


def _unpack(archive_path: Path, dest: Path, max_total_size: int) -> ExtractedPackage:
    with open_archive(archive_path) as reader:
        checked = _validate(reader.entries(), max_total_size)
        paths = [path for _, path in checked]
        kind = "wheel" if _is_wheel(paths) else "sdist"
        prefix = _common_prefix(paths) if kind == "sdist" else None
        plan = []
        for entry, path in checked:
            if prefix is not None:
                path = path[len(prefix) + 1:]
                if not path:
                    continue
                if entry.is_link and not entry.is_hardlink:
                    # Symlinks must stay inside the flattened root as well.
                    _check_link(entry, path)
            plan.append((entry, path))

        dest.mkdir(parents=True, exist_ok=True)
        writer = _Writer(reader, dest, max_total_size)
        files: List[str] = []
        try:
            with Timer() as timer:
                for entry, path in plan:
                    writer.write(entry, path)
                    if not entry.is_dir:
                        files.append(path)
        except BaseException:
            shutil.rmtree(dest, ignore_errors=True)
            raise

    top_level = sorted({f.split("/", 1)[0] for f in files})
    modules = sorted(
        {
            name[:-3] if name.endswith(".py") else name
            for name in top_level
            if not name.endswith(_METADATA_SUFFIXES)
            and (name.endswith(".py") or (dest / name / "__init__.py").is_file())
        }
    )
    scripts: Dict[str, str] = {}
    for name in top_level:
        entry_points = dest / name / "entry_points.txt"
        if name.endswith(".dist-info") and entry_points.is_file():
            scripts.update(read_console_scripts(entry_points.read_text(encoding="utf-8")))

    logger.debug(
        "Extracted %s",
        Path(archive_path).name,
        extra=extra_context(
            event="extract",
            kind=kind,
            count=len(files),
            size=writer.written,
            duration_ms=timer.duration_ms(),
        ),
    )
    return ExtractedPackage(
        root=dest,
        kind=kind,
        top_level=tuple(top_level),
        modules=tuple(modules),
        files=tuple(sorted(files)),
        console_scripts=scripts,
        size=writer.written,
    )
