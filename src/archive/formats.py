"""Uniform read access to zip and tar.gz archives."""

from __future__ import annotations

import tarfile
import zipfile
from abc import ABC, abstractmethod
from dataclasses import dataclass
from pathlib import Path
from typing import IO, List, Optional, Union

from errors import UnsupportedArchive


@dataclass(frozen=True)
class ArchiveEntry:
    """One member of an archive as stored, before any path checks."""
    path: str
    size: int = 0
    is_dir: bool = False
    link_target: Optional[str] = None
    is_hardlink: bool = False
    is_special: bool = False  # device, fifo and the like

    @property
    def is_link(self) -> bool:
        return self.link_target is not None


class ArchiveReader(ABC):
    """Read-only view over an archive file. Use as a context manager."""

    kind = ""

    def __init__(self, path: Union[str, Path]):
        self.path = Path(path)

    @abstractmethod
    def entries(self) -> List[ArchiveEntry]:
        """All members in archive order."""

    @abstractmethod
    def open(self, entry: ArchiveEntry) -> IO[bytes]:
        """Stream the contents of a regular file (or hard link) entry."""

    def read(self, entry: ArchiveEntry) -> bytes:
        with self.open(entry) as handle:
            return handle.read()

    @abstractmethod
    def close(self) -> None:
        pass

    def __enter__(self) -> "ArchiveReader":
        return self

    def __exit__(self, exc_type, exc, tb) -> None:
        self.close()


class ZipArchive(ArchiveReader):
    kind = "zip"

    def __init__(self, path: Union[str, Path]):
        super().__init__(path)
        self._zip = zipfile.ZipFile(self.path, "r")

    def entries(self) -> List[ArchiveEntry]:
        return [
            ArchiveEntry(path=info.filename, size=info.file_size, is_dir=info.is_dir())
            for info in self._zip.infolist()
            if info.filename
        ]

    def open(self, entry: ArchiveEntry) -> IO[bytes]:
        return self._zip.open(entry.path, "r")

    def close(self) -> None:
        self._zip.close()


class TarGzArchive(ArchiveReader):
    kind = "tar.gz"

    def __init__(self, path: Union[str, Path]):
        super().__init__(path)
        try:
            self._tar = tarfile.open(self.path, "r:gz")
        except tarfile.TarError as exc:
            raise UnsupportedArchive(str(path)) from exc
        self._members = {}

    def entries(self) -> List[ArchiveEntry]:
        result = []
        for member in self._tar.getmembers():
            self._members[member.name] = member
            result.append(
                ArchiveEntry(
                    path=member.name,
                    size=member.size if member.isfile() else 0,
                    is_dir=member.isdir(),
                    link_target=member.linkname if (member.issym() or member.islnk()) else None,
                    is_hardlink=member.islnk(),
                    is_special=not (member.isfile() or member.isdir() or member.issym() or member.islnk()),
                )
            )
        return result

    def open(self, entry: ArchiveEntry) -> IO[bytes]:
        member = self._members.get(entry.path) or self._tar.getmember(entry.path)
        handle = self._tar.extractfile(member)
        if handle is None:
            raise UnsupportedArchive(f"{self.path}:{entry.path}")
        return handle

    def close(self) -> None:
        self._tar.close()


def open_archive(path: Union[str, Path]) -> ArchiveReader:
    """Pick a reader by content, falling back to the file extension."""
    path = Path(path)
    if zipfile.is_zipfile(path):
        return ZipArchive(path)
    with open(path, "rb") as handle:
        magic = handle.read(2)
    if magic == b"\x1f\x8b" or path.name.endswith((".tar.gz", ".tgz")):
        return TarGzArchive(path)
    raise UnsupportedArchive(str(path))
