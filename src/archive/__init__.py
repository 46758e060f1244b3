"""Archive readers and safe extraction."""

from .extractor import ExtractedPackage, extract, read_console_scripts, safe_entry_path
from .formats import ArchiveEntry, ArchiveReader, TarGzArchive, ZipArchive, open_archive

__all__ = [
    "ArchiveEntry",
    "ArchiveReader",
    "ExtractedPackage",
    "TarGzArchive",
    "ZipArchive",
    "extract",
    "open_archive",
    "read_console_scripts",
    "safe_entry_path",
]
