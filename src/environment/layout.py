"""Directory layout of a ``__pypackages__`` tree."""

from __future__ import annotations

import json
import tempfile
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any, Dict, Optional, Tuple, Union

from constants import Constants
from errors import ConfigError
from versioning.parser import normalize_name


def major_minor(python_version: str) -> str:
    """``"3.11.4"`` -> ``"3.11"``."""
    parts = str(python_version).strip().split(".")
    if len(parts) < 2 or not all(p.isdigit() for p in parts[:2]):
        raise ConfigError(f"Python version must look like X.Y: {python_version!r}")
    return f"{parts[0]}.{parts[1]}"


class LibraryLayout:
    """Paths under ``<project>/__pypackages__/<X.Y>/``.

    ``lib/<name>/`` holds one committed package each, with ``INSTALLED.json``
    inside. ``.staging`` and ``.trash`` sit on the same filesystem so renames
    between them and ``lib`` are atomic.
    """

    def __init__(self, project_dir: Union[str, Path], python_version: str):
        self.project_dir = Path(project_dir)
        self.python_version = major_minor(python_version)
        self.base = self.project_dir / Constants.PYPACKAGES_DIR / self.python_version
        self.lib = self.base / Constants.LIB_DIR
        self.staging = self.base / Constants.STAGING_DIR
        self.trash = self.base / Constants.TRASH_DIR
        self.downloads = self.base / Constants.DOWNLOADS_DIR
        self.lock_path = self.base / Constants.LOCK_FILE_NAME

    def ensure(self) -> None:
        for path in (self.lib, self.staging, self.trash, self.downloads):
            path.mkdir(parents=True, exist_ok=True)

    def package_dir(self, name: str) -> Path:
        return self.lib / normalize_name(name)

    def record_path(self, name: str) -> Path:
        return self.package_dir(name) / Constants.INSTALLED_RECORD

    def new_staging_dir(self, name: str) -> Path:
        self.staging.mkdir(parents=True, exist_ok=True)
        return Path(tempfile.mkdtemp(prefix=f"{normalize_name(name)}-", dir=str(self.staging)))

    def new_trash_dir(self, name: str) -> Path:
        """A fresh, not yet existing path under ``.trash``."""
        self.trash.mkdir(parents=True, exist_ok=True)
        holder = Path(tempfile.mkdtemp(prefix=f"{normalize_name(name)}-", dir=str(self.trash)))
        return holder / "old"

    def __repr__(self) -> str:
        return f"LibraryLayout({str(self.base)!r})"


@dataclass
class InstalledPackageRecord:
    """Contents of ``INSTALLED.json``; its presence marks a package installed."""
    name: str
    version: str
    source: str
    location: str
    digest: Optional[str] = None
    files: Tuple[str, ...] = ()
    console_scripts: Dict[str, str] = field(default_factory=dict)
    installed_at: str = ""

    def to_json(self) -> str:
        data = asdict(self)
        data["files"] = list(self.files)
        return json.dumps(data, indent=2, sort_keys=True) + "\n"

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> "InstalledPackageRecord":
        return cls(
            name=data["name"],
            version=data["version"],
            source=data["source"],
            location=data["location"],
            digest=data.get("digest"),
            files=tuple(data.get("files") or ()),
            console_scripts=dict(data.get("console_scripts") or {}),
            installed_at=data.get("installed_at", ""),
        )

    @classmethod
    def load(cls, path: Union[str, Path]) -> "InstalledPackageRecord":
        with open(path, "r", encoding="utf-8") as handle:
            return cls.from_dict(json.load(handle))
