"""Stage, commit and remove packages in the library tree."""

from __future__ import annotations

import datetime
import logging
import os
import shutil
from dataclasses import dataclass
from enum import Enum
from pathlib import Path
from typing import List, Optional

from constants import Constants
from common.logging_utils import extra_context
from errors import MaterializationError
from archive.extractor import ExtractedPackage
from environment.layout import InstalledPackageRecord, LibraryLayout
from lockfile.model import LockEntry
from versioning.parser import normalize_name

logger = logging.getLogger(__name__)


class PackageState(Enum):
    PLANNED = "planned"
    STAGED = "staged"
    COMMITTED = "committed"
    FAILED = "failed"


@dataclass
class StagedPackage:
    name: str
    path: Path
    extracted: ExtractedPackage
    state: PackageState = PackageState.STAGED


class Materializer:
    """The only writer of ``layout.lib``.

    A package directory either holds a complete install with its record or
    does not exist. Commits swap whole directories with ``os.replace``;
    nothing is modified in place.
    """

    def __init__(self, layout: LibraryLayout):
        self.layout = layout

    def stage(self, extracted: ExtractedPackage, name: str) -> StagedPackage:
        """Take ownership of an extracted tree, moving it under ``.staging`` if needed."""
        name = normalize_name(name)
        root = Path(extracted.root)
        staging = self.layout.staging.resolve()
        if staging not in root.resolve().parents:
            target = self.layout.new_staging_dir(name) / "pkg"
            try:
                shutil.move(str(root), str(target))
            except OSError as exc:
                shutil.rmtree(target.parent, ignore_errors=True)
                raise MaterializationError(f"Could not stage {name}: {exc}") from exc
            root = target
            extracted.root = target
        logger.debug("Staged package", extra=extra_context(event="stage", package=name, target=str(root)))
        return StagedPackage(name=name, path=root, extracted=extracted)

    def discard(self, staged: StagedPackage) -> None:
        """Drop a staged tree that will not be committed."""
        shutil.rmtree(self._staging_holder(staged.path), ignore_errors=True)
        staged.state = PackageState.FAILED

    def _staging_holder(self, path: Path) -> Path:
        """The per-package directory directly under ``.staging``."""
        staging = self.layout.staging.resolve()
        resolved = path.resolve()
        for parent in [resolved, *resolved.parents]:
            if parent.parent == staging:
                return parent
        return resolved

    def commit(self, staged: StagedPackage, entry: LockEntry) -> InstalledPackageRecord:
        """Swap the staged tree into ``lib/<name>`` atomically.

        On failure the previous install (if any) is restored and the staged
        tree discarded, then ``MaterializationError`` is raised.
        """
        if staged.state != PackageState.STAGED:
            raise MaterializationError(f"{staged.name} is {staged.state.value}, not staged")
        final = self.layout.package_dir(staged.name)
        record = InstalledPackageRecord(
            name=staged.name,
            version=entry.version,
            source=entry.source,
            location=str(final),
            digest=entry.digest,
            files=staged.extracted.files,
            console_scripts=dict(staged.extracted.console_scripts),
            installed_at=datetime.datetime.now(datetime.timezone.utc).isoformat(),
        )
        displaced: Optional[Path] = None
        try:
            (staged.path / Constants.INSTALLED_RECORD).write_text(record.to_json(), encoding="utf-8")
            self.layout.lib.mkdir(parents=True, exist_ok=True)
            if final.exists():
                displaced = self.layout.new_trash_dir(staged.name)
                os.replace(final, displaced)
            os.replace(staged.path, final)
        except OSError as exc:
            if displaced is not None and displaced.exists() and not final.exists():
                os.replace(displaced, final)
                displaced = None
            self.discard(staged)
            logger.error(
                "Commit failed for %s: %s",
                entry.label,
                exc,
                extra=extra_context(event="commit", outcome="failed", package=staged.name),
            )
            raise MaterializationError(f"Could not commit {entry.label}: {exc}") from exc

        staged.state = PackageState.COMMITTED
        shutil.rmtree(self._staging_holder(staged.path), ignore_errors=True)
        if displaced is not None:
            shutil.rmtree(displaced.parent, ignore_errors=True)
        logger.info(
            "Installed %s",
            entry.label,
            extra=extra_context(event="commit", outcome="success", package=staged.name),
        )
        return record

    def remove(self, name: str) -> bool:
        """Remove an installed package. Returns False when it was not installed."""
        final = self.layout.package_dir(name)
        if not final.exists():
            return False
        doomed = self.layout.new_trash_dir(name)
        try:
            os.replace(final, doomed)
        except OSError as exc:
            raise MaterializationError(f"Could not remove {name}: {exc}") from exc
        shutil.rmtree(doomed.parent, ignore_errors=True)
        logger.info("Removed %s", normalize_name(name), extra=extra_context(event="remove", package=name))
        return True

    def record(self, name: str) -> Optional[InstalledPackageRecord]:
        path = self.layout.record_path(name)
        if not path.is_file():
            return None
        try:
            return InstalledPackageRecord.load(path)
        except (OSError, ValueError, KeyError) as exc:
            logger.warning("Unreadable install record %s: %s", path, exc)
            return None

    def installed(self) -> List[InstalledPackageRecord]:
        """Records of every committed package, sorted by name."""
        if not self.layout.lib.is_dir():
            return []
        records = []
        for child in sorted(self.layout.lib.iterdir()):
            if child.is_dir():
                record = self.record(child.name)
                if record is not None:
                    records.append(record)
        return records

    def search_paths(self) -> List[Path]:
        """Committed package directories, for an interpreter's module search path."""
        return [Path(r.location) for r in self.installed()]

    def clean_leftovers(self) -> None:
        """Delete staging and trash contents left by an interrupted run."""
        for area in (self.layout.staging, self.layout.trash):
            if area.is_dir():
                for child in area.iterdir():
                    if child.is_dir() and not child.is_symlink():
                        shutil.rmtree(child, ignore_errors=True)
                    else:
                        child.unlink()
