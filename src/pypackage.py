"""Entry points tying resolution, locking, acquisition and installation together.

Callers hand over a ``Manifest`` and a project directory and get back a
``SyncReport`` or one of the typed errors in ``errors``. Nothing here exits
the process.
"""

from __future__ import annotations

import logging
import shutil
from dataclasses import dataclass, field
from pathlib import Path
from typing import Any, Dict, Iterable, List, Mapping, Optional, Tuple, Union

from constants import Constants, ExitCodes
from common.logging_utils import Timer, configure_logging, extra_context
from errors import (
    EnvironmentLocked,
    IndexUnavailable,
    MaterializationError,
    PackageNotFound,
    PyPackageError,
    Unsatisfiable,
)
from acquire.downloader import ArtifactAcquirer
from acquire.report import AcquisitionResult
from acquire.transport import Transport
from archive.extractor import extract
from environment.layout import InstalledPackageRecord, LibraryLayout
from environment.locking import EnvironmentLock
from environment.materializer import Materializer, PackageState
from lockfile.io import read_lockfile, write_lockfile
from lockfile.model import LockEntry, Lockfile
from manifest import Manifest, load_manifest
from registry.base import IndexClient
from registry.pypi import PyPIIndexClient
from resolver.engine import Resolver
from settings import Settings, load_settings
from versioning.parser import normalize_name

logger = logging.getLogger(__name__)

ProjectDir = Union[str, Path]


@dataclass
class SyncReport:
    """What a sync did, per package.

    ``states`` tracks every package the sync tried to install: ``PLANNED``
    while pending, then ``COMMITTED`` or ``FAILED``.
    """
    lockfile: Optional[Lockfile] = None
    installed: List[str] = field(default_factory=list)
    unchanged: List[str] = field(default_factory=list)
    removed: List[str] = field(default_factory=list)
    failed: Dict[str, PyPackageError] = field(default_factory=dict)
    downloads: int = 0
    states: Dict[str, PackageState] = field(default_factory=dict)

    @property
    def ok(self) -> bool:
        return not self.failed

    @property
    def exit_code(self) -> ExitCodes:
        return ExitCodes.SUCCESS if self.ok else ExitCodes.PARTIAL_FAILURE


def exit_code_for(error: BaseException) -> ExitCodes:
    """Map a pipeline error to the exit code a CLI would use."""
    if isinstance(error, EnvironmentLocked):
        return ExitCodes.LOCKED
    if isinstance(error, (Unsatisfiable, PackageNotFound)):
        return ExitCodes.RESOLUTION_ERROR
    if isinstance(error, IndexUnavailable):
        return ExitCodes.CONNECTION_ERROR
    return ExitCodes.FILE_ERROR


def default_index(settings: Settings, python_version: str) -> IndexClient:
    return PyPIIndexClient(
        settings.index_url,
        python_version=python_version,
        timeout=settings.request_timeout,
        retries=settings.index_retries,
    )


def lockfile_path(project_dir: ProjectDir) -> Path:
    return Path(project_dir) / Constants.LOCKFILE_NAME


def load_project(
    project_dir: ProjectDir,
    config_path: Optional[Union[str, Path]] = None,
    overrides: Optional[Mapping[str, Any]] = None,
    *,
    setup_logging: bool = True,
) -> Tuple[Manifest, Settings]:
    """Load settings and the project manifest, the way a command-line front end would.

    ``settings.python_version`` (when set) selects the target interpreter;
    ``settings.log_level`` is applied through ``configure_logging``.
    """
    settings = load_settings(config_path, overrides)
    if setup_logging:
        configure_logging(settings.log_level)
    manifest = load_manifest(project_dir, settings.python_version)
    return manifest, settings


def resolve_manifest(
    manifest: Manifest,
    index: Optional[IndexClient] = None,
    settings: Optional[Settings] = None,
    previous: Optional[Lockfile] = None,
) -> Lockfile:
    """Resolve ``manifest`` into a lockfile, preferring versions pinned in ``previous``."""
    settings = settings or Settings()
    index = index or default_index(settings, manifest.python_version)
    resolver = Resolver(
        index,
        python_version=manifest.python_version,
        prerelease_policy=settings.prerelease_policy,
        source_policy=settings.source_policy(),
        locked=previous.locked_pins() if previous is not None else None,
    )
    with Timer() as timer:
        graph = resolver.resolve(manifest.requirements)
    logger.info(
        "Resolved %d packages",
        len(graph),
        extra=extra_context(event="resolve", count=len(graph), duration_ms=timer.duration_ms()),
    )
    return Lockfile.from_graph(graph, manifest.requirements, manifest.python_version)


def _current_lockfile(
    manifest: Manifest,
    project_dir: ProjectDir,
    index: Optional[IndexClient],
    settings: Settings,
    update: bool,
) -> Lockfile:
    path = lockfile_path(project_dir)
    previous = read_lockfile(path) if path.is_file() else None
    if previous is not None and not update:
        problems = previous.problems(manifest.requirements, manifest.python_version)
        if not problems:
            logger.debug("Lockfile is current", extra=extra_context(event="lockfile", outcome="valid"))
            return previous
        logger.info("Re-resolving: %s", "; ".join(problems))
    lockfile = resolve_manifest(manifest, index, settings, previous=None if update else previous)
    if lockfile != previous:
        write_lockfile(path, lockfile)
    return lockfile


def _is_current(record: Optional[InstalledPackageRecord], entry: LockEntry) -> bool:
    return (
        record is not None
        and record.version == entry.version
        and record.source == entry.source
        and record.digest == entry.digest
    )


def sync_environment(
    manifest: Manifest,
    project_dir: ProjectDir,
    *,
    index: Optional[IndexClient] = None,
    transport: Optional[Transport] = None,
    settings: Optional[Settings] = None,
    cancel_event: Optional[Any] = None,
    update: bool = False,
) -> SyncReport:
    """Make ``__pypackages__`` match the lockfile, resolving first when needed.

    Packages already installed at the locked version and digest are left
    alone, so a second sync downloads nothing. Packages installed but no
    longer locked are removed once every install has been attempted.
    Per-package download, integrity, archive and commit failures land in
    ``SyncReport.failed``; resolution errors and ``EnvironmentLocked`` are
    raised.
    """
    settings = settings or Settings()
    layout = LibraryLayout(project_dir, manifest.python_version)
    materializer = Materializer(layout)
    report = SyncReport()

    with EnvironmentLock(layout.lock_path, wait=settings.lock_wait, timeout=settings.lock_timeout):
        layout.ensure()
        materializer.clean_leftovers()
        lockfile = _current_lockfile(manifest, project_dir, index, settings, update)
        report.lockfile = lockfile

        pending: List[LockEntry] = []
        for entry in lockfile.entries:
            if _is_current(materializer.record(entry.name), entry):
                report.unchanged.append(entry.name)
            else:
                pending.append(entry)
                report.states[entry.name] = PackageState.PLANNED

        def install(result: AcquisitionResult) -> None:
            staging = layout.new_staging_dir(result.name)
            try:
                extracted = extract(result.path, staging / "pkg", settings.max_archive_bytes)
            except PyPackageError:
                shutil.rmtree(staging, ignore_errors=True)
                raise
            except OSError as exc:
                shutil.rmtree(staging, ignore_errors=True)
                raise MaterializationError(f"Could not unpack {result.entry.label}: {exc}") from exc
            staged = materializer.stage(extracted, result.name)
            try:
                materializer.commit(staged, result.entry)
            finally:
                report.states[result.name] = staged.state

        acquirer = ArtifactAcquirer(
            layout.downloads,
            transport,
            max_concurrency=settings.download_concurrency,
            max_attempts=settings.download_retries,
            backoff_base=settings.download_backoff,
            timeout=settings.request_timeout,
            require_digest=settings.require_digest,
        )
        acquisition = acquirer.acquire_sync(pending, on_result=install, cancel_event=cancel_event)
        report.downloads = acquisition.downloads
        for result in acquisition.succeeded:
            report.installed.append(result.name)
        for result in acquisition.failed + acquisition.cancelled:
            report.failed[result.name] = result.error
            report.states[result.name] = PackageState.FAILED

        if not acquisition.cancelled:
            for record in materializer.installed():
                if record.name not in lockfile:
                    materializer.remove(record.name)
                    report.removed.append(record.name)

    logger.info(
        "Sync finished: %d installed, %d unchanged, %d removed, %d failed",
        len(report.installed),
        len(report.unchanged),
        len(report.removed),
        len(report.failed),
        extra=extra_context(event="sync", outcome="success" if report.ok else "partial"),
    )
    return report


def remove_packages(
    project_dir: ProjectDir,
    python_version: str,
    names: Iterable[str],
    settings: Optional[Settings] = None,
) -> List[str]:
    """Uninstall ``names``; returns those that were actually installed."""
    settings = settings or Settings()
    layout = LibraryLayout(project_dir, python_version)
    materializer = Materializer(layout)
    removed = []
    with EnvironmentLock(layout.lock_path, wait=settings.lock_wait, timeout=settings.lock_timeout):
        for name in names:
            if materializer.remove(name):
                removed.append(normalize_name(name))
    return removed


def installed_packages(project_dir: ProjectDir, python_version: str) -> List[InstalledPackageRecord]:
    """Records of every committed package; ``INSTALLED.json`` decides what counts."""
    return Materializer(LibraryLayout(project_dir, python_version)).installed()
