"""Bounded-concurrency artifact downloads with verification and retry.

Workers pull entries from a queue and push results onto a result queue; a
single coordinating loop drains it and invokes ``on_result`` one result at a
time in a helper thread, so callbacks (extraction, commits) never run
concurrently and never block the event loop.
"""

from __future__ import annotations

import asyncio
import hashlib
import inspect
import logging
import os
from pathlib import Path
from typing import Any, Callable, Iterable, Optional, Tuple, Union

import aiohttp

from constants import Constants
from common.logging_utils import Timer, extra_context, safe_url
from errors import (
    AcquisitionCancelled,
    AcquisitionFailed,
    IntegrityViolation,
    PyPackageError,
)
from acquire.report import AcquisitionReport, AcquisitionResult, Outcome
from acquire.transport import AiohttpTransport, Transport, TransportError
from lockfile.model import LockEntry
from registry.direct import url_filename

logger = logging.getLogger(__name__)

ResultCallback = Callable[[AcquisitionResult], Any]

_NETWORK_ERRORS = (aiohttp.ClientError, asyncio.TimeoutError, OSError, TransportError)


def split_digest(digest: str) -> Tuple[str, str]:
    """``"sha256:ab12..."`` -> ``("sha256", "ab12...")``."""
    algorithm, sep, value = digest.partition(":")
    if not sep:
        return Constants.DIGEST_ALGORITHM, digest.lower()
    return algorithm.lower(), value.lower()


def file_digest(path: Union[str, Path], algorithm: str = Constants.DIGEST_ALGORITHM) -> str:
    hasher = hashlib.new(algorithm)
    with open(path, "rb") as handle:
        for chunk in iter(lambda: handle.read(Constants.DOWNLOAD_CHUNK_SIZE), b""):
            hasher.update(chunk)
    return f"{algorithm}:{hasher.hexdigest()}"


class ArtifactAcquirer:
    """Download and verify the artifacts named by lock entries.

    Args:
        download_dir: Where finished artifacts land (``<file>.part`` while in flight).
        transport: Byte source; defaults to ``AiohttpTransport``.
        max_concurrency: Number of worker tasks.
        max_attempts: Attempts per artifact for network errors.
        backoff_base: First retry delay in seconds, doubled per attempt.
        timeout: Per-request timeout in seconds.
        require_digest: Refuse entries without an expected digest.
    """

    def __init__(
        self,
        download_dir: Union[str, Path],
        transport: Optional[Transport] = None,
        *,
        max_concurrency: int = Constants.DOWNLOAD_CONCURRENCY,
        max_attempts: int = Constants.DOWNLOAD_RETRY_MAX,
        backoff_base: float = Constants.DOWNLOAD_BACKOFF_BASE_SEC,
        timeout: float = Constants.REQUEST_TIMEOUT,
        require_digest: bool = Constants.REQUIRE_DIGEST,
    ):
        self.download_dir = Path(download_dir)
        self.transport = transport or AiohttpTransport()
        self.max_concurrency = max(1, int(max_concurrency))
        self.max_attempts = max(1, int(max_attempts))
        self.backoff_base = backoff_base
        self.timeout = timeout
        self.require_digest = require_digest

    def artifact_path(self, entry: LockEntry) -> Path:
        filename = entry.filename or url_filename(entry.source) or f"{entry.name}-{entry.version}"
        return self.download_dir / filename

    async def acquire(
        self,
        entries: Iterable[LockEntry],
        on_result: Optional[ResultCallback] = None,
        cancel_event: Optional[Any] = None,
    ) -> AcquisitionReport:
        """Fetch every entry; see the module docstring for the flow.

        ``cancel_event`` may be an ``asyncio.Event`` or a ``threading.Event``.
        Once set, no new download starts and results still arriving are
        reported as cancelled without reaching ``on_result``.
        """
        entries = list(entries)
        report = AcquisitionReport()
        if not entries:
            return report
        self.download_dir.mkdir(parents=True, exist_ok=True)

        work: asyncio.Queue = asyncio.Queue()
        for entry in entries:
            work.put_nowait(entry)
        results: asyncio.Queue = asyncio.Queue()

        await self.transport.start()
        workers = [
            asyncio.create_task(self._worker(work, results, cancel_event))
            for _ in range(min(self.max_concurrency, len(entries)))
        ]
        try:
            with Timer() as timer:
                for _ in range(len(entries)):
                    result = await results.get()
                    if result.ok and _is_set(cancel_event):
                        result = self._cancelled(result.entry, result.attempts, discard=result.path)
                    elif result.ok and on_result is not None:
                        result = await self._deliver(result, on_result)
                    report.add(result)
        finally:
            for worker in workers:
                worker.cancel()
            await asyncio.gather(*workers, return_exceptions=True)
            await self.transport.stop()

        logger.info(
            "Acquired %d of %d artifacts",
            len(report.succeeded),
            len(entries),
            extra=extra_context(
                event="acquire",
                outcome="success" if report.ok else "partial",
                count=len(entries),
                failed=len(report.failed),
                cancelled=len(report.cancelled),
                duration_ms=timer.duration_ms(),
            ),
        )
        return report

    def acquire_sync(
        self,
        entries: Iterable[LockEntry],
        on_result: Optional[ResultCallback] = None,
        cancel_event: Optional[Any] = None,
    ) -> AcquisitionReport:
        return asyncio.run(self.acquire(entries, on_result=on_result, cancel_event=cancel_event))

    async def _deliver(self, result: AcquisitionResult, on_result: ResultCallback) -> AcquisitionResult:
        """Run ``on_result`` off the event loop so in-flight downloads keep streaming."""
        try:
            if inspect.iscoroutinefunction(on_result):
                await on_result(result)
            else:
                outcome = await asyncio.to_thread(on_result, result)
                if inspect.isawaitable(outcome):
                    await outcome
        except PyPackageError as exc:
            logger.warning("Processing %s failed: %s", result.entry.label, exc)
            return AcquisitionResult(result.entry, Outcome.FAILED, result.path, exc, result.attempts)
        return result

    async def _worker(self, work: asyncio.Queue, results: asyncio.Queue, cancel_event: Optional[Any]) -> None:
        while True:
            try:
                entry = work.get_nowait()
            except asyncio.QueueEmpty:
                return
            if _is_set(cancel_event):
                result = self._cancelled(entry, 0)
            else:
                try:
                    result = await self._fetch(entry, cancel_event)
                except Exception as exc:  # pylint: disable=broad-exception-caught
                    # Every entry must post a result or the coordinator waits forever.
                    logger.exception(
                        "Unexpected error acquiring %s",
                        entry.label,
                        extra=extra_context(event="download", outcome="error", package=entry.name),
                    )
                    result = AcquisitionResult(
                        entry, Outcome.FAILED, error=AcquisitionFailed(entry.name, entry.version, exc)
                    )
            await results.put(result)

    async def _fetch(self, entry: LockEntry, cancel_event: Optional[Any]) -> AcquisitionResult:
        target = self.artifact_path(entry)
        if not entry.digest:
            if self.require_digest:
                error = IntegrityViolation(entry.name, entry.version, None, "no digest recorded")
                return AcquisitionResult(entry, Outcome.FAILED, error=error)
        elif target.is_file() and file_digest(target, split_digest(entry.digest)[0]) == _canonical(entry.digest):
            logger.debug("Reusing downloaded %s", target.name, extra=extra_context(event="download", outcome="cached"))
            return AcquisitionResult(entry, Outcome.CACHED, path=target)

        last_error: Optional[BaseException] = None
        attempt = 0
        for attempt in range(1, self.max_attempts + 1):
            if _is_set(cancel_event):
                return self._cancelled(entry, attempt - 1)
            try:
                await self._download(entry, target)
                return AcquisitionResult(entry, Outcome.DOWNLOADED, path=target, attempts=attempt)
            except IntegrityViolation as exc:
                logger.error(
                    "Integrity check failed for %s",
                    entry.label,
                    extra=extra_context(event="download", outcome="integrity_violation", package=entry.name),
                )
                return AcquisitionResult(entry, Outcome.FAILED, error=exc, attempts=attempt)
            except _NETWORK_ERRORS as exc:
                last_error = exc
                retryable = getattr(exc, "retryable", True)
                logger.warning(
                    "Download attempt %d/%d for %s failed: %s",
                    attempt,
                    self.max_attempts,
                    entry.label,
                    exc,
                    extra=extra_context(event="download", outcome="retry", package=entry.name, target=safe_url(entry.source)),
                )
                if not retryable or attempt == self.max_attempts:
                    break
                await _sleep_unless_set(self.backoff_base * (2 ** (attempt - 1)), cancel_event)
        error = AcquisitionFailed(entry.name, entry.version, last_error)
        return AcquisitionResult(entry, Outcome.FAILED, error=error, attempts=attempt)

    async def _download(self, entry: LockEntry, target: Path) -> None:
        """Stream into ``<target>.part``, verify, then move into place."""
        algorithm = split_digest(entry.digest)[0] if entry.digest else Constants.DIGEST_ALGORITHM
        hasher = hashlib.new(algorithm)
        part = target.with_name(target.name + ".part")
        try:
            with open(part, "wb") as handle:
                async for chunk in self.transport.stream(entry.source, self.timeout):
                    handle.write(chunk)
                    hasher.update(chunk)
        except BaseException:
            _unlink(part)
            raise
        actual = f"{algorithm}:{hasher.hexdigest()}"
        if entry.digest and actual != _canonical(entry.digest):
            _unlink(part)
            raise IntegrityViolation(entry.name, entry.version, entry.digest, actual)
        os.replace(part, target)

    @staticmethod
    def _cancelled(entry: LockEntry, attempts: int, discard: Optional[Path] = None) -> AcquisitionResult:
        if discard is not None:
            _unlink(discard)
        return AcquisitionResult(
            entry,
            Outcome.CANCELLED,
            error=AcquisitionCancelled(entry.name, entry.version),
            attempts=attempts,
        )


def _canonical(digest: str) -> str:
    algorithm, value = split_digest(digest)
    return f"{algorithm}:{value}"


def _is_set(event: Optional[Any]) -> bool:
    return event is not None and event.is_set()


async def _sleep_unless_set(delay: float, event: Optional[Any]) -> None:
    loop = asyncio.get_running_loop()
    deadline = loop.time() + delay
    while not _is_set(event):
        remaining = deadline - loop.time()
        if remaining <= 0:
            return
        await asyncio.sleep(min(remaining, 0.05))


def _unlink(path: Path) -> None:
    try:
        path.unlink()
    except FileNotFoundError:
        pass
