"""Per-run memoization of index queries."""

from __future__ import annotations

import logging
import threading
import time
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Any, Dict, Generic, Iterable, List, Optional, Tuple, TypeVar

from constants import Constants
from common.logging_utils import extra_context, is_debug_enabled
from errors import IndexUnavailable, PackageNotFound
from registry.base import IndexClient
from resolver.models import PackageCandidate
from versioning.models import Requirement, Version
from versioning.parser import normalize_name

logger = logging.getLogger(__name__)

T = TypeVar("T")


@dataclass
class CacheEntry(Generic[T]):
    """A memoized result or the terminal error it produced."""

    value: Optional[T] = None
    error: Optional[BaseException] = None
    created_at: float = field(default_factory=time.time)

    def unwrap(self) -> T:
        if self.error is not None:
            raise self.error
        return self.value  # type: ignore[return-value]


class CachingIndexClient(IndexClient):
    """Wrap an index client so each name and release is queried once per run.

    ``PackageNotFound`` is cached like a result; ``IndexUnavailable`` is not,
    so a later call retries the network.
    """

    def __init__(self, inner: IndexClient, max_workers: int = Constants.INDEX_PREFETCH_WORKERS):
        self._inner = inner
        self._max_workers = max_workers
        self._versions: Dict[str, CacheEntry[List[PackageCandidate]]] = {}
        self._metadata: Dict[Tuple[str, Version], CacheEntry[List[Requirement]]] = {}
        self._lock = threading.Lock()
        self.hits = 0
        self.misses = 0

    @property
    def inner(self) -> IndexClient:
        return self._inner

    def list_versions(self, name: str) -> List[PackageCandidate]:
        name = normalize_name(name)
        with self._lock:
            entry = self._versions.get(name)
            if entry is not None:
                self.hits += 1
        if entry is None:
            entry = self._load_versions(name)
        return list(entry.unwrap())

    def _load_versions(self, name: str) -> CacheEntry[List[PackageCandidate]]:
        try:
            entry: CacheEntry[List[PackageCandidate]] = CacheEntry(value=self._inner.list_versions(name))
        except PackageNotFound as exc:
            entry = CacheEntry(error=exc)
        with self._lock:
            self.misses += 1
            # First writer wins so concurrent prefetches agree on one result
            entry = self._versions.setdefault(name, entry)
        return entry

    def fetch_metadata(self, name: str, version: Version) -> List[Requirement]:
        key = (normalize_name(name), version)
        with self._lock:
            entry = self._metadata.get(key)
            if entry is not None:
                self.hits += 1
        if entry is None:
            try:
                entry = CacheEntry(value=self._inner.fetch_metadata(key[0], version))
            except PackageNotFound as exc:
                entry = CacheEntry(error=exc)
            with self._lock:
                self.misses += 1
                entry = self._metadata.setdefault(key, entry)
        return list(entry.unwrap())

    def prefetch(self, names: Iterable[str]) -> None:
        """Query uncached names concurrently and wait for all of them.

        Errors are swallowed here; the resolver sees them again when it asks
        for the name through ``list_versions``.
        """
        with self._lock:
            pending = sorted({normalize_name(n) for n in names} - set(self._versions))
        if len(pending) < 2:
            return
        if is_debug_enabled(logger):
            logger.debug(
                "Prefetching index entries",
                extra=extra_context(event="prefetch", component="index_cache", count=len(pending)),
            )
        with ThreadPoolExecutor(max_workers=min(self._max_workers, len(pending))) as pool:
            futures = [pool.submit(self._load_versions, name) for name in pending]
            for future in futures:
                try:
                    future.result()
                except IndexUnavailable as exc:
                    logger.debug("Prefetch failed: %s", exc)

    def stats(self) -> Dict[str, Any]:
        """Get cache statistics."""
        return {
            "names": len(self._versions),
            "releases": len(self._metadata),
            "hits": self.hits,
            "misses": self.misses,
        }
