"""Byte transports used by the acquirer."""

from __future__ import annotations

import logging
import urllib.parse
import urllib.request
from abc import ABC, abstractmethod
from typing import AsyncIterator, Dict, List, Mapping, Optional

import aiohttp

from constants import Constants
from common.logging_utils import extra_context, safe_url
from errors import PyPackageError

logger = logging.getLogger(__name__)

_RETRYABLE_STATUS = {408, 425, 429}


class TransportError(PyPackageError):
    """A fetch failed; ``retryable`` tells the acquirer whether to try again."""

    def __init__(self, message: str, status: Optional[int] = None, retryable: bool = True):
        self.status = status
        self.retryable = retryable
        super().__init__(message)


def status_is_retryable(status: int) -> bool:
    return status >= 500 or status in _RETRYABLE_STATUS


def operation_timeout(timeout: float) -> aiohttp.ClientTimeout:
    """Bound connecting and each socket read, not the whole transfer."""
    return aiohttp.ClientTimeout(total=None, sock_connect=timeout, sock_read=timeout)


class Transport(ABC):
    """Streams the body of a URL as chunks."""

    async def start(self) -> None:
        """Open any shared resources (sessions, pools)."""

    async def stop(self) -> None:
        """Release what ``start`` opened."""

    @abstractmethod
    def stream(self, url: str, timeout: float) -> AsyncIterator[bytes]:
        """Yield the body in chunks; raise ``TransportError`` or a network error."""


def _file_path(url: str) -> str:
    return urllib.request.url2pathname(urllib.parse.urlsplit(url).path)


class AiohttpTransport(Transport):
    """HTTP(S) via one shared ``aiohttp.ClientSession``; ``file://`` read from disk."""

    def __init__(self, chunk_size: int = Constants.DOWNLOAD_CHUNK_SIZE, headers: Optional[Dict[str, str]] = None):
        self.chunk_size = chunk_size
        self._headers = {"User-Agent": Constants.USER_AGENT, **(headers or {})}
        self._session: Optional[aiohttp.ClientSession] = None

    async def start(self) -> None:
        if self._session is None:
            connector = aiohttp.TCPConnector(limit=100)
            self._session = aiohttp.ClientSession(connector=connector, headers=self._headers)

    async def stop(self) -> None:
        if self._session:
            await self._session.close()
            self._session = None

    async def stream(self, url: str, timeout: float) -> AsyncIterator[bytes]:
        scheme = urllib.parse.urlsplit(url).scheme
        if scheme == "file":
            with open(_file_path(url), "rb") as handle:
                while True:
                    chunk = handle.read(self.chunk_size)
                    if not chunk:
                        return
                    yield chunk
        if scheme not in ("http", "https"):
            raise TransportError(f"Unsupported URL scheme: {safe_url(url)}", retryable=False)

        if self._session is None:
            await self.start()
        assert self._session is not None
        async with self._session.get(url, timeout=operation_timeout(timeout)) as response:
            if response.status != 200:
                logger.debug(
                    "Download returned HTTP %d",
                    response.status,
                    extra=extra_context(event="http_response", status_code=response.status, target=safe_url(url)),
                )
                raise TransportError(
                    f"HTTP {response.status} for {safe_url(url)}",
                    status=response.status,
                    retryable=status_is_retryable(response.status),
                )
            async for chunk in response.content.iter_chunked(self.chunk_size):
                yield chunk


class MappingTransport(Transport):
    """Serve fixed payloads by URL, for offline use and tests.

    ``failures`` maps a URL to a number of leading attempts that fail with a
    retryable ``TransportError``. Every call is appended to ``requests``.
    """

    def __init__(self, payloads: Mapping[str, bytes], failures: Optional[Mapping[str, int]] = None):
        self.payloads = dict(payloads)
        self.failures = dict(failures or {})
        self.requests: List[str] = []

    async def stream(self, url: str, timeout: float) -> AsyncIterator[bytes]:
        self.requests.append(url)
        if self.failures.get(url, 0) > 0:
            self.failures[url] -= 1
            raise TransportError(f"Simulated failure for {url}")
        if url not in self.payloads:
            raise TransportError(f"HTTP 404 for {url}", status=404, retryable=False)
        payload = self.payloads[url]
        for start in range(0, len(payload), Constants.DOWNLOAD_CHUNK_SIZE):
            yield payload[start:start + Constants.DOWNLOAD_CHUNK_SIZE]
        if not payload:
            yield b""
