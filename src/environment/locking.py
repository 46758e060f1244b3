"""Advisory lock serializing operations on one environment."""

from __future__ import annotations

import fcntl
import logging
import os
import time
from pathlib import Path
from typing import IO, Optional, Union

from constants import Constants
from common.logging_utils import extra_context
from errors import EnvironmentLocked

logger = logging.getLogger(__name__)


class EnvironmentLock:
    """Exclusive ``fcntl.flock`` on the environment's lock file.

    With ``wait`` the lock is polled until ``timeout`` seconds pass; without
    it a held lock fails at once. Either way failure raises
    ``EnvironmentLocked``.
    """

    def __init__(
        self,
        path: Union[str, Path],
        *,
        wait: bool = Constants.LOCK_WAIT,
        timeout: float = Constants.LOCK_TIMEOUT_SEC,
        poll_interval: float = Constants.LOCK_POLL_INTERVAL_SEC,
    ):
        self.path = Path(path)
        self.wait = wait
        self.timeout = timeout
        self.poll_interval = poll_interval
        self._handle: Optional[IO[str]] = None

    @property
    def held(self) -> bool:
        return self._handle is not None

    def acquire(self) -> "EnvironmentLock":
        if self._handle is not None:
            return self
        self.path.parent.mkdir(parents=True, exist_ok=True)
        handle = open(self.path, "a+", encoding="utf-8")
        start = time.monotonic()
        while True:
            try:
                fcntl.flock(handle.fileno(), fcntl.LOCK_EX | fcntl.LOCK_NB)
                break
            except OSError:
                if not self.wait or time.monotonic() - start >= self.timeout:
                    handle.close()
                    logger.warning(
                        "Environment lock is held elsewhere",
                        extra=extra_context(event="lock", outcome="busy", target=str(self.path)),
                    )
                    raise EnvironmentLocked(str(self.path))
                time.sleep(self.poll_interval)
        handle.seek(0)
        handle.truncate()
        handle.write(f"{os.getpid()}\n")
        handle.flush()
        self._handle = handle
        logger.debug("Acquired environment lock", extra=extra_context(event="lock", target=str(self.path)))
        return self

    def release(self) -> None:
        if self._handle is None:
            return
        try:
            fcntl.flock(self._handle.fileno(), fcntl.LOCK_UN)
        finally:
            self._handle.close()
            self._handle = None

    def __enter__(self) -> "EnvironmentLock":
        return self.acquire()

    def __exit__(self, exc_type, exc, tb) -> None:
        self.release()
