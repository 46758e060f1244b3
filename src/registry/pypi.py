"""PyPI JSON API index client."""
from __future__ import annotations

import logging
import urllib.parse
from typing import Callable, Dict, List, Optional

from constants import Constants
from common.http_client import get_json
from common.logging_utils import extra_context, is_debug_enabled, safe_url
from errors import IndexUnavailable, InvalidRequirement, InvalidVersion, PackageNotFound
from registry.base import IndexClient
from resolver.models import PackageCandidate
from versioning.markers import default_wheel_predicate
from versioning.models import Requirement, Version
from versioning.parser import normalize_name, parse_requirement

logger = logging.getLogger(__name__)

WheelPredicate = Callable[[str], bool]


class PyPIIndexClient(IndexClient):
    """Query a PyPI-compatible JSON API.

    One artifact is chosen per release: the first wheel (by filename) that
    ``wheel_predicate`` accepts, else the ``.tar.gz`` sdist, else a ``.zip``
    sdist. Yanked files are ignored.
    """

    def __init__(
        self,
        index_url: str = Constants.INDEX_URL,
        *,
        python_version: str = "3",
        wheel_predicate: Optional[WheelPredicate] = None,
        timeout: float = Constants.REQUEST_TIMEOUT,
        retries: int = Constants.HTTP_RETRY_MAX,
    ):
        self.index_url = index_url if index_url.endswith("/") else index_url + "/"
        self._accepts_wheel = wheel_predicate or default_wheel_predicate(python_version)
        self._timeout = timeout
        self._retries = retries

    def _url(self, *parts: str) -> str:
        quoted = "/".join(urllib.parse.quote(p, safe="") for p in parts)
        return f"{self.index_url}{quoted}/json"

    def _get(self, name: str, url: str) -> Dict:
        status_code, _, data = get_json(
            url, context="pypi", timeout=self._timeout, retries=self._retries
        )
        if status_code == 404:
            logger.warning(
                "Package not found on index",
                extra=extra_context(
                    event="http_response",
                    outcome="not_found",
                    status_code=404,
                    target=safe_url(url),
                    package=name,
                ),
            )
            raise PackageNotFound(name)
        if status_code != 200 or not isinstance(data, dict):
            raise IndexUnavailable(f"Unexpected response from {safe_url(url)}: HTTP {status_code}")
        return data

    def _pick_file(self, files: List[Dict]) -> Optional[Dict]:
        usable = [f for f in files if not f.get("yanked") and f.get("filename")]
        wheels = sorted(
            (f for f in usable if f["filename"].endswith(".whl") and self._accepts_wheel(f["filename"])),
            key=lambda f: f["filename"],
        )
        if wheels:
            return wheels[0]
        for suffix in (".tar.gz", ".zip"):
            for f in usable:
                if f.get("packagetype") == "sdist" and f["filename"].endswith(suffix):
                    return f
        return None

    def list_versions(self, name: str) -> List[PackageCandidate]:
        name = normalize_name(name)
        data = self._get(name, self._url(name))
        candidates = []
        for version_text, files in (data.get("releases") or {}).items():
            try:
                version = Version(version_text)
            except InvalidVersion:
                logger.debug("Skipping unparseable version %s of %s", version_text, name)
                continue
            chosen = self._pick_file(files or [])
            if chosen is None:
                continue
            sha256 = (chosen.get("digests") or {}).get("sha256")
            candidates.append(
                PackageCandidate(
                    name=name,
                    version=version,
                    source=chosen["url"],
                    filename=chosen["filename"],
                    digest=f"sha256:{sha256.lower()}" if sha256 else None,
                    requires_python=chosen.get("requires_python"),
                )
            )
        candidates.sort(key=lambda c: c.version, reverse=True)
        if is_debug_enabled(logger):
            logger.debug(
                "Listed versions",
                extra=extra_context(event="list_versions", package=name, count=len(candidates)),
            )
        return candidates

    def fetch_metadata(self, name: str, version: Version) -> List[Requirement]:
        name = normalize_name(name)
        data = self._get(name, self._url(name, str(version)))
        info = data.get("info") or {}
        requirements = []
        for text in info.get("requires_dist") or []:
            try:
                requirements.append(parse_requirement(text))
            except InvalidRequirement as exc:
                logger.warning("Ignoring dependency %r of %s %s: %s", text, name, version, exc)
        return requirements
