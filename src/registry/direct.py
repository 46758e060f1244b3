"""Candidates for direct archive URLs (``name @ https://...``)."""

import re
import urllib.parse
from typing import Optional, Tuple

from constants import SourceOrigin
from errors import InvalidVersion
from resolver.models import PackageCandidate
from versioning.models import Version
from versioning.parser import normalize_name

_SDIST_SUFFIXES = (".tar.gz", ".tgz", ".zip")
_HASH_FRAGMENT = re.compile(r"^(?P<algo>sha256)=(?P<hex>[0-9a-fA-F]{64})$")


def split_filename(filename: str) -> Optional[Tuple[str, str]]:
    """Return ``(name, version)`` parsed from a wheel or sdist filename."""
    if filename.endswith(".whl"):
        parts = filename[:-4].split("-")
        if len(parts) < 5:
            return None
        return parts[0], parts[1]
    for suffix in _SDIST_SUFFIXES:
        if filename.endswith(suffix):
            stem = filename[: -len(suffix)]
            name, sep, version = stem.rpartition("-")
            if not sep or not name:
                return None
            return name, version
    return None


def url_filename(url: str) -> str:
    path = urllib.parse.urlsplit(url).path
    return urllib.parse.unquote(path.rsplit("/", 1)[-1])


def url_digest(url: str) -> Optional[str]:
    """Digest carried in a ``#sha256=<hex>`` URL fragment."""
    fragment = urllib.parse.urlsplit(url).fragment
    match = _HASH_FRAGMENT.match(fragment)
    if not match:
        return None
    return f"{match.group('algo')}:{match.group('hex').lower()}"


def url_version(url: str) -> Optional[Version]:
    parsed = split_filename(url_filename(url))
    if parsed is None:
        return None
    try:
        return Version(parsed[1])
    except InvalidVersion:
        return None


def candidate_from_url(name: str, url: str) -> Optional[PackageCandidate]:
    """Build a direct-source candidate, or None when the version is not in the filename."""
    version = url_version(url)
    if version is None:
        return None
    return PackageCandidate(
        name=normalize_name(name),
        version=version,
        source=url,
        filename=url_filename(url),
        digest=url_digest(url),
        origin=SourceOrigin.DIRECT,
    )
