"""In-memory index client for tests and offline use."""

from __future__ import annotations

import hashlib
from typing import Dict, Iterable, List, Mapping, Optional, Union

from errors import PackageNotFound
from registry.base import IndexClient
from resolver.models import PackageCandidate
from versioning.models import Requirement, Version
from versioning.parser import normalize_name, parse_requirement

ReleaseSpec = Union[Iterable[str], Mapping[str, object]]


class InMemoryIndexClient(IndexClient):
    """Serve a fixed candidate set without network access.

    ``packages`` maps a name to ``{version: release}`` where a release is
    either a list of requirement strings or a dict with keys ``requires``,
    ``source``, ``digest``, ``filename``, ``requires_python`` and ``payload``.
    When ``payload`` (archive bytes) is given and no digest is, the sha256 of
    the payload is used so acquisition can verify it.
    """

    def __init__(self, packages: Mapping[str, Mapping[str, ReleaseSpec]], base_url: str = "memory://index/"):
        self._releases: Dict[str, Dict[Version, dict]] = {}
        self.calls: List[tuple] = []
        for raw_name, releases in packages.items():
            name = normalize_name(raw_name)
            table = self._releases.setdefault(name, {})
            for version_text, spec in releases.items():
                version = Version(version_text)
                table[version] = self._normalize_release(name, version, spec, base_url)

    @staticmethod
    def _normalize_release(name: str, version: Version, spec: ReleaseSpec, base_url: str) -> dict:
        if isinstance(spec, Mapping):
            release = dict(spec)
        else:
            release = {"requires": list(spec)}
        release.setdefault("requires", [])
        filename = release.get("filename") or f"{name.replace('-', '_')}-{version}-py3-none-any.whl"
        release["filename"] = filename
        release.setdefault("source", f"{base_url}{name}/{filename}")
        payload: Optional[bytes] = release.get("payload")  # type: ignore[assignment]
        if release.get("digest") is None and payload is not None:
            release["digest"] = "sha256:" + hashlib.sha256(payload).hexdigest()
        return release

    def list_versions(self, name: str) -> List[PackageCandidate]:
        name = normalize_name(name)
        self.calls.append(("list_versions", name))
        table = self._releases.get(name)
        if table is None:
            raise PackageNotFound(name)
        return [
            PackageCandidate(
                name=name,
                version=version,
                source=release["source"],
                filename=release["filename"],
                digest=release.get("digest"),
                requires_python=release.get("requires_python"),
            )
            for version, release in sorted(table.items(), key=lambda kv: kv[0], reverse=True)
        ]

    def fetch_metadata(self, name: str, version: Version) -> List[Requirement]:
        name = normalize_name(name)
        self.calls.append(("fetch_metadata", name, str(version)))
        table = self._releases.get(name)
        if table is None or version not in table:
            raise PackageNotFound(name)
        return [parse_requirement(text) for text in table[version]["requires"]]

    def payload(self, source: str) -> Optional[bytes]:
        """Archive bytes registered for a source URL, if any."""
        for table in self._releases.values():
            for release in table.values():
                if release["source"] == source:
                    return release.get("payload")
        return None

    def payloads(self) -> Dict[str, bytes]:
        """Every registered ``{source: archive bytes}``, e.g. to feed a ``MappingTransport``."""
        return {
            release["source"]: release["payload"]
            for table in self._releases.values()
            for release in table.values()
            if release.get("payload") is not None
        }
