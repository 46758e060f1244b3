"""Artifact download, verification and retry."""

from .downloader import ArtifactAcquirer, file_digest, split_digest
from .report import AcquisitionReport, AcquisitionResult, Outcome
from .transport import AiohttpTransport, MappingTransport, Transport, TransportError

__all__ = [
    "AcquisitionReport",
    "AcquisitionResult",
    "AiohttpTransport",
    "ArtifactAcquirer",
    "MappingTransport",
    "Outcome",
    "Transport",
    "TransportError",
    "file_digest",
    "split_digest",
]
