"""Per-package outcomes of an acquisition run."""

from __future__ import annotations

from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Dict, List, Optional

from errors import PyPackageError
from lockfile.model import LockEntry


class Outcome(Enum):
    DOWNLOADED = "downloaded"
    CACHED = "cached"
    FAILED = "failed"
    CANCELLED = "cancelled"


@dataclass
class AcquisitionResult:
    entry: LockEntry
    outcome: Outcome
    path: Optional[Path] = None
    error: Optional[PyPackageError] = None
    attempts: int = 0

    @property
    def ok(self) -> bool:
        return self.outcome in (Outcome.DOWNLOADED, Outcome.CACHED)

    @property
    def name(self) -> str:
        return self.entry.name


@dataclass
class AcquisitionReport:
    """Results keyed by package name; one failure never hides another result."""
    results: Dict[str, AcquisitionResult] = field(default_factory=dict)

    def add(self, result: AcquisitionResult) -> None:
        self.results[result.name] = result

    def _with(self, *outcomes: Outcome) -> List[AcquisitionResult]:
        return [r for _, r in sorted(self.results.items()) if r.outcome in outcomes]

    @property
    def succeeded(self) -> List[AcquisitionResult]:
        return self._with(Outcome.DOWNLOADED, Outcome.CACHED)

    @property
    def failed(self) -> List[AcquisitionResult]:
        return self._with(Outcome.FAILED)

    @property
    def cancelled(self) -> List[AcquisitionResult]:
        return self._with(Outcome.CANCELLED)

    @property
    def downloads(self) -> int:
        """Artifacts actually fetched over the transport."""
        return len(self._with(Outcome.DOWNLOADED))

    @property
    def ok(self) -> bool:
        return not self.failed and not self.cancelled

    def __len__(self) -> int:
        return len(self.results)
