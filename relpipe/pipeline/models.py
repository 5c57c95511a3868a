# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Data model for a pipeline run.

ArtifactRecord is created by the scanner and never mutated. Transforms turn
records into TransformResults, which accumulate in a RunReport, the only
thing a run persists or prints.

RunReport is the one piece of shared mutable state when files are processed
on a worker pool, so every append and read goes through its lock. Results
are kept in scan order (not completion order) so two runs over identical
trees produce identical reports.
"""

import threading
from collections import Counter
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import Any

from pydantic import BaseModel, ConfigDict, SecretStr


class ArtifactCategory(str, Enum):
    DEBUG_MAP = "debug_map"
    SIGNABLE = "signable"
    OTHER = "other"


class TransformOutcome(str, Enum):
    SUCCESS = "success"
    SKIPPED = "skipped"
    FAILED = "failed"


class CredentialSource(str, Enum):
    ENV_VAR = "env_var"
    FILE_PATH = "file_path"


@dataclass(frozen=True)
class ArtifactRecord:
    """One scanned file in the build output tree."""

    absolute_path: Path
    extension: str
    size_bytes: int
    category: ArtifactCategory


class Credential(BaseModel):
    """
    Certificate material for one run.

    The password is a SecretStr so it renders as '**********' in reprs,
    exceptions and log extras. Only the process layer unwraps it, to build
    the tool's argument vector.
    """

    model_config = ConfigDict(frozen=True, extra="forbid")

    certificate_path: str
    password: SecretStr = SecretStr("")
    source: CredentialSource
    source_name: str


@dataclass(frozen=True)
class TransformResult:
    """Terminal outcome of one transform on one artifact."""

    artifact: ArtifactRecord
    transform_name: str
    outcome: TransformOutcome
    detail: str = ""
    critical: bool = False

    def to_dict(self) -> dict[str, Any]:
        return {
            "path": str(self.artifact.absolute_path),
            "category": self.artifact.category.value,
            "transform": self.transform_name,
            "outcome": self.outcome.value,
            "detail": self.detail,
            "critical": self.critical,
        }


@dataclass
class RunReport:
    """Ordered results of one run plus aggregate views over them."""

    root: Path
    scanned_count: int = 0
    cancelled: bool = False
    dry_run: bool = False
    _entries: list[tuple[int, int, TransformResult]] = field(default_factory=list, repr=False)
    _lock: threading.Lock = field(default_factory=threading.Lock, repr=False, compare=False)

    def add(self, scan_index: int, result: TransformResult) -> None:
        """Record a result for the file at `scan_index` in scan order."""
        with self._lock:
            self._entries.append((scan_index, len(self._entries), result))

    def mark_scanned(self, count: int) -> None:
        with self._lock:
            self.scanned_count = count

    @property
    def results(self) -> list[TransformResult]:
        with self._lock:
            ordered = sorted(self._entries, key=lambda entry: (entry[0], entry[1]))
        return [entry[2] for entry in ordered]

    def results_for(self, transform_name: str) -> list[TransformResult]:
        return [r for r in self.results if r.transform_name == transform_name]

    def counts(self) -> dict[str, dict[str, int]]:
        """Outcome counts per transform, e.g. {"sign": {"success": 2, "failed": 1}}."""
        tally: dict[str, Counter[str]] = {}
        for result in self.results:
            tally.setdefault(result.transform_name, Counter())[result.outcome.value] += 1
        return {name: dict(counter) for name, counter in tally.items()}

    def outcome_count(self, outcome: TransformOutcome, transform_name: str | None = None) -> int:
        return sum(
            1
            for r in self.results
            if r.outcome == outcome and (transform_name is None or r.transform_name == transform_name)
        )

    @property
    def failed_critical(self) -> list[TransformResult]:
        return [r for r in self.results if r.critical and r.outcome == TransformOutcome.FAILED]

    @property
    def succeeded(self) -> bool:
        return not self.cancelled and not self.failed_critical

    @property
    def exit_code(self) -> int:
        return 0 if self.succeeded else 1

    def to_dict(self) -> dict[str, Any]:
        return {
            "root": str(self.root),
            "scanned_count": self.scanned_count,
            "cancelled": self.cancelled,
            "dry_run": self.dry_run,
            "succeeded": self.succeeded,
            "counts": self.counts(),
            "results": [r.to_dict() for r in self.results],
        }
