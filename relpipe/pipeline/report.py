# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Run report output.

The JSON report is the one persisted record of a run. The checksum manifest
covers only artifacts that were signed in this run, in the GNU sha256sum
format (`<sha256>  <relative path>`, sorted by path), so it can be
published next to the release and checked with `sha256sum -c`.

Both files are written atomically; a crashed run never leaves a truncated
report that looks complete.
"""

import json
import logging
from pathlib import Path

from relpipe.logging.logger import get_logger
from relpipe.pipeline.models import RunReport, TransformOutcome
from relpipe.transforms.builtin import SIGN
from relpipe.utils.filesystem import atomic_write
from relpipe.utils.hashing import compute_sha256

_logger: logging.Logger = get_logger(__name__)


def write_report(report: RunReport, report_path: Path) -> Path:
    """Write the report as indented JSON."""
    content = json.dumps(report.to_dict(), indent=2, sort_keys=False) + "\n"
    atomic_write(report_path, content)
    _logger.info("Run report written", extra={"path": str(report_path)})
    return report_path


def _relative(path: Path, root: Path) -> str:
    try:
        return path.relative_to(root).as_posix()
    except ValueError:
        return path.as_posix()


def signed_checksums(report: RunReport) -> dict[str, str]:
    """{relative path: sha256} for every artifact signed successfully in the run."""
    checksums: dict[str, str] = {}
    for result in report.results_for(SIGN):
        if result.outcome != TransformOutcome.SUCCESS:
            continue
        path = result.artifact.absolute_path
        checksums[_relative(path, report.root)] = compute_sha256(path)
    return checksums


def write_checksums(report: RunReport, checksum_path: Path) -> Path:
    """
    Write the SHA256 manifest of signed artifacts.

    An empty manifest is still written so downstream steps can rely on the
    file existing.
    """
    checksums = signed_checksums(report)
    lines = [f"{checksums[name]}  {name}" for name in sorted(checksums)]
    content = "\n".join(lines) + "\n" if lines else ""
    atomic_write(checksum_path, content)
    _logger.info(
        "Checksum manifest written",
        extra={"path": str(checksum_path), "entries": len(lines)},
    )
    return checksum_path


def summarize(report: RunReport) -> None:
    """Log the aggregate outcome of a run."""
    failed = report.failed_critical
    extra = {
        "root": str(report.root),
        "scanned": report.scanned_count,
        "counts": report.counts(),
        "cancelled": report.cancelled,
        "dry_run": report.dry_run,
    }
    if report.succeeded:
        _logger.info("Pipeline run complete", extra=extra)
        return

    _logger.error(
        "Pipeline run FAILED",
        extra={**extra, "failed": [str(r.artifact.absolute_path) for r in failed]},
    )
