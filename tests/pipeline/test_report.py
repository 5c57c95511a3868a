# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for report and checksum manifest output.
"""

import json
from pathlib import Path

from relpipe.pipeline.models import ArtifactCategory, ArtifactRecord, RunReport, TransformOutcome, TransformResult
from relpipe.pipeline.report import signed_checksums, summarize, write_checksums, write_report
from relpipe.utils.filesystem import TEMP_PREFIX
from relpipe.utils.hashing import compute_sha256


def _signed_report(root: Path) -> RunReport:
    report = RunReport(root=root)
    for index, name in enumerate(["sub/b.dll", "a.exe", "c.msi"]):
        path = root / name
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(name.encode())
        record = ArtifactRecord(path, path.suffix, path.stat().st_size, ArtifactCategory.SIGNABLE)
        outcome = TransformOutcome.FAILED if name == "c.msi" else TransformOutcome.SUCCESS
        report.add(index, TransformResult(record, "sign", outcome, critical=True))
    return report


class TestChecksums:
    def test_only_signed_successes(self, tmp_path: Path) -> None:
        checksums = signed_checksums(_signed_report(tmp_path))

        assert set(checksums) == {"a.exe", "sub/b.dll"}
        assert checksums["a.exe"] == compute_sha256(tmp_path / "a.exe")

    def test_manifest_format(self, tmp_path: Path) -> None:
        manifest = tmp_path / "dist" / "SHA256SUMS"

        write_checksums(_signed_report(tmp_path), manifest)

        lines = manifest.read_text(encoding="utf-8").splitlines()
        assert lines == [
            f"{compute_sha256(tmp_path / 'a.exe')}  a.exe",
            f"{compute_sha256(tmp_path / 'sub' / 'b.dll')}  sub/b.dll",
        ]

    def test_empty_manifest_still_written(self, tmp_path: Path) -> None:
        manifest = tmp_path / "SHA256SUMS"

        write_checksums(RunReport(root=tmp_path), manifest)

        assert manifest.exists()
        assert manifest.read_text(encoding="utf-8") == ""


class TestReport:
    def test_write_report(self, tmp_path: Path) -> None:
        path = tmp_path / "reports" / "run.json"

        write_report(_signed_report(tmp_path), path)

        data = json.loads(path.read_text(encoding="utf-8"))
        assert data["succeeded"] is False
        assert data["counts"] == {"sign": {"success": 2, "failed": 1}}
        assert not list(path.parent.glob(f"{TEMP_PREFIX}*"))


class TestSummarize:
    def test_failure_logged_as_error(self, tmp_path: Path, log_records) -> None:  # type: ignore[no-untyped-def]
        records = log_records("relpipe.pipeline.report")

        summarize(_signed_report(tmp_path))

        errors = [r for r in records if r.levelname == "ERROR"]
        assert len(errors) == 1
        assert errors[0].failed == [str(tmp_path / "c.msi")]

    def test_success_logged_as_info(self, tmp_path: Path, log_records) -> None:  # type: ignore[no-untyped-def]
        records = log_records("relpipe.pipeline.report")

        summarize(RunReport(root=tmp_path))

        assert [r.levelname for r in records] == ["INFO"]
