# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Pipeline runner. Scans a tree and drives every file through the transforms.

State machine:

    Idle -> Scanning -> Processing -> Reporting -> Done
                 \\
                  -> Failed   (setup errors only)

Failed is reserved for problems that make the run meaningless: an unknown
transform name, a required root that is missing, no files where files are
required. Per-file failures never move the runner to Failed; they are
results in the report, and the report decides the exit status.

Per file, transforms run in registry order and the first Failed result
aborts the rest for that file (they are reported Skipped). Other files keep
going. Files are independent, so with `max_workers > 1` they run on a
thread pool; the signing semaphore in the transform context keeps the number
of signing tool processes bounded separately.

Cancellation: once the cancel event is set no new file is started. Files
already running finish, including any signing tool that is mid-signature.
Signing tools run in their own process group, so a terminal Ctrl-C reaches
only relpipe. After cancellation no new tool is started: a failed primary
is not followed by the fallback, and files still waiting for the signing
semaphore are skipped.
"""

import logging
import threading
from concurrent.futures import ThreadPoolExecutor
from enum import Enum
from pathlib import Path
from typing import Optional, Sequence

from relpipe.config.schema import RelpipeConfig, default_config
from relpipe.exceptions import PipelineSetupError
from relpipe.logging.logger import get_logger
from relpipe.pipeline.models import ArtifactRecord, RunReport, TransformOutcome
from relpipe.pipeline.report import summarize, write_checksums, write_report
from relpipe.scanner.scanner import ArtifactScanner
from relpipe.signing.backends import SigningBackend, build_backends
from relpipe.signing.credentials import CredentialResolver
from relpipe.transforms.builtin import build_default_registry
from relpipe.transforms.registry import TransformContext, TransformRegistry

_logger: logging.Logger = get_logger(__name__)


class RunState(str, Enum):
    IDLE = "idle"
    SCANNING = "scanning"
    PROCESSING = "processing"
    REPORTING = "reporting"
    DONE = "done"
    FAILED = "failed"


class PipelineRunner:
    """Runs the configured transforms over one output tree."""

    def __init__(
        self,
        config: Optional[RelpipeConfig] = None,
        registry: Optional[TransformRegistry] = None,
        backends: Optional[Sequence[SigningBackend]] = None,
        credential_resolver: Optional[CredentialResolver] = None,
        scanner: Optional[ArtifactScanner] = None,
        dry_run: bool = False,
        platform_name: Optional[str] = None,
    ) -> None:
        self.config = config or default_config()
        self.registry = registry if registry is not None else build_default_registry()
        self.backends = (
            list(backends) if backends is not None else build_backends(self.config.signing)
        )
        self.credential_resolver = credential_resolver or CredentialResolver()
        self.scanner = scanner or ArtifactScanner(
            signable_extensions=self.config.scan.signable_extensions,
            debug_map_extensions=self.config.scan.debug_map_extensions,
        )
        self.dry_run = dry_run
        self.platform_name = platform_name
        self._state = RunState.IDLE
        self._state_lock = threading.Lock()

    @property
    def state(self) -> RunState:
        return self._state

    def _set_state(self, state: RunState) -> None:
        with self._state_lock:
            self._state = state
        _logger.debug("Runner state changed", extra={"state": state.value})

    def _fail(self, message: str) -> PipelineSetupError:
        self._set_state(RunState.FAILED)
        _logger.error("Pipeline setup failed", extra={"error": message})
        return PipelineSetupError(message)

    def run(self, root: Path, cancel_event: Optional[threading.Event] = None) -> RunReport:
        """
        Process every file under `root`.

        Args:
            root: Build output directory.
            cancel_event: Set it to stop starting new files.

        Returns:
            The RunReport. Check `report.succeeded` / `report.exit_code`.

        Raises:
            PipelineSetupError: The run could not start (runner ends in Failed).
        """
        root = Path(root).absolute()
        cancel_event = cancel_event or threading.Event()
        pipeline_config = self.config.pipeline

        self._set_state(RunState.SCANNING)

        try:
            registry = self.registry.select(pipeline_config.transforms)
        except KeyError as err:
            raise self._fail(
                f"Unknown transform {err.args[0]!r}; available: {', '.join(self.registry.names())}"
            ) from err

        if pipeline_config.require_root and not root.is_dir():
            raise self._fail(f"Output root is not a directory: {root}")

        records = list(self.scanner.scan(root))
        if pipeline_config.require_files and not records:
            raise self._fail(f"No files found under {root}")

        report = RunReport(root=root, dry_run=self.dry_run)
        report.mark_scanned(len(records))

        _logger.info(
            "Scan complete",
            extra={
                "root": str(root),
                "files": len(records),
                "transforms": registry.names(),
                "dry_run": self.dry_run,
            },
        )

        self._set_state(RunState.PROCESSING)
        context = TransformContext(
            config=self.config,
            backends=self.backends,
            credential_resolver=self.credential_resolver,
            platform_name=self.platform_name,
            cancel_event=cancel_event,
        )

        if pipeline_config.max_workers == 1:
            started = 0
            for index, record in enumerate(records):
                if cancel_event.is_set():
                    break
                self._process_file(index, record, registry, context, report)
                started += 1
        else:
            started = self._process_parallel(records, registry, context, report, cancel_event)

        if started < len(records) or cancel_event.is_set():
            report.cancelled = True
            _logger.warning(
                "Run cancelled",
                extra={"root": str(root), "not_started": len(records) - started},
            )

        self._set_state(RunState.REPORTING)
        summarize(report)
        if pipeline_config.report_path is not None:
            write_report(report, Path(pipeline_config.report_path))
        if pipeline_config.checksum_path is not None and not self.dry_run:
            write_checksums(report, Path(pipeline_config.checksum_path))

        self._set_state(RunState.DONE)
        return report

    def _process_parallel(
        self,
        records: list[ArtifactRecord],
        registry: TransformRegistry,
        context: TransformContext,
        report: RunReport,
        cancel_event: threading.Event,
    ) -> int:
        """Run files on the pool. Returns how many were started."""

        def work(index: int, record: ArtifactRecord) -> bool:
            if cancel_event.is_set():
                return False
            self._process_file(index, record, registry, context, report)
            return True

        with ThreadPoolExecutor(
            max_workers=self.config.pipeline.max_workers,
            thread_name_prefix="relpipe",
        ) as pool:
            futures = [pool.submit(work, index, record) for index, record in enumerate(records)]
            # result() surfaces bugs in the runner itself; transform errors are already results.
            return sum(1 for future in futures if future.result())

    def _process_file(
        self,
        index: int,
        record: ArtifactRecord,
        registry: TransformRegistry,
        context: TransformContext,
        report: RunReport,
    ) -> None:
        failed_transform: Optional[str] = None

        for transform in registry.applicable(record):
            if failed_transform is not None:
                result = transform.result(
                    record, TransformOutcome.SKIPPED, f"aborted: {failed_transform} failed"
                )
            elif self.dry_run:
                result = transform.result(record, TransformOutcome.SKIPPED, "dry run")
            else:
                result = transform.run(record, context)

            report.add(index, result)

            if result.outcome == TransformOutcome.FAILED and failed_transform is None:
                failed_transform = transform.name
