# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Subcommand handlers for the relpipe CLI.

Each function here corresponds to one CLI subcommand and returns an exit
code from `exit_codes`. No print() calls; everything goes through the
structured logger.
"""

import argparse
import logging
import signal
import threading
from contextlib import contextmanager
from pathlib import Path
from typing import Iterator, Optional

from relpipe.cli.exit_codes import ARTIFACT_ERROR, CONFIG_ERROR, RUNTIME_ERROR, SUCCESS
from relpipe.config.exceptions import ConfigError
from relpipe.config.loader import load_config, with_overrides
from relpipe.config.schema import RelpipeConfig
from relpipe.exceptions import PipelineSetupError
from relpipe.logging.logger import get_logger
from relpipe.pipeline.runner import PipelineRunner
from relpipe.runtime.bootstrap import bootstrap
from relpipe.scanner.scanner import ArtifactScanner
from relpipe.transforms.builtin import SIGN, STRIP_MAPS


def _load_and_bootstrap(
    args: argparse.Namespace,
    command_name: str,
) -> tuple[Optional[RelpipeConfig], logging.Logger]:
    """
    The shared setup every command needs: load config, apply CLI overrides,
    run bootstrap.

    Returns (config, logger). A None config means the configuration could
    not be loaded; the error is already logged and the caller returns
    CONFIG_ERROR.
    """
    logger = get_logger(f"relpipe.cli.{command_name}", log_level=args.log_level or "INFO")

    config_path = Path(args.config) if args.config is not None else None
    try:
        config = load_config(config_path)
        config = with_overrides(
            config,
            "pipeline",
            max_workers=getattr(args, "workers", None),
            report_path=getattr(args, "report", None),
            checksum_path=getattr(args, "checksums", None),
        )
        config = with_overrides(
            config, "signing", product_name=getattr(args, "product_name", None)
        )
    except ConfigError as err:
        logger.error(
            "Configuration error",
            extra={"command": command_name, "error": str(err)},
        )
        return None, logger

    bootstrap(config.global_config, log_level=args.log_level)
    return config, logger


@contextmanager
def _cancel_on_interrupt(logger: logging.Logger) -> Iterator[threading.Event]:
    """
    Turn Ctrl-C into a cancel event for the duration of a run.

    Files already being processed (and their signing tools) finish; no new
    file is started. A second Ctrl-C gets the default behaviour back.
    """
    cancel_event = threading.Event()

    def _handle(signum: int, frame: object) -> None:
        logger.warning("Interrupt received, finishing in-flight files")
        cancel_event.set()
        signal.signal(signal.SIGINT, previous)

    if threading.current_thread() is not threading.main_thread():
        yield cancel_event
        return

    previous = signal.signal(signal.SIGINT, _handle)
    try:
        yield cancel_event
    finally:
        signal.signal(signal.SIGINT, previous)


def _execute_run(
    args: argparse.Namespace,
    command_name: str,
    transforms: Optional[list[str]] = None,
) -> int:
    config, logger = _load_and_bootstrap(args, command_name)
    if config is None:
        return CONFIG_ERROR

    try:
        if transforms:
            config = with_overrides(config, "pipeline", transforms=transforms)
    except ConfigError as err:
        logger.error("Configuration error", extra={"command": command_name, "error": str(err)})
        return CONFIG_ERROR

    root = Path(args.root)
    logger.info(
        "Command started",
        extra={
            "command": command_name,
            "root": str(root),
            "transforms": config.pipeline.transforms,
            "dry_run": args.dry_run,
        },
    )

    try:
        runner = PipelineRunner(config, dry_run=args.dry_run)
        with _cancel_on_interrupt(logger) as cancel_event:
            report = runner.run(root, cancel_event=cancel_event)
    except PipelineSetupError as err:
        logger.error("Run could not start", extra={"command": command_name, "error": str(err)})
        return RUNTIME_ERROR
    except Exception as err:
        logger.error(
            "Runtime error",
            extra={"command": command_name, "error": str(err)},
            exc_info=True,
        )
        return RUNTIME_ERROR

    if not report.succeeded:
        return ARTIFACT_ERROR

    logger.info("Command completed", extra={"command": command_name})
    return SUCCESS


def handle_run(args: argparse.Namespace) -> int:
    """Run the configured transforms (or the --transform selection) over a tree."""
    return _execute_run(args, "run", transforms=args.transforms)


def handle_strip_maps(args: argparse.Namespace) -> int:
    """Delete debug maps under a tree."""
    return _execute_run(args, "strip-maps", transforms=[STRIP_MAPS])


def handle_sign(args: argparse.Namespace) -> int:
    """Sign every signable artifact under a tree."""
    return _execute_run(args, "sign", transforms=[SIGN])


def handle_scan(args: argparse.Namespace) -> int:
    """Log how every file under a tree is classified, without changing anything."""
    config, logger = _load_and_bootstrap(args, "scan")
    if config is None:
        return CONFIG_ERROR

    scanner = ArtifactScanner(
        signable_extensions=config.scan.signable_extensions,
        debug_map_extensions=config.scan.debug_map_extensions,
    )
    counts: dict[str, int] = {}
    for record in scanner.scan(Path(args.root)):
        counts[record.category.value] = counts.get(record.category.value, 0) + 1
        logger.info(
            "Artifact",
            extra={
                "path": str(record.absolute_path),
                "category": record.category.value,
                "size_bytes": record.size_bytes,
            },
        )

    logger.info("Scan complete", extra={"root": str(args.root), "counts": counts})
    return SUCCESS


def handle_info(args: argparse.Namespace) -> int:
    """Display version and environment information."""
    logger = get_logger("relpipe.cli.info", log_level=args.log_level or "INFO")

    from relpipe import __version__
    from relpipe.runtime.environment import get_system_info

    system_info = get_system_info()

    logger.info(
        "System information",
        extra={
            "relpipe_version": __version__,
            "python_version": system_info.python_version,
            "platform": system_info.platform,
            "architecture": system_info.architecture,
            "hostname": system_info.hostname,
            "config": args.config,
        },
    )
    return SUCCESS
