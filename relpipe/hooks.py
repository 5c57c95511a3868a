# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Entry points for a packaging orchestrator.

A packager calls these as post-build hooks and awaits either a return or a
raised error:

    strip_maps(root_dir)        delete debug maps under root_dir
    sign_artifacts(context)     sign every signable binary under the
                                packager's output directory

`sign_artifacts` accepts the output directory directly, a mapping, or the
packager's context object. The directory is taken from `appOutDir`, falling
back to `packager.appOutDir`.

Three conditions make signing a logged no-op that returns None: the host
is not a signing platform, the output directory does not exist, or no
certificate is configured. An artifact that fails both signing backends
is a release blocker, so that raises SigningFailedError.
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional, Sequence, Union

from relpipe.config.loader import apply_env_overrides, with_overrides
from relpipe.config.schema import RelpipeConfig, SigningConfig, default_config
from relpipe.exceptions import SigningFailedError
from relpipe.logging.logger import get_logger
from relpipe.pipeline.models import Credential, RunReport
from relpipe.pipeline.runner import PipelineRunner
from relpipe.runtime.environment import host_platform, platform_matches
from relpipe.signing.backends import SigningBackend
from relpipe.signing.credentials import CredentialResolver
from relpipe.transforms.builtin import SIGN, STRIP_MAPS

_logger: logging.Logger = get_logger(__name__)

PathLike = Union[str, "os.PathLike[str]"]


def _lookup(source: Any, key: str) -> Any:
    if source is None:
        return None
    if isinstance(source, Mapping):
        return source.get(key)
    return getattr(source, key, None)


def resolve_output_dir(context: Any) -> Optional[Path]:
    """Find the output directory in whatever the packager handed us."""
    if isinstance(context, (str, os.PathLike)):
        return Path(context)

    out_dir = _lookup(context, "appOutDir") or _lookup(_lookup(context, "packager"), "appOutDir")
    return Path(out_dir) if out_dir else None


class _ResolvedCredential(CredentialResolver):
    """Hands the runner the credential the hook already resolved, so it is looked up once."""

    def __init__(self, credential: Credential) -> None:
        super().__init__()
        self._credential = credential

    def resolve(self, config: SigningConfig) -> Optional[Credential]:
        return self._credential


def _config_for(transform: str, config: Optional[RelpipeConfig]) -> RelpipeConfig:
    base = config if config is not None else apply_env_overrides(default_config())
    return with_overrides(base, "pipeline", transforms=[transform])


def strip_maps(root_dir: PathLike, config: Optional[RelpipeConfig] = None) -> RunReport:
    """
    Delete every debug map under `root_dir`.

    A missing directory is a no-op. Deletion failures are logged and listed
    in the report but never raised.
    """
    report = PipelineRunner(_config_for(STRIP_MAPS, config)).run(Path(root_dir))
    _logger.info(
        "Debug maps stripped",
        extra={"root": str(report.root), "counts": report.counts().get(STRIP_MAPS, {})},
    )
    return report


def sign_artifacts(
    context: Any,
    config: Optional[RelpipeConfig] = None,
    credential_resolver: Optional[CredentialResolver] = None,
    backends: Optional[Sequence[SigningBackend]] = None,
    platform_name: Optional[str] = None,
) -> Optional[RunReport]:
    """
    Sign every signable artifact under the packager's output directory.

    Returns:
        The RunReport, or None when signing was skipped as a whole.

    Raises:
        SigningFailedError: One or more artifacts failed every backend.
    """
    run_config = _config_for(SIGN, config)
    signing = run_config.signing
    current = platform_name if platform_name is not None else host_platform()

    if not platform_matches(signing.target_platforms, current):
        _logger.info(
            "Skipping signing, platform is not a signing target",
            extra={"platform": current, "targets": signing.target_platforms},
        )
        return None

    out_dir = resolve_output_dir(context)
    if out_dir is None or not out_dir.is_dir():
        _logger.warning(
            "Output directory not found, skipping signing",
            extra={"out_dir": str(out_dir)},
        )
        return None

    resolver = credential_resolver or CredentialResolver()
    credential = resolver.resolve(signing)
    if credential is None:
        return None

    runner = PipelineRunner(
        run_config,
        backends=backends,
        credential_resolver=_ResolvedCredential(credential),
        platform_name=current,
    )
    report = runner.run(out_dir)

    if report.scanned_count == 0 or not report.results_for(SIGN):
        _logger.info("No files to sign", extra={"out_dir": str(out_dir)})
        return report

    failed = report.failed_critical
    if failed:
        raise SigningFailedError([r.artifact.absolute_path for r in failed])

    _logger.info(
        "Signing complete",
        extra={"out_dir": str(out_dir), "signed": len(report.results_for(SIGN))},
    )
    return report
