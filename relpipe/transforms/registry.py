# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Transform registry.

A transform is a name, a predicate deciding which artifacts it targets, and
an apply function producing exactly one TransformResult for a targeted
artifact. The registry keeps them in declaration order; that order is the
order they are applied to each file.

`critical` marks transforms whose failure fails the run. Stripping debug
maps is not critical (the maps are regenerable and harmless to ship);
signing and verification are.
"""

import logging
import threading
from collections.abc import Callable, Iterable, Iterator, Sequence
from dataclasses import dataclass
from typing import Optional, Union

from relpipe.config.schema import RelpipeConfig
from relpipe.exceptions import ConfigurationMissing, PlatformMismatch
from relpipe.logging.logger import get_logger
from relpipe.pipeline.models import ArtifactRecord, Credential, TransformOutcome, TransformResult
from relpipe.runtime.environment import host_platform, platform_matches
from relpipe.signing.backends import SigningBackend
from relpipe.signing.credentials import CredentialResolver

_logger: logging.Logger = get_logger(__name__)


class TransformContext:
    """
    Per-run state shared by every transform invocation.

    The credential is resolved lazily on first use and cached for the rest
    of the run, including a negative result: once signing is known to be
    skipped, every later file is skipped with the same reason without
    asking again.

    `cancel_event` is the run's cancellation flag; signing checks it so a
    cancelled run starts no new tool process.
    """

    def __init__(
        self,
        config: RelpipeConfig,
        backends: Sequence[SigningBackend],
        credential_resolver: CredentialResolver,
        platform_name: Optional[str] = None,
        cancel_event: Optional[threading.Event] = None,
    ) -> None:
        self.config = config
        self.backends = list(backends)
        self.credential_resolver = credential_resolver
        self.platform_name = platform_name if platform_name is not None else host_platform()
        self.signing_semaphore = threading.BoundedSemaphore(config.signing.max_concurrent)
        self.cancel_event = cancel_event if cancel_event is not None else threading.Event()

        self._lock = threading.Lock()
        self._outcome: Union[Credential, PlatformMismatch, ConfigurationMissing, None] = None

    def signing_credential(self) -> Credential:
        """
        Credential for this run.

        Raises:
            PlatformMismatch: This host is not a signing target.
            ConfigurationMissing: No certificate could be resolved.
        """
        with self._lock:
            outcome = self._outcome
            if outcome is None:
                outcome = self._outcome = self._resolve()
        if isinstance(outcome, Credential):
            return outcome
        raise type(outcome)(*outcome.args)

    def _resolve(self) -> Union[Credential, PlatformMismatch, ConfigurationMissing]:
        signing = self.config.signing
        if not platform_matches(signing.target_platforms, self.platform_name):
            mismatch = PlatformMismatch(
                f"platform {self.platform_name} is not a signing target "
                f"({', '.join(signing.target_platforms)})"
            )
            _logger.info("Skipping signing for this run", extra={"reason": str(mismatch)})
            return mismatch

        credential = self.credential_resolver.resolve(signing)
        if credential is None:
            return ConfigurationMissing(
                "no certificate configured "
                f"({' or '.join(signing.certificate_env)} unset, no certificate_path)"
            )

        return credential


@dataclass(frozen=True)
class Transform:
    name: str
    predicate: Callable[[ArtifactRecord], bool]
    apply: Callable[[ArtifactRecord, TransformContext], TransformResult]
    critical: bool = False

    def result(
        self,
        record: ArtifactRecord,
        outcome: TransformOutcome,
        detail: str = "",
    ) -> TransformResult:
        """Build a result for this transform."""
        return TransformResult(
            artifact=record,
            transform_name=self.name,
            outcome=outcome,
            detail=detail,
            critical=self.critical,
        )

    def run(self, record: ArtifactRecord, context: TransformContext) -> TransformResult:
        """
        Apply the transform, turning an unexpected exception into a Failed result.

        Transforms report expected failures themselves; anything that still
        escapes is a bug or an environment problem worth a traceback in the log,
        but it must not take the other files down with it.
        """
        try:
            result = self.apply(record, context)
        except Exception as err:
            _logger.error(
                "Transform raised",
                extra={"transform": self.name, "path": str(record.absolute_path), "error": str(err)},
                exc_info=True,
            )
            return self.result(record, TransformOutcome.FAILED, f"unexpected error: {err}")
        if result.critical != self.critical:
            result = self.result(record, result.outcome, result.detail)
        return result


class TransformRegistry:
    """Ordered collection of transforms with unique names."""

    def __init__(self, transforms: Iterable[Transform] = ()) -> None:
        self._transforms: list[Transform] = []
        for transform in transforms:
            self.register(transform)

    def register(self, transform: Transform) -> None:
        if transform.name in self.names():
            raise ValueError(f"Transform already registered: {transform.name}")
        self._transforms.append(transform)

    def get(self, name: str) -> Transform:
        for transform in self._transforms:
            if transform.name == name:
                return transform
        raise KeyError(name)

    def names(self) -> list[str]:
        return [t.name for t in self._transforms]

    def select(self, names: Sequence[str]) -> "TransformRegistry":
        """
        A new registry holding only `names`, in the order given.

        Raises:
            KeyError: If a name is not registered.
        """
        return TransformRegistry(self.get(name) for name in names)

    def applicable(self, record: ArtifactRecord) -> list[Transform]:
        return [t for t in self._transforms if t.predicate(record)]

    def __iter__(self) -> Iterator[Transform]:
        return iter(list(self._transforms))

    def __len__(self) -> int:
        return len(self._transforms)
