# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Built-in transforms: strip-maps, sign, verify.

strip-maps deletes debug-map side files. A map that is already gone counts
as stripped, which makes a second run over the same tree a no-op.

sign hands each signable binary to the backends through `try_in_order`
while holding the run's signing semaphore, so the number of signing tool
processes stays within `signing.max_concurrent` however many workers run.
A file waiting for the semaphore when the run is cancelled is skipped
rather than handed to a tool.

verify is opt-in. It asks the same backends to check the signature, and is
skipped whenever signing itself is skipped for the run.
"""

import logging

from relpipe.exceptions import ConfigurationMissing, PlatformMismatch
from relpipe.logging.logger import get_logger
from relpipe.pipeline.models import ArtifactCategory, ArtifactRecord, TransformOutcome, TransformResult
from relpipe.signing.backends import SignFailure, try_in_order
from relpipe.transforms.registry import Transform, TransformContext, TransformRegistry
from relpipe.utils.filesystem import safe_delete
from relpipe.utils.hashing import compute_sha256

_logger: logging.Logger = get_logger(__name__)

STRIP_MAPS = "strip-maps"
SIGN = "sign"
VERIFY = "verify"

CANCELLED_DETAIL = "run cancelled"


def _is_debug_map(record: ArtifactRecord) -> bool:
    return record.category == ArtifactCategory.DEBUG_MAP or record.extension == ".map"


def _is_signable(record: ArtifactRecord) -> bool:
    return record.category == ArtifactCategory.SIGNABLE


def _strip_map(record: ArtifactRecord, context: TransformContext) -> TransformResult:
    transform = STRIP_MAPS_TRANSFORM
    try:
        removed = safe_delete(record.absolute_path)
    except OSError as err:
        _logger.warning(
            "Could not delete debug map",
            extra={"path": str(record.absolute_path), "error": str(err)},
        )
        return transform.result(record, TransformOutcome.FAILED, str(err))

    if not removed:
        return transform.result(record, TransformOutcome.SUCCESS, "already removed")

    _logger.debug("Deleted debug map", extra={"path": str(record.absolute_path)})
    return transform.result(record, TransformOutcome.SUCCESS, "deleted")


def _sign(record: ArtifactRecord, context: TransformContext) -> TransformResult:
    transform = SIGN_TRANSFORM
    path = record.absolute_path

    try:
        credential = context.signing_credential()
    except (PlatformMismatch, ConfigurationMissing) as reason:
        return transform.result(record, TransformOutcome.SKIPPED, str(reason))

    try:
        digest_before = compute_sha256(path)
    except OSError as err:
        _logger.error("Cannot read artifact", extra={"path": str(path), "error": str(err)})
        return transform.result(record, TransformOutcome.FAILED, f"cannot read artifact: {err}")

    with context.signing_semaphore:
        if context.cancel_event.is_set():
            return transform.result(record, TransformOutcome.SKIPPED, CANCELLED_DETAIL)
        outcome = try_in_order(
            context.backends, path, credential, operation="sign", cancel_event=context.cancel_event
        )

    if isinstance(outcome, SignFailure):
        _logger.error(
            "Failed to sign artifact",
            extra={"path": str(path), "error_kind": outcome.kind.value, "reason": outcome.message},
        )
        return transform.result(record, TransformOutcome.FAILED, outcome.message)

    try:
        digest_after = compute_sha256(path)
    except OSError as err:
        _logger.error("Signed artifact unreadable", extra={"path": str(path), "error": str(err)})
        return transform.result(record, TransformOutcome.FAILED, f"signed artifact unreadable: {err}")

    if digest_after == digest_before:
        _logger.warning(
            "Signer reported success but the artifact is unchanged",
            extra={"path": str(path), "backend": outcome.backend},
        )

    return transform.result(
        record,
        TransformOutcome.SUCCESS,
        f"signed with {outcome.backend} sha256={digest_after}",
    )


def _verify(record: ArtifactRecord, context: TransformContext) -> TransformResult:
    transform = VERIFY_TRANSFORM
    try:
        context.signing_credential()
    except (PlatformMismatch, ConfigurationMissing) as reason:
        return transform.result(record, TransformOutcome.SKIPPED, str(reason))

    with context.signing_semaphore:
        if context.cancel_event.is_set():
            return transform.result(record, TransformOutcome.SKIPPED, CANCELLED_DETAIL)
        outcome = try_in_order(
            context.backends, record.absolute_path, operation="verify", cancel_event=context.cancel_event
        )

    if isinstance(outcome, SignFailure):
        _logger.error(
            "Signature verification failed",
            extra={"path": str(record.absolute_path), "reason": outcome.message},
        )
        return transform.result(record, TransformOutcome.FAILED, outcome.message)

    return transform.result(record, TransformOutcome.SUCCESS, f"verified with {outcome.backend}")


STRIP_MAPS_TRANSFORM = Transform(
    name=STRIP_MAPS,
    predicate=_is_debug_map,
    apply=_strip_map,
    critical=False,
)

SIGN_TRANSFORM = Transform(
    name=SIGN,
    predicate=_is_signable,
    apply=_sign,
    critical=True,
)

VERIFY_TRANSFORM = Transform(
    name=VERIFY,
    predicate=_is_signable,
    apply=_verify,
    critical=True,
)


def build_default_registry() -> TransformRegistry:
    """Every built-in transform, in application order."""
    return TransformRegistry([STRIP_MAPS_TRANSFORM, SIGN_TRANSFORM, VERIFY_TRANSFORM])
