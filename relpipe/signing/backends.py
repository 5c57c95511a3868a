# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Signing backends and the fallback combinator.

A backend wraps one external signing tool. It never raises for tool
failures; it returns a SignSuccess or a SignFailure, and `try_in_order`
composes backends into the fallback policy:

  1. try the primary tool (platform SDK signer)
  2. if it fails for any reason, log ONE warning naming the failure and try
     the fallback tool (open-source signer)
  3. if that fails too, return a single failure carrying both reasons

Every backend gets exactly one attempt per file. There is no retry loop and
no skipping on first failure, except that a cancelled run never starts the
fallback after the primary has failed.

The fallback tool writes the signed binary next to the original and the
backend swaps it in with one rename, so an interrupted or failed fallback
never leaves a half-written artifact in place of the original.
"""

import logging
import threading
from abc import ABC, abstractmethod
from collections.abc import Sequence
from dataclasses import dataclass
from pathlib import Path
from typing import Literal, Optional, Union

from relpipe.config.schema import SigningConfig
from relpipe.logging.logger import get_logger
from relpipe.pipeline.models import Credential
from relpipe.signing.process import ErrorKind, ProcessOutcome, run_tool
from relpipe.utils.filesystem import atomic_replace, safe_delete

_logger: logging.Logger = get_logger(__name__)

SIGNED_SUFFIX = ".signed"


@dataclass(frozen=True)
class SignSuccess:
    backend: str
    message: str = ""


@dataclass(frozen=True)
class SignFailure:
    backend: str
    kind: ErrorKind
    message: str


SignResult = Union[SignSuccess, SignFailure]

Operation = Literal["sign", "verify"]


def _from_process(backend: str, outcome: ProcessOutcome) -> SignResult:
    if outcome.success:
        return SignSuccess(backend=backend)
    return SignFailure(
        backend=backend,
        kind=outcome.error_kind or ErrorKind.PROCESS_EXIT,
        message=outcome.message,
    )


class SigningBackend(ABC):
    """One external signing capability."""

    name: str = "backend"

    def __init__(self, executable: str, timeout_seconds: int = 300) -> None:
        self.executable = executable
        self.timeout_seconds = timeout_seconds

    @abstractmethod
    def sign(self, file_path: Path, credential: Credential) -> SignResult:
        """Replace `file_path` in place with a signed version."""

    @abstractmethod
    def verify(self, file_path: Path) -> SignResult:
        """Check that `file_path` carries a valid signature."""

    def _run(self, argv: list[str], credential: Optional[Credential] = None) -> ProcessOutcome:
        secrets = [credential.password.get_secret_value()] if credential is not None else []
        return run_tool(argv, self.timeout_seconds, secrets=secrets)

    def __repr__(self) -> str:
        return f"{type(self).__name__}(executable={self.executable!r})"


class PrimaryTool(SigningBackend):
    """
    Platform SDK signer (signtool). Signs in place:

        signtool sign /fd sha256 /a /f <pfx> /p <password> <file>
    """

    name = "signtool"

    def __init__(
        self,
        executable: str = "signtool",
        digest: str = "sha256",
        timeout_seconds: int = 300,
    ) -> None:
        super().__init__(executable, timeout_seconds)
        self.digest = digest

    def sign_argv(self, file_path: Path, credential: Credential) -> list[str]:
        return [
            self.executable,
            "sign",
            "/fd", self.digest,
            "/a",
            "/f", credential.certificate_path,
            "/p", credential.password.get_secret_value(),
            str(file_path),
        ]

    def sign(self, file_path: Path, credential: Credential) -> SignResult:
        return _from_process(self.name, self._run(self.sign_argv(file_path, credential), credential))

    def verify(self, file_path: Path) -> SignResult:
        argv = [self.executable, "verify", "/pa", str(file_path)]
        return _from_process(self.name, self._run(argv))


class FallbackTool(SigningBackend):
    """
    Cross-platform signer (osslsigncode). Writes a signed sibling and swaps
    it over the original:

        osslsigncode sign -pkcs12 <pfx> -pass <password> -n <product>
                          -in <file> -out <file>.signed
    """

    name = "osslsigncode"

    def __init__(
        self,
        executable: str = "osslsigncode",
        product_name: str = "Chatbox",
        timeout_seconds: int = 300,
    ) -> None:
        super().__init__(executable, timeout_seconds)
        self.product_name = product_name

    @staticmethod
    def signed_sibling(file_path: Path) -> Path:
        return file_path.with_name(file_path.name + SIGNED_SUFFIX)

    def sign_argv(self, file_path: Path, credential: Credential) -> list[str]:
        return [
            self.executable,
            "sign",
            "-pkcs12", credential.certificate_path,
            "-pass", credential.password.get_secret_value(),
            "-n", self.product_name,
            "-in", str(file_path),
            "-out", str(self.signed_sibling(file_path)),
        ]

    def _discard_sibling(self, sibling: Path) -> None:
        try:
            safe_delete(sibling)
        except OSError as err:
            _logger.warning(
                "Could not remove signed sibling",
                extra={"path": str(sibling), "error": str(err)},
            )

    def sign(self, file_path: Path, credential: Credential) -> SignResult:
        # Swap over the link target; replacing the link itself would leave a regular file.
        file_path = file_path.resolve()
        sibling = self.signed_sibling(file_path)
        # Left over from an interrupted run; never let it be mistaken for fresh output.
        self._discard_sibling(sibling)

        outcome = self._run(self.sign_argv(file_path, credential), credential)
        if not outcome.success:
            self._discard_sibling(sibling)
            return _from_process(self.name, outcome)

        try:
            atomic_replace(sibling, file_path)
        except OSError as err:
            self._discard_sibling(sibling)
            return SignFailure(
                backend=self.name,
                kind=ErrorKind.FILESYSTEM,
                message=f"could not replace {file_path.name} with signed output: {err}",
            )

        return SignSuccess(backend=self.name)

    def verify(self, file_path: Path) -> SignResult:
        argv = [self.executable, "verify", "-in", str(file_path)]
        return _from_process(self.name, self._run(argv))


def build_backends(config: SigningConfig) -> list[SigningBackend]:
    """Primary then (when enabled) fallback, configured from the signing section."""
    backends: list[SigningBackend] = [
        PrimaryTool(
            executable=config.primary_tool,
            digest=config.digest,
            timeout_seconds=config.timeout_seconds,
        )
    ]
    if config.fallback_enabled:
        backends.append(
            FallbackTool(
                executable=config.fallback_tool,
                product_name=config.product_name,
                timeout_seconds=config.timeout_seconds,
            )
        )
    return backends


def try_in_order(
    backends: Sequence[SigningBackend],
    file_path: Path,
    credential: Optional[Credential] = None,
    operation: Operation = "sign",
    cancel_event: Optional[threading.Event] = None,
) -> SignResult:
    """
    Run `operation` on each backend until one succeeds.

    Each backend is attempted exactly once. A failure that is followed by
    another attempt is logged as one warning. When every backend fails, the
    returned SignFailure carries every backend's reason joined with "; " and
    the kind of the last failure.

    Once `cancel_event` is set no further backend is started; the failures
    collected so far are returned.
    """
    if not backends:
        return SignFailure(
            backend="none",
            kind=ErrorKind.PROCESS_SPAWN,
            message="no signing backends configured",
        )
    if operation == "sign" and credential is None:
        raise ValueError("signing requires a credential")

    failures: list[SignFailure] = []
    for index, backend in enumerate(backends):
        if operation == "sign":
            result = backend.sign(file_path, credential)
        else:
            result = backend.verify(file_path)

        if isinstance(result, SignSuccess):
            _logger.info(
                f"{operation} succeeded",
                extra={"path": str(file_path), "backend": backend.name},
            )
            return result

        failures.append(result)
        next_backend = backends[index + 1] if index + 1 < len(backends) else None
        if next_backend is None:
            break

        cancelled = cancel_event is not None and cancel_event.is_set()
        if cancelled:
            message = f"{backend.name} failed, run cancelled before trying {next_backend.name}"
        else:
            message = f"{backend.name} failed, trying {next_backend.name}"
        _logger.warning(
            message,
            extra={
                "path": str(file_path),
                "backend": backend.name,
                "operation": operation,
                "error_kind": result.kind.value,
                "reason": result.message,
            },
        )
        if cancelled:
            break

    return SignFailure(
        backend=failures[-1].backend,
        kind=failures[-1].kind,
        message="; ".join(f"{f.backend}: {f.message}" for f in failures),
    )
