# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Tests for the signing backends and the fallback combinator.
"""

import subprocess
import threading
from pathlib import Path

import pytest
from pydantic import SecretStr

from relpipe.config.schema import SigningConfig
from relpipe.pipeline.models import Credential, CredentialSource
from relpipe.signing.backends import (
    FallbackTool,
    PrimaryTool,
    SignFailure,
    SignSuccess,
    build_backends,
    try_in_order,
)
from relpipe.signing.process import ErrorKind, ProcessOutcome

from conftest import SIGNED_MARKER, FakeBackend


@pytest.fixture()
def credential() -> Credential:
    return Credential(
        certificate_path="/certs/codesign.pfx",
        password=SecretStr("hunter2"),
        source=CredentialSource.ENV_VAR,
        source_name="CSC_LINK",
    )


def _outcome(success: bool, message: str = "") -> ProcessOutcome:
    return ProcessOutcome(
        success=success,
        exit_code=0 if success else 1,
        stdout="",
        stderr="",
        elapsed_seconds=0.0,
        error_kind=None if success else ErrorKind.PROCESS_EXIT,
        message=message,
    )


class TestPrimaryTool:
    def test_sign_argv(self, credential: Credential) -> None:
        argv = PrimaryTool().sign_argv(Path("/out/app.exe"), credential)
        assert argv == [
            "signtool", "sign", "/fd", "sha256", "/a",
            "/f", "/certs/codesign.pfx", "/p", "hunter2", str(Path("/out/app.exe")),
        ]

    def test_failure_maps_to_sign_failure(self, credential: Credential, monkeypatch: pytest.MonkeyPatch) -> None:
        seen = {}

        def fake_run(argv, timeout_seconds, secrets=()):  # type: ignore[no-untyped-def]
            seen["secrets"] = list(secrets)
            return _outcome(False, "signtool exited with code 1")

        monkeypatch.setattr("relpipe.signing.backends.run_tool", fake_run)

        result = PrimaryTool().sign(Path("/out/app.exe"), credential)

        assert isinstance(result, SignFailure)
        assert result.backend == "signtool"
        assert result.kind == ErrorKind.PROCESS_EXIT
        assert seen["secrets"] == ["hunter2"]


class TestFallbackTool:
    def test_sign_argv(self, credential: Credential) -> None:
        target = Path("/out/app.exe")
        argv = FallbackTool(product_name="Chatbox").sign_argv(target, credential)
        assert argv == [
            "osslsigncode", "sign",
            "-pkcs12", "/certs/codesign.pfx",
            "-pass", "hunter2",
            "-n", "Chatbox",
            "-in", str(target),
            "-out", str(Path("/out/app.exe.signed")),
        ]

    def test_success_swaps_signed_sibling(
        self, tmp_path: Path, credential: Credential, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        target = tmp_path / "app.exe"
        target.write_bytes(b"original")

        def fake_run(argv, timeout_seconds, secrets=()):  # type: ignore[no-untyped-def]
            Path(argv[argv.index("-out") + 1]).write_bytes(b"original" + SIGNED_MARKER)
            return _outcome(True)

        monkeypatch.setattr("relpipe.signing.backends.run_tool", fake_run)

        result = FallbackTool().sign(target, credential)

        assert isinstance(result, SignSuccess)
        assert target.read_bytes() == b"original" + SIGNED_MARKER
        assert not (tmp_path / "app.exe.signed").exists()

    def test_failure_leaves_original_and_no_sibling(
        self, tmp_path: Path, credential: Credential, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        target = tmp_path / "app.exe"
        target.write_bytes(b"original")

        def fake_run(argv, timeout_seconds, secrets=()):  # type: ignore[no-untyped-def]
            Path(argv[argv.index("-out") + 1]).write_bytes(b"half-written")
            return _outcome(False, "osslsigncode exited with code 1")

        monkeypatch.setattr("relpipe.signing.backends.run_tool", fake_run)

        result = FallbackTool().sign(target, credential)

        assert isinstance(result, SignFailure)
        assert target.read_bytes() == b"original"
        assert not (tmp_path / "app.exe.signed").exists()

    def test_stale_sibling_removed_before_signing(
        self, tmp_path: Path, credential: Credential, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        target = tmp_path / "app.exe"
        target.write_bytes(b"original")
        (tmp_path / "app.exe.signed").write_bytes(b"stale")
        monkeypatch.setattr(
            "relpipe.signing.backends.run_tool",
            lambda argv, timeout_seconds, secrets=(): _outcome(True),
        )

        result = FallbackTool().sign(target, credential)

        # The tool claimed success but produced nothing; the stale file must not be used.
        assert isinstance(result, SignFailure)
        assert result.kind == ErrorKind.FILESYSTEM
        assert target.read_bytes() == b"original"

    def test_symlinked_target_stays_a_link(
        self, tmp_path: Path, credential: Credential, monkeypatch: pytest.MonkeyPatch
    ) -> None:
        real = tmp_path / "store" / "app.exe"
        real.parent.mkdir()
        real.write_bytes(b"original")
        link = tmp_path / "app.exe"
        try:
            link.symlink_to(real)
        except (OSError, NotImplementedError):
            pytest.skip("symlinks are not available here")

        def fake_run(argv, timeout_seconds, secrets=()):  # type: ignore[no-untyped-def]
            source = Path(argv[argv.index("-in") + 1])
            Path(argv[argv.index("-out") + 1]).write_bytes(source.read_bytes() + SIGNED_MARKER)
            return _outcome(True)

        monkeypatch.setattr("relpipe.signing.backends.run_tool", fake_run)

        result = FallbackTool().sign(link, credential)

        assert isinstance(result, SignSuccess)
        assert link.is_symlink()
        assert link.resolve() == real.resolve()
        assert real.read_bytes() == b"original" + SIGNED_MARKER
        assert not (real.parent / "app.exe.signed").exists()
        assert not (tmp_path / "app.exe.signed").exists()


class TestBuildBackends:
    def test_defaults(self) -> None:
        backends = build_backends(SigningConfig())
        assert [type(b) for b in backends] == [PrimaryTool, FallbackTool]
        assert backends[1].product_name == "Chatbox"

    def test_fallback_disabled(self) -> None:
        backends = build_backends(SigningConfig(fallback_enabled=False, primary_tool="/sdk/signtool.exe"))
        assert len(backends) == 1
        assert backends[0].executable == "/sdk/signtool.exe"


class TestTryInOrder:
    def test_primary_success_skips_fallback(self, tmp_path: Path, credential: Credential, fake_backend) -> None:  # type: ignore[no-untyped-def]
        target = tmp_path / "app.exe"
        target.write_bytes(b"x")
        primary, fallback = fake_backend("signtool"), fake_backend("osslsigncode")

        result = try_in_order([primary, fallback], target, credential)

        assert result == SignSuccess("signtool")
        assert fallback.calls == []

    def test_exactly_one_warning_on_fallback(  # type: ignore[no-untyped-def]
        self, tmp_path: Path, credential: Credential, fake_backend, log_records
    ) -> None:
        records = log_records("relpipe.signing.backends")
        target = tmp_path / "app.exe"
        target.write_bytes(b"x")

        result = try_in_order(
            [fake_backend("signtool", mode="exit"), fake_backend("osslsigncode")], target, credential
        )

        assert isinstance(result, SignSuccess)
        warnings = [r for r in records if r.levelname == "WARNING"]
        assert len(warnings) == 1
        assert warnings[0].getMessage() == "signtool failed, trying osslsigncode"
        assert warnings[0].error_kind == "process_exit"

    def test_all_fail_joins_reasons(self, tmp_path: Path, credential: Credential, fake_backend) -> None:  # type: ignore[no-untyped-def]
        target = tmp_path / "app.exe"
        target.write_bytes(b"x")
        primary = fake_backend("signtool", mode="spawn")
        fallback = fake_backend("osslsigncode", mode="exit")

        result = try_in_order([primary, fallback], target, credential)

        assert isinstance(result, SignFailure)
        assert result.message == (
            "signtool: signtool could not be launched; osslsigncode: osslsigncode exited with code 1"
        )
        assert result.kind == ErrorKind.PROCESS_EXIT
        assert primary.sign_calls == 1
        assert fallback.sign_calls == 1

    def test_cancelled_run_does_not_start_fallback(  # type: ignore[no-untyped-def]
        self, tmp_path: Path, credential: Credential, fake_backend, log_records
    ) -> None:
        records = log_records("relpipe.signing.backends")
        target = tmp_path / "app.exe"
        target.write_bytes(b"x")
        cancel = threading.Event()

        class InterruptedPrimary(FakeBackend):
            def sign(self, file_path, credential):  # type: ignore[no-untyped-def]
                cancel.set()
                return super().sign(file_path, credential)

        fallback = fake_backend("osslsigncode")

        result = try_in_order(
            [InterruptedPrimary("signtool", mode="exit"), fallback], target, credential, cancel_event=cancel
        )

        assert isinstance(result, SignFailure)
        assert result.message == "signtool: signtool exited with code 1"
        assert fallback.calls == []
        assert target.read_bytes() == b"x"
        warnings = [r for r in records if r.levelname == "WARNING"]
        assert [w.getMessage() for w in warnings] == ["signtool failed, run cancelled before trying osslsigncode"]

    def test_timeout_then_fallback_warns_once(  # type: ignore[no-untyped-def]
        self, tmp_path: Path, credential: Credential, monkeypatch: pytest.MonkeyPatch, log_records
    ) -> None:
        process_records = log_records("relpipe.signing.process")
        backend_records = log_records("relpipe.signing.backends")
        target = tmp_path / "app.exe"
        target.write_bytes(b"x")

        def fake_run(argv, **kwargs):  # type: ignore[no-untyped-def]
            if argv[0] == "signtool":
                raise subprocess.TimeoutExpired(cmd=argv, timeout=kwargs["timeout"])
            Path(argv[argv.index("-out") + 1]).write_bytes(b"x" + SIGNED_MARKER)
            return subprocess.CompletedProcess(args=argv, returncode=0, stdout="", stderr="")

        monkeypatch.setattr("relpipe.signing.process.subprocess.run", fake_run)

        result = try_in_order(
            [PrimaryTool(timeout_seconds=5), FallbackTool(timeout_seconds=5)], target, credential
        )

        assert result == SignSuccess("osslsigncode")
        assert target.read_bytes() == b"x" + SIGNED_MARKER
        warnings = [r for r in process_records + backend_records if r.levelname == "WARNING"]
        assert len(warnings) == 1
        assert warnings[0].reason == "signtool timed out after 5s"

    def test_no_backends(self, tmp_path: Path, credential: Credential) -> None:
        result = try_in_order([], tmp_path / "app.exe", credential)
        assert isinstance(result, SignFailure)

    def test_sign_requires_credential(self, tmp_path: Path, fake_backend) -> None:  # type: ignore[no-untyped-def]
        with pytest.raises(ValueError):
            try_in_order([fake_backend("signtool")], tmp_path / "app.exe")

    def test_verify_needs_no_credential(self, tmp_path: Path, fake_backend) -> None:  # type: ignore[no-untyped-def]
        target = tmp_path / "app.exe"
        target.write_bytes(b"x" + SIGNED_MARKER)
        backend = fake_backend("signtool")

        result = try_in_order([backend], target, operation="verify")

        assert isinstance(result, SignSuccess)
        assert backend.calls == [("verify", target)]
