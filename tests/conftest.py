# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Shared pytest fixtures for relpipe tests.

Fixtures here are available to every test file automatically. The signing
fixtures never launch a real signer: FakeBackend stands in for signtool and
osslsigncode and appends a marker to the file it "signs".
"""

import logging
import textwrap
import threading
import time
from collections.abc import Callable, Iterator
from pathlib import Path
from typing import Any, Optional

import pytest

from relpipe.config.schema import RelpipeConfig
from relpipe.pipeline.models import Credential
from relpipe.signing.backends import SignFailure, SigningBackend, SignResult, SignSuccess
from relpipe.signing.credentials import CredentialResolver
from relpipe.signing.process import ErrorKind

SIGNED_MARKER = b"--signed--"


class FakeBackend(SigningBackend):
    """
    In-process signing backend.

    mode: "ok" appends SIGNED_MARKER, "exit" fails like a non-zero exit,
    "spawn" fails like a missing executable.
    """

    def __init__(self, name: str, mode: str = "ok", delay: float = 0.0) -> None:
        super().__init__(executable=name)
        self.name = name
        self.mode = mode
        self.delay = delay
        self.calls: list[tuple[str, Path]] = []
        self.active = 0
        self.max_active = 0
        self._lock = threading.Lock()

    def _enter(self, operation: str, file_path: Path) -> None:
        with self._lock:
            self.calls.append((operation, file_path))
            self.active += 1
            self.max_active = max(self.max_active, self.active)

    def _exit(self) -> None:
        with self._lock:
            self.active -= 1

    def _outcome(self) -> Optional[SignFailure]:
        if self.mode == "spawn":
            return SignFailure(self.name, ErrorKind.PROCESS_SPAWN, f"{self.name} could not be launched")
        if self.mode == "exit":
            return SignFailure(self.name, ErrorKind.PROCESS_EXIT, f"{self.name} exited with code 1")
        return None

    def sign(self, file_path: Path, credential: Credential) -> SignResult:
        self._enter("sign", file_path)
        try:
            if self.delay:
                time.sleep(self.delay)
            failure = self._outcome()
            if failure is not None:
                return failure
            with open(file_path, "ab") as f:
                f.write(SIGNED_MARKER)
            return SignSuccess(self.name)
        finally:
            self._exit()

    def verify(self, file_path: Path) -> SignResult:
        self._enter("verify", file_path)
        try:
            failure = self._outcome()
            if failure is not None:
                return failure
            if not file_path.read_bytes().endswith(SIGNED_MARKER):
                return SignFailure(self.name, ErrorKind.PROCESS_EXIT, "no signature found")
            return SignSuccess(self.name)
        finally:
            self._exit()

    @property
    def sign_calls(self) -> int:
        return sum(1 for op, _ in self.calls if op == "sign")


@pytest.fixture()
def fake_backend() -> Callable[..., FakeBackend]:
    """Factory for FakeBackend instances."""
    return FakeBackend


@pytest.fixture()
def certificate(tmp_path: Path) -> Path:
    pfx = tmp_path / "certs" / "codesign.pfx"
    pfx.parent.mkdir()
    pfx.write_bytes(b"not-really-a-pfx")
    return pfx


@pytest.fixture()
def credential_env(certificate: Path) -> dict[str, str]:
    """Environment with a certificate and password in the primary variables."""
    return {"CSC_LINK": str(certificate), "CSC_KEY_PASSWORD": "hunter2"}


@pytest.fixture()
def resolver(credential_env: dict[str, str]) -> CredentialResolver:
    return CredentialResolver(environ=credential_env)


@pytest.fixture()
def empty_resolver() -> CredentialResolver:
    return CredentialResolver(environ={})


@pytest.fixture()
def make_config() -> Callable[..., RelpipeConfig]:
    """
    Build a RelpipeConfig from section dicts. Signing targets every platform
    unless the test says otherwise, so the suite passes on any host.
    """

    def _make(**sections: Any) -> RelpipeConfig:
        signing = {"target_platforms": [], **sections.pop("signing", {})}
        return RelpipeConfig.model_validate({"signing": signing, **sections})

    return _make


@pytest.fixture()
def out_tree(tmp_path: Path) -> Path:
    """The canonical output tree: app.exe, app.exe.map, readme.txt."""
    root = tmp_path / "out"
    root.mkdir()
    (root / "app.exe").write_bytes(b"MZ-original-binary")
    (root / "app.exe.map").write_text('{"version": 3}', encoding="utf-8")
    (root / "readme.txt").write_text("hello", encoding="utf-8")
    return root


class _ListHandler(logging.Handler):
    def __init__(self) -> None:
        super().__init__(level=logging.DEBUG)
        self.records: list[logging.LogRecord] = []

    def emit(self, record: logging.LogRecord) -> None:
        self.records.append(record)


@pytest.fixture()
def log_records() -> Iterator[Callable[[str], list[logging.LogRecord]]]:
    """
    Capture records from relpipe loggers.

    relpipe loggers don't propagate to the root logger, so caplog can't see
    them. Call the fixture with a logger name to start capturing it; the
    returned list fills up as the code under test logs.
    """
    attached: list[tuple[logging.Logger, _ListHandler]] = []

    def _capture(name: str) -> list[logging.LogRecord]:
        logger = logging.getLogger(name)
        handler = _ListHandler()
        logger.addHandler(handler)
        attached.append((logger, handler))
        return handler.records

    yield _capture

    for logger, handler in attached:
        logger.removeHandler(handler)


@pytest.fixture()
def tmp_config_file(tmp_path: Path) -> Path:
    """A small valid config YAML file."""
    config_content = textwrap.dedent("""\
        global:
          config_version: "1.0.0"
          log_level: "DEBUG"
        signing:
          product_name: "Test Product"
          target_platforms: []
    """)
    config_file = tmp_path / "test_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def invalid_config_file(tmp_path: Path) -> Path:
    """Valid YAML that fails schema validation (unknown key)."""
    config_content = textwrap.dedent("""\
        pipeline:
          transforms: ["sign"]
          parallelism: 4
    """)
    config_file = tmp_path / "invalid_config.yaml"
    config_file.write_text(config_content, encoding="utf-8")
    return config_file


@pytest.fixture()
def broken_yaml_file(tmp_path: Path) -> Path:
    """A file that isn't valid YAML at all."""
    config_file = tmp_path / "broken.yaml"
    config_file.write_text("{{not: yaml: at: all:::", encoding="utf-8")
    return config_file
