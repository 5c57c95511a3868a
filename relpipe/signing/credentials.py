# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Credential resolution for signing.

Certificate path, first non-empty wins:
  1. each variable in `signing.certificate_env` (default CSC_LINK, then WIN_CERT_PATH)
  2. `signing.certificate_path` from the config file

Password, first non-empty wins:
  1. each variable in `signing.password_env` (default CSC_KEY_PASSWORD, then WIN_CERT_PASSWORD)
  2. the stripped contents of `signing.password_file`
  3. "" (passwordless PFX files are valid)

No certificate path means no signing for the run. That is a logged skip,
not an error: release pipelines without a certificate (forks, local
builds) still have to finish.
"""

import logging
import os
from collections.abc import Mapping
from pathlib import Path
from typing import Optional

from pydantic import SecretStr

from relpipe.config.schema import SigningConfig
from relpipe.logging.logger import get_logger
from relpipe.pipeline.models import Credential, CredentialSource

_logger: logging.Logger = get_logger(__name__)


class CredentialResolver:
    """Looks up certificate material from the environment and the config."""

    def __init__(self, environ: Optional[Mapping[str, str]] = None) -> None:
        self._environ = environ

    @property
    def environ(self) -> Mapping[str, str]:
        return os.environ if self._environ is None else self._environ

    def _first_env(self, names: list[str]) -> tuple[Optional[str], str]:
        for name in names:
            value = self.environ.get(name, "")
            if value:
                return name, value
        return None, ""

    def _resolve_password(self, config: SigningConfig) -> tuple[str, str]:
        """Return (source name, password). The source name is safe to log."""
        name, value = self._first_env(config.password_env)
        if name is not None:
            return name, value

        if config.password_file:
            password_path = Path(config.password_file)
            try:
                value = password_path.read_text(encoding="utf-8").strip()
            except OSError as err:
                _logger.warning(
                    "Cannot read password file, using empty password",
                    extra={"path": str(password_path), "error": str(err)},
                )
                return "default", ""
            return "password_file", value

        return "default", ""

    def resolve(self, config: SigningConfig) -> Optional[Credential]:
        """
        Resolve the credential for one run.

        Returns:
            The Credential, or None when no certificate path is configured.
        """
        env_name, certificate = self._first_env(config.certificate_env)
        if env_name is not None:
            source = CredentialSource.ENV_VAR
            source_name = env_name
        elif config.certificate_path:
            certificate = config.certificate_path
            source = CredentialSource.FILE_PATH
            source_name = "certificate_path"
        else:
            _logger.warning(
                "No certificate configured, signing will be skipped",
                extra={"checked": [*config.certificate_env, "certificate_path"]},
            )
            return None

        # CSC_LINK may legitimately hold something the signer resolves itself,
        # so a missing local file is only worth a warning.
        if not Path(certificate).is_file():
            _logger.warning(
                "Certificate path does not point to a local file",
                extra={"source": source_name},
            )

        password_source, password = self._resolve_password(config)

        _logger.info(
            "Signing credential resolved",
            extra={
                "source": source_name,
                "password_source": password_source,
                "has_password": bool(password),
            },
        )

        return Credential(
            certificate_path=certificate,
            password=SecretStr(password),
            source=source,
            source_name=source_name,
        )
