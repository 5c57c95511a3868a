# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Type-safe configuration schemas for relpipe.

Every section gets its own frozen pydantic model:
  - frozen=True: the config is populated once at startup and never mutated
  - extra="forbid": unknown fields cause immediate failure
  - validate_default=True: even defaults get type-checked

Unlike the certificate material (read from the environment by the
credential resolver at signing time), everything here is plain build
configuration that is safe to commit next to the project.
"""

from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator

from relpipe.logging.logger import VALID_LOG_LEVELS

DEFAULT_SIGNABLE_EXTENSIONS: tuple[str, ...] = (".exe", ".msi", ".dll", ".nupkg")
DEFAULT_DEBUG_MAP_EXTENSIONS: tuple[str, ...] = (".map",)
DEFAULT_TRANSFORMS: tuple[str, ...] = ("strip-maps", "sign")


def _normalize_extensions(values: list[str]) -> list[str]:
    normalized: list[str] = []
    for value in values:
        ext = value.strip().lower()
        if not ext:
            raise ValueError("extensions must not be empty strings")
        if not ext.startswith("."):
            ext = "." + ext
        if ext not in normalized:
            normalized.append(ext)
    return normalized


class GlobalConfig(BaseModel):
    """Cross-cutting settings: schema version and observability."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    config_version: str = Field(
        default="1.0.0",
        description="Schema version for compatibility tracking",
    )
    log_level: str = Field(
        default="INFO",
        description="One of DEBUG, INFO, WARNING, ERROR, CRITICAL",
    )
    log_file: Optional[str] = Field(
        default=None,
        description="Optional path for file-based log output",
    )

    @field_validator("log_level")
    @classmethod
    def _check_log_level(cls, value: str) -> str:
        upper = value.upper()
        if upper not in VALID_LOG_LEVELS:
            raise ValueError(f"log_level must be one of {sorted(VALID_LOG_LEVELS)}, got {value!r}")
        return upper


class ScanConfig(BaseModel):
    """How the scanner classifies files by extension."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    signable_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_SIGNABLE_EXTENSIONS),
        description="Extensions of binaries that need a signature",
    )
    debug_map_extensions: list[str] = Field(
        default_factory=lambda: list(DEFAULT_DEBUG_MAP_EXTENSIONS),
        description="Extensions of generated debug-map side files",
    )

    @field_validator("signable_extensions", "debug_map_extensions")
    @classmethod
    def _normalize(cls, values: list[str]) -> list[str]:
        return _normalize_extensions(values)


class SigningConfig(BaseModel):
    """
    Signing tools, credential sources and limits.

    The environment variable lists are ordered: the first variable holding a
    non-empty value wins. File-based sources are only consulted when no
    variable is set.
    """

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    primary_tool: str = Field(
        default="signtool",
        description="Platform SDK signer, tried first",
    )
    fallback_tool: str = Field(
        default="osslsigncode",
        description="Cross-platform signer, tried only when the primary fails",
    )
    fallback_enabled: bool = Field(default=True)
    digest: str = Field(default="sha256", description="File digest algorithm for the primary tool")
    product_name: str = Field(
        default="Chatbox",
        min_length=1,
        description="Product name embedded by the fallback signer",
    )
    certificate_env: list[str] = Field(
        default_factory=lambda: ["CSC_LINK", "WIN_CERT_PATH"],
        description="Environment variables holding the PFX path, in precedence order",
    )
    password_env: list[str] = Field(
        default_factory=lambda: ["CSC_KEY_PASSWORD", "WIN_CERT_PASSWORD"],
        description="Environment variables holding the PFX password, in precedence order",
    )
    certificate_path: Optional[str] = Field(
        default=None,
        description="PFX path used when no certificate variable is set",
    )
    password_file: Optional[str] = Field(
        default=None,
        description="File holding the PFX password, used when no password variable is set",
    )
    timeout_seconds: int = Field(
        default=300,
        ge=1,
        le=3600,
        description="Max seconds one signing tool invocation may run",
    )
    target_platforms: list[str] = Field(
        default_factory=lambda: ["Windows"],
        description="platform.system() values signing runs on; empty means any",
    )
    max_concurrent: int = Field(
        default=1,
        ge=1,
        le=64,
        description="Cap on simultaneous signing tool processes",
    )


class PipelineConfig(BaseModel):
    """Which transforms run and how the runner behaves."""

    model_config = ConfigDict(frozen=True, extra="forbid", validate_default=True)

    transforms: list[str] = Field(
        default_factory=lambda: list(DEFAULT_TRANSFORMS),
        min_length=1,
        description="Transform names, applied to each file in this order",
    )
    max_workers: int = Field(
        default=1,
        ge=1,
        le=64,
        description="Files processed in parallel (1 = sequential)",
    )
    require_root: bool = Field(
        default=False,
        description="Fail the run when the output root does not exist",
    )
    require_files: bool = Field(
        default=False,
        description="Fail the run when the scan finds no files",
    )
    report_path: Optional[str] = Field(
        default=None,
        description="Where to write the JSON run report",
    )
    checksum_path: Optional[str] = Field(
        default=None,
        description="Where to write the SHA256 manifest of signed artifacts",
    )

    @field_validator("transforms")
    @classmethod
    def _unique_transforms(cls, values: list[str]) -> list[str]:
        if len(set(values)) != len(values):
            raise ValueError(f"transforms must not repeat: {values}")
        return values


class RelpipeConfig(BaseModel):
    """
    Top-level config container. Every section is optional in YAML; missing
    sections take their defaults, so an empty file is a valid config.
    """

    model_config = ConfigDict(
        frozen=True, extra="forbid", validate_default=True, populate_by_name=True
    )

    global_config: GlobalConfig = Field(default_factory=GlobalConfig, alias="global")
    scan: ScanConfig = Field(default_factory=ScanConfig)
    signing: SigningConfig = Field(default_factory=SigningConfig)
    pipeline: PipelineConfig = Field(default_factory=PipelineConfig)


def default_config() -> RelpipeConfig:
    """The configuration used when no file is given."""
    return RelpipeConfig.model_validate({})
