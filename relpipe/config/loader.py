# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Config loader: reads YAML from disk and produces a validated, frozen RelpipeConfig.

The loading pipeline is linear:
  1. Read raw text from the file
  2. Parse as YAML into a plain dict
  3. Hand the dict to pydantic for schema validation
  4. Apply environment overrides once, producing a new frozen object

Precedence per field, highest first: CLI flag (applied by the CLI through
`with_overrides`), environment variable, YAML value, schema default.

Certificate material is NOT read here. The credential resolver reads it
lazily on the first signing attempt, so a strip-only run never touches
secrets.
"""

import os
from collections.abc import Mapping
from pathlib import Path
from typing import Any, Optional

import yaml
from pydantic import ValidationError

from relpipe.config.exceptions import ConfigLoadError, ConfigValidationError
from relpipe.config.schema import RelpipeConfig, default_config

# environment variable -> (section, field)
ENV_OVERRIDES: dict[str, tuple[str, str]] = {
    "RELPIPE_PRODUCT_NAME": ("signing", "product_name"),
    "RELPIPE_MAX_WORKERS": ("pipeline", "max_workers"),
    "RELPIPE_LOG_LEVEL": ("global_config", "log_level"),
}


def _read_yaml_file(config_path: Path) -> dict[str, Any]:
    """
    Read a YAML file and return the parsed dict.

    An empty file is treated as an empty mapping. Sections written as a bare
    key (`signing:` with nothing under it) are dropped so they take their
    defaults instead of failing validation as null.

    Raises:
        ConfigLoadError: If the file doesn't exist, isn't readable, or isn't valid YAML.
    """
    if not config_path.exists():
        raise ConfigLoadError(f"Config file not found: {config_path}")

    if not config_path.is_file():
        raise ConfigLoadError(f"Config path is not a file: {config_path}")

    try:
        raw_text = config_path.read_text(encoding="utf-8")
    except OSError as err:
        raise ConfigLoadError(f"Cannot read config file {config_path}: {err}") from err

    try:
        parsed = yaml.safe_load(raw_text)
    except yaml.YAMLError as err:
        raise ConfigLoadError(f"Invalid YAML in {config_path}: {err}") from err

    if parsed is None:
        return {}

    if not isinstance(parsed, dict):
        raise ConfigLoadError(
            f"Config file must contain a YAML mapping (dict), got {type(parsed).__name__}"
        )

    return {key: value for key, value in parsed.items() if value is not None}


def with_overrides(config: RelpipeConfig, section: str, **values: Any) -> RelpipeConfig:
    """
    Return a copy of `config` with fields of one section replaced.

    The merged section is re-validated, so overrides go through the same
    checks as YAML values. `None` values are ignored, which lets the CLI pass
    unset flags straight through.
    """
    updates = {key: value for key, value in values.items() if value is not None}
    if not updates:
        return config

    current = getattr(config, section)
    try:
        merged = type(current).model_validate({**current.model_dump(), **updates})
    except ValidationError as err:
        raise ConfigValidationError(f"Invalid override for '{section}':\n{err}") from err
    return config.model_copy(update={section: merged})


def apply_env_overrides(
    config: RelpipeConfig,
    environ: Optional[Mapping[str, str]] = None,
) -> RelpipeConfig:
    """
    Apply the documented RELPIPE_* environment overrides.

    Empty variables are ignored, matching how the signing hook treats unset
    certificate variables.

    Raises:
        ConfigValidationError: If a variable holds a value the schema rejects.
    """
    env = os.environ if environ is None else environ

    for var_name, (section, field_name) in ENV_OVERRIDES.items():
        value = env.get(var_name, "")
        if not value:
            continue
        config = with_overrides(config, section, **{field_name: value})

    return config


def load_config(
    config_path: Optional[Path] = None,
    environ: Optional[Mapping[str, str]] = None,
) -> RelpipeConfig:
    """
    Load, validate, and freeze a config file into a RelpipeConfig object.

    With no path, the schema defaults are used. Environment overrides are
    applied in both cases.

    Raises:
        ConfigLoadError: File I/O or YAML parse failures.
        ConfigValidationError: Schema violations (missing fields, wrong types, unknown keys).
    """
    if config_path is None:
        config = default_config()
    else:
        raw_data = _read_yaml_file(config_path)
        try:
            config = RelpipeConfig.model_validate(raw_data)
        except ValidationError as err:
            raise ConfigValidationError(
                f"Config validation failed for {config_path}:\n{err}"
            ) from err

    return apply_env_overrides(config, environ)
