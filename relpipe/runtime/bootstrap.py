# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Runtime bootstrap for relpipe.

The one-time setup every CLI command goes through before touching the tree:
  1. Validate the interpreter version
  2. Apply the configured log level (and log file) to every relpipe logger
  3. Log what we're running on
"""

from pathlib import Path
from typing import Optional

from relpipe.config.schema import GlobalConfig
from relpipe.logging.logger import configure_package_logging, get_logger
from relpipe.runtime.environment import check_minimum_python, get_system_info


def bootstrap(config: GlobalConfig, log_level: Optional[str] = None) -> None:
    """
    Run the bootstrap sequence.

    Args:
        config: The validated global configuration.
        log_level: CLI override for config.log_level.
    """
    check_minimum_python()

    level = log_level or config.log_level
    log_file = Path(config.log_file) if config.log_file is not None else None

    logger = get_logger("relpipe.runtime", log_level=level, log_file=log_file)
    configure_package_logging(level, log_file)

    system_info = get_system_info()
    logger.debug(
        "relpipe bootstrap complete",
        extra={
            "python_version": system_info.python_version,
            "platform": system_info.platform,
            "architecture": system_info.architecture,
        },
    )
