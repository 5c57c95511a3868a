# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Environment checks for relpipe.

Two questions get answered here: is the interpreter new enough, and is this
host one of the platforms signing targets. The second one is asked once per
run; a mismatch turns signing into a logged no-op rather than a failure.
"""

import platform
import sys
from collections.abc import Iterable
from typing import NamedTuple, Optional

MINIMUM_PYTHON_MAJOR = 3
MINIMUM_PYTHON_MINOR = 11


class SystemInfo(NamedTuple):
    """Snapshot of the current system environment."""

    python_version: str
    platform: str
    architecture: str
    hostname: str


def get_python_version() -> tuple[int, int, int]:
    """Return the current Python version as a (major, minor, micro) tuple."""
    return sys.version_info[:3]


def check_minimum_python() -> None:
    """
    Verify we're running Python 3.11+.

    Raises:
        RuntimeError: If Python version is below 3.11.
    """
    major, minor, _ = get_python_version()
    if major < MINIMUM_PYTHON_MAJOR or (
        major == MINIMUM_PYTHON_MAJOR and minor < MINIMUM_PYTHON_MINOR
    ):
        raise RuntimeError(
            f"relpipe requires Python >= {MINIMUM_PYTHON_MAJOR}.{MINIMUM_PYTHON_MINOR}, "
            f"but you're running {major}.{minor}. Please upgrade."
        )


def host_platform() -> str:
    """platform.system() of this host, e.g. 'Windows', 'Linux', 'Darwin'."""
    return platform.system()


def platform_matches(targets: Iterable[str], current: Optional[str] = None) -> bool:
    """
    True when `current` (default: this host) is one of `targets`.

    Comparison is case-insensitive. An empty target list matches every host.
    """
    wanted = {t.lower() for t in targets}
    if not wanted:
        return True
    host = current if current is not None else host_platform()
    return host.lower() in wanted


def get_system_info() -> SystemInfo:
    """Collect basic system information for logging and diagnostics."""
    return SystemInfo(
        python_version=platform.python_version(),
        platform=platform.system(),
        architecture=platform.machine(),
        hostname=platform.node(),
    )
