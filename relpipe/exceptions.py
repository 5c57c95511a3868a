# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Pipeline-level exceptions.

Only two of these ever reach a caller: PipelineSetupError (the run could not
start) and SigningFailedError (the packaging hook re-throws an unsigned
release). The other two are skip reasons that the runner turns into logged
Skipped results.
"""

from pathlib import Path


class PipelineError(Exception):
    """Base for all pipeline errors."""


class PipelineSetupError(PipelineError):
    """
    Raised when a run cannot start: a required output root is missing, no
    files were found where files are mandatory, or an unknown transform was
    requested. Moves the runner into its Failed state.
    """


class SigningFailedError(PipelineError):
    """Raised by the packaging hook when artifacts failed every signing backend."""

    def __init__(self, failed_paths: list[Path]) -> None:
        self.failed_paths = failed_paths
        joined = ", ".join(str(p) for p in failed_paths)
        super().__init__(f"Failed to sign {len(failed_paths)} artifact(s): {joined}")


class ConfigurationMissing(PipelineError):
    """No signing credential could be resolved. Signing is skipped for the run."""


class PlatformMismatch(PipelineError):
    """The host is not one of the signing target platforms. Signing is skipped."""
