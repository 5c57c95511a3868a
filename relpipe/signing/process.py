# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
External tool runner for the signing backends.

Runs one command with a hard timeout, captures its output and turns the
three ways it can go wrong into data instead of exceptions:

  - the executable is missing or cannot be launched  -> PROCESS_SPAWN
  - it ran but exited non-zero                         -> PROCESS_EXIT
  - it ran past the timeout                            -> PROCESS_EXIT

No shell=True: argument vectors go straight to the OS, so a password or a
path with spaces or metacharacters cannot be reinterpreted.

The tool runs in a new process group (a new session on POSIX). An
interrupt aimed at relpipe then stops new work but lets a signer that is
already rewriting a binary finish.

Argument vectors contain the certificate password. Anything that leaves
this module (log extras, result messages) is built from `mask_argv`.
"""

import logging
import subprocess
import sys
import time
from collections.abc import Iterable, Sequence
from dataclasses import dataclass
from enum import Enum
from typing import Any

from relpipe.logging.logger import get_logger

_logger: logging.Logger = get_logger(__name__)

MASK = "********"
_OUTPUT_TAIL_CHARS = 500


class ErrorKind(str, Enum):
    PROCESS_SPAWN = "process_spawn"
    PROCESS_EXIT = "process_exit"
    FILESYSTEM = "filesystem"


@dataclass(frozen=True)
class ProcessOutcome:
    """What happened when a tool was invoked."""

    success: bool
    exit_code: int
    stdout: str
    stderr: str
    elapsed_seconds: float
    error_kind: ErrorKind | None = None
    message: str = ""


def mask_argv(argv: Sequence[str], secrets: Iterable[str]) -> list[str]:
    """Copy of argv with every non-empty secret replaced by a mask."""
    hidden = {s for s in secrets if s}
    return [MASK if arg in hidden else arg for arg in argv]


def _isolation_kwargs() -> dict[str, Any]:
    """Start the tool in its own process group so a terminal Ctrl-C reaches only relpipe."""
    if sys.platform == "win32":
        return {"creationflags": subprocess.CREATE_NEW_PROCESS_GROUP}
    return {"start_new_session": True}


def _tail(text: str) -> str:
    text = text.strip()
    if len(text) <= _OUTPUT_TAIL_CHARS:
        return text
    return "..." + text[-_OUTPUT_TAIL_CHARS:]


def run_tool(
    argv: Sequence[str],
    timeout_seconds: int,
    secrets: Iterable[str] = (),
) -> ProcessOutcome:
    """
    Run an external tool and report how it went.

    Args:
        argv: Program followed by its arguments.
        timeout_seconds: Hard limit for the invocation.
        secrets: Values to mask in logs and messages.

    Returns:
        ProcessOutcome. `success` is True only for exit code 0.
    """
    secrets = tuple(secrets)
    shown = mask_argv(argv, secrets)
    program = argv[0]
    start = time.monotonic()

    try:
        result = subprocess.run(
            list(argv),
            capture_output=True,
            text=True,
            timeout=timeout_seconds,
            check=False,
            **_isolation_kwargs(),
        )
    except subprocess.TimeoutExpired:
        elapsed = time.monotonic() - start
        _logger.debug(
            "Tool timed out",
            extra={"argv": shown, "timeout_seconds": timeout_seconds},
        )
        return ProcessOutcome(
            success=False,
            exit_code=-1,
            stdout="",
            stderr="",
            elapsed_seconds=elapsed,
            error_kind=ErrorKind.PROCESS_EXIT,
            message=f"{program} timed out after {timeout_seconds}s",
        )
    except OSError as err:
        # FileNotFoundError (not installed), PermissionError (not executable), etc.
        elapsed = time.monotonic() - start
        _logger.debug(
            "Tool could not be launched",
            extra={"argv": shown, "error": str(err)},
        )
        return ProcessOutcome(
            success=False,
            exit_code=-1,
            stdout="",
            stderr="",
            elapsed_seconds=elapsed,
            error_kind=ErrorKind.PROCESS_SPAWN,
            message=f"{program} could not be launched: {err}",
        )

    elapsed = time.monotonic() - start
    success = result.returncode == 0

    _logger.debug(
        "Tool finished",
        extra={
            "argv": shown,
            "exit_code": result.returncode,
            "elapsed_seconds": round(elapsed, 3),
        },
    )

    if success:
        return ProcessOutcome(
            success=True,
            exit_code=0,
            stdout=result.stdout,
            stderr=result.stderr,
            elapsed_seconds=elapsed,
        )

    message = f"{program} exited with code {result.returncode}"
    output = _tail(result.stderr or result.stdout or "")
    if output:
        for secret in secrets:
            if secret:
                output = output.replace(secret, MASK)
        message = f"{message}: {output}"

    return ProcessOutcome(
        success=False,
        exit_code=result.returncode,
        stdout=result.stdout,
        stderr=result.stderr,
        elapsed_seconds=elapsed,
        error_kind=ErrorKind.PROCESS_EXIT,
        message=message,
    )
