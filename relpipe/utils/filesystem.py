# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Safe filesystem operations for relpipe.

Release trees must never be left with half-written files:
  - text output (reports, checksum manifests) is written to a temp file in
    the target's directory and renamed into place
  - signed binaries produced next to the original are swapped in with a
    single rename

Rename on the same filesystem is atomic on POSIX and `os.replace` also
overwrites an existing destination on Windows.
"""

import os
import tempfile
from pathlib import Path

TEMP_PREFIX = ".relpipe_tmp_"


def atomic_write(target_path: Path, content: str, encoding: str = "utf-8") -> None:
    """
    Write content to a file atomically.

    The temp file lives in the same directory as the target so the final
    rename never crosses a filesystem boundary. If anything fails, the target
    keeps its old content and the temp file is removed.

    Raises:
        OSError: If the write or rename fails.
    """
    target_path.parent.mkdir(parents=True, exist_ok=True)

    # delete=False: the file has to survive close() so we can rename it.
    temp_fd = tempfile.NamedTemporaryFile(
        mode="w",
        encoding=encoding,
        dir=str(target_path.parent),
        prefix=TEMP_PREFIX,
        suffix=".tmp",
        delete=False,
    )
    temp_path = Path(temp_fd.name)

    try:
        temp_fd.write(content)
        temp_fd.flush()
        temp_fd.close()
        os.replace(temp_path, target_path)
    except BaseException:
        temp_fd.close()
        if temp_path.exists():
            temp_path.unlink()
        raise


def atomic_replace(source_path: Path, target_path: Path) -> None:
    """
    Move a fully written sibling file over its target in one step.

    Both paths must be on the same filesystem; callers produce the source
    right next to the target to guarantee that.

    Raises:
        FileNotFoundError: If the source does not exist.
        OSError: If the rename fails. The target is untouched in that case.
    """
    if not source_path.is_file():
        raise FileNotFoundError(f"Replacement file not found: {source_path}")
    os.replace(source_path, target_path)


def safe_delete(file_path: Path) -> bool:
    """
    Delete a file if it exists. Returns whether anything was actually deleted.

    Never throws on a missing file, including one removed by someone else
    between the existence check and the unlink.

    Raises:
        OSError: If the file exists but can't be deleted (permissions, etc).
    """
    try:
        file_path.unlink()
    except FileNotFoundError:
        return False
    return True
