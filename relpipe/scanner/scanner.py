# Author : Eshan Roy <eshanized@proton.me>
# SPDX-License-Identifier: MIT

"""
Build output scanner.

Walks an output tree and classifies every regular file by extension into
debug maps, signable binaries and everything else. The walk is:

  - lazy: `scan()` is a generator, records come out as directories are read
  - restartable: nothing is cached between calls, calling `scan()` again
    re-walks the tree
  - deterministic: entries are visited in sorted name order, a directory's
    files before its subdirectories, so identical trees give identical
    reports
  - cycle-safe: an explicit stack instead of recursion, plus a set of
    visited (st_dev, st_ino) identities so a symlink pointing back up the
    tree is skipped rather than followed forever

A file reachable through more than one path (hard link, symlinked
directory) is yielded once. Two workers must never transform the same
underlying file.

A root that does not exist yields nothing. "Nothing to do" is not an error
here; the runner decides whether an empty tree is acceptable.
"""

import logging
import os
from collections.abc import Iterable, Iterator
from pathlib import Path

from relpipe.config.schema import DEFAULT_DEBUG_MAP_EXTENSIONS, DEFAULT_SIGNABLE_EXTENSIONS
from relpipe.logging.logger import get_logger
from relpipe.pipeline.models import ArtifactCategory, ArtifactRecord

_logger: logging.Logger = get_logger(__name__)


def file_extension(path: Path) -> str:
    """Lower-cased last suffix including the dot, '' when there is none."""
    return path.suffix.lower()


class ArtifactScanner:
    """Classifies files under a root directory into ArtifactRecords."""

    def __init__(
        self,
        signable_extensions: Iterable[str] = DEFAULT_SIGNABLE_EXTENSIONS,
        debug_map_extensions: Iterable[str] = DEFAULT_DEBUG_MAP_EXTENSIONS,
    ) -> None:
        self.signable_extensions = frozenset(ext.lower() for ext in signable_extensions)
        self.debug_map_extensions = frozenset(ext.lower() for ext in debug_map_extensions)

        overlap = self.signable_extensions & self.debug_map_extensions
        if overlap:
            raise ValueError(
                f"Extensions cannot be both signable and debug maps: {sorted(overlap)}"
            )

    def classify(self, path: Path) -> ArtifactCategory:
        ext = file_extension(path)
        if ext in self.debug_map_extensions:
            return ArtifactCategory.DEBUG_MAP
        if ext in self.signable_extensions:
            return ArtifactCategory.SIGNABLE
        return ArtifactCategory.OTHER

    def scan(self, root: Path) -> Iterator[ArtifactRecord]:
        """
        Yield a record for every regular file under `root`.

        Args:
            root: Top of the build output tree.

        Yields:
            ArtifactRecords in stable pre-order.
        """
        root = Path(root).absolute()
        if not root.is_dir():
            _logger.info("Scan root does not exist, nothing to scan", extra={"root": str(root)})
            return

        visited_dirs: set[tuple[int, int]] = set()
        seen_files: set[tuple[int, int]] = set()
        stack: list[Path] = [root]

        while stack:
            directory = stack.pop()

            try:
                dir_stat = directory.stat()
            except OSError as err:
                _logger.warning(
                    "Cannot stat directory, skipping",
                    extra={"path": str(directory), "error": str(err)},
                )
                continue

            identity = (dir_stat.st_dev, dir_stat.st_ino)
            if identity in visited_dirs:
                _logger.debug(
                    "Directory already visited, skipping",
                    extra={"path": str(directory)},
                )
                continue
            visited_dirs.add(identity)

            try:
                entries = sorted(os.scandir(directory), key=lambda e: e.name)
            except OSError as err:
                _logger.warning(
                    "Cannot list directory, skipping",
                    extra={"path": str(directory), "error": str(err)},
                )
                continue

            subdirs: list[Path] = []
            for entry in entries:
                entry_path = Path(entry.path)
                try:
                    if entry.is_dir():
                        subdirs.append(entry_path)
                        continue
                    if not entry.is_file():
                        continue
                    file_stat = entry.stat()
                except OSError as err:
                    # Dangling links and files deleted mid-scan land here.
                    _logger.debug(
                        "Cannot stat entry, skipping",
                        extra={"path": str(entry_path), "error": str(err)},
                    )
                    continue

                file_identity = (file_stat.st_dev, file_stat.st_ino)
                if file_identity in seen_files:
                    continue
                seen_files.add(file_identity)

                yield ArtifactRecord(
                    absolute_path=entry_path,
                    extension=file_extension(entry_path),
                    size_bytes=file_stat.st_size,
                    category=self.classify(entry_path),
                )

            # Reversed so the alphabetically first subdirectory is popped next.
            stack.extend(reversed(subdirs))
