"""File-system access used by the extraction engine.

Every step that touches the cache directory or the patch archives goes
through a LocalFileSystem instance so that failures can be injected in
tests without patching os or pathlib globally.
"""

from __future__ import annotations

import os
from pathlib import Path
from typing import BinaryIO

import structlog

logger = structlog.get_logger()


class LocalFileSystem:
    """Thin wrapper over pathlib for the operations extraction needs."""

    def list_names(self, directory: Path) -> list[str] | None:
        """List entry names in a directory.

        Args:
            directory: Directory to list

        Returns:
            Entry names, or None if the directory is missing or unreadable
        """
        try:
            return os.listdir(directory)
        except OSError as e:
            logger.debug("directory_list_failed", path=str(directory), error=str(e))
            return None

    def exists(self, path: Path) -> bool:
        return path.exists()

    def delete(self, path: Path) -> None:
        """Delete a file.

        Raises:
            OSError: If the file exists and cannot be removed
        """
        path.unlink()

    def make_dirs(self, path: Path) -> None:
        path.mkdir(parents=True, exist_ok=True)

    def open_write(self, path: Path) -> BinaryIO:
        return open(path, "wb")

    def create_new(self, path: Path) -> None:
        """Create an empty file, failing if it already exists."""
        with open(path, "xb"):
            pass

    def rename(self, src: Path, dst: Path) -> None:
        """Atomically move src to dst."""
        os.replace(src, dst)

    def mtime_ms(self, path: Path) -> int:
        """Modification time of a file in integer milliseconds."""
        return path.stat().st_mtime_ns // 1_000_000
