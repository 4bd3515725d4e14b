"""Archive readers for baseline bundles and override patches.

Both readers expose the same contract: ``open(key)`` returns a binary
stream for the entry stored under ``key`` or raises FileNotFoundError when
the archive has no such entry. Corrupt or unreadable archives raise
ArchiveError, which is an OSError.
"""

from __future__ import annotations

import zipfile
import zlib
from pathlib import Path, PurePosixPath
from typing import BinaryIO, Protocol

import structlog

from bundlecache.core.errors import ArchiveError

logger = structlog.get_logger()


class ArchiveReader(Protocol):
    """Read-only blob store keyed by path."""

    def open(self, key: str) -> BinaryIO:
        """Open an entry for reading.

        Raises:
            FileNotFoundError: If the entry does not exist
            OSError: On any other read failure
        """
        ...

    def close(self) -> None:
        """Release any handle held on the archive."""
        ...


def normalize_key(key: str) -> str:
    """Normalize a resource key to a relative POSIX path.

    Args:
        key: Resource key, e.g. "assets/a.png"

    Returns:
        Normalized key

    Raises:
        ValueError: If the key is empty, absolute, or escapes its root
    """
    normalized = key.replace("\\", "/")
    path = PurePosixPath(normalized)
    if not normalized or normalized.startswith("/") or path.is_absolute():
        raise ValueError(f"Resource key must be a relative path: {key!r}")
    if any(part in ("", ".", "..") for part in normalized.split("/")):
        raise ValueError(f"Resource key contains invalid segments: {key!r}")
    return normalized


class _ZipEntryStream:
    """Read stream over a zip entry.

    CRC mismatches and corrupt compressed data only show up while reading,
    as BadZipFile, zlib.error or EOFError. They are raised as ArchiveError.
    """

    def __init__(self, stream: zipfile.ZipExtFile, key: str, path: Path):
        self._stream = stream
        self._key = key
        self._path = path

    def read(self, size: int = -1) -> bytes:
        try:
            return self._stream.read(size)
        except (zipfile.BadZipFile, zlib.error, EOFError) as e:
            raise ArchiveError(f"Corrupt entry {self._key} in {self._path}: {e}") from e

    def close(self) -> None:
        self._stream.close()

    def __enter__(self) -> _ZipEntryStream:
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class ZipArchiveReader:
    """Archive reader backed by a zip file.

    The zip file is opened lazily on first access and stays open until
    close() is called.
    """

    def __init__(self, path: Path):
        self.path = path
        self._zip: zipfile.ZipFile | None = None

    def _ensure_open(self) -> zipfile.ZipFile:
        if self._zip is None:
            try:
                self._zip = zipfile.ZipFile(self.path)
            except FileNotFoundError as e:
                raise ArchiveError(f"Archive not found: {self.path}") from e
            except (zipfile.BadZipFile, OSError) as e:
                raise ArchiveError(f"Cannot open archive {self.path}: {e}") from e
            logger.debug("archive_opened", path=str(self.path), entries=len(self._zip.namelist()))
        return self._zip

    def open(self, key: str) -> BinaryIO:
        archive = self._ensure_open()
        try:
            info = archive.getinfo(key)
        except KeyError as e:
            raise FileNotFoundError(f"No entry {key} in {self.path}") from e
        try:
            stream = archive.open(info)
        except (zipfile.BadZipFile, NotImplementedError, RuntimeError) as e:
            raise ArchiveError(f"Cannot read entry {key} from {self.path}: {e}") from e
        return _ZipEntryStream(stream, key, self.path)  # type: ignore[return-value]

    def names(self) -> list[str]:
        """List entry names in the archive."""
        return self._ensure_open().namelist()

    def close(self) -> None:
        if self._zip is not None:
            self._zip.close()
            self._zip = None

    def __enter__(self) -> ZipArchiveReader:
        self._ensure_open()
        return self

    def __exit__(self, *exc_info: object) -> None:
        self.close()


class DirectoryArchiveReader:
    """Archive reader backed by an unpacked bundle directory."""

    def __init__(self, root: Path):
        self.root = root

    def open(self, key: str) -> BinaryIO:
        path = self.root / normalize_key(key)
        if not path.is_file():
            raise FileNotFoundError(f"No entry {key} in {self.root}")
        return open(path, "rb")

    def close(self) -> None:
        pass


def open_bundle(path: Path) -> ZipArchiveReader | DirectoryArchiveReader:
    """Open a baseline bundle that is either a zip file or a directory.

    Args:
        path: Bundle path

    Returns:
        Matching archive reader
    """
    if path.is_dir():
        return DirectoryArchiveReader(path)
    return ZipArchiveReader(path)
