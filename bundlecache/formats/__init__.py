"""Archive readers for application bundles and override patches."""

from bundlecache.formats.archive import (
    ArchiveReader,
    DirectoryArchiveReader,
    ZipArchiveReader,
    normalize_key,
    open_bundle,
)

__all__ = [
    "ArchiveReader",
    "DirectoryArchiveReader",
    "ZipArchiveReader",
    "normalize_key",
    "open_bundle",
]
