"""Copy resource entries from an archive into the cache directory."""

from __future__ import annotations

from collections.abc import Callable, Iterable
from pathlib import Path

import structlog

from bundlecache.core.errors import ArchiveError, ExtractionCancelled, ExtractionError
from bundlecache.core.filesystem import LocalFileSystem
from bundlecache.core.patch import PatchProvider
from bundlecache.formats.archive import ArchiveReader, ZipArchiveReader

logger = structlog.get_logger()

DEFAULT_BUFFER_SIZE = 16 * 1024


def extract_entries(
    source: ArchiveReader,
    resources: Iterable[str],
    cache_dir: Path,
    fs: LocalFileSystem,
    *,
    label: str,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
    should_stop: Callable[[], bool] | None = None,
) -> int:
    """Copy every resource not yet on disk from source into cache_dir.

    Entries missing from the source are skipped. The caller is responsible
    for wiping the cache when this raises.

    Args:
        source: Archive to read from
        resources: Resource keys to extract
        cache_dir: Destination directory
        fs: File-system access
        label: Name of the pass for logging ("override" or "baseline")
        buffer_size: Copy buffer size in bytes
        should_stop: Polled before each entry; True aborts the pass

    Returns:
        Number of entries written

    Raises:
        ExtractionError: If an entry cannot be read or written
        ExtractionCancelled: If should_stop returned True
    """
    extracted = 0
    for key in sorted(resources):
        if should_stop is not None and should_stop():
            raise ExtractionCancelled(f"{label} extraction cancelled before {key}")

        output = cache_dir / key
        if fs.exists(output):
            continue

        try:
            with source.open(key) as stream:
                fs.make_dirs(output.parent)
                with fs.open_write(output) as out:
                    while chunk := stream.read(buffer_size):
                        out.write(chunk)
                    out.flush()
        except FileNotFoundError:
            continue
        except OSError as e:
            logger.warning("resource_unpack_failed", source=label, key=key, error=str(e))
            raise ExtractionError(
                f"Failed to extract {key} from {label}: {e}", key=key, source=label
            ) from e

        extracted += 1
        logger.info("resource_extracted", source=label, key=key)

    return extracted


def extract_override(
    patch: PatchProvider | None,
    resources: Iterable[str],
    cache_dir: Path,
    fs: LocalFileSystem,
    *,
    buffer_size: int = DEFAULT_BUFFER_SIZE,
    should_stop: Callable[[], bool] | None = None,
) -> int:
    """Extract resources from the installed patch archive, if usable.

    A missing archive or one whose manifest does not validate is not an
    error: nothing is extracted and 0 is returned.

    Raises:
        ExtractionError: If the archive cannot be opened or an entry fails
        ExtractionCancelled: If should_stop returned True
    """
    if patch is None:
        return 0

    patch_file = patch.installed_archive_path
    if not fs.exists(patch_file):
        return 0

    manifest = patch.read_manifest(patch_file)
    if not patch.validate_manifest(manifest):
        logger.info("obsolete_patch_ignored", path=str(patch_file))
        return 0

    reader = ZipArchiveReader(patch_file)
    try:
        try:
            reader.names()
        except ArchiveError as e:
            logger.warning("patch_open_failed", path=str(patch_file), error=str(e))
            raise ExtractionError(f"Cannot open patch {patch_file}: {e}", source="override") from e

        return extract_entries(
            reader,
            resources,
            cache_dir,
            fs,
            label="override",
            buffer_size=buffer_size,
            should_stop=should_stop,
        )
    finally:
        reader.close()
