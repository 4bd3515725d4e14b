"""Override patch archives and their manifests.

A patch lives in two places on disk. A downloader collaborator writes the
new archive to the *downloaded* path; the extraction cycle later graduates
it to the *installed* path, which is the only one read during extraction.
Both sides coordinate through ``installation_lock``.
"""

from __future__ import annotations

import json
import threading
import zipfile
import zlib
from pathlib import Path
from typing import Any, Protocol

import structlog
from pydantic import ValidationError

from bundlecache.core.config import ExtractorConfig
from bundlecache.core.errors import PackageMetadataError
from bundlecache.core.package import PackageMetadataProvider
from bundlecache.core.types import PatchManifest
from bundlecache.formats.archive import ArchiveReader

logger = structlog.get_logger()


class PatchProvider(Protocol):
    """Contract consumed by graduation, freshness and the override pass."""

    @property
    def downloaded_archive_path(self) -> Path: ...

    @property
    def installed_archive_path(self) -> Path: ...

    @property
    def installation_lock(self) -> threading.Lock: ...

    def read_manifest(self, path: Path) -> dict[str, Any] | None: ...

    def validate_manifest(self, manifest: dict[str, Any] | None) -> bool: ...


class PatchUpdater:
    """File-backed patch provider.

    Args:
        patch_dir: Directory holding the downloaded and installed archives
        baseline: Baseline bundle, used for baselineChecksum verification
        package: Package metadata, used for buildNumber verification
        config: Extractor configuration
        lock: Installation lock shared with the downloader, created if None
    """

    def __init__(
        self,
        patch_dir: Path,
        baseline: ArchiveReader,
        package: PackageMetadataProvider,
        config: ExtractorConfig | None = None,
        lock: threading.Lock | None = None,
    ):
        self.patch_dir = patch_dir
        self.baseline = baseline
        self.package = package
        self.config = config or ExtractorConfig()
        self._lock = lock or threading.Lock()

    @property
    def installed_archive_path(self) -> Path:
        return self.patch_dir / self.config.patch_filename

    @property
    def downloaded_archive_path(self) -> Path:
        return self.patch_dir / (self.config.patch_filename + self.config.download_suffix)

    @property
    def installation_lock(self) -> threading.Lock:
        """Lock shared with the downloader; held while archives are read or replaced."""
        return self._lock

    def read_manifest(self, path: Path) -> dict[str, Any] | None:
        """Read the manifest entry of a patch archive.

        Args:
            path: Patch archive path

        Returns:
            Manifest document, or None if the archive or entry is missing
            or unreadable
        """
        if not path.exists():
            return None

        try:
            with zipfile.ZipFile(path) as archive:
                raw = archive.read(self.config.manifest_entry)
        except KeyError:
            logger.warning("patch_manifest_missing", path=str(path))
            return None
        except (zipfile.BadZipFile, zlib.error, EOFError, OSError) as e:
            logger.warning("patch_manifest_read_failed", path=str(path), error=str(e))
            return None

        try:
            document = json.loads(raw.decode("utf-8"))
        except (UnicodeDecodeError, json.JSONDecodeError) as e:
            logger.warning("patch_manifest_invalid", path=str(path), error=str(e))
            return None

        if not isinstance(document, dict):
            logger.warning("patch_manifest_invalid", path=str(path), type=type(document).__name__)
            return None
        return document

    def validate_manifest(self, manifest: dict[str, Any] | None) -> bool:
        """Check that a manifest belongs to the current baseline build.

        Args:
            manifest: Manifest document from read_manifest

        Returns:
            True if the patch may be applied on top of the current bundle
        """
        if manifest is None:
            return False

        try:
            parsed = PatchManifest.model_validate(manifest)
        except ValidationError as e:
            logger.warning("patch_manifest_invalid", error=str(e))
            return False

        if parsed.build_number is None:
            logger.warning("patch_manifest_missing_build_number")
            return False

        try:
            version_code = str(self.package.get_package_info().version_code)
        except PackageMetadataError as e:
            logger.warning("patch_manifest_unverifiable", error=str(e))
            return False

        if parsed.build_number != version_code:
            logger.warning("patch_outdated", build_number=parsed.build_number, version_code=version_code)
            return False

        if self.config.baseline_checksum_files:
            if parsed.baseline_checksum is None:
                logger.warning("patch_manifest_missing_baseline_checksum")
                return False
            actual = self.baseline_checksum()
            if actual is None or parsed.baseline_checksum != str(actual):
                logger.warning(
                    "patch_baseline_mismatch",
                    expected=parsed.baseline_checksum,
                    actual=actual,
                )
                return False

        return True

    def baseline_checksum(self) -> int | None:
        """CRC32 over the configured baseline checksum files, in order.

        Missing files are skipped. Returns None if a file cannot be read.
        """
        checksum = 0
        for name in self.config.baseline_checksum_files:
            try:
                with self.baseline.open(name) as stream:
                    while chunk := stream.read(self.config.buffer_size):
                        checksum = zlib.crc32(chunk, checksum)
            except FileNotFoundError:
                continue
            except OSError as e:
                logger.warning("baseline_checksum_failed", name=name, error=str(e))
                return None
        return checksum
