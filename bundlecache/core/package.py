"""Application package metadata providers."""

from __future__ import annotations

import json
from pathlib import Path
from typing import Protocol

import structlog
from pydantic import ValidationError

from bundlecache.core.errors import PackageMetadataError
from bundlecache.core.types import PackageInfo

logger = structlog.get_logger()


class PackageMetadataProvider(Protocol):
    """Source of the installed application's version information."""

    def get_package_info(self) -> PackageInfo:
        """Return current package metadata.

        Raises:
            PackageMetadataError: If the metadata is unavailable
        """
        ...


class StaticPackageMetadata:
    """Package metadata known up front."""

    def __init__(self, version_code: int, last_update_time: int):
        self._info = PackageInfo(version_code=version_code, last_update_time=last_update_time)

    def get_package_info(self) -> PackageInfo:
        return self._info


class FilePackageMetadata:
    """Package metadata read from a JSON document.

    Expected layout::

        {"versionCode": 42, "lastUpdateTime": 1700000000000}

    When ``lastUpdateTime`` is absent, the document's own modification
    time (milliseconds) is used, so that replacing the package file marks
    the cache stale.
    """

    def __init__(self, path: Path):
        self.path = path

    def get_package_info(self) -> PackageInfo:
        try:
            raw = json.loads(self.path.read_text(encoding="utf-8"))
            if not isinstance(raw, dict):
                raise PackageMetadataError(f"Package metadata is not an object: {self.path}")
            if "lastUpdateTime" not in raw and "last_update_time" not in raw:
                raw["lastUpdateTime"] = self.path.stat().st_mtime_ns // 1_000_000
            return PackageInfo.model_validate(raw)
        except FileNotFoundError as e:
            raise PackageMetadataError(f"Package metadata not found: {self.path}") from e
        except (OSError, json.JSONDecodeError, ValidationError) as e:
            logger.warning("package_metadata_invalid", path=str(self.path), error=str(e))
            raise PackageMetadataError(f"Cannot read package metadata {self.path}: {e}") from e
