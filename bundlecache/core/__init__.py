"""Core functionality for bundlecache.

This module provides the resource extraction engine:
- Configuration management
- Type definitions and errors
- Freshness tokens
- Patch graduation
- Extraction passes and their coordination
"""

from bundlecache.core.config import AppConfig, ExtractorConfig
from bundlecache.core.coordinator import ResourceExtractor
from bundlecache.core.errors import (
    ArchiveError,
    BundleCacheError,
    ExtractionCancelled,
    ExtractionError,
    PackageMetadataError,
)
from bundlecache.core.package import FilePackageMetadata, StaticPackageMetadata
from bundlecache.core.patch import PatchUpdater
from bundlecache.core.types import ExtractionOutcome, PackageInfo, PatchManifest

__all__ = [
    # Config
    "AppConfig",
    "ExtractorConfig",
    # Errors
    "ArchiveError",
    "BundleCacheError",
    "ExtractionCancelled",
    "ExtractionError",
    "PackageMetadataError",
    # Providers
    "FilePackageMetadata",
    "StaticPackageMetadata",
    "PatchUpdater",
    # Types
    "ExtractionOutcome",
    "PackageInfo",
    "PatchManifest",
    "ResourceExtractor",
]
