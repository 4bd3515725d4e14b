"""bundlecache - on-disk cache of application bundle resources.

This package keeps a writable directory populated with resource files
extracted from a read-only application bundle, optionally overridden by a
downloaded patch archive.

Key modules:
- core: Extraction engine (freshness tokens, patch graduation, extraction)
- formats: Archive readers for bundles and patches
- commands: CLI command implementations
"""

__version__ = "0.1.0"
__author__ = "bundlecache Team"

# Re-export commonly used types and functions
from bundlecache.core.coordinator import ResourceExtractor
from bundlecache.core.types import (
    ExtractionOutcome,
    PackageInfo,
    PatchManifest,
)

__all__ = [
    "__version__",
    "__author__",
    "ResourceExtractor",
    "ExtractionOutcome",
    "PackageInfo",
    "PatchManifest",
]
