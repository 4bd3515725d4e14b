"""Cache freshness tokens.

A freshness token is an empty file in the cache directory whose name
records the provenance of the extracted resources::

    <prefix><versionCode>-<lastUpdateTime>[-<patchNumber>]-<patchMtime>

The cache is fresh only when exactly one token exists and its name equals
the token expected for the current package and installed patch. Any other
state forces a full wipe and re-extraction.
"""

from __future__ import annotations

from collections.abc import Iterable
from pathlib import Path

import structlog

from bundlecache.core.errors import PackageMetadataError
from bundlecache.core.filesystem import LocalFileSystem
from bundlecache.core.package import PackageMetadataProvider
from bundlecache.core.patch import PatchProvider
from bundlecache.core.types import PackageInfo, PatchManifest

logger = structlog.get_logger()


def list_token_files(names: Iterable[str] | None, prefix: str) -> list[str]:
    """Select token file names from a directory listing.

    Args:
        names: Directory entry names, or None if the directory is unreadable
        prefix: Token prefix

    Returns:
        Sorted names starting with prefix
    """
    if names is None:
        return []
    return sorted(name for name in names if name.startswith(prefix))


def build_expected_token(
    prefix: str,
    package_info: PackageInfo,
    patch_number: str | None = None,
    patch_mtime: int | None = None,
) -> str:
    """Build the token name for a package and optional installed patch.

    Args:
        prefix: Token prefix
        package_info: Current package metadata
        patch_number: patchNumber from the installed manifest, if any
        patch_mtime: Installed patch modification time in ms, or None when
            no valid patch is installed

    Returns:
        Token file name
    """
    token = f"{prefix}{package_info.version_code}-{package_info.last_update_time}"
    if patch_mtime is not None:
        if patch_number is not None:
            token += f"-{patch_number}-{patch_mtime}"
        else:
            token += f"-{patch_mtime}"
    return token


def expected_token(
    prefix: str,
    package: PackageMetadataProvider,
    patch: PatchProvider | None,
    fs: LocalFileSystem,
) -> str | None:
    """Compute the expected token for the current state on disk.

    Returns:
        Token name, or None if package metadata is unavailable
    """
    try:
        package_info = package.get_package_info()
    except PackageMetadataError as e:
        logger.warning("package_metadata_unavailable", error=str(e))
        return None

    patch_number: str | None = None
    patch_mtime: int | None = None
    if patch is not None:
        patch_file = patch.installed_archive_path
        manifest = patch.read_manifest(patch_file)
        if patch.validate_manifest(manifest):
            assert manifest is not None
            patch_number = PatchManifest.model_validate(manifest).patch_number
            patch_mtime = fs.mtime_ms(patch_file)

    return build_expected_token(prefix, package_info, patch_number, patch_mtime)


def check_freshness(
    cache_dir: Path,
    prefix: str,
    package: PackageMetadataProvider,
    patch: PatchProvider | None,
    fs: LocalFileSystem,
) -> str | None:
    """Decide whether the extracted resources match the current package.

    Args:
        cache_dir: Cache directory
        prefix: Token prefix
        package: Package metadata provider
        patch: Patch provider, or None without override support
        fs: File-system access

    Returns:
        None if the cache is fresh, otherwise the token to write after a
        successful re-extraction. When package metadata is unavailable the
        bare prefix is returned and the cache is always treated as stale.
    """
    expected = expected_token(prefix, package, patch, fs)
    if expected is None:
        return prefix

    existing = list_token_files(fs.list_names(cache_dir), prefix)

    if not existing:
        logger.info("no_extracted_resources_found", cache_dir=str(cache_dir))
        return expected

    if len(existing) == 1:
        logger.info("found_extracted_resources", token=existing[0])

    if len(existing) != 1 or existing[0] != expected:
        logger.info("resource_version_mismatch", expected=expected, existing=existing)
        return expected

    return None


def wipe_cache(
    cache_dir: Path,
    resources: Iterable[str],
    prefix: str,
    fs: LocalFileSystem,
) -> None:
    """Delete every declared resource and every token from the cache.

    Deletion is best-effort: missing files are ignored and individual
    failures are logged.
    """
    for key in resources:
        _delete_quietly(cache_dir / key, fs)

    for name in list_token_files(fs.list_names(cache_dir), prefix):
        _delete_quietly(cache_dir / name, fs)


def _delete_quietly(path: Path, fs: LocalFileSystem) -> None:
    if not fs.exists(path):
        return
    try:
        fs.delete(path)
    except OSError as e:
        logger.warning("cache_delete_failed", path=str(path), error=str(e))
