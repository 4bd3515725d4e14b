"""Promotion of a downloaded patch archive to the installed slot."""

from __future__ import annotations

import structlog

from bundlecache.core.filesystem import LocalFileSystem
from bundlecache.core.patch import PatchProvider

logger = structlog.get_logger()


def graduate_patch(patch: PatchProvider, fs: LocalFileSystem) -> bool:
    """Install a fully downloaded patch archive.

    Must be called with the installation lock held. A downloaded archive
    whose manifest does not validate is left in place and ignored.

    Args:
        patch: Patch provider
        fs: File-system access

    Returns:
        False if the installed archive could not be replaced, in which case
        the cycle must stop before touching the cache. True otherwise.
    """
    downloaded = patch.downloaded_archive_path
    installed = patch.installed_archive_path

    if not fs.exists(downloaded):
        return True

    manifest = patch.read_manifest(downloaded)
    if not patch.validate_manifest(manifest):
        logger.info("downloaded_patch_rejected", path=str(downloaded))
        return True

    # Single atomic replace; the installed archive is never deleted first.
    try:
        fs.rename(downloaded, installed)
    except OSError as e:
        logger.warning("patch_install_failed", path=str(installed), error=str(e))
        return False

    logger.info("patch_graduated", path=str(installed))
    return True
