"""Pytest configuration and shared fixtures for bundlecache tests."""

import json
import zipfile
from collections.abc import Generator
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path
from typing import Any, BinaryIO

import pytest

from bundlecache.core.config import ExtractorConfig
from bundlecache.core.filesystem import LocalFileSystem
from bundlecache.core.package import StaticPackageMetadata
from bundlecache.core.patch import PatchUpdater
from bundlecache.formats.archive import DirectoryArchiveReader

VERSION_CODE = 42
LAST_UPDATE_TIME = 1700000000000

BASELINE_FILES = {
    "assets/a.png": b"baseline-a",
    "assets/b.json": b'{"source": "baseline"}',
}


def write_zip(path: Path, entries: dict[str, bytes], manifest: dict[str, Any] | None = None) -> Path:
    """Write a zip archive with the given entries and optional manifest.json."""
    path.parent.mkdir(parents=True, exist_ok=True)
    with zipfile.ZipFile(path, "w") as archive:
        for name, data in entries.items():
            archive.writestr(name, data)
        if manifest is not None:
            archive.writestr("manifest.json", json.dumps(manifest))
    return path


def corrupt_zip(path: Path, original: bytes, replacement: bytes) -> Path:
    """Overwrite stored entry bytes in place so the entry fails its CRC check."""
    assert len(original) == len(replacement)
    data = path.read_bytes()
    assert data.count(original) == 1
    path.write_bytes(data.replace(original, replacement))
    return path


def valid_manifest(**extra: Any) -> dict[str, Any]:
    """Manifest matching the test package version."""
    return {"buildNumber": str(VERSION_CODE), **extra}


class RecordingFileSystem(LocalFileSystem):
    """LocalFileSystem that records every mutating call."""

    def __init__(self) -> None:
        self.writes: list[Path] = []

    def delete(self, path: Path) -> None:
        self.writes.append(path)
        super().delete(path)

    def open_write(self, path: Path) -> BinaryIO:
        self.writes.append(path)
        return super().open_write(path)

    def create_new(self, path: Path) -> None:
        self.writes.append(path)
        super().create_new(path)

    def rename(self, src: Path, dst: Path) -> None:
        self.writes.append(dst)
        super().rename(src, dst)


class FailingFileSystem(LocalFileSystem):
    """LocalFileSystem whose writes to selected file names raise OSError."""

    def __init__(self, fail_names: set[str], fail_rename: bool = False) -> None:
        self.fail_names = fail_names
        self.fail_rename = fail_rename

    def open_write(self, path: Path) -> BinaryIO:
        if path.name in self.fail_names:
            raise OSError(28, "No space left on device", str(path))
        return super().open_write(path)

    def rename(self, src: Path, dst: Path) -> None:
        if self.fail_rename:
            raise OSError(13, "Permission denied", str(dst))
        super().rename(src, dst)


@pytest.fixture
def executor() -> Generator[ThreadPoolExecutor, None, None]:
    """Dedicated single-worker pool for one test."""
    pool = ThreadPoolExecutor(max_workers=1)
    yield pool
    pool.shutdown(wait=True)


@pytest.fixture
def bundle_dir(tmp_path: Path) -> Path:
    """Unpacked baseline bundle with two resources."""
    root = tmp_path / "bundle"
    for key, data in BASELINE_FILES.items():
        path = root / key
        path.parent.mkdir(parents=True, exist_ok=True)
        path.write_bytes(data)
    return root


@pytest.fixture
def baseline(bundle_dir: Path) -> DirectoryArchiveReader:
    return DirectoryArchiveReader(bundle_dir)


@pytest.fixture
def package() -> StaticPackageMetadata:
    return StaticPackageMetadata(VERSION_CODE, LAST_UPDATE_TIME)


@pytest.fixture
def cache_dir(tmp_path: Path) -> Path:
    path = tmp_path / "cache"
    path.mkdir()
    return path


@pytest.fixture
def patch_dir(tmp_path: Path) -> Path:
    path = tmp_path / "patches"
    path.mkdir()
    return path


@pytest.fixture
def config() -> ExtractorConfig:
    return ExtractorConfig()


@pytest.fixture
def patch_updater(
    patch_dir: Path,
    baseline: DirectoryArchiveReader,
    package: StaticPackageMetadata,
    config: ExtractorConfig,
) -> PatchUpdater:
    return PatchUpdater(patch_dir, baseline, package, config)


# Pytest configuration
def pytest_configure(config: pytest.Config) -> None:
    """Configure pytest settings."""
    config.addinivalue_line(
        "markers", "integration: marks tests as integration tests"
    )
