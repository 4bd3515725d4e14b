"""Tests for bundlecache.core.coordinator module."""

import os
import threading
from concurrent.futures import ThreadPoolExecutor
from pathlib import Path

import pytest
from conftest import (
    BASELINE_FILES,
    LAST_UPDATE_TIME,
    VERSION_CODE,
    FailingFileSystem,
    RecordingFileSystem,
    corrupt_zip,
    valid_manifest,
    write_zip,
)

from bundlecache.core.coordinator import ResourceExtractor, shared_executor
from bundlecache.core.filesystem import LocalFileSystem
from bundlecache.core.freshness import list_token_files
from bundlecache.core.types import ExtractionOutcome
from bundlecache.formats.archive import ZipArchiveReader

PREFIX = "res_timestamp-"
BASE_TOKEN = f"{PREFIX}{VERSION_CODE}-{LAST_UPDATE_TIME}"


def _tokens(cache_dir: Path) -> list[str]:
    return list_token_files(os.listdir(cache_dir), PREFIX)


def _run(extractor: ResourceExtractor) -> ResourceExtractor:
    extractor.add_resources(BASELINE_FILES).start().wait_for_completion()
    return extractor


class TestResourceRegistration:
    """Test resource set management."""

    def test_add_resource_chaining(self, cache_dir, baseline, package):
        extractor = ResourceExtractor(cache_dir, baseline, package)
        assert extractor.add_resource("assets/a.png").add_resources(["assets/b.json"]) is extractor
        assert extractor.resources == frozenset(BASELINE_FILES)

    def test_duplicates_collapse(self, cache_dir, baseline, package):
        extractor = ResourceExtractor(cache_dir, baseline, package)
        extractor.add_resources(["assets/a.png", "assets/a.png", "assets\\a.png"])
        assert extractor.resources == frozenset({"assets/a.png"})

    @pytest.mark.parametrize("key", ["", "/etc/passwd", "../outside", "assets/../../x"])
    def test_invalid_keys_rejected(self, cache_dir, baseline, package, key):
        extractor = ResourceExtractor(cache_dir, baseline, package)
        with pytest.raises(ValueError):
            extractor.add_resource(key)

    def test_add_after_start(self, cache_dir, baseline, package, executor):
        extractor = ResourceExtractor(cache_dir, baseline, package, executor=executor)
        extractor.start()
        with pytest.raises(AssertionError):
            extractor.add_resource("assets/a.png")
        extractor.wait_for_completion()

    def test_start_twice(self, cache_dir, baseline, package, executor):
        extractor = ResourceExtractor(cache_dir, baseline, package, executor=executor)
        extractor.start()
        with pytest.raises(AssertionError):
            extractor.start()
        extractor.wait_for_completion()

    def test_wait_without_start(self, cache_dir, baseline, package):
        extractor = ResourceExtractor(cache_dir, baseline, package)
        extractor.wait_for_completion()
        assert extractor.outcome == ExtractionOutcome.PENDING


class TestExtractionCycle:
    """End-to-end extraction scenarios."""

    def test_cold_start_from_baseline(self, cache_dir, baseline, package, executor):
        extractor = _run(ResourceExtractor(cache_dir, baseline, package, executor=executor))

        assert extractor.outcome == ExtractionOutcome.EXTRACTED
        for key, data in BASELINE_FILES.items():
            assert (cache_dir / key).read_bytes() == data
        assert _tokens(cache_dir) == [BASE_TOKEN]

    def test_creates_missing_cache_dir(self, tmp_path, baseline, package, executor):
        cache_dir = tmp_path / "new" / "cache"
        _run(ResourceExtractor(cache_dir, baseline, package, executor=executor))

        assert (cache_dir / "assets" / "a.png").exists()
        assert _tokens(cache_dir) == [BASE_TOKEN]

    def test_second_run_writes_nothing(self, cache_dir, baseline, package, executor):
        _run(ResourceExtractor(cache_dir, baseline, package, executor=executor))
        token_stat = (cache_dir / BASE_TOKEN).stat()

        fs = RecordingFileSystem()
        extractor = _run(ResourceExtractor(cache_dir, baseline, package, fs=fs, executor=executor))

        assert extractor.outcome == ExtractionOutcome.FRESH
        assert fs.writes == []
        assert (cache_dir / BASE_TOKEN).stat().st_mtime_ns == token_stat.st_mtime_ns

    def test_stale_token_replaces_everything(self, cache_dir, baseline, package, executor):
        (cache_dir / "assets").mkdir()
        (cache_dir / "assets" / "a.png").write_bytes(BASELINE_FILES["assets/a.png"])
        (cache_dir / "assets" / "b.json").write_bytes(b"stale")
        (cache_dir / f"{PREFIX}1-1").touch()

        fs = RecordingFileSystem()
        _run(ResourceExtractor(cache_dir, baseline, package, fs=fs, executor=executor))

        assert cache_dir / "assets" / "a.png" in fs.writes
        assert (cache_dir / "assets" / "b.json").read_bytes() == BASELINE_FILES["assets/b.json"]
        assert _tokens(cache_dir) == [BASE_TOKEN]

    def test_missing_token_replaces_everything(self, cache_dir, baseline, package, executor):
        _run(ResourceExtractor(cache_dir, baseline, package, executor=executor))
        (cache_dir / BASE_TOKEN).unlink()
        (cache_dir / "assets" / "b.json").write_bytes(b"edited")

        _run(ResourceExtractor(cache_dir, baseline, package, executor=executor))

        assert (cache_dir / "assets" / "b.json").read_bytes() == BASELINE_FILES["assets/b.json"]
        assert _tokens(cache_dir) == [BASE_TOKEN]

    def test_override_patch(self, cache_dir, baseline, package, patch_updater, executor):
        write_zip(patch_updater.installed_archive_path, {"assets/a.png": b"patched-a"}, valid_manifest(patchNumber=7))

        extractor = _run(ResourceExtractor(cache_dir, baseline, package, patch_updater, executor=executor))

        assert extractor.outcome == ExtractionOutcome.EXTRACTED
        assert (cache_dir / "assets" / "a.png").read_bytes() == b"patched-a"
        assert (cache_dir / "assets" / "b.json").read_bytes() == BASELINE_FILES["assets/b.json"]
        tokens = _tokens(cache_dir)
        assert len(tokens) == 1
        assert tokens[0].startswith(f"{BASE_TOKEN}-7-")

    def test_override_precedence_for_all_shared_keys(self, cache_dir, baseline, package, patch_updater, executor):
        patched = {key: b"override:" + data for key, data in BASELINE_FILES.items()}
        write_zip(patch_updater.installed_archive_path, patched, valid_manifest())

        _run(ResourceExtractor(cache_dir, baseline, package, patch_updater, executor=executor))

        for key, data in patched.items():
            assert (cache_dir / key).read_bytes() == data

    def test_invalid_patch_ignored(self, cache_dir, baseline, package, patch_updater, executor):
        write_zip(patch_updater.installed_archive_path, {"assets/a.png": b"patched-a"}, {"buildNumber": "1"})

        _run(ResourceExtractor(cache_dir, baseline, package, patch_updater, executor=executor))

        assert (cache_dir / "assets" / "a.png").read_bytes() == BASELINE_FILES["assets/a.png"]
        assert _tokens(cache_dir) == [BASE_TOKEN]

    def test_downloaded_patch_graduated_and_applied(self, cache_dir, baseline, package, patch_updater, executor):
        _run(ResourceExtractor(cache_dir, baseline, package, patch_updater, executor=executor))
        write_zip(patch_updater.downloaded_archive_path, {"assets/b.json": b"{}"}, valid_manifest(patchNumber=3))

        extractor = _run(ResourceExtractor(cache_dir, baseline, package, patch_updater, executor=executor))

        assert extractor.outcome == ExtractionOutcome.EXTRACTED
        assert patch_updater.installed_archive_path.exists()
        assert not patch_updater.downloaded_archive_path.exists()
        assert (cache_dir / "assets" / "b.json").read_bytes() == b"{}"
        assert "-3-" in _tokens(cache_dir)[0]

    def test_graduation_failure_aborts(self, cache_dir, baseline, package, patch_updater, executor):
        _run(ResourceExtractor(cache_dir, baseline, package, patch_updater, executor=executor))
        write_zip(patch_updater.downloaded_archive_path, {"assets/b.json": b"{}"}, valid_manifest(patchNumber=3))

        fs = FailingFileSystem(set(), fail_rename=True)
        extractor = _run(ResourceExtractor(cache_dir, baseline, package, patch_updater, fs=fs, executor=executor))

        assert extractor.outcome == ExtractionOutcome.ABORTED
        assert (cache_dir / "assets" / "b.json").read_bytes() == BASELINE_FILES["assets/b.json"]
        assert _tokens(cache_dir) == [BASE_TOKEN]

    def test_metadata_unavailable_forces_extraction(self, cache_dir, baseline, tmp_path, executor):
        from bundlecache.core.package import FilePackageMetadata

        package = FilePackageMetadata(tmp_path / "missing.json")
        _run(ResourceExtractor(cache_dir, baseline, package, executor=executor))
        extractor = _run(ResourceExtractor(cache_dir, baseline, package, executor=executor))

        assert extractor.outcome == ExtractionOutcome.EXTRACTED
        assert _tokens(cache_dir) == [PREFIX]

    def test_token_write_failure_keeps_resources(self, cache_dir, baseline, package, executor):
        class NoTokens(LocalFileSystem):
            def create_new(self, path: Path) -> None:
                raise OSError(28, "No space left on device")

        extractor = _run(ResourceExtractor(cache_dir, baseline, package, fs=NoTokens(), executor=executor))

        assert extractor.outcome == ExtractionOutcome.EXTRACTED
        assert (cache_dir / "assets" / "a.png").exists()
        assert _tokens(cache_dir) == []


class TestFailureCleanup:
    """The cache is left empty after any failed cycle."""

    @pytest.mark.parametrize("failing", ["a.png", "b.json"])
    def test_io_failure_wipes_cache(self, cache_dir, baseline, package, executor, failing):
        (cache_dir / f"{PREFIX}old").touch()
        fs = FailingFileSystem({failing})

        extractor = _run(ResourceExtractor(cache_dir, baseline, package, fs=fs, executor=executor))

        assert extractor.outcome == ExtractionOutcome.FAILED
        for key in BASELINE_FILES:
            assert not (cache_dir / key).exists()
        assert _tokens(cache_dir) == []

    def test_override_failure_wipes_cache(self, cache_dir, baseline, package, patch_updater, executor):
        write_zip(patch_updater.installed_archive_path, {"assets/b.json": b"{}"}, valid_manifest())
        fs = FailingFileSystem({"b.json"})

        extractor = _run(ResourceExtractor(cache_dir, baseline, package, patch_updater, fs=fs, executor=executor))

        assert extractor.outcome == ExtractionOutcome.FAILED
        for key in BASELINE_FILES:
            assert not (cache_dir / key).exists()
        assert _tokens(cache_dir) == []

    def test_lock_released_after_failure(self, cache_dir, baseline, package, patch_updater, executor):
        fs = FailingFileSystem({"a.png"})
        _run(ResourceExtractor(cache_dir, baseline, package, patch_updater, fs=fs, executor=executor))

        assert patch_updater.installation_lock.acquire(timeout=1)
        patch_updater.installation_lock.release()

    def test_cancel_before_run(self, cache_dir, baseline, package):
        gate = threading.Event()
        pool = ThreadPoolExecutor(max_workers=1)
        try:
            pool.submit(gate.wait)
            extractor = ResourceExtractor(cache_dir, baseline, package, executor=pool)
            extractor.add_resources(BASELINE_FILES).start()
            (cache_dir / f"{PREFIX}old").touch()
            extractor.cancel()
            gate.set()
            extractor.wait_for_completion()
        finally:
            gate.set()
            pool.shutdown(wait=True)

        assert extractor.outcome == ExtractionOutcome.CANCELLED
        assert _tokens(cache_dir) == []

    def test_cancel_while_holding_lock(self, cache_dir, baseline, package, patch_updater, executor):
        patch_updater.installation_lock.acquire()
        extractor = ResourceExtractor(cache_dir, baseline, package, patch_updater, executor=executor)
        extractor.add_resources(BASELINE_FILES).start()
        extractor.cancel()
        patch_updater.installation_lock.release()

        extractor.wait_for_completion()

        assert extractor.outcome == ExtractionOutcome.CANCELLED
        for key in BASELINE_FILES:
            assert not (cache_dir / key).exists()
        assert _tokens(cache_dir) == []

    def test_waits_for_downloader_lock(self, cache_dir, baseline, package, patch_updater, executor):
        patch_updater.installation_lock.acquire()
        extractor = ResourceExtractor(cache_dir, baseline, package, patch_updater, executor=executor)
        extractor.add_resources(BASELINE_FILES).start()

        write_zip(patch_updater.downloaded_archive_path, {"assets/a.png": b"late"}, valid_manifest())
        patch_updater.installation_lock.release()
        extractor.wait_for_completion()

        assert (cache_dir / "assets" / "a.png").read_bytes() == b"late"

    def test_corrupt_baseline_entry_wipes_cache(self, tmp_path, cache_dir, package, executor):
        path = write_zip(tmp_path / "bundle.zip", BASELINE_FILES)
        corrupt_zip(path, b"baseline-a", b"baseline-X")
        (cache_dir / f"{PREFIX}old").touch()
        reader = ZipArchiveReader(path)
        try:
            extractor = _run(ResourceExtractor(cache_dir, reader, package, executor=executor))
        finally:
            reader.close()

        assert extractor.outcome == ExtractionOutcome.FAILED
        for key in BASELINE_FILES:
            assert not (cache_dir / key).exists()
        assert _tokens(cache_dir) == []

    def test_interrupted_wait_cleans_after_worker_stops(self, cache_dir, baseline, package, executor):
        entered = threading.Event()
        release = threading.Event()

        class BlockingTokenFileSystem(LocalFileSystem):
            def create_new(self, path: Path) -> None:
                entered.set()
                release.wait(timeout=5)
                super().create_new(path)

        extractor = ResourceExtractor(
            cache_dir, baseline, package, fs=BlockingTokenFileSystem(), executor=executor
        )
        extractor.add_resources(BASELINE_FILES).start()
        assert entered.wait(timeout=5)

        def interrupted_result(timeout=None):
            release.set()
            raise KeyboardInterrupt

        extractor._future.result = interrupted_result

        with pytest.raises(KeyboardInterrupt):
            extractor.wait_for_completion()

        assert extractor.outcome == ExtractionOutcome.CANCELLED
        for key in BASELINE_FILES:
            assert not (cache_dir / key).exists()
        assert _tokens(cache_dir) == []


class TestSharedExecutor:
    """Test the process-wide pool."""

    def test_singleton(self):
        assert shared_executor() is shared_executor()

    def test_default_executor_used(self, cache_dir, baseline, package):
        extractor = _run(ResourceExtractor(cache_dir, baseline, package))
        assert extractor.outcome == ExtractionOutcome.EXTRACTED
