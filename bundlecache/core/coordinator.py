"""Background coordination of one resource extraction cycle.

A cycle runs on a worker thread and holds the patch installation lock from
graduation until the last entry is written::

    graduate patch -> check freshness -> wipe -> override pass
        -> baseline pass -> write token

Callers that need the resources block on ``wait_for_completion``. Whatever
goes wrong, the cache directory ends up either complete with a matching
token or without any declared resource and token.
"""

from __future__ import annotations

import threading
from collections.abc import Iterable
from concurrent.futures import CancelledError, Executor, Future, ThreadPoolExecutor
from concurrent.futures import wait as wait_futures
from pathlib import Path

import structlog

from bundlecache.core.config import ExtractorConfig
from bundlecache.core.errors import ExtractionCancelled
from bundlecache.core.extractor import extract_entries, extract_override
from bundlecache.core.filesystem import LocalFileSystem
from bundlecache.core.freshness import check_freshness, wipe_cache
from bundlecache.core.graduation import graduate_patch
from bundlecache.core.package import PackageMetadataProvider
from bundlecache.core.patch import PatchProvider
from bundlecache.core.types import ExtractionOutcome
from bundlecache.formats.archive import ArchiveReader, normalize_key

logger = structlog.get_logger()

_executor_lock = threading.Lock()
_shared_executor: ThreadPoolExecutor | None = None


def shared_executor(max_workers: int = 2) -> ThreadPoolExecutor:
    """Process-wide worker pool for extraction cycles.

    Args:
        max_workers: Pool size, only used when the pool is first created

    Returns:
        The shared executor
    """
    global _shared_executor
    with _executor_lock:
        if _shared_executor is None:
            _shared_executor = ThreadPoolExecutor(
                max_workers=max_workers, thread_name_prefix="bundlecache"
            )
        return _shared_executor


class ResourceExtractor:
    """Keeps the cache directory in sync with the bundle and installed patch.

    Args:
        cache_dir: Writable directory receiving the resources
        baseline: Archive reader for the application bundle
        package: Package metadata provider
        patch: Patch provider, or None to disable override patches
        config: Extractor configuration
        fs: File-system access
        executor: Executor running the cycle, defaults to the shared pool
    """

    def __init__(
        self,
        cache_dir: Path,
        baseline: ArchiveReader,
        package: PackageMetadataProvider,
        patch: PatchProvider | None = None,
        config: ExtractorConfig | None = None,
        fs: LocalFileSystem | None = None,
        executor: Executor | None = None,
    ):
        self.cache_dir = cache_dir
        self.baseline = baseline
        self.package = package
        self.patch = patch
        self.config = config or ExtractorConfig()
        self.fs = fs or LocalFileSystem()
        self._executor = executor
        self._resources: set[str] = set()
        self._future: Future[None] | None = None
        self._stop = threading.Event()
        self._outcome = ExtractionOutcome.PENDING

    @property
    def resources(self) -> frozenset[str]:
        """Registered resource keys."""
        return frozenset(self._resources)

    @property
    def outcome(self) -> ExtractionOutcome:
        """Terminal state of the cycle, PENDING until it finishes."""
        return self._outcome

    def add_resource(self, key: str) -> ResourceExtractor:
        assert self._future is None, "resources cannot be added after start()"
        self._resources.add(normalize_key(key))
        return self

    def add_resources(self, keys: Iterable[str]) -> ResourceExtractor:
        assert self._future is None, "resources cannot be added after start()"
        self._resources.update(normalize_key(key) for key in keys)
        return self

    def start(self) -> ResourceExtractor:
        """Launch the extraction cycle in the background. Call once."""
        assert self._future is None, "start() called twice"
        executor = self._executor or shared_executor(self.config.max_workers)
        self._future = executor.submit(self._run)
        logger.debug("extraction_started", cache_dir=str(self.cache_dir), resources=len(self._resources))
        return self

    def cancel(self) -> None:
        """Request cancellation; the cycle stops at its next checkpoint."""
        self._stop.set()
        if self._future is not None:
            self._future.cancel()

    def wait_for_completion(self) -> None:
        """Block until the cycle ends.

        If the cycle failed, was cancelled, or the wait is interrupted, the
        cache is wiped before returning so that no partial set of resources
        is left behind. A KeyboardInterrupt is re-raised after cleanup.
        """
        if self._future is None:
            return

        try:
            self._future.result()
        except CancelledError:
            logger.info("extraction_cancelled", cache_dir=str(self.cache_dir))
            self._outcome = ExtractionOutcome.CANCELLED
            self._delete_files()
        except KeyboardInterrupt:
            logger.info("extraction_wait_interrupted", cache_dir=str(self.cache_dir))
            self._stop.set()
            self._future.cancel()
            # The worker may still write files; wipe only once it has stopped.
            wait_futures([self._future])
            self._outcome = ExtractionOutcome.CANCELLED
            self._delete_files()
            raise
        except Exception as e:
            logger.warning("extraction_failed", cache_dir=str(self.cache_dir), error=str(e))
            if self._outcome not in (ExtractionOutcome.CANCELLED, ExtractionOutcome.FAILED):
                self._outcome = ExtractionOutcome.FAILED
            self._delete_files()

    def _delete_files(self) -> None:
        wipe_cache(self.cache_dir, self._resources, self.config.token_prefix, self.fs)

    def _check_stop(self, step: str) -> None:
        if self._stop.is_set():
            raise ExtractionCancelled(f"Extraction cancelled before {step}")

    def _run(self) -> None:
        # The downloader must not replace the patch while it is being read.
        lock = self.patch.installation_lock if self.patch is not None else None
        if lock is not None:
            lock.acquire()
        try:
            try:
                self._outcome = self._extract()
            except ExtractionCancelled:
                self._outcome = ExtractionOutcome.CANCELLED
                self._delete_files()
                raise
            except Exception:
                self._outcome = ExtractionOutcome.FAILED
                self._delete_files()
                raise
        finally:
            if lock is not None:
                lock.release()

    def _extract(self) -> ExtractionOutcome:
        self._check_stop("graduation")
        if self.patch is not None and not graduate_patch(self.patch, self.fs):
            return ExtractionOutcome.ABORTED

        self._check_stop("freshness check")
        token = check_freshness(
            self.cache_dir, self.config.token_prefix, self.package, self.patch, self.fs
        )
        if token is None:
            return ExtractionOutcome.FRESH

        self._delete_files()

        extract_override(
            self.patch,
            self._resources,
            self.cache_dir,
            self.fs,
            buffer_size=self.config.buffer_size,
            should_stop=self._stop.is_set,
        )
        extract_entries(
            self.baseline,
            self._resources,
            self.cache_dir,
            self.fs,
            label="baseline",
            buffer_size=self.config.buffer_size,
            should_stop=self._stop.is_set,
        )

        self._check_stop("token write")
        try:
            self.fs.make_dirs(self.cache_dir)
            self.fs.create_new(self.cache_dir / token)
        except OSError as e:
            logger.warning("resource_timestamp_write_failed", token=token, error=str(e))

        logger.info("resources_extracted", cache_dir=str(self.cache_dir), token=token)
        return ExtractionOutcome.EXTRACTED
