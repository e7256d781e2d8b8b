"""Scan and watch dispatch.

Both modes feed discovered paths through the same ``IntakeDriver`` and log
per-file failures the same way. They differ only in how paths are found and
in how long the lock is held: a scan holds it for one pass over the source
directory, a watch holds it until the process is told to stop.
"""
from __future__ import annotations

import glob
import logging
import os
import threading
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import Callable, Optional

from watchdog.events import FileSystemEventHandler
from watchdog.observers import Observer

from .driver import IntakeDriver
from .errors import IntakeCancelled, IntakeError, PublishFailed
from .lock import LockGuard
from .publisher import JobDescriptor

DEFAULT_WATCH_WORKERS = 4


def list_candidates(source_dir: str) -> list[str]:
    """Files directly under ``source_dir`` that have an extension, sorted."""
    pattern = os.path.join(glob.escape(os.path.abspath(source_dir)), "*.*")
    return sorted(path for path in glob.glob(pattern) if os.path.isfile(path))


def log_failure(logger: logging.Logger, path: str, exc: BaseException) -> None:
    if isinstance(exc, PublishFailed):
        logger.error("Publish failed for %s: %s", path, exc)
    elif isinstance(exc, IntakeCancelled):
        logger.info("Left %s in place: %s", path, exc)
    elif isinstance(exc, IntakeError):
        logger.warning("Skipped %s: %s", path, exc)
    else:
        logger.exception("Error processing file %s", path)


@dataclass
class ScanReport:
    published: list[JobDescriptor] = field(default_factory=list)
    failures: list[tuple[str, BaseException]] = field(default_factory=list)


class ScanDispatcher:
    """One pass over the source directory under the lock.

    ``AlreadyLocked``, and ``PublishFailed`` from an unreachable broker,
    propagate before anything is listed or moved. Files
    are taken one at a time; a failing file is logged and recorded in the
    report and the scan moves on. The lock is released on every way out.
    """

    def __init__(
        self,
        lock: LockGuard,
        driver: IntakeDriver,
        tmp_dir: str,
        dest_dir: str,
        logger: Optional[logging.Logger] = None,
    ) -> None:
        self.lock = lock
        self.driver = driver
        self.tmp_dir = tmp_dir
        self.dest_dir = dest_dir
        self.logger = logger or logging.getLogger("hardcode")

    def run(self, source_dir: str) -> ScanReport:
        report = ScanReport()
        with self.lock.held():
            self.driver.publisher.connect()
            for path in list_candidates(source_dir):
                try:
                    report.published.append(self.driver.intake(path, self.tmp_dir, self.dest_dir))
                except Exception as exc:
                    report.failures.append((path, exc))
                    log_failure(self.logger, path, exc)
        self.logger.info(
            "Scan of %s done: %d enqueued, %d failed",
            source_dir, len(report.published), len(report.failures),
        )
        return report


class AddedFileHandler(FileSystemEventHandler):
    """Reports files created in, or moved into, the watched directory."""

    def __init__(self, on_added: Callable[[str], None]) -> None:
        super().__init__()
        self.on_added = on_added

    def on_created(self, event):
        # Ignore directories
        if event.is_directory:
            return
        self.on_added(os.fsdecode(event.src_path))

    def on_moved(self, event):
        if event.is_directory:
            return
        self.on_added(os.fsdecode(event.dest_path))


class WatchDispatcher:
    """Continuous intake of files added to the source directory.

    The lock is taken once in ``run`` and kept for the life of the watch.
    ``stop()`` (wired to SIGINT/SIGTERM by the CLI) ends the watch: pending
    files are dropped, in-flight waits are cancelled, and only once every
    worker thread is done is the lock released.
    """

    def __init__(
        self,
        lock: LockGuard,
        driver: IntakeDriver,
        tmp_dir: str,
        dest_dir: str,
        logger: Optional[logging.Logger] = None,
        recursive: bool = False,
        max_workers: int = DEFAULT_WATCH_WORKERS,
        observer_factory: Callable[[], Observer] = Observer,
    ) -> None:
        self.lock = lock
        self.driver = driver
        self.tmp_dir = os.path.abspath(tmp_dir)
        self.dest_dir = dest_dir
        self.logger = logger or logging.getLogger("hardcode")
        self.recursive = recursive
        self.max_workers = max_workers
        self._observer_factory = observer_factory
        self._executor: Optional[ThreadPoolExecutor] = None
        self._stopped = threading.Event()

    def run(self, source_dir: str) -> None:
        handle = self.lock.acquire()
        self._executor = ThreadPoolExecutor(max_workers=self.max_workers, thread_name_prefix="intake")
        try:
            self.driver.publisher.connect()
            observer = self._observer_factory()
            observer.schedule(AddedFileHandler(self.submit), source_dir, recursive=self.recursive)
            observer.start()
            self.logger.info("Watching: %s", source_dir)
            try:
                while not self._stopped.wait(1):
                    pass
            finally:
                self.logger.info("Shutdown requested, stopping observer")
                observer.stop()
                observer.join()
        finally:
            self.driver.detector.cancel()
            self._executor.shutdown(wait=True, cancel_futures=True)
            self.lock.release(handle)
            self.logger.info("Stopped")

    def stop(self) -> None:
        self._stopped.set()

    def submit(self, path: str) -> None:
        # staged files must not be picked up again when tmp_dir is watched
        if os.path.commonpath([self.tmp_dir, os.path.abspath(path)]) == self.tmp_dir:
            return
        if self._executor is None or self._stopped.is_set():
            return
        self.logger.info("New file detected: %s", path)
        self._executor.submit(self._intake_one, path)

    def _intake_one(self, path: str) -> None:
        try:
            self.driver.intake(path, self.tmp_dir, self.dest_dir)
        except Exception as exc:
            log_failure(self.logger, path, exc)
