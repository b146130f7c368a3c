"""
Background synchronization queue for the catalog's follower tiers.

Every catalog mutation enqueues jobs here (mirror snapshot, remote write).
A single worker thread drains them in FIFO order, so the tiers see
mutations in the order they happened. Failures never reach the caller
that enqueued the job: they are logged and handed to error listeners.
"""

from __future__ import annotations

import logging
import queue
import threading
from collections import deque
from collections.abc import Callable
from dataclasses import dataclass

from .exceptions import PersistenceFailure

logger = logging.getLogger(__name__)

ErrorListener = Callable[[PersistenceFailure], None]


@dataclass
class SyncJob:
    """One unit of follower-tier work."""

    description: str  # e.g. "mirror snapshot (12 records)"
    action: Callable[[], None]


MAX_KEPT_FAILURES = 100


class SyncQueue:
    """FIFO of sync jobs drained by one daemon thread.

    Usage:
        sync = SyncQueue()
        sync.add_error_listener(lambda failure: print(failure.details))
        sync.submit(SyncJob("remote put abc", lambda: remote.put(record)))
        sync.flush()   # wait until everything issued so far has run
        sync.close()
    """

    def __init__(self, name: str = "catalog-sync"):
        self._name = name
        self._jobs: queue.Queue[SyncJob | None] = queue.Queue()  # None stops the worker
        self._listeners: list[ErrorListener] = []
        self._worker: threading.Thread | None = None
        self._lock = threading.Lock()
        self.failures: deque[PersistenceFailure] = deque(maxlen=MAX_KEPT_FAILURES)

    # ─── Public API ──────────────────────────────────────────────────

    def add_error_listener(self, listener: ErrorListener) -> None:
        self._listeners.append(listener)

    def submit(self, job: SyncJob) -> None:
        """Queue a job; returns immediately."""
        self._ensure_worker()
        self._jobs.put(job)

    def flush(self) -> None:
        """Block until every job submitted so far has finished."""
        self._jobs.join()

    def close(self) -> None:
        """Drain outstanding jobs and stop the worker."""
        with self._lock:
            worker = self._worker
            self._worker = None
        if worker is None:
            return
        self._jobs.put(None)
        worker.join()

    # ─── Worker ──────────────────────────────────────────────────────

    def _ensure_worker(self) -> None:
        with self._lock:
            if self._worker is None:
                self._worker = threading.Thread(
                    target=self._drain, name=self._name, daemon=True
                )
                self._worker.start()

    def _drain(self) -> None:
        while True:
            job = self._jobs.get()
            try:
                if job is None:
                    return
                self._run(job)
            finally:
                self._jobs.task_done()

    def _run(self, job: SyncJob) -> None:
        try:
            job.action()
        except PersistenceFailure as exc:
            self._report(exc)
        except Exception as exc:
            self._report(
                PersistenceFailure(
                    f"{job.description} failed: {exc}",
                    details={"job": job.description, "error": repr(exc)},
                )
            )

    def _report(self, failure: PersistenceFailure) -> None:
        logger.warning("Sync job failed: %s", failure)
        self.failures.append(failure)
        for listener in self._listeners:
            try:
                listener(failure)
            except Exception:
                logger.exception("Sync error listener raised")
