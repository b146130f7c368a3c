"""
Catalog store — the single owner of parcel records.

Three tiers:
  1. In-process cache (dict keyed by id)   ← source of truth during a run
  2. Local mirror (one JSON file)          ← full snapshot after every mutation
  3. Remote store (per-user collection)    ← only the changed record

Tier 1 is updated synchronously before a mutating call returns.
Tiers 2 and 3 are followers: their writes go through the SyncQueue and
their failures are reported there, never raised to the caller.
"""

from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from pathlib import Path
from typing import Optional

from .exceptions import PersistenceFailure
from .models import ParcelRecord, utc_now
from .remote import RemoteParcelStore
from .sync import SyncJob, SyncQueue

logger = logging.getLogger(__name__)


# ─── Local Mirror ───────────────────────────────────────────────────


class LocalMirror:
    """Full record list persisted as one JSON file."""

    def __init__(self, path: str | Path):
        self.path = Path(path)

    def load(self) -> list[ParcelRecord]:
        if not self.path.exists():
            return []
        try:
            with self.path.open(encoding="utf-8") as f:
                data = json.load(f)
            return [ParcelRecord.model_validate(doc) for doc in data]
        except (OSError, TypeError, ValueError) as exc:
            raise PersistenceFailure(
                f"Could not load local mirror {self.path}: {exc}",
                details={"path": str(self.path)},
            ) from exc

    def write(self, documents: list[dict]) -> None:
        """Replace the mirror atomically with ``documents``."""
        tmp_name: str | None = None
        try:
            self.path.parent.mkdir(parents=True, exist_ok=True)
            fd, tmp_name = tempfile.mkstemp(
                prefix=f".{self.path.name}.", dir=self.path.parent
            )
            with os.fdopen(fd, "w", encoding="utf-8") as f:
                json.dump(documents, f, indent=2)
            os.replace(tmp_name, self.path)
        except (OSError, TypeError, ValueError) as exc:
            if tmp_name is not None:
                Path(tmp_name).unlink(missing_ok=True)
            raise PersistenceFailure(
                f"Could not write local mirror {self.path}: {exc}",
                details={"path": str(self.path)},
            ) from exc


# ─── Catalog Store ──────────────────────────────────────────────────


class CatalogStore:
    """Authoritative set of parcel records.

    Usage:
        store = CatalogStore(LocalMirror("catalog.json"), remote=None)
        store.hydrate()
        store.upsert(record)
        store.sync.flush()   # only if you need the follower tiers settled

    Callers get copies; mutating a returned record does not touch the cache.
    Concurrent upserts of different ids are safe. Concurrent upserts of the
    same id are not ordered; the caller must serialize them.
    """

    def __init__(
        self,
        mirror: LocalMirror | None = None,
        remote: RemoteParcelStore | None = None,
        sync: SyncQueue | None = None,
    ):
        self.mirror = mirror
        self.remote = remote
        self.sync = sync or SyncQueue()
        self._records: dict[str, ParcelRecord] = {}
        self._lock = threading.Lock()

    # ─── Session Start ───────────────────────────────────────────────

    def hydrate(self) -> int:
        """Rebuild the cache from the remote store, else from the local mirror.

        Returns the number of records loaded.
        """
        records: list[ParcelRecord] | None = None
        if self.remote is not None:
            try:
                records = self.remote.list_records()
                logger.info("Loaded %d records from remote store", len(records))
            except PersistenceFailure as exc:
                logger.warning("Remote load failed, falling back to local mirror: %s", exc)

        if records is None and self.mirror is not None:
            try:
                records = self.mirror.load()
                logger.info("Loaded %d records from local mirror", len(records))
            except PersistenceFailure as exc:
                logger.warning("Local mirror unreadable, starting empty: %s", exc)

        with self._lock:
            self._records = {r.id: r for r in records or []}
            return len(self._records)

    # ─── Reads ───────────────────────────────────────────────────────

    def list_all(self) -> list[ParcelRecord]:
        with self._lock:
            return [r.model_copy(deep=True) for r in self._records.values()]

    def get_by_id(self, record_id: str) -> Optional[ParcelRecord]:
        with self._lock:
            record = self._records.get(record_id)
            return record.model_copy(deep=True) if record else None

    def __len__(self) -> int:
        with self._lock:
            return len(self._records)

    # ─── Mutations ───────────────────────────────────────────────────

    def upsert(self, record: ParcelRecord) -> None:
        """Replace the record with the same id, or append a new one."""
        stored = record.model_copy(deep=True)
        with self._lock:
            self._records[stored.id] = stored
            # Jobs are queued under the lock so the followers see mutations
            # in the same order as the cache.
            self._schedule_mirror_locked()
            if self.remote is not None:
                remote = self.remote
                self.sync.submit(SyncJob(f"remote put {stored.id}", lambda: remote.put(stored)))

    def delete(self, record_id: str) -> bool:
        """Remove a record. Returns False when there was nothing to remove."""
        with self._lock:
            if self._records.pop(record_id, None) is None:
                return False
            self._schedule_mirror_locked()
            if self.remote is not None:
                remote = self.remote
                self.sync.submit(
                    SyncJob(f"remote delete {record_id}", lambda: remote.delete(record_id))
                )
        return True

    def set_completed(self, record_id: str, completed: bool) -> Optional[ParcelRecord]:
        """Set the workflow flag. Returns the updated record, or None if unknown."""
        record = self.get_by_id(record_id)
        if record is None:
            return None
        record.completed = completed
        record.updated_at = utc_now()
        self.upsert(record)
        return record

    # ─── Follower Tiers ──────────────────────────────────────────────

    def _schedule_mirror_locked(self) -> None:
        if self.mirror is None:
            return
        mirror = self.mirror
        snapshot = [r.to_document() for r in self._records.values()]
        self.sync.submit(
            SyncJob(f"mirror snapshot ({len(snapshot)} records)", lambda: mirror.write(snapshot))
        )

    def close(self) -> None:
        """Drain pending sync jobs and release the remote client."""
        self.sync.close()
        if self.remote is not None:
            self.remote.close()
