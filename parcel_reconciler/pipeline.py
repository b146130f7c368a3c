"""
Batch reconciliation pipeline — orchestrates one import run.

Flow (per document, strictly one at a time, in input order):
  ┌──────────┐
  │ Read PDF │   ← ReadFailure → error
  └────┬─────┘
  ┌────▼─────┐
  │ Extract  │   ← ExtractionFailure → error (optionally retried)
  └────┬─────┘
  ┌────▼─────┐
  │Normalize │   ← empty APN → NoIdentifierFailure → error
  └────┬─────┘
  ┌────▼─────┐
  │  Match   │   ← linear scan of the run's snapshot, first hit wins
  └──┬────┬──┘
     │    │
  matched  none ──► create (or no-match when auto-create is off)
     │    │
  ┌──▼────▼──┐
  │  Upsert  │   ← committed before any file is touched
  └────┬─────┘
  ┌────▼─────┐
  │  Place   │   ← PlacementFailure → warning only
  └──────────┘

Design principles:
  - An item that ends in error never leaves a catalog mutation behind.
  - Records created in a run are appended to the run's snapshot, so a
    later document with the same APN matches instead of duplicating.
  - Extraction overlays, never erases: empty extracted fields keep the
    existing value. The overlay goes onto the catalog's current copy of
    the matched record, not the start-of-run snapshot.
  - A fixed delay separates documents to stay under the service's rate limit.
"""

from __future__ import annotations

import logging
import threading
import time
import uuid
from collections.abc import Callable, Sequence
from pathlib import Path

from .catalog import CatalogStore
from .exceptions import (
    ExtractionFailure,
    InvalidTransitionError,
    NoIdentifierFailure,
    PlacementFailure,
    ReadFailure,
)
from .extractor_llm import Extractor
from .folders import TAXES, create_parcel_folder, place, safe_name
from .models import (
    OVERLAY_FIELDS,
    BatchItem,
    BatchReport,
    ExtractedFields,
    ItemStatus,
    ParcelRecord,
    utc_now,
)
from .normalizer import find_match, normalize_apn

logger = logging.getLogger(__name__)

DEFAULT_ITEM_DELAY = 0.8
DOCUMENT_SUFFIXES: frozenset[str] = frozenset({".pdf"})

ProgressCallback = Callable[[list[BatchItem]], None]
CompleteCallback = Callable[[BatchReport], None]


# ─── Input Scanning ──────────────────────────────────────────────────


def scan_folder(folder: str | Path) -> list[BatchItem]:
    """List the PDFs directly inside ``folder`` as pending batch items, by name.

    Raises:
        NotADirectoryError: when ``folder`` is not a directory.
    """
    path = Path(folder)
    if not path.is_dir():
        raise NotADirectoryError(f"Not a folder: {path}")
    documents = sorted(
        (p for p in path.iterdir() if p.is_file() and p.suffix.lower() in DOCUMENT_SUFFIXES),
        key=lambda p: p.name.lower(),
    )
    return [BatchItem(file_name=p.name, file_path=str(p)) for p in documents]


# ─── Record Building ─────────────────────────────────────────────────


def identifier_of(fields: ExtractedFields) -> str:
    """The APN to match on: canonical digits first, printed form as fallback."""
    return fields.apn if normalize_apn(fields.apn) else fields.apn_raw


def overlay_extraction(record: ParcelRecord, fields: ExtractedFields, now: str) -> ParcelRecord:
    """Copy of ``record`` with every non-empty extracted field laid over it."""
    updates: dict[str, str] = {
        name: getattr(fields, name) for name in OVERLAY_FIELDS if getattr(fields, name)
    }
    updates["updated_at"] = now
    return record.model_copy(update=updates, deep=True)


def record_from_extraction(
    fields: ExtractedFields, apn: str, record_id: str, now: str
) -> ParcelRecord:
    """A new, not-completed record holding what the card showed."""
    return ParcelRecord(
        id=record_id,
        apn=apn,
        completed=False,
        folder_path="",
        created_at=now,
        updated_at=now,
        **{name: getattr(fields, name) for name in OVERLAY_FIELDS},
    )


def placed_file_name(record: ParcelRecord, source_path: str) -> str:
    suffix = Path(source_path).suffix or ".pdf"
    return f"TaxCard_{safe_name(record.apn or record.id)}{suffix}"


# ─── Engine ──────────────────────────────────────────────────────────


class BatchReconciliationEngine:
    """Drives a batch of tax cards through extraction, matching and filing.

    Usage:
        engine = BatchReconciliationEngine(catalog, ExtractionClient(api_key))
        items = scan_folder("~/scans")
        report = engine.run(items, on_progress=render)
        print(report.counts)
    """

    def __init__(
        self,
        catalog: CatalogStore,
        extractor: Extractor,
        folders_root: str | Path | None = None,
        create_missing: bool = True,
        item_delay: float = DEFAULT_ITEM_DELAY,
        extraction_retries: int = 0,
        clock: Callable[[], str] = utc_now,
        new_id: Callable[[], str] = lambda: str(uuid.uuid4()),
        sleep: Callable[[float], None] = time.sleep,
    ):
        self.catalog = catalog
        self.extractor = extractor
        self.folders_root = Path(folders_root) if folders_root is not None else None
        self.create_missing = create_missing
        self.item_delay = item_delay
        self.extraction_retries = extraction_retries
        self._clock = clock
        self._new_id = new_id
        self._sleep = sleep

    def run(
        self,
        items: Sequence[BatchItem],
        on_progress: ProgressCallback | None = None,
        on_complete: CompleteCallback | None = None,
        cancel: threading.Event | None = None,
    ) -> BatchReport:
        """Process every pending item in order and report the outcome.

        ``items`` are updated in place. ``on_progress`` receives a copy of
        the full item list after every status change. Setting ``cancel``
        stops the run before the next item; unreached items stay pending.
        """
        not_pending = [i.file_name for i in items if i.status is not ItemStatus.PENDING]
        if not_pending:
            raise InvalidTransitionError(
                f"Batch contains {len(not_pending)} item(s) that are not pending",
                details={"files": not_pending},
            )

        snapshot = self.catalog.list_all()
        logger.info("Starting batch of %d document(s) against %d record(s)", len(items), len(snapshot))

        cancelled = False
        for index, item in enumerate(items):
            if cancel is not None and cancel.is_set():
                cancelled = True
                logger.info("Batch cancelled with %d document(s) left", len(items) - index)
                break

            item.start()
            self._emit(items, on_progress)

            try:
                self._process(item, snapshot)
            except (ReadFailure, ExtractionFailure, NoIdentifierFailure) as exc:
                item.finish(ItemStatus.ERROR, error=str(exc))
            except Exception as exc:
                logger.exception("Unexpected failure on %s", item.file_name)
                item.finish(ItemStatus.ERROR, error=str(exc) or type(exc).__name__)

            logger.info("%s → %s%s", item.file_name, item.status.value,
                        f" ({item.error})" if item.error else "")
            self._emit(items, on_progress)

            is_last = index == len(items) - 1
            if not is_last and not (cancel is not None and cancel.is_set()):
                self._sleep(self.item_delay)

        report = BatchReport.from_items(list(items), cancelled=cancelled)
        logger.info(
            "Batch finished: %s",
            ", ".join(f"{s.value}={n}" for s, n in report.counts.items() if n),
        )
        if on_complete is not None:
            on_complete(report)
        return report

    def run_folder(self, folder: str | Path, **kwargs) -> BatchReport:
        return self.run(scan_folder(folder), **kwargs)

    # ─── Per-Item Steps ──────────────────────────────────────────────

    def _process(self, item: BatchItem, snapshot: list[ParcelRecord]) -> None:
        data = self._read(item)
        fields = self._extract(data, item)
        item.extracted = fields

        apn = identifier_of(fields)
        key = normalize_apn(apn)
        if not key:
            raise NoIdentifierFailure(
                "Could not extract identifier",
                details={"file_name": item.file_name},
            )
        item.apn = apn

        match = self._current_match(snapshot, key)
        if match is not None:
            updated = overlay_extraction(match, fields, self._clock())
            self.catalog.upsert(updated)
            snapshot[:] = [updated if r.id == updated.id else r for r in snapshot]
            self._file(item, updated)
            item.finish(ItemStatus.MATCHED, record_id=updated.id)
            return

        if not self.create_missing:
            item.finish(ItemStatus.NO_MATCH)
            return

        record = self._create(fields, apn)
        snapshot.append(record)
        self._file(item, record)
        item.finish(ItemStatus.CREATED, record_id=record.id)

    def _current_match(self, snapshot: list[ParcelRecord], key: str) -> ParcelRecord | None:
        """The catalog's current version of the first snapshot record matching ``key``.

        Merging onto the catalog copy keeps changes made to the record
        since the run started (e.g. the completed flag). A record deleted
        since then leaves the snapshot and matching moves on.
        """
        while True:
            match = find_match(snapshot, key)
            if match is None:
                return None
            current = self.catalog.get_by_id(match.id)
            if current is not None:
                return current
            logger.info("Parcel %s was deleted during the run; not matching it", match.id)
            snapshot[:] = [r for r in snapshot if r.id != match.id]

    def _read(self, item: BatchItem) -> bytes:
        try:
            return Path(item.file_path).read_bytes()
        except OSError as exc:
            logger.warning("Could not read %s: %s", item.file_path, exc)
            raise ReadFailure(
                "Could not read file",
                details={"file_path": item.file_path, "error": repr(exc)},
            ) from exc

    def _extract(self, data: bytes, item: BatchItem) -> ExtractedFields:
        attempts = self.extraction_retries + 1
        attempt = 1
        while True:
            try:
                return self.extractor.extract(data, item.file_name)
            except ExtractionFailure as exc:
                if attempt >= attempts:
                    raise
                logger.warning(
                    "Extraction attempt %d/%d failed for %s: %s",
                    attempt, attempts, item.file_name, exc,
                )
                attempt += 1
                self._sleep(self.item_delay)

    def _create(self, fields: ExtractedFields, apn: str) -> ParcelRecord:
        record = record_from_extraction(fields, apn, self._new_id(), self._clock())
        if self.folders_root is not None:
            try:
                record.folder_path = str(create_parcel_folder(self.folders_root, record))
            except OSError as exc:
                logger.warning("Could not create folder for APN %s: %s", apn, exc)
        self.catalog.upsert(record)
        return record

    def _file(self, item: BatchItem, record: ParcelRecord) -> None:
        if not record.folder_path:
            item.warning = "Parcel has no folder; document was not filed"
            return
        try:
            place(item.file_path, record.folder_path, TAXES, placed_file_name(record, item.file_path))
        except PlacementFailure as exc:
            logger.warning("Placement failed for %s: %s", item.file_name, exc)
            item.warning = str(exc)

    @staticmethod
    def _emit(items: Sequence[BatchItem], on_progress: ProgressCallback | None) -> None:
        if on_progress is not None:
            on_progress([i.model_copy(deep=True) for i in items])
