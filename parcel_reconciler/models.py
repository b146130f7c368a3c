"""
Pydantic models for parcel records and batch runs.

Attribute names are snake_case in Python. The persisted form (local
mirror, remote store) uses camelCase through the alias generator, so
records written by older clients load unchanged.
"""

from __future__ import annotations

from datetime import datetime, timezone
from enum import Enum
from typing import Optional

from pydantic import BaseModel, ConfigDict, Field, field_validator
from pydantic.alias_generators import to_camel

from .exceptions import InvalidTransitionError


def utc_now() -> str:
    """Current time as an ISO-8601 UTC timestamp."""
    return datetime.now(timezone.utc).isoformat()


# ─── Parcel Record ──────────────────────────────────────────────────


class ParcelRecord(BaseModel):
    """One parcel in the catalog. ``id`` is assigned once and never changes."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    id: str
    apn: str = ""
    map_parcel_no: str = ""
    county: str = ""
    state: str = ""
    address: str = ""
    assessed_owner: str = ""
    legal_owner: str = ""
    legal_description: str = ""
    brief_legal: str = ""
    tract_type: str = ""
    acres: str = ""
    vesting_deed_no: str = ""
    notes: str = ""
    completed: bool = False
    folder_path: str = ""  # Empty when folder creation failed
    created_at: str = Field(default_factory=utc_now)
    updated_at: str = Field(default_factory=utc_now)

    def to_document(self) -> dict:
        """Serialize to the camelCase form stored in the mirror and remote."""
        return self.model_dump(mode="json", by_alias=True)


class ParcelDraft(BaseModel):
    """The user-editable part of a record, as entered in a form.

    Identity (``id``, ``created_at``) and ``folder_path`` are owned by the
    catalog and cannot be set through a draft.
    """

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    apn: str = ""
    map_parcel_no: str = ""
    county: str = ""
    state: str = ""
    address: str = ""
    assessed_owner: str = ""
    legal_owner: str = ""
    legal_description: str = ""
    brief_legal: str = ""
    tract_type: str = ""
    acres: str = ""
    vesting_deed_no: str = ""
    notes: str = ""
    completed: bool = False

    def to_record(self, record_id: str, now: str) -> ParcelRecord:
        return ParcelRecord(id=record_id, created_at=now, updated_at=now, **self.model_dump())

    def apply_to(self, record: ParcelRecord, now: str) -> ParcelRecord:
        """Copy of ``record`` with every draft field written over it."""
        return record.model_copy(update={**self.model_dump(), "updated_at": now}, deep=True)


# ─── Extraction Result ──────────────────────────────────────────────


# Descriptive fields an import may overwrite on an existing record.
OVERLAY_FIELDS: tuple[str, ...] = (
    "assessed_owner",
    "legal_owner",
    "acres",
    "brief_legal",
    "legal_description",
    "map_parcel_no",
    "address",
    "county",
    "state",
)


class ExtractedFields(BaseModel):
    """What the extraction service read off one tax card.

    Every field is a string. Anything the card did not show is ``""``,
    never ``None``, so the merge step only has one "empty" to check.
    """

    apn_raw: str = ""  # As printed on the card
    apn: str = ""  # Digits only
    assessed_owner: str = ""
    legal_owner: str = ""
    county: str = ""
    state: str = ""  # 2-letter code
    acres: str = ""  # Plain number, no units
    brief_legal: str = ""
    legal_description: str = ""
    map_parcel_no: str = ""
    address: str = ""

    @field_validator("*", mode="before")
    @classmethod
    def _coerce_to_text(cls, value: object) -> str:
        if value is None:
            return ""
        return str(value).strip()


# ─── Batch Items ────────────────────────────────────────────────────


class ItemStatus(str, Enum):
    """Lifecycle of one document in a batch run."""

    PENDING = "pending"
    PROCESSING = "processing"
    MATCHED = "matched"
    CREATED = "created"
    NO_MATCH = "no-match"
    ERROR = "error"


TERMINAL_STATUSES: frozenset[ItemStatus] = frozenset({
    ItemStatus.MATCHED,
    ItemStatus.CREATED,
    ItemStatus.NO_MATCH,
    ItemStatus.ERROR,
})


class BatchItem(BaseModel):
    """One input document for the duration of a run.

    pending → processing → exactly one of matched / created / no-match / error.
    """

    file_name: str
    file_path: str
    status: ItemStatus = ItemStatus.PENDING
    apn: Optional[str] = None  # Identifier as extracted
    record_id: Optional[str] = None  # Record matched or created
    error: Optional[str] = None
    warning: Optional[str] = None  # Non-fatal, e.g. the file was not placed
    extracted: Optional[ExtractedFields] = None

    def start(self) -> None:
        if self.status is not ItemStatus.PENDING:
            raise InvalidTransitionError(
                f"Cannot start '{self.file_name}' from status '{self.status.value}'",
                details={"file_name": self.file_name, "status": self.status.value},
            )
        self.status = ItemStatus.PROCESSING

    def finish(
        self,
        status: ItemStatus,
        *,
        error: str | None = None,
        record_id: str | None = None,
    ) -> None:
        """Move a processing item into its terminal status."""
        if self.status is not ItemStatus.PROCESSING:
            raise InvalidTransitionError(
                f"Cannot finish '{self.file_name}' from status '{self.status.value}'",
                details={"file_name": self.file_name, "status": self.status.value},
            )
        if status not in TERMINAL_STATUSES:
            raise InvalidTransitionError(
                f"'{status.value}' is not a terminal status",
                details={"file_name": self.file_name, "status": status.value},
            )
        if (status is ItemStatus.ERROR) != (error is not None):
            raise InvalidTransitionError(
                "An error message is required for, and only for, the error status",
                details={"file_name": self.file_name, "status": status.value},
            )
        self.status = status
        self.error = error
        if record_id is not None:
            self.record_id = record_id

    @property
    def is_done(self) -> bool:
        return self.status in TERMINAL_STATUSES


# ─── Run Report ─────────────────────────────────────────────────────


class BatchReport(BaseModel):
    """Final outcome of a batch run."""

    items: list[BatchItem] = Field(default_factory=list)
    counts: dict[ItemStatus, int] = Field(default_factory=dict)
    cancelled: bool = False

    @classmethod
    def from_items(cls, items: list[BatchItem], cancelled: bool = False) -> BatchReport:
        counts = {status: 0 for status in ItemStatus}
        for item in items:
            counts[item.status] += 1
        return cls(
            items=[item.model_copy(deep=True) for item in items],
            counts=counts,
            cancelled=cancelled,
        )

    def count(self, status: ItemStatus) -> int:
        return self.counts.get(status, 0)
