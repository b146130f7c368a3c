"""
Parcel Reconciler — FastAPI Server
===================================

RESTful API over the parcel catalog and the batch tax-card import.

Endpoints:
    GET    /parcels                     List all parcel records
    POST   /parcels                     Create a parcel (and its folder)
    GET    /parcels/{id}                One record
    PUT    /parcels/{id}                Edit a parcel's fields and notes
    PATCH  /parcels/{id}/completed      Set the workflow flag
    DELETE /parcels/{id}                Remove a record (optionally its folder)
    POST   /imports                     Run a batch import over a folder of PDFs
    GET    /health                      Health check / readiness probe

Parcel edits are refused with 409 while an import is running.

Run:
    uvicorn api:app --reload              # Dev (http://localhost:8000)
    uvicorn api:app --host 0.0.0.0        # Production

Docs:
    http://localhost:8000/docs             # Swagger UI (auto-generated)
"""

from __future__ import annotations

import asyncio
import logging
import uuid
from contextlib import asynccontextmanager
from typing import Optional

from dotenv import load_dotenv
from fastapi import FastAPI, HTTPException, Response
from pydantic import BaseModel, Field

from parcel_reconciler import __version__
from parcel_reconciler.catalog import CatalogStore, LocalMirror
from parcel_reconciler.config import Settings, configure_logging
from parcel_reconciler.extractor_llm import ExtractionClient, Extractor
from parcel_reconciler.folders import create_parcel_folder, delete_parcel_folder
from parcel_reconciler.models import BatchReport, ItemStatus, ParcelDraft, ParcelRecord, utc_now
from parcel_reconciler.pipeline import BatchReconciliationEngine, scan_folder
from parcel_reconciler.remote import RemoteParcelStore

load_dotenv()

logger = logging.getLogger(__name__)


# ─── Application State (built on startup) ───────────────────────────

_settings: Settings | None = None
_catalog: CatalogStore | None = None
_extractor: Extractor | None = None
_import_lock = asyncio.Lock()


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Hydrate the catalog on startup; drain its sync queue on shutdown."""
    global _settings, _catalog, _extractor  # noqa: PLW0603
    configure_logging()
    _settings = Settings.from_env()
    remote = (
        RemoteParcelStore(_settings.remote_url, _settings.remote_user, _settings.remote_token)
        if _settings.remote_enabled
        else None
    )
    _catalog = CatalogStore(LocalMirror(_settings.catalog_path), remote=remote)
    await asyncio.to_thread(_catalog.hydrate)
    if _settings.openai_api_key:
        _extractor = ExtractionClient(
            api_key=_settings.openai_api_key,
            model=_settings.extraction_model,
            timeout=_settings.extraction_timeout,
        )
    else:
        logger.warning("No OPENAI_API_KEY set — imports are disabled")
    yield
    await asyncio.to_thread(_catalog.close)
    _settings = _catalog = _extractor = None


# ─── FastAPI App ─────────────────────────────────────────────────────

app = FastAPI(
    title="Parcel Reconciler API",
    description=(
        "Parcel catalog with batch tax-card import. Each card is read by an "
        "LLM, matched to a parcel by normalized APN, merged or created, and "
        "filed into the parcel's Taxes folder."
    ),
    version=__version__,
    lifespan=lifespan,
)


# ─── Request / Response Schemas ─────────────────────────────────────


class ImportRequest(BaseModel):
    """Request body for the /imports endpoint."""

    folder: str = Field(
        ...,
        min_length=1,
        description="Folder holding the tax card PDFs to import.",
        json_schema_extra={"example": "C:\\Scans\\2024 Tax Cards"},
    )
    create_missing: Optional[bool] = Field(
        default=None,
        description="Create a parcel when no APN matches (defaults to server setting).",
    )


class CompletedRequest(BaseModel):
    completed: bool


class ImportResponse(BaseModel):
    """Outcome of one batch import."""

    total: int
    matched: int
    created: int
    no_match: int
    error: int
    cancelled: bool
    report: BatchReport


class HealthResponse(BaseModel):
    status: str
    version: str
    parcels_loaded: int
    imports_enabled: bool


# ─── Helpers ─────────────────────────────────────────────────────────


def _get_catalog() -> CatalogStore:
    if _catalog is None:
        raise HTTPException(status_code=503, detail="Catalog not initialised")
    return _catalog


def _editable_catalog() -> CatalogStore:
    """The catalog, provided no import run currently owns it.

    Callers must mutate before their first ``await`` so a run cannot start
    in between.
    """
    catalog = _get_catalog()
    if _import_lock.locked():
        raise HTTPException(
            status_code=409, detail="An import is running; retry when it finishes"
        )
    return catalog


def _build_engine(create_missing: bool | None) -> BatchReconciliationEngine:
    catalog = _get_catalog()
    if _extractor is None:
        raise HTTPException(status_code=503, detail="Extraction is not configured")
    settings = _settings or Settings()
    return BatchReconciliationEngine(
        catalog,
        _extractor,
        folders_root=settings.folders_root,
        create_missing=settings.create_missing if create_missing is None else create_missing,
        item_delay=settings.item_delay,
        extraction_retries=settings.extraction_retries,
    )


def _build_response(report: BatchReport) -> ImportResponse:
    return ImportResponse(
        total=len(report.items),
        matched=report.count(ItemStatus.MATCHED),
        created=report.count(ItemStatus.CREATED),
        no_match=report.count(ItemStatus.NO_MATCH),
        error=report.count(ItemStatus.ERROR),
        cancelled=report.cancelled,
        report=report,
    )


# ─── Endpoints ───────────────────────────────────────────────────────


@app.get("/parcels", summary="List parcels", tags=["Parcels"])
def list_parcels() -> list[ParcelRecord]:
    return _get_catalog().list_all()


@app.post(
    "/parcels",
    summary="Create a parcel",
    tags=["Parcels"],
    status_code=201,
    responses={409: {"description": "An import is running"}},
)
async def create_parcel(draft: ParcelDraft) -> ParcelRecord:
    """Create a record with a fresh id and its category folder tree.

    A folder that cannot be created leaves ``folderPath`` empty; the
    record is stored either way.
    """
    catalog = _editable_catalog()
    record = draft.to_record(str(uuid.uuid4()), utc_now())
    settings = _settings or Settings()
    try:
        record.folder_path = str(create_parcel_folder(settings.folders_root, record))
    except OSError as exc:
        logger.warning("Could not create folder for parcel %s: %s", record.id, exc)
    catalog.upsert(record)
    return record


@app.get(
    "/parcels/{record_id}",
    summary="Get one parcel",
    tags=["Parcels"],
    responses={404: {"description": "No parcel with that id"}},
)
def get_parcel(record_id: str) -> ParcelRecord:
    record = _get_catalog().get_by_id(record_id)
    if record is None:
        raise HTTPException(status_code=404, detail="Parcel not found")
    return record


@app.put(
    "/parcels/{record_id}",
    summary="Edit a parcel",
    tags=["Parcels"],
    responses={
        404: {"description": "No parcel with that id"},
        409: {"description": "An import is running"},
    },
)
async def update_parcel(record_id: str, draft: ParcelDraft) -> ParcelRecord:
    """Replace the editable fields; id, createdAt and folderPath are kept."""
    catalog = _editable_catalog()
    existing = catalog.get_by_id(record_id)
    if existing is None:
        raise HTTPException(status_code=404, detail="Parcel not found")
    record = draft.apply_to(existing, utc_now())
    catalog.upsert(record)
    return record


@app.patch(
    "/parcels/{record_id}/completed",
    summary="Mark a parcel completed or not",
    tags=["Parcels"],
    responses={
        404: {"description": "No parcel with that id"},
        409: {"description": "An import is running"},
    },
)
async def set_completed(record_id: str, request: CompletedRequest) -> ParcelRecord:
    record = _editable_catalog().set_completed(record_id, request.completed)
    if record is None:
        raise HTTPException(status_code=404, detail="Parcel not found")
    return record


@app.delete(
    "/parcels/{record_id}",
    summary="Delete a parcel",
    tags=["Parcels"],
    status_code=204,
    responses={
        404: {"description": "No parcel with that id"},
        409: {"description": "An import is running"},
    },
)
async def delete_parcel(record_id: str, delete_folder: bool = False) -> Response:
    catalog = _editable_catalog()
    record = catalog.get_by_id(record_id)
    if record is None or not catalog.delete(record_id):
        raise HTTPException(status_code=404, detail="Parcel not found")
    if delete_folder and record.folder_path:
        try:
            await asyncio.to_thread(delete_parcel_folder, record.folder_path)
        except OSError as exc:
            logger.warning("Could not delete folder %s: %s", record.folder_path, exc)
    return Response(status_code=204)


@app.post(
    "/imports",
    summary="Import a folder of tax card PDFs",
    tags=["Imports"],
    responses={
        400: {"description": "Folder missing or holds no PDFs"},
        503: {"description": "Catalog or extraction not initialised"},
    },
)
async def run_import(request: ImportRequest) -> ImportResponse:
    """Run the full batch: extract, match by APN, update or create, file.

    Runs are serialized; a second request waits for the first to finish.
    """
    engine = _build_engine(request.create_missing)
    try:
        items = scan_folder(request.folder)
    except OSError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    if not items:
        raise HTTPException(status_code=400, detail="No PDF files found in that folder")

    async with _import_lock:
        report = await asyncio.to_thread(engine.run, items)
    return _build_response(report)


@app.get(
    "/health",
    summary="Health check",
    tags=["System"],
    responses={503: {"description": "Catalog not yet initialised"}},
)
def health_check() -> HealthResponse:
    """Returns service status and configuration info."""
    catalog = _get_catalog()
    return HealthResponse(
        status="healthy",
        version=__version__,
        parcels_loaded=len(catalog),
        imports_enabled=_extractor is not None,
    )
