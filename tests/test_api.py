"""
FastAPI endpoint tests for the Parcel Reconciler API.

Uses httpx + FastAPI TestClient — no real server, no LLM calls.
"""

from __future__ import annotations

import asyncio

import api
import pytest
from api import app
from fastapi.testclient import TestClient

from parcel_reconciler.catalog import CatalogStore, LocalMirror
from parcel_reconciler.config import Settings
from parcel_reconciler.exceptions import ExtractionFailure
from parcel_reconciler.folders import create_parcel_folder
from parcel_reconciler.models import ExtractedFields, ParcelRecord

client = TestClient(app)


@pytest.fixture(autouse=True)
def _warm_service(tmp_path, make_extractor):
    """Initialise catalog and extractor for each test (bypasses lifespan)."""
    api._settings = Settings(
        catalog_path=tmp_path / "catalog.json",
        folders_root=tmp_path / "Parcels",
        item_delay=0,
    )
    api._catalog = CatalogStore(LocalMirror(api._settings.catalog_path))
    api._extractor = make_extractor()
    yield
    api._catalog.close()
    api._settings = api._catalog = api._extractor = None


@pytest.fixture
def parcel(tmp_path) -> ParcelRecord:
    record = ParcelRecord(id="p-1", apn="123-45-678", county="Lake")
    record.folder_path = str(create_parcel_folder(tmp_path / "Parcels", record))
    api._catalog.upsert(record)
    return record


@pytest.fixture
def scans(tmp_path):
    folder = tmp_path / "scans"
    folder.mkdir()
    (folder / "match.pdf").write_bytes(b"%PDF match")
    (folder / "new.pdf").write_bytes(b"%PDF new")
    (folder / "broken.pdf").write_bytes(b"%PDF broken")
    return folder


class TestHealthEndpoint:
    def test_health_returns_200(self) -> None:
        resp = client.get("/health")
        assert resp.status_code == 200

    def test_health_response_shape(self, parcel) -> None:
        data = client.get("/health").json()
        assert data["status"] == "healthy"
        assert data["version"] == "1.0.0"
        assert data["parcels_loaded"] == 1
        assert data["imports_enabled"] is True

    def test_uninitialised_returns_503(self) -> None:
        catalog, api._catalog = api._catalog, None
        try:
            assert client.get("/health").status_code == 503
        finally:
            api._catalog = catalog


class TestParcelEndpoints:
    def test_list_uses_camel_case(self, parcel) -> None:
        data = client.get("/parcels").json()
        assert len(data) == 1
        assert data[0]["id"] == "p-1"
        assert data[0]["folderPath"] == parcel.folder_path
        assert "assessedOwner" in data[0]

    def test_get_one(self, parcel) -> None:
        data = client.get("/parcels/p-1").json()
        assert data["apn"] == "123-45-678"

    def test_get_unknown_returns_404(self) -> None:
        assert client.get("/parcels/nope").status_code == 404

    def test_set_completed(self, parcel) -> None:
        resp = client.patch("/parcels/p-1/completed", json={"completed": True})
        assert resp.status_code == 200
        assert resp.json()["completed"] is True
        assert api._catalog.get_by_id("p-1").completed is True

    def test_set_completed_unknown_returns_404(self) -> None:
        resp = client.patch("/parcels/nope/completed", json={"completed": True})
        assert resp.status_code == 404

    def test_delete_keeps_folder_by_default(self, parcel) -> None:
        resp = client.delete("/parcels/p-1")
        assert resp.status_code == 204
        assert api._catalog.get_by_id("p-1") is None
        assert (api._settings.folders_root / "123-45-678").exists()

    def test_delete_with_folder(self, parcel) -> None:
        resp = client.delete("/parcels/p-1", params={"delete_folder": "true"})
        assert resp.status_code == 204
        assert not (api._settings.folders_root / "123-45-678").exists()

    def test_delete_unknown_returns_404(self) -> None:
        assert client.delete("/parcels/nope").status_code == 404

    def test_create_assigns_id_and_folder(self) -> None:
        resp = client.post(
            "/parcels",
            json={"apn": "555-01", "county": "Kane", "assessedOwner": "R. Roe", "notes": "new"},
        )
        assert resp.status_code == 201
        data = resp.json()
        assert data["id"]
        assert data["assessedOwner"] == "R. Roe"
        assert data["createdAt"] == data["updatedAt"]
        assert data["folderPath"] == str(api._settings.folders_root / "555-01")
        assert (api._settings.folders_root / "555-01" / "Taxes").is_dir()
        assert api._catalog.get_by_id(data["id"]).notes == "new"

    def test_create_without_folder_still_stores_record(self, tmp_path) -> None:
        blocker = tmp_path / "blocker"
        blocker.write_text("a file, not a folder", encoding="utf-8")
        api._settings = Settings(folders_root=blocker, catalog_path=tmp_path / "c.json")

        resp = client.post("/parcels", json={"apn": "9"})

        assert resp.status_code == 201
        assert resp.json()["folderPath"] == ""
        assert len(api._catalog) == 1

    def test_update_keeps_identity(self, parcel) -> None:
        resp = client.put(
            "/parcels/p-1",
            json={"apn": "123-45-678", "county": "McHenry", "notes": "gate code 42", "id": "evil"},
        )
        assert resp.status_code == 200
        stored = api._catalog.get_by_id("p-1")
        assert stored.county == "McHenry"
        assert stored.notes == "gate code 42"
        assert stored.created_at == parcel.created_at
        assert stored.folder_path == parcel.folder_path
        assert stored.updated_at >= parcel.updated_at
        assert api._catalog.get_by_id("evil") is None

    def test_update_unknown_returns_404(self) -> None:
        assert client.put("/parcels/nope", json={"apn": "1"}).status_code == 404


class TestEditsDuringImport:
    @pytest.fixture
    def import_running(self, monkeypatch):
        lock = asyncio.Lock()
        asyncio.run(lock.acquire())
        monkeypatch.setattr(api, "_import_lock", lock)

    def test_set_completed_is_refused(self, parcel, import_running) -> None:
        resp = client.patch("/parcels/p-1/completed", json={"completed": True})
        assert resp.status_code == 409
        assert api._catalog.get_by_id("p-1").completed is False

    def test_delete_is_refused(self, parcel, import_running) -> None:
        assert client.delete("/parcels/p-1").status_code == 409
        assert api._catalog.get_by_id("p-1") is not None

    def test_create_and_update_are_refused(self, parcel, import_running) -> None:
        assert client.post("/parcels", json={"apn": "1"}).status_code == 409
        assert client.put("/parcels/p-1", json={"apn": "1"}).status_code == 409
        assert len(api._catalog) == 1

    def test_reads_still_work(self, parcel, import_running) -> None:
        assert client.get("/parcels/p-1").status_code == 200


class TestImportEndpoint:
    def test_mixed_folder(self, parcel, scans) -> None:
        api._extractor.answers.update({
            "match.pdf": ExtractedFields(apn="12345678", assessed_owner="Jane Doe"),
            "new.pdf": ExtractedFields(apn_raw="77-1", county="Cook"),
            "broken.pdf": ExtractionFailure("Extraction response is not valid JSON"),
        })

        resp = client.post("/imports", json={"folder": str(scans)})

        assert resp.status_code == 200
        data = resp.json()
        assert data["total"] == 3
        assert data["matched"] == 1
        assert data["created"] == 1
        assert data["error"] == 1
        assert data["cancelled"] is False
        statuses = {i["file_name"]: i["status"] for i in data["report"]["items"]}
        assert statuses == {"broken.pdf": "error", "match.pdf": "matched", "new.pdf": "created"}
        assert api._catalog.get_by_id("p-1").assessed_owner == "Jane Doe"

    def test_create_missing_false(self, scans) -> None:
        api._extractor.answers.update({
            "match.pdf": ExtractedFields(apn="1"),
            "new.pdf": ExtractedFields(apn="2"),
            "broken.pdf": ExtractedFields(apn="3"),
        })

        data = client.post(
            "/imports", json={"folder": str(scans), "create_missing": False}
        ).json()

        assert data["no_match"] == 3
        assert data["created"] == 0
        assert len(api._catalog) == 0

    def test_missing_folder_returns_400(self, tmp_path) -> None:
        resp = client.post("/imports", json={"folder": str(tmp_path / "nope")})
        assert resp.status_code == 400

    def test_folder_without_pdfs_returns_400(self, tmp_path) -> None:
        empty = tmp_path / "empty"
        empty.mkdir()
        resp = client.post("/imports", json={"folder": str(empty)})
        assert resp.status_code == 400
        assert "No PDF" in resp.json()["detail"]

    def test_empty_body_returns_422(self) -> None:
        assert client.post("/imports", json={}).status_code == 422

    def test_no_extractor_returns_503(self, scans) -> None:
        api._extractor = None
        resp = client.post("/imports", json={"folder": str(scans)})
        assert resp.status_code == 503
