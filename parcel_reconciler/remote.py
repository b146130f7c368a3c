"""HTTP client for the remote per-user parcel collection."""

from __future__ import annotations

import logging

import httpx

from .exceptions import PersistenceFailure
from .models import ParcelRecord

logger = logging.getLogger(__name__)


class RemoteParcelStore:
    """Per-user collection of parcel documents keyed by record id.

    Layout:
        GET    {base_url}/users/{user_id}/parcels          list of documents
        PUT    {base_url}/users/{user_id}/parcels/{id}     one document
        DELETE {base_url}/users/{user_id}/parcels/{id}

    Only the single changed record is ever sent, never the full list.
    """

    def __init__(
        self,
        base_url: str,
        user_id: str,
        token: str | None = None,
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self.user_id = user_id
        self._client = httpx.Client(
            base_url=base_url.rstrip("/"),
            headers=headers,
            timeout=httpx.Timeout(timeout),
            transport=transport,
        )

    def _collection(self) -> str:
        return f"/users/{self.user_id}/parcels"

    def list_records(self) -> list[ParcelRecord]:
        path = self._collection()
        response = self._send("GET", path)
        try:
            documents = response.json()
            if not isinstance(documents, list):
                raise ValueError(f"expected a list, got {type(documents).__name__}")
            return [ParcelRecord.model_validate(doc) for doc in documents]
        except ValueError as exc:
            # pydantic.ValidationError is a ValueError too
            raise PersistenceFailure(
                f"Remote store sent an unreadable parcel list ({path}): {exc}",
                details={"method": "GET", "path": path},
            ) from exc

    def put(self, record: ParcelRecord) -> None:
        self._send("PUT", f"{self._collection()}/{record.id}", json=record.to_document())
        logger.debug("Remote put %s", record.id)

    def delete(self, record_id: str) -> None:
        self._send("DELETE", f"{self._collection()}/{record_id}", missing_ok=True)
        logger.debug("Remote delete %s", record_id)

    def close(self) -> None:
        self._client.close()

    def _send(
        self, method: str, path: str, json: dict | None = None, missing_ok: bool = False
    ) -> httpx.Response:
        try:
            response = self._client.request(method, path, json=json)
        except httpx.HTTPError as exc:
            raise PersistenceFailure(
                f"Remote store unreachable ({method} {path}): {exc}",
                details={"method": method, "path": path},
            ) from exc

        if missing_ok and response.status_code == 404:
            return response
        if response.is_error:
            raise PersistenceFailure(
                f"Remote store rejected {method} {path}: HTTP {response.status_code}",
                details={
                    "method": method,
                    "path": path,
                    "status_code": response.status_code,
                },
            )
        return response
