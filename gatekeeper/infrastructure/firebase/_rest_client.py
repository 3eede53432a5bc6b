"""Firestore REST v1 transport for the document store gateway.

google-auth mints service-account access tokens; httpx.AsyncClient carries
the calls. Only the endpoints the gateway needs are wrapped: document get,
runQuery, beginTransaction, commit and rollback. Contention on a
transactional read or commit comes back as 409 ABORTED and is raised as
TransactionAbortedError so the gateway can retry the whole transaction.
"""

from __future__ import annotations

import asyncio
from dataclasses import dataclass, field
from typing import Any

import httpx

from gatekeeper.infrastructure.firebase._rest_encoding import (
    decode_document,
    structured_query,
)

FIRESTORE_SCOPE = "https://www.googleapis.com/auth/datastore"
FIRESTORE_API = "https://firestore.googleapis.com/v1"


def _get_credentials(key_dict: dict, scopes: list[str] | None = None):
    """Service-account credentials; Firestore scope unless told otherwise."""
    from google.oauth2 import service_account

    return service_account.Credentials.from_service_account_info(
        key_dict, scopes=scopes or [FIRESTORE_SCOPE]
    )


def _refresh_token(credentials) -> str:
    from google.auth.transport.requests import Request

    if not credentials.valid:
        credentials.refresh(Request())
    return credentials.token


class TransactionAbortedError(Exception):
    """The backend aborted a transaction because of contention."""


@dataclass
class DocumentSnapshot:
    id: str
    data: dict[str, Any] = field(default_factory=dict)

    def to_dict(self) -> dict[str, Any]:
        return self.data


def _is_aborted(resp: httpx.Response) -> bool:
    if resp.status_code != 409:
        return False
    try:
        payload = resp.json()
    except ValueError:
        return False
    if isinstance(payload, list):
        payload = payload[0] if payload else {}
    error = payload.get("error") if isinstance(payload, dict) else None
    return isinstance(error, dict) and error.get("status") == "ABORTED"


class FirestoreRESTClient:
    """One project's (default) database, addressed over REST."""

    def __init__(
        self,
        project_id: str,
        credentials,
        *,
        http_client: httpx.AsyncClient | None = None,
        timeout: float = 10.0,
    ) -> None:
        self.project_id = project_id
        self._credentials = credentials
        self._root = f"projects/{project_id}/databases/(default)/documents"
        self._owns_http = http_client is None
        self._http = http_client or httpx.AsyncClient(timeout=timeout)

    async def aclose(self) -> None:
        if self._owns_http:
            await self._http.aclose()

    def document_name(self, collection: str, key: str) -> str:
        return f"{self._root}/{collection}/{key}"

    async def _call(
        self,
        path: str,
        *,
        body: dict[str, Any] | None = None,
        params: dict[str, str] | None = None,
        allow_missing: bool = False,
    ) -> Any:
        """GET when body is None, POST otherwise. Returns decoded JSON, or None on an allowed 404."""
        token = await asyncio.to_thread(_refresh_token, self._credentials)
        headers = {"Authorization": f"Bearer {token}"}
        url = f"{FIRESTORE_API}/{path}"
        if body is None:
            resp = await self._http.get(url, headers=headers, params=params)
        else:
            resp = await self._http.post(url, headers=headers, json=body, params=params)
        if allow_missing and resp.status_code == 404:
            return None
        if _is_aborted(resp):
            raise TransactionAbortedError(f"{path.rsplit(':', 1)[-1]} aborted by contention")
        resp.raise_for_status()
        return resp.json() if resp.content else {}

    async def get_document(
        self, collection: str, key: str, *, transaction: str | None = None
    ) -> dict[str, Any] | None:
        raw = await self._call(
            self.document_name(collection, key),
            params={"transaction": transaction} if transaction else None,
            allow_missing=True,
        )
        return None if raw is None else decode_document(raw)

    async def run_query(
        self,
        collection: str,
        filters: list[tuple[str, str, Any]],
        *,
        limit: int | None = None,
        order_by: str | None = None,
        transaction: str | None = None,
    ) -> list[DocumentSnapshot]:
        """AND-ed field filters over one collection, optionally ordered and limited."""
        body: dict[str, Any] = {
            "structuredQuery": structured_query(collection, filters, limit, order_by)
        }
        if transaction:
            body["transaction"] = transaction
        rows = await self._call(f"{self._root}:runQuery", body=body)
        if isinstance(rows, dict):
            rows = [rows]
        return [
            DocumentSnapshot(row["document"]["name"].rsplit("/", 1)[-1], decode_document(row["document"]))
            for row in rows or []
            if "document" in row
        ]

    async def begin_transaction(self) -> str:
        out = await self._call(
            f"{self._root}:beginTransaction", body={"options": {"readWrite": {}}}
        )
        return out["transaction"]

    async def commit(self, writes: list[dict], transaction: str | None = None) -> None:
        body: dict[str, Any] = {"writes": writes}
        if transaction:
            body["transaction"] = transaction
        await self._call(f"{self._root}:commit", body=body)

    async def rollback(self, transaction: str) -> None:
        await self._call(f"{self._root}:rollback", body={"transaction": transaction})
