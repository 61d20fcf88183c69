"""REST implementation of the record store."""

from __future__ import annotations

import logging
from typing import Any

import httpx

from ..errors import StoreError
from ..records.clock import parse_instant
from ..records.ids import Persistent
from ..records.kinds import RecordKind
from ..records.models import Record, RecordFilter, Resident

logger = logging.getLogger(__name__)

# Keys that describe the row rather than the observation.
META_KEYS = frozenset({
    "id",
    "residentId",
    "tenantId",
    "createdAt",
    "updatedAt",
    "createdBy",
    "staffId",
    "residentName",
    "roomNumber",
    "floor",
})


def record_from_json(data: dict[str, Any]) -> Record:
    """Build a Record from a camelCase JSON row."""
    if "id" not in data:
        raise StoreError("Record without id in store response")
    values = {k: v for k, v in data.items() if k not in META_KEYS}
    return Record(
        id=Persistent(str(data["id"])),
        resident_id=data.get("residentId"),
        values=values,
        created_at=parse_instant(data.get("createdAt")),
        updated_at=parse_instant(data.get("updatedAt")),
    )


def resident_from_json(data: dict[str, Any]) -> Resident:
    floor = data.get("floor")
    return Resident(
        id=str(data["id"]),
        name=data.get("name") or "",
        room_number=data.get("roomNumber"),
        floor=str(floor) if floor is not None else None,
        is_admitted=bool(data.get("isAdmitted", False)),
    )


class HttpRecordStore:
    """Record store backed by the care-records REST API.

    Authentication is the server's session cookie; obtaining it (staff
    login) happens elsewhere.
    """

    def __init__(
        self,
        base_url: str,
        session_cookie: str | None = None,
        timeout: float = 10.0,
        client: httpx.AsyncClient | None = None,
    ) -> None:
        self.base_url = base_url.rstrip("/")
        cookies = {"connect.sid": session_cookie} if session_cookie else None
        self._client = client or httpx.AsyncClient(
            base_url=self.base_url,
            cookies=cookies,
            timeout=timeout,
            headers={"Accept": "application/json"},
        )

    async def _request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, str] | None = None,
        json: dict[str, Any] | None = None,
    ) -> Any:
        try:
            response = await self._client.request(method, path, params=params, json=json)
        except httpx.TimeoutException:
            raise StoreError(f"{method} {path} timed out") from None
        except httpx.HTTPError as e:
            raise StoreError(f"{method} {path} failed: {e}") from e

        if response.is_error:
            raise StoreError(_error_message(response), status=response.status_code)

        if not response.content:
            return None

        text = response.text.lstrip()
        if text.startswith("<!DOCTYPE") or text.startswith("<html"):
            raise StoreError(
                "サーバーがHTMLページを返しました。ルーティングまたは認証の問題の可能性があります",
                status=response.status_code,
            )
        try:
            return response.json()
        except ValueError:
            raise StoreError("サーバーからの応答の解析に失敗しました") from None

    async def list(self, kind: RecordKind, flt: RecordFilter) -> list[Record]:
        rows = await self._request("GET", kind.endpoint, params=kind.list_params(flt))
        if not isinstance(rows, list):
            raise StoreError(f"Expected a list from {kind.endpoint}")
        return [record_from_json(row) for row in rows]

    async def create(self, kind: RecordKind, values: dict[str, Any]) -> Record:
        row = await self._request("POST", kind.endpoint, json=values)
        if not isinstance(row, dict):
            raise StoreError(f"Expected the created record from {kind.endpoint}")
        return record_from_json(row)

    async def update(self, kind: RecordKind, record_id: str, values: dict[str, Any]) -> Record:
        path = f"{kind.endpoint}/{record_id}"
        row = await self._request(kind.update_method, path, json=values)
        if not isinstance(row, dict):
            raise StoreError(f"Expected the updated record from {path}")
        return record_from_json(row)

    async def delete(self, kind: RecordKind, record_id: str) -> None:
        await self._request("DELETE", f"{kind.endpoint}/{record_id}")

    async def list_residents(self) -> list[Resident]:
        rows = await self._request("GET", "/api/residents")
        if not isinstance(rows, list):
            raise StoreError("Expected a list from /api/residents")
        return [resident_from_json(row) for row in rows]

    async def close(self) -> None:
        await self._client.aclose()


def _error_message(response: httpx.Response) -> str:
    try:
        data = response.json()
    except ValueError:
        text = response.text.strip() or response.reason_phrase
        return f"{response.status_code}: {text}"
    if isinstance(data, dict) and data.get("message"):
        return str(data["message"])
    return f"{response.status_code}: {response.reason_phrase}"
