"""Remote record store interface."""

from __future__ import annotations

from typing import Any, Protocol

from ..records.kinds import RecordKind
from ..records.models import Record, RecordFilter, Resident


class RecordStore(Protocol):
    """Server-side persistence the cache reconciles against.

    Every method may raise ``StoreError``; callers do not distinguish
    between "not found" and transient failures.
    """

    async def list(self, kind: RecordKind, flt: RecordFilter) -> list[Record]:
        """Return the persisted records matching ``flt``."""
        ...

    async def create(self, kind: RecordKind, values: dict[str, Any]) -> Record:
        """Persist a new record; the store assigns id and timestamps."""
        ...

    async def update(self, kind: RecordKind, record_id: str, values: dict[str, Any]) -> Record:
        """Apply a partial update."""
        ...

    async def delete(self, kind: RecordKind, record_id: str) -> None:
        ...

    async def list_residents(self) -> list[Resident]:
        ...
