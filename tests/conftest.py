"""Shared fixtures: an in-memory record store with controllable timing."""

from __future__ import annotations

import asyncio
from datetime import date, datetime, timezone
from pathlib import Path
from typing import Any

import pytest

from kaigo.errors import StoreError
from kaigo.logging import JSONLLogger
from kaigo.notify import CollectingNotifier
from kaigo.records import Persistent, Record, RecordFilter, RecordKind, Resident

CREATED_AT = datetime(2024, 5, 1, 0, 0, tzinfo=timezone.utc)


class FakeStore:
    """In-memory RecordStore.

    Calls are recorded as soon as they start. An operation listed in
    ``fail``, or an update or delete of an id in ``fail_records``, raises
    StoreError. An operation with an unset event in ``gates`` (or a filter
    in ``list_gates``) blocks until it is set.
    """

    def __init__(self) -> None:
        self.rows: dict[str, Record] = {}
        self.residents: list[Resident] = []
        self.calls: list[tuple[Any, ...]] = []
        self.fail: set[str] = set()
        self.fail_records: set[str] = set()
        self.gates: dict[str, asyncio.Event] = {}
        self.list_gates: dict[RecordFilter, asyncio.Event] = {}
        self._seq = 0

    def hold(self, operation: str) -> asyncio.Event:
        self.gates[operation] = asyncio.Event()
        return self.gates[operation]

    def count(self, operation: str) -> int:
        return sum(1 for call in self.calls if call[0] == operation)

    def add_row(self, record_id: str, resident_id: str, **values: Any) -> Record:
        record = Record(
            id=Persistent(record_id),
            resident_id=resident_id,
            values=values,
            created_at=CREATED_AT,
            updated_at=CREATED_AT,
        )
        self.rows[record_id] = record
        return record

    async def _enter(self, operation: str, record_id: str | None = None) -> None:
        gate = self.gates.get(operation)
        if gate is not None:
            await gate.wait()
        if operation in self.fail or record_id in self.fail_records:
            raise StoreError(f"{operation} failed", status=500)

    async def list(self, kind: RecordKind, flt: RecordFilter) -> list[Record]:
        self.calls.append(("list", flt))
        gate = self.list_gates.get(flt)
        if gate is not None:
            await gate.wait()
        await self._enter("list")
        base = kind.base_values(flt)
        return [
            r.clone()
            for r in self.rows.values()
            if r.values.get("recordDate") == base["recordDate"]
            and r.values.get(kind.timing_field) == base.get(kind.timing_field)
        ]

    async def create(self, kind: RecordKind, values: dict[str, Any]) -> Record:
        self.calls.append(("create", dict(values)))
        await self._enter("create")
        self._seq += 1
        data = dict(values)
        record = self.add_row(f"rec-{self._seq}", data.pop("residentId"), **data)
        return record.clone()

    async def update(self, kind: RecordKind, record_id: str, values: dict[str, Any]) -> Record:
        self.calls.append(("update", record_id, dict(values)))
        await self._enter("update", record_id)
        if record_id not in self.rows:
            raise StoreError("not found", status=404)
        self.rows[record_id] = self.rows[record_id].with_values(values)
        return self.rows[record_id].clone()

    async def delete(self, kind: RecordKind, record_id: str) -> None:
        self.calls.append(("delete", record_id))
        await self._enter("delete", record_id)
        self.rows.pop(record_id, None)

    async def list_residents(self) -> list[Resident]:
        self.calls.append(("list_residents",))
        await self._enter("list_residents")
        return list(self.residents)


RESIDENT_A = Resident(id="A", name="青木 花子", room_number="101", floor="1")
RESIDENT_B = Resident(id="B", name="伊藤 太郎", room_number="201", floor="2階")

DAY = date(2024, 5, 1)


@pytest.fixture
def store() -> FakeStore:
    store = FakeStore()
    store.residents = [RESIDENT_A, RESIDENT_B]
    return store


@pytest.fixture
def notifier() -> CollectingNotifier:
    return CollectingNotifier()


@pytest.fixture
def event_logger(tmp_path: Path) -> JSONLLogger:
    """A JSONL logger writing into a temporary directory."""
    return JSONLLogger(log_dir=tmp_path / "logs")


@pytest.fixture
def morning() -> RecordFilter:
    return RecordFilter(record_date=DAY, timing="朝後", floor="all")
