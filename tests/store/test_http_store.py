"""Tests for the REST record store."""

import json
from datetime import date, datetime, timezone

import httpx
import pytest

from kaigo.records import Persistent, RecordFilter
from kaigo.records.kinds import MEALS_MEDICATION, MEDICATION, WEIGHT
from kaigo.store import HttpRecordStore, StoreError
from kaigo.store.http import record_from_json, resident_from_json

BASE_URL = "http://kaigo.test"


def make_store(handler) -> HttpRecordStore:
    client = httpx.AsyncClient(transport=httpx.MockTransport(handler), base_url=BASE_URL)
    return HttpRecordStore(BASE_URL, client=client)


class TestRecordFromJson:
    def test_meta_keys_split_off(self):
        record = record_from_json({
            "id": 7,
            "residentId": "A",
            "residentName": "青木 花子",
            "recordDate": "2024-05-01",
            "result": "○",
            "createdAt": "2024-05-01T00:00:00Z",
        })

        assert record.id == Persistent("7")
        assert record.resident_id == "A"
        assert record.values == {"recordDate": "2024-05-01", "result": "○"}
        assert record.created_at == datetime(2024, 5, 1, tzinfo=timezone.utc)
        assert record.updated_at is None

    def test_missing_id(self):
        with pytest.raises(StoreError):
            record_from_json({"residentId": "A"})

    def test_resident(self):
        resident = resident_from_json({"id": "A", "name": "青木", "roomNumber": "101", "floor": 1})
        assert resident.floor == "1"
        assert resident.room_number == "101"
        assert resident.is_admitted is False


class TestPackage:
    def test_exports(self):
        """The package imports cleanly and exposes the store types."""
        import kaigo.store

        assert kaigo.store.HttpRecordStore is HttpRecordStore
        assert kaigo.store.StoreError is StoreError
        assert hasattr(kaigo.store.RecordStore, "list")
        assert sorted(kaigo.store.__all__) == ["HttpRecordStore", "RecordStore", "StoreError"]


class TestHttpRecordStore:
    @pytest.mark.asyncio
    async def test_list_sends_filter(self):
        seen = {}

        def handler(request: httpx.Request) -> httpx.Response:
            seen["path"] = request.url.path
            seen["params"] = dict(request.url.params)
            return httpx.Response(200, json=[{"id": "1", "residentId": "A", "recordDate": "2024-05-01"}])

        store = make_store(handler)
        records = await store.list(MEDICATION, RecordFilter(date(2024, 5, 1), "朝後", "2階"))
        await store.close()

        assert seen["path"] == "/api/medication-records"
        assert seen["params"] == {"recordDate": "2024-05-01", "timing": "朝後", "floor": "2階"}
        assert [r.id for r in records] == [Persistent("1")]

    @pytest.mark.asyncio
    async def test_create_posts_payload(self):
        def handler(request: httpx.Request) -> httpx.Response:
            assert request.method == "POST"
            body = json.loads(request.content)
            return httpx.Response(201, json={"id": "9", **body})

        store = make_store(handler)
        record = await store.create(WEIGHT, {"residentId": "A", "recordDate": "2024-05-01", "weight": "50.5"})

        assert record.id == Persistent("9")
        assert record.resident_id == "A"
        assert record.get("weight") == "50.5"

    @pytest.mark.asyncio
    async def test_update_uses_kind_method(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, request.url.path))
            return httpx.Response(200, json={"id": "3", "residentId": "A", "notes": "x"})

        store = make_store(handler)
        await store.update(MEDICATION, "3", {"notes": "x"})
        await store.update(WEIGHT, "3", {"notes": "x"})

        assert seen == [("PUT", "/api/medication-records/3"), ("PATCH", "/api/weight-records/3")]

    @pytest.mark.asyncio
    async def test_delete_empty_response(self):
        store = make_store(lambda request: httpx.Response(204))

        assert await store.delete(MEDICATION, "3") is None

    @pytest.mark.asyncio
    async def test_server_message_used(self):
        store = make_store(lambda request: httpx.Response(400, json={"message": "入力が不正です"}))

        with pytest.raises(StoreError) as exc:
            await store.update(MEDICATION, "3", {"result": "○"})

        assert str(exc.value) == "入力が不正です"
        assert exc.value.status == 400

    @pytest.mark.asyncio
    async def test_plain_error_body(self):
        store = make_store(lambda request: httpx.Response(500, text="boom"))

        with pytest.raises(StoreError, match="500: boom"):
            await store.delete(MEDICATION, "3")

    @pytest.mark.asyncio
    async def test_html_response_rejected(self):
        store = make_store(lambda request: httpx.Response(200, text="<!DOCTYPE html><html></html>"))

        with pytest.raises(StoreError, match="HTML"):
            await store.list(MEDICATION, RecordFilter(date(2024, 5, 1)))

    @pytest.mark.asyncio
    async def test_invalid_json(self):
        store = make_store(lambda request: httpx.Response(200, text="{not json"))

        with pytest.raises(StoreError):
            await store.list_residents()

    @pytest.mark.asyncio
    async def test_transport_error(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ConnectError("refused", request=request)

        store = make_store(handler)

        with pytest.raises(StoreError, match="failed"):
            await store.list(MEDICATION, RecordFilter(date(2024, 5, 1)))

    @pytest.mark.asyncio
    async def test_timeout(self):
        def handler(request: httpx.Request) -> httpx.Response:
            raise httpx.ReadTimeout("slow", request=request)

        store = make_store(handler)

        with pytest.raises(StoreError, match="timed out"):
            await store.list_residents()

    @pytest.mark.asyncio
    async def test_list_residents(self):
        store = make_store(lambda request: httpx.Response(200, json=[{"id": "A", "name": "青木", "floor": "1F"}]))

        residents = await store.list_residents()

        assert [r.id for r in residents] == ["A"]
        assert residents[0].floor == "1F"

    @pytest.mark.asyncio
    async def test_meals_medication_endpoint(self):
        seen = []

        def handler(request: httpx.Request) -> httpx.Response:
            seen.append((request.method, request.url.path, dict(request.url.params)))
            if request.method == "GET":
                return httpx.Response(200, json=[])
            return httpx.Response(200, json={"id": "5", "residentId": "A", "mainAmount": "8"})

        store = make_store(handler)
        await store.list(MEALS_MEDICATION, RecordFilter(date(2024, 5, 1), "朝"))
        await store.update(MEALS_MEDICATION, "5", {"mainAmount": "8"})

        assert seen == [
            ("GET", "/api/meals-medication", {"recordDate": "2024-05-01", "mealTime": "朝", "floor": "all"}),
            ("PUT", "/api/meals-medication/5", {}),
        ]
