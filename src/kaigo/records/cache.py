"""Optimistic record cache.

The cache holds what the user currently sees for a record list. Every
change is applied locally first and confirmed against the remote store in a
background task:

    snapshot -> optimistic apply -> confirm | rollback + notify

Records that do not exist on the server yet are provisional placeholders
keyed by a correlation key (resident + period [+ timing]). The first write
that persists a placeholder sends its whole accumulated state; the entry is
then promoted in place, keeping local values and taking only the server id
and timestamps.
"""

from __future__ import annotations

import asyncio
import time
from collections import Counter
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import TYPE_CHECKING, Any, Coroutine

from ..errors import RecordValidationError, UnknownRecordError
from ..logging import JSONLLogger, get_logger
from ..notify import Notifier, Severity
from .clock import facility_today, now_instant, to_wall_clock
from .floors import match_floor
from .ids import Persistent, Provisional, RecordId, parse_record_id
from .kinds import RESIDENT_FIELD, RecordKind
from .models import Record, RecordFilter, Resident

if TYPE_CHECKING:
    from ..config import CacheConfig
    from ..store import RecordStore

# Rooms without a number sort after every numbered room.
_NO_ROOM = 1 << 30


@dataclass
class _Snapshot:
    """Deep copy of one region taken before an optimistic change."""

    flt: RecordFilter
    records: list[Record]
    epoch: int


@dataclass
class _PendingCreate:
    """An outstanding create for one correlation key.

    Attributes:
        sent: Payload sent to the store.
        dirty: Fields written after the payload was sent, with their latest value.
        before: Value each dirty field had when it first became dirty.
        deleted: The placeholder was deleted while the create was in flight.
    """

    sent: dict[str, Any]
    dirty: dict[str, Any] = field(default_factory=dict)
    before: dict[str, Any] = field(default_factory=dict)
    deleted: bool = False
    task: asyncio.Task | None = None


class RecordCache:
    """Client-side cache of one record kind with optimistic updates."""

    def __init__(
        self,
        kind: RecordKind,
        store: RecordStore,
        notifier: Notifier,
        logger: JSONLLogger | None = None,
        config: CacheConfig | None = None,
    ) -> None:
        if config is None:
            from ..config import CacheConfig

            config = CacheConfig()

        self.kind = kind
        self.store = store
        self.notifier = notifier
        self.logger = logger or get_logger()
        self.config = config
        self._residents: dict[str, Resident] = {}
        self._regions: dict[RecordFilter, list[Record]] = {}
        self._epochs: dict[RecordFilter, int] = {}
        self._active: RecordFilter | None = None
        self._requested: RecordFilter | None = None
        self._generation = 0
        self._creating: dict[str, _PendingCreate] = {}
        self._promoted: dict[str, Record] = {}
        self._inflight: dict[str, Counter[str]] = {}
        self._deleting: set[str] = set()
        self._tasks: set[asyncio.Task] = set()
        self._blank_seq = 0

    # -- state -------------------------------------------------------------

    @property
    def active_filter(self) -> RecordFilter | None:
        return self._active

    @property
    def residents(self) -> list[Resident]:
        return list(self._residents.values())

    @property
    def pending(self) -> int:
        """Number of unconfirmed remote operations."""
        return len(self._tasks)

    def set_residents(self, residents: list[Resident]) -> None:
        """Set the residents placeholders are derived for."""
        self._residents = {r.id: r for r in residents}

    def snapshot(self) -> list[Record]:
        """Deep copy of the visible records, in display order."""
        if self._active is None:
            return []
        return [r.clone() for r in self._regions.get(self._active, [])]

    def get(self, record_id: RecordId | str) -> Record:
        record_id = _as_id(record_id)
        region, index = self._locate(record_id)
        return region[index].clone()

    async def drain(self) -> None:
        """Wait until every outstanding confirmation has finished."""
        while self._tasks:
            await asyncio.gather(*list(self._tasks))

    # -- applyFilter -------------------------------------------------------

    async def apply_filter(self, flt: RecordFilter) -> list[Record]:
        """Fetch the records for ``flt`` and make it the visible list.

        Residents in scope without a persisted record get a provisional
        placeholder, reusing a cached one so in-progress edits survive.
        A response for a filter that has since been superseded is dropped.
        """
        self._generation += 1
        generation = self._generation
        self._requested = flt

        try:
            fetched = await self.store.list(self.kind, flt)
        except Exception as e:
            if generation == self._generation:
                self.logger.log_remote(self.kind.name, "list", _describe(flt), False, error=str(e))
                self.notifier.notify(f"記録の取得に失敗しました: {e}", Severity.ERROR)
            return self.snapshot()

        if generation != self._generation:
            return self.snapshot()

        self._regions[flt] = self._reconcile(flt, fetched)
        self._epochs[flt] = self._epochs.get(flt, 0) + 1
        self._active = flt
        self.logger.log_filter(self.kind.name, _filter_fields(flt), count=len(self._regions[flt]))
        return self.snapshot()

    async def refresh(self) -> list[Record]:
        """Re-fetch the active filter."""
        if self._active is None:
            return []
        return await self.apply_filter(self._active)

    def _reconcile(self, flt: RecordFilter, fetched: list[Record]) -> list[Record]:
        old = self._regions.get(flt, [])
        old_by_id = {str(r.id): r for r in old}
        in_scope = [r for r in self._residents.values() if self._in_scope(r, flt)]
        scope_ids = {r.id for r in in_scope}

        by_resident: dict[str, Record] = {}
        for record in fetched:
            if record.resident_id is None:
                continue
            if self._residents and record.resident_id not in scope_ids:
                continue
            if record.resident_id in by_resident:
                continue
            if str(record.id) in self._deleting:
                continue
            by_resident[record.resident_id] = self._overlay_local(record, flt, old_by_id)

        blanks: list[Record] = []
        for record in old:
            if not record.provisional:
                continue
            if record.resident_id is None:
                blanks.append(record)
            elif record.id != Provisional(self.kind.correlation_key(record.resident_id, flt)):
                # A placeholder re-pointed to another resident.
                by_resident.setdefault(record.resident_id, record)

        if self.config.placeholders_for_future or flt.record_date <= self._today():
            for resident in in_scope:
                if resident.id in by_resident:
                    continue
                key = self.kind.correlation_key(resident.id, flt)
                prior = old_by_id.get(str(Provisional(key)))
                if prior is not None and prior.resident_id == resident.id:
                    by_resident[resident.id] = prior
                else:
                    by_resident[resident.id] = self.kind.placeholder(resident.id, flt)

        return sorted(by_resident.values(), key=self._display_order) + blanks

    def _overlay_local(
        self, record: Record, flt: RecordFilter, old_by_id: dict[str, Record]
    ) -> Record:
        """Keep unconfirmed local values on top of fetched server state."""
        assert isinstance(record.id, Persistent)
        counts = self._inflight.get(record.id.value)
        local = old_by_id.get(record.id.value)
        if counts and local is not None:
            record = record.with_values({name: local.get(name) for name in counts})

        assert record.resident_id is not None
        key = self.kind.correlation_key(record.resident_id, flt)
        if key in self._creating:
            placeholder = old_by_id.get(str(Provisional(key)))
            if placeholder is not None:
                record = record.with_values(placeholder.values)
        return record

    def _in_scope(self, resident: Resident, flt: RecordFilter) -> bool:
        if flt.resident_id is not None and resident.id != flt.resident_id:
            return False
        return match_floor(resident.floor, flt.floor)

    def _display_order(self, record: Record) -> tuple[int, str]:
        resident = self._residents.get(record.resident_id or "")
        if resident is None:
            return (_NO_ROOM, record.resident_id or "")
        return (resident.room_sort_key or _NO_ROOM, resident.name)

    def _today(self) -> date:
        return facility_today(self.config.utc_offset_hours)

    # -- mutateField -------------------------------------------------------

    def mutate_field(self, record_id: RecordId | str, name: str, value: Any) -> asyncio.Task | None:
        """Change one field.

        The cache reflects the new value before this returns. The returned
        task confirms the change remotely; None means nothing was sent
        (validation failed, or the write stays local for now).
        """
        return self.mutate_fields(record_id, {name: value})

    def mutate_fields(self, record_id: RecordId | str, values: dict[str, Any]) -> asyncio.Task | None:
        """Change several fields in one optimistic step."""
        record_id = _as_id(record_id)
        region, index = self._locate_active(record_id)

        try:
            coerced = {name: self.kind.coerce(name, value) for name, value in values.items()}
        except RecordValidationError as e:
            self.logger.log("validation_failed", kind=self.kind.name, record_id=str(record_id), error=str(e))
            self.notifier.notify(f"入力値が正しくありません: {e}", Severity.WARNING)
            return None
        if not coerced:
            return None

        assert self._active is not None
        snapshot = self._snapshot(self._active)
        record = region[index]
        updated = record.with_values(coerced)
        region[index] = updated
        if RESIDENT_FIELD in coerced:
            self._drop_placeholders_for(region, updated)
        self.logger.log_mutation(self.kind.name, str(record_id), list(coerced))

        if isinstance(record.id, Persistent):
            return self._spawn_update(snapshot, record.id, coerced)

        key = record.id.correlation_key
        pending = self._creating.get(key)
        if pending is not None:
            for name in coerced:
                if name not in pending.dirty:
                    pending.before[name] = record.get(name)
            pending.dirty.update(coerced)
            return pending.task

        if updated.resident_id is None:
            return None
        if not any(self.kind.triggers_create(name) for name in coerced):
            return None

        pending = _PendingCreate(sent=self._create_payload(self._active, updated))
        self._creating[key] = pending
        pending.task = self._spawn(self._confirm_create(snapshot, record.id, pending))
        return pending.task

    def _create_payload(self, flt: RecordFilter, record: Record) -> dict[str, Any]:
        payload = self.kind.base_values(flt)
        payload.update({k: v for k, v in record.payload().items() if v is not None})
        return payload

    def _drop_placeholders_for(self, region: list[Record], owner: Record) -> None:
        """Remove idle placeholders that would duplicate ``owner``'s resident."""
        region[:] = [
            r for r in region
            if r is owner
            or r.resident_id != owner.resident_id
            or not isinstance(r.id, Provisional)
            or r.id.correlation_key in self._creating
        ]

    async def _confirm_update(
        self,
        snapshot: _Snapshot,
        record_id: Persistent,
        values: dict[str, Any],
    ) -> None:
        started = time.monotonic()
        try:
            await self.store.update(self.kind, record_id.value, values)
        except Exception as e:
            self._untrack_inflight(record_id.value, values)
            self._log_remote("update", record_id, started, error=e)
            self._rollback(snapshot, record_id, f"記録の更新に失敗しました。変更を元に戻しました。({e})")
            return
        self._untrack_inflight(record_id.value, values)
        self._log_remote("update", record_id, started)

    async def _confirm_create(
        self,
        snapshot: _Snapshot,
        provisional_id: Provisional,
        pending: _PendingCreate,
    ) -> None:
        key = provisional_id.correlation_key
        started = time.monotonic()
        try:
            created = await self.store.create(self.kind, dict(pending.sent))
        except Exception as e:
            self._release_create(key, pending)
            self._log_remote("create", provisional_id, started, error=e)
            if pending.deleted:
                return
            self._rollback(snapshot, provisional_id, f"記録の作成に失敗しました。変更を元に戻しました。({e})")
            return

        self._release_create(key, pending)
        self._log_remote("create", provisional_id, started)
        assert isinstance(created.id, Persistent)

        if pending.deleted:
            await self._confirm_delete(None, created.id)
            return

        self._promote(provisional_id, created)

        if pending.dirty:
            follow_up = self._snapshot_before_dirty(created.id, pending)
            if follow_up is not None:
                self._track_inflight(created.id.value, pending.dirty)
                await self._confirm_update(follow_up, created.id, dict(pending.dirty))

    def _release_create(self, key: str, pending: _PendingCreate) -> None:
        # A newer create may own the key once this one was deleted.
        if self._creating.get(key) is pending:
            del self._creating[key]

    def _promote(self, provisional_id: Provisional, created: Record) -> None:
        """Give the placeholder its server identity, keeping local values."""
        self._promoted[provisional_id.correlation_key] = created
        for region in self._regions.values():
            for i, record in enumerate(region):
                if record.id == provisional_id:
                    region[i] = _with_identity(record, created)
                    self.logger.log("promoted", kind=self.kind.name, record_id=str(created.id),
                                    provisional_id=str(provisional_id))
                    return

    def _snapshot_before_dirty(self, record_id: Persistent, pending: _PendingCreate) -> _Snapshot | None:
        """Snapshot of the promoted record as it was before the merged writes."""
        located = self._find(record_id)
        if located is None:
            return None
        flt, index = located
        snapshot = self._snapshot(flt)
        snapshot.records[index] = snapshot.records[index].with_values(pending.before)
        return snapshot

    # -- deleteRecord ------------------------------------------------------

    def delete_record(self, record_id: RecordId | str) -> asyncio.Task | None:
        """Remove a record.

        Placeholders disappear locally with no network call. Persisted
        records are hidden at once and deleted remotely; the list is
        re-fetched afterwards so the resident gets a fresh placeholder.
        """
        record_id = _as_id(record_id)
        region, index = self._locate_active(record_id)
        assert self._active is not None

        record = region[index]
        if isinstance(record.id, Provisional):
            del region[index]
            pending = self._creating.pop(record.id.correlation_key, None)
            if pending is not None:
                pending.deleted = True
            self.logger.log("deleted_local", kind=self.kind.name, record_id=str(record_id))
            return None

        snapshot = self._snapshot(self._active)
        del region[index]
        self._deleting.add(record.id.value)
        self.logger.log_mutation(self.kind.name, str(record_id), [])
        return self._spawn(self._confirm_delete(snapshot, record.id))

    async def _confirm_delete(self, snapshot: _Snapshot | None, record_id: Persistent) -> None:
        started = time.monotonic()
        try:
            await self.store.delete(self.kind, record_id.value)
        except Exception as e:
            self._deleting.discard(record_id.value)
            self._log_remote("delete", record_id, started, error=e)
            if snapshot is not None:
                self._rollback(snapshot, record_id, f"記録の削除に失敗しました。({e})")
            else:
                self.notifier.notify(f"記録の削除に失敗しました。({e})", Severity.ERROR)
            return

        self._deleting.discard(record_id.value)
        self._log_remote("delete", record_id, started)
        if snapshot is not None and snapshot.flt == self._requested == self._active:
            await self.apply_filter(snapshot.flt)

    # -- changeIdentity ----------------------------------------------------

    def change_identity(self, record_id: RecordId | str, new_resident_id: str) -> asyncio.Task | None:
        """Point a record at a different resident.

        If that resident already has a persisted record under the active
        filter, the entry is replaced by it so its data shows immediately.
        Otherwise this is an ordinary write of ``residentId``.
        """
        record_id = _as_id(record_id)
        region, index = self._locate_active(record_id)
        assert self._active is not None

        try:
            new_resident_id = self.kind.coerce(RESIDENT_FIELD, new_resident_id)
        except RecordValidationError as e:
            self.notifier.notify(f"入力値が正しくありません: {e}", Severity.WARNING)
            return None

        record = region[index]
        existing = next(
            (
                r for r in region
                if isinstance(r.id, Persistent)
                and r.resident_id == new_resident_id
                and r.id != record.id
            ),
            None,
        )
        if existing is None:
            return self.mutate_field(record.id, RESIDENT_FIELD, new_resident_id)

        snapshot = self._snapshot(self._active)
        region[index] = existing.clone()
        del region[next(i for i, r in enumerate(region) if r is existing)]
        self.logger.log("identity_changed", kind=self.kind.name, record_id=str(record_id),
                        resident_id=new_resident_id, replaced_by=str(existing.id))

        if isinstance(record.id, Persistent):
            return self._spawn_update(snapshot, record.id, {RESIDENT_FIELD: new_resident_id})
        return None

    # -- helpers built on the operations above -----------------------------

    def add_blank(self) -> Record:
        """Append an empty card with no resident, to be claimed with change_identity."""
        if self._active is None:
            raise UnknownRecordError("No filter applied")
        self._blank_seq += 1
        key = f"new-{self._blank_seq}"
        record = self.kind.placeholder(None, self._active, key=key)
        self._regions.setdefault(self._active, []).append(record)
        self.logger.log("blank_added", kind=self.kind.name, record_id=str(record.id))
        return record.clone()

    def stamp_staff(
        self,
        record_id: RecordId | str,
        staff_name: str,
        now: datetime | None = None,
    ) -> asyncio.Task | None:
        """Toggle the staff stamp on a record.

        For kinds with a time and approver: an empty approver gets the
        current time (rounded down to the quarter hour) and ``staff_name``;
        an approver without time is cleared; an approver with time clears
        all three. For confirmer-based kinds the name fills the first empty
        confirmer slot, or is removed again if already present.
        """
        record = self.get(record_id)
        fields = self.kind.stamp_fields
        if not fields:
            raise ValueError(f"{self.kind.name} records have no staff stamp")

        if fields == ("hour", "minute", "staffName"):
            wall = to_wall_clock(now or now_instant(), self.config.utc_offset_hours)
            has_time = record.get("hour") not in (None, "") or record.get("minute") not in (None, "")
            has_staff = bool(record.get("staffName"))
            if has_staff and has_time:
                changes: dict[str, Any] = {"hour": None, "minute": None, "staffName": ""}
            elif has_staff:
                changes = {"staffName": ""}
            else:
                changes = {"hour": wall.hour, "minute": wall.minute // 15 * 15, "staffName": staff_name}
            return self.mutate_fields(record.id, changes)

        for name in fields:
            if record.get(name) == staff_name:
                return self.mutate_field(record.id, name, "")
        for name in fields:
            if not record.get(name):
                return self.mutate_field(record.id, name, staff_name)
        self.notifier.notify("確認者はすでに埋まっています", Severity.WARNING)
        return None

    # -- internals ---------------------------------------------------------

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> asyncio.Task:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._tasks.discard)
        return task

    def _spawn_update(
        self, snapshot: _Snapshot, record_id: Persistent, values: dict[str, Any]
    ) -> asyncio.Task:
        self._track_inflight(record_id.value, values)
        return self._spawn(self._confirm_update(snapshot, record_id, values))

    def _snapshot(self, flt: RecordFilter) -> _Snapshot:
        return _Snapshot(
            flt=flt,
            records=[r.clone() for r in self._regions.get(flt, [])],
            epoch=self._epochs.get(flt, 0),
        )

    def _rollback(self, snapshot: _Snapshot, record_id: RecordId, message: str) -> None:
        """Restore a pre-mutation snapshot and tell the user.

        Only the failed change is undone. Other entries keep their current
        local state, and entries the failed change removed come back. The
        failed record keeps fields a later write still has in flight.
        """
        if self._epochs.get(snapshot.flt, 0) == snapshot.epoch:
            current = {r.id: r for r in self._regions.get(snapshot.flt, [])}
            restored = []
            for record in snapshot.records:
                if record.id == record_id:
                    record = self._keep_inflight(record, current.pop(record.id, None))
                elif str(record.id) in self._deleting:
                    continue
                else:
                    record = self._current_entry(record, current)
                restored.append(record)
            # Entries added since the snapshot, such as blank cards.
            restored.extend(current.values())
            self._regions[snapshot.flt] = restored
        elif snapshot.flt == self._requested == self._active:
            # The region was re-fetched since; the server state is the truth now.
            self._spawn(self.apply_filter(snapshot.flt))

        self.logger.log_rollback(self.kind.name, str(record_id), reason=message)
        self.notifier.notify(message, Severity.ERROR)

    def _current_entry(self, record: Record, current: dict[RecordId, Record]) -> Record:
        """Take ``record``'s live entry out of ``current``, falling back to the snapshot copy."""
        live_id = record.id
        if isinstance(record.id, Provisional) and record.id.correlation_key in self._promoted:
            created = self._promoted[record.id.correlation_key]
            live_id = created.id
            if live_id not in current:
                return _with_identity(record, created)
        return current.pop(live_id, record)

    def _keep_inflight(self, record: Record, live: Record | None) -> Record:
        counts = self._inflight.get(str(record.id)) if isinstance(record.id, Persistent) else None
        if not counts or live is None:
            return record
        return record.with_values({name: live.get(name) for name in counts})

    def _locate_active(self, record_id: RecordId) -> tuple[list[Record], int]:
        if self._active is not None:
            region = self._regions.get(self._active, [])
            for i, record in enumerate(region):
                if record.id == record_id:
                    return region, i
        raise UnknownRecordError(f"Record {record_id} is not in the visible list")

    def _locate(self, record_id: RecordId) -> tuple[list[Record], int]:
        located = self._find(record_id)
        if located is None:
            raise UnknownRecordError(f"Record {record_id} is not cached")
        flt, index = located
        return self._regions[flt], index

    def _find(self, record_id: RecordId) -> tuple[RecordFilter, int] | None:
        order = list(self._regions)
        if self._active in self._regions:
            order.remove(self._active)
            order.insert(0, self._active)
        for flt in order:
            for i, record in enumerate(self._regions[flt]):
                if record.id == record_id:
                    return flt, i
        return None

    def _track_inflight(self, record_id: str, values: dict[str, Any]) -> None:
        self._inflight.setdefault(record_id, Counter()).update(values.keys())

    def _untrack_inflight(self, record_id: str, values: dict[str, Any]) -> None:
        counts = self._inflight.get(record_id)
        if counts is None:
            return
        counts.subtract(values.keys())
        for name in [n for n, c in counts.items() if c <= 0]:
            del counts[name]
        if not counts:
            del self._inflight[record_id]

    def _log_remote(
        self,
        operation: str,
        record_id: RecordId,
        started: float,
        error: Exception | None = None,
    ) -> None:
        self.logger.log_remote(
            self.kind.name,
            operation,
            str(record_id),
            error is None,
            duration_ms=(time.monotonic() - started) * 1000,
            error=str(error) if error is not None else None,
        )


def _as_id(record_id: RecordId | str) -> RecordId:
    if isinstance(record_id, str):
        return parse_record_id(record_id)
    return record_id


def _with_identity(record: Record, created: Record) -> Record:
    return replace(
        record,
        id=created.id,
        created_at=created.created_at,
        updated_at=created.updated_at,
    )


def _filter_fields(flt: RecordFilter) -> dict[str, Any]:
    return {
        "record_date": flt.record_date.isoformat(),
        "timing": flt.timing,
        "floor": flt.floor,
        "resident_id": flt.resident_id,
    }


def _describe(flt: RecordFilter) -> str:
    parts = [flt.record_date.isoformat(), flt.timing or "-", flt.floor]
    if flt.resident_id:
        parts.append(flt.resident_id)
    return "/".join(parts)
