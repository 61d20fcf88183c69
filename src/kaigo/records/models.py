"""Data models for record lists."""

import copy
from dataclasses import dataclass, field, replace
from datetime import date, datetime
from typing import Any

from .ids import Provisional, RecordId


@dataclass(frozen=True)
class Resident:
    """A resident of the facility.

    Attributes:
        id: Server id of the resident.
        name: Display name.
        room_number: Room number as entered in the master data ("101", "2-3").
        floor: Floor label in any of the accepted notations ("1", "1F", "1階").
        is_admitted: True while the resident is hospitalised.
    """

    id: str
    name: str
    room_number: str | None = None
    floor: str | None = None
    is_admitted: bool = False

    @property
    def room_sort_key(self) -> int:
        """Numeric part of the room number, 0 when there is none."""
        digits = "".join(ch for ch in self.room_number or "" if ch.isdigit())
        return int(digits) if digits else 0


@dataclass(frozen=True)
class RecordFilter:
    """Query dimensions that decide which records are visible.

    Attributes:
        record_date: Day the list is for (month kinds use its month).
        timing: Time-of-day bucket ("朝後", "午前"), None when the kind has none.
        floor: Floor selection, "all" for every floor.
        resident_id: Restrict the list to one resident.
    """

    record_date: date
    timing: str | None = None
    floor: str = "all"
    resident_id: str | None = None

    @property
    def month(self) -> str:
        return self.record_date.strftime("%Y-%m")


@dataclass
class Record:
    """One logged observation or action for a resident.

    Attributes:
        id: Persistent or provisional id.
        resident_id: Resident the record belongs to, None for a blank card.
        values: Domain attributes keyed by their wire (camelCase) name.
        created_at: Server creation instant, None until persisted.
        updated_at: Server update instant, None until persisted.
    """

    id: RecordId
    resident_id: str | None
    values: dict[str, Any] = field(default_factory=dict)
    created_at: datetime | None = None
    updated_at: datetime | None = None

    @property
    def provisional(self) -> bool:
        return isinstance(self.id, Provisional)

    def get(self, name: str, default: Any = None) -> Any:
        if name == "residentId":
            return self.resident_id
        return self.values.get(name, default)

    def with_values(self, values: dict[str, Any]) -> "Record":
        """Return a copy with ``values`` merged in.

        ``residentId`` is routed to the ``resident_id`` attribute.
        """
        merged = dict(self.values)
        resident_id = self.resident_id
        for name, value in values.items():
            if name == "residentId":
                resident_id = value
            else:
                merged[name] = value
        return replace(self, resident_id=resident_id, values=merged)

    def payload(self) -> dict[str, Any]:
        """Full field state as sent to the store on creation."""
        data = dict(self.values)
        data["residentId"] = self.resident_id
        return data

    def clone(self) -> "Record":
        return copy.deepcopy(self)
