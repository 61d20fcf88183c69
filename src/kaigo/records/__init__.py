"""Record lists with optimistic updates."""

from .cache import RecordCache
from .floors import match_floor
from .ids import Persistent, Provisional, RecordId, is_provisional, parse_record_id
from .kinds import KINDS, FieldSpec, RecordKind, get_kind
from .models import Record, RecordFilter, Resident

__all__ = [
    "KINDS",
    "FieldSpec",
    "Persistent",
    "Provisional",
    "Record",
    "RecordCache",
    "RecordFilter",
    "RecordId",
    "RecordKind",
    "Resident",
    "get_kind",
    "is_provisional",
    "match_floor",
    "parse_record_id",
]
