"""Record identity: persistent server ids and provisional placeholders."""

from dataclasses import dataclass

PROVISIONAL_PREFIX = "temp-"


@dataclass(frozen=True)
class Persistent:
    """Id assigned by the remote store."""

    value: str

    def __str__(self) -> str:
        return self.value


@dataclass(frozen=True)
class Provisional:
    """Client-side id derived from a correlation key."""

    correlation_key: str

    def __str__(self) -> str:
        return f"{PROVISIONAL_PREFIX}{self.correlation_key}"


RecordId = Persistent | Provisional


def parse_record_id(text: str) -> RecordId:
    """Parse an id coming from the UI or the wire.

    This is the only place where the ``temp-`` prefix is interpreted.
    """
    if not text:
        raise ValueError("Record id must not be empty")
    if text.startswith(PROVISIONAL_PREFIX):
        key = text[len(PROVISIONAL_PREFIX):]
        if not key:
            raise ValueError(f"Provisional id without correlation key: {text!r}")
        return Provisional(key)
    return Persistent(text)


def is_provisional(record_id: RecordId) -> bool:
    return isinstance(record_id, Provisional)
