"""Wall-clock / stored-instant conversion.

Records store aware UTC instants. Staff enter and read facility wall-clock
times. All conversion between the two goes through this module using one
fixed offset, so no caller adds or subtracts hours on its own.
"""

from datetime import date, datetime, time, timedelta, timezone

DEFAULT_UTC_OFFSET_HOURS = 9

# Default administration time for each medication timing bucket.
MEDICATION_TIMES: dict[str, time] = {
    "起床後": time(7, 0),
    "朝前": time(7, 30),
    "朝後": time(8, 30),
    "昼前": time(11, 30),
    "昼後": time(12, 30),
    "夕前": time(17, 30),
    "夕後": time(18, 30),
    "眠前": time(20, 30),
    "頓服": time(12, 0),
}


def facility_tz(offset_hours: float = DEFAULT_UTC_OFFSET_HOURS) -> timezone:
    return timezone(timedelta(hours=offset_hours))


def to_instant(local: datetime, offset_hours: float = DEFAULT_UTC_OFFSET_HOURS) -> datetime:
    """Convert a facility wall-clock datetime to a UTC instant.

    Naive datetimes are read as facility time. Aware datetimes are already
    instants and are only normalised to UTC, never shifted a second time.
    """
    if local.tzinfo is None:
        local = local.replace(tzinfo=facility_tz(offset_hours))
    return local.astimezone(timezone.utc)


def to_wall_clock(instant: datetime, offset_hours: float = DEFAULT_UTC_OFFSET_HOURS) -> datetime:
    """Convert a stored instant to naive facility wall-clock time."""
    if instant.tzinfo is None:
        raise ValueError("Stored instants must be timezone-aware")
    return instant.astimezone(facility_tz(offset_hours)).replace(tzinfo=None)


def timing_instant(
    day: date,
    timing: str,
    custom_time: str | None = None,
    offset_hours: float = DEFAULT_UTC_OFFSET_HOURS,
) -> datetime:
    """Stored instant for a medication timing on a given day.

    Args:
        day: Facility-local day.
        timing: Timing bucket; unknown buckets fall back to noon.
        custom_time: Optional "HH:MM" overriding the bucket's default.
        offset_hours: Facility UTC offset.
    """
    at = MEDICATION_TIMES.get(timing, time(12, 0))
    if custom_time:
        try:
            hour, minute = (int(part) for part in custom_time.split(":", 1))
            at = time(hour, minute)
        except ValueError:
            pass  # keep the bucket default
    return to_instant(datetime.combine(day, at), offset_hours)


def parse_instant(text: str | None) -> datetime | None:
    """Parse an ISO-8601 timestamp from the store into an aware UTC instant."""
    if not text:
        return None
    if text.endswith("Z"):
        text = text[:-1] + "+00:00"
    parsed = datetime.fromisoformat(text)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc)


def now_instant() -> datetime:
    return datetime.now(timezone.utc)


def facility_today(offset_hours: float = DEFAULT_UTC_OFFSET_HOURS) -> date:
    return to_wall_clock(now_instant(), offset_hours).date()
