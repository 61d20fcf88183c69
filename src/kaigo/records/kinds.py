"""Record kinds: one per record-list page.

A kind knows its REST endpoint, how to validate each field, which filter
dimensions make a record unique and therefore how to derive a correlation
key for a provisional placeholder.
"""

import calendar
from dataclasses import dataclass, field
from datetime import date
from decimal import Decimal, InvalidOperation
from typing import Any, Mapping

from ..errors import RecordValidationError
from .ids import Provisional
from .models import Record, RecordFilter

RESIDENT_FIELD = "residentId"


@dataclass(frozen=True)
class FieldSpec:
    """Validation rule for one record field.

    Attributes:
        name: Wire (camelCase) field name.
        type: One of "text", "int", "decimal", "choice", "bool", "date".
        choices: Allowed values for "choice" (and the allowed ints for "int"
            when not empty).
        minimum: Inclusive lower bound for numeric types.
        maximum: Inclusive upper bound for numeric types.
    """

    name: str
    type: str = "text"
    choices: tuple[Any, ...] = ()
    minimum: float | None = None
    maximum: float | None = None

    def coerce(self, value: Any) -> Any:
        """Normalise a raw UI value, raising RecordValidationError if malformed."""
        if self.type == "text":
            if value is None:
                return None
            if not isinstance(value, str):
                raise RecordValidationError(self.name, "must be text")
            return value

        if self.type == "bool":
            if isinstance(value, bool):
                return value
            if value in ("true", "1", 1):
                return True
            if value in ("false", "0", 0, "", None):
                return False
            raise RecordValidationError(self.name, "must be true or false")

        if self.type == "choice":
            if value is None:
                value = ""
            if value not in self.choices:
                options = ", ".join(repr(c) for c in self.choices)
                raise RecordValidationError(self.name, f"must be one of {options}")
            return value

        if self.type == "date":
            if value in (None, ""):
                return None
            if isinstance(value, date):
                return value.isoformat()
            try:
                return date.fromisoformat(str(value)).isoformat()
            except ValueError:
                raise RecordValidationError(self.name, "must be a YYYY-MM-DD date") from None

        # Numeric types: blank clears the field.
        if value is None or (isinstance(value, str) and value.strip() == ""):
            return None
        if isinstance(value, bool):
            raise RecordValidationError(self.name, "must be a number")

        if self.type == "int":
            try:
                number: Any = int(str(value).strip())
            except ValueError:
                raise RecordValidationError(self.name, "must be a whole number") from None
            if self.choices and number not in self.choices:
                raise RecordValidationError(
                    self.name, f"must be one of {', '.join(str(c) for c in self.choices)}"
                )
        elif self.type == "decimal":
            try:
                number = Decimal(str(value).strip())
            except InvalidOperation:
                raise RecordValidationError(self.name, "must be a number") from None
            if not number.is_finite():
                raise RecordValidationError(self.name, "must be a number")
        else:
            raise ValueError(f"Unknown field type: {self.type}")

        if self.minimum is not None and number < self.minimum:
            raise RecordValidationError(self.name, f"must be at least {self.minimum}")
        if self.maximum is not None and number > self.maximum:
            raise RecordValidationError(self.name, f"must be at most {self.maximum}")

        # Decimals travel as strings, the way the store serialises numeric columns.
        return str(number) if self.type == "decimal" else number


@dataclass(frozen=True)
class RecordKind:
    """Description of one record list.

    Attributes:
        name: Registry name ("medication").
        endpoint: REST collection path.
        fields: Editable fields.
        period: "day" or "month"; the granularity a record is unique within.
        uses_timing: Whether the filter's timing is part of a record's identity.
        update_method: HTTP method the server expects for partial updates.
        create_triggers: Fields whose write on a provisional record persists
            it. None means any field does; other fields stay local until then.
        fixed_values: Values every new record of this kind starts with.
        stamp_fields: Fields toggled by a staff stamp, see RecordCache.stamp_staff.
        includes_weekday: Whether create payloads carry the filter day's
            weekday (0 = Sunday).
        timing_field: Record field holding the timing bucket.
        timing_param: Query parameter the list endpoint reads the timing from.
    """

    name: str
    endpoint: str
    fields: tuple[FieldSpec, ...]
    period: str = "day"
    uses_timing: bool = False
    update_method: str = "PATCH"
    create_triggers: frozenset[str] | None = None
    fixed_values: Mapping[str, Any] = field(default_factory=dict)
    stamp_fields: tuple[str, ...] = ("hour", "minute", "staffName")
    includes_weekday: bool = False
    timing_field: str = "timing"
    timing_param: str = "timing"

    def field_spec(self, name: str) -> FieldSpec:
        for spec in self.fields:
            if spec.name == name:
                return spec
        raise RecordValidationError(name, f"unknown field for {self.name} records")

    def field_names(self) -> list[str]:
        return [spec.name for spec in self.fields]

    def coerce(self, name: str, value: Any) -> Any:
        if name == RESIDENT_FIELD:
            if not isinstance(value, str) or not value:
                raise RecordValidationError(name, "a resident must be selected")
            return value
        return self.field_spec(name).coerce(value)

    def triggers_create(self, name: str) -> bool:
        if self.create_triggers is None or name == RESIDENT_FIELD:
            return True
        return name in self.create_triggers

    def period_of(self, flt: RecordFilter) -> str:
        if self.period == "month":
            return flt.month
        return flt.record_date.isoformat()

    def correlation_key(self, resident_id: str, flt: RecordFilter) -> str:
        """Deterministic key for the record a resident would have under ``flt``."""
        key = f"{resident_id}-{self.period_of(flt)}"
        if self.uses_timing and flt.timing:
            key = f"{key}-{flt.timing}"
        return key

    def base_values(self, flt: RecordFilter) -> dict[str, Any]:
        """Values implied by the filter, included in every create payload."""
        if self.period == "month":
            values: dict[str, Any] = {"recordDate": f"{flt.month}-01"}
        else:
            values = {"recordDate": flt.record_date.isoformat()}
        if self.uses_timing and flt.timing:
            values[self.timing_field] = flt.timing
        if self.includes_weekday:
            values["dayOfWeek"] = (flt.record_date.weekday() + 1) % 7
        values.update(self.fixed_values)
        return values

    def placeholder(self, resident_id: str | None, flt: RecordFilter, key: str | None = None) -> Record:
        """Build an empty provisional record."""
        if key is None:
            if resident_id is None:
                raise ValueError("A placeholder without resident needs an explicit key")
            key = self.correlation_key(resident_id, flt)
        values = {spec.name: None for spec in self.fields}
        values.update(self.base_values(flt))
        return Record(id=Provisional(key), resident_id=resident_id, values=values)

    def list_params(self, flt: RecordFilter) -> dict[str, str]:
        """Query string for listing records under ``flt``."""
        if self.period == "month":
            last = calendar.monthrange(flt.record_date.year, flt.record_date.month)[1]
            params = {
                "startDate": f"{flt.month}-01",
                "endDate": f"{flt.month}-{last:02d}",
            }
        else:
            params = {
                "recordDate": flt.record_date.isoformat(),
                self.timing_param: flt.timing or "all",
                "floor": flt.floor or "all",
            }
        if flt.resident_id:
            params["residentId"] = flt.resident_id
        return params


MEDICATION_RESULTS = ("○", "−", "拒否", "外出", "")
MEDICATION_TYPES = ("服薬", "点眼")
BATH_TYPES = ("入浴", "シャワー浴", "清拭", "×", "")
CLEANING_VALUES = ("○", "2", "3", "")
QUARTER_HOURS = (0, 15, 30, 45)
MEAL_AMOUNTS = ("", *(str(n) for n in range(11)), "-", "欠", "拒")
WATER_AMOUNTS = ("", "300", "250", "200", "150", "100", "50", "0")

_HOUR = FieldSpec("hour", "int", minimum=0, maximum=23)
_MINUTE = FieldSpec("minute", "int", choices=QUARTER_HOURS)

MEDICATION = RecordKind(
    name="medication",
    endpoint="/api/medication-records",
    fields=(
        FieldSpec("confirmer1"),
        FieldSpec("confirmer2"),
        FieldSpec("notes"),
        FieldSpec("result", "choice", choices=MEDICATION_RESULTS),
        FieldSpec("type", "choice", choices=MEDICATION_TYPES),
    ),
    uses_timing=True,
    update_method="PUT",
    create_triggers=frozenset({"result", "confirmer1", "confirmer2", "type"}),
    fixed_values={"type": "服薬"},
    stamp_fields=("confirmer1", "confirmer2"),
)

WEIGHT = RecordKind(
    name="weight",
    endpoint="/api/weight-records",
    fields=(
        FieldSpec("measurementDate", "date"),
        _HOUR,
        _MINUTE,
        FieldSpec("staffName"),
        FieldSpec("weight", "decimal", minimum=0, maximum=300),
        FieldSpec("notes"),
    ),
    period="month",
)

BATHING = RecordKind(
    name="bathing",
    endpoint="/api/bathing-records",
    fields=(
        _HOUR,
        _MINUTE,
        FieldSpec("staffName"),
        FieldSpec("bathType", "choice", choices=BATH_TYPES),
        FieldSpec("temperature"),
        FieldSpec("weight"),
        FieldSpec("bloodPressureSystolic"),
        FieldSpec("bloodPressureDiastolic"),
        FieldSpec("pulseRate"),
        FieldSpec("oxygenSaturation"),
        FieldSpec("notes"),
        FieldSpec("rejectionReason"),
        FieldSpec("nursingCheck", "bool"),
    ),
    uses_timing=True,
)

VITAL_SIGNS = RecordKind(
    name="vital_signs",
    endpoint="/api/vital-signs",
    fields=(
        _HOUR,
        _MINUTE,
        FieldSpec("staffName"),
        FieldSpec("temperature", "decimal", minimum=30, maximum=45),
        FieldSpec("bloodPressureSystolic", "int", minimum=0, maximum=300),
        FieldSpec("bloodPressureDiastolic", "int", minimum=0, maximum=300),
        FieldSpec("pulseRate", "int", minimum=0, maximum=300),
        FieldSpec("respirationRate", "int", minimum=0, maximum=100),
        FieldSpec("oxygenSaturation", "decimal", minimum=0, maximum=100),
        FieldSpec("bloodSugar"),
        FieldSpec("notes"),
    ),
    uses_timing=True,
)

CLEANING_LINEN = RecordKind(
    name="cleaning_linen",
    endpoint="/api/cleaning-linen",
    fields=(
        FieldSpec("cleaningValue", "choice", choices=CLEANING_VALUES),
        FieldSpec("linenValue", "choice", choices=CLEANING_VALUES),
        FieldSpec("recordNote"),
    ),
    update_method="PUT",
    stamp_fields=(),
    includes_weekday=True,
)

MEALS_MEDICATION = RecordKind(
    name="meals_medication",
    endpoint="/api/meals-medication",
    fields=(
        FieldSpec("mainAmount", "choice", choices=MEAL_AMOUNTS),
        FieldSpec("sideAmount", "choice", choices=MEAL_AMOUNTS),
        FieldSpec("waterIntake", "choice", choices=WATER_AMOUNTS),
        # Options come from the facility master settings, so any text is accepted.
        FieldSpec("supplement"),
        FieldSpec("staffName"),
        FieldSpec("notes"),
    ),
    uses_timing=True,
    update_method="PUT",
    fixed_values={"type": "meal"},
    stamp_fields=("staffName",),
    timing_field="mealType",
    timing_param="mealTime",
)

KINDS: dict[str, RecordKind] = {
    kind.name: kind
    for kind in (MEDICATION, WEIGHT, BATHING, VITAL_SIGNS, CLEANING_LINEN, MEALS_MEDICATION)
}


def get_kind(name: str) -> RecordKind:
    try:
        return KINDS[name]
    except KeyError:
        raise ValueError(
            f"Unknown record kind '{name}'. Available: {', '.join(sorted(KINDS))}"
        ) from None
