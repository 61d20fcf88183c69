"""Floor filter matching.

Master data writes floors as "1", "1F" or "1階"; the filter may use any of
these notations too.
"""

import re

ALL_FLOORS = frozenset({"all", "全階", ""})

_NON_DIGITS = re.compile(r"\D")


def is_all_floors(selected: str | None) -> bool:
    return selected is None or selected in ALL_FLOORS


def match_floor(resident_floor: str | None, selected: str | None) -> bool:
    """Check whether a resident's floor matches the filter selection."""
    if is_all_floors(selected):
        return True
    if not resident_floor:
        return False

    assert selected is not None
    resident_str = str(resident_floor)
    resident_num = _NON_DIGITS.sub("", resident_str)
    selected_num = _NON_DIGITS.sub("", selected)

    return (
        resident_str == selected
        or resident_num == selected
        or (bool(resident_num) and resident_num == selected_num)
        or resident_str == f"{selected}F"
        or resident_str == f"{selected}階"
    )
