"""Value coercion shared by the models and the score calculator.

Everything here maps "no data" to ``None``. Empty strings, NaN, infinities
and unparseable values never become 0.
"""

from __future__ import annotations

import math
from typing import Any, Optional

_TRUE_STRINGS = {"true", "1", "yes", "si", "sí", "y"}
_FALSE_STRINGS = {"false", "0", "no", "n"}


def to_float(value: Any) -> Optional[float]:
    """Finite float or None."""
    if value is None or isinstance(value, bool):
        return None
    if isinstance(value, str):
        value = value.strip().replace(",", ".")
        if not value:
            return None
    try:
        number = float(value)
    except (TypeError, ValueError):
        return None
    if math.isnan(number) or math.isinf(number):
        return None
    return number


def round_half_up(number: float) -> int:
    """Nearest integer with .5 rounding up (72.5 -> 73), unlike ``round``."""
    return int(math.floor(number + 0.5))


def to_int(value: Any) -> Optional[int]:
    number = to_float(value)
    if number is None:
        return None
    return round_half_up(number)


def to_bool(value: Any) -> Optional[bool]:
    """Parse yes/no answers ("Sí", "No", True, "false"...)."""
    if value is None:
        return None
    if isinstance(value, bool):
        return value
    if isinstance(value, (int, float)):
        if isinstance(value, float) and math.isnan(value):
            return None
        return bool(value)
    text = str(value).strip().lower()
    if not text:
        return None
    if text in _TRUE_STRINGS or text.startswith("sí") or text.startswith("si:"):
        return True
    if text in _FALSE_STRINGS or text.startswith("no"):
        return False
    return None


def to_str(value: Any) -> Optional[str]:
    if value is None:
        return None
    if isinstance(value, float) and math.isnan(value):
        return None
    text = str(value).strip()
    return text or None


def to_str_list(value: Any) -> list[str]:
    """Lists pass through; strings split on newlines and commas."""
    if value is None:
        return []
    if isinstance(value, (list, tuple)):
        items = value
    else:
        text = str(value)
        items = text.replace("\n", ",").split(",")
    return [str(item).strip() for item in items if str(item).strip()]
