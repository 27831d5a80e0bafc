"""Cycle, date and body-metric helpers.

Shared by the score calculator (log windowing, BMI) and the rule engine
(cycle day, fertile window, age gate). All dates are local calendar dates:
"2024-03-15" is March 15 whatever the server timezone, nothing here goes
through UTC.

Cycle arithmetic:
  cycle_day      = floor(today - last_period) + 1, wrapped into 1..cycle_length
  ovulation_day  = cycle_length - 14
  fertile window = [ovulation_day - 5, ovulation_day + 1]  (7 days)
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, datetime, timedelta
from typing import Any, Iterable, Optional

from fertyfit.config.settings import FERTILITY_NOTIFICATION_MAX_AGE
from fertyfit.models.fields import round_half_up, to_float


LUTEAL_PHASE_DAYS = 14
FERTILE_DAYS_BEFORE_OVULATION = 5
FERTILE_DAYS_AFTER_OVULATION = 1
MIN_CYCLE_LENGTH = 21
MAX_CYCLE_LENGTH = 45


# ── Dates ────────────────────────────────────────────────────────────────

def parse_local_date(value: Any) -> Optional[date]:
    """Parse ``YYYY-MM-DD`` (or the date part of an ISO timestamp).

    Returns None for missing or invalid input.
    """
    if value is None:
        return None
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    text = str(value).strip()
    if len(text) < 10:
        return None
    try:
        return date.fromisoformat(text[:10])
    except ValueError:
        return None


def days_since(value: Any, today: Optional[date] = None) -> Optional[int]:
    """Whole calendar days from ``value`` to ``today``."""
    start = parse_local_date(value)
    if start is None:
        return None
    today = today or date.today()
    return (today - start).days


# ── Cycle ────────────────────────────────────────────────────────────────

@dataclass(frozen=True)
class FertileWindow:
    start: int
    end: int
    fertile_days: int
    ovulation_day: int

    def contains(self, day: int) -> bool:
        return self.start <= day <= self.end

    def to_dict(self) -> dict:
        return {
            "start": self.start,
            "end": self.end,
            "fertile_days": self.fertile_days,
            "ovulation_day": self.ovulation_day,
        }


def cycle_day(last_period_date: Any, cycle_length: Optional[int] = None,
              today: Optional[date] = None) -> int:
    """Day of the current cycle, day 1 being the first day of bleeding.

    Returns 0 when the last period date is missing, invalid or in the future.
    """
    elapsed = days_since(last_period_date, today)
    if elapsed is None or elapsed < 0:
        return 0
    day = elapsed + 1
    if cycle_length and cycle_length > 0 and day > cycle_length:
        day = (day - 1) % cycle_length + 1
    return day


def ovulation_day(cycle_length: int) -> int:
    return cycle_length - LUTEAL_PHASE_DAYS


def fertile_window(cycle_length: int) -> FertileWindow:
    ovulation = ovulation_day(cycle_length)
    start = ovulation - FERTILE_DAYS_BEFORE_OVULATION
    end = ovulation + FERTILE_DAYS_AFTER_OVULATION
    return FertileWindow(
        start=start,
        end=end,
        fertile_days=end - start + 1,
        ovulation_day=ovulation,
    )


def current_cycle_start(last_period_date: Any, cycle_length: Optional[int],
                        today: Optional[date] = None) -> Optional[date]:
    """Start date of the cycle ``today`` falls in, projected forward."""
    start = parse_local_date(last_period_date)
    if start is None:
        return None
    today = today or date.today()
    if not cycle_length or cycle_length <= 0 or today <= start:
        return start
    elapsed_cycles = (today - start).days // cycle_length
    return start + timedelta(days=elapsed_cycles * cycle_length)


def next_period_date(last_period_date: Any, cycle_length: Optional[int],
                     today: Optional[date] = None) -> Optional[date]:
    if not cycle_length:
        return None
    start = current_cycle_start(last_period_date, cycle_length, today)
    if start is None:
        return None
    return start + timedelta(days=cycle_length)


def average_cycle_length(period_history: Iterable[Any]) -> Optional[int]:
    """Mean gap in days between consecutive recorded period starts.

    Needs at least two valid dates; order of the input does not matter.
    """
    dates = sorted({d for d in (parse_local_date(v) for v in period_history) if d})
    if len(dates) < 2:
        return None
    gaps = [(later - earlier).days for earlier, later in zip(dates, dates[1:])]
    return round_half_up(sum(gaps) / len(gaps))


def is_plausible_cycle_length(length: Optional[int]) -> bool:
    return length is not None and MIN_CYCLE_LENGTH <= length <= MAX_CYCLE_LENGTH


# ── Body metrics ─────────────────────────────────────────────────────────

class BmiCategory:
    UNDERWEIGHT = "bajo_peso"
    NORMAL = "normal"
    OVERWEIGHT = "sobrepeso"
    OBESE = "obesidad"


BMI_FERTILITY_IMPACT = {
    BmiCategory.UNDERWEIGHT: "Un IMC bajo puede alterar la ovulación y la regularidad del ciclo",
    BmiCategory.NORMAL: "Tu IMC está en el rango óptimo para la fertilidad",
    BmiCategory.OVERWEIGHT: "El sobrepeso puede influir en el equilibrio hormonal y la ovulación",
    BmiCategory.OBESE: "La obesidad se asocia a ciclos irregulares y menor tasa de concepción",
}


@dataclass(frozen=True)
class BmiAssessment:
    value: float
    category: str
    fertility_impact: str


def calculate_bmi(weight: Any, height: Any) -> Optional[float]:
    """BMI rounded to one decimal, None when weight or height is unusable.

    Heights above 3 are taken as centimetres, anything else as metres. This
    keeps older rows stored in metres readable.
    """
    w = to_float(weight)
    h = to_float(height)
    if not w or not h or w <= 0 or h <= 0:
        return None
    if h > 3:
        h = h / 100
    return round(w / (h * h), 1)


def bmi_category(bmi: float) -> str:
    if bmi < 18.5:
        return BmiCategory.UNDERWEIGHT
    if bmi < 25:
        return BmiCategory.NORMAL
    if bmi < 30:
        return BmiCategory.OVERWEIGHT
    return BmiCategory.OBESE


def assess_bmi(weight: Any, height: Any) -> Optional[BmiAssessment]:
    bmi = calculate_bmi(weight, height)
    if bmi is None:
        return None
    category = bmi_category(bmi)
    return BmiAssessment(value=bmi, category=category,
                         fertility_impact=BMI_FERTILITY_IMPACT[category])


# ── Age gate ─────────────────────────────────────────────────────────────

def should_notify_for_fertility(age: Optional[int],
                                max_age: int = FERTILITY_NOTIFICATION_MAX_AGE) -> bool:
    """Hard gate for fertile-window notifications. Unknown age is allowed."""
    if age is None:
        return True
    return age <= max_age
