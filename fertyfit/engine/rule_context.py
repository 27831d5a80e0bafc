"""Rule context: everything a rule reads, derived once per evaluation pass.

Conditions and message builders only read these precomputed values, so a
message can never describe a different fertile window or BMI than the one
its condition matched on.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import date, datetime, timedelta, timezone
from typing import Iterable, Mapping, Optional

from fertyfit.engine.cycle import (
    BmiAssessment,
    FertileWindow,
    assess_bmi,
    cycle_day,
    days_since,
    fertile_window,
    next_period_date,
    parse_local_date,
)
from fertyfit.engine.fertyscore import select_recent_logs
from fertyfit.models.fields import to_float
from fertyfit.models.pillars import PillarState, PillarType
from fertyfit.models.profile import DailyLog, UserProfile

NO_LOG_DAYS = 999


@dataclass(frozen=True)
class Last7DaysStats:
    avg_sleep_hours: Optional[float] = None
    avg_stress_level: Optional[float] = None
    alcohol_days: int = 0


@dataclass(frozen=True)
class RuleContext:
    profile: UserProfile
    today: date
    now: datetime
    current_cycle_day: int = 0                       # 0 = unknown
    days_since_last_period: Optional[int] = None     # not wrapped
    cycle_length: Optional[int] = None
    fertile_window: Optional[FertileWindow] = None
    next_period: Optional[date] = None
    previous_weight: Optional[float] = None
    previous_bmi: Optional[BmiAssessment] = None
    current_bmi: Optional[BmiAssessment] = None
    days_since_last_log: int = NO_LOG_DAYS
    daily_log_streak: int = 0
    last_7_days: Last7DaysStats = field(default_factory=Last7DaysStats)
    missing_pillars: tuple = ()
    partial_pillars: tuple = ()

    @property
    def user_id(self) -> str:
        return self.profile.user_id

    @property
    def age(self) -> Optional[int]:
        return self.profile.age


def days_since_last_log(logs: Iterable[DailyLog], today: date) -> int:
    recent = select_recent_logs(logs, 1)
    if not recent:
        return NO_LOG_DAYS
    return max(0, (today - parse_local_date(recent[0].date)).days)


def daily_log_streak(logs: Iterable[DailyLog], today: date) -> int:
    """Consecutive days with a log, counting back from today."""
    logged = {parse_local_date(log.date) for log in logs or ()}
    streak = 0
    day = today
    while day in logged:
        streak += 1
        day -= timedelta(days=1)
    return streak


def last_7_days_stats(logs: Iterable[DailyLog]) -> Last7DaysStats:
    """Habit averages over the seven most recent logs.

    Zero sleep or stress values are treated as not entered.
    """
    recent = select_recent_logs(logs, 7)
    if not recent:
        return Last7DaysStats()
    sleep = [v for v in (to_float(log.sleep_hours) for log in recent) if v is not None and v > 0]
    stress = [v for v in (to_float(log.stress_level) for log in recent) if v is not None and v > 0]
    return Last7DaysStats(
        avg_sleep_hours=sum(sleep) / len(sleep) if sleep else None,
        avg_stress_level=sum(stress) / len(stress) if stress else None,
        alcohol_days=sum(1 for log in recent if log.alcohol is True),
    )


def build_rule_context(profile: UserProfile, logs: Iterable[DailyLog] = (),
                       previous_weight: Optional[float] = None,
                       available_pillars: Optional[Iterable[PillarType]] = None,
                       pillar_states: Optional[Mapping[PillarType, str]] = None,
                       today: Optional[date] = None,
                       now: Optional[datetime] = None) -> RuleContext:
    """Derive the rule context for one user.

    ``pillar_states`` maps each pillar to its questionnaire progress and fills
    both ``missing_pillars`` and ``partial_pillars``. Without it,
    ``available_pillars`` lists the pillars with a stored snapshot. When both
    are None, questionnaire progress is unknown and neither tuple is filled.
    """
    now = now or datetime.now(timezone.utc)
    today = today or date.today()
    logs = list(logs or ())

    cycle_length = profile.cycle_length if profile.cycle_length and profile.cycle_length > 0 else None
    elapsed = days_since(profile.last_period_date, today)
    missing, partial = (), ()
    if pillar_states is not None:
        missing = tuple(p for p in PillarType
                        if pillar_states.get(p, PillarState.NOT_STARTED) == PillarState.NOT_STARTED)
        partial = tuple(p for p in PillarType if pillar_states.get(p) == PillarState.PARTIAL)
    elif available_pillars is not None:
        present = set(available_pillars)
        missing = tuple(p for p in PillarType if p not in present)

    previous = to_float(previous_weight)
    return RuleContext(
        profile=profile,
        today=today,
        now=now,
        current_cycle_day=cycle_day(profile.last_period_date, cycle_length, today),
        days_since_last_period=elapsed if elapsed is not None and elapsed >= 0 else None,
        cycle_length=cycle_length,
        fertile_window=fertile_window(cycle_length) if cycle_length else None,
        next_period=next_period_date(profile.last_period_date, cycle_length, today),
        previous_weight=previous,
        previous_bmi=assess_bmi(previous, profile.height) if previous else None,
        current_bmi=assess_bmi(profile.weight, profile.height),
        days_since_last_log=days_since_last_log(logs, today),
        daily_log_streak=daily_log_streak(logs, today),
        last_7_days=last_7_days_stats(logs),
        missing_pillars=missing,
        partial_pillars=partial,
    )
