"""FertyScore calculator.

Pure function of (profile, daily logs, pillar snapshots) to a 0-100 score per
pillar plus a total. No I/O.

Every sub-factor is scored 0-100, or None when its input is absent. A pillar
is the mean of its present sub-factors and is None when it has none. Static
sub-factors come from the profile and the questionnaire snapshots. Dynamic
sub-factors come from the most recent ``window_days`` logs. The two are
combined by the strategy's blend function.

Each input is read by exactly one pillar:
  FUNCTION  BMI, age, diagnoses, smoking, cycle length/regularity, PMS, BBT
  FOOD      vegetables, alcohol, fish, sugar, coffee, supplements, water
  FLORA     digestion, microbiome history, sleep quantity
  FLOW      stress, emotional state, sleep quality, relaxation, libido, activity
"""

from __future__ import annotations

import logging
import re
import statistics
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, Optional

from fertyfit.config.settings import DYNAMIC_DAYS, FERTYSCORE_MISSING_PILLAR_POLICY
from fertyfit.engine.cycle import calculate_bmi, parse_local_date
from fertyfit.models.fields import round_half_up, to_bool, to_float, to_str, to_str_list
from fertyfit.models.pillars import PillarSnapshot, PillarType
from fertyfit.models.profile import DailyLog, UserProfile
from fertyfit.models.score import FertyScoreResult

logger = logging.getLogger(__name__)

PILLAR_ORDER = (PillarType.FUNCTION, PillarType.FOOD, PillarType.FLORA, PillarType.FLOW)

RISKY_DIAGNOSES = ("sop", "pcos", "endometriosis", "fop", "baja reserva", "ovario poliquístico")

# Questionnaire answers ordered worst to best
LETTER_SCORES = {"a": 25.0, "b": 50.0, "c": 75.0, "d": 100.0}
REGULARITY_SCORES = {
    "muy irregulares": 25.0,
    "algo irregulares": 50.0,
    "bastante regulares": 75.0,
    "muy regulares": 100.0,
}
FERTILE_MUCUS_SCORES = {
    "nunca": 25.0,
    "a veces": 50.0,
    "sí, durante 1-2": 75.0,
    "sí, claramente": 100.0,
}
FERTILITY_DIAGNOSIS_SCORES = {
    "sí: endometriosis severa": 25.0,
    "sí: sop": 50.0,
    "sí: hipotiroidismo": 75.0,
    "no": 100.0,
}
MENSTRUAL_BLEEDING_SCORES = {
    "muy abundante": 25.0,
    "coágulos": 50.0,
    "moderado, con": 75.0,
    "flujo moderado": 100.0,
}

_LETTER_RE = re.compile(r"^([a-e])\)")
_NUMBER_RE = re.compile(r"\d+(?:[.,]\d+)?")


class MissingPillarPolicy(str, Enum):
    SCORED_ONLY = "scored_only"   # total = mean of scored pillars
    ZERO_FILL = "zero_fill"       # total = sum / 4, unscored pillars count as 0


# ── Strategy ─────────────────────────────────────────────────────────────

def default_blend(static: Optional[float], dynamic: Optional[float],
                  n_logs: int, window_days: int) -> Optional[float]:
    """Weight recent logs up to half of the pillar, scaled by how full the window is."""
    if static is None:
        return dynamic
    if dynamic is None:
        return static
    weight = 0.5 * min(1.0, n_logs / max(window_days, 1))
    return static * (1 - weight) + dynamic * weight


@dataclass
class ScoreStrategy:
    window_days: int = DYNAMIC_DAYS
    blend: Callable[[Optional[float], Optional[float], int, int], Optional[float]] = default_blend
    missing_pillar_policy: MissingPillarPolicy = field(
        default_factory=lambda: MissingPillarPolicy(FERTYSCORE_MISSING_PILLAR_POLICY)
    )


# ── Helpers ──────────────────────────────────────────────────────────────

def clamp(value: float, low: float = 0.0, high: float = 100.0) -> float:
    return max(low, min(high, value))


def _mean(values: Iterable[Optional[float]]) -> Optional[float]:
    present = [v for v in values if v is not None]
    if not present:
        return None
    return sum(present) / len(present)


def _scored(value: Optional[float]) -> Optional[float]:
    return None if value is None else clamp(value)


def _choice_score(value: Any, choices: Mapping[str, float]) -> Optional[float]:
    text = to_str(value)
    if text is None:
        return None
    text = text.lower()
    for prefix, score in choices.items():
        if text.startswith(prefix):
            return score
    return None


def _letter_score(value: Any) -> Optional[float]:
    """Score "a) ..." to "d) ..." answers; "e) no estoy segura" is no data."""
    text = to_str(value)
    if text is None:
        return None
    match = _LETTER_RE.match(text.lower())
    if not match:
        return None
    return LETTER_SCORES.get(match.group(1))


def _fields(pillars: Optional[Mapping], pillar: PillarType) -> dict:
    if not pillars:
        return {}
    snapshot = pillars.get(pillar)
    if snapshot is None:
        snapshot = pillars.get(pillar.value)
    if snapshot is None:
        return {}
    if isinstance(snapshot, PillarSnapshot):
        return snapshot.fields
    return dict(snapshot)


def select_recent_logs(logs: Iterable[DailyLog], window_days: int) -> list[DailyLog]:
    """Most recent ``window_days`` logs by calendar date, newest first.

    A date held by several logs keeps only the highest ``log_id``. Logs with
    unparseable dates are ignored.
    """
    dated = []
    for log in logs or ():
        day = parse_local_date(log.date)
        if day is not None:
            dated.append((day, log.log_id or 0, log))
    dated.sort(key=lambda item: (item[0], item[1]), reverse=True)
    selected = []
    seen = set()
    for day, _, log in dated:
        if day in seen:
            continue
        seen.add(day)
        selected.append(log)
        if len(selected) >= window_days:
            break
    return selected


def _log_average(logs: list[DailyLog], attr: str, positive_only: bool = False) -> Optional[float]:
    values = []
    for log in logs:
        v = to_float(getattr(log, attr, None))
        if v is None or (positive_only and v <= 0):
            continue
        values.append(v)
    return _mean(values)


# ── Sub-factor scores ────────────────────────────────────────────────────

def score_bmi(bmi: Optional[float]) -> Optional[float]:
    if bmi is None:
        return None
    if bmi < 18.5:
        return clamp(100 - (18.5 - bmi) * 8)
    if bmi > 25:
        return clamp(100 - (bmi - 25) * 3)
    return 100.0


def score_age(age: Any) -> Optional[float]:
    years = to_float(age)
    if years is None or years <= 0:
        return None
    if years > 35:
        return clamp(100 - (years - 35) * 5)
    if years < 25:
        return clamp(100 - (25 - years) * 2)
    return 100.0


def score_diagnoses(diagnoses: Iterable[str]) -> Optional[float]:
    items = list(dict.fromkeys(d.lower() for d in diagnoses))
    if not items:
        return None
    risky = sum(1 for d in items if any(term in d for term in RISKY_DIAGNOSES))
    return clamp(100 - risky * 20)


def score_smoking(smoker: Any) -> Optional[float]:
    text = to_str(smoker)
    if text is None:
        return None
    text = text.lower()
    if text.startswith("no") or text in ("false", "0", "nunca"):
        return 85.0 if "pasado" in text else 100.0
    if text.startswith("s") or text in ("yes", "true", "1"):
        return 50.0 if "ocasional" in text else 25.0
    return None


def score_cycle_length(length: Any) -> Optional[float]:
    days = to_float(length)
    if days is None or days <= 0:
        return None
    if 26 <= days <= 32:
        return 100.0
    if 21 <= days <= 35:
        return 75.0
    return 40.0


def score_regularity(regularity_detail: Any, cycle_regularity: Any) -> Optional[float]:
    detailed = _choice_score(regularity_detail, REGULARITY_SCORES)
    if detailed is not None:
        return detailed
    text = to_str(cycle_regularity)
    if text is None:
        return None
    if text.lower() == "regular":
        return 100.0
    if text.lower() == "irregular":
        return 50.0
    return 75.0


def score_pms(severity: Any) -> Optional[float]:
    value = to_float(severity)
    if value is None:
        return None
    return clamp(100 - value * 20)


def score_luteal_phase(days: Any) -> Optional[float]:
    value = to_float(days)
    if value is None or value <= 0:
        return None
    if value >= 10:
        return 100.0
    if value >= 8:
        return 70.0
    return 40.0


def score_bbt_stability(logs: list[DailyLog]) -> Optional[float]:
    temps = [t for t in (to_float(log.bbt) for log in logs) if t is not None and t > 0]
    if len(temps) < 3:
        return None
    sd = statistics.pstdev(temps)
    if sd <= 0.2:
        return 100.0
    if sd >= 0.5:
        return 40.0
    return clamp(100 - (sd - 0.2) * 200)


def score_vegetables(servings: Optional[float]) -> Optional[float]:
    if servings is None or servings < 0:
        return None
    return clamp(servings / 5 * 100)


def score_alcohol_answer(answer: Any) -> Optional[float]:
    text = to_str(answer)
    if text is None:
        return None
    lettered = _letter_score(text)
    if lettered is not None:
        return lettered
    lowered = text.lower()
    if lowered.startswith("no") or lowered.startswith("nunca") or lowered == "0":
        return 100.0
    number = _NUMBER_RE.search(lowered)
    if number:
        return clamp(100 - float(number.group().replace(",", ".")) * 15)
    if "ocasional" in lowered:
        return 70.0
    if "diario" in lowered or "frecuente" in lowered:
        return 30.0
    return None


def score_alcohol_days(logs: list[DailyLog]) -> Optional[float]:
    known = [log.alcohol for log in logs if log.alcohol is not None]
    if not known:
        return None
    days = sum(1 for drank in known if drank)
    if days <= 2:
        return 100.0
    return clamp(100 - days * 10)


def score_fish(per_week: Any) -> Optional[float]:
    value = to_float(per_week)
    if value is None or value < 0:
        return None
    if value >= 2:
        return 100.0
    if value >= 1:
        return 70.0
    return 40.0


def score_sugary_drinks(per_week: Any) -> Optional[float]:
    value = to_float(per_week)
    if value is None or value < 0:
        return None
    return clamp(100 - value * 15)


def score_coffee(cups: Any) -> Optional[float]:
    value = to_float(cups)
    if value is None or value < 0:
        return None
    if value <= 2:
        return 100.0
    if value < 4:
        return 70.0
    return 40.0


def score_water(glasses: Optional[float]) -> Optional[float]:
    if glasses is None or glasses < 0:
        return None
    return clamp(glasses / 8 * 100)


def score_sleep_hours(hours: Optional[float]) -> Optional[float]:
    if hours is None or hours <= 0:
        return None
    if hours < 7:
        return clamp(hours / 7 * 100)
    if hours > 9:
        return clamp(100 - (hours - 9) * 10)
    return 100.0


def score_weekly_habit(per_week: Any) -> Optional[float]:
    """0 times a week scores 40, three or more scores 100."""
    value = to_float(per_week)
    if value is None or value < 0:
        return None
    return clamp(40 + min(value, 3) / 3 * 60)


def score_scale(value: Any, low: float, high: float, invert: bool = False) -> Optional[float]:
    number = to_float(value)
    if number is None:
        return None
    ratio = (number - low) / (high - low)
    if invert:
        ratio = 1 - ratio
    return clamp(ratio * 100)


def score_diagnosed(flag: Any) -> Optional[float]:
    value = to_bool(flag)
    if value is None:
        return None
    return 40.0 if value else 100.0


def score_activity(minutes: Optional[float]) -> Optional[float]:
    if minutes is None or minutes < 0:
        return None
    return clamp(minutes / 30 * 100)


# ── Pillars ──────────────────────────────────────────────────────────────

def _function_scores(profile: UserProfile, snapshot: dict,
                     flow_snapshot: dict, logs: list[DailyLog]) -> tuple[list, list]:
    diagnoses = to_str_list(profile.diagnoses) + to_str_list(snapshot.get("diagnoses"))
    fertility_diagnosis = _choice_score(snapshot.get("fertility_diagnosis"), FERTILITY_DIAGNOSIS_SCORES)
    smoker = profile.smoker if to_str(profile.smoker) else flow_snapshot.get("smoker")
    cycle_length = profile.cycle_length or snapshot.get("cycle_length")
    static = [
        score_bmi(calculate_bmi(profile.weight, profile.height)),
        score_age(profile.age),
        score_diagnoses(diagnoses),
        fertility_diagnosis,
        score_smoking(smoker),
        score_cycle_length(cycle_length),
        score_regularity(snapshot.get("regularity_detail"), profile.cycle_regularity),
        score_pms(snapshot.get("pms_severity")),
        score_luteal_phase(snapshot.get("luteal_phase_days")),
        _choice_score(snapshot.get("fertile_mucus"), FERTILE_MUCUS_SCORES),
        _choice_score(snapshot.get("menstrual_bleeding"), MENSTRUAL_BLEEDING_SCORES),
    ]
    dynamic = [score_bbt_stability(logs)]
    return static, dynamic


def _food_scores(snapshot: dict, logs: list[DailyLog]) -> tuple[list, list]:
    static = [
        score_vegetables(to_float(snapshot.get("vegetable_servings"))),
        score_alcohol_answer(snapshot.get("alcohol_consumption")),
        score_fish(snapshot.get("fish_frequency")),
        score_sugary_drinks(snapshot.get("sugary_drinks_frequency")),
        score_coffee(snapshot.get("coffee_cups")),
        _letter_score(snapshot.get("fertility_supplements")),
        _letter_score(snapshot.get("eating_pattern")),
        _letter_score(snapshot.get("fat_type")),
        _letter_score(snapshot.get("antioxidants")),
        _letter_score(snapshot.get("carb_source")),
    ]
    dynamic = [
        score_vegetables(_log_average(logs, "veggie_servings")),
        score_alcohol_days(logs),
        score_water(_log_average(logs, "water_glasses")),
    ]
    return static, dynamic


def _flora_scores(snapshot: dict, flow_snapshot: dict, logs: list[DailyLog]) -> tuple[list, list]:
    symptoms = to_str_list(snapshot.get("digestive_symptoms"))
    static = [
        score_scale(snapshot.get("digestive_health"), 1, 7),
        _letter_score(snapshot.get("vaginal_health")),
        _letter_score(snapshot.get("antibiotics_last_year")),
        score_weekly_habit(snapshot.get("fermented_foods_frequency")),
        _letter_score(snapshot.get("food_intolerances")),
        clamp(100 - len(symptoms) * 15) if symptoms else None,
        score_diagnosed(snapshot.get("sibo_diagnosed")),
        score_diagnosed(snapshot.get("hpylori_diagnosed")),
        # sleep quantity is answered in the FLOW questionnaire but scored here
        score_sleep_hours(to_float(flow_snapshot.get("sleep_hours"))),
    ]
    dynamic = [score_sleep_hours(_log_average(logs, "sleep_hours", positive_only=True))]
    return static, dynamic


def _flow_scores(snapshot: dict, logs: list[DailyLog]) -> tuple[list, list]:
    relationships = to_bool(snapshot.get("healthy_relationships"))
    static = [
        score_scale(snapshot.get("stress_level"), 1, 7, invert=True),
        score_scale(snapshot.get("emotional_state"), 1, 7),
        score_scale(snapshot.get("sleep_quality"), 0, 4),
        score_weekly_habit(snapshot.get("relaxation_frequency")),
        score_scale(snapshot.get("libido"), 0, 4),
        None if relationships is None else (100.0 if relationships else 50.0),
        _letter_score(snapshot.get("morning_sunlight")),
        _letter_score(snapshot.get("endocrine_disruptors")),
        _letter_score(snapshot.get("bedtime_routine")),
    ]
    dynamic = [
        score_scale(_log_average(logs, "stress_level", positive_only=True), 1, 5, invert=True),
        score_scale(_log_average(logs, "sleep_quality", positive_only=True), 1, 5),
        score_activity(_log_average(logs, "activity_minutes")),
    ]
    return static, dynamic


def _pillar_score(static: list, dynamic: list, n_logs: int,
                  strategy: ScoreStrategy) -> Optional[int]:
    blended = strategy.blend(
        _mean(_scored(v) for v in static),
        _mean(_scored(v) for v in dynamic),
        n_logs,
        strategy.window_days,
    )
    if blended is None:
        return None
    return round_half_up(clamp(blended))


def total_score(pillar_scores: Iterable[Optional[int]],
                policy: MissingPillarPolicy) -> Optional[int]:
    scores = list(pillar_scores)
    if policy == MissingPillarPolicy.ZERO_FILL:
        return round_half_up(clamp(sum(s or 0 for s in scores) / len(PILLAR_ORDER)))
    scored = [s for s in scores if s is not None]
    if not scored:
        return None
    return round_half_up(clamp(sum(scored) / len(scored)))


def calculate_fertyscore(profile: Optional[UserProfile], logs: Iterable[DailyLog],
                         pillars: Optional[Mapping] = None,
                         strategy: Optional[ScoreStrategy] = None) -> FertyScoreResult:
    """Score a user from profile, daily logs and pillar snapshots.

    ``pillars`` maps PillarType (or its name) to a PillarSnapshot, a plain
    field dict, or None. Missing pillars and fields degrade to "no data".
    """
    strategy = strategy or ScoreStrategy()
    profile = profile or UserProfile(user_id="")
    recent = select_recent_logs(logs, strategy.window_days)
    n_logs = len(recent)

    function_fields = _fields(pillars, PillarType.FUNCTION)
    food_fields = _fields(pillars, PillarType.FOOD)
    flora_fields = _fields(pillars, PillarType.FLORA)
    flow_fields = _fields(pillars, PillarType.FLOW)

    function = _pillar_score(*_function_scores(profile, function_fields, flow_fields, recent),
                             n_logs, strategy)
    food = _pillar_score(*_food_scores(food_fields, recent), n_logs, strategy)
    flora = _pillar_score(*_flora_scores(flora_fields, flow_fields, recent), n_logs, strategy)
    flow = _pillar_score(*_flow_scores(flow_fields, recent), n_logs, strategy)

    total = total_score((function, food, flora, flow), strategy.missing_pillar_policy)
    logger.debug(
        f"FertyScore user={profile.user_id}: total={total} function={function} "
        f"food={food} flora={flora} flow={flow} logs={n_logs}"
    )
    return FertyScoreResult(total=total, function=function, food=food, flora=flora, flow=flow)
