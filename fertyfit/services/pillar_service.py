"""Questionnaire submission and pillar reads.

A submission is saved twice: the pillar snapshot is upserted (current state)
and a consultation form is appended (history). Only the snapshot write
decides whether the submission succeeded. The history append and the score
recompute that follow are best effort and only produce warnings.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from typing import Iterable, Optional, Union

import redis

from fertyfit.config.settings import SCORE_LOG_FETCH_LIMIT
from fertyfit.engine.fertyscore import ScoreStrategy
from fertyfit.models.consultation import ConsultationForm, FormAnswer
from fertyfit.models.fields import to_float
from fertyfit.models.pillars import PillarSnapshot, PillarType, normalize_answers, question_text
from fertyfit.models.profile import DailyLog
from fertyfit.models.score import FertyScoreResult
from fertyfit.services.score_service import recompute_score
from fertyfit.store.errors import StoreError
from fertyfit.store.pillar_store import PillarStore

logger = logging.getLogger(__name__)


@dataclass
class PillarSaveOutcome:
    success: bool
    snapshot: Optional[PillarSnapshot] = None
    form: Optional[ConsultationForm] = None
    score: Optional[FertyScoreResult] = None
    error: Optional[str] = None
    warnings: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "success": self.success,
            "snapshot": self.snapshot.to_dict() if self.snapshot else None,
            "form_id": self.form.form_id if self.form else None,
            "score": self.score.to_dict() if self.score else None,
            "error": self.error,
            "warnings": list(self.warnings),
        }


def calculate_averages(logs: Iterable[DailyLog]) -> dict:
    """Log averages stored with each submission, one decimal, None without data."""
    logs = list(logs or ())

    def _avg(attr: str) -> Optional[float]:
        values = [v for v in (to_float(getattr(log, attr)) for log in logs) if v is not None]
        return round(sum(values) / len(values), 1) if values else None

    return {
        "sleep": _avg("sleep_hours"),
        "veggies": _avg("veggie_servings"),
        "water": _avg("water_glasses"),
        "stress": _avg("stress_level"),
    }


def format_answers(pillar: PillarType, answers: dict) -> list[FormAnswer]:
    """Non-empty answers in submission order, with their question text."""
    formatted = []
    for question_id, answer in answers.items():
        if answer is None or answer == "" or answer == []:
            continue
        formatted.append(FormAnswer(
            question_id=question_id,
            question=question_text(pillar, question_id),
            answer=answer,
        ))
    return formatted


def _sync_cycle_length(store: PillarStore, user_id: str, fields: dict) -> None:
    """The FUNCTION questionnaire owns the profile's cycle length."""
    cycle_length = fields.get("cycle_length")
    if not cycle_length:
        return
    profile = store.get_profile(user_id)
    if profile is None or profile.cycle_length == cycle_length:
        return
    profile.cycle_length = cycle_length
    store.save_profile(profile)


def save_pillar_form(store: PillarStore, user_id: str, pillar: Union[PillarType, str],
                     answers: dict, formatted_answers: Optional[list[FormAnswer]] = None,
                     logs: Optional[list[DailyLog]] = None,
                     strategy: Optional[ScoreStrategy] = None,
                     recompute: bool = True) -> PillarSaveOutcome:
    if not user_id:
        raise ValueError("user_id is required")
    if not isinstance(pillar, PillarType):
        pillar = PillarType.parse(pillar)

    fields = normalize_answers(pillar, answers or {})
    try:
        snapshot = store.upsert_pillar_snapshot(user_id, pillar, fields)
    except (redis.RedisError, StoreError) as exc:
        logger.error(f"Error saving {pillar.value} snapshot for {user_id}: {exc}")
        return PillarSaveOutcome(success=False, error=str(exc))

    warnings = []
    form = None
    try:
        if logs is None:
            logs = store.get_logs(user_id, SCORE_LOG_FETCH_LIMIT)
        form = store.append_consultation_form(ConsultationForm(
            user_id=user_id,
            form_type=pillar.value,
            answers=formatted_answers or format_answers(pillar, answers or {}),
            snapshot_stats=calculate_averages(logs),
        ))
    except (redis.RedisError, StoreError) as exc:
        logger.warning(f"{pillar.value} data saved for {user_id} but historical record failed: {exc}")
        warnings.append("history_not_saved")

    if pillar == PillarType.FUNCTION:
        try:
            _sync_cycle_length(store, user_id, fields)
        except (redis.RedisError, StoreError) as exc:
            logger.warning(f"Could not sync cycle length to profile for {user_id}: {exc}")
            warnings.append("profile_not_synced")

    score = None
    if recompute:
        outcome = recompute_score(user_id, f"pillar_{pillar.value.lower()}_update", store, strategy)
        if outcome.ok:
            score = outcome.result
        else:
            warnings.append("score_not_updated")

    return PillarSaveOutcome(success=True, snapshot=snapshot, form=form, score=score,
                             warnings=warnings)


def fetch_pillar_data(store: PillarStore, user_id: str,
                      pillar: Union[PillarType, str]) -> Optional[PillarSnapshot]:
    """Current snapshot, or None when missing or unreadable."""
    if not isinstance(pillar, PillarType):
        pillar = PillarType.parse(pillar)
    try:
        return store.get_pillar_snapshot(user_id, pillar)
    except (redis.RedisError, StoreError):
        logger.exception(f"Error fetching {pillar.value} data for {user_id}")
        return None
