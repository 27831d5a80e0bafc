"""Profile edits and daily log entry, with their score and rule side effects."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Optional

import redis

from fertyfit.models.notification import RuleTrigger
from fertyfit.models.profile import DailyLog, UserProfile
from fertyfit.services.notification_service import TriggerOutcome, run_trigger
from fertyfit.services.score_service import ScoreRecomputeOutcome, recompute_score
from fertyfit.store.errors import StoreError
from fertyfit.store.notification_store import NotificationStore
from fertyfit.store.pillar_store import PillarStore

logger = logging.getLogger(__name__)

PROFILE_FIELDS = ("name", "age", "weight", "height", "cycle_length", "cycle_regularity",
                  "last_period_date", "smoker", "diagnoses")


@dataclass
class MutationOutcome:
    record: object
    score: Optional[ScoreRecomputeOutcome] = None
    triggers: list = field(default_factory=list)
    warnings: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "record": self.record.to_dict(),
            "score": self.score.to_dict() if self.score else None,
            "notifications": [n.to_dict() for t in self.triggers for n in t.notifications],
            "warnings": list(self.warnings),
        }


def _fire(store: PillarStore, notifications: NotificationStore, user_id: str,
          trigger: RuleTrigger, outcome: MutationOutcome, **kwargs) -> Optional[TriggerOutcome]:
    try:
        result = run_trigger(store, notifications, user_id, trigger, **kwargs)
    except (redis.RedisError, StoreError) as exc:
        logger.warning(f"{trigger.value} rules not evaluated for {user_id}: {exc}")
        outcome.warnings.append(f"rules_not_evaluated:{trigger.value}")
        return None
    outcome.triggers.append(result)
    return result


def update_profile(store: PillarStore, notifications: NotificationStore, user_id: str,
                   changes: dict, today: Optional[date] = None,
                   now: Optional[datetime] = None) -> MutationOutcome:
    """Create or update a profile.

    A weight change fires WEIGHT_UPDATE rules with the previous weight. Any
    change recomputes the score with reason ``profile_update``.
    """
    if not user_id:
        raise ValueError("user_id is required")
    existing = store.get_profile(user_id)
    data = existing.to_dict() if existing else {"user_id": user_id}
    data.update({k: v for k, v in changes.items() if k in PROFILE_FIELDS})
    profile = UserProfile.from_dict(data)
    store.save_profile(profile)

    outcome = MutationOutcome(record=profile)
    previous_weight = existing.weight if existing else None
    if previous_weight and profile.weight and previous_weight != profile.weight:
        _fire(store, notifications, user_id, RuleTrigger.WEIGHT_UPDATE, outcome,
              previous_weight=previous_weight, today=today, now=now)
    if existing is None or (existing.age != profile.age and profile.age is not None):
        _fire(store, notifications, user_id, RuleTrigger.AGE_CHECK, outcome, today=today, now=now)

    outcome.score = recompute_score(user_id, "profile_update", store, now=now)
    if not outcome.score.ok:
        outcome.warnings.append("score_not_updated")
    return outcome


def record_daily_log(store: PillarStore, notifications: NotificationStore, log: DailyLog,
                     today: Optional[date] = None,
                     now: Optional[datetime] = None) -> MutationOutcome:
    """Save a daily log, fire DAILY_LOG_SAVED rules and recompute the score."""
    if not log.user_id:
        raise ValueError("log.user_id is required")
    store.upsert_log(log)
    outcome = MutationOutcome(record=log)
    if store.get_profile(log.user_id) is not None:
        _fire(store, notifications, log.user_id, RuleTrigger.DAILY_LOG_SAVED, outcome,
              today=today, now=now)
    outcome.score = recompute_score(log.user_id, "daily_log", store, now=now)
    if not outcome.score.ok:
        outcome.warnings.append("score_not_updated")
    return outcome
