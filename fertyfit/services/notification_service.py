"""Run rule triggers for a user and handle period confirmations."""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any, Iterable, Optional

import redis

from fertyfit.config.settings import DEFAULT_CYCLE_LENGTH, PERIOD_HISTORY_MAX, RULE_CONTEXT_LOG_LIMIT
from fertyfit.engine.cycle import average_cycle_length, is_plausible_cycle_length, parse_local_date
from fertyfit.engine.rule_context import RuleContext, build_rule_context
from fertyfit.engine.rule_engine import RuleEvaluation, evaluate_rules
from fertyfit.engine.rules import RULES, TRIGGER_MAX
from fertyfit.models.notification import Rule, RuleTrigger
from fertyfit.models.profile import UserProfile
from fertyfit.store.errors import NotFoundError, StoreError
from fertyfit.store.notification_store import NotificationStore
from fertyfit.store.pillar_store import PillarStore

logger = logging.getLogger(__name__)


@dataclass
class TriggerOutcome:
    user_id: str
    trigger: RuleTrigger
    evaluation: RuleEvaluation
    notifications: list = field(default_factory=list)
    capped_rule_ids: list = field(default_factory=list)
    dispatch_failed_rule_ids: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "trigger": self.trigger.value,
            "emitted": [n.to_dict() for n in self.notifications],
            "failed_rule_ids": list(self.evaluation.failed_rule_ids),
            "capped_rule_ids": list(self.capped_rule_ids),
            "dispatch_failed_rule_ids": list(self.dispatch_failed_rule_ids),
        }


def _require_profile(store: PillarStore, user_id: str) -> UserProfile:
    if not user_id:
        raise ValueError("user_id is required")
    profile = store.get_profile(user_id)
    if profile is None:
        raise NotFoundError(f"Profile {user_id} not found")
    return profile


def load_rule_context(store: PillarStore, user_id: str,
                      previous_weight: Optional[float] = None,
                      today: Optional[date] = None, now: Optional[datetime] = None,
                      log_limit: int = RULE_CONTEXT_LOG_LIMIT) -> RuleContext:
    profile = _require_profile(store, user_id)
    return build_rule_context(
        profile,
        store.get_logs(user_id, log_limit),
        previous_weight=previous_weight,
        pillar_states=store.pillar_states(user_id),
        today=today,
        now=now,
    )


def run_trigger(store: PillarStore, notifications: NotificationStore, user_id: str,
                trigger: RuleTrigger, previous_weight: Optional[float] = None,
                catalog: Iterable[Rule] = RULES, today: Optional[date] = None,
                now: Optional[datetime] = None,
                max_notifications: Optional[int] = None) -> TriggerOutcome:
    """Evaluate ``trigger`` for one user and dispatch what fires.

    At most ``max_notifications`` (default ``TRIGGER_MAX`` for the trigger)
    are dispatched, the first ones in catalog order. Capped rules are not
    recorded as fired and stay eligible for the next pass.

    Reading the user's state may raise. A dispatch failure only drops that one
    notification.
    """
    context = load_rule_context(store, user_id, previous_weight, today, now)
    evaluation = evaluate_rules(catalog, trigger, context, notifications, now or context.now)

    outcome = TriggerOutcome(user_id=user_id, trigger=trigger, evaluation=evaluation)
    limit = max_notifications if max_notifications is not None else TRIGGER_MAX.get(trigger)
    emissions = list(evaluation.emissions)
    if limit is not None and len(emissions) > limit:
        outcome.capped_rule_ids = [e.rule_id for e in emissions[limit:]]
        emissions = emissions[:limit]
        logger.info(f"{trigger.value} for {user_id} capped at {limit}, "
                    f"held back {outcome.capped_rule_ids}")
    for emission in emissions:
        try:
            notification = notifications.emit(user_id, emission, now or context.now)
        except (redis.RedisError, StoreError) as exc:
            logger.warning(f"Could not dispatch {emission.rule_id} to {user_id}: {exc}")
            outcome.dispatch_failed_rule_ids.append(emission.rule_id)
            continue
        if notification is not None:
            outcome.notifications.append(notification)
    return outcome


# ── Period confirmation ──────────────────────────────────────────────────

def confirm_period(store: PillarStore, user_id: str, period_date: Any = None,
                   today: Optional[date] = None) -> UserProfile:
    """Record that a period started on ``period_date`` (default today).

    The cycle length becomes the average gap of the recorded history when at
    least two periods are known and the average is plausible (21-45 days).
    Otherwise the current length, or the default, is kept.
    """
    profile = _require_profile(store, user_id)
    started = parse_local_date(period_date) if period_date is not None else (today or date.today())
    if started is None:
        raise ValueError(f"Invalid period date: {period_date!r}")

    history = {d for d in (parse_local_date(v) for v in profile.period_history) if d}
    history.add(started)
    recent = sorted(history, reverse=True)[:PERIOD_HISTORY_MAX]
    profile.period_history = [d.isoformat() for d in recent]

    average = average_cycle_length(recent)
    if is_plausible_cycle_length(average):
        profile.cycle_length = average
    else:
        profile.cycle_length = profile.cycle_length or DEFAULT_CYCLE_LENGTH
    profile.last_period_date = recent[0].isoformat()
    store.save_profile(profile)
    logger.info(f"Period confirmed for {user_id} on {started}, cycle length {profile.cycle_length}")
    return profile


def delay_period(store: PillarStore, user_id: str, days: int,
                 fallback_length: int = DEFAULT_CYCLE_LENGTH) -> UserProfile:
    """The period has not arrived yet: stretch the cycle by ``days``."""
    if days <= 0:
        raise ValueError("days must be positive")
    profile = _require_profile(store, user_id)
    profile.cycle_length = (profile.cycle_length or fallback_length) + days
    store.save_profile(profile)
    logger.info(f"Period delayed {days}d for {user_id}, cycle length {profile.cycle_length}")
    return profile
