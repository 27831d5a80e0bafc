"""Redis-backed notification dispatcher.

Persists emitted notifications and owns the cooldown records the rule engine
reads. A firing is recorded as a single HSET of ``rule_id -> timestamp`` in the
user's cooldown hash, an atomic last-write-wins upsert per (user, rule).

Keys:
  notif:cooldown:{user}          hash      rule id -> last firing (ISO 8601)
  notif:count:{user}:{date}      string    notifications emitted that day
  notification:{id}              string    JSON notification
  notifications:{user}           list      notification ids, newest first
"""

from __future__ import annotations

import logging
from datetime import datetime, timedelta, timezone
from typing import Optional

import redis

from fertyfit.config.settings import DAILY_NOTIFICATION_LIMIT
from fertyfit.models.notification import Notification, RuleEmission
from fertyfit.store.errors import NotFoundError, StoreError

logger = logging.getLogger(__name__)

COOLDOWN_PREFIX = "notif:cooldown:"
DAILY_COUNT_PREFIX = "notif:count:"
NOTIFICATION_PREFIX = "notification:"
USER_NOTIFICATIONS_PREFIX = "notifications:"
NOTIFICATION_SEQ_KEY = "notification:seq"
DAILY_COUNT_TTL_SECONDS = 2 * 24 * 3600


def _as_utc(value: datetime) -> datetime:
    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value


class NotificationStore:
    def __init__(self, r: redis.Redis, daily_limit: int = DAILY_NOTIFICATION_LIMIT):
        self.r = r
        self.daily_limit = daily_limit

    # ── Cooldowns ────────────────────────────────────────────────────────

    def last_fired_at(self, user_id: str, rule_id: str) -> Optional[datetime]:
        raw = self.r.hget(f"{COOLDOWN_PREFIX}{user_id}", rule_id)
        if not raw:
            return None
        try:
            return _as_utc(datetime.fromisoformat(raw))
        except ValueError as exc:
            raise StoreError(f"Corrupt cooldown record {user_id}/{rule_id}") from exc

    def has_fired_within_cooldown(self, user_id: str, rule_id: str, cooldown_days: int,
                                  now: Optional[datetime] = None) -> bool:
        """True while ``now - last firing < cooldown_days``."""
        if cooldown_days <= 0:
            return False
        last = self.last_fired_at(user_id, rule_id)
        if last is None:
            return False
        now = _as_utc(now or datetime.now(timezone.utc))
        return now - last < timedelta(days=cooldown_days)

    def record_firing(self, user_id: str, rule_id: str, now: Optional[datetime] = None) -> None:
        fired_at = _as_utc(now or datetime.now(timezone.utc))
        self.r.hset(f"{COOLDOWN_PREFIX}{user_id}", rule_id, fired_at.isoformat())

    # ── Dispatch ─────────────────────────────────────────────────────────

    def emitted_today(self, user_id: str, now: Optional[datetime] = None) -> int:
        day = _as_utc(now or datetime.now(timezone.utc)).date().isoformat()
        return int(self.r.get(f"{DAILY_COUNT_PREFIX}{user_id}:{day}") or 0)

    def emit(self, user_id: str, emission: RuleEmission,
             now: Optional[datetime] = None) -> Optional[Notification]:
        """Persist a notification and record the rule firing.

        Returns None without writing anything once the user has reached the
        daily limit. The slot is claimed with INCR before anything is written,
        so concurrent emits cannot overshoot the limit.
        """
        if not user_id:
            raise ValueError("user_id is required")
        now = _as_utc(now or datetime.now(timezone.utc))
        count_key = f"{DAILY_COUNT_PREFIX}{user_id}:{now.date().isoformat()}"
        pipe = self.r.pipeline(transaction=True)
        pipe.incr(count_key)
        pipe.expire(count_key, DAILY_COUNT_TTL_SECONDS)
        claimed, _ = pipe.execute()
        if int(claimed) > self.daily_limit:
            self.r.decr(count_key)
            logger.warning(
                f"Daily notification limit ({self.daily_limit}) reached for {user_id}, "
                f"dropping {emission.rule_id}"
            )
            return None

        try:
            notification_id = str(self.r.incr(NOTIFICATION_SEQ_KEY))
            notification = Notification.from_emission(notification_id, user_id, emission,
                                                      created_at=now.isoformat())
            pipe = self.r.pipeline(transaction=True)
            pipe.set(f"{NOTIFICATION_PREFIX}{notification_id}", notification.to_json())
            pipe.lpush(f"{USER_NOTIFICATIONS_PREFIX}{user_id}", notification_id)
            pipe.hset(f"{COOLDOWN_PREFIX}{user_id}", emission.rule_id, now.isoformat())
            pipe.execute()
        except redis.RedisError:
            self.r.decr(count_key)
            raise
        logger.info(f"Emitted {emission.rule_id} to {user_id} (notification {notification_id})")
        return notification

    # ── Reads ────────────────────────────────────────────────────────────

    def get_notification(self, notification_id: str) -> Optional[Notification]:
        raw = self.r.get(f"{NOTIFICATION_PREFIX}{notification_id}")
        if raw is None:
            return None
        try:
            return Notification.from_json(raw)
        except (ValueError, TypeError) as exc:
            raise StoreError(f"Corrupt notification {notification_id}") from exc

    def list_notifications(self, user_id: str, limit: int = 50,
                           unread_only: bool = False) -> list[Notification]:
        ids = self.r.lrange(f"{USER_NOTIFICATIONS_PREFIX}{user_id}", 0, -1)
        notifications = []
        for notification_id in ids:
            notification = self.get_notification(notification_id)
            if notification is None or (unread_only and notification.is_read):
                continue
            notifications.append(notification)
            if len(notifications) >= limit:
                break
        return notifications

    def mark_read(self, user_id: str, notification_id: str) -> Notification:
        notification = self.get_notification(notification_id)
        if notification is None or notification.user_id != user_id:
            raise NotFoundError(f"Notification {notification_id} not found for {user_id}")
        notification.is_read = True
        self.r.set(f"{NOTIFICATION_PREFIX}{notification_id}", notification.to_json())
        return notification
