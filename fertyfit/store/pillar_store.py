"""Redis-backed pillar data store.

Holds profiles, daily logs, pillar snapshots, the consultation form history
and the FertyScore audit trail. The client is injected; nothing here creates
its own connection.

Keys:
  profile:{user}                 hash      profile fields
  profile:index                  set       known user ids
  dailylog:{user}:{date}         hash      one log per user and date
  dailylog:index:{user}          zset      date -> ordinal, newest = highest
  pillar:{pillar}:{user}         hash      JSON-encoded snapshot fields
  consultation:{form_id}         string    JSON form record
  consultation:user:{user}       list      form ids, submission order
  fertyscore:history:{user}      list      JSON score records, newest first, capped
  fertyscore:latest:{user}       string    JSON score record
"""

from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Optional

import redis

from fertyfit.config.settings import SCORE_HISTORY_MAX
from fertyfit.models.consultation import (
    CONSULTATION_INDEX_PREFIX,
    CONSULTATION_PREFIX,
    CONSULTATION_SEQ_KEY,
    ConsultationForm,
    FormStatus,
)
from fertyfit.models.pillars import PillarSnapshot, PillarState, PillarType, pillar_state
from fertyfit.models.profile import (
    DAILY_LOG_INDEX_PREFIX,
    PROFILE_INDEX_KEY,
    DailyLog,
    UserProfile,
)
from fertyfit.models.score import (
    SCORE_HISTORY_PREFIX,
    SCORE_LATEST_PREFIX,
    FertyScoreResult,
    ScoreRecord,
)
from fertyfit.store.errors import NotFoundError, StoreError

logger = logging.getLogger(__name__)


class PillarStore:
    def __init__(self, r: redis.Redis, score_history_max: int = SCORE_HISTORY_MAX):
        self.r = r
        self.score_history_max = score_history_max

    # ── Profiles ─────────────────────────────────────────────────────────

    def get_profile(self, user_id: str) -> Optional[UserProfile]:
        return UserProfile.from_redis(self.r, user_id)

    def save_profile(self, profile: UserProfile) -> UserProfile:
        if not profile.user_id:
            raise ValueError("profile.user_id is required")
        profile.to_redis(self.r)
        return profile

    def list_user_ids(self) -> list[str]:
        return sorted(self.r.smembers(PROFILE_INDEX_KEY))

    # ── Daily logs ───────────────────────────────────────────────────────

    def upsert_log(self, log: DailyLog) -> DailyLog:
        """Write a log, replacing any earlier log for the same date."""
        try:
            log.to_redis(self.r)
        except ValueError as exc:
            raise StoreError(f"Invalid log date {log.date!r}") from exc
        return log

    def get_logs(self, user_id: str, limit: int = 30) -> list[DailyLog]:
        """Most recent ``limit`` logs, newest date first."""
        if limit <= 0:
            return []
        dates = self.r.zrevrange(f"{DAILY_LOG_INDEX_PREFIX}{user_id}", 0, limit - 1)
        logs = []
        for log_date in dates:
            log = DailyLog.from_redis(self.r, user_id, log_date)
            if log:
                logs.append(log)
        return logs

    # ── Pillar snapshots ─────────────────────────────────────────────────

    def get_pillar_snapshot(self, user_id: str, pillar: PillarType) -> Optional[PillarSnapshot]:
        try:
            return PillarSnapshot.from_redis(self.r, user_id, pillar)
        except ValueError as exc:
            raise StoreError(f"Corrupt {pillar.value} snapshot for {user_id}") from exc

    def get_pillar_snapshots(self, user_id: str) -> dict[PillarType, Optional[PillarSnapshot]]:
        return {pillar: self.get_pillar_snapshot(user_id, pillar) for pillar in PillarType}

    def upsert_pillar_snapshot(self, user_id: str, pillar: PillarType,
                               fields: dict) -> PillarSnapshot:
        snapshot = PillarSnapshot(user_id=user_id, pillar=pillar, fields=dict(fields))
        snapshot.to_redis(self.r)
        return snapshot

    def available_pillars(self, user_id: str) -> list[PillarType]:
        return [p for p in PillarType if self.r.exists(PillarSnapshot.redis_key(user_id, p))]

    def pillar_states(self, user_id: str) -> dict[PillarType, str]:
        """Questionnaire progress per pillar; an unreadable snapshot counts as not started."""
        states = {}
        for pillar in PillarType:
            try:
                states[pillar] = pillar_state(self.get_pillar_snapshot(user_id, pillar))
            except StoreError as exc:
                logger.warning(f"{exc}, treating as not started")
                states[pillar] = PillarState.NOT_STARTED
        return states

    # ── Consultation forms ───────────────────────────────────────────────

    def append_consultation_form(self, form: ConsultationForm) -> ConsultationForm:
        form.form_id = int(self.r.incr(CONSULTATION_SEQ_KEY))
        pipe = self.r.pipeline(transaction=True)
        pipe.set(f"{CONSULTATION_PREFIX}{form.form_id}", form.to_json())
        pipe.rpush(f"{CONSULTATION_INDEX_PREFIX}{form.user_id}", form.form_id)
        pipe.execute()
        return form

    def get_consultation_form(self, form_id: int) -> Optional[ConsultationForm]:
        raw = self.r.get(f"{CONSULTATION_PREFIX}{form_id}")
        if raw is None:
            return None
        try:
            return ConsultationForm.from_json(raw)
        except (ValueError, TypeError) as exc:
            raise StoreError(f"Corrupt consultation form {form_id}") from exc

    def list_consultation_forms(self, user_id: str,
                                form_type: Optional[str] = None) -> list[ConsultationForm]:
        forms = []
        for form_id in self.r.lrange(f"{CONSULTATION_INDEX_PREFIX}{user_id}", 0, -1):
            form = self.get_consultation_form(form_id)
            if form and (form_type is None or form.form_type == form_type):
                forms.append(form)
        return forms

    def mark_consultation_reviewed(self, form_id: int) -> ConsultationForm:
        """The only mutation allowed on a submitted form."""
        form = self.get_consultation_form(form_id)
        if form is None:
            raise NotFoundError(f"Consultation form {form_id} not found")
        form.status = FormStatus.REVIEWED
        form.reviewed_at = datetime.now(timezone.utc).isoformat()
        self.r.set(f"{CONSULTATION_PREFIX}{form_id}", form.to_json())
        return form

    # ── FertyScore audit trail ───────────────────────────────────────────

    def save_score_result(self, user_id: str, result: FertyScoreResult, reason: str,
                          computed_at: Optional[str] = None) -> ScoreRecord:
        record = ScoreRecord(
            user_id=user_id,
            result=result,
            reason=reason,
            computed_at=computed_at or datetime.now(timezone.utc).isoformat(),
        )
        raw = record.to_json()
        pipe = self.r.pipeline(transaction=True)
        pipe.lpush(f"{SCORE_HISTORY_PREFIX}{user_id}", raw)
        pipe.ltrim(f"{SCORE_HISTORY_PREFIX}{user_id}", 0, self.score_history_max - 1)
        pipe.set(f"{SCORE_LATEST_PREFIX}{user_id}", raw)
        pipe.execute()
        logger.info(f"Saved FertyScore for {user_id} ({reason}): {result.to_dict()}")
        return record

    def get_latest_score(self, user_id: str) -> Optional[ScoreRecord]:
        raw = self.r.get(f"{SCORE_LATEST_PREFIX}{user_id}")
        return self._parse_score(raw) if raw else None

    def get_score_history(self, user_id: str, limit: int = 20) -> list[ScoreRecord]:
        raws = self.r.lrange(f"{SCORE_HISTORY_PREFIX}{user_id}", 0, max(limit, 1) - 1)
        return [self._parse_score(raw) for raw in raws]

    @staticmethod
    def _parse_score(raw: str) -> ScoreRecord:
        try:
            return ScoreRecord.from_json(raw)
        except (ValueError, KeyError, TypeError) as exc:
            raise StoreError("Corrupt FertyScore record") from exc
