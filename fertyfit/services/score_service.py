"""Score persistence trigger.

Recomputes a user's FertyScore from fresh store reads and appends it to the
audit trail with a change reason. Called after every mutation that can move
the score. It never raises on store failures: the mutation that triggered it
has already been committed, so a failed recompute is a logged soft failure.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Optional

import redis

from fertyfit.config.settings import SCORE_LOG_FETCH_LIMIT
from fertyfit.engine.fertyscore import ScoreStrategy, calculate_fertyscore
from fertyfit.models.profile import UserProfile
from fertyfit.models.score import FertyScoreResult, ScoreRecord
from fertyfit.store.errors import StoreError
from fertyfit.store.pillar_store import PillarStore

logger = logging.getLogger(__name__)


@dataclass
class ScoreRecomputeOutcome:
    ok: bool
    result: Optional[FertyScoreResult] = None
    record: Optional[ScoreRecord] = None
    error: Optional[str] = None

    def to_dict(self) -> dict:
        return {
            "ok": self.ok,
            "result": self.result.to_dict() if self.result else None,
            "computed_at": self.record.computed_at if self.record else None,
            "error": self.error,
        }


def compute_score(user_id: str, store: PillarStore,
                  strategy: Optional[ScoreStrategy] = None,
                  log_limit: int = SCORE_LOG_FETCH_LIMIT) -> FertyScoreResult:
    """Read profile, logs and all four snapshots, then score. Store errors propagate."""
    profile = store.get_profile(user_id) or UserProfile(user_id=user_id)
    logs = store.get_logs(user_id, log_limit)
    pillars = store.get_pillar_snapshots(user_id)
    return calculate_fertyscore(profile, logs, pillars, strategy)


def recompute_score(user_id: str, reason: str, store: PillarStore,
                    strategy: Optional[ScoreStrategy] = None,
                    log_limit: int = SCORE_LOG_FETCH_LIMIT,
                    now: Optional[datetime] = None) -> ScoreRecomputeOutcome:
    if not user_id:
        raise ValueError("user_id is required")

    try:
        result = compute_score(user_id, store, strategy, log_limit)
    except (redis.RedisError, StoreError) as exc:
        logger.warning(f"FertyScore recompute ({reason}) failed reading data for {user_id}: {exc}")
        return ScoreRecomputeOutcome(ok=False, error=str(exc))

    computed_at = (now or datetime.now(timezone.utc)).isoformat()
    try:
        record = store.save_score_result(user_id, result, reason, computed_at=computed_at)
    except (redis.RedisError, StoreError) as exc:
        logger.warning(f"FertyScore computed but not saved for {user_id} ({reason}): {exc}")
        return ScoreRecomputeOutcome(ok=False, result=result, error=str(exc))

    return ScoreRecomputeOutcome(ok=True, result=result, record=record)
