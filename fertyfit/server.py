"""FastAPI server exposing the FertyFit scoring and notification core.

REST endpoints for profiles, daily logs, pillar questionnaires, the
FertyScore audit trail, rule triggers and the notification inbox. Every
request gets its own store objects over a shared Redis URL.
"""

from __future__ import annotations

import logging
from typing import Any, Optional

import redis
from fastapi import FastAPI, HTTPException, Query
from pydantic import BaseModel

from fertyfit.config.settings import LOG_LEVEL, REDIS_URL, SERVER_HOST, SERVER_PORT
from fertyfit.models.notification import RuleTrigger
from fertyfit.models.pillars import PillarType
from fertyfit.models.profile import DailyLog
from fertyfit.services.batch import run_daily_sweep
from fertyfit.services.notification_service import confirm_period, delay_period, run_trigger
from fertyfit.services.pillar_service import fetch_pillar_data, save_pillar_form
from fertyfit.services.profile_service import record_daily_log, update_profile
from fertyfit.services.score_service import recompute_score
from fertyfit.store.errors import NotFoundError, StoreError
from fertyfit.store.notification_store import NotificationStore
from fertyfit.store.pillar_store import PillarStore

logger = logging.getLogger(__name__)

app = FastAPI(title="FertyFit", description="Fertility scoring and rule-based notifications")


# ── Shared State ─────────────────────────────────────────────────────────

def _get_redis() -> redis.Redis:
    return redis.Redis.from_url(REDIS_URL, decode_responses=True)


def _stores() -> tuple[PillarStore, NotificationStore]:
    r = _get_redis()
    return PillarStore(r), NotificationStore(r)


def _parse_pillar(value: str) -> PillarType:
    try:
        return PillarType.parse(value)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown pillar: {value}")


def _parse_trigger(value: str) -> RuleTrigger:
    try:
        return RuleTrigger.parse(value)
    except ValueError:
        raise HTTPException(status_code=404, detail=f"Unknown trigger: {value}")


@app.get("/api/health")
async def health():
    r = _get_redis()
    try:
        r.ping()
        redis_ok = True
    except redis.RedisError:
        redis_ok = False
    return {"status": "ok", "redis": redis_ok}


# ── Profiles ─────────────────────────────────────────────────────────────

@app.get("/api/users/{user_id}/profile")
async def get_profile(user_id: str):
    store, _ = _stores()
    profile = store.get_profile(user_id)
    if profile is None:
        raise HTTPException(status_code=404, detail=f"Profile {user_id} not found")
    return profile.to_dict()


class ProfileRequest(BaseModel):
    name: Optional[str] = None
    age: Optional[int] = None
    weight: Optional[float] = None
    height: Optional[float] = None
    cycle_length: Optional[int] = None
    cycle_regularity: Optional[str] = None
    last_period_date: Optional[str] = None
    smoker: Optional[str] = None
    diagnoses: Optional[list[str]] = None


@app.put("/api/users/{user_id}/profile")
async def put_profile(user_id: str, req: ProfileRequest):
    """Create or update a profile. Only the fields sent are changed."""
    store, notifications = _stores()
    changes = req.model_dump(exclude_unset=True)
    try:
        outcome = update_profile(store, notifications, user_id, changes)
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return outcome.to_dict()


# ── Daily logs ───────────────────────────────────────────────────────────

class DailyLogRequest(BaseModel):
    date: str
    cycle_day: Optional[int] = None
    sleep_hours: Optional[float] = None
    sleep_quality: Optional[int] = None
    stress_level: Optional[int] = None
    water_glasses: Optional[int] = None
    veggie_servings: Optional[int] = None
    activity_minutes: Optional[int] = None
    sun_minutes: Optional[int] = None
    alcohol: Optional[bool] = None
    bbt: Optional[float] = None
    mucus: Optional[str] = None
    cervix_height: Optional[str] = None
    cervix_firmness: Optional[str] = None
    cervix_openness: Optional[str] = None
    lh_test: Optional[str] = None
    symptoms: list[str] = []
    sex: Optional[bool] = None


@app.post("/api/users/{user_id}/logs")
async def post_log(user_id: str, req: DailyLogRequest):
    store, notifications = _stores()
    log = DailyLog.from_dict({"user_id": user_id, **req.model_dump()})
    try:
        outcome = record_daily_log(store, notifications, log)
    except StoreError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    return outcome.to_dict()


@app.get("/api/users/{user_id}/logs")
async def get_logs(user_id: str, limit: int = Query(30, ge=1, le=365)):
    store, _ = _stores()
    return {"logs": [log.to_dict() for log in store.get_logs(user_id, limit)]}


# ── Pillars ──────────────────────────────────────────────────────────────

class PillarFormRequest(BaseModel):
    answers: dict[str, Any]


@app.post("/api/users/{user_id}/pillars/{pillar}")
async def post_pillar(user_id: str, pillar: str, req: PillarFormRequest):
    """Submit a questionnaire: upsert the snapshot, append history, rescore."""
    store, _ = _stores()
    outcome = save_pillar_form(store, user_id, _parse_pillar(pillar), req.answers)
    if not outcome.success:
        raise HTTPException(status_code=503, detail=outcome.error)
    return outcome.to_dict()


@app.get("/api/users/{user_id}/pillars/{pillar}")
async def get_pillar(user_id: str, pillar: str):
    store, _ = _stores()
    snapshot = fetch_pillar_data(store, user_id, _parse_pillar(pillar))
    if snapshot is None:
        raise HTTPException(status_code=404, detail=f"No {pillar.upper()} data for {user_id}")
    return snapshot.to_dict()


@app.get("/api/users/{user_id}/consultations")
async def get_consultations(user_id: str, form_type: Optional[str] = None):
    store, _ = _stores()
    if form_type is not None:
        form_type = _parse_pillar(form_type).value
    forms = store.list_consultation_forms(user_id, form_type)
    return {"forms": [f.to_dict() for f in forms]}


@app.post("/api/consultations/{form_id}/review")
async def review_consultation(form_id: int):
    store, _ = _stores()
    try:
        form = store.mark_consultation_reviewed(form_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return form.to_dict()


# ── FertyScore ───────────────────────────────────────────────────────────

@app.get("/api/users/{user_id}/score")
async def get_score(user_id: str, history: int = Query(10, ge=1, le=100)):
    store, _ = _stores()
    latest = store.get_latest_score(user_id)
    return {
        "latest": latest.to_dict() if latest else None,
        "display": latest.result.display() if latest else None,
        "history": [rec.to_dict() for rec in store.get_score_history(user_id, history)],
    }


@app.post("/api/users/{user_id}/score/recompute")
async def post_recompute(user_id: str):
    store, _ = _stores()
    outcome = recompute_score(user_id, "manual_recompute", store)
    if not outcome.ok:
        raise HTTPException(status_code=503, detail=outcome.error)
    return outcome.to_dict()


# ── Rules & notifications ────────────────────────────────────────────────

class TriggerRequest(BaseModel):
    previous_weight: Optional[float] = None


@app.post("/api/users/{user_id}/rules/{trigger}")
async def post_trigger(user_id: str, trigger: str, req: Optional[TriggerRequest] = None):
    store, notifications = _stores()
    previous_weight = req.previous_weight if req else None
    try:
        outcome = run_trigger(store, notifications, user_id, _parse_trigger(trigger),
                              previous_weight=previous_weight)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return outcome.to_dict()


class SweepRequest(BaseModel):
    user_ids: Optional[list[str]] = None


@app.post("/api/rules/daily-sweep")
async def post_daily_sweep(req: Optional[SweepRequest] = None):
    store, notifications = _stores()
    report = run_daily_sweep(store, notifications, user_ids=req.user_ids if req else None)
    return report.to_dict()


@app.get("/api/users/{user_id}/notifications")
async def get_notifications(user_id: str, unread_only: bool = False,
                            limit: int = Query(50, ge=1, le=200)):
    _, notifications = _stores()
    items = notifications.list_notifications(user_id, limit=limit, unread_only=unread_only)
    return {"notifications": [n.to_dict() for n in items]}


@app.post("/api/users/{user_id}/notifications/{notification_id}/read")
async def read_notification(user_id: str, notification_id: str):
    _, notifications = _stores()
    try:
        notification = notifications.mark_read(user_id, notification_id)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    return notification.to_dict()


# ── Period actions ───────────────────────────────────────────────────────

class PeriodConfirmRequest(BaseModel):
    date: Optional[str] = None


@app.post("/api/users/{user_id}/period/confirm")
async def post_period_confirm(user_id: str, req: Optional[PeriodConfirmRequest] = None):
    store, _ = _stores()
    try:
        profile = confirm_period(store, user_id, req.date if req else None)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    recompute_score(user_id, "period_confirmed", store)
    return profile.to_dict()


class PeriodDelayRequest(BaseModel):
    days: int = 1


@app.post("/api/users/{user_id}/period/delay")
async def post_period_delay(user_id: str, req: PeriodDelayRequest):
    store, _ = _stores()
    try:
        profile = delay_period(store, user_id, req.days)
    except NotFoundError as exc:
        raise HTTPException(status_code=404, detail=str(exc))
    except ValueError as exc:
        raise HTTPException(status_code=400, detail=str(exc))
    recompute_score(user_id, "period_delayed", store)
    return profile.to_dict()


if __name__ == "__main__":
    import uvicorn
    logging.basicConfig(level=LOG_LEVEL)
    uvicorn.run(app, host=SERVER_HOST, port=SERVER_PORT)
