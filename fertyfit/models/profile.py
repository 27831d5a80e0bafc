"""User profile and daily log models.

Both are Redis hashes. Lists are JSON-encoded, absent values are simply not
written so that a read returns ``None`` for them instead of a zero.
"""

from __future__ import annotations

import json
from dataclasses import dataclass, field, asdict
from datetime import date, datetime, timezone
from typing import Optional

import redis

from fertyfit.models.fields import to_bool, to_float, to_int, to_str_list

PROFILE_PREFIX = "profile:"
PROFILE_INDEX_KEY = "profile:index"
DAILY_LOG_PREFIX = "dailylog:"
DAILY_LOG_INDEX_PREFIX = "dailylog:index:"
DAILY_LOG_SEQ_KEY = "dailylog:seq"


def _utcnow() -> str:
    return datetime.now(timezone.utc).isoformat()


def _hash_mapping(data: dict, list_fields: tuple[str, ...]) -> dict:
    mapping = {}
    for key, value in data.items():
        if value is None:
            continue
        if key in list_fields:
            mapping[key] = json.dumps(value)
        elif isinstance(value, bool):
            mapping[key] = "1" if value else "0"
        else:
            mapping[key] = str(value)
    return mapping


def _decode(data: dict) -> dict:
    return {k.decode() if isinstance(k, bytes) else k:
            v.decode() if isinstance(v, bytes) else v
            for k, v in data.items()}


def _load_list(value) -> list:
    if isinstance(value, str):
        try:
            value = json.loads(value)
        except ValueError:
            return to_str_list(value)
    return to_str_list(value)


class CycleRegularity:
    REGULAR = "Regular"
    IRREGULAR = "Irregular"


@dataclass
class UserProfile:
    user_id: str
    name: str = ""
    age: Optional[int] = None
    weight: Optional[float] = None           # kg
    height: Optional[float] = None           # cm, or m for legacy rows
    cycle_length: Optional[int] = None       # days
    cycle_regularity: Optional[str] = None   # CycleRegularity
    last_period_date: Optional[str] = None   # YYYY-MM-DD
    smoker: Optional[str] = None
    diagnoses: list = field(default_factory=list)
    period_history: list = field(default_factory=list)  # newest first
    created_at: str = field(default_factory=_utcnow)
    updated_at: str = field(default_factory=_utcnow)

    _LIST_FIELDS = ("diagnoses", "period_history")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> UserProfile:
        data = dict(data)
        for list_field in cls._LIST_FIELDS:
            if list_field in data:
                data[list_field] = _load_list(data[list_field])
        for int_field in ("age", "cycle_length"):
            if int_field in data:
                data[int_field] = to_int(data[int_field])
        for float_field in ("weight", "height"):
            if float_field in data:
                data[float_field] = to_float(data[float_field])
        for str_field in ("cycle_regularity", "last_period_date", "smoker"):
            if data.get(str_field) == "":
                data[str_field] = None
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def to_redis(self, r: redis.Redis) -> None:
        """Replace the profile hash and register the user in the index."""
        key = f"{PROFILE_PREFIX}{self.user_id}"
        self.updated_at = _utcnow()
        pipe = r.pipeline(transaction=True)
        pipe.delete(key)
        pipe.hset(key, mapping=_hash_mapping(self.to_dict(), self._LIST_FIELDS))
        pipe.sadd(PROFILE_INDEX_KEY, self.user_id)
        pipe.execute()

    @classmethod
    def from_redis(cls, r: redis.Redis, user_id: str) -> Optional[UserProfile]:
        data = r.hgetall(f"{PROFILE_PREFIX}{user_id}")
        if not data:
            return None
        return cls.from_dict(_decode(data))


@dataclass
class DailyLog:
    user_id: str
    date: str                                # YYYY-MM-DD, unique per user
    log_id: int = 0                          # assigned on write, tie-break
    cycle_day: Optional[int] = None
    sleep_hours: Optional[float] = None
    sleep_quality: Optional[int] = None      # 1-5
    stress_level: Optional[int] = None       # 1-5
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
    symptoms: list = field(default_factory=list)
    sex: Optional[bool] = None

    _LIST_FIELDS = ("symptoms",)
    _INT_FIELDS = ("log_id", "cycle_day", "sleep_quality", "stress_level", "water_glasses",
                   "veggie_servings", "activity_minutes", "sun_minutes")
    _FLOAT_FIELDS = ("sleep_hours", "bbt")
    _BOOL_FIELDS = ("alcohol", "sex")

    def to_dict(self) -> dict:
        return asdict(self)

    @classmethod
    def from_dict(cls, data: dict) -> DailyLog:
        data = dict(data)
        if "symptoms" in data:
            data["symptoms"] = _load_list(data["symptoms"])
        for int_field in cls._INT_FIELDS:
            if int_field in data:
                data[int_field] = to_int(data[int_field])
        if data.get("log_id") is None:
            data["log_id"] = 0
        for float_field in cls._FLOAT_FIELDS:
            if float_field in data:
                data[float_field] = to_float(data[float_field])
        for bool_field in cls._BOOL_FIELDS:
            if bool_field in data:
                data[bool_field] = to_bool(data[bool_field])
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})

    def to_redis(self, r: redis.Redis) -> None:
        """Write the log, replacing any log for the same date.

        Every write takes a fresh ``log_id`` so the latest write always wins
        a date tie.
        """
        day = date.fromisoformat(self.date[:10])
        self.date = day.isoformat()
        self.log_id = int(r.incr(DAILY_LOG_SEQ_KEY))
        key = f"{DAILY_LOG_PREFIX}{self.user_id}:{self.date}"
        pipe = r.pipeline(transaction=True)
        pipe.delete(key)
        pipe.hset(key, mapping=_hash_mapping(self.to_dict(), self._LIST_FIELDS))
        pipe.zadd(f"{DAILY_LOG_INDEX_PREFIX}{self.user_id}", {self.date: day.toordinal()})
        pipe.execute()

    @classmethod
    def from_redis(cls, r: redis.Redis, user_id: str, log_date: str) -> Optional[DailyLog]:
        data = r.hgetall(f"{DAILY_LOG_PREFIX}{user_id}:{log_date}")
        if not data:
            return None
        return cls.from_dict(_decode(data))
