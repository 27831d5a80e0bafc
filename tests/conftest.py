"""Shared test fixtures for the FertyFit test suite."""

import pytest
import fakeredis
from datetime import date, datetime, timedelta, timezone

from fertyfit.models.pillars import PILLAR_FIELDS, PillarType
from fertyfit.models.profile import DailyLog, UserProfile
from fertyfit.store.notification_store import NotificationStore
from fertyfit.store.pillar_store import PillarStore


# ── Redis ────────────────────────────────────────────────────────────────

@pytest.fixture
def r():
    """Fresh fakeredis instance per test (decode_responses=True like production)."""
    return fakeredis.FakeRedis(decode_responses=True)


@pytest.fixture
def store(r):
    return PillarStore(r)


@pytest.fixture
def notifications(r):
    return NotificationStore(r)


# ── Time Freezing ───────────────────────────────────────────────────────

@pytest.fixture
def today():
    """Fixed local calendar date: 2026-02-15."""
    return date(2026, 2, 15)


@pytest.fixture
def now():
    """Fixed 'now' matching ``today``: 2026-02-15T12:00:00Z."""
    return datetime(2026, 2, 15, 12, 0, 0, tzinfo=timezone.utc)


# ── Factories ───────────────────────────────────────────────────────────

@pytest.fixture
def make_profile():
    """Factory fixture for UserProfile with sensible defaults.

    Usage:
        profile = make_profile(age=38, cycle_length=30)
    """
    _counter = 0

    def _factory(**overrides):
        nonlocal _counter
        _counter += 1
        defaults = {
            "user_id": f"user-{_counter}",
            "name": f"Test User {_counter}",
            "age": 32,
            "weight": 60.0,
            "height": 165.0,
            "cycle_length": 28,
            "cycle_regularity": "Regular",
        }
        defaults.update(overrides)
        return UserProfile(**defaults)

    return _factory


@pytest.fixture
def make_log(today):
    """Factory fixture for DailyLog. ``days_ago`` sets the date relative to today."""

    def _factory(user_id="user-1", days_ago=0, **overrides):
        fields = {"user_id": user_id, "date": (today - timedelta(days=days_ago)).isoformat()}
        fields.update(overrides)
        return DailyLog(**fields)

    return _factory


@pytest.fixture
def make_logs(make_log):
    """``n`` logs on consecutive days ending today, all with the same fields."""

    def _factory(n, user_id="user-1", start_days_ago=0, **fields):
        return [make_log(user_id=user_id, days_ago=start_days_ago + i, **fields) for i in range(n)]

    return _factory


SAMPLE_ANSWERS = {"int": 3, "float": 7.5, "bool": True, "str": "a veces", "list": ["ninguno"],
                  "json": {"tipo": "caminar", "veces": 3}}


@pytest.fixture
def complete_fields():
    """Snapshot fields answering every question of a pillar."""

    def _factory(pillar):
        return {f.name: SAMPLE_ANSWERS[f.kind] for f in PILLAR_FIELDS[pillar]}

    return _factory


@pytest.fixture
def fill_pillars(store, complete_fields):
    """Store a complete snapshot for every pillar of ``user_id`` except ``skip``."""

    def _factory(user_id, skip=()):
        for pillar in PillarType:
            if pillar not in skip:
                store.upsert_pillar_snapshot(user_id, pillar, complete_fields(pillar))

    return _factory
