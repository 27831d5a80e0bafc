"""Tests for the score recompute trigger and questionnaire submission."""

import pytest
import redis
from unittest.mock import patch

from fertyfit.models.pillars import PillarType
from fertyfit.services.pillar_service import (
    calculate_averages,
    fetch_pillar_data,
    format_answers,
    save_pillar_form,
)
from fertyfit.services.score_service import compute_score, recompute_score
from fertyfit.store.errors import StoreError


FOOD_ANSWERS = {
    "food_vege": "5",
    "food_cafe": 1,
    "food_pescado": "",
    "food_patron": "d) Mediterránea",
}


# ═══════════════════════════════════════════════════════════════════════════
# Score Recompute
# ═══════════════════════════════════════════════════════════════════════════


class TestRecomputeScore:
    def test_persists_with_reason(self, store, make_profile, now):
        store.save_profile(make_profile(user_id="ana", age=30, weight=60, height=165,
                                        cycle_length=None, cycle_regularity=None))
        outcome = recompute_score("ana", "profile_update", store, now=now)
        assert outcome.ok
        assert outcome.result.function == 100
        latest = store.get_latest_score("ana")
        assert latest.reason == "profile_update"
        assert latest.computed_at == now.isoformat()

    def test_unknown_user_scores_empty(self, store):
        result = compute_score("ghost", store)
        assert result.total is None

    def test_read_failure_is_soft(self, store):
        with patch.object(store, "get_logs", side_effect=redis.ConnectionError("down")):
            outcome = recompute_score("ana", "daily_log", store)
        assert outcome.ok is False
        assert "down" in outcome.error
        assert store.get_score_history("ana") == []

    def test_save_failure_keeps_result(self, store, make_profile):
        store.save_profile(make_profile(user_id="ana"))
        with patch.object(store, "save_score_result", side_effect=redis.TimeoutError("slow")):
            outcome = recompute_score("ana", "daily_log", store)
        assert outcome.ok is False
        assert outcome.result is not None

    def test_requires_user_id(self, store):
        with pytest.raises(ValueError):
            recompute_score("", "daily_log", store)


# ═══════════════════════════════════════════════════════════════════════════
# Questionnaire Submission
# ═══════════════════════════════════════════════════════════════════════════


class TestSavePillarForm:
    def test_snapshot_history_and_score(self, store):
        outcome = save_pillar_form(store, "ana", "food", FOOD_ANSWERS)
        assert outcome.success
        assert outcome.warnings == []
        assert outcome.snapshot.fields == {
            "eating_pattern": "d) Mediterránea",
            "vegetable_servings": 5,
            "coffee_cups": 1,
        }
        assert outcome.form.form_id == 1
        assert outcome.score.food == 100
        assert store.get_latest_score("ana").reason == "pillar_food_update"

    def test_history_keeps_question_text(self, store, make_logs):
        logs = make_logs(2, user_id="ana", sleep_hours=7, water_glasses=6)
        save_pillar_form(store, "ana", PillarType.FOOD, FOOD_ANSWERS, logs=logs)
        form = store.list_consultation_forms("ana")[0]
        assert form.form_type == "FOOD"
        assert [a.question_id for a in form.answers] == ["food_vege", "food_cafe", "food_patron"]
        assert form.answers[1].question == "Tazas de café al día"
        assert form.snapshot_stats["sleep"] == pytest.approx(7.0)
        assert form.snapshot_stats["veggies"] is None

    def test_resubmission_replaces_snapshot_but_appends_history(self, store):
        save_pillar_form(store, "ana", "FOOD", {"food_cafe": 5})
        save_pillar_form(store, "ana", "FOOD", {"food_vege": 2})
        assert store.get_pillar_snapshot("ana", PillarType.FOOD).fields == {"vegetable_servings": 2}
        assert len(store.list_consultation_forms("ana")) == 2

    def test_history_failure_is_a_warning(self, store):
        with patch.object(store, "append_consultation_form", side_effect=StoreError("boom")):
            outcome = save_pillar_form(store, "ana", "FOOD", FOOD_ANSWERS)
        assert outcome.success
        assert outcome.warnings == ["history_not_saved"]
        assert store.get_pillar_snapshot("ana", PillarType.FOOD) is not None

    def test_snapshot_failure_fails_submission(self, store):
        with patch.object(store, "upsert_pillar_snapshot", side_effect=redis.ConnectionError("down")):
            outcome = save_pillar_form(store, "ana", "FOOD", FOOD_ANSWERS)
        assert outcome.success is False
        assert "down" in outcome.error
        assert store.list_consultation_forms("ana") == []

    def test_score_failure_is_a_warning(self, store):
        with patch.object(store, "save_score_result", side_effect=redis.ConnectionError("down")):
            outcome = save_pillar_form(store, "ana", "FOOD", FOOD_ANSWERS)
        assert outcome.success
        assert outcome.score is None
        assert "score_not_updated" in outcome.warnings

    def test_function_form_syncs_cycle_length(self, store, make_profile):
        store.save_profile(make_profile(user_id="ana", cycle_length=28))
        save_pillar_form(store, "ana", "FUNCTION", {"function_cycle_length": "31"})
        assert store.get_profile("ana").cycle_length == 31

    def test_unknown_pillar(self, store):
        with pytest.raises(ValueError):
            save_pillar_form(store, "ana", "FITNESS", {})


class TestPillarHelpers:
    def test_calculate_averages(self, make_logs):
        logs = make_logs(2, stress_level=3) + make_logs(1, start_days_ago=2, stress_level=4,
                                                        water_glasses=8)
        assert calculate_averages(logs) == {
            "sleep": None, "veggies": None, "water": 8.0, "stress": pytest.approx(3.3),
        }

    def test_format_answers_skips_empty(self):
        formatted = format_answers(PillarType.FLORA, {"flora_sibo": "No", "flora_piel": "", "x": None})
        assert [a.question_id for a in formatted] == ["flora_sibo"]

    def test_fetch_missing(self, store):
        assert fetch_pillar_data(store, "ana", "FLOW") is None

    def test_fetch_corrupt_returns_none(self, store, r):
        r.hset("pillar:flow:ana", "stress_level", "{bad")
        assert fetch_pillar_data(store, "ana", "FLOW") is None


class TestRoundTrips:
    def test_recompute_is_idempotent(self, store, make_profile, make_logs):
        store.save_profile(make_profile(user_id="ana"))
        for log in make_logs(5, user_id="ana", sleep_hours=7, stress_level=2):
            store.upsert_log(log)
        save_pillar_form(store, "ana", "FLOW", {"flow_stress": 3, "flow_sueno": "7,5"})
        first = recompute_score("ana", "daily_log", store)
        second = recompute_score("ana", "daily_log", store)
        assert first.result == second.result
        assert len(store.get_score_history("ana")) == 3

    def test_save_then_fetch(self, store):
        save_pillar_form(store, "ana", "FLORA", {"flora_dig": "6", "flora_sibo": "No"})
        snapshot = fetch_pillar_data(store, "ana", PillarType.FLORA)
        assert snapshot.fields == {"digestive_health": 6, "sibo_diagnosed": False}
