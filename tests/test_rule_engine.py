"""Tests for the rule engine: context derivation, evaluation order, cooldown, gating."""

import pytest
from datetime import date, datetime, timedelta, timezone

from fertyfit.engine.rule_context import NO_LOG_DAYS, build_rule_context
from fertyfit.engine.rule_engine import evaluate_rules, rules_for_trigger
from fertyfit.engine.rules import RULES, RULES_BY_ID
from fertyfit.models.notification import (
    NotificationMessage,
    NotificationType,
    Priority,
    Rule,
    RuleTrigger,
)
from fertyfit.models.pillars import PillarState, PillarType


TODAY = date(2026, 2, 15)
NOW = datetime(2026, 2, 15, 12, 0, 0, tzinfo=timezone.utc)


class InMemoryCooldowns:
    """Cooldown store backed by a dict; counts lookups."""

    def __init__(self, fired=None):
        self.fired = dict(fired or {})
        self.lookups = []

    def has_fired_within_cooldown(self, user_id, rule_id, cooldown_days, now):
        self.lookups.append(rule_id)
        last = self.fired.get((user_id, rule_id))
        return last is not None and now - last < timedelta(days=cooldown_days)


def _rule(rule_id, condition=lambda ctx: True, cooldown_days=0, **overrides):
    fields = {
        "id": rule_id,
        "triggers": frozenset({RuleTrigger.DAILY_CHECK}),
        "type": NotificationType.TIP,
        "priority": Priority.MEDIUM,
        "cooldown_days": cooldown_days,
        "condition": condition,
        "get_message": lambda ctx: NotificationMessage(title=rule_id, message="body"),
    }
    fields.update(overrides)
    return Rule(**fields)


def _context(profile, logs=(), **kwargs):
    return build_rule_context(profile, logs, today=TODAY, now=NOW, **kwargs)


# ═══════════════════════════════════════════════════════════════════════════
# Rule Context
# ═══════════════════════════════════════════════════════════════════════════


class TestRuleContext:
    def test_cycle_fields(self, make_profile):
        ctx = _context(make_profile(last_period_date="2026-02-01", cycle_length=28))
        assert ctx.current_cycle_day == 15
        assert ctx.days_since_last_period == 14
        assert ctx.fertile_window.ovulation_day == 14
        assert ctx.next_period == date(2026, 3, 1)

    def test_days_since_last_period_is_not_wrapped(self, make_profile):
        ctx = _context(make_profile(last_period_date="2026-01-01", cycle_length=28))
        assert ctx.current_cycle_day == 18
        assert ctx.days_since_last_period == 45

    def test_no_period_date(self, make_profile):
        ctx = _context(make_profile(last_period_date=None))
        assert ctx.current_cycle_day == 0
        assert ctx.days_since_last_period is None

    def test_no_logs(self, make_profile):
        ctx = _context(make_profile())
        assert ctx.days_since_last_log == NO_LOG_DAYS
        assert ctx.daily_log_streak == 0
        assert ctx.last_7_days.avg_sleep_hours is None

    def test_log_stats(self, make_profile, make_log):
        logs = [
            make_log(days_ago=1, sleep_hours=6, stress_level=4, alcohol=True),
            make_log(days_ago=2, sleep_hours=8, stress_level=2, alcohol=False),
            make_log(days_ago=3, sleep_hours=0, stress_level=0),
        ]
        ctx = _context(make_profile(), logs)
        assert ctx.days_since_last_log == 1
        assert ctx.daily_log_streak == 0
        assert ctx.last_7_days.avg_sleep_hours == pytest.approx(7.0)
        assert ctx.last_7_days.avg_stress_level == pytest.approx(3.0)
        assert ctx.last_7_days.alcohol_days == 1

    def test_streak_counts_back_from_today(self, make_profile, make_logs, make_log):
        logs = make_logs(3) + [make_log(days_ago=5)]
        assert _context(make_profile(), logs).daily_log_streak == 3

    def test_bmi_before_and_after(self, make_profile):
        ctx = _context(make_profile(weight=80, height=165), previous_weight=60)
        assert ctx.previous_bmi.category == "normal"
        assert ctx.current_bmi.category == "sobrepeso"

    def test_missing_pillars(self, make_profile):
        ctx = _context(make_profile(), available_pillars=[PillarType.FOOD])
        assert ctx.missing_pillars == (PillarType.FUNCTION, PillarType.FLORA, PillarType.FLOW)
        assert _context(make_profile()).missing_pillars == ()

    def test_pillar_states_split_missing_and_partial(self, make_profile):
        states = {
            PillarType.FUNCTION: PillarState.COMPLETE,
            PillarType.FOOD: PillarState.PARTIAL,
            PillarType.FLORA: PillarState.NOT_STARTED,
        }
        ctx = _context(make_profile(), pillar_states=states)
        assert ctx.partial_pillars == (PillarType.FOOD,)
        assert ctx.missing_pillars == (PillarType.FLORA, PillarType.FLOW)


# ═══════════════════════════════════════════════════════════════════════════
# Evaluation
# ═══════════════════════════════════════════════════════════════════════════


class TestEvaluateRules:
    def test_only_rules_for_trigger(self, make_profile):
        catalog = (_rule("A"), _rule("B", triggers=frozenset({RuleTrigger.AGE_CHECK})))
        result = evaluate_rules(catalog, RuleTrigger.DAILY_CHECK, _context(make_profile()),
                                InMemoryCooldowns(), NOW)
        assert [e.rule_id for e in result.emissions] == ["A"]

    def test_catalog_order_kept(self, make_profile):
        catalog = (
            _rule("LOW", priority=Priority.LOW),
            _rule("HIGH", priority=Priority.HIGH),
            _rule("MID", priority=Priority.MEDIUM),
        )
        result = evaluate_rules(catalog, RuleTrigger.DAILY_CHECK, _context(make_profile()),
                                InMemoryCooldowns(), NOW)
        assert [e.rule_id for e in result.emissions] == ["LOW", "HIGH", "MID"]

    def test_failing_rule_isolated(self, make_profile):
        def _boom(ctx):
            raise KeyError("missing")

        catalog = (_rule("A"), _rule("BROKEN", condition=_boom), _rule("C"))
        result = evaluate_rules(catalog, RuleTrigger.DAILY_CHECK, _context(make_profile()),
                                InMemoryCooldowns(), NOW)
        assert [e.rule_id for e in result.emissions] == ["A", "C"]
        assert result.failed_rule_ids == ["BROKEN"]

    def test_failing_message_isolated(self, make_profile):
        def _bad_message(ctx):
            raise ValueError("bad template")

        catalog = (_rule("BROKEN", get_message=_bad_message), _rule("OK"))
        result = evaluate_rules(catalog, RuleTrigger.DAILY_CHECK, _context(make_profile()),
                                InMemoryCooldowns(), NOW)
        assert [e.rule_id for e in result.emissions] == ["OK"]
        assert result.failed_rule_ids == ["BROKEN"]

    def test_cooldown_suppresses(self, make_profile):
        profile = make_profile()
        cooldowns = InMemoryCooldowns({(profile.user_id, "A"): NOW - timedelta(days=2)})
        result = evaluate_rules((_rule("A", cooldown_days=3),), RuleTrigger.DAILY_CHECK,
                                _context(profile), cooldowns, NOW)
        assert result.emissions == []

    def test_cooldown_expires_at_boundary(self, make_profile):
        profile = make_profile()
        cooldowns = InMemoryCooldowns({(profile.user_id, "A"): NOW - timedelta(days=3)})
        result = evaluate_rules((_rule("A", cooldown_days=3),), RuleTrigger.DAILY_CHECK,
                                _context(profile), cooldowns, NOW)
        assert [e.rule_id for e in result.emissions] == ["A"]

    def test_zero_cooldown_never_looks_up(self, make_profile):
        cooldowns = InMemoryCooldowns()
        evaluate_rules((_rule("A"),), RuleTrigger.DAILY_CHECK, _context(make_profile()),
                       cooldowns, NOW)
        assert cooldowns.lookups == []

    def test_cooldown_checked_only_when_condition_holds(self, make_profile):
        cooldowns = InMemoryCooldowns()
        evaluate_rules((_rule("A", condition=lambda ctx: False, cooldown_days=7),),
                       RuleTrigger.DAILY_CHECK, _context(make_profile()), cooldowns, NOW)
        assert cooldowns.lookups == []

    def test_engine_does_not_record_firings(self, make_profile):
        cooldowns = InMemoryCooldowns()
        evaluate_rules((_rule("A", cooldown_days=7),), RuleTrigger.DAILY_CHECK,
                       _context(make_profile()), cooldowns, NOW)
        assert cooldowns.fired == {}

    def test_fertility_gate_drops_before_condition(self, make_profile):
        calls = []

        def _condition(ctx):
            calls.append(ctx.user_id)
            return True

        catalog = (_rule("GATED", condition=_condition, fertility_gated=True),)
        result = evaluate_rules(catalog, RuleTrigger.DAILY_CHECK, _context(make_profile(age=52)),
                                InMemoryCooldowns(), NOW)
        assert result.emissions == []
        assert calls == []

    def test_emission_carries_rule_metadata(self, make_profile):
        result = evaluate_rules((_rule("A", type=NotificationType.ALERT, priority=Priority.HIGH),),
                                RuleTrigger.DAILY_CHECK, _context(make_profile()),
                                InMemoryCooldowns(), NOW)
        emission = result.emissions[0]
        assert emission.to_dict() == {
            "rule_id": "A", "type": "alert", "priority": 1, "title": "A", "message": "body",
            "metadata": {},
        }


class TestExclusiveGroups:
    def test_first_in_catalog_order_wins(self, make_profile):
        catalog = (
            _rule("ENG"),
            _rule("FORM-A", exclusive_group="FORM"),
            _rule("FORM-B", exclusive_group="FORM"),
            _rule("OTHER"),
        )
        result = evaluate_rules(catalog, RuleTrigger.DAILY_CHECK, _context(make_profile()),
                                InMemoryCooldowns(), NOW)
        assert [e.rule_id for e in result.emissions] == ["ENG", "FORM-A", "OTHER"]

    def test_member_cooling_down_passes_to_next(self, make_profile):
        profile = make_profile()
        cooldowns = InMemoryCooldowns({(profile.user_id, "FORM-A"): NOW - timedelta(days=2)})
        catalog = (
            _rule("FORM-A", cooldown_days=7, exclusive_group="FORM"),
            _rule("FORM-B", cooldown_days=7, exclusive_group="FORM"),
            _rule("FORM-C", cooldown_days=7, exclusive_group="FORM"),
        )
        result = evaluate_rules(catalog, RuleTrigger.DAILY_CHECK, _context(profile), cooldowns, NOW)
        assert [e.rule_id for e in result.emissions] == ["FORM-B"]

    def test_group_sent_today_stays_quiet(self, make_profile):
        profile = make_profile()
        cooldowns = InMemoryCooldowns({(profile.user_id, "FORM-A"): NOW - timedelta(hours=3)})
        catalog = (
            _rule("FORM-A", cooldown_days=7, exclusive_group="FORM"),
            _rule("FORM-B", cooldown_days=7, exclusive_group="FORM"),
            _rule("ENG"),
        )
        result = evaluate_rules(catalog, RuleTrigger.DAILY_CHECK, _context(profile), cooldowns, NOW)
        assert [e.rule_id for e in result.emissions] == ["ENG"]

    def test_ungrouped_rules_unaffected(self, make_profile):
        catalog = (_rule("A"), _rule("B"), _rule("C"))
        result = evaluate_rules(catalog, RuleTrigger.DAILY_CHECK, _context(make_profile()),
                                InMemoryCooldowns(), NOW)
        assert len(result.emissions) == 3

    def test_real_catalog_sends_one_form_nudge(self, make_profile):
        ctx = _context(make_profile(), pillar_states={})
        assert ctx.missing_pillars == tuple(PillarType)
        result = evaluate_rules(RULES, RuleTrigger.DAILY_CHECK, ctx, InMemoryCooldowns(), NOW)
        form_ids = [e.rule_id for e in result.emissions if e.rule_id.startswith("FORM-")]
        assert form_ids == ["FORM-FUNCTION-NEW"]


# ═══════════════════════════════════════════════════════════════════════════
# Catalog
# ═══════════════════════════════════════════════════════════════════════════


class TestCatalogShape:
    def test_ids_unique(self):
        assert len(RULES_BY_ID) == len(RULES)

    def test_every_rule_has_a_trigger(self):
        for rule in RULES:
            assert rule.triggers, rule.id
            assert rule.cooldown_days >= 0

    def test_fertile_window_rules_are_gated(self):
        for rule_id in ("VF-1", "VF-2", "VF-3"):
            assert RULES_BY_ID[rule_id].fertility_gated

    def test_daily_check_rules(self):
        ids = [rule.id for rule in rules_for_trigger(RULES, RuleTrigger.DAILY_CHECK)]
        assert ids[:5] == ["VF-1", "VF-2", "VF-3", "PM-1", "PM-2"]
        assert "IMC-1" not in ids
        assert "EDAD-1" not in ids

    def test_form_rules_share_one_group(self):
        form_rules = [rule for rule in RULES if rule.id.startswith("FORM-")]
        assert len(form_rules) == 8
        assert {rule.exclusive_group for rule in form_rules} == {"FORM"}
        ids = [rule.id for rule in form_rules]
        assert ids.index("FORM-FLOW-PARTIAL") < ids.index("FORM-FUNCTION-NEW")

    def test_cycle_confirmation_after_period_rules(self):
        ids = [rule.id for rule in RULES]
        assert ids.index("CYCLE-1") == ids.index("PM-2") + 1
        assert RULES_BY_ID["CYCLE-1"].type == NotificationType.CONFIRMATION
