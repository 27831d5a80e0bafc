"""Rule engine: decide which notifications fire for a user.

Per (user, rule) a rule is Armed until its condition holds outside its
cooldown, then Fired. The dispatcher records the firing, which keeps the rule
Cooling-down until ``cooldown_days`` have elapsed.

The engine only reads cooldown state. Recording a firing belongs to the
dispatcher (see ``NotificationStore.emit``). One pass evaluates each
eligible rule once and returns emissions in catalog order, with no priority
reordering. Within an exclusive group only the first emission in catalog
order is kept, and none when any rule of the group went out during the last
``EXCLUSIVE_GROUP_WINDOW_DAYS``.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Iterable, Optional, Protocol

from fertyfit.engine.cycle import should_notify_for_fertility
from fertyfit.engine.rule_context import RuleContext
from fertyfit.models.notification import Rule, RuleEmission, RuleTrigger

logger = logging.getLogger(__name__)

EXCLUSIVE_GROUP_WINDOW_DAYS = 1


class CooldownStore(Protocol):
    def has_fired_within_cooldown(self, user_id: str, rule_id: str,
                                  cooldown_days: int, now: datetime) -> bool:
        ...


@dataclass
class RuleEvaluation:
    emissions: list = field(default_factory=list)
    failed_rule_ids: list = field(default_factory=list)

    def to_dict(self) -> dict:
        return {
            "emissions": [e.to_dict() for e in self.emissions],
            "failed_rule_ids": list(self.failed_rule_ids),
        }


def rules_for_trigger(catalog: Iterable[Rule], trigger: RuleTrigger) -> list[Rule]:
    return [rule for rule in catalog if trigger in rule.triggers]


def passes_fertility_gate(rule: Rule, context: RuleContext) -> bool:
    if not rule.fertility_gated:
        return True
    return should_notify_for_fertility(context.age)


def _evaluate_rule(rule: Rule, context: RuleContext, cooldowns: CooldownStore,
                   now: datetime) -> Optional[RuleEmission]:
    if not passes_fertility_gate(rule, context):
        return None
    if not rule.condition(context):
        return None
    if rule.cooldown_days > 0 and cooldowns.has_fired_within_cooldown(
        context.user_id, rule.id, rule.cooldown_days, now
    ):
        logger.debug(f"Rule {rule.id} cooling down for user {context.user_id}")
        return None
    message = rule.get_message(context)
    return RuleEmission(
        rule_id=rule.id,
        type=rule.type,
        priority=rule.priority,
        title=message.title,
        message=message.message,
        metadata=dict(message.metadata),
    )


def _group_fired_recently(group: str, catalog: list[Rule], context: RuleContext,
                          cooldowns: CooldownStore, now: datetime) -> bool:
    return any(
        cooldowns.has_fired_within_cooldown(context.user_id, rule.id,
                                            EXCLUSIVE_GROUP_WINDOW_DAYS, now)
        for rule in catalog if rule.exclusive_group == group
    )


def evaluate_rules(catalog: Iterable[Rule], trigger: RuleTrigger, context: RuleContext,
                   cooldowns: CooldownStore, now: Optional[datetime] = None) -> RuleEvaluation:
    """Evaluate every rule scoped to ``trigger`` once, in catalog order.

    A rule that raises is logged and reported in ``failed_rule_ids``; the
    rest of the catalog is still evaluated.
    """
    now = now or context.now or datetime.now(timezone.utc)
    catalog = list(catalog)
    result = RuleEvaluation()
    closed_groups = set()
    for rule in rules_for_trigger(catalog, trigger):
        if rule.exclusive_group in closed_groups:
            continue
        try:
            emission = _evaluate_rule(rule, context, cooldowns, now)
            if emission is not None and rule.exclusive_group:
                closed_groups.add(rule.exclusive_group)
                if _group_fired_recently(rule.exclusive_group, catalog, context, cooldowns, now):
                    logger.debug(f"Group {rule.exclusive_group} already notified {context.user_id} today")
                    emission = None
        except Exception:
            logger.exception(f"Rule {rule.id} failed for user {context.user_id}")
            result.failed_rule_ids.append(rule.id)
            continue
        if emission is not None:
            result.emissions.append(emission)

    logger.info(
        f"Rules [{trigger.value}] user={context.user_id}: "
        f"{len(result.emissions)} emitted, {len(result.failed_rule_ids)} failed"
    )
    return result
