"""Rule catalog records and the notifications they emit."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from enum import Enum
from typing import TYPE_CHECKING, Callable, Optional

if TYPE_CHECKING:
    from fertyfit.engine.rule_context import RuleContext


class RuleTrigger(str, Enum):
    DAILY_CHECK = "DAILY_CHECK"
    DAILY_LOG_SAVED = "DAILY_LOG_SAVED"
    WEIGHT_UPDATE = "WEIGHT_UPDATE"
    AGE_CHECK = "AGE_CHECK"

    @classmethod
    def parse(cls, value: str) -> RuleTrigger:
        try:
            return cls(str(value).strip().upper())
        except ValueError:
            raise ValueError(f"Unknown rule trigger: {value!r}") from None


class NotificationType(str, Enum):
    ALERT = "alert"
    INSIGHT = "insight"
    CELEBRATION = "celebration"
    TIP = "tip"
    OPPORTUNITY = "opportunity"
    CONFIRMATION = "confirmation"


class Priority:
    HIGH = 1
    MEDIUM = 2
    LOW = 3


@dataclass(frozen=True)
class NotificationMessage:
    title: str
    message: str
    metadata: dict = field(default_factory=dict)


@dataclass(frozen=True)
class Rule:
    """Immutable catalog entry.

    ``fertility_gated`` rules are dropped by the age gate before
    ``condition`` runs. Rules sharing an ``exclusive_group`` emit at most
    one notification per pass between them.
    """

    id: str
    triggers: frozenset
    type: NotificationType
    priority: int
    cooldown_days: int
    condition: Callable[[RuleContext], bool]
    get_message: Callable[[RuleContext], NotificationMessage]
    fertility_gated: bool = False
    exclusive_group: Optional[str] = None


@dataclass(frozen=True)
class RuleEmission:
    rule_id: str
    type: NotificationType
    priority: int
    title: str
    message: str
    metadata: dict = field(default_factory=dict)

    def to_dict(self) -> dict:
        d = asdict(self)
        d["type"] = self.type.value
        return d


@dataclass
class Notification:
    notification_id: str
    user_id: str
    rule_id: str
    title: str
    message: str
    type: str
    priority: int = Priority.MEDIUM
    is_read: bool = False
    metadata: dict = field(default_factory=dict)
    created_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())

    @classmethod
    def from_emission(cls, notification_id: str, user_id: str, emission: RuleEmission,
                      created_at: Optional[str] = None) -> Notification:
        return cls(
            notification_id=notification_id,
            user_id=user_id,
            rule_id=emission.rule_id,
            title=emission.title,
            message=emission.message,
            type=emission.type.value,
            priority=emission.priority,
            metadata=dict(emission.metadata),
            created_at=created_at or datetime.now(timezone.utc).isoformat(),
        )

    def to_dict(self) -> dict:
        return asdict(self)

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> Notification:
        data = json.loads(raw)
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
