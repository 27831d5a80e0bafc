"""Consultation form history: one append-only record per questionnaire submission."""

from __future__ import annotations

import json
from dataclasses import dataclass, field, asdict
from datetime import datetime, timezone
from typing import Any, Optional

CONSULTATION_PREFIX = "consultation:"
CONSULTATION_INDEX_PREFIX = "consultation:user:"
CONSULTATION_SEQ_KEY = "consultation:seq"


class FormStatus:
    PENDING = "pending"
    REVIEWED = "reviewed"


@dataclass
class FormAnswer:
    question_id: str
    question: str
    answer: Any


@dataclass
class ConsultationForm:
    user_id: str
    form_type: str
    answers: list = field(default_factory=list)        # FormAnswer, in submission order
    snapshot_stats: dict = field(default_factory=dict)
    status: str = FormStatus.PENDING
    form_id: int = 0
    submitted_at: str = field(default_factory=lambda: datetime.now(timezone.utc).isoformat())
    reviewed_at: Optional[str] = None

    def to_dict(self) -> dict:
        d = asdict(self)
        d["answers"] = [asdict(a) if isinstance(a, FormAnswer) else dict(a) for a in self.answers]
        return d

    def to_json(self) -> str:
        return json.dumps(self.to_dict(), ensure_ascii=False)

    @classmethod
    def from_json(cls, raw: str) -> ConsultationForm:
        data = json.loads(raw)
        data["answers"] = [FormAnswer(**a) for a in data.get("answers", [])]
        return cls(**{k: v for k, v in data.items() if k in cls.__dataclass_fields__})
