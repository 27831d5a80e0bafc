"""FertyScore result and its persisted audit record."""

from __future__ import annotations

import json
from dataclasses import dataclass
from typing import Mapping, Optional

SCORE_HISTORY_PREFIX = "fertyscore:history:"
SCORE_LATEST_PREFIX = "fertyscore:latest:"

PILLAR_KEYS = ("function", "food", "flora", "flow")


@dataclass(frozen=True)
class FertyScoreResult:
    """Scores are ints in [0, 100]; None means the pillar has no data."""

    total: Optional[int]
    function: Optional[int]
    food: Optional[int]
    flora: Optional[int]
    flow: Optional[int]

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "function": self.function,
            "food": self.food,
            "flora": self.flora,
            "flow": self.flow,
        }

    def display(self) -> dict:
        """Scores as shown to the user, "–" for unscored pillars."""
        return {k: "–" if v is None else v for k, v in self.to_dict().items()}

    @classmethod
    def from_dict(cls, data: Mapping) -> FertyScoreResult:
        return cls(**{k: data.get(k) for k in ("total",) + PILLAR_KEYS})


@dataclass(frozen=True)
class ScoreRecord:
    user_id: str
    result: FertyScoreResult
    reason: str
    computed_at: str

    def to_dict(self) -> dict:
        return {
            "user_id": self.user_id,
            "result": self.result.to_dict(),
            "reason": self.reason,
            "computed_at": self.computed_at,
        }

    def to_json(self) -> str:
        return json.dumps(self.to_dict())

    @classmethod
    def from_json(cls, raw: str) -> ScoreRecord:
        data = json.loads(raw)
        return cls(
            user_id=data["user_id"],
            result=FertyScoreResult.from_dict(data["result"]),
            reason=data.get("reason", ""),
            computed_at=data.get("computed_at", ""),
        )
