"""Daily rule sweep across all users.

Users are independent: one user's failure is logged and recorded in the
report, and the sweep moves on to the next.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Iterable, Optional

from fertyfit.models.notification import RuleTrigger
from fertyfit.services.notification_service import run_trigger
from fertyfit.store.notification_store import NotificationStore
from fertyfit.store.pillar_store import PillarStore

logger = logging.getLogger(__name__)

SWEEP_TRIGGERS = (RuleTrigger.DAILY_CHECK, RuleTrigger.AGE_CHECK)


@dataclass
class SweepReport:
    total: int = 0
    notified: int = 0
    notifications: int = 0
    skipped: int = 0
    failed: int = 0
    errors: list = field(default_factory=list)   # {"user_id", "error"}

    def to_dict(self) -> dict:
        return {
            "total": self.total,
            "notified": self.notified,
            "notifications": self.notifications,
            "skipped": self.skipped,
            "failed": self.failed,
            "errors": list(self.errors),
        }


def run_daily_sweep(store: PillarStore, notifications: NotificationStore,
                    user_ids: Optional[Iterable[str]] = None,
                    triggers: Iterable[RuleTrigger] = SWEEP_TRIGGERS,
                    today: Optional[date] = None,
                    now: Optional[datetime] = None) -> SweepReport:
    user_ids = list(user_ids) if user_ids is not None else store.list_user_ids()
    triggers = tuple(triggers)
    report = SweepReport(total=len(user_ids))
    logger.info(f"Daily sweep: {report.total} users, triggers={[t.value for t in triggers]}")

    for user_id in user_ids:
        try:
            sent = 0
            for trigger in triggers:
                outcome = run_trigger(store, notifications, user_id, trigger, today=today, now=now)
                sent += len(outcome.notifications)
        except Exception as exc:
            logger.exception(f"Daily sweep failed for user {user_id}")
            report.failed += 1
            report.errors.append({"user_id": user_id, "error": str(exc)})
            continue
        if sent:
            report.notified += 1
            report.notifications += sent
        else:
            report.skipped += 1

    logger.info(
        f"Daily sweep done: {report.notified} notified, {report.skipped} skipped, "
        f"{report.failed} failed"
    )
    return report
