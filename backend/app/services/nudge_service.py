"""Nudge lifecycle operations used by the API (list, snooze, dismiss, complete)"""
from typing import Any, Callable, Dict, List, Optional, Union
from datetime import datetime, timedelta, timezone
from app.exceptions import NudgeAccessDeniedError, NudgeNotFoundError
from app.models.nudge import Nudge, NudgeStatus, UnitOfWork
from app.repositories.nudge_repository import NudgeStore
from app.utils.monitoring import StructuredLogger

MAX_ACTIVE_NUDGES = 10
MAX_HISTORY_LIMIT = 50
MIN_SNOOZE_DAYS = 1
MAX_SNOOZE_DAYS = 7


def load_owned_nudge(store: NudgeStore, nudge_id: str, user_id: str) -> Nudge:
    """Fetch a nudge and check the caller owns it"""
    nudge = store.get_by_id(nudge_id)
    if nudge is None:
        raise NudgeNotFoundError(nudge_id)
    if nudge.user_id != user_id:
        raise NudgeAccessDeniedError(nudge_id, user_id)
    return nudge


def dismissal_fields(now: datetime, reason: Optional[str] = None) -> Dict[str, Any]:
    fields: Dict[str, Any] = {
        "status": NudgeStatus.DISMISSED.value,
        "dismissed_at": now,
        "updated_at": now,
    }
    if reason:
        fields["dismissal_reason"] = reason
    return fields


class NudgeService:
    """Service for user-facing nudge state changes"""

    def __init__(self, store: NudgeStore, clock: Optional[Callable[[], datetime]] = None):
        self.store = store
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def list_active(self, user_id: str, now: Optional[datetime] = None) -> List[Nudge]:
        """
        Nudges the user should see right now.

        Due pending nudges and snoozed nudges whose snooze has elapsed are
        promoted to active in one batched write before being returned.
        """
        now = now or self.clock()
        candidates = self.store.list_for_user(
            user_id,
            [NudgeStatus.PENDING, NudgeStatus.ACTIVE, NudgeStatus.SNOOZED],
        )

        unit_of_work = UnitOfWork()
        active: List[Nudge] = []
        for nudge in candidates:
            if nudge.status == NudgeStatus.PENDING and nudge.scheduled_for <= now:
                unit_of_work.add(nudge.id, {"status": NudgeStatus.ACTIVE.value, "updated_at": now})
                active.append(nudge.model_copy(update={"status": NudgeStatus.ACTIVE}))
            elif nudge.status == NudgeStatus.ACTIVE:
                active.append(nudge)
            elif nudge.status == NudgeStatus.SNOOZED and nudge.snoozed_until and nudge.snoozed_until <= now:
                unit_of_work.add(nudge.id, {
                    "status": NudgeStatus.ACTIVE.value,
                    "snoozed_until": None,
                    "updated_at": now,
                })
                active.append(nudge.model_copy(update={"status": NudgeStatus.ACTIVE, "snoozed_until": None}))

        if len(unit_of_work):
            self.store.batch_update(unit_of_work)

        active.sort(key=lambda nudge: nudge.scheduled_for)
        return active[:MAX_ACTIVE_NUDGES]

    def list_history(self, user_id: str, limit: int = 20) -> List[Nudge]:
        limit = max(1, min(limit, MAX_HISTORY_LIMIT))
        return self.store.list_history_for_user(user_id, limit)

    def complete(
        self,
        nudge_id: str,
        user_id: str,
        response_value: Optional[Union[str, Dict[str, Any]]] = None,
        now: Optional[datetime] = None,
    ) -> Nudge:
        now = now or self.clock()
        nudge = load_owned_nudge(self.store, nudge_id, user_id)
        self.store.mark_completed(nudge.id, response_value, now)
        StructuredLogger.log_event("nudge_completed", f"Nudge {nudge_id} completed", user_id=user_id)
        return nudge

    def snooze(self, nudge_id: str, user_id: str, days: int = 1, now: Optional[datetime] = None) -> datetime:
        if days < MIN_SNOOZE_DAYS or days > MAX_SNOOZE_DAYS:
            raise ValueError(f"snooze days must be between {MIN_SNOOZE_DAYS} and {MAX_SNOOZE_DAYS}")

        now = now or self.clock()
        load_owned_nudge(self.store, nudge_id, user_id)
        snoozed_until = now + timedelta(days=days)
        self.store.snooze(nudge_id, snoozed_until, now)
        StructuredLogger.log_event(
            "nudge_snoozed",
            f"Nudge {nudge_id} snoozed for {days} days",
            user_id=user_id,
            metadata={"snoozed_until": snoozed_until.isoformat()},
        )
        return snoozed_until

    def dismiss(self, nudge_id: str, user_id: str, now: Optional[datetime] = None) -> None:
        now = now or self.clock()
        load_owned_nudge(self.store, nudge_id, user_id)
        self.store.batch_update(UnitOfWork().add(nudge_id, dismissal_fields(now)))
        StructuredLogger.log_event("nudge_dismissed", f"Nudge {nudge_id} dismissed", user_id=user_id)
