"""Action Agent that sends push notifications for nudges that have come due"""
from typing import Callable, Dict, List, Optional
from datetime import datetime, timezone
from app.config import settings
from app.models.nudge import Nudge, NudgeProcessingStats, NotificationSkipReason
from app.models.push import PushPayload, PushToken
from app.repositories.nudge_repository import NudgeStore
from app.services.delivery_guard import DeliveryGuard
from app.services.notification import PushDispatcher
from app.services.priority import sort_by_priority
from app.services.user_directory import UserDirectory
from app.utils.monitoring import StructuredLogger, track_nudge_run


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


def build_push_payloads(nudge: Nudge, tokens: List[PushToken]) -> List[PushPayload]:
    """One payload per device token, in token order"""
    return [
        PushPayload(
            to=token.token,
            title=nudge.title,
            body=nudge.message,
            data={
                "type": "nudge",
                "nudgeId": nudge.id,
                "actionType": nudge.action_type,
            },
            sound="default",
            priority="high",
        )
        for token in tokens
    ]


def group_by_user(nudges: List[Nudge]) -> Dict[str, List[Nudge]]:
    """Group nudges by owner, keeping scan order within each group"""
    grouped: Dict[str, List[Nudge]] = {}
    for nudge in nudges:
        grouped.setdefault(nudge.user_id, []).append(nudge)
    return grouped


class NudgeNotificationProcessor:
    """
    Scan -> classify -> throttle -> lock -> dispatch -> mark processed.

    Safe to run repeatedly and concurrently: each nudge is claimed through its
    own send lock, so overlapping runs never notify the same nudge twice.
    Failures are contained per user and surface only as the ``errors`` counter;
    only a failing scan aborts the run.
    """

    def __init__(
        self,
        store: NudgeStore,
        dispatcher: PushDispatcher,
        user_directory: UserDirectory,
        guard: Optional[DeliveryGuard] = None,
        batch_limit: Optional[int] = None,
        clock: Callable[[], datetime] = utc_now,
    ):
        self.store = store
        self.dispatcher = dispatcher
        self.user_directory = user_directory
        self.guard = guard or DeliveryGuard(store)
        self.batch_limit = batch_limit if batch_limit is not None else settings.NUDGE_BATCH_LIMIT
        self.clock = clock

    @track_nudge_run
    def process_due_nudges(self, now: Optional[datetime] = None) -> NudgeProcessingStats:
        now = now or self.clock()
        stats = NudgeProcessingStats()

        # A failing scan propagates; the next scheduled trigger retries
        due_nudges = self.store.find_due_unnotified(now, self.batch_limit)

        if not due_nudges:
            StructuredLogger.log_event("nudge_processing_empty", "No due nudges to process")
            return stats

        StructuredLogger.log_event(
            "nudge_processing_start",
            f"Found {len(due_nudges)} due nudges",
            metadata={"due": len(due_nudges), "now": now.isoformat(), "limit": self.batch_limit},
        )

        for user_id, nudges in group_by_user(due_nudges).items():
            try:
                self._process_user(user_id, nudges, now, stats)
            except Exception as e:
                StructuredLogger.log_error(
                    e,
                    context={
                        "function": "process_due_nudges",
                        "nudge_ids": [nudge.id for nudge in nudges],
                    },
                    user_id=user_id,
                )
                stats.errors += 1

        StructuredLogger.log_event(
            "nudge_processing_complete",
            f"Processed {stats.processed} nudges, notified {stats.notified}",
            metadata=stats.model_dump(),
        )
        return stats

    def _process_user(self, user_id: str, nudges: List[Nudge], now: datetime, stats: NudgeProcessingStats):
        user_tz = self.user_directory.get_timezone(user_id)
        tokens = self.dispatcher.get_push_tokens(user_id)

        if not tokens:
            StructuredLogger.log_event(
                "nudge_user_no_push_tokens",
                f"No push tokens for user {user_id}, marking {len(nudges)} nudges processed",
                user_id=user_id,
            )
            for nudge in nudges:
                self.store.mark_processed(
                    nudge.id,
                    now=now,
                    skip_reason=NotificationSkipReason.NO_PUSH_TOKENS.value,
                )
                stats.processed += 1
            return

        sent_today = self.guard.count_sent_today(user_id, now, user_tz)

        for nudge in sort_by_priority(nudges):
            if self.guard.is_quiet_hours(now, user_tz):
                stats.skipped_quiet_hours += 1
                StructuredLogger.log_event(
                    "nudge_skipped_quiet_hours",
                    f"Deferring nudge {nudge.id} until quiet hours end",
                    user_id=user_id,
                    metadata={"nudge_id": nudge.id},
                )
                continue

            if not self.guard.has_daily_capacity(sent_today):
                stats.skipped_daily_limit += 1
                StructuredLogger.log_event(
                    "nudge_skipped_daily_limit",
                    f"Daily notification cap reached ({sent_today}/{self.guard.daily_limit})",
                    user_id=user_id,
                    metadata={"nudge_id": nudge.id},
                )
                continue

            if not self.guard.acquire_send_lock(nudge.id, now):
                # Another run owns this nudge
                stats.skipped_locked += 1
                StructuredLogger.log_event(
                    "nudge_lock_contended",
                    f"Send lock held for nudge {nudge.id}, skipping",
                    user_id=user_id,
                    metadata={"nudge_id": nudge.id},
                    level="DEBUG",
                )
                continue

            # If send raises, the lock is left to expire and the nudge stays due
            results = self.dispatcher.send(build_push_payloads(nudge, tokens))
            success_count = sum(1 for result in results if result.ok)

            for token, result in zip(tokens, results):
                if result.device_not_registered:
                    self.dispatcher.remove_token(user_id, token.token)

            self.store.mark_processed(nudge.id, now=now, sent_at=now, clear_lock=True)
            sent_today += 1
            stats.processed += 1
            if success_count > 0:
                stats.notified += 1

            StructuredLogger.log_event(
                "nudge_notification_sent",
                f"Sent notification for nudge {nudge.id}",
                user_id=user_id,
                metadata={
                    "nudge_id": nudge.id,
                    "type": nudge.type,
                    "success_count": success_count,
                    "total_tokens": len(tokens),
                },
            )
