"""Send-lock and per-user throttling applied before a nudge notification goes out"""
from datetime import datetime, timedelta, tzinfo
from typing import Optional, Tuple
from dateutil import tz
from app.config import settings
from app.repositories.nudge_repository import NudgeStore


class DeliveryGuard:
    """
    Guards applied to every due nudge before dispatch.

    The send lock makes overlapping processor runs safe: only the run that
    claims a nudge's lock may notify it. The throttle enforces quiet hours and
    a daily cap in the user's own timezone. Throttled nudges are left untouched
    so a later run picks them up again.
    """

    def __init__(
        self,
        store: NudgeStore,
        daily_limit: Optional[int] = None,
        quiet_start_hour: Optional[int] = None,
        quiet_end_hour: Optional[int] = None,
        lock_ttl_ms: Optional[int] = None,
    ):
        self.store = store
        self.daily_limit = daily_limit if daily_limit is not None else settings.NUDGE_DAILY_NOTIFICATION_LIMIT
        self.quiet_start_hour = quiet_start_hour if quiet_start_hour is not None else settings.NUDGE_QUIET_HOURS_START
        self.quiet_end_hour = quiet_end_hour if quiet_end_hour is not None else settings.NUDGE_QUIET_HOURS_END
        self.lock_ttl_ms = lock_ttl_ms if lock_ttl_ms is not None else settings.NUDGE_SEND_LOCK_TTL_MS

    def acquire_send_lock(self, nudge_id: str, now: datetime) -> bool:
        return self.store.try_acquire_lock(nudge_id, now, self.lock_ttl_ms)

    def is_quiet_hours(self, now: datetime, user_tz: tzinfo) -> bool:
        """True when the user's local hour falls inside the quiet window"""
        start, end = self.quiet_start_hour, self.quiet_end_hour
        if start == end:
            return False
        hour = now.astimezone(user_tz).hour
        if start > end:
            # Window wraps midnight, e.g. 21 -> 8
            return hour >= start or hour < end
        return start <= hour < end

    @staticmethod
    def daily_window(now: datetime, user_tz: tzinfo) -> Tuple[datetime, datetime]:
        """The user's current local calendar day, expressed in UTC"""
        local_now = now.astimezone(user_tz)
        local_start = local_now.replace(hour=0, minute=0, second=0, microsecond=0)
        # Wall-clock arithmetic; dateutil resolves the offset per datetime, so DST days stay correct
        local_end = local_start + timedelta(days=1)
        return local_start.astimezone(tz.UTC), local_end.astimezone(tz.UTC) - timedelta(microseconds=1)

    def count_sent_today(self, user_id: str, now: datetime, user_tz: tzinfo) -> int:
        start, end = self.daily_window(now, user_tz)
        return self.store.count_notified_for_user_in_window(user_id, start, end)

    def has_daily_capacity(self, sent_today: int) -> bool:
        return sent_today < self.daily_limit
