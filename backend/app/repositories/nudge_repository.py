"""Nudge store - abstract interface and Supabase implementation"""
from abc import ABC, abstractmethod
from datetime import datetime, timedelta
from typing import Any, Dict, Iterable, List, Optional, Union
from supabase import Client
from app.models.nudge import Nudge, NudgeCreate, NudgeStatus, UnitOfWork
from app.utils.monitoring import StructuredLogger

NUDGES_TABLE = "nudges"
APPLY_UPDATES_FUNCTION = "apply_nudge_updates"
# Columns a batch patch may touch; apply_nudge_updates writes exactly these
BATCH_UPDATE_FIELDS = frozenset({"status", "snoozed_until", "dismissed_at", "dismissal_reason", "updated_at"})

# Matches false and NULL (legacy rows without the column set)
NOT_SENT_FILTER = ("notification_sent", "not.is", "true")

ResponseValue = Union[str, Dict[str, Any]]


def _serialize(value: Any) -> Any:
    if isinstance(value, datetime):
        return value.isoformat()
    if isinstance(value, NudgeStatus):
        return value.value
    if isinstance(value, dict):
        return {k: _serialize(v) for k, v in value.items()}
    if isinstance(value, list):
        return [_serialize(v) for v in value]
    return value


def _serialize_fields(fields: Dict[str, Any]) -> Dict[str, Any]:
    return {key: _serialize(value) for key, value in fields.items()}


def _status_values(statuses: Iterable[Union[NudgeStatus, str]]) -> List[str]:
    return [s.value if isinstance(s, NudgeStatus) else s for s in statuses]


def clean_response_value(response_value: Optional[ResponseValue]) -> Optional[ResponseValue]:
    """Drop None entries from a dict response so they are not written as nulls"""
    if isinstance(response_value, dict):
        return {k: v for k, v in response_value.items() if v is not None}
    return response_value


def check_batch_fields(unit_of_work: UnitOfWork) -> None:
    """Reject patches that set columns a batch write cannot carry"""
    for item in unit_of_work.items:
        unsupported = sorted(set(item.fields) - BATCH_UPDATE_FIELDS)
        if unsupported:
            raise ValueError(
                f"Batch update for nudge {item.nudge_id} sets unsupported fields: {', '.join(unsupported)}"
            )


class NudgeStore(ABC):
    """Operations the scheduler and responder need from the nudge collection"""

    @abstractmethod
    def get_by_id(self, nudge_id: str) -> Optional[Nudge]:
        """Fetch one nudge, or None"""
        pass

    @abstractmethod
    def find_due_unnotified(self, now: datetime, limit: int) -> List[Nudge]:
        """Pending nudges scheduled at or before now whose notification_sent is not true"""
        pass

    @abstractmethod
    def count_notified_for_user_in_window(self, user_id: str, start: datetime, end: datetime) -> int:
        """Count nudges whose notification_sent_at falls within [start, end]"""
        pass

    @abstractmethod
    def try_acquire_lock(self, nudge_id: str, now: datetime, ttl_ms: int) -> bool:
        """Atomically claim the send lock; False if a live lock exists or the nudge was sent"""
        pass

    @abstractmethod
    def mark_processed(
        self,
        nudge_id: str,
        now: datetime,
        sent_at: Optional[datetime] = None,
        skip_reason: Optional[str] = None,
        clear_lock: bool = False,
    ) -> None:
        """Set notification_sent and the bookkeeping fields"""
        pass

    @abstractmethod
    def create_nudge(self, payload: NudgeCreate, now: datetime) -> str:
        """Insert a nudge and return its id"""
        pass

    @abstractmethod
    def find_siblings_by_status(
        self,
        sequence_id: str,
        statuses: Iterable[Union[NudgeStatus, str]],
        user_id: Optional[str] = None,
    ) -> List[Nudge]:
        """Nudges sharing sequence_id whose status is in statuses"""
        pass

    @abstractmethod
    def batch_update(self, unit_of_work: UnitOfWork) -> None:
        """Apply every patch of the unit of work in one atomic write.

        Patches may only set columns in BATCH_UPDATE_FIELDS; anything else raises ValueError
        before the store is touched.
        """
        pass

    @abstractmethod
    def mark_completed(
        self,
        nudge_id: str,
        response_value: Optional[ResponseValue],
        now: datetime,
        ai_interpretation: Optional[Dict[str, Any]] = None,
    ) -> None:
        """Transition a nudge to completed with the response attached"""
        pass

    @abstractmethod
    def list_for_user(self, user_id: str, statuses: Iterable[Union[NudgeStatus, str]]) -> List[Nudge]:
        """All nudges for a user in the given statuses"""
        pass

    @abstractmethod
    def list_history_for_user(self, user_id: str, limit: int) -> List[Nudge]:
        """Completed or dismissed nudges, most recently updated first"""
        pass

    @abstractmethod
    def snooze(self, nudge_id: str, snoozed_until: datetime, now: datetime) -> None:
        pass

    @abstractmethod
    def backfill_notification_sent(self) -> int:
        """Set notification_sent=false on pending nudges missing it; return rows changed"""
        pass


class SupabaseNudgeRepository(NudgeStore):
    """NudgeStore backed by the Supabase nudges table"""

    def __init__(self, client: Client):
        self.client = client

    def _table(self):
        return self.client.table(NUDGES_TABLE)

    def get_by_id(self, nudge_id: str) -> Optional[Nudge]:
        response = self._table().select("*").eq("id", nudge_id).limit(1).execute()
        if not response.data:
            return None
        return Nudge.from_record(response.data[0])

    def find_due_unnotified(self, now: datetime, limit: int) -> List[Nudge]:
        response = (
            self._table()
            .select("*")
            .eq("status", NudgeStatus.PENDING.value)
            .lte("scheduled_for", now.isoformat())
            .filter(*NOT_SENT_FILTER)
            .limit(limit)
            .execute()
        )
        return [Nudge.from_record(row) for row in response.data or []]

    def count_notified_for_user_in_window(self, user_id: str, start: datetime, end: datetime) -> int:
        response = (
            self._table()
            .select("id", count="exact")
            .eq("user_id", user_id)
            .gte("notification_sent_at", start.isoformat())
            .lte("notification_sent_at", end.isoformat())
            .execute()
        )
        if response.count is not None:
            return response.count
        return len(response.data or [])

    def try_acquire_lock(self, nudge_id: str, now: datetime, ttl_ms: int) -> bool:
        # Single conditional UPDATE: Postgres row locking makes check-and-set atomic.
        now_iso = now.isoformat()
        lock_until = now + timedelta(milliseconds=ttl_ms)
        response = (
            self._table()
            .update({
                "notification_lock_until": lock_until.isoformat(),
                "notification_lock_at": now_iso,
                "updated_at": now_iso,
            })
            .eq("id", nudge_id)
            .filter(*NOT_SENT_FILTER)
            .or_(f"notification_lock_until.is.null,notification_lock_until.lte.{now_iso}")
            .execute()
        )
        return bool(response.data)

    def mark_processed(
        self,
        nudge_id: str,
        now: datetime,
        sent_at: Optional[datetime] = None,
        skip_reason: Optional[str] = None,
        clear_lock: bool = False,
    ) -> None:
        payload: Dict[str, Any] = {
            "notification_sent": True,
            "updated_at": now,
        }
        if sent_at:
            payload["notification_sent_at"] = sent_at
        if skip_reason:
            payload["notification_skipped"] = skip_reason
        if clear_lock:
            payload["notification_lock_until"] = None
            payload["notification_lock_at"] = None

        self._table().update(_serialize_fields(payload)).eq("id", nudge_id).execute()

    def create_nudge(self, payload: NudgeCreate, now: datetime) -> str:
        record = _serialize_fields({
            **payload.model_dump(exclude_none=True),
            "created_at": now,
            "updated_at": now,
        })
        response = self._table().insert(record).execute()
        if not response.data:
            raise ValueError("Failed to create nudge")
        return str(response.data[0]["id"])

    def find_siblings_by_status(
        self,
        sequence_id: str,
        statuses: Iterable[Union[NudgeStatus, str]],
        user_id: Optional[str] = None,
    ) -> List[Nudge]:
        status_values = _status_values(statuses)
        if not status_values:
            return []

        query = self._table().select("*").eq("sequence_id", sequence_id).in_("status", status_values)
        if user_id:
            query = query.eq("user_id", user_id)
        response = query.execute()
        return [Nudge.from_record(row) for row in response.data or []]

    def batch_update(self, unit_of_work: UnitOfWork) -> None:
        if not unit_of_work.items:
            return
        check_batch_fields(unit_of_work)

        shared = unit_of_work.shared_fields()
        if shared is not None:
            # One statement covers every row, so it commits or fails as a whole
            self._table().update(_serialize_fields(shared)).in_("id", unit_of_work.nudge_ids).execute()
            return

        updates = [
            {"id": item.nudge_id, "fields": _serialize_fields(item.fields)}
            for item in unit_of_work.items
        ]
        self.client.rpc(APPLY_UPDATES_FUNCTION, {"updates": updates}).execute()

    def mark_completed(
        self,
        nudge_id: str,
        response_value: Optional[ResponseValue],
        now: datetime,
        ai_interpretation: Optional[Dict[str, Any]] = None,
    ) -> None:
        update_data: Dict[str, Any] = {
            "status": NudgeStatus.COMPLETED.value,
            "completed_at": now,
            "updated_at": now,
        }
        cleaned = clean_response_value(response_value)
        if cleaned is not None:
            update_data["response_value"] = cleaned
        if ai_interpretation:
            update_data["ai_interpretation"] = ai_interpretation

        self._table().update(_serialize_fields(update_data)).eq("id", nudge_id).execute()

    def list_for_user(self, user_id: str, statuses: Iterable[Union[NudgeStatus, str]]) -> List[Nudge]:
        status_values = _status_values(statuses)
        if not status_values:
            return []
        response = (
            self._table()
            .select("*")
            .eq("user_id", user_id)
            .in_("status", status_values)
            .execute()
        )
        return [Nudge.from_record(row) for row in response.data or []]

    def list_history_for_user(self, user_id: str, limit: int) -> List[Nudge]:
        response = (
            self._table()
            .select("*")
            .eq("user_id", user_id)
            .in_("status", [NudgeStatus.COMPLETED.value, NudgeStatus.DISMISSED.value])
            .order("updated_at", desc=True)
            .limit(limit)
            .execute()
        )
        return [Nudge.from_record(row) for row in response.data or []]

    def snooze(self, nudge_id: str, snoozed_until: datetime, now: datetime) -> None:
        self._table().update(_serialize_fields({
            "status": NudgeStatus.SNOOZED.value,
            "snoozed_until": snoozed_until,
            "updated_at": now,
        })).eq("id", nudge_id).execute()

    def backfill_notification_sent(self) -> int:
        response = (
            self._table()
            .update({"notification_sent": False})
            .eq("status", NudgeStatus.PENDING.value)
            .is_("notification_sent", "null")
            .execute()
        )
        updated = len(response.data or [])
        if updated:
            StructuredLogger.log_event(
                "nudge_store_backfill",
                f"Backfilled {updated} nudges with notification_sent=false",
                metadata={"updated": updated},
            )
        return updated
