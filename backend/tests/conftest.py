"""Shared fixtures: in-memory nudge store, fake push dispatcher and user directory"""
import copy
import threading
from datetime import datetime, timedelta, timezone
from typing import Any, Callable, Dict, List, Optional

import pytest
from dateutil import tz

from app.models.nudge import Nudge, NudgeCreate, NudgeStatus, UnitOfWork
from app.models.push import PushPayload, PushResult, PushToken
from app.repositories.nudge_repository import NudgeStore, check_batch_fields, clean_response_value
from app.services.notification import PushDispatcher


FIXED_NOW = datetime(2026, 3, 10, 15, 0, tzinfo=timezone.utc)


def _status(value) -> NudgeStatus:
    return NudgeStatus(value)


class InMemoryNudgeStore(NudgeStore):
    """NudgeStore over a dict, with the same atomicity guarantees as the real store"""

    def __init__(self):
        self.rows: Dict[str, Dict[str, Any]] = {}
        self.batch_calls: List[UnitOfWork] = []
        self.fail_batch_update = False
        self.fail_scan = False
        self._lock = threading.Lock()
        self._next_id = 1

    def add(self, record: Dict[str, Any]) -> Nudge:
        with self._lock:
            self.rows[record["id"]] = dict(record)
        return Nudge.from_record(record)

    def raw(self, nudge_id: str) -> Dict[str, Any]:
        return self.rows[nudge_id]

    def get_by_id(self, nudge_id):
        with self._lock:
            row = self.rows.get(nudge_id)
            return Nudge.from_record(copy.deepcopy(row)) if row else None

    def find_due_unnotified(self, now, limit):
        if self.fail_scan:
            raise RuntimeError("store unavailable")
        with self._lock:
            due = [
                Nudge.from_record(copy.deepcopy(row))
                for row in self.rows.values()
                if _status(row["status"]) == NudgeStatus.PENDING
                and row["scheduled_for"] <= now
                and row.get("notification_sent") is not True
            ]
        return due[:limit]

    def count_notified_for_user_in_window(self, user_id, start, end):
        with self._lock:
            return sum(
                1
                for row in self.rows.values()
                if row["user_id"] == user_id
                and row.get("notification_sent_at") is not None
                and start <= row["notification_sent_at"] <= end
            )

    def try_acquire_lock(self, nudge_id, now, ttl_ms):
        with self._lock:
            row = self.rows.get(nudge_id)
            if row is None or row.get("notification_sent") is True:
                return False
            lock_until = row.get("notification_lock_until")
            if lock_until is not None and lock_until > now:
                return False
            row["notification_lock_until"] = now + timedelta(milliseconds=ttl_ms)
            row["notification_lock_at"] = now
            return True

    def mark_processed(self, nudge_id, now, sent_at=None, skip_reason=None, clear_lock=False):
        with self._lock:
            row = self.rows[nudge_id]
            row["notification_sent"] = True
            row["updated_at"] = now
            if sent_at:
                row["notification_sent_at"] = sent_at
            if skip_reason:
                row["notification_skipped"] = skip_reason
            if clear_lock:
                row["notification_lock_until"] = None
                row["notification_lock_at"] = None

    def create_nudge(self, payload: NudgeCreate, now):
        with self._lock:
            nudge_id = f"created-{self._next_id}"
            self._next_id += 1
            self.rows[nudge_id] = {
                **payload.model_dump(),
                "id": nudge_id,
                "created_at": now,
                "updated_at": now,
            }
        return nudge_id

    def find_siblings_by_status(self, sequence_id, statuses, user_id=None):
        wanted = {_status(s) for s in statuses}
        with self._lock:
            return [
                Nudge.from_record(copy.deepcopy(row))
                for row in self.rows.values()
                if row.get("sequence_id") == sequence_id
                and _status(row["status"]) in wanted
                and (user_id is None or row["user_id"] == user_id)
            ]

    def batch_update(self, unit_of_work):
        if self.fail_batch_update:
            raise RuntimeError("batch write failed")
        check_batch_fields(unit_of_work)
        with self._lock:
            self.batch_calls.append(unit_of_work)
            for item in unit_of_work.items:
                self.rows[item.nudge_id].update(item.fields)

    def mark_completed(self, nudge_id, response_value, now, ai_interpretation=None):
        with self._lock:
            row = self.rows[nudge_id]
            row["status"] = NudgeStatus.COMPLETED.value
            row["completed_at"] = now
            row["updated_at"] = now
            cleaned = clean_response_value(response_value)
            if cleaned is not None:
                row["response_value"] = cleaned
            if ai_interpretation:
                row["ai_interpretation"] = ai_interpretation

    def list_for_user(self, user_id, statuses):
        wanted = {_status(s) for s in statuses}
        with self._lock:
            return [
                Nudge.from_record(copy.deepcopy(row))
                for row in self.rows.values()
                if row["user_id"] == user_id and _status(row["status"]) in wanted
            ]

    def list_history_for_user(self, user_id, limit):
        history = self.list_for_user(user_id, [NudgeStatus.COMPLETED, NudgeStatus.DISMISSED])
        history.sort(key=lambda nudge: nudge.updated_at or nudge.scheduled_for, reverse=True)
        return history[:limit]

    def snooze(self, nudge_id, snoozed_until, now):
        with self._lock:
            self.rows[nudge_id].update({
                "status": NudgeStatus.SNOOZED.value,
                "snoozed_until": snoozed_until,
                "updated_at": now,
            })

    def backfill_notification_sent(self):
        updated = 0
        with self._lock:
            for row in self.rows.values():
                if _status(row["status"]) == NudgeStatus.PENDING and row.get("notification_sent") is None:
                    row["notification_sent"] = False
                    updated += 1
        return updated


class FakePushDispatcher(PushDispatcher):
    """Records payloads; results default to ok for every token"""

    def __init__(self, tokens: Optional[Dict[str, List[str]]] = None):
        self.tokens = {user_id: list(values) for user_id, values in (tokens or {}).items()}
        self.sent: List[PushPayload] = []
        self.removed: List[tuple] = []
        self.failures: Dict[str, str] = {}
        self.token_errors: Dict[str, Exception] = {}
        self.send_error: Optional[Exception] = None
        self.on_send: Optional[Callable[[List[PushPayload]], None]] = None
        self._lock = threading.Lock()

    def get_push_tokens(self, user_id):
        if user_id in self.token_errors:
            raise self.token_errors[user_id]
        return [PushToken(token=token) for token in self.tokens.get(user_id, [])]

    def send(self, payloads):
        if self.send_error is not None:
            raise self.send_error
        with self._lock:
            self.sent.extend(payloads)
        if self.on_send is not None:
            self.on_send(payloads)
        results = []
        for payload in payloads:
            reason = self.failures.get(payload.to)
            if reason:
                results.append(PushResult(status="error", message=reason, failure_reason=reason))
            else:
                results.append(PushResult(status="ok", id=f"ticket-{payload.to}"))
        return results

    def remove_token(self, user_id, token):
        self.removed.append((user_id, token))
        self.tokens[user_id] = [t for t in self.tokens.get(user_id, []) if t != token]

    def sent_nudge_ids(self) -> List[str]:
        return [payload.data["nudgeId"] for payload in self.sent]


class FakeUserDirectory:
    """Timezones by user id; unknown users are on UTC"""

    def __init__(self, timezones: Optional[Dict[str, str]] = None):
        self.timezones = timezones or {}

    def get_timezone(self, user_id):
        return tz.gettz(self.timezones.get(user_id, "UTC"))


@pytest.fixture
def now():
    return FIXED_NOW


@pytest.fixture
def store():
    return InMemoryNudgeStore()


@pytest.fixture
def dispatcher():
    return FakePushDispatcher()


@pytest.fixture
def user_directory():
    return FakeUserDirectory()


@pytest.fixture
def make_nudge(store, now):
    """Insert a nudge row; keyword overrides win over the defaults"""
    counter = {"n": 0}

    def _make(**overrides) -> Nudge:
        counter["n"] += 1
        record = {
            "id": f"nudge-{counter['n']}",
            "user_id": "user-1",
            "type": "medication_checkin",
            "title": "Checking in",
            "message": "How is the new medication going?",
            "action_type": "quick_reply",
            "scheduled_for": now - timedelta(minutes=5),
            "sequence_id": "seq-1",
            "sequence_day": 1,
            "status": NudgeStatus.PENDING.value,
            "notification_sent": False,
        }
        record.update(overrides)
        return store.add(record)

    return _make
