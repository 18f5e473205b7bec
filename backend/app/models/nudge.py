"""Nudge models"""
from enum import Enum
from pydantic import BaseModel, Field
from typing import Any, Dict, List, Optional, Union
from datetime import datetime


class NudgeStatus(str, Enum):
    PENDING = "pending"
    ACTIVE = "active"
    SNOOZED = "snoozed"
    DISMISSED = "dismissed"
    COMPLETED = "completed"


class NudgeType(str, Enum):
    MEDICATION_CHECKIN = "medication_checkin"
    CONDITION_TRACKING = "condition_tracking"
    FOLLOWUP = "followup"
    FOLLOW_UP_LEGACY = "follow_up"
    INTRODUCTION = "introduction"
    INSIGHT = "insight"


FOLLOW_UP_TYPES = frozenset({NudgeType.FOLLOWUP.value, NudgeType.FOLLOW_UP_LEGACY.value})


class NudgeResponseChoice(str, Enum):
    """Quick-reply values a user can send back from a nudge card"""
    GOT_IT = "got_it"
    NOT_YET = "not_yet"
    TAKING_IT = "taking_it"
    HAVING_TROUBLE = "having_trouble"
    GOOD = "good"
    OKAY = "okay"
    ISSUES = "issues"
    NONE = "none"
    MILD = "mild"
    CONCERNING = "concerning"


class ResponseCategory(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    CONCERNING = "concerning"


class Sentiment(str, Enum):
    POSITIVE = "positive"
    NEUTRAL = "neutral"
    NEGATIVE = "negative"
    CONCERNING = "concerning"


class FollowUpUrgency(str, Enum):
    IMMEDIATE = "immediate"
    SAME_DAY = "same_day"
    NEXT_DAY = "next_day"
    THREE_DAYS = "3_days"
    ONE_WEEK = "1_week"
    NONE = "none"

    @classmethod
    def parse(cls, value: Any) -> Optional["FollowUpUrgency"]:
        """Return the matching urgency, or None when the value is not recognized"""
        if isinstance(value, cls):
            return value
        try:
            return cls(value)
        except ValueError:
            return None


class NotificationSkipReason(str, Enum):
    NO_PUSH_TOKENS = "no_push_tokens"


class Nudge(BaseModel):
    """Nudge record as stored in the nudges table"""
    id: str
    user_id: str
    type: str = NudgeType.MEDICATION_CHECKIN.value
    title: str = ""
    message: str = ""
    action_type: Optional[str] = None
    condition_id: Optional[str] = None
    medication_id: Optional[str] = None
    medication_name: Optional[str] = None
    visit_id: Optional[str] = None
    scheduled_for: datetime
    sequence_day: Optional[int] = None
    sequence_id: Optional[str] = None
    status: NudgeStatus = NudgeStatus.PENDING
    snoozed_until: Optional[datetime] = None
    # Legacy rows were written before this column existed; None means "not sent".
    notification_sent: Optional[bool] = None
    notification_sent_at: Optional[datetime] = None
    notification_skipped: Optional[str] = None
    notification_lock_until: Optional[datetime] = None
    notification_lock_at: Optional[datetime] = None
    response_value: Optional[Union[str, Dict[str, Any]]] = None
    ai_interpretation: Optional[Dict[str, Any]] = None
    created_at: Optional[datetime] = None
    updated_at: Optional[datetime] = None
    dismissed_at: Optional[datetime] = None
    completed_at: Optional[datetime] = None

    class Config:
        extra = "ignore"
        use_enum_values = False

    @property
    def is_follow_up(self) -> bool:
        return self.type in FOLLOW_UP_TYPES

    @classmethod
    def from_record(cls, record: Dict[str, Any]) -> "Nudge":
        return cls.model_validate(record)


class NudgeCreate(BaseModel):
    """Nudge creation model"""
    user_id: str
    type: str
    title: str
    message: str
    action_type: Optional[str] = None
    condition_id: Optional[str] = None
    medication_id: Optional[str] = None
    medication_name: Optional[str] = None
    visit_id: Optional[str] = None
    scheduled_for: datetime
    sequence_day: int = 0
    sequence_id: Optional[str] = None
    status: NudgeStatus = NudgeStatus.PENDING
    notification_sent: bool = False
    ai_generated: bool = False
    personalized_context: Optional[str] = None


class FieldPatch(BaseModel):
    """One (nudge id, field updates) entry of a unit of work"""
    nudge_id: str
    fields: Dict[str, Any]


class UnitOfWork(BaseModel):
    """Ordered list of per-nudge patches the store applies atomically"""
    items: List[FieldPatch] = Field(default_factory=list)

    def add(self, nudge_id: str, fields: Dict[str, Any]) -> "UnitOfWork":
        self.items.append(FieldPatch(nudge_id=nudge_id, fields=dict(fields)))
        return self

    @property
    def nudge_ids(self) -> List[str]:
        return [item.nudge_id for item in self.items]

    def shared_fields(self) -> Optional[Dict[str, Any]]:
        """Return the patch when every item carries the same one, else None"""
        if not self.items:
            return None
        first = self.items[0].fields
        if all(item.fields == first for item in self.items[1:]):
            return first
        return None

    def __len__(self) -> int:
        return len(self.items)


class NudgeProcessingStats(BaseModel):
    """Counters returned by one notification processor run"""
    processed: int = 0
    notified: int = 0
    errors: int = 0
    skipped_daily_limit: int = 0
    skipped_quiet_hours: int = 0
    skipped_locked: int = 0

    def to_response(self) -> Dict[str, int]:
        return {
            "processed": self.processed,
            "notified": self.notified,
            "errors": self.errors,
            "skippedDailyLimit": self.skipped_daily_limit,
            "skippedQuietHours": self.skipped_quiet_hours,
            "skippedLocked": self.skipped_locked,
        }


class FollowUpRecommendation(BaseModel):
    """Follow-up suggestion produced by the response interpreter"""
    needed: bool = False
    urgency: str = FollowUpUrgency.NONE.value
    reason: str = "No follow-up needed"
    focus_area: Optional[str] = None
    suggested_message: Optional[str] = None


class ResponseInterpretation(BaseModel):
    """Interpreter output for a free-text nudge response"""
    sentiment: Sentiment = Sentiment.NEUTRAL
    extracted_data: Dict[str, Any] = Field(default_factory=dict)
    follow_up: Optional[FollowUpRecommendation] = None
    suggested_action: Optional[str] = None
    summary: str = "Response received."

    @property
    def follow_up_needed(self) -> bool:
        return bool(self.follow_up and self.follow_up.needed)


class NudgeResponseOutcome(BaseModel):
    """What happened as a result of a user responding to a nudge"""
    nudge_id: str
    status: NudgeStatus = NudgeStatus.COMPLETED
    category: ResponseCategory
    siblings_dismissed: int = 0
    follow_up_nudge_id: Optional[str] = None
    follow_up_scheduled_for: Optional[datetime] = None
    message: str
