"""Data models for the nudge service"""
from app.models.nudge import (
    FollowUpRecommendation,
    FollowUpUrgency,
    Nudge,
    NudgeCreate,
    NudgeProcessingStats,
    NudgeResponseChoice,
    NudgeResponseOutcome,
    NudgeStatus,
    NudgeType,
    NotificationSkipReason,
    ResponseCategory,
    ResponseInterpretation,
    Sentiment,
    UnitOfWork,
)
from app.models.push import PushPayload, PushResult, PushToken

__all__ = [
    "FollowUpRecommendation",
    "FollowUpUrgency",
    "Nudge",
    "NudgeCreate",
    "NudgeProcessingStats",
    "NudgeResponseChoice",
    "NudgeResponseOutcome",
    "NudgeStatus",
    "NudgeType",
    "NotificationSkipReason",
    "ResponseCategory",
    "ResponseInterpretation",
    "Sentiment",
    "UnitOfWork",
    "PushPayload",
    "PushResult",
    "PushToken",
]
