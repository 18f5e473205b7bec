"""Dispatch ordering for due nudges"""
from typing import List, Sequence
from app.models.nudge import Nudge, NudgeType

FOLLOW_UP_PRIORITY = 0
DEFAULT_PRIORITY = 2

# Ranks for non-follow-up types; anything unlisted gets DEFAULT_PRIORITY
TYPE_PRIORITY = {
    NudgeType.MEDICATION_CHECKIN.value: 1,
}


def nudge_priority(nudge: Nudge) -> int:
    """Lower ranks are sent first. Follow-ups (including the legacy follow_up type) lead."""
    if nudge.is_follow_up:
        return FOLLOW_UP_PRIORITY
    return TYPE_PRIORITY.get(nudge.type, DEFAULT_PRIORITY)


def sort_by_priority(nudges: Sequence[Nudge]) -> List[Nudge]:
    """Order nudges for dispatch; Python's sort is stable so input order breaks ties"""
    return sorted(nudges, key=nudge_priority)
