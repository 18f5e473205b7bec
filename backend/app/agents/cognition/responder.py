"""Cognition Agent that reacts to nudge responses: closes out sequences or schedules follow-ups"""
from typing import Callable, Dict, List, Optional
from datetime import datetime, timedelta, timezone, tzinfo
from dateutil import tz
from app.agents.cognition.interpreter import ResponseInterpreter
from app.config import settings
from app.models.nudge import (
    FollowUpUrgency,
    Nudge,
    NudgeCreate,
    NudgeResponseChoice,
    NudgeResponseOutcome,
    NudgeStatus,
    NudgeType,
    ResponseCategory,
    ResponseInterpretation,
    Sentiment,
    UnitOfWork,
)
from app.repositories.nudge_repository import NudgeStore
from app.services.nudge_service import dismissal_fields, load_owned_nudge
from app.services.user_directory import UserDirectory
from app.utils.monitoring import StructuredLogger


POSITIVE_CHOICES = frozenset({
    NudgeResponseChoice.TAKING_IT,
    NudgeResponseChoice.GOOD,
    NudgeResponseChoice.NONE,
    NudgeResponseChoice.GOT_IT,
})

# Urgency used when a quick-reply response needs a follow-up
CONCERNING_CHOICE_URGENCY: Dict[NudgeResponseChoice, FollowUpUrgency] = {
    NudgeResponseChoice.CONCERNING: FollowUpUrgency.SAME_DAY,
    NudgeResponseChoice.HAVING_TROUBLE: FollowUpUrgency.NEXT_DAY,
    NudgeResponseChoice.ISSUES: FollowUpUrgency.NEXT_DAY,
}

SIBLING_STATUSES = (NudgeStatus.PENDING, NudgeStatus.SNOOZED)
SEQUENCE_RESOLVED_REASON = "sequence_resolved"

# Offsets applied without normalizing to a local hour
URGENCY_OFFSETS = {
    FollowUpUrgency.IMMEDIATE: timedelta(minutes=30),
    FollowUpUrgency.SAME_DAY: timedelta(hours=4),
}
# Whole-day offsets, landed on FOLLOW_UP_LOCAL_HOUR in the user's timezone
URGENCY_DAYS = {
    FollowUpUrgency.NEXT_DAY: 1,
    FollowUpUrgency.THREE_DAYS: 3,
    FollowUpUrgency.ONE_WEEK: 7,
}

RESPONSE_MESSAGES = {
    ResponseCategory.POSITIVE: "Great! Thanks for the update.",
    ResponseCategory.CONCERNING: "Thanks for sharing. This is worth mentioning to your doctor at your next visit.",
    ResponseCategory.NEUTRAL: "Thanks for letting us know!",
}


def classify_choice(choice: NudgeResponseChoice) -> ResponseCategory:
    if choice in POSITIVE_CHOICES:
        return ResponseCategory.POSITIVE
    if choice in CONCERNING_CHOICE_URGENCY:
        return ResponseCategory.CONCERNING
    return ResponseCategory.NEUTRAL


def classify_interpretation(interpretation: ResponseInterpretation) -> ResponseCategory:
    if interpretation.follow_up_needed:
        return ResponseCategory.CONCERNING
    if interpretation.sentiment == Sentiment.POSITIVE:
        return ResponseCategory.POSITIVE
    return ResponseCategory.NEUTRAL


def compute_follow_up_time(
    urgency,
    now: datetime,
    user_tz: Optional[tzinfo] = None,
    local_hour: Optional[int] = None,
) -> datetime:
    """
    Map a follow-up urgency to the instant the follow-up nudge becomes due.

    immediate -> +30 minutes, same_day -> +4 hours, next_day / 3_days / 1_week
    -> that many calendar days ahead at ``local_hour`` in the user's timezone.
    Anything else (including "none") falls back to exactly one day later.
    """
    parsed = FollowUpUrgency.parse(urgency)

    if parsed in URGENCY_OFFSETS:
        return now + URGENCY_OFFSETS[parsed]

    if parsed in URGENCY_DAYS:
        hour = local_hour if local_hour is not None else settings.FOLLOW_UP_LOCAL_HOUR
        local_now = now.astimezone(user_tz or tz.UTC)
        target = (local_now + timedelta(days=URGENCY_DAYS[parsed])).replace(
            hour=hour, minute=0, second=0, microsecond=0
        )
        return target.astimezone(timezone.utc)

    StructuredLogger.log_event(
        "followup_urgency_fallback",
        f"Unrecognized follow-up urgency {urgency!r}, scheduling for next day",
        level="WARNING",
    )
    return now + timedelta(days=1)


def follow_up_copy(source: Nudge, suggested_message: Optional[str] = None) -> Dict[str, str]:
    if source.medication_name:
        title = f"Following up: {source.medication_name}"
        message = f"You mentioned some trouble with {source.medication_name}. How are things going now?"
    else:
        title = "Checking back in"
        message = "You mentioned some concerns last time. How are you feeling now?"
    if suggested_message:
        message = suggested_message.strip()[:250]
    return {"title": title[:50], "message": message}


class NudgeResponder:
    """
    Handles a user's response to a nudge.

    The source nudge is always completed first. Positive responses then dismiss
    the rest of the nudge's sequence in one batch; concerning responses create a
    single follow-up nudge timed by urgency. Both side effects are best-effort
    and never undo the completion.
    """

    def __init__(
        self,
        store: NudgeStore,
        user_directory: UserDirectory,
        interpreter: Optional[ResponseInterpreter] = None,
        clock: Optional[Callable[[], datetime]] = None,
    ):
        self.store = store
        self.user_directory = user_directory
        self.interpreter = interpreter or ResponseInterpreter()
        self.clock = clock or (lambda: datetime.now(timezone.utc))

    def respond(
        self,
        nudge_id: str,
        user_id: str,
        response: NudgeResponseChoice,
        now: Optional[datetime] = None,
        note: Optional[str] = None,
        side_effects: Optional[List[str]] = None,
    ) -> NudgeResponseOutcome:
        now = now or self.clock()
        response = NudgeResponseChoice(response)
        nudge = load_owned_nudge(self.store, nudge_id, user_id)

        self.store.mark_completed(
            nudge.id,
            {"response": response.value, "note": note, "sideEffects": side_effects},
            now,
        )

        category = classify_choice(response)
        outcome = NudgeResponseOutcome(
            nudge_id=nudge.id,
            category=category,
            message=RESPONSE_MESSAGES[category],
        )

        StructuredLogger.log_event(
            "nudge_response_recorded",
            f"Nudge {nudge.id} responded with {response.value}",
            user_id=user_id,
            metadata={"category": category.value, "sequence_id": nudge.sequence_id},
        )

        if category == ResponseCategory.POSITIVE:
            outcome.siblings_dismissed = self._dismiss_siblings(nudge, now)
        elif category == ResponseCategory.CONCERNING:
            self._schedule_follow_up(
                nudge,
                CONCERNING_CHOICE_URGENCY[response],
                now,
                sequence_id=f"followup_{nudge.id}",
                outcome=outcome,
            )

        return outcome

    def respond_free_text(
        self,
        nudge_id: str,
        user_id: str,
        text: str,
        now: Optional[datetime] = None,
    ) -> NudgeResponseOutcome:
        now = now or self.clock()
        nudge = load_owned_nudge(self.store, nudge_id, user_id)

        interpretation = self.interpreter.interpret(nudge, text)
        self.store.mark_completed(
            nudge.id,
            {"text": text},
            now,
            ai_interpretation=ResponseInterpreter.to_record(interpretation),
        )

        category = classify_interpretation(interpretation)
        outcome = NudgeResponseOutcome(
            nudge_id=nudge.id,
            category=category,
            message=RESPONSE_MESSAGES[category],
        )

        StructuredLogger.log_event(
            "nudge_response_recorded",
            f"Nudge {nudge.id} free-text response interpreted as {interpretation.sentiment.value}",
            user_id=user_id,
            metadata={"category": category.value, "summary": interpretation.summary},
        )

        # A recommended follow-up outranks positive sentiment, so the sequence stays open
        if category == ResponseCategory.POSITIVE:
            outcome.siblings_dismissed = self._dismiss_siblings(nudge, now)
        elif category == ResponseCategory.CONCERNING:
            # Suffix keeps repeated follow-ups from the same source distinct
            sequence_id = f"followup_{nudge.id}_{int(now.timestamp() * 1000)}"
            self._schedule_follow_up(
                nudge,
                interpretation.follow_up.urgency,
                now,
                sequence_id=sequence_id,
                outcome=outcome,
                suggested_message=interpretation.follow_up.suggested_message,
                ai_context=interpretation.follow_up.reason,
            )

        return outcome

    def _dismiss_siblings(self, nudge: Nudge, now: datetime) -> int:
        if not nudge.sequence_id:
            return 0

        try:
            siblings = self.store.find_siblings_by_status(
                nudge.sequence_id,
                SIBLING_STATUSES,
                user_id=nudge.user_id,
            )
            unit_of_work = UnitOfWork()
            for sibling in siblings:
                if sibling.id != nudge.id:
                    unit_of_work.add(sibling.id, dismissal_fields(now, SEQUENCE_RESOLVED_REASON))

            if not len(unit_of_work):
                return 0

            self.store.batch_update(unit_of_work)
            StructuredLogger.log_event(
                "nudge_siblings_dismissed",
                f"Dismissed {len(unit_of_work)} remaining nudges in sequence {nudge.sequence_id}",
                user_id=nudge.user_id,
                metadata={"source_nudge_id": nudge.id, "dismissed_ids": unit_of_work.nudge_ids},
            )
            return len(unit_of_work)
        except Exception as e:
            StructuredLogger.log_error(
                e,
                context={"function": "_dismiss_siblings", "nudge_id": nudge.id, "sequence_id": nudge.sequence_id},
                user_id=nudge.user_id,
            )
            return 0

    def _schedule_follow_up(
        self,
        nudge: Nudge,
        urgency,
        now: datetime,
        sequence_id: str,
        outcome: NudgeResponseOutcome,
        suggested_message: Optional[str] = None,
        ai_context: Optional[str] = None,
    ) -> None:
        try:
            user_tz = self.user_directory.get_timezone(nudge.user_id)
            scheduled_for = compute_follow_up_time(urgency, now, user_tz)
            copy = follow_up_copy(nudge, suggested_message)

            payload = NudgeCreate(
                user_id=nudge.user_id,
                type=NudgeType.FOLLOWUP.value,
                title=copy["title"],
                message=copy["message"],
                action_type=nudge.action_type or "feeling_check",
                condition_id=nudge.condition_id,
                medication_id=nudge.medication_id,
                medication_name=nudge.medication_name,
                visit_id=nudge.visit_id,
                scheduled_for=scheduled_for,
                sequence_day=0,
                sequence_id=sequence_id,
                ai_generated=ai_context is not None,
                personalized_context=ai_context,
            )
            follow_up_id = self.store.create_nudge(payload, now)

            outcome.follow_up_nudge_id = follow_up_id
            outcome.follow_up_scheduled_for = scheduled_for
            StructuredLogger.log_event(
                "nudge_followup_created",
                f"Created follow-up nudge {follow_up_id} for {nudge.id}",
                user_id=nudge.user_id,
                metadata={
                    "source_nudge_id": nudge.id,
                    "urgency": getattr(urgency, "value", urgency),
                    "scheduled_for": scheduled_for.isoformat(),
                    "sequence_id": sequence_id,
                },
            )
        except Exception as e:
            StructuredLogger.log_error(
                e,
                context={"function": "_schedule_follow_up", "nudge_id": nudge.id, "urgency": getattr(urgency, "value", urgency)},
                user_id=nudge.user_id,
            )
