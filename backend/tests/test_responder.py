"""Tests for response-driven sibling dismissal and follow-up scheduling"""
import pytest
from datetime import datetime, timedelta, timezone
from unittest.mock import Mock
from dateutil import tz
from app.agents.cognition.responder import (
    NudgeResponder,
    classify_choice,
    compute_follow_up_time,
    follow_up_copy,
)
from app.exceptions import NudgeAccessDeniedError, NudgeNotFoundError
from app.models.nudge import (
    FollowUpRecommendation,
    FollowUpUrgency,
    NudgeResponseChoice,
    ResponseCategory,
    ResponseInterpretation,
    Sentiment,
)

CHICAGO = tz.gettz("America/Chicago")


def at_utc(*args):
    return datetime(*args, tzinfo=timezone.utc)


@pytest.fixture
def interpreter():
    return Mock()


@pytest.fixture
def responder(store, user_directory, interpreter):
    return NudgeResponder(store, user_directory, interpreter=interpreter)


@pytest.mark.parametrize("urgency,expected", [
    ("immediate", at_utc(2026, 3, 10, 15, 30)),
    ("same_day", at_utc(2026, 3, 10, 19, 0)),
    ("next_day", at_utc(2026, 3, 11, 15, 0)),
    ("3_days", at_utc(2026, 3, 13, 15, 0)),
    ("1_week", at_utc(2026, 3, 17, 15, 0)),
    ("none", at_utc(2026, 3, 11, 15, 0)),
    ("whenever", at_utc(2026, 3, 11, 15, 0)),
])
def test_compute_follow_up_time(urgency, expected, now):
    assert compute_follow_up_time(urgency, now, CHICAGO, local_hour=10) == expected


def test_day_offsets_land_on_local_hour_in_user_timezone(now):
    # 2026-03-10 15:00 UTC is 00:00 on the 11th in Tokyo
    scheduled = compute_follow_up_time(FollowUpUrgency.NEXT_DAY, now, tz.gettz("Asia/Tokyo"), local_hour=10)

    assert scheduled == at_utc(2026, 3, 12, 1, 0)


def test_unrecognized_urgency_is_not_normalized(now):
    odd = now.replace(minute=17, second=42)

    assert compute_follow_up_time("soonish", odd, CHICAGO) == odd + timedelta(days=1)


def test_classify_choice():
    assert classify_choice(NudgeResponseChoice.GOT_IT) == ResponseCategory.POSITIVE
    assert classify_choice(NudgeResponseChoice.NONE) == ResponseCategory.POSITIVE
    assert classify_choice(NudgeResponseChoice.HAVING_TROUBLE) == ResponseCategory.CONCERNING
    assert classify_choice(NudgeResponseChoice.OKAY) == ResponseCategory.NEUTRAL
    assert classify_choice(NudgeResponseChoice.NOT_YET) == ResponseCategory.NEUTRAL


def test_follow_up_copy_mentions_medication(make_nudge):
    copy = follow_up_copy(make_nudge(medication_name="Lisinopril"))

    assert copy["title"] == "Following up: Lisinopril"
    assert "Lisinopril" in copy["message"]


def test_positive_response_dismisses_pending_and_snoozed_siblings(responder, store, make_nudge, now):
    source = make_nudge(status="active")
    pending = make_nudge(scheduled_for=now + timedelta(days=1))
    snoozed = make_nudge(status="snoozed", snoozed_until=now + timedelta(days=2))
    done = make_nudge(status="completed")
    other_sequence = make_nudge(sequence_id="seq-2")
    other_user = make_nudge(user_id="user-2")

    outcome = responder.respond(source.id, "user-1", NudgeResponseChoice.TAKING_IT, now=now)

    assert outcome.category == ResponseCategory.POSITIVE
    assert outcome.siblings_dismissed == 2
    assert store.raw(source.id)["status"] == "completed"
    for sibling in (pending, snoozed):
        row = store.raw(sibling.id)
        assert row["status"] == "dismissed"
        assert row["dismissal_reason"] == "sequence_resolved"
        assert row["dismissed_at"] == now
    assert store.raw(done.id)["status"] == "completed"
    assert store.raw(other_sequence.id)["status"] == "pending"
    assert store.raw(other_user.id)["status"] == "pending"
    # Siblings go out in a single write
    assert len(store.batch_calls) == 1
    assert sorted(store.batch_calls[0].nudge_ids) == sorted([pending.id, snoozed.id])


def test_response_value_is_stored_without_empty_fields(responder, store, make_nudge, now):
    source = make_nudge(status="active")

    responder.respond(source.id, "user-1", NudgeResponseChoice.GOOD, now=now, side_effects=["nausea"])

    assert store.raw(source.id)["response_value"] == {"response": "good", "sideEffects": ["nausea"]}


def test_concerning_response_schedules_follow_up(responder, store, make_nudge, now):
    source = make_nudge(status="active", medication_name="Metformin", medication_id="med-1")
    sibling = make_nudge(scheduled_for=now + timedelta(days=1))

    outcome = responder.respond(source.id, "user-1", NudgeResponseChoice.CONCERNING, now=now)

    assert outcome.category == ResponseCategory.CONCERNING
    assert outcome.follow_up_scheduled_for == now + timedelta(hours=4)
    created = store.raw(outcome.follow_up_nudge_id)
    assert created["type"] == "followup"
    assert created["sequence_id"] == f"followup_{source.id}"
    assert created["status"] == "pending"
    assert created["notification_sent"] is False
    assert created["medication_id"] == "med-1"
    assert created["title"] == "Following up: Metformin"
    # Concerning responses leave the rest of the sequence alone
    assert store.raw(sibling.id)["status"] == "pending"


def test_having_trouble_follows_up_next_day_at_local_hour(responder, store, user_directory, make_nudge, now):
    user_directory.timezones["user-1"] = "America/Chicago"
    source = make_nudge(status="active")

    outcome = responder.respond(source.id, "user-1", NudgeResponseChoice.HAVING_TROUBLE, now=now)

    assert outcome.follow_up_scheduled_for == at_utc(2026, 3, 11, 15, 0)


def test_neutral_response_has_no_side_effects(responder, store, make_nudge, now):
    source = make_nudge(status="active")
    sibling = make_nudge()

    outcome = responder.respond(source.id, "user-1", NudgeResponseChoice.OKAY, now=now)

    assert outcome.category == ResponseCategory.NEUTRAL
    assert outcome.follow_up_nudge_id is None
    assert store.raw(sibling.id)["status"] == "pending"
    assert store.batch_calls == []


def test_unknown_nudge_raises_not_found(responder):
    with pytest.raises(NudgeNotFoundError):
        responder.respond("missing", "user-1", NudgeResponseChoice.GOOD)


def test_other_users_nudge_is_rejected_untouched(responder, store, make_nudge, now):
    source = make_nudge(user_id="owner", status="active")

    with pytest.raises(NudgeAccessDeniedError):
        responder.respond(source.id, "intruder", NudgeResponseChoice.GOOD, now=now)

    assert store.raw(source.id)["status"] == "active"


def test_sibling_dismissal_failure_keeps_completion(responder, store, make_nudge, now):
    source = make_nudge(status="active")
    sibling = make_nudge()
    store.fail_batch_update = True

    outcome = responder.respond(source.id, "user-1", NudgeResponseChoice.GOT_IT, now=now)

    assert outcome.siblings_dismissed == 0
    assert store.raw(source.id)["status"] == "completed"
    assert store.raw(sibling.id)["status"] == "pending"


def test_follow_up_failure_keeps_completion(responder, store, user_directory, make_nudge, now):
    source = make_nudge(status="active")
    user_directory.get_timezone = Mock(side_effect=RuntimeError("profile lookup failed"))

    outcome = responder.respond(source.id, "user-1", NudgeResponseChoice.ISSUES, now=now)

    assert outcome.category == ResponseCategory.CONCERNING
    assert outcome.follow_up_nudge_id is None
    assert store.raw(source.id)["status"] == "completed"


def test_free_text_follow_up_uses_timestamped_sequence(responder, store, interpreter, make_nudge, now):
    source = make_nudge(status="active")
    interpreter.interpret.return_value = ResponseInterpretation(
        sentiment=Sentiment.NEGATIVE,
        follow_up=FollowUpRecommendation(
            needed=True,
            urgency="3_days",
            reason="Mild side effects",
            suggested_message="Are the headaches any better?",
        ),
        summary="Patient reports headaches.",
    )

    outcome = responder.respond_free_text(source.id, "user-1", "I keep getting headaches", now=now)

    assert outcome.category == ResponseCategory.CONCERNING
    created = store.raw(outcome.follow_up_nudge_id)
    assert created["sequence_id"] == f"followup_{source.id}_{int(now.timestamp() * 1000)}"
    assert created["message"] == "Are the headaches any better?"
    assert created["ai_generated"] is True
    assert created["personalized_context"] == "Mild side effects"
    completed = store.raw(source.id)
    assert completed["status"] == "completed"
    assert completed["response_value"] == {"text": "I keep getting headaches"}
    assert completed["ai_interpretation"]["followUpUrgency"] == "3_days"


def test_free_text_positive_dismisses_siblings(responder, store, interpreter, make_nudge, now):
    source = make_nudge(status="active")
    sibling = make_nudge(scheduled_for=now + timedelta(days=3))
    interpreter.interpret.return_value = ResponseInterpretation(
        sentiment=Sentiment.POSITIVE,
        follow_up=FollowUpRecommendation(needed=False),
        summary="All good.",
    )

    outcome = responder.respond_free_text(source.id, "user-1", "Feeling great", now=now)

    assert outcome.category == ResponseCategory.POSITIVE
    assert outcome.siblings_dismissed == 1
    assert outcome.follow_up_nudge_id is None
    assert store.raw(sibling.id)["status"] == "dismissed"


def test_free_text_positive_with_follow_up_keeps_sequence_open(
    responder, store, interpreter, user_directory, make_nudge, now
):
    user_directory.timezones["user-1"] = "America/Chicago"
    source = make_nudge(status="active")
    sibling = make_nudge(scheduled_for=now + timedelta(days=3))
    interpreter.interpret.return_value = ResponseInterpretation(
        sentiment=Sentiment.POSITIVE,
        follow_up=FollowUpRecommendation(needed=True, urgency="1_week", reason="Check it sticks"),
        summary="Doing well on the new dose.",
    )

    outcome = responder.respond_free_text(source.id, "user-1", "Doing well so far", now=now)

    assert outcome.category == ResponseCategory.CONCERNING
    assert outcome.siblings_dismissed == 0
    assert store.raw(sibling.id)["status"] == "pending"
    assert outcome.follow_up_scheduled_for == at_utc(2026, 3, 17, 15, 0)
    assert store.raw(outcome.follow_up_nudge_id)["type"] == "followup"
