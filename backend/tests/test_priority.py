"""Tests for dispatch ordering"""
from app.services.priority import nudge_priority, sort_by_priority


def test_follow_ups_sort_first_then_medication_checkins(make_nudge):
    condition = make_nudge(type="condition_tracking")
    checkin = make_nudge(type="medication_checkin")
    follow_up = make_nudge(type="followup")

    ordered = sort_by_priority([condition, checkin, follow_up])

    assert [n.id for n in ordered] == [follow_up.id, checkin.id, condition.id]


def test_legacy_follow_up_ties_keep_input_order(make_nudge):
    checkin = make_nudge(type="medication_checkin")
    legacy = make_nudge(type="follow_up")
    follow_up = make_nudge(type="followup")
    insight = make_nudge(type="insight")
    condition = make_nudge(type="condition_tracking")

    ordered = sort_by_priority([checkin, legacy, insight, follow_up, condition])

    assert [n.id for n in ordered] == [legacy.id, follow_up.id, checkin.id, insight.id, condition.id]
    assert nudge_priority(legacy) == nudge_priority(follow_up) == 0
