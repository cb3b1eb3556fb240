from __future__ import annotations

from app.context import PALETTE
from app.graphs import day_builder
from app.graphs.day_builder import build_day, default_day, wake_minutes
from app.schemas import TimeSlot


def test_wake_time_from_answer_or_rhythm(make_user):
    assert wake_minutes(make_user(wakeUpTime="6:30")) == 390
    assert wake_minutes(make_user(wakeUpTime="7am")) == 420
    assert wake_minutes(make_user(wakeUpTime="12am")) == 0
    assert wake_minutes(make_user(wakeUpTime="sometime", rhythm="early_bird")) == 360
    assert wake_minutes(make_user(rhythm=None)) == 450


def test_default_day_respects_priorities(make_user):
    titles = [b["title"] for b in default_day(make_user(nonNegotiables=["exercise"]))]
    assert "🏋️ Exercise" in titles
    assert "🧠 Deep focus" not in titles
    assert "🥗 Lunch" in titles


def test_default_day_keeps_user_slots(make_user):
    user = make_user(timeSlots={"work": TimeSlot(start="09:00", end="17:00", label="Work", emoji="💼")})
    day = default_day(user)
    assert {"title": "💼 Work", "start": "09:00", "end": "17:00"} in day
    assert all(b["start"] < "09:00" or b["start"] >= "17:00" for b in day if b["title"] != "💼 Work")


def test_build_day_falls_back_to_template(make_user, test_settings):
    events, source = build_day(make_user(), "2025-01-15", test_settings)
    assert source == "template"
    assert events
    assert [e.start for e in events] == sorted(e.start for e in events)
    assert all(e.date == "2025-01-15" for e in events)
    assert events[0].color == PALETTE[0]


def test_build_day_reports_slots_source(make_user, test_settings):
    user = make_user(timeSlots={"gym": TimeSlot(start="18:00", end="19:00", label="Gym")})
    _, source = build_day(user, "2025-01-15", test_settings)
    assert source == "slots"


def test_build_day_uses_llm_draft(monkeypatch, make_user, test_settings):
    monkeypatch.setattr(
        day_builder, "draft_day_events",
        lambda user, date, weekday, cfg: [{"title": "Write", "start": "9:00", "end": "11:00"}, {"title": "Bad", "start": "99:00"}],
    )
    events, source = build_day(make_user(), "2025-01-15", test_settings)
    assert source == "llm"
    assert [(e.title, e.start) for e in events] == [("Write", "09:00")]
