from __future__ import annotations

from unittest.mock import MagicMock, Mock

from app.realtime.client import follow, iter_sse_data
from app.realtime.reconciler import ScheduleReconciler
from app.schemas import ChangeNotification

DAY = "2025-01-15"


def _note(kind, event):
    return ChangeNotification(type=kind, user="alice", event=event, timestamp="2025-01-15T09:00:00Z")


def test_add_is_idempotent_by_id(make_event):
    ev = make_event("Gym", "18:00")
    rec = ScheduleReconciler([], date=DAY)

    assert rec.apply(_note("add", ev)) is True
    assert rec.apply(_note("add", ev)) is False
    assert rec.ids() == [ev.id]


def test_add_keeps_sorted(make_event):
    lunch = make_event("Lunch", "12:00")
    standup = make_event("Standup", "09:00")
    rec = ScheduleReconciler([lunch], date=DAY)

    rec.apply(_note("add", standup))

    assert rec.ids() == [standup.id, lunch.id]


def test_remove_by_id(make_event):
    ev = make_event("Gym", "18:00")
    rec = ScheduleReconciler([ev], date=DAY)

    assert rec.apply(_note("remove", ev)) is True
    assert rec.events == []
    assert rec.apply(_note("remove", ev)) is False


def test_other_dates_are_ignored(make_event):
    rec = ScheduleReconciler([], date=DAY)
    assert rec.apply(_note("add", make_event("Tomorrow", "09:00", date="2025-01-16"))) is False
    assert rec.events == []


def test_apply_raw_ignores_junk(make_event):
    rec = ScheduleReconciler([], date=DAY)
    assert rec.apply_raw("not json") is False
    assert rec.apply_raw('{"type": "rename"}') is False
    assert rec.apply_raw(_note("add", make_event("Ok", "10:00")).model_dump_json()) is True


def test_reset_replaces_local_copy(make_event):
    rec = ScheduleReconciler([make_event("Old", "08:00")], date=DAY)
    fresh = [make_event("B", "11:00"), make_event("A", "07:00")]

    rec.reset(fresh)

    assert [e.title for e in rec.events] == ["A", "B"]


def test_iter_sse_data_skips_heartbeats():
    lines = [": heartbeat", "", "data: {\"a\": 1}", "", ": heartbeat", "", "data: tail"]
    assert list(iter_sse_data(lines)) == ['{"a": 1}', "tail"]


def test_iter_sse_data_joins_multiline_events():
    assert list(iter_sse_data(["data: one", "data: two", ""])) == ["one\ntwo"]


def test_follow_loads_day_then_applies_feed(make_event):
    existing = make_event("Standup", "09:00")
    added = make_event("Lunch", "12:00")
    day = Mock()
    day.json.return_value = {"events": [existing.model_dump()], "date": DAY, "userId": "alice"}
    stream = MagicMock()
    stream.__enter__.return_value = stream
    stream.iter_lines.return_value = [": heartbeat", "", "data: " + _note("add", added).model_dump_json(), ""]
    session = Mock()
    session.get.side_effect = [day, stream]
    seen = []

    rec = follow("http://drako.test", "alice", session=session, on_change=lambda r: seen.append(r.ids()))

    assert rec.ids() == [existing.id, added.id]
    assert seen == [[existing.id], [existing.id, added.id]]
    session.cookies.set.assert_called_once_with("drako_user_id", "alice")
