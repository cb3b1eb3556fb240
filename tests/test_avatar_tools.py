"""Tests for the named operations the voice avatar calls."""

from __future__ import annotations

import pytest

from app.tools import avatar_tools
from app.tools.avatar_tools import UnknownTool, dispatch, parse_tool_call, schedule_context

pytestmark = pytest.mark.anyio

TODAY = "2025-01-15"


@pytest.mark.parametrize(
    "body, expected",
    [
        ({"function_name": "get_schedule", "arguments": '{"date": "2025-01-15"}'}, ("get_schedule", {"date": "2025-01-15"})),
        ({"name": "remove_event", "arguments": {"event_id": "evt_1"}}, ("remove_event", {"event_id": "evt_1"})),
        ({"tool_calls": [{"function": {"name": "add_event", "arguments": '{"title": "Gym"}'}}]}, ("add_event", {"title": "Gym"})),
        ({"function_name": "get_schedule", "arguments": "{broken"}, ("get_schedule", {})),
        ({"something": "else"}, None),
        ({"tool_calls": []}, None),
    ],
)
def test_parse_tool_call(body, expected):
    assert parse_tool_call(body) == expected


async def test_get_schedule_empty_day(context):
    assert await dispatch(context, "alice", "get_schedule", {}, TODAY) == f"No events scheduled for {TODAY}. The day is wide open!"


async def test_add_then_get(context):
    added = await dispatch(context, "alice", "add_event", {"title": "Gym", "start_time": "18:00", "end_time": "19:00"}, TODAY)
    listing = await dispatch(context, "alice", "get_schedule", {}, TODAY)

    assert added == 'Done! Added "Gym" at 18:00 to 19:00.'
    assert listing == f"You have 1 thing scheduled for {TODAY}: 18:00 - Gym"


async def test_add_requires_title_and_start(context):
    result = await dispatch(context, "alice", "add_event", {"title": "Gym"}, TODAY)
    assert result == "I need at least a title and start time to add an event."
    assert await context.schedules.read("alice", TODAY) == []


async def test_add_rejects_unreadable_time(context):
    result = await dispatch(context, "alice", "add_event", {"title": "Gym", "start_time": "6pm"}, TODAY)
    assert "HH:MM" in result


async def test_add_with_numeric_time_gives_hint(context):
    result = await dispatch(context, "alice", "add_event", {"title": "Gym", "start_time": 14}, TODAY)
    assert result == "I couldn't read the time 14. Please use 24-hour HH:MM."
    assert await context.schedules.read("alice", TODAY) == []


async def test_add_rejects_unreadable_date(context):
    result = await dispatch(context, "alice", "add_event", {"title": "Gym", "start_time": "18:00", "date": "tomorrow"}, TODAY)
    assert result == "I couldn't read the date tomorrow. Please use YYYY-MM-DD."
    assert await context.redis.keys("schedule:*") == []


async def test_move_rejects_unreadable_new_date(context, make_event):
    ev = await context.schedules.add("alice", make_event("Call", "09:00", date=TODAY))
    result = await dispatch(context, "alice", "move_event", {"event_id": ev.id, "new_start_time": "15:00", "new_date": "next week"}, TODAY)

    assert result == "I couldn't read the date next week. Please use YYYY-MM-DD."
    assert [(e.id, e.start) for e in await context.schedules.read("alice", TODAY)] == [(ev.id, "09:00")]


async def test_add_reports_conflict(context, monkeypatch):
    monkeypatch.setattr(avatar_tools, "validate_schedule_change", lambda current, action, details, cfg: {"ok": False, "conflict": "Overlaps lunch", "suggestion": None})

    result = await dispatch(context, "alice", "add_event", {"title": "Gym", "start_time": "12:00"}, TODAY)

    assert result == "There's a conflict: Overlaps lunch. Would you like to pick a different time?"
    assert await context.schedules.read("alice", TODAY) == []


async def test_move_event(context, make_event):
    ev = await context.schedules.add("alice", make_event("Call", "09:00", date=TODAY))
    result = await dispatch(context, "alice", "move_event", {"event_id": ev.id, "new_start_time": "15:00"}, TODAY)

    assert result == 'Moved "Call" to 15:00.'
    assert [e.start for e in await context.schedules.read("alice", TODAY)] == ["15:00"]


async def test_move_unknown_lists_events(context, make_event):
    ev = await context.schedules.add("alice", make_event("Call", "09:00", date=TODAY))
    result = await dispatch(context, "alice", "move_event", {"event_id": "evt_nope", "new_start_time": "15:00"}, TODAY)
    assert result == f'Couldn\'t find that event. Here are your events: "Call" (id: {ev.id})'


async def test_remove_event(context, make_event):
    ev = await context.schedules.add("alice", make_event("Call", "09:00", date=TODAY))
    result = await dispatch(context, "alice", "remove_event", {"event_id": ev.id}, TODAY)

    assert result == 'Removed "Call" from your schedule.'
    assert await context.schedules.read("alice", TODAY) == []


async def test_remove_unknown_on_empty_day(context):
    result = await dispatch(context, "alice", "remove_event", {"event_id": "evt_nope"}, TODAY)
    assert result == "Couldn't find that event. Here are your events: None scheduled"


async def test_unknown_tool_raises(context):
    with pytest.raises(UnknownTool):
        await dispatch(context, "alice", "delete_everything", {}, TODAY)


def test_schedule_context(make_event):
    assert schedule_context([], TODAY) == f"No events scheduled for {TODAY}. Empty day!"
    ev = make_event("Lunch", "12:00")
    assert schedule_context([ev], TODAY) == f'Current schedule for {TODAY}: 12:00 "Lunch" (id: {ev.id})'
