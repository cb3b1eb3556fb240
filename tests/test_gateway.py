"""Tests for the per-connection stream gateway."""

from __future__ import annotations

import json

import pytest
from starlette.requests import Request

from app.main import schedule_stream
from app.realtime.gateway import HEARTBEAT_FRAME, StreamGateway, sse_frame
from app.schemas import ChangeNotification

pytestmark = pytest.mark.anyio

DAY = "2025-01-15"


def _never_disconnected():
    async def _check() -> bool:
        return False

    return _check


async def test_same_user_receives_add(context, make_event):
    async with context.gateway("alice") as gw:
        ev = await context.schedules.add("alice", make_event("Gym", "18:00"))
        note = await gw.next_notification(1.0)

    assert note is not None
    assert note.type == "add" and note.event.id == ev.id


async def test_other_user_change_is_not_delivered(context, make_event):
    async with context.gateway("alice") as gw:
        await context.schedules.add("bob", make_event("Bob's gym", "18:00"))
        assert await gw.next_notification(0.1) is None


async def test_userless_notification_goes_to_default_user(context, fake_redis, make_event):
    async with context.gateway("demo") as demo, context.gateway("alice") as alice:
        await context.publisher.publish("add", None, make_event("Shared", "10:00"))
        assert await demo.next_notification(1.0) is not None
        assert await alice.next_notification(0.1) is None


async def test_unparseable_messages_are_skipped(context, fake_redis, make_event):
    async with context.gateway("alice") as gw:
        await fake_redis.publish("schedule:updates:alice", "not json")
        await context.schedules.add("alice", make_event("Real", "09:00"))
        note = await gw.next_notification(1.0)

    assert note is not None and note.event.title == "Real"


async def test_accepts_uses_default_user():
    gw = StreamGateway(client=None, user_id="demo", default_user="demo")
    note = ChangeNotification.model_validate(
        {"type": "add", "user": None, "timestamp": "t", "event": {"id": "e", "title": "x", "start": "09:00", "date": DAY}}
    )
    assert gw.accepts(note)


async def test_frames_heartbeat_when_idle_and_close_on_exit(context):
    gw = context.gateway("alice")
    frames = gw.frames(_never_disconnected())

    first = await frames.__anext__()
    await frames.aclose()

    assert first == HEARTBEAT_FRAME
    assert gw._pubsub is None


async def test_frames_carry_notification_json(context, make_event):
    gw = context.gateway("alice")
    await gw.open()
    frames = gw.frames(_never_disconnected())

    ev = await context.schedules.add("alice", make_event("Lunch", "12:00"))
    frame = await frames.__anext__()
    await frames.aclose()

    assert frame.startswith("data: ") and frame.endswith("\n\n")
    payload = json.loads(frame[len("data: "):])
    assert payload["type"] == "add" and payload["event"]["id"] == ev.id


async def test_frames_stop_when_client_disconnects(context):
    async def gone() -> bool:
        return True

    gw = context.gateway("alice")
    assert [f async for f in gw.frames(gone)] == []
    assert gw._pubsub is None


def test_sse_frame_format():
    assert sse_frame('{"a":1}') == 'data: {"a":1}\n\n'


def _stream_request(cookie: bytes = b"") -> Request:
    async def receive():
        return {"type": "http.request", "body": b"", "more_body": False}

    headers = [(b"cookie", cookie)] if cookie else []
    scope = {"type": "http", "method": "GET", "path": "/api/schedule/stream", "headers": headers, "query_string": b""}
    return Request(scope, receive)


async def _next_data_frame(body, attempts: int = 20) -> str:
    for _ in range(attempts):
        frame = await body.__anext__()
        if frame.startswith("data: "):
            return frame
    raise AssertionError("no data frame arrived")


async def test_stream_route_serves_sse_for_cookie_user(context, make_event):
    resp = await schedule_stream(_stream_request(b"drako_user_id=alice"), context)

    assert resp.media_type == "text/event-stream"
    assert resp.headers["cache-control"] == "no-cache, no-transform"
    assert resp.headers["x-accel-buffering"] == "no"

    body = resp.body_iterator
    try:
        assert await body.__anext__() == HEARTBEAT_FRAME
        await context.schedules.add("bob", make_event("Bob's gym", "18:00"))
        ev = await context.schedules.add("alice", make_event("Gym", "07:00"))

        note = json.loads((await _next_data_frame(body))[len("data: "):])
    finally:
        await body.aclose()

    assert note["type"] == "add" and note["user"] == "alice"
    assert note["event"]["id"] == ev.id


async def test_stream_route_without_cookie_follows_default_user(context, make_event):
    resp = await schedule_stream(_stream_request(), context)

    body = resp.body_iterator
    try:
        assert await body.__anext__() == HEARTBEAT_FRAME
        await context.schedules.add("alice", make_event("Alice only", "08:00"))
        ev = await context.schedules.add(context.settings.DEFAULT_USER_ID, make_event("Coffee", "09:00"))

        note = json.loads((await _next_data_frame(body))[len("data: "):])
    finally:
        await body.aclose()

    assert note["event"]["id"] == ev.id
