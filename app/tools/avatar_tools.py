"""
Operations the voice avatar can call by name during a conversation.

Each returns a short sentence the avatar reads back; a missing event or
argument is an answer, not an error.
"""

from __future__ import annotations
import asyncio
import json
import logging
from typing import Any, Awaitable, Callable, Dict, Optional, Tuple
from pydantic import ValidationError
from app.context import AppContext, new_event_id
from app.llm.llm import validate_schedule_change
from app.schemas import ScheduleEvent, normalize_date
from app.tools.calendar import describe_day

logger = logging.getLogger(__name__)

ToolArgs = Dict[str, Any]


class UnknownTool(LookupError):
    pass


def parse_args(args: Any) -> ToolArgs:
    if not args:
        return {}
    if isinstance(args, str):
        try:
            parsed = json.loads(args)
        except json.JSONDecodeError:
            return {}
        return parsed if isinstance(parsed, dict) else {}
    return args if isinstance(args, dict) else {}


def parse_tool_call(body: Dict[str, Any]) -> Optional[Tuple[str, ToolArgs]]:
    """Accept ``function_name``/``name`` + ``arguments`` or the first entry of ``tool_calls``."""
    if body.get("function_name"):
        return body["function_name"], parse_args(body.get("arguments"))
    if body.get("name"):
        return body["name"], parse_args(body.get("arguments"))
    calls = body.get("tool_calls") or []
    if calls and isinstance(calls[0], dict):
        call = calls[0]
        fn = call.get("function") or {}
        name = fn.get("name") or call.get("name")
        if name:
            return name, parse_args(fn.get("arguments") or call.get("arguments"))
    return None


def _span(start: Any, end: Any = None) -> str:
    return f"{start} to {end}" if end else f"{start}"


def _day(value: Any, today: str) -> Optional[str]:
    """ISO date for a tool argument, ``today`` when absent, None when unreadable."""
    if not value:
        return today
    try:
        return normalize_date(value)
    except ValueError:
        return None


def _bad_date(value: Any) -> str:
    return f"I couldn't read the date {value}. Please use YYYY-MM-DD."


def _not_found(events) -> str:
    listing = ", ".join(f'"{e.title}" (id: {e.id})' for e in events)
    return f"Couldn't find that event. Here are your events: {listing or 'None scheduled'}"


async def get_schedule(ctx: AppContext, user_id: str, args: ToolArgs, today: str) -> str:
    date = _day(args.get("date"), today)
    if date is None:
        return _bad_date(args.get("date"))
    events = await ctx.schedules.read(user_id, date)
    if not events:
        return f"No events scheduled for {date}. The day is wide open!"
    listing = ", ".join(f"{e.start} - {e.title}" for e in events)
    return f"You have {len(events)} thing{'s' if len(events) > 1 else ''} scheduled for {date}: {listing}"


async def add_event(ctx: AppContext, user_id: str, args: ToolArgs, today: str) -> str:
    title, start, end = args.get("title"), args.get("start_time"), args.get("end_time")
    if not title or not start:
        return "I need at least a title and start time to add an event."
    date = _day(args.get("date"), today)
    if date is None:
        return _bad_date(args.get("date"))
    try:
        event = ScheduleEvent(id=new_event_id(), title=str(title), start=start, end=end or None, date=date, color=ctx.next_color())
    except ValidationError:
        return f"I couldn't read the time {_span(start, end)}. Please use 24-hour HH:MM."

    current = await ctx.schedules.read(user_id, date)
    loop = asyncio.get_event_loop()
    verdict = await loop.run_in_executor(None, validate_schedule_change, current, "add", f'Adding "{event.title}" at {_span(event.start, event.end)}', ctx.settings)
    if not verdict.get("ok", True):
        return f"There's a conflict: {verdict.get('conflict')}. {verdict.get('suggestion') or 'Would you like to pick a different time?'}"

    await ctx.schedules.add(user_id, event)
    return f'Done! Added "{event.title}" at {_span(event.start, event.end)}.'


async def move_event(ctx: AppContext, user_id: str, args: ToolArgs, today: str) -> str:
    event_id, new_start = args.get("event_id"), args.get("new_start_time")
    if not event_id or not new_start:
        return "I need the event ID and new start time to move an event."
    date = _day(args.get("date"), today)
    if date is None:
        return _bad_date(args.get("date"))
    new_date = args.get("new_date")
    if new_date:
        new_date = _day(new_date, today)
        if new_date is None:
            return _bad_date(args.get("new_date"))
    events = await ctx.schedules.read(user_id, date)
    existing = next((e for e in events if e.id == event_id), None)
    if existing is None:
        return _not_found(events)
    try:
        moved = await ctx.schedules.move(user_id, date, event_id, new_start, args.get("new_end_time"), new_date)
    except ValidationError:
        return f"I couldn't read the time {_span(new_start, args.get('new_end_time'))}. Please use 24-hour HH:MM."
    if moved is None:
        return "Couldn't find that event to move."
    return f'Moved "{moved.title}" to {moved.start}' + (f" on {moved.date}." if moved.date != date else ".")


async def remove_event(ctx: AppContext, user_id: str, args: ToolArgs, today: str) -> str:
    event_id = args.get("event_id")
    if not event_id:
        return "I need the event ID to remove an event."
    date = _day(args.get("date"), today)
    if date is None:
        return _bad_date(args.get("date"))
    events = await ctx.schedules.read(user_id, date)
    if not any(e.id == event_id for e in events):
        return _not_found(events)
    removed = await ctx.schedules.remove(user_id, date, event_id)
    return f'Removed "{removed.title}" from your schedule.' if removed else "Couldn't find that event."


TOOLS: Dict[str, Callable[[AppContext, str, ToolArgs, str], Awaitable[str]]] = {
    "get_schedule": get_schedule,
    "add_event": add_event,
    "move_event": move_event,
    "remove_event": remove_event,
}


async def dispatch(ctx: AppContext, user_id: str, name: str, args: ToolArgs, today: str) -> str:
    fn = TOOLS.get(name)
    if fn is None:
        raise UnknownTool(name)
    result = await fn(ctx, user_id, args, today)
    logger.info(f"[tools] {name} for {user_id}: {result}")
    return result


def schedule_context(events, date: str) -> str:
    if not events:
        return f"No events scheduled for {date}. Empty day!"
    return f"Current schedule for {date}: {describe_day(events, with_ids=True)}"
