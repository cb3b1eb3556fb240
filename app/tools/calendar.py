from datetime import date as _date, timedelta
from typing import Any, Dict, Iterable, List, Optional, Tuple

DAY_MINUTES = 24 * 60

# Vertical day grid used by the schedule view
GRID_START_HOUR = 7
GRID_HOUR_HEIGHT = 60
MIN_BLOCK_HEIGHT = 28
DEFAULT_DURATION = 30


def _parse_time(t: str) -> Tuple[int, int]:
    try:
        h, m = t.split(":"); return int(h), int(m)
    except (AttributeError, ValueError):
        return 0, 0


def time_to_minutes(t: str) -> int:
    h, m = _parse_time(t); return h * 60 + m


def minutes_to_time(minutes: int) -> str:
    minutes = max(0, min(DAY_MINUTES - 1, int(minutes)))
    return f"{minutes // 60:02d}:{minutes % 60:02d}"


def minutes_to_label(minutes: int) -> str:
    """12-hour label, e.g. 540 -> '9:00 AM'."""
    h, m = divmod(int(minutes) % DAY_MINUTES, 60)
    return f"{h % 12 or 12}:{m:02d} {'PM' if h >= 12 else 'AM'}"


def sort_by_start(events: Iterable[Any]) -> List[Any]:
    """Stable sort of events (models or dicts) by start time."""
    def key(e):
        start = e.get("start") if isinstance(e, dict) else e.start
        return time_to_minutes(start or "23:59")
    return sorted(events, key=key)


def _end_minutes(start: str, end: Optional[str]) -> int:
    s = time_to_minutes(start)
    if end:
        e = time_to_minutes(end)
        if e > s:
            return e
    return min(DAY_MINUTES, s + DEFAULT_DURATION)


def week_dates(today: _date) -> List[str]:
    """ISO dates Monday..Sunday of the week containing ``today``."""
    monday = today - timedelta(days=today.weekday())
    return [(monday + timedelta(days=i)).isoformat() for i in range(7)]


def free_blocks(events: Iterable[Any], day_start: str = "06:00", day_end: str = "22:30", min_minutes: int = 15) -> List[Dict[str, Any]]:
    """Gaps between events inside [day_start, day_end]."""
    spans: List[Tuple[int, int]] = []
    for e in sort_by_start(events):
        start = e.get("start") if isinstance(e, dict) else e.start
        end = e.get("end") if isinstance(e, dict) else e.end
        spans.append((time_to_minutes(start), _end_minutes(start, end)))

    out: List[Dict[str, Any]] = []
    cursor = time_to_minutes(day_start)
    limit = time_to_minutes(day_end)
    for s, e in spans:
        gap_end = min(s, limit)
        if gap_end - cursor >= min_minutes:
            out.append({"start": minutes_to_time(cursor), "end": minutes_to_time(gap_end), "minutes": gap_end - cursor})
        cursor = max(cursor, e)
    if limit - cursor >= min_minutes:
        out.append({"start": minutes_to_time(cursor), "end": minutes_to_time(limit), "minutes": limit - cursor})
    return out


def minutes_to_y(minutes: int, start_hour: int = GRID_START_HOUR, hour_height: int = GRID_HOUR_HEIGHT) -> int:
    return round((minutes - start_hour * 60) * hour_height / 60)


def layout_blocks(events: Iterable[Any], start_hour: int = GRID_START_HOUR, hour_height: int = GRID_HOUR_HEIGHT) -> List[Dict[str, Any]]:
    """Pixel geometry of each event on the day grid.

    Blocks are clipped at the grid start; events that end before it are left out.
    """
    out: List[Dict[str, Any]] = []
    for e in sort_by_start(events):
        ev = e if isinstance(e, dict) else e.model_dump()
        s = time_to_minutes(ev["start"])
        bottom = minutes_to_y(_end_minutes(ev["start"], ev.get("end")), start_hour, hour_height)
        if bottom <= 0:
            continue
        top = max(0, minutes_to_y(s, start_hour, hour_height))
        out.append({"id": ev["id"], "top": top, "height": max(MIN_BLOCK_HEIGHT, bottom - top)})
    return out


def overlaps(a_start: str, a_end: Optional[str], b_start: str, b_end: Optional[str]) -> bool:
    a0, a1 = time_to_minutes(a_start), _end_minutes(a_start, a_end)
    b0, b1 = time_to_minutes(b_start), _end_minutes(b_start, b_end)
    return a0 < b1 and b0 < a1


def merge_slots(fixed: List[Dict[str, Any]], filler: List[Dict[str, Any]]) -> List[Dict[str, Any]]:
    """Keep every fixed block; add filler blocks that do not collide with one."""
    merged = list(fixed)
    for f in filler:
        if any(overlaps(f["start"], f.get("end"), x["start"], x.get("end")) for x in fixed):
            continue
        merged.append(f)
    return sort_by_start(merged)


def describe_day(events: Iterable[Any], with_ids: bool = False) -> str:
    parts = []
    for e in events:
        ev = e if isinstance(e, dict) else e.model_dump()
        span = ev["start"] + (f"-{ev['end']}" if ev.get("end") else "")
        parts.append(f'{span} "{ev["title"]}"' + (f' (id: {ev["id"]})' if with_ids else ""))
    return ", ".join(parts)
