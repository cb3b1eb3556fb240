"""Follow a user's schedule from another process: initial load plus the live feed."""

import logging
from typing import Callable, Iterable, Iterator, Optional

import requests

from app.realtime.reconciler import ScheduleReconciler
from app.schemas import ScheduleResponse
from app.settings import settings

logger = logging.getLogger(__name__)


def iter_sse_data(lines: Iterable[str]) -> Iterator[str]:
    """Yield the data payload of each SSE event; comment lines (heartbeats) are skipped."""
    buf = []
    for line in lines:
        if line is None:
            continue
        if line == "":
            if buf:
                yield "\n".join(buf)
                buf = []
            continue
        if line.startswith(":"):
            continue
        if line.startswith("data:"):
            buf.append(line[5:].lstrip(" "))
    if buf:
        yield "\n".join(buf)


def load_day(base_url: str, user_id: str, date: Optional[str] = None, session: Optional[requests.Session] = None) -> ScheduleResponse:
    s = session or requests.Session()
    params = {"userId": user_id}
    if date:
        params["date"] = date
    r = s.get(f"{base_url}/api/schedule", params=params, timeout=10)
    r.raise_for_status()
    return ScheduleResponse.model_validate(r.json())


def follow(base_url: str, user_id: str, date: Optional[str] = None, on_change: Optional[Callable[[ScheduleReconciler], None]] = None, session: Optional[requests.Session] = None) -> ScheduleReconciler:
    """Load the day, then apply feed updates until the server closes the stream."""
    s = session or requests.Session()
    day = load_day(base_url, user_id, date, session=s)
    rec = ScheduleReconciler(day.events, date=day.date)
    if on_change:
        on_change(rec)
    s.cookies.set(settings.USER_COOKIE, user_id)
    with s.get(f"{base_url}/api/schedule/stream", stream=True, timeout=(10, None)) as r:
        r.raise_for_status()
        for data in iter_sse_data(r.iter_lines(decode_unicode=True)):
            if rec.apply_raw(data) and on_change:
                on_change(rec)
    logger.info(f"Feed for {user_id} ended with {len(rec.events)} events")
    return rec
