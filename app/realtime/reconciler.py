import json
import logging
from typing import Iterable, List, Optional

from pydantic import ValidationError

from app.schemas import ChangeNotification, ScheduleEvent
from app.tools.calendar import sort_by_start

logger = logging.getLogger(__name__)


class ScheduleReconciler:
    """Client-side copy of one day, kept current from the live feed.

    Only a full ``reset`` (initial load, explicit rebuild) resynchronises with
    the store; between resets the copy is eventually consistent.
    """

    def __init__(self, events: Optional[Iterable[ScheduleEvent]] = None, date: Optional[str] = None):
        self.date = date
        self.events: List[ScheduleEvent] = sort_by_start(events or [])

    def reset(self, events: Iterable[ScheduleEvent]) -> None:
        self.events = sort_by_start(events)

    def apply(self, note: ChangeNotification) -> bool:
        """Merge one notification; True when the local copy changed."""
        ev = note.event
        if self.date and ev.date != self.date:
            return False
        if note.type == "add":
            if any(e.id == ev.id for e in self.events):
                return False
            self.events = sort_by_start([*self.events, ev])
            return True
        if note.type == "remove":
            before = len(self.events)
            self.events = [e for e in self.events if e.id != ev.id]
            return len(self.events) != before
        return False

    def apply_raw(self, data: str) -> bool:
        """Like ``apply`` for a raw feed payload; heartbeats and junk are ignored."""
        try:
            note = ChangeNotification.model_validate(json.loads(data))
        except (json.JSONDecodeError, ValidationError, TypeError):
            return False
        return self.apply(note)

    def ids(self) -> List[str]:
        return [e.id for e in self.events]
