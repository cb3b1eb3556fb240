from datetime import datetime
from langgraph.graph import StateGraph, START, END
from typing import Dict, Any, List, Optional, Tuple
from pydantic import ValidationError
from app.context import PALETTE, new_event_id
from app.llm.llm import draft_day_events
from app.schemas import ScheduleEvent, UserProfile
from app.settings import Settings
from app.tools.calendar import merge_slots, minutes_to_time, sort_by_start, time_to_minutes
import logging, re

logger = logging.getLogger(__name__)

DayState = Dict[str, Any]

RHYTHM_WAKE = {"early_bird": "06:00", "morning": "07:30", "mid_morning": "09:00", "late_starter": "10:30"}
DEFAULT_WAKE = "07:30"
DEFAULT_FOCUS = ["deep_focus", "meetings", "exercise"]
_LATEST_START = 23 * 60 + 30

# (offset from wake, duration, title, category or None for always-on blocks)
_TEMPLATE: List[Tuple[int, int, str, Optional[str]]] = [
    (0, 30, "☕ Morning routine", None),
    (30, 30, "🍳 Breakfast", None),
    (60, 120, "🧠 Deep focus", "deep_focus"),
    (180, 15, "🚶 Break", "breaks"),
    (195, 60, "📞 Meetings & calls", "meetings"),
    (270, 45, "🥗 Lunch", None),
    (315, 120, "💼 Work block", None),
    (435, 45, "📚 Learning", "learning"),
    (480, 60, "🏋️ Exercise", "exercise"),
    (540, 60, "🎨 Creative time", "creative"),
    (600, 90, "👨‍👩‍👧 Family & friends", "family"),
    (720, 30, "🌙 Wind-down", None),
]

_WAKE_RE = re.compile(r"^\s*(\d{1,2})(?::(\d{2}))?\s*(am|pm)?\s*$", re.I)


def wake_minutes(user: UserProfile) -> int:
    """Wake time from an explicit answer ('7am', '06:30') or else the rhythm bucket."""
    m = _WAKE_RE.match(user.wakeUpTime or "")
    if m:
        h, mm, ampm = int(m.group(1)), int(m.group(2) or 0), (m.group(3) or "").lower()
        if ampm == "pm" and h < 12:
            h += 12
        if ampm == "am" and h == 12:
            h = 0
        if h < 24 and mm < 60:
            return h * 60 + mm
    return time_to_minutes(RHYTHM_WAKE.get(user.rhythm or "", DEFAULT_WAKE))


def default_day(user: UserProfile) -> List[Dict[str, Any]]:
    """Deterministic day: the user's own slots first, template blocks in the gaps."""
    wake = wake_minutes(user)
    wanted = set(user.nonNegotiables or DEFAULT_FOCUS)
    filler: List[Dict[str, Any]] = []
    for offset, duration, title, category in _TEMPLATE:
        if category is not None and category not in wanted:
            continue
        start = wake + offset
        if start > _LATEST_START:
            continue
        filler.append({"title": title, "start": minutes_to_time(start), "end": minutes_to_time(start + duration)})
    fixed = [
        {"title": f"{s.emoji} {s.label}".strip(), "start": s.start, "end": s.end}
        for s in user.timeSlots.values()
    ]
    return merge_slots(fixed, filler)


def _to_events(drafts: List[Dict[str, Any]], date: str) -> List[ScheduleEvent]:
    out: List[ScheduleEvent] = []
    for d in drafts:
        try:
            out.append(ScheduleEvent(id=new_event_id(), title=d["title"], start=d["start"], end=d.get("end") or None, date=date))
        except ValidationError:
            logger.warning(f"Dropping drafted event with bad times: {d.get('title')!r} {d.get('start')!r}")
    return out

# ---------------- Nodes ----------------

def node_draft(state: DayState):
    drafts = draft_day_events(state["user"], state["date"], state["weekday"], state["settings"])
    new_state = dict(state)
    new_state["events"] = _to_events(drafts, state["date"])
    new_state["source"] = "llm"
    return new_state


def node_fallback(state: DayState):
    user: UserProfile = state["user"]
    new_state = dict(state)
    new_state["events"] = _to_events(default_day(user), state["date"])
    new_state["source"] = "slots" if user.timeSlots else "template"
    logger.info(f"Using {new_state['source']} fallback for {user.id} on {state['date']}")
    return new_state


def node_finalize(state: DayState):
    events = sort_by_start(state.get("events", []))
    colored = [e.model_copy(update={"color": PALETTE[i % len(PALETTE)]}) for i, e in enumerate(events)]
    new_state = dict(state); new_state["events"] = colored
    return new_state


def route_after_draft(state: DayState) -> str:
    return "finalize" if state.get("events") else "fallback"


def build_day_graph():
    g = StateGraph(dict)
    g.add_node("draft", node_draft)
    g.add_node("fallback", node_fallback)
    g.add_node("finalize", node_finalize)
    g.add_edge(START, "draft")
    g.add_conditional_edges("draft", route_after_draft, {"fallback": "fallback", "finalize": "finalize"})
    g.add_edge("fallback", "finalize"); g.add_edge("finalize", END)
    return g.compile()

DAY_GRAPH = build_day_graph()


def build_day(user: UserProfile, date: str, cfg: Settings) -> Tuple[List[ScheduleEvent], str]:
    """Generate a full day for ``user``; returns (events, source) where source is llm|slots|template."""
    try:
        weekday = datetime.fromisoformat(date).strftime("%A")
    except ValueError:
        weekday = ""
    result = DAY_GRAPH.invoke({"user": user, "date": date, "weekday": weekday, "settings": cfg, "events": []})
    return result.get("events", []), result.get("source", "template")
