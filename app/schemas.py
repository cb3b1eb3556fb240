from pydantic import BaseModel, Field, AliasChoices, field_validator
from typing import Any, Dict, List, Literal, Optional
from datetime import date as _date
import re

_CLOCK_RE = re.compile(r"^(\d{1,2}):(\d{2})$")


def normalize_clock(value: str) -> str:
    """Return ``value`` as zero-padded HH:MM or raise ValueError."""
    m = _CLOCK_RE.match((value or "").strip())
    if not m:
        raise ValueError(f"expected HH:MM, got {value!r}")
    h, mm = int(m.group(1)), int(m.group(2))
    if h > 23 or mm > 59:
        raise ValueError(f"not a clock time: {value!r}")
    return f"{h:02d}:{mm:02d}"


def normalize_date(value: str) -> str:
    """Return ``value`` as an ISO calendar date (YYYY-MM-DD) or raise ValueError."""
    if not isinstance(value, str):
        raise ValueError(f"expected YYYY-MM-DD, got {value!r}")
    return _date.fromisoformat(value.strip()).isoformat()

# ---------------- Schedule ----------------

class ScheduleEvent(BaseModel):
    id: str
    title: str
    start: str
    end: Optional[str] = None
    date: str
    color: Optional[str] = None

    @field_validator("start")
    @classmethod
    def _start_clock(cls, v: str) -> str:
        return normalize_clock(v)

    @field_validator("end")
    @classmethod
    def _end_clock(cls, v: Optional[str]) -> Optional[str]:
        return normalize_clock(v) if v else None

    @field_validator("date")
    @classmethod
    def _iso_date(cls, v: str) -> str:
        return normalize_date(v)

class ChangeNotification(BaseModel):
    type: Literal["add", "remove"]
    user: Optional[str] = None
    event: ScheduleEvent
    timestamp: str

class AddEventRequest(BaseModel):
    title: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    date: Optional[str] = None
    userId: Optional[str] = None

class RemoveEventRequest(BaseModel):
    eventId: Optional[str] = None
    date: Optional[str] = None
    userId: Optional[str] = None

class FreeBlock(BaseModel):
    start: str
    end: str
    minutes: int

class LayoutBlock(BaseModel):
    id: str
    top: int
    height: int

class ScheduleResponse(BaseModel):
    events: List[ScheduleEvent]
    date: str
    userId: str
    freeBlocks: List[FreeBlock] = Field(default_factory=list)
    layout: Optional[List[LayoutBlock]] = None

class WeekDay(BaseModel):
    date: str
    events: List[ScheduleEvent]

class WeekResponse(BaseModel):
    week: List[WeekDay]

# ---------------- Users / onboarding ----------------

class TimeSlot(BaseModel):
    start: str
    end: str
    label: str
    emoji: str = ""

    @field_validator("start", "end")
    @classmethod
    def _clock(cls, v: str) -> str:
        return normalize_clock(v)

class OnboardingSurvey(BaseModel):
    name: Optional[str] = None
    type: Optional[str] = Field(default=None, validation_alias=AliasChoices("type", "role"))
    workStyle: Optional[str] = None
    rhythm: Optional[str] = None
    wakeUpTime: Optional[str] = None
    nonNegotiables: List[str] = Field(default_factory=list, validation_alias=AliasChoices("nonNegotiables", "priorities"))
    struggle: Optional[str] = None
    timeSlots: Dict[str, TimeSlot] = Field(default_factory=dict)

class UserProfile(BaseModel):
    id: str
    name: str
    type: Optional[str] = None
    workStyle: Optional[str] = None
    rhythm: Optional[str] = None
    wakeUpTime: Optional[str] = None
    nonNegotiables: List[str] = Field(default_factory=list)
    struggle: Optional[str] = None
    timeSlots: Dict[str, TimeSlot] = Field(default_factory=dict)
    createdAt: str

class UserUpdate(BaseModel):
    """Partial profile update; only fields that were sent are applied."""
    name: Optional[str] = None
    type: Optional[str] = Field(default=None, validation_alias=AliasChoices("type", "role"))
    workStyle: Optional[str] = None
    rhythm: Optional[str] = None
    wakeUpTime: Optional[str] = None
    nonNegotiables: Optional[List[str]] = None
    struggle: Optional[str] = None
    timeSlots: Optional[Dict[str, TimeSlot]] = None

class IdealDay(BaseModel):
    morningAnchor: str = ""
    afternoonStyle: str = ""
    eveningBoundary: str = ""

class Persona(BaseModel):
    userId: str
    generatedAt: str
    archetype: str = "The Focused Builder"
    archetypeEmoji: str = "🧠"
    tagline: str = ""
    peakWindow: str = "8–11 AM"
    energyCurve: str = ""
    bestWorkStyle: str = ""
    idealDay: IdealDay = Field(default_factory=IdealDay)
    coachingTone: str = ""
    keyProtections: List[str] = Field(default_factory=list)
    watchOuts: List[str] = Field(default_factory=list)
    drakoGreeting: str = ""

class PersonaRequest(BaseModel):
    userId: Optional[str] = None

# ---------------- Slot chat ----------------

Weekday = Literal["Mon", "Tue", "Wed", "Thu", "Fri", "Sat", "Sun"]

class SlotInput(BaseModel):
    id: str
    label: str = ""
    emoji: str = ""
    startMinutes: int = Field(ge=0, lt=24 * 60)
    durationMinutes: int = Field(ge=15, le=480)
    days: List[Weekday] = Field(default_factory=list)

class SlotChatRequest(BaseModel):
    message: Optional[str] = None
    slots: Optional[List[SlotInput]] = None

class SlotChatResponse(BaseModel):
    reply: str
    slots: List[SlotInput]

# ---------------- Voice avatar ----------------

class ToolCallResult(BaseModel):
    result: str

class AvatarSession(BaseModel):
    success: bool = True
    conversationUrl: str
    conversationId: str
    personaId: str
    userName: str

class TranscriptAction(BaseModel):
    action: str
    title: Optional[str] = None
    start: Optional[str] = None
    end: Optional[str] = None
    date: Optional[str] = None

class WebhookPayload(BaseModel):
    event_type: Optional[str] = None
    conversation_id: Optional[str] = None
    properties: Dict[str, Any] = Field(default_factory=dict)
