from __future__ import annotations
from typing import Any, Dict, List
import logging
import requests
from app.settings import Settings

logger = logging.getLogger(__name__)

_TIMEOUT = 20

DRAKO_SYSTEM_PROMPT = """You are DRAKO 🐉, a friendly and efficient voice AI scheduling assistant.

PERSONALITY:
- Warm, energetic, slightly playful
- Concise and action-oriented — keep responses under 3 sentences
- Have opinions about scheduling — suggest better time slots, flag overpacked days
- Use the user's name naturally in conversation

RULES:
- Always confirm changes before making them: "I'll add [event] at [time], sound good?"
- After confirmation, call the appropriate function tool
- When showing the schedule, read it out naturally: "You've got 3 things today..."
- If there's a conflict, explain it and suggest an alternative
- IMPORTANT: Use the function tools to actually modify the schedule. Don't just say you'll do it — call the tool.

CONVERSATION STARTERS:
- If the schedule is empty: "Looks like a blank canvas today! What should we fill it with?"
- If pre-populated: "I see you've already got some things planned. Want to adjust anything?\""""


def _fn(name: str, description: str, properties: Dict[str, Any], required: List[str] | None = None) -> Dict[str, Any]:
    params: Dict[str, Any] = {"type": "object", "properties": properties}
    if required:
        params["required"] = required
    return {"type": "function", "function": {"name": name, "description": description, "parameters": params}}


_DATE = {"type": "string", "description": "Date in YYYY-MM-DD format. Defaults to today."}
_HHMM = "in HH:MM 24-hour format"

DRAKO_TOOLS = [
    _fn("get_schedule",
        "Get the user's current schedule for a specific date. Call this when the user asks what they have planned or asks about their day.",
        {"date": _DATE}),
    _fn("add_event",
        "Add a new event to the schedule. Call this after the user confirms they want to add something.",
        {
            "title": {"type": "string", "description": 'Event title, e.g. "Meeting with Alex"'},
            "start_time": {"type": "string", "description": f'Start time {_HHMM}, e.g. "14:00"'},
            "end_time": {"type": "string", "description": f'End time {_HHMM}, e.g. "15:00"'},
            "date": _DATE,
        },
        ["title", "start_time"]),
    _fn("move_event",
        'Move an existing event to a different time. Use when the user says "move X to Y time".',
        {
            "event_id": {"type": "string", "description": "The ID of the event to move"},
            "new_start_time": {"type": "string", "description": f"New start time {_HHMM}"},
            "new_end_time": {"type": "string", "description": f"New end time {_HHMM}"},
            "new_date": {"type": "string", "description": "New date in YYYY-MM-DD format"},
        },
        ["event_id", "new_start_time"]),
    _fn("remove_event",
        'Remove an event from the schedule. Use when the user says "cancel X" or "remove X".',
        {"event_id": {"type": "string", "description": "The ID of the event to remove"}},
        ["event_id"]),
]


class AvatarAPIError(RuntimeError):
    pass


def _headers(cfg: Settings) -> Dict[str, str]:
    if not cfg.TAVUS_API_KEY:
        raise AvatarAPIError("TAVUS_API_KEY environment variable is required")
    return {"Content-Type": "application/json", "x-api-key": cfg.TAVUS_API_KEY}


def _post(cfg: Settings, path: str, payload: Dict[str, Any] | None = None) -> Dict[str, Any]:
    url = f"{cfg.TAVUS_BASE_URL}{path}"
    try:
        r = requests.post(url, json=payload, headers=_headers(cfg), timeout=_TIMEOUT)
    except requests.RequestException as e:
        raise AvatarAPIError(f"POST {path} failed: {e}") from e
    if not r.ok:
        raise AvatarAPIError(f"POST {path} failed: {r.status_code} {r.text[:300]}")
    return r.json() if r.content else {}


def create_persona(cfg: Settings, name: str, context: str, system_prompt: str = DRAKO_SYSTEM_PROMPT, tools: List[Dict[str, Any]] | None = None) -> Dict[str, Any]:
    data = _post(cfg, "/personas", {
        "persona_name": name,
        "pipeline_mode": "full",
        "system_prompt": system_prompt,
        "context": context,
        "default_replica_id": cfg.TAVUS_REPLICA_ID,
        "layers": {
            "llm": {"tools": tools if tools is not None else DRAKO_TOOLS},
            "tts": {"tts_engine": "cartesia", "tts_emotion_control": True},
        },
    })
    if not data.get("persona_id"):
        raise AvatarAPIError(f"Persona creation returned no id: {data}")
    return data


def create_conversation(cfg: Settings, persona_id: str, context: str, callback_url: str, tools_callback_url: str) -> Dict[str, Any]:
    data = _post(cfg, "/conversations", {
        "persona_id": persona_id,
        "replica_id": cfg.TAVUS_REPLICA_ID,
        "conversational_context": context,
        "callback_url": callback_url,
        "properties": {
            "max_call_duration": 600,
            "participant_left_timeout": 30,
            "tools_callback_url": tools_callback_url,
        },
    })
    if not data.get("conversation_url"):
        raise AvatarAPIError(f"Conversation creation returned no url: {data}")
    return data


def end_conversation(cfg: Settings, conversation_id: str) -> None:
    _post(cfg, f"/conversations/{conversation_id}/end")
