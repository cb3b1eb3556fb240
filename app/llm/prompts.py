import json
from typing import Any, Dict, List

from app.schemas import ScheduleEvent, SlotInput, UserProfile
from app.tools.calendar import minutes_to_label

TYPE_DESCRIPTIONS = {
    "builder": "someone who codes, designs, or creates things",
    "operator": "someone who manages people, projects, or processes",
    "learner": "someone who is studying or upskilling",
    "hustler": "someone building a company or side project",
}

RHYTHM_DESCRIPTIONS = {
    "early_bird": "an early bird who starts at 5-7 AM",
    "morning": "a morning person who starts at 7-9 AM",
    "mid_morning": "someone who gets going around 9-11 AM",
    "late_starter": "a late starter who gets going around 11 AM or later",
}

RHYTHM_WINDOWS = {
    "early_bird": "5-7 AM",
    "morning": "7-9 AM",
    "mid_morning": "9-11 AM",
    "late_starter": "11 AM or later",
}

STRUGGLE_COACHING = {
    "too_many_meetings": "They struggle with too many meetings. Protect their focus blocks. If they try to add meetings during focus time, suggest batching meetings together instead.",
    "context_switching": "They struggle with context switching. Group similar tasks together. Don't let them scatter meetings throughout the day.",
    "no_focus_time": "They never have enough focus time. Be aggressive about protecting long uninterrupted blocks. Push back if they try to fragment their focus.",
    "no_boundaries": "They have poor work-life boundaries. Help them set a hard stop time. Don't let work events creep past 6 PM.",
}

STRUGGLE_SHORT = {
    "too_many_meetings": "gets overwhelmed by too many meetings",
    "context_switching": "struggles with constant context switching",
    "no_focus_time": "never has enough deep focus time",
    "no_boundaries": "has poor work-life boundaries",
}

NON_NEGOTIABLE_LABELS = {
    "deep_focus": "deep focus time",
    "meetings": "meetings and calls",
    "exercise": "exercise",
    "meals": "proper meals",
    "learning": "learning",
    "breaks": "breaks",
    "creative": "creative time",
    "family": "family/social time",
}


def user_context(user: UserProfile | None) -> str:
    """Short description of the user for the avatar and the LLM."""
    if user is None:
        return "You're speaking with a new user."
    type_desc = TYPE_DESCRIPTIONS.get(user.type, user.type) if user.type else "a professional"
    rhythm_desc = RHYTHM_DESCRIPTIONS.get(user.rhythm, user.rhythm) if user.rhythm else "flexible"
    coaching = STRUGGLE_COACHING.get(user.struggle or "", "Help them stay organized.")
    priorities = ", ".join(NON_NEGOTIABLE_LABELS.get(n, n) for n in user.nonNegotiables) or "general productivity"
    return (
        f"Speaking with: {user.name}\nThey are: {type_desc}\nTheir brain turns on: {rhythm_desc}\n"
        f"Priorities: {priorities}\nCoaching note: {coaching}"
    )


def build_day_prompt(user: UserProfile, date: str, weekday: str) -> str:
    slot_lines = "\n".join(f"  {s.emoji} {s.label}: {s.start} – {s.end}" for s in user.timeSlots.values())
    return (
        f"Build a realistic {weekday} schedule for {user.name} ({date}).\n\n"
        "Their confirmed activity blocks (include these at exact times):\n"
        f"{slot_lines or '  Use sensible defaults for a working professional'}\n\n"
        f"Wake time: {user.wakeUpTime or RHYTHM_WINDOWS.get(user.rhythm or '', '7am')}\n"
        f"Role: {user.type or 'professional'}\n\n"
        "Instructions:\n"
        "- Honour every activity block above at its exact time\n"
        "- Fill gaps with: morning routine ☕, breakfast 🍳, lunch 🥗, transitions, evening wind-down 🌙\n"
        "- No overlapping blocks\n"
        "- Short emoji titles ≤25 chars\n"
        "- Generate 8-12 events total covering wake through bedtime\n\n"
        "Respond ONLY with a JSON array, no explanation:\n"
        '[{"title":"...","start":"HH:MM","end":"HH:MM"}]'
    )


def build_conflict_prompt(current: List[ScheduleEvent], action: str, details: str) -> str:
    return (
        f"Current schedule: {json.dumps([e.model_dump() for e in current])}\n"
        f"Action: {action}\nDetails: {details}\n"
        'Check for conflicts. Respond ONLY with JSON: { "ok": true/false, "conflict": null or "description", "suggestion": null or "alternative time" }'
    )


def build_slot_chat_prompt(message: str, slots: List[SlotInput]) -> str:
    lines = []
    for s in slots:
        end = s.startMinutes + s.durationMinutes
        lines.append(
            f'  "{s.id}": {s.emoji} {s.label} — {minutes_to_label(s.startMinutes)} to {minutes_to_label(end)} '
            f"({s.durationMinutes}min), days: [{','.join(s.days)}]"
        )
    return (
        "Current schedule blocks:\n" + "\n".join(lines) + "\n\n"
        f'User says: "{message}"\n\n'
        "Modify the schedule according to the user's request. Return ONLY a JSON object with:\n"
        '{\n  "reply": "Short friendly confirmation of what you changed",\n'
        '  "slots": [\n    { "id": "work", "startMinutes": 540, "durationMinutes": 480, "days": ["Mon","Tue","Wed","Thu","Fri"] }\n  ]\n}\n\n'
        "Rules:\n"
        "- Keep all existing slots unless the user explicitly removes one\n"
        "- startMinutes is minutes from midnight (e.g. 9 AM = 540)\n"
        "- durationMinutes minimum 15, maximum 480\n"
        "- days must be from: Mon, Tue, Wed, Thu, Fri, Sat, Sun\n"
        "- Respond ONLY with the JSON object, no other text"
    )


def build_persona_prompt(user: UserProfile) -> str:
    return (
        "You are a productivity psychologist. Analyze this person and generate their productivity persona.\n\n"
        f"Person: {user.name}\n"
        f"What they do: {TYPE_DESCRIPTIONS.get(user.type or 'builder', user.type)}\n"
        f"Brain turns on: {RHYTHM_WINDOWS.get(user.rhythm or 'morning', user.rhythm)}\n"
        f"Non-negotiables: {', '.join(user.nonNegotiables)}\n"
        f"Biggest struggle: {STRUGGLE_SHORT.get(user.struggle or 'no_focus_time', user.struggle)}\n\n"
        "Generate a JSON persona. Be specific, insightful, and slightly opinionated.\n\n"
        "Respond ONLY with valid JSON, no markdown, with keys: archetype, archetypeEmoji, tagline, "
        "peakWindow, energyCurve, bestWorkStyle, idealDay {morningAnchor, afternoonStyle, eveningBoundary}, "
        "coachingTone, keyProtections (2-3 items), watchOuts (2-3 items), "
        "drakoGreeting (under 25 words, warm and direct)."
    )


def build_transcript_prompt(transcript: Any) -> str:
    return (
        "Extract ALL schedule changes discussed in this conversation.\n"
        "Return a JSON array of actions. If no schedule changes were discussed, return [].\n"
        'Format: [{ "action": "add", "title": "...", "start": "HH:MM", "end": "HH:MM", "date": "YYYY-MM-DD" }]\n'
        "Only include confirmed changes, not suggestions that were rejected.\n\n"
        f"Transcript:\n{json.dumps(transcript)}"
    )


def fallback_persona_fields(user: UserProfile) -> Dict[str, Any]:
    return {
        "archetype": "The Focused Builder",
        "archetypeEmoji": "🧠",
        "tagline": "Does best work in long, uninterrupted blocks",
        "peakWindow": RHYTHM_WINDOWS.get(user.rhythm or "", "8:00–11:00 AM"),
        "energyCurve": "Energy peaks in the morning, steady through afternoon",
        "bestWorkStyle": "Deep focused sessions with minimal context switching",
        "idealDay": {
            "morningAnchor": "Protect first 2 hours for deep work",
            "afternoonStyle": "Batch meetings and communications 1–3pm",
            "eveningBoundary": "Wind down by 6:30pm",
        },
        "coachingTone": "Direct and efficient, minimal small talk",
        "keyProtections": ["Block mornings for focus", "Batch meetings in afternoon", "Hard stop time"],
        "watchOuts": ["Over-scheduling", "Skipping breaks", "Late-night work creep"],
        "drakoGreeting": f"Hey {user.name}! Ready to build your perfect day?",
    }
