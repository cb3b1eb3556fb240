from typing import Any, Dict, List, Literal, Optional
from app.settings import Settings
from app.schemas import ScheduleEvent, SlotInput, TranscriptAction, UserProfile
from app.llm import prompts
from pydantic import ValidationError
import json, logging, re

logger = logging.getLogger(__name__)

# Cached client, rebuilt when the model or key changes
_llm = None
_llm_key: Optional[tuple] = None

_FENCE_RE = re.compile(r"```(?:json)?")
_OBJECT_RE = re.compile(r"\{[\s\S]*\}")
_ARRAY_RE = re.compile(r"\[[\s\S]*\]")


def _import_llm():
    try:
        from langchain_google_genai import ChatGoogleGenerativeAI  # type: ignore
        return ChatGoogleGenerativeAI
    except ImportError:
        return None


def get_llm(cfg: Settings):
    """Return a cached LLM client or None if unavailable or disabled by config."""
    global _llm, _llm_key
    if not cfg.llm_enabled():
        return None
    if _llm is None or _llm_key != (cfg.GEMINI_MODEL, cfg.GOOGLE_API_KEY):
        ChatGoogleGenerativeAI = _import_llm()
        if ChatGoogleGenerativeAI is None:
            logger.warning("langchain-google-genai is not importable; using fallbacks")
            return None
        _llm = ChatGoogleGenerativeAI(
            model=cfg.GEMINI_MODEL,
            google_api_key=cfg.GOOGLE_API_KEY,
            temperature=0.2,
        )
        _llm_key = (cfg.GEMINI_MODEL, cfg.GOOGLE_API_KEY)
    return _llm


def _safe_text(resp) -> str:
    text = getattr(resp, "content", None)
    if isinstance(text, list):
        # Gemini may return content parts
        text = "".join(p.get("text", "") if isinstance(p, dict) else str(p) for p in text)
    return text if isinstance(text, str) else (str(resp) if resp is not None else "")


def complete(prompt: str, cfg: Settings) -> Optional[str]:
    """One LLM round trip; None when the LLM is off or the call failed."""
    llm = get_llm(cfg)
    if llm is None:
        return None
    try:
        return _safe_text(llm.invoke(prompt))
    except Exception as e:  # provider SDKs raise a wide range of transport errors
        logger.error(f"LLM call failed: {e}")
        return None


def extract_json(text: Optional[str], kind: Literal["object", "array"]) -> Optional[Any]:
    """Pull the first JSON object/array out of free-form model output.

    Returns None instead of raising when nothing usable is found; callers pick
    their own fallback.
    """
    if not text:
        return None
    cleaned = _FENCE_RE.sub("", text)
    match = (_OBJECT_RE if kind == "object" else _ARRAY_RE).search(cleaned)
    if not match:
        return None
    try:
        value = json.loads(match.group(0))
    except json.JSONDecodeError:
        return None
    expected = dict if kind == "object" else list
    return value if isinstance(value, expected) else None


# ---------------- Schedule generation ----------------

def draft_day_events(user: UserProfile, date: str, weekday: str, cfg: Settings) -> List[Dict[str, Any]]:
    """Raw {title,start,end} dicts from the LLM; [] on any failure."""
    text = complete(prompts.build_day_prompt(user, date, weekday), cfg)
    items = extract_json(text, "array")
    if items is None:
        if text is not None:
            logger.warning("Day draft was not a JSON array; falling back")
        return []
    out: List[Dict[str, Any]] = []
    for it in items:
        if isinstance(it, dict) and it.get("title") and it.get("start"):
            out.append({"title": str(it["title"]), "start": str(it["start"]), "end": it.get("end")})
    return out


def validate_schedule_change(current: List[ScheduleEvent], action: str, details: str, cfg: Settings) -> Dict[str, Any]:
    """Conflict check for a proposed change; defaults to ok when the LLM can't answer."""
    verdict = extract_json(complete(prompts.build_conflict_prompt(current, action, details), cfg), "object")
    if verdict is None or not isinstance(verdict.get("ok"), bool):
        return {"ok": True}
    return {"ok": verdict["ok"], "conflict": verdict.get("conflict"), "suggestion": verdict.get("suggestion")}


def edit_slots(message: str, slots: List[SlotInput], cfg: Settings) -> Optional[Dict[str, Any]]:
    """LLM edit of weekly slot templates; None when the reply can't be used."""
    data = extract_json(complete(prompts.build_slot_chat_prompt(message, slots), cfg), "object")
    if data is None:
        return None
    labels = {s.id: s for s in slots}
    edited: List[SlotInput] = []
    for raw in data.get("slots") or []:
        if not isinstance(raw, dict) or "id" not in raw:
            continue
        base = labels.get(raw["id"])
        merged = {**(base.model_dump() if base else {}), **raw}
        try:
            edited.append(SlotInput.model_validate(merged))
        except ValidationError:
            logger.warning(f"Dropping invalid slot from LLM: {raw.get('id')}")
    if not edited:
        return None
    return {"reply": str(data.get("reply") or "Updated your schedule."), "slots": edited}


def generate_persona_fields(user: UserProfile, cfg: Settings) -> Dict[str, Any]:
    data = extract_json(complete(prompts.build_persona_prompt(user), cfg), "object")
    if data is None:
        return prompts.fallback_persona_fields(user)
    return data


def extract_transcript_actions(transcript: Any, cfg: Settings) -> List[TranscriptAction]:
    items = extract_json(complete(prompts.build_transcript_prompt(transcript), cfg), "array") or []
    actions: List[TranscriptAction] = []
    for it in items:
        try:
            actions.append(TranscriptAction.model_validate(it))
        except ValidationError:
            continue
    return actions
