from fastapi import Depends, FastAPI, HTTPException, Request, Response
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse, StreamingResponse
from contextlib import asynccontextmanager
from datetime import datetime
from typing import Any, Dict, Optional
from pydantic import ValidationError
from redis.exceptions import RedisError
import asyncio, logging, socket

from app.context import AppContext, new_event_id
from app.graphs.day_builder import build_day
from app.llm.llm import edit_slots, extract_transcript_actions, generate_persona_fields
from app.llm.prompts import fallback_persona_fields, user_context
from app.schemas import (
    AddEventRequest, AvatarSession, LayoutBlock, OnboardingSurvey, Persona, PersonaRequest,
    RemoveEventRequest, ScheduleEvent, ScheduleResponse, SlotChatRequest, SlotChatResponse,
    ToolCallResult, UserUpdate, WebhookPayload, WeekDay, WeekResponse, FreeBlock, normalize_date,
)
from app.settings import settings
from app.tools import tavus
from app.tools.avatar_tools import UnknownTool, dispatch, parse_tool_call, schedule_context
from app.tools.calendar import free_blocks, layout_blocks, sort_by_start, week_dates

logging.basicConfig(level=settings.LOG_LEVEL.upper(), format="%(asctime)s %(levelname)s %(name)s: %(message)s")
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    # A context placed on app.state beforehand (tests, embedding) is used as-is
    ctx = getattr(app.state, "context", None)
    owned = ctx is None
    if owned:
        ctx = AppContext.build(settings)
        app.state.context = ctx
    logger.info("DRAKO scheduler started")
    yield
    if owned:
        await ctx.close()
        app.state.context = None


app = FastAPI(title="DRAKO Voice Scheduler", lifespan=lifespan)

# Permissive CORS (dev): allow all origins, methods, and headers
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_methods=["*"],
    allow_headers=["*"],
    allow_credentials=False,
)


def get_context(request: Request) -> AppContext:
    return request.app.state.context


def _today() -> str:
    return datetime.now().date().isoformat()


def _cookie_user(request: Request, ctx: AppContext) -> Optional[str]:
    return request.cookies.get(ctx.settings.USER_COOKIE) or None


def _require_user(request: Request, ctx: AppContext) -> str:
    user_id = _cookie_user(request, ctx)
    if not user_id:
        raise HTTPException(401, "Not authenticated")
    return user_id


def _user_or_default(request: Request, ctx: AppContext, explicit: Optional[str] = None) -> str:
    return explicit or _cookie_user(request, ctx) or ctx.settings.DEFAULT_USER_ID


def _iso_date(value: Optional[str]) -> str:
    if not value:
        return _today()
    try:
        return normalize_date(value)
    except ValueError:
        raise HTTPException(400, "date must be YYYY-MM-DD")


async def _in_thread(fn, *args):
    """Run a blocking call (LLM, avatar API) off the event loop."""
    loop = asyncio.get_event_loop()
    return await loop.run_in_executor(None, fn, *args)


@app.get("/health")
def health_check():
    """Health check endpoint for container orchestration"""
    return {"status": "healthy", "timestamp": datetime.now().isoformat()}

# ---------------- Schedule ----------------


@app.get("/api/schedule", response_model=ScheduleResponse)
async def get_schedule(request: Request, userId: Optional[str] = None, date: Optional[str] = None, layout: bool = False, ctx: AppContext = Depends(get_context)):
    user_id = _user_or_default(request, ctx, userId)
    date = _iso_date(date)
    events = await ctx.schedules.read(user_id, date)
    return ScheduleResponse(
        events=events,
        date=date,
        userId=user_id,
        freeBlocks=[FreeBlock(**b) for b in free_blocks(events)],
        layout=[LayoutBlock(**b) for b in layout_blocks(events)] if layout else None,
    )


@app.post("/api/schedule")
async def add_schedule_event(req: AddEventRequest, request: Request, ctx: AppContext = Depends(get_context)):
    if not req.title or not req.start:
        raise HTTPException(400, "title and start are required")
    user_id = _user_or_default(request, ctx, req.userId)
    try:
        event = ScheduleEvent(
            id=new_event_id(), title=req.title, start=req.start, end=req.end or None,
            date=_iso_date(req.date), color=ctx.next_color(),
        )
    except ValidationError:
        raise HTTPException(400, "start and end must be HH:MM")
    await ctx.schedules.add(user_id, event)
    return {"success": True, "event": event}


@app.delete("/api/schedule")
async def remove_schedule_event(req: RemoveEventRequest, request: Request, ctx: AppContext = Depends(get_context)):
    if not req.eventId or not req.date:
        raise HTTPException(400, "eventId and date are required")
    user_id = _user_or_default(request, ctx, req.userId)
    date = _iso_date(req.date)
    removed = await ctx.schedules.remove(user_id, date, req.eventId)
    if removed is None:
        return {"success": False, "removed": None, "message": f"Event {req.eventId} not found on {date}"}
    return {"success": True, "removed": removed}


@app.get("/api/schedule/stream")
async def schedule_stream(request: Request, ctx: AppContext = Depends(get_context)):
    user_id = _user_or_default(request, ctx)
    gateway = ctx.gateway(user_id)
    return StreamingResponse(
        gateway.frames(request.is_disconnected),
        media_type="text/event-stream",
        headers={
            "Cache-Control": "no-cache, no-transform",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@app.get("/api/schedule/week", response_model=WeekResponse)
async def get_week(request: Request, ctx: AppContext = Depends(get_context)):
    user_id = _require_user(request, ctx)
    dates = week_dates(datetime.now().date())
    days = await asyncio.gather(*(ctx.schedules.read(user_id, d) for d in dates))
    return WeekResponse(week=[WeekDay(date=d, events=sort_by_start(evs)) for d, evs in zip(dates, days)])


@app.post("/api/schedule/rebuild")
async def rebuild_schedule(request: Request, ctx: AppContext = Depends(get_context)):
    user_id = _require_user(request, ctx)
    user = await ctx.users.get(user_id)
    if not user:
        raise HTTPException(404, "User not found")
    today = _today()
    events, source = await _in_thread(build_day, user, today, ctx.settings)
    events = await ctx.schedules.replace_day(user_id, today, events)
    logger.info(f"[Rebuild] {user_id}: {len(events)} events from {source}")
    return {"success": True, "events": events, "source": source}


@app.post("/api/schedule/chat", response_model=SlotChatResponse)
async def slot_chat(req: SlotChatRequest, ctx: AppContext = Depends(get_context)):
    if not req.message or req.slots is None:
        raise HTTPException(400, "Missing message or slots")
    edited = await _in_thread(edit_slots, req.message, req.slots, ctx.settings)
    if edited is None:
        return SlotChatResponse(
            reply="Sorry, I couldn't understand that. Try something like 'move gym to 7am' or 'make work shorter'.",
            slots=req.slots,
        )
    return SlotChatResponse(**edited)

# ---------------- Users / onboarding ----------------


@app.post("/api/onboarding")
async def onboarding(survey: OnboardingSurvey, response: Response, ctx: AppContext = Depends(get_context)):
    if not survey.name:
        raise HTTPException(400, "Name is required")
    user = await ctx.users.create(survey)
    today = _today()
    events, source = await _in_thread(build_day, user, today, ctx.settings)
    events = await ctx.schedules.replace_day(user.id, today, events)
    response.set_cookie(
        ctx.settings.USER_COOKIE, user.id,
        max_age=ctx.settings.USER_COOKIE_MAX_AGE, path="/", samesite="lax", httponly=False,
    )
    logger.info(f"[Onboarding] {user.id}: seeded {len(events)} events from {source}")
    return {
        "success": True,
        "user": user,
        "events": events,
        "message": f"Welcome {user.name}! DRAKO has set up your day based on your preferences. Start a conversation to customize it!",
    }


@app.get("/api/user")
async def get_user(request: Request, ctx: AppContext = Depends(get_context)):
    user_id = _cookie_user(request, ctx)
    user = await ctx.users.get(user_id) if user_id else None
    return {"user": user, "onboarded": user is not None}


@app.patch("/api/user")
async def update_user(changes: UserUpdate, request: Request, ctx: AppContext = Depends(get_context)):
    user_id = _require_user(request, ctx)
    user = await ctx.users.update(user_id, changes)
    if not user:
        raise HTTPException(404, "User not found")
    return {"user": user, "onboarded": True}


@app.get("/api/persona")
async def get_persona(request: Request, ctx: AppContext = Depends(get_context)):
    user_id = _require_user(request, ctx)
    return {"persona": await ctx.users.get_persona(user_id)}


@app.post("/api/persona")
async def create_persona(req: PersonaRequest, request: Request, ctx: AppContext = Depends(get_context)):
    user_id = req.userId or _cookie_user(request, ctx)
    if not user_id:
        raise HTTPException(400, "userId required")
    user = await ctx.users.get(user_id)
    if not user:
        raise HTTPException(404, "User not found")
    fields = await _in_thread(generate_persona_fields, user, ctx.settings)
    base = {"userId": user_id, "generatedAt": datetime.now().isoformat()}
    try:
        persona = Persona.model_validate({**base, **fields})
    except ValidationError:
        logger.warning(f"[Persona] Unusable LLM persona for {user_id}; using fallback")
        persona = Persona.model_validate({**base, **fallback_persona_fields(user)})
    if not persona.drakoGreeting:
        persona.drakoGreeting = f"Hey {user.name}! Let's build your day."
    await ctx.users.save_persona(persona, ctx.settings.PERSONA_TTL_SECONDS)
    logger.info(f"[Persona] Generated persona for {user.name}: {persona.archetype}")
    return {"persona": persona}

# ---------------- Voice avatar ----------------


@app.post("/api/tavus/start", response_model=AvatarSession)
async def start_avatar(request: Request, ctx: AppContext = Depends(get_context)):
    user_id = _user_or_default(request, ctx)
    today = _today()
    user = await ctx.users.get(user_id)
    events = await ctx.schedules.read(user_id, today)
    full_context = f"Today is {today}.\n{user_context(user)}\n\n{schedule_context(events, today)}"
    app_url = ctx.settings.public_url()
    try:
        persona = await _in_thread(tavus.create_persona, ctx.settings, f"DRAKO-{user_id[:8]}", full_context)
        conversation = await _in_thread(
            tavus.create_conversation, ctx.settings, persona["persona_id"], full_context,
            f"{app_url}/api/webhook/tavus", f"{app_url}/api/tavus/tools",
        )
    except tavus.AvatarAPIError as e:
        logger.error(f"[Tavus Start] {e}")
        raise HTTPException(502, f"Voice assistant unavailable: {e}")
    await ctx.users.bind_conversation(conversation["conversation_id"], user_id, ctx.settings.CONVERSATION_TTL_SECONDS)
    logger.info(f"[Tavus Start] Conversation {conversation['conversation_id']} bound to {user_id}")
    return AvatarSession(
        conversationUrl=conversation["conversation_url"],
        conversationId=conversation["conversation_id"],
        personaId=persona["persona_id"],
        userName=user.name if user else "friend",
    )


@app.post("/api/tavus/end")
async def end_avatar(payload: Dict[str, Any], ctx: AppContext = Depends(get_context)):
    conversation_id = payload.get("conversationId") or payload.get("conversation_id")
    if not conversation_id:
        raise HTTPException(400, "conversationId required")
    try:
        await _in_thread(tavus.end_conversation, ctx.settings, conversation_id)
    except tavus.AvatarAPIError as e:
        logger.error(f"[Tavus End] {e}")
        raise HTTPException(502, f"Could not end conversation: {e}")
    return {"ok": True}


@app.post("/api/tavus/tools", response_model=ToolCallResult)
async def avatar_tool_call(payload: Dict[str, Any], request: Request, ctx: AppContext = Depends(get_context)):
    parsed = parse_tool_call(payload)
    if parsed is None:
        logger.error(f"[Tavus Tool Call] Could not parse tool call: {payload}")
        return JSONResponse({"result": "Could not parse tool call"}, status_code=400)
    name, args = parsed
    # Avatar servers send no cookies; the conversation id identifies the user
    user_id = await ctx.users.user_for_conversation(payload.get("conversation_id")) or _user_or_default(request, ctx)
    try:
        result = await dispatch(ctx, user_id, name, args, _today())
    except UnknownTool:
        logger.error(f"[Tavus Tool Call] Unknown function: {name}")
        return JSONResponse({"result": f"Unknown function: {name}"}, status_code=400)
    except RedisError as e:
        logger.error(f"[Tavus Tool Call] Store error in {name}: {e}")
        return JSONResponse({"result": f"Something went wrong: {e}"}, status_code=500)
    return ToolCallResult(result=result)


@app.post("/api/webhook/tavus")
async def avatar_webhook(payload: WebhookPayload, ctx: AppContext = Depends(get_context)):
    logger.info(f"[Tavus Webhook] {payload.event_type} {payload.conversation_id}")
    if payload.event_type != "application.transcription_ready":
        return {"ok": True}
    transcript = payload.properties.get("transcript")
    if not transcript:
        return {"ok": True}
    user_id = await ctx.users.user_for_conversation(payload.conversation_id) or ctx.settings.DEFAULT_USER_ID
    actions = await _in_thread(extract_transcript_actions, transcript, ctx.settings)
    added = 0
    for action in actions:
        if action.action != "add" or not action.title or not action.start:
            continue
        try:
            event = ScheduleEvent(
                id=new_event_id(), title=action.title, start=action.start, end=action.end or None,
                date=action.date or _today(), color=ctx.next_color(),
            )
        except ValidationError:
            logger.warning(f"[Tavus Webhook] Skipping action with bad time or date: {action.title!r}")
            continue
        await ctx.schedules.add(user_id, event)
        added += 1
    logger.info(f"[Tavus Webhook] {user_id}: {added}/{len(actions)} actions applied")
    return {"processed": len(actions), "added": added, "userId": user_id}

# ---------------- Sharing ----------------


def _local_ip() -> Optional[str]:
    s = socket.socket(socket.AF_INET, socket.SOCK_DGRAM)
    try:
        # No packet is sent; connect() only selects the outbound interface
        s.connect(("10.255.255.255", 1))
        return s.getsockname()[0]
    except OSError:
        return None
    finally:
        s.close()


@app.get("/api/share")
def share_links(ctx: AppContext = Depends(get_context)):
    cfg = ctx.settings
    local_ip = _local_ip()
    local_url = f"http://{local_ip or 'localhost'}:{cfg.PORT}"
    vercel_url = f"https://{cfg.VERCEL_URL}" if cfg.VERCEL_URL else None
    app_url = cfg.APP_URL
    public = app_url if app_url and "localhost" not in app_url else vercel_url
    return {"local": local_url, "localIp": local_ip, "public": public, "vercel": vercel_url, "primary": public or local_url}
