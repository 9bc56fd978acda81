import asyncio
import random

from fastapi import FastAPI, HTTPException, status

import db
from app.errors import InvalidTimeline, StoreUnavailable, UserAlreadyExists
from app.services import timeline
from app.services.dispatcher import ReminderDispatcher
from app.types.reminder_contract import (
    ReminderRequest,
    ReminderResponse,
    UserCreate,
    UserResponse,
    classify_contact,
)
from app.utils.logging import get_logger
from config import settings

logger = get_logger(__name__)

# Randomness for due-time resolution; injected into the resolver explicitly
_rng = random.SystemRandom()

app = FastAPI(title="Procrastinator")

# Start the dispatch loop on startup and drain it on shutdown

@app.on_event("startup")
async def startup_event():
    app.state.dispatcher = None
    app.state.dispatcher_stop = None
    app.state.dispatcher_task = None
    if not settings.RUN_DISPATCHER_IN_API:
        logger.info("reminder_dispatcher_disabled")
        return
    # every uvicorn worker starts a loop; the shared pass lock keeps their passes apart
    dispatcher = ReminderDispatcher.from_settings(settings)
    app.state.dispatcher = dispatcher
    stop = asyncio.Event()
    app.state.dispatcher_stop = stop
    app.state.dispatcher_task = asyncio.create_task(
        dispatcher.run_forever(settings.poll_interval_seconds, stop)
    )

@app.on_event("shutdown")
async def shutdown_event():
    stop = getattr(app.state, "dispatcher_stop", None)
    task = getattr(app.state, "dispatcher_task", None)
    if stop is not None:
        stop.set()
    if task is not None:
        # lets an in-flight pass finish
        await task
    dispatcher = getattr(app.state, "dispatcher", None)
    if dispatcher is not None:
        await dispatcher.aclose()
    await db.dispose_engine()

# --------------------------------------------
# Helpers
# --------------------------------------------

def _reminder_response(reminder: db.Reminder, user: db.User) -> ReminderResponse:
    return ReminderResponse(
        id=reminder.id,
        message=reminder.message,
        due_at=reminder.due_at,
        timeline_label=reminder.timeline_label,
        is_completed=reminder.is_completed,
        retry_count=reminder.retry_count,
        created_at=reminder.created_at,
        updated_at=reminder.updated_at,
        contact_info=user.contact_address,
        user_type=user.kind,
    )


def _store_down(exc: StoreUnavailable) -> HTTPException:
    logger.error("reminder_store_unavailable", error=str(exc))
    return HTTPException(status.HTTP_503_SERVICE_UNAVAILABLE, "Reminder store unavailable")

# --------------------------------------------
# Endpoints
# --------------------------------------------

@app.get("/healthz")
async def healthz():
    return {"status": "ok"}


@app.post("/api/reminder", response_model=ReminderResponse, status_code=status.HTTP_201_CREATED)
async def create_reminder(request: ReminderRequest):
    kind, address = classify_contact(request.contact_info)
    now = settings.now()
    try:
        due_at = timeline.resolve(request.reminder_timeline, now, _rng)
    except InvalidTimeline as exc:
        raise HTTPException(status.HTTP_422_UNPROCESSABLE_ENTITY, str(exc))

    try:
        user = await db.get_or_create_user(kind, address, now)
        reminder = await db.insert_reminder(
            user.id, request.message, due_at, request.reminder_timeline.value, now
        )
    except StoreUnavailable as exc:
        raise _store_down(exc)

    logger.info(
        "reminder_created",
        reminder_id=reminder.id,
        user_id=user.id,
        timeline=reminder.timeline_label,
        due_at=due_at.isoformat(),
    )
    return _reminder_response(reminder, user)


@app.get("/api/reminder/{reminder_id}", response_model=ReminderResponse)
async def get_reminder(reminder_id: int):
    try:
        found = await db.get_reminder(reminder_id)
    except StoreUnavailable as exc:
        raise _store_down(exc)
    if found is None:
        raise HTTPException(status.HTTP_404_NOT_FOUND, "Reminder not found")
    reminder, user = found
    return _reminder_response(reminder, user)


@app.post("/api/user", response_model=UserResponse, status_code=status.HTTP_201_CREATED)
async def create_user(request: UserCreate):
    kind, address = classify_contact(request.contact_info)
    try:
        user = await db.create_user(kind, address, settings.now())
    except UserAlreadyExists as exc:
        raise HTTPException(status.HTTP_409_CONFLICT, str(exc))
    except StoreUnavailable as exc:
        raise _store_down(exc)
    return UserResponse(
        id=user.id,
        contact_info=user.contact_address,
        user_type=user.kind,
        created_at=user.created_at,
        updated_at=user.updated_at,
    )
