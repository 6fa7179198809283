from __future__ import annotations

import asyncio
import logging
import time
from dataclasses import dataclass, field
from typing import Any

import httpx
from fastapi import FastAPI, HTTPException
from fastapi.responses import JSONResponse
from pydantic import ValidationError

from trip_editor.config import get_settings
from trip_editor.conversation import ConversationEngine, ConversationError, chat_turn, initial_greeting
from trip_editor.geocoding import MapboxClient
from trip_editor.persistence import (
    DebouncedSaver,
    InMemoryTripRepository,
    PersistenceError,
    RetryOnNextWindow,
    TripApiClient,
    TripNotFound,
)
from trip_editor.schemas import (
    Booking,
    CamelModel,
    ChatMessage,
    ChatResult,
    Day,
    ItemType,
    ItineraryItem,
    Location,
    Trip,
    TripStatus,
    new_id,
)
from trip_editor.store import TripStore
from trip_editor.summary import CostSummary, cost_summary, trip_status
from trip_editor.workflow import build_llm, create_graph


app = FastAPI(title="Trip Itinerary Editor", version="0.1.0")
logging.basicConfig(level=logging.INFO)
logger = logging.getLogger("trip-editor")


@dataclass
class EditorSession:
    store: TripStore
    saver: DebouncedSaver
    engine: ConversationEngine | None
    last_seen: float = field(default_factory=time.monotonic)


class CreateSessionRequest(CamelModel):
    trip: Trip | None = None
    trip_id: str | None = None


class ItemRequest(CamelModel):
    item: ItineraryItem


class ItemUpdate(CamelModel):
    title: str | None = None
    description: str | None = None
    type: ItemType | None = None
    start_time: str | None = None
    end_time: str | None = None
    duration: str | None = None
    notes: str | None = None
    cost: float | None = None
    cost_category: str | None = None
    location_hint: str | None = None
    location: Location | None = None


class ReorderRequest(CamelModel):
    start_index: int
    end_index: int


class MoveRequest(CamelModel):
    source_day_index: int
    dest_day_index: int
    item_id: str
    dest_index: int


class AddDayRequest(CamelModel):
    day: Day
    index: int | None = None


class ChatRequest(CamelModel):
    text: str


class SessionView(CamelModel):
    session_id: str
    trip: Trip | None
    current_trip_id: str | None = None
    changed_item_ids: list[str]
    has_unsaved_changes: bool
    can_undo: bool
    can_redo: bool
    status: TripStatus | None = None
    costs: CostSummary | None = None
    messages: list[ChatMessage] = []


class BookingResponse(SessionView):
    day_index: int | None = None


class ChatResponse(SessionView):
    result: ChatResult


@app.on_event("startup")
async def on_startup() -> None:
    settings = get_settings()
    if settings.trip_api_base_url:
        repository = TripApiClient(settings.trip_api_base_url, user_id=settings.trip_api_user_id)
    else:
        logger.warning("trip_api_base_url not set, trips are kept in memory")
        repository = InMemoryTripRepository()

    geocoder = None
    if settings.mapbox_access_token:
        geocoder = MapboxClient(settings.mapbox_access_token, timeout=settings.geocode_timeout_sec)

    chat_graph = None
    if settings.openai_api_key:
        chat_graph = create_graph(
            build_llm(settings.openai_api_key, settings.openai_base_url, settings.openai_model),
            geocoder=geocoder,
            llm_timeout_sec=settings.llm_timeout_sec,
            llm_max_retries=settings.llm_max_retries,
            retry_backoff_sec=settings.retry_backoff_sec,
        )
    else:
        logger.warning("openai_api_key not set, chat is disabled")

    app.state.settings = settings
    app.state.repository = repository
    app.state.geocoder = geocoder
    app.state.chat_graph = chat_graph
    app.state.sessions = {}


@app.on_event("shutdown")
async def on_shutdown() -> None:
    sessions: dict[str, EditorSession] = getattr(app.state, "sessions", {})
    for session in sessions.values():
        if session.store.has_unsaved_changes:
            await session.saver.flush()
    for client in (getattr(app.state, "repository", None), getattr(app.state, "geocoder", None)):
        if hasattr(client, "aclose"):
            await client.aclose()


def _session(session_id: str) -> EditorSession:
    session = app.state.sessions.get(session_id)
    if session is None:
        raise HTTPException(status_code=404, detail="session not found")
    session.last_seen = time.monotonic()
    return session


async def _close(session_id: str) -> None:
    session = app.state.sessions.pop(session_id, None)
    if session is None:
        return
    if session.store.has_unsaved_changes:
        await session.saver.flush()
    elif session.saver.pending is not None:
        session.saver.pending.cancel()
    logger.info("session %s closed", session_id)


async def _evict_idle_sessions() -> None:
    cutoff = time.monotonic() - app.state.settings.session_idle_sec
    idle = [sid for sid, session in app.state.sessions.items() if session.last_seen < cutoff]
    for session_id in idle:
        await _close(session_id)


def _view(session_id: str, session: EditorSession, **extra: Any) -> dict[str, Any]:
    store = session.store
    trip = store.trip
    return {
        "session_id": session_id,
        "trip": trip,
        "current_trip_id": store.current_trip_id,
        "changed_item_ids": sorted(store.changed_item_ids),
        "has_unsaved_changes": store.has_unsaved_changes,
        "can_undo": store.can_undo(),
        "can_redo": store.can_redo(),
        "status": trip_status(trip) if trip is not None else None,
        "costs": cost_summary(trip) if trip is not None else None,
        "messages": store.messages,
        **extra,
    }


def _edited(session_id: str, session: EditorSession, changed: bool) -> dict[str, Any]:
    if changed:
        session.saver.schedule()
    return _view(session_id, session)


@app.get("/health")
async def health() -> dict:
    return {"status": "ok"}


@app.post("/sessions", response_model=SessionView)
async def create_session(request: CreateSessionRequest) -> dict[str, Any]:
    await _evict_idle_sessions()
    settings = app.state.settings
    store = TripStore(history_limit=settings.history_limit)
    saver = DebouncedSaver(
        store,
        app.state.repository,
        debounce_sec=settings.save_debounce_sec,
        retry_policy=RetryOnNextWindow(settings.save_debounce_sec, settings.save_max_retries),
    )
    graph = app.state.chat_graph
    session = EditorSession(store=store, saver=saver, engine=ConversationEngine(graph) if graph else None)

    if request.trip_id:
        try:
            store.load_trip(await app.state.repository.get_trip(request.trip_id))
        except TripNotFound:
            raise HTTPException(status_code=404, detail="trip not found")
        except (httpx.HTTPError, PersistenceError) as exc:
            logger.warning("load of trip %s failed: %s", request.trip_id, exc)
            raise HTTPException(status_code=502, detail="trip storage unavailable")
    elif request.trip is not None:
        store.set_trip(request.trip)
        saver.schedule()
    else:
        store.messages = [initial_greeting()]

    session_id = new_id()
    app.state.sessions[session_id] = session
    logger.info("session %s created trip=%s", session_id, store.current_trip_id)
    return _view(session_id, session)


@app.delete("/sessions/{session_id}", status_code=204)
async def close_session(session_id: str) -> None:
    _session(session_id)
    await _close(session_id)


@app.get("/sessions/{session_id}", response_model=SessionView)
async def get_session(session_id: str) -> dict[str, Any]:
    return _view(session_id, _session(session_id))


@app.put("/sessions/{session_id}/trip", response_model=SessionView)
async def replace_trip(session_id: str, trip: Trip) -> dict[str, Any]:
    session = _session(session_id)
    session.store.set_trip(trip)
    return _edited(session_id, session, True)


@app.patch("/sessions/{session_id}/trip", response_model=SessionView)
async def patch_trip(session_id: str, updates: dict[str, Any]) -> dict[str, Any]:
    session = _session(session_id)
    try:
        changed = session.store.update_trip(updates)
    except ValidationError as exc:
        raise HTTPException(status_code=422, detail=exc.errors(include_url=False, include_context=False))
    return _edited(session_id, session, changed)


@app.post("/sessions/{session_id}/days", response_model=SessionView)
async def add_day(session_id: str, request: AddDayRequest) -> dict[str, Any]:
    session = _session(session_id)
    return _edited(session_id, session, session.store.add_day(request.day, request.index))


@app.delete("/sessions/{session_id}/days/{day_index}", response_model=SessionView)
async def remove_day(session_id: str, day_index: int) -> dict[str, Any]:
    session = _session(session_id)
    return _edited(session_id, session, session.store.remove_day(day_index))


@app.post(
    "/sessions/{session_id}/days/{day_index}/duplicate",
    response_model=SessionView,
)
async def duplicate_day(session_id: str, day_index: int) -> dict[str, Any]:
    session = _session(session_id)
    return _edited(session_id, session, session.store.duplicate_day(day_index))


@app.post(
    "/sessions/{session_id}/days/{day_index}/items",
    response_model=SessionView,
)
async def add_item(session_id: str, day_index: int, request: ItemRequest) -> dict[str, Any]:
    session = _session(session_id)
    return _edited(session_id, session, session.store.add_item_to_day(day_index, request.item))


@app.put(
    "/sessions/{session_id}/days/{day_index}/items/{item_id}",
    response_model=SessionView,
)
async def replace_item(session_id: str, day_index: int, item_id: str, request: ItemRequest) -> dict[str, Any]:
    session = _session(session_id)
    return _edited(session_id, session, session.store.replace_item_in_day(day_index, item_id, request.item))


@app.patch(
    "/sessions/{session_id}/days/{day_index}/items/{item_id}",
    response_model=SessionView,
)
async def update_item(session_id: str, day_index: int, item_id: str, request: ItemUpdate) -> dict[str, Any]:
    session = _session(session_id)
    updates = request.model_dump(exclude_unset=True)
    return _edited(session_id, session, session.store.update_item(day_index, item_id, updates))


@app.delete(
    "/sessions/{session_id}/days/{day_index}/items/{item_id}",
    response_model=SessionView,
)
async def remove_item(session_id: str, day_index: int, item_id: str) -> dict[str, Any]:
    session = _session(session_id)
    return _edited(session_id, session, session.store.remove_item_from_day(day_index, item_id))


@app.post(
    "/sessions/{session_id}/days/{day_index}/reorder",
    response_model=SessionView,
)
async def reorder_items(session_id: str, day_index: int, request: ReorderRequest) -> dict[str, Any]:
    session = _session(session_id)
    changed = session.store.reorder_items_in_day(day_index, request.start_index, request.end_index)
    return _edited(session_id, session, changed)


@app.post("/sessions/{session_id}/move", response_model=SessionView)
async def move_item(session_id: str, request: MoveRequest) -> dict[str, Any]:
    session = _session(session_id)
    changed = session.store.move_item_between_days(
        request.source_day_index, request.dest_day_index, request.item_id, request.dest_index
    )
    return _edited(session_id, session, changed)


@app.post("/sessions/{session_id}/bookings", response_model=BookingResponse)
async def add_booking(session_id: str, booking: Booking) -> dict[str, Any]:
    session = _session(session_id)
    day_index = session.store.merge_booking(booking)
    if day_index is not None:
        session.saver.schedule()
    return _view(session_id, session, day_index=day_index)


@app.post("/sessions/{session_id}/undo", response_model=SessionView)
async def undo(session_id: str) -> dict[str, Any]:
    session = _session(session_id)
    return _edited(session_id, session, session.store.undo())


@app.post("/sessions/{session_id}/redo", response_model=SessionView)
async def redo(session_id: str) -> dict[str, Any]:
    session = _session(session_id)
    return _edited(session_id, session, session.store.redo())


@app.post("/sessions/{session_id}/changes/clear", response_model=SessionView)
async def clear_changes(session_id: str) -> dict[str, Any]:
    session = _session(session_id)
    session.store.clear_changed_items()
    return _view(session_id, session)


@app.post("/sessions/{session_id}/save", response_model=SessionView)
async def save(session_id: str) -> dict[str, Any]:
    session = _session(session_id)
    await session.saver.flush()
    return _view(session_id, session)


@app.post("/sessions/{session_id}/chat", response_model=ChatResponse)
async def chat(session_id: str, request: ChatRequest):
    session = _session(session_id)
    if session.engine is None:
        raise HTTPException(status_code=503, detail="chat is not configured")

    settings = app.state.settings
    try:
        result = await asyncio.wait_for(
            chat_turn(session.store, session.engine, request.text), timeout=settings.chat_timeout_sec
        )
    except asyncio.TimeoutError:
        return JSONResponse(status_code=504, content={"error": "chat_timeout", "detail": "Exceeded chat timeout"})
    except ConversationError as exc:
        return JSONResponse(status_code=502, content={"error": "chat_failed", "detail": str(exc)})

    session.saver.schedule()
    return _view(session_id, session, result=result)


@app.exception_handler(Exception)
async def unhandled_exception_handler(request, exc: Exception):
    logger.exception("unhandled error on %s", request.url.path)
    return JSONResponse(status_code=500, content={"error": str(exc)})
