from __future__ import annotations

import asyncio
import json
import logging
import time
from typing import Any, TypedDict

from langchain_core.messages import AIMessage, BaseMessage, HumanMessage, SystemMessage
from langchain_openai import ChatOpenAI
from langgraph.graph import END, StateGraph
from pydantic import ValidationError

from trip_editor.geocoding import Geocoder, enrich_trip_locations
from trip_editor.schemas import ChatResult, Day, QuickReply, SuggestionCard, Trip, new_id, validate_trip_patch


logger = logging.getLogger("trip-editor")

SYSTEM_PROMPT = (
    "You are a travel planning assistant that edits a trip itinerary together with the user. "
    "Always answer with a single JSON object and nothing else. Use one of these shapes:\n"
    '{"type": "message", "content": string, "quickReplies": [{"text": string, "action": "info|confirm|alternative|custom"}]}\n'
    '{"type": "itinerary", "content": string, "trip": Trip}\n'
    '{"type": "update", "content": string, "updates": Partial<Trip>}\n'
    '{"type": "suggestion", "content": string, "suggestion": {"title": string, "summary": string, '
    '"itemType": string, "duration": string, "defaultDayIndex": number}}\n'
    "Trip = {destination, startDate, endDate, pace, interests, days: [{date, location, items: [{id, title, "
    "type, description, startTime, endTime, duration, notes, cost, costCategory, locationHint}]}]}. "
    "Item type is one of sight, food, museum, hike, experience, transport, rest. Times are HH:MM, 24-hour. "
    "Keep the id of every item you leave in place; omit ids for new items."
)

DEFAULT_QUICK_REPLIES = [QuickReply(text="Let me type my answer", action="custom")]
MALFORMED_RESPONSE_MESSAGE = "Sorry, I had trouble understanding that response. Please try again."


class ChatState(TypedDict):
    text: str
    trip: Trip | None
    history: list[dict[str, str]]
    raw: str
    parsed: dict[str, Any] | None
    enriched_trip: Trip | None
    result: ChatResult | None


async def call_with_retries(
    label: str,
    timeout_sec: int,
    max_retries: int,
    backoff_sec: float,
    func,
):
    attempt = 0
    while True:
        try:
            start = time.monotonic()
            result = await asyncio.wait_for(func(), timeout=timeout_sec)
            elapsed = time.monotonic() - start
            logger.info("%s ok in %.2fs", label, elapsed)
            if elapsed > timeout_sec * 0.8:
                logger.warning("%s slow: %.2fs (timeout=%ss)", label, elapsed, timeout_sec)
            return result
        except Exception as exc:  # noqa: BLE001
            if attempt >= max_retries:
                logger.exception("%s failed after %s attempts", label, attempt + 1)
                raise
            logger.warning("%s failed (attempt %s/%s): %s", label, attempt + 1, max_retries + 1, exc)
            await asyncio.sleep(backoff_sec * (2 ** attempt))
            attempt += 1


def build_llm(api_key: str, base_url: str | None, model: str) -> ChatOpenAI:
    return ChatOpenAI(api_key=api_key, base_url=base_url, model=model, temperature=0.4)


def strip_fences(content: str) -> str:
    content = content.strip()
    if content.startswith("```"):
        content = content[3:]
        if content.startswith("json"):
            content = content[4:]
        if content.endswith("```"):
            content = content[:-3]
    return content.strip()


def parse_response(content: str | None) -> dict[str, Any] | None:
    if not content:
        return None
    try:
        parsed = json.loads(strip_fences(content))
    except json.JSONDecodeError:
        return None
    return parsed if isinstance(parsed, dict) else None


def _looks_like_json(content: str) -> bool:
    return content.lstrip().startswith(("{", "[", "```"))


def adopt_days(raw_days: list[Any], known_ids: set[str]) -> list[Day]:
    """Validate days from a model response, keeping only ids that name existing items."""
    seen: set[str] = set()
    days: list[Day] = []
    for raw_day in raw_days:
        day = Day.model_validate(raw_day)
        items = []
        for item in day.items:
            if item.id not in known_ids or item.id in seen:
                item = item.model_copy(update={"id": new_id()})
            seen.add(item.id)
            items.append(item)
        days.append(day.model_copy(update={"items": items}))
    return days


def trip_from_response(raw_trip: dict[str, Any], current: Trip | None) -> Trip:
    known_ids = {item.id for item in current.iter_items()} if current is not None else set()
    fields = {k: v for k, v in raw_trip.items() if k not in ("id", "days")}
    trip = Trip.model_validate(fields)
    return trip.model_copy(
        update={
            "id": current.id if current is not None else new_id(),
            "days": adopt_days(raw_trip.get("days") or [], known_ids),
        }
    )


def _to_messages(state: ChatState) -> list[BaseMessage]:
    system = SYSTEM_PROMPT
    if state.get("trip") is not None:
        system += "\nCurrent trip:\n" + json.dumps(state["trip"].to_wire(), ensure_ascii=False)
    messages: list[BaseMessage] = [SystemMessage(system)]
    for entry in state.get("history", []):
        if entry["role"] == "user":
            messages.append(HumanMessage(entry["content"]))
        else:
            messages.append(AIMessage(entry["content"]))
    messages.append(HumanMessage(state["text"]))
    return messages


def create_graph(
    llm,
    geocoder: Geocoder | None = None,
    llm_timeout_sec: int = 60,
    llm_max_retries: int = 2,
    retry_backoff_sec: float = 1.5,
):
    async def chat_node(state: ChatState) -> ChatState:
        logger.info("node:chat start history=%s", len(state.get("history", [])))
        messages = _to_messages(state)
        ai = await call_with_retries(
            "chat_llm",
            llm_timeout_sec,
            llm_max_retries,
            retry_backoff_sec,
            lambda: llm.ainvoke(messages),
        )
        content = ai.content if isinstance(ai.content, str) else str(ai.content)
        return {**state, "raw": content}

    async def parse_node(state: ChatState) -> ChatState:
        parsed = parse_response(state["raw"])
        if parsed is None:
            logger.warning("node:parse could not parse response: %.200s", state["raw"])
        else:
            logger.info("node:parse type=%s", parsed.get("type"))
        return {**state, "parsed": parsed}

    async def enrich_node(state: ChatState) -> ChatState:
        parsed = state["parsed"] or {}
        try:
            trip = trip_from_response(parsed.get("trip") or {}, state.get("trip"))
        except ValidationError as exc:
            logger.warning("node:enrich invalid trip payload: %s", exc)
            return {**state, "enriched_trip": None}
        trip = await enrich_trip_locations(trip, geocoder)
        logger.info("node:enrich done days=%s", len(trip.days))
        return {**state, "enriched_trip": trip}

    async def respond_node(state: ChatState) -> ChatState:
        return {**state, "result": _build_result(state)}

    def route_after_parse(state: ChatState) -> str:
        parsed = state.get("parsed")
        if parsed is not None and parsed.get("type") == "itinerary":
            return "enrich"
        return "respond"

    graph = StateGraph(ChatState)
    graph.add_node("chat_node", chat_node)
    graph.add_node("parse_node", parse_node)
    graph.add_node("enrich_node", enrich_node)
    graph.add_node("respond_node", respond_node)

    graph.set_entry_point("chat_node")
    graph.add_edge("chat_node", "parse_node")
    graph.add_conditional_edges(
        "parse_node",
        route_after_parse,
        {"enrich": "enrich_node", "respond": "respond_node"},
    )
    graph.add_edge("enrich_node", "respond_node")
    graph.add_edge("respond_node", END)

    return graph.compile()


def _build_result(state: ChatState) -> ChatResult:
    raw = state.get("raw") or ""
    parsed = state.get("parsed")
    if parsed is None:
        message = MALFORMED_RESPONSE_MESSAGE if _looks_like_json(raw) or not raw.strip() else raw
        return ChatResult(message=message, is_error=message == MALFORMED_RESPONSE_MESSAGE)

    content = str(parsed.get("content") or "")
    kind = parsed.get("type")

    try:
        if kind == "message":
            replies = [QuickReply.model_validate(r) for r in parsed.get("quickReplies") or []]
            return ChatResult(message=content, quick_replies=replies or list(DEFAULT_QUICK_REPLIES))

        if kind == "itinerary":
            trip = state.get("enriched_trip")
            if trip is None:
                return ChatResult(message=MALFORMED_RESPONSE_MESSAGE, is_error=True)
            return ChatResult(message=content, trip=trip)

        if kind == "suggestion":
            suggestion = SuggestionCard.model_validate({**(parsed.get("suggestion") or {}), "id": new_id()})
            return ChatResult(message=content, suggestion=suggestion)

        if kind == "update":
            raw_updates = parsed.get("updates") or {}
            if not isinstance(raw_updates, dict):
                logger.warning("respond: update payload is not an object")
                return ChatResult(message=MALFORMED_RESPONSE_MESSAGE, is_error=True)
            updates = validate_trip_patch(raw_updates)
            if "days" in updates:
                current = state.get("trip")
                known_ids = {item.id for item in current.iter_items()} if current is not None else set()
                updates["days"] = adopt_days(updates["days"] or [], known_ids)
            return ChatResult(message=content, trip_update=updates)
    except ValidationError as exc:
        logger.warning("respond: invalid %s payload: %s", kind, exc)
        return ChatResult(message=MALFORMED_RESPONSE_MESSAGE, is_error=True)

    logger.warning("respond: unknown response type %r", kind)
    return ChatResult(message=content or raw)
