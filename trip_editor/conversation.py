from __future__ import annotations

import logging

from trip_editor.schemas import ChatMessage, ChatResult, QuickReply, Trip
from trip_editor.store import TripStore
from trip_editor.workflow import ChatState


logger = logging.getLogger("trip-editor")

INITIAL_GREETING = "Hey there! Where are you thinking of traveling?"
GREETING_QUICK_REPLIES = [
    QuickReply(text="Peru", action="confirm"),
    QuickReply(text="Japan", action="confirm"),
    QuickReply(text="Italy", action="confirm"),
    QuickReply(text="Type my own", action="custom"),
]


class ConversationError(Exception):
    pass


class ConversationEngine:
    """Runs chat turns through the compiled chat graph and keeps the raw exchange."""

    def __init__(self, graph) -> None:
        self.graph = graph
        self.conversation_history: list[dict[str, str]] = []

    async def send_message(self, text: str, current_trip: Trip | None) -> ChatResult:
        initial: ChatState = {
            "text": text,
            "trip": current_trip,
            "history": list(self.conversation_history),
            "raw": "",
            "parsed": None,
            "enriched_trip": None,
            "result": None,
        }
        try:
            state = await self.graph.ainvoke(initial)
        except Exception as exc:  # noqa: BLE001
            logger.exception("chat turn failed")
            raise ConversationError("Failed to get response. Please try again.") from exc

        # History holds user/assistant pairs; a failed turn records neither.
        self.conversation_history.append({"role": "user", "content": text})
        self.conversation_history.append({"role": "assistant", "content": state.get("raw", "")})
        return state["result"]

    def reset(self) -> None:
        self.conversation_history = []


def initial_greeting() -> ChatMessage:
    return ChatMessage(role="assistant", content=INITIAL_GREETING, quick_replies=list(GREETING_QUICK_REPLIES))


def apply_chat_result(store: TripStore, result: ChatResult) -> ChatMessage:
    """Record the assistant reply and route any itinerary change into the store."""
    message = ChatMessage(
        role="assistant",
        content=result.message,
        suggestion_card=result.suggestion,
        quick_replies=result.quick_replies,
        has_itinerary_changes=result.trip is not None or result.trip_update is not None,
        is_new_itinerary=result.trip is not None and store.trip is None,
    )
    if result.trip is not None:
        store.set_trip(result.trip)
    elif result.trip_update is not None:
        store.update_trip(result.trip_update)
    store.add_message(message)
    return message


async def chat_turn(store: TripStore, engine: ConversationEngine, text: str) -> ChatResult:
    store.add_message(ChatMessage(role="user", content=text))
    result = await engine.send_message(text, store.trip)
    apply_chat_result(store, result)
    return result
