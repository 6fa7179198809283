import json

import pytest
from fastapi.testclient import TestClient
from langchain_core.messages import AIMessage

from trip_editor import main
from trip_editor.config import Settings
from trip_editor.workflow import create_graph

from conftest import make_trip


class FakeLLM:
    def __init__(self, reply: str) -> None:
        self.reply = reply

    async def ainvoke(self, messages):
        return AIMessage(content=self.reply)


@pytest.fixture
def client(monkeypatch):
    settings = Settings(
        openai_api_key=None,
        mapbox_access_token=None,
        trip_api_base_url=None,
        save_debounce_sec=0.01,
    )
    monkeypatch.setattr(main, "get_settings", lambda: settings)
    with TestClient(main.app) as test_client:
        yield test_client


def _session(client, trip=None) -> dict:
    trip = trip or make_trip("2025-06-01", "2025-06-02", start="2025-06-01", end="2025-06-02", items_per_day=3)
    resp = client.post("/sessions", json={"trip": trip.to_wire()})
    assert resp.status_code == 200
    return resp.json()


def _titles(view, day_index=0):
    return [item["title"] for item in view["trip"]["days"][day_index]["items"]]


def test_health(client):
    assert client.get("/health").json() == {"status": "ok"}


def test_create_session_returns_a_camel_case_view(client):
    view = _session(client)

    assert view["sessionId"]
    assert view["trip"]["startDate"] == "2025-06-01"
    assert view["changedItemIds"] == []
    assert view["canUndo"] is False
    assert view["canRedo"] is False
    assert view["hasUnsavedChanges"] is True
    assert view["status"] in {"upcoming", "active", "completed"}


def test_reorder_then_undo_and_redo(client):
    view = _session(client)
    sid = view["sessionId"]
    original = _titles(view)

    reordered = client.post(f"/sessions/{sid}/days/0/reorder", json={"startIndex": 0, "endIndex": 2}).json()
    assert _titles(reordered) == [original[1], original[2], original[0]]
    assert reordered["canUndo"] is True

    undone = client.post(f"/sessions/{sid}/undo").json()
    assert _titles(undone) == original
    assert undone["canRedo"] is True

    redone = client.post(f"/sessions/{sid}/redo").json()
    assert _titles(redone) == _titles(reordered)


def test_invalid_move_leaves_the_trip_unchanged(client):
    view = _session(client)
    sid = view["sessionId"]
    item_id = view["trip"]["days"][0]["items"][0]["id"]

    moved = client.post(
        f"/sessions/{sid}/move",
        json={"sourceDayIndex": 0, "destDayIndex": 5, "itemId": item_id, "destIndex": 0},
    )

    assert moved.status_code == 200
    assert moved.json()["trip"] == view["trip"]
    assert moved.json()["canUndo"] is False


def test_item_edits_are_highlight_free(client):
    view = _session(client)
    sid = view["sessionId"]
    item_id = view["trip"]["days"][1]["items"][0]["id"]

    updated = client.patch(f"/sessions/{sid}/days/1/items/{item_id}", json={"startTime": "09:30"}).json()
    added = client.post(f"/sessions/{sid}/days/1/items", json={"item": {"title": "Ramen"}}).json()

    assert updated["trip"]["days"][1]["items"][0]["startTime"] == "09:30"
    assert _titles(added, 1)[-1] == "Ramen"
    assert added["changedItemIds"] == []


def test_booking_reports_the_outbound_day(client):
    sid = _session(client)["sessionId"]
    booking = {
        "pnr": "XYZ789",
        "origin": "SFO",
        "destination": "NRT",
        "departDate": "2025-05-31T11:00:00",
        "airline": "ANA",
        "flightNumber": "NH 7",
        "totalPrice": 980.0,
    }

    view = client.post(f"/sessions/{sid}/bookings", json=booking).json()

    assert view["dayIndex"] == 0
    assert view["trip"]["startDate"] == "2025-05-31"
    assert _titles(view, 0) == ["Flight: SFO → NRT"]
    assert view["costs"]["byCategory"] == {"flights": 980.0}


def test_patch_trip_keeps_highlights_and_day_ops(client):
    sid = _session(client)["sessionId"]

    patched = client.patch(f"/sessions/{sid}/trip", json={"title": "Tokyo weekend"}).json()
    duplicated = client.post(f"/sessions/{sid}/days/0/duplicate").json()
    removed = client.delete(f"/sessions/{sid}/days/2").json()

    assert patched["trip"]["title"] == "Tokyo weekend"
    assert patched["canUndo"] is False
    assert len(duplicated["trip"]["days"]) == 3
    assert len(removed["trip"]["days"]) == 2


def test_replacing_the_trip_highlights_changed_items(client):
    trip = make_trip("2025-06-01", start="2025-06-01", end="2025-06-01")
    sid = _session(client, trip)["sessionId"]
    revised = trip.model_copy(deep=True)
    revised.days[0].items[0].title = "Renamed"

    view = client.put(f"/sessions/{sid}/trip", json=revised.to_wire()).json()

    assert view["changedItemIds"] == [trip.days[0].items[0].id]
    cleared = client.post(f"/sessions/{sid}/changes/clear").json()
    assert cleared["changedItemIds"] == []


def test_save_persists_and_reloads(client):
    sid = _session(client)["sessionId"]

    saved = client.post(f"/sessions/{sid}/save").json()
    reloaded = client.post("/sessions", json={"tripId": saved["currentTripId"]}).json()

    assert saved["hasUnsavedChanges"] is False
    assert reloaded["trip"] == saved["trip"]
    assert reloaded["hasUnsavedChanges"] is False


def test_unknown_session_and_trip_are_404(client):
    assert client.get("/sessions/nope").status_code == 404
    assert client.post("/sessions/nope/undo").status_code == 404
    assert client.post("/sessions", json={"tripId": "missing"}).status_code == 404


def test_chat_is_503_without_a_model(client):
    sid = _session(client)["sessionId"]

    resp = client.post(f"/sessions/{sid}/chat", json={"text": "Hello"})

    assert resp.status_code == 503


def test_chat_applies_the_reply(client):
    reply = json.dumps({"type": "update", "content": "Renamed it", "updates": {"title": "Tokyo, slowly"}})
    main.app.state.chat_graph = create_graph(FakeLLM(reply))
    sid = _session(client)["sessionId"]

    view = client.post(f"/sessions/{sid}/chat", json={"text": "Rename the trip"}).json()

    assert view["result"]["message"] == "Renamed it"
    assert view["trip"]["title"] == "Tokyo, slowly"
    assert [m["role"] for m in view["messages"]] == ["user", "assistant"]
    assert view["messages"][1]["hasItineraryChanges"] is True


def test_empty_session_opens_with_the_greeting(client):
    view = client.post("/sessions", json={}).json()

    assert view["trip"] is None
    assert view["status"] is None
    greeting = view["messages"][0]
    assert greeting["role"] == "assistant"
    assert greeting["content"].startswith("Hey there!")
    assert [r["text"] for r in greeting["quickReplies"]][-1] == "Type my own"


def test_patch_trip_rejects_invalid_values(client):
    view = _session(client)
    sid = view["sessionId"]

    resp = client.patch(f"/sessions/{sid}/trip", json={"pace": "relaxed", "title": "Slow Tokyo"})

    assert resp.status_code == 422
    after = client.get(f"/sessions/{sid}").json()
    assert after["trip"] == view["trip"]


def test_closed_session_is_gone(client):
    sid = _session(client)["sessionId"]

    assert client.delete(f"/sessions/{sid}").status_code == 204
    assert client.get(f"/sessions/{sid}").status_code == 404
    assert client.delete(f"/sessions/{sid}").status_code == 404


def test_idle_sessions_are_evicted_on_the_next_create(client):
    idle = _session(client)["sessionId"]
    active = _session(client)["sessionId"]
    main.app.state.sessions[idle].last_seen -= main.app.state.settings.session_idle_sec + 1

    _session(client)

    assert client.get(f"/sessions/{idle}").status_code == 404
    assert client.get(f"/sessions/{active}").status_code == 200
