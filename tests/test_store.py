import pytest
from pydantic import ValidationError

from trip_editor.schemas import Day, TripSnapshot
from trip_editor.store import TripStore

from conftest import make_booking, make_item, make_trip


def _loaded(trip) -> TripStore:
    store = TripStore()
    store.set_trip(trip)
    store.has_unsaved_changes = False
    return store


def test_operations_without_a_trip_do_nothing():
    store = TripStore()

    assert not store.add_item_to_day(0, make_item("x"))
    assert not store.reorder_items_in_day(0, 0, 1)
    assert not store.update_trip({"title": "Hello"})
    assert store.merge_booking(make_booking("2025-06-01")) is None
    assert not store.undo()
    assert not store.redo()
    assert not store.can_undo()
    assert store.trip is None
    assert not store.has_unsaved_changes


def test_set_trip_detects_changes_against_the_previous_trip(trip):
    store = TripStore()
    store.set_trip(trip)
    assert store.changed_item_ids == set()

    x = trip.days[0].items[0]
    y = make_item("New stop")
    revised = trip.model_copy(deep=True)
    revised.days[0].items[0].title = "Renamed"
    revised.days[1].items.append(y)
    store.set_trip(revised)

    assert store.changed_item_ids == {x.id, y.id}
    assert store.has_unsaved_changes


def test_set_trip_is_not_undoable(trip):
    store = TripStore()
    store.set_trip(trip)
    store.set_trip(trip.model_copy(update={"destination": "Osaka"}))

    assert not store.can_undo()
    assert not store.undo()
    assert store.trip.destination == "Osaka"


def test_update_without_days_keeps_the_highlights(trip):
    store = _loaded(trip)
    store.changed_item_ids = {"keep-me"}

    assert store.update_trip({"coverPhotoUrl": "https://example.com/tokyo.jpg", "title": "Tokyo spring"})

    assert store.trip.cover_photo_url == "https://example.com/tokyo.jpg"
    assert store.trip.title == "Tokyo spring"
    assert store.trip.days == trip.days
    assert store.changed_item_ids == {"keep-me"}
    assert store.has_unsaved_changes


def test_update_with_days_recomputes_the_highlights(trip):
    store = _loaded(trip)
    store.changed_item_ids = {"stale"}
    days = [day.model_copy(deep=True) for day in trip.days]
    days[1].items[1].notes = "Book ahead"

    store.update_trip({"days": [day.to_wire() for day in days]})

    assert store.changed_item_ids == {trip.days[1].items[1].id}


def test_update_never_replaces_the_trip_id(trip):
    store = _loaded(trip)
    store.update_trip({"id": "other", "destination": "Kyoto"})

    assert store.trip.id == trip.id
    assert store.trip.destination == "Kyoto"


def test_user_edits_push_history_and_mark_unsaved(trip):
    store = _loaded(trip)

    assert store.reorder_items_in_day(0, 0, 1)

    assert store.has_unsaved_changes
    assert store.can_undo()
    assert store.undo()
    assert store.trip == trip


def test_undo_then_redo_is_an_inverse(trip):
    store = _loaded(trip)
    item = trip.days[0].items[0]
    before = store.trip.model_copy(deep=True)

    store.reorder_items_in_day(0, 0, 1)
    store.update_item(0, item.id, {"title": "Edited"})
    store.duplicate_day(1)
    store.move_item_between_days(0, 2, item.id, 0)
    after = store.trip.model_copy(deep=True)

    for _ in range(4):
        assert store.undo()
    assert store.trip == before
    assert not store.undo()

    for _ in range(4):
        assert store.redo()
    assert store.trip == after
    assert not store.redo()


def test_edit_after_undo_discards_redo(trip):
    store = _loaded(trip)
    store.reorder_items_in_day(0, 0, 1)
    store.reorder_items_in_day(1, 0, 1)
    store.undo()

    store.remove_item_from_day(0, trip.days[0].items[0].id)

    assert not store.can_redo()
    assert not store.redo()
    assert store.undo()
    assert [i.title for i in store.trip.days[0].items] == ["Day 1 stop 2", "Day 1 stop 1"]
    assert store.undo()
    assert store.trip == trip


def test_undo_does_not_run_change_detection(trip):
    store = _loaded(trip)
    store.update_item(0, trip.days[0].items[0].id, {"title": "Edited"})
    store.changed_item_ids = set()

    store.undo()

    assert store.changed_item_ids == set()


def test_no_op_edits_do_not_touch_history_or_flags():
    trip = make_trip("2025-06-01")
    store = _loaded(trip)

    assert not store.move_item_between_days(0, 1, trip.days[0].items[0].id, 0)

    assert store.trip is trip
    assert not store.can_undo()
    assert not store.has_unsaved_changes


def test_history_is_bounded(trip):
    store = TripStore(history_limit=3)
    store.set_trip(trip)
    for _ in range(6):
        store.reorder_items_in_day(0, 0, 1)

    undos = 0
    while store.undo():
        undos += 1
    assert len(store.history) == 3
    # The live trip occupies one retained slot once undo starts.
    assert undos == 2


def test_merge_booking_is_undoable(trip):
    store = _loaded(trip)

    day_index = store.merge_booking(make_booking("2025-05-30T09:15:00"))

    assert day_index == 0
    assert store.trip.start_date == "2025-05-30"
    assert store.undo()
    assert store.trip == trip


def test_add_day_and_duplicate(trip):
    store = _loaded(trip)
    store.add_day(Day(date="2025-06-03", location="Nikko"))
    store.duplicate_day(2)

    assert [d.location for d in store.trip.days] == ["Tokyo", "Tokyo", "Nikko", "Nikko"]


def test_load_trip_resets_session_state(trip):
    store = _loaded(trip)
    store.reorder_items_in_day(0, 0, 1)
    store.changed_item_ids = {"x"}

    store.load_trip(TripSnapshot(id="db-1", trip=make_trip("2025-07-01")))

    assert store.current_trip_id == "db-1"
    assert store.changed_item_ids == set()
    assert not store.can_undo()
    assert not store.has_unsaved_changes


def test_clear_changed_items(trip):
    store = TripStore()
    store.set_trip(trip)
    store.changed_item_ids = {"a", "b"}

    store.clear_changed_items()

    assert store.changed_item_ids == set()


def test_conversation_changes_after_undo_drop_the_redo_branch(trip):
    store = _loaded(trip)
    store.reorder_items_in_day(0, 0, 1)
    store.undo()
    assert store.can_redo()

    revised = trip.model_copy(update={"title": "From the assistant"})
    store.set_trip(revised)

    assert not store.can_redo()
    assert not store.redo()
    assert store.trip is revised

    store.reorder_items_in_day(0, 0, 1)
    store.undo()
    store.update_trip({"title": "Renamed again"})

    assert not store.can_redo()
    assert store.trip.title == "Renamed again"


def test_update_with_an_invalid_value_leaves_the_trip_alone(trip):
    store = _loaded(trip)

    with pytest.raises(ValidationError):
        store.update_trip({"title": "Slow", "pace": "relaxed"})

    assert store.trip is trip
    assert not store.has_unsaved_changes


def test_update_accepts_wire_keys(trip):
    store = _loaded(trip)

    assert store.update_trip({"mustSee": ["Senso-ji"], "id": "ignored"})

    assert store.trip.must_see == ["Senso-ji"]
    assert store.trip.id == trip.id
