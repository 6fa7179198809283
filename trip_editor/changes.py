from __future__ import annotations

from trip_editor.schemas import ItineraryItem, Trip, is_item_modified


def _index_items(trip: Trip) -> dict[str, ItineraryItem]:
    return {item.id: item for item in trip.iter_items()}


def detect_changes(old_trip: Trip | None, new_trip: Trip) -> set[str]:
    """Ids of items in ``new_trip`` that are new or modified relative to ``old_trip``.

    Nothing is highlighted on first load, and removed items are not reported.
    """
    if old_trip is None:
        return set()

    old_index = _index_items(old_trip)
    changed: set[str] = set()
    for item_id, item in _index_items(new_trip).items():
        previous = old_index.get(item_id)
        if previous is None or is_item_modified(previous, item):
            changed.add(item_id)
    return changed
