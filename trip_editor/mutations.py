"""Pure itinerary transitions.

Every function takes a trip and returns a trip. Unknown day indexes or item
ids return the input object unchanged, so callers can detect a no-op with an
identity check. Successful transitions copy only the days they touch and
never modify the input.
"""
from __future__ import annotations

from typing import Any

from trip_editor.schemas import Day, ItineraryItem, Trip, new_id


def _has_day(trip: Trip, day_index: int) -> bool:
    return 0 <= day_index < len(trip.days)


def _find_item(day: Day, item_id: str) -> int:
    for index, item in enumerate(day.items):
        if item.id == item_id:
            return index
    return -1


def _with_day(trip: Trip, day_index: int, day: Day) -> Trip:
    days = list(trip.days)
    days[day_index] = day
    return trip.model_copy(update={"days": days})


def _with_items(trip: Trip, day_index: int, items: list[ItineraryItem]) -> Trip:
    day = trip.days[day_index]
    return _with_day(trip, day_index, day.model_copy(update={"items": items}))


def add_item_to_day(trip: Trip, day_index: int, item: ItineraryItem) -> Trip:
    if not _has_day(trip, day_index):
        return trip
    return _with_items(trip, day_index, [*trip.days[day_index].items, item])


def replace_item_in_day(trip: Trip, day_index: int, old_item_id: str, new_item: ItineraryItem) -> Trip:
    if not _has_day(trip, day_index):
        return trip
    items = list(trip.days[day_index].items)
    position = _find_item(trip.days[day_index], old_item_id)
    if position == -1:
        return trip
    items[position] = new_item
    return _with_items(trip, day_index, items)


def remove_item_from_day(trip: Trip, day_index: int, item_id: str) -> Trip:
    if not _has_day(trip, day_index):
        return trip
    day = trip.days[day_index]
    if _find_item(day, item_id) == -1:
        return trip
    return _with_items(trip, day_index, [item for item in day.items if item.id != item_id])


def update_item(trip: Trip, day_index: int, item_id: str, updates: dict[str, Any]) -> Trip:
    """Shallow-merge ``updates`` into an item; the item id never changes."""
    if not _has_day(trip, day_index):
        return trip
    day = trip.days[day_index]
    position = _find_item(day, item_id)
    if position == -1:
        return trip

    current = day.items[position]
    merged = {**current.model_dump(), **{k: v for k, v in updates.items() if k != "id"}}
    merged["id"] = current.id
    items = list(day.items)
    items[position] = ItineraryItem.model_validate(merged)
    return _with_items(trip, day_index, items)


def reorder_items_in_day(trip: Trip, day_index: int, start_index: int, end_index: int) -> Trip:
    """Move the item at ``start_index`` to ``end_index``; items in between shift by one."""
    if not _has_day(trip, day_index):
        return trip
    items = list(trip.days[day_index].items)
    if not (0 <= start_index < len(items) and 0 <= end_index < len(items)):
        return trip
    if start_index == end_index:
        return trip
    moved = items.pop(start_index)
    items.insert(end_index, moved)
    return _with_items(trip, day_index, items)


def move_item_between_days(
    trip: Trip,
    source_day_index: int,
    dest_day_index: int,
    item_id: str,
    dest_index: int,
) -> Trip:
    if not (_has_day(trip, source_day_index) and _has_day(trip, dest_day_index)):
        return trip
    source = trip.days[source_day_index]
    position = _find_item(source, item_id)
    if position == -1:
        return trip

    source_items = list(source.items)
    moved = source_items.pop(position)
    if source_day_index == dest_day_index:
        dest_items = source_items
    else:
        dest_items = list(trip.days[dest_day_index].items)
    dest_items.insert(max(dest_index, 0), moved)

    days = list(trip.days)
    days[source_day_index] = source.model_copy(update={"items": source_items})
    days[dest_day_index] = days[dest_day_index].model_copy(update={"items": dest_items})
    return trip.model_copy(update={"days": days})


def duplicate_day(trip: Trip, day_index: int) -> Trip:
    """Insert a copy of a day right after it; every copied item gets a fresh id."""
    if not _has_day(trip, day_index):
        return trip
    original = trip.days[day_index]
    copy = original.model_copy(
        deep=True,
        update={"items": [item.model_copy(deep=True, update={"id": new_id()}) for item in original.items]},
    )
    days = list(trip.days)
    days.insert(day_index + 1, copy)
    return trip.model_copy(update={"days": days})


def add_day(trip: Trip, day: Day, index: int | None = None) -> Trip:
    days = list(trip.days)
    if index is None:
        days.append(day)
    else:
        if not 0 <= index <= len(days):
            return trip
        days.insert(index, day)
    return trip.model_copy(update={"days": days})


def remove_day(trip: Trip, day_index: int) -> Trip:
    if not _has_day(trip, day_index):
        return trip
    days = [day for index, day in enumerate(trip.days) if index != day_index]
    return trip.model_copy(update={"days": days})
