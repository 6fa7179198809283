"""Editing state for one trip: the live itinerary, highlights, history, and chat log.

Conversation-driven changes (``set_trip``/``update_trip``) run change
detection, are not undoable, and drop any redo branch. Direct user edits
push the pre-edit trip to history before applying a pure transition from
``trip_editor.mutations``.
Every operation silently does nothing when no trip is loaded or when its
day/item reference does not resolve; the boolean result tells the caller
whether anything changed.
"""
from __future__ import annotations

import logging
from typing import Any, Callable

from trip_editor import mutations
from trip_editor.booking import merge_booking
from trip_editor.changes import detect_changes
from trip_editor.history import DEFAULT_HISTORY_LIMIT, HistoryManager
from trip_editor.schemas import Booking, ChatMessage, Day, ItineraryItem, Trip, TripSnapshot, validate_trip_patch


logger = logging.getLogger("trip-editor")


class TripStore:
    def __init__(self, history_limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        self.trip: Trip | None = None
        self.current_trip_id: str | None = None
        self.messages: list[ChatMessage] = []
        self.changed_item_ids: set[str] = set()
        self.has_unsaved_changes = False
        self.revision = 0
        self.history = HistoryManager(history_limit)

    def _mark_unsaved(self) -> None:
        self.has_unsaved_changes = True
        self.revision += 1

    def _apply_edit(self, transition: Callable[..., Trip], *args: Any) -> bool:
        if self.trip is None:
            return False
        updated = transition(self.trip, *args)
        if updated is self.trip:
            logger.debug("edit %s: reference not found, ignored", transition.__name__)
            return False
        self.history.push(self.trip)
        self.trip = updated
        self._mark_unsaved()
        return True

    # Conversation-driven updates

    def set_trip(self, trip: Trip | None) -> None:
        self.changed_item_ids = detect_changes(self.trip, trip) if trip is not None else set()
        self.history.discard_redo()
        self.trip = trip
        self._mark_unsaved()
        logger.info("trip replaced, %s items highlighted", len(self.changed_item_ids))

    def update_trip(self, updates: dict[str, Any]) -> bool:
        if self.trip is None:
            return False
        patch = validate_trip_patch(updates)
        previous = self.trip
        self.trip = Trip.model_validate({**dict(previous), **patch})
        self.history.discard_redo()
        if "days" in patch:
            self.changed_item_ids = detect_changes(previous, self.trip)
        self._mark_unsaved()
        return True

    def load_trip(self, snapshot: TripSnapshot) -> None:
        self.trip = snapshot.trip
        self.current_trip_id = snapshot.id
        self.messages = list(snapshot.messages)
        self.changed_item_ids = set()
        self.history.clear()
        self.has_unsaved_changes = False

    def clear(self) -> None:
        self.trip = None
        self.current_trip_id = None
        self.messages = []
        self.changed_item_ids = set()
        self.history.clear()
        self.has_unsaved_changes = False

    def clear_changed_items(self) -> None:
        self.changed_item_ids = set()

    def add_message(self, message: ChatMessage) -> None:
        self.messages = [*self.messages, message]
        self._mark_unsaved()

    # User edits

    def add_item_to_day(self, day_index: int, item: ItineraryItem) -> bool:
        return self._apply_edit(mutations.add_item_to_day, day_index, item)

    def replace_item_in_day(self, day_index: int, old_item_id: str, new_item: ItineraryItem) -> bool:
        return self._apply_edit(mutations.replace_item_in_day, day_index, old_item_id, new_item)

    def remove_item_from_day(self, day_index: int, item_id: str) -> bool:
        return self._apply_edit(mutations.remove_item_from_day, day_index, item_id)

    def update_item(self, day_index: int, item_id: str, updates: dict[str, Any]) -> bool:
        return self._apply_edit(mutations.update_item, day_index, item_id, updates)

    def reorder_items_in_day(self, day_index: int, start_index: int, end_index: int) -> bool:
        return self._apply_edit(mutations.reorder_items_in_day, day_index, start_index, end_index)

    def move_item_between_days(
        self, source_day_index: int, dest_day_index: int, item_id: str, dest_index: int
    ) -> bool:
        return self._apply_edit(
            mutations.move_item_between_days, source_day_index, dest_day_index, item_id, dest_index
        )

    def duplicate_day(self, day_index: int) -> bool:
        return self._apply_edit(mutations.duplicate_day, day_index)

    def add_day(self, day: Day, index: int | None = None) -> bool:
        return self._apply_edit(mutations.add_day, day, index)

    def remove_day(self, day_index: int) -> bool:
        return self._apply_edit(mutations.remove_day, day_index)

    def merge_booking(self, booking: Booking) -> int | None:
        """Fold a booking into the trip and return the outbound day index."""
        if self.trip is None:
            return None
        updated, day_index = merge_booking(self.trip, booking)
        self.history.push(self.trip)
        self.trip = updated
        self._mark_unsaved()
        return day_index

    # History

    def can_undo(self) -> bool:
        if self.trip is None:
            return False
        if self.history.can_undo():
            return True
        latest = self.history.peek()
        return self.history.at_tip() and latest is not None and latest != self.trip

    def can_redo(self) -> bool:
        return self.trip is not None and self.history.can_redo()

    def undo(self) -> bool:
        if self.trip is None:
            return False
        if self.history.at_tip():
            # Keep the live trip reachable by redo.
            self.history.push(self.trip)
        previous = self.history.undo()
        if previous is None:
            return False
        self.trip = previous
        self._mark_unsaved()
        return True

    def redo(self) -> bool:
        if self.trip is None:
            return False
        following = self.history.redo()
        if following is None:
            return False
        self.trip = following
        self._mark_unsaved()
        return True
