from __future__ import annotations

import logging

from trip_editor.schemas import Trip


logger = logging.getLogger("trip-editor")

DEFAULT_HISTORY_LIMIT = 20


class HistoryManager:
    """Bounded undo/redo stack of independent trip snapshots.

    ``cursor`` points at the snapshot that represents the current position;
    ``-1`` means the history is empty.
    """

    def __init__(self, limit: int = DEFAULT_HISTORY_LIMIT) -> None:
        if limit < 1:
            raise ValueError("history limit must be positive")
        self.limit = limit
        self._entries: list[Trip] = []
        self._cursor = -1

    def __len__(self) -> int:
        return len(self._entries)

    @property
    def cursor(self) -> int:
        return self._cursor

    def push(self, trip: Trip) -> None:
        del self._entries[self._cursor + 1 :]
        # Re-pushing the snapshot under the cursor only discards the redo branch.
        if self._entries and self._entries[self._cursor] == trip:
            return

        self._entries.append(trip.model_copy(deep=True))
        self._cursor = len(self._entries) - 1

        overflow = len(self._entries) - self.limit
        if overflow > 0:
            del self._entries[:overflow]
            self._cursor -= overflow
            logger.debug("history trimmed by %s entries", overflow)

    def undo(self) -> Trip | None:
        if self._cursor <= 0:
            return None
        self._cursor -= 1
        return self._entries[self._cursor].model_copy(deep=True)

    def redo(self) -> Trip | None:
        if self._cursor >= len(self._entries) - 1:
            return None
        self._cursor += 1
        return self._entries[self._cursor].model_copy(deep=True)

    def can_undo(self) -> bool:
        return self._cursor > 0

    def can_redo(self) -> bool:
        return self._cursor < len(self._entries) - 1

    def peek(self) -> Trip | None:
        if self._cursor < 0:
            return None
        return self._entries[self._cursor]

    def at_tip(self) -> bool:
        return not self.can_redo()

    def discard_redo(self) -> None:
        del self._entries[self._cursor + 1 :]

    def clear(self) -> None:
        self._entries.clear()
        self._cursor = -1
