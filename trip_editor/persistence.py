from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Awaitable, Callable, Protocol

import httpx
from pydantic import ValidationError

from trip_editor.schemas import ChatMessage, Trip, TripSnapshot, new_id
from trip_editor.store import TripStore


logger = logging.getLogger("trip-editor")


class PersistenceError(Exception):
    pass


class TripNotFound(PersistenceError):
    pass


class TripRepository(Protocol):
    async def create_trip(self, trip: Trip, messages: list[ChatMessage]) -> str: ...

    async def update_trip(self, trip_id: str, trip: Trip, messages: list[ChatMessage]) -> None: ...

    async def get_trip(self, trip_id: str) -> TripSnapshot: ...


class TripApiClient:
    """REST trip storage: ``/api/trips`` create, update, fetch."""

    def __init__(
        self,
        base_url: str,
        user_id: str | None = None,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        self.user_id = user_id
        self._client = httpx.AsyncClient(timeout=timeout, base_url=base_url, transport=transport)

    async def aclose(self) -> None:
        await self._client.aclose()

    @staticmethod
    def _payload(trip: Trip, messages: list[ChatMessage]) -> dict[str, Any]:
        return {"tripData": trip.to_wire(), "messages": [m.to_wire() for m in messages]}

    @staticmethod
    def _body(resp: httpx.Response) -> dict[str, Any]:
        try:
            data = resp.json()
        except ValueError as exc:
            raise PersistenceError(f"unreadable response from {resp.request.url}") from exc
        if not isinstance(data, dict):
            raise PersistenceError(f"unexpected response from {resp.request.url}")
        return data

    async def create_trip(self, trip: Trip, messages: list[ChatMessage]) -> str:
        payload = self._payload(trip, messages)
        if self.user_id:
            payload["userId"] = self.user_id
        resp = await self._client.post("/api/trips", json=payload)
        resp.raise_for_status()
        trip_id = self._body(resp).get("id")
        if not trip_id:
            raise PersistenceError("create response carries no trip id")
        return str(trip_id)

    async def update_trip(self, trip_id: str, trip: Trip, messages: list[ChatMessage]) -> None:
        resp = await self._client.put(f"/api/trips/{trip_id}", json=self._payload(trip, messages))
        if resp.status_code == 404:
            raise TripNotFound(trip_id)
        resp.raise_for_status()

    async def get_trip(self, trip_id: str) -> TripSnapshot:
        resp = await self._client.get(f"/api/trips/{trip_id}")
        if resp.status_code == 404:
            raise TripNotFound(trip_id)
        resp.raise_for_status()
        data = self._body(resp)
        try:
            return TripSnapshot(
                id=data.get("id") or trip_id,
                trip=Trip.model_validate(data["tripData"]),
                messages=[ChatMessage.model_validate(m) for m in data.get("messages") or []],
                updated_at=data.get("updatedAt"),
            )
        except (KeyError, ValidationError) as exc:
            raise PersistenceError(f"malformed trip {trip_id}: {exc}") from exc


class InMemoryTripRepository:
    def __init__(self) -> None:
        self._snapshots: dict[str, TripSnapshot] = {}

    def __contains__(self, trip_id: str) -> bool:
        return trip_id in self._snapshots

    def _store(self, trip_id: str, trip: Trip, messages: list[ChatMessage]) -> None:
        self._snapshots[trip_id] = TripSnapshot(
            id=trip_id,
            trip=trip.model_copy(deep=True),
            messages=[m.model_copy(deep=True) for m in messages],
            updated_at=datetime.now(timezone.utc).isoformat(),
        )

    async def create_trip(self, trip: Trip, messages: list[ChatMessage]) -> str:
        trip_id = new_id()
        self._store(trip_id, trip, messages)
        return trip_id

    async def update_trip(self, trip_id: str, trip: Trip, messages: list[ChatMessage]) -> None:
        if trip_id not in self._snapshots:
            raise TripNotFound(trip_id)
        self._store(trip_id, trip, messages)

    async def get_trip(self, trip_id: str) -> TripSnapshot:
        snapshot = self._snapshots.get(trip_id)
        if snapshot is None:
            raise TripNotFound(trip_id)
        return snapshot.model_copy(deep=True)


class RetryPolicy(Protocol):
    def next_delay(self, attempt: int) -> float | None:
        """Seconds to wait before retry ``attempt`` (0-based), or None to give up."""
        ...


@dataclass
class RetryOnNextWindow:
    window_sec: float
    max_retries: int | None = None

    def next_delay(self, attempt: int) -> float | None:
        if self.max_retries is not None and attempt >= self.max_retries:
            return None
        return self.window_sec


@dataclass
class ExponentialBackoff:
    backoff_sec: float = 1.5
    max_retries: int = 2

    def next_delay(self, attempt: int) -> float | None:
        if attempt >= self.max_retries:
            return None
        return self.backoff_sec * (2 ** attempt)


class DebouncedSaver:
    """Collapses bursts of edits into one save after a quiet period.

    Each save serializes the store as it is when the save starts. Failures
    are logged and retried according to ``retry_policy``; a newer
    ``schedule()`` call replaces any pending wait but never cancels a save
    that is already running.
    """

    def __init__(
        self,
        store: TripStore,
        repository: TripRepository,
        debounce_sec: float = 1.0,
        retry_policy: RetryPolicy | None = None,
        sleep: Callable[[float], Awaitable[Any]] = asyncio.sleep,
    ) -> None:
        self.store = store
        self.repository = repository
        self.debounce_sec = debounce_sec
        self.retry_policy = retry_policy or RetryOnNextWindow(debounce_sec)
        self._sleep = sleep
        self._timer: asyncio.Task | None = None
        self._lock = asyncio.Lock()

    @property
    def pending(self) -> asyncio.Task | None:
        return self._timer

    def schedule(self) -> asyncio.Task:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = asyncio.get_running_loop().create_task(self._run())
        return self._timer

    async def _run(self) -> None:
        delay = self.debounce_sec
        attempt = 0
        while True:
            await self._sleep(delay)
            if self._timer is asyncio.current_task():
                self._timer = None
            if await self.save_now():
                return
            if self._timer is not None:
                # A newer schedule() already owns the next attempt.
                return
            next_delay = self.retry_policy.next_delay(attempt)
            if next_delay is None:
                logger.error("save: giving up after %s attempts", attempt + 1)
                return
            delay = next_delay
            attempt += 1
            self._timer = asyncio.current_task()

    async def save_now(self) -> bool:
        async with self._lock:
            store = self.store
            if store.trip is None:
                return True
            revision = store.revision
            trip = store.trip.model_copy(deep=True)
            messages = list(store.messages)
            try:
                if store.current_trip_id:
                    await self.repository.update_trip(store.current_trip_id, trip, messages)
                else:
                    store.current_trip_id = await self.repository.create_trip(trip, messages)
                    logger.info("save: created trip %s", store.current_trip_id)
            except (httpx.HTTPError, PersistenceError) as exc:
                logger.warning("save failed: %s", exc)
                return False
            if store.revision == revision:
                store.has_unsaved_changes = False
            return True

    async def flush(self) -> bool:
        if self._timer is not None and not self._timer.done():
            self._timer.cancel()
        self._timer = None
        return await self.save_now()
