from __future__ import annotations

import asyncio
import logging
import re
from collections import OrderedDict
from typing import Any, Protocol
from urllib.parse import quote

import httpx

from trip_editor.schemas import ItineraryItem, Location, Trip


logger = logging.getLogger("trip-editor")

_PLACE_IN_TEXT = re.compile(
    r"(?:in|at|near|visit|explore)\s+([A-Z][a-zA-Z\s]+(?:,\s*[A-Z][a-zA-Z\s]+)?)", re.IGNORECASE
)


class GeocodingError(Exception):
    pass


class Geocoder(Protocol):
    async def geocode(self, query: str, proximity: Location | None = None) -> Location: ...


class MapboxClient:
    def __init__(
        self,
        access_token: str,
        timeout: float = 10.0,
        transport: httpx.AsyncBaseTransport | None = None,
        cache_size: int = 1000,
    ) -> None:
        self.access_token = access_token
        self.cache_size = cache_size
        self._client = httpx.AsyncClient(timeout=timeout, base_url="https://api.mapbox.com", transport=transport)
        self._cache: OrderedDict[str, Location] = OrderedDict()

    async def aclose(self) -> None:
        await self._client.aclose()

    async def _get(self, path: str, params: dict[str, Any]) -> dict[str, Any]:
        params = {**params, "access_token": self.access_token}
        resp = await self._client.get(path, params=params)
        resp.raise_for_status()
        return resp.json()

    async def geocode(self, query: str, proximity: Location | None = None) -> Location:
        cache_key = query if proximity is None else f"{query}-{proximity.lng},{proximity.lat}"
        cached = self._cache.get(cache_key)
        if cached is not None:
            self._cache.move_to_end(cache_key)
            return cached

        params: dict[str, Any] = {"limit": 1}
        if proximity is not None:
            params["proximity"] = f"{proximity.lng},{proximity.lat}"
        raw = await self._get(f"/geocoding/v5/mapbox.places/{quote(query)}.json", params)

        features = raw.get("features", [])
        if not features:
            raise GeocodingError(f"no results for {query!r}")
        lng, lat = features[0]["center"]
        location = Location(lat=lat, lng=lng, address=features[0].get("place_name"))
        self._cache[cache_key] = location
        # Least recently used entries go first.
        while len(self._cache) > self.cache_size:
            self._cache.popitem(last=False)
        return location


def item_query(item: ItineraryItem, destination: str) -> str:
    """Best search string for an item: LLM hint, a place named in the description, else the title."""
    if item.location_hint:
        query = item.location_hint
        if destination.lower() not in query.lower():
            query = f"{query}, {destination}"
        return query
    if item.description:
        match = _PLACE_IN_TEXT.search(item.description)
        if match:
            return f"{match.group(1).strip()}, {destination}"
    return f"{item.title}, {destination}"


async def _try_geocode(geocoder: Geocoder, query: str, proximity: Location | None) -> Location | None:
    try:
        return await geocoder.geocode(query, proximity)
    except (GeocodingError, httpx.HTTPError, KeyError, ValueError) as exc:
        logger.warning("geocode failed for %r: %s", query, exc)
        return None


async def enrich_trip_locations(trip: Trip, geocoder: Geocoder | None) -> Trip:
    """Fill in missing item locations; items that cannot be geocoded are left as they are."""
    if geocoder is None:
        return trip

    proximity = await _try_geocode(geocoder, trip.destination, None)

    async def locate(item: ItineraryItem) -> ItineraryItem:
        if item.location is not None:
            return item
        location = await _try_geocode(geocoder, item_query(item, trip.destination), proximity)
        if location is None:
            return item
        logger.info("geocoded %r -> %s", item.title, location.address)
        return item.model_copy(update={"location": location})

    days = []
    for day in trip.days:
        items = await asyncio.gather(*(locate(item) for item in day.items))
        days.append(day.model_copy(update={"items": list(items)}))
    return trip.model_copy(update={"days": days})
