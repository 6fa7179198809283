from __future__ import annotations

import uuid
from datetime import date, datetime
from typing import Any, Iterator, Literal

from pydantic import BaseModel, ConfigDict, Field, TypeAdapter
from pydantic.alias_generators import to_camel


ItemType = Literal["sight", "food", "museum", "hike", "experience", "transport", "rest"]
TravelPace = Literal["fast", "medium", "slow"]
TripStatus = Literal["draft", "planning", "upcoming", "active", "completed", "archived"]

# Fields whose edits count as a modification for highlighting. Cost and
# location are excluded so background geocoding never flags an item.
TRACKED_ITEM_FIELDS = ("title", "description", "type", "duration", "start_time", "end_time", "notes")


def new_id() -> str:
    return str(uuid.uuid4())


def calendar_date(value: str | date) -> date:
    """Day-granularity view of an ISO date or datetime string."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    return date.fromisoformat(value.strip()[:10])


class CamelModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    def to_wire(self) -> dict[str, Any]:
        return self.model_dump(mode="json", by_alias=True, exclude_none=True)


class Location(CamelModel):
    lat: float
    lng: float
    address: str | None = None


class ItineraryItem(CamelModel):
    id: str = Field(default_factory=new_id)
    title: str
    description: str = ""
    type: ItemType = "sight"
    start_time: str | None = Field(None, description="HH:MM, 24-hour, local to the day")
    end_time: str | None = Field(None, description="HH:MM, 24-hour, local to the day")
    duration: str | None = None
    notes: str | None = None
    cost: float | None = None
    cost_category: str | None = None
    location_hint: str | None = None
    location: Location | None = None
    photo_id: str | None = None


class Day(CamelModel):
    date: str
    location: str = ""
    items: list[ItineraryItem] = Field(default_factory=list)


class CoverPhotoAttribution(CamelModel):
    photographer_name: str
    photographer_url: str
    source_url: str


class Budget(CamelModel):
    total: float
    currency: str = "USD"


class Trip(CamelModel):
    id: str = Field(default_factory=new_id)
    destination: str
    start_date: str | None = None
    end_date: str | None = None
    pace: TravelPace = "medium"
    interests: list[str] = Field(default_factory=list)
    must_see: list[str] = Field(default_factory=list)
    days: list[Day] = Field(default_factory=list)
    title: str | None = None
    cover_photo_url: str | None = None
    cover_photo_attribution: CoverPhotoAttribution | None = None
    budget: Budget | None = None
    status: TripStatus | None = None
    tags: list[str] = Field(default_factory=list)
    archived_at: str | None = None

    def iter_items(self) -> Iterator[ItineraryItem]:
        for day in self.days:
            yield from day.items

    def has_dates(self) -> bool:
        return bool(self.start_date and self.end_date)


def validate_trip_patch(updates: dict[str, Any]) -> dict[str, Any]:
    """Partial trip update keyed by field name, each value validated against its field.

    Wire (camelCase) keys are accepted. ``id`` and unknown keys are dropped.
    Raises ``ValidationError`` when any value does not fit its field.
    """
    aliases = {field.alias or name: name for name, field in Trip.model_fields.items()}
    patch: dict[str, Any] = {}
    for key, value in updates.items():
        name = aliases.get(key, key)
        if name == "id" or name not in Trip.model_fields:
            continue
        patch[name] = TypeAdapter(Trip.model_fields[name].annotation).validate_python(value)
    return patch


class Passenger(CamelModel):
    first_name: str
    last_name: str
    type: Literal["adult", "child", "infant"] = "adult"


class Booking(CamelModel):
    id: str = Field(default_factory=new_id)
    pnr: str
    provider: str | None = None
    status: Literal["pending", "confirmed", "ticketed", "cancelled"] = "confirmed"
    origin: str
    destination: str
    depart_date: str
    return_date: str | None = None
    airline: str
    flight_number: str
    passengers: list[Passenger] = Field(default_factory=list)
    total_price: float = 0.0
    currency: str = "USD"
    confirmation_email: str | None = None
    # Enriched segment timestamps, when the booking source provides them.
    departure_time: str | None = None
    arrival_time: str | None = None
    return_departure_time: str | None = None
    return_arrival_time: str | None = None

    @property
    def is_round_trip(self) -> bool:
        return self.return_date is not None


class QuickReply(CamelModel):
    text: str
    action: Literal["info", "confirm", "alternative", "custom"] = "custom"


class SuggestionCard(CamelModel):
    id: str = Field(default_factory=new_id)
    title: str
    summary: str = ""
    images: list[str] = Field(default_factory=list)
    item_type: ItemType = "sight"
    duration: str | None = None
    default_day_index: int | None = None
    is_added: bool = False
    added_to_day_index: int | None = None


class ChatMessage(CamelModel):
    id: str = Field(default_factory=new_id)
    role: Literal["user", "assistant"]
    content: str
    suggestion_card: SuggestionCard | None = None
    quick_replies: list[QuickReply] = Field(default_factory=list)
    timestamp: float = Field(default_factory=lambda: datetime.now().timestamp() * 1000)
    has_itinerary_changes: bool = False
    is_new_itinerary: bool = False


class TripSnapshot(CamelModel):
    id: str
    trip: Trip
    messages: list[ChatMessage] = Field(default_factory=list)
    updated_at: str | None = None


def is_item_modified(old: ItineraryItem, new: ItineraryItem) -> bool:
    return any(getattr(old, name) != getattr(new, name) for name in TRACKED_ITEM_FIELDS)


class ChatResult(CamelModel):
    message: str
    trip: Trip | None = None
    trip_update: dict[str, Any] | None = None
    suggestion: SuggestionCard | None = None
    quick_replies: list[QuickReply] = Field(default_factory=list)
    is_error: bool = False
