from __future__ import annotations

import pytest

from trip_editor.schemas import Booking, Day, ItineraryItem, Passenger, Trip


def make_item(title: str, **fields) -> ItineraryItem:
    return ItineraryItem(title=title, description=f"{title} description", **fields)


def make_trip(*day_dates: str, start: str | None = None, end: str | None = None, items_per_day: int = 2) -> Trip:
    days = [
        Day(
            date=day_date,
            location="Tokyo",
            items=[make_item(f"Day {d + 1} stop {i + 1}") for i in range(items_per_day)],
        )
        for d, day_date in enumerate(day_dates)
    ]
    return Trip(destination="Tokyo", start_date=start, end_date=end, days=days)


def make_booking(depart: str, ret: str | None = None, **fields) -> Booking:
    data = {
        "pnr": "ABC123",
        "origin": "JFK",
        "destination": "LAX",
        "depart_date": depart,
        "return_date": ret,
        "airline": "Delta",
        "flight_number": "DL 404",
        "passengers": [Passenger(first_name="Ada", last_name="Lovelace")],
        "total_price": 500.0,
    }
    data.update(fields)
    return Booking(**data)


@pytest.fixture
def trip() -> Trip:
    return make_trip("2025-06-01T00:00:00.000Z", "2025-06-02T00:00:00.000Z", start="2025-06-01", end="2025-06-02")
