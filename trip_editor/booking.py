"""Fold flight bookings into a trip.

Each leg lands on the day sharing its calendar date. When no such day exists
a new one is created: as the only day of an empty trip, at the front of a
dateless draft, or in chronological position otherwise. Trip bounds are only
ever extended.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime

from trip_editor.schemas import Booking, Day, ItineraryItem, Trip, calendar_date


logger = logging.getLogger("trip-editor")


@dataclass(frozen=True)
class FlightLeg:
    origin: str
    destination: str
    date: str
    effective_end: str
    cost: float
    departure_time: str | None = None
    arrival_time: str | None = None


def _parse_timestamp(value: str | None) -> datetime | None:
    if not value:
        return None
    text = value.strip()
    # A bare calendar date carries no clock time.
    if len(text) <= 10:
        return None
    try:
        return datetime.fromisoformat(text)
    except ValueError:
        logger.warning("booking: unparseable timestamp %r", value)
        return None


def _clock(value: datetime | None) -> str | None:
    if value is None:
        return None
    return f"{value.hour:02d}:{value.minute:02d}"


def _flight_duration(departure: datetime | None, arrival: datetime | None) -> str | None:
    if departure is None or arrival is None:
        return None
    if (departure.tzinfo is None) != (arrival.tzinfo is None):
        return None
    minutes = int((arrival - departure).total_seconds() // 60)
    if minutes <= 0:
        return None
    hours, rest = divmod(minutes, 60)
    return f"{hours}h {rest}m" if rest else f"{hours}h"


def booking_legs(booking: Booking) -> list[FlightLeg]:
    if booking.return_date is None:
        return [
            FlightLeg(
                origin=booking.origin,
                destination=booking.destination,
                date=booking.depart_date,
                effective_end=booking.depart_date,
                cost=booking.total_price,
                departure_time=booking.departure_time,
                arrival_time=booking.arrival_time,
            )
        ]

    half = round(booking.total_price / 2, 2)
    return [
        FlightLeg(
            origin=booking.origin,
            destination=booking.destination,
            date=booking.depart_date,
            effective_end=booking.return_date,
            cost=half,
            departure_time=booking.departure_time,
            arrival_time=booking.arrival_time,
        ),
        FlightLeg(
            origin=booking.destination,
            destination=booking.origin,
            date=booking.return_date,
            effective_end=booking.return_date,
            cost=half,
            departure_time=booking.return_departure_time,
            arrival_time=booking.return_arrival_time,
        ),
    ]


def leg_to_item(booking: Booking, leg: FlightLeg) -> ItineraryItem:
    passengers = len(booking.passengers)
    plural = "" if passengers == 1 else "s"
    departure = _parse_timestamp(leg.departure_time) or _parse_timestamp(leg.date)
    arrival = _parse_timestamp(leg.arrival_time)

    return ItineraryItem(
        title=f"Flight: {leg.origin} → {leg.destination}",
        type="transport",
        description=(
            f"{booking.airline} {booking.flight_number}\n"
            f"{passengers} passenger{plural}\n"
            f"Booking Reference: {booking.pnr}"
        ),
        start_time=_clock(departure),
        end_time=_clock(arrival),
        duration=_flight_duration(departure, arrival),
        notes=f"Confirmation email sent to {booking.confirmation_email or 'your email'}",
        cost=leg.cost,
        cost_category="flights",
    )


def find_day_index(trip: Trip, target: str | date) -> int | None:
    wanted = calendar_date(target)
    for index, day in enumerate(trip.days):
        if calendar_date(day.date) == wanted:
            return index
    return None


def _chronological_index(trip: Trip, target: date) -> int:
    for index, day in enumerate(trip.days):
        if calendar_date(day.date) > target:
            return index
    return len(trip.days)


def _place_item(trip: Trip, leg: FlightLeg, item: ItineraryItem) -> tuple[Trip, int]:
    days = list(trip.days)
    index = find_day_index(trip, leg.date)

    if index is not None:
        day = days[index]
        days[index] = day.model_copy(update={"items": [item, *day.items]})
        return trip.model_copy(update={"days": days}), index

    new_day = Day(date=leg.date, location=f"{leg.origin} to {leg.destination}", items=[item])
    if not days or not trip.has_dates():
        index = 0
    else:
        index = _chronological_index(trip, calendar_date(leg.date))
    days.insert(index, new_day)
    return trip.model_copy(update={"days": days}), index


def _extend_bounds(trip: Trip, leg: FlightLeg) -> Trip:
    leg_start = calendar_date(leg.date)
    leg_end = calendar_date(leg.effective_end)
    update: dict[str, str] = {}

    if trip.start_date is None or leg_start < calendar_date(trip.start_date):
        update["start_date"] = leg_start.isoformat()
    if trip.end_date is None or leg_end > calendar_date(trip.end_date):
        update["end_date"] = leg_end.isoformat()

    return trip.model_copy(update=update) if update else trip


def merge_booking(trip: Trip, booking: Booking) -> tuple[Trip, int]:
    """Insert every leg of ``booking`` and return the trip plus the outbound day index."""
    outbound_index = -1
    for position, leg in enumerate(booking_legs(booking)):
        day_count = len(trip.days)
        trip, index = _place_item(trip, leg, leg_to_item(booking, leg))
        trip = _extend_bounds(trip, leg)
        if position == 0:
            outbound_index = index
        elif len(trip.days) > day_count and index <= outbound_index:
            outbound_index += 1
        logger.info("booking %s: leg %s→%s placed on day %s", booking.pnr, leg.origin, leg.destination, index)
    return trip, outbound_index
