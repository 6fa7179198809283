from __future__ import annotations

from collections import defaultdict
from datetime import date

from pydantic import Field

from trip_editor.schemas import CamelModel, Trip, TripStatus, calendar_date


class CostSummary(CamelModel):
    by_category: dict[str, float] = Field(default_factory=dict)
    total: float = 0.0
    budget: float | None = None
    remaining: float | None = None


def trip_status(trip: Trip, today: date | None = None) -> TripStatus:
    """Lifecycle status: archived, active, completed, upcoming, planning, then draft."""
    if trip.status == "archived" or trip.archived_at:
        return "archived"

    today = today or date.today()
    if trip.has_dates():
        start = calendar_date(trip.start_date)
        end = calendar_date(trip.end_date)
        if start <= today <= end:
            return "active"
        if today > end:
            return "completed"
        return "upcoming"

    if any(day.items for day in trip.days):
        return "planning"
    return "draft"


def cost_summary(trip: Trip) -> CostSummary:
    totals: dict[str, float] = defaultdict(float)
    for item in trip.iter_items():
        if item.cost:
            totals[item.cost_category or "other"] += item.cost

    total = round(sum(totals.values()), 2)
    summary = CostSummary(by_category={k: round(v, 2) for k, v in totals.items()}, total=total)
    if trip.budget is not None:
        summary.budget = trip.budget.total
        summary.remaining = round(trip.budget.total - total, 2)
    return summary
