"""Owner dashboard aggregates computed from persisted bookings."""

from __future__ import annotations

import calendar
import logging
from dataclasses import dataclass
from datetime import date, timedelta

from sqlalchemy import extract, func
from sqlalchemy.orm import Query, Session

from staybook.config import section
from staybook.models.booking import Booking, BookingStatus
from staybook.models.property import Property

logger = logging.getLogger(__name__)


@dataclass
class DashboardMetrics:
    total_bookings: int
    total_revenue: float
    occupancy_rate: float  # Percent, 0-100
    pending_bookings: int


@dataclass
class ChartDataPoint:
    date: str
    value: float


def _bookings_query(session: Session, owner_id: int | None) -> Query:
    query = session.query(Booking)
    if owner_id is not None:
        query = query.join(Property, Booking.property_id == Property.id).filter(
            Property.owner_id == owner_id
        )
    return query


def _occupied_nights(bookings: list[Booking], window_start: date, window_end: date) -> int:
    """Distinct property-nights in [window_start, window_end) covered by a live booking."""
    occupied: set[tuple[int, date]] = set()
    for booking in bookings:
        if booking.status == BookingStatus.CANCELED.value:
            continue
        night = max(booking.check_in, window_start)
        last = min(booking.check_out, window_end)
        while night < last:
            occupied.add((booking.property_id, night))
            night += timedelta(days=1)
    return len(occupied)


def compute_dashboard_metrics(
    session: Session, owner_id: int | None = None, today: date | None = None
) -> DashboardMetrics:
    """Revenue, occupancy over the trailing window and pending count.

    Occupancy counts every booked night that overlaps the window, not just
    whether a property is occupied today.
    """
    today = today or date.today()
    window_days = section("dashboard").get("occupancy_window_days", 30)
    window_start = today - timedelta(days=window_days)

    prop_query = session.query(func.count(Property.id))
    if owner_id is not None:
        prop_query = prop_query.filter(Property.owner_id == owner_id)
    properties_count = prop_query.scalar() or 0

    bookings = _bookings_query(session, owner_id).all()
    total_revenue = sum(b.total_price or 0.0 for b in bookings)
    pending = sum(1 for b in bookings if b.status == BookingStatus.PENDING.value)

    occupancy_rate = 0.0
    if properties_count:
        occupied = _occupied_nights(bookings, window_start, today)
        occupancy_rate = occupied / (properties_count * window_days) * 100

    return DashboardMetrics(
        total_bookings=len(bookings),
        total_revenue=round(total_revenue, 2),
        occupancy_rate=round(occupancy_rate, 1),
        pending_bookings=pending,
    )


def revenue_by_month(
    session: Session, year: int, owner_id: int | None = None
) -> list[ChartDataPoint]:
    """Booking revenue per check-in month for the revenue chart."""
    query = session.query(
        extract("month", Booking.check_in), func.sum(Booking.total_price)
    ).filter(extract("year", Booking.check_in) == year)
    if owner_id is not None:
        query = query.join(Property, Booking.property_id == Property.id).filter(
            Property.owner_id == owner_id
        )
    totals = {int(row[0]): row[1] or 0.0 for row in query.group_by(extract("month", Booking.check_in)).all()}

    return [
        ChartDataPoint(date=calendar.month_abbr[month], value=round(totals.get(month, 0.0), 2))
        for month in range(1, 13)
    ]
