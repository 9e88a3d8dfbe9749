"""Per-night availability: widget date filtering, reservations and the owner calendar."""

from __future__ import annotations

import calendar
import logging
from collections.abc import Iterable, Mapping
from dataclasses import dataclass
from datetime import date, datetime, timedelta

from sqlalchemy import update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from staybook.auth.permissions import ensure_owner
from staybook.errors import RaceConditionError, ValidationError
from staybook.events import Event, EventType, event_bus
from staybook.models.availability import (
    HELD_STATUSES,
    UNAVAILABLE_STATUSES,
    AvailabilityEntry,
    AvailabilityStatus,
)
from staybook.models.booking import Booking
from staybook.models.property import Property
from staybook.modules.pricing.calculator import iter_nights

logger = logging.getLogger(__name__)

# Statuses an owner may set by hand; booked/pending only come from bookings
OWNER_STATUSES = frozenset({AvailabilityStatus.AVAILABLE.value, AvailabilityStatus.BLOCKED.value})


@dataclass
class CalendarDay:
    date: date
    status: str
    price: float | None = None
    booking_id: int | None = None


def to_day(value: date | datetime) -> date:
    """Truncate a datetime to its calendar day."""
    if isinstance(value, datetime):
        return value.date()
    return value


def is_date_blocked(
    day: date | datetime,
    unavailable_dates: Iterable[date | datetime],
    today: date | None = None,
) -> bool:
    """True if the day is in the past or matches an unavailable calendar day."""
    day = to_day(day)
    today = today or date.today()
    if day < today:
        return True
    return day in {to_day(d) for d in unavailable_dates}


def fetch_unavailable_dates(
    session: Session, property_id: int, range_start: date, range_end: date
) -> set[date]:
    """Nights in [range_start, range_end] that are booked, blocked or pending."""
    rows = (
        session.query(AvailabilityEntry.date)
        .filter(
            AvailabilityEntry.property_id == property_id,
            AvailabilityEntry.status.in_(sorted(UNAVAILABLE_STATUSES)),
            AvailabilityEntry.date >= range_start,
            AvailabilityEntry.date <= range_end,
        )
        .all()
    )
    return {row[0] for row in rows}


def find_unavailable_nights(
    session: Session, property_id: int, check_in: date, check_out: date
) -> set[date]:
    """Unavailable nights inside the stay [check_in, check_out)."""
    if check_out <= check_in:
        return set()
    return fetch_unavailable_dates(session, property_id, check_in, check_out - timedelta(days=1))


def reserve_nights(
    session: Session, booking: Booking, nightly_prices: Mapping[date, float]
) -> list[AvailabilityEntry]:
    """Mark every night of the booking as booked.

    Writes are conditional: a night that is not available, or that another
    transaction inserts first, raises RaceConditionError. Does not commit.
    """
    existing = {
        e.date: e
        for e in session.query(AvailabilityEntry)
        .filter(
            AvailabilityEntry.property_id == booking.property_id,
            AvailabilityEntry.date >= booking.check_in,
            AvailabilityEntry.date < booking.check_out,
        )
        .with_for_update()
        .all()
    }

    entries: list[AvailabilityEntry] = []
    for night in iter_nights(booking.check_in, booking.check_out):
        entry = existing.get(night)
        price = nightly_prices.get(night)
        if price is None and entry is not None:
            price = entry.price
        if entry is None:
            entry = AvailabilityEntry(
                property_id=booking.property_id,
                date=night,
                status=AvailabilityStatus.BOOKED.value,
                booking_id=booking.id,
                booked_price=price,
            )
            session.add(entry)
        else:
            result = session.execute(
                update(AvailabilityEntry)
                .where(
                    AvailabilityEntry.id == entry.id,
                    AvailabilityEntry.status == AvailabilityStatus.AVAILABLE.value,
                )
                .values(
                    status=AvailabilityStatus.BOOKED.value,
                    booking_id=booking.id,
                    booked_price=price,
                )
            )
            if result.rowcount != 1:
                logger.warning(
                    "Night %s of property %s already %s", night, booking.property_id, entry.status
                )
                raise RaceConditionError()
        entries.append(entry)

    try:
        session.flush()
    except IntegrityError as exc:
        logger.warning("Concurrent reservation for property %s detected", booking.property_id)
        raise RaceConditionError() from exc
    return entries


def release_booking_nights(session: Session, booking_id: int) -> int:
    """Return the nights held by a booking to available. Does not commit.

    Owner price overrides survive; the price the booking was charged does not.
    """
    result = session.execute(
        update(AvailabilityEntry)
        .where(AvailabilityEntry.booking_id == booking_id)
        .values(status=AvailabilityStatus.AVAILABLE.value, booking_id=None, booked_price=None)
    )
    logger.info("Released %d nights of booking %s", result.rowcount, booking_id)
    return result.rowcount


def get_month_calendar(session: Session, prop: Property, year: int, month: int) -> list[CalendarDay]:
    """One CalendarDay per day of the month; days without a row are available at base price."""
    days_in_month = calendar.monthrange(year, month)[1]
    start = date(year, month, 1)
    end = date(year, month, days_in_month)

    entries = (
        session.query(AvailabilityEntry)
        .filter(
            AvailabilityEntry.property_id == prop.id,
            AvailabilityEntry.date >= start,
            AvailabilityEntry.date <= end,
        )
        .all()
    )
    by_date = {e.date: e for e in entries}

    days = []
    for offset in range(days_in_month):
        day = start + timedelta(days=offset)
        entry = by_date.get(day)
        if entry:
            price = entry.booked_price if entry.booked_price is not None else entry.price
            days.append(CalendarDay(
                date=day,
                status=entry.status,
                price=price if price is not None else prop.base_price,
                booking_id=entry.booking_id,
            ))
        else:
            days.append(CalendarDay(
                date=day, status=AvailabilityStatus.AVAILABLE.value, price=prop.base_price,
            ))
    return days


def _get_entry(session: Session, property_id: int, day: date) -> AvailabilityEntry | None:
    return (
        session.query(AvailabilityEntry)
        .filter(AvailabilityEntry.property_id == property_id, AvailabilityEntry.date == day)
        .one_or_none()
    )


def set_date_status(
    session: Session, prop: Property, day: date, status: str, user_id: int | None
) -> AvailabilityEntry:
    """Owner action: mark a single day available or blocked."""
    ensure_owner(prop, user_id)
    if status not in OWNER_STATUSES:
        raise ValidationError(f"Status must be one of {sorted(OWNER_STATUSES)}, got {status!r}")

    entry = _get_entry(session, prop.id, day)
    if entry and entry.status in HELD_STATUSES:
        raise ValidationError(f"{day} is held by booking {entry.booking_id}")
    if entry is None:
        entry = AvailabilityEntry(property_id=prop.id, date=day)
        session.add(entry)
    entry.status = status
    session.commit()
    logger.info("Set %s of property %s to %s", day, prop.name, status)
    return entry


def set_date_price(
    session: Session, prop: Property, day: date, price: float, user_id: int | None
) -> AvailabilityEntry:
    """Owner action: override the nightly price of a single day."""
    ensure_owner(prop, user_id)
    if price is None or price <= 0:
        raise ValidationError("Price must be positive")

    entry = _get_entry(session, prop.id, day)
    if entry is None:
        entry = AvailabilityEntry(
            property_id=prop.id, date=day, status=AvailabilityStatus.AVAILABLE.value,
        )
        session.add(entry)
    entry.price = price
    session.commit()
    logger.info("Set price of %s for property %s to %.2f", day, prop.name, price)
    return entry


def block_dates(
    session: Session, prop: Property, start: date, days: int, user_id: int | None
) -> list[AvailabilityEntry]:
    """Owner action: block ``days`` consecutive days starting at ``start``.

    Refuses the whole range if any day is held by a booking.
    """
    ensure_owner(prop, user_id)
    if days <= 0:
        raise ValidationError("Number of days to block must be positive")

    end = start + timedelta(days=days)
    existing = {
        e.date: e
        for e in session.query(AvailabilityEntry)
        .filter(
            AvailabilityEntry.property_id == prop.id,
            AvailabilityEntry.date >= start,
            AvailabilityEntry.date < end,
        )
        .all()
    }
    held = sorted(d for d, e in existing.items() if e.status in HELD_STATUSES)
    if held:
        raise ValidationError(f"Cannot block dates held by bookings: {', '.join(map(str, held))}")

    entries = []
    for day in iter_nights(start, end):
        entry = existing.get(day)
        if entry is None:
            entry = AvailabilityEntry(property_id=prop.id, date=day)
            session.add(entry)
        entry.status = AvailabilityStatus.BLOCKED.value
        entries.append(entry)
    session.commit()

    logger.info("Blocked %d days of property %s from %s", days, prop.name, start)
    event_bus.publish(Event(
        event_type=EventType.DATES_BLOCKED,
        data={
            "property_id": prop.id,
            "owner_id": prop.owner_id,
            "property_name": prop.name,
            "start": start.isoformat(),
            "days": days,
        },
    ))
    return entries
