"""Owner actions on bookings and property pricing."""

from __future__ import annotations

import logging
from datetime import date

from sqlalchemy.orm import Session

from staybook.auth.permissions import ensure_owner
from staybook.errors import ValidationError
from staybook.events import Event, EventType, event_bus
from staybook.models.booking import Booking, BookingStatus
from staybook.models.property import ExtendedStayDiscount, Property
from staybook.modules.availability.nights import release_booking_nights

logger = logging.getLogger(__name__)

ALLOWED_TRANSITIONS: dict[str, set[str]] = {
    BookingStatus.PENDING.value: {BookingStatus.CONFIRMED.value, BookingStatus.CANCELED.value},
    BookingStatus.CONFIRMED.value: {BookingStatus.CANCELED.value, BookingStatus.COMPLETED.value},
    BookingStatus.CANCELED.value: set(),
    BookingStatus.COMPLETED.value: set(),
}

_STATUS_EVENTS = {
    BookingStatus.CONFIRMED.value: EventType.BOOKING_CONFIRMED,
    BookingStatus.CANCELED.value: EventType.BOOKING_CANCELED,
    BookingStatus.COMPLETED.value: EventType.BOOKING_COMPLETED,
}


def change_booking_status(
    session: Session, booking_id: int, new_status: str, user_id: int | None
) -> Booking:
    """Move a booking to a new status. Only the property owner may do this.

    Canceling releases the booking's nights back to available.
    """
    booking = session.get(Booking, booking_id)
    if booking is None:
        raise ValidationError(f"Booking {booking_id} not found")
    ensure_owner(booking.prop, user_id)

    try:
        new_status = BookingStatus(new_status).value
    except ValueError as exc:
        raise ValidationError(f"Unknown booking status {new_status!r}") from exc
    if new_status not in ALLOWED_TRANSITIONS[booking.status]:
        raise ValidationError(f"Cannot change booking from {booking.status} to {new_status}")

    booking.status = new_status
    if new_status == BookingStatus.CANCELED.value:
        release_booking_nights(session, booking.id)
    session.commit()

    logger.info("Booking %s is now %s", booking.id, new_status)
    _publish_status_change(booking)
    return booking


def _publish_status_change(booking: Booking) -> None:
    event_bus.publish(Event(
        event_type=_STATUS_EVENTS[booking.status],
        data={
            "booking_id": booking.id,
            "property_id": booking.property_id,
            "owner_id": booking.prop.owner_id,
            "property_name": booking.prop.name,
        },
    ))


def confirm_booking(session: Session, booking_id: int, user_id: int | None) -> Booking:
    return change_booking_status(session, booking_id, BookingStatus.CONFIRMED.value, user_id)


def cancel_booking(session: Session, booking_id: int, user_id: int | None) -> Booking:
    return change_booking_status(session, booking_id, BookingStatus.CANCELED.value, user_id)


def complete_booking(session: Session, booking_id: int, user_id: int | None) -> Booking:
    return change_booking_status(session, booking_id, BookingStatus.COMPLETED.value, user_id)


def complete_past_bookings(session: Session, today: date | None = None) -> int:
    """Mark confirmed bookings whose stay has ended as completed."""
    today = today or date.today()
    bookings = (
        session.query(Booking)
        .filter(
            Booking.status == BookingStatus.CONFIRMED.value,
            Booking.check_out <= today,
        )
        .all()
    )
    for booking in bookings:
        booking.status = BookingStatus.COMPLETED.value
    session.commit()
    if bookings:
        logger.info("Completed %d past bookings", len(bookings))
    for booking in bookings:
        _publish_status_change(booking)
    return len(bookings)


def update_pricing(
    session: Session,
    prop: Property,
    user_id: int | None,
    base_price: float | None = None,
    cleaning_fee: float | None = None,
    seasonal_pricing: dict[str, float] | None = None,
    extended_stay_discounts: list[dict] | None = None,
) -> Property:
    """Owner action from the pricing page. Arguments left as None are unchanged.

    ``extended_stay_discounts`` replaces the property's rules; each item has
    ``minimum_days`` and ``discount_percentage``.
    """
    ensure_owner(prop, user_id)
    try:
        if base_price is not None:
            prop.base_price = base_price
        if cleaning_fee is not None:
            if cleaning_fee < 0:
                raise ValidationError("Cleaning fee cannot be negative")
            prop.cleaning_fee = cleaning_fee
        if seasonal_pricing is not None:
            prop.seasonal_pricing = seasonal_pricing
        if extended_stay_discounts is not None:
            minimums = [d["minimum_days"] for d in extended_stay_discounts]
            if len(minimums) != len(set(minimums)):
                raise ValidationError("Only one discount per minimum stay is allowed")
            prop.extended_stay_discounts = [
                ExtendedStayDiscount(
                    minimum_days=d["minimum_days"],
                    discount_percentage=d["discount_percentage"],
                )
                for d in extended_stay_discounts
            ]
    except ValidationError:
        session.rollback()
        raise
    except (KeyError, ValueError) as exc:
        session.rollback()
        raise ValidationError(str(exc)) from exc
    session.commit()

    logger.info("Updated pricing for property %s", prop.name)
    event_bus.publish(Event(
        event_type=EventType.PROPERTY_UPDATED,
        data={"property_id": prop.id, "owner_id": prop.owner_id, "property_name": prop.name},
    ))
    return prop
