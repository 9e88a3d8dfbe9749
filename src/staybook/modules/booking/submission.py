"""Atomic booking submission: booking row and reserved nights in one transaction."""

from __future__ import annotations

import logging
from collections.abc import Mapping
from dataclasses import dataclass
from datetime import date

from sqlalchemy.exc import DBAPIError
from sqlalchemy.orm import Session

from staybook.errors import RaceConditionError, TransientStoreError, ValidationError
from staybook.events import Event, EventType, event_bus
from staybook.models.booking import Booking, BookingStatus
from staybook.models.property import Property
from staybook.modules.availability.nights import is_date_blocked, reserve_nights
from staybook.modules.booking.confirmation import PropertyConfirmation
from staybook.modules.pricing.calculator import compute_pricing, fetch_nightly_prices

logger = logging.getLogger(__name__)


@dataclass
class GuestInfo:
    customer_name: str
    customer_email: str
    customer_phone: str
    special_requests: str | None = None

    def validate(self) -> None:
        """Raise ValidationError if a required field is empty or malformed."""
        missing = [
            name
            for name in ("customer_name", "customer_email", "customer_phone")
            if not (getattr(self, name) or "").strip()
        ]
        if missing:
            raise ValidationError(f"Please fill in all required fields: {', '.join(missing)}")
        if "@" not in self.customer_email:
            raise ValidationError(f"Invalid email address: {self.customer_email!r}")


def validate_stay(
    prop: Property,
    check_in: date | None,
    check_out: date | None,
    guest_count: int,
    today: date | None = None,
) -> None:
    """Check dates and guest count before pricing or persisting a stay."""
    if check_in is None or check_out is None:
        raise ValidationError("Please select a property and dates before booking")
    if check_out <= check_in:
        raise ValidationError("Check-out must be after check-in")
    if is_date_blocked(check_in, (), today=today):
        raise ValidationError(f"Check-in date {check_in} is in the past")
    if guest_count < 1 or guest_count > prop.max_guests:
        raise ValidationError(f"Guest count must be between 1 and {prop.max_guests}")


def submit_booking(
    session: Session,
    prop: Property,
    user_id: int,
    check_in: date | None,
    check_out: date | None,
    guest_count: int,
    guest: GuestInfo,
    nightly_prices: Mapping[date, float] | None = None,
    today: date | None = None,
) -> PropertyConfirmation:
    """Persist a booking and reserve its nights, all or nothing.

    Raises ValidationError for bad input, RaceConditionError when a night was
    taken in the meantime and TransientStoreError on database failure. In
    every failure case nothing is committed.
    """
    guest.validate()
    validate_stay(prop, check_in, check_out, guest_count, today=today)

    try:
        if nightly_prices is None:
            nightly_prices = fetch_nightly_prices(session, prop.id, check_in, check_out)
        pricing = compute_pricing(prop, check_in, check_out, guest_count, nightly_prices)

        booking = Booking(
            property_id=prop.id,
            user_id=user_id,
            check_in=check_in,
            check_out=check_out,
            guest_count=guest_count,
            customer_name=guest.customer_name.strip(),
            customer_email=guest.customer_email.strip(),
            customer_phone=guest.customer_phone.strip(),
            special_requests=guest.special_requests,
            status=BookingStatus.PENDING.value,
            base_price=pricing.base_price_total,
            seasonal_adjustment=pricing.seasonal_adjustment,
            discount=pricing.discount,
            cleaning_fee=pricing.cleaning_fee,
            service_fee=pricing.service_fee,
            total_price=pricing.total,
        )
        session.add(booking)
        session.flush()  # Assigns booking.id

        reserve_nights(session, booking, pricing.nightly_prices)
        session.commit()
    except RaceConditionError:
        session.rollback()
        logger.info("Booking for property %s %s..%s lost a race", prop.id, check_in, check_out)
        raise
    except DBAPIError as exc:
        session.rollback()
        logger.exception("Failed to create booking for property %s", prop.id)
        raise TransientStoreError() from exc

    logger.info("Created booking %s for %s, %s to %s", booking.id, prop.name, check_in, check_out)
    event_bus.publish(Event(
        event_type=EventType.BOOKING_CREATED,
        data={
            "booking_id": booking.id,
            "property_id": prop.id,
            "owner_id": prop.owner_id,
            "property_name": prop.name,
            "customer_name": booking.customer_name,
        },
    ))

    return PropertyConfirmation(
        booking_id=booking.id,
        customer_name=booking.customer_name,
        property_name=prop.name,
        check_in=check_in,
        check_out=check_out,
        guest_count=guest_count,
        total_price=pricing.total,
    )
