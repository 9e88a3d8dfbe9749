"""Time-slot availability and bookings for services."""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime, time, timedelta

from sqlalchemy.exc import DBAPIError, IntegrityError
from sqlalchemy.orm import Session

from staybook.config import section
from staybook.errors import RaceConditionError, TransientStoreError, ValidationError
from staybook.events import Event, EventType, event_bus
from staybook.models.booking import BookingStatus
from staybook.models.service import Service, ServiceBooking
from staybook.modules.booking.confirmation import ServiceConfirmation
from staybook.modules.booking.submission import GuestInfo
from staybook.modules.pricing.calculator import DEFAULT_SERVICE_FEE_RATE

logger = logging.getLogger(__name__)


@dataclass
class TimeSlot:
    start_time: time
    end_time: time
    available: bool
    price: float

    @property
    def id(self) -> str:
        return self.start_time.strftime("%H:%M")


def _slot_starts(service: Service) -> list[tuple[time, time]]:
    hours = section("services")
    opening = hours.get("opening_hour", 9)
    closing = hours.get("closing_hour", 17)
    step = timedelta(minutes=service.duration_minutes)

    anchor = datetime(2000, 1, 1)
    current = anchor + timedelta(hours=opening)
    close = anchor + timedelta(hours=closing)
    slots = []
    while current + step <= close:
        slots.append((current.time(), (current + step).time()))
        current += step
    return slots


def _has_started(day: date, start: time, now: datetime) -> bool:
    return day < now.date() or (day == now.date() and start <= now.time())


def get_time_slots(
    session: Session, service: Service, day: date, now: datetime | None = None
) -> list[TimeSlot]:
    """Slots of ``service.duration_minutes`` between opening and closing hours.

    Slots that have already started, including earlier ones today, are unavailable.
    """
    now = now or datetime.now()
    taken = {
        row[0]
        for row in session.query(ServiceBooking.start_time)
        .filter(
            ServiceBooking.service_id == service.id,
            ServiceBooking.date == day,
            ServiceBooking.status != BookingStatus.CANCELED.value,
        )
        .all()
    }
    return [
        TimeSlot(
            start_time=start,
            end_time=end,
            available=service.is_active and not _has_started(day, start, now) and start not in taken,
            price=service.price,
        )
        for start, end in _slot_starts(service)
    ]


def submit_service_booking(
    session: Session,
    service: Service,
    user_id: int,
    day: date,
    start_time: time,
    guest: GuestInfo,
    now: datetime | None = None,
) -> ServiceConfirmation:
    """Book one slot of a service. A slot can only be booked once.

    Inactive services, unknown slots and slots that have started are
    ValidationErrors; a slot someone else holds is a RaceConditionError.
    """
    guest.validate()
    if not service.is_active:
        raise ValidationError(f"{service.name} is not available for booking")
    now = now or datetime.now()
    slot = next((s for s in get_time_slots(session, service, day, now) if s.start_time == start_time), None)
    if slot is None:
        raise ValidationError(f"{start_time:%H:%M} is not a valid slot for {service.name}")
    if _has_started(day, slot.start_time, now):
        raise ValidationError(f"The {slot.id} slot on {day} has already started")
    if not slot.available:
        raise RaceConditionError("This time slot is no longer available. Please select a different time.")

    fee_rate = section("pricing").get("service_fee_rate", DEFAULT_SERVICE_FEE_RATE)
    service_fee = round(service.price * fee_rate, 2)
    booking = ServiceBooking(
        service_id=service.id,
        user_id=user_id,
        date=day,
        start_time=slot.start_time,
        end_time=slot.end_time,
        customer_name=guest.customer_name.strip(),
        customer_email=guest.customer_email.strip(),
        customer_phone=guest.customer_phone.strip(),
        notes=guest.special_requests,
        status=BookingStatus.PENDING.value,
        price=service.price,
        service_fee=service_fee,
        total_price=round(service.price + service_fee, 2),
    )
    try:
        session.add(booking)
        session.commit()
    except IntegrityError as exc:
        session.rollback()
        raise RaceConditionError(
            "This time slot is no longer available. Please select a different time."
        ) from exc
    except DBAPIError as exc:
        session.rollback()
        logger.exception("Failed to book service %s", service.id)
        raise TransientStoreError() from exc

    logger.info("Booked %s on %s at %s", service.name, day, slot.id)
    event_bus.publish(Event(
        event_type=EventType.SERVICE_BOOKING_CREATED,
        data={
            "service_booking_id": booking.id,
            "owner_id": service.owner_id,
            "service_name": service.name,
            "customer_name": booking.customer_name,
        },
    ))

    return ServiceConfirmation(
        booking_id=booking.id,
        customer_name=booking.customer_name,
        service_name=service.name,
        date=day,
        start_time=booking.start_time,
        end_time=booking.end_time,
        price=service.price,
        total_price=booking.total_price,
    )
