"""Tests for per-night availability and the owner calendar."""

from datetime import date, datetime
from unittest.mock import patch

import pytest
from sqlalchemy.orm import Session

from staybook.errors import AuthorizationError, RaceConditionError, ValidationError
from staybook.events import EventType
from staybook.models.availability import AvailabilityEntry
from staybook.models.booking import Booking
from staybook.models.property import Property
from staybook.models.user import User
from staybook.modules.availability.nights import (
    block_dates,
    fetch_unavailable_dates,
    find_unavailable_nights,
    get_month_calendar,
    is_date_blocked,
    release_booking_nights,
    reserve_nights,
    set_date_price,
    set_date_status,
)
from staybook.modules.pricing.calculator import compute_pricing, fetch_nightly_prices

TODAY = date(2026, 3, 1)


def _pending_booking(db_session: Session, prop: Property, guest: User, check_in, check_out) -> Booking:
    booking = Booking(
        property_id=prop.id, user_id=guest.id, check_in=check_in, check_out=check_out,
        customer_name="Jane", customer_email="jane@example.com", customer_phone="555",
    )
    db_session.add(booking)
    db_session.flush()
    return booking


@pytest.mark.parametrize("days_ago", [1, 2, 30, 365])
def test_past_dates_always_blocked(days_ago):
    past = date.fromordinal(TODAY.toordinal() - days_ago)
    assert is_date_blocked(past, set(), today=TODAY) is True
    assert is_date_blocked(past, {TODAY}, today=TODAY) is True


def test_today_and_future_depend_on_unavailable_set():
    future = date(2026, 3, 5)

    assert is_date_blocked(TODAY, set(), today=TODAY) is False
    assert is_date_blocked(future, set(), today=TODAY) is False
    assert is_date_blocked(future, {future}, today=TODAY) is True


def test_datetimes_compare_by_calendar_day():
    unavailable = {datetime(2026, 3, 5, 0, 0)}

    assert is_date_blocked(datetime(2026, 3, 5, 18, 30), unavailable, today=TODAY) is True
    assert is_date_blocked(datetime(2026, 3, 1, 23, 59), set(), today=TODAY) is False


def test_booked_night_round_trip(db_session: Session, sample_property: Property, sample_guest: User):
    booking = _pending_booking(db_session, sample_property, sample_guest, date(2026, 4, 1), date(2026, 4, 4))
    reserve_nights(db_session, booking, {})
    db_session.commit()

    dates = fetch_unavailable_dates(db_session, sample_property.id, date(2026, 3, 1), date(2026, 5, 1))

    assert dates == {date(2026, 4, 1), date(2026, 4, 2), date(2026, 4, 3)}


def test_range_is_inclusive_and_per_property(db_session: Session, sample_property: Property, sample_owner: User):
    other = Property(owner_id=sample_owner.id, name="Other", base_price=90.0)
    db_session.add(other)
    db_session.flush()
    db_session.add_all([
        AvailabilityEntry(property_id=sample_property.id, date=date(2026, 4, 1), status="blocked"),
        AvailabilityEntry(property_id=sample_property.id, date=date(2026, 4, 10), status="booked"),
        AvailabilityEntry(property_id=sample_property.id, date=date(2026, 4, 11), status="booked"),
        AvailabilityEntry(property_id=other.id, date=date(2026, 4, 5), status="blocked"),
    ])
    db_session.commit()

    dates = fetch_unavailable_dates(db_session, sample_property.id, date(2026, 4, 1), date(2026, 4, 10))

    assert dates == {date(2026, 4, 1), date(2026, 4, 10)}


def test_pending_and_available_statuses(db_session: Session, sample_property: Property):
    db_session.add_all([
        AvailabilityEntry(property_id=sample_property.id, date=date(2026, 4, 1), status="pending"),
        AvailabilityEntry(property_id=sample_property.id, date=date(2026, 4, 2), status="available"),
    ])
    db_session.commit()

    dates = fetch_unavailable_dates(db_session, sample_property.id, date(2026, 4, 1), date(2026, 4, 30))

    assert dates == {date(2026, 4, 1)}


def test_find_unavailable_nights_excludes_check_out(db_session: Session, sample_property: Property):
    db_session.add_all([
        AvailabilityEntry(property_id=sample_property.id, date=date(2026, 4, 2), status="pending"),
        AvailabilityEntry(property_id=sample_property.id, date=date(2026, 4, 4), status="blocked"),
    ])
    db_session.commit()

    assert find_unavailable_nights(db_session, sample_property.id, date(2026, 4, 1), date(2026, 4, 4)) == {
        date(2026, 4, 2),
    }
    assert find_unavailable_nights(db_session, sample_property.id, date(2026, 4, 4), date(2026, 4, 4)) == set()


def test_reserve_stores_nightly_price(db_session: Session, sample_property: Property, sample_guest: User):
    booking = _pending_booking(db_session, sample_property, sample_guest, date(2026, 4, 1), date(2026, 4, 3))

    entries = reserve_nights(db_session, booking, {date(2026, 4, 1): 100.0, date(2026, 4, 2): 150.0})
    db_session.commit()

    assert [(e.date, e.status, e.booked_price, e.price, e.booking_id) for e in entries] == [
        (date(2026, 4, 1), "booked", 100.0, None, booking.id),
        (date(2026, 4, 2), "booked", 150.0, None, booking.id),
    ]


def test_reserve_reuses_available_rows(db_session: Session, sample_property: Property, sample_guest: User):
    db_session.add(AvailabilityEntry(property_id=sample_property.id, date=date(2026, 4, 2), price=130.0))
    db_session.commit()
    booking = _pending_booking(db_session, sample_property, sample_guest, date(2026, 4, 1), date(2026, 4, 3))

    reserve_nights(db_session, booking, {})
    db_session.commit()

    rows = db_session.query(AvailabilityEntry).order_by(AvailabilityEntry.date).all()
    assert len(rows) == 2
    assert rows[1].status == "booked"
    assert rows[1].price == 130.0
    assert rows[1].booked_price == 130.0
    assert rows[1].booking_id == booking.id


def test_reserve_refuses_taken_night(db_session: Session, sample_property: Property, sample_guest: User):
    db_session.add(AvailabilityEntry(property_id=sample_property.id, date=date(2026, 4, 2), status="blocked"))
    db_session.commit()
    booking = _pending_booking(db_session, sample_property, sample_guest, date(2026, 4, 1), date(2026, 4, 3))

    with pytest.raises(RaceConditionError):
        reserve_nights(db_session, booking, {})
    db_session.rollback()


def test_concurrent_insert_is_a_race(db_session: Session, sample_property: Property, sample_guest: User):
    """A row inserted after the availability read trips the unique constraint."""
    booking = _pending_booking(db_session, sample_property, sample_guest, date(2026, 4, 1), date(2026, 4, 3))

    with db_session.no_autoflush:
        db_session.add(AvailabilityEntry(
            property_id=sample_property.id, date=date(2026, 4, 2), status="blocked",
        ))
        with pytest.raises(RaceConditionError):
            reserve_nights(db_session, booking, {})
    db_session.rollback()


def test_release_booking_nights(db_session: Session, sample_property: Property, sample_guest: User):
    booking = _pending_booking(db_session, sample_property, sample_guest, date(2026, 4, 1), date(2026, 4, 4))
    reserve_nights(db_session, booking, {})
    db_session.commit()

    released = release_booking_nights(db_session, booking.id)
    db_session.commit()

    assert released == 3
    assert fetch_unavailable_dates(db_session, sample_property.id, date(2026, 4, 1), date(2026, 4, 30)) == set()


def test_month_calendar_defaults_to_available(db_session: Session, sample_property: Property):
    db_session.add_all([
        AvailabilityEntry(property_id=sample_property.id, date=date(2026, 2, 10), status="blocked"),
        AvailabilityEntry(property_id=sample_property.id, date=date(2026, 2, 14), price=180.0),
    ])
    db_session.commit()

    days = get_month_calendar(db_session, sample_property, 2026, 2)

    assert len(days) == 28
    assert days[0].status == "available"
    assert days[0].price == 100.0
    assert days[9].status == "blocked"
    assert days[13].price == 180.0


def test_owner_sets_day_status(db_session: Session, sample_property: Property, sample_owner: User):
    entry = set_date_status(db_session, sample_property, date(2026, 4, 1), "blocked", sample_owner.id)
    assert entry.status == "blocked"

    entry = set_date_status(db_session, sample_property, date(2026, 4, 1), "available", sample_owner.id)
    assert entry.status == "available"
    assert db_session.query(AvailabilityEntry).count() == 1


def test_owner_cannot_set_booked_status(db_session: Session, sample_property: Property, sample_owner: User):
    with pytest.raises(ValidationError):
        set_date_status(db_session, sample_property, date(2026, 4, 1), "booked", sample_owner.id)


def test_owner_cannot_free_a_booked_night(
    db_session: Session, sample_property: Property, sample_owner: User, sample_guest: User
):
    booking = _pending_booking(db_session, sample_property, sample_guest, date(2026, 4, 1), date(2026, 4, 2))
    reserve_nights(db_session, booking, {})
    db_session.commit()

    with pytest.raises(ValidationError):
        set_date_status(db_session, sample_property, date(2026, 4, 1), "available", sample_owner.id)


def test_non_owner_refused(db_session: Session, sample_property: Property, sample_guest: User):
    with pytest.raises(AuthorizationError):
        set_date_status(db_session, sample_property, date(2026, 4, 1), "blocked", sample_guest.id)
    with pytest.raises(AuthorizationError):
        set_date_price(db_session, sample_property, date(2026, 4, 1), 120.0, None)

    assert db_session.query(AvailabilityEntry).count() == 0


def test_set_date_price(db_session: Session, sample_property: Property, sample_owner: User):
    entry = set_date_price(db_session, sample_property, date(2026, 4, 1), 210.0, sample_owner.id)

    assert entry.price == 210.0
    assert entry.status == "available"
    with pytest.raises(ValidationError):
        set_date_price(db_session, sample_property, date(2026, 4, 1), 0, sample_owner.id)


def test_block_dates(db_session: Session, sample_property: Property, sample_owner: User, event_bus):
    received = []
    event_bus.subscribe(EventType.DATES_BLOCKED, received.append)

    with patch("staybook.modules.availability.nights.event_bus", event_bus):
        entries = block_dates(db_session, sample_property, date(2026, 4, 1), 3, sample_owner.id)

    assert [e.date for e in entries] == [date(2026, 4, 1), date(2026, 4, 2), date(2026, 4, 3)]
    assert fetch_unavailable_dates(db_session, sample_property.id, date(2026, 4, 1), date(2026, 4, 30)) == {
        date(2026, 4, 1), date(2026, 4, 2), date(2026, 4, 3),
    }
    assert len(received) == 1
    assert received[0].data["days"] == 3


def test_block_dates_refuses_booked_range(
    db_session: Session, sample_property: Property, sample_owner: User, sample_guest: User
):
    booking = _pending_booking(db_session, sample_property, sample_guest, date(2026, 4, 2), date(2026, 4, 3))
    reserve_nights(db_session, booking, {})
    db_session.commit()

    with pytest.raises(ValidationError):
        block_dates(db_session, sample_property, date(2026, 4, 1), 5, sample_owner.id)
    with pytest.raises(ValidationError):
        block_dates(db_session, sample_property, date(2026, 4, 10), 0, sample_owner.id)

    statuses = {e.date: e.status for e in db_session.query(AvailabilityEntry).all()}
    assert statuses == {date(2026, 4, 2): "booked"}


def test_release_keeps_owner_override_only(db_session: Session, sample_property: Property, sample_guest: User):
    db_session.add(AvailabilityEntry(property_id=sample_property.id, date=date(2026, 4, 2), price=130.0))
    db_session.commit()
    booking = _pending_booking(db_session, sample_property, sample_guest, date(2026, 4, 1), date(2026, 4, 3))
    reserve_nights(db_session, booking, {date(2026, 4, 1): 100.0, date(2026, 4, 2): 130.0})
    db_session.commit()

    release_booking_nights(db_session, booking.id)
    db_session.commit()

    prices = fetch_nightly_prices(db_session, sample_property.id, date(2026, 4, 1), date(2026, 4, 3))
    assert prices == {date(2026, 4, 2): 130.0}
    assert {e.booked_price for e in db_session.query(AvailabilityEntry).all()} == {None}


def test_base_price_change_reaches_released_nights(
    db_session: Session, sample_property: Property, sample_guest: User
):
    booking = _pending_booking(db_session, sample_property, sample_guest, date(2026, 4, 1), date(2026, 4, 3))
    reserve_nights(db_session, booking, {date(2026, 4, 1): 100.0, date(2026, 4, 2): 100.0})
    db_session.commit()
    release_booking_nights(db_session, booking.id)
    sample_property.base_price = 200.0
    db_session.commit()

    prices = fetch_nightly_prices(db_session, sample_property.id, date(2026, 4, 1), date(2026, 4, 3))
    pricing = compute_pricing(sample_property, date(2026, 4, 1), date(2026, 4, 3), nightly_prices=prices)

    assert prices == {}
    assert pricing.base_price_total == 400.0


def test_base_price_change_reaches_unblocked_nights(
    db_session: Session, sample_property: Property, sample_owner: User, event_bus
):
    with patch("staybook.modules.availability.nights.event_bus", event_bus):
        block_dates(db_session, sample_property, date(2026, 4, 1), 1, sample_owner.id)
    set_date_status(db_session, sample_property, date(2026, 4, 2), "blocked", sample_owner.id)
    set_date_status(db_session, sample_property, date(2026, 4, 1), "available", sample_owner.id)
    set_date_status(db_session, sample_property, date(2026, 4, 2), "available", sample_owner.id)
    sample_property.base_price = 200.0
    db_session.commit()

    prices = fetch_nightly_prices(db_session, sample_property.id, date(2026, 4, 1), date(2026, 4, 3))
    pricing = compute_pricing(sample_property, date(2026, 4, 1), date(2026, 4, 3), nightly_prices=prices)

    assert prices == {}
    assert pricing.base_price_total == 400.0


def test_month_calendar_shows_booked_price(db_session: Session, sample_property: Property, sample_guest: User):
    booking = _pending_booking(db_session, sample_property, sample_guest, date(2026, 4, 1), date(2026, 4, 2))
    reserve_nights(db_session, booking, {date(2026, 4, 1): 150.0})
    db_session.commit()

    days = get_month_calendar(db_session, sample_property, 2026, 4)

    assert (days[0].status, days[0].price, days[0].booking_id) == ("booked", 150.0, booking.id)
    assert days[1].price == 100.0
