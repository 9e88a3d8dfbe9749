"""Tests for the booking workflow state machine."""

from datetime import date

import pytest
from sqlalchemy.orm import Session

from staybook.errors import RaceConditionError, ValidationError
from staybook.models.availability import AvailabilityEntry
from staybook.models.booking import Booking
from staybook.models.property import Property
from staybook.models.user import User
from staybook.modules.booking.submission import GuestInfo
from staybook.modules.booking.workflow import BookingWorkflow, DateSelection, WorkflowState

TODAY = date(2026, 3, 1)

GUEST = GuestInfo(
    customer_name="Jane Smith",
    customer_email="jane@example.com",
    customer_phone="+15550001111",
)


@pytest.fixture
def workflow(db_session: Session, sample_guest: User) -> BookingWorkflow:
    return BookingWorkflow(db_session, sample_guest.id, today=TODAY)


def test_starts_selecting_property(workflow: BookingWorkflow):
    assert workflow.state == WorkflowState.SELECTING_PROPERTY
    assert workflow.date_selection == DateSelection.EMPTY
    assert workflow.pricing is None


def test_happy_path(workflow: BookingWorkflow, sample_property: Property, db_session: Session):
    workflow.select_property(sample_property)
    assert workflow.state == WorkflowState.SELECTING_DATES
    assert workflow.guest_count == 1

    workflow.select_dates(date(2026, 4, 1))
    assert workflow.date_selection == DateSelection.PARTIAL
    assert workflow.state == WorkflowState.SELECTING_DATES
    assert workflow.pricing is None

    workflow.select_dates(date(2026, 4, 1), date(2026, 4, 4))
    assert workflow.date_selection == DateSelection.COMPLETE
    assert workflow.state == WorkflowState.REVIEWING_PRICING
    assert workflow.pricing.total == 405

    workflow.set_guest_count(3)
    assert workflow.pricing.total == 405

    workflow.begin_guest_info()
    assert workflow.state == WorkflowState.SUBMITTING_GUEST_INFO

    confirmation = workflow.submit(GUEST)
    assert workflow.state == WorkflowState.CONFIRMED
    assert workflow.confirmation == confirmation
    assert confirmation.guest_count == 3
    assert confirmation.total_price == 405

    booking = db_session.get(Booking, confirmation.booking_id)
    assert booking.status == "PENDING"
    assert db_session.query(AvailabilityEntry).filter(AvailabilityEntry.status == "booked").count() == 3


def test_pricing_follows_date_changes(workflow: BookingWorkflow, sample_property: Property):
    workflow.select_property(sample_property)
    workflow.select_dates(date(2026, 4, 1), date(2026, 4, 3))
    assert workflow.pricing.nights_count == 2

    workflow.select_dates(date(2026, 4, 1), date(2026, 4, 6))
    assert workflow.pricing.nights_count == 5

    workflow.clear_dates()
    assert workflow.pricing is None
    assert workflow.state == WorkflowState.SELECTING_DATES


def test_changing_property_clears_dates(workflow: BookingWorkflow, sample_property: Property, db_session: Session):
    other = Property(owner_id=sample_property.owner_id, name="Villa", type="villa", base_price=300.0, max_guests=8)
    db_session.add(other)
    db_session.commit()

    workflow.select_property(sample_property)
    workflow.select_dates(date(2026, 4, 1), date(2026, 4, 3))
    workflow.select_property(other)

    assert workflow.check_in is None
    assert workflow.pricing is None
    assert workflow.state == WorkflowState.SELECTING_DATES


def test_unavailable_and_past_dates_not_selectable(
    workflow: BookingWorkflow, sample_property: Property, db_session: Session
):
    db_session.add(AvailabilityEntry(property_id=sample_property.id, date=date(2026, 4, 2), status="blocked"))
    db_session.commit()
    workflow.select_property(sample_property)

    assert workflow.is_selectable(date(2026, 4, 1)) is True
    assert workflow.is_selectable(date(2026, 4, 2)) is False
    assert workflow.is_selectable(date(2026, 2, 28)) is False

    with pytest.raises(ValidationError):
        workflow.select_dates(date(2026, 4, 2))
    with pytest.raises(ValidationError):
        workflow.select_dates(date(2026, 4, 1), date(2026, 4, 4))
    with pytest.raises(ValidationError):
        workflow.select_dates(date(2026, 2, 20), date(2026, 2, 22))

    # A stay ending on the blocked day is fine; the check-out night is not occupied
    workflow.select_dates(date(2026, 3, 30), date(2026, 4, 2))
    assert workflow.state == WorkflowState.REVIEWING_PRICING


def test_range_check_reaches_past_lookahead(
    workflow: BookingWorkflow, sample_property: Property, db_session: Session
):
    db_session.add(AvailabilityEntry(property_id=sample_property.id, date=date(2026, 7, 2), status="booked"))
    db_session.commit()
    workflow.select_property(sample_property)
    assert date(2026, 7, 2) not in workflow.unavailable_dates

    with pytest.raises(ValidationError):
        workflow.select_dates(date(2026, 7, 1), date(2026, 7, 4))

    assert workflow.is_selectable(date(2026, 7, 2)) is False
    assert workflow.check_in is None


def test_guest_count_bounds(workflow: BookingWorkflow, sample_property: Property):
    with pytest.raises(ValidationError):
        workflow.set_guest_count(2)

    workflow.select_property(sample_property)
    with pytest.raises(ValidationError):
        workflow.set_guest_count(0)
    with pytest.raises(ValidationError):
        workflow.set_guest_count(5)


def test_cannot_skip_to_guest_info(workflow: BookingWorkflow, sample_property: Property):
    with pytest.raises(ValidationError):
        workflow.begin_guest_info()

    workflow.select_property(sample_property)
    workflow.select_dates(date(2026, 4, 1))
    with pytest.raises(ValidationError):
        workflow.submit(GUEST)


def test_missing_guest_fields_stay_on_form(
    workflow: BookingWorkflow, sample_property: Property, db_session: Session
):
    workflow.select_property(sample_property)
    workflow.select_dates(date(2026, 4, 1), date(2026, 4, 3))

    incomplete = GuestInfo(customer_name="Jane", customer_email="jane@example.com", customer_phone="")
    with pytest.raises(ValidationError):
        workflow.submit(incomplete)

    assert workflow.state == WorkflowState.SUBMITTING_GUEST_INFO
    assert "required" in workflow.error
    assert db_session.query(Booking).count() == 0


def test_lost_race_refreshes_availability(
    db_session: Session, sample_property: Property, sample_guest: User
):
    first = BookingWorkflow(db_session, sample_guest.id, today=TODAY)
    second = BookingWorkflow(db_session, sample_guest.id, today=TODAY)
    for wf in (first, second):
        wf.select_property(sample_property)
        wf.select_dates(date(2026, 4, 1), date(2026, 4, 3))

    first.submit(GUEST)
    with pytest.raises(RaceConditionError):
        second.submit(GUEST)

    assert second.state == WorkflowState.SUBMITTING_GUEST_INFO
    assert "no longer available" in second.error
    assert {date(2026, 4, 1), date(2026, 4, 2)} <= second.unavailable_dates
    assert db_session.query(Booking).count() == 1


def test_confirmed_workflow_is_frozen_until_reset(
    workflow: BookingWorkflow, sample_property: Property, db_session: Session
):
    workflow.select_property(sample_property)
    workflow.select_dates(date(2026, 4, 1), date(2026, 4, 3))
    workflow.submit(GUEST)

    with pytest.raises(ValidationError):
        workflow.select_dates(date(2026, 4, 10), date(2026, 4, 12))

    workflow.reset()
    assert workflow.state == WorkflowState.SELECTING_PROPERTY
    assert workflow.property is None
    assert workflow.confirmation is None

    # Reset does not release the reserved nights
    assert db_session.query(AvailabilityEntry).filter(AvailabilityEntry.status == "booked").count() == 2
