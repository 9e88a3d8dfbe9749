"""Booking session state machine driven by the widget."""

from __future__ import annotations

import logging
from datetime import date, timedelta
from enum import Enum

from sqlalchemy.orm import Session

from staybook.config import section
from staybook.errors import RaceConditionError, StayBookError, ValidationError
from staybook.models.property import Property
from staybook.modules.availability.nights import (
    fetch_unavailable_dates,
    find_unavailable_nights,
    is_date_blocked,
)
from staybook.modules.booking.confirmation import PropertyConfirmation
from staybook.modules.booking.submission import GuestInfo, submit_booking
from staybook.modules.pricing.calculator import (
    PricingBreakdown,
    compute_pricing,
    fetch_nightly_prices,
)

logger = logging.getLogger(__name__)


class WorkflowState(str, Enum):
    SELECTING_PROPERTY = "selecting_property"
    SELECTING_DATES = "selecting_dates"
    REVIEWING_PRICING = "reviewing_pricing"
    SUBMITTING_GUEST_INFO = "submitting_guest_info"
    CONFIRMED = "confirmed"


class DateSelection(str, Enum):
    EMPTY = "empty"
    PARTIAL = "partial"  # Check-in only
    COMPLETE = "complete"


class BookingWorkflow:
    """Holds the transient state of one customer's booking session.

    Pricing is recomputed explicitly whenever the property, the dates or the
    guest count change. Nothing is persisted until ``submit``.
    """

    def __init__(self, session: Session, user_id: int, today: date | None = None) -> None:
        self._session = session
        self._user_id = user_id
        self._today = today
        self._lookahead = section("availability").get("lookahead_days", 90)
        self._clear()

    def _clear(self) -> None:
        self.state = WorkflowState.SELECTING_PROPERTY
        self.property: Property | None = None
        self.check_in: date | None = None
        self.check_out: date | None = None
        self.guest_count = 1
        self.pricing: PricingBreakdown | None = None
        self.unavailable_dates: set[date] = set()
        self.nightly_prices: dict[date, float] = {}
        self.confirmation: PropertyConfirmation | None = None
        self.error: str | None = None

    @property
    def today(self) -> date:
        return self._today or date.today()

    @property
    def date_selection(self) -> DateSelection:
        if self.check_in is None:
            return DateSelection.EMPTY
        if self.check_out is None:
            return DateSelection.PARTIAL
        return DateSelection.COMPLETE

    def _ensure_not_confirmed(self) -> None:
        if self.state == WorkflowState.CONFIRMED:
            raise ValidationError("This booking is already confirmed. Start a new booking first.")

    def select_property(self, prop: Property) -> None:
        """Choose a property; clears any date selection and loads its unavailable nights."""
        self._ensure_not_confirmed()
        self.property = prop
        self.check_in = None
        self.check_out = None
        self.guest_count = 1
        self.nightly_prices = {}
        self.error = None
        self.refresh_availability()
        self._recompute()

    def refresh_availability(self) -> None:
        if self.property is None:
            return
        self.unavailable_dates = fetch_unavailable_dates(
            self._session,
            self.property.id,
            self.today,
            self.today + timedelta(days=self._lookahead),
        )

    def is_selectable(self, day: date) -> bool:
        return not is_date_blocked(day, self.unavailable_dates, today=self.today)

    def select_dates(self, check_in: date | None = None, check_out: date | None = None) -> None:
        """Set the stay. Passing only ``check_in`` is a valid partial selection."""
        self._ensure_not_confirmed()
        if self.property is None:
            raise ValidationError("Please select a property first")
        if check_in is None and check_out is not None:
            raise ValidationError("Please select a check-in date first")
        if check_in is not None and not self.is_selectable(check_in):
            raise ValidationError(f"{check_in} is not available")
        if check_in is not None and check_out is not None:
            if check_out <= check_in:
                raise ValidationError("Check-out must be after check-in")
            # Fresh read; the cached window stops at the lookahead
            taken = sorted(find_unavailable_nights(self._session, self.property.id, check_in, check_out))
            if taken:
                self.unavailable_dates.update(taken)
                raise ValidationError(f"The selected range includes unavailable dates: {taken[0]}")
            self.nightly_prices = fetch_nightly_prices(
                self._session, self.property.id, check_in, check_out
            )
        else:
            self.nightly_prices = {}

        self.check_in = check_in
        self.check_out = check_out
        self._recompute()

    def clear_dates(self) -> None:
        self.select_dates(None, None)

    def set_guest_count(self, guest_count: int) -> None:
        self._ensure_not_confirmed()
        if self.property is None:
            raise ValidationError("Please select a property first")
        if guest_count < 1 or guest_count > self.property.max_guests:
            raise ValidationError(f"Guest count must be between 1 and {self.property.max_guests}")
        self.guest_count = guest_count
        self._recompute()

    def _recompute(self) -> None:
        if self.property is None:
            self.pricing = None
            self.state = WorkflowState.SELECTING_PROPERTY
            return
        self.pricing = compute_pricing(
            self.property, self.check_in, self.check_out, self.guest_count, self.nightly_prices
        )
        self.state = WorkflowState.REVIEWING_PRICING if self.pricing else WorkflowState.SELECTING_DATES

    def begin_guest_info(self) -> None:
        """Move on from the price review to the guest details form."""
        if self.state not in (WorkflowState.REVIEWING_PRICING, WorkflowState.SUBMITTING_GUEST_INFO):
            raise ValidationError("Please select a property and dates before booking")
        self.state = WorkflowState.SUBMITTING_GUEST_INFO

    def submit(self, guest: GuestInfo) -> PropertyConfirmation:
        """Persist the booking. On failure the workflow stays on the guest form."""
        self.begin_guest_info()
        try:
            confirmation = submit_booking(
                self._session,
                self.property,
                self._user_id,
                self.check_in,
                self.check_out,
                self.guest_count,
                guest,
                nightly_prices=self.nightly_prices,
                today=self.today,
            )
        except RaceConditionError as exc:
            self.error = str(exc)
            self.refresh_availability()
            raise
        except StayBookError as exc:
            self.error = str(exc)
            raise

        self.error = None
        self.confirmation = confirmation
        self.state = WorkflowState.CONFIRMED
        return confirmation

    def reset(self) -> None:
        """Start over ("book another"). Reserved nights stay reserved."""
        logger.debug("Resetting booking workflow from %s", self.state.value)
        self._clear()
