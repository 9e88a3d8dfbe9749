"""Per-night availability model."""

from __future__ import annotations

from datetime import date, datetime, timezone
from enum import Enum

from sqlalchemy import Date, DateTime, Float, ForeignKey, Integer, String, UniqueConstraint
from sqlalchemy.orm import Mapped, mapped_column, relationship

from staybook.database import Base


class AvailabilityStatus(str, Enum):
    AVAILABLE = "available"
    BOOKED = "booked"
    BLOCKED = "blocked"
    PENDING = "pending"


# Statuses that make a night unselectable in the widget. Pending nights are
# held by a booking awaiting confirmation, so they count too.
UNAVAILABLE_STATUSES = frozenset(
    {AvailabilityStatus.BOOKED.value, AvailabilityStatus.BLOCKED.value, AvailabilityStatus.PENDING.value}
)

# Statuses that must carry a booking_id
HELD_STATUSES = frozenset({AvailabilityStatus.BOOKED.value, AvailabilityStatus.PENDING.value})


class AvailabilityEntry(Base):
    __tablename__ = "property_availability"
    __table_args__ = (UniqueConstraint("property_id", "date", name="uq_availability_property_date"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    property_id: Mapped[int] = mapped_column(ForeignKey("properties.id"), nullable=False)
    date: Mapped[date] = mapped_column(Date, nullable=False)
    status: Mapped[str] = mapped_column(String(20), default=AvailabilityStatus.AVAILABLE.value)
    price: Mapped[float | None] = mapped_column(Float, nullable=True)  # Owner override only
    # Nightly price charged by the holding booking; cleared on release
    booked_price: Mapped[float | None] = mapped_column(Float, nullable=True)
    booking_id: Mapped[int | None] = mapped_column(ForeignKey("bookings.id"), nullable=True)
    updated_at: Mapped[datetime] = mapped_column(
        DateTime,
        default=lambda: datetime.now(timezone.utc),
        onupdate=lambda: datetime.now(timezone.utc),
    )

    prop: Mapped["Property"] = relationship(back_populates="availability")  # noqa: F821

    def __repr__(self) -> str:
        return f"<AvailabilityEntry property_id={self.property_id} {self.date} {self.status}>"

    @property
    def is_unavailable(self) -> bool:
        return self.status in UNAVAILABLE_STATUSES
