"""Property and extended-stay discount models."""

from __future__ import annotations

from datetime import datetime
from enum import Enum
from typing import Optional

from sqlalchemy import JSON, CheckConstraint, Float, ForeignKey, Integer, String, Text
from sqlalchemy.orm import Mapped, mapped_column, relationship, validates

from staybook.database import Base


class PropertyType(str, Enum):
    ROOM = "room"
    APARTMENT = "apartment"
    HOUSE = "house"
    VILLA = "villa"


def _is_month_day(key: str) -> bool:
    # 2000 is a leap year, so "02-29" is accepted
    try:
        datetime.strptime(f"2000-{key}", "%Y-%m-%d")
    except (TypeError, ValueError):
        return False
    return len(key) == 5


class Property(Base):
    __tablename__ = "properties"
    __table_args__ = (CheckConstraint("base_price > 0", name="ck_property_base_price_positive"),)

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    owner_id: Mapped[int | None] = mapped_column(ForeignKey("users.id"), nullable=True)
    name: Mapped[str] = mapped_column(String(200), nullable=False)
    description: Mapped[str | None] = mapped_column(Text, nullable=True)
    location: Mapped[str] = mapped_column(String(500), default="")
    type: Mapped[str] = mapped_column(String(20), default=PropertyType.HOUSE.value)
    base_price: Mapped[float] = mapped_column(Float, nullable=False)  # Per night
    max_guests: Mapped[int] = mapped_column(Integer, default=2)
    bedrooms: Mapped[int] = mapped_column(Integer, default=1)
    bathrooms: Mapped[int] = mapped_column(Integer, default=1)
    amenities: Mapped[list[str]] = mapped_column(JSON, default=list)
    seasonal_pricing: Mapped[dict[str, float]] = mapped_column(JSON, default=dict)  # "MM-DD" -> multiplier
    cleaning_fee: Mapped[float | None] = mapped_column(Float, nullable=True)  # None -> config default

    owner: Mapped[Optional["User"]] = relationship(back_populates="properties")  # noqa: F821
    bookings: Mapped[list["Booking"]] = relationship(back_populates="prop")  # noqa: F821
    extended_stay_discounts: Mapped[list["ExtendedStayDiscount"]] = relationship(
        back_populates="prop", cascade="all, delete-orphan", order_by="ExtendedStayDiscount.id"
    )
    availability: Mapped[list["AvailabilityEntry"]] = relationship(back_populates="prop")  # noqa: F821

    def __repr__(self) -> str:
        return f"<Property id={self.id} name={self.name!r}>"

    @validates("base_price")
    def _validate_base_price(self, key: str, value: float) -> float:
        if value is None or value <= 0:
            raise ValueError(f"base_price must be positive, got {value!r}")
        return value

    @validates("type")
    def _validate_type(self, key: str, value: str) -> str:
        return PropertyType(value).value

    @validates("seasonal_pricing")
    def _validate_seasonal_pricing(self, key: str, value: dict[str, float] | None) -> dict[str, float]:
        value = dict(value or {})
        for month_day, multiplier in value.items():
            if not _is_month_day(month_day):
                raise ValueError(f"Seasonal pricing key must be MM-DD, got {month_day!r}")
            if multiplier is None or multiplier <= 0:
                raise ValueError(f"Seasonal multiplier for {month_day} must be positive")
        return value

    @validates("amenities")
    def _validate_amenities(self, key: str, value: list[str] | None) -> list[str]:
        # Stored as a sorted list; behaves as a set
        return sorted(set(value or []))


class ExtendedStayDiscount(Base):
    __tablename__ = "extended_stay_discounts"
    __table_args__ = (
        CheckConstraint("minimum_days > 0", name="ck_discount_minimum_days"),
        CheckConstraint(
            "discount_percentage > 0 AND discount_percentage <= 100",
            name="ck_discount_percentage_range",
        ),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, autoincrement=True)
    property_id: Mapped[int] = mapped_column(ForeignKey("properties.id"), nullable=False)
    minimum_days: Mapped[int] = mapped_column(Integer, nullable=False)
    discount_percentage: Mapped[float] = mapped_column(Float, nullable=False)

    prop: Mapped["Property"] = relationship(back_populates="extended_stay_discounts")

    def __repr__(self) -> str:
        return f"<ExtendedStayDiscount {self.minimum_days}+ nights -{self.discount_percentage}%>"

    @validates("minimum_days")
    def _validate_minimum_days(self, key: str, value: int) -> int:
        if value is None or value <= 0:
            raise ValueError("minimum_days must be greater than 0")
        return value

    @validates("discount_percentage")
    def _validate_percentage(self, key: str, value: float) -> float:
        if value is None or not 0 < value <= 100:
            raise ValueError("discount_percentage must be in (0, 100]")
        return value
