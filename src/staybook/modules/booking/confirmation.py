"""Booking confirmations returned to the widget."""

from __future__ import annotations

from dataclasses import dataclass
from datetime import date, time
from typing import Literal, Union


@dataclass(frozen=True)
class PropertyConfirmation:
    booking_id: int
    customer_name: str
    property_name: str
    check_in: date
    check_out: date
    guest_count: int
    total_price: float
    kind: Literal["property"] = "property"

    @property
    def nights(self) -> int:
        return (self.check_out - self.check_in).days


@dataclass(frozen=True)
class ServiceConfirmation:
    booking_id: int
    customer_name: str
    service_name: str
    date: date
    start_time: time
    end_time: time
    price: float
    total_price: float
    kind: Literal["service"] = "service"


Confirmation = Union[PropertyConfirmation, ServiceConfirmation]
