"""Price breakdown for a stay: nightly base, seasonal multipliers, discounts and fees."""

from __future__ import annotations

import logging
from collections.abc import Iterator, Mapping
from dataclasses import dataclass, field
from datetime import date, timedelta

from sqlalchemy.orm import Session

from staybook.config import section
from staybook.models.availability import AvailabilityEntry
from staybook.models.property import ExtendedStayDiscount, Property

logger = logging.getLogger(__name__)

DEFAULT_CLEANING_FEE = 75.0
DEFAULT_SERVICE_FEE_RATE = 0.10


@dataclass(frozen=True)
class PricingBreakdown:
    nights_count: int
    base_price_total: float
    seasonal_adjustment: float
    discount: float
    cleaning_fee: float
    service_fee: float
    total: float
    nightly_prices: dict[date, float] = field(default_factory=dict)  # Nightly base actually used


def iter_nights(check_in: date, check_out: date) -> Iterator[date]:
    """Yield each night of the half-open stay [check_in, check_out)."""
    current = check_in
    while current < check_out:
        yield current
        current += timedelta(days=1)


def month_day_key(day: date) -> str:
    return day.strftime("%m-%d")


def select_discount(
    discounts: list[ExtendedStayDiscount], nights_count: int
) -> ExtendedStayDiscount | None:
    """Pick the rule with the largest minimum_days that the stay reaches.

    Discounts never stack. On equal minimum_days the first rule listed wins.
    """
    applicable = [d for d in discounts if d.minimum_days <= nights_count]
    if not applicable:
        return None
    applicable.sort(key=lambda d: d.minimum_days, reverse=True)
    return applicable[0]


def _cleaning_fee(prop: Property) -> float:
    if prop.cleaning_fee is not None:
        return prop.cleaning_fee
    return section("pricing").get("cleaning_fee", DEFAULT_CLEANING_FEE)


def compute_pricing(
    prop: Property,
    check_in: date | None,
    check_out: date | None,
    guest_count: int = 1,
    nightly_prices: Mapping[date, float] | None = None,
) -> PricingBreakdown | None:
    """Compute the price breakdown for a stay.

    Returns None until both dates are selected and the stay is at least one
    night long. ``nightly_prices`` carries per-night overrides already fetched
    from the calendar; nights without one use ``prop.base_price``.

    Seasonal multipliers are applied per night, keyed by that night's "MM-DD".
    ``guest_count`` does not affect the price.
    """
    if check_in is None or check_out is None:
        return None
    nights_count = (check_out - check_in).days
    if nights_count <= 0:
        return None

    overrides = nightly_prices or {}
    seasonal = prop.seasonal_pricing or {}

    base_price_total = 0.0
    seasonal_adjustment = 0.0
    used: dict[date, float] = {}
    for night in iter_nights(check_in, check_out):
        nightly_base = overrides.get(night)
        if nightly_base is None:
            nightly_base = prop.base_price
        used[night] = nightly_base
        base_price_total += nightly_base

        multiplier = seasonal.get(month_day_key(night), 1)
        seasonal_adjustment += nightly_base * (multiplier - 1)

    discount = 0.0
    rule = select_discount(list(prop.extended_stay_discounts or []), nights_count)
    if rule:
        discount = (base_price_total + seasonal_adjustment) * (rule.discount_percentage / 100)

    cleaning_fee = _cleaning_fee(prop)
    fee_rate = section("pricing").get("service_fee_rate", DEFAULT_SERVICE_FEE_RATE)
    service_fee = (base_price_total + seasonal_adjustment - discount) * fee_rate

    # Rounded to cents; the rounded components add up to the total
    base_price_total = round(base_price_total, 2)
    seasonal_adjustment = round(seasonal_adjustment, 2)
    discount = round(discount, 2)
    cleaning_fee = round(cleaning_fee, 2)
    service_fee = round(service_fee, 2)
    total = base_price_total + seasonal_adjustment - discount + cleaning_fee + service_fee
    logger.debug("Priced property %s: %d nights, total %.2f", prop.id, nights_count, total)

    return PricingBreakdown(
        nights_count=nights_count,
        base_price_total=base_price_total,
        seasonal_adjustment=seasonal_adjustment,
        discount=discount,
        cleaning_fee=cleaning_fee,
        service_fee=service_fee,
        total=round(total, 2),
        nightly_prices=used,
    )


def fetch_nightly_prices(
    session: Session, property_id: int, check_in: date, check_out: date
) -> dict[date, float]:
    """Load per-night price overrides for the nights of a stay."""
    rows = (
        session.query(AvailabilityEntry.date, AvailabilityEntry.price)
        .filter(
            AvailabilityEntry.property_id == property_id,
            AvailabilityEntry.date >= check_in,
            AvailabilityEntry.date < check_out,
            AvailabilityEntry.price.isnot(None),
        )
        .all()
    )
    return {row[0]: row[1] for row in rows}
