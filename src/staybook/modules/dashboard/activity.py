"""Recent activity feed, recorded from booking and property events."""

from __future__ import annotations

import logging

from sqlalchemy.orm import Session

from staybook.database import get_session
from staybook.events import Event, EventType, event_bus
from staybook.models.activity import ActivityItem

logger = logging.getLogger(__name__)

MESSAGES = {
    EventType.BOOKING_CREATED: "New booking for {property_name} from {customer_name}",
    EventType.BOOKING_CONFIRMED: "Booking #{booking_id} for {property_name} was confirmed",
    EventType.BOOKING_CANCELED: "Booking #{booking_id} for {property_name} was canceled",
    EventType.BOOKING_COMPLETED: "Booking #{booking_id} for {property_name} was completed",
    EventType.SERVICE_BOOKING_CREATED: "New {service_name} booking from {customer_name}",
    EventType.DATES_BLOCKED: "Blocked {days} days of {property_name} from {start}",
    EventType.PROPERTY_UPDATED: "Updated pricing for {property_name}",
}


class ActivityRecorder:
    """Writes an ActivityItem for every dashboard-relevant event."""

    def setup_event_handlers(self) -> None:
        for event_type in MESSAGES:
            event_bus.subscribe(event_type, self._on_event)

    def _on_event(self, event: Event) -> None:
        template = MESSAGES.get(event.event_type)
        if template is None:
            return
        try:
            message = template.format(**event.data)
        except KeyError:
            logger.warning("Missing data for %s activity: %s", event.event_type.value, event.data)
            message = event.event_type.value.replace("_", " ").capitalize()

        session = get_session()
        try:
            session.add(ActivityItem(
                owner_id=event.data.get("owner_id"),
                type=event.event_type.value,
                message=message,
                property_id=event.data.get("property_id"),
                booking_id=event.data.get("booking_id"),
                timestamp=event.timestamp,
            ))
            session.commit()
        finally:
            session.close()


def recent_activity(session: Session, owner_id: int | None = None, limit: int = 10) -> list[ActivityItem]:
    query = session.query(ActivityItem)
    if owner_id is not None:
        query = query.filter(ActivityItem.owner_id == owner_id)
    return query.order_by(ActivityItem.timestamp.desc(), ActivityItem.id.desc()).limit(limit).all()
