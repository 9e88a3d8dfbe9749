"""Shared test fixtures."""

from __future__ import annotations

import os
from datetime import date

import pytest
from sqlalchemy import create_engine
from sqlalchemy.orm import Session, sessionmaker

# Set test environment before importing app modules
os.environ["DATABASE_URL"] = "sqlite://"  # In-memory DB for tests

from staybook.database import Base
from staybook.events import EventBus
from staybook.models.booking import Booking, BookingStatus
from staybook.models.property import Property
from staybook.models.user import User

# Import all models to register them
import staybook.models  # noqa: F401


@pytest.fixture
def db_session():
    """Create a fresh in-memory database for each test."""
    engine = create_engine("sqlite://", echo=False)
    Base.metadata.create_all(engine)
    session_factory = sessionmaker(bind=engine)
    session = session_factory()
    yield session
    session.close()
    engine.dispose()


@pytest.fixture
def sample_owner(db_session: Session) -> User:
    owner = User(email="owner@example.com", name="Olivia Owner")
    db_session.add(owner)
    db_session.commit()
    return owner


@pytest.fixture
def sample_guest(db_session: Session) -> User:
    guest = User(email="guest@example.com", name="Gary Guest")
    db_session.add(guest)
    db_session.commit()
    return guest


@pytest.fixture
def sample_property(db_session: Session, sample_owner: User) -> Property:
    """A 100/night house owned by sample_owner, no seasonal pricing or discounts."""
    prop = Property(
        owner_id=sample_owner.id,
        name="Test Loft",
        location="123 Test St",
        type="apartment",
        base_price=100.0,
        max_guests=4,
        bedrooms=1,
        bathrooms=1,
    )
    db_session.add(prop)
    db_session.commit()
    return prop


@pytest.fixture
def sample_booking(db_session: Session, sample_property: Property, sample_guest: User) -> Booking:
    booking = Booking(
        property_id=sample_property.id,
        user_id=sample_guest.id,
        check_in=date(2026, 3, 10),
        check_out=date(2026, 3, 14),
        guest_count=2,
        customer_name="John Doe",
        customer_email="john@example.com",
        customer_phone="+15551234567",
        status=BookingStatus.CONFIRMED.value,
        base_price=400.0,
        cleaning_fee=75.0,
        service_fee=40.0,
        total_price=515.0,
    )
    db_session.add(booking)
    db_session.commit()
    return booking


@pytest.fixture
def event_bus():
    """Create a fresh event bus for each test."""
    return EventBus()
