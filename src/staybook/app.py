"""FastAPI application exposing the booking widget and owner dashboard API."""

from __future__ import annotations

import logging
from contextlib import asynccontextmanager
from dataclasses import asdict
from datetime import date, time, timedelta

from fastapi import Depends, FastAPI, Header, HTTPException, Query, Request
from fastapi.encoders import jsonable_encoder
from fastapi.responses import JSONResponse
from pydantic import BaseModel
from sqlalchemy.orm import Session

from staybook.auth.permissions import ensure_owner
from staybook.auth.session import AuthProvider, HttpAuthProvider, resolve_user
from staybook.config import section, settings
from staybook.database import get_session, init_db
from staybook.errors import (
    AuthorizationError,
    RaceConditionError,
    TransientStoreError,
    ValidationError,
)
from staybook.models.booking import Booking
from staybook.models.property import ExtendedStayDiscount, Property
from staybook.models.service import Service
from staybook.models.user import User
from staybook.modules.availability.nights import (
    block_dates,
    fetch_unavailable_dates,
    get_month_calendar,
    set_date_price,
    set_date_status,
)
from staybook.modules.booking.submission import GuestInfo, submit_booking
from staybook.modules.dashboard.actions import change_booking_status, update_pricing
from staybook.modules.dashboard.activity import recent_activity
from staybook.modules.dashboard.metrics import compute_dashboard_metrics, revenue_by_month
from staybook.modules.pricing.calculator import compute_pricing, fetch_nightly_prices
from staybook.modules.services.slots import get_time_slots, submit_service_booking
from staybook.modules.widget.embed import WidgetConfig, render_embed_code
from staybook.scheduler import create_scheduler

logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(app: FastAPI):
    """Startup and shutdown events."""
    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    logger.info("Starting StayBook...")
    init_db()
    seed_properties_from_config()

    scheduler = create_scheduler()
    scheduler.start()
    logger.info("Scheduler started.")

    yield

    scheduler.shutdown()
    logger.info("StayBook shut down.")


app = FastAPI(title="StayBook", lifespan=lifespan)


def seed_properties_from_config() -> None:
    """Seed properties (and their owners) from config.yaml if not already in DB."""
    session = get_session()
    try:
        for prop_cfg in settings.get("properties", []):
            existing = (
                session.query(Property).filter(Property.name == prop_cfg["name"]).first()
            )
            if existing:
                continue

            owner = None
            owner_email = prop_cfg.get("owner_email")
            if owner_email:
                owner = session.query(User).filter(User.email == owner_email).first()
                if owner is None:
                    owner = User(email=owner_email)
                    session.add(owner)

            prop = Property(
                owner=owner,
                name=prop_cfg["name"],
                description=prop_cfg.get("description"),
                location=prop_cfg.get("location", ""),
                type=prop_cfg.get("type", "house"),
                base_price=prop_cfg.get("base_price", 100.0),
                max_guests=prop_cfg.get("max_guests", 2),
                bedrooms=prop_cfg.get("bedrooms", 1),
                bathrooms=prop_cfg.get("bathrooms", 1),
                amenities=prop_cfg.get("amenities", []),
                seasonal_pricing=prop_cfg.get("seasonal_pricing", {}),
                cleaning_fee=prop_cfg.get("cleaning_fee"),
                extended_stay_discounts=[
                    ExtendedStayDiscount(
                        minimum_days=d["minimum_days"],
                        discount_percentage=d["discount_percentage"],
                    )
                    for d in prop_cfg.get("extended_stay_discounts", [])
                ],
            )
            session.add(prop)
            session.commit()
            logger.info("Seeded property: %s", prop.name)
    finally:
        session.close()


# --- Error handling ---


def _error_response(status_code: int, exc: Exception) -> JSONResponse:
    return JSONResponse(status_code=status_code, content={"error": str(exc)})


@app.exception_handler(ValidationError)
async def handle_validation_error(request: Request, exc: ValidationError):
    return _error_response(422, exc)


@app.exception_handler(AuthorizationError)
async def handle_authorization_error(request: Request, exc: AuthorizationError):
    return _error_response(403, exc)


@app.exception_handler(RaceConditionError)
async def handle_race_condition(request: Request, exc: RaceConditionError):
    return _error_response(409, exc)


@app.exception_handler(TransientStoreError)
async def handle_transient_error(request: Request, exc: TransientStoreError):
    return _error_response(503, exc)


# --- Dependencies ---


def db_session():
    session = get_session()
    try:
        yield session
    finally:
        session.close()


_auth_provider: HttpAuthProvider | None = None


def get_auth_provider() -> AuthProvider:
    global _auth_provider
    if _auth_provider is None:
        _auth_provider = HttpAuthProvider()
    return _auth_provider


def current_user_id(
    authorization: str | None = Header(default=None),
    session: Session = Depends(db_session),
    provider: AuthProvider = Depends(get_auth_provider),
) -> int:
    """Local user id behind the caller's Bearer token."""
    scheme, _, token = (authorization or "").partition(" ")
    if scheme.lower() != "bearer" or not token:
        raise HTTPException(status_code=401, detail="You must be logged in")
    try:
        user = resolve_user(session, provider, token)
    except AuthorizationError as exc:
        raise HTTPException(status_code=401, detail=str(exc)) from exc
    return user.id


def _get_property(session: Session, property_id: int) -> Property:
    prop = session.get(Property, property_id)
    if prop is None:
        raise HTTPException(status_code=404, detail="Property not found")
    return prop


def _property_dict(prop: Property) -> dict:
    return {
        "id": prop.id,
        "name": prop.name,
        "description": prop.description,
        "location": prop.location,
        "type": prop.type,
        "base_price": prop.base_price,
        "max_guests": prop.max_guests,
        "bedrooms": prop.bedrooms,
        "bathrooms": prop.bathrooms,
        "amenities": prop.amenities,
        "seasonal_pricing": prop.seasonal_pricing,
        "cleaning_fee": prop.cleaning_fee,
        "extended_stay_discounts": [
            {"minimum_days": d.minimum_days, "discount_percentage": d.discount_percentage}
            for d in prop.extended_stay_discounts
        ],
    }


def _booking_dict(booking: Booking) -> dict:
    return {
        "id": booking.id,
        "property_id": booking.property_id,
        "check_in": booking.check_in,
        "check_out": booking.check_out,
        "guest_count": booking.guest_count,
        "customer_name": booking.customer_name,
        "customer_email": booking.customer_email,
        "customer_phone": booking.customer_phone,
        "status": booking.status,
        "base_price": booking.base_price,
        "seasonal_adjustment": booking.seasonal_adjustment,
        "discount": booking.discount,
        "cleaning_fee": booking.cleaning_fee,
        "service_fee": booking.service_fee,
        "total_price": booking.total_price,
    }


# --- Request bodies ---


class GuestFields(BaseModel):
    customer_name: str = ""
    customer_email: str = ""
    customer_phone: str = ""
    special_requests: str | None = None

    def to_guest(self) -> GuestInfo:
        return GuestInfo(
            customer_name=self.customer_name,
            customer_email=self.customer_email,
            customer_phone=self.customer_phone,
            special_requests=self.special_requests,
        )


class BookingRequest(GuestFields):
    property_id: int
    check_in: date
    check_out: date
    guest_count: int = 1


class ServiceBookingRequest(GuestFields):
    service_id: int
    day: date
    start_time: time


class StatusUpdate(BaseModel):
    status: str


class PriceUpdate(BaseModel):
    price: float


class BlockRequest(BaseModel):
    start: date
    days: int = 1


class DiscountRule(BaseModel):
    minimum_days: int
    discount_percentage: float


class PricingUpdate(BaseModel):
    base_price: float | None = None
    cleaning_fee: float | None = None
    seasonal_pricing: dict[str, float] | None = None
    extended_stay_discounts: list[DiscountRule] | None = None


class WidgetRequest(BaseModel):
    property_ids: list[int]
    title: str = "Book Your Stay"
    subtitle: str = "Select a property, dates, and complete your booking"
    primary_color: str = "#0EA5E9"
    secondary_color: str = "#D3E4FD"
    allow_special_requests: bool = True
    border_radius: str = "1rem"
    font_family: str | None = None


# --- Widget routes ---


@app.get("/api/health")
async def health():
    return {"app": "StayBook", "status": "ok"}


@app.get("/api/properties")
def list_properties(session: Session = Depends(db_session)):
    """Properties offered in the widget."""
    properties = session.query(Property).order_by(Property.name).all()
    return [_property_dict(p) for p in properties]


@app.get("/api/properties/{property_id}/unavailable-dates")
def unavailable_dates(
    property_id: int,
    start: date | None = None,
    end: date | None = None,
    session: Session = Depends(db_session),
):
    """Nights the widget must not offer."""
    prop = _get_property(session, property_id)
    start = start or date.today()
    end = end or start + timedelta(days=section("availability").get("lookahead_days", 90))
    dates = fetch_unavailable_dates(session, prop.id, start, end)
    return {"property_id": prop.id, "dates": sorted(d.isoformat() for d in dates)}


@app.get("/api/properties/{property_id}/quote")
def quote(
    property_id: int,
    check_in: date | None = None,
    check_out: date | None = None,
    guest_count: int = Query(default=1),
    session: Session = Depends(db_session),
):
    """Price breakdown for a stay; ``pricing`` is null until the range is valid."""
    prop = _get_property(session, property_id)
    nightly_prices = None
    if check_in and check_out and check_out > check_in:
        nightly_prices = fetch_nightly_prices(session, prop.id, check_in, check_out)
    pricing = compute_pricing(prop, check_in, check_out, guest_count, nightly_prices)
    return jsonable_encoder({"property_id": prop.id, "pricing": pricing})


@app.post("/api/bookings", status_code=201)
def create_booking(
    body: BookingRequest,
    user_id: int = Depends(current_user_id),
    session: Session = Depends(db_session),
):
    prop = _get_property(session, body.property_id)
    confirmation = submit_booking(
        session,
        prop,
        user_id,
        body.check_in,
        body.check_out,
        body.guest_count,
        body.to_guest(),
    )
    return jsonable_encoder(confirmation)


@app.get("/api/services")
def list_services(session: Session = Depends(db_session)):
    services = session.query(Service).filter(Service.is_active.is_(True)).order_by(Service.name).all()
    return [
        {
            "id": s.id,
            "name": s.name,
            "description": s.description,
            "duration_minutes": s.duration_minutes,
            "price": s.price,
        }
        for s in services
    ]


@app.get("/api/services/{service_id}/slots")
def service_slots(service_id: int, day: date, session: Session = Depends(db_session)):
    service = session.get(Service, service_id)
    if service is None:
        raise HTTPException(status_code=404, detail="Service not found")
    slots = get_time_slots(session, service, day)
    return jsonable_encoder([{"id": s.id, **asdict(s)} for s in slots])


@app.post("/api/service-bookings", status_code=201)
def create_service_booking(
    body: ServiceBookingRequest,
    user_id: int = Depends(current_user_id),
    session: Session = Depends(db_session),
):
    service = session.get(Service, body.service_id)
    if service is None:
        raise HTTPException(status_code=404, detail="Service not found")
    confirmation = submit_service_booking(
        session, service, user_id, body.day, body.start_time, body.to_guest()
    )
    return jsonable_encoder(confirmation)


# --- Dashboard routes ---


@app.get("/api/dashboard/metrics")
def dashboard_metrics(
    user_id: int = Depends(current_user_id),
    session: Session = Depends(db_session),
):
    return jsonable_encoder(compute_dashboard_metrics(session, owner_id=user_id))


@app.get("/api/dashboard/revenue")
def dashboard_revenue(
    year: int | None = None,
    user_id: int = Depends(current_user_id),
    session: Session = Depends(db_session),
):
    year = year or date.today().year
    return jsonable_encoder(revenue_by_month(session, year, owner_id=user_id))


@app.get("/api/dashboard/activity")
def dashboard_activity(
    limit: int = Query(default=10),
    user_id: int = Depends(current_user_id),
    session: Session = Depends(db_session),
):
    items = recent_activity(session, owner_id=user_id, limit=limit)
    return [
        {
            "id": i.id,
            "type": i.type,
            "message": i.message,
            "property_id": i.property_id,
            "booking_id": i.booking_id,
            "timestamp": i.timestamp.isoformat(),
        }
        for i in items
    ]


@app.get("/api/dashboard/bookings")
def dashboard_bookings(
    status: str | None = None,
    property_id: int | None = None,
    user_id: int = Depends(current_user_id),
    session: Session = Depends(db_session),
):
    """Bookings across the caller's properties, newest check-in first."""
    query = (
        session.query(Booking)
        .join(Property, Booking.property_id == Property.id)
        .filter(Property.owner_id == user_id)
    )
    if status:
        query = query.filter(Booking.status == status.upper())
    if property_id:
        query = query.filter(Booking.property_id == property_id)
    bookings = query.order_by(Booking.check_in.desc()).limit(50).all()
    return jsonable_encoder([_booking_dict(b) for b in bookings])


@app.post("/api/dashboard/bookings/{booking_id}/status")
def update_booking_status(
    booking_id: int,
    body: StatusUpdate,
    user_id: int = Depends(current_user_id),
    session: Session = Depends(db_session),
):
    booking = change_booking_status(session, booking_id, body.status.upper(), user_id)
    return jsonable_encoder(_booking_dict(booking))


@app.get("/api/dashboard/properties/{property_id}/calendar")
def property_calendar(
    property_id: int,
    year: int | None = None,
    month: int | None = None,
    user_id: int = Depends(current_user_id),
    session: Session = Depends(db_session),
):
    prop = _get_property(session, property_id)
    ensure_owner(prop, user_id)
    today = date.today()
    days = get_month_calendar(session, prop, year or today.year, month or today.month)
    return jsonable_encoder(days)


@app.post("/api/dashboard/properties/{property_id}/calendar/{day}/status")
def update_day_status(
    property_id: int,
    day: date,
    body: StatusUpdate,
    user_id: int = Depends(current_user_id),
    session: Session = Depends(db_session),
):
    prop = _get_property(session, property_id)
    entry = set_date_status(session, prop, day, body.status.lower(), user_id)
    return {"date": entry.date.isoformat(), "status": entry.status, "price": entry.price}


@app.post("/api/dashboard/properties/{property_id}/calendar/{day}/price")
def update_day_price(
    property_id: int,
    day: date,
    body: PriceUpdate,
    user_id: int = Depends(current_user_id),
    session: Session = Depends(db_session),
):
    prop = _get_property(session, property_id)
    entry = set_date_price(session, prop, day, body.price, user_id)
    return {"date": entry.date.isoformat(), "status": entry.status, "price": entry.price}


@app.post("/api/dashboard/properties/{property_id}/block")
def block_property_dates(
    property_id: int,
    body: BlockRequest,
    user_id: int = Depends(current_user_id),
    session: Session = Depends(db_session),
):
    prop = _get_property(session, property_id)
    entries = block_dates(session, prop, body.start, body.days, user_id)
    return {"blocked": [e.date.isoformat() for e in entries]}


@app.put("/api/dashboard/properties/{property_id}/pricing")
def update_property_pricing(
    property_id: int,
    body: PricingUpdate,
    user_id: int = Depends(current_user_id),
    session: Session = Depends(db_session),
):
    prop = _get_property(session, property_id)
    discounts = None
    if body.extended_stay_discounts is not None:
        discounts = [d.model_dump() for d in body.extended_stay_discounts]
    prop = update_pricing(
        session,
        prop,
        user_id,
        base_price=body.base_price,
        cleaning_fee=body.cleaning_fee,
        seasonal_pricing=body.seasonal_pricing,
        extended_stay_discounts=discounts,
    )
    return _property_dict(prop)


@app.post("/api/dashboard/widget/embed-code")
def widget_embed_code(body: WidgetRequest, user_id: int = Depends(current_user_id)):
    code = render_embed_code(WidgetConfig(**body.model_dump()))
    return {"code": code}


def main() -> None:
    """Entry point for running the app."""
    import uvicorn

    logging.basicConfig(
        level=logging.INFO,
        format="%(asctime)s [%(levelname)s] %(name)s: %(message)s",
    )
    init_db()
    logger.info("Database initialized.")

    uvicorn.run(
        "staybook.app:app",
        host="127.0.0.1",
        port=8000,
        reload=True,
    )


if __name__ == "__main__":
    main()
