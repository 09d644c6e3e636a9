import asyncio
import contextlib
import logging
from contextlib import asynccontextmanager
from datetime import date, datetime, time
from typing import List, Optional

from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import func, select
from sqlalchemy.orm import Session

from lounge.availability import AvailabilityChecker
from lounge.booking_groups import StationPrice, get_booking_group, submit_booking_group
from lounge.config import get_settings
from lounge.database import Base, SessionLocal, engine, get_db
from lounge.dependencies import get_availability_checker, require_admin, require_service_key, require_staff
from lounge.errors import apply_error_handlers
from lounge.events import publish_booking_group_created
from lounge.logging_middleware import add_audit_middleware
from lounge.models import ACTIVE_BOOKING_STATUSES, Booking, BookingStatus, BookingView, Customer, Station, StationType, User
from lounge.rate_limit import apply_rate_limiter, limiter
from lounge.schemas import (
    AvailabilityRequest,
    AvailabilityResponse,
    BookingGroupCreate,
    BookingLookupRead,
    BookingRead,
    CouponRead,
    StationPopularity,
    SweepResult,
    TimeSlotRead,
    normalize_phone,
)
from lounge.sweeper import run_periodic_sweeps, run_sweep
from lounge.timeslots import generate_time_slots, summarize_slots

settings = get_settings()
logger = logging.getLogger(__name__)


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    sweeper_task = None
    if settings.status_sweeper_enabled:
        checker = get_availability_checker()
        sweeper_task = asyncio.create_task(run_periodic_sweeps(SessionLocal, settings, checker.invalidate))
    yield
    if sweeper_task is not None:
        sweeper_task.cancel()
        with contextlib.suppress(asyncio.CancelledError):
            await sweeper_task


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Lounge Bookings Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    apply_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "bookings")
    return fastapi_app


app = create_app()


def _get_booking_or_404(db: Session, booking_id: int) -> Booking:
    booking = db.get(Booking, booking_id)
    if not booking:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking not found")
    return booking


def _lookup_view(booking: Booking) -> BookingLookupRead:
    return BookingLookupRead(
        **BookingRead.model_validate(booking).model_dump(),
        station_name=booking.station.name,
        customer_name=booking.customer.name,
    )


def _run_availability_check(
    db: Session, checker: AvailabilityChecker, availability_in: AvailabilityRequest
) -> AvailabilityResponse:
    result = checker.check(
        db,
        availability_in.station_ids,
        availability_in.booking_date,
        availability_in.start_time,
        availability_in.end_time,
        force_refresh=availability_in.force_refresh,
    )
    return AvailabilityResponse(
        available=result.available,
        available_ids=result.available_ids,
        unavailable_ids=result.unavailable_ids,
        unavailable_stations=result.unavailable_stations,
        degraded=result.degraded,
        warning=result.warning,
    )


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "bookings"}


@app.get("/bookings/time-slots", response_model=List[TimeSlotRead])
@limiter.limit("60/minute")
def list_time_slots(
    request: Request,
    booking_date: date,
    slot_minutes: Optional[int] = Query(None, ge=15, le=480),
    station_type: Optional[StationType] = Query(None, alias="type"),
    db: Session = Depends(get_db),
) -> List[dict]:
    slots = generate_time_slots(
        booking_date,
        settings.opening_time,
        settings.closing_time,
        slot_minutes or settings.default_slot_minutes,
        now=settings.venue_now(),
        buffer_minutes=settings.booking_buffer_minutes,
    )
    stmt = select(Station.id).order_by(Station.id)
    if station_type is not None:
        stmt = stmt.where(Station.type == station_type)
    station_ids = list(db.scalars(stmt).all())
    return summarize_slots(db, booking_date, slots, station_ids)


@app.post("/bookings/availability", response_model=AvailabilityResponse)
@limiter.limit("60/minute")
def check_availability(
    request: Request,
    availability_in: AvailabilityRequest,
    db: Session = Depends(get_db),
    checker: AvailabilityChecker = Depends(get_availability_checker),
) -> AvailabilityResponse:
    return _run_availability_check(db, checker, availability_in)


@app.get("/bookings/availability", response_model=AvailabilityResponse)
@limiter.limit("60/minute")
def check_availability_query(
    request: Request,
    booking_date: date,
    start_time: time,
    end_time: time,
    station_ids: List[int] = Query(...),
    force_refresh: bool = False,
    db: Session = Depends(get_db),
    checker: AvailabilityChecker = Depends(get_availability_checker),
) -> AvailabilityResponse:
    availability_in = AvailabilityRequest(
        booking_date=booking_date,
        start_time=start_time,
        end_time=end_time,
        station_ids=station_ids,
        force_refresh=force_refresh,
    )
    return _run_availability_check(db, checker, availability_in)


@app.post("/bookings/groups", response_model=List[BookingRead], status_code=status.HTTP_201_CREATED)
@limiter.limit("20/minute")
def create_booking_group(
    request: Request,
    group_in: BookingGroupCreate,
    db: Session = Depends(get_db),
    checker: AvailabilityChecker = Depends(get_availability_checker),
) -> List[Booking]:
    bookings = submit_booking_group(
        db,
        customer_id=group_in.customer_id,
        booking_date=group_in.booking_date,
        start_time=group_in.start_time,
        end_time=group_in.end_time,
        duration_minutes=group_in.duration_minutes,
        booking_group_id=group_in.booking_group_id,
        discount_percentage=group_in.discount_percentage,
        stations=[StationPrice(id=station.id, price=station.price) for station in group_in.stations],
        coupon_code=group_in.coupon_code.upper() if group_in.coupon_code else None,
    )
    checker.invalidate(group_in.booking_date)
    publish_booking_group_created(settings, bookings)
    return bookings


@app.get("/bookings/groups/{booking_group_id}", response_model=List[BookingRead])
@limiter.limit("30/minute")
def read_booking_group(
    request: Request,
    booking_group_id: str,
    _: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> List[Booking]:
    bookings = get_booking_group(db, booking_group_id)
    if not bookings:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Booking group not found")
    return bookings


@app.get("/bookings/coupons/{code}", response_model=CouponRead)
@limiter.limit("30/minute")
def get_coupon(request: Request, code: str) -> CouponRead:
    normalized = code.strip().upper()
    percentage = {key.upper(): value for key, value in settings.coupon_codes.items()}.get(normalized)
    if percentage is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Invalid coupon code")
    return CouponRead(code=normalized, discount_percentage=percentage)


@app.get("/bookings/lookup", response_model=List[BookingLookupRead])
@limiter.limit("30/minute")
def lookup_bookings(
    request: Request,
    code: Optional[str] = Query(None, min_length=4, max_length=12),
    phone: Optional[str] = Query(None, min_length=5, max_length=30),
    db: Session = Depends(get_db),
) -> List[BookingLookupRead]:
    """Customer self-service lookup by access code or by phone number."""
    if code:
        view = db.scalars(select(BookingView).where(BookingView.access_code == code.strip().upper())).first()
        if not view:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No booking found for this code")
        view.last_accessed_at = datetime.utcnow()
        db.commit()
        return [_lookup_view(view.booking)]
    if phone:
        customer = db.scalars(select(Customer).where(Customer.phone == normalize_phone(phone))).first()
        if not customer:
            raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No bookings found for this phone number")
        bookings = db.scalars(
            select(Booking)
            .where(Booking.customer_id == customer.id)
            .order_by(Booking.booking_date.desc(), Booking.start_time.desc())
        ).all()
        return [_lookup_view(booking) for booking in bookings]
    raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail="Provide an access code or a phone number")


@app.post("/bookings/lookup/{code}/cancel", response_model=BookingRead)
@limiter.limit("10/minute")
def cancel_by_code(
    request: Request,
    code: str,
    db: Session = Depends(get_db),
    checker: AvailabilityChecker = Depends(get_availability_checker),
) -> Booking:
    view = db.scalars(select(BookingView).where(BookingView.access_code == code.strip().upper())).first()
    if not view:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="No booking found for this code")
    return _cancel(db, view.booking, checker)


@app.get("/bookings", response_model=List[BookingRead])
@limiter.limit("30/minute")
def list_bookings(
    request: Request,
    booking_date: Optional[date] = None,
    booking_status: Optional[BookingStatus] = Query(None, alias="status"),
    customer_id: Optional[int] = None,
    _: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> List[Booking]:
    stmt = select(Booking)
    if booking_date is not None:
        stmt = stmt.where(Booking.booking_date == booking_date)
    if booking_status is not None:
        stmt = stmt.where(Booking.status == booking_status)
    if customer_id is not None:
        stmt = stmt.where(Booking.customer_id == customer_id)
    stmt = stmt.order_by(Booking.booking_date.desc(), Booking.start_time.desc(), Booking.id)
    return list(db.scalars(stmt).all())


@app.get("/bookings/{booking_id}", response_model=BookingRead)
@limiter.limit("30/minute")
def get_booking(
    request: Request,
    booking_id: int,
    _: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> Booking:
    return _get_booking_or_404(db, booking_id)


def _cancel(db: Session, booking: Booking, checker: AvailabilityChecker) -> Booking:
    if booking.status == BookingStatus.CANCELLED:
        return booking
    if booking.status not in ACTIVE_BOOKING_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A {booking.status.value} booking cannot be cancelled",
        )
    booking.status = BookingStatus.CANCELLED
    db.commit()
    db.refresh(booking)
    checker.invalidate(booking.booking_date)
    logger.info("Cancelled booking %s", booking.id)
    return booking


@app.post("/bookings/{booking_id}/cancel", response_model=BookingRead)
@limiter.limit("20/minute")
def cancel_booking(
    request: Request,
    booking_id: int,
    _: User = Depends(require_staff),
    db: Session = Depends(get_db),
    checker: AvailabilityChecker = Depends(get_availability_checker),
) -> Booking:
    return _cancel(db, _get_booking_or_404(db, booking_id), checker)


@app.post("/bookings/{booking_id}/check-in", response_model=BookingRead)
@limiter.limit("20/minute")
def check_in_booking(
    request: Request,
    booking_id: int,
    _: User = Depends(require_staff),
    db: Session = Depends(get_db),
    checker: AvailabilityChecker = Depends(get_availability_checker),
) -> Booking:
    booking = _get_booking_or_404(db, booking_id)
    if booking.checked_in_at is not None:
        raise HTTPException(status_code=status.HTTP_409_CONFLICT, detail="Booking is already checked in")
    if booking.status not in ACTIVE_BOOKING_STATUSES:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail=f"A {booking.status.value} booking cannot be checked in",
        )
    booking.checked_in_at = settings.venue_now()
    booking.status = BookingStatus.IN_PROGRESS
    db.commit()
    db.refresh(booking)
    checker.invalidate(booking.booking_date)
    return booking


@app.delete("/bookings/{booking_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("10/minute")
def delete_booking(
    request: Request,
    booking_id: int,
    current_user: User = Depends(require_admin),
    db: Session = Depends(get_db),
    checker: AvailabilityChecker = Depends(get_availability_checker),
) -> None:
    booking = _get_booking_or_404(db, booking_id)
    booking_date = booking.booking_date
    db.delete(booking)
    db.commit()
    checker.invalidate(booking_date)
    logger.info("Booking %s deleted by %s", booking_id, current_user.username)


@app.post("/bookings/sweep", response_model=SweepResult)
@limiter.limit("10/minute")
def sweep_statuses(
    request: Request,
    _: None = Depends(require_service_key),
    checker: AvailabilityChecker = Depends(get_availability_checker),
) -> SweepResult:
    """Trigger a status sweep, for external schedulers."""
    outcome = run_sweep(SessionLocal, settings, checker.invalidate)
    return SweepResult(**outcome.as_dict())


@app.get("/analytics/stations/popularity", response_model=List[StationPopularity])
@limiter.limit("30/minute")
def station_popularity(
    request: Request,
    limit: int = Query(5, ge=1, le=50),
    _: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> List[StationPopularity]:
    rows = db.execute(
        select(Station.id, Station.name, func.count(Booking.id).label("booking_count"))
        .outerjoin(Booking, (Booking.station_id == Station.id) & (Booking.status != BookingStatus.CANCELLED))
        .group_by(Station.id, Station.name)
        .order_by(func.count(Booking.id).desc(), Station.id)
        .limit(limit)
    ).all()
    return [
        StationPopularity(station_id=station_id, station_name=station_name, booking_count=booking_count)
        for station_id, station_name, booking_count in rows
    ]
