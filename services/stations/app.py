from contextlib import asynccontextmanager
from typing import List, Optional

from circuitbreaker import circuit
from fastapi import Depends, FastAPI, HTTPException, Query, Request, status
from fastapi.middleware.cors import CORSMiddleware
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from lounge.config import get_settings
from lounge.database import Base, engine, get_db
from lounge.dependencies import require_admin, require_staff
from lounge.errors import apply_error_handlers
from lounge.logging_middleware import add_audit_middleware
from lounge.models import Station, StationSession, StationType, User
from lounge.rate_limit import apply_rate_limiter, limiter
from lounge.schemas import (
    SessionClockRead,
    SessionEndRead,
    SessionRead,
    SessionStart,
    StationCreate,
    StationRead,
    StationUpdate,
)
from lounge.session_clock import end_session, get_open_session, session_clock, start_session

settings = get_settings()


@asynccontextmanager
async def lifespan(_: FastAPI):
    if settings.run_db_migrations:
        Base.metadata.create_all(bind=engine)
    yield


def create_app() -> FastAPI:
    fastapi_app = FastAPI(title="Lounge Stations Service", version="1.0.0", lifespan=lifespan)
    fastapi_app.add_middleware(
        CORSMiddleware,
        allow_origins=settings.cors_origins,
        allow_credentials=True,
        allow_methods=["*"],
        allow_headers=["*"],
    )
    apply_rate_limiter(fastapi_app)
    apply_error_handlers(fastapi_app)
    add_audit_middleware(fastapi_app, "stations")
    return fastapi_app


app = create_app()


def _get_station_or_404(db: Session, station_id: int) -> Station:
    station = db.get(Station, station_id)
    if not station:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Station not found")
    return station


DUPLICATE_NAME = "A station with this name already exists"


def _ensure_name_free(db: Session, name: str, exclude_id: Optional[int] = None) -> None:
    stmt = select(Station.id).where(Station.name == name)
    if exclude_id is not None:
        stmt = stmt.where(Station.id != exclude_id)
    if db.scalars(stmt).first() is not None:
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=DUPLICATE_NAME)


def _commit_station(db: Session) -> None:
    try:
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        raise HTTPException(status_code=status.HTTP_400_BAD_REQUEST, detail=DUPLICATE_NAME) from exc


@app.get("/health", tags=["health"])
def health() -> dict[str, str]:
    return {"status": "ok", "service": "stations"}


@app.post("/stations", response_model=StationRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("10/minute")
def add_station(
    request: Request,
    station_in: StationCreate,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Station:
    _ensure_name_free(db, station_in.name)
    station = Station(**station_in.model_dump())
    db.add(station)
    _commit_station(db)
    db.refresh(station)
    return station


@app.get("/stations", response_model=List[StationRead])
@circuit(failure_threshold=5, recovery_timeout=60)
def list_stations(
    request: Request,
    station_type: Optional[StationType] = Query(None, alias="type"),
    occupied: Optional[bool] = None,
    db: Session = Depends(get_db),
) -> List[Station]:
    stmt = select(Station).options(selectinload(Station.sessions)).order_by(Station.id)
    if station_type is not None:
        stmt = stmt.where(Station.type == station_type)
    stations = list(db.scalars(stmt).all())
    if occupied is not None:
        stations = [station for station in stations if station.is_occupied == occupied]
    return stations


@app.get("/stations/{station_id}", response_model=StationRead)
@limiter.limit("60/minute")
def get_station(request: Request, station_id: int, db: Session = Depends(get_db)) -> Station:
    return _get_station_or_404(db, station_id)


@app.put("/stations/{station_id}", response_model=StationRead)
@limiter.limit("15/minute")
def update_station(
    request: Request,
    station_id: int,
    station_update: StationUpdate,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> Station:
    station = _get_station_or_404(db, station_id)
    changes = station_update.model_dump(exclude_unset=True)
    if changes.get("name") is not None and changes["name"] != station.name:
        _ensure_name_free(db, changes["name"], exclude_id=station.id)
    for key, value in changes.items():
        setattr(station, key, value)
    _commit_station(db)
    db.refresh(station)
    return station


@app.delete("/stations/{station_id}", status_code=status.HTTP_204_NO_CONTENT)
@limiter.limit("15/minute")
def delete_station(
    request: Request,
    station_id: int,
    _: User = Depends(require_admin),
    db: Session = Depends(get_db),
) -> None:
    station = _get_station_or_404(db, station_id)
    if station.bookings or station.sessions:
        raise HTTPException(
            status_code=status.HTTP_409_CONFLICT,
            detail="Station has bookings or sessions and cannot be deleted",
        )
    db.delete(station)
    db.commit()


@app.post("/stations/{station_id}/sessions", response_model=SessionRead, status_code=status.HTTP_201_CREATED)
@limiter.limit("30/minute")
def start_station_session(
    request: Request,
    station_id: int,
    session_in: SessionStart,
    _: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> StationSession:
    return start_session(db, station_id, session_in.customer_id, settings.venue_now())


@app.post("/stations/{station_id}/sessions/end", response_model=SessionEndRead)
@limiter.limit("30/minute")
def end_station_session(
    request: Request,
    station_id: int,
    _: User = Depends(require_staff),
    db: Session = Depends(get_db),
) -> SessionEndRead:
    charge = end_session(
        db,
        station_id,
        settings.venue_now(),
        member_discount_percentage=settings.member_discount_percentage,
    )
    return SessionEndRead(
        session=SessionRead.model_validate(charge.session),
        cart_item=charge.cart_item,
        member_discount_applied=charge.member_discount_applied,
    )


@app.get("/stations/{station_id}/clock", response_model=SessionClockRead)
@limiter.limit("120/minute")
def station_clock(request: Request, station_id: int, db: Session = Depends(get_db)) -> SessionClockRead:
    station = _get_station_or_404(db, station_id)
    session = get_open_session(db, station_id)
    if session is None:
        raise HTTPException(status_code=status.HTTP_404_NOT_FOUND, detail="Station has no active session")
    clock = session_clock(session.start_time, station.hourly_rate, settings.venue_now())
    return SessionClockRead(
        station_id=station_id,
        session_id=session.id,
        hours=clock.hours,
        minutes=clock.minutes,
        seconds=clock.seconds,
        elapsed_seconds=clock.elapsed_seconds,
        cost=clock.cost,
    )
