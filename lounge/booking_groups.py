"""Atomic creation of a booking group: one booking per station, all or nothing."""
from __future__ import annotations

import logging
import secrets
from dataclasses import dataclass
from datetime import date, datetime, time
from typing import List, Optional, Sequence

from sqlalchemy import select
from sqlalchemy.exc import IntegrityError, InterfaceError, OperationalError
from sqlalchemy.orm import Session

from .availability import describe_stations, find_booked_station_ids, validate_slot
from .database import lock_rows
from .errors import BookingValidationError, ConflictError, LoungeError, NotFoundError, TransportError
from .models import Booking, BookingStatus, BookingView, Customer, Station

logger = logging.getLogger(__name__)

ACCESS_CODE_ALPHABET = "ABCDEFGHJKLMNPQRSTUVWXYZ23456789"
ACCESS_CODE_LENGTH = 8


@dataclass(frozen=True)
class StationPrice:
    id: int
    price: float


def compute_final_price(original_price: float, discount_percentage: float) -> float:
    if discount_percentage <= 0:
        return round(original_price, 2)
    return round(original_price * (1 - discount_percentage / 100), 2)


def generate_access_code(length: int = ACCESS_CODE_LENGTH) -> str:
    return "".join(secrets.choice(ACCESS_CODE_ALPHABET) for _ in range(length))


def slot_minutes(start_time: time, end_time: time) -> int:
    start = datetime.combine(date.min, start_time)
    end = datetime.combine(date.min, end_time)
    return int((end - start).total_seconds() // 60)


def validate_group_request(
    *,
    booking_group_id: str,
    start_time: time,
    end_time: time,
    duration_minutes: int,
    discount_percentage: float,
    stations: Sequence[StationPrice],
) -> None:
    if not booking_group_id or not booking_group_id.strip():
        raise BookingValidationError("A booking group id is required")
    if not stations:
        raise BookingValidationError("At least one station is required")
    station_ids = [station.id for station in stations]
    if len(station_ids) != len(set(station_ids)):
        raise BookingValidationError("Each station may only appear once in a booking group")
    validate_slot(start_time, end_time)
    if duration_minutes <= 0:
        raise BookingValidationError("Duration must be positive")
    if duration_minutes != slot_minutes(start_time, end_time):
        raise BookingValidationError("Duration does not match the selected time slot")
    if not 0 <= discount_percentage <= 100:
        raise BookingValidationError("Discount percentage must be between 0 and 100")
    if any(station.price < 0 for station in stations):
        raise BookingValidationError("Station prices cannot be negative")


def get_booking_group(db: Session, booking_group_id: str) -> List[Booking]:
    return list(
        db.scalars(
            select(Booking).where(Booking.booking_group_id == booking_group_id).order_by(Booking.id)
        ).all()
    )


def _matches_request(
    existing: Sequence[Booking],
    customer_id: int,
    booking_date: date,
    start_time: time,
    end_time: time,
    station_ids: Sequence[int],
) -> bool:
    return (
        {booking.station_id for booking in existing} == set(station_ids)
        and all(
            booking.customer_id == customer_id
            and booking.booking_date == booking_date
            and booking.start_time == start_time
            and booking.end_time == end_time
            for booking in existing
        )
    )


def submit_booking_group(
    db: Session,
    *,
    customer_id: int,
    booking_date: date,
    start_time: time,
    end_time: time,
    duration_minutes: int,
    booking_group_id: str,
    discount_percentage: float = 0,
    stations: Sequence[StationPrice],
    coupon_code: Optional[str] = None,
) -> List[Booking]:
    """Check and insert the whole group inside one transaction.

    The requested stations are write-locked before the overlap check, so a
    concurrent submission for any of them waits and then sees this group's
    rows. Any conflict aborts the group; nothing is written.

    Resubmitting an existing ``booking_group_id`` with the same customer, slot
    and stations returns the stored rows; any other reuse is a conflict.
    """
    validate_group_request(
        booking_group_id=booking_group_id,
        start_time=start_time,
        end_time=end_time,
        duration_minutes=duration_minutes,
        discount_percentage=discount_percentage,
        stations=stations,
    )
    station_ids = [station.id for station in stations]

    try:
        locked = lock_rows(db, Station, station_ids)

        existing = get_booking_group(db, booking_group_id)
        if existing:
            if not _matches_request(existing, customer_id, booking_date, start_time, end_time, station_ids):
                raise ConflictError(f"Booking group {booking_group_id} already exists with different details")
            db.rollback()
            logger.info("Booking group %s already stored, returning existing rows", booking_group_id)
            return existing

        if db.get(Customer, customer_id) is None:
            raise NotFoundError("Customer not found")
        missing = set(station_ids) - {station.id for station in locked}
        if missing:
            raise NotFoundError(f"Station(s) not found: {', '.join(str(i) for i in sorted(missing))}")

        booked = find_booked_station_ids(db, booking_date, start_time, end_time, station_ids)
        if booked:
            taken = [station_id for station_id in station_ids if station_id in booked]
            raise ConflictError.for_stations(describe_stations(db, taken))

        bookings = []
        for station in stations:
            booking = Booking(
                customer_id=customer_id,
                station_id=station.id,
                booking_group_id=booking_group_id,
                booking_date=booking_date,
                start_time=start_time,
                end_time=end_time,
                duration_minutes=duration_minutes,
                status=BookingStatus.CONFIRMED,
                coupon_code=coupon_code,
                discount_percentage=discount_percentage,
                original_price=station.price,
                final_price=compute_final_price(station.price, discount_percentage),
            )
            booking.view = BookingView(access_code=generate_access_code())
            bookings.append(booking)
        db.add_all(bookings)
        db.commit()
    except IntegrityError as exc:
        db.rollback()
        logger.warning("Integrity error while creating booking group %s: %s", booking_group_id, exc.orig)
        raise ConflictError(f"Booking group {booking_group_id} could not be stored, it already exists") from exc
    except (OperationalError, InterfaceError) as exc:
        db.rollback()
        raise TransportError("Could not reach the booking store") from exc
    except LoungeError:
        db.rollback()
        raise

    logger.info(
        "Created booking group %s for customer %s: stations=%s date=%s %s-%s",
        booking_group_id,
        customer_id,
        station_ids,
        booking_date,
        start_time,
        end_time,
    )
    return bookings
