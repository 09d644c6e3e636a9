"""Live clock and billing for walk-in station sessions."""
from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import date, datetime
from decimal import ROUND_CEILING, ROUND_HALF_UP, Decimal
from typing import Optional

from sqlalchemy import select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session

from .database import lock_rows
from .errors import ConflictError, LoungeError, NotFoundError, TransportError
from .models import Customer, Station, StationSession

logger = logging.getLogger(__name__)

MS_PER_HOUR = Decimal(3_600_000)
MS_PER_MINUTE = Decimal(60_000)


@dataclass(frozen=True)
class SessionClock:
    hours: int
    minutes: int
    seconds: int
    elapsed_seconds: int
    cost: int


@dataclass(frozen=True)
class SessionCharge:
    session: StationSession
    cart_item: dict
    member_discount_applied: bool


def _elapsed_ms(start_time: datetime, now: datetime) -> int:
    delta = now - start_time
    return max(0, (delta.days * 86_400 + delta.seconds) * 1000 + delta.microseconds // 1000)


def _ceil(value: Decimal) -> int:
    return int(value.to_integral_value(rounding=ROUND_CEILING))


def session_clock(start_time: datetime, hourly_rate: float, now: datetime) -> SessionClock:
    """Elapsed time and running cost of a session.

    ``cost = ceil(elapsed_ms / 3_600_000 * hourly_rate)``, evaluated in decimal so
    the cost never goes down as ``now`` advances. A ``now`` before the start
    reads as zero.
    """
    elapsed_ms = _elapsed_ms(start_time, now)
    elapsed_seconds = elapsed_ms // 1000
    cost = _ceil(Decimal(elapsed_ms) / MS_PER_HOUR * Decimal(str(hourly_rate)))
    return SessionClock(
        hours=elapsed_seconds // 3600,
        minutes=(elapsed_seconds % 3600) // 60,
        seconds=elapsed_seconds % 60,
        elapsed_seconds=elapsed_seconds,
        cost=cost,
    )


def billable_minutes(start_time: datetime, end_time: datetime) -> int:
    """Whole minutes played, rounded half up, never below one."""
    minutes = (Decimal(_elapsed_ms(start_time, end_time)) / MS_PER_MINUTE).quantize(
        Decimal(1), rounding=ROUND_HALF_UP
    )
    return max(1, int(minutes))


def session_price(duration_minutes: int, hourly_rate: float) -> int:
    return _ceil(Decimal(duration_minutes) / Decimal(60) * Decimal(str(hourly_rate)))


def apply_member_discount(price: int, discount_percentage: float) -> int:
    return _ceil(Decimal(price) * (Decimal(100) - Decimal(str(discount_percentage))) / Decimal(100))


def is_active_member(customer: Customer, today: date) -> bool:
    if not customer.is_member:
        return False
    return customer.membership_expiry_date is None or customer.membership_expiry_date >= today


def get_open_session(db: Session, station_id: int) -> Optional[StationSession]:
    return db.scalars(
        select(StationSession).where(
            StationSession.station_id == station_id,
            StationSession.end_time.is_(None),
        )
    ).first()


def start_session(db: Session, station_id: int, customer_id: int, now: datetime) -> StationSession:
    """Open a session on a free station. At most one open session per station."""
    try:
        locked = lock_rows(db, Station, [station_id])
        if not locked:
            raise NotFoundError("Station not found")
        station = locked[0]
        if db.get(Customer, customer_id) is None:
            raise NotFoundError("Customer not found")
        if get_open_session(db, station_id) is not None:
            raise ConflictError(f"{station.name} is already occupied", unavailable_station_ids=[station_id])

        session = StationSession(station_id=station_id, customer_id=customer_id, start_time=now)
        db.add(session)
        db.commit()
    except (OperationalError, InterfaceError) as exc:
        db.rollback()
        raise TransportError("Could not reach the session store") from exc
    except LoungeError:
        db.rollback()
        raise

    db.refresh(session)
    logger.info("Started session %s on station %s for customer %s", session.id, station_id, customer_id)
    return session


def end_session(
    db: Session,
    station_id: int,
    now: datetime,
    member_discount_percentage: float = 50,
) -> SessionCharge:
    """Close the station's open session and turn it into a cart line item.

    The customer's total play time grows by the billed minutes.
    """
    try:
        locked = lock_rows(db, Station, [station_id])
        if not locked:
            raise NotFoundError("Station not found")
        station = locked[0]
        session = get_open_session(db, station_id)
        if session is None:
            raise NotFoundError(f"{station.name} has no active session")

        duration = billable_minutes(session.start_time, now)
        price = session_price(duration, station.hourly_rate)
        customer = session.customer
        discounted = is_active_member(customer, now.date()) and member_discount_percentage > 0
        if discounted:
            price = apply_member_discount(price, member_discount_percentage)

        session.end_time = now
        session.duration_minutes = duration
        customer.total_play_time = (customer.total_play_time or 0) + duration
        db.commit()
    except (OperationalError, InterfaceError) as exc:
        db.rollback()
        raise TransportError("Could not reach the session store") from exc
    except LoungeError:
        db.rollback()
        raise

    db.refresh(session)
    cart_item = {
        "id": f"session-{session.id}",
        "type": "session",
        "name": f"{station.name} - {duration} mins",
        "price": price,
        "quantity": 1,
        "total": price,
    }
    logger.info(
        "Ended session %s on station %s: %s mins, charge=%s, member_discount=%s",
        session.id,
        station_id,
        duration,
        price,
        discounted,
    )
    return SessionCharge(session=session, cart_item=cart_item, member_discount_applied=discounted)
