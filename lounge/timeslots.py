"""Bookable time slots within opening hours."""
from __future__ import annotations

from datetime import date, datetime, time, timedelta
from typing import List, Optional, Sequence, Tuple

from sqlalchemy import select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session

from .availability import intervals_overlap
from .errors import BookingValidationError, TransportError
from .models import ACTIVE_BOOKING_STATUSES, Booking

Slot = Tuple[time, time]


def generate_time_slots(
    booking_date: date,
    opening_time: time,
    closing_time: time,
    slot_minutes: int,
    now: Optional[datetime] = None,
    buffer_minutes: int = 0,
) -> List[Slot]:
    """Consecutive ``[start, end)`` slots that fit between opening and closing.

    When ``now`` is given, past dates have no slots and on ``now``'s date any
    slot starting before ``now + buffer_minutes`` is dropped.
    """
    if slot_minutes <= 0:
        raise BookingValidationError("Slot length must be positive")

    earliest: Optional[datetime] = None
    if now is not None:
        if booking_date < now.date():
            return []
        if booking_date == now.date():
            earliest = now + timedelta(minutes=buffer_minutes)

    step = timedelta(minutes=slot_minutes)
    cursor = datetime.combine(booking_date, opening_time)
    closing = datetime.combine(booking_date, closing_time)
    slots: List[Slot] = []
    while cursor + step <= closing:
        if earliest is None or cursor >= earliest:
            slots.append((cursor.time(), (cursor + step).time()))
        cursor += step
    return slots


def summarize_slots(
    db: Session,
    booking_date: date,
    slots: Sequence[Slot],
    station_ids: Sequence[int],
) -> List[dict]:
    """Per slot, which of ``station_ids`` are free.

    A slot is unavailable only once every station is taken.
    """
    if not slots:
        return []
    try:
        rows = db.execute(
            select(Booking.station_id, Booking.start_time, Booking.end_time).where(
                Booking.booking_date == booking_date,
                Booking.status.in_(ACTIVE_BOOKING_STATUSES),
            )
        ).all()
    except (OperationalError, InterfaceError) as exc:
        raise TransportError("Could not reach the booking store") from exc

    summary = []
    for start, end in slots:
        taken = {station_id for station_id, b_start, b_end in rows if intervals_overlap(b_start, b_end, start, end)}
        free = [station_id for station_id in station_ids if station_id not in taken]
        summary.append(
            {
                "start_time": start,
                "end_time": end,
                "is_available": bool(free),
                "available_station_ids": free,
            }
        )
    return summary
