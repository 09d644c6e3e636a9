"""Station availability for a date and time slot.

A booking ``B`` conflicts with a requested slot ``R = [start, end)`` when
``B.start < R.end and B.end > R.start``. Both intervals are half-open, so a
booking ending at 11:00 leaves an 11:00 start free. Only bookings that still
hold their station (confirmed or in-progress) are considered.
"""
from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, time
from typing import FrozenSet, Iterable, List, Literal, Optional, Sequence, Set

from sqlalchemy import Select, select
from sqlalchemy.exc import InterfaceError, OperationalError
from sqlalchemy.orm import Session

from .cache import AvailabilityCache
from .errors import BookingValidationError, TransportError
from .models import ACTIVE_BOOKING_STATUSES, Booking, Station

logger = logging.getLogger(__name__)

FailMode = Literal["closed", "open"]

FAIL_CLOSED_WARNING = "Could not verify station availability. Stations are shown as unavailable, please try again."
FAIL_OPEN_WARNING = (
    "Could not verify station availability. Stations are shown as available but may already be booked, "
    "please try again before confirming."
)


def intervals_overlap(a_start: time, a_end: time, b_start: time, b_end: time) -> bool:
    return a_start < b_end and a_end > b_start


def validate_slot(start_time: time, end_time: time) -> None:
    if start_time >= end_time:
        raise BookingValidationError("End time must be after start time")


def unique_ids(station_ids: Iterable[int]) -> List[int]:
    """De-duplicate while keeping the caller's order."""
    return list(dict.fromkeys(station_ids))


def conflicting_bookings_query(
    booking_date: date,
    start_time: time,
    end_time: time,
    station_ids: Optional[Sequence[int]] = None,
) -> Select:
    stmt = select(Booking).where(
        Booking.booking_date == booking_date,
        Booking.status.in_(ACTIVE_BOOKING_STATUSES),
        Booking.start_time < end_time,
        Booking.end_time > start_time,
    )
    if station_ids is not None:
        stmt = stmt.where(Booking.station_id.in_(station_ids))
    return stmt


def find_booked_station_ids(
    db: Session,
    booking_date: date,
    start_time: time,
    end_time: time,
    station_ids: Optional[Sequence[int]] = None,
) -> Set[int]:
    """Station ids holding a booking that overlaps the slot. Store failures become TransportError."""
    stmt = conflicting_bookings_query(booking_date, start_time, end_time, station_ids)
    try:
        rows = db.scalars(stmt.with_only_columns(Booking.station_id).distinct()).all()
    except (OperationalError, InterfaceError) as exc:
        raise TransportError("Could not reach the booking store") from exc
    return set(rows)


def describe_stations(db: Session, station_ids: Sequence[int]) -> List[dict]:
    """``[{id, name}]`` for the given ids, in the given order."""
    if not station_ids:
        return []
    try:
        names = dict(db.execute(select(Station.id, Station.name).where(Station.id.in_(station_ids))).all())
    except (OperationalError, InterfaceError) as exc:
        raise TransportError("Could not reach the booking store") from exc
    return [{"id": station_id, "name": names.get(station_id, "Unknown station")} for station_id in station_ids]


@dataclass
class AvailabilityResult:
    available_ids: List[int]
    unavailable_ids: List[int]
    unavailable_stations: List[dict] = field(default_factory=list)
    degraded: bool = False
    warning: Optional[str] = None

    @property
    def available(self) -> bool:
        return not self.unavailable_ids


def partition(station_ids: Sequence[int], booked_ids: FrozenSet[int] | Set[int]) -> tuple[List[int], List[int]]:
    available = [station_id for station_id in station_ids if station_id not in booked_ids]
    unavailable = [station_id for station_id in station_ids if station_id in booked_ids]
    return available, unavailable


def check_availability(
    db: Session,
    station_ids: Sequence[int],
    booking_date: date,
    start_time: time,
    end_time: time,
) -> AvailabilityResult:
    """Partition ``station_ids`` by whether an active booking overlaps the slot."""
    ids = unique_ids(station_ids)
    if not ids:
        raise BookingValidationError("At least one station is required")
    validate_slot(start_time, end_time)

    booked = find_booked_station_ids(db, booking_date, start_time, end_time, ids)
    available, unavailable = partition(ids, booked)
    return AvailabilityResult(
        available_ids=available,
        unavailable_ids=unavailable,
        unavailable_stations=describe_stations(db, unavailable),
    )


class AvailabilityChecker:
    """Read-side availability with a short-lived cache and an explicit failure mode."""

    def __init__(self, cache: Optional[AvailabilityCache] = None, fail_mode: FailMode = "closed") -> None:
        self.cache = cache
        self.fail_mode = fail_mode

    def check(
        self,
        db: Session,
        station_ids: Sequence[int],
        booking_date: date,
        start_time: time,
        end_time: time,
        force_refresh: bool = False,
    ) -> AvailabilityResult:
        ids = unique_ids(station_ids)
        if not ids:
            raise BookingValidationError("At least one station is required")
        validate_slot(start_time, end_time)

        try:
            booked = self._booked_ids(db, booking_date, start_time, end_time, force_refresh)
            available, unavailable = partition(ids, booked)
            stations = describe_stations(db, unavailable)
        except TransportError:
            logger.warning(
                "Availability check for %s %s-%s failed, failing %s",
                booking_date,
                start_time,
                end_time,
                self.fail_mode,
                exc_info=True,
            )
            return self._degraded(ids)

        return AvailabilityResult(available_ids=available, unavailable_ids=unavailable, unavailable_stations=stations)

    def invalidate(self, booking_date: date) -> None:
        if self.cache is not None:
            dropped = self.cache.invalidate_date(booking_date)
            logger.debug("Invalidated %d cached availability entries for %s", dropped, booking_date)

    def _booked_ids(
        self, db: Session, booking_date: date, start_time: time, end_time: time, force_refresh: bool
    ) -> FrozenSet[int]:
        generation = None
        if self.cache is not None:
            generation = self.cache.generation(booking_date)
            if not force_refresh:
                cached = self.cache.get(booking_date, start_time, end_time)
                if cached is not None:
                    return cached
        # Cache the whole slot so requests for different station sets share one entry.
        booked = frozenset(find_booked_station_ids(db, booking_date, start_time, end_time))
        if self.cache is not None:
            self.cache.set(booking_date, start_time, end_time, booked, generation=generation)
        return booked

    def _degraded(self, ids: List[int]) -> AvailabilityResult:
        if self.fail_mode == "open":
            return AvailabilityResult(available_ids=list(ids), unavailable_ids=[], degraded=True, warning=FAIL_OPEN_WARNING)
        return AvailabilityResult(
            available_ids=[],
            unavailable_ids=list(ids),
            unavailable_stations=[{"id": station_id, "name": "Unknown station"} for station_id in ids],
            degraded=True,
            warning=FAIL_CLOSED_WARNING,
        )
