"""Booking status sweeper.

Moves open bookings along ``confirmed -> in-progress -> completed`` from the
wall clock alone. Cancelled, completed and no-show bookings are never touched,
so a manual change always wins over the sweep. Running it twice with the same
``now`` changes nothing the second time.

With no-show tracking on, a confirmed booking waits for check-in until its
grace period runs out, then becomes a no-show.
"""
from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass, field
from datetime import date, datetime, timedelta
from typing import Callable, Optional, Set

from sqlalchemy import select, update
from sqlalchemy.exc import InterfaceError, OperationalError, SQLAlchemyError
from sqlalchemy.orm import Session

from .config import Settings
from .errors import TransportError
from .models import ACTIVE_BOOKING_STATUSES, TERMINAL_BOOKING_STATUSES, Booking, BookingStatus

logger = logging.getLogger(__name__)


@dataclass
class SweepOutcome:
    checked: int = 0
    in_progress: int = 0
    completed: int = 0
    no_show: int = 0
    failed: int = 0
    dates: Set[date] = field(default_factory=set)

    def record(self, status: BookingStatus) -> None:
        if status == BookingStatus.IN_PROGRESS:
            self.in_progress += 1
        elif status == BookingStatus.COMPLETED:
            self.completed += 1
        elif status == BookingStatus.NO_SHOW:
            self.no_show += 1

    def as_dict(self) -> dict:
        return {
            "checked": self.checked,
            "in_progress": self.in_progress,
            "completed": self.completed,
            "no_show": self.no_show,
            "failed": self.failed,
        }


def derive_status(
    booking: Booking,
    now: datetime,
    no_show_tracking_enabled: bool = False,
    no_show_grace_minutes: int = 30,
) -> BookingStatus:
    """Status the booking should have at ``now``."""
    if booking.status in TERMINAL_BOOKING_STATUSES:
        return booking.status

    start = datetime.combine(booking.booking_date, booking.start_time)
    end = datetime.combine(booking.booking_date, booking.end_time)
    if now < start:
        return booking.status

    if (
        no_show_tracking_enabled
        and booking.status == BookingStatus.CONFIRMED
        and booking.checked_in_at is None
    ):
        # Held at confirmed so staff can still check the customer in.
        if now >= start + timedelta(minutes=no_show_grace_minutes):
            return BookingStatus.NO_SHOW
        return BookingStatus.CONFIRMED
    if now >= end:
        return BookingStatus.COMPLETED
    return BookingStatus.IN_PROGRESS


def sweep_booking_statuses(
    db: Session,
    now: datetime,
    no_show_tracking_enabled: bool = False,
    no_show_grace_minutes: int = 30,
) -> SweepOutcome:
    """Apply :func:`derive_status` to every open booking that has started.

    Each change is committed on its own; a row that fails is logged and
    counted, and the sweep carries on with the rest.
    """
    outcome = SweepOutcome()
    try:
        candidates = db.scalars(
            select(Booking)
            .where(Booking.status.in_(ACTIVE_BOOKING_STATUSES), Booking.booking_date <= now.date())
            .order_by(Booking.booking_date, Booking.start_time, Booking.id)
        ).all()
    except (OperationalError, InterfaceError) as exc:
        raise TransportError("Could not reach the booking store") from exc

    for booking in candidates:
        outcome.checked += 1
        booking_id = booking.id
        booking_date = booking.booking_date
        seen_status = booking.status
        target = derive_status(booking, now, no_show_tracking_enabled, no_show_grace_minutes)
        if target == seen_status:
            continue
        try:
            # Only moves the row if nobody changed it since it was read.
            result = db.execute(
                update(Booking)
                .where(Booking.id == booking_id, Booking.status == seen_status)
                .values(status=target)
                .execution_options(synchronize_session=False)
            )
            db.commit()
        except SQLAlchemyError:
            db.rollback()
            outcome.failed += 1
            logger.exception("Could not move booking %s to %s", booking_id, target.value)
            continue
        if result.rowcount == 0:
            logger.info("Booking %s changed during the sweep, left untouched", booking_id)
            continue
        outcome.record(target)
        outcome.dates.add(booking_date)

    logger.info("Status sweep at %s: %s", now.isoformat(timespec="seconds"), outcome.as_dict())
    return outcome


def run_sweep(
    session_factory: Callable[[], Session],
    settings: Settings,
    on_change: Optional[Callable[[date], None]] = None,
    now: Optional[datetime] = None,
) -> SweepOutcome:
    db = session_factory()
    try:
        outcome = sweep_booking_statuses(
            db,
            now or settings.venue_now(),
            no_show_tracking_enabled=settings.no_show_tracking_enabled,
            no_show_grace_minutes=settings.no_show_grace_minutes,
        )
    finally:
        db.close()
    if on_change is not None:
        for booking_date in outcome.dates:
            on_change(booking_date)
    return outcome


async def run_periodic_sweeps(
    session_factory: Callable[[], Session],
    settings: Settings,
    on_change: Optional[Callable[[date], None]] = None,
) -> None:
    """Sweep every ``status_sweep_interval_seconds`` until cancelled."""
    interval = settings.status_sweep_interval_seconds
    logger.info("Status sweeper started, interval=%ss", interval)
    while True:
        try:
            await asyncio.to_thread(run_sweep, session_factory, settings, on_change)
        except TransportError:
            logger.warning("Status sweep skipped, booking store unreachable", exc_info=True)
        await asyncio.sleep(interval)
