"""Unit tests for the booking status sweeper."""
from datetime import date, datetime, time
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from lounge.config import get_settings
from lounge.database import SessionLocal
from lounge.errors import TransportError
from lounge.models import Booking, BookingStatus
from lounge import sweeper
from lounge.sweeper import derive_status, run_sweep, sweep_booking_statuses

DAY = date(2026, 11, 20)


def _booking(status=BookingStatus.CONFIRMED, start=time(14), end=time(15), checked_in_at=None) -> Booking:
    return Booking(
        booking_date=DAY,
        start_time=start,
        end_time=end,
        status=status,
        checked_in_at=checked_in_at,
    )


class TestDeriveStatus:
    """Pure status derivation from the clock."""

    def test_before_start_unchanged(self):
        assert derive_status(_booking(), datetime(2026, 11, 20, 13, 59)) == BookingStatus.CONFIRMED

    def test_at_start_in_progress(self):
        assert derive_status(_booking(), datetime(2026, 11, 20, 14, 0)) == BookingStatus.IN_PROGRESS

    def test_at_end_completed(self):
        assert derive_status(_booking(), datetime(2026, 11, 20, 15, 0)) == BookingStatus.COMPLETED

    def test_skips_straight_to_completed(self):
        assert derive_status(_booking(), datetime(2026, 11, 21, 9, 0)) == BookingStatus.COMPLETED

    def test_in_progress_completes(self):
        booking = _booking(BookingStatus.IN_PROGRESS)

        assert derive_status(booking, datetime(2026, 11, 20, 15, 30)) == BookingStatus.COMPLETED

    @pytest.mark.parametrize(
        "status", [BookingStatus.CANCELLED, BookingStatus.COMPLETED, BookingStatus.NO_SHOW]
    )
    def test_terminal_statuses_untouched(self, status):
        assert derive_status(_booking(status), datetime(2026, 11, 20, 14, 30)) == status
        assert derive_status(_booking(status), datetime(2026, 11, 22)) == status

    def test_no_show_only_when_tracking_enabled(self):
        now = datetime(2026, 11, 20, 14, 31)

        assert derive_status(_booking(), now) == BookingStatus.IN_PROGRESS
        assert derive_status(_booking(), now, no_show_tracking_enabled=True) == BookingStatus.NO_SHOW

    def test_waits_for_check_in_during_grace_period(self):
        now = datetime(2026, 11, 20, 14, 29)

        assert derive_status(_booking(), now, no_show_tracking_enabled=True) == BookingStatus.CONFIRMED

    def test_no_show_only_from_confirmed(self):
        booking = _booking(BookingStatus.IN_PROGRESS)

        assert (
            derive_status(booking, datetime(2026, 11, 20, 14, 45), no_show_tracking_enabled=True)
            == BookingStatus.IN_PROGRESS
        )

    def test_checked_in_booking_is_never_a_no_show(self):
        booking = _booking(BookingStatus.IN_PROGRESS, checked_in_at=datetime(2026, 11, 20, 14, 5))

        assert (
            derive_status(booking, datetime(2026, 11, 20, 14, 45), no_show_tracking_enabled=True)
            == BookingStatus.IN_PROGRESS
        )


class TestSweep:
    """Sweeping rows in the database."""

    def test_sweep_moves_and_counts(self, db_session, lounge, add_booking):
        past = add_booking(lounge["ps5_1"], lounge["customer"], DAY, time(10), time(11), group="past")
        live = add_booking(lounge["ps5_2"], lounge["customer"], DAY, time(14), time(16), group="live")
        future = add_booking(lounge["table"], lounge["customer"], DAY, time(18), time(19), group="future")
        cancelled = add_booking(
            lounge["table"], lounge["customer"], DAY, time(10), time(11), BookingStatus.CANCELLED, group="cxl"
        )

        outcome = sweep_booking_statuses(db_session, datetime(2026, 11, 20, 15, 0))

        assert outcome.as_dict() == {"checked": 3, "in_progress": 1, "completed": 1, "no_show": 0, "failed": 0}
        assert outcome.dates == {DAY}
        db_session.expire_all()
        assert db_session.get(Booking, past.id).status == BookingStatus.COMPLETED
        assert db_session.get(Booking, live.id).status == BookingStatus.IN_PROGRESS
        assert db_session.get(Booking, future.id).status == BookingStatus.CONFIRMED
        assert db_session.get(Booking, cancelled.id).status == BookingStatus.CANCELLED

    def test_second_sweep_changes_nothing(self, db_session, lounge, add_booking):
        add_booking(lounge["ps5_1"], lounge["customer"], DAY, time(10), time(11))
        now = datetime(2026, 11, 20, 12, 0)

        sweep_booking_statuses(db_session, now)
        second = sweep_booking_statuses(db_session, now)

        assert second.completed == 0
        assert second.in_progress == 0
        assert second.dates == set()

    def test_no_show_with_tracking(self, db_session, lounge, add_booking):
        booking = add_booking(lounge["ps5_1"], lounge["customer"], DAY, time(10), time(12))

        outcome = sweep_booking_statuses(
            db_session, datetime(2026, 11, 20, 10, 45), no_show_tracking_enabled=True, no_show_grace_minutes=30
        )

        assert outcome.no_show == 1
        db_session.expire_all()
        assert db_session.get(Booking, booking.id).status == BookingStatus.NO_SHOW

    def test_cancellation_during_sweep_is_kept(self, db_session, lounge, add_booking):
        booking = add_booking(lounge["ps5_1"], lounge["customer"], DAY, time(10), time(11))
        real_derive = sweeper.derive_status

        def cancel_then_derive(row, *args):
            other = SessionLocal()
            try:
                other.get(Booking, row.id).status = BookingStatus.CANCELLED
                other.commit()
            finally:
                other.close()
            return real_derive(row, *args)

        with patch("lounge.sweeper.derive_status", side_effect=cancel_then_derive):
            outcome = sweep_booking_statuses(db_session, datetime(2026, 11, 20, 12, 0))

        assert outcome.completed == 0
        assert outcome.dates == set()
        db_session.expire_all()
        assert db_session.get(Booking, booking.id).status == BookingStatus.CANCELLED

    def test_store_unreachable(self):
        db = MagicMock()
        db.scalars.side_effect = OperationalError("SELECT", {}, Exception("down"))

        with pytest.raises(TransportError):
            sweep_booking_statuses(db, datetime(2026, 11, 20, 12, 0))

    def test_failed_row_does_not_stop_sweep(self):
        first = _booking(start=time(9), end=time(10))
        second = _booking(start=time(10), end=time(11))
        db = MagicMock()
        db.scalars.return_value.all.return_value = [first, second]
        db.commit.side_effect = [OperationalError("UPDATE", {}, Exception("locked")), None]

        outcome = sweep_booking_statuses(db, datetime(2026, 11, 20, 12, 0))

        assert outcome.failed == 1
        assert outcome.completed == 1
        db.rollback.assert_called_once()

    def test_run_sweep_invalidates_touched_dates(self, lounge, add_booking):
        add_booking(lounge["ps5_1"], lounge["customer"], DAY, time(10), time(11))
        touched = []

        outcome = run_sweep(SessionLocal, get_settings(), touched.append, now=datetime(2026, 11, 20, 12, 0))

        assert outcome.completed == 1
        assert touched == [DAY]
