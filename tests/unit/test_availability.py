"""Unit tests for the availability checker."""
from datetime import date, time
from unittest.mock import MagicMock, patch

import pytest
from sqlalchemy.exc import OperationalError

from lounge.availability import (
    FAIL_CLOSED_WARNING,
    FAIL_OPEN_WARNING,
    AvailabilityChecker,
    check_availability,
    intervals_overlap,
)
from lounge.cache import AvailabilityCache
from lounge.errors import BookingValidationError, TransportError
from lounge.models import BookingStatus

DAY = date(2026, 11, 20)


class TestIntervalsOverlap:
    """Test the half-open overlap predicate."""

    def test_touching_intervals_do_not_overlap(self):
        assert intervals_overlap(time(10), time(11), time(11), time(12)) is False
        assert intervals_overlap(time(11), time(12), time(10), time(11)) is False

    def test_partial_overlap(self):
        assert intervals_overlap(time(10), time(11), time(10, 30), time(11, 30)) is True

    def test_containment_both_ways(self):
        assert intervals_overlap(time(10), time(14), time(11), time(12)) is True
        assert intervals_overlap(time(11), time(12), time(10), time(14)) is True

    def test_identical_intervals(self):
        assert intervals_overlap(time(10), time(11), time(10), time(11)) is True


class TestCheckAvailability:
    """Test the uncached store check."""

    def test_free_stations_all_available(self, db_session, lounge):
        result = check_availability(db_session, [lounge["ps5_1"], lounge["table"]], DAY, time(10), time(11))

        assert result.available is True
        assert result.available_ids == [lounge["ps5_1"], lounge["table"]]
        assert result.unavailable_ids == []

    def test_adjacent_booking_is_not_a_conflict(self, db_session, lounge, add_booking):
        add_booking(lounge["ps5_1"], lounge["customer"], DAY, time(10), time(11))

        result = check_availability(db_session, [lounge["ps5_1"]], DAY, time(11), time(12))

        assert result.available_ids == [lounge["ps5_1"]]

    def test_overlapping_booking_is_a_conflict(self, db_session, lounge, add_booking):
        add_booking(lounge["ps5_1"], lounge["customer"], DAY, time(10), time(11))

        result = check_availability(db_session, [lounge["ps5_1"], lounge["ps5_2"]], DAY, time(10, 30), time(11, 30))

        assert result.available is False
        assert result.unavailable_ids == [lounge["ps5_1"]]
        assert result.available_ids == [lounge["ps5_2"]]
        assert result.unavailable_stations == [{"id": lounge["ps5_1"], "name": "PS5 Console 1"}]

    def test_caller_order_is_preserved(self, db_session, lounge, add_booking):
        add_booking(lounge["ps5_2"], lounge["customer"], DAY, time(12), time(13))
        ids = [lounge["table"], lounge["ps5_2"], lounge["ps5_1"]]

        result = check_availability(db_session, ids, DAY, time(12), time(13))

        assert result.available_ids == [lounge["table"], lounge["ps5_1"]]
        assert result.unavailable_ids == [lounge["ps5_2"]]

    def test_cancelled_and_completed_bookings_free_the_station(self, db_session, lounge, add_booking):
        add_booking(lounge["ps5_1"], lounge["customer"], DAY, time(10), time(11), BookingStatus.CANCELLED, "g1")
        add_booking(lounge["ps5_1"], lounge["customer"], DAY, time(10), time(11), BookingStatus.COMPLETED, "g2")
        add_booking(lounge["ps5_1"], lounge["customer"], DAY, time(10), time(11), BookingStatus.NO_SHOW, "g3")

        result = check_availability(db_session, [lounge["ps5_1"]], DAY, time(10), time(11))

        assert result.available is True

    def test_in_progress_booking_holds_the_station(self, db_session, lounge, add_booking):
        add_booking(lounge["ps5_1"], lounge["customer"], DAY, time(10), time(11), BookingStatus.IN_PROGRESS)

        result = check_availability(db_session, [lounge["ps5_1"]], DAY, time(10), time(11))

        assert result.unavailable_ids == [lounge["ps5_1"]]

    def test_other_dates_are_ignored(self, db_session, lounge, add_booking):
        add_booking(lounge["ps5_1"], lounge["customer"], date(2026, 11, 21), time(10), time(11))

        result = check_availability(db_session, [lounge["ps5_1"]], DAY, time(10), time(11))

        assert result.available is True

    def test_repeated_checks_agree(self, db_session, lounge, add_booking):
        add_booking(lounge["ps5_1"], lounge["customer"], DAY, time(10), time(11))
        ids = [lounge["ps5_1"], lounge["ps5_2"]]

        first = check_availability(db_session, ids, DAY, time(10), time(11))
        second = check_availability(db_session, ids, DAY, time(10), time(11))

        assert first == second

    def test_inverted_slot_rejected_before_query(self):
        db = MagicMock()

        with pytest.raises(BookingValidationError):
            check_availability(db, [1], DAY, time(12), time(11))
        db.scalars.assert_not_called()

    def test_empty_station_list_rejected(self):
        with pytest.raises(BookingValidationError):
            check_availability(MagicMock(), [], DAY, time(10), time(11))

    def test_store_failure_becomes_transport_error(self):
        db = MagicMock()
        db.scalars.side_effect = OperationalError("SELECT", {}, Exception("connection refused"))

        with pytest.raises(TransportError):
            check_availability(db, [1], DAY, time(10), time(11))


class TestAvailabilityChecker:
    """Test the cached read path and its failure modes."""

    def test_cached_result_served_until_invalidated(self, db_session, lounge, add_booking):
        checker = AvailabilityChecker(cache=AvailabilityCache(ttl=60))
        ids = [lounge["ps5_1"]]
        assert checker.check(db_session, ids, DAY, time(10), time(11)).available is True

        add_booking(lounge["ps5_1"], lounge["customer"], DAY, time(10), time(11))

        assert checker.check(db_session, ids, DAY, time(10), time(11)).available is True
        checker.invalidate(DAY)
        assert checker.check(db_session, ids, DAY, time(10), time(11)).available is False

    def test_booking_during_read_is_not_masked_by_cache(self, db_session, lounge, add_booking):
        checker = AvailabilityChecker(cache=AvailabilityCache(ttl=60))
        ids = [lounge["table"]]

        def read_before_booking_commits(*args):
            add_booking(lounge["table"], lounge["customer"], DAY, time(10), time(11))
            checker.invalidate(DAY)
            return set()

        with patch("lounge.availability.find_booked_station_ids", side_effect=read_before_booking_commits):
            assert checker.check(db_session, ids, DAY, time(10), time(11)).available_ids == ids

        result = checker.check(db_session, ids, DAY, time(10), time(11))

        assert result.available_ids == []
        assert result.unavailable_ids == ids

    def test_force_refresh_bypasses_cache(self, db_session, lounge, add_booking):
        checker = AvailabilityChecker(cache=AvailabilityCache(ttl=60))
        ids = [lounge["ps5_1"]]
        checker.check(db_session, ids, DAY, time(10), time(11))
        add_booking(lounge["ps5_1"], lounge["customer"], DAY, time(10), time(11))

        result = checker.check(db_session, ids, DAY, time(10), time(11), force_refresh=True)

        assert result.unavailable_ids == ids

    def test_fail_closed_reports_everything_unavailable(self):
        db = MagicMock()
        db.scalars.side_effect = OperationalError("SELECT", {}, Exception("down"))
        checker = AvailabilityChecker(cache=AvailabilityCache(ttl=60), fail_mode="closed")

        result = checker.check(db, [3, 1], DAY, time(10), time(11))

        assert result.degraded is True
        assert result.warning == FAIL_CLOSED_WARNING
        assert result.available_ids == []
        assert result.unavailable_ids == [3, 1]

    def test_fail_open_reports_everything_available(self):
        db = MagicMock()
        db.scalars.side_effect = OperationalError("SELECT", {}, Exception("down"))
        checker = AvailabilityChecker(fail_mode="open")

        result = checker.check(db, [3, 1], DAY, time(10), time(11))

        assert result.degraded is True
        assert result.warning == FAIL_OPEN_WARNING
        assert result.available_ids == [3, 1]

    def test_degraded_results_are_not_cached(self, db_session, lounge):
        cache = AvailabilityCache(ttl=60)
        checker = AvailabilityChecker(cache=cache)
        broken = MagicMock()
        broken.scalars.side_effect = OperationalError("SELECT", {}, Exception("down"))

        checker.check(broken, [lounge["ps5_1"]], DAY, time(10), time(11))

        assert cache.get(DAY, time(10), time(11)) is None
        assert checker.check(db_session, [lounge["ps5_1"]], DAY, time(10), time(11)).degraded is False
