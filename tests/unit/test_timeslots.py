"""Unit tests for time slot generation."""
from datetime import date, datetime, time

import pytest

from lounge.errors import BookingValidationError
from lounge.timeslots import generate_time_slots, summarize_slots

DAY = date(2026, 11, 20)


class TestGenerateTimeSlots:
    def test_full_day_of_hourly_slots(self):
        slots = generate_time_slots(DAY, time(11), time(23), 60)

        assert len(slots) == 12
        assert slots[0] == (time(11), time(12))
        assert slots[-1] == (time(22), time(23))

    def test_slots_must_fit_before_closing(self):
        slots = generate_time_slots(DAY, time(11), time(23), 90)

        assert slots[-1] == (time(21, 30), time(23))
        assert len(slots) == 8

    def test_today_drops_slots_inside_buffer(self):
        now = datetime(2026, 11, 20, 14, 40)

        slots = generate_time_slots(DAY, time(11), time(23), 60, now=now, buffer_minutes=30)

        assert slots[0] == (time(16), time(17))

    def test_slot_exactly_at_buffer_is_kept(self):
        now = datetime(2026, 11, 20, 14, 30)

        slots = generate_time_slots(DAY, time(11), time(23), 60, now=now, buffer_minutes=30)

        assert slots[0] == (time(15), time(16))

    def test_future_date_unaffected_by_now(self):
        now = datetime(2026, 11, 19, 22, 0)

        assert len(generate_time_slots(DAY, time(11), time(23), 60, now=now, buffer_minutes=30)) == 12

    def test_past_date_has_no_slots(self):
        assert generate_time_slots(DAY, time(11), time(23), 60, now=datetime(2026, 11, 21, 9, 0)) == []

    def test_invalid_length(self):
        with pytest.raises(BookingValidationError):
            generate_time_slots(DAY, time(11), time(23), 0)


class TestSummarizeSlots:
    def test_slot_unavailable_only_when_every_station_booked(self, db_session, lounge, add_booking):
        add_booking(lounge["ps5_1"], lounge["customer"], DAY, time(11), time(12), group="a")
        add_booking(lounge["ps5_2"], lounge["customer"], DAY, time(11), time(13), group="b")
        slots = [(time(11), time(12)), (time(12), time(13)), (time(13), time(14))]

        summary = summarize_slots(db_session, DAY, slots, [lounge["ps5_1"], lounge["ps5_2"]])

        assert [entry["is_available"] for entry in summary] == [False, True, True]
        assert summary[1]["available_station_ids"] == [lounge["ps5_1"]]
        assert summary[2]["available_station_ids"] == [lounge["ps5_1"], lounge["ps5_2"]]

    def test_no_stations_means_no_availability(self, db_session):
        summary = summarize_slots(db_session, DAY, [(time(11), time(12))], [])

        assert summary[0]["is_available"] is False
