import os
from datetime import date, time
from typing import Generator

import pytest
from fastapi.testclient import TestClient

os.environ.setdefault("DATABASE_URL", "sqlite:///./test.db")
os.environ.setdefault("RATE_LIMITING_ENABLED", "false")
os.environ.setdefault("EVENTS_ENABLED", "false")
os.environ.setdefault("STATUS_SWEEPER_ENABLED", "false")

from lounge.config import reset_settings_cache  # noqa: E402

reset_settings_cache()

from lounge.database import Base, SessionLocal, engine  # noqa: E402
from lounge.dependencies import get_availability_checker  # noqa: E402
from lounge.models import Booking, BookingStatus, Customer, Station, StationType  # noqa: E402
from services.bookings.app import app as bookings_app  # noqa: E402
from services.customers.app import app as customers_app  # noqa: E402
from services.stations.app import app as stations_app  # noqa: E402
from services.users.app import app as users_app  # noqa: E402


@pytest.fixture(autouse=True, scope="function")
def _create_test_database() -> Generator[None, None, None]:
    Base.metadata.drop_all(bind=engine)
    Base.metadata.create_all(bind=engine)
    get_availability_checker.cache_clear()
    yield
    get_availability_checker.cache_clear()
    Base.metadata.drop_all(bind=engine)


@pytest.fixture()
def db_session() -> Generator:
    session = SessionLocal()
    try:
        yield session
    finally:
        session.close()


@pytest.fixture()
def users_client() -> Generator[TestClient, None, None]:
    with TestClient(users_app) as client:
        yield client


@pytest.fixture()
def customers_client() -> Generator[TestClient, None, None]:
    with TestClient(customers_app) as client:
        yield client


@pytest.fixture()
def stations_client() -> Generator[TestClient, None, None]:
    with TestClient(stations_app) as client:
        yield client


@pytest.fixture()
def bookings_client() -> Generator[TestClient, None, None]:
    with TestClient(bookings_app) as client:
        yield client


@pytest.fixture()
def lounge(db_session):
    """Two consoles, one pool table and one customer, committed."""
    ps5_1 = Station(name="PS5 Console 1", type=StationType.CONSOLE, hourly_rate=150)
    ps5_2 = Station(name="PS5 Console 2", type=StationType.CONSOLE, hourly_rate=150)
    table = Station(name="Pool Table 1", type=StationType.TABLE, hourly_rate=300)
    customer = Customer(name="Ravi", phone="9876543210")
    db_session.add_all([ps5_1, ps5_2, table, customer])
    db_session.commit()
    return {
        "ps5_1": ps5_1.id,
        "ps5_2": ps5_2.id,
        "table": table.id,
        "customer": customer.id,
    }


@pytest.fixture()
def add_booking(db_session):
    """Insert a booking directly, bypassing the submitter."""

    def _add(
        station_id: int,
        customer_id: int,
        booking_date: date,
        start: time,
        end: time,
        status: BookingStatus = BookingStatus.CONFIRMED,
        group: str = "seed-group",
    ) -> Booking:
        booking = Booking(
            customer_id=customer_id,
            station_id=station_id,
            booking_group_id=group,
            booking_date=booking_date,
            start_time=start,
            end_time=end,
            duration_minutes=60,
            status=status,
            discount_percentage=0,
            original_price=300,
            final_price=300,
        )
        db_session.add(booking)
        db_session.commit()
        return booking

    return _add
