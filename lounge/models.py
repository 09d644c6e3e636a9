"""SQLAlchemy models shared across all services."""
from __future__ import annotations

from datetime import date, datetime, time
from enum import Enum
from typing import List, Optional

from sqlalchemy import (
    Boolean,
    Date,
    DateTime,
    Enum as SqlEnum,
    Float,
    ForeignKey,
    Integer,
    String,
    Time,
    UniqueConstraint,
)
from sqlalchemy.orm import Mapped, mapped_column, relationship

from .database import Base


class RoleEnum(str, Enum):
    ADMIN = "admin"
    STAFF = "staff"


class StationType(str, Enum):
    CONSOLE = "console"
    TABLE = "table"


class BookingStatus(str, Enum):
    CONFIRMED = "confirmed"
    IN_PROGRESS = "in-progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"
    NO_SHOW = "no-show"


# Bookings in these states hold their station for the booked interval.
ACTIVE_BOOKING_STATUSES = (BookingStatus.CONFIRMED, BookingStatus.IN_PROGRESS)
TERMINAL_BOOKING_STATUSES = (BookingStatus.COMPLETED, BookingStatus.CANCELLED, BookingStatus.NO_SHOW)


def _enum_values(enum_cls: type[Enum]) -> list[str]:
    return [member.value for member in enum_cls]


class User(Base):
    __tablename__ = "users"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    username: Mapped[str] = mapped_column(String(50), unique=True, index=True)
    hashed_password: Mapped[str] = mapped_column(String(255))
    email: Mapped[str] = mapped_column(String(255), unique=True)
    role: Mapped[RoleEnum] = mapped_column(SqlEnum(RoleEnum), default=RoleEnum.STAFF)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)


class Customer(Base):
    __tablename__ = "customers"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100))
    phone: Mapped[str] = mapped_column(String(30), unique=True, index=True)
    email: Mapped[Optional[str]] = mapped_column(String(255), default=None)
    is_member: Mapped[bool] = mapped_column(Boolean, default=False)
    membership_expiry_date: Mapped[Optional[date]] = mapped_column(Date, default=None)
    total_play_time: Mapped[int] = mapped_column(Integer, default=0)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    bookings: Mapped[List["Booking"]] = relationship(back_populates="customer")
    sessions: Mapped[List["StationSession"]] = relationship(back_populates="customer")


class Station(Base):
    __tablename__ = "stations"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    name: Mapped[str] = mapped_column(String(100), unique=True)
    type: Mapped[StationType] = mapped_column(
        SqlEnum(StationType, values_callable=_enum_values), index=True
    )
    hourly_rate: Mapped[float] = mapped_column(Float)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    bookings: Mapped[List["Booking"]] = relationship(back_populates="station")
    sessions: Mapped[List["StationSession"]] = relationship(back_populates="station")

    @property
    def current_session(self) -> Optional["StationSession"]:
        return next((session for session in self.sessions if session.end_time is None), None)

    @property
    def is_occupied(self) -> bool:
        return self.current_session is not None


class StationSession(Base):
    """Walk-in play on a station, independent of any reservation."""

    __tablename__ = "sessions"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    station_id: Mapped[int] = mapped_column(ForeignKey("stations.id", ondelete="CASCADE"), index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), index=True)
    start_time: Mapped[datetime] = mapped_column(DateTime, nullable=False)
    end_time: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None, index=True)
    duration_minutes: Mapped[Optional[int]] = mapped_column(Integer, default=None)

    station: Mapped[Station] = relationship(back_populates="sessions")
    customer: Mapped[Customer] = relationship(back_populates="sessions")


class Booking(Base):
    __tablename__ = "bookings"
    __table_args__ = (
        UniqueConstraint("booking_group_id", "station_id", name="uq_booking_group_station"),
    )

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    customer_id: Mapped[int] = mapped_column(ForeignKey("customers.id", ondelete="CASCADE"), index=True)
    station_id: Mapped[int] = mapped_column(ForeignKey("stations.id", ondelete="CASCADE"), index=True)
    booking_group_id: Mapped[str] = mapped_column(String(64), index=True)
    booking_date: Mapped[date] = mapped_column(Date, nullable=False, index=True)
    start_time: Mapped[time] = mapped_column(Time, nullable=False)
    end_time: Mapped[time] = mapped_column(Time, nullable=False)
    duration_minutes: Mapped[int] = mapped_column(Integer)
    status: Mapped[BookingStatus] = mapped_column(
        SqlEnum(BookingStatus, values_callable=_enum_values, native_enum=False, length=20),
        default=BookingStatus.CONFIRMED,
        index=True,
    )
    coupon_code: Mapped[Optional[str]] = mapped_column(String(50), default=None)
    discount_percentage: Mapped[float] = mapped_column(Float, default=0)
    original_price: Mapped[float] = mapped_column(Float)
    final_price: Mapped[float] = mapped_column(Float)
    checked_in_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    customer: Mapped[Customer] = relationship(back_populates="bookings")
    station: Mapped[Station] = relationship(back_populates="bookings")
    view: Mapped[Optional["BookingView"]] = relationship(
        back_populates="booking", cascade="all, delete-orphan", uselist=False
    )

    @property
    def access_code(self) -> Optional[str]:
        return self.view.access_code if self.view else None


class BookingView(Base):
    """Customer-facing handle on a booking, looked up by its access code."""

    __tablename__ = "booking_views"

    id: Mapped[int] = mapped_column(Integer, primary_key=True, index=True)
    booking_id: Mapped[int] = mapped_column(
        ForeignKey("bookings.id", ondelete="CASCADE"), unique=True, index=True
    )
    access_code: Mapped[str] = mapped_column(String(12), unique=True, index=True)
    last_accessed_at: Mapped[Optional[datetime]] = mapped_column(DateTime, default=None)
    created_at: Mapped[datetime] = mapped_column(DateTime, default=datetime.utcnow)

    booking: Mapped[Booking] = relationship(back_populates="view")
