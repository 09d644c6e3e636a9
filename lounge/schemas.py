"""Pydantic schemas shared across the microservices."""
from __future__ import annotations

from datetime import date, datetime, time
from typing import List, Optional

from pydantic import BaseModel, EmailStr, Field, field_validator

from .models import BookingStatus, RoleEnum, StationType


def normalize_phone(phone: str) -> str:
    """Keep digits and a leading plus so formatting differences match the same customer."""
    return "".join(ch for ch in phone.strip() if ch.isdigit() or ch == "+")


class Token(BaseModel):
    access_token: str
    token_type: str = "bearer"


class TokenData(BaseModel):
    username: str
    role: RoleEnum


class UserBase(BaseModel):
    name: str = Field(..., max_length=100)
    username: str = Field(..., max_length=50)
    email: EmailStr
    role: RoleEnum = RoleEnum.STAFF


class UserCreate(UserBase):
    password: str = Field(..., min_length=8)


class UserUpdate(BaseModel):
    name: Optional[str] = Field(None, max_length=100)
    email: Optional[EmailStr] = None
    role: Optional[RoleEnum] = None
    password: Optional[str] = Field(None, min_length=8)


class UserRead(UserBase):
    id: int
    created_at: datetime

    model_config = {"from_attributes": True}


class CustomerBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    phone: str = Field(..., min_length=5, max_length=30)
    email: Optional[EmailStr] = None
    is_member: bool = False
    membership_expiry_date: Optional[date] = None

    @field_validator("phone")
    @classmethod
    def clean_phone(cls, value: str) -> str:
        cleaned = normalize_phone(value)
        if len(cleaned) < 5:
            raise ValueError("Phone number is too short")
        return cleaned


class CustomerCreate(CustomerBase):
    pass


class CustomerUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    email: Optional[EmailStr] = None
    is_member: Optional[bool] = None
    membership_expiry_date: Optional[date] = None


class CustomerRead(CustomerBase):
    id: int
    total_play_time: int
    created_at: datetime

    model_config = {"from_attributes": True}


class StationBase(BaseModel):
    name: str = Field(..., min_length=1, max_length=100)
    type: StationType
    hourly_rate: float = Field(..., ge=0)


class StationCreate(StationBase):
    pass


class StationUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=100)
    type: Optional[StationType] = None
    hourly_rate: Optional[float] = Field(None, ge=0)


class SessionRead(BaseModel):
    id: int
    station_id: int
    customer_id: int
    start_time: datetime
    end_time: Optional[datetime] = None
    duration_minutes: Optional[int] = None

    model_config = {"from_attributes": True}


class StationRead(StationBase):
    id: int
    is_occupied: bool = False
    current_session: Optional[SessionRead] = None

    model_config = {"from_attributes": True}


class SessionStart(BaseModel):
    customer_id: int


class SessionClockRead(BaseModel):
    station_id: int
    session_id: int
    hours: int
    minutes: int
    seconds: int
    elapsed_seconds: int
    cost: int


class CartItem(BaseModel):
    id: str
    type: str = "session"
    name: str
    price: int
    quantity: int = 1
    total: int


class SessionEndRead(BaseModel):
    session: SessionRead
    cart_item: CartItem
    member_discount_applied: bool


class SlotRequest(BaseModel):
    booking_date: date
    start_time: time
    end_time: time


class AvailabilityRequest(SlotRequest):
    station_ids: List[int]
    force_refresh: bool = False


class StationRef(BaseModel):
    id: int
    name: str


class AvailabilityResponse(BaseModel):
    available: bool
    available_ids: List[int]
    unavailable_ids: List[int]
    unavailable_stations: List[StationRef] = Field(default_factory=list)
    degraded: bool = False
    warning: Optional[str] = None


class StationPriceIn(BaseModel):
    id: int
    price: float


class BookingGroupCreate(SlotRequest):
    customer_id: int
    duration_minutes: int
    booking_group_id: str = Field(..., min_length=1, max_length=64)
    coupon_code: Optional[str] = Field(None, max_length=50)
    discount_percentage: float = 0
    stations: List[StationPriceIn]


class BookingRead(BaseModel):
    id: int
    customer_id: int
    station_id: int
    booking_group_id: str
    booking_date: date
    start_time: time
    end_time: time
    duration_minutes: int
    status: BookingStatus
    coupon_code: Optional[str] = None
    discount_percentage: float
    original_price: float
    final_price: float
    checked_in_at: Optional[datetime] = None
    created_at: datetime
    access_code: Optional[str] = None

    model_config = {"from_attributes": True}


class BookingLookupRead(BookingRead):
    station_name: str
    customer_name: str


class TimeSlotRead(BaseModel):
    start_time: time
    end_time: time
    is_available: bool
    available_station_ids: List[int] = Field(default_factory=list)


class SweepResult(BaseModel):
    checked: int = 0
    in_progress: int = 0
    completed: int = 0
    no_show: int = 0
    failed: int = 0


class CouponRead(BaseModel):
    code: str
    discount_percentage: int


class StationPopularity(BaseModel):
    station_id: int
    station_name: str
    booking_count: int

