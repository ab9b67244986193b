"""Pydantic schemas for API serialisation."""

from datetime import date, datetime

from pydantic import BaseModel, ConfigDict, EmailStr, Field, model_validator

# --- Auth ---


class TokenResponse(BaseModel):
    access_token: str
    token_type: str = "bearer"


class LoginRequest(BaseModel):
    email: EmailStr
    password: str


class RegisterRequest(BaseModel):
    email: EmailStr
    password: str = Field(min_length=6)
    name: str
    phone: str | None = None


class UserOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    email: str
    name: str
    phone: str | None
    role: str


# --- Facility ---


class FacilityCreate(BaseModel):
    name: str
    location: str | None = None
    price_per_hour: int = Field(ge=0)
    deposit_type: str = Field(default="fixed", pattern="^(fixed|percentage)$")
    deposit_value: int = Field(default=0, ge=0)
    open_hour: int = Field(default=0, ge=0, le=23)
    close_hour: int = Field(default=24, ge=1, le=24)
    owner_id: int | None = None  # admins may create on behalf of an owner

    @model_validator(mode="after")
    def _check_rules(self):
        if self.open_hour >= self.close_hour:
            raise ValueError("open_hour must be before close_hour")
        if self.deposit_type == "percentage" and self.deposit_value > 100:
            raise ValueError("percentage deposit cannot exceed 100")
        if self.deposit_type == "fixed" and self.deposit_value > self.price_per_hour:
            raise ValueError("deposit cannot exceed the hourly price")
        return self


class FacilityOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    owner_id: int
    name: str
    location: str | None
    is_active: bool
    price_per_hour: int
    deposit_type: str
    deposit_value: int
    deposit_amount: int
    open_hour: int
    close_hour: int
    average_rating: float | None
    rating_count: int


# --- Availability ---


class AvailabilityOut(BaseModel):
    facility_id: int
    date: date
    period: str
    available_slots: list[int]
    available_count: int
    total_slots: int


# --- Booking ---


class BookingCreate(BaseModel):
    facility_id: int
    date: date
    hour: int = Field(ge=0, le=23)
    code: str | None = None


class BookingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    facility_id: int
    user_id: int
    booking_date: date
    start_hour: int
    end_hour: int
    status: str
    total_price: int
    deposit_paid: int
    credit_applied: int
    remaining_balance: int
    refund_amount: int
    redeemed_code: str | None
    confirmed_at: datetime | None
    cancelled_at: datetime | None
    created_at: datetime


class CancelRequest(BaseModel):
    reason: str | None = None


# --- Compensation credits ---


class CreditOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    code: str
    value: int
    is_used: bool
    expires_at: datetime
    source_booking_id: int | None
    redeemed_booking_id: int | None


class CancellationOut(BaseModel):
    booking_id: int
    status: str
    tier: str
    refund_amount: int
    compensation_issued: bool
    credit: CreditOut | None


# --- Blocked slots ---


class BlockCreate(BaseModel):
    date: date
    hour: int = Field(ge=0, le=23)
    reason: str | None = None


class BlockedSlotOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    facility_id: int
    block_date: date
    start_hour: int
    end_hour: int
    reason: str | None
    is_active: bool


# --- Ratings ---


class RatingCreate(BaseModel):
    booking_id: int
    rating: int = Field(ge=1, le=5)
    comment: str | None = Field(default=None, max_length=1000)


class RatingOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: int
    facility_id: int
    booking_id: int
    user_id: int
    value: int
    comment: str | None
    created_at: datetime
