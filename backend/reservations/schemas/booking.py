"""
Pydantic schemas for booking-related request/response validation.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Optional

from pydantic import BaseModel, EmailStr, Field, model_validator

from reservations.schemas.records import ActionEntry, Bill, Payment


class BookingCreate(BaseModel):
    listing_id: int
    start_date: date
    end_date: date
    guests: int = Field(default=1, gt=0)
    num_units: int = Field(default=1, gt=0, le=100)
    # Staff booking on behalf of someone else
    user_id: Optional[int] = None
    # Guest checkout without a token
    guest_email: Optional[EmailStr] = None
    guest_name: str = Field("", max_length=255)

    @model_validator(mode="after")
    def check_dates(self):
        if self.start_date > self.end_date:
            raise ValueError("start_date must not be after end_date")
        return self


class BookingUpdate(BaseModel):
    start_date: Optional[date] = None
    end_date: Optional[date] = None
    guests: Optional[int] = Field(None, gt=0)
    num_units: Optional[int] = Field(None, gt=0, le=100)
    inventory_ids: Optional[list[int]] = None


class OwnerChange(BaseModel):
    user_id: int


class CancelRequest(BaseModel):
    reason: str = Field("", max_length=1000)


class BillCreate(BaseModel):
    description: str = Field(..., min_length=1, max_length=500)
    amount: Decimal = Field(..., gt=0)


class PaymentCreate(BaseModel):
    amount: Decimal = Field(..., gt=0)
    method: str = Field(..., min_length=1, max_length=50)
    notes: Optional[str] = Field(None, max_length=1000)


class DiscountSet(BaseModel):
    percent: Decimal = Field(..., ge=0)
    reason: str = Field("", max_length=1000)


class BookingResponse(BaseModel):
    id: int
    listing_id: int
    user_id: int
    start_date: date
    end_date: date
    guests: int
    inventory_ids: list[int]
    status: str
    status_message: Optional[str]
    discount: Decimal
    created_at: datetime

    model_config = {"from_attributes": True}


class BookingDetailResponse(BookingResponse):
    actions: list[ActionEntry]
    bills: list[Bill]
    payments: list[Payment]


class FinancialSummaryResponse(BaseModel):
    booking_id: int
    currency: str
    base_cost: Decimal
    discount_amount: Decimal
    bills_total: Decimal
    total_bill: Decimal
    total_payments: Decimal
    balance: Decimal
    deposit_required: Decimal
