"""
Typed records stored as ordered JSON lists on bookings and listings.

These are the only shapes allowed inside the JSON columns; the storage layer
validates them on the way in and on the way out (see db/types.py).
"""

from datetime import datetime, timezone
from decimal import Decimal
from enum import Enum
from typing import Optional
from uuid import uuid4

from pydantic import BaseModel, Field


def _now() -> datetime:
    return datetime.now(timezone.utc)


def _new_id() -> str:
    return uuid4().hex


class ActionKind(str, Enum):
    CREATED = "Created"
    UPDATED = "Updated"
    OWNER_CHANGED = "OwnerChanged"
    CONFIRMED = "Confirmed"
    COMPLETED = "Completed"
    CANCELLED = "Cancelled"
    SYSTEM = "System"
    BILL_ADDED = "BillAdded"
    PAYMENT_ADDED = "PaymentAdded"
    DISCOUNT_SET = "DiscountSet"


class ActionEntry(BaseModel):
    timestamp: datetime = Field(default_factory=_now)
    actor_id: Optional[int] = None
    actor_name: str
    action: ActionKind
    message: str = ""


class Bill(BaseModel):
    id: str = Field(default_factory=_new_id)
    description: str = Field(..., min_length=1)
    amount: Decimal = Field(..., gt=0)
    created_at: datetime = Field(default_factory=_now)
    actor_id: Optional[int] = None
    actor_name: str


class Payment(BaseModel):
    id: str = Field(default_factory=_new_id)
    amount: Decimal = Field(..., gt=0)
    method: str = Field(..., min_length=1)
    notes: Optional[str] = None
    created_at: datetime = Field(default_factory=_now)
    actor_id: Optional[int] = None
    actor_name: str


class ReviewStatus(str, Enum):
    PENDING = "pending"
    APPROVED = "approved"


class Review(BaseModel):
    id: str = Field(default_factory=_new_id)
    user_id: int
    author: str
    avatar: Optional[str] = None
    rating: int = Field(..., ge=1, le=5)
    comment: str = ""
    status: ReviewStatus = ReviewStatus.PENDING
