"""
Pydantic schemas for listing and inventory request/response validation.
"""

from datetime import date, datetime
from decimal import Decimal
from typing import Literal, Optional

from pydantic import BaseModel, Field

from reservations.schemas.records import Review

ListingType = Literal["hotel", "event-center", "restaurant"]
PriceUnit = Literal["night", "hour", "person"]


class ListingCreate(BaseModel):
    name: str = Field(..., min_length=1, max_length=255)
    type: ListingType
    location: str = Field(..., min_length=1, max_length=255)
    description: str = Field("", max_length=5000)
    price: Decimal = Field(..., ge=0)
    price_unit: PriceUnit
    currency: str = Field("USD", min_length=3, max_length=3)
    max_guests: int = Field(1, gt=0, le=10000)
    features: list[str] = Field(default_factory=list)
    inventory_count: int = Field(1, ge=0, le=1000)


class ListingUpdate(BaseModel):
    name: Optional[str] = Field(None, min_length=1, max_length=255)
    type: Optional[ListingType] = None
    location: Optional[str] = Field(None, min_length=1, max_length=255)
    description: Optional[str] = Field(None, max_length=5000)
    price: Optional[Decimal] = Field(None, ge=0)
    price_unit: Optional[PriceUnit] = None
    currency: Optional[str] = Field(None, min_length=3, max_length=3)
    max_guests: Optional[int] = Field(None, gt=0, le=10000)
    features: Optional[list[str]] = None


class InventoryUnitResponse(BaseModel):
    id: int
    name: str

    model_config = {"from_attributes": True}


class ListingResponse(BaseModel):
    id: int
    name: str
    type: str
    location: str
    description: str
    price: Decimal
    price_unit: str
    currency: str
    max_guests: int
    rating: Decimal
    features: list[str]
    units: list[InventoryUnitResponse]
    created_at: datetime

    model_config = {"from_attributes": True}


class ListingDetailResponse(ListingResponse):
    reviews: list[Review]


class ListingSearchItem(ListingResponse):
    available_units: Optional[int] = None


class ListingListResponse(BaseModel):
    listings: list[ListingSearchItem]
    total: int
    page: int
    page_size: int
    cached: bool = False


class UnitSpecIn(BaseModel):
    id: Optional[int] = None
    name: str = Field(..., min_length=1, max_length=255)


class InventoryReconcileRequest(BaseModel):
    units: list[UnitSpecIn]


class InventoryCountRequest(BaseModel):
    count: int = Field(..., ge=0, le=1000)


class AvailabilityResponse(BaseModel):
    listing_id: int
    start_date: date
    end_date: date
    available_units: list[InventoryUnitResponse]
    total_units: int


class ReviewCreate(BaseModel):
    rating: int = Field(..., ge=1, le=5)
    comment: str = Field("", max_length=2000)
    avatar: Optional[str] = None
