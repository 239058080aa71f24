from reservations.schemas.listing import (
    ListingCreate, ListingUpdate, ListingResponse, ListingDetailResponse, ListingListResponse,
    InventoryReconcileRequest, InventoryCountRequest, AvailabilityResponse, ReviewCreate,
)
from reservations.schemas.booking import (
    BookingCreate, BookingUpdate, BookingResponse, BookingDetailResponse,
    BillCreate, PaymentCreate, DiscountSet, OwnerChange, CancelRequest, FinancialSummaryResponse,
)

__all__ = [
    "ListingCreate", "ListingUpdate", "ListingResponse", "ListingDetailResponse", "ListingListResponse",
    "InventoryReconcileRequest", "InventoryCountRequest", "AvailabilityResponse", "ReviewCreate",
    "BookingCreate", "BookingUpdate", "BookingResponse", "BookingDetailResponse",
    "BillCreate", "PaymentCreate", "DiscountSet", "OwnerChange", "CancelRequest", "FinancialSummaryResponse",
]
