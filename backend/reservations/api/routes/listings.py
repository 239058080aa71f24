"""
Listing, inventory and review endpoints with Redis caching on search.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from reservations.api.errors import unwrap
from reservations.core.logging import get_logger
from reservations.core.security import get_operation_context, get_staff_context
from reservations.db.session import get_db
from reservations.schemas.listing import (
    AvailabilityResponse,
    InventoryCountRequest,
    InventoryReconcileRequest,
    InventoryUnitResponse,
    ListingCreate,
    ListingDetailResponse,
    ListingListResponse,
    ListingSearchItem,
    ListingUpdate,
    ReviewCreate,
)
from reservations.schemas.records import Review
from reservations.services import inventory_service, listing_service
from reservations.services.cache_service import (
    get_cached_listings,
    invalidate_listing_cache,
    set_cached_listings,
)
from reservations.services.context import OperationContext

logger = get_logger(__name__)
router = APIRouter(prefix="/listings", tags=["Listings"])


@router.post("/", response_model=ListingDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_listing_endpoint(
    listing_data: ListingCreate,
    ctx: OperationContext = Depends(get_staff_context),
    db: AsyncSession = Depends(get_db),
):
    """Create a listing with `inventory_count` default-named units. Staff only."""
    data = listing_data.model_dump(exclude={"inventory_count"})
    listing = unwrap(
        await listing_service.create_listing(db, ctx, data, listing_data.inventory_count)
    )
    await invalidate_listing_cache()
    return listing


@router.get("/", response_model=ListingListResponse)
async def list_listings_endpoint(
    page: int = Query(1, ge=1),
    page_size: int = Query(20, ge=1, le=100),
    location: Optional[str] = Query(None),
    type: Optional[str] = Query(None),
    guests: Optional[int] = Query(None, ge=1),
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    db: AsyncSession = Depends(get_db),
):
    """
    Search listings with pagination.
    With a date range only listings with at least one free unit are returned.
    Results are cached in Redis; any listing, inventory or booking status
    change invalidates the cache.
    """
    params = {
        "page": page,
        "page_size": page_size,
        "location": location,
        "type": type,
        "guests": guests,
        "start_date": start_date,
        "end_date": end_date,
    }

    cached = await get_cached_listings(params)
    if cached:
        logger.info("listings_list_cache_hit", page=page)
        cached["cached"] = True
        return ListingListResponse(**cached)

    rows, total = unwrap(
        await listing_service.list_listings(
            db,
            page=page,
            page_size=page_size,
            location=location,
            listing_type=type,
            guests=guests,
            start_date=start_date,
            end_date=end_date,
        )
    )

    items = []
    for listing, free in rows:
        item = ListingSearchItem.model_validate(listing)
        item.available_units = free
        items.append(item.model_dump(mode="json"))

    response_data = {
        "listings": items,
        "total": total,
        "page": page,
        "page_size": page_size,
        "cached": False,
    }
    await set_cached_listings(params, response_data)
    return ListingListResponse(**response_data)


@router.get("/{listing_id}", response_model=ListingDetailResponse)
async def get_listing_endpoint(
    listing_id: int,
    db: AsyncSession = Depends(get_db),
):
    """Get a single listing with its units and reviews. Not cached."""
    return unwrap(await listing_service.get_listing(db, listing_id))


@router.patch("/{listing_id}", response_model=ListingDetailResponse)
async def update_listing_endpoint(
    listing_id: int,
    changes: ListingUpdate,
    ctx: OperationContext = Depends(get_staff_context),
    db: AsyncSession = Depends(get_db),
):
    listing = unwrap(
        await listing_service.update_listing(db, ctx, listing_id, changes.model_dump(exclude_unset=True))
    )
    await invalidate_listing_cache()
    return listing


@router.delete("/{listing_id}", status_code=status.HTTP_204_NO_CONTENT)
async def delete_listing_endpoint(
    listing_id: int,
    ctx: OperationContext = Depends(get_staff_context),
    db: AsyncSession = Depends(get_db),
):
    """Delete a listing. Refused while any booking references it."""
    unwrap(await listing_service.delete_listing(db, ctx, listing_id))
    await invalidate_listing_cache()


@router.get("/{listing_id}/availability", response_model=AvailabilityResponse)
async def listing_availability_endpoint(
    listing_id: int,
    start_date: date = Query(...),
    end_date: date = Query(...),
    db: AsyncSession = Depends(get_db),
):
    """Free units for the range. Always computed live; it is only a snapshot."""
    listing, units = unwrap(
        await listing_service.get_listing_availability(db, listing_id, start_date, end_date)
    )
    return AvailabilityResponse(
        listing_id=listing.id,
        start_date=start_date,
        end_date=end_date,
        available_units=[InventoryUnitResponse.model_validate(unit) for unit in units],
        total_units=len(listing.units),
    )


@router.put("/{listing_id}/inventory", response_model=ListingDetailResponse)
async def reconcile_inventory_endpoint(
    listing_id: int,
    request: InventoryReconcileRequest,
    ctx: OperationContext = Depends(get_staff_context),
    db: AsyncSession = Depends(get_db),
):
    """
    Replace the unit list: entries without an id are created, changed names
    are renamed and units left out are deleted. Refused as a whole if a
    deleted unit is held by a pending or confirmed booking.
    """
    desired = [inventory_service.UnitSpec(id=unit.id, name=unit.name) for unit in request.units]
    listing = unwrap(await inventory_service.reconcile_inventory(db, ctx, listing_id, desired))
    await invalidate_listing_cache()
    return listing


@router.post("/{listing_id}/inventory/count", response_model=ListingDetailResponse)
async def set_unit_count_endpoint(
    listing_id: int,
    request: InventoryCountRequest,
    ctx: OperationContext = Depends(get_staff_context),
    db: AsyncSession = Depends(get_db),
):
    listing = unwrap(await inventory_service.set_unit_count(db, ctx, listing_id, request.count))
    await invalidate_listing_cache()
    return listing


@router.post("/{listing_id}/reviews", response_model=Review, status_code=status.HTTP_201_CREATED)
async def add_review_endpoint(
    listing_id: int,
    review: ReviewCreate,
    ctx: OperationContext = Depends(get_operation_context),
    db: AsyncSession = Depends(get_db),
):
    """Add or replace the caller's review. It stays hidden until approved."""
    return unwrap(
        await listing_service.add_or_update_review(
            db, ctx, listing_id, review.rating, review.comment, review.avatar
        )
    )


@router.post("/{listing_id}/reviews/{review_id}/approve", response_model=ListingDetailResponse)
async def approve_review_endpoint(
    listing_id: int,
    review_id: str,
    ctx: OperationContext = Depends(get_staff_context),
    db: AsyncSession = Depends(get_db),
):
    listing = unwrap(await listing_service.approve_review(db, ctx, listing_id, review_id))
    await invalidate_listing_cache()
    return listing


@router.delete("/{listing_id}/reviews/{review_id}", response_model=ListingDetailResponse)
async def delete_review_endpoint(
    listing_id: int,
    review_id: str,
    ctx: OperationContext = Depends(get_staff_context),
    db: AsyncSession = Depends(get_db),
):
    listing = unwrap(await listing_service.delete_review(db, ctx, listing_id, review_id))
    await invalidate_listing_cache()
    return listing
