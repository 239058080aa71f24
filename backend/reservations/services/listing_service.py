"""
Listing CRUD, search and reviews.
"""

from datetime import date
from decimal import Decimal
from typing import Any, Optional

from sqlalchemy import func, select
from sqlalchemy.ext.asyncio import AsyncSession

from reservations.core.logging import get_logger
from reservations.models.booking import ACTIVE_STATUSES, Booking
from reservations.models.listing import InventoryUnit, Listing
from reservations.schemas.records import Review, ReviewStatus
from reservations.services.allocation import load_listing_for_update, run_operation
from reservations.services.availability import find_available_units, validate_range
from reservations.services.context import OperationContext
from reservations.services.errors import DomainError, ErrorKind, NotFound, OperationResult, ValidationFailed
from reservations.services.inventory_service import default_unit_name

logger = get_logger(__name__)

EDITABLE_FIELDS = (
    "name",
    "type",
    "location",
    "description",
    "price",
    "price_unit",
    "currency",
    "max_guests",
    "features",
)


async def create_listing(
    db: AsyncSession,
    ctx: OperationContext,
    data: dict[str, Any],
    inventory_count: int,
) -> OperationResult[Listing]:
    """Create a listing together with `inventory_count` units."""

    async def attempt() -> Listing:
        if inventory_count < 0:
            raise ValidationFailed("Inventory count must not be negative")
        listing = Listing(**{k: v for k, v in data.items() if k in EDITABLE_FIELDS})
        listing.reviews = []
        listing.rating = Decimal("0")
        listing.version = 1
        listing.units = [
            InventoryUnit(name=default_unit_name(listing, position))
            for position in range(1, inventory_count + 1)
        ]
        db.add(listing)
        await db.commit()
        logger.info(
            "listing_created",
            listing_id=listing.id,
            name=listing.name,
            units=inventory_count,
            actor_id=ctx.actor.id,
        )
        return listing

    return await run_operation(db, "create_listing", attempt, ctx.policy.max_retry_attempts)


async def get_listing(db: AsyncSession, listing_id: int) -> OperationResult[Listing]:
    result = await db.execute(
        select(Listing).where(Listing.id == listing_id).execution_options(populate_existing=True)
    )
    listing = result.scalar_one_or_none()
    if listing is None:
        return OperationResult.failure(NotFound("Listing", listing_id))
    return OperationResult.success(listing)


async def get_listing_availability(
    db: AsyncSession,
    listing_id: int,
    start_date: date,
    end_date: date,
) -> OperationResult[tuple[Listing, list[InventoryUnit]]]:
    """Free units of one listing for [start_date, end_date]. A snapshot, not a hold."""
    found = await get_listing(db, listing_id)
    if not found.ok:
        return OperationResult.failure(found.error)
    listing = found.value
    try:
        units = await find_available_units(db, listing.id, start_date, end_date)
    except DomainError as exc:
        return OperationResult.failure(exc)
    return OperationResult.success((listing, units))


async def update_listing(
    db: AsyncSession,
    ctx: OperationContext,
    listing_id: int,
    changes: dict[str, Any],
) -> OperationResult[Listing]:
    """Edit descriptive fields and price. Units are managed by inventory_service."""

    async def attempt() -> Listing:
        listing = await load_listing_for_update(db, listing_id)
        for field, value in changes.items():
            if field in EDITABLE_FIELDS and value is not None:
                setattr(listing, field, value)
        await db.commit()
        logger.info("listing_updated", listing_id=listing.id, fields=sorted(changes))
        return listing

    return await run_operation(db, "update_listing", attempt, ctx.policy.max_retry_attempts)


async def delete_listing(
    db: AsyncSession,
    ctx: OperationContext,
    listing_id: int,
) -> OperationResult[int]:
    """
    Delete a listing and its units. Refused with InventoryInUse while it has
    Pending or Confirmed bookings, and with ValidationError while completed
    or cancelled bookings still reference it (bookings are never deleted).
    """

    async def attempt() -> int:
        listing = await load_listing_for_update(db, listing_id)
        counts = dict(
            (
                await db.execute(
                    select(Booking.status, func.count())
                    .where(Booking.listing_id == listing.id)
                    .group_by(Booking.status)
                )
            ).all()
        )
        active = sum(counts.get(status, 0) for status in ACTIVE_STATUSES)
        if active:
            raise DomainError(
                ErrorKind.INVENTORY_IN_USE,
                f"Cannot delete listing {listing.id}: it has {active} active or pending booking(s)",
                bookings=active,
            )
        if counts:
            raise ValidationFailed(
                f"Cannot delete listing {listing.id}: it has booking history",
                bookings=sum(counts.values()),
            )
        await db.delete(listing)
        await db.commit()
        logger.info("listing_deleted", listing_id=listing_id, actor_id=ctx.actor.id)
        return listing_id

    return await run_operation(db, "delete_listing", attempt, ctx.policy.max_retry_attempts)


async def list_listings(
    db: AsyncSession,
    page: int = 1,
    page_size: int = 20,
    location: Optional[str] = None,
    listing_type: Optional[str] = None,
    guests: Optional[int] = None,
    start_date: Optional[date] = None,
    end_date: Optional[date] = None,
) -> OperationResult[tuple[list[tuple[Listing, Optional[int]]], int]]:
    """
    Search listings. With a date range, only listings that still have at
    least one free unit for the whole range are returned, paired with that
    free-unit count. An inverted range fails with ValidationError.
    """
    query = select(Listing)
    if location:
        query = query.where(Listing.location.ilike(f"%{location}%"))
    if listing_type:
        query = query.where(Listing.type == listing_type)
    if guests:
        query = query.where(Listing.max_guests >= guests)
    query = query.order_by(Listing.id.asc())

    if start_date is None and end_date is None:
        total = (await db.execute(select(func.count()).select_from(query.subquery()))).scalar()
        result = await db.execute(query.offset((page - 1) * page_size).limit(page_size))
        return OperationResult.success(([(listing, None) for listing in result.scalars().all()], total))

    start_date = start_date or end_date
    end_date = end_date or start_date
    try:
        validate_range(start_date, end_date)
    except DomainError as exc:
        return OperationResult.failure(exc)

    matches: list[tuple[Listing, Optional[int]]] = []
    for listing in (await db.execute(query)).scalars().all():
        free = len(await find_available_units(db, listing.id, start_date, end_date))
        if free > 0:
            matches.append((listing, free))

    offset = (page - 1) * page_size
    return OperationResult.success((matches[offset:offset + page_size], len(matches)))


# ---------------------------------------------------------------------------
# reviews
# ---------------------------------------------------------------------------


def _approved_average(reviews: list[Review]) -> Decimal:
    approved = [r.rating for r in reviews if r.status == ReviewStatus.APPROVED]
    if not approved:
        return Decimal("0")
    return (Decimal(sum(approved)) / len(approved)).quantize(Decimal("0.01"))


async def add_or_update_review(
    db: AsyncSession,
    ctx: OperationContext,
    listing_id: int,
    rating: int,
    comment: str,
    avatar: Optional[str] = None,
) -> OperationResult[Review]:
    """One review per user; editing a review sends it back to moderation."""

    async def attempt() -> Review:
        if ctx.actor.id is None:
            raise ValidationFailed("Only signed-in users can review")
        if not 1 <= rating <= 5:
            raise ValidationFailed("Rating must be between 1 and 5")

        listing = await load_listing_for_update(db, listing_id)
        reviews = list(listing.reviews or [])
        existing = next((r for r in reviews if r.user_id == ctx.actor.id), None)

        review = Review(
            user_id=ctx.actor.id,
            author=ctx.actor.name,
            avatar=avatar,
            rating=rating,
            comment=comment,
        )
        if existing is not None:
            review = review.model_copy(update={"id": existing.id})
            reviews = [r for r in reviews if r.id != existing.id]
        reviews.append(review)

        listing.reviews = reviews
        listing.rating = _approved_average(reviews)
        await db.commit()
        logger.info("review_saved", listing_id=listing.id, review_id=review.id, updated=existing is not None)
        return review

    return await run_operation(db, "add_or_update_review", attempt, ctx.policy.max_retry_attempts)


async def approve_review(
    db: AsyncSession,
    ctx: OperationContext,
    listing_id: int,
    review_id: str,
) -> OperationResult[Listing]:
    async def attempt() -> Listing:
        listing = await load_listing_for_update(db, listing_id)
        reviews = list(listing.reviews or [])
        if not any(r.id == review_id for r in reviews):
            raise NotFound("Review", review_id)

        listing.reviews = [
            r.model_copy(update={"status": ReviewStatus.APPROVED}) if r.id == review_id else r
            for r in reviews
        ]
        listing.rating = _approved_average(listing.reviews)
        await db.commit()
        logger.info("review_approved", listing_id=listing.id, review_id=review_id)
        return listing

    return await run_operation(db, "approve_review", attempt, ctx.policy.max_retry_attempts)


async def delete_review(
    db: AsyncSession,
    ctx: OperationContext,
    listing_id: int,
    review_id: str,
) -> OperationResult[Listing]:
    async def attempt() -> Listing:
        listing = await load_listing_for_update(db, listing_id)
        reviews = list(listing.reviews or [])
        remaining = [r for r in reviews if r.id != review_id]
        if len(remaining) == len(reviews):
            raise NotFound("Review", review_id)

        listing.reviews = remaining
        listing.rating = _approved_average(remaining)
        await db.commit()
        logger.info("review_deleted", listing_id=listing.id, review_id=review_id)
        return listing

    return await run_operation(db, "delete_review", attempt, ctx.policy.max_retry_attempts)
