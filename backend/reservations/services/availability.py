"""
Availability calculation for a listing's unit pool.

AVAILABILITY RULE
=================

A unit is free for [start, end] (both days inclusive) unless some Confirmed
booking on the same listing holds it and overlaps the range:

    existing.end_date >= start AND existing.start_date <= end

Pending bookings are provisional and never block. That means two Pending
bookings can hold the same unit; the conflict is resolved when the second
one is confirmed (see booking_service.confirm_booking).

The result is a snapshot. Nothing here locks anything, so callers that act
on it must re-check at commit time.
"""

from datetime import date
from typing import Iterable, Optional

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from reservations.core.logging import get_logger
from reservations.core.metrics import availability_checks
from reservations.models.booking import ACTIVE_STATUSES, CONFIRMED, Booking
from reservations.models.listing import InventoryUnit
from reservations.services.errors import ValidationFailed

logger = get_logger(__name__)


def validate_range(start_date: date, end_date: date) -> None:
    if start_date > end_date:
        raise ValidationFailed(
            f"Start date {start_date} must not be after end date {end_date}",
        )


def dates_overlap(a_start: date, a_end: date, b_start: date, b_end: date) -> bool:
    return a_end >= b_start and a_start <= b_end


async def get_listing_units(db: AsyncSession, listing_id: int) -> list[InventoryUnit]:
    """All units of a listing in creation order."""
    result = await db.execute(
        select(InventoryUnit)
        .where(InventoryUnit.listing_id == listing_id)
        .order_by(InventoryUnit.id.asc())
    )
    return list(result.scalars().all())


async def get_held_unit_ids(
    db: AsyncSession,
    listing_id: int,
    start_date: date,
    end_date: date,
    exclude_booking_id: Optional[int] = None,
) -> set[int]:
    """Unit ids held by Confirmed bookings overlapping the range."""
    query = select(Booking.inventory_ids).where(
        Booking.listing_id == listing_id,
        Booking.status == CONFIRMED,
        Booking.end_date >= start_date,
        Booking.start_date <= end_date,
    )
    if exclude_booking_id is not None:
        query = query.where(Booking.id != exclude_booking_id)

    held: set[int] = set()
    for inventory_ids in (await db.execute(query)).scalars():
        held.update(inventory_ids or [])
    return held


async def find_available_units(
    db: AsyncSession,
    listing_id: int,
    start_date: date,
    end_date: date,
    exclude_booking_id: Optional[int] = None,
) -> list[InventoryUnit]:
    """
    Units of the listing that are free for the whole range, in creation order.
    Raises ValidationFailed for an inverted range.
    """
    validate_range(start_date, end_date)
    availability_checks.inc()

    units = await get_listing_units(db, listing_id)
    if not units:
        return []

    held = await get_held_unit_ids(db, listing_id, start_date, end_date, exclude_booking_id)
    available = [unit for unit in units if unit.id not in held]

    logger.debug(
        "availability_computed",
        listing_id=listing_id,
        start_date=str(start_date),
        end_date=str(end_date),
        total=len(units),
        available=len(available),
        excluded_booking=exclude_booking_id,
    )
    return available


def select_units(available: Iterable[InventoryUnit], count: int) -> list[int]:
    """First `count` unit ids in creation order."""
    return [unit.id for unit in sorted(available, key=lambda u: u.id)[:count]]


async def get_active_unit_ids(db: AsyncSession, listing_id: int) -> set[int]:
    """Unit ids referenced by any Pending or Confirmed booking of the listing."""
    result = await db.execute(
        select(Booking.inventory_ids).where(
            Booking.listing_id == listing_id,
            Booking.status.in_(ACTIVE_STATUSES),
        )
    )
    active: set[int] = set()
    for inventory_ids in result.scalars():
        active.update(inventory_ids or [])
    return active
