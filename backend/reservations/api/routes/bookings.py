"""
Booking endpoints: lifecycle transitions, money and read views.

Guests may book without a token by giving an email (guest checkout); every
other write needs a bearer token. Owner, confirm, complete and the money
endpoints are staff-only.
"""

from datetime import date
from typing import Optional

from fastapi import APIRouter, Depends, HTTPException, Query, status
from sqlalchemy.ext.asyncio import AsyncSession

from reservations.api.errors import unwrap
from reservations.core.logging import get_logger
from reservations.core.security import (
    build_context,
    get_current_actor,
    get_operation_context,
    get_optional_actor,
    get_staff_context,
)
from reservations.db.session import get_db
from reservations.models.booking import CONFIRMED, Booking
from reservations.schemas.booking import (
    BillCreate,
    BookingCreate,
    BookingDetailResponse,
    BookingResponse,
    BookingUpdate,
    CancelRequest,
    DiscountSet,
    FinancialSummaryResponse,
    OwnerChange,
    PaymentCreate,
)
from reservations.schemas.listing import InventoryUnitResponse
from reservations.services import booking_service
from reservations.services.cache_service import invalidate_listing_cache
from reservations.services.context import ROLE_GUEST, Actor, OperationContext

logger = get_logger(__name__)
router = APIRouter(prefix="/bookings", tags=["Bookings"])


def _ensure_visible(booking: Booking, actor: Actor) -> None:
    if not actor.is_staff and booking.user_id != actor.id:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Not your booking")


async def _load_visible(db: AsyncSession, booking_id: int, actor: Actor) -> Booking:
    booking = unwrap(await booking_service.get_booking(db, booking_id))
    _ensure_visible(booking, actor)
    return booking


@router.post("/", response_model=BookingDetailResponse, status_code=status.HTTP_201_CREATED)
async def create_booking_endpoint(
    booking_data: BookingCreate,
    actor: Optional[Actor] = Depends(get_optional_actor),
    db: AsyncSession = Depends(get_db),
):
    """
    Create a Pending booking holding the first free units for the range.

    Signed-in users book for themselves; staff may pass `user_id` to book on
    someone's behalf. Without a token `guest_email` is required and an
    account is provisioned for it.
    """
    if actor is None:
        if booking_data.guest_email is None:
            raise HTTPException(
                status_code=status.HTTP_401_UNAUTHORIZED,
                detail="Sign in or provide guest_email to book",
            )
        if booking_data.user_id is not None:
            raise HTTPException(
                status_code=status.HTTP_403_FORBIDDEN,
                detail="Only staff can book on behalf of another user",
            )
        actor = Actor(id=None, name=booking_data.guest_name or booking_data.guest_email, role=ROLE_GUEST)
    elif booking_data.user_id is not None and booking_data.user_id != actor.id and not actor.is_staff:
        raise HTTPException(
            status_code=status.HTTP_403_FORBIDDEN,
            detail="Only staff can book on behalf of another user",
        )

    ctx = build_context(actor)
    booking = unwrap(
        await booking_service.create_booking(
            db,
            ctx,
            listing_id=booking_data.listing_id,
            start_date=booking_data.start_date,
            end_date=booking_data.end_date,
            guests=booking_data.guests,
            num_units=booking_data.num_units,
            user_id=booking_data.user_id if actor.id is not None else None,
            guest_email=booking_data.guest_email if actor.id is None else None,
            guest_name=booking_data.guest_name,
        )
    )
    return booking


@router.get("/", response_model=list[BookingResponse])
async def list_bookings_endpoint(
    listing_id: Optional[int] = Query(None),
    user_id: Optional[int] = Query(None),
    status_filter: Optional[str] = Query(None, alias="status"),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Staff see every booking; everyone else only their own."""
    if not actor.is_staff:
        user_id = actor.id
    return await booking_service.list_bookings(db, listing_id=listing_id, user_id=user_id, status=status_filter)


@router.get("/{booking_id}", response_model=BookingDetailResponse)
async def get_booking_endpoint(
    booking_id: int,
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    return await _load_visible(db, booking_id, actor)


@router.patch("/{booking_id}", response_model=BookingDetailResponse)
async def update_booking_endpoint(
    booking_id: int,
    changes: BookingUpdate,
    ctx: OperationContext = Depends(get_operation_context),
    db: AsyncSession = Depends(get_db),
):
    """
    Change dates, guests or units. A confirmed booking whose dates or units
    change goes back to Pending and must be confirmed again.
    """
    booking = await _load_visible(db, booking_id, ctx.actor)
    was_confirmed = booking.status == CONFIRMED
    booking = unwrap(
        await booking_service.update_booking(
            db,
            ctx,
            booking_id,
            start_date=changes.start_date,
            end_date=changes.end_date,
            guests=changes.guests,
            num_units=changes.num_units,
            inventory_ids=changes.inventory_ids,
        )
    )
    if was_confirmed and booking.status != CONFIRMED:
        await invalidate_listing_cache()
    return booking


@router.put("/{booking_id}/owner", response_model=BookingDetailResponse)
async def change_owner_endpoint(
    booking_id: int,
    request: OwnerChange,
    ctx: OperationContext = Depends(get_staff_context),
    db: AsyncSession = Depends(get_db),
):
    return unwrap(await booking_service.change_booking_owner(db, ctx, booking_id, request.user_id))


@router.post("/{booking_id}/confirm", response_model=BookingDetailResponse)
async def confirm_booking_endpoint(
    booking_id: int,
    ctx: OperationContext = Depends(get_staff_context),
    db: AsyncSession = Depends(get_db),
):
    """
    Confirm a Pending booking. Returns 402 until the deposit is paid and 409
    if its units were taken in the meantime (the booking is then cancelled).
    """
    booking = unwrap(await booking_service.confirm_booking(db, ctx, booking_id))
    await invalidate_listing_cache()
    return booking


@router.post("/{booking_id}/complete", response_model=BookingDetailResponse)
async def complete_booking_endpoint(
    booking_id: int,
    ctx: OperationContext = Depends(get_staff_context),
    db: AsyncSession = Depends(get_db),
):
    booking = unwrap(await booking_service.complete_booking(db, ctx, booking_id))
    await invalidate_listing_cache()
    return booking


@router.post("/{booking_id}/cancel", response_model=BookingDetailResponse)
async def cancel_booking_endpoint(
    booking_id: int,
    request: Optional[CancelRequest] = None,
    ctx: OperationContext = Depends(get_operation_context),
    db: AsyncSession = Depends(get_db),
):
    """Cancel a Pending or Confirmed booking and release its units."""
    await _load_visible(db, booking_id, ctx.actor)
    booking = unwrap(await booking_service.cancel_booking(db, ctx, booking_id, request.reason if request else ""))
    await invalidate_listing_cache()
    return booking


@router.post("/{booking_id}/bills", response_model=BookingDetailResponse, status_code=status.HTTP_201_CREATED)
async def add_bill_endpoint(
    booking_id: int,
    bill: BillCreate,
    ctx: OperationContext = Depends(get_staff_context),
    db: AsyncSession = Depends(get_db),
):
    return unwrap(await booking_service.add_bill(db, ctx, booking_id, bill.description, bill.amount))


@router.post("/{booking_id}/payments", response_model=BookingDetailResponse, status_code=status.HTTP_201_CREATED)
async def add_payment_endpoint(
    booking_id: int,
    payment: PaymentCreate,
    ctx: OperationContext = Depends(get_staff_context),
    db: AsyncSession = Depends(get_db),
):
    return unwrap(
        await booking_service.add_payment(db, ctx, booking_id, payment.amount, payment.method, payment.notes)
    )


@router.put("/{booking_id}/discount", response_model=BookingDetailResponse)
async def set_discount_endpoint(
    booking_id: int,
    discount: DiscountSet,
    ctx: OperationContext = Depends(get_staff_context),
    db: AsyncSession = Depends(get_db),
):
    return unwrap(await booking_service.set_discount(db, ctx, booking_id, discount.percent, discount.reason))


@router.get("/{booking_id}/summary", response_model=FinancialSummaryResponse)
async def booking_summary_endpoint(
    booking_id: int,
    ctx: OperationContext = Depends(get_operation_context),
    db: AsyncSession = Depends(get_db),
):
    """Cost breakdown and outstanding balance, recomputed on every call."""
    await _load_visible(db, booking_id, ctx.actor)
    booking, listing, summary = unwrap(
        await booking_service.get_booking_summary(db, booking_id, ctx.policy.event_daily_hours)
    )
    return FinancialSummaryResponse(
        booking_id=booking.id,
        currency=listing.currency,
        base_cost=summary.base_cost,
        discount_amount=summary.discount_amount,
        bills_total=summary.bills_total,
        total_bill=summary.total_bill,
        total_payments=summary.total_payments,
        balance=summary.balance,
        deposit_required=summary.deposit_required,
    )


@router.get("/{booking_id}/available-units", response_model=list[InventoryUnitResponse])
async def available_units_endpoint(
    booking_id: int,
    start_date: Optional[date] = Query(None),
    end_date: Optional[date] = Query(None),
    actor: Actor = Depends(get_current_actor),
    db: AsyncSession = Depends(get_db),
):
    """Units this booking could move to, ignoring the units it holds itself."""
    await _load_visible(db, booking_id, actor)
    return unwrap(await booking_service.available_units_for_booking(db, booking_id, start_date, end_date))
